import httpx
import pytest

from idpbridge.clients.http_client import HTTPTransport
from idpbridge.core.exceptions import DecodeError, RemoteError
from idpbridge.services.auth.oauth.models import Credential, ProviderConfig
from idpbridge.services.auth.oauth.providers.qq import QQIdentityProvider, _parse_jsonp

CONFIG = ProviderConfig(
    kind="QQ", client_id="101000000", client_secret="qq_secret", redirect_url="https://example.com/cb"
)


def _transport(handler) -> HTTPTransport:
    return HTTPTransport(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def test_parse_jsonp() -> None:
    assert _parse_jsonp('callback( {"client_id":"1","openid":"O"} );\n') == {"client_id": "1", "openid": "O"}
    assert _parse_jsonp("access_token=AT&expires_in=7776000") is None
    assert _parse_jsonp("callback( {broken} );") is None


@pytest.mark.asyncio
async def test_query_string_token_response() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/oauth2.0/token"
        assert request.url.params["redirect_uri"] == "https://example.com/cb"
        return httpx.Response(200, text="access_token=AT&expires_in=7776000&refresh_token=RT")

    credential = await QQIdentityProvider(CONFIG, transport=_transport(handler)).exchange_credential("code")

    assert credential.access_token == "AT"
    assert credential.refresh_token == "RT"
    assert credential.expiry is not None


@pytest.mark.asyncio
async def test_jsonp_token_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text='callback( {"error":100019,"error_description":"code to access token error"} );')

    with pytest.raises(RemoteError) as exc_info:
        await QQIdentityProvider(CONFIG, transport=_transport(handler)).exchange_credential("code")
    assert exc_info.value == RemoteError(100019, "code to access token error")


@pytest.mark.asyncio
async def test_unparseable_token_response() -> None:
    handler = lambda _req: httpx.Response(200, text="garbage")  # noqa: E731
    with pytest.raises(DecodeError):
        await QQIdentityProvider(CONFIG, transport=_transport(handler)).exchange_credential("code")


@pytest.mark.asyncio
async def test_identity_prefers_unionid() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth2.0/me":
            assert request.url.params["unionid"] == "1"
            return httpx.Response(
                200, text='callback( {"client_id":"101000000","openid":"OPENID","unionid":"UNIONID"} );'
            )
        assert request.url.path == "/user/get_user_info"
        assert request.url.params["openid"] == "OPENID"
        assert request.url.params["oauth_consumer_key"] == "101000000"
        return httpx.Response(
            200, json={"ret": 0, "msg": "", "nickname": "QQ用户", "figureurl_qq_1": "http://q.qlogo.cn/1"}
        )

    identity = await QQIdentityProvider(CONFIG, transport=_transport(handler)).fetch_identity(
        Credential(access_token="AT")
    )

    assert identity.id == "UNIONID"
    assert identity.union_id == "UNIONID"
    assert identity.username == "QQ用户"
    assert identity.avatar_url == "http://q.qlogo.cn/1"
    assert identity.extra == {"qq_openid": "OPENID"}


@pytest.mark.asyncio
async def test_userinfo_ret_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth2.0/me":
            return httpx.Response(200, text='callback( {"client_id":"101000000","openid":"OPENID"} );')
        return httpx.Response(200, json={"ret": -1, "msg": "client request's parameters are invalid"})

    with pytest.raises(RemoteError) as exc_info:
        await QQIdentityProvider(CONFIG, transport=_transport(handler)).fetch_identity(Credential(access_token="AT"))
    assert exc_info.value.code == -1
