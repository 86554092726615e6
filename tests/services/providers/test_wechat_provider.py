from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from idpbridge.clients.http_client import HTTPTransport
from idpbridge.core.exceptions import (
    DecodeError,
    InvalidCredentialError,
    NotScannedOrUnknown,
    RemoteError,
)
from idpbridge.services.auth.oauth.models import (
    Credential,
    ProviderConfig,
    ScanTicketExtra,
    WeChatExtra,
)
from idpbridge.services.auth.oauth.providers.wechat import WeChatIdentityProvider
from idpbridge.services.auth.oauth.providers.wechat_miniprogram import (
    WeChatMiniProgramIdentityProvider,
)
from idpbridge.services.auth.oauth.scan_login import ScanTicketCache


def _transport(handler) -> HTTPTransport:
    return HTTPTransport(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def _query(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlsplit(str(request.url)).query).items()}


def _no_network(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected request: {request.url}")


CONFIG = ProviderConfig(kind="WeChat", client_id="wx_app", client_secret="wx_secret")


@pytest.mark.asyncio
async def test_used_code_is_remote_error_even_with_http_200() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"errcode": 40163, "errmsg": "code been used"})

    adapter = WeChatIdentityProvider(CONFIG, transport=_transport(handler))
    with pytest.raises(RemoteError) as exc_info:
        await adapter.exchange_credential("081abc")
    assert exc_info.value == RemoteError(40163, "code been used")


@pytest.mark.asyncio
async def test_code_exchange_and_userinfo() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        params = _query(request)
        if request.url.path == "/sns/oauth2/access_token":
            assert params == {
                "grant_type": "authorization_code",
                "appid": "wx_app",
                "secret": "wx_secret",
                "code": "081abc",
            }
            return httpx.Response(
                200,
                json={
                    "access_token": "AT",
                    "expires_in": 7200,
                    "refresh_token": "RT",
                    "openid": "oOpen",
                    "unionid": "uUnion",
                },
            )
        assert request.url.path == "/sns/userinfo"
        assert params == {"access_token": "AT", "openid": "oOpen"}
        return httpx.Response(
            200,
            json={"openid": "oOpen", "unionid": "uUnion", "nickname": "张三", "headimgurl": "https://img/1"},
        )

    adapter = WeChatIdentityProvider(CONFIG, transport=_transport(handler))
    credential = await adapter.exchange_credential("081abc")

    assert credential.access_token == "AT"
    assert credential.refresh_token == "RT"
    assert credential.extra == WeChatExtra(openid="oOpen", unionid="uUnion")
    assert credential.expiry is not None and credential.expiry > datetime.now(timezone.utc)

    identity = await adapter.fetch_identity(credential)
    assert identity.id == "uUnion"
    assert identity.union_id == "uUnion"
    assert identity.username == "张三"
    assert identity.avatar_url == "https://img/1"
    assert identity.extra == {"wechat_openid": "oOpen", "wechat_openid_wx_app": "oOpen"}


@pytest.mark.asyncio
async def test_identity_falls_back_to_openid_without_unionid() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"openid": "oOpen", "nickname": "n"})

    adapter = WeChatIdentityProvider(CONFIG, transport=_transport(handler))
    identity = await adapter.fetch_identity(Credential(access_token="AT", extra=WeChatExtra(openid="oOpen")))

    assert identity.id == "oOpen"
    assert identity.union_id is None


@pytest.mark.asyncio
async def test_zero_expires_in_uses_configured_fallback() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"access_token": "AT", "openid": "o", "expires_in": 0})

    config = ProviderConfig(
        kind="WeChat", client_id="wx_app", client_secret="s", token_lifetime_fallback_seconds=600
    )
    adapter = WeChatIdentityProvider(config, transport=_transport(handler))

    before = datetime.now(timezone.utc)
    credential = await adapter.exchange_credential("code")

    assert credential.expiry is not None
    assert before + timedelta(seconds=590) <= credential.expiry <= before + timedelta(seconds=610)


@pytest.mark.asyncio
async def test_missing_access_token_is_decode_error() -> None:
    adapter = WeChatIdentityProvider(
        CONFIG, transport=_transport(lambda _req: httpx.Response(200, json={"openid": "o"}))
    )
    with pytest.raises(DecodeError):
        await adapter.exchange_credential("code")


@pytest.mark.asyncio
async def test_non_json_body_is_decode_error() -> None:
    adapter = WeChatIdentityProvider(
        CONFIG, transport=_transport(lambda _req: httpx.Response(200, text="<html>oops</html>"))
    )
    with pytest.raises(DecodeError):
        await adapter.exchange_credential("code")


@pytest.mark.asyncio
async def test_http_error_status_without_errcode_is_remote_error() -> None:
    adapter = WeChatIdentityProvider(CONFIG, transport=_transport(lambda _req: httpx.Response(503, text="busy")))
    with pytest.raises(RemoteError) as exc_info:
        await adapter.exchange_credential("code")
    assert exc_info.value.code == 503


@pytest.mark.asyncio
async def test_scan_ticket_login_flow() -> None:
    cache = ScanTicketCache(ttl_seconds=60)
    cache.create("abc123")
    adapter = WeChatIdentityProvider(CONFIG, transport=_transport(_no_network), scan_tickets=cache)

    credential = await adapter.exchange_credential("wechat_oa:abc123")
    assert credential.extra == ScanTicketExtra(ticket_id="abc123")
    assert credential.token_type == "WeChatScanTicket"

    # 尚未扫码
    with pytest.raises(NotScannedOrUnknown):
        await adapter.fetch_identity(credential)

    assert cache.mark_scanned("abc123", "oScanUser") is True
    identity = await adapter.fetch_identity(credential)
    assert identity.id == "oScanUser"
    assert identity.username == "wx_user_oScanUser"

    with pytest.raises(NotScannedOrUnknown):
        await adapter.fetch_identity(credential)


@pytest.mark.asyncio
async def test_scan_ticket_without_cache_is_rejected() -> None:
    adapter = WeChatIdentityProvider(CONFIG, transport=_transport(_no_network))
    credential = await adapter.exchange_credential("wechat_oa:abc123")

    with pytest.raises(InvalidCredentialError):
        await adapter.fetch_identity(credential)


@pytest.mark.asyncio
async def test_foreign_credential_extra_is_rejected() -> None:
    adapter = WeChatIdentityProvider(CONFIG, transport=_transport(_no_network))
    with pytest.raises(InvalidCredentialError):
        await adapter.fetch_identity(Credential(access_token="AT"))


@pytest.mark.asyncio
async def test_create_scan_session_registers_ticket() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/cgi-bin/token":
            assert _query(request)["grant_type"] == "client_credential"
            return httpx.Response(200, json={"access_token": "OA_TOKEN", "expires_in": 7200})
        assert request.url.path == "/cgi-bin/qrcode/create"
        assert _query(request) == {"access_token": "OA_TOKEN"}
        return httpx.Response(
            200,
            json={"ticket": "gQH47jo", "expire_seconds": 1800, "url": "http://weixin.qq.com/q/abc"},
        )

    cache = ScanTicketCache(ttl_seconds=60)
    adapter = WeChatIdentityProvider(CONFIG, transport=_transport(handler), scan_tickets=cache)

    session = await adapter.create_scan_session("login")

    assert session.ticket == "gQH47jo"
    assert session.expire_seconds == 1800
    assert session.artifact == "wechat_oa:gQH47jo"
    assert cache.mark_scanned("gQH47jo", "oUser") is True


@pytest.mark.asyncio
async def test_miniprogram_session_exchange() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/sns/jscode2session"
        assert _query(request)["js_code"] == "js123"
        return httpx.Response(200, json={"openid": "oMini", "session_key": "SK", "unionid": "uUnion"})

    adapter = WeChatMiniProgramIdentityProvider(
        ProviderConfig(kind="WeChatMiniProgram", client_id="wxmini", client_secret="s"),
        transport=_transport(handler),
    )
    credential = await adapter.exchange_credential("js123")
    adapter.set_transport(_transport(_no_network))
    identity = await adapter.fetch_identity(credential)

    assert credential.access_token == "SK"
    assert identity.id == "uUnion"
    assert identity.extra == {"wechat_openid": "oMini"}


@pytest.mark.asyncio
async def test_miniprogram_invalid_code() -> None:
    adapter = WeChatMiniProgramIdentityProvider(
        ProviderConfig(kind="WeChatMiniProgram", client_id="wxmini", client_secret="s"),
        transport=_transport(lambda _req: httpx.Response(200, json={"errcode": 40029, "errmsg": "invalid code"})),
    )
    with pytest.raises(RemoteError) as exc_info:
        await adapter.exchange_credential("bad")
    assert exc_info.value == RemoteError(40029, "invalid code")
