import json

import httpx
import pytest

from idpbridge.clients.http_client import HTTPTransport
from idpbridge.core.exceptions import DecodeError, RemoteError
from idpbridge.services.auth.oauth.models import Credential, ProviderConfig
from idpbridge.services.auth.oauth.providers.dingtalk import DingTalkIdentityProvider

CONFIG = ProviderConfig(kind="DingTalk", client_id="ding_app", client_secret="ding_secret")

PROFILE = {
    "nick": "zhangsan",
    "avatarUrl": "https://static.dingtalk.com/a.png",
    "mobile": "15000000000",
    "openId": "open123",
    "unionId": "union123",
    "email": "zhangsan@example.com",
    "stateCode": "852",
}


def _transport(handler) -> HTTPTransport:
    return HTTPTransport(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def _chain_handler(*, detail: dict, calls: list[str]):
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        calls.append(path)
        if path == "/v1.0/contact/users/me":
            assert request.headers["x-acs-dingtalk-access-token"] == "USER_TOKEN"
            return httpx.Response(200, json=PROFILE)
        if path == "/v1.0/oauth2/accessToken":
            assert json.loads(request.content) == {"appKey": "ding_app", "appSecret": "ding_secret"}
            return httpx.Response(200, json={"accessToken": "CORP_TOKEN", "expireIn": 7200})
        if path == "/topapi/user/getbyunionid":
            assert request.url.params["access_token"] == "CORP_TOKEN"
            assert json.loads(request.content) == {"unionid": "union123"}
            return httpx.Response(200, json={"errcode": 0, "errmsg": "ok", "result": {"userid": "u001"}})
        if path == "/topapi/v2/user/get":
            assert json.loads(request.content) == {"userid": "u001"}
            return httpx.Response(200, json={"errcode": 0, "errmsg": "ok", "result": detail})
        raise AssertionError(f"unexpected request: {request.url}")

    return handler


@pytest.mark.asyncio
async def test_exchange_credential_posts_json() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1.0/oauth2/userAccessToken"
        assert request.headers["content-type"].startswith("application/json")
        assert json.loads(request.content) == {
            "clientId": "ding_app",
            "clientSecret": "ding_secret",
            "code": "auth_code",
            "grantType": "authorization_code",
        }
        return httpx.Response(200, json={"accessToken": "USER_TOKEN", "refreshToken": "RT", "expireIn": 7200})

    credential = await DingTalkIdentityProvider(CONFIG, transport=_transport(handler)).exchange_credential(
        "auth_code"
    )
    assert credential.access_token == "USER_TOKEN"
    assert credential.refresh_token == "RT"


@pytest.mark.asyncio
async def test_v1_error_body_is_remote_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"code": "InvalidAuthentication", "message": "不合法的临时授权码"})

    adapter = DingTalkIdentityProvider(CONFIG, transport=_transport(handler))
    with pytest.raises(RemoteError) as exc_info:
        await adapter.exchange_credential("bad")
    assert exc_info.value == RemoteError("InvalidAuthentication", "不合法的临时授权码")


@pytest.mark.asyncio
async def test_identity_chain_merges_directory_fields() -> None:
    calls: list[str] = []
    detail = {"userid": "u001", "mobile": "13900000000", "email": "", "org_email": "zs@corp.com", "job_number": "E001"}
    adapter = DingTalkIdentityProvider(CONFIG, transport=_transport(_chain_handler(detail=detail, calls=calls)))

    identity = await adapter.fetch_identity(Credential(access_token="USER_TOKEN"))

    assert calls == [
        "/v1.0/contact/users/me",
        "/v1.0/oauth2/accessToken",
        "/topapi/user/getbyunionid",
        "/topapi/v2/user/get",
    ]
    assert identity.id == "union123"
    assert identity.union_id == "union123"
    assert identity.phone == "13900000000"
    assert identity.email == "zs@corp.com"
    assert identity.username == "E001"
    assert identity.display_name == "zhangsan"
    assert identity.country_code == "HK"
    assert identity.extra["dingtalk_userid"] == "u001"


@pytest.mark.asyncio
async def test_empty_directory_fields_keep_public_profile() -> None:
    adapter = DingTalkIdentityProvider(
        CONFIG, transport=_transport(_chain_handler(detail={"userid": "u001"}, calls=[]))
    )
    identity = await adapter.fetch_identity(Credential(access_token="USER_TOKEN"))

    assert identity.phone == "15000000000"
    assert identity.email == "zhangsan@example.com"
    assert identity.username == "zhangsan"


@pytest.mark.asyncio
async def test_non_member_is_reported() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/v1.0/contact/users/me":
            return httpx.Response(200, json=PROFILE)
        if path == "/v1.0/oauth2/accessToken":
            return httpx.Response(200, json={"accessToken": "CORP_TOKEN"})
        assert path == "/topapi/user/getbyunionid"
        return httpx.Response(200, json={"errcode": 60121, "errmsg": "找不到该用户"})

    adapter = DingTalkIdentityProvider(CONFIG, transport=_transport(handler))
    with pytest.raises(RemoteError) as exc_info:
        await adapter.fetch_identity(Credential(access_token="USER_TOKEN"))

    assert exc_info.value.code == 60121
    assert "不属于该企业" in exc_info.value.message


@pytest.mark.asyncio
async def test_profile_without_union_id_is_decode_error() -> None:
    adapter = DingTalkIdentityProvider(
        CONFIG, transport=_transport(lambda _req: httpx.Response(200, json={"nick": "x", "openId": "o"}))
    )
    with pytest.raises(DecodeError):
        await adapter.fetch_identity(Credential(access_token="USER_TOKEN"))


@pytest.mark.asyncio
async def test_directory_detail_failure_keeps_public_profile() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/v1.0/contact/users/me":
            return httpx.Response(200, json=PROFILE)
        if path == "/v1.0/oauth2/accessToken":
            return httpx.Response(200, json={"accessToken": "CORP_TOKEN"})
        if path == "/topapi/user/getbyunionid":
            return httpx.Response(200, json={"errcode": 0, "errmsg": "ok", "result": {"userid": "u001"}})
        assert path == "/topapi/v2/user/get"
        return httpx.Response(200, json={"errcode": 60011, "errmsg": "no privilege to access/modify contact/party/label"})

    adapter = DingTalkIdentityProvider(CONFIG, transport=_transport(handler))
    identity = await adapter.fetch_identity(Credential(access_token="USER_TOKEN"))

    assert identity.id == "union123"
    assert identity.phone == "15000000000"
    assert identity.email == "zhangsan@example.com"
    assert identity.username == "zhangsan"
    assert identity.extra["dingtalk_userid"] == "u001"


@pytest.mark.asyncio
async def test_corp_token_failure_still_propagates() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1.0/contact/users/me":
            return httpx.Response(200, json=PROFILE)
        return httpx.Response(400, json={"code": "InvalidAppKey", "message": "appKey 不存在"})

    adapter = DingTalkIdentityProvider(CONFIG, transport=_transport(handler))
    with pytest.raises(RemoteError) as exc_info:
        await adapter.fetch_identity(Credential(access_token="USER_TOKEN"))
    assert exc_info.value.code == "InvalidAppKey"
