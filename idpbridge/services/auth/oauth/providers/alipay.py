from __future__ import annotations

from datetime import datetime, timedelta, timezone
from functools import cached_property
from typing import Any, Mapping

from idpbridge.core.exceptions import DecodeError, InvalidCredentialError, RemoteError
from idpbridge.core.logger import logger
from idpbridge.services.auth.oauth.base import IdentityProviderBase, pick_subject_id
from idpbridge.services.auth.oauth.models import Credential, Identity
from idpbridge.services.auth.oauth.signing import RequestSigner

# 支付宝网关要求北京时间
_GATEWAY_TZ = timezone(timedelta(hours=8))

ALIPAY_SUCCESS_CODE = "10000"

METHOD_OAUTH_TOKEN = "alipay.system.oauth.token"
METHOD_USER_INFO_SHARE = "alipay.user.info.share"


def _response_key(method: str) -> str:
    return f"{method.replace('.', '_')}_response"


class AlipayIdentityProvider(IdentityProviderBase):
    """
    支付宝开放平台登录。

    所有网关调用都通过 RSA2 签名鉴权（client_secret 为应用私钥，可以是裸 base64）。
    网关返回示例：
    {
        "alipay_system_oauth_token_response": {"access_token": "...", "user_id": "2088...", ...},
        "sign": "..."
    }
    失败时返回 error_response（或业务响应内 code != 10000）：
    {"error_response": {"code": "40002", "msg": "Invalid Arguments", "sub_code": "isv.code-invalid"}}

    参考：https://opendocs.alipay.com/apis/api_9/alipay.system.oauth.token
    """

    provider_type = "Alipay"
    display_name = "支付宝"

    default_endpoints = {
        "authorize": "https://openauth.alipay.com/oauth2/publicAppAuthorize.htm",
        "gateway": "https://openapi.alipay.com/gateway.do",
    }

    @cached_property
    def _signer(self) -> RequestSigner:
        # 延迟解析：工厂构造阶段不触碰密钥材料
        return RequestSigner(self.config.client_secret)

    def _common_params(self, method: str) -> dict[str, str]:
        return {
            "app_id": self.config.client_id,
            "charset": "utf-8",
            "method": method,
            "sign_type": "RSA2",
            "timestamp": datetime.now(_GATEWAY_TZ).strftime("%Y-%m-%d %H:%M:%S"),
            "version": "1.0",
        }

    async def _call_gateway(self, method: str, params: Mapping[str, str]) -> dict[str, Any]:
        payload = self._common_params(method)
        payload.update(params)
        signed = self._signer.sign_params(payload)

        data = await self._post_form(self.endpoint("gateway"), signed)
        body = data.get(_response_key(method))
        if not isinstance(body, dict):
            raise DecodeError(f"Alipay 响应缺少 {_response_key(method)}")
        self._raise_for_remote_error(body)
        return body

    def _raise_for_remote_error(self, data: Mapping[str, Any]) -> None:
        error = data.get("error_response")
        if isinstance(error, dict):
            data = error
        elif "code" not in data:
            return

        code = str(data.get("code") or "")
        if code == ALIPAY_SUCCESS_CODE:
            return
        sub_code = data.get("sub_code")
        message = str(data.get("sub_msg") or data.get("msg") or "")
        logger.warning("Alipay 网关返回业务错误: code={} sub_code={} msg={}", code, sub_code, message)
        raise RemoteError(str(sub_code or code), message)

    async def exchange_credential(self, artifact: str) -> Credential:
        body = await self._call_gateway(
            METHOD_OAUTH_TOKEN,
            {"grant_type": "authorization_code", "code": artifact},
        )
        access_token = self._require_str(body, "access_token", provider_type=self.provider_type)
        return Credential(
            access_token=access_token,
            token_type="AlipayAccessToken",
            refresh_token=body.get("refresh_token") or None,
            expiry=self._compute_expiry(body.get("expires_in")),
            raw=body,
        )

    async def fetch_identity(self, credential: Credential) -> Identity:
        if not credential.access_token:
            raise InvalidCredentialError("Alipay credential 缺少 access_token")

        body = await self._call_gateway(METHOD_USER_INFO_SHARE, {"auth_token": credential.access_token})
        # 新应用只返回 open_id，老应用返回 user_id（2088 开头）
        user_id = body.get("user_id") or None
        open_id = body.get("open_id") or None
        nickname = str(body.get("nick_name") or "")

        extra: dict[str, str] = {}
        if open_id:
            extra["alipay_open_id"] = str(open_id)
        if user_id:
            extra["alipay_user_id"] = str(user_id)

        return Identity(
            id=pick_subject_id(user_id, open_id),
            username=nickname,
            display_name=nickname,
            union_id=user_id,
            avatar_url=body.get("avatar") or None,
            extra=extra,
        )
