from __future__ import annotations

from typing import Any, Mapping

from idpbridge.core.exceptions import RemoteError
from idpbridge.core.logger import logger
from idpbridge.services.auth.oauth.base import IdentityProviderBase, check_errcode, pick_subject_id
from idpbridge.services.auth.oauth.models import Credential, Identity

PORTRAIT_URL_TEMPLATE = "https://himg.bdimg.com/sys/portrait/item/{}"


class BaiduIdentityProvider(IdentityProviderBase):
    """
    百度账号登录（标准 OAuth2 授权码流程）。

    token 错误：{"error": "invalid_grant", "error_description": "..."}
    用户信息错误：{"error_code": 110, "error_msg": "Access token invalid or no longer valid"}
    """

    provider_type = "Baidu"
    display_name = "百度"

    default_endpoints = {
        "authorize": "https://openapi.baidu.com/oauth/2.0/authorize",
        "token": "https://openapi.baidu.com/oauth/2.0/token",
        "userinfo": "https://openapi.baidu.com/rest/2.0/passport/users/getInfo",
    }

    def _raise_for_remote_error(self, data: Mapping[str, Any]) -> None:
        if data.get("error"):
            message = str(data.get("error_description") or "")
            logger.warning("Baidu 返回业务错误: error={} message={}", data["error"], message)
            raise RemoteError(str(data["error"]), message)
        check_errcode(data, code_key="error_code", message_key="error_msg", provider_type=self.provider_type)

    async def exchange_credential(self, artifact: str) -> Credential:
        data = await self._post_form(
            self.endpoint("token"),
            {
                "grant_type": "authorization_code",
                "code": artifact,
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "redirect_uri": self.config.redirect_url,
            },
        )
        return Credential(
            access_token=self._require_str(data, "access_token", provider_type=self.provider_type),
            token_type="Bearer",
            refresh_token=data.get("refresh_token") or None,
            expiry=self._compute_expiry(data.get("expires_in")),
            raw=data,
        )

    async def fetch_identity(self, credential: Credential) -> Identity:
        data = await self._get_json(self.endpoint("userinfo"), {"access_token": credential.access_token})
        username = str(data.get("username") or "")
        portrait = data.get("portrait")
        return Identity(
            id=pick_subject_id(data.get("unionid"), data.get("openid") or data.get("userid")),
            username=username,
            display_name=username,
            union_id=data.get("unionid") or None,
            avatar_url=PORTRAIT_URL_TEMPLATE.format(portrait) if portrait else None,
        )
