from __future__ import annotations

from typing import Any, Mapping

from idpbridge.core.exceptions import DecodeError
from idpbridge.services.auth.oauth.base import IdentityProviderBase, check_errcode
from idpbridge.services.auth.oauth.models import Credential, Identity


class BilibiliIdentityProvider(IdentityProviderBase):
    """
    哔哩哔哩开放平台登录。

    响应格式：{"code": 0, "message": "0", "ttl": 1, "data": {...}}，code 非 0 即失败。
    """

    provider_type = "Bilibili"
    display_name = "哔哩哔哩"

    default_endpoints = {
        "token": "https://api.bilibili.com/x/account-oauth2/v1/token",
        "userinfo": "https://member.bilibili.com/arcopen/fn/user/account/info",
    }

    def _raise_for_remote_error(self, data: Mapping[str, Any]) -> None:
        check_errcode(data, code_key="code", message_key="message", provider_type=self.provider_type)

    @staticmethod
    def _payload(data: Mapping[str, Any]) -> dict[str, Any]:
        inner = data.get("data")
        if not isinstance(inner, dict):
            raise DecodeError("Bilibili 响应缺少 data")
        return inner

    async def exchange_credential(self, artifact: str) -> Credential:
        data = self._payload(
            await self._post_json(
                self.endpoint("token"),
                {
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                    "grant_type": "authorization_code",
                    "code": artifact,
                },
            )
        )
        return Credential(
            access_token=self._require_str(data, "access_token", provider_type=self.provider_type),
            token_type="BilibiliAccessToken",
            refresh_token=data.get("refresh_token") or None,
            expiry=self._compute_expiry(data.get("expires_in")),
        )

    async def fetch_identity(self, credential: Credential) -> Identity:
        data = self._payload(
            await self._get_json(
                self.endpoint("userinfo"),
                {"client_id": self.config.client_id, "access_token": credential.access_token},
            )
        )
        name = str(data.get("name") or "")
        return Identity(
            id=self._require_str(data, "openid", provider_type=self.provider_type),
            username=name,
            display_name=name,
            avatar_url=data.get("face") or None,
        )
