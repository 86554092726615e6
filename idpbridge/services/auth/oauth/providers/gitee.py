from __future__ import annotations

from typing import Any, Mapping

from idpbridge.core.exceptions import RemoteError
from idpbridge.core.logger import logger
from idpbridge.services.auth.oauth.base import IdentityProviderBase
from idpbridge.services.auth.oauth.models import Credential, Identity


class GiteeIdentityProvider(IdentityProviderBase):
    """码云 Gitee 登录"""

    provider_type = "Gitee"
    display_name = "Gitee"

    default_endpoints = {
        "token": "https://gitee.com/oauth/token",
        "userinfo": "https://gitee.com/api/v5/user",
    }

    def _raise_for_remote_error(self, data: Mapping[str, Any]) -> None:
        if data.get("error"):
            message = str(data.get("error_description") or "")
            logger.warning("{} 返回业务错误: error={} message={}", self.provider_type, data["error"], message)
            raise RemoteError(str(data["error"]), message)

    async def exchange_credential(self, artifact: str) -> Credential:
        data = await self._post_form(
            self.endpoint("token"),
            {
                "grant_type": "authorization_code",
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "code": artifact,
                "redirect_uri": self.config.redirect_url,
            },
        )
        return Credential(
            access_token=self._require_str(data, "access_token", provider_type=self.provider_type),
            token_type=str(data.get("token_type") or "bearer"),
            refresh_token=data.get("refresh_token") or None,
            expiry=self._compute_expiry(data.get("expires_in")),
            raw=data,
        )

    async def fetch_identity(self, credential: Credential) -> Identity:
        data = await self._get_json(self.endpoint("userinfo"), {"access_token": credential.access_token})
        login = str(data.get("login") or "")
        return Identity(
            id=self._require_str(data, "id", provider_type=self.provider_type),
            username=login,
            display_name=str(data.get("name") or login),
            email=data.get("email") or None,
            avatar_url=data.get("avatar_url") or None,
        )
