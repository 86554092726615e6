from __future__ import annotations

from typing import Any, Mapping

from idpbridge.core.exceptions import RemoteError
from idpbridge.core.logger import logger
from idpbridge.services.auth.oauth.base import IdentityProviderBase
from idpbridge.services.auth.oauth.models import Credential, Identity


class GitHubIdentityProvider(IdentityProviderBase):
    """
    GitHub OAuth App 登录。

    token 接口出错时同样返回 200：
    {"error": "bad_verification_code", "error_description": "The code passed is incorrect or expired."}
    """

    provider_type = "GitHub"
    display_name = "GitHub"

    default_endpoints = {
        "authorize": "https://github.com/login/oauth/authorize",
        "token": "https://github.com/login/oauth/access_token",
        "userinfo": "https://api.github.com/user",
    }

    def _raise_for_remote_error(self, data: Mapping[str, Any]) -> None:
        error = data.get("error")
        if error:
            message = str(data.get("error_description") or "")
            logger.warning("GitHub 返回业务错误: error={} message={}", error, message)
            raise RemoteError(str(error), message)

    async def exchange_credential(self, artifact: str) -> Credential:
        data = await self._post_json(
            self.endpoint("token"),
            {
                "code": artifact,
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "redirect_uri": self.config.redirect_url,
            },
            headers={"Accept": "application/json"},
        )
        return Credential(
            access_token=self._require_str(data, "access_token", provider_type=self.provider_type),
            token_type=str(data.get("token_type") or "bearer"),
            refresh_token=data.get("refresh_token") or None,
            # OAuth App token 默认不过期，只有开启过期的 GitHub App 才返回 expires_in
            expiry=self._compute_expiry(data["expires_in"]) if data.get("expires_in") else None,
            raw=data,
        )

    async def fetch_identity(self, credential: Credential) -> Identity:
        data = await self._get_json(
            self.endpoint("userinfo"),
            headers={
                "Authorization": f"token {credential.access_token}",
                "Accept": "application/vnd.github+json",
            },
        )
        login = str(data.get("login") or "")
        return Identity(
            id=self._require_str(data, "id", provider_type=self.provider_type),
            username=login,
            display_name=str(data.get("name") or login),
            email=str(data["email"]).lower() if data.get("email") else None,
            avatar_url=data.get("avatar_url") or None,
        )
