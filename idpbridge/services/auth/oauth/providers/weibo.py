from __future__ import annotations

from typing import Any, Mapping, Optional

from idpbridge.core.exceptions import InvalidCredentialError, RemoteError
from idpbridge.core.logger import logger
from idpbridge.services.auth.oauth.base import IdentityProviderBase, check_errcode
from idpbridge.services.auth.oauth.models import Credential, Identity, WeiboExtra


class WeiboIdentityProvider(IdentityProviderBase):
    """
    新浪微博登录。

    token 响应里的 uid 随 Credential 传给 fetch_identity；
    用户资料与邮箱是两个接口，顺序调用。
    错误格式：{"error": "expired_token", "error_code": 21327, "request": "/2/users/show.json"}
    """

    provider_type = "Weibo"
    display_name = "微博"

    default_endpoints = {
        "token": "https://api.weibo.com/oauth2/access_token",
        "userinfo": "https://api.weibo.com/2/users/show.json",
        "email": "https://api.weibo.com/2/account/profile/email.json",
    }

    def _raise_for_remote_error(self, data: Mapping[str, Any]) -> None:
        check_errcode(data, code_key="error_code", message_key="error", provider_type=self.provider_type)

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
        access_token = self._require_str(data, "access_token", provider_type=self.provider_type)
        uid = self._require_str(data, "uid", provider_type=self.provider_type)
        return Credential(
            access_token=access_token,
            token_type="WeiboAccessToken",
            expiry=self._compute_expiry(data.get("expires_in")),
            extra=WeiboExtra(uid=uid),
        )

    async def fetch_identity(self, credential: Credential) -> Identity:
        extra = credential.extra
        if not isinstance(extra, WeiboExtra):
            raise InvalidCredentialError("Weibo credential 缺少 uid")

        profile = await self._get_json(
            self.endpoint("userinfo"),
            {"access_token": credential.access_token, "uid": extra.uid},
        )
        email = await self._fetch_email(credential.access_token)

        name = str(profile.get("name") or profile.get("screen_name") or "")
        return Identity(
            id=str(profile.get("id") or extra.uid),
            username=name,
            display_name=str(profile.get("screen_name") or name),
            email=email,
            avatar_url=profile.get("avatar_large") or profile.get("profile_image_url") or None,
        )

    async def _fetch_email(self, access_token: str) -> Optional[str]:
        # 邮箱接口需要高级权限，未授权时返回 10014，此时只使用公开资料
        try:
            data = await self._get_json(self.endpoint("email"), {"access_token": access_token})
        except RemoteError as exc:
            logger.warning("Weibo 邮箱获取失败，忽略: code={} message={}", exc.code, exc.message)
            return None
        return data.get("email") or None
