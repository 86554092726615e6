from __future__ import annotations

from typing import Any, Mapping

from idpbridge.core.exceptions import DecodeError, InvalidCredentialError
from idpbridge.services.auth.oauth.base import IdentityProviderBase, check_errcode, pick_subject_id
from idpbridge.services.auth.oauth.models import Credential, DouyinExtra, Identity


class DouyinIdentityProvider(IdentityProviderBase):
    """
    抖音开放平台登录。

    响应统一包在 data 里，错误码在 data.error_code（字符串或数字，"0" 表示成功）：
    {
      "data": {
        "access_token": "access_token",
        "description": "",
        "error_code": "0",
        "expires_in": "86400",
        "open_id": "aaa-bbb-ccc",
        "refresh_token": "refresh_token",
        "scope": "user_info"
      },
      "message": "success"
    }
    """

    provider_type = "Douyin"
    display_name = "抖音"

    default_endpoints = {
        "authorize": "https://open.douyin.com/platform/oauth/connect",
        "token": "https://open.douyin.com/oauth/access_token/",
        "userinfo": "https://open.douyin.com/oauth/userinfo/",
    }

    def _raise_for_remote_error(self, data: Mapping[str, Any]) -> None:
        inner = data.get("data")
        if isinstance(inner, dict):
            check_errcode(inner, code_key="error_code", message_key="description", provider_type=self.provider_type)

    @staticmethod
    def _payload(data: Mapping[str, Any]) -> dict[str, Any]:
        inner = data.get("data")
        if not isinstance(inner, dict):
            raise DecodeError("Douyin 响应缺少 data")
        return inner

    async def exchange_credential(self, artifact: str) -> Credential:
        data = self._payload(
            await self._post_form(
                self.endpoint("token"),
                {
                    "code": artifact,
                    "grant_type": "authorization_code",
                    "client_key": self.config.client_id,
                    "client_secret": self.config.client_secret,
                },
            )
        )
        access_token = self._require_str(data, "access_token", provider_type=self.provider_type)
        open_id = self._require_str(data, "open_id", provider_type=self.provider_type)
        return Credential(
            access_token=access_token,
            token_type="DouyinAccessToken",
            refresh_token=data.get("refresh_token") or None,
            expiry=self._compute_expiry(data.get("expires_in")),
            extra=DouyinExtra(open_id=open_id),
        )

    async def fetch_identity(self, credential: Credential) -> Identity:
        extra = credential.extra
        if not isinstance(extra, DouyinExtra):
            raise InvalidCredentialError("Douyin credential 缺少 open_id")

        data = self._payload(
            await self._post_form(
                self.endpoint("userinfo"),
                {"access_token": credential.access_token, "open_id": extra.open_id},
                headers={"access-token": credential.access_token},
            )
        )
        open_id = str(data.get("open_id") or extra.open_id)
        union_id = data.get("union_id") or None
        nickname = str(data.get("nickname") or "")

        return Identity(
            id=pick_subject_id(union_id, open_id),
            username=nickname,
            display_name=nickname,
            union_id=union_id,
            avatar_url=data.get("avatar") or None,
            extra={"douyin_open_id": open_id},
        )
