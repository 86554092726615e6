from __future__ import annotations

from idpbridge.core.exceptions import InvalidCredentialError
from idpbridge.services.auth.oauth.base import IdentityProviderBase, pick_subject_id
from idpbridge.services.auth.oauth.models import Credential, Identity, MiniProgramExtra


class WeChatMiniProgramIdentityProvider(IdentityProviderBase):
    """
    微信小程序登录（wx.login 的 js_code 换 session）。

    jscode2session 已经返回 openid/unionid，fetch_identity 不再访问远端；
    session_key 作为 access_token 保存，仅用于调用方后续解密用户数据。

    参考：https://developers.weixin.qq.com/miniprogram/dev/OpenApiDoc/user-login/code2Session.html
    """

    provider_type = "WeChatMiniProgram"
    display_name = "微信小程序"

    default_endpoints = {
        "session": "https://api.weixin.qq.com/sns/jscode2session",
    }

    async def exchange_credential(self, artifact: str) -> Credential:
        data = await self._get_json(
            self.endpoint("session"),
            {
                "appid": self.config.client_id,
                "secret": self.config.client_secret,
                "js_code": artifact,
                "grant_type": "authorization_code",
            },
        )
        openid = self._require_str(data, "openid", provider_type=self.provider_type)
        return Credential(
            access_token=str(data.get("session_key") or ""),
            token_type="WeChatSessionKey",
            extra=MiniProgramExtra(openid=openid, unionid=data.get("unionid") or None),
            raw=data,
        )

    async def fetch_identity(self, credential: Credential) -> Identity:
        extra = credential.extra
        if not isinstance(extra, MiniProgramExtra):
            raise InvalidCredentialError("WeChatMiniProgram credential 缺少 openid")
        return Identity(
            id=pick_subject_id(extra.unionid, extra.openid),
            username=extra.openid,
            display_name=extra.openid,
            union_id=extra.unionid,
            extra={"wechat_openid": extra.openid},
        )
