from __future__ import annotations

from idpbridge.core.exceptions import DecodeError, InvalidCredentialError, RemoteError
from idpbridge.services.auth.oauth.base import IdentityProviderBase, merge_identity_fields, pick_subject_id
from idpbridge.services.auth.oauth.models import AuthCodeExtra, Credential, Identity


class WeComIdentityProvider(IdentityProviderBase):
    """
    企业微信第三方应用（服务商）扫码登录。

    token 为服务商凭证 provider_access_token，与授权码无关；授权码随 Credential 传到
    fetch_identity，由 get_login_info 换取登录用户。
    open_userid 在同一服务商的多个应用间一致，优先作为用户标识。
    """

    provider_type = "WeCom"
    display_name = "企业微信（第三方应用）"

    default_endpoints = {
        "token": "https://qyapi.weixin.qq.com/cgi-bin/service/get_provider_token",
        "login_info": "https://qyapi.weixin.qq.com/cgi-bin/service/get_login_info",
    }

    async def exchange_credential(self, artifact: str) -> Credential:
        data = await self._post_json(
            self.endpoint("token"),
            {"corpid": self.config.client_id, "provider_secret": self.config.client_secret},
        )
        access_token = self._require_str(data, "provider_access_token", provider_type=self.provider_type)
        return Credential(
            access_token=access_token,
            token_type="WeComProviderToken",
            expiry=self._compute_expiry(data.get("expires_in")),
            extra=AuthCodeExtra(code=artifact),
        )

    async def fetch_identity(self, credential: Credential) -> Identity:
        extra = credential.extra
        if not isinstance(extra, AuthCodeExtra):
            raise InvalidCredentialError("WeCom credential 缺少登录授权码")

        data = await self._post_json(
            f"{self.endpoint('login_info')}?access_token={credential.access_token}",
            {"auth_code": extra.code},
        )
        user = data.get("user_info")
        if not isinstance(user, dict):
            raise DecodeError("WeCom 登录信息缺少 user_info")

        corp = data.get("corp_info") if isinstance(data.get("corp_info"), dict) else {}
        name = str(user.get("name") or "")
        open_userid = user.get("open_userid") or None
        userid = user.get("userid") or None

        return Identity(
            id=pick_subject_id(open_userid, userid),
            username=name,
            display_name=name,
            union_id=open_userid,
            avatar_url=user.get("avatar") or None,
            extra={
                "wecom_userid": str(userid or ""),
                "wecom_corpid": str(corp.get("corpid") or ""),
            },
        )


class WeComInternalIdentityProvider(IdentityProviderBase):
    """
    企业微信自建应用登录。

    1. gettoken：corpid + corpsecret 获取应用 access_token（授权码随 Credential 保存）
    2. getuserinfo：授权码换 UserId；返回 OpenId 说明不是企业成员
    3. user/get：按 UserId 拉取成员详情，非空字段覆盖上一步结果
    """

    provider_type = "WeComInternal"
    display_name = "企业微信（自建应用）"

    default_endpoints = {
        "token": "https://qyapi.weixin.qq.com/cgi-bin/gettoken",
        "userid": "https://qyapi.weixin.qq.com/cgi-bin/user/getuserinfo",
        "user_detail": "https://qyapi.weixin.qq.com/cgi-bin/user/get",
    }

    async def exchange_credential(self, artifact: str) -> Credential:
        data = await self._get_json(
            self.endpoint("token"),
            {"corpid": self.config.client_id, "corpsecret": self.config.client_secret},
        )
        access_token = self._require_str(data, "access_token", provider_type=self.provider_type)
        return Credential(
            access_token=access_token,
            token_type="WeComAccessToken",
            expiry=self._compute_expiry(data.get("expires_in")),
            extra=AuthCodeExtra(code=artifact),
        )

    async def fetch_identity(self, credential: Credential) -> Identity:
        extra = credential.extra
        if not isinstance(extra, AuthCodeExtra):
            raise InvalidCredentialError("WeComInternal credential 缺少授权码")

        user_resp = await self._get_json(
            self.endpoint("userid"),
            {"access_token": credential.access_token, "code": extra.code},
        )
        if user_resp.get("OpenId") or user_resp.get("openid"):
            raise RemoteError("not_internal_user", "非企业成员，无法登录企业自建应用")
        user_id = self._require_str(user_resp, "UserId", provider_type=self.provider_type)

        info = await self._get_json(
            self.endpoint("user_detail"),
            {"access_token": credential.access_token, "userid": user_id},
        )
        fields = merge_identity_fields(
            {"id": user_id, "name": ""},
            {"id": info.get("userid"), "name": info.get("name")},
        )
        name = str(fields["name"])

        return Identity(
            id=str(fields["id"] or name),
            username=name,
            display_name=name,
            email=info.get("email") or info.get("biz_mail") or None,
            phone=info.get("mobile") or None,
            avatar_url=info.get("avatar") or None,
            extra={"wecom_open_userid": str(info.get("open_userid") or "")},
        )
