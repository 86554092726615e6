from __future__ import annotations

from typing import Any, Mapping

from idpbridge.core.country_codes import calling_code_to_iso
from idpbridge.core.exceptions import DecodeError, RemoteError
from idpbridge.core.logger import logger
from idpbridge.services.auth.oauth.base import (
    IdentityProviderBase,
    check_errcode,
    merge_identity_fields,
    pick_subject_id,
)
from idpbridge.services.auth.oauth.models import Credential, Identity

# 用户不属于应用所在企业
ERRCODE_NOT_ORG_MEMBER = 60121


class DingTalkIdentityProvider(IdentityProviderBase):
    """
    钉钉扫码登录。

    fetch_identity 是一条依赖链（必须顺序执行）：
    1. contact/users/me 获取公开资料（unionId、openId、手机号、国家码）
    2. 用应用 appKey/appSecret 获取企业内部应用 access_token
    3. 通过 unionId 查询企业内 userid
    4. 查询企业通讯录详情（手机号、企业邮箱、工号），非空时覆盖公开资料；失败时忽略

    新版接口（api.dingtalk.com）错误格式：{"code": "InvalidAuthentication", "message": "..."}
    旧版接口（oapi.dingtalk.com）错误格式：{"errcode": 60121, "errmsg": "..."}

    公开资料示例：
    {
        "nick": "zhangsan",
        "avatarUrl": "https://xxx",
        "mobile": "150xxxx9144",
        "openId": "123",
        "unionId": "z21HjQliSzpw0Yxxxx",
        "email": "zhangsan@alibaba-inc.com",
        "stateCode": "86"
    }
    """

    provider_type = "DingTalk"
    display_name = "钉钉"

    default_endpoints = {
        "token": "https://api.dingtalk.com/v1.0/oauth2/userAccessToken",
        "userinfo": "https://api.dingtalk.com/v1.0/contact/users/me",
        "app_token": "https://api.dingtalk.com/v1.0/oauth2/accessToken",
        "userid_by_unionid": "https://oapi.dingtalk.com/topapi/user/getbyunionid",
        "user_detail": "https://oapi.dingtalk.com/topapi/v2/user/get",
    }

    def _raise_for_remote_error(self, data: Mapping[str, Any]) -> None:
        if "errcode" in data:
            check_errcode(data, provider_type=self.provider_type)
            return
        if data.get("code") and "message" in data:
            logger.warning("DingTalk 返回业务错误: code={} message={}", data["code"], data["message"])
            raise RemoteError(str(data["code"]), str(data.get("message") or ""))

    async def exchange_credential(self, artifact: str) -> Credential:
        data = await self._post_json(
            self.endpoint("token"),
            {
                "clientId": self.config.client_id,
                "clientSecret": self.config.client_secret,
                "code": artifact,
                "grantType": "authorization_code",
            },
        )
        access_token = self._require_str(data, "accessToken", provider_type=self.provider_type)
        return Credential(
            access_token=access_token,
            token_type="DingTalkAccessToken",
            refresh_token=data.get("refreshToken") or None,
            expiry=self._compute_expiry(data.get("expireIn")),
            raw=data,
        )

    async def fetch_identity(self, credential: Credential) -> Identity:
        profile = await self._get_json(
            self.endpoint("userinfo"),
            headers={"x-acs-dingtalk-access-token": credential.access_token},
        )
        union_id = profile.get("unionId") or None
        open_id = profile.get("openId") or None
        if not union_id:
            raise DecodeError("DingTalk 用户资料缺少 unionId")

        nick = str(profile.get("nick") or "")
        fields: dict[str, Any] = {
            "username": nick,
            "email": profile.get("email") or None,
            "phone": profile.get("mobile") or None,
        }

        corp_token = await self._get_app_access_token()
        user_id = await self._get_user_id(union_id, corp_token)
        try:
            detail = await self._get_user_detail(user_id, corp_token)
        except RemoteError as exc:
            # 通讯录详情只做补充，失败时沿用公开资料
            logger.warning("DingTalk 用户详情获取失败，忽略: code={} message={}", exc.code, exc.message)
            detail = {}
        fields = merge_identity_fields(
            fields,
            {
                "phone": detail.get("mobile"),
                "email": detail.get("email") or detail.get("org_email"),
                "username": detail.get("job_number"),
            },
        )

        return Identity(
            id=pick_subject_id(union_id, open_id),
            username=fields["username"],
            display_name=nick,
            union_id=union_id,
            email=fields["email"],
            phone=fields["phone"],
            country_code=calling_code_to_iso(profile.get("stateCode")),
            avatar_url=profile.get("avatarUrl") or None,
            extra={"dingtalk_userid": user_id, "dingtalk_openid": str(open_id or "")},
        )

    async def _get_app_access_token(self) -> str:
        data = await self._post_json(
            self.endpoint("app_token"),
            {"appKey": self.config.client_id, "appSecret": self.config.client_secret},
        )
        return self._require_str(data, "accessToken", provider_type=self.provider_type)

    async def _get_user_id(self, union_id: str, corp_token: str) -> str:
        try:
            data = await self._post_json(
                f"{self.endpoint('userid_by_unionid')}?access_token={corp_token}",
                {"unionid": union_id},
            )
        except RemoteError as exc:
            if exc.code == ERRCODE_NOT_ORG_MEMBER:
                raise RemoteError(
                    ERRCODE_NOT_ORG_MEMBER, "该应用只允许本企业内部用户登录，您不属于该企业，无法登录"
                ) from exc
            raise

        result = data.get("result")
        if not isinstance(result, dict) or not result.get("userid"):
            raise DecodeError("DingTalk getbyunionid 响应缺少 userid")
        return str(result["userid"])

    async def _get_user_detail(self, user_id: str, corp_token: str) -> dict[str, Any]:
        # https://open.dingtalk.com/document/isvapp/query-user-details
        data = await self._post_json(
            f"{self.endpoint('user_detail')}?access_token={corp_token}",
            {"userid": user_id},
        )
        result = data.get("result")
        if not isinstance(result, dict):
            raise DecodeError("DingTalk 用户详情响应缺少 result")
        return result
