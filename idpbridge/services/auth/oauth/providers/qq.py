from __future__ import annotations

import json
import re
from typing import Any, Mapping, Optional
from urllib.parse import parse_qs, urlencode

from idpbridge.core.exceptions import DecodeError, RemoteError
from idpbridge.core.logger import logger
from idpbridge.services.auth.oauth.base import IdentityProviderBase, check_errcode, pick_subject_id
from idpbridge.services.auth.oauth.models import Credential, Identity

_JSONP_RE = re.compile(r"callback\(\s*(\{.*?\})\s*\);?", re.DOTALL)


def _parse_jsonp(text: str) -> Optional[dict[str, Any]]:
    """QQ 互联的老接口返回 callback( {...} ); 形式"""
    match = _JSONP_RE.search(text)
    if not match:
        return None
    try:
        data = json.loads(match.group(1))
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _raise_for_jsonp_error(data: Mapping[str, Any]) -> None:
    check_errcode(data, code_key="error", message_key="error_description", provider_type="QQ")


class QQIdentityProvider(IdentityProviderBase):
    """
    QQ 互联登录。

    - token：查询串 GET，成功时返回 access_token=...&expires_in=...（非 JSON），
      失败时返回 callback( {"error":100019,"error_description":"..."} );
    - openid：oauth2.0/me 同样是 JSONP
    - 用户信息：get_user_info，ret 非 0 表示失败

    参考：https://wiki.connect.qq.com/
    """

    provider_type = "QQ"
    display_name = "QQ"

    default_endpoints = {
        "token": "https://graph.qq.com/oauth2.0/token",
        "me": "https://graph.qq.com/oauth2.0/me",
        "userinfo": "https://graph.qq.com/user/get_user_info",
    }

    async def exchange_credential(self, artifact: str) -> Credential:
        params = {
            "grant_type": "authorization_code",
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "code": artifact,
            "redirect_uri": self.config.redirect_url,
        }
        resp = await self.transport.get(f"{self.endpoint('token')}?{urlencode(params)}")
        text = resp.text

        error = _parse_jsonp(text)
        if error is not None:
            _raise_for_jsonp_error(error)

        values = {k: v[0] for k, v in parse_qs(text.strip()).items()}
        access_token = values.get("access_token")
        if not access_token:
            if resp.status_code >= 400:
                raise RemoteError(resp.status_code, f"HTTP {resp.status_code}")
            raise DecodeError("QQ token 响应缺少 access_token")

        return Credential(
            access_token=access_token,
            token_type="Bearer",
            refresh_token=values.get("refresh_token") or None,
            expiry=self._compute_expiry(values.get("expires_in")),
        )

    async def _fetch_openid(self, access_token: str) -> tuple[str, Optional[str]]:
        # unionid=1：已打通开放平台的应用会额外返回 unionid
        resp = await self.transport.get(
            f"{self.endpoint('me')}?{urlencode({'access_token': access_token, 'unionid': '1'})}"
        )
        data = _parse_jsonp(resp.text)
        if data is None:
            raise DecodeError("QQ openid 响应无法解析")
        _raise_for_jsonp_error(data)

        openid = data.get("openid")
        if not openid:
            raise DecodeError("QQ openid 为空")
        return str(openid), (str(data["unionid"]) if data.get("unionid") else None)

    async def fetch_identity(self, credential: Credential) -> Identity:
        openid, unionid = await self._fetch_openid(credential.access_token)

        data = await self._get_json(
            self.endpoint("userinfo"),
            {
                "access_token": credential.access_token,
                "oauth_consumer_key": self.config.client_id,
                "openid": openid,
            },
        )
        nickname = str(data.get("nickname") or "")
        logger.debug("QQ 用户信息获取成功: openid={}", openid)

        return Identity(
            id=pick_subject_id(unionid, openid),
            username=nickname,
            display_name=nickname,
            union_id=unionid,
            avatar_url=data.get("figureurl_qq_1") or data.get("figureurl_qq") or None,
            extra={"qq_openid": openid},
        )

    def _raise_for_remote_error(self, data: Mapping[str, Any]) -> None:
        check_errcode(data, code_key="ret", message_key="msg", provider_type=self.provider_type)
