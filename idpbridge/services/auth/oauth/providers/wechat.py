from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from idpbridge.clients.http_client import HTTPTransport
from idpbridge.config import config as settings
from idpbridge.core.exceptions import DecodeError, InvalidCredentialError
from idpbridge.core.logger import logger
from idpbridge.services.auth.oauth.base import IdentityProviderBase, pick_subject_id
from idpbridge.services.auth.oauth.models import (
    Credential,
    Identity,
    ProviderConfig,
    ScanTicketExtra,
    WeChatExtra,
)
from idpbridge.services.auth.oauth.scan_login import (
    ScanTicketCache,
    build_scan_artifact,
    parse_scan_artifact,
)

SCAN_TICKET_TOKEN_TYPE = "WeChatScanTicket"
SCAN_USERNAME_PREFIX = "wx_user_"


def build_wechat_openid_key(app_id: str) -> str:
    """同一用户在不同 AppId 下的 openid 不同，按 AppId 区分存放"""
    return f"wechat_openid_{app_id}"


@dataclass(frozen=True)
class ScanSession:
    """公众号扫码会话：ticket 交给前端轮询，url 用于渲染二维码"""

    ticket: str
    url: str
    expire_seconds: int

    @property
    def artifact(self) -> str:
        return build_scan_artifact(self.ticket)


class WeChatIdentityProvider(IdentityProviderBase):
    """
    微信开放平台网页登录 + 公众号扫码登录。

    - 授权码：查询串 GET 换 access_token，再拉取 sns/userinfo
    - 扫码票据（artifact 带 wechat_oa: 前缀）：不访问 token 接口，
      fetch_identity 时从 ScanTicketCache 读取并消费公众号回调确认的用户

    token 接口出错时仍返回 HTTP 200，例如：
    {"errcode":40163,"errmsg":"code been used, rid: 6206378a-793424c0-2e4091cc"}

    参考：https://developers.weixin.qq.com/doc/oplatform/Website_App/WeChat_Login/Wechat_Login.html
    """

    provider_type = "WeChat"
    display_name = "微信"
    accepts_scan_tickets = True

    default_endpoints = {
        "token": "https://api.weixin.qq.com/sns/oauth2/access_token",
        "userinfo": "https://api.weixin.qq.com/sns/userinfo",
        "oa_token": "https://api.weixin.qq.com/cgi-bin/token",
        "qrcode": "https://api.weixin.qq.com/cgi-bin/qrcode/create",
    }

    def __init__(
        self,
        config: ProviderConfig,
        *,
        transport: Optional[HTTPTransport] = None,
        scan_tickets: Optional[ScanTicketCache] = None,
    ):
        super().__init__(config, transport=transport)
        self.scan_tickets = scan_tickets

    async def exchange_credential(self, artifact: str) -> Credential:
        ticket_id = parse_scan_artifact(artifact)
        if ticket_id is not None:
            return Credential(
                access_token=artifact,
                token_type=SCAN_TICKET_TOKEN_TYPE,
                extra=ScanTicketExtra(ticket_id=ticket_id),
            )

        data = await self._get_json(
            self.endpoint("token"),
            {
                "grant_type": "authorization_code",
                "appid": self.config.client_id,
                "secret": self.config.client_secret,
                "code": artifact,
            },
        )
        access_token = self._require_str(data, "access_token", provider_type=self.provider_type)
        openid = self._require_str(data, "openid", provider_type=self.provider_type)

        return Credential(
            access_token=access_token,
            token_type="WeChatAccessToken",
            refresh_token=data.get("refresh_token") or None,
            expiry=self._compute_expiry(data.get("expires_in")),
            extra=WeChatExtra(openid=openid, unionid=data.get("unionid") or None),
            raw=data,
        )

    async def fetch_identity(self, credential: Credential) -> Identity:
        extra = credential.extra
        if isinstance(extra, ScanTicketExtra):
            return self._consume_scan_ticket(extra.ticket_id)
        if not isinstance(extra, WeChatExtra):
            raise InvalidCredentialError("WeChat credential 缺少 openid")

        data = await self._get_json(
            self.endpoint("userinfo"),
            {"access_token": credential.access_token, "openid": extra.openid},
        )
        openid = str(data.get("openid") or extra.openid)
        unionid = data.get("unionid") or extra.unionid or None
        nickname = str(data.get("nickname") or "")

        return Identity(
            id=pick_subject_id(unionid, openid),
            username=nickname,
            display_name=nickname,
            union_id=unionid,
            avatar_url=data.get("headimgurl") or None,
            extra={
                "wechat_openid": openid,
                build_wechat_openid_key(self.config.client_id): openid,
            },
        )

    def _consume_scan_ticket(self, ticket_id: str) -> Identity:
        if self.scan_tickets is None:
            raise InvalidCredentialError("未配置扫码票据缓存，无法处理扫码登录")
        subject_id = self.scan_tickets.read_and_consume(ticket_id)
        username = f"{SCAN_USERNAME_PREFIX}{subject_id}"
        return Identity(id=subject_id, username=username, display_name=username)

    # ------------------------------------------------------------------
    # 公众号扫码会话
    # ------------------------------------------------------------------

    async def get_official_account_access_token(self) -> str:
        data = await self._get_json(
            self.endpoint("oa_token"),
            {
                "grant_type": "client_credential",
                "appid": self.config.client_id,
                "secret": self.config.client_secret,
            },
        )
        return self._require_str(data, "access_token", provider_type=self.provider_type)

    async def create_scan_session(self, scene: str) -> ScanSession:
        """
        创建带场景值的临时二维码，并把 ticket 登记到缓存。

        二维码图片渲染由调用方负责（url 即二维码内容）。
        """
        if self.scan_tickets is None:
            raise InvalidCredentialError("未配置扫码票据缓存，无法创建扫码会话")

        access_token = await self.get_official_account_access_token()
        expire_seconds = settings.wechat_qr_expire_seconds
        data: dict[str, Any] = await self._post_json(
            f"{self.endpoint('qrcode')}?access_token={access_token}",
            {
                "expire_seconds": expire_seconds,
                "action_name": "QR_STR_SCENE",
                "action_info": {"scene": {"scene_str": scene}},
            },
        )
        ticket = data.get("ticket")
        url = data.get("url")
        if not ticket or not url:
            raise DecodeError("WeChat 二维码响应缺少 ticket/url")

        self.scan_tickets.create(str(ticket))
        logger.info("公众号扫码会话已创建: scene={}", scene)
        return ScanSession(
            ticket=str(ticket),
            url=str(url),
            expire_seconds=int(data.get("expire_seconds") or expire_seconds),
        )
