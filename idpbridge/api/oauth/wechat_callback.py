"""公众号扫码回调端点（微信服务器推送，无需登录）。"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, status
from starlette.responses import PlainTextResponse

from idpbridge.core.exceptions import CallbackSignatureError
from idpbridge.core.logger import logger
from idpbridge.services.auth.oauth.scan_login import ScanTicketCache, ensure_callback_signature

# 首次关注并扫码为 subscribe，已关注用户扫码为 SCAN
SCAN_EVENTS = frozenset({"SCAN", "subscribe"})


def parse_scan_event(body: bytes) -> dict[str, str]:
    """
    解析公众号推送的 XML 消息为扁平字典。

    <xml>
      <ToUserName><![CDATA[gh_xxx]]></ToUserName>
      <FromUserName><![CDATA[oXXXX]]></FromUserName>
      <MsgType><![CDATA[event]]></MsgType>
      <Event><![CDATA[SCAN]]></Event>
      <EventKey><![CDATA[login]]></EventKey>
      <Ticket><![CDATA[gQH47joAAAAAAAAAASxodHRw...]]></Ticket>
    </xml>
    """
    root = ET.fromstring(body)
    return {child.tag: (child.text or "").strip() for child in root}


def create_wechat_callback_router(cache: ScanTicketCache, shared_secret: str) -> APIRouter:
    """构造绑定到指定票据缓存的回调路由（每个公众号配置一个）"""

    router = APIRouter(prefix="/api/oauth/wechat", tags=["OAuth"])

    def _verify(timestamp: str, nonce: str, signature: str) -> None:
        try:
            ensure_callback_signature(shared_secret, timestamp, nonce, signature)
        except CallbackSignatureError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.error_code) from exc

    @router.get("/callback", response_class=PlainTextResponse)
    async def wechat_callback_verify(
        signature: str = Query(""),
        timestamp: str = Query(""),
        nonce: str = Query(""),
        echostr: str = Query(""),
    ) -> str:
        """公众号后台配置服务器地址时的接入校验：签名正确时原样返回 echostr。"""
        _verify(timestamp, nonce, signature)
        return echostr

    @router.post("/callback", response_class=PlainTextResponse)
    async def wechat_callback_event(
        request: Request,
        signature: str = Query(""),
        timestamp: str = Query(""),
        nonce: str = Query(""),
        openid: Optional[str] = Query(None),
    ) -> str:
        """
        扫码事件推送。

        先校验签名，再确认票据；签名不匹配时不修改缓存。
        非扫码事件、票据已失效等情况同样回复 success，避免微信服务器重试。
        """
        _verify(timestamp, nonce, signature)

        try:
            message = parse_scan_event(await request.body())
        except ET.ParseError as exc:
            logger.warning("公众号回调消息解析失败: {}", exc)
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_xml") from exc

        event = message.get("Event", "")
        ticket = message.get("Ticket", "")
        subject_id = message.get("FromUserName") or openid or ""
        if event in SCAN_EVENTS and ticket:
            cache.mark_scanned(ticket, subject_id)
        else:
            logger.debug("忽略公众号推送: MsgType={} Event={}", message.get("MsgType"), event)
        return "success"

    return router
