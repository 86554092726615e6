"""
扫码登录票据缓存

把"用户扫码并确认"这种异步、由人触发的确认，转换成与其他 provider 一致的
exchange/fetch 调用：

    create(ticket)                  发起扫码会话（CREATED）
    mark_scanned(ticket, subject)   公众号回调确认扫码（SCANNED），仅一次
    read_and_consume(ticket)        轮询方读取并删除（CONSUMED），仅一次成功

票据过期（EXPIRED）采用惰性判断，另有 purge_expired 供调用方定期清理。

并发约束：整个缓存只有一把锁，每个临界区都是常数时间的字典操作，持锁期间不做任何 I/O。
"""

from __future__ import annotations

import hashlib
import hmac
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from idpbridge.config import config
from idpbridge.core.exceptions import CallbackSignatureError, NotScannedOrUnknown
from idpbridge.core.logger import logger

# 扫码票据与授权码共用 artifact 命名空间，用前缀区分
SCAN_TICKET_ARTIFACT_PREFIX = "wechat_oa:"


def build_scan_artifact(ticket_id: str) -> str:
    return f"{SCAN_TICKET_ARTIFACT_PREFIX}{ticket_id}"


def parse_scan_artifact(artifact: str) -> Optional[str]:
    """artifact 是扫码票据时返回 ticket_id，否则返回 None"""
    if artifact.startswith(SCAN_TICKET_ARTIFACT_PREFIX):
        return artifact[len(SCAN_TICKET_ARTIFACT_PREFIX) :]
    return None


@dataclass
class ScanTicket:
    ticket_id: str
    created_at: float
    scanned: bool = False
    claimed_subject_id: str = ""


class ScanTicketCache:
    """进程内扫码票据缓存（显式构造，按引用传给适配器和回调路由）。"""

    def __init__(
        self,
        *,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_seconds = ttl_seconds if ttl_seconds is not None else config.scan_ticket_ttl_seconds
        self._clock = clock
        # 按创建顺序排列，过期条目总在头部
        self._tickets: OrderedDict[str, ScanTicket] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tickets)

    def _expired(self, ticket: ScanTicket, now: float) -> bool:
        return now - ticket.created_at >= self._ttl_seconds

    def create(self, ticket_id: str) -> None:
        if not ticket_id:
            raise ValueError("ticket_id 不能为空")
        now = self._clock()
        with self._lock:
            # 重复创建视为重新开始会话
            self._tickets.pop(ticket_id, None)
            self._tickets[ticket_id] = ScanTicket(ticket_id=ticket_id, created_at=now)
        logger.debug("扫码票据已创建: ticket={}", ticket_id)

    def mark_scanned(self, ticket_id: str, subject_id: str) -> bool:
        """
        记录扫码确认。

        票据不存在、已过期或已被确认过时返回 False，不做任何修改。
        """
        if not subject_id:
            return False
        now = self._clock()
        with self._lock:
            ticket = self._tickets.get(ticket_id)
            if ticket is None:
                marked = False
            elif self._expired(ticket, now):
                del self._tickets[ticket_id]
                marked = False
            elif ticket.scanned:
                marked = False
            else:
                ticket.scanned = True
                ticket.claimed_subject_id = subject_id
                marked = True

        if marked:
            logger.info("扫码票据已确认: ticket={}", ticket_id)
        else:
            logger.warning("扫码确认被忽略（票据不存在/已过期/已确认）: ticket={}", ticket_id)
        return marked

    def read_and_consume(self, ticket_id: str) -> str:
        """
        读取并删除已确认的票据，返回扫码用户标识。

        只有第一个成功的读取者能拿到结果，其余（包括并发竞争者）都会得到 NotScannedOrUnknown。
        """
        now = self._clock()
        with self._lock:
            ticket = self._tickets.get(ticket_id)
            if ticket is not None and self._expired(ticket, now):
                del self._tickets[ticket_id]
                ticket = None
            if ticket is None or not ticket.scanned:
                subject_id = None
            else:
                del self._tickets[ticket_id]
                subject_id = ticket.claimed_subject_id

        if subject_id is None:
            raise NotScannedOrUnknown(ticket_id)
        logger.info("扫码票据已消费: ticket={}", ticket_id)
        return subject_id

    def purge_expired(self) -> int:
        """从头部逐个弹出过期票据，每次只持锁做一次常数时间操作。"""
        removed = 0
        while True:
            now = self._clock()
            with self._lock:
                if not self._tickets:
                    break
                ticket_id, ticket = next(iter(self._tickets.items()))
                if not self._expired(ticket, now):
                    break
                self._tickets.popitem(last=False)
            removed += 1
        if removed:
            logger.debug("已清理过期扫码票据: count={}", removed)
        return removed


def compute_callback_signature(shared_secret: str, timestamp: str, nonce: str) -> str:
    """公众号回调签名：三者字典序排序后拼接，SHA-1 取十六进制"""
    joined = "".join(sorted([shared_secret, timestamp, nonce]))
    return hashlib.sha1(joined.encode("utf-8")).hexdigest()


def verify_callback_signature(shared_secret: str, timestamp: str, nonce: str, signature: str) -> bool:
    expected = compute_callback_signature(shared_secret, timestamp, nonce)
    return hmac.compare_digest(expected.encode("ascii"), (signature or "").lower().encode("utf-8"))


def ensure_callback_signature(shared_secret: str, timestamp: str, nonce: str, signature: str) -> None:
    """签名不匹配时抛出 CallbackSignatureError（必须在 mark_scanned 之前调用）"""
    if not verify_callback_signature(shared_secret, timestamp, nonce, signature):
        logger.warning("扫码回调签名校验失败: timestamp={} nonce={}", timestamp, nonce)
        raise CallbackSignatureError("回调签名不匹配")
