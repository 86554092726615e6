from __future__ import annotations

import json
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, ClassVar, Mapping, Optional, Union
from urllib.parse import urlencode

import httpx

from idpbridge.clients.http_client import HTTPTransport
from idpbridge.config import config as settings
from idpbridge.core.exceptions import DecodeError, RemoteError
from idpbridge.core.logger import logger
from idpbridge.services.auth.oauth.models import Credential, Identity, ProviderConfig

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
JSON_CONTENT_TYPE = "application/json;charset=UTF-8"


def pick_subject_id(union_id: Optional[str], app_scoped_id: Optional[str]) -> str:
    """优先使用跨应用的 union id，没有时回退到应用内 id"""
    return union_id or app_scoped_id or ""


def merge_identity_fields(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """后到的、更具体的数据源（如企业通讯录）在值非空时覆盖先到的通用数据源（如公开资料）"""
    merged = dict(base)
    for key, value in override.items():
        if value not in (None, ""):
            merged[key] = value
    return merged


class IdentityProviderBase(ABC):
    """
    第三方身份提供者基类（稳定扩展点）。

    每个适配器实现两步：
    - exchange_credential: 用授权码/票据换取 Credential
    - fetch_identity: 用 Credential 获取并归一化用户身份

    适配器自身无可变状态，只持有 ProviderConfig 与 transport 的引用。
    """

    provider_type: ClassVar[str]
    display_name: ClassVar[str]

    # 端点名 -> 默认 URL；ProviderConfig.endpoints 可按名称覆盖
    default_endpoints: ClassVar[dict[str, str]] = {}

    # 是否需要注入 ScanTicketCache（扫码登录）
    accepts_scan_tickets: ClassVar[bool] = False

    def __init__(self, config: ProviderConfig, *, transport: Optional[HTTPTransport] = None):
        self.config = config
        self.transport = transport or HTTPTransport()

    def set_transport(self, transport: HTTPTransport) -> None:
        self.transport = transport

    def endpoint(self, name: str) -> str:
        return self.config.endpoints.get(name) or self.default_endpoints[name]

    @abstractmethod
    async def exchange_credential(self, artifact: str) -> Credential:
        """使用授权码兑换 Credential。"""

    @abstractmethod
    async def fetch_identity(self, credential: Credential) -> Identity:
        """获取归一化的用户身份。"""

    # ------------------------------------------------------------------
    # 请求辅助
    # ------------------------------------------------------------------

    async def _get_json(
        self,
        url: str,
        params: Optional[Mapping[str, str]] = None,
        *,
        headers: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        if params:
            url = f"{url}{'&' if '?' in url else '?'}{urlencode(params)}"
        resp = await self.transport.get(url, headers=headers)
        return self._decode_json(resp)

    async def _post_form(
        self,
        url: str,
        data: Mapping[str, str],
        *,
        headers: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        resp = await self.transport.post(url, FORM_CONTENT_TYPE, urlencode(data), headers=headers)
        return self._decode_json(resp)

    async def _post_json(
        self,
        url: str,
        body: Mapping[str, Any],
        *,
        headers: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        resp = await self.transport.post(
            url, JSON_CONTENT_TYPE, json.dumps(body, ensure_ascii=False), headers=headers
        )
        return self._decode_json(resp)

    # ------------------------------------------------------------------
    # 响应解码
    # ------------------------------------------------------------------

    def _decode_json(self, resp: httpx.Response) -> dict[str, Any]:
        """
        解析 JSON 对象响应。

        非 2xx 时优先交给 _raise_for_remote_error 解出业务错误，否则按 HTTP 状态码报错。
        """
        try:
            data = resp.json()
        except ValueError:
            data = None

        if resp.status_code >= 400:
            if isinstance(data, dict):
                self._raise_for_remote_error(data)
            logger.warning("{} 请求失败: status={}", self.provider_type, resp.status_code)
            raise RemoteError(resp.status_code, f"HTTP {resp.status_code}")

        if not isinstance(data, dict):
            raise DecodeError(f"{self.provider_type} 响应不是 JSON 对象")

        self._raise_for_remote_error(data)
        return data

    def _raise_for_remote_error(self, data: Mapping[str, Any]) -> None:
        """
        检查响应体中内嵌的业务错误码。

        默认处理最常见的 errcode/errmsg 约定，其他约定由子类覆盖。
        """
        check_errcode(data, provider_type=self.provider_type)

    def _compute_expiry(self, expires_in: Union[int, str, None]) -> datetime:
        """
        根据 expires_in 计算过期时间。

        部分平台的 expires_in 不可靠（返回 0 或缺失），此时使用兜底有效期。
        """
        try:
            seconds = int(expires_in) if expires_in not in (None, "") else 0
        except (TypeError, ValueError):
            seconds = 0

        if seconds <= 0:
            seconds = (
                self.config.token_lifetime_fallback_seconds
                if self.config.token_lifetime_fallback_seconds is not None
                else settings.token_lifetime_fallback_seconds
            )
            logger.debug("{} 未返回有效期，使用兜底有效期: {}s", self.provider_type, seconds)
        return datetime.now(timezone.utc) + timedelta(seconds=seconds)

    @staticmethod
    def _require_str(data: Mapping[str, Any], key: str, *, provider_type: str = "") -> str:
        value = data.get(key)
        if value in (None, ""):
            raise DecodeError(f"{provider_type} 响应缺少字段: {key}")
        return str(value)


def check_errcode(
    data: Mapping[str, Any],
    *,
    code_key: str = "errcode",
    message_key: str = "errmsg",
    provider_type: str = "",
) -> None:
    """errcode 非 0 时抛出 RemoteError"""
    code = data.get(code_key)
    if code in (None, 0, "0", ""):
        return
    message = str(data.get(message_key) or "")
    logger.warning("{} 返回业务错误: code={} message={}", provider_type, code, message)
    raise RemoteError(code, message)
