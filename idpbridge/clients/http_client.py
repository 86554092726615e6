"""
可注入的 HTTP 传输层

适配器只通过 HTTPTransport 访问远端：
- get(url)                       查询串 GET
- post(url, content_type, body)  表单 / JSON POST
- send(request)                  需要自定义 header/method 的请求

未注入 httpx.AsyncClient 时，每次调用临时创建一个客户端（与 provider 默认行为一致）；
超时、取消完全交给 transport，核心层不做重试。
"""

from __future__ import annotations

import ssl
from typing import Optional, Union
from urllib.parse import urlsplit, urlunsplit

import certifi
import httpx

from idpbridge.config import config
from idpbridge.core.exceptions import NetworkError
from idpbridge.core.logger import logger

_SSL_CONTEXT = ssl.create_default_context(cafile=certifi.where())


def get_ssl_context() -> ssl.SSLContext:
    """返回模块级缓存的 SSL 上下文（certifi 证书包）"""
    return _SSL_CONTEXT


def _redact_url(url: Union[str, httpx.URL]) -> str:
    """去掉 query，避免 access_token/secret 进入日志"""
    parts = urlsplit(str(url))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


class HTTPTransport:
    """httpx.AsyncClient 的薄封装，将传输层异常统一转换为 NetworkError。"""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self._client = client
        self._timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else config.http_timeout_seconds
        )

    async def get(self, url: str, *, headers: Optional[dict[str, str]] = None) -> httpx.Response:
        return await self.send(httpx.Request("GET", url, headers=headers))

    async def post(
        self,
        url: str,
        content_type: str,
        body: Union[str, bytes],
        *,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        merged = {"Content-Type": content_type}
        if headers:
            merged.update(headers)
        content = body.encode("utf-8") if isinstance(body, str) else body
        return await self.send(httpx.Request("POST", url, headers=merged, content=content))

    async def send(self, request: httpx.Request) -> httpx.Response:
        try:
            if self._client is not None:
                return await self._client.send(request)
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout_seconds), verify=get_ssl_context()
            ) as client:
                return await client.send(request)
        except httpx.RequestError as exc:
            logger.warning(
                "远端请求失败: method={} url={} err={!r}",
                request.method,
                _redact_url(request.url),
                exc,
            )
            raise NetworkError(f"{type(exc).__name__}: {exc}") from exc
