"""
运行时配置

所有配置项都来自环境变量，缺省值适用于大多数部署。
"""

from __future__ import annotations

import os


class Config:
    """idpbridge 运行时配置"""

    def __init__(self) -> None:
        # 默认 HTTP 超时（秒）；调用方注入自定义 transport 时由其自行控制
        self.http_timeout_seconds = float(os.getenv("IDP_HTTP_TIMEOUT_SECONDS", "5.0"))

        # 扫码登录票据有效期（秒），与公众号二维码有效期保持一致
        self.scan_ticket_ttl_seconds = int(os.getenv("IDP_SCAN_TICKET_TTL_SECONDS", "3600"))
        self.wechat_qr_expire_seconds = int(os.getenv("IDP_WECHAT_QR_EXPIRE_SECONDS", "3600"))

        # 远端未返回有效期（或返回 0）时使用的兜底 token 有效期（秒）
        self.token_lifetime_fallback_seconds = int(
            os.getenv("IDP_TOKEN_LIFETIME_FALLBACK_SECONDS", "7200")
        )


config = Config()
