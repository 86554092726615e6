from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

from idpbridge.core.exceptions import DecodeError


@dataclass(frozen=True)
class ProviderConfig:
    kind: str
    client_id: str
    client_secret: str
    redirect_url: str = ""
    # 端点覆盖，key 为适配器 default_endpoints 中的名称（如 "token"、"userinfo"）
    endpoints: Mapping[str, str] = field(default_factory=dict)
    # 远端有效期不可靠（返回 0/缺失）时的兜底有效期；None 表示使用全局配置
    token_lifetime_fallback_seconds: Optional[int] = None


# ---------------------------------------------------------------------------
# Credential 附加信息（每种 provider 一个类型，替代按字符串 key 取值）
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CredentialExtra:
    """后续 fetch_identity 需要的 provider 专属信息"""


@dataclass(frozen=True)
class WeChatExtra(CredentialExtra):
    openid: str
    unionid: Optional[str] = None


@dataclass(frozen=True)
class ScanTicketExtra(CredentialExtra):
    ticket_id: str


@dataclass(frozen=True)
class AuthCodeExtra(CredentialExtra):
    """企业微信：用户信息接口需要再次携带登录授权码"""

    code: str


@dataclass(frozen=True)
class DouyinExtra(CredentialExtra):
    open_id: str


@dataclass(frozen=True)
class WeiboExtra(CredentialExtra):
    uid: str


@dataclass(frozen=True)
class MiniProgramExtra(CredentialExtra):
    openid: str
    unionid: Optional[str] = None


@dataclass(frozen=True)
class Credential:
    access_token: str
    token_type: str = "bearer"
    refresh_token: Optional[str] = None
    expiry: Optional[datetime] = None
    extra: Optional[CredentialExtra] = None
    raw: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class Identity:
    id: str
    username: str = ""
    display_name: str = ""
    union_id: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    country_code: Optional[str] = None
    avatar_url: Optional[str] = None
    extra: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.id:
            raise DecodeError("identity 缺少用户唯一标识")
