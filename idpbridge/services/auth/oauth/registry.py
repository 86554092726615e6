from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Type

from idpbridge.clients.http_client import HTTPTransport
from idpbridge.core.exceptions import UnsupportedProviderKind
from idpbridge.core.logger import logger
from idpbridge.services.auth.oauth.base import IdentityProviderBase
from idpbridge.services.auth.oauth.models import ProviderConfig
from idpbridge.services.auth.oauth.scan_login import ScanTicketCache

ENTRY_POINT_GROUP = "idpbridge.providers"


@dataclass(frozen=True)
class SupportedProviderType:
    provider_type: str
    display_name: str
    default_endpoints: tuple[tuple[str, str], ...]


def _builtin_providers() -> List[Type[IdentityProviderBase]]:
    from idpbridge.services.auth.oauth.providers.alipay import AlipayIdentityProvider
    from idpbridge.services.auth.oauth.providers.baidu import BaiduIdentityProvider
    from idpbridge.services.auth.oauth.providers.bilibili import BilibiliIdentityProvider
    from idpbridge.services.auth.oauth.providers.dingtalk import DingTalkIdentityProvider
    from idpbridge.services.auth.oauth.providers.douyin import DouyinIdentityProvider
    from idpbridge.services.auth.oauth.providers.gitee import GiteeIdentityProvider
    from idpbridge.services.auth.oauth.providers.github import GitHubIdentityProvider
    from idpbridge.services.auth.oauth.providers.gitlab import GitLabIdentityProvider
    from idpbridge.services.auth.oauth.providers.qq import QQIdentityProvider
    from idpbridge.services.auth.oauth.providers.wechat import WeChatIdentityProvider
    from idpbridge.services.auth.oauth.providers.wechat_miniprogram import (
        WeChatMiniProgramIdentityProvider,
    )
    from idpbridge.services.auth.oauth.providers.wecom import (
        WeComIdentityProvider,
        WeComInternalIdentityProvider,
    )
    from idpbridge.services.auth.oauth.providers.weibo import WeiboIdentityProvider

    return [
        WeChatIdentityProvider,
        WeChatMiniProgramIdentityProvider,
        QQIdentityProvider,
        BaiduIdentityProvider,
        AlipayIdentityProvider,
        BilibiliIdentityProvider,
        DouyinIdentityProvider,
        DingTalkIdentityProvider,
        WeiboIdentityProvider,
        WeComIdentityProvider,
        WeComInternalIdentityProvider,
        GitHubIdentityProvider,
        GiteeIdentityProvider,
        GitLabIdentityProvider,
    ]


class ProviderRegistry:
    """Provider 注册表 + 工厂（支持延迟 discover）。"""

    def __init__(self) -> None:
        self._providers: Dict[str, Type[IdentityProviderBase]] = {}
        self._discovered: bool = False

    def discover_providers(self) -> None:
        """发现并注册 providers（幂等）。"""
        if self._discovered:
            return
        self._discovered = True

        # 1) 内置 providers
        for provider_cls in _builtin_providers():
            self.register(provider_cls)

        # 2) entry_points 插件（可选）
        from importlib.metadata import entry_points

        for ep in entry_points(group=ENTRY_POINT_GROUP):
            try:
                loaded = ep.load()
            except (ImportError, AttributeError) as exc:
                logger.warning("Provider entry_point 加载失败: {}: {}", ep.name, exc)
                continue
            if not (isinstance(loaded, type) and issubclass(loaded, IdentityProviderBase)):
                logger.warning("Provider entry_point 无效: {} (type={})", ep.name, type(loaded))
                continue
            self.register(loaded)

    def register(self, provider_cls: Type[IdentityProviderBase]) -> None:
        self._providers[provider_cls.provider_type] = provider_cls

    def supported_kinds(self) -> List[str]:
        return sorted(self._providers)

    def get_supported_types(self) -> List[SupportedProviderType]:
        return [
            SupportedProviderType(
                provider_type=p.provider_type,
                display_name=p.display_name,
                default_endpoints=tuple(sorted(p.default_endpoints.items())),
            )
            for p in sorted(self._providers.values(), key=lambda x: x.provider_type)
        ]

    def create(
        self,
        config: ProviderConfig,
        *,
        transport: Optional[HTTPTransport] = None,
        scan_tickets: Optional[ScanTicketCache] = None,
    ) -> IdentityProviderBase:
        """按 config.kind 构造适配器；纯构造，不做任何 I/O。"""
        provider_cls = self._providers.get(config.kind)
        if provider_cls is None:
            raise UnsupportedProviderKind(config.kind)

        if provider_cls.accepts_scan_tickets:
            return provider_cls(config, transport=transport, scan_tickets=scan_tickets)  # type: ignore[call-arg]
        return provider_cls(config, transport=transport)


_registry: Optional[ProviderRegistry] = None


def get_provider_registry() -> ProviderRegistry:
    global _registry
    if _registry is None:
        _registry = ProviderRegistry()
        _registry.discover_providers()
    return _registry


def create_adapter(
    config: ProviderConfig,
    *,
    transport: Optional[HTTPTransport] = None,
    scan_tickets: Optional[ScanTicketCache] = None,
) -> IdentityProviderBase:
    return get_provider_registry().create(config, transport=transport, scan_tickets=scan_tickets)
