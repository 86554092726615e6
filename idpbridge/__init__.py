"""
idpbridge - 第三方登录身份归一化

用法：
    from idpbridge import ProviderConfig, create_adapter

    adapter = create_adapter(ProviderConfig(kind="GitHub", client_id="...", client_secret="..."))
    credential = await adapter.exchange_credential(code)
    identity = await adapter.fetch_identity(credential)
"""

from idpbridge.clients.http_client import HTTPTransport
from idpbridge.core.country_codes import calling_code_to_iso
from idpbridge.core.exceptions import (
    CallbackSignatureError,
    DecodeError,
    IdentityProviderError,
    InvalidCredentialError,
    KeyFormatError,
    NetworkError,
    NotScannedOrUnknown,
    RemoteError,
    SignatureError,
    UnsupportedProviderKind,
)
from idpbridge.services.auth.oauth.base import IdentityProviderBase
from idpbridge.services.auth.oauth.models import Credential, Identity, ProviderConfig
from idpbridge.services.auth.oauth.registry import (
    ProviderRegistry,
    create_adapter,
    get_provider_registry,
)
from idpbridge.services.auth.oauth.scan_login import ScanTicketCache
from idpbridge.services.auth.oauth.signing import RequestSigner

__version__ = "0.1.0"

__all__ = [
    "CallbackSignatureError",
    "Credential",
    "DecodeError",
    "HTTPTransport",
    "Identity",
    "IdentityProviderBase",
    "IdentityProviderError",
    "InvalidCredentialError",
    "KeyFormatError",
    "NetworkError",
    "NotScannedOrUnknown",
    "ProviderConfig",
    "ProviderRegistry",
    "RemoteError",
    "RequestSigner",
    "ScanTicketCache",
    "SignatureError",
    "UnsupportedProviderKind",
    "calling_code_to_iso",
    "create_adapter",
    "get_provider_registry",
]
