"""
身份提供者错误分类

核心层不做任何恢复：所有错误原样抛给调用方，由调用方决定重试、继续轮询或终止登录。
这里只负责让各类错误可以被区分。
"""

from __future__ import annotations

from typing import Union


class IdentityProviderError(Exception):
    """所有身份提供者错误的基类（error_code 用于映射到前端/日志）。"""

    error_code: str = "identity_provider_error"

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.error_code)
        self.detail = detail


class NetworkError(IdentityProviderError):
    """传输层失败（连接、超时、TLS 等），不做本地恢复。"""

    error_code = "network_error"


class RemoteError(IdentityProviderError):
    """
    远端返回的业务错误。

    多数国内平台在 HTTP 200 的响应体中携带 errcode，这里统一解码为 RemoteError，
    绝不当作成功处理。
    """

    error_code = "remote_error"

    def __init__(self, code: Union[int, str], message: str = ""):
        super().__init__(f"code={code}, message={message}")
        self.code = code
        self.message = message

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RemoteError):
            return NotImplemented
        return self.code == other.code and self.message == other.message

    __hash__ = Exception.__hash__


class DecodeError(IdentityProviderError):
    """响应体不符合预期结构。"""

    error_code = "decode_error"


class UnsupportedProviderKind(IdentityProviderError):
    """调用方配置了未注册的 provider 类型（工厂构造时检出）。"""

    error_code = "unsupported_provider_kind"

    def __init__(self, kind: str):
        super().__init__(f"不支持的登录提供者类型: {kind}")
        self.kind = kind


class NotScannedOrUnknown(IdentityProviderError):
    """票据不存在、已过期、已被消费或尚未扫码。对轮询方来说属于正常结果。"""

    error_code = "not_scanned_or_unknown"

    def __init__(self, ticket_id: str):
        super().__init__(f"ticket 未扫码或不存在: {ticket_id}")
        self.ticket_id = ticket_id


class KeyFormatError(IdentityProviderError):
    """私钥材料无法解析为 RSA 私钥。"""

    error_code = "key_format_error"


class SignatureError(IdentityProviderError):
    """签名计算失败。"""

    error_code = "signature_error"


class InvalidCredentialError(IdentityProviderError):
    """Credential 的附加信息与当前 provider 不匹配。"""

    error_code = "invalid_credential"


class CallbackSignatureError(IdentityProviderError):
    """扫码回调签名校验失败。"""

    error_code = "callback_signature_mismatch"


__all__ = [
    "CallbackSignatureError",
    "DecodeError",
    "IdentityProviderError",
    "InvalidCredentialError",
    "KeyFormatError",
    "NetworkError",
    "NotScannedOrUnknown",
    "RemoteError",
    "SignatureError",
    "UnsupportedProviderKind",
]
