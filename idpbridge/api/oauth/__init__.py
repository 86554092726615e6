"""OAuth API 路由。"""

from idpbridge.api.oauth.wechat_callback import create_wechat_callback_router

__all__ = ["create_wechat_callback_router"]
