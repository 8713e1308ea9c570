"""
Telegram Mini App authentication.
"""

from .tma_auth import (
    AuthType,
    TMAUser,
    TMAInitData,
    TelegramMiniAppAuth,
    validate_init_data,
    parse_auth_header,
)

__all__ = [
    "AuthType",
    "TMAUser",
    "TMAInitData",
    "TelegramMiniAppAuth",
    "validate_init_data",
    "parse_auth_header",
]
