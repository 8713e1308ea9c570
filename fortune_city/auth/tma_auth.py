"""
Telegram Mini Apps authentication module.
Validates Telegram Mini Apps init data according to official documentation.
"""

import hashlib
import hmac
import json
import time
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Optional, Tuple
from urllib.parse import parse_qsl

import structlog

from fortune_city.core.exceptions import AuthenticationError

logger = structlog.get_logger(__name__)


class AuthType(str, Enum):
    """Authorization header schemes."""
    TMA = "tma"  # Telegram Mini Apps init data
    TEST = "test"  # telegram id, accepted only in testing mode


@dataclass
class TMAUser:
    """Telegram Mini Apps user data."""
    id: int
    first_name: str
    last_name: Optional[str] = None
    username: Optional[str] = None
    language_code: Optional[str] = None
    is_premium: Optional[bool] = None
    allows_write_to_pm: Optional[bool] = None
    photo_url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TMAUser":
        # Telegram adds fields over time; keep the ones we know
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class TMAInitData:
    """Telegram Mini Apps initialization data."""
    auth_date: int
    hash: str
    query_id: Optional[str] = None
    user: Optional[TMAUser] = None
    chat_type: Optional[str] = None
    chat_instance: Optional[str] = None
    start_param: Optional[str] = None

    @property
    def telegram_user_id(self) -> Optional[int]:
        return self.user.id if self.user else None

    def is_expired(self, max_age_hours: int = 24) -> bool:
        return (int(time.time()) - self.auth_date) > max_age_hours * 3600


class TelegramMiniAppAuth:
    """Telegram Mini Apps authentication handler."""

    def __init__(self, bot_token: str, max_age_hours: int = 24):
        """
        Initialize TMA authentication.

        Args:
            bot_token: Telegram bot token
            max_age_hours: Maximum age of init data in hours (default: 24)
        """
        self.bot_token = bot_token
        self.max_age_hours = max_age_hours
        # Mini App key: HMAC-SHA256 of the bot token keyed with "WebAppData"
        self.secret_key = hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()

    def validate_init_data(self, init_data_raw: str) -> TMAInitData:
        """
        Validate Telegram Mini Apps init data.

        Args:
            init_data_raw: Raw init data string from Telegram

        Returns:
            TMAInitData: Parsed and validated init data

        Raises:
            AuthenticationError: If validation fails
        """
        try:
            parsed_data = dict(parse_qsl(init_data_raw, keep_blank_values=True))

            received_hash = parsed_data.pop("hash", None)
            if not received_hash:
                raise ValueError("No hash provided in init data")

            data_check_string = self.create_data_check_string(parsed_data)
            if not self._verify_signature(data_check_string, received_hash):
                raise ValueError("Invalid init data signature")

            init_data = self._parse_init_data(parsed_data, received_hash)

            if init_data.is_expired(self.max_age_hours):
                raise ValueError(f"Init data expired (older than {self.max_age_hours} hours)")

        except ValueError as e:
            logger.warning("TMA init data validation failed", error=str(e))
            raise AuthenticationError(f"Invalid Telegram Mini Apps init data: {e}")

        logger.debug(
            "TMA init data validated",
            user_id=init_data.telegram_user_id,
            auth_date=init_data.auth_date
        )
        return init_data

    @staticmethod
    def create_data_check_string(data: Dict[str, str]) -> str:
        """Sorted key=value pairs joined with newlines."""
        return "\n".join(f"{key}={value}" for key, value in sorted(data.items()))

    def sign(self, data: Dict[str, str]) -> str:
        return hmac.new(
            self.secret_key,
            self.create_data_check_string(data).encode(),
            hashlib.sha256
        ).hexdigest()

    def _verify_signature(self, data_check_string: str, received_hash: str) -> bool:
        calculated_hash = hmac.new(
            self.secret_key,
            data_check_string.encode(),
            hashlib.sha256
        ).hexdigest()
        return hmac.compare_digest(calculated_hash, received_hash)

    @staticmethod
    def _parse_init_data(data: Dict[str, str], received_hash: str) -> TMAInitData:
        auth_date = int(data.get("auth_date", 0))
        if auth_date == 0:
            raise ValueError("Invalid auth_date")

        user = None
        if "user" in data:
            try:
                user = TMAUser.from_dict(json.loads(data["user"]))
            except (json.JSONDecodeError, TypeError) as e:
                raise ValueError(f"Invalid user data: {e}")

        return TMAInitData(
            auth_date=auth_date,
            hash=received_hash,
            query_id=data.get("query_id"),
            user=user,
            chat_type=data.get("chat_type"),
            chat_instance=data.get("chat_instance"),
            start_param=data.get("start_param"),
        )


def validate_init_data(init_data_raw: str, bot_token: str, max_age_hours: int = 24) -> TMAInitData:
    """Utility function to validate Telegram Mini Apps init data."""
    return TelegramMiniAppAuth(bot_token, max_age_hours).validate_init_data(init_data_raw)


def parse_auth_header(auth_header: Optional[str]) -> Tuple[AuthType, str]:
    """
    Split an Authorization header into scheme and payload.

    Raises:
        AuthenticationError: If header is missing or malformed
    """
    if not auth_header:
        raise AuthenticationError("Authorization header required")

    try:
        auth_type_str, auth_data = auth_header.split(" ", 1)
        return AuthType(auth_type_str.lower()), auth_data.strip()
    except ValueError:
        raise AuthenticationError(
            "Invalid Authorization header format. Expected: 'tma <init_data>'"
        )
