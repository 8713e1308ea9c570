"""
Custom exception classes for the application.
Services raise these; the API layer maps them onto HTTP responses.
"""

from decimal import Decimal
from typing import Any, Optional, Dict, Union


class FortuneCityException(Exception):
    """Base exception class for Fortune City backend."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(FortuneCityException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class DatabaseError(FortuneCityException):
    """Raised when there's a database error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DATABASE_ERROR", details)


class SolanaError(FortuneCityException):
    """Raised when a Solana RPC call or transaction fails."""

    status_code = 502

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SOLANA_ERROR", details)


class SchedulerError(FortuneCityException):
    """Raised when there's a scheduler error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SCHEDULER_ERROR", details)


class ValidationError(FortuneCityException):
    """Raised when data validation or a business rule check fails."""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "VALIDATION_ERROR", details)


class NotFoundError(FortuneCityException):
    """Raised when a requested resource is not found."""

    status_code = 404

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "NOT_FOUND", details)


class ConflictError(FortuneCityException):
    """Raised when an operation was already performed."""

    status_code = 409

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFLICT", details)


class AuthenticationError(FortuneCityException):
    """Raised when authentication fails."""

    status_code = 401

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "AUTHENTICATION_ERROR", details)


class AuthorizationError(FortuneCityException):
    """Raised when authorization fails."""

    status_code = 403

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "AUTHORIZATION_ERROR", details)


class RateLimitError(FortuneCityException):
    """Raised when rate limit is exceeded."""

    status_code = 429

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "RATE_LIMIT_ERROR", details)


class ExternalServiceError(FortuneCityException):
    """Raised when an external service error occurs."""

    status_code = 502

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "EXTERNAL_SERVICE_ERROR", details)


# Entity lookups
class UserNotFoundError(NotFoundError):
    """Raised when a user is not found."""

    def __init__(self, user_id: str):
        super().__init__(
            f"User not found: {user_id}",
            {"user_id": user_id}
        )


class MachineNotFoundError(NotFoundError):
    """Raised when a machine is not found."""

    def __init__(self, machine_id: str):
        super().__init__(
            f"Machine not found: {machine_id}",
            {"machine_id": machine_id}
        )


class WithdrawalNotFoundError(NotFoundError):
    """Raised when a withdrawal is not found."""

    def __init__(self, withdrawal_id: str):
        super().__init__(
            f"Withdrawal not found: {withdrawal_id}",
            {"withdrawal_id": withdrawal_id}
        )


# Business logic exceptions
class InsufficientFundsError(ValidationError):
    """Raised when there are insufficient funds for an operation."""

    def __init__(self, required: Union[Decimal, float], available: Union[Decimal, float]):
        super().__init__(
            f"Insufficient balance. Need ${float(required):.2f}, have ${float(available):.2f}",
            {"required": float(required), "available": float(available)}
        )


class InsufficientFameError(ValidationError):
    """Raised when a user cannot pay a Fame price."""

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Not enough Fame. Need {required}, have {available}",
            {"required": required, "available": available}
        )


class MachineOwnershipError(ValidationError):
    """Raised when a machine is used by someone other than its owner."""

    def __init__(self, user_id: str, machine_id: str):
        super().__init__(
            "Machine does not belong to user",
            {"user_id": user_id, "machine_id": machine_id}
        )
