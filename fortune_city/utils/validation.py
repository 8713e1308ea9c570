"""
Validation helpers for Solana addresses, signatures and user input.
"""

from solders.pubkey import Pubkey
from solders.signature import Signature

from fortune_city.core.exceptions import ValidationError


class SolanaValidator:
    """Validator for Solana blockchain data."""

    @staticmethod
    def is_valid_pubkey(address: str) -> bool:
        """
        Validate if a string is a valid Solana public key.

        Args:
            address: String to validate

        Returns:
            True if valid, False otherwise
        """
        if not address or len(address) < 32 or len(address) > 44:
            return False
        try:
            Pubkey.from_string(address)
        except ValueError:
            return False
        return True

    @staticmethod
    def is_valid_signature(signature: str) -> bool:
        """
        Validate if a string is a valid Solana transaction signature.

        Args:
            signature: String to validate

        Returns:
            True if valid, False otherwise
        """
        if not signature or len(signature) < 80 or len(signature) > 88:
            return False
        try:
            Signature.from_string(signature)
        except ValueError:
            return False
        return True


def validate_wallet_address(address: str) -> str:
    """Return the trimmed address or raise ValidationError."""
    address = (address or "").strip()
    if not SolanaValidator.is_valid_pubkey(address):
        raise ValidationError(
            "Invalid Solana wallet address",
            {"wallet_address": address}
        )
    return address


def validate_signature(signature: str) -> str:
    signature = (signature or "").strip()
    if not SolanaValidator.is_valid_signature(signature):
        raise ValidationError(
            "Invalid transaction signature",
            {"signature": signature}
        )
    return signature


def mask_username(name: str) -> str:
    """Hide the middle of a username for public feeds: "johnny" -> "jo***ny"."""
    if not name:
        return "***"
    if len(name) <= 3:
        return name[0] + "***"
    return f"{name[:2]}***{name[-2:]}"
