"""Solana token metadata and deposit limits."""

from typing import Dict

LAMPORTS_PER_SOL = 1_000_000_000

SOL_DECIMALS = 9

# Supported deposit currencies
CURRENCY_SOL = "SOL"
CURRENCY_USDT_SOL = "USDT_SOL"
CURRENCY_FORTUNE = "FORTUNE"

SUPPORTED_DEPOSIT_CURRENCIES = (CURRENCY_SOL, CURRENCY_USDT_SOL, CURRENCY_FORTUNE)

# Minimum deposit in native units of each currency
MIN_DEPOSIT: Dict[str, float] = {
    CURRENCY_SOL: 0.01,
    CURRENCY_USDT_SOL: 1,
    CURRENCY_FORTUNE: 10,
}

# Withdrawal fee the user pays in SOL when signing a wallet-connect withdrawal
DEFAULT_WALLET_CONNECT_FEE_SOL = 0.001

DEFAULT_MIN_WITHDRAWAL = 1
DEFAULT_MAX_WITHDRAWAL = 10000
