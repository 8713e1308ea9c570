"""
Fortune City backend.

Idle slot-machine economy for a Telegram Mini App: machines accrue
income into coin boxes, players collect, reinvest, spin the wheel,
refer friends and settle withdrawals on Solana.
"""

__version__ = "0.1.0"
