"""
runeswap - Escrow swap bridge between ordinals assets and rune tokens
"""

__version__ = "0.3.0"

from runeswap.builder import DraftBuilder, DraftResult
from runeswap.config import SwapSettings, get_settings
from runeswap.service import SwapService
from runeswap.settlement import SettlementReceipt, SettlementState
from runeswap.wallet import WalletInfo

__all__ = [
    "DraftBuilder",
    "DraftResult",
    "SettlementReceipt",
    "SettlementState",
    "SwapService",
    "SwapSettings",
    "WalletInfo",
    "get_settings",
]
