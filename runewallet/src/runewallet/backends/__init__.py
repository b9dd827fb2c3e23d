"""
Indexer and base-chain backend implementations.

Available backends:
- MaestroIndexer: GoMaestro address, rune and inscription indexer
- MempoolClient: mempool.space API (fee oracle, tx status, relay)
"""

from runewallet.backends.base import (
    ChainBackend,
    IndexerBackend,
    TokenBalance,
    TxStatus,
    UtxoPage,
)
from runewallet.backends.maestro import MaestroIndexer
from runewallet.backends.mempool import MempoolClient

__all__ = [
    "ChainBackend",
    "IndexerBackend",
    "MaestroIndexer",
    "MempoolClient",
    "TokenBalance",
    "TxStatus",
    "UtxoPage",
]
