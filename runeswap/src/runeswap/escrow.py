"""
Escrow address resolution.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from runecore.address import address_to_scriptpubkey
from runecore.errors import ExternalServiceError
from runeswap.execution import ExecutionClient


@dataclass(frozen=True)
class EscrowAccount:
    account_pubkey: bytes
    address: str
    script: bytes


class EscrowResolver:
    """
    Resolves an execution-layer account to the base-chain address it custodies.

    Every call asks the execution layer again; the result is only reused
    within one request.
    """

    def __init__(self, execution: ExecutionClient):
        self.execution = execution

    async def resolve(self, account_pubkey: bytes | str) -> EscrowAccount:
        if isinstance(account_pubkey, str):
            account_pubkey = bytes.fromhex(account_pubkey)
        address = await self.execution.get_account_address(account_pubkey)
        try:
            script = address_to_scriptpubkey(address)
        except ValueError as e:
            logger.error(f"Execution layer returned an undecodable address {address!r}: {e}")
            raise ExternalServiceError(f"Undecodable escrow address {address!r}: {e}") from e
        logger.debug(f"Escrow account {account_pubkey.hex()} resolves to {address}")
        return EscrowAccount(account_pubkey=account_pubkey, address=address, script=script)
