"""
Tests for escrow address resolution.
"""

from unittest.mock import AsyncMock

import pytest

from runecore.address import address_to_scriptpubkey
from runecore.errors import ExternalServiceError
from runeswap.escrow import EscrowResolver


class TestEscrowResolver:
    @pytest.mark.asyncio
    async def test_resolves_hex_pubkey(self, settings, execution, swap_env):
        resolver = EscrowResolver(execution)
        account = await resolver.resolve(settings.escrow_account_pubkey)
        assert account.account_pubkey == bytes.fromhex(settings.escrow_account_pubkey)
        assert account.address == swap_env.escrow_address
        assert account.script == address_to_scriptpubkey(swap_env.escrow_address)

    @pytest.mark.asyncio
    async def test_asks_every_time(self, settings, execution):
        resolver = EscrowResolver(execution)
        pubkey = bytes.fromhex(settings.basket_account_pubkey)
        await resolver.resolve(pubkey)
        await resolver.resolve(pubkey)
        assert execution.get_account_address.await_count == 2

    @pytest.mark.asyncio
    async def test_undecodable_address(self):
        execution = AsyncMock()
        execution.get_account_address.return_value = "not-an-address"
        with pytest.raises(ExternalServiceError, match="Undecodable"):
            await EscrowResolver(execution).resolve(b"\x01" * 32)

    @pytest.mark.asyncio
    async def test_execution_failure_propagates(self):
        execution = AsyncMock()
        execution.get_account_address.side_effect = ExternalServiceError("down")
        with pytest.raises(ExternalServiceError, match="down"):
            await EscrowResolver(execution).resolve(b"\x01" * 32)
