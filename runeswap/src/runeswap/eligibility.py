"""
Claim eligibility rules.

A claim is allowed once the launch time has passed. During the
whitelist window that follows launch only whitelisted addresses may
claim. Whitelisted and public addresses have separate per-user caps,
and the collection as a whole can only be claimed once per asset.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from loguru import logger

from runecore.errors import InputValidationError
from runeswap.config import SwapSettings
from runeswap.ledger import SCOPE_COLLECTION, SCOPE_USER, LedgerStore


class ClaimPolicy:
    def __init__(self, settings: SwapSettings, ledger: LedgerStore):
        self.settings = settings
        self.ledger = ledger
        self._whitelist = frozenset(settings.whitelist)

    def is_whitelisted(self, address: str) -> bool:
        return address in self._whitelist

    def user_cap(self, address: str) -> int:
        if self.is_whitelisted(address):
            return self.settings.whitelist_cap
        return self.settings.public_cap

    @property
    def collection_cap(self) -> int:
        return len(self.settings.collection)

    def _launch_time(self) -> datetime | None:
        launch = self.settings.launch_time
        if launch is not None and launch.tzinfo is None:
            launch = launch.replace(tzinfo=timezone.utc)
        return launch

    async def check(self, address: str, now: datetime | None = None) -> None:
        """
        Raise InputValidationError when address may not claim right now.
        """
        now = now or datetime.now(timezone.utc)
        launch = self._launch_time()
        if launch is not None:
            if now < launch:
                raise InputValidationError("Claiming has not started yet")
            public_start = launch + timedelta(seconds=self.settings.whitelist_window_sec)
            if now < public_start and not self.is_whitelisted(address):
                logger.warning(f"Claim by non-whitelisted {address} during whitelist window")
                raise InputValidationError("You are not on the whitelist")

        claimed = await self.ledger.get(SCOPE_USER, address)
        if claimed >= self.user_cap(address):
            raise InputValidationError("You can not claim any more")

        total = await self.ledger.get(SCOPE_COLLECTION, self.settings.collection_name)
        if total >= self.collection_cap:
            raise InputValidationError("The collection is fully claimed")
