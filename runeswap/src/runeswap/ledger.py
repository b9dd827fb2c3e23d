"""
Counter store interface and an in-memory implementation.

Production deployments back LedgerStore with a database offering an
atomic increment-with-upsert; InMemoryLedgerStore serves tests and
single-process use.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

SCOPE_COLLECTION = "collection"
SCOPE_USER = "user"


@dataclass
class CounterRecord:
    count: int = 0
    fields: dict[str, Any] = field(default_factory=dict)


class LedgerStore(ABC):
    @abstractmethod
    async def increment(
        self, scope: str, key: str, by: int = 1, fields: dict[str, Any] | None = None
    ) -> int:
        """
        Atomically add `by` to the counter, creating it at zero if missing.

        fields are set on the record in the same operation.

        Returns:
            The counter value after the increment
        """

    @abstractmethod
    async def get(self, scope: str, key: str) -> int:
        """Current counter value, 0 when the counter does not exist."""

    async def close(self) -> None:  # noqa: B027
        """Release resources. Default is a no-op."""


class InMemoryLedgerStore(LedgerStore):
    def __init__(self) -> None:
        self._records: dict[tuple[str, str], CounterRecord] = {}
        self._lock = asyncio.Lock()

    async def increment(
        self, scope: str, key: str, by: int = 1, fields: dict[str, Any] | None = None
    ) -> int:
        async with self._lock:
            record = self._records.setdefault((scope, key), CounterRecord())
            record.count += by
            if fields:
                record.fields.update(fields)
            return record.count

    async def get(self, scope: str, key: str) -> int:
        record = self._records.get((scope, key))
        return record.count if record else 0

    def record(self, scope: str, key: str) -> CounterRecord | None:
        return self._records.get((scope, key))
