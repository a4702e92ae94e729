"""
Pending-transaction store.

The whole list lives under one storage key and is rewritten on every
mutation. Mutations are serialized by a lock; a read in one call followed
by a write in another is not atomic.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

import pydantic

from sphere_bridge.errors import DuplicateRequestError
from sphere_bridge.models.transaction import PendingTransaction
from sphere_bridge.storage import KeyValueStorage

PENDING_TRANSACTIONS_KEY = "pendingTransactions"

logger = logging.getLogger(__name__)

ChangeListener = Callable[[list[PendingTransaction]], None]


class PendingTransactionStore:
    def __init__(self, storage: KeyValueStorage, key: str = PENDING_TRANSACTIONS_KEY):
        self._storage = storage
        self._key = key
        self._listeners: list[ChangeListener] = []
        self._lock = asyncio.Lock()

    def on_change(self, listener: ChangeListener) -> Callable[[], None]:
        """Called with the full new list after each mutation. Returns a cleanup function."""
        self._listeners.append(listener)

        def remove() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return remove

    async def list(self) -> list[PendingTransaction]:
        """All entries, oldest first."""
        raw = await self._storage.get(self._key)
        if not isinstance(raw, list):
            return []
        entries = []
        for item in raw:
            try:
                entries.append(PendingTransaction.model_validate(item))
            except pydantic.ValidationError as e:
                logger.warning(f"Skipping unreadable pending transaction: {e.error_count()} error(s)")
        return entries

    async def get(self, request_id: str) -> Optional[PendingTransaction]:
        for tx in await self.list():
            if tx.request_id == request_id:
                return tx
        return None

    async def add(self, tx: PendingTransaction) -> None:
        async with self._lock:
            entries = await self.list()
            if any(e.request_id == tx.request_id for e in entries):
                raise DuplicateRequestError(tx.request_id)
            entries.append(tx)
            await self._save(entries)

    async def remove_by_request_id(self, request_id: str) -> Optional[PendingTransaction]:
        """Remove and return the entry, or None if there is none."""
        async with self._lock:
            entries = await self.list()
            for index, tx in enumerate(entries):
                if tx.request_id == request_id:
                    del entries[index]
                    await self._save(entries)
                    return tx
        return None

    async def clear(self) -> None:
        async with self._lock:
            await self._save([])

    async def _save(self, entries: list[PendingTransaction]) -> None:
        await self._storage.set(self._key, [e.to_wire() for e in entries])
        for listener in list(self._listeners):
            try:
                listener(list(entries))
            except Exception:
                logger.exception("Pending-transaction listener failed")


def serialize(entries: list[PendingTransaction]) -> list[dict[str, Any]]:
    return [e.to_wire() for e in entries]
