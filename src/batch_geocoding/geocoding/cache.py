"""
In-memory address cache backed by a durable store.

Entries are append-only for the lifetime of the process: a key that has
been stored is never overwritten or evicted, and failures are never cached.
"""

import logging
from typing import Optional, Dict

from pydantic import ValidationError

from ..utils.errors import PersistenceFailure
from .base import CacheStore
from .models import Resolution


logger = logging.getLogger(__name__)


class AddressCache:
    """Normalized key → Resolution mapping with best-effort durability."""

    def __init__(self, store: CacheStore):
        self.store = store
        self._entries: Dict[str, Resolution] = {}
        self._dirty = False

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[Resolution]:
        return self._entries.get(key)

    def put(self, key: str, resolution: Resolution) -> None:
        """Store a successful resolution. Existing keys are left untouched."""
        if not resolution.has_coordinates():
            raise ValueError(f"Refusing to cache resolution without coordinates for '{key}'")
        if key in self._entries:
            return
        self._entries[key] = resolution.model_copy(update={"source": None})
        self._dirty = True

    def load_from_storage(self) -> None:
        """
        Populate from durable storage.

        Missing storage means an empty cache. Unreadable storage is logged
        and also treated as empty. Entries already in memory win.
        """
        try:
            stored = self.store.load()
        except PersistenceFailure as e:
            logger.warning(f"Could not load address cache, starting empty: {e}")
            return

        loaded = 0
        for key, payload in stored.items():
            if key in self._entries:
                continue
            try:
                self._entries[key] = Resolution.model_validate(payload)
                loaded += 1
            except ValidationError as e:
                logger.warning(f"Skipping malformed cache entry '{key}': {e.error_count()} error(s)")

        logger.info(f"Address cache loaded: {loaded} entries ({len(self._entries)} total)")

    def flush_to_storage(self) -> bool:
        """
        Persist the current state.

        Returns:
            True if the state is durable after the call, False if the write failed
        """
        if not self._dirty or not self._entries:
            return True
        payload = {key: res.to_cache_payload() for key, res in self._entries.items()}
        try:
            self.store.save(payload)
        except PersistenceFailure as e:
            logger.error(f"Address cache flush failed: {e}")
            return False
        self._dirty = False
        logger.info(f"Address cache saved: {len(self._entries)} entries")
        return True

    def clear(self) -> None:
        """Drop all entries and delete durable storage."""
        self._entries.clear()
        self._dirty = False
        self.store.clear()
