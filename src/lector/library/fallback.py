"""Reading-state persistence with a plain key/value fallback.

The SQLite store is the primary home of a ``ReadingState``. Every save is
mirrored into a small ``dbm`` string cache, which is only read back when the
primary lookup misses or fails. A state whose primary write failed is also
kept in memory and wins over the (older) primary row for the rest of the
session.
"""

from __future__ import annotations

import dbm
import enum
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from lector.errors import LocalStoreError

from .database import Database
from .models import ReadingState

log = logging.getLogger(__name__)

KEY_PREFIX = "reading-state-"


class FallbackCache:
    """String key/value cache backed by a dbm file."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def get(self, key: str) -> Optional[str]:
        try:
            with dbm.open(str(self._path), "c") as store:
                raw = store.get(key)
        except (OSError, dbm.error) as e:
            raise LocalStoreError(f"Fallback cache unavailable: {e}") from e
        return raw.decode("utf-8") if raw is not None else None

    def set(self, key: str, value: str) -> None:
        try:
            with dbm.open(str(self._path), "c") as store:
                store[key] = value.encode("utf-8")
        except (OSError, dbm.error) as e:
            raise LocalStoreError(f"Fallback cache unavailable: {e}") from e

    def delete(self, key: str) -> None:
        try:
            with dbm.open(str(self._path), "c") as store:
                if key in store:
                    del store[key]
        except (OSError, dbm.error) as e:
            raise LocalStoreError(f"Fallback cache unavailable: {e}") from e


class StateSource(enum.Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"
    MEMORY = "memory"
    NONE = "none"


@dataclass
class LoadResult:
    state: Optional[ReadingState]
    source: StateSource

    @property
    def found(self) -> bool:
        return self.state is not None


class ReadingStateStore:
    """One contract over the primary store, the fallback cache and memory."""

    def __init__(self, db: Database, fallback: FallbackCache) -> None:
        self._db = db
        self._fallback = fallback
        self._memory: dict[str, ReadingState] = {}

    def save(self, state: ReadingState) -> StateSource:
        """Persist ``state``; returns the most durable layer that took it."""
        source = StateSource.MEMORY
        try:
            self._db.put_reading_state(state)
            source = StateSource.PRIMARY
            self._memory.pop(state.book_id, None)
        except LocalStoreError as e:
            log.warning("Primary store rejected reading state %s: %s", state.book_id, e)
            self._memory[state.book_id] = state

        try:
            self._fallback.set(KEY_PREFIX + state.book_id, json.dumps(state.to_dict()))
            if source is StateSource.MEMORY:
                source = StateSource.FALLBACK
        except LocalStoreError as e:
            log.warning("Could not mirror reading state to fallback cache: %s", e)

        return source

    def load(self, book_id: str) -> LoadResult:
        # Only present when the primary write failed, so newer than its row.
        if book_id in self._memory:
            return LoadResult(self._memory[book_id], StateSource.MEMORY)

        try:
            state = self._db.get_reading_state(book_id)
            if state is not None:
                return LoadResult(state, StateSource.PRIMARY)
        except LocalStoreError as e:
            log.warning("Primary store lookup failed for %s: %s", book_id, e)

        try:
            raw = self._fallback.get(KEY_PREFIX + book_id)
            if raw:
                return LoadResult(
                    ReadingState.from_dict(json.loads(raw)), StateSource.FALLBACK
                )
        except LocalStoreError as e:
            log.warning("Fallback cache lookup failed for %s: %s", book_id, e)
        except (ValueError, KeyError) as e:
            log.warning("Corrupt fallback entry for %s: %s", book_id, e)

        return LoadResult(None, StateSource.NONE)

    def get(self, book_id: str) -> Optional[ReadingState]:
        return self.load(book_id).state

    def load_all(self) -> list[ReadingState]:
        try:
            states = {s.book_id: s for s in self._db.list_reading_states()}
        except LocalStoreError as e:
            log.error("Error getting all reading states: %s", e)
            states = {}
        for book_id, state in self._memory.items():
            states[book_id] = state
        return list(states.values())
