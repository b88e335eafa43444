"""Deduplicated, capped and persisted job history.

`upsert` is the only path that adds or changes entries, so the "one entry per
job id" invariant holds by construction. All mutations are serialized on an
asyncio.Lock and every mutation rewrites the persisted blob.
"""
from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from pydantic import ValidationError

from jobtracker.core.interfaces.storage import KeyValueStoragePort
from jobtracker.core.models.job import HistoryEntry, JobKind, JobRecord
from jobtracker.core.settings import logger


class HistoryStore:
    def __init__(
        self,
        storage: KeyValueStoragePort,
        limit: int = 100,
        storage_key: str = "jobs_history",
    ) -> None:
        self._storage = storage
        self._limit = limit
        self._key = storage_key
        self._entries: List[HistoryEntry] = []
        self._lock = asyncio.Lock()

    # ---------------- Persistence -----------------
    async def load(self) -> int:
        """Read the persisted blob; returns the number of entries loaded.

        Corrupt blobs or entries are skipped with a warning so a bad file never
        prevents startup. Duplicate ids in the blob keep their first (most
        recent) occurrence.
        """
        async with self._lock:
            raw = self._storage.get(self._key)
            if not raw:
                self._entries = []
                return 0
            try:
                items = json.loads(raw)
            except ValueError as exc:
                logger.warning(f"[history] ignoring unreadable history blob key={self._key} err={exc}")
                self._entries = []
                return 0
            if not isinstance(items, list):
                logger.warning(f"[history] ignoring history blob of type {type(items).__name__}")
                self._entries = []
                return 0

            entries: List[HistoryEntry] = []
            seen: set[str] = set()
            for item in items:
                try:
                    entry = HistoryEntry.model_validate(item)
                except ValidationError as exc:
                    logger.warning(f"[history] skipping invalid entry err={exc.error_count()} errors")
                    continue
                if entry.id in seen:
                    continue
                seen.add(entry.id)
                entries.append(entry)
            self._entries = entries[: self._limit]
            logger.debug(f"[history] loaded {len(self._entries)} entries key={self._key}")
            return len(self._entries)

    def _persist(self) -> None:
        payload = [e.model_dump(mode="json", by_alias=True) for e in self._entries]
        try:
            self._storage.set(self._key, json.dumps(payload, ensure_ascii=False))
        except OSError as exc:
            # in-memory state stays authoritative; next mutation retries the write
            logger.error(f"[history] failed to persist history key={self._key} err={exc}")

    def _index_of(self, job_id: str) -> int:
        for i, entry in enumerate(self._entries):
            if entry.id == job_id:
                return i
        return -1

    # ---------------- Mutation -----------------
    async def upsert(self, record: JobRecord, started_at: Optional[datetime] = None) -> HistoryEntry:
        """Insert or merge `record` and move it to the most-recent position.

        Merging keeps `started_at` and launch `metadata` from the existing entry.
        `completed_at` is stamped on the first transition into a terminal state;
        a terminal entry keeps its terminal state even if a stale record arrives.
        """
        async with self._lock:
            now = datetime.now(timezone.utc)
            idx = self._index_of(record.id)
            if idx >= 0:
                existing = self._entries.pop(idx)
                entry = self._merge(existing, record, now)
            else:
                fields = record.model_dump(exclude={"state"})
                entry = HistoryEntry(
                    **fields,
                    state=record.state,
                    started_at=started_at or now,
                    completed_at=now if record.is_in_terminal_state() else None,
                )
            self._entries.insert(0, entry)
            del self._entries[self._limit:]
            self._persist()
            return entry.model_copy()

    def _merge(self, existing: HistoryEntry, record: JobRecord, now: datetime) -> HistoryEntry:
        if existing.is_in_terminal_state():
            # a terminal entry only accepts a late result payload
            if record.result and record.result != existing.result:
                return existing.model_copy(update={"result": record.result})
            return existing

        update = {
            "state": record.state,
            "progress": record.progress,
            "current_step": record.current_step,
            "items_total": record.items_total,
            "items_done": record.items_done,
            "result": record.result,
        }
        if record.metadata and not existing.metadata:
            update["metadata"] = dict(record.metadata)
        if record.kind != JobKind.other and existing.kind == JobKind.other:
            update["kind"] = record.kind
        if record.is_in_terminal_state():
            update["completed_at"] = now
        return existing.model_copy(update=update)

    async def remove(self, job_id: str) -> bool:
        async with self._lock:
            idx = self._index_of(job_id)
            if idx < 0:
                return False
            del self._entries[idx]
            self._persist()
            return True

    async def clear(self) -> None:
        async with self._lock:
            self._entries = []
            try:
                self._storage.delete(self._key)
            except OSError as exc:
                logger.error(f"[history] failed to delete history key={self._key} err={exc}")
                # an empty blob still shadows the stale one on the next load
                self._persist()

    async def clear_terminal(self) -> int:
        """Drop Completed/Failed/Cancelled entries; keeps Running/Pending."""
        async with self._lock:
            before = len(self._entries)
            self._entries = [e for e in self._entries if not e.is_in_terminal_state()]
            removed = before - len(self._entries)
            if removed:
                self._persist()
            return removed

    # ---------------- Queries -----------------
    async def snapshot(self) -> List[HistoryEntry]:
        async with self._lock:
            return [e.model_copy() for e in self._entries]

    async def get(self, job_id: str) -> Optional[HistoryEntry]:
        async with self._lock:
            idx = self._index_of(job_id)
            return self._entries[idx].model_copy() if idx >= 0 else None

    async def by_kind(self, kind: JobKind) -> List[HistoryEntry]:
        async with self._lock:
            return [e.model_copy() for e in self._entries if e.kind == kind]

    async def recent(self, within: timedelta = timedelta(hours=24)) -> List[HistoryEntry]:
        cutoff = datetime.now(timezone.utc) - within
        async with self._lock:
            return [e.model_copy() for e in self._entries if e.started_at > cutoff]

    def __len__(self) -> int:
        return len(self._entries)
