"""Keyed persistence used by the wallet and sharing services.

Services never talk to the database directly. They read and write JSON
documents by key, append to per-key logs, and rely on ``expected_version``
for conditional writes. Only per-key atomicity is assumed.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from signatura.clock import utcnow
from signatura.config import settings
from signatura.models import Record, RecordEntry

logger = logging.getLogger(__name__)


class VersionConflict(Exception):
    """A conditional write lost against a concurrent writer."""

    def __init__(self, key: str):
        super().__init__(f"version conflict on {key}")
        self.key = key


@dataclass
class StoredRecord:
    key: str
    value: dict[str, Any]
    version: int


class Store(ABC):
    @abstractmethod
    async def get(self, key: str) -> StoredRecord | None: ...

    @abstractmethod
    async def put(self, key: str, value: dict, *, expected_version: int | None = None) -> int:
        """Write ``value`` and return the new version.

        ``expected_version=None`` writes unconditionally, ``0`` requires the key
        to be absent, any other number requires the stored version to match.
        """

    @abstractmethod
    async def delete(self, key: str) -> bool: ...

    @abstractmethod
    async def scan(self, prefix: str) -> list[StoredRecord]: ...

    @abstractmethod
    async def append(self, key: str, entry: dict, *, limit: int | None = None) -> None:
        """Append ``entry`` to the log at ``key``, keeping only the newest ``limit``."""

    @abstractmethod
    async def entries(self, key: str) -> list[dict]: ...

    @abstractmethod
    async def clear_entries(self, key: str) -> None: ...


class MemoryStore(Store):
    def __init__(self):
        self._records: dict[str, tuple[dict, int]] = {}
        self._logs: dict[str, list[dict]] = {}
        self._lock = threading.Lock()

    async def get(self, key):
        with self._lock:
            found = self._records.get(key)
            if found is None:
                return None
            return StoredRecord(key, copy.deepcopy(found[0]), found[1])

    async def put(self, key, value, *, expected_version=None):
        with self._lock:
            current = self._records.get(key)
            current_version = current[1] if current else 0
            if expected_version is not None and expected_version != current_version:
                raise VersionConflict(key)
            self._records[key] = (copy.deepcopy(value), current_version + 1)
            return current_version + 1

    async def delete(self, key):
        with self._lock:
            return self._records.pop(key, None) is not None

    async def scan(self, prefix):
        with self._lock:
            return [
                StoredRecord(key, copy.deepcopy(value), version)
                for key, (value, version) in sorted(self._records.items())
                if key.startswith(prefix)
            ]

    async def append(self, key, entry, *, limit=None):
        with self._lock:
            log = self._logs.setdefault(key, [])
            log.append(copy.deepcopy(entry))
            if limit is not None and len(log) > limit:
                del log[: len(log) - limit]

    async def entries(self, key):
        with self._lock:
            return copy.deepcopy(self._logs.get(key, []))

    async def clear_entries(self, key):
        with self._lock:
            self._logs.pop(key, None)


class SqlStore(Store):
    """Store backed by the ``records`` / ``record_entries`` tables."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def get(self, key):
        async with self._session_factory() as db:
            row = await db.get(Record, key)
            if row is None:
                return None
            return StoredRecord(row.key, row.value, row.version)

    async def put(self, key, value, *, expected_version=None):
        async with self._session_factory() as db:
            if expected_version == 0:
                db.add(Record(key=key, value=value, version=1))
                try:
                    await db.commit()
                except IntegrityError:
                    await db.rollback()
                    raise VersionConflict(key)
                return 1

            if expected_version is None:
                row = await db.get(Record, key)
                if row is None:
                    db.add(Record(key=key, value=value, version=1))
                    try:
                        await db.commit()
                    except IntegrityError:
                        await db.rollback()
                        raise VersionConflict(key)
                    return 1
                row.value = value
                row.version = row.version + 1
                await db.commit()
                return row.version

            result = await db.execute(
                update(Record)
                .where(Record.key == key, Record.version == expected_version)
                .values(value=value, version=expected_version + 1, updated_at=utcnow())
            )
            await db.commit()
            if result.rowcount != 1:
                raise VersionConflict(key)
            return expected_version + 1

    async def delete(self, key):
        async with self._session_factory() as db:
            result = await db.execute(delete(Record).where(Record.key == key))
            await db.commit()
            return result.rowcount > 0

    async def scan(self, prefix):
        async with self._session_factory() as db:
            result = await db.execute(
                select(Record)
                .where(Record.key.startswith(prefix, autoescape=True))
                .order_by(Record.key)
            )
            return [StoredRecord(r.key, r.value, r.version) for r in result.scalars().all()]

    async def append(self, key, entry, *, limit=None):
        async with self._session_factory() as db:
            db.add(RecordEntry(key=key, value=entry))
            await db.flush()
            if limit is not None:
                newest = (
                    select(RecordEntry.id)
                    .where(RecordEntry.key == key)
                    .order_by(RecordEntry.id.desc())
                    .limit(limit)
                )
                await db.execute(
                    delete(RecordEntry).where(
                        RecordEntry.key == key,
                        RecordEntry.id.not_in(newest),
                    )
                )
            await db.commit()

    async def entries(self, key):
        async with self._session_factory() as db:
            result = await db.execute(
                select(RecordEntry.value).where(RecordEntry.key == key).order_by(RecordEntry.id)
            )
            return list(result.scalars().all())

    async def clear_entries(self, key):
        async with self._session_factory() as db:
            await db.execute(delete(RecordEntry).where(RecordEntry.key == key))
            await db.commit()


_store: Store | None = None


def get_store() -> Store:
    """FastAPI dependency returning the process-wide store."""
    global _store

    if _store is None:
        if settings.storage_backend == "memory":
            _store = MemoryStore()
        else:
            from signatura.database import async_session

            _store = SqlStore(async_session)
        logger.info("Using %s store", settings.storage_backend)
    return _store
