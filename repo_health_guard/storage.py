"""
Persistence for repository health records.

Records are keyed by ``repo_id`` (``owner/repo``) and replaced whole on every
upsert. Two stores are provided: an in-memory one and a gzip JSON file.
"""

import asyncio
import gzip
import json
import logging
import os
import tempfile
import time
import zlib
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from repo_health_guard.models import RepositoryHealthRecord

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
STORE_SCHEMA_VERSION = "1.0"


class CorruptStoreError(ValueError):
    """The store file exists but does not hold a readable record document."""


def filter_records(
    records: list[RepositoryHealthRecord],
    owner: str | None = None,
    repo: str | None = None,
    min_health_score: int | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> list[RepositoryHealthRecord]:
    """Apply the ``find_many`` filters and pagination to stored records."""
    matched = [
        record
        for record in records
        if (not owner or record.owner == owner)
        and (not repo or record.repo == repo)
        and (
            min_health_score is None
            or record.overall_health.score >= min_health_score
        )
    ]
    offset = max(offset, 0)
    return matched[offset : offset + max(limit, 0)]


class HealthStore(ABC):
    """Read/write contract for persisted health records."""

    @abstractmethod
    async def upsert(self, record: RepositoryHealthRecord) -> RepositoryHealthRecord:
        """Insert or atomically replace the record with the same ``repo_id``."""

    @abstractmethod
    async def find_one(self, owner: str, repo: str) -> RepositoryHealthRecord | None:
        """Return the stored record for ``owner/repo``, if any."""

    @abstractmethod
    async def find_all(self) -> list[RepositoryHealthRecord]:
        """Return every stored record in insertion order."""

    async def find_many(
        self,
        owner: str | None = None,
        repo: str | None = None,
        min_health_score: int | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[RepositoryHealthRecord]:
        return filter_records(
            await self.find_all(),
            owner=owner,
            repo=repo,
            min_health_score=min_health_score,
            limit=limit,
            offset=offset,
        )


class InMemoryHealthStore(HealthStore):
    """Process-local store, mainly for tests and one-off CLI runs."""

    def __init__(self) -> None:
        self._records: dict[str, RepositoryHealthRecord] = {}
        self._lock = asyncio.Lock()

    async def upsert(self, record: RepositoryHealthRecord) -> RepositoryHealthRecord:
        async with self._lock:
            self._records[record.repo_id] = record
        return record

    async def find_one(self, owner: str, repo: str) -> RepositoryHealthRecord | None:
        return self._records.get(f"{owner}/{repo}")

    async def find_all(self) -> list[RepositoryHealthRecord]:
        return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)


class JsonFileHealthStore(HealthStore):
    """
    Store records in a gzip-compressed JSON document.

    The file is rewritten through a temporary file in the same directory and
    swapped in with ``os.replace``, so readers never observe a partial write.

    File format::

        {"_schema_version": "1.0", "records": {"owner/repo": {...}, ...}}
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read(self) -> dict[str, dict[str, Any]]:
        """
        Read the stored records.

        Raises:
            CorruptStoreError: If the file exists but cannot be decoded.
        """
        if not self.path.exists():
            return {}
        try:
            with gzip.open(self.path, "rt", encoding="utf-8") as f:
                raw_data = json.load(f)
        except (
            gzip.BadGzipFile,
            EOFError,
            zlib.error,
            UnicodeDecodeError,
            json.JSONDecodeError,
        ) as e:
            raise CorruptStoreError(f"Unreadable health store {self.path}: {e}") from e

        records = raw_data.get("records") if isinstance(raw_data, dict) else None
        if not isinstance(records, dict):
            raise CorruptStoreError(f"Unexpected health store layout in {self.path}")
        return records

    def _load(self) -> dict[str, dict[str, Any]]:
        try:
            return self._read()
        except CorruptStoreError as e:
            logger.warning("%s", e)
            return {}

    def _load_for_write(self) -> dict[str, dict[str, Any]]:
        # Set a corrupt file aside before the next write replaces it
        try:
            return self._read()
        except CorruptStoreError as e:
            backup = self.path.with_name(f"{self.path.name}.corrupt-{int(time.time())}")
            os.replace(self.path, backup)
            logger.warning("%s; moved it to %s", e, backup)
            return {}

    def _save(self, records: dict[str, dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"_schema_version": STORE_SCHEMA_VERSION, "records": records}

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "wb") as raw, gzip.open(raw, "wt", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def upsert(self, record: RepositoryHealthRecord) -> RepositoryHealthRecord:
        async with self._lock:
            records = await asyncio.to_thread(self._load_for_write)
            records[record.repo_id] = record.to_dict()
            await asyncio.to_thread(self._save, records)
        logger.debug("Stored health record for %s in %s", record.repo_id, self.path)
        return record

    async def find_one(self, owner: str, repo: str) -> RepositoryHealthRecord | None:
        records = await asyncio.to_thread(self._load)
        data = records.get(f"{owner}/{repo}")
        return RepositoryHealthRecord.from_dict(data) if data else None

    async def find_all(self) -> list[RepositoryHealthRecord]:
        records = await asyncio.to_thread(self._load)
        return [RepositoryHealthRecord.from_dict(data) for data in records.values()]
