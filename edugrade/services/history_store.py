"""Durable, bounded history of evaluation reports.

The history is one JSON array of reports, newest first, stored under the
well-known key ``edugrade_history``. Every mutation reads the whole log,
changes it and writes the whole log back; there is no incremental write and
no coordination between writers (last writer wins).
"""

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional, Union
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from edugrade.config import Settings, get_settings
from edugrade.errors import HistoryPersistenceError
from edugrade.models.report import HistoryLog, Report

logger = logging.getLogger(__name__)

HISTORY_KEY = "edugrade_history"
HISTORY_LIMIT = 50


class HistoryStore(ABC):
    """Load/insert/remove over a whole-log storage slot.

    Subclasses only implement reading and writing the serialized log. The
    public methods are coroutines: each runs its whole read-modify-write in
    one worker thread so storage round trips never block the event loop.
    """

    def __init__(self, limit: int = HISTORY_LIMIT):
        self.limit = limit

    @abstractmethod
    def _read(self) -> Optional[str]:
        """Return the stored payload, or None when nothing is stored."""

    @abstractmethod
    def _write(self, payload: str) -> None:
        """Replace the stored payload."""

    async def load(self) -> HistoryLog:
        """
        Read the history log.

        Missing or corrupt storage yields an empty log; it never raises.
        """
        return await asyncio.to_thread(self._load)

    async def insert(self, report: Report) -> HistoryLog:
        """Prepend a report, truncate to the limit and persist the result."""
        return await asyncio.to_thread(self._insert, report)

    async def remove(self, report_id: Union[UUID, str]) -> HistoryLog:
        """Remove the report with this id (no-op if absent) and persist."""
        target = UUID(str(report_id))
        return await asyncio.to_thread(self._remove, target)

    def _load(self) -> HistoryLog:
        # Corrupt storage (unparsable JSON, not an array, an invalid entry)
        # is logged and treated like missing storage
        try:
            payload = self._read()
        except Exception as e:
            logger.warning(f"Could not read history '{HISTORY_KEY}', starting empty: {e}")
            return HistoryLog()

        if payload is None or not payload.strip():
            return HistoryLog()

        try:
            data: Any = json.loads(payload)
            if not isinstance(data, list):
                raise ValueError(f"expected a JSON array, got {type(data).__name__}")
            reports = tuple(Report.model_validate(item) for item in data)
        except (ValueError, PydanticValidationError) as e:
            logger.warning(f"History '{HISTORY_KEY}' is corrupt, starting empty: {e}")
            return HistoryLog()

        return HistoryLog(reports=reports[:self.limit])

    def _insert(self, report: Report) -> HistoryLog:
        current = self._load()
        updated = HistoryLog(reports=((report,) + current.reports)[:self.limit])
        self._save(updated)
        return updated

    def _remove(self, target: UUID) -> HistoryLog:
        current = self._load()
        updated = HistoryLog(reports=tuple(r for r in current.reports if r.id != target))
        self._save(updated)
        return updated

    def _save(self, log: HistoryLog) -> None:
        payload = json.dumps(
            [report.to_json_dict() for report in log.reports],
            ensure_ascii=False,
        )
        try:
            self._write(payload)
        except HistoryPersistenceError:
            raise
        except Exception as e:
            raise HistoryPersistenceError(str(e)) from e


class InMemoryHistoryStore(HistoryStore):
    """Keeps the serialized log in process memory."""

    def __init__(self, limit: int = HISTORY_LIMIT, payload: Optional[str] = None):
        super().__init__(limit)
        self.payload = payload

    def _read(self) -> Optional[str]:
        return self.payload

    def _write(self, payload: str) -> None:
        self.payload = payload


class JsonFileHistoryStore(HistoryStore):
    """Stores the log as ``<directory>/edugrade_history.json``.

    Writes go to a temporary file in the same directory which then replaces
    the log file, so readers never see a half-written log.
    """

    def __init__(self, directory: Union[str, Path], limit: int = HISTORY_LIMIT):
        super().__init__(limit)
        self.path = Path(directory) / f"{HISTORY_KEY}.json"

    def _read(self) -> Optional[str]:
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8")

    def _write(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{HISTORY_KEY}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise


class SupabaseHistoryStore(HistoryStore):
    """Stores the log as a single row in a Supabase table.

    Expected table layout::

        create table evaluation_history (
            key text primary key,
            reports jsonb not null,
            updated_at timestamptz default now()
        );
    """

    def __init__(self, client: Any, table: str = "evaluation_history", limit: int = HISTORY_LIMIT):
        super().__init__(limit)
        self.client = client
        self.table = table

    def _read(self) -> Optional[str]:
        response = (
            self.client.table(self.table)
            .select("reports")
            .eq("key", HISTORY_KEY)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        reports = response.data[0].get("reports")
        if reports is None:
            return None
        # jsonb comes back decoded; text columns come back as a string
        return reports if isinstance(reports, str) else json.dumps(reports)

    def _write(self, payload: str) -> None:
        response = (
            self.client.table(self.table)
            .upsert({"key": HISTORY_KEY, "reports": json.loads(payload)}, on_conflict="key")
            .execute()
        )
        if response.data is None:
            raise HistoryPersistenceError("Supabase upsert returned no data")


def build_history_store(settings: Optional[Settings] = None) -> HistoryStore:
    """Create the history store selected by HISTORY_BACKEND."""
    settings = settings or get_settings()
    if settings.history_backend == "supabase":
        from edugrade.db.supabase_client import get_supabase_client
        return SupabaseHistoryStore(
            get_supabase_client(),
            table=settings.supabase_history_table,
            limit=settings.history_limit,
        )
    return JsonFileHistoryStore(settings.data_dir, limit=settings.history_limit)


@lru_cache
def get_history_store() -> HistoryStore:
    """Shared history store for the API process."""
    return build_history_store()
