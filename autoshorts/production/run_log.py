"""
Run-log stores: one append-only record per finished run.

JsonlRunLogStore writes one JSON object per line; it is never rewritten, so a
crash mid-append loses at most the last line, which recent() skips.
"""
from __future__ import annotations

import logging
import threading
from pathlib import Path

from pydantic import ValidationError

from autoshorts.production.collaborators import RunLogStore
from autoshorts.schemas.run import RunLogRecord

logger = logging.getLogger(__name__)


class JsonlRunLogStore(RunLogStore):

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, record: RunLogRecord) -> None:
        line = record.model_dump_json()
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as fh:
                fh.write(line + "\n")

    def recent(self, limit: int = 20) -> list[RunLogRecord]:
        if limit <= 0 or not self.path.exists():
            return []
        with self._lock:
            lines = self.path.read_text(encoding="utf-8").splitlines()
        records: list[RunLogRecord] = []
        for line in reversed(lines):
            if not line.strip():
                continue
            try:
                records.append(RunLogRecord.model_validate_json(line))
            except ValidationError:
                logger.warning("Skipping unreadable run-log line in %s", self.path.name)
                continue
            if len(records) >= limit:
                break
        return records


class InMemoryRunLogStore(RunLogStore):

    def __init__(self) -> None:
        self.records: list[RunLogRecord] = []
        self._lock = threading.Lock()

    def append(self, record: RunLogRecord) -> None:
        with self._lock:
            self.records.append(record)

    def recent(self, limit: int = 20) -> list[RunLogRecord]:
        with self._lock:
            return list(reversed(self.records))[:max(limit, 0)]
