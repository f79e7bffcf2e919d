"""
Per-run scratch directories and retention sweeps.

Every run gets a uniquely named directory under the workspace root; all
synthesized audio, visuals, thumbnails, subtitle files and the partial encode
live there and are removed when the run's ``with`` block exits, whatever the
outcome.  The produced mp4 is the only artifact written outside a workspace
(into the output directory); sweep() removes those once they exceed the
retention period.
"""
from __future__ import annotations

import datetime
import logging
import re
import shutil
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"[^A-Za-z0-9_.-]+")

# Only these output artifacts are subject to retention; the run log is not.
_OUTPUT_PATTERNS = ("*.mp4", ".*.partial.mp4")


class Workspace(BaseModel):
    """Paths inside one run's scratch directory."""
    run_id: str
    root: Path

    @property
    def audio_path(self) -> Path:
        return self.root / "narration.mp3"

    @property
    def visuals_dir(self) -> Path:
        return self.root / "visuals"

    def visual_path(self, ordinal: int) -> Path:
        return self.visuals_dir / f"segment_{ordinal:03d}.png"

    @property
    def thumbnail_path(self) -> Path:
        return self.root / "thumbnail.png"

    @property
    def subtitles_path(self) -> Path:
        return self.root / "captions.srt"


class WorkspaceManager:
    """Creates, tears down and sweeps run workspaces."""

    def __init__(
        self,
        root: Path,
        output_dir: Optional[Path] = None,
        retention_days: float = 7.0,
    ) -> None:
        self.root = Path(root)
        self.output_dir = Path(output_dir) if output_dir is not None else None
        self.retention = datetime.timedelta(days=retention_days)
        self._active: set[Path] = set()
        self._lock = threading.Lock()

    @contextmanager
    def workspace(self, run_id: str) -> Iterator[Workspace]:
        """Yield a fresh Workspace; remove it recursively on every exit path."""
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.root / f"{_SAFE_ID.sub('_', run_id)}-{uuid.uuid4().hex[:8]}"
        path.mkdir()
        ws = Workspace(run_id=run_id, root=path)
        ws.visuals_dir.mkdir()
        with self._lock:
            self._active.add(path)
        logger.debug("Workspace created: %s", path)
        try:
            yield ws
        finally:
            with self._lock:
                self._active.discard(path)
            self._remove(path)
            logger.debug("Workspace removed: %s", path)

    def sweep(self, now: Optional[datetime.datetime] = None) -> list[Path]:
        """
        Remove workspaces and output videos older than the retention period.

        Directories of runs still in flight are never touched.  Returns the
        removed paths.
        """
        now = now or datetime.datetime.now(datetime.timezone.utc)
        cutoff = (now - self.retention).timestamp()
        with self._lock:
            active = set(self._active)

        candidates: list[Path] = []
        if self.root.is_dir():
            candidates += [p for p in self.root.iterdir() if p not in active]
        if self.output_dir is not None and self.output_dir.is_dir():
            for pattern in _OUTPUT_PATTERNS:
                candidates += [p for p in self.output_dir.glob(pattern) if p.is_file()]

        removed: list[Path] = []
        for path in sorted(set(candidates)):
            try:
                mtime = path.stat().st_mtime
            except FileNotFoundError:
                continue
            if mtime < cutoff:
                self._remove(path)
                removed.append(path)
        if removed:
            logger.info("Retention sweep removed %d item(s) older than %s", len(removed), self.retention)
        return removed

    def purge_all(self) -> list[Path]:
        """Remove every workspace directory (process shutdown)."""
        if not self.root.is_dir():
            return []
        removed = [p for p in self.root.iterdir()]
        for path in removed:
            self._remove(path)
        with self._lock:
            self._active.clear()
        if removed:
            logger.info("Purged %d workspace(s) under %s", len(removed), self.root)
        return removed

    @staticmethod
    def _remove(path: Path) -> None:
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove %s: %s", path, exc)
