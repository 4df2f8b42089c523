"""
Thread-safe collection of missing file entries for one cleanup run.
"""

import threading
from typing import Dict, Iterable, List

from refresharr.models import (
    RUN_DRY,
    RUN_REAL,
    MissingFileEntry,
    MissingFilesReport,
    now_timestamp,
)


def _prefer(existing: MissingFileEntry, candidate: MissingFileEntry) -> MissingFileEntry:
    """Pick which of two entries sharing a dedup key survives."""
    if candidate.file_id and not existing.file_id:
        return candidate
    if existing.file_id and not candidate.file_id:
        return existing
    if candidate.processed_at > existing.processed_at:
        return candidate
    return existing


def deduplicate(entries: Iterable[MissingFileEntry]) -> List[MissingFileEntry]:
    """Collapse entries that describe the same media item.

    Movies are keyed by TMDB ID and series by TVDB ID when known, otherwise by
    kind and path. Entries backed by a real file record win over symlink-scan
    entries (file_id 0); ties go to the most recently processed entry.
    The result is ordered by processed_at.
    """
    best: Dict[str, MissingFileEntry] = {}
    for entry in entries:
        key = entry.dedup_key()
        existing = best.get(key)
        best[key] = entry if existing is None else _prefer(existing, entry)
    return sorted(best.values(), key=lambda e: (e.processed_at, e.media_type, e.file_path))


class MissingFileRegistry:
    """Accumulates missing file entries from concurrent workers.

    add() records every entry as-is; duplicates are resolved only when the
    report is built, since the same file can be seen by both the record check
    and the symlink scan in one run.
    """

    def __init__(self):
        self._entries: List[MissingFileEntry] = []
        self._lock = threading.Lock()

    def add(self, entry: MissingFileEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def extend(self, entries: Iterable[MissingFileEntry]) -> None:
        entries = list(entries)
        with self._lock:
            self._entries.extend(entries)

    def entries(self) -> List[MissingFileEntry]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def build_report(self, service_type: str, dry_run: bool) -> MissingFilesReport:
        unique = deduplicate(self.entries())
        return MissingFilesReport(
            generated_at=now_timestamp(),
            run_type=RUN_DRY if dry_run else RUN_REAL,
            service_type=service_type,
            total_missing=len(unique),
            missing_files=unique,
        )
