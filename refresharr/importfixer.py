"""
Stuck import fixer.

Finds completed downloads that Sonarr refuses to import because it thinks the
episode is already imported, and retries them through manual import.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from refresharr.arr_client import MediaBackend
from refresharr.config import DEFAULT_DOWNLOAD_PATHS
from refresharr.errors import ArrError
from refresharr.models import ManualImportItem, QueueItem

IMPORT_ISSUE_KEYWORDS = (
    "already imported",
    "episode file already imported",
    "one or more episodes expected",
    "missing from the release",
)


@dataclass
class ImportFixResult:
    total_stuck_items: int = 0
    fixed_items: int = 0
    errors: List[str] = field(default_factory=list)
    dry_run: bool = False


def has_import_issue(item: QueueItem) -> bool:
    """True for a completed download blocked by an 'already imported' style message."""
    if item.status.lower() != "completed":
        return False
    texts = [m.title for m in item.status_messages]
    for message in item.status_messages:
        texts.extend(message.messages)
    texts.append(item.error_message)
    return any(keyword in text.lower() for text in texts for keyword in IMPORT_ISSUE_KEYWORDS)


class ImportFixer:
    """Retries stuck queue items through the manual import API."""

    def __init__(self, backend: MediaBackend, dry_run: bool = False,
                 download_paths: Optional[List[str]] = None):
        self.backend = backend
        self.dry_run = dry_run
        self.download_paths = list(download_paths if download_paths is not None else DEFAULT_DOWNLOAD_PATHS)

    def analyze_stuck_imports(self) -> List[QueueItem]:
        logging.info("Fetching download queue...")
        queue = self.backend.get_queue()
        if not queue:
            logging.info("No items in queue")
            return []
        logging.info(f"Found {len(queue)} items in queue")

        stuck = [item for item in queue if has_import_issue(item)]
        logging.info(f"Found {len(stuck)} items with 'already imported' issues")
        for item in stuck:
            size_mb = item.size / 1024 / 1024
            logging.info(f"  ID: {item.id} | {item.series_title or 'Unknown'} - {item.title} ({size_mb:.2f} MB)")
            if item.download_id:
                logging.debug(f"    DownloadID: {item.download_id}")
            if item.output_path:
                logging.debug(f"    OutputPath: {item.output_path}")
            for message in item.status_messages:
                logging.info(f"    -> {message.title}")
        return stuck

    def fix_imports(self) -> ImportFixResult:
        stuck = self.analyze_stuck_imports()
        result = ImportFixResult(total_stuck_items=len(stuck), dry_run=self.dry_run)

        if not stuck:
            logging.info("No stuck imports found to fix!")
            return result

        if self.dry_run:
            logging.info(f"[DRY RUN] Would attempt to import {len(stuck)} stuck import(s)")
            logging.info("Run without --dry-run to actually process these items")
            return result

        logging.info("Triggering download client scan to refresh stuck imports...")
        try:
            self.backend.trigger_download_scan()
        except ArrError as e:
            logging.warning(f"Failed to trigger download client scan: {e} (continuing anyway)")

        for item in stuck:
            logging.info(f"Processing: {item.series_title or 'Unknown'} - {item.title} (ID: {item.id})")
            if self.attempt_manual_import(item):
                logging.info("  Imported via manual import")
                result.fixed_items += 1
            else:
                message = (f"Failed to import queue item {item.id} ({item.series_title} - {item.title}). "
                           f"Item left in queue for manual resolution.")
                logging.warning(f"  {message}")
                result.errors.append(message)

        logging.info(f"Import results: {result.fixed_items}/{result.total_stuck_items} imported, "
                     f"{len(result.errors)} left in queue for manual resolution")
        return result

    def attempt_manual_import(self, item: QueueItem) -> bool:
        """Try each import strategy in turn: output path, download ID, series."""
        if item.output_path and self._import_from_folder(item.output_path, item):
            logging.debug("  -> Imported using OutputPath")
            return True

        if item.download_id:
            files = self._scan(download_id=item.download_id)
            if self._execute(self._match_queue_item(files, item)):
                logging.debug("  -> Imported using DownloadID")
                return True

        if item.series_id:
            files = self._scan(series_id=item.series_id)
            if self._execute(self._match_series(files, item.series_id)):
                logging.debug("  -> Imported using SeriesID")
                return True
            for path in self._candidate_folders(item):
                if self._import_from_folder(path, item, strict_series=True):
                    return True

        logging.debug("  -> All manual import strategies failed")
        return False

    def _candidate_folders(self, item: QueueItem) -> List[str]:
        folders = []
        if item.series_title:
            folders.extend(f"{base.rstrip('/')}/{item.series_title}" for base in self.download_paths)
        folders.extend(self.download_paths)
        return folders

    def _scan(self, folder: str = "", download_id: str = "", series_id: int = 0) -> List[ManualImportItem]:
        try:
            return self.backend.get_manual_import(folder=folder, download_id=download_id, series_id=series_id)
        except ArrError as e:
            logging.debug(f"    -> Manual import scan failed ({folder or download_id or series_id}): {e}")
            return []

    def _import_from_folder(self, folder: str, item: QueueItem, strict_series: bool = False) -> bool:
        files = self._scan(folder=folder)
        if strict_series:
            matched = self._match_series(files, item.series_id)
        else:
            matched = self._match_queue_item(files, item)
        return self._execute(matched)

    @staticmethod
    def _match_queue_item(files: List[ManualImportItem], item: QueueItem) -> List[ManualImportItem]:
        matched = []
        for candidate in files:
            if candidate.series_id and item.series_id:
                if candidate.series_id == item.series_id:
                    matched.append(candidate)
            elif item.download_id and candidate.download_id == item.download_id:
                matched.append(candidate)
        return matched

    @staticmethod
    def _match_series(files: List[ManualImportItem], series_id: int) -> List[ManualImportItem]:
        return [f for f in files if f.series_id and f.series_id == series_id]

    def _execute(self, files: List[ManualImportItem]) -> bool:
        if not files:
            return False
        for f in files:
            logging.debug(f"      -> Importing: {f.name or f.path} ({f.series_title or 'Unknown Series'})")
        try:
            self.backend.execute_manual_import(files, import_mode="move")
        except ArrError as e:
            logging.debug(f"    -> Manual import failed: {e}")
            return False
        return True
