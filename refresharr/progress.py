"""
Progress reporting for cleanup runs.
"""

import logging
import sys
from typing import Optional

from tqdm import tqdm

from refresharr.logging_config import get_console_lock
from refresharr.models import MEDIA_SERIES, CleanupStats


class ProgressReporter:
    """Receives progress events from the cleanup engine. Does nothing by default."""

    def start_item(self, kind: str, item_id: int, name: str, index: int, total: int) -> None:
        pass

    def start_episode(self, episode_id: int, season: int, episode: int) -> None:
        pass

    def report_missing_file(self, file_path: str) -> None:
        pass

    def report_deleted_record(self, kind: str, file_id: int) -> None:
        pass

    def report_info(self, message: str) -> None:
        pass

    def report_error(self, error: BaseException) -> None:
        pass

    def item_done(self) -> None:
        pass

    def finish(self, stats: CleanupStats, dry_run: bool = False) -> None:
        pass


NullProgressReporter = ProgressReporter


class ConsoleProgressReporter(ProgressReporter):
    """Logs progress events and optionally drives a tqdm bar over the item count.

    The bar writes under the shared console lock so it does not interleave
    with log lines from worker threads.
    """

    def __init__(self, show_progress_bar: bool = False):
        self.show_progress_bar = show_progress_bar
        self._pbar: Optional[tqdm] = None

    def start_item(self, kind, item_id, name, index, total):
        if self.show_progress_bar:
            with get_console_lock():
                if self._pbar is None:
                    self._pbar = tqdm(total=total, desc=f"Checking {kind}", unit=kind,
                                      bar_format="{l_bar}{bar:20}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}]",
                                      mininterval=0.5, ncols=80, file=sys.stdout, disable=None)
        label = "series" if kind == MEDIA_SERIES else "movie"
        logging.info(f"Processing {label} {index}/{total} (ID: {item_id}): {name}")

    def start_episode(self, episode_id, season, episode):
        logging.debug(f"  Checking S{season:02d}E{episode:02d} (Episode ID: {episode_id})")

    def report_missing_file(self, file_path):
        logging.info(f"    Missing file: {file_path}")

    def report_deleted_record(self, kind, file_id):
        label = "episode" if kind == MEDIA_SERIES else "movie"
        logging.info(f"    Deleted {label} file record (ID: {file_id})")

    def report_info(self, message):
        logging.info(f"    {message}")

    def report_error(self, error):
        logging.error(f"    Error: {error}")

    def item_done(self):
        if self._pbar is not None:
            with get_console_lock():
                self._pbar.update(1)

    def finish(self, stats, dry_run=False):
        if self._pbar is not None:
            with get_console_lock():
                self._pbar.close()
            self._pbar = None

        logging.info("")
        logging.info("================================================")
        logging.info("Cleanup Summary:")
        logging.info(f"  Total items checked: {stats.checked}")
        logging.info(f"  Missing files found: {stats.missing_files}")
        logging.info(f"  Records deleted: {stats.deleted_records}")
        if stats.errors:
            logging.warning(f"  Errors: {stats.errors}")
        logging.info("")

        if stats.missing_files == 0:
            logging.info("No missing files found - nothing to clean up.")
        elif dry_run:
            logging.info("Dry run: run without --dry-run to delete these records.")
