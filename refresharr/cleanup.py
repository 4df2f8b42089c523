"""
Cleanup engine for RefreshArr.

Walks a backend's inventory, dispatches one reconciler per series or movie
on a bounded thread pool, and merges the results in a single aggregator
loop running on the calling thread.

Cancellation is cooperative: workers check the cancel event before they
start and workers already running always finish. The aggregator stops
waiting for new results, keeps the outcomes of the running workers and
returns a partial result.
"""

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from refresharr.arr_client import MediaBackend
from refresharr.errors import ArrError, CleanupCancelled, OperationError
from refresharr.filesystem import FileSystemChecker
from refresharr.models import (
    MEDIA_MOVIE,
    MEDIA_SERIES,
    CleanupResult,
    CleanupStats,
    ItemOutcome,
    NameLookup,
)
from refresharr.progress import ProgressReporter
from refresharr.reconciler import ItemReconciler
from refresharr.registry import MissingFileRegistry
from refresharr.symlinks import BrokenSymlinkRecoverer

# How often the aggregator wakes up to look at the cancel event
RESULT_POLL_INTERVAL = 0.1


@dataclass
class CleanupRun:
    """State owned by a single cleanup run."""
    cancel_event: threading.Event = field(default_factory=threading.Event)
    registry: MissingFileRegistry = field(default_factory=MissingFileRegistry)
    names: NameLookup = field(default_factory=NameLookup)


class CleanupService:
    """Reconciles one Sonarr or Radarr instance against the filesystem."""

    def __init__(self, backend: MediaBackend, probe: Optional[FileSystemChecker] = None,
                 progress: Optional[ProgressReporter] = None, dry_run: bool = False,
                 concurrent_limit: int = 5, request_delay: float = 0.5,
                 add_missing_media: bool = False, quality_profile_id: int = 12,
                 update_after_delete: bool = False):
        if concurrent_limit < 1:
            raise ValueError(f"concurrent_limit must be at least 1, got {concurrent_limit}")
        self.backend = backend
        self.probe = probe or FileSystemChecker()
        self.progress = progress or ProgressReporter()
        self.dry_run = dry_run
        self.concurrent_limit = concurrent_limit
        self.request_delay = request_delay
        self.add_missing_media = add_missing_media
        self.quality_profile_id = quality_profile_id
        self.update_after_delete = update_after_delete

    @property
    def media_type(self) -> str:
        if self.backend.name == "sonarr":
            return MEDIA_SERIES
        if self.backend.name == "radarr":
            return MEDIA_MOVIE
        raise ValueError(f"Unsupported backend: {self.backend.name}")

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def cleanup_missing_files(self, cancel_event: Optional[threading.Event] = None) -> CleanupResult:
        """Full run: every series or movie in the backend, plus the broken symlink scan.

        Raises ConnectionError if the backend is unreachable and OperationError
        if the inventory cannot be listed. Everything after that is reported in
        the returned CleanupResult.
        """
        kind = self.media_type
        label = "series" if kind == MEDIA_SERIES else "movies"
        logging.info(f"Starting {self.backend.name} missing file cleanup...")
        logging.info("================================================")
        if self.dry_run:
            logging.info("DRY RUN MODE: No changes will be made")

        self.backend.test_connection()
        run = CleanupRun(cancel_event=cancel_event or threading.Event())

        logging.info(f"Step 1: Fetching all {label}...")
        try:
            items = self.backend.list_series() if kind == MEDIA_SERIES else self.backend.list_movies()
        except ArrError as e:
            raise OperationError(f"failed to fetch {label}: {e}") from e

        if not items:
            logging.info(f"No {label} found")
            return CleanupResult(report=run.registry.build_report(self.backend.name, self.dry_run))

        logging.info(f"Found {len(items)} {label}")
        for item in items:
            run.names.set(kind, item.id, item.title)

        stats = CleanupStats()
        messages: List[str] = []

        logging.info(f"Step 1.5: Checking for broken symlinks and missing {label}...")
        recoverer = BrokenSymlinkRecoverer(
            self.backend, self.probe, run.registry, names=run.names, dry_run=self.dry_run,
            add_missing_media=self.add_missing_media, quality_profile_id=self.quality_profile_id,
            cancel_event=run.cancel_event,
        )
        try:
            stats.merge(recoverer.recover())
        except Exception as e:
            logging.warning(f"Broken symlink handling failed: {e}")
            messages.append(f"Broken symlink handling failed: {e}")

        return self._run_items(kind, [item.id for item in items], run, stats, messages)

    def cleanup_series(self, series_ids: List[int],
                       cancel_event: Optional[threading.Event] = None) -> CleanupResult:
        """Filtered run over the given series IDs only. No symlink scan."""
        return self._cleanup_filtered(MEDIA_SERIES, series_ids, cancel_event)

    def cleanup_movies(self, movie_ids: List[int],
                       cancel_event: Optional[threading.Event] = None) -> CleanupResult:
        """Filtered run over the given movie IDs only. No symlink scan."""
        return self._cleanup_filtered(MEDIA_MOVIE, movie_ids, cancel_event)

    def _cleanup_filtered(self, kind: str, item_ids: List[int],
                          cancel_event: Optional[threading.Event]) -> CleanupResult:
        if self.dry_run:
            logging.info("DRY RUN MODE: No changes will be made")
        self.backend.test_connection()
        run = CleanupRun(cancel_event=cancel_event or threading.Event())
        return self._run_items(kind, list(item_ids), run, CleanupStats(), [])

    # ------------------------------------------------------------------
    # Dispatch and aggregation
    # ------------------------------------------------------------------

    def _run_items(self, kind: str, item_ids: List[int], run: CleanupRun,
                   stats: CleanupStats, messages: List[str]) -> CleanupResult:
        label = "series" if kind == MEDIA_SERIES else "movies"
        item_ids = list(dict.fromkeys(item_ids))
        logging.info(f"Processing {len(item_ids)} {label} with concurrency limit of {self.concurrent_limit}")

        cancelled = self._dispatch(kind, item_ids, run, stats, messages)
        if cancelled is not None:
            logging.warning("Cleanup cancelled")
            self.progress.finish(stats, dry_run=self.dry_run)
            return CleanupResult(
                stats=stats,
                messages=messages,
                success=False,
                report=run.registry.build_report(self.backend.name, self.dry_run),
                error=cancelled,
            )

        logging.info(f"Completed processing {len(item_ids)} {label}")
        self.progress.finish(stats, dry_run=self.dry_run)

        if stats.deleted_records > 0 and not self.dry_run:
            logging.info("Triggering refresh to update status...")
            try:
                self.backend.trigger_refresh()
            except Exception as e:
                logging.warning(f"Failed to trigger refresh: {e}")
                messages.append(f"Failed to trigger refresh: {e}")

        return CleanupResult(
            stats=stats,
            messages=messages,
            success=stats.errors == 0,
            report=run.registry.build_report(self.backend.name, self.dry_run),
        )

    def _dispatch(self, kind: str, item_ids: List[int], run: CleanupRun,
                  stats: CleanupStats, messages: List[str]) -> Optional[CleanupCancelled]:
        """Run every item through the pool and fold outcomes into stats.

        Returns the cancellation signal if the run was cancelled, else None.
        """
        total = len(item_ids)
        if total == 0:
            return None

        reconciler = ItemReconciler(
            self.backend, self.probe, self.progress, run.names,
            dry_run=self.dry_run, concurrent_limit=self.concurrent_limit,
            request_delay=self.request_delay, update_after_delete=self.update_after_delete,
            cancel_event=run.cancel_event,
        )
        work = reconciler.reconcile_series if kind == MEDIA_SERIES else reconciler.reconcile_movie

        # Sized to the item count so a finishing worker never blocks on put()
        results: "queue.Queue[ItemOutcome]" = queue.Queue(maxsize=total)
        executor = ThreadPoolExecutor(max_workers=self.concurrent_limit, thread_name_prefix=f"cleanup-{kind}")
        cancelled: Optional[CleanupCancelled] = None
        interrupted = False
        try:
            for index, item_id in enumerate(item_ids, 1):
                executor.submit(self._worker, work, kind, item_id, index, total, run, results)

            received = 0
            while received < total:
                if run.cancel_event.is_set():
                    cancelled = CleanupCancelled()
                    break
                try:
                    outcome = results.get(timeout=RESULT_POLL_INTERVAL)
                except queue.Empty:
                    continue
                received += 1
                self._fold(kind, outcome, run, stats, messages)
                if isinstance(outcome.error, CleanupCancelled):
                    cancelled = outcome.error
                    break
        except KeyboardInterrupt:
            run.cancel_event.set()
            cancelled = CleanupCancelled("cleanup interrupted")
            interrupted = True
        finally:
            # Unstarted items are dropped; running workers finish unless interrupted
            executor.shutdown(wait=not interrupted, cancel_futures=cancelled is not None)

        if cancelled is not None:
            # Deletions made by workers that were already running still belong in the report
            while True:
                try:
                    outcome = results.get_nowait()
                except queue.Empty:
                    break
                self._fold(kind, outcome, run, stats, messages)
        return cancelled

    def _fold(self, kind: str, outcome: ItemOutcome, run: CleanupRun,
              stats: CleanupStats, messages: List[str]) -> None:
        """Merge one worker outcome into the run's stats, registry and messages."""
        self.progress.item_done()
        if outcome.error is not None and not isinstance(outcome.error, CleanupCancelled):
            logging.error(f"Error processing {kind} {outcome.item_id}: {outcome.error}")
            self.progress.report_error(outcome.error)
            stats.errors += 1
            messages.append(f"Error processing {kind} {outcome.item_id}: {outcome.error}")
            return

        stats.merge(outcome.stats)
        run.registry.extend(outcome.entries)

    def _worker(self, work: Callable[[int], ItemOutcome], kind: str, item_id: int, index: int,
                total: int, run: CleanupRun, results: "queue.Queue[ItemOutcome]") -> None:
        if run.cancel_event.is_set():
            results.put(ItemOutcome(item_id, CleanupStats(), error=CleanupCancelled()))
            return

        self.progress.start_item(kind, item_id, run.names.get(kind, item_id), index, total)
        try:
            outcome = work(item_id)
        except Exception as e:
            outcome = ItemOutcome(item_id, CleanupStats(), error=e)
        results.put(outcome)

        if self.request_delay > 0:
            time.sleep(self.request_delay)
