"""
Per-item reconciliation: compares backend file records with the filesystem.

A movie is checked directly. A series fans its episodes out to a small inner
thread pool. Workers never touch shared state; each returns an ItemOutcome
that the engine's aggregator merges, including the partial outcome of a
series cut short by cancellation.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional

from refresharr.arr_client import MediaBackend
from refresharr.errors import CleanupCancelled, is_not_found_error
from refresharr.filesystem import FileSystemChecker
from refresharr.models import (
    MEDIA_MOVIE,
    MEDIA_SERIES,
    CleanupStats,
    Episode,
    ItemOutcome,
    MissingFileEntry,
    NameLookup,
)
from refresharr.progress import ProgressReporter

# Inner cap for episodes of a single series
MAX_EPISODE_CONCURRENCY = 3


class ItemReconciler:
    """Checks one series or movie and deletes stale file records."""

    def __init__(self, backend: MediaBackend, probe: FileSystemChecker, progress: ProgressReporter,
                 names: NameLookup, dry_run: bool = False, concurrent_limit: int = 5,
                 request_delay: float = 0.0, update_after_delete: bool = False,
                 cancel_event: Optional[threading.Event] = None):
        self.backend = backend
        self.probe = probe
        self.progress = progress
        self.names = names
        self.dry_run = dry_run
        self.concurrent_limit = concurrent_limit
        self.request_delay = request_delay
        self.update_after_delete = update_after_delete
        self.cancel_event = cancel_event or threading.Event()

    @property
    def episode_concurrency(self) -> int:
        return max(1, min(self.concurrent_limit, MAX_EPISODE_CONCURRENCY))

    def _pause(self) -> None:
        if self.request_delay > 0:
            time.sleep(self.request_delay)

    # ------------------------------------------------------------------
    # Movies
    # ------------------------------------------------------------------

    def reconcile_movie(self, movie_id: int) -> ItemOutcome:
        """Check a single movie. Raises if the movie record cannot be fetched."""
        stats = CleanupStats()
        logging.debug(f"Fetching movie {movie_id}...")
        movie = self.backend.get_movie(movie_id)

        if not movie.has_file or not movie.movie_file_id:
            logging.debug(f"  Movie {movie_id} has no file reference")
            return ItemOutcome(movie_id, stats)

        stats.checked += 1
        file_id = movie.movie_file_id

        try:
            movie_file = self.backend.get_movie_file(file_id)
        except Exception as e:
            if is_not_found_error(e):
                self.progress.report_info(f"Movie file {file_id} already deleted or not found")
                return ItemOutcome(movie_id, stats)
            logging.warning(f"    Failed to get movie file {file_id}: {e}")
            self.progress.report_error(e)
            stats.errors += 1
            return ItemOutcome(movie_id, stats)

        if not movie_file.path:
            logging.warning(f"    No file path found for movie file {file_id}")
            return ItemOutcome(movie_id, stats)

        if self.probe.file_exists(movie_file.path):
            logging.debug(f"    File exists: {movie_file.path}")
            return ItemOutcome(movie_id, stats)

        stats.missing_files += 1
        self.progress.report_missing_file(movie_file.path)
        entry = MissingFileEntry(
            media_type=MEDIA_MOVIE,
            media_name=movie.title or self.names.get(MEDIA_MOVIE, movie_id),
            file_path=movie_file.path,
            file_id=file_id,
            tmdb_id=movie.tmdb_id,
        )

        if self.dry_run:
            logging.info(f"    DRY RUN: Would delete movie file record {file_id}")
            return ItemOutcome(movie_id, stats, (entry,))

        logging.info(f"    Deleting movie file record {file_id}...")
        try:
            self.backend.delete_movie_file(file_id)
        except Exception as e:
            logging.error(f"    Failed to delete movie file record {file_id}: {e}")
            self.progress.report_error(e)
            stats.errors += 1
            return ItemOutcome(movie_id, stats, (entry,))

        stats.deleted_records += 1
        self.progress.report_deleted_record(MEDIA_MOVIE, file_id)

        if self.update_after_delete:
            movie.has_file = False
            try:
                self.backend.update_movie(movie)
            except Exception as e:
                logging.warning(f"    Failed to update movie {movie.id}: {e}")

        self._pause()
        return ItemOutcome(movie_id, stats, (entry,))

    # ------------------------------------------------------------------
    # Series
    # ------------------------------------------------------------------

    def reconcile_series(self, series_id: int) -> ItemOutcome:
        """Check every episode of a series that claims to have a file.

        If the run is cancelled while episodes are pending, the episodes already
        checked are still returned, with CleanupCancelled as the outcome error.
        """
        stats = CleanupStats()
        logging.debug(f"Fetching episodes for series {series_id}...")
        episodes = self.backend.list_episodes(series_id)

        with_files = [ep for ep in episodes if ep.has_file and ep.episode_file_id]
        if not with_files:
            logging.debug(f"  No episodes with files for series {series_id}")
            return ItemOutcome(series_id, stats)

        series_name = self.names.get(MEDIA_SERIES, series_id)
        entries: List[MissingFileEntry] = []
        cancelled = False

        with ThreadPoolExecutor(max_workers=self.episode_concurrency) as executor:
            futures = [executor.submit(self._check_episode, ep, series_name) for ep in with_files]
            for future in as_completed(futures):
                outcome = future.result()
                if isinstance(outcome.error, CleanupCancelled):
                    cancelled = True
                    continue
                stats.merge(outcome.stats)
                entries.extend(outcome.entries)

        if cancelled:
            return ItemOutcome(series_id, stats, tuple(entries),
                               error=CleanupCancelled(f"cancelled while processing series {series_id}"))
        return ItemOutcome(series_id, stats, tuple(entries))

    def _check_episode(self, episode: Episode, series_name: str) -> ItemOutcome:
        if self.cancel_event.is_set():
            return ItemOutcome(episode.id, CleanupStats(), error=CleanupCancelled())

        stats = CleanupStats(checked=1)
        file_id = episode.episode_file_id
        self.progress.start_episode(episode.id, episode.season_number, episode.episode_number)

        try:
            episode_file = self.backend.get_episode_file(file_id)
        except Exception as e:
            if is_not_found_error(e):
                self.progress.report_info(f"Episode file {file_id} already deleted or not found")
                return ItemOutcome(episode.id, stats)
            logging.warning(f"    Failed to get episode file {file_id}: {e}")
            self.progress.report_error(e)
            stats.errors += 1
            return ItemOutcome(episode.id, stats)

        if not episode_file.path:
            logging.warning(f"    No file path found for episode file {file_id}")
            return ItemOutcome(episode.id, stats)

        if self.probe.file_exists(episode_file.path):
            logging.debug(f"    File exists: {episode_file.path}")
            return ItemOutcome(episode.id, stats)

        stats.missing_files += 1
        self.progress.report_missing_file(episode_file.path)
        entry = MissingFileEntry(
            media_type=MEDIA_SERIES,
            media_name=series_name,
            file_path=episode_file.path,
            file_id=file_id,
            episode_name=episode.title,
            season=episode.season_number,
            episode=episode.episode_number,
        )

        if self.dry_run:
            logging.info(f"    DRY RUN: Would delete episode file record {file_id}")
            return ItemOutcome(episode.id, stats, (entry,))

        logging.info(f"    Deleting episode file record {file_id}...")
        try:
            self.backend.delete_episode_file(file_id)
        except Exception as e:
            logging.error(f"    Failed to delete episode file record {file_id}: {e}")
            self.progress.report_error(e)
            stats.errors += 1
            return ItemOutcome(episode.id, stats, (entry,))

        stats.deleted_records += 1
        self.progress.report_deleted_record(MEDIA_SERIES, file_id)

        if self.update_after_delete:
            episode.has_file = False
            episode.episode_file_id = None
            try:
                self.backend.update_episode(episode)
            except Exception as e:
                logging.warning(f"    Failed to update episode {episode.id}: {e}")

        self._pause()
        return ItemOutcome(episode.id, stats, (entry,))
