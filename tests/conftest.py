"""Shared test fixtures for the RefreshArr test suite."""

import os
import sys
import threading
import time
from collections import Counter
from typing import Dict, List, Optional

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from refresharr.arr_client import MediaBackend
from refresharr.errors import NotFoundError, OperationError
from refresharr.models import Episode, EpisodeFile, Movie, MovieFile, RootFolder, Series


# Skip symlink tests on Windows (requires developer mode or admin privileges)
needs_symlink = pytest.mark.skipif(
    os.name == 'nt', reason="Symlink tests require Unix or Windows developer mode"
)


# ============================================================================
# Fake collaborators
# ============================================================================

class FakeBackend(MediaBackend):
    """In-memory MediaBackend that records every call.

    File maps hold either a record or an exception to raise.
    """

    def __init__(self, name: str = "sonarr", series: Optional[List[Series]] = None,
                 episodes: Optional[Dict[int, List[Episode]]] = None,
                 episode_files: Optional[Dict[int, object]] = None,
                 movies: Optional[Dict[int, Movie]] = None,
                 movie_files: Optional[Dict[int, object]] = None,
                 root_folders: Optional[List[RootFolder]] = None,
                 existing: Optional[Dict[int, object]] = None,
                 lookups: Optional[Dict[int, object]] = None,
                 call_delay: float = 0.0):
        self.name = name
        self.series = series or []
        self.episodes = episodes or {}
        self.episode_files = episode_files or {}
        self.movies = movies or {}
        self.movie_files = movie_files or {}
        self.root_folders = root_folders or []
        self.existing = existing or {}
        self.lookups = lookups or {}
        self.call_delay = call_delay
        self.connection_error: Optional[Exception] = None
        self.delete_error: Optional[Exception] = None
        self.refresh_error: Optional[Exception] = None
        self.on_get_movie = None
        self.on_delete_episode_file = None

        self.calls = Counter()
        self.deleted: List[int] = []
        self.added: List[object] = []
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0
        self.episode_file_active = 0
        self.max_episode_file_active = 0

    def _record(self, method: str) -> None:
        with self._lock:
            self.calls[method] += 1

    def _enter(self) -> None:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)

    def _exit(self) -> None:
        with self._lock:
            self.active -= 1

    @staticmethod
    def _resolve(value, missing_message):
        if value is None:
            raise NotFoundError(missing_message, status_code=404)
        if isinstance(value, Exception):
            raise value
        return value

    def test_connection(self):
        self._record("test_connection")
        if self.connection_error is not None:
            raise self.connection_error

    def list_series(self):
        self._record("list_series")
        return list(self.series)

    def list_episodes(self, series_id):
        self._record("list_episodes")
        self._enter()
        try:
            if self.call_delay:
                time.sleep(self.call_delay)
            return self._resolve(self.episodes.get(series_id, []), f"series {series_id} not found")
        finally:
            self._exit()

    def get_episode_file(self, file_id):
        self._record("get_episode_file")
        with self._lock:
            self.episode_file_active += 1
            self.max_episode_file_active = max(self.max_episode_file_active, self.episode_file_active)
        try:
            if self.call_delay:
                time.sleep(self.call_delay)
            return self._resolve(self.episode_files.get(file_id), f"episode file {file_id} not found")
        finally:
            with self._lock:
                self.episode_file_active -= 1

    def delete_episode_file(self, file_id):
        self._record("delete_episode_file")
        if self.delete_error is not None:
            raise self.delete_error
        with self._lock:
            self.deleted.append(file_id)
        if self.on_delete_episode_file is not None:
            self.on_delete_episode_file(file_id)

    def update_episode(self, episode):
        self._record("update_episode")

    def list_movies(self):
        self._record("list_movies")
        return list(self.movies.values())

    def get_movie(self, movie_id):
        self._record("get_movie")
        if self.on_get_movie is not None:
            self.on_get_movie(movie_id)
        self._enter()
        try:
            if self.call_delay:
                time.sleep(self.call_delay)
            return self._resolve(self.movies.get(movie_id), f"movie {movie_id} not found")
        finally:
            self._exit()

    def get_movie_file(self, file_id):
        self._record("get_movie_file")
        return self._resolve(self.movie_files.get(file_id), f"movie file {file_id} not found")

    def delete_movie_file(self, file_id):
        self._record("delete_movie_file")
        if self.delete_error is not None:
            raise self.delete_error
        with self._lock:
            self.deleted.append(file_id)

    def update_movie(self, movie):
        self._record("update_movie")
        raise OperationError("HTTP 400")

    def trigger_refresh(self):
        self._record("trigger_refresh")
        if self.refresh_error is not None:
            raise self.refresh_error

    def list_root_folders(self):
        self._record("list_root_folders")
        return list(self.root_folders)

    def list_quality_profiles(self):
        self._record("list_quality_profiles")
        return []

    def lookup_by_external_id(self, external_id):
        self._record("lookup_by_external_id")
        return self._resolve(self.lookups.get(external_id), f"lookup {external_id} not found")

    def get_by_external_id(self, external_id):
        self._record("get_by_external_id")
        value = self.existing.get(external_id)
        if isinstance(value, Exception):
            raise value
        return value

    def add_to_collection(self, item):
        self._record("add_to_collection")
        with self._lock:
            self.added.append(item)
        item.id = 1000 + len(self.added)
        return item

    def get_queue(self):
        self._record("get_queue")
        return []

    def remove_from_queue(self, queue_id, remove_from_client=False):
        self._record("remove_from_queue")

    def trigger_download_scan(self):
        self._record("trigger_download_scan")

    def get_manual_import(self, folder="", download_id="", series_id=0):
        self._record("get_manual_import")
        return []

    def execute_manual_import(self, files, import_mode="move"):
        self._record("execute_manual_import")

    @property
    def mutating_calls(self) -> int:
        return sum(self.calls[m] for m in (
            "delete_episode_file", "delete_movie_file", "add_to_collection",
            "update_episode", "update_movie", "trigger_refresh",
        ))


class FakeProbe:
    """Filesystem probe backed by a set of existing paths."""

    def __init__(self, existing=None, broken=None, scan_errors=None, delete_errors=None):
        self.existing = set(existing or ())
        self.broken = dict(broken or {})
        self.scan_errors = dict(scan_errors or {})
        self.delete_errors = dict(delete_errors or {})
        self.deleted: List[str] = []

    def file_exists(self, path):
        return path in self.existing

    def find_broken_symlinks(self, root, extensions=()):
        if root in self.scan_errors:
            raise self.scan_errors[root]
        return list(self.broken.get(root, []))

    def delete_symlink(self, path):
        if path in self.delete_errors:
            raise self.delete_errors[path]
        self.deleted.append(path)


# ============================================================================
# Fixtures
# ============================================================================

def make_episode(episode_id, series_id=1, season=1, number=1, file_id=None, title=""):
    return Episode(
        id=episode_id,
        series_id=series_id,
        season_number=season,
        episode_number=number,
        title=title or f"Episode {number}",
        has_file=file_id is not None,
        episode_file_id=file_id,
    )


@pytest.fixture
def sonarr_scenario():
    """Series 1 with three episodes: one missing on disk, one present, one without a file."""
    backend = FakeBackend(
        name="sonarr",
        series=[Series(id=1, title="Show One", tvdb_id=81189)],
        episodes={1: [
            make_episode(11, number=1, file_id=101, title="Pilot"),
            make_episode(12, number=2, file_id=102, title="Second"),
            make_episode(13, number=3),
        ]},
        episode_files={
            101: EpisodeFile(id=101, path="/tv/Show One/S01E01.mkv"),
            102: EpisodeFile(id=102, path="/tv/Show One/S01E02.mkv"),
        },
    )
    probe = FakeProbe(existing={"/tv/Show One/S01E02.mkv"})
    return backend, probe


@pytest.fixture
def radarr_backend():
    return FakeBackend(
        name="radarr",
        movies={
            1: Movie(id=1, title="Present", tmdb_id=11, has_file=True, movie_file_id=201),
            2: Movie(id=2, title="Gone", tmdb_id=22, has_file=True, movie_file_id=202),
            3: Movie(id=3, title="Never Downloaded", tmdb_id=33),
        },
        movie_files={
            201: MovieFile(id=201, path="/movies/Present (2001)/present.mkv", movie_id=1),
            202: MovieFile(id=202, path="/movies/Gone (2002)/gone.mkv", movie_id=2),
        },
    )
