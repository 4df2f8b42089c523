"""Tests for broken symlink recovery.

A broken symlink under a root folder means the media it pointed at is gone.
The recoverer removes the link and makes sure the backend still tracks the
item, adding it back when allowed.
"""
import threading
from unittest.mock import MagicMock

import pytest

from conftest import FakeBackend, FakeProbe
from refresharr.errors import NotFoundError, OperationError
from refresharr.models import Movie, NameLookup, RootFolder, Series
from refresharr.registry import MissingFileRegistry
from refresharr.symlinks import BrokenSymlinkRecoverer, SymlinkRecoveryError

MOVIE_LINK = "/movies/Movie (2020) [tmdb-555]/movie.mkv"
SERIES_LINK = "/tv/Some Show [tvdb-81189]/Season 01/S01E01.mkv"


def _radarr(**kwargs):
    kwargs.setdefault("root_folders", [RootFolder(id=1, path="/movies")])
    kwargs.setdefault("lookups", {555: Movie(title="Movie", year=2020, tmdb_id=555)})
    return FakeBackend(name="radarr", **kwargs)


def _recoverer(backend, probe, registry=None, **kwargs):
    return BrokenSymlinkRecoverer(backend, probe, registry if registry is not None else MissingFileRegistry(), **kwargs)


# ============================================================================
# Movies
# ============================================================================

class TestMovieRecovery:
    """Broken movie symlinks tagged with [tmdb-N]."""

    def test_missing_movie_added_to_collection(self):
        """Link is deleted, movie looked up and added with the default profile."""
        backend = _radarr()
        probe = FakeProbe(broken={"/movies": [MOVIE_LINK]})
        registry = MissingFileRegistry()

        stats = _recoverer(backend, probe, registry, add_missing_media=True).recover()

        assert stats.checked == 1
        assert stats.missing_files == 1
        assert stats.errors == 0
        assert probe.deleted == [MOVIE_LINK]

        assert len(backend.added) == 1
        added = backend.added[0]
        assert added.tmdb_id == 555
        assert added.quality_profile_id == 12
        assert added.root_folder_path == "/movies"
        assert added.monitored is True

        report = registry.build_report("radarr", dry_run=False)
        assert report.total_missing == 1
        entry = report.missing_files[0]
        assert entry.tmdb_id == 555
        assert entry.added_to_collection is True
        assert entry.file_id == 0
        assert entry.file_path == MOVIE_LINK

    def test_add_disabled_still_records_entry(self):
        backend = _radarr()
        probe = FakeProbe(broken={"/movies": [MOVIE_LINK]})
        registry = MissingFileRegistry()

        stats = _recoverer(backend, probe, registry).recover()

        assert stats.missing_files == 1
        assert backend.added == []
        assert probe.deleted == [MOVIE_LINK]
        assert registry.entries()[0].added_to_collection is False

    def test_dry_run_touches_nothing(self):
        """Dry run neither deletes the link nor adds the movie."""
        backend = _radarr()
        probe = FakeProbe(broken={"/movies": [MOVIE_LINK]})
        registry = MissingFileRegistry()

        stats = _recoverer(backend, probe, registry, dry_run=True, add_missing_media=True).recover()

        assert stats.missing_files == 1
        assert probe.deleted == []
        assert backend.added == []
        assert backend.mutating_calls == 0
        assert registry.entries()[0].added_to_collection is False

    def test_movie_already_in_collection(self):
        backend = _radarr(existing={555: Movie(id=7, title="Tracked Movie", tmdb_id=555)})
        probe = FakeProbe(broken={"/movies": [MOVIE_LINK]})
        registry = MissingFileRegistry()

        stats = _recoverer(backend, probe, registry, add_missing_media=True).recover()

        assert stats.missing_files == 1
        assert backend.calls["lookup_by_external_id"] == 0
        assert backend.added == []
        entry = registry.entries()[0]
        assert entry.media_name == "Tracked Movie"
        assert entry.added_to_collection is False

    def test_existence_check_not_found_means_absent(self):
        backend = _radarr(existing={555: NotFoundError("movie not found", status_code=404)})
        probe = FakeProbe(broken={"/movies": [MOVIE_LINK]})

        stats = _recoverer(backend, probe, add_missing_media=True).recover()

        assert stats.errors == 0
        assert len(backend.added) == 1

    def test_added_movie_name_registered(self):
        backend = _radarr()
        probe = FakeProbe(broken={"/movies": [MOVIE_LINK]})
        names = NameLookup()

        _recoverer(backend, probe, names=names, add_missing_media=True).recover()

        assert names.get("movie", 1001) == "Movie"


# ============================================================================
# Series
# ============================================================================

class TestSeriesRecovery:
    def test_series_link_uses_tvdb_tag(self):
        backend = FakeBackend(
            name="sonarr",
            root_folders=[RootFolder(id=1, path="/tv")],
            lookups={81189: Series(title="Some Show", tvdb_id=81189, year=2004)},
        )
        probe = FakeProbe(broken={"/tv": [SERIES_LINK]})
        registry = MissingFileRegistry()

        _recoverer(backend, probe, registry, add_missing_media=True).recover()

        added = backend.added[0]
        assert isinstance(added, Series)
        assert added.tvdb_id == 81189
        entry = registry.entries()[0]
        assert entry.media_type == "series"
        assert entry.tvdb_id == 81189
        assert entry.tmdb_id == 0

    def test_movie_tag_ignored_for_series(self):
        backend = FakeBackend(name="sonarr", root_folders=[RootFolder(id=1, path="/tv")])
        probe = FakeProbe(broken={"/tv": ["/tv/Odd [tmdb-5]/e.mkv"]})

        stats = _recoverer(backend, probe).recover()

        assert stats.checked == 1
        assert stats.errors == 0
        assert stats.missing_files == 0
        assert probe.deleted == []


# ============================================================================
# Failures and edge cases
# ============================================================================

class TestRecoveryFailures:
    def test_untagged_path_skipped(self):
        """A link without an ID tag is skipped without error and left in place."""
        backend = _radarr()
        probe = FakeProbe(broken={"/movies": ["/movies/Untagged/movie.mkv"]})

        stats = _recoverer(backend, probe).recover()

        assert stats.checked == 1
        assert stats.errors == 0
        assert stats.missing_files == 0
        assert probe.deleted == []

    def test_no_root_folders(self):
        backend = _radarr(root_folders=[])
        stats = _recoverer(backend, FakeProbe()).recover()
        assert stats.checked == 0
        assert stats.errors == 0

    def test_root_folder_listing_failure_propagates(self):
        backend = _radarr()
        backend.list_root_folders = MagicMock(side_effect=OperationError("HTTP 500"))

        with pytest.raises(OperationError):
            _recoverer(backend, FakeProbe()).recover()

    def test_unreadable_root_counts_error_and_continues(self):
        backend = _radarr(root_folders=[RootFolder(id=1, path="/gone"), RootFolder(id=2, path="/movies")])
        probe = FakeProbe(
            broken={"/movies": [MOVIE_LINK]},
            scan_errors={"/gone": FileNotFoundError("Root folder not found: /gone")},
        )

        stats = _recoverer(backend, probe).recover()

        assert stats.errors == 1
        assert stats.missing_files == 1

    def test_delete_failure_counts_single_error(self):
        """A link that cannot be removed is one error; later links still run."""
        other = "/movies/Other (2019) [tmdb-556]/other.mkv"
        backend = _radarr(lookups={
            555: Movie(title="Movie", year=2020, tmdb_id=555),
            556: Movie(title="Other", year=2019, tmdb_id=556),
        })
        probe = FakeProbe(
            broken={"/movies": [MOVIE_LINK, other]},
            delete_errors={MOVIE_LINK: PermissionError("denied")},
        )
        registry = MissingFileRegistry()

        stats = _recoverer(backend, probe, registry).recover()

        assert stats.checked == 1
        assert stats.errors == 1
        assert stats.missing_files == 1
        assert probe.deleted == [other]
        assert [e.tmdb_id for e in registry.entries()] == [556]

    def test_lookup_failure_counts_error_only(self):
        """A failed symlink is an error, not a checked item."""
        backend = _radarr(lookups={})
        probe = FakeProbe(broken={"/movies": [MOVIE_LINK]})

        stats = _recoverer(backend, probe).recover()

        assert stats.checked == 0
        assert stats.errors == 1
        assert stats.missing_files == 0

    def test_cancel_stops_scan(self):
        cancel = threading.Event()
        cancel.set()
        backend = _radarr()
        probe = FakeProbe(broken={"/movies": [MOVIE_LINK]})

        stats = _recoverer(backend, probe, cancel_event=cancel).recover()

        assert stats.checked == 0
        assert probe.deleted == []


class TestRootFolderSelection:
    def test_prefers_matching_prefix(self):
        folders = [RootFolder(id=1, path="/tv"), RootFolder(id=2, path="/movies")]
        recoverer = _recoverer(_radarr(), FakeProbe())
        assert recoverer._select_root_folder(MOVIE_LINK, folders).id == 2

    def test_falls_back_to_first(self):
        folders = [RootFolder(id=1, path="/a"), RootFolder(id=2, path="/b")]
        recoverer = _recoverer(_radarr(), FakeProbe())
        assert recoverer._select_root_folder(MOVIE_LINK, folders).id == 1

    def test_no_folders_raises(self):
        recoverer = _recoverer(_radarr(), FakeProbe())
        with pytest.raises(SymlinkRecoveryError):
            recoverer._select_root_folder(MOVIE_LINK, [])
