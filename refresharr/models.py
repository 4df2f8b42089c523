"""
Data model for RefreshArr.
Records read from the Servarr v3 API and the results produced by a cleanup run.
"""

import re
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

MEDIA_SERIES = "series"
MEDIA_MOVIE = "movie"

RUN_DRY = "dry-run"
RUN_REAL = "real-run"

_TMDB_TAG = re.compile(r"\[tmdb-(\d+)\]", re.IGNORECASE)
_TVDB_TAG = re.compile(r"\[tvdb-(\d+)\]", re.IGNORECASE)


def now_timestamp() -> str:
    """Current local time as an RFC 3339 string with seconds precision."""
    return datetime.now().astimezone().isoformat(timespec="seconds")


def _parse_tag(pattern: re.Pattern, path: str, label: str) -> int:
    match = pattern.search(path)
    if not match:
        raise ValueError(f"no {label} ID found in path: {path}")
    value = int(match.group(1))
    if value <= 0:
        raise ValueError(f"invalid {label} ID {value} in path: {path}")
    return value


def parse_tmdb_id_from_path(path: str) -> int:
    """Extract the TMDB ID from a '[tmdb-12345]' tag in a path."""
    return _parse_tag(_TMDB_TAG, path, "TMDB")


def parse_tvdb_id_from_path(path: str) -> int:
    """Extract the TVDB ID from a '[tvdb-12345]' tag in a path."""
    return _parse_tag(_TVDB_TAG, path, "TVDB")


# ============================================================================
# Cleanup results
# ============================================================================

@dataclass
class CleanupStats:
    """Counters for one cleanup run. Merged by addition."""
    checked: int = 0
    missing_files: int = 0
    deleted_records: int = 0
    errors: int = 0

    def merge(self, other: "CleanupStats") -> "CleanupStats":
        """Add another set of counters into this one and return self."""
        self.checked += other.checked
        self.missing_files += other.missing_files
        self.deleted_records += other.deleted_records
        self.errors += other.errors
        return self

    def copy(self) -> "CleanupStats":
        return replace(self)


@dataclass(frozen=True)
class MissingFileEntry:
    """A file the backend believes exists but the filesystem does not have.

    Attributes:
        media_type: 'series' or 'movie'.
        media_name: Display name of the series or movie.
        file_path: Path recorded by the backend, or the broken symlink path.
        file_id: Backend file record ID. 0 means the entry came from a symlink scan.
        processed_at: RFC 3339 timestamp of when the anomaly was found.
        episode_name: Episode title (series only).
        season: Season number (series only).
        episode: Episode number (series only).
        tmdb_id: TMDB ID for movies, 0 when unknown.
        tvdb_id: TVDB ID for series, 0 when unknown.
        added_to_collection: True when the symlink recovery added the item to the backend.
    """
    media_type: str
    media_name: str
    file_path: str
    file_id: int = 0
    processed_at: str = field(default_factory=now_timestamp)
    episode_name: str = ""
    season: Optional[int] = None
    episode: Optional[int] = None
    tmdb_id: int = 0
    tvdb_id: int = 0
    added_to_collection: bool = False

    def dedup_key(self) -> str:
        if self.media_type == MEDIA_MOVIE and self.tmdb_id > 0:
            return f"movie-tmdb-{self.tmdb_id}"
        if self.media_type == MEDIA_SERIES and self.tvdb_id > 0:
            return f"series-tvdb-{self.tvdb_id}"
        return f"{self.media_type}-path-{self.file_path}"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "mediaType": self.media_type,
            "mediaName": self.media_name,
        }
        if self.episode_name:
            data["episodeName"] = self.episode_name
        if self.season is not None:
            data["season"] = self.season
        if self.episode is not None:
            data["episode"] = self.episode
        data["filePath"] = self.file_path
        data["fileId"] = self.file_id
        data["processedAt"] = self.processed_at
        if self.added_to_collection:
            data["addedToCollection"] = True
        if self.tmdb_id:
            data["tmdbId"] = self.tmdb_id
        if self.tvdb_id:
            data["tvdbId"] = self.tvdb_id
        return data


@dataclass
class MissingFilesReport:
    """Deduplicated report of missing files for one service run."""
    generated_at: str
    run_type: str
    service_type: str
    total_missing: int
    missing_files: List[MissingFileEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generatedAt": self.generated_at,
            "runType": self.run_type,
            "serviceType": self.service_type,
            "totalMissing": self.total_missing,
            "missingFiles": [entry.to_dict() for entry in self.missing_files],
        }


@dataclass
class CleanupResult:
    """Outcome of a cleanup run.

    success is True only when no errors were counted and the run was not cancelled.
    error carries the cancellation signal when the run was cut short.
    """
    stats: CleanupStats = field(default_factory=CleanupStats)
    messages: List[str] = field(default_factory=list)
    success: bool = True
    report: Optional[MissingFilesReport] = None
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class ItemOutcome:
    """What one worker hands back to the aggregator."""
    item_id: int
    stats: CleanupStats
    entries: tuple = ()
    error: Optional[BaseException] = None


class NameLookup:
    """Display names for series and movies, scoped to one cleanup run."""

    def __init__(self):
        self._names: Dict[tuple, str] = {}
        self._lock = threading.Lock()

    def set(self, kind: str, item_id: int, name: str) -> None:
        with self._lock:
            self._names[(kind, item_id)] = name

    def get(self, kind: str, item_id: int) -> str:
        with self._lock:
            name = self._names.get((kind, item_id))
        if name:
            return name
        label = "Series" if kind == MEDIA_SERIES else "Movie"
        return f"{label} {item_id}"

    def __len__(self) -> int:
        with self._lock:
            return len(self._names)


# ============================================================================
# Servarr records
# ============================================================================

@dataclass
class Series:
    id: int = 0
    title: str = ""
    path: str = ""
    tvdb_id: int = 0
    year: int = 0
    monitored: bool = True
    quality_profile_id: int = 0
    root_folder_path: str = ""
    season_folder: bool = True
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Series":
        return cls(
            id=data.get("id", 0),
            title=data.get("title", ""),
            path=data.get("path", ""),
            tvdb_id=data.get("tvdbId", 0),
            year=data.get("year", 0),
            monitored=data.get("monitored", True),
            quality_profile_id=data.get("qualityProfileId", 0),
            root_folder_path=data.get("rootFolderPath", ""),
            season_folder=data.get("seasonFolder", True),
            raw=data,
        )

    def to_api(self) -> Dict[str, Any]:
        data = dict(self.raw)
        data.update({
            "title": self.title,
            "tvdbId": self.tvdb_id,
            "monitored": self.monitored,
            "qualityProfileId": self.quality_profile_id,
            "rootFolderPath": self.root_folder_path,
            "seasonFolder": self.season_folder,
        })
        if self.id:
            data["id"] = self.id
        if self.year:
            data["year"] = self.year
        return data


@dataclass
class Movie:
    id: int = 0
    title: str = ""
    path: str = ""
    year: int = 0
    tmdb_id: int = 0
    has_file: bool = False
    movie_file_id: Optional[int] = None
    monitored: bool = True
    quality_profile_id: int = 0
    root_folder_path: str = ""
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Movie":
        movie_file_id = data.get("movieFileId")
        if not movie_file_id and data.get("movieFile"):
            movie_file_id = data["movieFile"].get("id")
        return cls(
            id=data.get("id", 0),
            title=data.get("title", ""),
            path=data.get("path", ""),
            year=data.get("year", 0),
            tmdb_id=data.get("tmdbId", 0),
            has_file=data.get("hasFile", False),
            movie_file_id=movie_file_id or None,
            monitored=data.get("monitored", True),
            quality_profile_id=data.get("qualityProfileId", 0),
            root_folder_path=data.get("rootFolderPath", ""),
            raw=data,
        )

    def to_api(self) -> Dict[str, Any]:
        data = dict(self.raw)
        data.update({
            "title": self.title,
            "tmdbId": self.tmdb_id,
            "monitored": self.monitored,
            "qualityProfileId": self.quality_profile_id,
            "rootFolderPath": self.root_folder_path,
            "hasFile": self.has_file,
        })
        if self.id:
            data["id"] = self.id
        if self.year:
            data["year"] = self.year
        return data


@dataclass
class Episode:
    id: int = 0
    series_id: int = 0
    season_number: int = 0
    episode_number: int = 0
    title: str = ""
    has_file: bool = False
    episode_file_id: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Episode":
        return cls(
            id=data.get("id", 0),
            series_id=data.get("seriesId", 0),
            season_number=data.get("seasonNumber", 0),
            episode_number=data.get("episodeNumber", 0),
            title=data.get("title", ""),
            has_file=data.get("hasFile", False),
            episode_file_id=data.get("episodeFileId") or None,
            raw=data,
        )

    def to_api(self) -> Dict[str, Any]:
        data = dict(self.raw)
        data.update({
            "id": self.id,
            "seriesId": self.series_id,
            "seasonNumber": self.season_number,
            "episodeNumber": self.episode_number,
            "title": self.title,
            "hasFile": self.has_file,
        })
        return data


@dataclass
class EpisodeFile:
    id: int = 0
    path: str = ""
    series_id: int = 0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "EpisodeFile":
        return cls(id=data.get("id", 0), path=data.get("path", ""),
                   series_id=data.get("seriesId", 0))


@dataclass
class MovieFile:
    id: int = 0
    path: str = ""
    movie_id: int = 0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "MovieFile":
        return cls(id=data.get("id", 0), path=data.get("path", ""),
                   movie_id=data.get("movieId", 0))


@dataclass
class RootFolder:
    id: int = 0
    path: str = ""
    accessible: bool = True
    free_space: int = 0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "RootFolder":
        return cls(
            id=data.get("id", 0),
            path=data.get("path", ""),
            accessible=data.get("accessible", True),
            free_space=data.get("freeSpace", 0) or 0,
        )


@dataclass
class QualityProfile:
    id: int = 0
    name: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "QualityProfile":
        return cls(id=data.get("id", 0), name=data.get("name", ""))


@dataclass
class QueueStatusMessage:
    title: str = ""
    messages: List[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "QueueStatusMessage":
        return cls(title=data.get("title", ""), messages=list(data.get("messages") or []))


@dataclass
class QueueItem:
    """An entry in the download queue."""
    id: int = 0
    title: str = ""
    status: str = ""
    tracked_download_status: str = ""
    tracked_download_state: str = ""
    status_messages: List[QueueStatusMessage] = field(default_factory=list)
    error_message: str = ""
    download_id: str = ""
    output_path: str = ""
    protocol: str = ""
    download_client: str = ""
    size: float = 0
    series_id: int = 0
    series_title: str = ""
    movie_id: int = 0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "QueueItem":
        series = data.get("series") or {}
        return cls(
            id=data.get("id", 0),
            title=data.get("title", ""),
            status=data.get("status", ""),
            tracked_download_status=data.get("trackedDownloadStatus", ""),
            tracked_download_state=data.get("trackedDownloadState", ""),
            status_messages=[QueueStatusMessage.from_api(m) for m in data.get("statusMessages") or []],
            error_message=data.get("errorMessage", "") or "",
            download_id=data.get("downloadId", "") or "",
            output_path=data.get("outputPath", "") or "",
            protocol=data.get("protocol", "") or "",
            download_client=data.get("downloadClient", "") or "",
            size=data.get("size", 0) or 0,
            series_id=data.get("seriesId") or series.get("id", 0),
            series_title=series.get("title", ""),
            movie_id=data.get("movieId", 0) or 0,
        )


@dataclass
class ManualImportItem:
    """A file the backend offers for manual import."""
    path: str = ""
    name: str = ""
    download_id: str = ""
    series_id: int = 0
    series_title: str = ""
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ManualImportItem":
        series = data.get("series") or {}
        return cls(
            path=data.get("path", ""),
            name=data.get("name", ""),
            download_id=data.get("downloadId", "") or "",
            series_id=series.get("id", 0),
            series_title=series.get("title", ""),
            raw=data,
        )
