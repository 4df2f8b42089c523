"""
Sonarr and Radarr API clients.
Thin requests-based adapters behind the MediaBackend interface used by the cleanup engine.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union

import requests

from refresharr.errors import ArrError, NotFoundError, OperationError
from refresharr.models import (
    Episode,
    EpisodeFile,
    ManualImportItem,
    Movie,
    MovieFile,
    QualityProfile,
    QueueItem,
    RootFolder,
    Series,
)

logger = logging.getLogger(__name__)

QUEUE_PAGE_SIZE = 1000

MediaRecord = Union[Series, Movie]


class MediaBackend(ABC):
    """Operations the cleanup engine needs from one library manager instance.

    Series-only and movie-only operations raise OperationError on the other kind
    of backend.
    """

    name: str = ""

    @abstractmethod
    def test_connection(self) -> None:
        """Raise ConnectionError if the instance is unreachable."""

    def list_series(self) -> List[Series]:
        raise OperationError(f"list_series is not supported by {self.name}")

    def list_episodes(self, series_id: int) -> List[Episode]:
        raise OperationError(f"list_episodes is not supported by {self.name}")

    def get_episode_file(self, file_id: int) -> EpisodeFile:
        raise OperationError(f"get_episode_file is not supported by {self.name}")

    def delete_episode_file(self, file_id: int) -> None:
        raise OperationError(f"delete_episode_file is not supported by {self.name}")

    def update_episode(self, episode: Episode) -> None:
        raise OperationError(f"update_episode is not supported by {self.name}")

    def list_movies(self) -> List[Movie]:
        raise OperationError(f"list_movies is not supported by {self.name}")

    def get_movie(self, movie_id: int) -> Movie:
        raise OperationError(f"get_movie is not supported by {self.name}")

    def get_movie_file(self, file_id: int) -> MovieFile:
        raise OperationError(f"get_movie_file is not supported by {self.name}")

    def delete_movie_file(self, file_id: int) -> None:
        raise OperationError(f"delete_movie_file is not supported by {self.name}")

    def update_movie(self, movie: Movie) -> None:
        raise OperationError(f"update_movie is not supported by {self.name}")

    @abstractmethod
    def trigger_refresh(self) -> None:
        """Ask the backend to rescan after records were deleted."""

    @abstractmethod
    def list_root_folders(self) -> List[RootFolder]:
        ...

    @abstractmethod
    def list_quality_profiles(self) -> List[QualityProfile]:
        ...

    @abstractmethod
    def lookup_by_external_id(self, external_id: int) -> MediaRecord:
        """Fetch catalog metadata (TVDB for series, TMDB for movies)."""

    @abstractmethod
    def get_by_external_id(self, external_id: int) -> Optional[MediaRecord]:
        """Return the collection entry with this external ID, or None."""

    @abstractmethod
    def add_to_collection(self, item: MediaRecord) -> MediaRecord:
        ...

    @abstractmethod
    def get_queue(self) -> List[QueueItem]:
        ...

    @abstractmethod
    def remove_from_queue(self, queue_id: int, remove_from_client: bool = False) -> None:
        ...

    @abstractmethod
    def trigger_download_scan(self) -> None:
        ...

    @abstractmethod
    def get_manual_import(self, folder: str = "", download_id: str = "",
                          series_id: int = 0) -> List[ManualImportItem]:
        ...

    @abstractmethod
    def execute_manual_import(self, files: List[ManualImportItem], import_mode: str = "move") -> None:
        ...


class ArrClient(MediaBackend):
    """Shared HTTP plumbing for the Servarr v3 API."""

    refresh_command = ""
    download_scan_command = ""

    def __init__(self, base_url: str, api_key: str, timeout: float = 30.0,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'X-Api-Key': api_key,
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        })

    def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                 payload: Any = None) -> requests.Response:
        url = f"{self.base_url}/api/v3{path}"
        try:
            response = self.session.request(method, url, params=params, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise OperationError(f"{method} {path} failed: {e}") from e

        if response.status_code == 404:
            raise NotFoundError(f"{self.name} {path} not found", status_code=404)
        if not response.ok:
            body = (response.text or "")[:200]
            raise OperationError(
                f"{method} {path} returned HTTP {response.status_code}: {body}",
                status_code=response.status_code,
            )
        return response

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = self._request("GET", path, params=params)
        try:
            return response.json()
        except ValueError as e:
            raise OperationError(f"Invalid JSON from {self.name} {path}: {e}") from e

    def _command(self, name: str, **body) -> None:
        payload = {"name": name}
        payload.update(body)
        logger.debug(f"Sending {self.name} command {name}")
        self._request("POST", "/command", payload=payload)

    def test_connection(self) -> None:
        logger.debug(f"Testing connection to {self.name} at {self.base_url}")
        try:
            status = self._get_json("/system/status")
        except ArrError as e:
            raise ConnectionError(f"Error connecting to {self.name} at {self.base_url}: {e}")
        logger.debug(f"Connected to {self.name} {status.get('version', 'unknown')}")

    def trigger_refresh(self) -> None:
        self._command(self.refresh_command)

    def list_root_folders(self) -> List[RootFolder]:
        return [RootFolder.from_api(f) for f in self._get_json("/rootfolder")]

    def list_quality_profiles(self) -> List[QualityProfile]:
        return [QualityProfile.from_api(p) for p in self._get_json("/qualityprofile")]

    def _queue_params(self) -> Dict[str, Any]:
        return {"page": 1, "pageSize": QUEUE_PAGE_SIZE}

    def get_queue(self) -> List[QueueItem]:
        data = self._get_json("/queue", params=self._queue_params())
        records = data.get("records", []) if isinstance(data, dict) else data
        return [QueueItem.from_api(r) for r in records]

    def remove_from_queue(self, queue_id: int, remove_from_client: bool = False) -> None:
        params = {"removeFromClient": str(remove_from_client).lower(), "blocklist": "false"}
        try:
            self._request("DELETE", f"/queue/{queue_id}", params=params)
        except NotFoundError:
            # Already gone from the queue, which is the state we wanted
            logger.debug(f"Queue item {queue_id} already removed from {self.name}")

    def trigger_download_scan(self) -> None:
        self._command(self.download_scan_command)

    def get_manual_import(self, folder: str = "", download_id: str = "",
                          series_id: int = 0) -> List[ManualImportItem]:
        params: Dict[str, Any] = {"filterExistingFiles": "true"}
        if folder:
            params["folder"] = folder
        if download_id:
            params["downloadId"] = download_id
        if series_id:
            params["seriesId"] = series_id
        return [ManualImportItem.from_api(i) for i in self._get_json("/manualimport", params=params)]

    def _manual_import_file(self, item: ManualImportItem) -> Dict[str, Any]:
        raw = item.raw
        return {
            "path": item.path,
            "quality": raw.get("quality"),
            "languages": raw.get("languages"),
            "releaseGroup": raw.get("releaseGroup"),
            "downloadId": item.download_id,
        }

    def execute_manual_import(self, files: List[ManualImportItem], import_mode: str = "move") -> None:
        self._command(
            "ManualImport",
            files=[self._manual_import_file(f) for f in files],
            importMode=import_mode,
        )


class SonarrClient(ArrClient):
    """Sonarr v3/v4 API client."""

    name = "sonarr"
    refresh_command = "MissingEpisodeSearch"
    download_scan_command = "DownloadedEpisodesScan"

    def list_series(self) -> List[Series]:
        return [Series.from_api(s) for s in self._get_json("/series")]

    def list_episodes(self, series_id: int) -> List[Episode]:
        return [Episode.from_api(e) for e in self._get_json("/episode", params={"seriesId": series_id})]

    def get_episode_file(self, file_id: int) -> EpisodeFile:
        return EpisodeFile.from_api(self._get_json(f"/episodefile/{file_id}"))

    def delete_episode_file(self, file_id: int) -> None:
        self._request("DELETE", f"/episodefile/{file_id}")

    def update_episode(self, episode: Episode) -> None:
        self._request("PUT", f"/episode/{episode.id}", payload=episode.to_api())

    def lookup_by_external_id(self, external_id: int) -> Series:
        results = self._get_json("/series/lookup", params={"term": f"tvdb:{external_id}"})
        for data in results or []:
            if data.get("tvdbId") == external_id:
                return Series.from_api(data)
        raise NotFoundError(f"series with TVDB ID {external_id} not found in lookup", status_code=404)

    def get_by_external_id(self, external_id: int) -> Optional[Series]:
        for data in self._get_json("/series", params={"tvdbId": external_id}) or []:
            if data.get("tvdbId") == external_id:
                return Series.from_api(data)
        return None

    def add_to_collection(self, item: Series) -> Series:
        payload = item.to_api()
        payload.setdefault("languageProfileId", 1)
        payload["addOptions"] = {"searchForMissingEpisodes": True}
        response = self._request("POST", "/series", payload=payload)
        return Series.from_api(response.json())

    def _queue_params(self) -> Dict[str, Any]:
        params = super()._queue_params()
        params["includeSeries"] = "true"
        params["includeEpisode"] = "true"
        return params

    def _manual_import_file(self, item: ManualImportItem) -> Dict[str, Any]:
        data = super()._manual_import_file(item)
        data["seriesId"] = item.series_id
        data["episodeIds"] = [e.get("id") for e in item.raw.get("episodes") or []]
        return data


class RadarrClient(ArrClient):
    """Radarr v3+ API client."""

    name = "radarr"
    refresh_command = "MissingMoviesSearch"
    download_scan_command = "DownloadedMoviesScan"

    def list_movies(self) -> List[Movie]:
        return [Movie.from_api(m) for m in self._get_json("/movie")]

    def get_movie(self, movie_id: int) -> Movie:
        return Movie.from_api(self._get_json(f"/movie/{movie_id}"))

    def get_movie_file(self, file_id: int) -> MovieFile:
        return MovieFile.from_api(self._get_json(f"/moviefile/{file_id}"))

    def delete_movie_file(self, file_id: int) -> None:
        self._request("DELETE", f"/moviefile/{file_id}")

    def update_movie(self, movie: Movie) -> None:
        self._request("PUT", f"/movie/{movie.id}", payload=movie.to_api())

    def lookup_by_external_id(self, external_id: int) -> Movie:
        return Movie.from_api(self._get_json("/movie/lookup/tmdb", params={"tmdbId": external_id}))

    def get_by_external_id(self, external_id: int) -> Optional[Movie]:
        for data in self._get_json("/movie", params={"tmdbId": external_id}) or []:
            if data.get("tmdbId") == external_id:
                return Movie.from_api(data)
        return None

    def add_to_collection(self, item: Movie) -> Movie:
        payload = item.to_api()
        payload.setdefault("minimumAvailability", "released")
        payload["addOptions"] = {"searchForMovie": True}
        response = self._request("POST", "/movie", payload=payload)
        return Movie.from_api(response.json())

    def _queue_params(self) -> Dict[str, Any]:
        params = super()._queue_params()
        params["includeMovie"] = "true"
        return params

    def _manual_import_file(self, item: ManualImportItem) -> Dict[str, Any]:
        data = super()._manual_import_file(item)
        movie = item.raw.get("movie") or {}
        data["movieId"] = movie.get("id", 0)
        return data


def create_client(service: str, base_url: str, api_key: str, timeout: float = 30.0) -> ArrClient:
    """Build the client for 'sonarr' or 'radarr'."""
    clients = {"sonarr": SonarrClient, "radarr": RadarrClient}
    try:
        client_cls = clients[service.lower()]
    except KeyError:
        raise ValueError(f"Unsupported service: {service}")
    return client_cls(base_url, api_key, timeout=timeout)
