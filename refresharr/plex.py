"""
Plex comparison: checks whether Radarr and Plex agree on a movie's availability.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from plexapi.exceptions import NotFound
from plexapi.server import PlexServer

from refresharr.models import Movie


@dataclass
class PlexComparison:
    tmdb_id: int
    radarr_title: str
    radarr_has_file: bool
    plex_found: bool
    plex_title: str = ""
    plex_year: int = 0
    plex_available: bool = False

    @property
    def match(self) -> bool:
        return self.plex_found and self.radarr_has_file == self.plex_available

    @property
    def suggestion(self) -> str:
        if not self.plex_found:
            if self.radarr_has_file:
                return "Check if Plex library is scanning the correct directories"
            return "Movie is missing from both Radarr files and Plex"
        if self.radarr_has_file and not self.plex_available:
            return "Check if Plex needs to refresh its library"
        if not self.radarr_has_file and self.plex_available:
            return "Check if Radarr needs to rescan the movie folder"
        return ""


class PlexComparer:
    """Looks movies up in Plex by TMDB GUID."""

    def __init__(self, plex_url: str, plex_token: str, timeout: float = 30.0):
        self.plex_url = plex_url
        self.plex_token = plex_token
        self.timeout = timeout
        self.plex: Optional[PlexServer] = None

    def connect(self) -> None:
        logging.debug(f"Connecting to Plex server: {self.plex_url}")
        try:
            self.plex = PlexServer(self.plex_url, self.plex_token, timeout=self.timeout)
        except Exception as e:
            raise ConnectionError(f"Error connecting to the Plex server: {e}")
        logging.debug(f"Plex server version: {self.plex.version}")

    def find_movie_by_tmdb_id(self, tmdb_id: int):
        """Return the Plex movie whose GUIDs include tmdb://<id>, or None."""
        if self.plex is None:
            self.connect()
        guid = f"tmdb://{tmdb_id}"
        for section in self.plex.library.sections():
            if section.type != "movie":
                continue
            try:
                movie = section.getGuid(guid)
            except NotFound:
                continue
            if movie is None:
                continue
            guids = [g.id for g in getattr(movie, 'guids', [])]
            if guid in guids or guid in (getattr(movie, 'guid', '') or ''):
                return movie
        return None

    @staticmethod
    def is_available(video) -> bool:
        """A Plex item is available when at least one media part points at a file."""
        for media in getattr(video, 'media', []) or []:
            for part in getattr(media, 'parts', []) or []:
                if getattr(part, 'file', None):
                    return True
        return False

    def compare(self, radarr_movie: Movie) -> PlexComparison:
        radarr_has_file = bool(radarr_movie.has_file)
        logging.info(f"Looking up movie with TMDB ID {radarr_movie.tmdb_id} in Plex...")
        plex_movie = self.find_movie_by_tmdb_id(radarr_movie.tmdb_id)
        if plex_movie is None:
            return PlexComparison(
                tmdb_id=radarr_movie.tmdb_id,
                radarr_title=radarr_movie.title,
                radarr_has_file=radarr_has_file,
                plex_found=False,
            )
        return PlexComparison(
            tmdb_id=radarr_movie.tmdb_id,
            radarr_title=radarr_movie.title,
            radarr_has_file=radarr_has_file,
            plex_found=True,
            plex_title=plex_movie.title,
            plex_year=getattr(plex_movie, 'year', 0) or 0,
            plex_available=self.is_available(plex_movie),
        )
