"""
Broken symlink recovery.

Scans the backend's root folders for media symlinks whose targets are gone,
removes them, and makes sure the media they pointed at is tracked by the
backend, adding it to the collection when allowed.
"""

import logging
import threading
from typing import List, Optional

from refresharr.arr_client import MediaBackend
from refresharr.errors import NotFoundError
from refresharr.filesystem import MEDIA_EXTENSIONS, FileSystemChecker
from refresharr.models import (
    MEDIA_MOVIE,
    MEDIA_SERIES,
    CleanupStats,
    MissingFileEntry,
    Movie,
    NameLookup,
    RootFolder,
    Series,
    parse_tmdb_id_from_path,
    parse_tvdb_id_from_path,
)
from refresharr.registry import MissingFileRegistry


class SymlinkRecoveryError(Exception):
    """A single broken symlink could not be recovered."""


class BrokenSymlinkRecoverer:
    """Runs the recovery steps for every broken symlink under the root folders.

    Steps per symlink: parse the external ID from the path, remove the link,
    check whether the backend already tracks the item, and if not look it up
    and (optionally) add it. Each symlink is independent; a failure counts one
    error and the scan moves on.
    """

    def __init__(self, backend: MediaBackend, probe: FileSystemChecker, registry: MissingFileRegistry,
                 names: Optional[NameLookup] = None, dry_run: bool = False,
                 add_missing_media: bool = False, quality_profile_id: int = 12,
                 extensions=MEDIA_EXTENSIONS, cancel_event: Optional[threading.Event] = None):
        self.backend = backend
        self.probe = probe
        self.registry = registry
        self.names = names or NameLookup()
        self.dry_run = dry_run
        self.add_missing_media = add_missing_media
        self.quality_profile_id = quality_profile_id
        self.extensions = extensions
        self.cancel_event = cancel_event or threading.Event()

    @property
    def media_type(self) -> str:
        return MEDIA_SERIES if self.backend.name == "sonarr" else MEDIA_MOVIE

    def recover(self) -> CleanupStats:
        """Scan all root folders and recover each broken symlink found.

        Raises if the root folders cannot be listed.
        """
        stats = CleanupStats()
        logging.info(f"Scanning for broken symlinks in {self.backend.name} root directories...")

        root_folders = self.backend.list_root_folders()
        if not root_folders:
            logging.info(f"No root folders configured in {self.backend.name}")
            return stats

        broken: List[str] = []
        for folder in root_folders:
            logging.info(f"Scanning root folder: {folder.path}")
            try:
                found = self.probe.find_broken_symlinks(folder.path, self.extensions)
            except OSError as e:
                logging.warning(f"Failed to scan folder {folder.path}: {e}")
                stats.errors += 1
                continue
            logging.info(f"Found {len(found)} broken symlinks in {folder.path}")
            broken.extend(found)

        if not broken:
            logging.info("No broken symlinks found")
            return stats

        logging.info(f"Processing {len(broken)} broken symlinks...")
        for symlink_path in broken:
            if self.cancel_event.is_set():
                logging.warning("Symlink recovery cancelled")
                break
            try:
                stats.merge(self.recover_one(symlink_path, root_folders))
            except Exception as e:
                logging.error(f"Failed to handle broken symlink {symlink_path}: {e}")
                stats.errors += 1
        return stats

    def _parse_external_id(self, path: str) -> int:
        if self.media_type == MEDIA_SERIES:
            return parse_tvdb_id_from_path(path)
        return parse_tmdb_id_from_path(path)

    def _id_label(self) -> str:
        return "TVDB" if self.media_type == MEDIA_SERIES else "TMDB"

    def _entry(self, name: str, path: str, external_id: int, added: bool) -> MissingFileEntry:
        ids = {"tvdb_id": external_id} if self.media_type == MEDIA_SERIES else {"tmdb_id": external_id}
        return MissingFileEntry(
            media_type=self.media_type,
            media_name=name,
            file_path=path,
            file_id=0,
            added_to_collection=added,
            **ids,
        )

    def recover_one(self, symlink_path: str, root_folders: List[RootFolder]) -> CleanupStats:
        """Recover a single broken symlink. Raises SymlinkRecoveryError or ArrError on failure."""
        stats = CleanupStats(checked=1)
        label = self._id_label()
        logging.debug(f"Processing broken symlink: {symlink_path}")

        try:
            external_id = self._parse_external_id(symlink_path)
        except ValueError as e:
            logging.warning(f"Could not parse {label} ID from path {symlink_path}: {e}")
            return stats

        logging.debug(f"Extracted {label} ID {external_id} from {symlink_path}")

        if self.dry_run:
            logging.info(f"DRY RUN: Would delete broken symlink: {symlink_path}")
        else:
            logging.info(f"Deleting broken symlink: {symlink_path}")
            try:
                self.probe.delete_symlink(symlink_path)
            except OSError as e:
                raise SymlinkRecoveryError(f"failed to delete broken symlink {symlink_path}: {e}") from e
            logging.info(f"Deleted broken symlink: {symlink_path}")

        try:
            existing = self.backend.get_by_external_id(external_id)
        except NotFoundError:
            existing = None

        if existing is not None:
            logging.debug(f"{label} ID {external_id} already in collection: {existing.title}")
            self.registry.add(self._entry(existing.title, symlink_path, external_id, False))
            stats.missing_files += 1
            return stats

        logging.info(f"{label} ID {external_id} not found in collection, looking up details...")
        lookup = self.backend.lookup_by_external_id(external_id)
        root = self._select_root_folder(symlink_path, root_folders)
        candidate = self._build_candidate(lookup, root)

        display = f"{lookup.title} ({lookup.year})" if lookup.year else lookup.title
        added = self.add_missing_media and not self.dry_run
        if added:
            logging.info(f"Adding {self.media_type} to collection: {display}")
            created = self.backend.add_to_collection(candidate)
            self.names.set(self.media_type, created.id, created.title)
        elif self.dry_run:
            logging.info(f"DRY RUN: Would add {self.media_type} to collection: {display}")
        else:
            logging.info(f"ADD_MISSING_MOVIES=false: Would add {self.media_type} to collection: {display}")

        self.registry.add(self._entry(lookup.title, symlink_path, external_id, added))
        stats.missing_files += 1
        return stats

    def _select_root_folder(self, symlink_path: str, root_folders: List[RootFolder]) -> RootFolder:
        for folder in root_folders:
            if folder.path and symlink_path.startswith(folder.path):
                return folder
        if root_folders:
            logging.debug(f"Using first available root folder: {root_folders[0].path}")
            return root_folders[0]
        raise SymlinkRecoveryError(f"no suitable root folder found for {self.media_type}")

    def _build_candidate(self, lookup, root: RootFolder):
        if self.media_type == MEDIA_SERIES:
            return Series(
                title=lookup.title,
                tvdb_id=lookup.tvdb_id,
                year=lookup.year,
                monitored=True,
                quality_profile_id=self.quality_profile_id,
                root_folder_path=root.path,
                raw=lookup.raw,
            )
        return Movie(
            title=lookup.title,
            year=lookup.year,
            tmdb_id=lookup.tmdb_id,
            has_file=False,
            monitored=True,
            quality_profile_id=self.quality_profile_id,
            root_folder_path=root.path,
            raw=lookup.raw,
        )
