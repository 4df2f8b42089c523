"""
Filesystem probing for RefreshArr.
Existence checks and broken symlink discovery under the backend root folders.
"""

import logging
import os
from typing import Iterable, List

MEDIA_EXTENSIONS = ('.mkv', '.mp4', '.avi', '.mov', '.wmv', '.flv', '.webm', '.m4v')


def _normalize_extensions(extensions: Iterable[str]) -> tuple:
    normalized = []
    for ext in extensions or ():
        ext = ext.lower()
        if not ext.startswith('.'):
            ext = '.' + ext
        normalized.append(ext)
    return tuple(normalized)


class FileSystemChecker:
    """Filesystem probe used by the reconciler and the symlink recoverer."""

    def file_exists(self, path: str) -> bool:
        """True if path exists and is not a directory. Follows symlinks."""
        if not path:
            return False
        return os.path.isfile(path)

    def is_readable(self, path: str) -> bool:
        if not self.file_exists(path):
            return False
        try:
            with open(path, 'rb'):
                return True
        except OSError:
            return False

    def is_symlink(self, path: str) -> bool:
        if not path:
            return False
        return os.path.islink(path)

    def find_broken_symlinks(self, root_dir: str, extensions: Iterable[str] = MEDIA_EXTENSIONS) -> List[str]:
        """Recursively find symlinks under root_dir whose targets do not resolve.

        Only files ending in one of the extensions are considered (case-insensitive).
        An empty extension list matches every file. Unreadable subdirectories are
        skipped; a missing root raises FileNotFoundError.
        """
        if not os.path.isdir(root_dir):
            raise FileNotFoundError(f"Root folder not found: {root_dir}")

        wanted = _normalize_extensions(extensions)
        broken = []

        def _on_error(error: OSError) -> None:
            logging.debug(f"Skipping unreadable path during symlink scan: {error}")

        for dirpath, _dirnames, filenames in os.walk(root_dir, onerror=_on_error):
            for filename in filenames:
                if wanted and not filename.lower().endswith(wanted):
                    continue
                full_path = os.path.join(dirpath, filename)
                if os.path.islink(full_path) and not os.path.exists(full_path):
                    broken.append(full_path)

        broken.sort()
        return broken

    def delete_symlink(self, path: str) -> None:
        """Remove a symlink. Refuses to touch anything that is not a link."""
        if not os.path.islink(path):
            raise OSError(f"Not a symlink: {path}")
        os.unlink(path)
