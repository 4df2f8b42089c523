"""Tests for FileSystemChecker against a real temporary directory tree."""
import os

import pytest

from conftest import needs_symlink
from refresharr.filesystem import MEDIA_EXTENSIONS, FileSystemChecker


@pytest.fixture
def checker():
    return FileSystemChecker()


class TestFileExists:
    def test_regular_file(self, checker, tmp_path):
        media = tmp_path / "movie.mkv"
        media.write_bytes(b"data")
        assert checker.file_exists(str(media)) is True

    def test_missing_file(self, checker, tmp_path):
        assert checker.file_exists(str(tmp_path / "nope.mkv")) is False

    def test_directory_is_not_a_file(self, checker, tmp_path):
        assert checker.file_exists(str(tmp_path)) is False

    def test_empty_path(self, checker):
        assert checker.file_exists("") is False

    @needs_symlink
    def test_broken_symlink_is_missing(self, checker, tmp_path):
        """A link whose target is gone does not count as an existing file."""
        link = tmp_path / "link.mkv"
        os.symlink(str(tmp_path / "target.mkv"), str(link))
        assert checker.file_exists(str(link)) is False

    def test_is_readable(self, checker, tmp_path):
        media = tmp_path / "movie.mkv"
        media.write_bytes(b"data")
        assert checker.is_readable(str(media)) is True
        assert checker.is_readable(str(tmp_path / "missing.mkv")) is False


class TestFindBrokenSymlinks:
    @needs_symlink
    def test_finds_only_broken_media_links(self, checker, tmp_path):
        movies = tmp_path / "movies"
        folder = movies / "Movie (2020) [tmdb-555]"
        folder.mkdir(parents=True)

        real = tmp_path / "real.mkv"
        real.write_bytes(b"data")
        os.symlink(str(real), str(folder / "healthy.mkv"))
        os.symlink(str(tmp_path / "gone.mkv"), str(folder / "broken.mkv"))
        os.symlink(str(tmp_path / "gone.srt"), str(folder / "broken.srt"))
        (folder / "plain.mkv").write_bytes(b"data")

        result = checker.find_broken_symlinks(str(movies))

        assert result == [str(folder / "broken.mkv")]

    @needs_symlink
    def test_extension_match_is_case_insensitive(self, checker, tmp_path):
        os.symlink(str(tmp_path / "gone"), str(tmp_path / "MOVIE.MKV"))
        result = checker.find_broken_symlinks(str(tmp_path), MEDIA_EXTENSIONS)
        assert result == [str(tmp_path / "MOVIE.MKV")]

    @needs_symlink
    def test_nested_results_are_sorted(self, checker, tmp_path):
        for name in ("b", "a"):
            sub = tmp_path / name / "deep"
            sub.mkdir(parents=True)
            os.symlink(str(tmp_path / "gone"), str(sub / "ep.mp4"))

        result = checker.find_broken_symlinks(str(tmp_path))

        assert result == sorted(result)
        assert len(result) == 2

    @needs_symlink
    def test_empty_extension_list_matches_all(self, checker, tmp_path):
        os.symlink(str(tmp_path / "gone"), str(tmp_path / "notes.txt"))
        assert checker.find_broken_symlinks(str(tmp_path), ()) == [str(tmp_path / "notes.txt")]

    def test_missing_root_raises(self, checker, tmp_path):
        with pytest.raises(FileNotFoundError):
            checker.find_broken_symlinks(str(tmp_path / "absent"))


class TestDeleteSymlink:
    @needs_symlink
    def test_removes_link_only(self, checker, tmp_path):
        target = tmp_path / "target.mkv"
        target.write_bytes(b"data")
        link = tmp_path / "link.mkv"
        os.symlink(str(target), str(link))

        checker.delete_symlink(str(link))

        assert not os.path.lexists(str(link))
        assert target.exists()

    def test_refuses_regular_file(self, checker, tmp_path):
        """Regular files are never deleted."""
        regular = tmp_path / "movie.mkv"
        regular.write_bytes(b"data")

        with pytest.raises(OSError):
            checker.delete_symlink(str(regular))
        assert regular.exists()
