"""Test remote path construction and traversal prevention."""

import pytest

from internxt_backup.errors import PathTraversalError
from internxt_backup.path_utils import (
    join_remote,
    normalize_path_info,
    normalize_safe_relative_path,
    normalize_target_dir,
    relative_to_remote_root,
)


class TestNormalizePathInfo:
    """Test destination paths derived from relative paths."""

    def test_file_in_subdirectory(self):
        info = normalize_path_info("photos/2024/a.jpg", "/Backups")
        assert info.normalized_path == "photos/2024/a.jpg"
        assert info.directory == "photos/2024"
        assert info.target_path == "/Backups/photos/2024/a.jpg"
        assert info.full_directory_path == "/Backups/photos/2024"

    def test_file_at_root_target(self):
        info = normalize_path_info("a.txt", "/")
        assert info.directory == ""
        assert info.target_path == "/a.txt"
        assert info.full_directory_path == "/"

    def test_windows_separators_are_converted(self):
        info = normalize_path_info("dir\\sub\\file.txt", "/target/")
        assert info.normalized_path == "dir/sub/file.txt"
        assert info.target_path == "/target/dir/sub/file.txt"

    def test_redundant_segments_collapse(self):
        info = normalize_path_info("a/./b//c.txt", "/t")
        assert info.normalized_path == "a/b/c.txt"

    @pytest.mark.parametrize("path", [
        "",
        ".",
        "..",
        "../etc/passwd",
        "a/../../b",
        "a/../b",
        "/etc/passwd",
        "\\windows\\system32",
        "..\\..\\secret",
        "C:/Windows/win.ini",
    ])
    def test_rejects_unsafe_paths(self, path):
        with pytest.raises(PathTraversalError, match="Unsafe path"):
            normalize_path_info(path, "/target")

    def test_traversal_error_is_value_error(self):
        with pytest.raises(ValueError):
            normalize_safe_relative_path("../x")


class TestTargetDir:
    """Test remote root normalization."""

    @pytest.mark.parametrize("raw,expected", [
        ("", "/"),
        ("/", "/"),
        ("Backups", "/Backups"),
        ("/Backups/", "/Backups"),
        ("//Backups//Photos//", "/Backups/Photos"),
    ])
    def test_normalize_target_dir(self, raw, expected):
        assert normalize_target_dir(raw) == expected

    def test_join_remote(self):
        assert join_remote("/", "a/b.txt") == "/a/b.txt"
        assert join_remote("/target", "a/b.txt") == "/target/a/b.txt"
        assert join_remote("/target", "") == "/target"


class TestRelativeToRemoteRoot:
    """Test stripping the remote source prefix."""

    def test_strips_prefix(self):
        assert relative_to_remote_root("/Backups/Photos/a/b.jpg", "/Backups/Photos") == "a/b.jpg"

    def test_trailing_slash_on_source(self):
        assert relative_to_remote_root("/Backups/Photos/a.jpg", "/Backups/Photos/") == "a.jpg"

    def test_root_source(self):
        assert relative_to_remote_root("/a/b.jpg", "/") == "a/b.jpg"

    def test_sibling_prefix_is_not_stripped(self):
        # "/Backups/PhotosOld" is not below "/Backups/Photos"
        assert relative_to_remote_root("/Backups/PhotosOld/a.jpg", "/Backups/Photos") == "Backups/PhotosOld/a.jpg"
