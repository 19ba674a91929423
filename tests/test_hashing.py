"""Tests for hashing module."""

import hashlib

import pytest

from internxt_backup.hashing import compute_file_digest, compute_file_digest_async, hash_text


class TestFileHashing:
    """Test file-based hashing."""

    def test_file_hash_detects_changes(self, tmp_path):
        """File hash should detect any byte changes."""
        file1 = tmp_path / "test.py"
        file1.write_text("def foo():\n    return 42")
        hash1 = compute_file_digest(file1)

        file1.write_text("def foo():\n    return 43")
        hash2 = compute_file_digest(file1)

        assert hash1 != hash2, "File hash should detect changes"

    def test_plain_hex_digest(self, tmp_path):
        """Digests are bare lowercase hex with no algorithm prefix."""
        binary_file = tmp_path / "data.bin"
        binary_file.write_bytes(b"\x00\x01\x02\x03\x04")

        digest = compute_file_digest(binary_file)
        assert digest == hashlib.sha256(b"\x00\x01\x02\x03\x04").hexdigest()
        assert len(digest) == 64

    def test_empty_file(self, tmp_path):
        empty = tmp_path / "empty"
        empty.write_bytes(b"")
        assert compute_file_digest(empty) == hashlib.sha256(b"").hexdigest()

    def test_accepts_str_path(self, tmp_path):
        f = tmp_path / "f.txt"
        f.write_text("x")
        assert compute_file_digest(str(f)) == compute_file_digest(f)

    @pytest.mark.asyncio
    async def test_async_matches_sync(self, tmp_path):
        f = tmp_path / "f.txt"
        f.write_text("same bytes")
        assert await compute_file_digest_async(f) == compute_file_digest(f)

    def test_hash_text(self):
        assert hash_text("/a/b") == hashlib.sha256(b"/a/b").hexdigest()
        assert hash_text("/a/b") != hash_text("/a/c")
