"""Test backup file selection and deletion sync helpers."""

import pytest

from internxt_backup.backup_state import BackupState
from internxt_backup.core import BaselineSnapshot, FileMetadata, SyncOptions
from internxt_backup.sync import select_files, sync_deletions


@pytest.fixture
def files(write_file, make_file_info):
    return [
        make_file_info(write_file("a.txt", "a"), "a.txt", has_changed=None),
        make_file_info(write_file("b.txt", "b"), "b.txt", has_changed=None),
    ]


@pytest.fixture
def with_baseline(state_dir, files):
    state = BackupState(state_dir, manifest_key=None)
    state._baseline = BaselineSnapshot(
        sourceDir="/src",
        targetDir="/",
        files={
            "a.txt": FileMetadata(checksum=files[0].checksum, size=1, mode=0o100644, mtime="t"),
            "b.txt": FileMetadata(checksum="stale", size=1, mode=0o100644, mtime="t"),
        },
    )
    return state


class TestSelectFiles:
    def test_full_takes_everything(self, files, with_baseline):
        mode, selected = select_files(SyncOptions(full=True), files, [], with_baseline)
        assert mode == "full"
        assert [f.relative_path for f in selected] == ["a.txt", "b.txt"]
        assert all(f.has_changed for f in selected)

    def test_differential_with_baseline(self, files, with_baseline):
        mode, selected = select_files(SyncOptions(), files, files, with_baseline)
        assert mode == "differential"
        assert [f.relative_path for f in selected] == ["b.txt"]
        assert selected[0].has_changed is True

    def test_force_uses_scanner_selection(self, files, with_baseline):
        mode, selected = select_files(SyncOptions(force=True), files, files[:1], with_baseline)
        assert mode == "forced"
        assert selected == files[:1]

    def test_incremental_without_baseline(self, files, state_dir):
        mode, selected = select_files(SyncOptions(), files, files[1:], BackupState(state_dir, manifest_key=None))
        assert mode == "incremental"
        assert selected == files[1:]


class TestSyncDeletions:
    @pytest.mark.asyncio
    async def test_deletes_under_target(self, storage):
        storage.put("/t/gone.txt", b"x")
        storage.put("/t/d/also.txt", b"y")

        removed = await sync_deletions(storage, "/t", ["gone.txt", "d/also.txt", "never-there.txt"])

        assert removed == ["/t/gone.txt", "/t/d/also.txt"]
        assert storage.files == {}

    @pytest.mark.asyncio
    async def test_unsafe_paths_skipped(self, storage):
        storage.put("/secret.txt", b"x")
        removed = await sync_deletions(storage, "/t", ["../secret.txt", "/secret.txt"])
        assert removed == []
        assert storage.calls_named("delete_file") == []
