"""Test the Internxt CLI provider against a scripted command runner."""

import json
from typing import Dict, List

import pytest

from internxt_backup.storage.internxt import CommandOutput, InternxtCLIStorage


class ScriptedDrive:
    """Minimal in-memory drive answering the CLI subcommands the provider uses."""

    def __init__(self):
        self.folders: Dict[str, dict] = {"root": {"parent": None, "name": ""}}
        self.files: Dict[str, dict] = {}
        self.commands: List[tuple] = []
        self.logged_in = True
        self.whoami_code = 0
        self.installed = True
        self.upload_errors: List[str] = []  # queued error messages for upload-file
        self._next = 0

    def _uuid(self, prefix: str) -> str:
        self._next += 1
        return f"{prefix}-{self._next}"

    def add_folder(self, parent: str, name: str) -> str:
        uuid = self._uuid("folder")
        self.folders[uuid] = {"parent": parent, "name": name}
        return uuid

    def add_file(self, parent: str, plain_name: str, file_type: str = "", size: int = 1) -> str:
        uuid = self._uuid("file")
        self.files[uuid] = {"parent": parent, "plainName": plain_name, "type": file_type, "size": size}
        return uuid

    @staticmethod
    def _opts(args) -> Dict[str, str]:
        return dict(a[2:].split("=", 1) for a in args if a.startswith("--") and "=" in a)

    async def run(self, *args: str) -> CommandOutput:
        self.commands.append(args)
        if not self.installed:
            raise FileNotFoundError("internxt: command not found")
        command, opts = args[0], self._opts(args[1:])

        if command == "--version":
            return CommandOutput(0, "1.5.0\n", "")
        if command == "whoami":
            text = "You are logged in as a@b.c" if self.logged_in else "You are not logged in"
            return CommandOutput(self.whoami_code, text, "")
        if command == "config":
            return CommandOutput(0, json.dumps({"success": True, "config": {"Root folder ID": "root"}}), "")
        if command == "list":
            parent = opts["id"]
            folders = [
                {"plainName": f["name"], "uuid": u} for u, f in self.folders.items() if f["parent"] == parent
            ]
            files = [
                {"plainName": f["plainName"], "type": f["type"], "size": f["size"], "uuid": u}
                for u, f in self.files.items()
                if f["parent"] == parent
            ]
            return CommandOutput(0, json.dumps({"success": True, "list": {"folders": folders, "files": files}}), "")
        if command == "create-folder":
            uuid = self.add_folder(opts["id"], opts["name"])
            return CommandOutput(0, json.dumps({"success": True, "folder": {"uuid": uuid}}), "")
        if command == "upload-file":
            if self.upload_errors:
                message = self.upload_errors.pop(0)
                return CommandOutput(1, json.dumps({"success": False, "message": message}), "")
            name = opts["file"].rsplit("/", 1)[-1]
            plain, _, ext = name.partition(".")
            self.add_file(opts["destination"], plain, ext)
            return CommandOutput(0, json.dumps({"success": True, "message": "File uploaded"}), "")
        if command == "delete-permanently-file":
            return CommandOutput(0 if self.files.pop(opts["id"], None) else 1, "", "")
        if command == "download-file":
            return CommandOutput(0 if opts["id"] in self.files else 1, "", "not found")
        return CommandOutput(1, "", f"unknown command {command}")

    def named(self, command: str) -> List[tuple]:
        return [c for c in self.commands if c[0] == command]


@pytest.fixture
def drive():
    return ScriptedDrive()


@pytest.fixture
def cli(drive, monkeypatch):
    storage = InternxtCLIStorage(binary="internxt")
    monkeypatch.setattr(storage, "_run", drive.run)
    return storage


class TestCheckCli:
    """Test installation and authentication checks."""

    @pytest.mark.asyncio
    async def test_ready(self, cli):
        status = await cli.check_cli()
        assert status.installed and status.authenticated
        assert status.version == "1.5.0"

    @pytest.mark.asyncio
    async def test_not_installed(self, cli, drive):
        drive.installed = False
        status = await cli.check_cli()
        assert status.installed is False
        assert status.authenticated is False
        assert "not found" in status.error

    @pytest.mark.asyncio
    async def test_not_logged_in(self, cli, drive):
        drive.logged_in = False
        status = await cli.check_cli()
        assert status.installed is True
        assert status.authenticated is False
        assert "internxt login" in status.error

    @pytest.mark.asyncio
    async def test_failed_whoami_is_not_authenticated(self, cli, drive):
        drive.whoami_code = 1
        status = await cli.check_cli()
        assert status.authenticated is False

    def test_binary_from_environment(self, monkeypatch):
        monkeypatch.setenv("INTERNXT_CLI", "/opt/internxt/bin/internxt")
        assert InternxtCLIStorage().binary == "/opt/internxt/bin/internxt"


class TestFolders:
    """Test folder resolution by UUID."""

    @pytest.mark.asyncio
    async def test_nested_create_is_cached(self, cli, drive):
        first = await cli.create_folder("/Backups/Photos/2024")
        second = await cli.create_folder("/Backups/Photos/2024")

        assert first.success is True
        assert first.uuid == second.uuid
        assert len(drive.named("create-folder")) == 3

    @pytest.mark.asyncio
    async def test_existing_folder_is_reused(self, cli, drive):
        backups = drive.add_folder("root", "Backups")
        result = await cli.create_folder("/Backups")
        assert result.uuid == backups
        assert drive.named("create-folder") == []

    @pytest.mark.asyncio
    async def test_root(self, cli):
        result = await cli.create_folder("/")
        assert result.uuid == "root"


class TestFiles:
    """Test listing, upload and deletion."""

    @pytest.mark.asyncio
    async def test_list_joins_name_and_type(self, cli, drive):
        backups = drive.add_folder("root", "Backups")
        drive.add_file(backups, "index", "js", size=42)
        drive.add_file(backups, "README")
        drive.add_folder(backups, "src")

        result = await cli.list_files("/Backups")

        assert result.success is True
        by_name = {f.name: f for f in result.files}
        assert by_name["index.js"].path == "/Backups/index.js"
        assert by_name["index.js"].size == 42
        assert by_name["README"].is_folder is False
        assert by_name["src"].is_folder is True

    @pytest.mark.asyncio
    async def test_list_missing_folder(self, cli):
        result = await cli.list_files("/Nope")
        assert result.success is False
        assert "not found" in result.error

    @pytest.mark.asyncio
    async def test_list_root_paths(self, cli, drive):
        drive.add_file("root", "top", "txt")
        result = await cli.list_files("/")
        assert [f.path for f in result.files] == ["/top.txt"]

    @pytest.mark.asyncio
    async def test_list_recursive(self, cli, drive):
        backups = drive.add_folder("root", "Backups")
        nested = drive.add_folder(backups, "docs")
        drive.add_file(backups, "a", "txt")
        drive.add_file(nested, "b", "txt")

        files = await cli.list_files_recursive("/Backups")

        assert sorted(f.path for f in files) == ["/Backups/a.txt", "/Backups/docs/b.txt"]

    @pytest.mark.asyncio
    async def test_upload_creates_parent_folders(self, cli, drive, tmp_path):
        local = tmp_path / "report.pdf"
        local.write_text("pdf")

        result = await cli.upload_file(local, "/Backups/2024/report.pdf")

        assert result.success is True
        (upload,) = drive.named("upload-file")
        destination = [a for a in upload if a.startswith("--destination=")][0].split("=", 1)[1]
        assert drive.folders[destination]["name"] == "2024"

    @pytest.mark.asyncio
    async def test_upload_replaces_existing_file(self, cli, drive, tmp_path):
        backups = drive.add_folder("root", "Backups")
        old = drive.add_file(backups, "report", "pdf")
        drive.upload_errors.append("File already exists")
        local = tmp_path / "report.pdf"
        local.write_text("pdf v2")

        result = await cli.upload_file(local, "/Backups/report.pdf")

        assert result.success is True
        assert old not in drive.files
        assert len(drive.named("upload-file")) == 2

    @pytest.mark.asyncio
    async def test_upload_error_message(self, cli, drive, tmp_path):
        drive.upload_errors.append("Quota exceeded")
        local = tmp_path / "a.txt"
        local.write_text("a")
        result = await cli.upload_file(local, "/a.txt")
        assert result.success is False
        assert result.error == "Quota exceeded"

    @pytest.mark.asyncio
    async def test_delete_file(self, cli, drive):
        backups = drive.add_folder("root", "Backups")
        uuid = drive.add_file(backups, "a", "txt")

        assert await cli.delete_file("/Backups/a.txt") is True
        assert uuid not in drive.files
        assert await cli.delete_file("/Backups/a.txt") is False

    @pytest.mark.asyncio
    async def test_download_file(self, cli, drive, tmp_path):
        uuid = drive.add_file("root", "a", "txt")
        result = await cli.download_file(uuid, tmp_path / "out")
        assert result.success is True
        assert (tmp_path / "out").is_dir()
        (download,) = drive.named("download-file")
        assert "--overwrite" in download
        assert f"--directory={tmp_path / 'out'}" in download
