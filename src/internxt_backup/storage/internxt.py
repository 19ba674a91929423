"""Remote storage backed by the Internxt CLI.

Every operation shells out to the ``internxt`` binary. Folders are addressed
by UUID, so remote paths are resolved segment by segment starting from the
account's root folder, and resolved UUIDs are cached for the lifetime of the
instance.
"""

import asyncio
import json
import logging
import os
import posixpath
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..constants import ENV_CLI_BINARY
from ..storage_models import (
    CLICheckResult,
    DownloadFileResult,
    FolderResult,
    ListResult,
    RemoteFile,
    UploadResult,
)
from .base import LocalPath, ProgressCallback

logger = logging.getLogger(__name__)

_PROGRESS = re.compile(r"(\d+)%")
FILE_EXISTS_ERROR = "File already exists"


@dataclass
class CommandOutput:
    """Captured result of one CLI invocation."""
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def combined(self) -> str:
        return self.stdout + self.stderr


def _split_remote(remote_path: str) -> Tuple[str, str]:
    """Split "/a/b/c.txt" into ("/a/b", "c.txt"); files at the root get "/"."""
    folder, name = posixpath.split(remote_path)
    return folder or "/", name


def _normalize_folder(remote_path: str) -> str:
    """Cache key for a folder path: "" for the root, "a/b" otherwise."""
    return "" if remote_path in ("", "/") else remote_path.strip("/")


def _parse_json(text: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(text)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


class InternxtCLIStorage:
    """RemoteStorage implementation driving the ``internxt`` command line tool."""

    def __init__(self, binary: Optional[str] = None):
        self.binary = binary or os.environ.get(ENV_CLI_BINARY, "internxt")
        self._root_uuid: Optional[str] = None
        self._folder_cache: Dict[str, str] = {}

    async def _run(self, *args: str) -> CommandOutput:
        """Run the CLI and capture its output.

        Raises:
            OSError: If the binary cannot be started
        """
        logger.debug("Running %s %s", self.binary, " ".join(args))
        proc = await asyncio.create_subprocess_exec(
            self.binary, *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
        return CommandOutput(
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )

    # ============= Folder resolution =============

    async def _get_root_folder_uuid(self) -> Optional[str]:
        if self._root_uuid:
            return self._root_uuid
        try:
            out = await self._run("config", "--json")
        except OSError as e:
            logger.debug("Could not read CLI config: %s", e)
            return None
        response = _parse_json(out.stdout) or {}
        # CLI returns: {"success": true, "config": {"Root folder ID": "uuid"}}
        self._root_uuid = (response.get("config") or {}).get("Root folder ID")
        return self._root_uuid

    async def _list_folder_contents(self, folder_uuid: str) -> Tuple[List[dict], List[dict]]:
        try:
            out = await self._run("list", f"--id={folder_uuid}", "--json", "--non-interactive")
        except OSError as e:
            logger.debug("List failed for folder %s: %s", folder_uuid, e)
            return [], []
        parsed = _parse_json(out.stdout)
        if parsed is None:
            return [], []
        listing = parsed.get("list", parsed)
        return list(listing.get("folders") or []), list(listing.get("files") or [])

    @staticmethod
    def _file_name(entry: dict) -> str:
        """Full file name; the CLI stores "index.js" as plainName "index", type "js"."""
        name = entry.get("plainName", "")
        file_type = entry.get("type")
        return f"{name}.{file_type}" if file_type else name

    async def _find_folder_in_parent(self, parent_uuid: str, name: str) -> Optional[str]:
        folders, _ = await self._list_folder_contents(parent_uuid)
        for folder in folders:
            if folder.get("plainName") == name:
                return folder.get("uuid")
        return None

    async def _find_file_in_folder(self, folder_uuid: str, file_name: str) -> Optional[dict]:
        _, files = await self._list_folder_contents(folder_uuid)
        for entry in files:
            if entry.get("plainName") == file_name or self._file_name(entry) == file_name:
                return entry
        return None

    async def _create_single_folder(self, parent_uuid: str, name: str) -> Optional[str]:
        try:
            out = await self._run(
                "create-folder", f"--name={name}", f"--id={parent_uuid}", "--json", "--non-interactive"
            )
        except OSError as e:
            logger.debug("Failed to create folder %r: %s", name, e)
            return None

        if out.ok:
            response = _parse_json(out.stdout) or {}
            folder_uuid = (response.get("folder") or {}).get("uuid") or response.get("uuid")
            if folder_uuid:
                return folder_uuid
            return await self._find_folder_in_parent(parent_uuid, name)

        if "exists" in out.combined.lower():
            logger.debug("Folder %r already exists, looking up UUID", name)
            return await self._find_folder_in_parent(parent_uuid, name)

        logger.debug("Failed to create folder %r: %s", name, out.combined.strip())
        return None

    async def _ensure_folder_path(self, remote_path: str) -> Optional[str]:
        """UUID of ``remote_path``, creating missing folders on the way."""
        normalized = _normalize_folder(remote_path)
        if normalized in self._folder_cache:
            return self._folder_cache[normalized]

        current = await self._get_root_folder_uuid()
        if not current:
            return None
        if not normalized:
            self._folder_cache[""] = current
            return current

        current_path = ""
        for segment in filter(None, normalized.split("/")):
            current_path = f"{current_path}/{segment}" if current_path else segment
            cached = self._folder_cache.get(current_path)
            if cached:
                current = cached
                continue

            folder_uuid = await self._find_folder_in_parent(current, segment)
            if not folder_uuid:
                folder_uuid = await self._create_single_folder(current, segment)
            if not folder_uuid:
                # May have been created by a concurrent call
                folder_uuid = await self._find_folder_in_parent(current, segment)
            if not folder_uuid:
                logger.debug("Failed to resolve or create folder segment: %s", segment)
                return None

            self._folder_cache[current_path] = folder_uuid
            current = folder_uuid
        return current

    async def _resolve_folder_uuid(self, remote_path: str) -> Optional[str]:
        """UUID of an existing folder, without creating anything."""
        normalized = _normalize_folder(remote_path)
        if normalized in self._folder_cache:
            return self._folder_cache[normalized]

        current = await self._get_root_folder_uuid()
        if not current or not normalized:
            return current

        current_path = ""
        for segment in filter(None, normalized.split("/")):
            current_path = f"{current_path}/{segment}" if current_path else segment
            cached = self._folder_cache.get(current_path)
            if cached:
                current = cached
                continue
            folder_uuid = await self._find_folder_in_parent(current, segment)
            if not folder_uuid:
                return None
            self._folder_cache[current_path] = folder_uuid
            current = folder_uuid
        return current

    # ============= RemoteStorage =============

    async def check_cli(self) -> CLICheckResult:
        try:
            version_out = await self._run("--version")
        except OSError as e:
            return CLICheckResult(installed=False, authenticated=False, error=str(e))
        version = version_out.stdout.strip()
        if not version_out.ok or not version:
            return CLICheckResult(
                installed=False,
                authenticated=False,
                error=version_out.stderr.strip() or "Internxt CLI not found",
            )

        try:
            whoami = await self._run("whoami")
        except OSError as e:
            return CLICheckResult(installed=True, authenticated=False, version=version, error=str(e))
        text = whoami.stdout.lower()
        if whoami.ok and "logged in" in text and "not logged in" not in text:
            return CLICheckResult(installed=True, authenticated=True, version=version)
        return CLICheckResult(
            installed=True,
            authenticated=False,
            version=version,
            error="Not authenticated. Please run: internxt login",
        )

    async def _try_upload_file(self, local_path: str, remote_path: str, folder_uuid: str) -> UploadResult:
        try:
            out = await self._run(
                "upload-file", f"--file={local_path}", f"--destination={folder_uuid}",
                "--json", "--non-interactive",
            )
        except OSError as e:
            return UploadResult(success=False, file_path=local_path, remote_path=remote_path, error=str(e))

        response = _parse_json(out.stdout) or _parse_json(out.stderr)
        if out.ok and (response is None or response.get("success") is not False):
            return UploadResult(
                success=True,
                file_path=local_path,
                remote_path=remote_path,
                output=(response or {}).get("message"),
            )
        error = (response or {}).get("message") or out.combined.strip() or "Upload failed"
        return UploadResult(success=False, file_path=local_path, remote_path=remote_path, error=error)

    async def upload_file(self, local_path: LocalPath, remote_path: str) -> UploadResult:
        local_path = str(local_path)
        folder_path, file_name = _split_remote(remote_path)
        folder_uuid = await self._ensure_folder_path(folder_path)
        if not folder_uuid:
            return UploadResult(
                success=False,
                file_path=local_path,
                remote_path=remote_path,
                error=f"Failed to resolve or create folder: {folder_path}",
            )

        result = await self._try_upload_file(local_path, remote_path, folder_uuid)
        if not result.success and result.error == FILE_EXISTS_ERROR:
            logger.debug("File already exists at %s, replacing", remote_path)
            existing = await self._find_file_in_folder(folder_uuid, file_name)
            if existing and existing.get("uuid"):
                await self._delete_by_uuid(existing["uuid"])
            return await self._try_upload_file(local_path, remote_path, folder_uuid)
        return result

    async def upload_file_with_progress(
        self,
        local_path: LocalPath,
        remote_path: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        local_path = str(local_path)
        folder_path, _ = _split_remote(remote_path)
        folder_uuid = await self._ensure_folder_path(folder_path)
        if not folder_uuid:
            return UploadResult(
                success=False,
                file_path=local_path,
                remote_path=remote_path,
                error=f"Failed to resolve or create folder: {folder_path}",
            )

        logger.debug("Uploading with progress: %s to %s", local_path, remote_path)
        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary, "upload-file", "--file", local_path,
                "--destination", folder_uuid, "--non-interactive",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return UploadResult(success=False, file_path=local_path, remote_path=remote_path, error=str(e))

        async def read_stdout() -> str:
            chunks = []
            while True:
                data = await proc.stdout.read(4096)
                if not data:
                    break
                text = data.decode(errors="replace")
                chunks.append(text)
                matches = _PROGRESS.findall(text)
                if matches and on_progress:
                    on_progress(int(matches[-1]))
            return "".join(chunks)

        stdout, stderr = await asyncio.gather(read_stdout(), proc.stderr.read())
        code = await proc.wait()
        output = stdout + stderr.decode(errors="replace")

        if code == 0 and "error" not in output.lower():
            return UploadResult(success=True, file_path=local_path, remote_path=remote_path, output=output)
        return UploadResult(
            success=False,
            file_path=local_path,
            remote_path=remote_path,
            output=output,
            error=output.strip() or f"Process exited with code {code}",
        )

    async def download_file(self, file_id: str, target_dir: LocalPath) -> DownloadFileResult:
        Path(target_dir).mkdir(parents=True, exist_ok=True)
        try:
            out = await self._run(
                "download-file", f"--id={file_id}", f"--directory={target_dir}",
                "--overwrite", "--non-interactive",
            )
        except OSError as e:
            return DownloadFileResult(success=False, error=str(e))
        if not out.ok:
            return DownloadFileResult(success=False, error=out.combined.strip() or "Download failed")
        return DownloadFileResult(success=True)

    async def create_folder(self, remote_path: str) -> FolderResult:
        logger.debug("Creating folder: %s", remote_path)
        folder_uuid = await self._ensure_folder_path(remote_path)
        if not folder_uuid:
            return FolderResult(success=False, path=remote_path, error=f"Failed to create folder: {remote_path}")
        return FolderResult(success=True, path=remote_path, uuid=folder_uuid)

    async def list_files(self, remote_path: str = "/") -> ListResult:
        logger.debug("Listing files in: %s", remote_path)
        folder_uuid = await self._resolve_folder_uuid(remote_path)
        if not folder_uuid:
            return ListResult(success=False, error=f"Folder not found: {remote_path}")

        folders, files = await self._list_folder_contents(folder_uuid)
        base = remote_path.rstrip("/")
        entries = [
            RemoteFile(
                name=f.get("plainName", ""),
                path=f"{base}/{f.get('plainName', '')}",
                is_folder=True,
                uuid=f.get("uuid"),
            )
            for f in folders
        ]
        for f in files:
            name = self._file_name(f)
            entries.append(
                RemoteFile(
                    name=name,
                    path=f"{base}/{name}",
                    size=int(f.get("size") or 0),
                    is_folder=False,
                    uuid=f.get("uuid"),
                )
            )
        return ListResult(success=True, files=entries)

    async def list_files_recursive(self, remote_path: str = "/") -> List[RemoteFile]:
        result = await self.list_files(remote_path)
        if not result.success:
            logger.warning("Could not list %s: %s", remote_path, result.error)
            return []

        collected: List[RemoteFile] = []
        for entry in result.files:
            if entry.is_folder:
                collected.extend(await self.list_files_recursive(entry.path))
            else:
                collected.append(entry)
        return collected

    async def _delete_by_uuid(self, file_uuid: str) -> bool:
        try:
            out = await self._run("delete-permanently-file", f"--id={file_uuid}", "--non-interactive")
        except OSError as e:
            logger.debug("Delete failed for %s: %s", file_uuid, e)
            return False
        return out.ok

    async def delete_file(self, remote_path: str) -> bool:
        logger.debug("Deleting remote file: %s", remote_path)
        folder_path, file_name = _split_remote(remote_path)
        folder_uuid = await self._resolve_folder_uuid(folder_path)
        if not folder_uuid:
            return False
        entry = await self._find_file_in_folder(folder_uuid, file_name)
        if not entry or not entry.get("uuid"):
            return False
        return await self._delete_by_uuid(entry["uuid"])
