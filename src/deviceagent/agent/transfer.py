"""Single-file transfers requested by the server.

This module provides:
- FileTransfer: upload of a local file or audio recording, and download
  of a server file

All operations are safe to repeat: re-uploading the same file is
harmless, a recording is deleted only after a confirmed upload, and a
download replaces any previous copy atomically.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from deviceagent.agent.device import STORAGE, Permissions
from deviceagent.agent.errors import (
    MalformedCommandError,
    NotFoundError,
    PermissionDeniedError,
    TransportError,
)
from deviceagent.agent.result import ApiError, Success

if TYPE_CHECKING:
    from deviceagent.agent.api import AgentClient

logger = logging.getLogger(__name__)


class FileTransfer:
    """Moves individual files between the device and the server."""

    def __init__(
        self,
        client: AgentClient,
        device_id: str,
        downloads_dir: Path,
        permissions: Permissions,
    ) -> None:
        """Initialize the transfer helper.

        Args:
            client: HTTP client for server communication.
            device_id: Identifier tagged on every upload.
            downloads_dir: Directory receiving downloaded files.
            permissions: Capability gate ("storage" is required to download).
        """
        self._client = client
        self._device_id = device_id
        self._downloads_dir = Path(downloads_dir)
        self._permissions = permissions

    def upload(self, file_path: str) -> None:
        """Upload a local file, tagged with device id and original path.

        Raises:
            NotFoundError: If the path does not exist or is a directory.
            PermissionDeniedError: If the file is not readable.
            TransportError: If the server call failed.
        """
        path = Path(file_path)
        if not path.exists():
            raise NotFoundError(f"Cannot upload file. No such file: {file_path}")
        if path.is_dir():
            raise NotFoundError(f"Cannot upload file. Path is a directory: {file_path}")
        if not os.access(path, os.R_OK):
            raise PermissionDeniedError("read", f"Cannot upload file. Not readable: {file_path}")

        logger.info("Uploading requested file: %s", file_path)
        result = self._client.upload_requested_file(path, self._device_id, file_path)
        if not isinstance(result, Success):
            raise TransportError("upload_file", result)
        logger.info("Uploaded requested file: %s", file_path)

    def upload_recording(self, file_path: str) -> bool:
        """Upload an audio recording, deleting the local file once uploaded.

        A recording that is already gone is treated as uploaded by an
        earlier run, so repeating the command is harmless.

        Returns:
            False if there was no file to upload.

        Raises:
            NotFoundError: If the path is a directory.
            TransportError: If the server call failed; the file is kept.
        """
        path = Path(file_path)
        if not path.exists():
            logger.warning("Audio recording not found, nothing to upload: %s", file_path)
            return False
        if path.is_dir():
            raise NotFoundError(f"Cannot upload recording. Path is a directory: {file_path}")

        logger.debug("Uploading audio recording from: %s", file_path)
        result = self._client.upload_audio_recording(path, self._device_id)
        if not isinstance(result, Success):
            logger.error("Failed to upload audio recording, keeping %s for retry", file_path)
            raise TransportError("upload_audio_recording", result)

        logger.info("Uploaded audio recording, deleting local file: %s", file_path)
        path.unlink(missing_ok=True)
        return True

    def download(self, server_file_path: str) -> Path:
        """Download a server-side file into the downloads directory.

        Returns:
            Path of the local copy.

        Raises:
            MalformedCommandError: If the server path has no file name.
            PermissionDeniedError: If storage access is not granted.
            NotFoundError: If the server has no such file, or no local file
                exists after the transfer.
            TransportError: If the server call failed otherwise.
        """
        name = Path(server_file_path).name
        if not name or name in (".", ".."):
            raise MalformedCommandError("download_file", "serverFilePath")
        if not self._permissions.granted(STORAGE):
            raise PermissionDeniedError(STORAGE, "Cannot download: storage permission not granted")

        self._downloads_dir.mkdir(parents=True, exist_ok=True)
        local_file = self._downloads_dir / name

        result = self._client.download_file(server_file_path, local_file)
        if isinstance(result, ApiError) and result.code == 404:
            raise NotFoundError(f"Server has no file at {server_file_path}")
        if not isinstance(result, Success):
            raise TransportError("download_file", result)
        if not local_file.exists():
            raise NotFoundError(f"Download of {server_file_path} produced no local file")

        logger.info("File downloaded successfully to: %s", local_file)
        return local_file
