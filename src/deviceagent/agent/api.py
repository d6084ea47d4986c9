"""HTTP client for the device agent server API.

This module provides:
- AgentClient: HTTP client for communicating with the server
- Registration, liveness and status operations
- Record batch sync, filesystem scan upload and file transfers

Every operation returns a NetworkResult (see result.py) instead of
raising: timeouts and connectivity problems become NetworkError, HTTP
statuses >= 400 become ApiError.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Any

import httpx

from deviceagent.agent.result import ApiError, NetworkError, NetworkResult, Success
from deviceagent.core.config import AgentConfig

logger = logging.getLogger(__name__)

# Bytes per chunk when writing a streamed download to disk
DOWNLOAD_CHUNK_SIZE = 64 * 1024


class AgentClient:
    """HTTP client for the device agent server API."""

    def __init__(self, config: AgentConfig, transport: httpx.BaseTransport | None = None) -> None:
        """Initialize the client.

        Args:
            config: Agent configuration (server URL, timeout, SSL).
            transport: Optional httpx transport (used by tests).
        """
        self._config = config
        self._client = httpx.Client(
            base_url=config.server_url,
            timeout=httpx.Timeout(config.timeout),
            verify=config.verify_ssl,
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> AgentClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _safe_call(self, operation: str, call: Callable[[], httpx.Response]) -> NetworkResult:
        """Run a request and map its outcome to a NetworkResult."""
        try:
            response = call()
        except httpx.TimeoutException as e:
            logger.warning("%s timed out: %s", operation, e)
            return NetworkError(reason=str(e) or type(e).__name__, timed_out=True)
        except httpx.RequestError as e:
            logger.warning("%s network error: %s", operation, e)
            return NetworkError(reason=str(e) or type(e).__name__)

        if response.status_code >= 400:
            body = response.text or "Unknown API error"
            logger.error("%s ApiError: %d - %s", operation, response.status_code, body)
            return ApiError(code=response.status_code, message=body)

        return Success(response)

    # === Generic primitives ===

    def post(self, path: str, body: Mapping[str, Any]) -> NetworkResult:
        """POST a JSON body."""
        return self._safe_call(f"POST {path}", lambda: self._client.post(path, json=dict(body)))

    def post_multipart(
        self,
        path: str,
        fields: Mapping[str, str],
        file_path: Path,
        file_field: str = "file",
    ) -> NetworkResult:
        """POST form fields plus one file as multipart/form-data.

        Args:
            path: Endpoint path.
            fields: Plain form fields.
            file_path: Local file to attach.
            file_field: Form field name of the file part.
        """

        def call() -> httpx.Response:
            with open(file_path, "rb") as fh:
                return self._client.post(
                    path,
                    data=dict(fields),
                    files={file_field: (file_path.name, fh, "application/octet-stream")},
                )

        return self._safe_call(f"POST {path}", call)

    def get_stream(self, path: str, body: Mapping[str, Any], dest: Path) -> NetworkResult:
        """POST a JSON body and stream the response body into a file.

        The body is written to a temporary file beside ``dest`` and renamed
        into place only once fully received, so a partial transfer never
        leaves a truncated file at ``dest``.

        Returns:
            Success carrying ``dest`` on success.
        """
        tmp_path = dest.with_name(f".{dest.name}.part")

        def call() -> httpx.Response:
            with self._client.stream("POST", path, json=dict(body)) as response:
                if response.status_code >= 400:
                    response.read()
                    return response
                dest.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp_path, "wb") as out:
                    for chunk in response.iter_bytes(DOWNLOAD_CHUNK_SIZE):
                        out.write(chunk)
                os.replace(tmp_path, dest)
                return response

        try:
            result = self._safe_call(f"POST {path}", call)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

        if isinstance(result, Success):
            return Success(dest)
        return result

    # === Health check ===

    def health_check(self) -> bool:
        """Check if the server is reachable.

        Returns:
            True if server is healthy.
        """
        try:
            response = self._client.get("/health")
            return response.status_code == 200
        except httpx.RequestError:
            return False

    # === Registration ===

    def register_device(
        self,
        token: str,
        model: str,
        device_id: str,
        name: str | None = None,
    ) -> NetworkResult:
        """Register (or re-register) this device with its push token."""
        payload: dict[str, Any] = {"token": token, "model": model, "deviceId": device_id}
        if name is not None:
            payload["name"] = name
        return self.post("/api/register-device", payload)

    def delete_device(self, device_id: str) -> NetworkResult:
        """Ask the server to delete this device's record."""
        return self.post("/api/delete-device", {"deviceId": device_id})

    def ping_device(self, token: str, device_id: str) -> NetworkResult:
        """Check that the server still recognizes this token/device pair."""
        return self.post("/api/ping-device", {"token": token, "deviceId": device_id})

    # === Data upload ===

    def sync_data(
        self,
        endpoint: str,
        device_id: str,
        data: Sequence[Mapping[str, Any]],
    ) -> NetworkResult:
        """Upload one batch of records to ``/api/sync/{endpoint}``.

        An empty batch is a no-op that succeeds without a request.
        """
        if not data:
            logger.debug("No data to sync for endpoint: %s. Skipping.", endpoint)
            return Success()
        return self.post(
            f"/api/sync/{endpoint}",
            {"deviceId": device_id, "data": [dict(item) for item in data]},
        )

    def upload_file_system_scan(self, device_id: str, paths_data: str) -> NetworkResult:
        """Upload a JSON-encoded scan result."""
        return self.post("/api/upload-paths", {"deviceId": device_id, "pathsData": paths_data})

    def send_status_update(
        self,
        device_id: str,
        status_type: str,
        message: str,
        extras: Mapping[str, Any] | None = None,
    ) -> NetworkResult:
        """Send a short status message (location, system info, ping)."""
        payload: dict[str, Any] = {
            "deviceId": device_id,
            "type": status_type,
            "message": message,
        }
        if extras:
            payload.update(extras)
        return self.post("/api/status-update", payload)

    # === File transfer ===

    def upload_requested_file(
        self,
        file_path: Path,
        device_id: str,
        original_path: str,
    ) -> NetworkResult:
        """Upload a local file requested by the server."""
        return self.post_multipart(
            "/api/upload-requested-file",
            {"deviceId": device_id, "originalPath": original_path},
            file_path,
        )

    def upload_audio_recording(self, file_path: Path, device_id: str) -> NetworkResult:
        """Upload a local audio recording."""
        return self.post_multipart("/api/upload-audio-recording", {"deviceId": device_id}, file_path)

    def download_file(self, server_file_path: str, dest: Path) -> NetworkResult:
        """Download a server-side file into ``dest``."""
        return self.get_stream("/api/download-file", {"filePath": server_file_path}, dest)
