"""Command handlers run by the task engine.

Each handler takes a TaskContext and either returns (SUCCESS, with an
optional message) or raises; see engine.outcome_for for how exceptions
become outcomes. Every handler is safe to run twice with the same
parameters.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from deviceagent.agent.device import LOCATION
from deviceagent.agent.errors import MalformedCommandError, PermissionDeniedError, TransportError
from deviceagent.agent.result import Success
from deviceagent.agent.sync import SYNC_ORDER
from deviceagent.agent.tasks.types import Handler, TaskContext
from deviceagent.core.types import RecordKind

if TYPE_CHECKING:
    from deviceagent.agent.api import AgentClient
    from deviceagent.agent.device import DeviceInfo, LocationProvider, Permissions
    from deviceagent.agent.registration import RegistrationManager
    from deviceagent.agent.scanner import FilesystemScanner
    from deviceagent.agent.sync import SyncOrchestrator
    from deviceagent.agent.transfer import FileTransfer

logger = logging.getLogger(__name__)

# Command names
SYNC_ALL = "sync_all"
SYNC_NOTIFICATIONS = "sync_notifications"
SCAN_FILESYSTEM = "scan_filesystem"
GET_LOCATION = "get_location"
GET_SYSTEM_INFO = "get_system_info"
UPLOAD_FILE = "upload_file"
UPLOAD_AUDIO_RECORDING = "upload_audio_recording"
DOWNLOAD_FILE = "download_file"
PING = "ping"
CHECK_TOKEN = "check_token"
REGISTER = "register"


def _is_true(value: str | None) -> bool:
    return (value or "").strip().lower() == "true"


class CommandHandlers:
    """Binds command names to operations on the agent's collaborators."""

    def __init__(
        self,
        client: AgentClient,
        device_id: str,
        permissions: Permissions,
        orchestrator: SyncOrchestrator,
        scanner: FilesystemScanner,
        transfer: FileTransfer,
        registration: RegistrationManager,
        device_info: DeviceInfo,
        location: LocationProvider,
    ) -> None:
        self._client = client
        self._device_id = device_id
        self._permissions = permissions
        self._orchestrator = orchestrator
        self._scanner = scanner
        self._transfer = transfer
        self._registration = registration
        self._device_info = device_info
        self._location = location

    def as_mapping(self) -> dict[str, Handler]:
        """Get the handler per command name, for TaskEngine."""
        return {
            SYNC_ALL: self.sync_all,
            SYNC_NOTIFICATIONS: self.sync_notifications,
            SCAN_FILESYSTEM: self.scan_filesystem,
            GET_LOCATION: self.get_location,
            GET_SYSTEM_INFO: self.get_system_info,
            UPLOAD_FILE: self.upload_file,
            UPLOAD_AUDIO_RECORDING: self.upload_audio_recording,
            DOWNLOAD_FILE: self.download_file,
            PING: self.ping,
            CHECK_TOKEN: self.check_token,
            REGISTER: self.register,
        }

    def _send_status(self, status_type: str, message: str, extras: dict | None = None) -> None:
        result = self._client.send_status_update(self._device_id, status_type, message, extras)
        if not isinstance(result, Success):
            raise TransportError(f"status_update {status_type}", result)

    def sync_all(self, ctx: TaskContext) -> str:
        """Sync every permitted record kind, one after another.

        Kinds are all attempted even if an earlier one fails; the task is
        retried if any of them failed.
        """
        logger.info("Starting full differential data sync...")
        allowed = set(self._permissions.granted_kinds())
        summaries = []
        failed = None
        for kind in SYNC_ORDER:
            if kind not in allowed:
                continue
            ctx.raise_if_cancelled()
            report = self._orchestrator.sync(kind)
            summaries.append(f"{kind.value}: {report.summary()}")
            if not report.ok and failed is None:
                failed = report

        if failed is not None:
            raise TransportError(f"sync {failed.kind.value}", failed.result)
        return ", ".join(summaries)

    def sync_notifications(self, ctx: TaskContext) -> str:
        report = self._orchestrator.sync(RecordKind.NOTIFICATION)
        if not report.ok:
            raise TransportError("sync notification", report.result)
        return report.summary()

    def scan_filesystem(self, ctx: TaskContext) -> str:
        """Scan the filesystem and upload the result.

        An empty result (including a scan without storage permission) is
        a success with nothing to upload.
        """
        result = self._scanner.scan()
        if result.is_empty:
            return "File system scan returned no items"

        ctx.raise_if_cancelled()
        upload = self._client.upload_file_system_scan(self._device_id, result.to_json())
        if not isinstance(upload, Success):
            raise TransportError("upload_file_system_scan", upload)
        return f"Uploaded scan with {len(result.items)} items"

    def get_location(self, ctx: TaskContext) -> str:
        if not self._permissions.granted(LOCATION):
            raise PermissionDeniedError(LOCATION, "Location permission not granted")

        position = self._location.current_location()
        if position is not None:
            message = f"Lat={position[0]}, Lon={position[1]}"
        else:
            message = "Not available"
        self._send_status("location", message)
        return message

    def get_system_info(self, ctx: TaskContext) -> str:
        battery = self._device_info.battery_status()
        message = (
            f"Net={self._device_info.network_type()}, "
            f"Batt={battery.percentage}% ({battery.status})"
        )
        self._send_status("system_info", message)
        return message

    def upload_file(self, ctx: TaskContext) -> str:
        file_path = ctx.params.get("filePath")
        if not file_path:
            raise MalformedCommandError(UPLOAD_FILE, "filePath")
        self._transfer.upload(file_path)
        return f"Uploaded {file_path}"

    def upload_audio_recording(self, ctx: TaskContext) -> str:
        file_path = ctx.params.get("filePath")
        if not file_path:
            raise MalformedCommandError(UPLOAD_AUDIO_RECORDING, "filePath")
        if not self._transfer.upload_recording(file_path):
            return f"No recording at {file_path}"
        return f"Uploaded recording {file_path}"

    def download_file(self, ctx: TaskContext) -> str:
        server_file_path = ctx.params.get("serverFilePath")
        if not server_file_path:
            raise MalformedCommandError(DOWNLOAD_FILE, "serverFilePath")
        local_file = self._transfer.download(server_file_path)
        return f"Downloaded to {local_file}"

    def ping(self, ctx: TaskContext) -> str:
        is_silent = _is_true(ctx.params.get("silent"))
        message = f"Pong! Device online at {int(time.time() * 1000)}"
        self._send_status("ping", message, {"isSilent": is_silent})
        return message

    def check_token(self, ctx: TaskContext) -> str:
        result = self._registration.check_liveness()
        if result is None:
            return "Token check skipped"
        return f"Token check done: {self._registration.state.value}"

    def register(self, ctx: TaskContext) -> str:
        result = self._registration.register(ctx.params.get("name"))
        if not isinstance(result, Success):
            raise TransportError(REGISTER, result)
        return "Device registered"
