"""Tests for command handlers."""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from deviceagent.agent.device import LOCATION, READ_CALL_LOG, STORAGE, FixedLocation, NoLocation, Permissions
from deviceagent.agent.errors import MalformedCommandError, PermissionDeniedError, TransportError
from deviceagent.agent.result import ApiError, NetworkError, Success
from deviceagent.agent.scanner import FilesystemScanner, ScanItem, ScanResult
from deviceagent.agent.sync import SyncReport
from deviceagent.agent.tasks.engine import TaskEngine
from deviceagent.agent.tasks.handlers import (
    GET_LOCATION,
    SCAN_FILESYSTEM,
    CommandHandlers,
)
from deviceagent.agent.tasks.queue import TaskQueue
from deviceagent.agent.tasks.types import CancelledException, Task, TaskContext, TaskOutcome
from deviceagent.core.types import RecordKind, RegistrationState
from tests.agent.conftest import FakeDeviceInfo


class Collaborators:
    """Mocks and fakes a CommandHandlers instance is built from."""

    def __init__(self) -> None:
        self.client = MagicMock()
        self.client.send_status_update.return_value = Success()
        self.client.upload_file_system_scan.return_value = Success()
        self.client.health_check.return_value = True
        self.permissions = Permissions()
        self.orchestrator = MagicMock()
        self.orchestrator.sync.side_effect = lambda kind: SyncReport(
            kind=kind, result=Success(), uploaded=1
        )
        self.scanner = MagicMock()
        self.transfer = MagicMock()
        self.registration = MagicMock()
        self.location = FixedLocation(48.85, 2.35)

    def handlers(self) -> CommandHandlers:
        return CommandHandlers(
            client=self.client,
            device_id="dev-1",
            permissions=self.permissions,
            orchestrator=self.orchestrator,
            scanner=self.scanner,
            transfer=self.transfer,
            registration=self.registration,
            device_info=FakeDeviceInfo(),
            location=self.location,
        )


@pytest.fixture
def deps() -> Collaborators:
    return Collaborators()


def ctx(command: str, params: dict[str, str] | None = None, cancelled: bool = False) -> TaskContext:
    return TaskContext(task=Task(command=command, params=params or {}), cancel_check=lambda: cancelled)


class TestSyncHandlers:
    """Tests for sync_all and sync_notifications."""

    def test_sync_all_granted_kinds_in_order(self, deps: Collaborators) -> None:
        deps.permissions.revoke(READ_CALL_LOG)

        message = deps.handlers().sync_all(ctx("sync_all"))

        kinds = [call.args[0] for call in deps.orchestrator.sync.call_args_list]
        assert kinds == [RecordKind.MESSAGE, RecordKind.CONTACT, RecordKind.NOTIFICATION]
        assert "message: uploaded 1" in message

    def test_sync_all_failure_retries_after_all_kinds(self, deps: Collaborators) -> None:
        def sync(kind: RecordKind) -> SyncReport:
            if kind is RecordKind.CALL:
                return SyncReport(kind=kind, result=NetworkError(reason="offline"))
            return SyncReport(kind=kind, result=Success(), uploaded=0)

        deps.orchestrator.sync.side_effect = sync

        with pytest.raises(TransportError):
            deps.handlers().sync_all(ctx("sync_all"))
        assert deps.orchestrator.sync.call_count == 4

    def test_sync_all_cancelled(self, deps: Collaborators) -> None:
        with pytest.raises(CancelledException):
            deps.handlers().sync_all(ctx("sync_all", cancelled=True))
        deps.orchestrator.sync.assert_not_called()

    def test_sync_notifications(self, deps: Collaborators) -> None:
        deps.handlers().sync_notifications(ctx("sync_notifications"))

        deps.orchestrator.sync.assert_called_once_with(RecordKind.NOTIFICATION)


class TestScanHandler:
    def test_uploads_scan(self, deps: Collaborators) -> None:
        deps.scanner.scan.return_value = ScanResult.from_items(
            [ScanItem(path="/r/f", name="f", is_directory=False, size=1, last_modified=1)]
        )

        deps.handlers().scan_filesystem(ctx("scan_filesystem"))

        device_id, paths_data = deps.client.upload_file_system_scan.call_args.args
        assert device_id == "dev-1"
        assert json.loads(paths_data)["totalFiles"] == 1

    def test_empty_scan_uploads_nothing(self, deps: Collaborators) -> None:
        deps.scanner.scan.return_value = ScanResult()

        message = deps.handlers().scan_filesystem(ctx("scan_filesystem"))

        assert message == "File system scan returned no items"
        deps.client.upload_file_system_scan.assert_not_called()

    def test_upload_failure(self, deps: Collaborators) -> None:
        deps.scanner.scan.return_value = ScanResult.from_items(
            [ScanItem(path="/r/f", name="f", is_directory=False, size=1, last_modified=1)]
        )
        deps.client.upload_file_system_scan.return_value = ApiError(code=503)

        with pytest.raises(TransportError):
            deps.handlers().scan_filesystem(ctx("scan_filesystem"))


class TestStatusHandlers:
    """Tests for location, system info and ping."""

    def test_get_location(self, deps: Collaborators) -> None:
        deps.handlers().get_location(ctx("get_location"))

        deps.client.send_status_update.assert_called_once_with(
            "dev-1", "location", "Lat=48.85, Lon=2.35", None
        )

    def test_get_location_unavailable(self, deps: Collaborators) -> None:
        deps.location = NoLocation()  # type: ignore[assignment]

        assert deps.handlers().get_location(ctx("get_location")) == "Not available"

    def test_get_location_without_permission(self, deps: Collaborators) -> None:
        deps.permissions.revoke(LOCATION)

        with pytest.raises(PermissionDeniedError):
            deps.handlers().get_location(ctx("get_location"))
        deps.client.send_status_update.assert_not_called()

    def test_get_system_info(self, deps: Collaborators) -> None:
        message = deps.handlers().get_system_info(ctx("get_system_info"))

        assert message == "Net=WiFi, Batt=80% (Charging)"
        assert deps.client.send_status_update.call_args.args[1] == "system_info"

    def test_ping_silent(self, deps: Collaborators) -> None:
        message = deps.handlers().ping(ctx("ping", {"silent": "true"}))

        assert message.startswith("Pong! Device online at ")
        _, status_type, _, extras = deps.client.send_status_update.call_args.args
        assert status_type == "ping"
        assert extras == {"isSilent": True}

    def test_ping_status_failure_retries(self, deps: Collaborators) -> None:
        deps.client.send_status_update.return_value = NetworkError(timed_out=True)

        with pytest.raises(TransportError):
            deps.handlers().ping(ctx("ping"))


class TestTransferHandlers:
    def test_upload_file(self, deps: Collaborators) -> None:
        deps.handlers().upload_file(ctx("upload_file", {"filePath": "/sdcard/a.jpg"}))

        deps.transfer.upload.assert_called_once_with("/sdcard/a.jpg")

    def test_upload_file_missing_param(self, deps: Collaborators) -> None:
        with pytest.raises(MalformedCommandError):
            deps.handlers().upload_file(ctx("upload_file"))

    def test_upload_audio_recording(self, deps: Collaborators) -> None:
        deps.transfer.upload_recording.return_value = True

        message = deps.handlers().upload_audio_recording(
            ctx("upload_audio_recording", {"filePath": "/rec/a.amr"})
        )

        assert message == "Uploaded recording /rec/a.amr"
        deps.transfer.upload_recording.assert_called_once_with("/rec/a.amr")

    def test_upload_audio_recording_missing_param(self, deps: Collaborators) -> None:
        with pytest.raises(MalformedCommandError):
            deps.handlers().upload_audio_recording(ctx("upload_audio_recording"))

    def test_download_file(self, deps: Collaborators, tmp_path: Path) -> None:
        deps.transfer.download.return_value = tmp_path / "a.pdf"

        message = deps.handlers().download_file(ctx("download_file", {"serverFilePath": "x/a.pdf"}))

        assert message == f"Downloaded to {tmp_path / 'a.pdf'}"


class TestRegistrationHandlers:
    def test_check_token_skipped(self, deps: Collaborators) -> None:
        deps.registration.check_liveness.return_value = None

        assert deps.handlers().check_token(ctx("check_token")) == "Token check skipped"

    def test_check_token_done(self, deps: Collaborators) -> None:
        deps.registration.check_liveness.return_value = Success()
        deps.registration.state = RegistrationState.REGISTERED

        assert deps.handlers().check_token(ctx("check_token")) == "Token check done: registered"

    def test_register_failure_retries(self, deps: Collaborators) -> None:
        deps.registration.register.return_value = ApiError(code=500)

        with pytest.raises(TransportError):
            deps.handlers().register(ctx("register"))


class TestThroughEngine:
    """Handlers run by a real engine and queue."""

    @pytest.fixture
    def queue(self, tmp_path: Path) -> Iterator[TaskQueue]:
        task_queue = TaskQueue(tmp_path / "tasks.db")
        yield task_queue
        task_queue.close()

    def test_scan_without_permission_succeeds(
        self, deps: Collaborators, queue: TaskQueue, tmp_path: Path
    ) -> None:
        """A scan denied storage access completes as SUCCESS with no upload."""
        deps.permissions.revoke(STORAGE)
        deps.scanner = FilesystemScanner(tmp_path, deps.permissions)  # type: ignore[assignment]
        engine = TaskEngine(queue, deps.handlers().as_mapping(), deps.client)
        task = engine.enqueue(SCAN_FILESYSTEM)
        assert task is not None
        queue.get(timeout=0.1)

        assert engine.process(task) is TaskOutcome.SUCCESS
        deps.client.upload_file_system_scan.assert_not_called()

    def test_location_without_permission_succeeds(self, deps: Collaborators, queue: TaskQueue) -> None:
        deps.permissions.revoke(LOCATION)
        engine = TaskEngine(queue, deps.handlers().as_mapping(), deps.client)
        task = engine.enqueue(GET_LOCATION)
        assert task is not None
        queue.get(timeout=0.1)

        assert engine.process(task) is TaskOutcome.SUCCESS
        assert len(queue) == 0
