"""Shared fixtures for agent tests."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from deviceagent.agent.device import BatteryStatus
from deviceagent.agent.records import Record, record_time
from deviceagent.agent.store import RecordStore
from deviceagent.core.config import AgentConfig
from deviceagent.core.types import RecordKind


@pytest.fixture
def config(tmp_path: Path) -> AgentConfig:
    """Create an AgentConfig rooted in a temporary directory."""
    return AgentConfig(
        server_url="http://test",
        data_dir=tmp_path / "data",
        scan_root=tmp_path / "scan",
    )


@pytest.fixture
def store(tmp_path: Path) -> Iterator[RecordStore]:
    """Create a RecordStore backed by a temporary SQLite file."""
    record_store = RecordStore(tmp_path / "records.db")
    yield record_store
    record_store.close()


class FakeExtractor:
    """Extractor returning canned records and remembering its calls."""

    def __init__(self) -> None:
        self.records: dict[RecordKind, list[Record]] = {}
        self.calls: list[tuple[str, RecordKind, int | None]] = []

    def extract_since(self, kind: RecordKind, since: int | None) -> list[Record]:
        self.calls.append(("since", kind, since))
        threshold = since if since is not None else -1
        return [r for r in self.records.get(kind, []) if record_time(r) > threshold]

    def extract_all(self, kind: RecordKind) -> list[Record]:
        self.calls.append(("all", kind, None))
        return list(self.records.get(kind, []))


class FakeDeviceInfo:
    """DeviceInfo with fixed values."""

    def __init__(self, hardware_id: str | None = "hw-1234") -> None:
        self._hardware_id = hardware_id

    def hardware_id(self) -> str | None:
        return self._hardware_id

    def model(self) -> str:
        return "Pixel 7"

    def network_type(self) -> str:
        return "WiFi"

    def battery_status(self) -> BatteryStatus:
        return BatteryStatus(percentage=80, status="Charging")


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def device_info() -> FakeDeviceInfo:
    return FakeDeviceInfo()
