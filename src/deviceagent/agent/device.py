"""Device collaborators: capabilities, identity, system info and location.

This module provides:
- Permissions: set-based gate for local capabilities
- DeviceInfo / HostDeviceInfo: device identity and system status
- LocationProvider / NoLocation / FixedLocation: current location source
- hashed_device_id: hardware-derived fallback identifier
"""

from __future__ import annotations

import hashlib
import logging
import platform
import socket
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from deviceagent.core.types import RecordKind

logger = logging.getLogger(__name__)

# Capability names
READ_SMS = "read_sms"
READ_CALL_LOG = "read_call_log"
READ_CONTACTS = "read_contacts"
LOCATION = "location"
STORAGE = "storage"

ALL_CAPABILITIES = frozenset({READ_SMS, READ_CALL_LOG, READ_CONTACTS, LOCATION, STORAGE})

# Capability gating extraction of each record kind (None = always allowed)
KIND_CAPABILITIES: dict[RecordKind, str | None] = {
    RecordKind.MESSAGE: READ_SMS,
    RecordKind.CALL: READ_CALL_LOG,
    RecordKind.CONTACT: READ_CONTACTS,
    RecordKind.NOTIFICATION: None,
}

# Identifiers known to be shared by many devices
BOGUS_HARDWARE_IDS = frozenset({"", "9774d56d682e549c", "unknown"})

MACHINE_ID_PATHS = (Path("/etc/machine-id"), Path("/var/lib/dbus/machine-id"))


class Permissions:
    """Set of granted local capabilities."""

    def __init__(self, granted: Iterable[str] = ALL_CAPABILITIES) -> None:
        self._granted = set(granted)

    def granted(self, capability: str) -> bool:
        """Check whether a capability is granted."""
        return capability in self._granted

    def revoke(self, capability: str) -> None:
        self._granted.discard(capability)

    def granted_kinds(self) -> list[RecordKind]:
        """Get the record kinds whose extraction capability is granted."""
        return [
            kind
            for kind, capability in KIND_CAPABILITIES.items()
            if capability is None or self.granted(capability)
        ]


@dataclass
class BatteryStatus:
    """Battery level and charging state (percentage -1 = unknown)."""

    percentage: int
    status: str


class DeviceInfo(Protocol):
    """Identity and status of the host device."""

    def hardware_id(self) -> str | None:
        """Get a platform-provided device identifier, if any."""
        ...

    def model(self) -> str:
        """Get the device model name."""
        ...

    def network_type(self) -> str:
        """Get the active network type (WiFi, Ethernet, No Network...)."""
        ...

    def battery_status(self) -> BatteryStatus:
        """Get the battery status."""
        ...


def hashed_device_id() -> str:
    """Derive an identifier from hardware and platform properties."""
    props = "".join(
        [
            platform.system(),
            platform.machine(),
            platform.processor(),
            platform.node(),
            platform.release(),
        ]
    )
    return hashlib.sha256(props.encode("utf-8")).hexdigest()[:16]


class HostDeviceInfo:
    """DeviceInfo for a Linux/Unix host."""

    def __init__(self, sys_root: Path = Path("/sys")) -> None:
        self._sys_root = sys_root

    def hardware_id(self) -> str | None:
        for path in MACHINE_ID_PATHS:
            try:
                value = path.read_text(encoding="utf-8").strip()
            except OSError:
                continue
            if value.lower() not in BOGUS_HARDWARE_IDS:
                return value
        return None

    def model(self) -> str:
        return platform.machine() or socket.gethostname()

    def network_type(self) -> str:
        net_dir = self._sys_root / "class" / "net"
        try:
            interfaces = [p for p in net_dir.iterdir() if p.name != "lo"]
        except OSError:
            return "Unknown"

        up = []
        for iface in interfaces:
            try:
                state = (iface / "operstate").read_text(encoding="utf-8").strip()
            except OSError:
                continue
            if state == "up":
                up.append(iface)

        if any((iface / "wireless").exists() for iface in up):
            return "WiFi"
        if up:
            return "Ethernet"
        return "No Network"

    def battery_status(self) -> BatteryStatus:
        supply_dir = self._sys_root / "class" / "power_supply"
        try:
            batteries = sorted(supply_dir.glob("BAT*"))
        except OSError:
            batteries = []
        for battery in batteries:
            try:
                capacity = int((battery / "capacity").read_text(encoding="utf-8").strip())
                status = (battery / "status").read_text(encoding="utf-8").strip()
            except (OSError, ValueError):
                continue
            return BatteryStatus(percentage=capacity, status=status)
        return BatteryStatus(percentage=-1, status="Unknown")


class LocationProvider(Protocol):
    """Source of the current device location."""

    def current_location(self) -> tuple[float, float] | None:
        """Get (latitude, longitude), or None when unavailable."""
        ...


class NoLocation:
    """Location provider for hosts without positioning."""

    def current_location(self) -> tuple[float, float] | None:
        return None


class FixedLocation:
    """Location provider returning a configured position."""

    def __init__(self, latitude: float, longitude: float) -> None:
        self._position = (latitude, longitude)

    def current_location(self) -> tuple[float, float] | None:
        return self._position
