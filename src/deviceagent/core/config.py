"""Shared configuration classes for deviceagent.

This module defines the runtime configuration of the agent:
- AgentConfig: server connection, storage locations, schedules
- RetryPolicy: attempt counter and capped exponential backoff for tasks
- ScanLimits: hard bounds for filesystem scans
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# Default system paths never traversed by the filesystem scanner
DEFAULT_DENY_PREFIXES = (
    "/proc",
    "/sys",
    "/dev",
    "/data/app",
)

PING_FAILURE_POLICIES = ("log", "deregister")


@dataclass
class RetryPolicy:
    """Retry policy applied by the task engine to RETRY outcomes.

    Attributes:
        max_attempts: Attempts after which a task is dropped as FAILED.
        initial_backoff: Delay before the first retry, in seconds.
        max_backoff: Upper bound for any single delay, in seconds.
        multiplier: Growth factor between consecutive delays.
    """

    max_attempts: int = 10
    initial_backoff: float = 30.0
    max_backoff: float = 5 * 60 * 60.0
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_backoff < 0 or self.max_backoff < 0:
            raise ValueError("backoff values must be >= 0")

    def delay_for(self, attempt: int) -> float:
        """Get the delay before retrying after the given attempt number.

        Args:
            attempt: Number of attempts already made (1 for the first failure).

        Returns:
            Delay in seconds, capped at max_backoff.
        """
        exponent = max(attempt - 1, 0)
        delay = self.initial_backoff * (self.multiplier**exponent)
        return min(delay, self.max_backoff)

    def exhausted(self, attempts: int) -> bool:
        """Check whether no attempts are left."""
        return attempts >= self.max_attempts


@dataclass
class ScanLimits:
    """Bounds for a filesystem scan.

    Attributes:
        max_depth: Deepest directory level descended into (root is 0).
        max_items: Maximum number of items in one ScanResult.
        deny_prefixes: Absolute path prefixes that are never traversed.
    """

    max_depth: int = 10
    max_items: int = 15000
    deny_prefixes: tuple[str, ...] = DEFAULT_DENY_PREFIXES


@dataclass
class AgentConfig:
    """Runtime configuration for the device agent.

    Attributes:
        server_url: Base URL of the server (e.g., "https://agent.example.com").
        data_dir: Directory holding the record store and the task queue.
        timeout: Connect/read/write timeout for each request, in seconds.
        verify_ssl: Whether to verify SSL certificates.
        downloads_dir: Where files requested by the server are written.
        export_dir: Directory the record extractor reads exports from.
        scan_root: Root of filesystem scans.
        device_name: Name sent at registration (None = derived from the host).
        token_check_interval_hours: Period of the registration liveness check.
        full_sync_interval_hours: Period of the proactive full sync.
        on_ping_failure: "log" or "deregister" (see DESIGN.md).
        worker_count: Number of task engine worker threads.
        network_check_interval: Delay before re-checking connectivity, in seconds.
        retry: Retry policy for task outcomes.
        scan: Filesystem scan bounds.
    """

    server_url: str
    data_dir: Path = field(default_factory=lambda: Path.home() / ".deviceagent")
    timeout: float = 90.0
    verify_ssl: bool = True
    downloads_dir: Path | None = None
    export_dir: Path | None = None
    scan_root: Path = field(default_factory=Path.home)
    device_name: str | None = None
    token_check_interval_hours: float = 24.0
    full_sync_interval_hours: float = 6.0
    on_ping_failure: str = "log"
    worker_count: int = 2
    network_check_interval: float = 60.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    scan: ScanLimits = field(default_factory=ScanLimits)

    def __post_init__(self) -> None:
        """Normalize server URL and paths."""
        self.server_url = self.server_url.rstrip("/")
        self.data_dir = Path(self.data_dir).expanduser()
        self.scan_root = Path(self.scan_root).expanduser()
        if self.downloads_dir is None:
            self.downloads_dir = self.data_dir / "downloads"
        else:
            self.downloads_dir = Path(self.downloads_dir).expanduser()
        if self.export_dir is None:
            self.export_dir = self.data_dir / "export"
        else:
            self.export_dir = Path(self.export_dir).expanduser()
        if self.on_ping_failure not in PING_FAILURE_POLICIES:
            raise ValueError(
                f"on_ping_failure must be one of {PING_FAILURE_POLICIES}, "
                f"got {self.on_ping_failure!r}"
            )

    @property
    def store_path(self) -> Path:
        """Path of the SQLite record store."""
        return self.data_dir / "records.db"

    @property
    def queue_path(self) -> Path:
        """Path of the SQLite task queue."""
        return self.data_dir / "tasks.db"

    @property
    def downloads_path(self) -> Path:
        """Directory receiving downloaded files."""
        return Path(self.downloads_dir or self.data_dir / "downloads")

    @property
    def export_path(self) -> Path:
        """Directory the record extractor reads from."""
        return Path(self.export_dir or self.data_dir / "export")

    def push_url(self, device_id: str) -> str:
        """Get the WebSocket URL delivering push messages for a device.

        Args:
            device_id: Identifier of this device.

        Returns:
            WebSocket URL with device id in path.
        """
        url = self.server_url
        if url.startswith("https://"):
            url = "wss://" + url[8:]
        elif url.startswith("http://"):
            url = "ws://" + url[7:]
        return f"{url}/ws/device/{device_id}"

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS/WSS."""
        return self.server_url.startswith("https://")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentConfig:
        """Create from a persisted configuration dictionary.

        Unknown keys are ignored so older config files keep loading.
        """
        retry = RetryPolicy(**data.get("retry", {}))
        scan_data = dict(data.get("scan", {}))
        if "deny_prefixes" in scan_data:
            scan_data["deny_prefixes"] = tuple(scan_data["deny_prefixes"])
        scan = ScanLimits(**scan_data)

        kwargs: dict[str, Any] = {}
        for key in (
            "data_dir",
            "timeout",
            "verify_ssl",
            "downloads_dir",
            "export_dir",
            "scan_root",
            "device_name",
            "token_check_interval_hours",
            "full_sync_interval_hours",
            "on_ping_failure",
            "worker_count",
            "network_check_interval",
        ):
            if data.get(key) is not None:
                kwargs[key] = data[key]

        return cls(server_url=data["server_url"], retry=retry, scan=scan, **kwargs)
