"""Bounded filesystem scanner.

This module provides:
- ScanItem: one visited filesystem entry
- ScanResult: the ordered items of one scan plus aggregate counts
- FilesystemScanner: depth-first traversal with depth and item bounds

A scan is a snapshot: hidden entries and denied system paths are skipped,
symlinked directories are not followed, and traversal stops (returning a
partial result) once max_items is reached. Directories deeper than
max_depth below the root are reported but not listed.
"""

from __future__ import annotations

import json
import logging
import os
import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from deviceagent.agent.device import STORAGE, Permissions
from deviceagent.core.config import ScanLimits

logger = logging.getLogger(__name__)

# Shared-storage application folder; only its obb and data parts are scanned
ANDROID_APP_STORAGE = "/storage/emulated/0/android"


@dataclass
class ScanItem:
    """A single filesystem entry.

    Attributes:
        path: Absolute path.
        name: Entry name.
        is_directory: Whether the entry is a directory.
        size: Size in bytes (0 for directories).
        last_modified: Modification time in milliseconds since the epoch.
    """

    path: str
    name: str
    is_directory: bool
    size: int
    last_modified: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "name": self.name,
            "isDirectory": self.is_directory,
            "size": self.size,
            "lastModified": self.last_modified,
        }


@dataclass
class ScanResult:
    """Output of one filesystem traversal."""

    items: list[ScanItem] = field(default_factory=list)
    total_files: int = 0
    total_directories: int = 0
    total_size: int = 0
    scan_timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    @classmethod
    def from_items(cls, items: list[ScanItem]) -> ScanResult:
        """Build a result, computing aggregate counts from the items."""
        return cls(
            items=items,
            total_files=sum(1 for item in items if not item.is_directory),
            total_directories=sum(1 for item in items if item.is_directory),
            total_size=sum(item.size for item in items),
        )

    @property
    def is_empty(self) -> bool:
        return not self.items

    def to_payload(self) -> dict[str, Any]:
        """Serialize for the upload-paths endpoint."""
        return {
            "paths": [item.to_payload() for item in self.items],
            "totalFiles": self.total_files,
            "totalDirectories": self.total_directories,
            "totalSize": self.total_size,
            "scanTimestamp": self.scan_timestamp,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_payload(), separators=(",", ":"))


def is_denied(path: str, deny_prefixes: tuple[str, ...]) -> bool:
    """Check whether a directory must never be traversed."""
    lowered = path.lower()
    for prefix in deny_prefixes:
        prefix = prefix.lower().rstrip("/")
        if lowered == prefix or lowered.startswith(prefix + "/"):
            return True
    if lowered.startswith(ANDROID_APP_STORAGE):
        return "obb" not in lowered and "data" not in lowered
    return False


class FilesystemScanner:
    """Scans a directory tree into a ScanResult."""

    def __init__(
        self,
        root: Path,
        permissions: Permissions,
        limits: ScanLimits | None = None,
        exclude: tuple[Path, ...] = (),
    ) -> None:
        """Initialize the scanner.

        Args:
            root: Directory the traversal starts from.
            permissions: Capability gate ("storage" is required).
            limits: Depth/item bounds and denied path prefixes.
            exclude: Additional directories never traversed (e.g. the
                agent's own data directory).
        """
        self._root = Path(root).resolve()
        self._permissions = permissions
        self._limits = limits or ScanLimits()
        self._deny = tuple(self._limits.deny_prefixes) + tuple(
            str(Path(p).resolve()) for p in exclude
        )

    def has_permission(self) -> bool:
        """Check whether the scan root may be read."""
        if not self._permissions.granted(STORAGE):
            return False
        return os.access(self._root, os.R_OK | os.X_OK)

    def scan(self) -> ScanResult:
        """Traverse the tree from the root.

        Returns:
            ScanResult; empty when storage access is not granted.
        """
        if not self.has_permission():
            logger.warning("Cannot scan file system: permissions not granted for %s", self._root)
            return ScanResult()

        logger.info("Starting file system scan from root: %s", self._root)
        items = self._walk()
        result = ScanResult.from_items(items)
        logger.info(
            "Scan completed. Found %d files, %d directories.",
            result.total_files,
            result.total_directories,
        )
        return result

    def _list(self, directory: Path) -> list[os.DirEntry[str]] | None:
        if is_denied(str(directory), self._deny):
            return None
        try:
            with os.scandir(directory) as it:
                return sorted(it, key=lambda entry: entry.name)
        except OSError as e:
            logger.debug("Cannot list %s: %s", directory, e)
            return None

    def _walk(self) -> list[ScanItem]:
        max_items = self._limits.max_items
        max_depth = self._limits.max_depth
        items: list[ScanItem] = []

        root_entries = self._list(self._root)
        if root_entries is None or max_depth < 0:
            return items

        # Each frame: (remaining entries of a directory, depth of those entries)
        stack: list[tuple[Iterator[os.DirEntry[str]], int]] = [(iter(root_entries), 1)]
        while stack and len(items) < max_items:
            entries, depth = stack[-1]
            entry = next(entries, None)
            if entry is None:
                stack.pop()
                continue
            if entry.name.startswith("."):
                continue

            try:
                is_dir = entry.is_dir(follow_symlinks=False)
                stat = entry.stat(follow_symlinks=False)
            except OSError as e:
                logger.warning("Could not process file: %s (%s)", entry.path, e)
                continue

            items.append(
                ScanItem(
                    path=os.path.abspath(entry.path),
                    name=entry.name,
                    is_directory=is_dir,
                    size=0 if is_dir else stat.st_size,
                    last_modified=int(stat.st_mtime * 1000),
                )
            )

            if is_dir and depth <= max_depth:
                children = self._list(Path(entry.path))
                if children:
                    stack.append((iter(children), depth + 1))

        return items
