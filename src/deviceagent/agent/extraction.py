"""Record extraction collaborators.

This module provides:
- Extractor: interface the sync orchestrator consumes
- NullExtractor: extractor that never finds anything
- ExportDirExtractor: reads "SMS Backup & Restore" style exports
  (sms-*.xml, calls-*.xml) plus contacts.json and notifications.json
  files from a directory

Extraction is permission-gated: an extractor returns an empty list, never
an error, when the capability for a kind is not granted.

Messages, calls and notifications are extracted incrementally (strictly
newer than a timestamp); contacts are always extracted in full.
"""

from __future__ import annotations

import json
import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Protocol

from deviceagent.agent.device import KIND_CAPABILITIES, Permissions
from deviceagent.agent.records import (
    CallRecord,
    ContactRecord,
    MessageRecord,
    NotificationRecord,
    Record,
    record_time,
)
from deviceagent.core.types import RecordKind

logger = logging.getLogger(__name__)

BOM_UTF8 = b"\xef\xbb\xbf"
BOM_UTF16_LE = b"\xff\xfe"
BOM_UTF16_BE = b"\xfe\xff"


class Extractor(Protocol):
    """Source of new records for the sync orchestrator."""

    def extract_since(self, kind: RecordKind, since: int | None) -> list[Record]:
        """Get records of an incrementally extracted kind newer than ``since``."""
        ...

    def extract_all(self, kind: RecordKind) -> list[Record]:
        """Get every record of a fully rescanned kind currently on the device."""
        ...


class NullExtractor:
    """Extractor for hosts with no harvestable data."""

    def extract_since(self, kind: RecordKind, since: int | None) -> list[Record]:
        return []

    def extract_all(self, kind: RecordKind) -> list[Record]:
        return []


def _read_xml_text(path: Path) -> str:
    """Read an XML export, honoring a UTF-8 or UTF-16 byte order mark."""
    raw = path.read_bytes()
    if raw.startswith(BOM_UTF8):
        return raw[len(BOM_UTF8) :].decode("utf-8", errors="replace")
    if raw.startswith(BOM_UTF16_LE):
        return raw[len(BOM_UTF16_LE) :].decode("utf-16-le", errors="replace")
    if raw.startswith(BOM_UTF16_BE):
        return raw[len(BOM_UTF16_BE) :].decode("utf-16-be", errors="replace")
    return raw.decode("utf-8", errors="replace")


def _int_attr(el: ET.Element, name: str, default: int = 0) -> int:
    value = el.get(name)
    if value is None or value == "null":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _int_value(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class ExportDirExtractor:
    """Extractor reading device exports dropped into a directory.

    Layout:
        sms-*.xml       <sms address=".." date=".." type=".." body=".."/>
        calls-*.xml     <call number=".." date=".." type=".." duration=".."/>
        contacts.json   [{"contact_id": .., "name": .., "phone_numbers": ..,
                          "last_updated": ..}, ...]
        notifications.json
                        [{"package_name": .., "title": .., "text": ..,
                          "post_time": ..}, ...]

    Malformed entries are logged and skipped.
    """

    def __init__(self, export_dir: Path, permissions: Permissions) -> None:
        """Initialize the extractor.

        Args:
            export_dir: Directory holding the export files.
            permissions: Capability gate for each record kind.
        """
        self._export_dir = Path(export_dir)
        self._permissions = permissions

    def _allowed(self, kind: RecordKind) -> bool:
        capability = KIND_CAPABILITIES.get(kind)
        if capability is not None and not self._permissions.granted(capability):
            logger.debug("Extraction of %s skipped: '%s' not granted", kind.value, capability)
            return False
        return self._export_dir.is_dir()

    def extract_since(self, kind: RecordKind, since: int | None) -> list[Record]:
        """Get messages, calls or notifications newer than ``since``, oldest first."""
        if not self._allowed(kind):
            return []
        records: list[Record]
        if kind is RecordKind.MESSAGE:
            records = list(self._parse_messages())
        elif kind is RecordKind.CALL:
            records = list(self._parse_calls())
        elif kind is RecordKind.NOTIFICATION:
            records = list(self._parse_notifications())
        else:
            raise ValueError(f"{kind.value} records are not extracted incrementally")

        threshold = since if since is not None else -1
        fresh = [r for r in records if record_time(r) > threshold]
        fresh.sort(key=record_time)
        logger.debug("Extracted %d new %s records since %s", len(fresh), kind.value, since)
        return fresh

    def extract_all(self, kind: RecordKind) -> list[Record]:
        """Get the full contact list."""
        if not self._allowed(kind):
            return []
        if kind is RecordKind.CONTACT:
            return list(self._parse_contacts())
        return []

    def _parse_messages(self) -> list[MessageRecord]:
        records: list[MessageRecord] = []
        for path in sorted(self._export_dir.glob("sms-*.xml")):
            try:
                root = ET.fromstring(_read_xml_text(path))
            except ET.ParseError as e:
                logger.warning("Skipping unreadable SMS export %s: %s", path.name, e)
                continue
            for el in root.iter("sms"):
                records.append(
                    MessageRecord(
                        address=el.get("address") or "",
                        body=el.get("body") or "",
                        type=_int_attr(el, "type"),
                        created_at=_int_attr(el, "date"),
                    )
                )
        return records

    def _parse_calls(self) -> list[CallRecord]:
        records: list[CallRecord] = []
        for path in sorted(self._export_dir.glob("calls-*.xml")):
            try:
                root = ET.fromstring(_read_xml_text(path))
            except ET.ParseError as e:
                logger.warning("Skipping unreadable call log export %s: %s", path.name, e)
                continue
            for el in root.iter("call"):
                records.append(
                    CallRecord(
                        number=el.get("number") or "",
                        type=_int_attr(el, "type"),
                        created_at=_int_attr(el, "date"),
                        duration=_int_attr(el, "duration"),
                    )
                )
        return records

    def _load_json_list(self, name: str) -> list[Any]:
        path = self._export_dir / name
        if not path.exists():
            return []
        try:
            entries = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Skipping unreadable export %s: %s", name, e)
            return []
        if not isinstance(entries, list):
            logger.warning("Skipping export %s: expected a list, got %s", name, type(entries).__name__)
            return []
        return entries

    def _parse_contacts(self) -> list[ContactRecord]:
        contacts = []
        for entry in self._load_json_list("contacts.json"):
            if not isinstance(entry, dict) or entry.get("contact_id") in (None, ""):
                logger.warning("Skipping malformed contact entry: %r", entry)
                continue
            phone_numbers = entry.get("phone_numbers") or ""
            if isinstance(phone_numbers, list):
                phone_numbers = ",".join(str(n) for n in phone_numbers)
            contacts.append(
                ContactRecord(
                    contact_id=str(entry["contact_id"]),
                    name=str(entry.get("name") or ""),
                    phone_numbers=str(phone_numbers),
                    last_updated=_int_value(entry.get("last_updated")),
                )
            )
        return contacts

    def _parse_notifications(self) -> list[NotificationRecord]:
        notifications = []
        for entry in self._load_json_list("notifications.json"):
            if not isinstance(entry, dict) or not entry.get("package_name"):
                logger.warning("Skipping malformed notification entry: %r", entry)
                continue
            title = entry.get("title")
            text = entry.get("text")
            notifications.append(
                NotificationRecord(
                    package_name=str(entry["package_name"]),
                    title=str(title) if title is not None else None,
                    text=str(text) if text is not None else None,
                    post_time=_int_value(entry.get("post_time")),
                )
            )
        return notifications
