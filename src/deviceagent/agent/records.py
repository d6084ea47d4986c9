"""Record types harvested from the host device.

This module provides one dataclass per RecordKind:
- MessageRecord: a text message (watermarked by created_at)
- CallRecord: a call log entry (watermarked by created_at)
- ContactRecord: an address book entry (keyed by contact_id)
- NotificationRecord: a posted notification

Records are created by the extraction collaborator with ``id=None`` and
``synced=False``; the store assigns local identifiers.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any, ClassVar, Union

from deviceagent.core.types import RecordKind


@dataclass
class MessageRecord:
    """A text message.

    Attributes:
        address: Remote party address (phone number or short code).
        body: Message text.
        type: Provider message type (inbox, sent, ...).
        created_at: Message timestamp in milliseconds (extraction watermark).
        id: Local identifier, assigned by the store.
        synced: Whether the record was confirmed uploaded.
    """

    kind: ClassVar[RecordKind] = RecordKind.MESSAGE

    address: str
    body: str
    type: int
    created_at: int
    id: int | None = None
    synced: bool = False

    @property
    def key(self) -> int | None:
        return self.id

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> MessageRecord:
        """Create from database row."""
        return cls(
            address=row["address"],
            body=row["body"],
            type=row["type"],
            created_at=row["created_at"],
            id=row["id"],
            synced=bool(row["synced"]),
        )

    def to_payload(self) -> dict[str, Any]:
        """Serialize for the sync endpoint."""
        return {
            "id": self.id,
            "address": self.address,
            "body": self.body,
            "type": self.type,
            "date": self.created_at,
        }


@dataclass
class CallRecord:
    """A call log entry."""

    kind: ClassVar[RecordKind] = RecordKind.CALL

    number: str
    type: int
    created_at: int
    duration: int
    id: int | None = None
    synced: bool = False

    @property
    def key(self) -> int | None:
        return self.id

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> CallRecord:
        """Create from database row."""
        return cls(
            number=row["number"],
            type=row["type"],
            created_at=row["created_at"],
            duration=row["duration"],
            id=row["id"],
            synced=bool(row["synced"]),
        )

    def to_payload(self) -> dict[str, Any]:
        """Serialize for the sync endpoint."""
        return {
            "id": self.id,
            "number": self.number,
            "type": self.type,
            "date": self.created_at,
            "duration": self.duration,
        }


@dataclass
class ContactRecord:
    """An address book entry.

    Contacts carry no watermark: every extraction rescans the full address
    book and only new or updated entries (by last_updated) are stored.
    """

    kind: ClassVar[RecordKind] = RecordKind.CONTACT

    contact_id: str
    name: str
    phone_numbers: str
    last_updated: int
    synced: bool = False

    @property
    def key(self) -> str:
        return self.contact_id

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> ContactRecord:
        """Create from database row."""
        return cls(
            contact_id=row["contact_id"],
            name=row["name"],
            phone_numbers=row["phone_numbers"],
            last_updated=row["last_updated"],
            synced=bool(row["synced"]),
        )

    def to_payload(self) -> dict[str, Any]:
        """Serialize for the sync endpoint."""
        return {
            "contactId": self.contact_id,
            "name": self.name,
            "phoneNumbers": self.phone_numbers,
            "lastUpdated": self.last_updated,
        }


@dataclass
class NotificationRecord:
    """A notification posted by an application."""

    kind: ClassVar[RecordKind] = RecordKind.NOTIFICATION

    package_name: str
    title: str | None
    text: str | None
    post_time: int
    id: int | None = None
    synced: bool = False

    @property
    def key(self) -> int | None:
        return self.id

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> NotificationRecord:
        """Create from database row."""
        return cls(
            package_name=row["package_name"],
            title=row["title"],
            text=row["text"],
            post_time=row["post_time"],
            id=row["id"],
            synced=bool(row["synced"]),
        )

    def to_payload(self) -> dict[str, Any]:
        """Serialize for the sync endpoint."""
        return {
            "id": self.id,
            "packageName": self.package_name,
            "title": self.title,
            "text": self.text,
            "postTime": self.post_time,
        }


Record = Union[MessageRecord, CallRecord, ContactRecord, NotificationRecord]


def record_time(record: Record) -> int:
    """Creation, posting or update time of a record, in milliseconds."""
    if isinstance(record, NotificationRecord):
        return record.post_time
    if isinstance(record, ContactRecord):
        return record.last_updated
    return record.created_at
