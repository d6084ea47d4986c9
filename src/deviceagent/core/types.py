"""Shared types for deviceagent.

This module defines enums used across the agent components.
"""

from __future__ import annotations

from enum import Enum


class RecordKind(str, Enum):
    """Kind of harvested record.

    Each kind maps to its own local table and its own server sync endpoint.
    """

    MESSAGE = "message"
    CALL = "call"
    CONTACT = "contact"
    NOTIFICATION = "notification"

    @property
    def endpoint(self) -> str:
        """Server-side sync endpoint name (``/api/sync/{endpoint}``)."""
        return _ENDPOINTS[self]

    @property
    def is_watermarked(self) -> bool:
        """Whether extraction for this kind is bounded by a createdAt watermark."""
        return self in (RecordKind.MESSAGE, RecordKind.CALL)


_ENDPOINTS = {
    RecordKind.MESSAGE: "sms",
    RecordKind.CALL: "calllogs",
    RecordKind.CONTACT: "contacts",
    RecordKind.NOTIFICATION: "notifications",
}


class RegistrationState(str, Enum):
    """Registration state of this device with the server."""

    UNREGISTERED = "unregistered"
    REGISTERING = "registering"
    REGISTERED = "registered"
