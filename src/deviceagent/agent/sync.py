"""Record synchronization with the server.

This module provides:
- SyncOrchestrator: fetch-unsynced -> upload-batch -> mark-synced, per kind
- SyncReport: outcome of one sync of one record kind

Algorithm (one kind):
    1. Refresh the store from the extractor: watermarked kinds (message,
       call) extract only records newer than latest_watermark(kind);
       contacts are rescanned in full; notifications are pulled past a
       persisted cursor, since uploaded ones are deleted. Duplicates of a
       natural key are ignored by the store.
    2. Read unsynced(kind). Empty -> success with nothing to do.
    3. Upload the whole unsynced set as one batch.
    4. On success, mark exactly the uploaded identifiers as synced
       (notifications are deleted instead). On failure nothing changes and
       the same batch is sent again next time.

Delivery is at-least-once: a crash between 3 and 4 re-sends the batch, and
the server must treat a re-delivered identifier as an idempotent upsert.

There is no overlap protection within one kind. Callers must not run two
syncs of the same kind concurrently; sync_all() runs kinds one after
another.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from deviceagent.agent.records import NotificationRecord
from deviceagent.agent.result import NetworkResult, Success, describe
from deviceagent.core.types import RecordKind

if TYPE_CHECKING:
    from deviceagent.agent.api import AgentClient
    from deviceagent.agent.extraction import Extractor
    from deviceagent.agent.store import RecordStore

logger = logging.getLogger(__name__)

# Kinds in the order sync_all() processes them
SYNC_ORDER = (
    RecordKind.MESSAGE,
    RecordKind.CALL,
    RecordKind.CONTACT,
    RecordKind.NOTIFICATION,
)


@dataclass
class SyncReport:
    """Outcome of syncing one record kind.

    Attributes:
        kind: Record kind synced.
        result: Result of the upload (Success when nothing was uploaded).
        uploaded: Number of records confirmed uploaded.
        nothing_to_do: True when there were no unsynced records.
    """

    kind: RecordKind
    result: NetworkResult
    uploaded: int = 0
    nothing_to_do: bool = False

    @property
    def ok(self) -> bool:
        return isinstance(self.result, Success)

    def summary(self) -> str:
        if self.nothing_to_do:
            return "nothing to do"
        if self.ok:
            return f"uploaded {self.uploaded}"
        return describe(self.result)


class SyncOrchestrator:
    """Synchronizes locally stored records with the server."""

    def __init__(
        self,
        store: RecordStore,
        extractor: Extractor,
        client: AgentClient,
        device_id: str,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            store: Local record store.
            extractor: Source of new records.
            client: HTTP client for server communication.
            device_id: Identifier sent with every batch.
        """
        self._store = store
        self._extractor = extractor
        self._client = client
        self._device_id = device_id

    def refresh(self, kind: RecordKind) -> int:
        """Pull new records of a kind from the extractor into the store.

        Returns:
            Number of rows inserted or updated.
        """
        if kind is RecordKind.NOTIFICATION:
            since = self._store.notification_cursor()
            notifications = [
                record
                for record in self._extractor.extract_since(kind, since)
                if isinstance(record, NotificationRecord)
            ]
            added = self._store.append_notifications(notifications)
            logger.debug("Stored %d new notifications", added)
            return added

        if kind.is_watermarked:
            since = self._store.latest_watermark(kind)
            records = self._extractor.extract_since(kind, since)
        else:
            records = self._extractor.extract_all(kind)

        if not records:
            return 0
        added = self._store.append(records)
        logger.debug("Stored %d new %s records", added, kind.value)
        return added

    def sync(self, kind: RecordKind) -> SyncReport:
        """Sync one record kind with the server."""
        self.refresh(kind)

        unsynced = self._store.unsynced(kind)
        if not unsynced:
            logger.debug("No new %s records to sync.", kind.value)
            report = SyncReport(kind=kind, result=Success(), nothing_to_do=True)
            self._store.set_sync_status(kind, report.summary())
            return report

        logger.debug("Found %d unsynced %s records to send.", len(unsynced), kind.value)
        ids = [record.key for record in unsynced]
        result = self._client.sync_data(
            kind.endpoint,
            self._device_id,
            [record.to_payload() for record in unsynced],
        )

        if isinstance(result, Success):
            if kind is RecordKind.NOTIFICATION:
                self._store.delete(kind, ids)
            else:
                self._store.mark_synced(kind, ids)
            logger.info("Successfully synced %d %s records.", len(ids), kind.value)
            report = SyncReport(kind=kind, result=result, uploaded=len(ids))
        else:
            logger.error("Failed to sync %s records: %s", kind.value, describe(result))
            report = SyncReport(kind=kind, result=result)

        self._store.set_sync_status(kind, report.summary())
        return report

    def sync_all(self, kinds: Iterable[RecordKind]) -> dict[RecordKind, SyncReport]:
        """Sync several kinds one after another.

        Args:
            kinds: Kinds allowed to sync (typically the permission-granted ones).

        Returns:
            Report per kind, in sync order.
        """
        allowed = set(kinds)
        reports: dict[RecordKind, SyncReport] = {}
        for kind in SYNC_ORDER:
            if kind not in allowed:
                logger.debug("Skipping %s sync: permission not granted", kind.value)
                continue
            reports[kind] = self.sync(kind)
        return reports
