# services/sync_service.py
"""
One synchronization cycle against the remote peer:

    idle -> collecting_local -> exchanging -> merging_remote -> marking_synced -> idle

Any failure moves the engine to ``failed`` and re-raises; the merge and the
settle step are separate store transactions, and settling only happens after
the merge committed, so an aborted cycle leaves every local change pending.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from services.record_store import RecordStore
from utils.changeset import count_changes
from utils.datetime_helpers import datetime_to_iso, utcnow
from utils.exceptions import SyncInProgressError

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    COLLECTING_LOCAL = "collecting_local"
    EXCHANGING = "exchanging"
    MERGING_REMOTE = "merging_remote"
    MARKING_SYNCED = "marking_synced"
    FAILED = "failed"


@dataclass
class SyncReport:
    state: SyncState = SyncState.IDLE
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    sent_blocks: int = 0
    sent_operations: int = 0
    received_blocks: int = 0
    received_operations: int = 0
    applied: int = 0
    skipped: int = 0
    conflicts: int = 0
    orphans: int = 0
    settled: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.state == SyncState.IDLE

    def to_dict(self):
        return {
            "status": "ok" if self.ok else "error",
            "state": self.state.value,
            "startedAt": datetime_to_iso(self.started_at),
            "finishedAt": datetime_to_iso(self.finished_at),
            "sent": {"blocks": self.sent_blocks, "operations": self.sent_operations},
            "received": {"blocks": self.received_blocks, "operations": self.received_operations},
            "applied": self.applied,
            "skipped": self.skipped,
            "conflicts": self.conflicts,
            "orphans": self.orphans,
            "settled": self.settled,
            "error": self.error,
        }


class SyncService:
    """Drives cycles through a transport; must be called inside an app context."""

    def __init__(self, transport):
        self.transport = transport
        self.state = SyncState.IDLE
        self.last_report: Optional[SyncReport] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def _enter(self, report: SyncReport, state: SyncState):
        self.state = state
        report.state = state
        logger.debug("sync state -> %s", state.value)

    def synchronize(self) -> SyncReport:
        if not self._lock.acquire(blocking=False):
            raise SyncInProgressError()

        report = SyncReport()
        try:
            self._enter(report, SyncState.COLLECTING_LOCAL)
            local = RecordStore.get_pending_changes()
            report.sent_blocks = len(local["blocks"])
            report.sent_operations = len(local["operations"])

            self._enter(report, SyncState.EXCHANGING)
            remote = self.transport.exchange(local)
            report.received_blocks = len(remote["blocks"])
            report.received_operations = len(remote["operations"])

            self._enter(report, SyncState.MERGING_REMOTE)
            merge = RecordStore.apply_server_changes(remote)
            report.applied = merge.applied_blocks + merge.applied_operations
            report.skipped = len(merge.skipped)
            report.conflicts = len(merge.conflicts)
            report.orphans = len(merge.orphans)

            self._enter(report, SyncState.MARKING_SYNCED)
            report.settled = RecordStore.mark_as_synced(local, held=merge)

            self._enter(report, SyncState.IDLE)
            logger.info(
                "sync finished: sent %d, received %d, applied %d, skipped %d, conflicts %d, settled %d",
                count_changes(local), count_changes(remote), report.applied, report.skipped,
                report.conflicts, report.settled,
            )
            return report
        except Exception as e:
            failed_in = report.state
            self._enter(report, SyncState.FAILED)
            report.error = str(e) or e.__class__.__name__
            logger.warning("sync failed while %s: %s", failed_in.value, report.error)
            raise
        finally:
            report.finished_at = utcnow()
            self.last_report = report
            self._lock.release()
