# models/mixins.py
from sqlalchemy import DateTime
from extensions.database import db
from constants.block import SyncStatus
from utils.datetime_helpers import utcnow

COMMON_TABLE_ARGS = {
    "mysql_engine": "InnoDB",
    "mysql_charset": "utf8mb4",
    "mysql_collate": "utf8mb4_unicode_ci",
}


class SyncMixin:
    """
    Sync bookkeeping shared by every replicated table.
    updated_at is stamped explicitly (no onupdate): rows merged from the peer
    keep the peer's timestamp.
    """
    updated_at = db.Column(DateTime, nullable=False, default=utcnow, index=True)
    sync_status = db.Column(
        db.String(16),
        nullable=False,
        default=SyncStatus.PENDING.value,
        server_default=SyncStatus.PENDING.value,
        index=True,
    )
    server_version = db.Column(db.Integer, nullable=False, default=1, server_default="1")

    @property
    def is_deleted(self):
        return self.sync_status == SyncStatus.DELETED.value

    def touch(self, now=None):
        """Record a local mutation: newer version, waiting for the peer."""
        self.updated_at = now or utcnow()
        self.server_version = (self.server_version or 0) + 1
        self.sync_status = SyncStatus.PENDING.value

    def mark_deleted(self, now=None):
        """Turn the row into a tombstone the peer still has to learn about."""
        self.touch(now)
        self.sync_status = SyncStatus.DELETED.value

    def mark_synced(self):
        self.sync_status = SyncStatus.SYNCED.value
