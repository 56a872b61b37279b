# -*- coding: utf-8 -*-
"""
operation.py
--------------------------------------------------------------------
Operation: one production step performed against a block.
- id is generated by the peer that records the step (uuid), so both peers
  agree on it; never a storage-assigned integer.
- position keeps the insertion order of the block's operation list.
- error_code / error_description only carry meaning for failed steps.
"""

from extensions.database import db
from utils.datetime_helpers import datetime_to_iso, utcnow
from .mixins import SyncMixin, COMMON_TABLE_ARGS


class Operation(SyncMixin, db.Model):
    __tablename__ = "operations"
    __table_args__ = (
        db.Index("ix_operations_block_position", "block_id", "position"),
        COMMON_TABLE_ARGS,
    )

    id = db.Column(db.String(64), primary_key=True)
    # no ON DELETE CASCADE: deletes travel as tombstones, the store cascades
    block_id = db.Column(db.String(64), db.ForeignKey("blocks.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    name = db.Column(db.String(64), nullable=False)
    success = db.Column(db.Boolean, nullable=False, default=False)
    timestamp = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    executor = db.Column(db.String(128))
    comment = db.Column(db.Text)
    error_code = db.Column(db.String(64))
    error_description = db.Column(db.Text)
    duration = db.Column(db.Integer)  # milliseconds

    WIRE_FIELDS = {
        "id": "id",
        "block_id": "blockId",
        "position": "position",
        "name": "name",
        "success": "success",
        "timestamp": "timestamp",
        "executor": "executor",
        "comment": "comment",
        "error_code": "errorCode",
        "error_description": "errorDescription",
        "duration": "duration",
        "updated_at": "updatedAt",
        "sync_status": "syncStatus",
        "server_version": "serverVersion",
    }
    DATETIME_FIELDS = ("timestamp", "updated_at")

    def to_dict(self, include_sync: bool = True):
        data = {}
        for attr, key in self.WIRE_FIELDS.items():
            if not include_sync and attr in ("updated_at", "sync_status", "server_version", "block_id"):
                continue
            value = getattr(self, attr)
            if attr in self.DATETIME_FIELDS:
                value = datetime_to_iso(value)
            elif attr == "success":
                value = bool(value)
            data[key] = value
        return data

    def __repr__(self):
        return f"<Operation {self.id} {self.name} block={self.block_id} v{self.server_version}>"
