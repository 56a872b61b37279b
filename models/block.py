# -*- coding: utf-8 -*-
"""
block.py
--------------------------------------------------------------------
Block: one manufactured unit under test.
- id is an opaque string chosen by the creating peer, portable across peers.
- block_number is unique among live rows only (partial index), so a
  tombstone awaiting sync never blocks re-use of its number.
- operations are not a column: they are joined at read time by the store.
- the effective status is derived from the operations (services.block_status),
  nothing about it is stored here.
"""

from sqlalchemy import text

from extensions.database import db
from constants.block import SyncStatus
from utils.datetime_helpers import datetime_to_iso, utcnow
from .mixins import SyncMixin, COMMON_TABLE_ARGS

_LIVE_ROWS = text(f"sync_status != '{SyncStatus.DELETED.value}'")


class Block(SyncMixin, db.Model):
    __tablename__ = "blocks"
    __table_args__ = (
        db.Index(
            "uq_blocks_block_number_live",
            "block_number",
            unique=True,
            sqlite_where=_LIVE_ROWS,
            postgresql_where=_LIVE_ROWS,
        ),
        COMMON_TABLE_ARGS,
    )

    id = db.Column(db.String(64), primary_key=True)
    block_number = db.Column(db.String(32), nullable=False)
    model_type = db.Column(db.String(64), nullable=False)
    modem_type = db.Column(db.String(64))
    execution_type = db.Column(db.String(64))
    block_type = db.Column(db.String(64))
    mac_address = db.Column(db.String(17))
    operator = db.Column(db.String(128), index=True)
    date = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    # attribute name -> wire key
    WIRE_FIELDS = {
        "id": "id",
        "block_number": "blockNumber",
        "model_type": "modelType",
        "modem_type": "modemType",
        "execution_type": "executionType",
        "block_type": "blockType",
        "mac_address": "macAddress",
        "operator": "operator",
        "date": "date",
        "created_at": "createdAt",
        "updated_at": "updatedAt",
        "sync_status": "syncStatus",
        "server_version": "serverVersion",
    }
    DATETIME_FIELDS = ("date", "created_at", "updated_at")

    def to_dict(self):
        data = {}
        for attr, key in self.WIRE_FIELDS.items():
            value = getattr(self, attr)
            if attr in self.DATETIME_FIELDS:
                value = datetime_to_iso(value)
            data[key] = value
        return data

    def __repr__(self):
        return f"<Block {self.id} #{self.block_number} v{self.server_version} {self.sync_status}>"
