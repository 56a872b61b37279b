# services/record_store.py
"""
Record store: transactional access to the blocks/operations pair.

Every public method runs in exactly one database transaction (see
``RecordStore.transaction``): blocks and their operations are written or read
together, and nothing is committed when any step fails. Values go in and come
out in the wire shape (camelCase dicts) shared with the sync peer.

Deletes are tombstones: the row keeps existing with sync_status "deleted"
until the peer has acknowledged it (mark_as_synced), then it is removed.
"""

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError

from constants.block import SyncStatus
from extensions.database import db
from models.block import Block
from models.operation import Operation
from repositories.block_repository import BlockRepository
from repositories.operation_repository import OperationRepository
from services.block_status import compute_block_status
from utils.changeset import normalize_changes
from utils.datetime_helpers import parse_datetime, utcnow
from utils.exceptions import BizError, ConflictSkipped, NotFoundError, StoreTransactionError

logger = logging.getLogger(__name__)

# wire key -> attribute, for the fields a caller may set on a block
BLOCK_WRITABLE = {
    "blockNumber": "block_number",
    "modelType": "model_type",
    "modemType": "modem_type",
    "executionType": "execution_type",
    "blockType": "block_type",
    "macAddress": "mac_address",
    "operator": "operator",
    "date": "date",
}

OPERATION_WRITABLE = {
    "name": "name",
    "success": "success",
    "timestamp": "timestamp",
    "executor": "executor",
    "comment": "comment",
    "errorCode": "error_code",
    "errorDescription": "error_description",
    "duration": "duration",
}


def new_record_id() -> str:
    return uuid.uuid4().hex


@dataclass
class MergeResult:
    applied_blocks: int = 0
    applied_operations: int = 0
    deleted_blocks: int = 0
    deleted_operations: int = 0
    skipped: List[ConflictSkipped] = field(default_factory=list)
    orphans: List[str] = field(default_factory=list)
    # local rows re-versioned to win a same-version conflict on the next cycle
    bumped_blocks: List[str] = field(default_factory=list)
    bumped_operations: List[str] = field(default_factory=list)

    @property
    def conflicts(self) -> List[ConflictSkipped]:
        return [s for s in self.skipped if s.is_conflict]

    def held_ids(self, collection: str) -> Set[str]:
        """Ids that must stay pending: both sides of every conflict in ``collection``."""
        held = set()
        for conflict in self.conflicts:
            if conflict.collection == collection:
                held.add(conflict.record_id)
                if conflict.local_id:
                    held.add(conflict.local_id)
        return held

    def to_dict(self):
        return {
            "appliedBlocks": self.applied_blocks,
            "appliedOperations": self.applied_operations,
            "deletedBlocks": self.deleted_blocks,
            "deletedOperations": self.deleted_operations,
            "skipped": len(self.skipped),
            "conflicts": len(self.conflicts),
            "orphans": list(self.orphans),
        }


def _block_attrs(data: Dict[str, Any]) -> Dict[str, Any]:
    attrs = {}
    for key, attr in BLOCK_WRITABLE.items():
        if key in data:
            value = data[key]
            attrs[attr] = parse_datetime(value) if attr == "date" else value
    return attrs


def _operation_attrs(data: Dict[str, Any]) -> Dict[str, Any]:
    attrs = {}
    for key, attr in OPERATION_WRITABLE.items():
        if key in data:
            value = data[key]
            if attr == "timestamp":
                value = parse_datetime(value)
            elif attr == "success":
                value = bool(value)
            attrs[attr] = value
    return attrs


def _same_row(current, attrs: Dict[str, Any], incoming_deleted: bool) -> bool:
    """True when a same-version incoming row carries what we already store."""
    if current.is_deleted or incoming_deleted:
        return current.is_deleted == incoming_deleted
    for attr, value in attrs.items():
        if value is None and attr in ("date", "timestamp"):
            continue
        if getattr(current, attr) != value:
            return False
    return True


def _bump(row, now):
    """Re-version a local row so the peer's next merge takes it as newer."""
    if row.is_deleted:
        row.mark_deleted(now)
    else:
        row.touch(now)


def _is_tombstone(incoming: Dict[str, Any]) -> bool:
    return incoming.get("syncStatus") == SyncStatus.DELETED.value


def _serialize(block: Block, operations: List[Operation]) -> Dict[str, Any]:
    data = block.to_dict()
    data["operations"] = [op.to_dict(include_sync=False) for op in operations]
    data["status"] = compute_block_status(data["operations"])
    return data


class RecordStore:

    @staticmethod
    @contextmanager
    def transaction():
        """One unit of work: commit on success, roll back on any failure."""
        try:
            yield db.session
            db.session.commit()
        except BizError:
            db.session.rollback()
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("store transaction rolled back: %s", exc)
            raise StoreTransactionError(f"Storage transaction failed: {exc.__class__.__name__}") from exc
        except Exception:
            db.session.rollback()
            raise

    # ------------------------------------------------------------------ reads

    @staticmethod
    def get_all_blocks() -> List[Dict[str, Any]]:
        with RecordStore.transaction():
            blocks = BlockRepository.list()
            grouped = OperationRepository.group_by_block(b.id for b in blocks)
            return [_serialize(b, grouped.get(b.id, [])) for b in blocks]

    @staticmethod
    def get_blocks_by_operator(operator: str) -> List[Dict[str, Any]]:
        with RecordStore.transaction():
            blocks = BlockRepository.list(operator=operator)
            grouped = OperationRepository.group_by_block(b.id for b in blocks)
            return [_serialize(b, grouped.get(b.id, [])) for b in blocks]

    @staticmethod
    def get_blocks_between(date_from, date_to) -> List[Dict[str, Any]]:
        with RecordStore.transaction():
            blocks = BlockRepository.list(
                date_from=parse_datetime(date_from), date_to=parse_datetime(date_to)
            )
            grouped = OperationRepository.group_by_block(b.id for b in blocks)
            return [_serialize(b, grouped.get(b.id, [])) for b in blocks]

    @staticmethod
    def get_block_by_id(block_id: str) -> Dict[str, Any]:
        with RecordStore.transaction():
            block = BlockRepository.get_by_id(block_id)
            if block is None:
                raise NotFoundError(f"Block {block_id} not found")
            return _serialize(block, OperationRepository.list_by_block(block_id))

    @staticmethod
    def find_block_by_number(block_number: str) -> Optional[Dict[str, Any]]:
        with RecordStore.transaction():
            block = BlockRepository.get_by_block_number(block_number)
            return block.to_dict() if block else None

    @staticmethod
    def block_exists(block_id: str, include_deleted: bool = True) -> bool:
        with RecordStore.transaction():
            return BlockRepository.get_by_id(block_id, include_deleted=include_deleted) is not None

    # ----------------------------------------------------------------- writes

    @staticmethod
    def _insert_block(data: Dict[str, Any], now) -> Block:
        attrs = _block_attrs(data)
        created_at = parse_datetime(data.get("createdAt")) or now
        if attrs.get("date") is None:
            attrs["date"] = created_at
        block = BlockRepository.create(
            id=data.get("id") or new_record_id(),
            created_at=created_at,
            updated_at=now,
            sync_status=SyncStatus.PENDING.value,
            server_version=1,
            **attrs,
        )
        for position, op in enumerate(data.get("operations") or []):
            RecordStore._insert_operation(block, op, position, now)
        return block

    @staticmethod
    def _insert_operation(block: Block, data: Dict[str, Any], position: int, now, op_id: Optional[str] = None):
        attrs = _operation_attrs(data)
        attrs.setdefault("timestamp", None)
        if attrs["timestamp"] is None:
            attrs["timestamp"] = now
        if not attrs.get("executor"):
            attrs["executor"] = block.operator
        return OperationRepository.create(
            id=op_id or data.get("id") or new_record_id(),
            block_id=block.id,
            position=position,
            updated_at=now,
            sync_status=SyncStatus.PENDING.value,
            server_version=1,
            **attrs,
        )

    @staticmethod
    def add_block(block: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a block and its initial operations; returns the block row only."""
        now = utcnow()
        with RecordStore.transaction():
            row = RecordStore._insert_block(block, now)
            return row.to_dict()

    @staticmethod
    def add_blocks(blocks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """All-or-nothing bulk insert used by imports."""
        now = utcnow()
        with RecordStore.transaction():
            return [RecordStore._insert_block(b, now).to_dict() for b in blocks]

    @staticmethod
    def _replace_operations(block: Block, incoming: List[Dict[str, Any]], now):
        existing = {op.id: op for op in OperationRepository.list_by_block(block.id)}
        kept = set()
        for position, payload in enumerate(incoming):
            op_id = payload.get("id")
            current = existing.get(op_id) if op_id else None
            if current is not None and op_id not in kept:
                kept.add(op_id)
                attrs = _operation_attrs(payload)
                attrs["position"] = position
                if attrs.get("timestamp") is None:
                    attrs["timestamp"] = current.timestamp
                if not attrs.get("executor"):
                    attrs["executor"] = current.executor
                if any(getattr(current, k) != v for k, v in attrs.items()):
                    for k, v in attrs.items():
                        setattr(current, k, v)
                    current.touch(now)
                continue

            # unknown or repeated id: store as a fresh row
            reuse = op_id and op_id not in kept and OperationRepository.get_by_id(op_id) is None
            created = RecordStore._insert_operation(
                block, payload, position, now, op_id=op_id if reuse else new_record_id()
            )
            kept.add(created.id)

        for op_id, op in existing.items():
            if op_id not in kept:
                op.mark_deleted(now)

    @staticmethod
    def update_block(block_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Replace the supplied fields; a supplied ``operations`` list replaces the whole list."""
        now = utcnow()
        with RecordStore.transaction():
            block = BlockRepository.get_by_id(block_id)
            if block is None:
                raise NotFoundError(f"Block {block_id} not found")

            for attr, value in _block_attrs(fields).items():
                setattr(block, attr, value)
            block.touch(now)

            if fields.get("operations") is not None:
                RecordStore._replace_operations(block, fields["operations"], now)
            db.session.flush()
            return block.to_dict()

    @staticmethod
    def delete_block(block_id: str) -> bool:
        """Tombstone the block and its operations; no-op for unknown ids."""
        now = utcnow()
        with RecordStore.transaction():
            block = BlockRepository.get_by_id(block_id)
            if block is None:
                return False
            for op in OperationRepository.list_by_block(block_id):
                op.mark_deleted(now)
            block.mark_deleted(now)
            return True

    # ------------------------------------------------------------------- sync

    @staticmethod
    def get_pending_changes(since=None) -> Dict[str, List[dict]]:
        since = parse_datetime(since)
        with RecordStore.transaction():
            return {
                "blocks": [b.to_dict() for b in BlockRepository.list_pending(since)],
                "operations": [op.to_dict() for op in OperationRepository.list_pending(since)],
            }

    @staticmethod
    def get_rows(block_ids: Iterable[str] = (), operation_ids: Iterable[str] = ()) -> Dict[str, List[dict]]:
        """Current wire rows for the given ids, tombstones included."""
        with RecordStore.transaction():
            return {
                "blocks": [b.to_dict() for b in BlockRepository.get_many(block_ids).values()],
                "operations": [op.to_dict() for op in OperationRepository.get_many(operation_ids).values()],
            }

    @staticmethod
    def _skip_not_newer(collection: str, current, attrs, incoming, result: MergeResult,
                        resolve_ties: bool, now) -> bool:
        """Record an incoming row that is not strictly newer; False when it should be applied."""
        version = incoming["serverVersion"]
        if current is None or version > current.server_version:
            return False
        local_version = current.server_version
        reason = "stale"
        if version == local_version and not _same_row(current, attrs, _is_tombstone(incoming)):
            reason = "diverged"
            if resolve_ties:
                _bump(current, now)
                bumped = result.bumped_blocks if collection == "blocks" else result.bumped_operations
                bumped.append(current.id)
        result.skipped.append(
            ConflictSkipped(collection, incoming["id"], version, local_version, reason=reason)
        )
        return True

    @staticmethod
    def _merge_blocks(rows: List[dict], result: MergeResult, resolve_ties: bool):
        local = BlockRepository.get_many(r["id"] for r in rows)
        for incoming in rows:
            block_id = incoming["id"]
            version = incoming["serverVersion"]
            current = local.get(block_id)
            attrs = _block_attrs(incoming)
            now = utcnow()
            if RecordStore._skip_not_newer("blocks", current, attrs, incoming, result, resolve_ties, now):
                continue

            if _is_tombstone(incoming):
                if current is not None:
                    result.deleted_operations += OperationRepository.delete_by_block(block_id)
                    db.session.flush()
                    BlockRepository.delete(current)
                    local.pop(block_id, None)
                    result.deleted_blocks += 1
                continue

            holder = None
            if attrs.get("block_number") is not None:
                holder = BlockRepository.get_by_block_number(attrs["block_number"])
            if holder is not None and holder.id != block_id:
                result.skipped.append(ConflictSkipped(
                    "blocks", block_id, version,
                    current.server_version if current is not None else None,
                    reason="block_number", local_id=holder.id,
                ))
                continue

            created_at = parse_datetime(incoming.get("createdAt"))
            if current is None:
                attrs["created_at"] = created_at or now
                if attrs.get("date") is None:
                    attrs["date"] = attrs["created_at"]
                current = BlockRepository.create(id=block_id, **attrs)
                local[block_id] = current
            else:
                if attrs.get("date") is None:
                    attrs.pop("date", None)
                for attr, value in attrs.items():
                    setattr(current, attr, value)
                if created_at is not None:
                    current.created_at = created_at
            current.updated_at = parse_datetime(incoming.get("updatedAt")) or now
            current.server_version = version
            current.mark_synced()
            result.applied_blocks += 1
            db.session.flush()

    @staticmethod
    def _merge_operations(rows: List[dict], result: MergeResult, resolve_ties: bool):
        local = OperationRepository.get_many(r["id"] for r in rows)
        for incoming in rows:
            op_id = incoming["id"]
            version = incoming["serverVersion"]
            current = local.get(op_id)
            attrs = _operation_attrs(incoming)
            attrs["block_id"] = incoming["blockId"]
            attrs["position"] = int(incoming.get("position") or 0)
            now = utcnow()
            if RecordStore._skip_not_newer("operations", current, attrs, incoming, result, resolve_ties, now):
                continue

            if _is_tombstone(incoming):
                if current is not None:
                    OperationRepository.delete(current)
                    local.pop(op_id, None)
                    result.deleted_operations += 1
                continue

            if BlockRepository.get_by_id(incoming["blockId"]) is None:
                # never store an operation without its live block
                result.orphans.append(op_id)
                continue

            if attrs.get("timestamp") is None:
                attrs["timestamp"] = current.timestamp if current is not None else now
            if current is None:
                current = OperationRepository.create(id=op_id, **attrs)
                local[op_id] = current
            else:
                for attr, value in attrs.items():
                    setattr(current, attr, value)
            current.updated_at = parse_datetime(incoming.get("updatedAt")) or now
            current.server_version = version
            current.mark_synced()
            result.applied_operations += 1
        db.session.flush()

    @staticmethod
    def apply_server_changes(changes, resolve_ties: bool = False) -> MergeResult:
        """Merge a peer's change set: a row wins only with a strictly greater version.

        A same-version row with different content is a conflict and is left
        alone. With ``resolve_ties`` (the answering side of the exchange) our
        copy is re-versioned so it wins on the other side.
        """
        changes = normalize_changes(changes)
        result = MergeResult()
        with RecordStore.transaction():
            RecordStore._merge_blocks(changes["blocks"], result, resolve_ties)
            RecordStore._merge_operations(changes["operations"], result, resolve_ties)

        for skipped in result.skipped:
            logger.debug(
                "merge skipped %s %s (%s): incoming v%s, local v%s",
                skipped.collection, skipped.record_id, skipped.reason,
                skipped.incoming_version, skipped.local_version,
            )
        conflicts = result.conflicts
        if conflicts:
            logger.warning("merge left %d conflicts unresolved: %s", len(conflicts),
                           [(c.reason, c.record_id, c.local_id) for c in conflicts[:20]])
        if result.orphans:
            logger.warning("merge skipped %d operations without a live block: %s",
                           len(result.orphans), result.orphans[:20])
        return result

    @staticmethod
    def mark_as_synced(changes, held: Optional[MergeResult] = None) -> int:
        """Settle the rows of an exchanged change set.

        A row is settled only if it still carries the version that was sent;
        a newer local edit stays pending for the next cycle. Rows involved in
        a conflict of ``held`` (and the operations of such blocks) stay pending
        too. Tombstones are removed once settled. Rows are never created here.
        """
        changes = normalize_changes(changes)
        held_blocks = held.held_ids("blocks") if held is not None else set()
        held_operations = held.held_ids("operations") if held is not None else set()
        settled = 0
        with RecordStore.transaction():
            operations = OperationRepository.get_many(r["id"] for r in changes["operations"])
            for sent in changes["operations"]:
                if sent["id"] in held_operations or sent.get("blockId") in held_blocks:
                    continue
                current = operations.get(sent["id"])
                if current is None or current.server_version != sent["serverVersion"]:
                    continue
                if current.is_deleted:
                    OperationRepository.delete(current)
                else:
                    current.mark_synced()
                settled += 1
            db.session.flush()

            blocks = BlockRepository.get_many(r["id"] for r in changes["blocks"])
            for sent in changes["blocks"]:
                if sent["id"] in held_blocks:
                    continue
                current = blocks.get(sent["id"])
                if current is None or current.server_version != sent["serverVersion"]:
                    continue
                if current.is_deleted:
                    OperationRepository.delete_by_block(current.id)
                    db.session.flush()
                    BlockRepository.delete(current)
                else:
                    current.mark_synced()
                settled += 1
        return settled

    # ------------------------------------------------------------ diagnostics

    @staticmethod
    def check_consistency() -> Dict[str, List[str]]:
        with RecordStore.transaction():
            return {
                "orphanOperations": OperationRepository.find_orphan_ids(),
                "duplicateBlockNumbers": BlockRepository.find_duplicate_block_numbers(),
            }
