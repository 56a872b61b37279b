from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import and_, asc, or_, select

from constants.block import SyncStatus
from extensions.database import db
from models.block import Block
from models.operation import Operation


class OperationRepository:
    """Persistence of operation rows; ordering is always the insertion order."""

    _ORDER = (asc(Operation.position), asc(Operation.timestamp), asc(Operation.id))

    @staticmethod
    def create(**kwargs) -> Operation:
        operation = Operation(**kwargs)
        db.session.add(operation)
        db.session.flush()
        return operation

    @staticmethod
    def get_by_id(operation_id: str) -> Optional[Operation]:
        return db.session.get(Operation, operation_id)

    @staticmethod
    def get_many(operation_ids: Iterable[str]) -> Dict[str, Operation]:
        ids = list(set(operation_ids))
        if not ids:
            return {}
        stmt = select(Operation).where(Operation.id.in_(ids))
        return {op.id: op for op in db.session.execute(stmt).scalars().all()}

    @staticmethod
    def list_by_block(block_id: str, include_deleted: bool = False) -> List[Operation]:
        stmt = select(Operation).where(Operation.block_id == block_id)
        if not include_deleted:
            stmt = stmt.where(Operation.sync_status != SyncStatus.DELETED.value)
        stmt = stmt.order_by(*OperationRepository._ORDER)
        return db.session.execute(stmt).scalars().all()

    @staticmethod
    def group_by_block(block_ids: Iterable[str]) -> Dict[str, List[Operation]]:
        """Live operations of the given blocks, keyed by block id."""
        ids = list(set(block_ids))
        grouped: Dict[str, List[Operation]] = defaultdict(list)
        if not ids:
            return grouped
        stmt = (
            select(Operation)
            .where(
                Operation.block_id.in_(ids),
                Operation.sync_status != SyncStatus.DELETED.value,
            )
            .order_by(*OperationRepository._ORDER)
        )
        for op in db.session.execute(stmt).scalars().all():
            grouped[op.block_id].append(op)
        return grouped

    @staticmethod
    def list_pending(since: Optional[datetime] = None) -> List[Operation]:
        stmt = select(Operation).where(Operation.sync_status != SyncStatus.SYNCED.value)
        if since is not None:
            stmt = stmt.where(Operation.updated_at > since)
        stmt = stmt.order_by(asc(Operation.updated_at), *OperationRepository._ORDER)
        return db.session.execute(stmt).scalars().all()

    @staticmethod
    def delete(operation: Operation):
        db.session.delete(operation)

    @staticmethod
    def delete_by_block(block_id: str) -> int:
        """Physically remove every row of the block, tombstones included."""
        rows = OperationRepository.list_by_block(block_id, include_deleted=True)
        for op in rows:
            db.session.delete(op)
        return len(rows)

    @staticmethod
    def find_orphan_ids() -> List[str]:
        """Live operations whose block is missing or already a tombstone."""
        stmt = (
            select(Operation.id)
            .outerjoin(Block, Block.id == Operation.block_id)
            .where(
                and_(
                    Operation.sync_status != SyncStatus.DELETED.value,
                    or_(Block.id.is_(None), Block.sync_status == SyncStatus.DELETED.value),
                )
            )
            .order_by(asc(Operation.id))
        )
        return list(db.session.execute(stmt).scalars().all())
