from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import asc, func, select

from constants.block import SyncStatus
from extensions.database import db
from models.block import Block


class BlockRepository:

    @staticmethod
    def create(**kwargs) -> Block:
        block = Block(**kwargs)
        db.session.add(block)
        db.session.flush()
        return block

    @staticmethod
    def get_by_id(block_id: str, include_deleted: bool = False) -> Optional[Block]:
        stmt = select(Block).where(Block.id == block_id)
        if not include_deleted:
            stmt = stmt.where(Block.sync_status != SyncStatus.DELETED.value)
        return db.session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def get_by_block_number(block_number: str) -> Optional[Block]:
        stmt = select(Block).where(
            Block.block_number == block_number,
            Block.sync_status != SyncStatus.DELETED.value,
        )
        return db.session.execute(stmt).scalars().first()

    @staticmethod
    def get_many(block_ids: Iterable[str]) -> dict:
        ids = list(set(block_ids))
        if not ids:
            return {}
        stmt = select(Block).where(Block.id.in_(ids))
        return {b.id: b for b in db.session.execute(stmt).scalars().all()}

    @staticmethod
    def list(
        operator: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> List[Block]:
        conditions = [Block.sync_status != SyncStatus.DELETED.value]
        if operator is not None:
            conditions.append(Block.operator == operator)
        if date_from is not None:
            conditions.append(Block.date >= date_from)
        if date_to is not None:
            conditions.append(Block.date <= date_to)

        stmt = select(Block).where(*conditions).order_by(asc(Block.created_at), asc(Block.id))
        return db.session.execute(stmt).scalars().all()

    @staticmethod
    def list_pending(since: Optional[datetime] = None) -> List[Block]:
        stmt = select(Block).where(Block.sync_status != SyncStatus.SYNCED.value)
        if since is not None:
            stmt = stmt.where(Block.updated_at > since)
        stmt = stmt.order_by(asc(Block.updated_at), asc(Block.id))
        return db.session.execute(stmt).scalars().all()

    @staticmethod
    def delete(block: Block):
        db.session.delete(block)

    @staticmethod
    def find_duplicate_block_numbers() -> List[str]:
        stmt = (
            select(Block.block_number)
            .where(Block.sync_status != SyncStatus.DELETED.value)
            .group_by(Block.block_number)
            .having(func.count(Block.id) > 1)
        )
        return list(db.session.execute(stmt).scalars().all())
