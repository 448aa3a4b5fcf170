"""
Targets Repository

Database operations for the targets table using SQLAlchemy async.
SQLAlchemy errors are re-raised as DurabilityError.
"""
import uuid
from datetime import datetime
from typing import List, Sequence
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from app.exceptions import DurabilityError
from app.models import TargetDB

logger = logging.getLogger(__name__)


class TargetRepository:
    """
    Repository class for targets database operations.

    All methods are async and require an AsyncSession.
    """

    @staticmethod
    async def create(
        session: AsyncSession,
        target_uuid: uuid.UUID,
        origin: str,
        embedding: Sequence[float],
    ) -> TargetDB:
        """
        Insert one target row and commit.

        Args:
            session: Database session
            target_uuid: Identity the embedding belongs to
            origin: Short origin tag
            embedding: Embedding values (stored as REAL[])

        Returns:
            Created TargetDB instance
        """
        db_record = TargetDB(
            uuid=target_uuid,
            origin=origin,
            embeddings=[float(v) for v in embedding],
            created_at=datetime.utcnow()
        )

        try:
            session.add(db_record)
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Failed to store target {target_uuid}: {e}")
            raise DurabilityError(f"Failed to store target {target_uuid}") from e

        logger.info(f"Created DB row {db_record.id} for target {target_uuid}")
        return db_record

    @staticmethod
    async def get_all(session: AsyncSession) -> List[TargetDB]:
        """Get every target row in registration order."""
        try:
            result = await session.execute(select(TargetDB).order_by(TargetDB.id))
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Failed to read targets: {e}")
            raise DurabilityError("Failed to read targets") from e

