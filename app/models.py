"""
SQLAlchemy ORM Models for the Face Embedding Database

Defines the targets table:
CREATE TABLE targets (
    id BIGSERIAL PRIMARY KEY,
    uuid UUID NOT NULL,
    origin VARCHAR(64) NOT NULL DEFAULT 'unknown',
    embeddings REAL[] NOT NULL,
    created_at TIMESTAMP NOT NULL
);

`uuid` is not unique: registering the same identity again adds another
enrollment. `id` preserves registration order across restarts.
"""
from datetime import datetime
from sqlalchemy import BigInteger, Column, DateTime, REAL, String
from sqlalchemy.dialects.postgresql import ARRAY, UUID

from app.config import DEFAULT_ORIGIN, MAX_ORIGIN_LENGTH
from app.database import Base


class TargetDB(Base):
    """
    SQLAlchemy model for the targets table.

    One row per registered face embedding.
    """
    __tablename__ = "targets"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    uuid = Column(UUID(as_uuid=True), nullable=False, index=True)
    origin = Column(
        String(MAX_ORIGIN_LENGTH),
        nullable=False,
        default=DEFAULT_ORIGIN,
        server_default=DEFAULT_ORIGIN,
    )
    embeddings = Column(ARRAY(REAL), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<TargetDB(id={self.id}, uuid={self.uuid}, origin='{self.origin}')>"
