"""
Durability Synchronizer

Keeps the in-memory EmbeddingStore consistent with PostgreSQL:
- Startup: every row is read and loaded into the store. Any failure is
  fatal; the service does not start on a partial cache.
- Registration: the row is committed first and only then inserted into
  the store, so memory never runs ahead of the database. A crash between
  the two steps is repaired by the reload on the next startup.
"""
import asyncio
import uuid
import logging

from app.database import async_session_maker
from app.embedding_store import EmbeddingStore, Target, embedding_store, make_target
from app.exceptions import DurabilityError
from app.repository import TargetRepository

logger = logging.getLogger(__name__)


class DurabilitySynchronizer:
    """
    Loads the store from the database and persists new registrations.

    Args:
        store: The in-memory store to keep in sync
        session_factory: Callable returning an async session context manager
        repository: Repository with async `get_all` and `create`
    """

    def __init__(self, store: EmbeddingStore, session_factory, repository=TargetRepository):
        self.store = store
        self.session_factory = session_factory
        self.repository = repository

    async def load_store(self) -> int:
        """
        Rebuild the store from every persisted row.

        Returns:
            Number of targets loaded

        Raises:
            DurabilityError: If the rows could not be read
            DimensionMismatch: If rows disagree on embedding length
        """
        logger.info("Loading existing embeddings from database into memory...")
        try:
            async with self.session_factory() as session:
                rows = await self.repository.get_all(session)
        except DurabilityError:
            raise
        except Exception as e:
            raise DurabilityError(f"Failed to load targets: {e}") from e

        targets = [make_target(row.uuid, row.origin, row.embeddings) for row in rows]
        loaded = self.store.load(targets)
        if loaded:
            logger.info(f"Loaded {loaded} embeddings into memory")
        else:
            logger.info("No existing embeddings found in database")
        return loaded

    async def register(self, identifier: uuid.UUID, origin: str, embedding) -> Target:
        """
        Persist a registration, then make it visible to searches.

        Re-registering an identifier adds another enrollment for it.

        Raises:
            DimensionMismatch: Embedding length is wrong (nothing written)
            DurabilityError: The database write failed (store untouched)
        """
        self.store.check_dimension(embedding)
        target = make_target(identifier, origin, embedding)

        # Once the write is issued it runs to completion, together with the
        # in-memory insert, even if the caller is cancelled.
        commit = asyncio.ensure_future(self._commit(target))
        try:
            return await asyncio.shield(commit)
        except asyncio.CancelledError:
            commit.add_done_callback(_log_abandoned_commit)
            raise

    async def _commit(self, target: Target) -> Target:
        try:
            async with self.session_factory() as session:
                await self.repository.create(
                    session,
                    target_uuid=target.identifier,
                    origin=target.origin,
                    embedding=target.embedding.tolist(),
                )
        except DurabilityError:
            raise
        except Exception as e:
            logger.error(f"Failed to persist target {target.identifier}: {e}")
            raise DurabilityError(f"Failed to persist target {target.identifier}") from e

        position = self.store.insert(target)
        logger.info(
            f"Registered target {target.identifier} (origin='{target.origin}') "
            f"at position {position}, {self.store.count} embeddings in memory"
        )
        return target


def _log_abandoned_commit(commit: asyncio.Future) -> None:
    """Report the outcome of a commit whose caller was cancelled."""
    if commit.cancelled():
        return
    error = commit.exception()
    if error is not None:
        logger.error(f"Registration abandoned by its caller failed: {error}")


# Singleton instance
synchronizer = DurabilitySynchronizer(embedding_store, async_session_maker)
