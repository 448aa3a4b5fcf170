import uuid

import pytest

from app.embedding_store import EmbeddingStore, make_target
from tests.helpers import FakeRepository, random_embeddings


@pytest.fixture
def repository():
    return FakeRepository()


@pytest.fixture
def store():
    return EmbeddingStore(dimension=8)


@pytest.fixture
def populated_store():
    """Store with 200 random 16-d targets."""
    store = EmbeddingStore(dimension=16)
    for vector in random_embeddings(200, 16, seed=42):
        store.insert(make_target(uuid.uuid4(), "fixture", vector))
    return store
