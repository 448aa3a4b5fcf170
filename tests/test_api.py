"""
API tests for /register/, /search/ and /health/.

The app runs without its lifespan (no PostgreSQL, no model weights);
services are swapped in through dependency overrides.
"""
import asyncio
import threading
import uuid

import numpy as np
import pytest
from fastapi.testclient import TestClient

from app import main
from app.embedding_store import EmbeddingStore
from app.exceptions import DurabilityError, InferenceError, SearchCancelled
from app.face_service import decode_image
from app.schemas import SearchRequest
from app.search_engine import SimilaritySearchEngine
from app.synchronizer import DurabilitySynchronizer
from tests.helpers import FakeRepository, fake_session, png_base64

DIM = 512


class ColorFaceService:
    """
    Embeds an image as a one-hot vector picked by its first pixel's red
    value, so equal colors give similarity 1 and different colors 0.
    """
    model_name = "FakeArcFace"
    is_loaded = True

    def __init__(self, dim=DIM):
        self.dim = dim
        self.fail = False

    def generate_embedding_from_bytes(self, image_bytes):
        img = decode_image(image_bytes)
        if self.fail:
            raise InferenceError("Inference failed: fake model error")
        vector = np.zeros(self.dim, dtype=np.float32)
        vector[int(img[0, 0, 0]) % self.dim] = 3.0
        return vector


@pytest.fixture
def services():
    store = EmbeddingStore(dimension=DIM)
    repository = FakeRepository()
    face = ColorFaceService()
    engine = SimilaritySearchEngine(store, workers=2, min_chunk=1)
    sync = DurabilitySynchronizer(store, fake_session, repository)

    main.app.dependency_overrides[main.get_face_service] = lambda: face
    main.app.dependency_overrides[main.get_store] = lambda: store
    main.app.dependency_overrides[main.get_search_engine] = lambda: engine
    main.app.dependency_overrides[main.get_synchronizer] = lambda: sync
    yield {"store": store, "repository": repository, "face": face}
    main.app.dependency_overrides.clear()
    engine.shutdown()


@pytest.fixture
def client(services):
    return TestClient(main.app)


def register(client, target_uuid, color, origin="camera"):
    return client.post(
        "/register/",
        json={
            "target_uuid": str(target_uuid),
            "image_base64": png_base64(color=color),
            "origin": origin,
        },
    )


def search(client, color, **params):
    return client.post("/search/", json={"image_base64": png_base64(color=color), **params})


def test_health(client, services):
    response = client.get("/health/")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["model"] == "FakeArcFace"
    assert body["embeddings_in_memory"] == 0
    assert body["dimension"] == DIM

    assert client.get("/").status_code == 200


def test_register_then_search_round_trip(client, services):
    target = uuid.uuid4()
    response = register(client, target, (10, 0, 0), origin="badge")

    assert response.status_code == 201
    assert response.json()["target_uuid"] == str(target)
    assert services["store"].count == 1
    assert len(services["repository"].rows) == 1

    response = search(client, (10, 0, 0), threshold=0.99, limit=1)
    assert response.status_code == 200
    results = response.json()["results"]
    assert len(results) == 1
    assert results[0]["target_uuid"] == str(target)
    assert results[0]["origin"] == "badge"
    assert results[0]["similarity"] == pytest.approx(1.0, abs=1e-5)


def test_search_uses_defaults_and_orders_ties_by_registration(client):
    first, second, other = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    register(client, first, (20, 0, 0))
    register(client, other, (30, 0, 0))
    register(client, second, (20, 0, 0))

    response = client.post("/search/", json={"image_base64": png_base64(color=(20, 0, 0))})

    assert response.status_code == 200
    assert [r["target_uuid"] for r in response.json()["results"]] == [str(first), str(second)]


def test_register_defaults_origin(client, services):
    response = client.post(
        "/register/",
        json={"target_uuid": str(uuid.uuid4()), "image_base64": png_base64()},
    )
    assert response.status_code == 201
    assert response.json()["origin"] == "unknown"


def test_search_empty_store_returns_empty_list(client):
    response = search(client, (5, 5, 5), threshold=0.0, limit=5)
    assert response.status_code == 200
    assert response.json()["results"] == []


def test_search_with_non_positive_limit_is_invalid_query(client):
    response = search(client, (5, 5, 5), limit=0)
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidQuery"


def test_search_limit_above_maximum_is_rejected(client):
    response = search(client, (5, 5, 5), limit=10_000)
    assert response.status_code == 422


def test_bad_base64_is_decode_error(client, services):
    response = client.post(
        "/register/",
        json={"target_uuid": str(uuid.uuid4()), "image_base64": "%%%not-base64%%%"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "DecodeError"
    assert services["store"].count == 0


def test_non_image_payload_is_decode_error(client, services):
    response = client.post(
        "/search/",
        json={"image_base64": "aGVsbG8gd29ybGQ="},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "DecodeError"


def test_invalid_uuid_is_rejected(client, services):
    response = client.post(
        "/register/",
        json={"target_uuid": "not-a-uuid", "image_base64": png_base64()},
    )
    assert response.status_code == 422
    assert services["repository"].rows == []


def test_origin_too_long_is_rejected(client, services):
    response = register(client, uuid.uuid4(), (1, 1, 1), origin="x" * 65)
    assert response.status_code == 422
    assert services["store"].count == 0


def test_inference_error_has_no_side_effects(client, services):
    services["face"].fail = True
    response = register(client, uuid.uuid4(), (1, 1, 1))

    assert response.status_code == 500
    assert response.json()["error"] == "InferenceError"
    assert services["store"].count == 0
    assert services["repository"].rows == []


def test_durability_error_leaves_store_untouched(client, services):
    services["repository"].fail_writes = True
    response = register(client, uuid.uuid4(), (1, 1, 1))

    assert response.status_code == 503
    assert response.json()["error"] == "DurabilityError"
    assert services["store"].count == 0


def test_dimension_mismatch_is_reported(client, services):
    services["face"].dim = 128
    response = register(client, uuid.uuid4(), (1, 1, 1))

    assert response.status_code == 500
    assert response.json()["error"] == "DimensionMismatch"
    assert services["store"].count == 0
    assert services["repository"].rows == []


def test_reregistration_adds_enrollment(client, services):
    target = uuid.uuid4()
    assert register(client, target, (40, 0, 0), origin="front").status_code == 201
    assert register(client, target, (41, 0, 0), origin="side").status_code == 201

    assert services["store"].count == 2
    assert services["store"].identifiers() == [target]

    results = search(client, (41, 0, 0), threshold=0.5, limit=5).json()["results"]
    assert [(r["target_uuid"], r["origin"]) for r in results] == [(str(target), "side")]


def test_search_with_non_numeric_threshold_fails_validation(client):
    response = search(client, (5, 5, 5), threshold="strict")
    assert response.status_code == 422


def test_unknown_route_uses_error_body(client):
    response = client.get("/no-such-route")
    assert response.status_code == 404
    assert response.json() == {"error": "HTTPException", "detail": "Not Found"}


def test_wrong_method_uses_error_body(client):
    response = client.get("/register/")
    assert response.status_code == 405
    assert response.json()["error"] == "HTTPException"


def test_failed_startup_load_stops_the_app(monkeypatch):
    async def ready_db():
        return None

    async def unreachable_store():
        raise DurabilityError("Failed to read targets")

    monkeypatch.setattr(main, "init_db", ready_db)
    monkeypatch.setattr(main.face_service, "load", lambda: None)
    monkeypatch.setattr(main.synchronizer, "load_store", unreachable_store)

    with pytest.raises(DurabilityError):
        with TestClient(main.app):
            pass


class BlockingEngine:
    """Holds the search open until the caller's cancel event is set."""

    def __init__(self):
        self.started = threading.Event()
        self.saw_cancel = threading.Event()

    def search(self, query, threshold, limit, cancel_event):
        self.started.set()
        if cancel_event.wait(timeout=5):
            self.saw_cancel.set()
        raise SearchCancelled("Search cancelled by caller")


def test_cancelled_search_request_sets_cancel_event():
    engine = BlockingEngine()
    payload = SearchRequest(image_base64=png_base64(color=(7, 0, 0)))

    async def scenario():
        task = asyncio.ensure_future(main.search(payload, ColorFaceService(), engine))
        while not engine.started.is_set():
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert engine.saw_cancel.wait(timeout=5)
