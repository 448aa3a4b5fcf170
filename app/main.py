"""
Face Embedding Search API

Registers aligned face images as ArcFace embeddings and ranks registered
faces by cosine similarity to a query face. PostgreSQL holds every
embedding; searches scan an in-memory copy in parallel.

Endpoints:
- GET  /, /health/ - Service status
- POST /register/  - Register a face under a UUID
- POST /search/    - Find registered faces similar to a query face
"""
import asyncio
import threading
import time
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import (
    API_TITLE,
    API_DESCRIPTION,
    API_VERSION,
    FACE_RECOGNITION_MODEL,
    HOST,
    LOG_LEVEL,
    PORT,
)
from app.schemas import (
    RegisterRequest,
    RegisterResponse,
    SearchRequest,
    SearchResultItem,
    SearchResponse,
    HealthResponse,
    ErrorResponse,
)
from app.database import init_db, close_db
from app.embedding_store import EmbeddingStore, embedding_store
from app.exceptions import FaceRecognitionError
from app.face_service import FaceEmbeddingService, decode_base64_image, face_service
from app.search_engine import SimilaritySearchEngine, search_engine, validate_query
from app.synchronizer import DurabilitySynchronizer, synchronizer

# Configure logging
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def get_face_service() -> FaceEmbeddingService:
    return face_service


def get_store() -> EmbeddingStore:
    return embedding_store


def get_search_engine() -> SimilaritySearchEngine:
    return search_engine


def get_synchronizer() -> DurabilitySynchronizer:
    return synchronizer


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan events.

    The model and the in-memory store are both ready before the first
    request; a failure in either aborts startup.
    """
    # Startup
    logger.info("Starting Face Embedding Search API...")
    logger.info(f"Model: {FACE_RECOGNITION_MODEL}")

    await init_db()
    await run_in_threadpool(face_service.load)
    await synchronizer.load_store()

    logger.info(f"Serving with {embedding_store.count} embeddings in memory")
    yield

    # Shutdown
    search_engine.shutdown()
    await close_db()
    logger.info("Shutting down Face Embedding Search API...")


# Create FastAPI app
app = FastAPI(
    title=API_TITLE,
    description=API_DESCRIPTION,
    version=API_VERSION,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", response_model=HealthResponse, include_in_schema=False)
@app.get("/health/", response_model=HealthResponse)
async def health_check(
    service: FaceEmbeddingService = Depends(get_face_service),
    store: EmbeddingStore = Depends(get_store),
):
    """Health check endpoint."""
    return HealthResponse(
        status="healthy" if service.is_loaded else "starting",
        model=service.model_name,
        model_loaded=service.is_loaded,
        embeddings_in_memory=store.count,
        identities=len(store.identifiers()),
        dimension=store.dimension or 0,
    )


# ============================================================================
# REGISTER
# ============================================================================
@app.post(
    "/register/",
    response_model=RegisterResponse,
    status_code=201,
    responses={
        400: {"model": ErrorResponse, "description": "Image could not be decoded"},
        500: {"model": ErrorResponse, "description": "Inference failed or dimension mismatch"},
        503: {"model": ErrorResponse, "description": "Database write failed"}
    },
    summary="Register a face",
    description="""
    Register an aligned face image under a UUID.

    **Pipeline:**
    1. Base64 and image decoding
    2. Resize to 112x112, BGR, normalize
    3. ArcFace embedding
    4. Persist to PostgreSQL
    5. Add to the in-memory store

    Registering the same UUID again adds another enrollment for it.
    """
)
async def register(
    payload: RegisterRequest,
    service: FaceEmbeddingService = Depends(get_face_service),
    sync: DurabilitySynchronizer = Depends(get_synchronizer),
):
    """Register a face embedding for the given identity."""
    start_time = time.time()
    logger.debug(f"Received registration request for {payload.target_uuid}")

    image_bytes = decode_base64_image(payload.image_base64)
    embedding = await run_in_threadpool(service.generate_embedding_from_bytes, image_bytes)
    logger.debug(f"Embedding calculated (first 5 values): {embedding[:5].tolist()}")

    target = await sync.register(payload.target_uuid, payload.origin, embedding)

    processing_time = (time.time() - start_time) * 1000
    logger.info(f"Registered {target.identifier} ('{target.origin}') in {processing_time:.1f}ms")

    return RegisterResponse(
        success=True,
        message=f"Face registered for target '{target.identifier}'",
        target_uuid=target.identifier,
        origin=target.origin,
    )


# ============================================================================
# SEARCH
# ============================================================================
@app.post(
    "/search/",
    response_model=SearchResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid query or image"},
        500: {"model": ErrorResponse, "description": "Inference failed"}
    },
    summary="Search for similar faces",
    description="""
    Rank registered faces by cosine similarity to the query face.

    **Output:** at most `limit` results with similarity >= `threshold`,
    best first; equal similarities keep registration order.

    A `limit` below 1 or a NaN `threshold` is an `InvalidQuery` (400).
    A non-numeric `threshold` or a `limit` above the maximum fails request
    validation (422).
    """
)
async def search(
    payload: SearchRequest,
    service: FaceEmbeddingService = Depends(get_face_service),
    engine: SimilaritySearchEngine = Depends(get_search_engine),
):
    """Find registered faces similar to the query image."""
    start_time = time.time()

    validate_query(payload.threshold, payload.limit)
    image_bytes = decode_base64_image(payload.image_base64)
    embedding = await run_in_threadpool(service.generate_embedding_from_bytes, image_bytes)

    logger.info(
        f"Searching for similar embeddings with threshold={payload.threshold} "
        f"and limit={payload.limit}"
    )

    cancel_event = threading.Event()
    try:
        matches = await run_in_threadpool(
            engine.search,
            embedding,
            payload.threshold,
            payload.limit,
            cancel_event,
        )
    except asyncio.CancelledError:
        cancel_event.set()
        raise

    processing_time = (time.time() - start_time) * 1000
    logger.info(f"Found {len(matches)} similar embeddings in {processing_time:.1f}ms")

    return SearchResponse(
        results=[
            SearchResultItem(
                target_uuid=str(match.identifier),
                similarity=match.similarity,
                origin=match.origin,
            )
            for match in matches
        ],
        processing_time_ms=round(processing_time, 2),
    )


# Exception handlers
@app.exception_handler(FaceRecognitionError)
async def face_recognition_exception_handler(request, exc: FaceRecognitionError):
    """Map service errors to their HTTP status."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error_type}: {exc.detail}")
    else:
        logger.warning(f"{exc.error_type}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error_type,
            "detail": exc.detail
        }
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc):
    """Unknown routes and wrong methods use the same error body."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTPException",
            "detail": exc.detail
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """General exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "InternalServerError",
            "detail": "An unexpected error occurred"
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=HOST, port=PORT)
