"""
Configuration settings for the Face Embedding Search Service
"""
import os


# =============================================================================
# Server / Logging
# =============================================================================
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))

# LOG_LEVEL wins over the more generic LOGLEVEL
LOG_LEVEL = os.getenv("LOG_LEVEL", os.getenv("LOGLEVEL", "INFO")).upper()

# =============================================================================
# PostgreSQL Configuration
# =============================================================================
POSTGRES_USER = os.getenv("POSTGRES_USER", "postgres")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
POSTGRES_HOST = os.getenv("POSTGRES_HOST", "localhost")
POSTGRES_PORT = int(os.getenv("POSTGRES_PORT", "5432"))
POSTGRES_DB = os.getenv("POSTGRES_DB", "owlfacerec")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+asyncpg://{POSTGRES_USER}:{POSTGRES_PASSWORD}"
    f"@{POSTGRES_HOST}:{POSTGRES_PORT}/{POSTGRES_DB}",
)

DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "5"))

# =============================================================================
# Model Configuration
# =============================================================================
# ArcFace expects an aligned 112x112 face and outputs a 512-d embedding.
# The raw output is not unit-length; the store normalizes it.
FACE_RECOGNITION_MODEL = os.getenv("FACE_RECOGNITION_MODEL", "ArcFace")
MODEL_INPUT_SIZE = int(os.getenv("MODEL_INPUT_SIZE", "112"))
EMBEDDING_DIM = int(os.getenv("EMBEDDING_DIM", "512"))

# =============================================================================
# Search Configuration
# =============================================================================
# Cosine similarity of unit vectors, higher = more similar
DEFAULT_THRESHOLD = float(os.getenv("DEFAULT_THRESHOLD", "0.7"))
DEFAULT_LIMIT = int(os.getenv("DEFAULT_LIMIT", "10"))
MAX_LIMIT = int(os.getenv("MAX_LIMIT", "100"))

# Parallel scan: at most SEARCH_WORKERS chunks, each of at least
# SEARCH_MIN_CHUNK rows so small stores are scanned in one piece
SEARCH_WORKERS = int(os.getenv("SEARCH_WORKERS", str(os.cpu_count() or 4)))
SEARCH_MIN_CHUNK = int(os.getenv("SEARCH_MIN_CHUNK", "1024"))

# Registration
MAX_ORIGIN_LENGTH = 64
DEFAULT_ORIGIN = "unknown"

# =============================================================================
# API Configuration
# =============================================================================
API_TITLE = "Face Embedding Search API"
API_DESCRIPTION = """
Registers faces as ArcFace embeddings and finds the closest registered faces
for a query image.

## Features
- **Register**: Store a face embedding under a UUID and an origin tag
- **Search**: Rank registered faces by cosine similarity to a query face

## Storage
- PostgreSQL is the source of truth (`targets` table)
- An in-memory copy is scanned in parallel for every search
"""
API_VERSION = "1.0.0"
