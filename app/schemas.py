"""
Pydantic models for API request/response schemas
"""
from pydantic import BaseModel, Field
from typing import List
import uuid

from app.config import (
    DEFAULT_LIMIT,
    DEFAULT_ORIGIN,
    DEFAULT_THRESHOLD,
    MAX_LIMIT,
    MAX_ORIGIN_LENGTH,
)


class RegisterRequest(BaseModel):
    """Schema for registering a face"""
    target_uuid: uuid.UUID = Field(..., description="Identity the face belongs to")
    image_base64: str = Field(..., min_length=1, description="Base64 encoded, aligned face image")
    origin: str = Field(
        default=DEFAULT_ORIGIN,
        min_length=1,
        max_length=MAX_ORIGIN_LENGTH,
        description="Short tag describing where the face came from",
    )

    class Config:
        json_schema_extra = {
            "example": {
                "target_uuid": "550e8400-e29b-41d4-a716-446655440000",
                "image_base64": "iVBORw0KGgoAAAANSUhEUgAA...",
                "origin": "badge-photo"
            }
        }


class RegisterResponse(BaseModel):
    """Schema for register response"""
    success: bool = Field(..., description="Whether the operation succeeded")
    message: str = Field(..., description="Status message")
    target_uuid: uuid.UUID = Field(..., description="Registered identity")
    origin: str = Field(..., description="Origin tag stored with the embedding")


class SearchRequest(BaseModel):
    """Schema for searching similar faces"""
    image_base64: str = Field(..., min_length=1, description="Base64 encoded, aligned face image")
    threshold: float = Field(
        default=DEFAULT_THRESHOLD,
        description="Minimum cosine similarity (-1 to 1, higher = stricter)",
    )
    limit: int = Field(
        default=DEFAULT_LIMIT,
        le=MAX_LIMIT,
        description="Maximum number of results",
    )

    class Config:
        json_schema_extra = {
            "example": {
                "image_base64": "iVBORw0KGgoAAAANSUhEUgAA...",
                "threshold": 0.7,
                "limit": 10
            }
        }


class SearchResultItem(BaseModel):
    """Schema for a single search hit"""
    target_uuid: str = Field(..., description="Identity of the matched face")
    similarity: float = Field(..., description="Cosine similarity (higher is better)")
    origin: str = Field(..., description="Origin tag of the matched face")


class SearchResponse(BaseModel):
    """Schema for search API response"""
    results: List[SearchResultItem] = Field(..., description="Matches, best first")
    processing_time_ms: float = Field(..., description="Processing time in milliseconds")


class HealthResponse(BaseModel):
    """Schema for health check response"""
    status: str = Field(..., description="Service status")
    model: str = Field(..., description="Recognition model name")
    model_loaded: bool = Field(..., description="Whether the model is loaded")
    embeddings_in_memory: int = Field(..., description="Number of embeddings in memory")
    identities: int = Field(..., description="Number of distinct identities")
    dimension: int = Field(..., description="Embedding dimension (0 if unknown)")


class ErrorResponse(BaseModel):
    """Schema for error responses"""
    error: str = Field(..., description="Error type")
    detail: str = Field(..., description="Detailed error message")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "DecodeError",
                "detail": "Failed to decode image"
            }
        }
