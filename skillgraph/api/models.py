"""Pydantic models for API requests and responses."""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

# ============================================================================
# Requests
# ============================================================================


class SearchRequest(BaseModel):
    """Request body for hybrid search.

    ``query_embedding`` is optional; without it (or with an invalid one) the
    search degrades to lexical-only ranking.
    """

    model_config = {"json_schema_extra": {
        "example": {
            "query": "review pull requests",
            "query_embedding": [0.1, 0.2, 0.3],
            "limit": 10,
        }
    }}

    query: str = Field(..., max_length=500, description="Free-text search query")
    query_embedding: Optional[list[float]] = Field(
        default=None,
        description="Embedding of the query text",
    )
    limit: int = Field(default=10, ge=1, le=50, description="Maximum number of results")


class EmbeddingUpsertRequest(BaseModel):
    """Request body for storing an artifact embedding."""

    vector: list[float] = Field(..., description="Embedding values")
    input_hash: str = Field(
        ...,
        min_length=64,
        max_length=64,
        description="SHA-256 hex digest of the embedded text",
    )
    model_name: Optional[str] = Field(default=None, max_length=100)
    model_version: Optional[str] = Field(default=None, max_length=50)

    @field_validator("input_hash")
    @classmethod
    def validate_input_hash(cls, v: str) -> str:
        """Validate the hash is lowercase hex."""
        v = v.lower()
        if any(c not in "0123456789abcdef" for c in v):
            raise ValueError("input_hash must be a hex SHA-256 digest")
        return v


# ============================================================================
# Responses
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    environment: str
    store_configured: bool


class DetectionSkippedResponse(BaseModel):
    """Returned by the detection endpoint when no cron secret is configured."""

    skipped: bool = True
    reason: str

