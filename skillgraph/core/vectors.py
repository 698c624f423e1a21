"""Vector validation and cosine helpers shared by the stores and services."""

import math
from collections.abc import Sequence


class EmbeddingError(Exception):
    """Base exception for embedding errors."""

    def __init__(self, message: str, context: dict | None = None):
        super().__init__(message)
        self.context = context or {}


class InvalidEmbeddingError(EmbeddingError):
    """Raised when an embedding vector is empty, non-finite or mis-sized."""
    pass


def validate_vector(
    vector: Sequence[float] | None,
    dimensions: int | None = None,
) -> list[float]:
    """Validate an embedding vector.

    Args:
        vector: The embedding values
        dimensions: Expected length, or None to accept any length

    Returns:
        The vector as a list of floats

    Raises:
        InvalidEmbeddingError: If validation fails
    """
    if not vector:
        raise InvalidEmbeddingError("Vector cannot be empty")

    if dimensions is not None and len(vector) != dimensions:
        raise InvalidEmbeddingError(
            f"Vector dimension {len(vector)} does not match expected {dimensions}",
            context={
                "expected_dimensions": dimensions,
                "actual_dimensions": len(vector),
            },
        )

    values: list[float] = []
    for i, val in enumerate(vector):
        if isinstance(val, bool) or not isinstance(val, (int, float)):
            raise InvalidEmbeddingError(
                f"Invalid vector value at index {i}: {val}",
                context={"index": i, "value": str(val)},
            )
        if math.isnan(val) or math.isinf(val):
            raise InvalidEmbeddingError(
                f"Invalid vector: contains NaN or infinite value at index {i}",
                context={"index": i, "value": val},
            )
        values.append(float(val))

    if not any(values):
        raise InvalidEmbeddingError("Vector cannot be all zeros")

    return values


def is_valid_vector(vector: Sequence[float] | None, dimensions: int | None = None) -> bool:
    try:
        validate_vector(vector, dimensions)
    except InvalidEmbeddingError:
        return False
    return True


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine distance in [0, 2], matching pgvector's ``<=>`` operator."""
    dot = math.fsum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(math.fsum(x * x for x in a))
    norm_b = math.sqrt(math.fsum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 1.0
    return 1.0 - dot / (norm_a * norm_b)


def distance_to_similarity(distance: float) -> float:
    """Convert cosine distance to a similarity clamped to [0, 1].

    Opposite vectors (distance > 1) clamp to 0.
    """
    return max(0.0, min(1.0, 1.0 - distance))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    return distance_to_similarity(cosine_distance(a, b))


def centroid(vectors: Sequence[Sequence[float]]) -> list[float]:
    """Element-wise mean of equally sized vectors."""
    if not vectors:
        return []
    count = len(vectors)
    return [math.fsum(column) / count for column in zip(*vectors)]
