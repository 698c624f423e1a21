"""Unit tests for EmbeddingService and vector validation."""

import math
from unittest.mock import AsyncMock

import pytest

from skillgraph.core.vectors import (
    centroid,
    cosine_distance,
    cosine_similarity,
    distance_to_similarity,
    is_valid_vector,
    validate_vector,
)
from skillgraph.services.embedding_service import (
    EmbeddingConfig,
    EmbeddingError,
    EmbeddingNotConfiguredError,
    EmbeddingService,
    InvalidEmbeddingError,
    UnknownArtifactError,
    compute_input_hash,
)
from skillgraph.store.base import StoreError
from tests.factories import OTHER_TENANT, TENANT, add_embedded, make_artifact, unit_vector


@pytest.fixture
def service(store):
    """Embedding service over an in-memory store expecting 8-dimensional vectors."""
    store.add_artifact(make_artifact("s1"))
    return EmbeddingService(store, EmbeddingConfig(dimensions=8))


@pytest.mark.unit
class TestVectorValidation:
    """Tests for validate_vector and cosine helpers."""

    def test_valid_vector(self):
        assert validate_vector([1, 0.5], 2) == [1.0, 0.5]

    @pytest.mark.parametrize(
        "vector",
        [[], None, [0.0, 0.0], [1.0, math.nan], [1.0, math.inf], [1.0, "x"], [True, 1.0]],
    )
    def test_invalid_vectors(self, vector):
        with pytest.raises(InvalidEmbeddingError):
            validate_vector(vector)

    def test_dimension_mismatch_context(self):
        with pytest.raises(InvalidEmbeddingError) as exc_info:
            validate_vector([1.0, 2.0], 3)

        assert exc_info.value.context == {"expected_dimensions": 3, "actual_dimensions": 2}

    def test_is_valid_vector(self):
        assert is_valid_vector([1.0])
        assert not is_valid_vector([1.0], 2)

    def test_cosine_distance_range(self):
        assert cosine_distance([1.0, 0.0], [1.0, 0.0]) == pytest.approx(0.0)
        assert cosine_distance([1.0, 0.0], [0.0, 1.0]) == pytest.approx(1.0)
        assert cosine_distance([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(2.0)

    def test_opposite_vectors_clamp_to_zero_similarity(self):
        assert distance_to_similarity(2.0) == 0.0
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == 0.0

    def test_centroid(self):
        assert centroid([[1.0, 0.0], [0.0, 1.0]]) == [0.5, 0.5]
        assert centroid([]) == []


@pytest.mark.unit
class TestEmbeddingService:
    """Tests for EmbeddingService."""

    @pytest.mark.asyncio
    async def test_upsert(self, service):
        record = await service.upsert_embedding(
            tenant_id=TENANT,
            artifact_id="s1",
            vector=unit_vector(0),
            input_hash=compute_input_hash("text"),
        )

        assert record.dimensions == 8
        assert record.model_name == "nomic-embed-text"
        assert (await service.get_embedding("s1")).input_hash == compute_input_hash("text")

    @pytest.mark.asyncio
    async def test_upsert_rejects_wrong_dimensions(self, service):
        with pytest.raises(InvalidEmbeddingError):
            await service.upsert_embedding(TENANT, "s1", [1.0, 0.0], "0" * 64)

        assert await service.get_embedding("s1") is None

    @pytest.mark.asyncio
    async def test_upsert_unknown_artifact(self, service):
        with pytest.raises(EmbeddingError, match="not found"):
            await service.upsert_embedding(TENANT, "missing", unit_vector(0), "0" * 64)

    @pytest.mark.asyncio
    async def test_upsert_foreign_artifact_rejected(self, store, service):
        await add_embedded(store, make_artifact("victim", OTHER_TENANT), unit_vector(2))

        with pytest.raises(UnknownArtifactError):
            await service.upsert_embedding(TENANT, "victim", unit_vector(3), "0" * 64)

        stored = await service.get_embedding("victim")
        assert stored.vector == unit_vector(2)
        assert stored.tenant_id == OTHER_TENANT

    @pytest.mark.asyncio
    async def test_store_error_wrapped(self):
        store = AsyncMock()
        store.upsert_embedding.side_effect = StoreError("boom", context={"operation": "upsert"})
        service = EmbeddingService(store, EmbeddingConfig(dimensions=8))

        with pytest.raises(EmbeddingError) as exc_info:
            await service.upsert_embedding(TENANT, "s1", unit_vector(0), "0" * 64)

        assert exc_info.value.context["operation"] == "upsert"
        assert isinstance(exc_info.value.__cause__, StoreError)

    @pytest.mark.asyncio
    async def test_without_store(self):
        service = EmbeddingService(None, EmbeddingConfig(dimensions=8))

        with pytest.raises(EmbeddingNotConfiguredError):
            await service.upsert_embedding(TENANT, "s1", unit_vector(0), "0" * 64)
        assert await service.get_embedding("s1") is None

    @pytest.mark.asyncio
    async def test_validation_precedes_store_check(self):
        service = EmbeddingService(None, EmbeddingConfig(dimensions=8))

        with pytest.raises(InvalidEmbeddingError):
            await service.upsert_embedding(TENANT, "s1", [], "0" * 64)

    @pytest.mark.asyncio
    async def test_is_stale(self, service):
        assert await service.is_stale("s1", "text") is True

        await service.upsert_embedding(TENANT, "s1", unit_vector(0), compute_input_hash("text"))

        assert await service.is_stale("s1", "text") is False
        assert await service.is_stale("s1", "changed text") is True

    @pytest.mark.asyncio
    async def test_delete(self, service):
        await service.upsert_embedding(TENANT, "s1", unit_vector(0), "0" * 64)

        assert await service.delete_embedding("s1") is True
        assert await service.get_embedding("s1") is None

    def test_input_hash(self):
        digest = compute_input_hash("hello")

        assert len(digest) == 64
        assert digest == "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"
