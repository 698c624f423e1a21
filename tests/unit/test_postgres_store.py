"""Unit tests for PostgresArtifactStore with a mocked session factory."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import SQLAlchemyError

from skillgraph.core.models import CommunityAssignment, EmbeddingRecord
from skillgraph.core.visibility import ORG_FILTER, build_filter
from skillgraph.db.models import ArtifactModel, parse_vector_literal, to_vector_literal
from skillgraph.store.base import ArtifactNotFoundError, StoreError
from skillgraph.store.postgres import PostgresArtifactStore, escape_like
from tests.factories import OTHER_TENANT, TENANT


def _result(**methods):
    """Build a result double whose methods return the given values."""
    result = MagicMock()
    for name, value in methods.items():
        getattr(result, name).return_value = value
    return result


@pytest.fixture
def mock_session():
    """Create a mock AsyncSession."""
    session = MagicMock()
    session.execute = AsyncMock()
    session.begin.return_value.__aenter__ = AsyncMock(return_value=None)
    session.begin.return_value.__aexit__ = AsyncMock(return_value=False)
    return session


@pytest.fixture
def pg_store(mock_session):
    """Postgres store whose session factory yields the mock session."""
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=mock_session)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return PostgresArtifactStore(factory, dimensions=2)


def _embedding_record() -> EmbeddingRecord:
    return EmbeddingRecord(
        artifact_id="s1",
        tenant_id=TENANT,
        vector=[1.0, 0.0],
        model_name="m",
        input_hash="0" * 64,
    )


def _sql(session, call_index: int = 0) -> str:
    stmt = session.execute.call_args_list[call_index][0][0]
    return str(stmt.compile(dialect=postgresql.dialect()))


@pytest.mark.unit
class TestHelpers:
    """Tests for module helpers."""

    def test_escape_like(self):
        assert escape_like("50%_off\\") == "50\\%\\_off\\\\"

    def test_vector_literal(self):
        assert to_vector_literal([1, 0.5]) == "[1.0,0.5]"
        assert parse_vector_literal("[1.0, 0.5]") == [1.0, 0.5]
        assert parse_vector_literal("[]") == []


@pytest.mark.unit
class TestPostgresArtifactStore:
    """Tests for the Postgres store queries."""

    @pytest.mark.asyncio
    async def test_get_embedding_maps_model(self, pg_store, mock_session):
        model = MagicMock(
            skill_id="s1",
            tenant_id=TENANT,
            embedding=[1.0, 0.0],
            model_name="m",
            model_version=None,
            dimensions=2,
            input_hash="0" * 64,
            created_at=None,
            updated_at=None,
        )
        mock_session.execute.return_value = _result(scalar_one_or_none=model)

        record = await pg_store.get_embedding("s1")

        assert record.artifact_id == "s1"
        assert record.vector == [1.0, 0.0]

    @pytest.mark.asyncio
    async def test_upsert_embedding_scoped_to_owner(self, pg_store, mock_session):
        now = datetime.now(timezone.utc)
        mock_session.execute.side_effect = [
            _result(scalar_one_or_none="s1"),
            _result(one_or_none=(now, now)),
        ]

        record = await pg_store.upsert_embedding(_embedding_record())

        assert record.created_at == now
        owner_sql = _sql(mock_session, 0)
        assert "skills.tenant_id" in owner_sql
        upsert_sql = _sql(mock_session, 1)
        assert "ON CONFLICT (skill_id) DO UPDATE" in upsert_sql
        assert "WHERE skill_embeddings.tenant_id = excluded.tenant_id" in upsert_sql
        assert "SET tenant_id" not in upsert_sql

    @pytest.mark.asyncio
    async def test_upsert_embedding_foreign_artifact(self, pg_store, mock_session):
        mock_session.execute.return_value = _result(scalar_one_or_none=None)

        with pytest.raises(ArtifactNotFoundError):
            await pg_store.upsert_embedding(_embedding_record())

        assert mock_session.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_upsert_embedding_row_owned_elsewhere(self, pg_store, mock_session):
        mock_session.execute.side_effect = [
            _result(scalar_one_or_none="s1"),
            _result(one_or_none=None),
        ]

        with pytest.raises(ArtifactNotFoundError):
            await pg_store.upsert_embedding(_embedding_record())

    @pytest.mark.asyncio
    async def test_query_knn_filters_by_similarity(self, pg_store, mock_session):
        mock_session.execute.return_value = _result(all=[("b", 0.1), ("c", 0.9)])

        neighbours = await pg_store.query_knn(
            [1.0, 0.0], 5, TENANT, ORG_FILTER, exclude_id="a", min_similarity=0.5
        )

        assert [n.artifact_id for n in neighbours] == ["b"]
        assert neighbours[0].similarity == pytest.approx(0.9)
        sql = _sql(mock_session)
        assert "<=>" in sql
        assert "skills.tenant_id" in sql
        assert "skills.id !=" in sql

    @pytest.mark.asyncio
    async def test_graph_scope_has_no_global_widening(self, pg_store, mock_session):
        mock_session.execute.return_value = _result(all=[])

        await pg_store.query_knn([1.0, 0.0], 5, TENANT, ORG_FILTER)
        await pg_store.query_knn([1.0, 0.0], 5, TENANT, ORG_FILTER, include_global=True)

        assert " OR skills.visibility = " not in _sql(mock_session, 0)
        assert " OR skills.visibility = " in _sql(mock_session, 1)

    @pytest.mark.asyncio
    async def test_knn_edges_lateral(self, pg_store, mock_session):
        mock_session.execute.return_value = _result(
            all=[("a", "b", 0.2), ("b", "a", 0.2), ("a", "c", 0.9)]
        )

        edges = await pg_store.knn_edges(TENANT, 10, 0.3, ORG_FILTER)

        assert [(s, t) for s, t, _ in edges] == [("a", "b"), ("b", "a")]
        sql = _sql(mock_session)
        assert "LATERAL" in sql
        assert "WITH" not in sql
        assert "ORDER BY ea.embedding <=> eb.embedding" in sql
        assert "ORDER BY ea.embedding <=> eb.embedding," not in sql
        assert "sb.tenant_id" in sql

    @pytest.mark.asyncio
    async def test_principal_filter_in_sql(self, pg_store, mock_session):
        mock_session.execute.return_value = _result(all=[])

        await pg_store.semantic_search([1.0, 0.0], TENANT, build_filter("u-1"), 10)

        assert "skills.author_id" in _sql(mock_session)

    @pytest.mark.asyncio
    async def test_lexical_search_without_terms(self, pg_store, mock_session):
        mock_session.execute.return_value = _result(scalar_one=0)

        assert await pg_store.lexical_search("the", TENANT, ORG_FILTER, 10) is None
        assert mock_session.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_lexical_search_uses_websearch_tsquery(self, pg_store, mock_session):
        mock_session.execute.side_effect = [_result(scalar_one=2), _result(all=[])]

        assert await pg_store.lexical_search("code review", TENANT, ORG_FILTER, 10) == []
        sql = _sql(mock_session, 1)
        assert "websearch_to_tsquery" in sql
        assert "ts_rank" in sql
        assert "skills.search_vector @@ websearch_to_tsquery('english'::regconfig" in sql
        assert "to_tsvector" not in sql

    @pytest.mark.asyncio
    async def test_lexical_search_rejects_unindexed_language(self, pg_store, mock_session):
        with pytest.raises(StoreError, match="language"):
            await pg_store.lexical_search("code review", TENANT, ORG_FILTER, 10, language="german")

        mock_session.execute.assert_not_called()

    def test_search_vector_is_generated_column(self):
        column = ArtifactModel.__table__.c.search_vector

        assert column.computed is not None
        assert column.computed.persisted is True
        assert "skill_tags_text(tags)" in str(column.computed.sqltext)

    @pytest.mark.asyncio
    async def test_database_error_wrapped(self, pg_store, mock_session):
        mock_session.execute.side_effect = SQLAlchemyError("connection reset")

        with pytest.raises(StoreError) as exc_info:
            await pg_store.count_eligible(TENANT, ORG_FILTER)

        assert exc_info.value.context["operation"] == "count_eligible"

    @pytest.mark.asyncio
    async def test_replace_assignments_in_one_transaction(self, pg_store, mock_session):
        now = datetime.now(timezone.utc)
        assignments = [
            CommunityAssignment(TENANT, "s1", 0, 0.4, now, "r1"),
            CommunityAssignment(TENANT, "s2", 1, 0.4, now, "r1"),
        ]

        count = await pg_store.replace_community_assignments(TENANT, assignments)

        assert count == 2
        mock_session.begin.assert_called_once()
        assert mock_session.execute.await_count == 3
        assert "pg_advisory_xact_lock" in _sql(mock_session, 0)
        assert _sql(mock_session, 1).startswith("DELETE FROM skill_communities")
        rows = mock_session.execute.call_args_list[2][0][1]
        assert [row["skill_id"] for row in rows] == ["s1", "s2"]

    @pytest.mark.asyncio
    async def test_replace_with_no_rows_only_deletes(self, pg_store, mock_session):
        await pg_store.replace_community_assignments(TENANT, [])

        assert mock_session.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_replace_rejects_foreign_rows(self, pg_store, mock_session):
        now = datetime.now(timezone.utc)

        with pytest.raises(StoreError):
            await pg_store.replace_community_assignments(
                TENANT, [CommunityAssignment(OTHER_TENANT, "s1", 0, 0.4, now, "r1")]
            )

        mock_session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_close_disposes_engine(self, mock_session):
        engine = AsyncMock()
        store = PostgresArtifactStore(MagicMock(), engine=engine)

        await store.close()

        engine.dispose.assert_awaited_once()
