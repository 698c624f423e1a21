"""Unit tests for visibility rules and the access context."""

import pytest
from sqlalchemy import Column, MetaData, String, Table

from skillgraph.core.context import AccessContext, MissingTenantError
from skillgraph.core.visibility import (
    ORG_FILTER,
    Visibility,
    VisibilityFilter,
    build_filter,
    is_org_browsable,
)

_skills = Table(
    "skills",
    MetaData(),
    Column("visibility", String),
    Column("author_id", String),
)


@pytest.mark.unit
class TestVisibilityFilter:
    """Tests for VisibilityFilter."""

    @pytest.mark.parametrize("level", ["global_approved", "tenant"])
    def test_org_levels_visible_to_anonymous(self, level):
        assert ORG_FILTER.matches(level, author_id="someone")

    @pytest.mark.parametrize("level", ["personal", "private"])
    def test_author_levels_hidden_from_anonymous(self, level):
        assert not ORG_FILTER.matches(level, author_id="u-1")

    @pytest.mark.parametrize("level", ["personal", "private"])
    def test_author_levels_visible_to_author(self, level):
        assert build_filter("u-1").matches(level, author_id="u-1")

    def test_author_levels_hidden_from_other_principal(self):
        assert not build_filter("u-2").matches("private", author_id="u-1")

    def test_unknown_level_never_matches(self):
        assert not build_filter("u-1").matches("draft", author_id="u-1")
        assert not ORG_FILTER.matches(None, author_id=None)

    def test_enum_values_accepted(self):
        assert ORG_FILTER.matches(Visibility.TENANT, author_id=None)

    def test_blank_principal_is_anonymous(self):
        assert build_filter("").is_anonymous
        assert build_filter(None) == ORG_FILTER

    def test_levels(self):
        assert ORG_FILTER.levels == ("global_approved", "tenant")
        assert set(build_filter("u-1").levels) == {
            "global_approved", "tenant", "personal", "private"
        }

    def test_is_org_browsable(self):
        assert is_org_browsable("tenant")
        assert is_org_browsable(Visibility.GLOBAL_APPROVED)
        assert not is_org_browsable("personal")
        assert not is_org_browsable("")

    def test_anonymous_sql_is_level_list(self):
        clause = ORG_FILTER.to_sql(_skills.c.visibility, _skills.c.author_id)
        sql = str(clause.compile(compile_kwargs={"literal_binds": True}))

        assert "global_approved" in sql
        assert "author_id" not in sql

    def test_principal_sql_includes_author_check(self):
        clause = build_filter("u-1").to_sql(_skills.c.visibility, _skills.c.author_id)
        sql = str(clause.compile(compile_kwargs={"literal_binds": True}))

        assert "author_id = 'u-1'" in sql
        assert "private" in sql


@pytest.mark.unit
class TestAccessContext:
    """Tests for AccessContext."""

    def test_missing_tenant_rejected(self):
        with pytest.raises(MissingTenantError):
            AccessContext(tenant_id="")

    def test_blank_tenant_rejected(self):
        with pytest.raises(MissingTenantError):
            AccessContext(tenant_id="   ")

    def test_visibility_follows_principal(self):
        assert AccessContext(tenant_id="acme").visibility.is_anonymous
        assert AccessContext(tenant_id="acme", principal_id="u-1").visibility == VisibilityFilter("u-1")

    def test_log_fields(self):
        ctx = AccessContext(tenant_id="acme", principal_id="u-1")

        assert ctx.log_fields() == {"tenant_id": "acme", "principal_id": "u-1"}
