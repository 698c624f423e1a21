"""Visibility rules for catalog artifacts.

This is the single tenant/visibility isolation boundary of the engine. Every
store query that touches artifact rows or their embeddings receives a
:class:`VisibilityFilter` and applies it, either as an in-memory predicate
(:meth:`VisibilityFilter.matches`) or as a SQL clause
(:meth:`VisibilityFilter.to_sql`). Both renderings derive from the same level
sets below.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy import and_, or_


class Visibility(str, Enum):
    """Access-scope tag on an artifact, from widest to narrowest."""

    GLOBAL_APPROVED = "global_approved"
    TENANT = "tenant"
    PERSONAL = "personal"
    PRIVATE = "private"


VISIBILITY_LEVELS: tuple[str, ...] = tuple(v.value for v in Visibility)

# Levels any member of the owning tenant may browse
ORG_VISIBLE_LEVELS: tuple[str, ...] = (
    Visibility.GLOBAL_APPROVED.value,
    Visibility.TENANT.value,
)

# Levels visible only to the artifact's author
AUTHOR_SCOPED_LEVELS: tuple[str, ...] = (
    Visibility.PERSONAL.value,
    Visibility.PRIVATE.value,
)


def _level_value(level: Any) -> str:
    if isinstance(level, Visibility):
        return level.value
    return str(level) if level is not None else ""


def is_org_browsable(level: Any) -> bool:
    """Return True for levels visible to every member of the owning tenant.

    Unknown or empty values are never browsable.
    """
    return _level_value(level) in ORG_VISIBLE_LEVELS


@dataclass(frozen=True)
class VisibilityFilter:
    """Visibility predicate for one principal.

    Attributes:
        principal_id: Authenticated principal, or None for anonymous access
    """

    principal_id: str | None = None

    @property
    def is_anonymous(self) -> bool:
        return not self.principal_id

    @property
    def levels(self) -> tuple[str, ...]:
        """Levels this filter can ever match."""
        if self.is_anonymous:
            return ORG_VISIBLE_LEVELS
        return ORG_VISIBLE_LEVELS + AUTHOR_SCOPED_LEVELS

    def matches(self, visibility: Any, author_id: str | None) -> bool:
        """Evaluate the predicate for one artifact."""
        level = _level_value(visibility)
        if level in ORG_VISIBLE_LEVELS:
            return True
        if self.is_anonymous or level not in AUTHOR_SCOPED_LEVELS:
            return False
        return author_id is not None and author_id == self.principal_id

    def to_sql(self, visibility_column: Any, author_column: Any) -> Any:
        """Render the predicate as a SQLAlchemy boolean clause.

        Args:
            visibility_column: Column holding the visibility level
            author_column: Column holding the author id

        Returns:
            SQLAlchemy clause usable in ``.where()``
        """
        org_visible = visibility_column.in_(ORG_VISIBLE_LEVELS)
        if self.is_anonymous:
            return org_visible
        return or_(
            org_visible,
            and_(
                visibility_column.in_(AUTHOR_SCOPED_LEVELS),
                author_column == self.principal_id,
            ),
        )


def build_filter(principal_id: str | None = None) -> VisibilityFilter:
    """Build the visibility filter for a principal.

    - No principal (anonymous): only org-browsable levels
    - With principal: org-browsable levels plus the principal's own
      personal and private artifacts
    """
    return VisibilityFilter(principal_id=principal_id or None)


# Filter used by tenant-wide graph operations, identical for every viewer
ORG_FILTER = VisibilityFilter()
