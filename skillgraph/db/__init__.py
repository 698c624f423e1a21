"""Database models and engine helpers."""

from skillgraph.db.models import (
    ArtifactModel,
    Base,
    CommunityAssignmentModel,
    EmbeddingModel,
    SearchQueryModel,
    UsageEventModel,
    Vector,
    create_session_factory,
    init_engine,
)

__all__ = [
    "ArtifactModel",
    "Base",
    "CommunityAssignmentModel",
    "EmbeddingModel",
    "SearchQueryModel",
    "UsageEventModel",
    "Vector",
    "create_session_factory",
    "init_engine",
]
