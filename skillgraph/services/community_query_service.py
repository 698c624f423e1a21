"""Read side of community detection: browse overview and community detail."""

import math
from collections import defaultdict
from typing import Optional

from skillgraph.core.context import AccessContext
from skillgraph.core.models import (
    AssignedArtifact,
    CommunityDetail,
    CommunityMember,
    CommunityOverview,
)
from skillgraph.core.vectors import centroid, cosine_distance
from skillgraph.core.visibility import ORG_FILTER
from skillgraph.observability.logging import get_logger
from skillgraph.store.base import ArtifactStore

logger = get_logger(__name__)

TOP_MEMBERS = 3


def similarity_pct(distance: float) -> int:
    """Map a cosine distance in [0, 2] to a 0-100 score, rounding half up."""
    return int(math.floor(100 * (1 - distance / 2) + 0.5))


def _member(row: AssignedArtifact, pct: Optional[int] = None) -> CommunityMember:
    return CommunityMember(
        id=row.artifact.id,
        name=row.artifact.name,
        slug=row.artifact.slug,
        total_uses=row.artifact.total_uses,
        similarity_pct=pct,
    )


class CommunityQueryService:
    """Service listing communities and their members."""

    def __init__(self, store: Optional[ArtifactStore]):
        self.store = store
        self.logger = logger

    async def get_communities(self, ctx: AccessContext) -> list[CommunityOverview]:
        """List the tenant's communities, largest first.

        Each overview carries the label and description written by the
        labeling collaborator (if any) and the three most used members.
        """
        if self.store is None:
            return []

        rows = await self.store.list_assigned_artifacts(ctx.tenant_id, ORG_FILTER)
        grouped: dict[int, list[AssignedArtifact]] = defaultdict(list)
        for row in rows:
            grouped[row.assignment.community_id].append(row)

        overviews = []
        for community_id, members in grouped.items():
            first = members[0].assignment
            top = sorted(
                members,
                key=lambda r: (-r.artifact.total_uses, r.artifact.name, r.artifact.id),
            )[:TOP_MEMBERS]
            overviews.append(
                CommunityOverview(
                    community_id=community_id,
                    label=first.community_label,
                    description=first.community_description,
                    member_count=len(members),
                    modularity=first.modularity,
                    top_members=[_member(r) for r in top],
                )
            )

        overviews.sort(key=lambda o: (-o.member_count, o.community_id))
        self.logger.debug(
            "communities_listed",
            tenant_id=ctx.tenant_id,
            community_count=len(overviews),
        )
        return overviews

    async def get_community_detail(
        self,
        ctx: AccessContext,
        community_id: int,
    ) -> Optional[CommunityDetail]:
        """Members of one community ordered by closeness to its centroid.

        Returns None when the community has no visible members.
        """
        if self.store is None:
            return None

        rows = await self.store.list_assigned_artifacts(
            ctx.tenant_id,
            ORG_FILTER,
            community_id=community_id,
            with_vectors=True,
        )
        if not rows:
            return None

        vectors = [r.vector for r in rows if r.vector]
        center = centroid(vectors) if vectors else []

        scored: list[tuple[float, CommunityMember]] = []
        unscored: list[CommunityMember] = []
        for row in rows:
            if row.vector and center:
                distance = cosine_distance(row.vector, center)
                scored.append((distance, _member(row, similarity_pct(distance))))
            else:
                unscored.append(_member(row))

        scored.sort(key=lambda item: (item[0], item[1].name, item[1].id))
        unscored.sort(key=lambda m: (m.name, m.id))

        first = rows[0].assignment
        return CommunityDetail(
            community_id=community_id,
            label=first.community_label,
            description=first.community_description,
            modularity=first.modularity,
            members=[m for _, m in scored] + unscored,
        )
