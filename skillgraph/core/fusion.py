"""Reciprocal Rank Fusion.

RRF combines ranked lists without needing comparable scores:

    score(d) = sum over lists of 1 / (k + rank(d))

with 1-based ranks and a zero term for a list that does not contain ``d``.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Optional

DEFAULT_RRF_K = 60


@dataclass(frozen=True)
class FusedRank:
    """Ranks of one item in each list and its fused score."""

    ft_rank: Optional[int]
    sm_rank: Optional[int]
    score: float


def rrf_term(rank: Optional[int], k: int = DEFAULT_RRF_K) -> float:
    return 1.0 / (k + rank) if rank is not None else 0.0


def reciprocal_rank_fusion(
    lexical_ids: Sequence[str],
    semantic_ids: Sequence[str],
    k: int = DEFAULT_RRF_K,
) -> dict[str, FusedRank]:
    """Fuse a lexical and a semantic ranking.

    Args:
        lexical_ids: Item ids in lexical rank order (best first)
        semantic_ids: Item ids in semantic rank order (best first)
        k: RRF constant

    Returns:
        Mapping of every item in either list to its FusedRank (unordered)
    """
    if k < 0:
        raise ValueError(f"RRF k must be non-negative, got {k}")

    ft_ranks: dict[str, int] = {}
    for rank, item_id in enumerate(lexical_ids, start=1):
        ft_ranks.setdefault(item_id, rank)

    sm_ranks: dict[str, int] = {}
    for rank, item_id in enumerate(semantic_ids, start=1):
        sm_ranks.setdefault(item_id, rank)

    fused: dict[str, FusedRank] = {}
    for item_id in list(ft_ranks) + [i for i in sm_ranks if i not in ft_ranks]:
        ft_rank = ft_ranks.get(item_id)
        sm_rank = sm_ranks.get(item_id)
        fused[item_id] = FusedRank(
            ft_rank=ft_rank,
            sm_rank=sm_rank,
            score=rrf_term(ft_rank, k) + rrf_term(sm_rank, k),
        )
    return fused
