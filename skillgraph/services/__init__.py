"""Engine services."""

from skillgraph.services.community_detection_service import (
    CommunityDetectionError,
    CommunityDetectionService,
    CommunityPersistenceError,
    DetectionBudgetError,
    DetectionTimeoutError,
)
from skillgraph.services.community_query_service import CommunityQueryService
from skillgraph.services.embedding_service import (
    EmbeddingConfig,
    EmbeddingError,
    EmbeddingService,
    InvalidEmbeddingError,
    UnknownArtifactError,
)
from skillgraph.services.hybrid_search_service import HybridSearchError, HybridSearchService
from skillgraph.services.topology_service import TopologyService

__all__ = [
    "CommunityDetectionError",
    "CommunityDetectionService",
    "CommunityPersistenceError",
    "CommunityQueryService",
    "DetectionBudgetError",
    "DetectionTimeoutError",
    "EmbeddingConfig",
    "EmbeddingError",
    "EmbeddingService",
    "HybridSearchError",
    "HybridSearchService",
    "InvalidEmbeddingError",
    "TopologyService",
    "UnknownArtifactError",
]
