"""API route modules."""

from skillgraph.api.routes import communities, embeddings, health, search, topology

__all__ = ["communities", "embeddings", "health", "search", "topology"]
