"""Shared fixtures for the skill graph tests."""

import pytest

from skillgraph.config import GraphConfig
from skillgraph.core.context import AccessContext
from skillgraph.store.memory import InMemoryArtifactStore
from tests.factories import TENANT


@pytest.fixture
def store():
    """Empty in-memory store accepting any vector length."""
    return InMemoryArtifactStore()


@pytest.fixture
def ctx():
    """Anonymous access context for the main tenant."""
    return AccessContext(tenant_id=TENANT)


@pytest.fixture
def graph_config():
    """Graph configuration with a fixed seed and a neighbourhood wide enough for a cluster."""
    return GraphConfig(knn_k=30, random_seed=7)
