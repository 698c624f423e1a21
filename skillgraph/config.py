"""Configuration management for the Skill Graph Engine.

This module provides centralized configuration management using Pydantic Settings,
supporting environment variables, .env files, and YAML override files for the
graph and search tuning constants.
"""

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database connection settings.

    When ``url`` is unset the engine runs without a backing store and every
    read path returns neutral results.
    """

    url: Optional[str] = Field(
        default=None,
        description="PostgreSQL connection URL (postgresql+asyncpg://...)",
    )
    pool_size: int = Field(default=10, ge=1, le=100)
    max_overflow: int = Field(default=20, ge=0, le=100)
    pool_timeout: int = Field(default=30, ge=1)
    echo: bool = Field(default=False, description="Enable SQL echo for debugging")

    model_config = SettingsConfigDict(env_prefix="DB_")


class GraphSettings(BaseSettings):
    """KNN graph and community detection tuning."""

    knn_k: int = Field(default=10, ge=1, le=100)
    min_similarity: float = Field(default=0.3, ge=0.0, le=1.0)
    min_artifacts: int = Field(default=5, ge=1)
    min_graph_order: int = Field(default=3, ge=1)
    resolution: float = Field(default=1.0, gt=0.0)
    low_quality_modularity: float = Field(default=0.1)
    detection_timeout_seconds: float = Field(default=60.0, gt=0.0)
    max_edges: int = Field(default=200_000, ge=1)
    random_seed: Optional[int] = Field(default=None)

    model_config = SettingsConfigDict(env_prefix="GRAPH_")


class SearchSettings(BaseSettings):
    """Hybrid search settings."""

    rrf_k: int = Field(default=60, ge=1)
    candidate_limit: int = Field(default=20, ge=1, le=200)
    default_limit: int = Field(default=10, ge=1)
    max_limit: int = Field(default=50, ge=1)
    language: str = Field(default="english")
    record_queries: bool = Field(default=True)

    model_config = SettingsConfigDict(env_prefix="SEARCH_")


class EmbeddingSettings(BaseSettings):
    """Expected shape of vectors handed over by the embedding provider."""

    dimensions: int = Field(default=768, ge=1)
    model_name: str = Field(default="nomic-embed-text")

    model_config = SettingsConfigDict(env_prefix="EMBEDDING_")


class SecuritySettings(BaseSettings):
    """Security settings for the scheduled detection endpoint."""

    cron_secret: Optional[str] = Field(default=None)

    model_config = SettingsConfigDict(env_prefix="SECURITY_")


class ObservabilitySettings(BaseSettings):
    """Observability and monitoring settings."""

    service_name: str = Field(default="skill-graph-engine")
    environment: str = Field(default="development")
    prometheus_enabled: bool = Field(default=True)
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        if v not in ("json", "console"):
            raise ValueError(f"Invalid log format: {v}. Must be 'json' or 'console'")
        return v

    model_config = SettingsConfigDict(env_prefix="OTEL_")


class Settings(BaseSettings):
    """Main application settings."""

    app_name: str = Field(default="Skill Graph Engine")
    app_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)
    env: str = Field(default="development")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    workers: int = Field(default=1, ge=1)

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    graph: GraphSettings = Field(default_factory=GraphSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    graph_config_path: Path = Field(default=Path("config/graph.yaml"))

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )


@dataclass
class GraphConfig:
    """Tuning constants consumed by the KNN builder and community detector.

    Attributes:
        knn_k: Nearest neighbours requested per artifact
        min_similarity: Edge threshold (cosine similarity)
        min_artifacts: Below this many eligible artifacts detection is skipped
        min_graph_order: Below this many graph nodes detection is skipped
        resolution: Louvain resolution (higher = more, smaller communities)
        low_quality_modularity: Modularity under which a partition is flagged
        detection_timeout_seconds: Wall-clock budget for one detection run
        max_edges: Budget on raw KNN edges for one detection run
        random_seed: Seed for Louvain tie-breaking (None = nondeterministic)
    """

    knn_k: int = 10
    min_similarity: float = 0.3
    min_artifacts: int = 5
    min_graph_order: int = 3
    resolution: float = 1.0
    low_quality_modularity: float = 0.1
    detection_timeout_seconds: float = 60.0
    max_edges: int = 200_000
    random_seed: int | None = None

    def __post_init__(self) -> None:
        """Validate graph parameters."""
        if self.knn_k < 1:
            raise ValueError(f"knn_k must be positive, got {self.knn_k}")
        if not 0.0 <= self.min_similarity <= 1.0:
            raise ValueError(
                f"min_similarity must be within [0, 1], got {self.min_similarity}"
            )
        if self.resolution <= 0:
            raise ValueError(f"resolution must be positive, got {self.resolution}")

    @classmethod
    def from_settings(cls, settings: GraphSettings) -> "GraphConfig":
        return cls(**settings.model_dump())


@dataclass
class SearchConfig:
    """Configuration for hybrid search operations.

    Attributes:
        rrf_k: RRF constant k value (default: 60)
        candidate_limit: Size of each lexical/semantic candidate list (default: 20)
        default_limit: Default number of fused results (default: 10)
        max_limit: Maximum allowed limit to prevent abuse (default: 50)
        language: Text search configuration for the lexical list
        record_queries: Whether searches are written to the analytics log
    """

    rrf_k: int = 60
    candidate_limit: int = 20
    default_limit: int = 10
    max_limit: int = 50
    language: str = "english"
    record_queries: bool = True

    @classmethod
    def from_settings(cls, settings: SearchSettings) -> "SearchConfig":
        return cls(**settings.model_dump())


def load_graph_config(
    config_path: str | Path | None = None,
    settings: Optional[Settings] = None,
) -> tuple[GraphConfig, SearchConfig]:
    """Load graph and search configuration.

    Environment settings provide the base values; a YAML file with optional
    ``graph:`` and ``search:`` sections overrides them key by key.

    Args:
        config_path: Path to the YAML file (defaults to settings.graph_config_path)
        settings: Settings instance (defaults to the cached settings)

    Returns:
        Tuple of (GraphConfig, SearchConfig)
    """
    settings = settings or get_settings()
    graph_values: Dict[str, Any] = settings.graph.model_dump()
    search_values: Dict[str, Any] = settings.search.model_dump()

    path = Path(config_path) if config_path else settings.graph_config_path
    if path.exists():
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        graph_values.update(data.get("graph") or {})
        search_values.update(data.get("search") or {})

    return GraphConfig(**graph_values), SearchConfig(**search_values)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance with loaded configuration
    """
    return Settings()


def reload_settings() -> Settings:
    """Reload settings from environment.

    Returns:
        Fresh Settings instance
    """
    get_settings.cache_clear()
    return get_settings()
