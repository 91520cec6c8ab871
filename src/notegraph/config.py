"""Configuration module for notegraph."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from notegraph import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level overrides live alongside the default database
_USER_ENV = Path.home() / ".notegraph" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

_TRUTHY = ("true", "1", "yes")


def _env_float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


def _env_int(name: str, default: str) -> int:
    return int(os.getenv(name, default))


class NotegraphConfig(BaseModel):
    """Configuration for scoring, storage, search and context assembly."""

    # Base directory for relative paths
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTEGRAPH_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTEGRAPH_DATABASE_PATH", "data/db/notegraph.db")
        )
    )
    # When True the record store lives in an in-memory SQLite database
    in_memory_db: bool = Field(
        default_factory=lambda: os.getenv("NOTEGRAPH_IN_MEMORY_DB", "false").lower()
        in _TRUTHY
    )
    version: str = Field(default=__version__)

    # Classification thresholds for the weighted score
    auto_accept_threshold: float = Field(
        default_factory=lambda: _env_float("NOTEGRAPH_AUTO_ACCEPT", "0.5")
    )
    suggestion_threshold: float = Field(
        default_factory=lambda: _env_float("NOTEGRAPH_SUGGESTION_THRESHOLD", "0.25")
    )

    # Scoring weights (must sum to 1.0)
    token_weight: float = Field(
        default_factory=lambda: _env_float("NOTEGRAPH_TOKEN_WEIGHT", "0.25")
    )
    embedding_weight: float = Field(
        default_factory=lambda: _env_float("NOTEGRAPH_EMBEDDING_WEIGHT", "0.55")
    )
    tag_weight: float = Field(
        default_factory=lambda: _env_float("NOTEGRAPH_TAG_WEIGHT", "0.15")
    )
    title_weight: float = Field(
        default_factory=lambda: _env_float("NOTEGRAPH_TITLE_WEIGHT", "0.05")
    )
    # Raw cosine is raised to this power so weak similarity contributes less
    embedding_exponent: float = Field(
        default_factory=lambda: _env_float("NOTEGRAPH_EMBEDDING_EXPONENT", "1.25")
    )
    # Applied when two notes share neither tags nor title words
    no_overlap_penalty: float = Field(
        default_factory=lambda: _env_float("NOTEGRAPH_NO_OVERLAP_PENALTY", "0.9")
    )

    # Embedding configuration
    # "hashing" uses the offline token-hashing provider, "none" disables vectors
    embedding_provider: str = Field(
        default_factory=lambda: os.getenv("NOTEGRAPH_EMBED_PROVIDER", "hashing").lower()
    )
    embedding_dim: int = Field(
        default_factory=lambda: _env_int("NOTEGRAPH_EMBEDDING_DIM", "384")
    )
    # Upper bound on concurrent provider calls during document import
    embed_concurrency: int = Field(
        default_factory=lambda: _env_int("NOTEGRAPH_EMBED_CONCURRENCY", "3")
    )

    # Context assembly
    context_budget_tokens: int = Field(
        default_factory=lambda: _env_int("NOTEGRAPH_CONTEXT_BUDGET", "8000")
    )
    context_max_external_per_seed: int = Field(
        default_factory=lambda: _env_int("NOTEGRAPH_CONTEXT_MAX_EXTERNAL", "3")
    )
    semantic_seed_limit: int = Field(
        default_factory=lambda: _env_int("NOTEGRAPH_SEMANTIC_SEED_LIMIT", "30")
    )
    seed_tag_min_frequency: int = Field(
        default_factory=lambda: _env_int("NOTEGRAPH_SEED_TAG_MIN_FREQUENCY", "3")
    )

    # Logging
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("NOTEGRAPH_LOG_DIR"))
            if os.getenv("NOTEGRAPH_LOG_DIR")
            else None
        )
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("NOTEGRAPH_LOG_LEVEL", "INFO").upper()
    )

    @model_validator(mode="after")
    def _validate_scoring_config(self) -> "NotegraphConfig":
        """Reject thresholds and weights that cannot produce a bounded score."""
        for name in ("auto_accept_threshold", "suggestion_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if self.suggestion_threshold > self.auto_accept_threshold:
            raise ValueError(
                "suggestion_threshold must not exceed auto_accept_threshold"
            )

        weights = (
            self.token_weight,
            self.embedding_weight,
            self.tag_weight,
            self.title_weight,
        )
        if any(w < 0 for w in weights):
            raise ValueError("scoring weights must be non-negative")
        if abs(sum(weights) - 1.0) > 1e-6:
            raise ValueError(f"scoring weights must sum to 1.0, got {sum(weights):.4f}")

        if not 0.0 < self.no_overlap_penalty <= 1.0:
            raise ValueError("no_overlap_penalty must be within (0, 1]")
        if self.embed_concurrency < 1:
            raise ValueError("embed_concurrency must be >= 1")
        if self.embedding_provider not in ("hashing", "none"):
            logger.warning(
                f"Unknown embedding provider {self.embedding_provider!r}; "
                "embeddings will be disabled"
            )
        return self

    @property
    def embeddings_enabled(self) -> bool:
        """Whether the configured provider produces vectors."""
        return self.embedding_provider == "hashing"

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        if self.in_memory_db:
            return "sqlite://"
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Create a global config instance
config = NotegraphConfig()
