"""
Configuration for tree generation.

Module constants hold the documented defaults. ``Settings`` lets a
deployment override engine-wide budgets and thresholds through
``REALITY_*`` environment variables, and ``GenerationConfig`` validates
the per-request parameters.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import InvalidConfiguration
from .models import NarrativeStyle, ProbabilityModel

# Request defaults
DEFAULT_MAX_DEPTH = 5
DEFAULT_BRANCHING_FACTOR = 3
DEFAULT_MIN_PROBABILITY = 0.05

# Model parameters
MONTE_CARLO_TRIALS = 1000
RECENCY_DECAY = 0.8             # weight multiplier per step back in extract order
SCORE_DECAY = 0.5               # share of the parent score carried into a child
DEFAULT_FACTOR_WEIGHT = 1.0
PROBABILITY_FLOOR = 1e-6

# Path classification
SIGNIFICANT_THRESHOLD = 60.0
CLASSIFICATION_MARGIN = 15.0
NEGLIGIBLE_THRESHOLD = 20.0

# Analysis
CONTRADICTION_TOLERANCE = 0.01
TOP_DRIVERS_LIMIT = 10
TOP_COMPARED_PATHS = 5

# Budgets
MAX_NODES = 10_000
MAX_GENERATION_SECONDS = 30.0

DEFAULT_ROOT_LABEL = "Current State"


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    LOG_LEVEL: str = "INFO"

    # Budgets
    MAX_NODES: int = MAX_NODES
    MAX_GENERATION_SECONDS: float = MAX_GENERATION_SECONDS
    PARALLEL_WORKERS: int = 1

    # Models
    MONTE_CARLO_TRIALS: int = MONTE_CARLO_TRIALS
    RECENCY_DECAY: float = RECENCY_DECAY
    SCORE_DECAY: float = SCORE_DECAY
    DEFAULT_FACTOR_WEIGHT: float = DEFAULT_FACTOR_WEIGHT

    # Classification / analysis
    SIGNIFICANT_THRESHOLD: float = SIGNIFICANT_THRESHOLD
    CLASSIFICATION_MARGIN: float = CLASSIFICATION_MARGIN
    NEGLIGIBLE_THRESHOLD: float = NEGLIGIBLE_THRESHOLD
    CONTRADICTION_TOLERANCE: float = CONTRADICTION_TOLERANCE
    TOP_DRIVERS_LIMIT: int = TOP_DRIVERS_LIMIT

    # Retries for extract fetch and snapshot publish
    FETCH_RETRIES: int = 3
    PUBLISH_RETRIES: int = 3
    RETRY_BASE_DELAY: float = 0.5
    RETRY_BACKOFF_FACTOR: float = 2.0
    RETRY_MAX_DELAY: float = 8.0

    model_config = SettingsConfigDict(
        env_prefix="REALITY_",
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Applies the configured log level to the root logger."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@dataclass(frozen=True)
class ClassificationThresholds:
    """Score thresholds used to label a path's outcome type."""
    significant: float = SIGNIFICANT_THRESHOLD
    margin: float = CLASSIFICATION_MARGIN
    negligible: float = NEGLIGIBLE_THRESHOLD

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None) -> "ClassificationThresholds":
        source = source or settings
        return cls(
            significant=source.SIGNIFICANT_THRESHOLD,
            margin=source.CLASSIFICATION_MARGIN,
            negligible=source.NEGLIGIBLE_THRESHOLD,
        )


class GenerationConfig(BaseModel):
    """Validated parameters for one generation run."""

    model_config = ConfigDict(frozen=True, extra="forbid", use_enum_values=False)

    max_depth: int = Field(DEFAULT_MAX_DEPTH, ge=1, le=10)
    branching_factor: int = Field(DEFAULT_BRANCHING_FACTOR, ge=1, le=10)
    min_probability: float = Field(DEFAULT_MIN_PROBABILITY, ge=0.0, le=0.5)
    include_risk_analysis: bool = True
    include_opportunity_analysis: bool = True
    probability_model: ProbabilityModel = ProbabilityModel.WEIGHTED_AVERAGE
    seed: Optional[int] = Field(None, ge=0)
    narrative_style: NarrativeStyle = NarrativeStyle.EXECUTIVE
    renormalize_siblings: bool = True
    category_weights: Dict[str, float] = Field(default_factory=dict)
    bayesian_priors: Dict[str, Tuple[float, float]] = Field(default_factory=dict)

    @field_validator("category_weights")
    @classmethod
    def _weights_non_negative(cls, value: Dict[str, float]) -> Dict[str, float]:
        for category, weight in value.items():
            if weight < 0:
                raise ValueError(f"weight for category '{category}' must be >= 0")
        return value

    @field_validator("bayesian_priors")
    @classmethod
    def _priors_positive(cls, value: Dict[str, Tuple[float, float]]) -> Dict[str, Tuple[float, float]]:
        for key, (alpha, beta) in value.items():
            if alpha <= 0 or beta <= 0:
                raise ValueError(f"prior for '{key}' must have alpha > 0 and beta > 0")
        return value


def parse_config(params: Optional[Mapping[str, Any]] = None) -> GenerationConfig:
    """
    Builds a GenerationConfig from a plain mapping.

    Raises:
        InvalidConfiguration: If any parameter is unknown or out of range.
    """
    if isinstance(params, GenerationConfig):
        return params
    try:
        return GenerationConfig(**dict(params or {}))
    except ValidationError as e:
        raise InvalidConfiguration(str(e)) from e
