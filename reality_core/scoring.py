"""
Risk and opportunity scoring.

A node's score is the weighted severity of its own factors plus a decayed
share of its parent's score, clipped to [0, 100]. Negative factors feed
risk, positive factors feed opportunity, neutral factors feed neither.
"""

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Tuple

from .config import DEFAULT_FACTOR_WEIGHT, SCORE_DECAY, GenerationConfig, Settings, settings as default_settings
from .models import Direction, Factor

SCORE_MIN = 0.0
SCORE_MAX = 100.0


@dataclass(frozen=True)
class ScoringWeights:
    category_weights: Mapping[str, float] = field(default_factory=dict)
    default_weight: float = DEFAULT_FACTOR_WEIGHT
    decay: float = SCORE_DECAY
    include_risk: bool = True
    include_opportunity: bool = True

    def weight(self, category: str) -> float:
        return float(self.category_weights.get(category, self.default_weight))

    @classmethod
    def from_config(cls, config: GenerationConfig, engine_settings: Optional[Settings] = None) -> "ScoringWeights":
        engine_settings = engine_settings or default_settings
        return cls(
            category_weights=dict(config.category_weights),
            default_weight=engine_settings.DEFAULT_FACTOR_WEIGHT,
            decay=engine_settings.SCORE_DECAY,
            include_risk=config.include_risk_analysis,
            include_opportunity=config.include_opportunity_analysis,
        )


def clip_score(value: float) -> float:
    return float(min(SCORE_MAX, max(SCORE_MIN, value)))


def factor_contribution(factor: Factor, weights: ScoringWeights) -> Tuple[float, float]:
    """Returns the (risk, opportunity) contribution of one factor."""
    amount = weights.weight(factor.category) * factor.severity
    if factor.direction == Direction.NEGATIVE and weights.include_risk:
        return amount, 0.0
    if factor.direction == Direction.POSITIVE and weights.include_opportunity:
        return 0.0, amount
    return 0.0, 0.0


def own_scores(factors: Iterable[Factor], weights: ScoringWeights) -> Tuple[float, float]:
    risk = 0.0
    opportunity = 0.0
    for factor in factors:
        r, o = factor_contribution(factor, weights)
        risk += r
        opportunity += o
    return risk, opportunity


def score_node(
    factors: Iterable[Factor],
    parent_risk: float,
    parent_opportunity: float,
    weights: ScoringWeights,
) -> Tuple[float, float]:
    """
    Scores a child from its new factors and its parent's scores.

    Returns:
        (risk_score, opportunity_score), both in [0, 100]; a disabled
        analysis always scores 0
    """
    risk, opportunity = own_scores(factors, weights)
    risk_score = clip_score(risk + weights.decay * parent_risk) if weights.include_risk else 0.0
    opportunity_score = (
        clip_score(opportunity + weights.decay * parent_opportunity)
        if weights.include_opportunity else 0.0
    )
    return risk_score, opportunity_score


def root_scores(seed_context: Mapping, weights: ScoringWeights) -> Tuple[float, float]:
    """Baseline scores for the synthesized root, read from the extract's seed context."""
    risk = clip_score(float(seed_context.get("risk_baseline", 0.0))) if weights.include_risk else 0.0
    opportunity = (
        clip_score(float(seed_context.get("opportunity_baseline", 0.0)))
        if weights.include_opportunity else 0.0
    )
    return risk, opportunity
