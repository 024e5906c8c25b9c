"""
Probability models for edge estimation.

Every strategy turns the historical evidence behind one candidate
transition into a probability in (0, 1]. The strategies are a closed set
dispatched by ``ProbabilityModel``; they only read their inputs, so they
are safe to call from parallel expansion.

Monte Carlo estimation never touches global random state. Each node gets
its own generator derived from the run seed and the node's position in
the tree, so parallel and sequential expansion draw identical numbers.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .config import MONTE_CARLO_TRIALS, PROBABILITY_FLOOR, RECENCY_DECAY
from .models import ProbabilityModel

DEFAULT_PRIOR: Tuple[float, float] = (1.0, 1.0)


@dataclass(frozen=True)
class EstimationContext:
    """Evidence for a single candidate transition."""
    frequencies: Tuple[float, ...]      # measured observations, oldest first
    branching_factor: int
    prior: Tuple[float, float] = DEFAULT_PRIOR
    rng: Optional[np.random.Generator] = None
    recency_decay: float = RECENCY_DECAY
    trials: int = MONTE_CARLO_TRIALS

    @property
    def uniform_prior(self) -> float:
        return 1.0 / max(1, self.branching_factor)


def node_rng(seed: Optional[int], node_path: Sequence[int]) -> np.random.Generator:
    """
    Creates the random generator owned by one node.

    Args:
        seed: Run seed (None is treated as 0)
        node_path: Child positions from the root to the node, () for the root

    Returns:
        Independent generator whose stream depends only on (seed, node_path)
    """
    sequence = np.random.SeedSequence(
        entropy=0 if seed is None else int(seed),
        spawn_key=tuple(int(i) for i in node_path),
    )
    return np.random.Generator(np.random.PCG64(sequence))


def recency_weights(n: int, decay: float) -> np.ndarray:
    """Weights for n observations in chronological order; the newest weighs 1."""
    exponents = np.arange(n - 1, -1, -1, dtype=np.float64)
    return np.power(decay, exponents)


def estimate_weighted_average(ctx: EstimationContext) -> float:
    """p = Σ(w_i × f_i) / Σ(w_i), falling back to 1 / branching_factor."""
    if len(ctx.frequencies) == 0:
        return ctx.uniform_prior

    freqs = np.asarray(ctx.frequencies, dtype=np.float64)
    weights = recency_weights(len(freqs), ctx.recency_decay)
    total_weight = weights.sum()
    if total_weight <= 0:
        return ctx.uniform_prior
    return float(np.dot(weights, freqs) / total_weight)


def estimate_bayesian(ctx: EstimationContext) -> float:
    """Posterior mean of a Beta(α, β) updated with fractional observations."""
    alpha, beta = ctx.prior
    for f in ctx.frequencies:
        alpha += f
        beta += 1.0 - f
    return float(alpha / (alpha + beta))


def estimate_monte_carlo(ctx: EstimationContext) -> float:
    """
    Fraction of seeded trials that hit the transition.

    Each trial bootstraps one historical observation and draws a Bernoulli
    outcome with that observation's frequency. Without evidence the trials
    run against the uniform prior.
    """
    if ctx.rng is None:
        raise ValueError("Monte Carlo estimation requires a seeded generator")
    trials = max(1, int(ctx.trials))

    if len(ctx.frequencies) == 0:
        hit_rates = np.full(trials, ctx.uniform_prior)
    else:
        freqs = np.asarray(ctx.frequencies, dtype=np.float64)
        picks = ctx.rng.integers(0, len(freqs), size=trials)
        hit_rates = freqs[picks]

    hits = ctx.rng.random(trials) < hit_rates
    return float(np.count_nonzero(hits)) / trials


ESTIMATORS: Dict[ProbabilityModel, Callable[[EstimationContext], float]] = {
    ProbabilityModel.WEIGHTED_AVERAGE: estimate_weighted_average,
    ProbabilityModel.BAYESIAN: estimate_bayesian,
    ProbabilityModel.MONTE_CARLO: estimate_monte_carlo,
}


def estimate(model: ProbabilityModel, ctx: EstimationContext) -> float:
    """Runs the selected strategy and clips the result into (0, 1]."""
    p = ESTIMATORS[ProbabilityModel(model)](ctx)
    return float(min(1.0, max(PROBABILITY_FLOOR, p)))


def renormalize(probabilities: Sequence[float]) -> List[float]:
    """Scales sibling probabilities down so they sum to at most 1.0."""
    total = float(sum(probabilities))
    if total <= 1.0:
        return [float(p) for p in probabilities]
    return [float(p) / total for p in probabilities]


def estimate_siblings(
    model: ProbabilityModel,
    contexts: Sequence[EstimationContext],
    renormalize_siblings: bool = True,
) -> List[float]:
    """
    Estimates all candidate transitions of one node.

    Contexts are evaluated in order, so a shared Monte Carlo generator is
    consumed the same way on every run.

    Args:
        model: Strategy to use
        contexts: One context per candidate, in candidate order
        renormalize_siblings: Scale the set down when it sums above 1.0

    Returns:
        List of probabilities in candidate order
    """
    probs = [estimate(model, ctx) for ctx in contexts]
    if renormalize_siblings:
        probs = renormalize(probs)
    return probs
