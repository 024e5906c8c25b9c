"""
Metrics for analyzing outcome trees.

Numeric helpers shared by the tree builder and the analysis engine:

- Entropy: Measure of uncertainty in the probability mass at a depth
- Branching factor: Effective number of branches (perplexity)
- Pearson correlation between two score series
- Quantile buckets for coarse low/medium/high impact labels
"""

from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .models import DepthStats, Level, Node


def calculate_entropy(probabilities: List[float]) -> float:
    """
    Calculates Shannon entropy for a list of probabilities.

    Formula: H = -Σ p_i * log2(p_i) for all p_i > 0

    Args:
        probabilities: List of probabilities (should sum to ~1.0)

    Returns:
        Entropy value (bits)
    """
    probs = np.array(probabilities, dtype=np.float64)
    # log(0) is undefined
    probs = probs[probs > 0]

    if len(probs) == 0:
        return 0.0

    entropy = -np.sum(probs * np.log2(probs))
    return float(entropy)


def effective_branching_factor(probabilities: List[float]) -> float:
    """
    Effective number of branches at a depth level, 2^H for entropy H in bits.

    Args:
        probabilities: Normalized probabilities for nodes at a depth level

    Returns:
        Branching factor (1.0 for a single branch, n for n equal branches)
    """
    return float(np.power(2.0, calculate_entropy(probabilities)))


def calculate_depth_stats(nodes: Sequence[Node]) -> Tuple[DepthStats, ...]:
    """
    Per-depth statistics over the cumulative probability mass of a tree.

    The root level is skipped; it always holds a single node with mass 1.0.
    """
    by_depth: Dict[int, List[Node]] = defaultdict(list)
    for node in nodes:
        if node.depth > 0:
            by_depth[node.depth].append(node)

    stats = []
    for depth in sorted(by_depth):
        depth_nodes = by_depth[depth]
        mass = np.array([n.cumulative_probability for n in depth_nodes], dtype=np.float64)
        total = float(mass.sum())
        if total > 0:
            normalized = (mass / total).tolist()
            entropy = calculate_entropy(normalized)
            bf = effective_branching_factor(normalized)
        else:
            entropy, bf = 0.0, 0.0
        stats.append(DepthStats(
            depth=depth,
            entropy=entropy,
            branching_factor=bf,
            total_prob_mass=total,
            num_nodes=len(depth_nodes),
        ))
    return tuple(stats)


def pearson(xs: Sequence[float], ys: Sequence[float]) -> Optional[float]:
    """
    Pearson correlation coefficient of two equally long series.

    Returns:
        Coefficient in [-1, 1], or None when fewer than two samples exist
        or either series has zero variance
    """
    if len(xs) != len(ys):
        raise ValueError("Series must have the same length")
    if len(xs) < 2:
        return None

    x = np.asarray(xs, dtype=np.float64)
    y = np.asarray(ys, dtype=np.float64)
    dx = x - x.mean()
    dy = y - y.mean()
    denom = np.sqrt(np.sum(dx * dx) * np.sum(dy * dy))
    if denom == 0:
        return None

    r = float(np.sum(dx * dy) / denom)
    # Float noise can push |r| a hair past 1
    return round(min(1.0, max(-1.0, r)), 12)


def quantile_buckets(values: Sequence[float]) -> List[Level]:
    """
    Labels each value low/medium/high by the 1/3 and 2/3 quantiles of the set.

    Args:
        values: Magnitudes to bucket

    Returns:
        One Level per value, in input order
    """
    if len(values) == 0:
        return []
    arr = np.asarray(values, dtype=np.float64)
    low_cut, high_cut = np.quantile(arr, [1.0 / 3.0, 2.0 / 3.0])

    levels = []
    for v in arr:
        if v >= high_cut:
            levels.append(Level.HIGH)
        elif v >= low_cut:
            levels.append(Level.MEDIUM)
        else:
            levels.append(Level.LOW)
    return levels
