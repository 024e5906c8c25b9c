"""
Analysis engine.

A pure reducer over a finished Tree and its Paths. Nothing here mutates
its inputs, so ``analyze`` can be re-run on the same tree and returns an
equal report every time.
"""

import logging
from collections import OrderedDict
from typing import Dict, Optional, Sequence, Tuple

from .config import CONTRADICTION_TOLERANCE, TOP_COMPARED_PATHS, TOP_DRIVERS_LIMIT
from .metrics import pearson, quantile_buckets
from .models import (
    AnalysisReport,
    Contradiction,
    Correlation,
    Direction,
    Driver,
    Level,
    MapStats,
    NodeType,
    OutcomeShare,
    OutcomeType,
    OutcomeUniverse,
    Path,
    PathComparison,
    Recommendation,
    ScenarioSummary,
    ScoreSummary,
    Tree,
    WeightedOutcome,
)
from .scoring import ScoringWeights, factor_contribution

logger = logging.getLogger(__name__)

PROBABILITY_CONFLICT = "probability_conflict"


def outcome_distribution(paths: Sequence[Path]) -> Dict[OutcomeType, OutcomeShare]:
    """Count and fraction of paths per outcome type; every type is present."""
    counts = {outcome: 0 for outcome in OutcomeType}
    for path in paths:
        counts[path.outcome_type] += 1
    total = len(paths)
    return {
        outcome: OutcomeShare(count=count, fraction=(count / total) if total else 0.0)
        for outcome, count in counts.items()
    }


def score_summary(values: Sequence[float]) -> ScoreSummary:
    if len(values) == 0:
        return ScoreSummary(average=0.0, minimum=0.0, maximum=0.0)
    return ScoreSummary(
        average=sum(values) / len(values),
        minimum=min(values),
        maximum=max(values),
    )


def rank_drivers(
    tree: Tree,
    paths: Sequence[Path],
    weights: ScoringWeights,
    limit: int = TOP_DRIVERS_LIMIT,
) -> Tuple[Driver, ...]:
    """
    Ranks factor categories by their weighted contribution across all paths.

    A factor introduced at depth k contributes to a path ending at depth D
    with the same decay the scores use: weight × severity × decay^(D-k).
    """
    risk_totals: "OrderedDict[str, float]" = OrderedDict()
    opportunity_totals: "OrderedDict[str, float]" = OrderedDict()

    for path in paths:
        for node_id in path.node_ids[1:]:
            node = tree.get_node(node_id)
            carry = weights.decay ** (path.depth - node.depth)
            for factor in node.factors:
                risk, opportunity = factor_contribution(factor, weights)
                if risk == 0.0 and opportunity == 0.0:
                    continue
                risk_totals[factor.category] = risk_totals.get(factor.category, 0.0) + risk * carry
                opportunity_totals[factor.category] = (
                    opportunity_totals.get(factor.category, 0.0) + opportunity * carry
                )

    categories = list(risk_totals.keys())
    if not categories:
        return ()

    totals = [risk_totals[c] + opportunity_totals[c] for c in categories]
    impacts = quantile_buckets(totals)
    drivers = [
        Driver(
            category=category,
            contribution=total,
            risk_contribution=risk_totals[category],
            opportunity_contribution=opportunity_totals[category],
            direction=(
                Direction.POSITIVE
                if opportunity_totals[category] > risk_totals[category]
                else Direction.NEGATIVE
            ),
            impact=impact,
        )
        for category, total, impact in zip(categories, totals, impacts)
    ]
    # Stable: equal contributions keep first-seen order
    drivers.sort(key=lambda d: -d.contribution)
    return tuple(drivers[:limit])


def contradiction_severity(excess: float) -> Level:
    if excess < 0.05:
        return Level.LOW
    if excess < 0.15:
        return Level.MEDIUM
    return Level.HIGH


def detect_contradictions(
    tree: Tree,
    tolerance: float = CONTRADICTION_TOLERANCE,
) -> Tuple[Contradiction, ...]:
    """Flags every node whose children's edge probabilities sum past 1.0 + tolerance."""
    contradictions = []
    for node in tree.nodes:
        if not node.child_ids:
            continue
        total = sum(child.edge_probability for child in tree.children(node.id))
        excess = total - 1.0
        if excess > tolerance:
            contradictions.append(Contradiction(
                id=f"conflict-{node.id}",
                type=PROBABILITY_CONFLICT,
                node_id=node.id,
                description=(
                    f"Children of '{node.label}' sum to {total * 100:.1f}% probability"
                ),
                severity=contradiction_severity(excess),
                probability_sum=total,
                excess=excess,
            ))
    if contradictions:
        logger.warning("Detected %d probability conflicts", len(contradictions))
    return tuple(contradictions)


def correlation_strength(coefficient: float) -> str:
    magnitude = abs(coefficient)
    if magnitude < 0.3:
        return "weak"
    if magnitude < 0.7:
        return "moderate"
    return "strong"


def detect_correlations(tree: Tree) -> Tuple[Correlation, ...]:
    """Pearson correlation between risk and opportunity over outcome nodes."""
    outcomes = tree.outcome_nodes()
    risks = [n.risk_score for n in outcomes]
    opportunities = [n.opportunity_score for n in outcomes]
    coefficient = pearson(risks, opportunities)
    if coefficient is None:
        return ()

    strength = correlation_strength(coefficient)
    if coefficient > 0:
        direction = Direction.POSITIVE
        description = f"Risk and opportunity rise together ({strength})"
    elif coefficient < 0:
        direction = Direction.NEGATIVE
        description = f"Risk and opportunity move in opposite directions ({strength})"
    else:
        direction = Direction.NEUTRAL
        description = "Risk and opportunity show no linear relationship"

    return (Correlation(
        id="risk-opportunity",
        factor_a="risk_score",
        factor_b="opportunity_score",
        coefficient=coefficient,
        strength=strength,
        direction=direction,
        description=description,
        sample_size=len(outcomes),
    ),)


def _divergence_node(a: Path, b: Path) -> Optional[str]:
    last_shared = None
    for x, y in zip(a.node_ids, b.node_ids):
        if x != y:
            break
        last_shared = x
    return last_shared


def compare_paths(paths: Sequence[Path], top: int = TOP_COMPARED_PATHS) -> Tuple[PathComparison, ...]:
    """Compares consecutive pairs among the most probable paths."""
    ranked = sorted(paths, key=lambda p: -p.cumulative_probability)[:top]
    comparisons = []
    for a, b in zip(ranked, ranked[1:]):
        comparisons.append(PathComparison(
            path_a_id=a.id,
            path_b_id=b.id,
            probability_delta=a.cumulative_probability - b.cumulative_probability,
            risk_delta=a.avg_risk_score - b.avg_risk_score,
            opportunity_delta=a.avg_opportunity_score - b.avg_opportunity_score,
            divergence_node_id=_divergence_node(a, b),
        ))
    return tuple(comparisons)


def map_stats(tree: Tree) -> MapStats:
    non_root = [n for n in tree.nodes if n.node_type != NodeType.ROOT]
    all_nodes = list(tree.nodes)
    return MapStats(
        avg_probability=(
            sum(n.edge_probability for n in non_root) / len(non_root) if non_root else 0.0
        ),
        avg_risk_score=sum(n.risk_score for n in all_nodes) / len(all_nodes),
        avg_opportunity_score=sum(n.opportunity_score for n in all_nodes) / len(all_nodes),
        leaf_node_count=sum(1 for n in all_nodes if n.node_type == NodeType.OUTCOME),
        branch_node_count=sum(1 for n in all_nodes if n.node_type == NodeType.BRANCH),
    )


def risk_level(score: float) -> Level:
    if score >= 80:
        return Level.CRITICAL
    if score >= 60:
        return Level.HIGH
    if score >= 40:
        return Level.MEDIUM
    return Level.LOW


def opportunity_level(score: float) -> Level:
    if score >= 70:
        return Level.HIGH
    if score >= 40:
        return Level.MEDIUM
    return Level.LOW


def scenario_summary(path: Optional[Path]) -> Optional[ScenarioSummary]:
    if path is None:
        return None
    return ScenarioSummary(
        path_id=path.id,
        title=path.label,
        probability=path.cumulative_probability,
        risk_level=risk_level(path.max_risk_score),
        opportunity_level=opportunity_level(path.max_opportunity_score),
        node_count=len(path.node_ids),
        final_outcome=path.outcome_type,
    )


def _heatmap(tree: Tree, score) -> Dict[str, float]:
    heatmap: Dict[str, float] = {}
    for node in tree.nodes:
        value = score(node)
        if value > heatmap.get(node.label, float("-inf")):
            heatmap[node.label] = value
    return heatmap


def outcome_universe(tree: Tree, paths: Sequence[Path]) -> OutcomeUniverse:
    """
    Summarizes the whole space of outcomes.

    Paths are laid out by descending probability (stable, so ties keep path
    order) with a running cumulative probability; the percentile is that
    running total times 100. Best case is the path with the largest
    opportunity minus risk at its outcome, worst case the largest risk
    minus opportunity. Heatmaps hold the highest score seen per node label.
    """
    ranked = sorted(paths, key=lambda p: -p.cumulative_probability)
    weighted = []
    running = 0.0
    for path in ranked:
        running += path.cumulative_probability
        weighted.append(WeightedOutcome(
            path_id=path.id,
            probability=path.cumulative_probability,
            cumulative_probability=running,
            percentile=running * 100,
            outcome_type=path.outcome_type,
        ))

    best = max(paths, key=lambda p: p.opportunity_score - p.risk_score) if paths else None
    worst = max(paths, key=lambda p: p.risk_score - p.opportunity_score) if paths else None
    most_likely = ranked[0] if ranked else None

    return OutcomeUniverse(
        total_realities=len(paths),
        total_branching_nodes=sum(1 for n in tree.nodes if n.node_type == NodeType.BRANCH),
        weighted_outcomes=tuple(weighted),
        best_case=scenario_summary(best),
        worst_case=scenario_summary(worst),
        most_likely=scenario_summary(most_likely),
        risk_heatmap=_heatmap(tree, lambda n: n.risk_score),
        opportunity_heatmap=_heatmap(tree, lambda n: n.opportunity_score),
    )


def recommendations(universe: OutcomeUniverse) -> Tuple[Recommendation, ...]:
    """Rule-based actions; monitoring is always recommended."""
    recs = []
    worst = universe.worst_case
    if worst is not None and worst.risk_level == Level.CRITICAL:
        recs.append(Recommendation(
            id="rec-1",
            action="Develop contingency plans for high-risk scenarios",
            priority=Level.CRITICAL,
            category="Risk Mitigation",
            expected_impact="Reduce potential damage from worst-case outcomes",
            timeframe="Immediate",
            resources=("Crisis team", "Legal counsel"),
        ))
    best = universe.best_case
    if best is not None and best.opportunity_level == Level.HIGH:
        recs.append(Recommendation(
            id="rec-2",
            action="Prepare to capitalize on favorable outcomes",
            priority=Level.HIGH,
            category="Opportunity Capture",
            expected_impact="Maximize value from positive scenarios",
            timeframe="Short-term",
            resources=("Strategy team", "Business development"),
        ))
    recs.append(Recommendation(
        id="rec-3",
        action="Monitor key decision points for early warning signals",
        priority=Level.MEDIUM,
        category="Monitoring",
        expected_impact="Enable proactive response to scenario changes",
        timeframe="Ongoing",
        resources=("Analytics team",),
    ))
    return tuple(recs)


def _first_max(paths: Sequence[Path], key) -> Optional[str]:
    if not paths:
        return None
    # max() keeps the first of equal maxima
    return max(paths, key=key).id


def analyze(
    tree: Tree,
    paths: Sequence[Path],
    weights: Optional[ScoringWeights] = None,
    tolerance: float = CONTRADICTION_TOLERANCE,
    top_drivers_limit: int = TOP_DRIVERS_LIMIT,
) -> AnalysisReport:
    """
    Builds the analysis report for a tree and its paths.

    Args:
        tree: Finished tree
        paths: Paths extracted from the tree
        weights: Scoring weights the tree was built with (driver ranking)
        tolerance: Allowed excess over 1.0 for sibling probability sums
        top_drivers_limit: Maximum number of drivers to report

    Returns:
        AnalysisReport without an executive summary
    """
    weights = weights or ScoringWeights()
    outcomes = tree.outcome_nodes()
    universe = outcome_universe(tree, paths)

    return AnalysisReport(
        outcome_distribution=outcome_distribution(paths),
        risk_summary=score_summary([n.risk_score for n in outcomes]),
        opportunity_summary=score_summary([n.opportunity_score for n in outcomes]),
        top_drivers=rank_drivers(tree, paths, weights, limit=top_drivers_limit),
        contradictions=detect_contradictions(tree, tolerance=tolerance),
        correlations=detect_correlations(tree),
        path_comparisons=compare_paths(paths),
        stats=map_stats(tree),
        most_likely_path_id=_first_max(paths, lambda p: p.cumulative_probability),
        highest_risk_path_id=_first_max(paths, lambda p: p.risk_score),
        highest_opportunity_path_id=_first_max(paths, lambda p: p.opportunity_score),
        universe=universe,
        recommendations=recommendations(universe),
    )
