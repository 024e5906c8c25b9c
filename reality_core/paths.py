"""
Path extraction and outcome classification.

Paths are derived data: a depth-first walk in child-insertion order over a
finished tree, so running the extractor twice on the same tree yields the
same paths in the same order.
"""

from typing import List, Optional, Tuple

from .config import ClassificationThresholds
from .models import Node, OutcomeType, Path, Tree


def classify_outcome(
    risk_score: float,
    opportunity_score: float,
    thresholds: Optional[ClassificationThresholds] = None,
) -> OutcomeType:
    """
    Labels an outcome from its final scores.

    Rules are checked in order: both scores significant -> mixed;
    opportunity ahead by more than the margin -> positive; risk ahead by
    more than the margin -> negative; both negligible -> unknown;
    otherwise neutral.
    """
    t = thresholds or ClassificationThresholds()
    if risk_score > t.significant and opportunity_score > t.significant:
        return OutcomeType.MIXED
    if opportunity_score - risk_score > t.margin:
        return OutcomeType.POSITIVE
    if risk_score - opportunity_score > t.margin:
        return OutcomeType.NEGATIVE
    if risk_score < t.negligible and opportunity_score < t.negligible:
        return OutcomeType.UNKNOWN
    return OutcomeType.NEUTRAL


def _build_path(nodes: List[Node], thresholds: Optional[ClassificationThresholds]) -> Path:
    terminal = nodes[-1]
    risks = [n.risk_score for n in nodes]
    opportunities = [n.opportunity_score for n in nodes]
    return Path(
        id=f"path-{terminal.id}",
        node_ids=tuple(n.id for n in nodes),
        outcome_type=classify_outcome(terminal.risk_score, terminal.opportunity_score, thresholds),
        cumulative_probability=terminal.cumulative_probability,
        risk_score=terminal.risk_score,
        opportunity_score=terminal.opportunity_score,
        avg_risk_score=sum(risks) / len(risks),
        avg_opportunity_score=sum(opportunities) / len(opportunities),
        max_risk_score=max(risks),
        max_opportunity_score=max(opportunities),
        depth=terminal.depth,
        path_index=terminal.path_index,
        label=f"Path to: {terminal.label}",
    )


def extract_paths(
    tree: Tree,
    thresholds: Optional[ClassificationThresholds] = None,
) -> Tuple[Path, ...]:
    """
    Enumerates every root-to-outcome path.

    Args:
        tree: Finished tree
        thresholds: Classification thresholds (documented defaults if None)

    Returns:
        Paths in depth-first, child-insertion order
    """
    paths: List[Path] = []
    root = tree.root
    if not root.child_ids:
        return ()

    # Iterative DFS; children are pushed reversed so the first child is visited first
    stack: List[Tuple[Node, List[Node]]] = [(root, [root])]
    while stack:
        node, trail = stack.pop()
        if not node.child_ids:
            paths.append(_build_path(trail, thresholds))
            continue
        for child in reversed(tree.children(node.id)):
            stack.append((child, trail + [child]))
    return tuple(paths)
