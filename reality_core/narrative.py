"""
Narrative attachment.

The narrative writer is an external text service modelled as a callable
``(context) -> str``. It runs after every numeric decision is made and a
failing writer only leaves the affected summary empty.
"""

import logging
from dataclasses import replace
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from .errors import NarrativeUnavailable
from .models import AnalysisReport, NarrativeStyle, Node, Path, Tree

logger = logging.getLogger(__name__)

NarrativeWriter = Callable[[Dict[str, Any]], str]

STYLE_GUIDES = {
    NarrativeStyle.EXECUTIVE: "Use executive-level language. Focus on strategic implications and decision points.",
    NarrativeStyle.DETAILED: "Provide detailed analysis with supporting evidence and reasoning.",
    NarrativeStyle.TECHNICAL: "Use technical language. Focus on operational details and metrics.",
    NarrativeStyle.STRATEGIC: "Focus on long-term strategic positioning and competitive advantage.",
}


def node_context(node: Node, parent: Optional[Node], style: NarrativeStyle) -> Dict[str, Any]:
    return {
        "kind": "node",
        "style": style.value,
        "style_guide": STYLE_GUIDES[style],
        "node_id": node.id,
        "label": node.label,
        "node_type": node.node_type.value,
        "depth": node.depth,
        "probability": node.edge_probability,
        "cumulative_probability": node.cumulative_probability,
        "risk_score": node.risk_score,
        "opportunity_score": node.opportunity_score,
        "drivers": list(node.factor_tags),
        "previous_state": parent.label if parent is not None else None,
    }


def path_context(path: Path, tree: Tree, style: NarrativeStyle) -> Dict[str, Any]:
    return {
        "kind": "path",
        "style": style.value,
        "style_guide": STYLE_GUIDES[style],
        "path_id": path.id,
        "title": path.label,
        "states": [tree.get_node(node_id).label for node_id in path.node_ids],
        "outcome_type": path.outcome_type.value,
        "cumulative_probability": path.cumulative_probability,
        "risk_score": path.risk_score,
        "opportunity_score": path.opportunity_score,
    }


def report_context(report: AnalysisReport, tree: Tree, paths: Sequence[Path], style: NarrativeStyle) -> Dict[str, Any]:
    probabilities = [p.cumulative_probability for p in paths]
    return {
        "kind": "report",
        "style": style.value,
        "style_guide": STYLE_GUIDES[style],
        "total_outcomes": len(paths),
        "decision_points": report.stats.branch_node_count,
        "probability_range": [min(probabilities), max(probabilities)] if probabilities else None,
        "outcome_distribution": {k.value: v.count for k, v in report.outcome_distribution.items()},
        "top_drivers": [d.category for d in report.top_drivers],
        "contradictions": len(report.contradictions),
    }


def fallback_executive_summary(report: AnalysisReport, paths: Sequence[Path]) -> str:
    return (
        f"Analysis identified {len(paths)} possible outcomes across "
        f"{report.stats.branch_node_count} decision points. Review recommended."
    )


def write_summary(writer: Optional[NarrativeWriter], context: Dict[str, Any]) -> Optional[str]:
    """Calls the writer, returning None when it is missing or fails."""
    if writer is None:
        return None
    try:
        text = writer(context)
        if not isinstance(text, str) or not text.strip():
            raise NarrativeUnavailable(f"Empty narrative for {context['kind']}")
        return text
    except Exception as e:
        logger.warning("Narrative unavailable for %s: %s", context.get("kind"), e)
        return None


def attach_narratives(
    tree: Tree,
    paths: Sequence[Path],
    report: AnalysisReport,
    writer: Optional[NarrativeWriter],
    style: NarrativeStyle = NarrativeStyle.EXECUTIVE,
) -> Tuple[Tree, Tuple[Path, ...], AnalysisReport]:
    """
    Returns copies of tree, paths and report with summaries filled in.

    The report always gets an executive summary; the fixed fallback text
    is used when the writer cannot produce one.
    """
    style = NarrativeStyle(style)
    if writer is not None:
        nodes = []
        for node in tree.nodes:
            parent = tree.get_node(node.parent_id) if node.parent_id else None
            summary = write_summary(writer, node_context(node, parent, style))
            nodes.append(replace(node, summary=summary))
        tree = Tree(
            nodes=tuple(nodes),
            edges=tree.edges,
            metadata=tree.metadata,
            parameters=tree.parameters,
        )
        paths = tuple(
            replace(path, summary=write_summary(writer, path_context(path, tree, style)))
            for path in paths
        )

    executive_summary = write_summary(writer, report_context(report, tree, paths, style))
    if executive_summary is None:
        executive_summary = fallback_executive_summary(report, paths)
    return tree, tuple(paths), replace(report, executive_summary=executive_summary)
