"""Shared fixtures for the reality map tests."""

from typing import Any, Dict, List, Sequence, Tuple

import pytest

from reality_core.config import Settings
from reality_core.models import (
    Extract,
    Node,
    NodeType,
    Edge,
    Tree,
    TreeMetadata,
)


def two_level_payload() -> Dict[str, Any]:
    """Two decision levels: the current state splits, and each branch splits again."""
    return {
        "seed_context": {"initial_state": "Current State"},
        "transitions": [
            {
                "from_label": "Current State",
                "to_label": "Expansion",
                "observed_frequency": 0.6,
                "factors": [{"category": "market", "direction": "positive", "severity": 40}],
            },
            {
                "from_label": "Current State",
                "to_label": "Contraction",
                "observed_frequency": 0.3,
                "factors": [{"category": "cost", "direction": "negative", "severity": 50}],
            },
            {
                "from_label": "Expansion",
                "to_label": "Growth",
                "observed_frequency": 0.7,
                "factors": [{"category": "demand", "direction": "positive", "severity": 30}],
            },
            {
                "from_label": "Expansion",
                "to_label": "Stall",
                "observed_frequency": 0.2,
                "factors": [{"category": "supply", "direction": "negative", "severity": 20}],
            },
            {
                "from_label": "Contraction",
                "to_label": "Recovery",
                "observed_frequency": 0.5,
            },
            {
                "from_label": "Contraction",
                "to_label": "Collapse",
                "observed_frequency": 0.4,
                "factors": [{"category": "cost", "direction": "negative", "severity": 60}],
            },
        ],
    }


@pytest.fixture
def extract_payload() -> Dict[str, Any]:
    return two_level_payload()


@pytest.fixture
def extract() -> Extract:
    return Extract.from_dict(two_level_payload())


@pytest.fixture
def base_config() -> Dict[str, Any]:
    return {"max_depth": 2, "branching_factor": 2, "min_probability": 0.0}


@pytest.fixture
def engine_settings() -> Settings:
    return Settings(RETRY_BASE_DELAY=0.0, RETRY_MAX_DELAY=0.0)


def synthetic_tree(children: Sequence[Tuple[float, float, float]]) -> Tree:
    """
    Root with one outcome child per (edge_probability, risk, opportunity).
    """
    nodes: List[Node] = []
    edges: List[Edge] = []
    child_ids = tuple(f"d1_n{i + 1}" for i in range(len(children)))
    nodes.append(Node(
        id="root",
        parent_id=None,
        depth=0,
        label="Current State",
        node_type=NodeType.ROOT,
        edge_probability=1.0,
        cumulative_probability=1.0,
        risk_score=0.0,
        opportunity_score=0.0,
        child_ids=child_ids,
    ))
    for i, (prob, risk, opportunity) in enumerate(children):
        nodes.append(Node(
            id=child_ids[i],
            parent_id="root",
            depth=1,
            label=f"Outcome {i}",
            node_type=NodeType.OUTCOME,
            edge_probability=prob,
            cumulative_probability=prob,
            risk_score=risk,
            opportunity_score=opportunity,
            path_index=f"0.{i}",
            generation_order=i + 1,
        ))
        edges.append(Edge(source_id="root", target_id=child_ids[i], probability=prob))

    metadata = TreeMetadata(
        total_nodes=len(nodes),
        total_edges=len(edges),
        total_paths=len(children),
        max_depth_reached=1 if children else 0,
        root_node_id="root",
        leaf_node_ids=child_ids,
        depth_stats=(),
        generated_at="2024-01-01T00:00:00+00:00",
        generation_time_ms=0.0,
    )
    return Tree(nodes=tuple(nodes), edges=tuple(edges), metadata=metadata)
