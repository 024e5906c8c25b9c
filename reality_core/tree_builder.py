"""
Outcome Tree Expansion - Main logic for tree generation.

This module implements the core algorithm for building a branching
outcome tree. Expansion runs breadth first from a synthesized root: at
each node, candidate transitions are derived from the extract, their
probabilities are estimated with the configured probability model, and
the surviving candidates become child nodes scored for risk and
opportunity.

Candidates are pruned when their cumulative probability falls below
``min_probability``; pruned candidates do not count toward the branching
cap. Nodes of one depth level only read their parent's finished values,
so a level can be expanded in parallel. Children are committed in
frontier order afterwards, which keeps ids and ordering identical to a
sequential run.
"""

import logging
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .config import (
    DEFAULT_ROOT_LABEL,
    GenerationConfig,
    Settings,
    parse_config,
    settings as default_settings,
)
from .errors import GenerationCancelled, GenerationTimeout, NoSourceData
from .metrics import calculate_depth_stats
from .models import (
    Edge,
    Extract,
    Factor,
    Node,
    NodeType,
    ProbabilityModel,
    Transition,
    Tree,
    TreeMetadata,
)
from .probability import DEFAULT_PRIOR, EstimationContext, estimate_siblings, node_rng
from .scoring import ScoringWeights, root_scores, score_node

logger = logging.getLogger(__name__)

ROOT_NODE_ID = "root"


@dataclass(frozen=True)
class Candidate:
    """A deduplicated transition a node may expand into."""
    to_label: str
    signature_key: str
    observations: Tuple[Transition, ...]
    factors: Tuple[Factor, ...]
    label: Optional[str] = None

    @property
    def frequencies(self) -> Tuple[float, ...]:
        return tuple(
            t.observed_frequency for t in self.observations
            if t.observed_frequency is not None
        )


@dataclass(frozen=True)
class _ChildSpec:
    candidate: Candidate
    edge_probability: float
    cumulative_probability: float
    risk_score: float
    opportunity_score: float


@dataclass
class _Draft:
    """Mutable working record for a node while the tree is being built."""
    id: str
    parent_id: Optional[str]
    depth: int
    label: str
    edge_probability: float
    cumulative_probability: float
    risk_score: float
    opportunity_score: float
    factors: Tuple[Factor, ...]
    position: Tuple[int, ...]
    generation_order: int
    edge_label: Optional[str] = None
    child_ids: List[str] = field(default_factory=list)

    @property
    def path_index(self) -> str:
        return ".".join(["0"] + [str(i) for i in self.position])


def _merge_factors(observations: List[Transition]) -> Tuple[Factor, ...]:
    """Union of factors keyed by (category, direction), keeping the highest severity."""
    merged: "OrderedDict[Tuple[str, str], Factor]" = OrderedDict()
    for transition in observations:
        for factor in transition.factors:
            key = (factor.category, factor.direction.value)
            current = merged.get(key)
            if current is None or factor.severity > current.severity:
                merged[key] = factor
    return tuple(merged.values())


def _group_candidates(transitions: List[Transition]) -> List[Candidate]:
    """Groups transitions by target label in first-appearance order."""
    groups: "OrderedDict[str, List[Transition]]" = OrderedDict()
    for transition in transitions:
        groups.setdefault(transition.to_label, []).append(transition)

    candidates = []
    for to_label, observations in groups.items():
        first = observations[0]
        edge_label = next((t.label for t in observations if t.label), None)
        candidates.append(Candidate(
            to_label=to_label,
            signature_key=first.signature_key,
            observations=tuple(observations),
            factors=_merge_factors(observations),
            label=edge_label,
        ))
    return candidates


class CandidateIndex:
    """Precomputed candidate lists for every state label in an extract."""

    def __init__(self, extract: Extract, root_label: str):
        by_source: "OrderedDict[str, List[Transition]]" = OrderedDict()
        for transition in extract.transitions:
            by_source.setdefault(transition.from_label, []).append(transition)

        self._by_source: Dict[str, List[Candidate]] = {
            label: _group_candidates(transitions) for label, transitions in by_source.items()
        }
        self.root_label = root_label
        # A root label that no transition starts from branches on the whole extract
        if root_label in self._by_source:
            self._root = self._by_source[root_label]
        else:
            self._root = _group_candidates(list(extract.transitions))

    def for_node(self, label: str, is_root: bool) -> List[Candidate]:
        if is_root:
            return self._root
        return self._by_source.get(label, [])


def _expand_node(
    parent: _Draft,
    index: CandidateIndex,
    config: GenerationConfig,
    weights: ScoringWeights,
    engine_settings: Settings,
) -> List[_ChildSpec]:
    """
    Computes the surviving children of one node.

    Only reads the parent's finalized values, so calls for different nodes
    are independent.
    """
    candidates = index.for_node(parent.label, is_root=parent.parent_id is None)
    if not candidates:
        return []

    rng = None
    if config.probability_model == ProbabilityModel.MONTE_CARLO:
        rng = node_rng(config.seed, parent.position)

    contexts = [
        EstimationContext(
            frequencies=c.frequencies,
            branching_factor=config.branching_factor,
            prior=tuple(config.bayesian_priors.get(c.signature_key, DEFAULT_PRIOR)),
            rng=rng,
            recency_decay=engine_settings.RECENCY_DECAY,
            trials=engine_settings.MONTE_CARLO_TRIALS,
        )
        for c in candidates
    ]
    probs = estimate_siblings(
        config.probability_model,
        contexts,
        renormalize_siblings=config.renormalize_siblings,
    )

    # Stable sort: equal probabilities keep extract order
    ranked = sorted(range(len(candidates)), key=lambda i: -probs[i])

    children: List[_ChildSpec] = []
    for i in ranked:
        if len(children) >= config.branching_factor:
            break
        cumulative = parent.cumulative_probability * probs[i]
        if cumulative < config.min_probability:
            continue
        risk, opportunity = score_node(
            candidates[i].factors,
            parent.risk_score,
            parent.opportunity_score,
            weights,
        )
        children.append(_ChildSpec(
            candidate=candidates[i],
            edge_probability=probs[i],
            cumulative_probability=cumulative,
            risk_score=risk,
            opportunity_score=opportunity,
        ))
    return children


def _finalize(drafts: List[_Draft], config: GenerationConfig, elapsed_ms: float) -> Tree:
    nodes: List[Node] = []
    edges: List[Edge] = []
    for draft in drafts:
        if draft.parent_id is None:
            node_type = NodeType.ROOT
        elif draft.child_ids:
            node_type = NodeType.BRANCH
        else:
            node_type = NodeType.OUTCOME

        nodes.append(Node(
            id=draft.id,
            parent_id=draft.parent_id,
            depth=draft.depth,
            label=draft.label,
            node_type=node_type,
            edge_probability=draft.edge_probability,
            cumulative_probability=draft.cumulative_probability,
            risk_score=draft.risk_score,
            opportunity_score=draft.opportunity_score,
            factors=draft.factors,
            child_ids=tuple(draft.child_ids),
            path_index=draft.path_index,
            generation_order=draft.generation_order,
        ))
        if draft.parent_id is not None:
            edges.append(Edge(
                source_id=draft.parent_id,
                target_id=draft.id,
                probability=draft.edge_probability,
                label=draft.edge_label,
            ))

    leaf_ids = tuple(n.id for n in nodes if n.node_type == NodeType.OUTCOME)
    metadata = TreeMetadata(
        total_nodes=len(nodes),
        total_edges=len(edges),
        total_paths=len(leaf_ids),
        max_depth_reached=max(n.depth for n in nodes),
        root_node_id=ROOT_NODE_ID,
        leaf_node_ids=leaf_ids,
        depth_stats=calculate_depth_stats(nodes),
        generated_at=datetime.now(timezone.utc).isoformat(),
        generation_time_ms=elapsed_ms,
    )
    return Tree(
        nodes=tuple(nodes),
        edges=tuple(edges),
        metadata=metadata,
        parameters=config.model_dump(mode="json"),
    )


def build_tree(
    extract: Extract,
    config: Any = None,
    cancel_event: Optional[Any] = None,  # threading.Event or None
    engine_settings: Optional[Settings] = None,
) -> Tree:
    """
    Builds a branching outcome tree from an extract.

    Args:
        extract: Historical transitions and seed context
        config: GenerationConfig or a mapping of its fields
        cancel_event: Optional event; when set, expansion stops
        engine_settings: Budgets and model settings (module settings if None)

    Returns:
        Tree with every node typed, scored and linked

    Raises:
        NoSourceData: If the extract has no transitions
        InvalidConfiguration: If the configuration is out of range
        GenerationTimeout: If the node or wall-time budget is exceeded
        GenerationCancelled: If cancel_event is set during expansion
    """
    config = parse_config(config)
    engine_settings = engine_settings or default_settings

    if extract.is_empty:
        raise NoSourceData("Extract contains no transitions")

    started = time.monotonic()
    deadline = started + engine_settings.MAX_GENERATION_SECONDS
    max_nodes = engine_settings.MAX_NODES

    def check_budget(node_count: int) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise GenerationCancelled("Generation cancelled")
        if node_count > max_nodes:
            raise GenerationTimeout(f"Tree exceeded node budget of {max_nodes}")
        if time.monotonic() > deadline:
            raise GenerationTimeout(
                f"Tree exceeded time budget of {engine_settings.MAX_GENERATION_SECONDS}s"
            )

    weights = ScoringWeights.from_config(config, engine_settings)
    root_label = str(extract.seed_context.get("initial_state") or DEFAULT_ROOT_LABEL)
    index = CandidateIndex(extract, root_label)

    root_risk, root_opportunity = root_scores(extract.seed_context, weights)
    root = _Draft(
        id=ROOT_NODE_ID,
        parent_id=None,
        depth=0,
        label=root_label,
        edge_probability=1.0,
        cumulative_probability=1.0,
        risk_score=root_risk,
        opportunity_score=root_opportunity,
        factors=(),
        position=(),
        generation_order=0,
    )

    drafts: List[_Draft] = [root]
    current_frontier: List[_Draft] = [root]
    node_counter = 0
    workers = max(1, engine_settings.PARALLEL_WORKERS)

    logger.info(
        "Building tree: model=%s max_depth=%d branching_factor=%d min_probability=%.3f transitions=%d",
        config.probability_model.value,
        config.max_depth,
        config.branching_factor,
        config.min_probability,
        len(extract.transitions),
    )

    executor = ThreadPoolExecutor(max_workers=workers) if workers > 1 else None
    try:
        for depth in range(1, config.max_depth + 1):
            if len(current_frontier) == 0:
                break
            check_budget(len(drafts))

            if executor is not None:
                futures = [
                    executor.submit(_expand_node, node, index, config, weights, engine_settings)
                    for node in current_frontier
                ]
                expansions = [f.result() for f in futures]
            else:
                expansions = []
                for node in current_frontier:
                    check_budget(len(drafts))
                    expansions.append(_expand_node(node, index, config, weights, engine_settings))

            next_frontier: List[_Draft] = []
            for parent, children in zip(current_frontier, expansions):
                for position, spec in enumerate(children):
                    node_counter += 1
                    child = _Draft(
                        id=f"d{depth}_n{node_counter}",
                        parent_id=parent.id,
                        depth=depth,
                        label=spec.candidate.to_label,
                        edge_probability=spec.edge_probability,
                        cumulative_probability=spec.cumulative_probability,
                        risk_score=spec.risk_score,
                        opportunity_score=spec.opportunity_score,
                        factors=spec.candidate.factors,
                        position=parent.position + (position,),
                        generation_order=node_counter,
                        edge_label=spec.candidate.label,
                    )
                    parent.child_ids.append(child.id)
                    drafts.append(child)
                    next_frontier.append(child)
                check_budget(len(drafts))

            logger.debug("Depth %d: %d nodes", depth, len(next_frontier))
            current_frontier = next_frontier
    finally:
        if executor is not None:
            executor.shutdown(wait=True, cancel_futures=True)

    elapsed_ms = (time.monotonic() - started) * 1000.0
    tree = _finalize(drafts, config, elapsed_ms)
    logger.info(
        "Built tree: %d nodes, %d edges, %d outcomes, depth %d",
        tree.metadata.total_nodes,
        tree.metadata.total_edges,
        tree.metadata.total_paths,
        tree.metadata.max_depth_reached,
    )
    return tree
