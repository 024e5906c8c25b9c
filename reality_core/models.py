"""
Data classes to represent the outcome tree and its analysis.

Everything produced by a generation run is frozen: a Tree, its Paths and
its AnalysisReport are published together and never modified afterwards.
"""

import hashlib
import json
import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import InvalidConfiguration


class NodeType(str, Enum):
    ROOT = "root"
    BRANCH = "branch"
    OUTCOME = "outcome"


class OutcomeType(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"
    MIXED = "mixed"
    UNKNOWN = "unknown"


class Direction(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class Level(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ProbabilityModel(str, Enum):
    WEIGHTED_AVERAGE = "weighted_average"
    BAYESIAN = "bayesian"
    MONTE_CARLO = "monte_carlo"


class NarrativeStyle(str, Enum):
    EXECUTIVE = "executive"
    DETAILED = "detailed"
    TECHNICAL = "technical"
    STRATEGIC = "strategic"


class GenerationStatus(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Extract (input boundary)
# ---------------------------------------------------------------------------

# Upstream producers send either snake_case or camelCase keys
FIELD_ALIASES = {
    "from_label": "fromLabel",
    "to_label": "toLabel",
    "observed_frequency": "observedFrequency",
    "seed_context": "seedContext",
    "initial_state": "initialState",
    "risk_baseline": "riskBaseline",
    "opportunity_baseline": "opportunityBaseline",
}

SEED_BASELINE_KEYS = ("risk_baseline", "opportunity_baseline")


def _read(data: Mapping[str, Any], key: str, default: Any = None) -> Any:
    if key in data:
        return data[key]
    return data.get(FIELD_ALIASES.get(key, key), default)


def _normalize_seed_context(seed_context: Mapping[str, Any]) -> Dict[str, Any]:
    normalized = dict(seed_context)
    for key, alias in FIELD_ALIASES.items():
        if alias in normalized and key not in normalized:
            normalized[key] = normalized.pop(alias)

    for key in SEED_BASELINE_KEYS:
        if normalized.get(key) is None:
            normalized.pop(key, None)
            continue
        value = normalized[key]
        if isinstance(value, bool):
            raise InvalidConfiguration(f"seed_context.{key} must be a number, got {value!r}")
        try:
            value = float(value)
        except (TypeError, ValueError) as e:
            raise InvalidConfiguration(f"seed_context.{key} must be a number: {e}") from e
        if not math.isfinite(value):
            raise InvalidConfiguration(f"seed_context.{key} must be finite, got {value}")
        normalized[key] = value
    return normalized


@dataclass(frozen=True)
class Factor:
    """A qualitative driver attached to a transition."""
    category: str
    direction: Direction
    severity: float

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Factor":
        try:
            category = str(data["category"]).strip()
            direction = Direction(data.get("direction", Direction.NEUTRAL.value))
            severity = float(data.get("severity", 0.0))
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidConfiguration(f"Malformed factor {dict(data)!r}: {e}") from e
        if not category:
            raise InvalidConfiguration("Factor category cannot be empty")
        if not 0.0 <= severity <= 100.0:
            raise InvalidConfiguration(f"Factor severity must be in [0, 100], got {severity}")
        return cls(category=category, direction=direction, severity=severity)


@dataclass(frozen=True)
class Transition:
    """One observed state change from an upstream simulation run."""
    from_label: str
    to_label: str
    observed_frequency: Optional[float]
    factors: Tuple[Factor, ...] = ()
    label: Optional[str] = None

    @property
    def signature(self) -> Tuple[str, str]:
        return (self.from_label, self.to_label)

    @property
    def signature_key(self) -> str:
        return f"{self.from_label}->{self.to_label}"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Transition":
        from_label = _read(data, "from_label")
        to_label = _read(data, "to_label")
        if from_label is None or to_label is None:
            missing = "from_label" if from_label is None else "to_label"
            raise InvalidConfiguration(f"Transition is missing field '{missing}'")
        from_label = str(from_label).strip()
        to_label = str(to_label).strip()
        if not from_label or not to_label:
            raise InvalidConfiguration("Transition labels cannot be empty")

        frequency = _read(data, "observed_frequency")
        if frequency is not None:
            try:
                frequency = float(frequency)
            except (TypeError, ValueError) as e:
                raise InvalidConfiguration(f"observed_frequency must be a number: {e}") from e
            if not 0.0 <= frequency <= 1.0:
                raise InvalidConfiguration(
                    f"observed_frequency must be in [0, 1], got {frequency}"
                )

        factors = tuple(Factor.from_dict(f) for f in data.get("factors") or [])
        return cls(
            from_label=from_label,
            to_label=to_label,
            observed_frequency=frequency,
            factors=factors,
            label=data.get("label"),
        )


@dataclass(frozen=True)
class Extract:
    """Normalized bundle of historical transitions consumed by the tree builder."""
    transitions: Tuple[Transition, ...]
    seed_context: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return len(self.transitions) == 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Extract":
        transitions = data.get("transitions") or []
        if not isinstance(transitions, (list, tuple)):
            raise InvalidConfiguration("transitions must be a list")
        seed_context = _read(data, "seed_context") or {}
        if not isinstance(seed_context, Mapping):
            raise InvalidConfiguration("seed_context must be a mapping")
        return cls(
            transitions=tuple(Transition.from_dict(t) for t in transitions),
            seed_context=_normalize_seed_context(seed_context),
        )


# ---------------------------------------------------------------------------
# Tree
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Node:
    """A node in the outcome tree."""
    id: str
    parent_id: Optional[str]
    depth: int
    label: str
    node_type: NodeType
    edge_probability: float
    cumulative_probability: float
    risk_score: float
    opportunity_score: float
    factors: Tuple[Factor, ...] = ()
    child_ids: Tuple[str, ...] = ()
    path_index: str = "0"
    generation_order: int = 0
    summary: Optional[str] = None

    @property
    def factor_tags(self) -> Tuple[str, ...]:
        return tuple(f.category for f in self.factors)


@dataclass(frozen=True)
class Edge:
    """A transition between two nodes in the outcome tree."""
    source_id: str
    target_id: str
    probability: float
    label: Optional[str] = None


@dataclass(frozen=True)
class DepthStats:
    """Statistics for a specific depth level in the outcome tree."""
    depth: int
    entropy: float
    branching_factor: float
    total_prob_mass: float
    num_nodes: int


@dataclass(frozen=True)
class TreeMetadata:
    total_nodes: int
    total_edges: int
    total_paths: int
    max_depth_reached: int
    root_node_id: str
    leaf_node_ids: Tuple[str, ...]
    depth_stats: Tuple[DepthStats, ...]
    generated_at: str
    generation_time_ms: float


@dataclass(frozen=True)
class Tree:
    """Complete node/edge collection for one generation run."""
    nodes: Tuple[Node, ...]
    edges: Tuple[Edge, ...]
    metadata: TreeMetadata
    parameters: Mapping[str, Any] = field(default_factory=dict)
    _index: Dict[str, Node] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_index", {n.id: n for n in self.nodes})

    @property
    def root(self) -> Node:
        return self._index[self.metadata.root_node_id]

    def get_node(self, node_id: str) -> Node:
        return self._index[node_id]

    def children(self, node_id: str) -> List[Node]:
        return [self._index[c] for c in self._index[node_id].child_ids]

    def outcome_nodes(self) -> List[Node]:
        return [n for n in self.nodes if n.node_type == NodeType.OUTCOME]

    def structure_dict(self) -> Dict[str, Any]:
        """Nodes and edges as plain data, without narratives or timing."""
        nodes = []
        for node in self.nodes:
            data = asdict(node)
            data.pop("summary")
            nodes.append(data)
        return {"nodes": nodes, "edges": [asdict(e) for e in self.edges]}

    def fingerprint(self) -> str:
        payload = json.dumps(self.structure_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Paths and analysis
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Path:
    """A root-to-outcome sequence of nodes."""
    id: str
    node_ids: Tuple[str, ...]
    outcome_type: OutcomeType
    cumulative_probability: float
    risk_score: float
    opportunity_score: float
    avg_risk_score: float
    avg_opportunity_score: float
    max_risk_score: float
    max_opportunity_score: float
    depth: int
    path_index: str
    label: str
    summary: Optional[str] = None


@dataclass(frozen=True)
class OutcomeShare:
    count: int
    fraction: float


@dataclass(frozen=True)
class ScoreSummary:
    average: float
    minimum: float
    maximum: float


@dataclass(frozen=True)
class Driver:
    """A factor category ranked by its contribution across all paths."""
    category: str
    contribution: float
    risk_contribution: float
    opportunity_contribution: float
    direction: Direction
    impact: Level


@dataclass(frozen=True)
class Contradiction:
    id: str
    type: str
    node_id: str
    description: str
    severity: Level
    probability_sum: float
    excess: float


@dataclass(frozen=True)
class Correlation:
    id: str
    factor_a: str
    factor_b: str
    coefficient: float
    strength: str
    direction: Direction
    description: str
    sample_size: int


@dataclass(frozen=True)
class PathComparison:
    path_a_id: str
    path_b_id: str
    probability_delta: float
    risk_delta: float
    opportunity_delta: float
    divergence_node_id: Optional[str]


@dataclass(frozen=True)
class MapStats:
    avg_probability: float
    avg_risk_score: float
    avg_opportunity_score: float
    leaf_node_count: int
    branch_node_count: int


@dataclass(frozen=True)
class WeightedOutcome:
    """One path's slot in the probability-weighted outcome distribution."""
    path_id: str
    probability: float
    cumulative_probability: float
    percentile: float
    outcome_type: OutcomeType


@dataclass(frozen=True)
class ScenarioSummary:
    path_id: str
    title: str
    probability: float
    risk_level: Level
    opportunity_level: Level
    node_count: int
    final_outcome: OutcomeType


@dataclass(frozen=True)
class OutcomeUniverse:
    """Distribution of all outcomes, scenario extremes and per-state heatmaps."""
    total_realities: int
    total_branching_nodes: int
    weighted_outcomes: Tuple[WeightedOutcome, ...]
    best_case: Optional[ScenarioSummary]
    worst_case: Optional[ScenarioSummary]
    most_likely: Optional[ScenarioSummary]
    risk_heatmap: Dict[str, float]
    opportunity_heatmap: Dict[str, float]


@dataclass(frozen=True)
class Recommendation:
    id: str
    action: str
    priority: Level
    category: str
    expected_impact: str
    timeframe: str
    resources: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AnalysisReport:
    """Read-only aggregate over a Tree and its Paths."""
    outcome_distribution: Dict[OutcomeType, OutcomeShare]
    risk_summary: ScoreSummary
    opportunity_summary: ScoreSummary
    top_drivers: Tuple[Driver, ...]
    contradictions: Tuple[Contradiction, ...]
    correlations: Tuple[Correlation, ...]
    path_comparisons: Tuple[PathComparison, ...]
    stats: MapStats
    most_likely_path_id: Optional[str]
    highest_risk_path_id: Optional[str]
    highest_opportunity_path_id: Optional[str]
    universe: OutcomeUniverse
    recommendations: Tuple[Recommendation, ...]
    executive_summary: Optional[str] = None


@dataclass(frozen=True)
class Snapshot:
    """One published version of a map: tree, paths and report together."""
    map_id: str
    version: int
    parameters: Mapping[str, Any]
    tree: Tree
    paths: Tuple[Path, ...]
    report: AnalysisReport
    created_at: str
