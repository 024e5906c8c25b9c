"""
Generation orchestrator.

Wraps extract fetch, tree building, path extraction, analysis, narratives
and publishing as one unit of work per map. At most one generation runs
per map; a second request while one is running is rejected. A failed or
cancelled run leaves the previously published snapshot in place.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from .analysis import analyze
from .config import ClassificationThresholds, GenerationConfig, Settings, parse_config, settings as default_settings
from .errors import GenerationCancelled, GenerationInProgress, MapNotFound, TransientIOError
from .models import Extract, GenerationStatus, Snapshot
from .narrative import NarrativeWriter, attach_narratives
from .paths import extract_paths
from .scoring import ScoringWeights
from .tree_builder import build_tree

logger = logging.getLogger(__name__)

FetchExtract = Callable[[str], Any]
PublishSnapshot = Callable[[Snapshot], None]

GENERATION_STARTED = "generation_started"
GENERATION_COMPLETED = "generation_completed"
GENERATION_FAILED = "generation_failed"
GENERATION_CANCELLED = "generation_cancelled"


@dataclass
class MapState:
    """Mutable per-map record, only touched under the map's lock."""
    map_id: str
    status: GenerationStatus = GenerationStatus.IDLE
    current: Optional[Snapshot] = None
    history: List[Snapshot] = field(default_factory=list)
    error: Optional[str] = None
    events: List[Tuple[str, Dict[str, Any]]] = field(default_factory=list)

    def copy(self) -> "MapState":
        return replace(self, history=list(self.history), events=list(self.events))


class GenerationOrchestrator:
    """
    Runs generations and keeps each map's published versions.

    Args:
        fetch_extract: Returns the extract (Extract or plain mapping) for a map id
        publish: Called with each finished snapshot before it becomes current
        narrative_writer: Optional text service for summaries
        engine_settings: Budgets, retries and thresholds (module settings if None)
        sleep: Sleep function used between retries
    """

    def __init__(
        self,
        fetch_extract: FetchExtract,
        publish: Optional[PublishSnapshot] = None,
        narrative_writer: Optional[NarrativeWriter] = None,
        engine_settings: Optional[Settings] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.fetch_extract = fetch_extract
        self.publish = publish
        self.narrative_writer = narrative_writer
        self.settings = engine_settings or default_settings
        self._sleep = sleep

        self._states: Dict[str, MapState] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._cancel_events: Dict[str, threading.Event] = {}
        self._registry_lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None

    # -- state access -------------------------------------------------------

    def _lock_for(self, map_id: str) -> threading.Lock:
        with self._registry_lock:
            if map_id not in self._locks:
                self._locks[map_id] = threading.Lock()
                self._states[map_id] = MapState(map_id=map_id)
            return self._locks[map_id]

    def state(self, map_id: str) -> MapState:
        """Returns a copy of the map's state."""
        with self._registry_lock:
            lock = self._locks.get(map_id)
        if lock is None:
            raise MapNotFound(f"Unknown map '{map_id}'")
        with lock:
            return self._states[map_id].copy()

    def current(self, map_id: str) -> Optional[Snapshot]:
        return self.state(map_id).current

    # -- generation ---------------------------------------------------------

    def generate(
        self,
        map_id: str,
        params: Optional[Mapping[str, Any]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Snapshot:
        """
        Runs one generation synchronously and publishes the result.

        Raises:
            InvalidConfiguration: Before any state change, for bad parameters
            GenerationInProgress: If the map is already generating
            GenerationCancelled: If the run was cancelled
            RealityMapError: Any other failure; the map is left 'failed'
        """
        config = parse_config(params)
        cancel_event = cancel_event or threading.Event()
        previous_status = self._begin(map_id, cancel_event)
        return self._execute(map_id, config, cancel_event, previous_status)

    def start(
        self,
        map_id: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> "Future[Snapshot]":
        """
        Starts a generation in the background.

        The in-progress check happens before returning, so a concurrent
        request is rejected immediately rather than through the future.
        """
        config = parse_config(params)
        cancel_event = threading.Event()
        previous_status = self._begin(map_id, cancel_event)

        with self._registry_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(thread_name_prefix="reality-map")
            executor = self._executor
        return executor.submit(self._execute, map_id, config, cancel_event, previous_status)

    def cancel(self, map_id: str) -> bool:
        """Signals the running generation for map_id; returns False if none is running."""
        with self._registry_lock:
            event = self._cancel_events.get(map_id)
        if event is None:
            return False
        event.set()
        logger.info("Cancellation requested for map %s", map_id)
        return True

    def shutdown(self) -> None:
        with self._registry_lock:
            events = list(self._cancel_events.values())
        for event in events:
            event.set()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    # -- internals ----------------------------------------------------------

    def _begin(self, map_id: str, cancel_event: threading.Event) -> GenerationStatus:
        with self._lock_for(map_id):
            state = self._states[map_id]
            if state.status == GenerationStatus.GENERATING:
                raise GenerationInProgress(f"Map '{map_id}' is already generating")
            previous_status = state.status
            state.status = GenerationStatus.GENERATING
            state.events.append((GENERATION_STARTED, {}))
            with self._registry_lock:
                self._cancel_events[map_id] = cancel_event
        logger.info("Generation started for map %s", map_id)
        return previous_status

    def _finish(
        self,
        map_id: str,
        status: GenerationStatus,
        event: str,
        payload: Dict[str, Any],
        snapshot: Optional[Snapshot] = None,
        error: Optional[str] = None,
    ) -> None:
        with self._lock_for(map_id):
            state = self._states[map_id]
            if snapshot is not None:
                state.current = snapshot
                state.history.append(snapshot)
                state.error = None
            if error is not None:
                state.error = error
            state.status = status
            state.events.append((event, payload))
            with self._registry_lock:
                self._cancel_events.pop(map_id, None)

    def _execute(
        self,
        map_id: str,
        config: GenerationConfig,
        cancel_event: threading.Event,
        previous_status: GenerationStatus,
    ) -> Snapshot:
        try:
            snapshot = self._run(map_id, config, cancel_event)
        except GenerationCancelled:
            self._finish(map_id, previous_status, GENERATION_CANCELLED, {})
            logger.info("Generation cancelled for map %s", map_id)
            raise
        except Exception as e:
            self._finish(map_id, GenerationStatus.FAILED, GENERATION_FAILED, {"error": str(e)}, error=str(e))
            logger.exception("Generation failed for map %s: %s", map_id, e)
            raise

        self._finish(
            map_id,
            GenerationStatus.COMPLETED,
            GENERATION_COMPLETED,
            {"version": snapshot.version},
            snapshot=snapshot,
        )
        logger.info(
            "Published map %s version %d (%d nodes, %d paths)",
            map_id,
            snapshot.version,
            snapshot.tree.metadata.total_nodes,
            len(snapshot.paths),
        )
        return snapshot

    def _retrying(self, retries: int) -> Retrying:
        """Retry policy for the fetch and publish boundaries; only transient errors retry."""
        s = self.settings
        return Retrying(
            stop=stop_after_attempt(1 + max(0, retries)),
            wait=wait_exponential(
                multiplier=s.RETRY_BASE_DELAY,
                exp_base=s.RETRY_BACKOFF_FACTOR,
                max=s.RETRY_MAX_DELAY,
            ),
            retry=retry_if_exception_type(TransientIOError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
            sleep=self._sleep,
        )

    def _next_version(self, map_id: str) -> int:
        with self._lock_for(map_id):
            current = self._states[map_id].current
        return (current.version + 1) if current is not None else 1

    def _run(self, map_id: str, config: GenerationConfig, cancel_event: threading.Event) -> Snapshot:
        s = self.settings

        raw = self._retrying(s.FETCH_RETRIES)(self.fetch_extract, map_id)
        extract = raw if isinstance(raw, Extract) else Extract.from_dict(raw)

        tree = build_tree(extract, config, cancel_event=cancel_event, engine_settings=s)
        paths = extract_paths(tree, ClassificationThresholds.from_settings(s))
        weights = ScoringWeights.from_config(config, s)
        report = analyze(
            tree,
            paths,
            weights=weights,
            tolerance=s.CONTRADICTION_TOLERANCE,
            top_drivers_limit=s.TOP_DRIVERS_LIMIT,
        )
        tree, paths, report = attach_narratives(
            tree, paths, report, self.narrative_writer, config.narrative_style
        )

        snapshot = Snapshot(
            map_id=map_id,
            version=self._next_version(map_id),
            parameters=config.model_dump(mode="json"),
            tree=tree,
            paths=paths,
            report=report,
            created_at=datetime.now(timezone.utc).isoformat(),
        )

        if cancel_event.is_set():
            raise GenerationCancelled("Generation cancelled before publish")

        if self.publish is not None:
            self._retrying(s.PUBLISH_RETRIES)(self.publish, snapshot)
        return snapshot
