"""Tests for the generation orchestrator."""

import logging
import threading

import pytest

from reality_core.config import Settings
from reality_core.errors import (
    GenerationCancelled,
    GenerationInProgress,
    InvalidConfiguration,
    MapNotFound,
    NoSourceData,
    TransientIOError,
)
from reality_core.models import GenerationStatus
from reality_core.narrative import fallback_executive_summary
from reality_core.orchestrator import (
    GENERATION_CANCELLED,
    GENERATION_COMPLETED,
    GENERATION_FAILED,
    GENERATION_STARTED,
    GenerationOrchestrator,
)

from tests.conftest import two_level_payload


def _no_sleep(_delay):
    pass


def make_orchestrator(engine_settings, **kwargs):
    kwargs.setdefault("fetch_extract", lambda map_id: two_level_payload())
    return GenerationOrchestrator(engine_settings=engine_settings, sleep=_no_sleep, **kwargs)


class TestGenerate:
    def test_publishes_first_version(self, engine_settings, base_config):
        orchestrator = make_orchestrator(engine_settings)
        snapshot = orchestrator.generate("m1", base_config)

        assert snapshot.version == 1
        assert snapshot.map_id == "m1"
        assert len(snapshot.paths) == len(snapshot.tree.outcome_nodes())
        state = orchestrator.state("m1")
        assert state.status == GenerationStatus.COMPLETED
        assert state.current is snapshot
        assert [e for e, _ in state.events] == [GENERATION_STARTED, GENERATION_COMPLETED]

    def test_versions_increase(self, engine_settings, base_config):
        orchestrator = make_orchestrator(engine_settings)
        orchestrator.generate("m1", base_config)
        second = orchestrator.generate("m1", base_config)

        assert second.version == 2
        assert [s.version for s in orchestrator.state("m1").history] == [1, 2]

    def test_regeneration_is_reproducible(self, engine_settings, base_config):
        orchestrator = make_orchestrator(engine_settings)
        params = dict(base_config, probability_model="monte_carlo", seed=11)
        first = orchestrator.generate("m1", params)
        second = orchestrator.generate("m1", params)
        assert first.tree.fingerprint() == second.tree.fingerprint()

    def test_without_narrative_writer_uses_fallback_summary(self, engine_settings, base_config):
        snapshot = make_orchestrator(engine_settings).generate("m1", base_config)
        assert snapshot.report.executive_summary == (
            "Analysis identified 4 possible outcomes across 2 decision points. Review recommended."
        )

    def test_maps_are_independent(self, engine_settings, base_config):
        orchestrator = make_orchestrator(engine_settings)
        orchestrator.generate("a", base_config)
        orchestrator.generate("b", base_config)
        assert orchestrator.current("a").version == 1
        assert orchestrator.current("b").version == 1

    def test_unknown_map(self, engine_settings):
        with pytest.raises(MapNotFound):
            make_orchestrator(engine_settings).state("missing")


class TestFailures:
    def test_invalid_config_changes_nothing(self, engine_settings):
        orchestrator = make_orchestrator(engine_settings)
        with pytest.raises(InvalidConfiguration):
            orchestrator.generate("m1", {"max_depth": 0})
        with pytest.raises(MapNotFound):
            orchestrator.state("m1")

    def test_empty_extract_fails_the_map(self, engine_settings, base_config):
        orchestrator = make_orchestrator(engine_settings, fetch_extract=lambda map_id: {"transitions": []})
        with pytest.raises(NoSourceData):
            orchestrator.generate("m1", base_config)

        state = orchestrator.state("m1")
        assert state.status == GenerationStatus.FAILED
        assert "no transitions" in state.error
        assert state.events[-1][0] == GENERATION_FAILED

    def test_failure_keeps_previous_version(self, engine_settings, base_config):
        calls = {"publish": 0}

        def publish(snapshot):
            calls["publish"] += 1
            if snapshot.version > 1:
                raise TransientIOError("store unavailable")

        orchestrator = make_orchestrator(engine_settings, publish=publish)
        orchestrator.generate("m1", base_config)
        with pytest.raises(TransientIOError):
            orchestrator.generate("m1", base_config)

        state = orchestrator.state("m1")
        assert state.status == GenerationStatus.FAILED
        assert state.current.version == 1
        assert len(state.history) == 1
        assert calls["publish"] == 1 + engine_settings.PUBLISH_RETRIES

    def test_publish_is_retried(self, engine_settings, base_config):
        failures = [TransientIOError("timeout"), TransientIOError("timeout")]

        def publish(snapshot):
            if failures:
                raise failures.pop()

        orchestrator = make_orchestrator(engine_settings, publish=publish)
        assert orchestrator.generate("m1", base_config).version == 1
        assert failures == []

    def test_fetch_is_retried(self, engine_settings, base_config):
        attempts = []

        def fetch(map_id):
            attempts.append(map_id)
            if len(attempts) == 1:
                raise TransientIOError("connection reset")
            return two_level_payload()

        orchestrator = make_orchestrator(engine_settings, fetch_extract=fetch)
        orchestrator.generate("m1", base_config)
        assert len(attempts) == 2

    def test_non_transient_errors_are_not_retried(self, engine_settings, base_config):
        attempts = []

        def fetch(map_id):
            attempts.append(map_id)
            raise NoSourceData("gone")

        with pytest.raises(NoSourceData):
            make_orchestrator(engine_settings, fetch_extract=fetch).generate("m1", base_config)
        assert len(attempts) == 1

    def test_bad_seed_baseline_fails_the_map(self, engine_settings, base_config):
        payload = two_level_payload()
        payload["seed_context"]["risk_baseline"] = "high"
        orchestrator = make_orchestrator(engine_settings, fetch_extract=lambda map_id: payload)

        with pytest.raises(InvalidConfiguration, match="risk_baseline"):
            orchestrator.generate("m1", base_config)
        state = orchestrator.state("m1")
        assert state.status == GenerationStatus.FAILED
        assert state.current is None

    def test_failure_is_logged_with_traceback(self, engine_settings, base_config, caplog):
        def fetch(map_id):
            raise NoSourceData("gone")

        with caplog.at_level(logging.ERROR, logger="reality_core.orchestrator"):
            with pytest.raises(NoSourceData):
                make_orchestrator(engine_settings, fetch_extract=fetch).generate("m1", base_config)

        records = [r for r in caplog.records if "Generation failed" in r.getMessage()]
        assert len(records) == 1
        assert records[0].exc_info is not None
        assert records[0].exc_info[0] is NoSourceData


class TestRetryPolicy:
    def _flaky_fetch(self, failures):
        calls = []

        def fetch(map_id):
            calls.append(map_id)
            if len(calls) <= failures:
                raise TransientIOError("connection reset")
            return two_level_payload()

        return fetch, calls

    def test_backoff_grows_by_factor(self, base_config):
        delays = []
        fetch, calls = self._flaky_fetch(failures=2)
        orchestrator = GenerationOrchestrator(
            fetch_extract=fetch,
            engine_settings=Settings(RETRY_BASE_DELAY=0.5, RETRY_BACKOFF_FACTOR=2.0, RETRY_MAX_DELAY=8.0),
            sleep=delays.append,
        )
        orchestrator.generate("m1", base_config)

        assert len(calls) == 3
        assert delays == pytest.approx([0.5, 1.0])

    def test_backoff_is_capped(self, base_config):
        delays = []
        fetch, _ = self._flaky_fetch(failures=3)
        orchestrator = GenerationOrchestrator(
            fetch_extract=fetch,
            engine_settings=Settings(RETRY_BASE_DELAY=0.5, RETRY_BACKOFF_FACTOR=2.0, RETRY_MAX_DELAY=0.75),
            sleep=delays.append,
        )
        orchestrator.generate("m1", base_config)

        assert delays == pytest.approx([0.5, 0.75, 0.75])

    def test_gives_up_after_configured_retries(self, base_config):
        fetch, calls = self._flaky_fetch(failures=10)
        orchestrator = GenerationOrchestrator(
            fetch_extract=fetch,
            engine_settings=Settings(FETCH_RETRIES=2, RETRY_BASE_DELAY=0.0, RETRY_MAX_DELAY=0.0),
            sleep=lambda _delay: None,
        )
        with pytest.raises(TransientIOError):
            orchestrator.generate("m1", base_config)
        assert len(calls) == 3
        assert orchestrator.state("m1").status == GenerationStatus.FAILED


class TestConcurrency:
    def test_second_request_is_rejected(self, engine_settings, base_config):
        gate = threading.Event()

        def fetch(map_id):
            gate.wait(timeout=5)
            return two_level_payload()

        orchestrator = make_orchestrator(engine_settings, fetch_extract=fetch)
        try:
            future = orchestrator.start("m1", base_config)
            assert orchestrator.state("m1").status == GenerationStatus.GENERATING
            with pytest.raises(GenerationInProgress):
                orchestrator.generate("m1", base_config)
            # Other maps are unaffected
            gate.set()
            assert orchestrator.generate("m2", base_config).version == 1
            assert future.result(timeout=5).version == 1
        finally:
            gate.set()
            orchestrator.shutdown()

        assert orchestrator.state("m1").status == GenerationStatus.COMPLETED


class TestCancellation:
    def test_cancel_restores_previous_state(self, engine_settings, base_config):
        orchestrator = make_orchestrator(engine_settings)
        orchestrator.generate("m1", base_config)

        event = threading.Event()
        event.set()
        with pytest.raises(GenerationCancelled):
            orchestrator.generate("m1", base_config, cancel_event=event)

        state = orchestrator.state("m1")
        assert state.status == GenerationStatus.COMPLETED
        assert state.current.version == 1
        assert state.events[-1][0] == GENERATION_CANCELLED

    def test_cancel_running_generation(self, engine_settings, base_config):
        fetching = threading.Event()
        gate = threading.Event()

        def fetch(map_id):
            fetching.set()
            gate.wait(timeout=5)
            return two_level_payload()

        orchestrator = make_orchestrator(engine_settings, fetch_extract=fetch)
        try:
            future = orchestrator.start("m1", base_config)
            assert fetching.wait(timeout=5)
            assert orchestrator.cancel("m1") is True
            gate.set()
            with pytest.raises(GenerationCancelled):
                future.result(timeout=5)
        finally:
            gate.set()
            orchestrator.shutdown()

        state = orchestrator.state("m1")
        assert state.status == GenerationStatus.IDLE
        assert state.current is None

    def test_cancel_without_run(self, engine_settings):
        assert make_orchestrator(engine_settings).cancel("m1") is False


class TestNarratives:
    def test_writer_summaries_are_attached(self, engine_settings, base_config):
        def writer(context):
            return f"{context['kind']} summary"

        snapshot = make_orchestrator(engine_settings, narrative_writer=writer).generate("m1", base_config)

        assert all(node.summary == "node summary" for node in snapshot.tree.nodes)
        assert all(path.summary == "path summary" for path in snapshot.paths)
        assert snapshot.report.executive_summary == "report summary"

    def test_failing_writer_does_not_block_publish(self, engine_settings, base_config):
        def writer(context):
            raise RuntimeError("model offline")

        orchestrator = make_orchestrator(engine_settings, narrative_writer=writer)
        snapshot = orchestrator.generate("m1", base_config)

        assert orchestrator.state("m1").status == GenerationStatus.COMPLETED
        assert all(node.summary is None for node in snapshot.tree.nodes)
        assert all(path.summary is None for path in snapshot.paths)
        assert snapshot.report.executive_summary == fallback_executive_summary(snapshot.report, snapshot.paths)

    def test_narratives_do_not_change_structure(self, engine_settings, base_config):
        plain = make_orchestrator(engine_settings).generate("m1", base_config)
        narrated = make_orchestrator(
            engine_settings, narrative_writer=lambda context: "text"
        ).generate("m1", base_config)
        assert plain.tree.fingerprint() == narrated.tree.fingerprint()
