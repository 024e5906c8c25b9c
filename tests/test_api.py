"""Tests for the HTTP API."""

import uuid

import pytest
from fastapi.testclient import TestClient

from api.server import app

from tests.conftest import two_level_payload


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def map_id():
    return f"map-{uuid.uuid4().hex[:8]}"


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_generate_and_read(client, map_id):
    response = client.put(f"/maps/{map_id}/extract", json=two_level_payload())
    assert response.status_code == 200
    assert response.json()["transitions"] == 6

    response = client.post(
        f"/maps/{map_id}/generate",
        json={"max_depth": 2, "branching_factor": 2, "min_probability": 0.0},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["version"] == 1
    assert body["total_nodes"] == 7
    assert body["total_paths"] == 4
    assert len(body["fingerprint"]) == 64

    state = client.get(f"/maps/{map_id}").json()
    assert state["status"] == "completed"
    assert state["current_version"] == 1

    tree = client.get(f"/maps/{map_id}/tree").json()
    assert len(tree["nodes"]) == 7
    assert tree["nodes"][0]["node_type"] == "root"
    assert tree["fingerprint"] == body["fingerprint"]

    paths = client.get(f"/maps/{map_id}/paths").json()["paths"]
    assert [p["outcome_type"] for p in paths] == ["positive", "neutral", "negative", "negative"]

    analysis = client.get(f"/maps/{map_id}/analysis").json()["analysis"]
    assert analysis["most_likely_path_id"] == "path-d2_n3"
    assert analysis["outcome_distribution"]["negative"]["count"] == 2


def test_invalid_parameters(client, map_id):
    client.put(f"/maps/{map_id}/extract", json=two_level_payload())
    response = client.post(f"/maps/{map_id}/generate", json={"max_depth": 11})
    assert response.status_code == 422


def test_invalid_extract(client, map_id):
    payload = two_level_payload()
    payload["transitions"][0]["observed_frequency"] = 1.5
    response = client.put(f"/maps/{map_id}/extract", json=payload)
    assert response.status_code == 422


def test_missing_extract(client, map_id):
    response = client.post(f"/maps/{map_id}/generate", json={})
    assert response.status_code == 400
    assert client.get(f"/maps/{map_id}").json()["status"] == "failed"


def test_empty_extract(client, map_id):
    client.put(f"/maps/{map_id}/extract", json={"transitions": []})
    response = client.post(f"/maps/{map_id}/generate", json={})
    assert response.status_code == 400


def test_unknown_map(client, map_id):
    assert client.get(f"/maps/{map_id}").status_code == 404
    assert client.get(f"/maps/{map_id}/tree").status_code == 404


def test_cancel_without_generation(client, map_id):
    response = client.post(f"/maps/{map_id}/cancel")
    assert response.status_code == 200
    assert response.json()["cancelled"] is False


def test_generate_response_has_no_truncation_flag(client, map_id):
    client.put(f"/maps/{map_id}/extract", json=two_level_payload())
    body = client.post(f"/maps/{map_id}/generate", json={}).json()
    assert "truncated" not in body

    metadata = client.get(f"/maps/{map_id}/tree").json()["metadata"]
    assert "truncated" not in metadata


def test_analysis_includes_universe_and_recommendations(client, map_id):
    client.put(f"/maps/{map_id}/extract", json=two_level_payload())
    client.post(f"/maps/{map_id}/generate", json={"max_depth": 2, "branching_factor": 2})

    analysis = client.get(f"/maps/{map_id}/analysis").json()["analysis"]
    assert analysis["universe"]["total_realities"] == 4
    assert analysis["universe"]["worst_case"]["risk_level"] == "critical"
    assert [r["id"] for r in analysis["recommendations"]] == ["rec-1", "rec-3"]


def test_bad_seed_baseline_is_rejected(client, map_id):
    payload = two_level_payload()
    payload["seed_context"]["risk_baseline"] = "high"
    response = client.put(f"/maps/{map_id}/extract", json=payload)
    assert response.status_code == 422
    assert "risk_baseline" in response.json()["detail"]


def test_camel_case_extract(client, map_id):
    payload = {
        "seedContext": {"initialState": "Current State", "riskBaseline": 10},
        "transitions": [
            {
                "fromLabel": t["from_label"],
                "toLabel": t["to_label"],
                "observedFrequency": t["observed_frequency"],
                "factors": t.get("factors", []),
            }
            for t in two_level_payload()["transitions"]
        ],
    }
    response = client.put(f"/maps/{map_id}/extract", json=payload)
    assert response.status_code == 200
    assert response.json()["transitions"] == 6

    response = client.post(f"/maps/{map_id}/generate", json={"max_depth": 2, "branching_factor": 2})
    assert response.status_code == 200
    assert response.json()["total_nodes"] == 7

    root = client.get(f"/maps/{map_id}/tree").json()["nodes"][0]
    assert root["risk_score"] == 10.0
