# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
API tests for the workflow routes

Uses the real app wiring with an in-memory chain and a temp workflows dir.
"""

import json
from dataclasses import replace
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest
from fastapi.testclient import TestClient

from pulseflow.main import build_service, create_app
from tests.fakes import TOKEN_A, TOKEN_B, edge, node, previous, static


@pytest.fixture
def temp_workflows_dir():
    with TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def client(chain, config, temp_workflows_dir):
    """Create test client"""
    service = build_service(chain, replace(config, workflows_path=str(temp_workflows_dir)))
    return TestClient(create_app(service))


def save(directory: Path, workflow_id: str, payload):
    (directory / f"{workflow_id}.json").write_text(json.dumps(payload))


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "active_runs": 0}


def test_list_workflows(client, temp_workflows_dir):
    """GET /workflows should list workflows"""
    save(temp_workflows_dir, "alpha", {"name": "Alpha", "nodes": [node("s", "start")], "edges": []})

    response = client.get("/workflows")

    assert response.status_code == 200
    assert response.json()[0]["workflow_id"] == "alpha"


def test_get_workflow(client, temp_workflows_dir):
    save(temp_workflows_dir, "alpha", {"name": "Alpha", "nodes": [], "edges": []})

    assert client.get("/workflows/alpha").json()["name"] == "Alpha"
    assert client.get("/workflows/ghost").status_code == 404


def test_run_workflow(client, chain, temp_workflows_dir):
    """POST /workflows/{id}/run returns the run summary"""
    chain.swap_amount_out = 1000
    save(temp_workflows_dir, "swap-send", {
        "nodes": [
            node("s", "start"),
            node("swap", "swap", amountIn=static("1"), path=[TOKEN_A, TOKEN_B]),
            node("send", "transfer", token=TOKEN_B, amount=previous("amountOut", 50)),
        ],
        "edges": [edge("s", "swap"), edge("swap", "send")],
    })

    response = client.post("/workflows/swap-send/run")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "success"
    assert [r["node_id"] for r in data["results"]] == ["swap", "send"]
    assert "context" not in data


def test_node_failure_is_reported_in_body(client, temp_workflows_dir):
    save(temp_workflows_dir, "bad", {
        "nodes": [node("s", "start"), node("send", "transfer", amount="1")],
        "edges": [edge("s", "send")],
    })

    response = client.post("/workflows/bad/run")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "failed"
    assert data["node_id"] == "send"
    assert data["error"]["category"] == "config"


def test_run_invalid_definition(client, temp_workflows_dir):
    save(temp_workflows_dir, "odd", {"nodes": "none"})

    assert client.post("/workflows/odd/run").status_code == 400
    assert client.post("/workflows/ghost/run").status_code == 404


def test_stop_without_running_execution(client):
    response = client.post("/workflows/alpha/stop")

    assert response.status_code == 404
    assert response.json()["detail"] == "No running execution found"


def test_active_runs_route_is_not_a_workflow_id(client):
    response = client.get("/workflows/runs/active")

    assert response.status_code == 200
    assert response.json() == []


def test_validate_node(client, temp_workflows_dir):
    """POST /workflows/{id}/validate returns per-field findings"""
    save(temp_workflows_dir, "alpha", {"nodes": [], "edges": []})

    response = client.post("/workflows/alpha/validate", json={
        "nodeType": "transfer",
        "formData": {"token": TOKEN_A, "to": "bob"},
    })

    assert response.status_code == 200
    assert response.json() == {
        "hardErrors": {"to": "Invalid address format"},
        "softWarnings": {},
    }


def test_validate_node_errors(client, temp_workflows_dir):
    save(temp_workflows_dir, "alpha", {"nodes": [], "edges": []})

    unknown = client.post("/workflows/alpha/validate", json={"nodeType": "teleport"})
    missing = client.post("/workflows/ghost/validate", json={"nodeType": "wait"})

    assert unknown.status_code == 400
    assert "teleport" in unknown.json()["detail"]
    assert missing.status_code == 404


def test_lp_quote(client, chain):
    pair = chain.add_pool(TOKEN_A, TOKEN_B, 4000, 1000)

    response = client.post("/lp-quote", json={
        "baseToken": TOKEN_A, "pairedToken": TOKEN_B, "baseAmount": 2,
    })

    assert response.status_code == 200
    data = response.json()
    assert data["quotedAmount"] == str(8 * 10 ** 18)
    assert data["quotedAmountFormatted"] == "8.0"
    assert data["pairAddress"] == pair


def test_lp_quote_errors(client, chain):
    missing_fields = client.post("/lp-quote", json={"baseToken": TOKEN_A})
    no_pool = client.post("/lp-quote", json={
        "baseToken": TOKEN_A, "pairedToken": TOKEN_B, "baseAmount": "1",
    })
    chain.add_pool(TOKEN_A, TOKEN_B, 4000, 1000)
    bad_amount = client.post("/lp-quote", json={
        "baseToken": TOKEN_A, "pairedToken": TOKEN_B, "baseAmount": "lots",
    })

    assert missing_fields.status_code == 400
    assert missing_fields.json()["detail"] == "Missing required fields: baseToken, pairedToken, baseAmount"
    assert no_pool.status_code == 404
    assert no_pool.json()["detail"] == "No LP exists between the specified tokens"
    assert bad_amount.status_code == 400
