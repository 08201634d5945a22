# Copyright 2026 icecake0141
# SPDX-License-Identifier: Apache-2.0
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# This file was created or modified with the assistance of an AI (Large Language Model).
# Review required for correctness, security, and licensing.
"""API tests for the trigger listener and provisioning runs."""

import hashlib
import hmac
import json
import threading
import time

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from bootstrapper.app.api import main as api_main
from bootstrapper.app.application.config import DeploySettings
from bootstrapper.app.application.deployment_service import DeployTarget
from bootstrapper.app.application.events import ExecutionEvent
from bootstrapper.app.domain.models import HostTarget

SHA = "0123456789abcdef0123456789abcdef01234567"

client = TestClient(api_main.app)


def register(address: str, repository: str) -> HostTarget:
    host = HostTarget(address=address)
    api_main.deployments.register(
        DeployTarget(
            host=host,
            settings=DeploySettings(
                repository=f"git@github.com:{repository}.git",
                path="/srv/example.com",
                services=["nginx"],
            ),
        )
    )
    return host


def push_body(repository: str, ref: str = "refs/heads/main", after: str = SHA, **extra) -> bytes:
    payload = {"ref": ref, "after": after, "repository": {"full_name": repository}}
    payload.update(extra)
    return json.dumps(payload).encode("utf-8")


def wait_for(predicate, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return False


def test_health():
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_push_for_unknown_repository_is_ignored():
    response = client.post("/api/v1/hooks/push", content=push_body("nobody/unknown"))

    assert response.status_code == 200
    assert response.json()["status"] == "ignored"


@pytest.mark.parametrize(
    "body",
    [
        push_body("acme/tags", ref="refs/tags/v1.0"),
        push_body("acme/tags", deleted=True),
        push_body("acme/tags", after="0" * 40),
    ],
)
def test_tag_and_deletion_pushes_are_ignored(body):
    register("10.1.0.1", "acme/tags")

    response = client.post("/api/v1/hooks/push", content=body)

    assert response.json()["status"] == "ignored"


def test_ping_event():
    response = client.post(
        "/api/v1/hooks/push", content=b"{}", headers={"X-GitHub-Event": "ping"}
    )

    assert response.json()["status"] == "pong"


def test_malformed_push_is_rejected():
    response = client.post("/api/v1/hooks/push", content=b'{"ref": "refs/heads/main"}')

    assert response.status_code == 422


def test_push_deploys_matching_host_and_records_result():
    host = register("10.1.0.2", "acme/shop")

    response = client.post("/api/v1/hooks/push", content=push_body("acme/shop"))

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "accepted"
    assert [d["host"] for d in body["deployments"]] == [host.key]
    assert api_main.deployments.coordinator.wait_idle(host.key, timeout=10)
    records = client.get("/api/v1/deployments", params={"host": host.key}).json()
    assert records[-1]["commit_sha"] == SHA
    assert records[-1]["outcome"] == "success"


def test_signature_is_checked_when_secret_configured(monkeypatch):
    monkeypatch.setenv("BOOTSTRAPPER_WEBHOOK_SECRET_REF", "hook_secret")
    monkeypatch.setenv("BOOTSTRAPPER_SECRET_HOOK_SECRET", "topsecret")
    body = push_body("nobody/signed")
    good = "sha256=" + hmac.new(b"topsecret", body, hashlib.sha256).hexdigest()

    bad = client.post(
        "/api/v1/hooks/push", content=body, headers={"X-Hub-Signature-256": "sha256=00"}
    )
    missing = client.post("/api/v1/hooks/push", content=body)
    ok = client.post("/api/v1/hooks/push", content=body, headers={"X-Hub-Signature-256": good})

    assert bad.status_code == 401
    assert missing.status_code == 401
    assert ok.status_code == 200


def test_manual_trigger_validates_sha():
    response = client.post(
        "/api/v1/deployments",
        json={"repository": "acme/shop", "commit_sha": "not-a-sha", "branch": "main"},
    )

    assert response.status_code == 422


def test_busy_host_rejects_third_deployment():
    host = register("10.1.0.3", "acme/busy")
    gate = threading.Event()
    coordinator = api_main.deployments.coordinator
    assert coordinator.submit(host.key, gate.wait) == "started"
    assert coordinator.submit(host.key, gate.wait) == "queued"
    try:
        response = client.post(
            "/api/v1/deployments",
            json={"repository": "acme/busy", "commit_sha": SHA, "branch": "main"},
        )
    finally:
        gate.set()

    assert response.status_code == 409
    assert coordinator.wait_idle(host.key, timeout=10)


def test_start_run_requires_config(monkeypatch):
    monkeypatch.delenv("BOOTSTRAPPER_CONFIG", raising=False)

    response = client.post("/api/v1/runs")

    assert response.status_code == 400


def test_unknown_run_is_404():
    assert client.get("/api/v1/runs/does-not-exist").status_code == 404


def test_provisioning_run_completes(monkeypatch, tmp_path):
    config = tmp_path / "site.yml"
    config.write_text(
        "hosts:\n"
        "  - address: 10.2.0.1\n"
        "site:\n"
        "  domain: example.com\n"
        "  email: ops@example.com\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("BOOTSTRAPPER_CONFIG", str(config))
    monkeypatch.setenv("BOOTSTRAPPER_SECRET_DB_PASSWORD", "Sup3r-S3cret!")
    monkeypatch.setenv("BOOTSTRAPPER_SECRET_WP_SALT_SEED", "salt-seed")

    started = client.post("/api/v1/runs")

    assert started.status_code == 202
    run_id = started.json()["run_id"]
    assert wait_for(lambda: client.get(f"/api/v1/runs/{run_id}").json()["status"] != "running")
    result = client.get(f"/api/v1/runs/{run_id}").json()
    assert result["status"] == "completed"
    assert result["exit_code"] == 0
    assert "10.2.0.1:22" in result["hosts"]
    events = client.get(f"/api/v1/runs/{run_id}/events").json()
    assert events[-1]["type"] == "orchestration_complete"
    assert "Sup3r-S3cret!" not in json.dumps(events)


def test_event_stream_closes_when_deployment_finishes():
    for status in ("pulling", "restarting", "verifying", "success"):
        api_main.event_store.publish(
            ExecutionEvent(
                type="deploy_status",
                run_id="dep-stream",
                timestamp="2026-01-01T00:00:00+00:00",
                host="10.1.0.9:22",
                status=status,
            )
        )

    with client.websocket_connect("/ws/v1/runs/dep-stream") as ws:
        statuses = [ws.receive_json()["status"] for _ in range(4)]
        with pytest.raises(WebSocketDisconnect):
            ws.receive_json()

    assert statuses == ["pulling", "restarting", "verifying", "success"]
