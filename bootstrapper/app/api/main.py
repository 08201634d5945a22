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
"""FastAPI entrypoint: deploy trigger listener and provisioning runs."""

import asyncio
import hashlib
import hmac
import logging
import os
from uuid import uuid4

from fastapi import FastAPI, Header, HTTPException, Request, Response
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from bootstrapper.app.api.schemas import (
    DeploymentRecordResponse,
    DeployTicketResponse,
    ExecutionEventResponse,
    HostReportResponse,
    PushPayload,
    RunResponse,
    StepResultResponse,
    TriggerRequest,
    TriggerResponse,
)
from bootstrapper.app.application.config import SiteConfig, load_config
from bootstrapper.app.application.deployment_service import DeploymentService
from bootstrapper.app.application.events import ExecutionEvent
from bootstrapper.app.application.orchestrator import OrchestrationResult, Orchestrator
from bootstrapper.app.application.secrets import Redactor, SecretResolver
from bootstrapper.app.domain.errors import ConfigError
from bootstrapper.app.domain.models import DeploymentRecord, StepResult, TriggerEvent
from bootstrapper.app.infrastructure.alerts import LoggingAlertSink, WebhookAlertSink
from bootstrapper.app.infrastructure.deployment_log import (
    DeploymentLog,
    InMemoryDeploymentLog,
    JsonlDeploymentLog,
)
from bootstrapper.app.infrastructure.env_secret_store import EnvSecretStore
from bootstrapper.app.infrastructure.in_memory_event_store import InMemoryEventStore
from bootstrapper.app.infrastructure.in_memory_run_store import InMemoryRunStore
from bootstrapper.app.infrastructure.run_coordinator import RunCoordinator
from bootstrapper.app.infrastructure.runners import build_runner

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "refs/heads/"
TERMINAL_DEPLOY_STATUSES = ("success", "failed")

app = FastAPI(
    title="Server Bootstrapper",
    version="0.1.0",
)

redactor = Redactor()
secret_store = EnvSecretStore()
secret_resolver = SecretResolver(store=secret_store, redactor=redactor)
event_store = InMemoryEventStore()
run_store = InMemoryRunStore()
run_coordinator = RunCoordinator()


def resolve_runner_mode() -> str:
    return os.getenv("BOOTSTRAPPER_RUNNER_MODE", "simulated").strip().lower()


def resolve_config_path() -> str | None:
    return os.getenv("BOOTSTRAPPER_CONFIG", "").strip() or None


def resolve_webhook_secret_ref() -> str | None:
    ref = os.getenv("BOOTSTRAPPER_WEBHOOK_SECRET_REF", "").strip()
    if ref:
        return ref
    for target in deployments.targets():
        if target.settings.webhook_secret_ref:
            return target.settings.webhook_secret_ref
    return None


def resolve_deploy_log_path() -> str | None:
    return os.getenv("BOOTSTRAPPER_DEPLOY_LOG", "").strip() or None


def resolve_alert_webhook_url() -> str | None:
    return os.getenv("BOOTSTRAPPER_ALERT_WEBHOOK_URL", "").strip() or None


runner = build_runner(resolve_runner_mode(), credential_resolver=secret_resolver.resolve)

if resolve_deploy_log_path():
    deployment_log: DeploymentLog = JsonlDeploymentLog(resolve_deploy_log_path())
else:
    deployment_log = InMemoryDeploymentLog()

alert_url = resolve_alert_webhook_url()
deployments = DeploymentService(
    runner=runner,
    log=deployment_log,
    publisher=event_store,
    alerts=WebhookAlertSink(alert_url) if alert_url else LoggingAlertSink(),
    redactor=redactor,
)
orchestrator = Orchestrator(
    runner=runner,
    secret_store=secret_store,
    publisher=event_store,
    deployments=deployments,
    redactor=redactor,
)


def enable_deploy_triggers(config: SiteConfig) -> int:
    """Listen for pushes to hosts provisioned by an earlier run."""
    return orchestrator.register_deploy_targets(config)


def _load_site_config() -> SiteConfig:
    path = resolve_config_path()
    if path is None:
        raise HTTPException(status_code=400, detail="BOOTSTRAPPER_CONFIG is not set")
    try:
        return load_config(path)
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc


def verify_signature(body: bytes, signature: str | None) -> None:
    """Check X-Hub-Signature-256 when a webhook secret is configured."""
    ref = resolve_webhook_secret_ref()
    if ref is None:
        return
    try:
        secret = secret_resolver.resolve(ref)
    except ConfigError as exc:
        logger.error("Webhook secret unavailable: %s", exc.message)
        raise HTTPException(status_code=500, detail="Webhook secret unavailable") from exc
    expected = "sha256=" + hmac.new(
        secret.reveal().encode("utf-8"), body, hashlib.sha256
    ).hexdigest()
    if not signature or not hmac.compare_digest(expected, signature):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")


def _to_step_response(result: StepResult) -> StepResultResponse:
    return StepResultResponse(
        step=result.step,
        status=result.status.value,
        attempts=result.attempts,
        output=result.output,
        error=result.error,
        rollback_available=result.rollback_available,
        rollback_error=result.rollback_error,
    )


def _to_record_response(record: DeploymentRecord) -> DeploymentRecordResponse:
    return DeploymentRecordResponse(
        deployment_id=record.deployment_id,
        host=record.host,
        repository=record.repository,
        commit_sha=record.commit_sha,
        branch=record.branch,
        timestamp=record.timestamp,
        outcome=record.outcome.value,
        steps=[_to_step_response(step) for step in record.steps],
        error=record.error,
    )


def _to_run_response(result: OrchestrationResult) -> RunResponse:
    return RunResponse(
        run_id=result.run_id,
        status="completed" if result.succeeded else "failed",
        exit_code=result.exit_code,
        error=result.error,
        hosts={
            host: HostReportResponse(
                status=report.status.value,
                step_results=[_to_step_response(r) for r in report.step_results],
                not_run=report.not_run,
            )
            for host, report in result.reports.items()
        },
    )


def _dispatch(event: TriggerEvent, response: Response) -> TriggerResponse:
    try:
        tickets = deployments.handle(event)
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    if not tickets:
        return TriggerResponse(status="ignored")
    if all(ticket.status == "rejected" for ticket in tickets):
        raise HTTPException(
            status_code=409, detail="Deployment already running with one queued"
        )
    response.status_code = 202
    return TriggerResponse(
        status="accepted",
        deployments=[
            DeployTicketResponse(
                host=t.host, deployment_id=t.deployment_id, status=t.status
            )
            for t in tickets
        ],
    )


@app.get("/health")
def health() -> dict[str, str]:
    """Simple health endpoint."""
    return {"status": "ok"}


@app.post("/api/v1/hooks/push", response_model=TriggerResponse)
async def push_hook(
    request: Request,
    response: Response,
    x_hub_signature_256: str | None = Header(default=None),
    x_github_event: str | None = Header(default=None),
) -> TriggerResponse:
    """Receive a repository push notification."""
    body = await request.body()
    verify_signature(body, x_hub_signature_256)
    if x_github_event == "ping":
        return TriggerResponse(status="pong")
    try:
        payload = PushPayload.model_validate_json(body)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    if (
        not payload.ref.startswith(BRANCH_PREFIX)
        or payload.deleted
        or set(payload.after) == {"0"}
    ):
        return TriggerResponse(status="ignored")
    event = TriggerEvent(
        repository=payload.repository.full_name,
        commit_sha=payload.after,
        branch=payload.ref[len(BRANCH_PREFIX):],
    )
    return _dispatch(event, response)


@app.post("/api/v1/deployments", response_model=TriggerResponse)
def trigger_deployment(payload: TriggerRequest, response: Response) -> TriggerResponse:
    """Trigger a deployment without a webhook."""
    event = TriggerEvent(
        repository=payload.repository,
        commit_sha=payload.commit_sha,
        branch=payload.branch,
    )
    return _dispatch(event, response)


@app.get("/api/v1/deployments", response_model=list[DeploymentRecordResponse])
def list_deployments(host: str | None = None) -> list[DeploymentRecordResponse]:
    """List deployment records in the order they finished."""
    return [_to_record_response(r) for r in deployment_log.list(host=host)]


@app.post("/api/v1/runs", response_model=RunResponse)
def start_run(response: Response) -> RunResponse:
    """Provision every configured host in the background."""
    config = _load_site_config()
    run_id = str(uuid4())

    def execute() -> None:
        run_store.save(orchestrator.provision(config, run_id=run_id))

    if not run_coordinator.start(run_id, execute):
        raise HTTPException(status_code=409, detail="A provisioning run is already active")
    response.status_code = 202
    return RunResponse(run_id=run_id, status="running")


@app.get("/api/v1/runs/{run_id}", response_model=RunResponse)
def get_run(run_id: str) -> RunResponse:
    """Return the result of a provisioning run."""
    result = run_store.get(run_id)
    if result is not None:
        return _to_run_response(result)
    if run_coordinator.is_running(run_id):
        return RunResponse(run_id=run_id, status="running")
    raise HTTPException(status_code=404, detail="Run not found")


@app.get("/api/v1/runs/{run_id}/events", response_model=list[ExecutionEventResponse])
def list_run_events(run_id: str) -> list[ExecutionEventResponse]:
    """List buffered events for a run or deployment id."""
    return [
        ExecutionEventResponse(
            type=e.type,
            run_id=e.run_id,
            timestamp=e.timestamp,
            host=e.host,
            step=e.step,
            status=e.status,
            message=e.message,
        )
        for e in event_store.list_events(run_id=run_id)
    ]


def is_final_event(event: ExecutionEvent) -> bool:
    """Last event of a provisioning run or of a deployment."""
    if event.type == "orchestration_complete":
        return True
    return event.type == "deploy_status" and event.status in TERMINAL_DEPLOY_STATUSES


@app.websocket("/ws/v1/runs/{run_id}")
async def ws_run_events(websocket: WebSocket, run_id: str) -> None:
    """Stream in-memory events for a run until it completes."""
    await websocket.accept()
    cursor = 0
    try:
        while True:
            events = event_store.list_events(run_id=run_id, start_index=cursor)
            for event in events:
                await websocket.send_json(
                    {
                        "type": event.type,
                        "run_id": event.run_id,
                        "timestamp": event.timestamp,
                        "host": event.host,
                        "step": event.step,
                        "status": event.status,
                        "message": event.message,
                    }
                )
                cursor += 1
                if is_final_event(event):
                    await websocket.close()
                    return
            await asyncio.sleep(0.2)
    except WebSocketDisconnect:
        return
