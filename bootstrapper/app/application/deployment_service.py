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
"""Push-triggered deployments with release directories and safe cutover.

A deployment exports the pushed commit into its own release directory,
swaps the `current` symlink, reloads services and probes health. The old
release stays on disk and is switched back if anything after the cutover
fails, so the previous version keeps serving.
"""

from __future__ import annotations

import logging
import re
import shlex
from dataclasses import dataclass
from threading import Lock
from typing import Optional, Protocol
from uuid import uuid4

from bootstrapper.app.application.command_runner import StepContext
from bootstrapper.app.application.config import DeploySettings
from bootstrapper.app.application.events import EventPublisher, ExecutionEvent, utc_now
from bootstrapper.app.application.secrets import Redactor
from bootstrapper.app.domain.errors import BootstrapError, ConfigError, DeployInProgress
from bootstrapper.app.domain.models import (
    DeployEvent,
    DeploymentRecord,
    DeployStatus,
    HostTarget,
    StepResult,
    StepStatus,
    TriggerEvent,
)
from bootstrapper.app.domain.state_machine import DeployStateMachine
from bootstrapper.app.infrastructure.deploy_coordinator import DeployCoordinator
from bootstrapper.app.infrastructure.deployment_log import DeploymentLog
from bootstrapper.app.infrastructure.http_health_probe import HttpHealthProbe

logger = logging.getLogger(__name__)

SHA_PATTERN = re.compile(r"^[0-9a-f]{7,40}$")
RELEASE_MARKER = ".bootstrapper-release"
GIT_ENV = "GIT_SSH_COMMAND='ssh -o BatchMode=yes -o StrictHostKeyChecking=accept-new'"
# Host-side lock shared by every process that deploys to the same path
LOCK_NAME = ".deploy.lock"
LOCK_STALE_MINUTES = 60


class CommandRunnerLike(Protocol):
    def run(self, host, command, timeout=...): ...

    def put_file(self, host, path, content, mode=..., owner=..., timeout=...): ...


class HealthProbe(Protocol):
    def check(self, url: str) -> tuple[bool, str]:
        """Return (healthy, detail)."""


class AlertSink(Protocol):
    def alert(self, record: DeploymentRecord) -> None:
        """Notify operators about a failed deployment."""


@dataclass(frozen=True)
class DeployTarget:
    """A host that accepts deployments for one repository and branch."""

    host: HostTarget
    settings: DeploySettings


@dataclass(frozen=True)
class DeployTicket:
    """Outcome of submitting one trigger event for one host."""

    host: str
    deployment_id: str
    status: str


def repository_matches(settings: DeploySettings, repository: str) -> bool:
    """Match `org/name` against a configured name or clone URL."""
    wanted = repository.strip().removesuffix(".git")
    if settings.repository_name:
        return settings.repository_name == wanted
    url = settings.repository.removesuffix(".git")
    return url == wanted or url.endswith("/" + wanted) or url.endswith(":" + wanted)


class DeploymentService:
    """Filters trigger events and runs deployments serialized per host."""

    def __init__(
        self,
        runner: CommandRunnerLike,
        log: DeploymentLog,
        probe: HealthProbe | None = None,
        coordinator: DeployCoordinator | None = None,
        publisher: EventPublisher | None = None,
        alerts: AlertSink | None = None,
        redactor: Redactor | None = None,
        command_timeout: float = 600.0,
    ):
        self.runner = runner
        self.log = log
        self.probe = probe
        self.coordinator = coordinator or DeployCoordinator()
        self.publisher = publisher
        self.alerts = alerts
        self.redactor = redactor or Redactor()
        self.command_timeout = command_timeout
        self.state_machine = DeployStateMachine()
        self._lock = Lock()
        self._targets: dict[str, DeployTarget] = {}

    def register(self, target: DeployTarget) -> None:
        """Enable the trigger listener for a host."""
        with self._lock:
            self._targets[target.host.key] = target
        logger.info(
            "Deploy trigger enabled host=%s repository=%s branch=%s",
            target.host.key,
            target.settings.repository,
            target.settings.branch,
        )

    def targets(self) -> list[DeployTarget]:
        with self._lock:
            return list(self._targets.values())

    def targets_for(self, event: TriggerEvent) -> list[DeployTarget]:
        """Targets whose repository and branch match the event."""
        return [
            t
            for t in self.targets()
            if t.settings.branch == event.branch
            and repository_matches(t.settings, event.repository)
        ]

    def handle(self, event: TriggerEvent) -> list[DeployTicket]:
        """Submit a deployment per matching host. Empty when ignored."""
        if not SHA_PATTERN.match(event.commit_sha):
            raise ConfigError(f"Invalid commit SHA: {event.commit_sha!r}")
        tickets = []
        for target in self.targets_for(event):
            deployment_id = str(uuid4())
            try:
                status = self.coordinator.submit(
                    target.host.key,
                    lambda t=target, d=deployment_id: self.deploy(t, event, d),
                )
            except DeployInProgress as exc:
                logger.warning("host=%s %s", target.host.key, exc.message)
                status = "rejected"
            tickets.append(
                DeployTicket(host=target.host.key, deployment_id=deployment_id, status=status)
            )
        if not tickets:
            logger.info(
                "Ignoring push for %s on branch %s", event.repository, event.branch
            )
        return tickets

    def _emit(self, deployment_id: str, host: str, step: str | None, status: str, message: str | None = None) -> None:
        if self.publisher is None:
            return
        self.publisher.publish(
            ExecutionEvent(
                type="deploy_status",
                run_id=deployment_id,
                timestamp=utc_now(),
                host=host,
                step=step,
                status=status,
                message=self.redactor.redact(message),
            )
        )

    def deploy(
        self,
        target: DeployTarget,
        event: TriggerEvent,
        deployment_id: str | None = None,
    ) -> DeploymentRecord:
        """Run one deployment to completion and append its record."""
        deployment_id = deployment_id or str(uuid4())
        if not SHA_PATTERN.match(event.commit_sha):
            raise ConfigError(f"Invalid commit SHA: {event.commit_sha!r}")
        run = _DeploymentRun(self, target, event, deployment_id)
        record = run.execute()
        self.log.append(record)
        if record.outcome == DeployStatus.FAILED:
            logger.error(
                "deployment=%s host=%s commit=%s failed: %s",
                deployment_id,
                target.host.key,
                event.commit_sha,
                record.error,
            )
            self._emit(deployment_id, target.host.key, None, "alert", record.error)
            if self.alerts is not None:
                self.alerts.alert(record)
        else:
            logger.info(
                "deployment=%s host=%s commit=%s succeeded",
                deployment_id,
                target.host.key,
                event.commit_sha,
            )
        return record


class _DeploymentRun:
    """State for one deployment attempt."""

    def __init__(
        self,
        service: DeploymentService,
        target: DeployTarget,
        event: TriggerEvent,
        deployment_id: str,
    ):
        self.service = service
        self.target = target
        self.event = event
        self.deployment_id = deployment_id
        self.status = DeployStatus.IDLE
        self.steps: list[StepResult] = []
        self.previous: Optional[str] = None
        self.switched = False
        self.locked = False
        settings = target.settings
        self.base = settings.path or "/srv/app"
        self.mirror = f"{self.base}/repo.git"
        self.release = f"{self.base}/releases/{event.commit_sha}"
        self.current = f"{self.base}/current"
        self.lock = f"{self.base}/{LOCK_NAME}"
        self.ctx = StepContext(
            runner=service.runner,
            host=target.host,
            timeout=service.command_timeout,
            redactor=service.redactor,
        )

    def _advance(self, event: DeployEvent) -> None:
        transition = self.service.state_machine.transition(self.status, event)
        self.status = transition.next_status
        self.service._emit(
            self.deployment_id, self.target.host.key, None, self.status.value
        )

    def _step(self, name: str, commands: list[str]) -> str:
        self.ctx.step = name
        outputs = []
        for command in commands:
            result = self.ctx.run_checked(command)
            if result.stdout:
                outputs.append(result.stdout.strip())
        output = self.service.redactor.redact("\n".join(outputs))
        self.steps.append(StepResult(step=name, status=StepStatus.APPLIED, attempts=1, output=output))
        return output or ""

    def _acquire_lock(self) -> None:
        q = shlex.quote
        self.ctx.step = "lock"
        result = self.ctx.run(
            f"mkdir -p {q(self.base)} && "
            f"find {q(self.base)} -maxdepth 1 -name {LOCK_NAME} -mmin +{LOCK_STALE_MINUTES} "
            "-exec rm -rf {} + && "
            f"mkdir {q(self.lock)}"
        )
        if not result.ok:
            raise DeployInProgress(
                f"Another deployment holds {self.lock}",
                step="lock",
                exit_code=result.exit_code,
                output=result.tail(),
            )
        self.locked = True

    def _release_lock(self) -> None:
        if not self.locked:
            return
        try:
            result = self.ctx.run(f"rm -rf {shlex.quote(self.lock)}")
        except BootstrapError as exc:
            logger.warning("Releasing %s failed: %s", self.lock, exc.describe())
            return
        if not result.ok:
            logger.warning("Releasing %s failed: exit %s", self.lock, result.exit_code)

    def _pull(self) -> None:
        q = shlex.quote
        sha = self.event.commit_sha
        tmp = q(self.release + ".tmp")
        release = q(self.release)
        owner = q(self.target.settings.owner)
        self._step(
            "pull",
            [
                f"{GIT_ENV} git -C {q(self.mirror)} remote update --prune",
                f"git -C {q(self.mirror)} cat-file -e {sha}^{{commit}}",
                f"if [ ! -f {release}/{RELEASE_MARKER} ]; then "
                f"rm -rf {tmp} && mkdir -p {tmp} && "
                f"git -C {q(self.mirror)} archive {sha} | tar -x -C {tmp} && "
                f"echo {sha} > {tmp}/{RELEASE_MARKER} && chown -R {owner} {tmp} && "
                f"rm -rf {release} && mv {tmp} {release}; fi",
            ],
        )

    def _switch_to(self, path: str) -> list[str]:
        q = shlex.quote
        link_tmp = q(self.current + ".tmp")
        return [
            f"ln -sfn {q(path)} {link_tmp}",
            f"mv -Tf {link_tmp} {q(self.current)}",
        ]

    def _reload_commands(self) -> list[str]:
        return [
            f"systemctl reload {shlex.quote(service)}"
            for service in self.target.settings.services
        ]

    def _restart(self) -> None:
        result = self.ctx.run(f"readlink {shlex.quote(self.current)}")
        previous = result.stdout.strip()
        self.previous = previous if result.ok and previous.startswith("/") else None
        # the link may have moved even when the session drops mid-cutover
        self.switched = True
        self._step(
            "cutover",
            [f"touch {shlex.quote(self.release)}", *self._switch_to(self.release)],
        )
        self._step("reload", self._reload_commands())

    def _verify(self) -> None:
        settings = self.target.settings
        self.ctx.step = "verify"
        if settings.health_url:
            probe = self.service.probe or HttpHealthProbe(
                attempts=settings.health_attempts, delay=settings.health_delay
            )
            healthy, detail = probe.check(settings.health_url)
        else:
            services = " ".join(shlex.quote(s) for s in settings.services)
            result = self.ctx.run(f"systemctl is-active --quiet {services}")
            healthy = result.ok
            detail = "services active" if healthy else f"services inactive ({result.exit_code})"
        if not healthy:
            raise BootstrapError(f"Health check failed: {detail}", step="verify")
        self.steps.append(StepResult(step="verify", status=StepStatus.APPLIED, attempts=1, output=detail))

    def _prune(self) -> None:
        keep = self.target.settings.keep_releases
        releases = shlex.quote(f"{self.base}/releases")
        try:
            self._step(
                "prune",
                [
                    f"cd {releases} && ls -1t | grep -v '\\.tmp$' | tail -n +{keep + 1} "
                    "| xargs -r rm -rf --"
                ],
            )
        except BootstrapError as exc:
            logger.warning("Pruning old releases failed: %s", exc.describe())

    def _revert(self) -> None:
        self.ctx.step = "revert"
        commands = (
            self._switch_to(self.previous)
            if self.previous
            else [f"rm -f {shlex.quote(self.current)}"]
        )
        try:
            self._step("revert", commands + self._reload_commands())
            self.steps[-1].status = StepStatus.ROLLED_BACK
        except BootstrapError as exc:
            self.steps.append(
                StepResult(
                    step="revert",
                    status=StepStatus.FAILED,
                    error=self.service.redactor.redact(exc.describe()),
                )
            )

    def execute(self) -> DeploymentRecord:
        error: Optional[str] = None
        try:
            self._advance(DeployEvent.PULL)
            self._acquire_lock()
            self._pull()
            self._advance(DeployEvent.RESTART)
            self._restart()
            self._advance(DeployEvent.VERIFY)
            self._verify()
            self._advance(DeployEvent.SUCCEED)
            self._prune()
        except BootstrapError as exc:
            error = self.service.redactor.redact(exc.describe())
        except Exception as exc:
            if self.status == DeployStatus.SUCCESS:
                logger.exception("Cleanup after deployment %s failed", self.deployment_id)
            else:
                logger.exception("Unexpected deployment error")
                error = self.service.redactor.redact(f"Unexpected error: {exc}")

        if error is not None:
            self.steps.append(
                StepResult(step=self.ctx.step or "deploy", status=StepStatus.FAILED, error=error)
            )
            if self.switched:
                self._revert()
            self._advance(DeployEvent.FAIL)
        self._release_lock()

        settings = self.target.settings
        return DeploymentRecord(
            deployment_id=self.deployment_id,
            host=self.target.host.key,
            repository=self.event.repository or settings.repository,
            commit_sha=self.event.commit_sha,
            branch=self.event.branch,
            timestamp=utc_now(),
            outcome=self.status,
            steps=tuple(self.steps),
            error=error,
        )
