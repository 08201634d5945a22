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
"""Top-level bootstrap run across one or more hosts."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Optional
from uuid import uuid4

from bootstrapper.app.application.command_runner import CommandRunner
from bootstrapper.app.application.deployment_service import DeploymentService, DeployTarget
from bootstrapper.app.application.events import EventPublisher, ExecutionEvent, utc_now
from bootstrapper.app.application.pipeline import build_pipeline
from bootstrapper.app.application.config import SiteConfig
from bootstrapper.app.application.renderer import TemplateRenderer
from bootstrapper.app.application.secrets import Redactor, SecretResolver, SecretStore
from bootstrapper.app.application.step_executor import (
    ExecutorConfig,
    StepExecutor,
    topological_order,
)
from bootstrapper.app.application.steps import Step
from bootstrapper.app.domain.errors import BootstrapError, ConfigError
from bootstrapper.app.domain.models import (
    CheckResult,
    ExecutionReport,
    HostTarget,
    RunStatus,
    StepResult,
    StepStatus,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


@dataclass
class OrchestrationResult:
    """Reports for every host plus the process exit code."""

    run_id: str
    exit_code: int
    reports: dict[str, ExecutionReport] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == EXIT_OK


@dataclass
class PlanResult:
    """Check-only outcome per host: step name and probe result, in run order."""

    run_id: str
    exit_code: int
    checks: dict[str, list[tuple[str, CheckResult]]] = field(default_factory=dict)
    error: Optional[str] = None


def exit_code_for(reports: list[ExecutionReport]) -> int:
    return EXIT_FAILED if any(r.status != RunStatus.COMPLETED for r in reports) else EXIT_OK


class Orchestrator:
    """Builds the step pipeline from site config and converges every host.

    Hosts run concurrently; steps within one host run strictly in order.
    Configuration problems are reported before any host is touched.
    """

    def __init__(
        self,
        runner: CommandRunner,
        secret_store: SecretStore,
        renderer: TemplateRenderer | None = None,
        publisher: EventPublisher | None = None,
        deployments: DeploymentService | None = None,
        redactor: Redactor | None = None,
        max_workers: int = 10,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.runner = runner
        self.secret_store = secret_store
        self.renderer = renderer or TemplateRenderer()
        self.publisher = publisher
        self.deployments = deployments
        self.redactor = redactor or Redactor()
        self.max_workers = max(1, max_workers)
        self.sleep = sleep

    def _emit(self, event_type: str, run_id: str, status: str, message: str | None = None) -> None:
        if self.publisher is None:
            return
        self.publisher.publish(
            ExecutionEvent(
                type=event_type,
                run_id=run_id,
                timestamp=utc_now(),
                status=status,
                message=self.redactor.redact(message),
            )
        )

    def _executor(self, config: SiteConfig) -> StepExecutor:
        settings = config.executor
        return StepExecutor(
            runner=self.runner,
            config=ExecutorConfig(
                max_retries=settings.max_retries,
                backoff_base=settings.backoff_base,
                backoff_max=settings.backoff_max,
                command_timeout=settings.command_timeout,
            ),
            publisher=self.publisher,
            redactor=self.redactor,
            sleep=self.sleep,
        )

    def prepare(self, config: SiteConfig) -> list[Step]:
        """Resolve secrets, render templates and order steps. Raises ConfigError."""
        resolver = SecretResolver(self.secret_store, self.redactor)
        for host in config.host_targets():
            if host.credential_ref:
                resolver.resolve(host.credential_ref)
        steps = build_pipeline(config, resolver, self.renderer)
        return topological_order(steps)

    def _config_failure(self, run_id: str, exc: ConfigError) -> str:
        message = self.redactor.redact(exc.describe()) or exc.message
        logger.error("run_id=%s configuration error: %s", run_id, message)
        self._emit("orchestration_complete", run_id, "config_error", message)
        return message

    def _map_hosts(self, config: SiteConfig, fn: Callable[[HostTarget], object]) -> list:
        hosts = config.host_targets()
        workers = min(self.max_workers, len(hosts))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(fn, hosts))

    def provision(self, config: SiteConfig, run_id: str | None = None) -> OrchestrationResult:
        """Converge all hosts. Exit code 0, 1 on any failed host, 2 on config error."""
        run_id = run_id or str(uuid4())
        self._emit("orchestration_status", run_id, "running")
        try:
            steps = self.prepare(config)
        except ConfigError as exc:
            return OrchestrationResult(
                run_id=run_id,
                exit_code=EXIT_CONFIG,
                error=self._config_failure(run_id, exc),
            )

        executor = self._executor(config)
        logger.info(
            "run_id=%s provisioning %s host(s) with %s steps",
            run_id,
            len(config.hosts),
            len(steps),
        )

        def converge(host: HostTarget) -> ExecutionReport:
            try:
                return executor.run(steps, host, run_id=run_id)
            except BootstrapError as exc:
                # executor errors outside any step still yield a report
                report = ExecutionReport(run_id=run_id, host=host.key, status=RunStatus.FAILED)
                report.step_results.append(
                    StepResult(
                        step=exc.step or "run",
                        status=StepStatus.FAILED,
                        error=self.redactor.redact(exc.describe()),
                    )
                )
                report.not_run = [s.name for s in steps]
                return report

        reports = self._map_hosts(config, converge)
        result = OrchestrationResult(
            run_id=run_id,
            exit_code=exit_code_for(reports),
            reports={r.host: r for r in reports},
        )
        self._enable_deploys(config, result)
        for report in reports:
            logger.info(
                "run_id=%s host=%s status=%s applied=%s skipped=%s failed=%s rolled_back=%s",
                run_id,
                report.host,
                report.status.value,
                report.count(StepStatus.APPLIED),
                report.count(StepStatus.SKIPPED),
                report.count(StepStatus.FAILED),
                report.count(StepStatus.ROLLED_BACK),
            )
        self._emit(
            "orchestration_complete",
            run_id,
            "completed" if result.succeeded else "failed",
        )
        return result

    def _enable_deploys(self, config: SiteConfig, result: OrchestrationResult) -> None:
        if self.deployments is None or config.deploy is None:
            return
        for target in config.host_targets():
            report = result.reports.get(target.key)
            if report is None or report.status != RunStatus.COMPLETED:
                continue
            self.deployments.register(DeployTarget(host=target, settings=config.deploy))

    def register_deploy_targets(self, config: SiteConfig) -> int:
        """Enable deploy triggers for hosts provisioned in an earlier run."""
        if self.deployments is None or config.deploy is None:
            return 0
        targets = config.host_targets()
        for target in targets:
            self.deployments.register(DeployTarget(host=target, settings=config.deploy))
        return len(targets)

    def plan(self, config: SiteConfig, run_id: str | None = None) -> PlanResult:
        """Probe every step on every host without applying anything."""
        run_id = run_id or str(uuid4())
        try:
            steps = self.prepare(config)
        except ConfigError as exc:
            return PlanResult(
                run_id=run_id, exit_code=EXIT_CONFIG, error=self._config_failure(run_id, exc)
            )
        executor = self._executor(config)

        def check(host: HostTarget) -> tuple[str, list[tuple[str, CheckResult]]]:
            return host.key, [
                (step.name, result) for step, result in executor.plan(steps, host)
            ]

        # probes of steps whose prerequisites are missing may report check_failed
        return PlanResult(
            run_id=run_id, exit_code=EXIT_OK, checks=dict(self._map_hosts(config, check))
        )
