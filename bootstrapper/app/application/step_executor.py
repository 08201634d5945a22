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
"""Ordered step execution with retry, verification and rollback."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable
from uuid import uuid4

from bootstrapper.app.application.checks import IdempotencyChecker
from bootstrapper.app.application.command_runner import (
    DEFAULT_TIMEOUT,
    CommandRunner,
    StepContext,
)
from bootstrapper.app.application.events import EventPublisher, ExecutionEvent, utc_now
from bootstrapper.app.application.secrets import Redactor
from bootstrapper.app.application.steps import Step
from bootstrapper.app.domain.errors import (
    BootstrapError,
    ConfigError,
    CyclicDependency,
    FatalError,
    TransientError,
    VerificationError,
)
from bootstrapper.app.domain.models import (
    CheckOutcome,
    CheckResult,
    ExecutionReport,
    HostTarget,
    RunStatus,
    StepResult,
    StepStatus,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutorConfig:
    """Runtime behavior for the step executor."""

    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    command_timeout: float = DEFAULT_TIMEOUT


def topological_order(steps: list[Step]) -> list[Step]:
    """Order steps so dependencies come first, keeping declaration order on ties."""
    by_name: dict[str, Step] = {}
    for step in steps:
        if step.name in by_name:
            raise ConfigError(f"Duplicate step name: {step.name}")
        by_name[step.name] = step
    for step in steps:
        for dep in step.depends_on:
            if dep not in by_name:
                raise ConfigError(
                    f"Step {step.name} depends on unknown step {dep}", step=step.name
                )

    ordered: list[Step] = []
    done: set[str] = set()
    remaining = list(steps)
    while remaining:
        ready = next(
            (s for s in remaining if all(dep in done for dep in s.depends_on)), None
        )
        if ready is None:
            names = ", ".join(s.name for s in remaining)
            raise CyclicDependency(f"Cyclic dependency among steps: {names}")
        ordered.append(ready)
        done.add(ready.name)
        remaining.remove(ready)
    return ordered


class StepExecutor:
    """Runs one host pipeline sequentially and reports per-step outcomes."""

    def __init__(
        self,
        runner: CommandRunner,
        config: ExecutorConfig | None = None,
        publisher: EventPublisher | None = None,
        checker: IdempotencyChecker | None = None,
        redactor: Redactor | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.runner = runner
        self.config = config or ExecutorConfig()
        self.publisher = publisher
        self.checker = checker or IdempotencyChecker()
        self.redactor = redactor or Redactor()
        self.sleep = sleep

    def _emit(
        self,
        event_type: str,
        run_id: str,
        host: str | None = None,
        step: str | None = None,
        status: str | None = None,
        message: str | None = None,
    ) -> None:
        if self.publisher is None:
            return
        self.publisher.publish(
            ExecutionEvent(
                type=event_type,
                run_id=run_id,
                timestamp=utc_now(),
                host=host,
                step=step,
                status=status,
                message=self.redactor.redact(message),
            )
        )

    def _context(self, step: Step, host: HostTarget) -> StepContext:
        return StepContext(
            runner=self.runner,
            host=host,
            timeout=step.timeout or self.config.command_timeout,
            step=step.name,
            redactor=self.redactor,
        )

    def _backoff(self, attempt: int) -> float:
        return min(self.config.backoff_base * (2**attempt), self.config.backoff_max)

    def _apply_with_retry(self, step: Step, ctx: StepContext) -> tuple[str, int]:
        """Apply a step, retrying transient failures. Returns (output, attempts)."""
        attempt = 0
        while True:
            try:
                ctx.attempt = attempt
                return step.apply.execute(ctx), attempt + 1
            except TransientError as exc:
                if attempt >= self.config.max_retries:
                    exc.step = exc.step or step.name
                    exc.attempts = attempt + 1
                    raise
                delay = self._backoff(attempt)
                logger.warning(
                    "step=%s host=%s transient failure, retrying in %.1fs: %s",
                    step.name,
                    ctx.host.key,
                    delay,
                    exc.message,
                )
                if delay > 0:
                    self.sleep(delay)
                attempt += 1
            except BootstrapError as exc:
                exc.step = exc.step or step.name
                exc.attempts = attempt + 1
                raise
            except Exception as exc:
                error = FatalError(f"Unexpected error: {exc}", step=step.name)
                error.attempts = attempt + 1
                raise error from exc

    def plan(self, steps: list[Step], host: HostTarget) -> list[tuple[Step, CheckResult]]:
        """Check-only pass: what would run, without changing anything."""
        return [
            (step, self.checker.check(step, self._context(step, host)))
            for step in topological_order(steps)
        ]

    def run(
        self, steps: list[Step], host: HostTarget, run_id: str | None = None
    ) -> ExecutionReport:
        """Converge every step in dependency order."""
        ordered = topological_order(steps)
        report = ExecutionReport(run_id=run_id or str(uuid4()), host=host.key)
        self._emit("run_status", report.run_id, host=host.key, status="running")
        applied: list[Step] = []

        for index, step in enumerate(ordered):
            ctx = self._context(step, host)
            self._emit(
                "step_status", report.run_id, host=host.key, step=step.name,
                status="checking",
            )
            check = self.checker.check(step, ctx)
            if check.outcome == CheckOutcome.SATISFIED:
                result = StepResult(step=step.name, status=StepStatus.SKIPPED)
                self._record(report, result, host)
                continue

            if check.outcome == CheckOutcome.CHECK_FAILED:
                failure: BootstrapError = FatalError(
                    f"Check failed: {check.detail}", step=step.name
                )
                attempts = 0
            else:
                failure, attempts, output = self._converge(step, ctx)
                if failure is None:
                    applied.append(step)
                    result = StepResult(
                        step=step.name,
                        status=StepStatus.APPLIED,
                        attempts=attempts,
                        output=self.redactor.redact(output),
                        rollback_available=step.rollback is not None,
                    )
                    self._record(report, result, host)
                    continue

            result = StepResult(
                step=step.name,
                status=StepStatus.FAILED,
                attempts=attempts,
                error=self.redactor.redact(failure.describe()),
                rollback_available=step.rollback is not None,
            )
            self._record(report, result, host)
            report.not_run = [s.name for s in ordered[index + 1 :]]
            if isinstance(failure, VerificationError):
                # apply ran, so the failing step's own changes are undone too
                self._rollback(report, [step], host, keep_status=True)
            self._rollback(report, applied, host)
            report.status = RunStatus.FAILED
            self._emit("run_complete", report.run_id, host=host.key, status="failed")
            return report

        report.status = RunStatus.COMPLETED
        self._emit("run_complete", report.run_id, host=host.key, status="completed")
        return report

    def _converge(
        self, step: Step, ctx: StepContext
    ) -> tuple[BootstrapError | None, int, str | None]:
        try:
            output, attempts = self._apply_with_retry(step, ctx)
        except BootstrapError as exc:
            return exc, exc.attempts, None
        verify = self.checker.check(step, ctx, verify=True)
        if verify.outcome != CheckOutcome.SATISFIED:
            return (
                VerificationError(
                    f"Step did not converge: {verify.detail or verify.outcome.value}",
                    step=step.name,
                    output=self.redactor.redact(output),
                ),
                attempts,
                output,
            )
        return None, attempts, output

    def _record(self, report: ExecutionReport, result: StepResult, host: HostTarget) -> None:
        report.step_results.append(result)
        log = logger.error if result.status == StepStatus.FAILED else logger.info
        log(
            "run_id=%s host=%s step=%s status=%s",
            report.run_id,
            host.key,
            result.step,
            result.status.value,
        )
        self._emit(
            "step_status",
            report.run_id,
            host=host.key,
            step=result.step,
            status=result.status.value,
            message=result.error,
        )

    def _rollback(
        self,
        report: ExecutionReport,
        applied: list[Step],
        host: HostTarget,
        keep_status: bool = False,
    ) -> None:
        """Undo applied steps in reverse order; flag those without rollback."""
        for step in reversed(applied):
            result = report.result_for(step.name)
            if result is None:
                continue
            if step.rollback is None:
                result.rollback_available = False
                logger.warning(
                    "run_id=%s host=%s step=%s has no rollback, left applied",
                    report.run_id,
                    host.key,
                    step.name,
                )
                continue
            ctx = self._context(step, host)
            try:
                step.rollback.execute(ctx)
            except BootstrapError as exc:
                result.rollback_error = self.redactor.redact(exc.describe())
                logger.error(
                    "run_id=%s host=%s step=%s rollback failed: %s",
                    report.run_id,
                    host.key,
                    step.name,
                    result.rollback_error,
                )
                continue
            if keep_status:
                result.output = "rolled back after failed verification"
                continue
            result.status = StepStatus.ROLLED_BACK
            logger.info(
                "run_id=%s host=%s step=%s status=rolled_back",
                report.run_id,
                host.key,
                step.name,
            )
            self._emit(
                "step_status",
                report.run_id,
                host=host.key,
                step=step.name,
                status=StepStatus.ROLLED_BACK.value,
            )
