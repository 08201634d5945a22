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
"""Idempotency probes that decide whether a step needs to run.

Every probe is read-only: it may run commands on the host but never
changes state, so it can be called any number of times.
"""

from __future__ import annotations

import hashlib
import logging
import shlex
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol, TYPE_CHECKING

from bootstrapper.app.application.command_runner import StepContext
from bootstrapper.app.domain.errors import BootstrapError
from bootstrapper.app.domain.models import CheckOutcome, CheckResult

if TYPE_CHECKING:
    from bootstrapper.app.application.steps import Step

logger = logging.getLogger(__name__)

ABSENT_MARKER = "__BOOTSTRAPPER_ABSENT__"


class Check(Protocol):
    """Probe contract."""

    def probe(self, ctx: StepContext) -> CheckResult:
        """Inspect the host without changing it."""


def _satisfied(detail: str | None = None) -> CheckResult:
    return CheckResult(outcome=CheckOutcome.SATISFIED, detail=detail)


def _unsatisfied(detail: str | None = None) -> CheckResult:
    return CheckResult(outcome=CheckOutcome.UNSATISFIED, detail=detail)


def _check_failed(detail: str | None = None) -> CheckResult:
    return CheckResult(outcome=CheckOutcome.CHECK_FAILED, detail=detail)


@dataclass(frozen=True)
class CommandProbe:
    """Maps the exit code of a read-only command to an outcome."""

    command: str
    satisfied_codes: tuple[int, ...] = (0,)
    unsatisfied_codes: tuple[int, ...] = (1,)

    def probe(self, ctx: StepContext) -> CheckResult:
        result = ctx.run(self.command)
        if result.exit_code in self.satisfied_codes:
            return _satisfied()
        if result.exit_code in self.unsatisfied_codes:
            return _unsatisfied(f"exit code {result.exit_code}")
        return _check_failed(
            f"Unexpected exit code {result.exit_code} from probe: {result.tail(5)}"
        )


@dataclass(frozen=True)
class PathExists:
    path: str

    def probe(self, ctx: StepContext) -> CheckResult:
        return CommandProbe(f"test -e {shlex.quote(self.path)}").probe(ctx)


@dataclass(frozen=True)
class PackagesInstalled:
    """All packages are installed according to dpkg."""

    packages: tuple[str, ...]

    def probe(self, ctx: StepContext) -> CheckResult:
        names = " ".join(shlex.quote(p) for p in self.packages)
        result = ctx.run(f"dpkg-query -W -f='${{Status}}\\n' {names} 2>/dev/null")
        if result.exit_code not in (0, 1):
            return _check_failed(f"dpkg-query exited with {result.exit_code}")
        installed = [
            line for line in result.stdout.splitlines() if line.strip() == "install ok installed"
        ]
        if result.exit_code == 0 and len(installed) == len(self.packages):
            return _satisfied()
        return _unsatisfied(
            f"{len(installed)} of {len(self.packages)} packages installed"
        )


@dataclass(frozen=True)
class ServiceActive:
    """Service is running and, optionally, enabled at boot."""

    service: str
    enabled: bool = True

    def probe(self, ctx: StepContext) -> CheckResult:
        name = shlex.quote(self.service)
        command = f"systemctl is-active --quiet {name}"
        if self.enabled:
            command += f" && systemctl is-enabled --quiet {name}"
        # systemctl uses 1-4 for inactive/unknown units
        return CommandProbe(command, unsatisfied_codes=(1, 2, 3, 4)).probe(ctx)


@dataclass(frozen=True)
class FileMatches:
    """Remote file checksum equals the checksum of the desired content."""

    path: str
    content: str = field(repr=False)

    @property
    def expected_digest(self) -> str:
        return hashlib.sha256(self.content.encode("utf-8")).hexdigest()

    def probe(self, ctx: StepContext) -> CheckResult:
        path = shlex.quote(self.path)
        result = ctx.run(
            f"if [ -e {path} ]; then sha256sum {path}; else echo {ABSENT_MARKER}; fi"
        )
        if not result.ok:
            return _check_failed(f"sha256sum exited with {result.exit_code}")
        output = result.stdout.strip()
        if output == ABSENT_MARKER:
            return _unsatisfied(f"{self.path} is absent")
        digest = output.split()[0] if output else ""
        if len(digest) != 64:
            return _check_failed(f"Unreadable checksum output for {self.path}")
        if digest == self.expected_digest:
            return _satisfied()
        return _unsatisfied(f"{self.path} differs from rendered content")


def parse_not_after(output: str) -> datetime:
    """Parse `openssl x509 -enddate` output into an aware datetime."""
    line = output.strip()
    if not line.startswith("notAfter="):
        raise ValueError(f"Unexpected openssl output: {line[:80]}")
    value = line.split("=", 1)[1].strip()
    parsed = datetime.strptime(value, "%b %d %H:%M:%S %Y %Z")
    return parsed.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class CertificateValid:
    """Certificate exists and stays valid for more than min_days."""

    cert_path: str
    min_days: int = 30
    clock: Callable[[], datetime] = field(
        default=lambda: datetime.now(timezone.utc), compare=False, repr=False
    )

    def probe(self, ctx: StepContext) -> CheckResult:
        path = shlex.quote(self.cert_path)
        result = ctx.run(
            f"if [ -e {path} ]; then openssl x509 -enddate -noout -in {path}; "
            f"else echo {ABSENT_MARKER}; fi"
        )
        if not result.ok:
            return _check_failed(f"openssl exited with {result.exit_code}")
        if result.stdout.strip() == ABSENT_MARKER:
            return _unsatisfied(f"{self.cert_path} is absent")
        try:
            not_after = parse_not_after(result.stdout)
        except ValueError as exc:
            return _check_failed(str(exc))
        remaining = not_after - self.clock()
        if remaining > timedelta(days=self.min_days):
            return _satisfied(f"expires {not_after.isoformat()}")
        return _unsatisfied(f"{remaining.days} days remaining")


@dataclass(frozen=True)
class AllOf:
    checks: tuple[Check, ...]

    def probe(self, ctx: StepContext) -> CheckResult:
        unsatisfied: CheckResult | None = None
        for check in self.checks:
            result = check.probe(ctx)
            if result.outcome == CheckOutcome.CHECK_FAILED:
                return result
            if result.outcome == CheckOutcome.UNSATISFIED and unsatisfied is None:
                unsatisfied = result
        return unsatisfied or _satisfied()


@dataclass(frozen=True)
class AnyOf:
    checks: tuple[Check, ...]

    def probe(self, ctx: StepContext) -> CheckResult:
        last: CheckResult = _unsatisfied("no alternatives")
        for check in self.checks:
            result = check.probe(ctx)
            if result.outcome != CheckOutcome.UNSATISFIED:
                return result
            last = result
        return last


class IdempotencyChecker:
    """Runs a step's probe and turns probe errors into CHECK_FAILED."""

    def check(self, step: "Step", ctx: StepContext, verify: bool = False) -> CheckResult:
        probe = step.verify if verify and step.verify is not None else step.check
        try:
            result = probe.probe(ctx)
        except BootstrapError as exc:
            logger.warning("Probe for %s failed: %s", step.name, exc.message)
            return _check_failed(ctx.redactor.redact(exc.describe()))
        except Exception as exc:  # probes must never apply on ambiguous state
            logger.exception("Probe for %s raised", step.name)
            return _check_failed(ctx.redactor.redact(f"Probe error: {exc}"))
        if result.detail:
            result = CheckResult(result.outcome, ctx.redactor.redact(result.detail))
        return result
