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
"""Domain models for the bootstrap orchestrator."""

from dataclasses import dataclass, field
from typing import Optional
from enum import Enum


class Transport(str, Enum):
    """How commands reach a host."""

    LOCAL = "local"
    SSH = "ssh"


class CheckOutcome(str, Enum):
    """Result of probing a step's target state."""

    SATISFIED = "satisfied"
    UNSATISFIED = "unsatisfied"
    CHECK_FAILED = "check_failed"


class StepStatus(str, Enum):
    """Terminal states for one step in a run."""

    SKIPPED = "skipped"
    APPLIED = "applied"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class RunStatus(str, Enum):
    """Lifecycle states for a host pipeline run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class DeployStatus(str, Enum):
    """Lifecycle states for a deployment."""

    IDLE = "idle"
    PULLING = "pulling"
    RESTARTING = "restarting"
    VERIFYING = "verifying"
    SUCCESS = "success"
    FAILED = "failed"


class DeployEvent(str, Enum):
    """Events that trigger deployment state transitions."""

    PULL = "pull"
    RESTART = "restart"
    VERIFY = "verify"
    SUCCEED = "succeed"
    FAIL = "fail"


@dataclass(frozen=True)
class DeployTransition:
    """Single transition entry."""

    current: DeployStatus
    event: DeployEvent
    next_status: DeployStatus


@dataclass(frozen=True)
class HostTarget:
    """Host connection descriptor."""

    address: str
    port: int = 22
    username: str = "root"
    credential_ref: Optional[str] = None
    transport: Transport = Transport.SSH
    sudo: bool = False

    @property
    def key(self) -> str:
        """Stable key for maps, locks and logs."""
        return f"{self.address}:{self.port}"


@dataclass(frozen=True)
class CommandResult:
    """Captured outcome of one command."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def tail(self, lines: int = 20) -> str:
        """Last output lines of both streams, for diagnostics."""
        combined = "\n".join(part for part in (self.stdout, self.stderr) if part)
        return "\n".join(combined.splitlines()[-lines:])


@dataclass(frozen=True)
class CheckResult:
    """Probe outcome with optional detail."""

    outcome: CheckOutcome
    detail: Optional[str] = None

    @property
    def satisfied(self) -> bool:
        return self.outcome == CheckOutcome.SATISFIED


@dataclass
class RenderedFile:
    """Desired file content compared against what is on disk."""

    path: str
    desired: str
    current: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.desired != self.current


@dataclass
class StepResult:
    """Result for one step."""

    step: str
    status: StepStatus
    attempts: int = 0
    output: Optional[str] = None
    error: Optional[str] = None
    rollback_available: bool = True
    rollback_error: Optional[str] = None


@dataclass
class ExecutionReport:
    """Execution summary for one host pipeline."""

    run_id: str
    host: str
    status: RunStatus = RunStatus.RUNNING
    step_results: list[StepResult] = field(default_factory=list)
    not_run: list[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.status == RunStatus.FAILED

    def result_for(self, step: str) -> Optional[StepResult]:
        for result in self.step_results:
            if result.step == step:
                return result
        return None

    def count(self, status: StepStatus) -> int:
        return sum(1 for result in self.step_results if result.status == status)


@dataclass(frozen=True)
class TriggerEvent:
    """Push notification that may start a deployment."""

    repository: str
    commit_sha: str
    branch: str


@dataclass(frozen=True)
class DeploymentRecord:
    """Immutable outcome of one deployment attempt."""

    deployment_id: str
    host: str
    repository: str
    commit_sha: str
    branch: str
    timestamp: str
    outcome: DeployStatus
    steps: tuple[StepResult, ...] = ()
    error: Optional[str] = None
