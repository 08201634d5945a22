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
"""Command runner contract and failure classification."""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from typing import Optional, Protocol

from bootstrapper.app.application.secrets import Redactor
from bootstrapper.app.domain.errors import BootstrapError, FatalError, TransientError
from bootstrapper.app.domain.models import CommandResult, HostTarget

# Output patterns that mark a non-zero exit as worth retrying
TRANSIENT_PATTERNS = [
    "Could not get lock",
    "Unable to acquire the dpkg frontend lock",
    "Unable to lock directory",
    "is another process using it",
    "Temporary failure resolving",
    "Temporary failure in name resolution",
    "Could not resolve host",
    "Connection timed out",
    "Connection reset by peer",
    "Failed to fetch",
    "Network is unreachable",
]

DEFAULT_TIMEOUT = 300.0


class CommandRunner(Protocol):
    """Executes commands on a host. Never retries on its own."""

    def run(
        self, host: HostTarget, command: str, timeout: float = DEFAULT_TIMEOUT
    ) -> CommandResult:
        """Run one shell command and capture its result."""

    def put_file(
        self,
        host: HostTarget,
        path: str,
        content: str,
        mode: int = 0o644,
        owner: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Atomically replace a file on the host."""


@dataclass
class StepContext:
    """Everything a probe or action needs to touch one host."""

    runner: CommandRunner
    host: HostTarget
    timeout: float = DEFAULT_TIMEOUT
    step: str | None = None
    redactor: Redactor = field(default_factory=Redactor)
    # zero-based apply attempt within one run
    attempt: int = 0

    def run(self, command: str, timeout: float | None = None) -> CommandResult:
        """Run a command with host privileges, returning non-zero exits."""
        return self.runner.run(
            self.host,
            privileged(self.host, command),
            timeout=timeout or self.timeout,
        )

    def run_checked(self, command: str, timeout: float | None = None) -> CommandResult:
        """Run a command and raise a classified error on non-zero exit."""
        result = self.run(command, timeout=timeout)
        if not result.ok:
            error = classify_failure(command, result, step=self.step)
            error.output = self.redactor.redact(error.output)
            raise error
        return result

    def put_file(
        self, path: str, content: str, mode: int = 0o644, owner: str | None = None
    ) -> None:
        self.runner.put_file(
            self.host, path, content, mode=mode, owner=owner, timeout=self.timeout
        )


def privileged(host: HostTarget, command: str) -> str:
    """Wrap a command for hosts that need sudo."""
    if not host.sudo:
        return command
    return f"sudo -n sh -c {shlex.quote(command)}"


def classify_failure(
    command: str, result: CommandResult, step: str | None = None
) -> BootstrapError:
    """Map a non-zero exit to a transient or fatal error."""
    output = result.tail()
    for pattern in TRANSIENT_PATTERNS:
        if pattern in result.stdout or pattern in result.stderr:
            return TransientError(
                f"Transient failure detected: {pattern}",
                step=step,
                command=command,
                exit_code=result.exit_code,
                output=output,
            )
    return FatalError(
        "Command failed",
        step=step,
        command=command,
        exit_code=result.exit_code,
        output=output,
    )
