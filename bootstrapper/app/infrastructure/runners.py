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
"""Command runner selection by mode name."""

from __future__ import annotations

from typing import Callable, Optional

from bootstrapper.app.application.command_runner import DEFAULT_TIMEOUT, CommandRunner
from bootstrapper.app.application.secrets import Secret
from bootstrapper.app.domain.errors import ConfigError
from bootstrapper.app.domain.models import CommandResult, HostTarget, Transport
from bootstrapper.app.infrastructure.local_command_runner import LocalCommandRunner
from bootstrapper.app.infrastructure.netmiko_command_runner import NetmikoCommandRunner
from bootstrapper.app.infrastructure.simulated_command_runner import SimulatedCommandRunner

RUNNER_MODES = ("simulated", "local", "ssh")


class TransportRunner(CommandRunner):
    """Dispatches on each host's transport: local hosts run in-process."""

    def __init__(self, ssh: CommandRunner, local: CommandRunner):
        self.ssh = ssh
        self.local = local

    def _for(self, host: HostTarget) -> CommandRunner:
        return self.local if host.transport == Transport.LOCAL else self.ssh

    def run(
        self, host: HostTarget, command: str, timeout: float = DEFAULT_TIMEOUT
    ) -> CommandResult:
        return self._for(host).run(host, command, timeout=timeout)

    def put_file(
        self,
        host: HostTarget,
        path: str,
        content: str,
        mode: int = 0o644,
        owner: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._for(host).put_file(host, path, content, mode=mode, owner=owner, timeout=timeout)


def build_runner(mode: str, credential_resolver: Callable[[str], Secret]) -> CommandRunner:
    """Return the runner for `simulated`, `local` or `ssh` mode."""
    mode = mode.strip().lower()
    if mode == "ssh":
        return TransportRunner(
            ssh=NetmikoCommandRunner(credential_resolver=credential_resolver),
            local=LocalCommandRunner(),
        )
    if mode == "local":
        return LocalCommandRunner()
    if mode == "simulated":
        return SimulatedCommandRunner()
    raise ConfigError(
        f"Unknown runner mode: {mode} (expected one of {', '.join(RUNNER_MODES)})"
    )
