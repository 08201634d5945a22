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
"""Simulation runner for API-level scaffolding and dry demos.

Behaves like an already provisioned host: packages and services report
installed, certificates are far from expiry, and files exist only once
they have been written through `put_file`.
"""

from __future__ import annotations

import hashlib
import os
import shlex
import time
from threading import Lock
from typing import Optional

from bootstrapper.app.application.checks import ABSENT_MARKER
from bootstrapper.app.application.command_runner import DEFAULT_TIMEOUT, CommandRunner
from bootstrapper.app.domain.models import CommandResult, HostTarget

SIMULATED_NOT_AFTER = "notAfter=Jan  1 00:00:00 2099 GMT"


def unwrap_sudo(command: str) -> str:
    tokens = shlex.split(command)
    if tokens[:4] == ["sudo", "-n", "sh", "-c"] and len(tokens) == 5:
        return tokens[4]
    return command


class SimulatedCommandRunner(CommandRunner):
    """Records every command and answers probes like a converged host."""

    def __init__(self) -> None:
        self._lock = Lock()
        self.commands: list[tuple[str, str]] = []
        self.files: dict[tuple[str, str], str] = {}

    def _respond(self, host: HostTarget, command: str) -> str:
        try:
            tokens = shlex.split(command)
        except ValueError:
            return ""
        if "sha256sum" in tokens:
            path = tokens[tokens.index("sha256sum") + 1].rstrip(";")
            with self._lock:
                content = self.files.get((host.key, path))
            if content is None:
                return ABSENT_MARKER
            return f"{hashlib.sha256(content.encode('utf-8')).hexdigest()}  {path}"
        if tokens and tokens[0] == "dpkg-query":
            names = [t for t in tokens[3:] if not t.startswith("2>")]
            return "install ok installed\n" * len(names)
        if "x509" in tokens and "-enddate" in tokens:
            return SIMULATED_NOT_AFTER
        return ""

    def run(
        self, host: HostTarget, command: str, timeout: float = DEFAULT_TIMEOUT
    ) -> CommandResult:
        del timeout
        delay_ms = int(os.getenv("BOOTSTRAPPER_SIMULATED_DELAY_MS", "0").strip() or "0")
        if delay_ms > 0:
            time.sleep(delay_ms / 1000.0)
        with self._lock:
            self.commands.append((host.key, command))
        return CommandResult(exit_code=0, stdout=self._respond(host, unwrap_sudo(command)))

    def put_file(
        self,
        host: HostTarget,
        path: str,
        content: str,
        mode: int = 0o644,
        owner: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        del mode, owner, timeout
        with self._lock:
            self.files[(host.key, path)] = content
