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
"""Command runner for the machine the orchestrator runs on."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from typing import Optional

from bootstrapper.app.application.command_runner import DEFAULT_TIMEOUT, CommandRunner
from bootstrapper.app.domain.errors import CommandTimeout
from bootstrapper.app.domain.models import CommandResult, HostTarget
from bootstrapper.app.infrastructure.local_files import atomic_write

logger = logging.getLogger(__name__)


class LocalCommandRunner(CommandRunner):
    """Runs commands through bash in a new process group."""

    def __init__(self, shell: str = "/bin/bash"):
        self.shell = shell

    def run(
        self, host: HostTarget, command: str, timeout: float = DEFAULT_TIMEOUT
    ) -> CommandResult:
        logger.debug("local %s: %s", host.key, command)
        started = time.monotonic()
        process = subprocess.Popen(
            command,
            shell=True,
            executable=self.shell,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            start_new_session=True,
        )
        try:
            stdout, stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            os.killpg(process.pid, signal.SIGKILL)
            stdout, stderr = process.communicate()
            raise CommandTimeout(
                f"Command timed out after {timeout}s",
                command=command,
                output="\n".join((stdout or "").splitlines()[-20:]),
            )
        return CommandResult(
            exit_code=process.returncode,
            stdout=stdout,
            stderr=stderr,
            duration=time.monotonic() - started,
        )

    def put_file(
        self,
        host: HostTarget,
        path: str,
        content: str,
        mode: int = 0o644,
        owner: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        del timeout
        logger.debug("local %s: put %s (%s bytes)", host.key, path, len(content))
        atomic_write(path, content, mode=mode, owner=owner)
