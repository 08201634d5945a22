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
"""Step definitions and the actions that converge them."""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from typing import Optional, Protocol

from bootstrapper.app.application.checks import Check
from bootstrapper.app.application.command_runner import StepContext
from bootstrapper.app.domain.errors import FatalError

BACKUP_SUFFIX = ".bootstrapper.bak"


class Action(Protocol):
    """Mutating half of a step. Raises TransientError or FatalError."""

    def execute(self, ctx: StepContext) -> str:
        """Apply the change and return captured output."""


@dataclass(frozen=True)
class Step:
    """Named unit of convergence: check, apply, verify, rollback."""

    name: str
    check: Check
    apply: Action
    depends_on: tuple[str, ...] = ()
    rollback: Optional[Action] = None
    verify: Optional[Check] = None
    phase: str = "configure"
    timeout: Optional[float] = None


@dataclass(frozen=True)
class ShellAction:
    """Runs commands in order; the first failure stops the action."""

    commands: tuple[str, ...]

    def execute(self, ctx: StepContext) -> str:
        outputs = []
        for command in self.commands:
            result = ctx.run_checked(command)
            if result.stdout:
                outputs.append(result.stdout)
        return "\n".join(outputs)


@dataclass(frozen=True)
class WriteFileAction:
    """Uploads rendered content, validates it and reloads a service.

    When validation fails the previous file is restored before the error
    propagates, so a broken config is never left in place.
    """

    path: str
    content: str = field(repr=False)
    mode: int = 0o644
    owner: Optional[str] = None
    validate: Optional[str] = None
    reload: Optional[str] = None
    backup: bool = True

    def execute(self, ctx: StepContext) -> str:
        path = shlex.quote(self.path)
        bak = shlex.quote(self.path + BACKUP_SUFFIX)
        # retries must keep the backup of the file as it was before the step
        if self.backup and ctx.attempt == 0:
            ctx.run_checked(
                f"if [ -e {path} ]; then cp -p {path} {bak}; else rm -f {bak}; fi"
            )
        ctx.put_file(self.path, self.content, mode=self.mode, owner=self.owner)
        outputs = [f"wrote {self.path} ({len(self.content)} bytes)"]
        if self.validate:
            result = ctx.run(self.validate)
            if not result.ok:
                if self.backup:
                    ctx.run(RestoreFileAction(self.path).restore_command())
                raise FatalError(
                    "Validation failed, previous file restored",
                    step=ctx.step,
                    command=self.validate,
                    exit_code=result.exit_code,
                    output=ctx.redactor.redact(result.tail()),
                )
            outputs.append(result.tail(5))
        if self.reload:
            ctx.run_checked(self.reload)
            outputs.append(f"reloaded: {self.reload}")
        return "\n".join(part for part in outputs if part)


@dataclass(frozen=True)
class RestoreFileAction:
    """Puts the backup taken by WriteFileAction back, or removes the file."""

    path: str
    reload: Optional[str] = None
    extra_commands: tuple[str, ...] = ()

    def restore_command(self) -> str:
        path = shlex.quote(self.path)
        bak = shlex.quote(self.path + BACKUP_SUFFIX)
        return f"if [ -e {bak} ]; then mv -f {bak} {path}; else rm -f {path}; fi"

    def execute(self, ctx: StepContext) -> str:
        ctx.run_checked(self.restore_command())
        for command in self.extra_commands:
            ctx.run_checked(command)
        if self.reload:
            ctx.run_checked(self.reload)
        return f"restored {self.path}"


@dataclass(frozen=True)
class SqlScriptAction:
    """Feeds a rendered SQL script to the database client.

    The script is uploaded with mode 0600 and removed afterwards, so
    credentials it contains never reach a process argument list.
    """

    script: str = field(repr=False)
    staging_path: str = "/root/.bootstrapper-setup.sql"
    client: str = "mysql"

    def execute(self, ctx: StepContext) -> str:
        staging = shlex.quote(self.staging_path)
        ctx.put_file(self.staging_path, self.script, mode=0o600)
        result = ctx.run_checked(
            f"{self.client} < {staging}; rc=$?; rm -f {staging}; exit $rc"
        )
        return result.stdout
