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
"""Error taxonomy shared by every layer."""

from __future__ import annotations


class BootstrapError(Exception):
    """Base class for orchestrator errors."""

    def __init__(
        self,
        message: str,
        *,
        step: str | None = None,
        command: str | None = None,
        exit_code: int | None = None,
        output: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.step = step
        self.command = command
        self.exit_code = exit_code
        self.output = output
        self.attempts = 1

    def describe(self) -> str:
        """Operator-facing description with command context."""
        parts = [self.message]
        if self.step:
            parts.append(f"step={self.step}")
        if self.command:
            parts.append(f"command={self.command}")
        if self.exit_code is not None:
            parts.append(f"exit_code={self.exit_code}")
        text = " ".join(parts)
        if self.output:
            text += f"\n{self.output}"
        return text


class TransientError(BootstrapError):
    """Failure worth retrying (network blip, lock contention)."""


class CommandTimeout(TransientError):
    """Command exceeded its deadline and was terminated."""


class HostConnectionError(TransientError):
    """Host could not be reached."""


class FatalError(BootstrapError):
    """Failure that halts the pipeline."""


class VerificationError(FatalError):
    """Apply succeeded but the target state did not converge."""


class ConfigError(BootstrapError):
    """Bad input rejected before anything executes."""


class CyclicDependency(ConfigError):
    """Step dependencies contain a cycle."""


class MissingVariable(ConfigError):
    """Template variables are absent."""

    def __init__(self, template_id: str, names: list[str]):
        super().__init__(
            f"Missing template variables for {template_id}: {', '.join(names)}"
        )
        self.template_id = template_id
        self.names = names


class InvalidTemplate(ConfigError):
    """Template is unknown or malformed."""


class MissingSecret(ConfigError):
    """Secret reference could not be resolved."""


class DeployInProgress(BootstrapError):
    """The host is busy: its deploy lock is held or the queue is full."""
