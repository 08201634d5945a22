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
"""Finite state machine for deployment lifecycle control."""

from .models import DeployEvent, DeployStatus, DeployTransition


class DeployStateMachine:
    """Validates and executes deployment status transitions."""

    _transitions = {
        (DeployStatus.IDLE, DeployEvent.PULL): DeployStatus.PULLING,
        (DeployStatus.PULLING, DeployEvent.RESTART): DeployStatus.RESTARTING,
        (DeployStatus.PULLING, DeployEvent.FAIL): DeployStatus.FAILED,
        (DeployStatus.RESTARTING, DeployEvent.VERIFY): DeployStatus.VERIFYING,
        (DeployStatus.RESTARTING, DeployEvent.FAIL): DeployStatus.FAILED,
        (DeployStatus.VERIFYING, DeployEvent.SUCCEED): DeployStatus.SUCCESS,
        (DeployStatus.VERIFYING, DeployEvent.FAIL): DeployStatus.FAILED,
    }

    def can_transition(self, status: DeployStatus, event: DeployEvent) -> bool:
        """Return True if transition is valid for the current status."""
        return (status, event) in self._transitions

    def transition(self, status: DeployStatus, event: DeployEvent) -> DeployTransition:
        """Apply a transition or raise ValueError for invalid transitions."""
        key = (status, event)
        if key not in self._transitions:
            raise ValueError(
                f"Invalid transition: status={status.value}, event={event.value}"
            )
        return DeployTransition(
            current=status, event=event, next_status=self._transitions[key]
        )
