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
"""In-memory orchestration result store."""

from __future__ import annotations

from threading import Lock

from bootstrapper.app.application.orchestrator import OrchestrationResult


class InMemoryRunStore:
    """Stores finished orchestration results by run_id."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._results: dict[str, OrchestrationResult] = {}

    def save(self, result: OrchestrationResult) -> None:
        with self._lock:
            self._results[result.run_id] = result

    def get(self, run_id: str) -> OrchestrationResult | None:
        with self._lock:
            return self._results.get(run_id)

    def list(self) -> list[OrchestrationResult]:
        with self._lock:
            return list(self._results.values())
