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
"""Append-only deployment record logs."""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from threading import Lock
from typing import Protocol

from bootstrapper.app.domain.models import (
    DeploymentRecord,
    DeployStatus,
    StepResult,
    StepStatus,
)


class DeploymentLog(Protocol):
    """Append-only store of deployment records."""

    def append(self, record: DeploymentRecord) -> None:
        """Store one record. Records are never changed afterwards."""

    def list(self, host: str | None = None) -> list[DeploymentRecord]:
        """Records in append order, optionally for one host."""


class InMemoryDeploymentLog(DeploymentLog):
    """Thread-safe in-memory deployment log."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._records: list[DeploymentRecord] = []

    def append(self, record: DeploymentRecord) -> None:
        with self._lock:
            self._records.append(record)

    def list(self, host: str | None = None) -> list[DeploymentRecord]:
        with self._lock:
            return [r for r in self._records if host is None or r.host == host]


def record_to_dict(record: DeploymentRecord) -> dict:
    data = asdict(record)
    data["outcome"] = record.outcome.value
    data["steps"] = [
        {**asdict(step), "status": step.status.value} for step in record.steps
    ]
    return data


def record_from_dict(data: dict) -> DeploymentRecord:
    steps = tuple(
        StepResult(**{**step, "status": StepStatus(step["status"])})
        for step in data.get("steps", [])
    )
    return DeploymentRecord(
        **{
            **data,
            "outcome": DeployStatus(data["outcome"]),
            "steps": steps,
        }
    )


class JsonlDeploymentLog(DeploymentLog):
    """Deployment log persisted as one JSON object per line."""

    def __init__(self, path: Path | str):
        self._path = Path(path)
        self._lock = Lock()

    @property
    def path(self) -> Path:
        return self._path

    def append(self, record: DeploymentRecord) -> None:
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(record_to_dict(record), ensure_ascii=False) + "\n")

    def list(self, host: str | None = None) -> list[DeploymentRecord]:
        with self._lock:
            if not self._path.exists():
                return []
            lines = self._path.read_text(encoding="utf-8").splitlines()
        records = [record_from_dict(json.loads(line)) for line in lines if line.strip()]
        return [r for r in records if host is None or r.host == host]
