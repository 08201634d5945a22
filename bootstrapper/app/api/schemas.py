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
"""API schemas for the bootstrap service."""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class PushRepository(BaseModel):
    """Repository section of a push webhook."""

    full_name: str = Field(min_length=1, max_length=255)


class PushPayload(BaseModel):
    """Subset of a GitHub-style push payload."""

    ref: str = Field(min_length=1)
    after: str = Field(min_length=1)
    repository: PushRepository
    deleted: bool = False


class TriggerRequest(BaseModel):
    """Manual deployment trigger."""

    repository: str = Field(min_length=1, max_length=255)
    commit_sha: str = Field(pattern=r"^[0-9a-f]{7,40}$")
    branch: str = Field(min_length=1, max_length=255)


class DeployTicketResponse(BaseModel):
    """Per-host submission outcome."""

    host: str
    deployment_id: str
    status: str


class TriggerResponse(BaseModel):
    """Aggregated trigger outcome."""

    status: str
    deployments: List[DeployTicketResponse] = Field(default_factory=list)


class StepResultResponse(BaseModel):
    """Result for one step or deployment phase."""

    step: str
    status: str
    attempts: int = 0
    output: Optional[str] = None
    error: Optional[str] = None
    rollback_available: bool = True
    rollback_error: Optional[str] = None


class DeploymentRecordResponse(BaseModel):
    """Stored deployment record."""

    deployment_id: str
    host: str
    repository: str
    commit_sha: str
    branch: str
    timestamp: str
    outcome: str
    steps: List[StepResultResponse]
    error: Optional[str] = None


class HostReportResponse(BaseModel):
    """Execution report for one host."""

    status: str
    step_results: List[StepResultResponse]
    not_run: List[str]


class RunResponse(BaseModel):
    """Provisioning run state."""

    run_id: str
    status: str
    exit_code: Optional[int] = None
    error: Optional[str] = None
    hosts: Dict[str, HostReportResponse] = Field(default_factory=dict)


class ExecutionEventResponse(BaseModel):
    """Execution event payload."""

    type: str
    run_id: str
    timestamp: str
    host: Optional[str] = None
    step: Optional[str] = None
    status: Optional[str] = None
    message: Optional[str] = None
