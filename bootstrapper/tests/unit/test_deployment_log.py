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
"""Unit tests for deployment record logs."""

from bootstrapper.app.domain.models import (
    DeploymentRecord,
    DeployStatus,
    StepResult,
    StepStatus,
)
from bootstrapper.app.infrastructure.deployment_log import (
    InMemoryDeploymentLog,
    JsonlDeploymentLog,
)


def make_record(deployment_id, host="web1:22", outcome=DeployStatus.SUCCESS):
    return DeploymentRecord(
        deployment_id=deployment_id,
        host=host,
        repository="example/app",
        commit_sha="3f2c9a1",
        branch="main",
        timestamp="2026-10-17T10:00:00+00:00",
        outcome=outcome,
        steps=(StepResult(step="pull", status=StepStatus.APPLIED, attempts=1),),
    )


def test_in_memory_log_filters_by_host():
    log = InMemoryDeploymentLog()
    log.append(make_record("d1"))
    log.append(make_record("d2", host="web2:22"))

    assert [r.deployment_id for r in log.list()] == ["d1", "d2"]
    assert [r.deployment_id for r in log.list(host="web2:22")] == ["d2"]


def test_jsonl_log_survives_reopen(tmp_path):
    path = tmp_path / "logs" / "deployments.jsonl"
    JsonlDeploymentLog(path).append(make_record("d1"))
    JsonlDeploymentLog(path).append(make_record("d2", outcome=DeployStatus.FAILED))

    records = JsonlDeploymentLog(path).list()

    assert [r.deployment_id for r in records] == ["d1", "d2"]
    assert records[1].outcome == DeployStatus.FAILED
    assert records[0].steps[0].status == StepStatus.APPLIED
    assert records[0] == make_record("d1")
    assert len(path.read_text().splitlines()) == 2
