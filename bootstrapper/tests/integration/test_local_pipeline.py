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
"""Converge real files through bash on the local machine."""

import shlex

import pytest

from bootstrapper.app.application.checks import PathExists
from bootstrapper.app.application.pipeline import managed_file_step
from bootstrapper.app.application.step_executor import ExecutorConfig, StepExecutor
from bootstrapper.app.application.steps import ShellAction, Step
from bootstrapper.app.domain.models import HostTarget, RunStatus, StepStatus, Transport
from bootstrapper.app.infrastructure.local_command_runner import LocalCommandRunner

pytestmark = pytest.mark.integration

LOCALHOST = HostTarget(address="localhost", transport=Transport.LOCAL)


def make_executor(max_retries=0):
    return StepExecutor(
        runner=LocalCommandRunner(),
        config=ExecutorConfig(max_retries=max_retries, backoff_base=0.0, command_timeout=30),
        sleep=lambda _: None,
    )


def site_steps(root, content="listen 80;\n", validate=None):
    conf_dir = str(root / "conf.d")
    conf = f"{conf_dir}/site.conf"
    return [
        Step(
            name="conf-dir",
            check=PathExists(conf_dir),
            apply=ShellAction((f"mkdir -p {shlex.quote(conf_dir)}",)),
            rollback=ShellAction((f"rmdir {shlex.quote(conf_dir)}",)),
        ),
        managed_file_step(
            "site-conf",
            conf,
            content,
            depends_on=("conf-dir",),
            validate=validate or f"test -s {shlex.quote(conf)}",
        ),
    ]


def test_second_run_changes_nothing(tmp_path):
    executor = make_executor()

    first = executor.run(site_steps(tmp_path), LOCALHOST)
    second = executor.run(site_steps(tmp_path), LOCALHOST)

    assert first.status == RunStatus.COMPLETED
    assert [r.status for r in first.step_results] == [StepStatus.APPLIED] * 2
    assert (tmp_path / "conf.d" / "site.conf").read_text() == "listen 80;\n"
    assert [r.status for r in second.step_results] == [StepStatus.SKIPPED] * 2


def test_failed_validation_keeps_previous_file(tmp_path):
    executor = make_executor()
    executor.run(site_steps(tmp_path), LOCALHOST)

    report = executor.run(
        site_steps(tmp_path, content="listen 8080;\n", validate="false"), LOCALHOST
    )

    assert report.status == RunStatus.FAILED
    assert report.result_for("site-conf").status == StepStatus.FAILED
    assert (tmp_path / "conf.d" / "site.conf").read_text() == "listen 80;\n"


def test_rollback_after_retried_reload_restores_original(tmp_path):
    conf = tmp_path / "site.conf"
    conf.write_text("OLD\n")
    flag = shlex.quote(str(tmp_path / "reloaded-once"))
    flaky_reload = (
        f"if [ ! -e {flag} ]; then touch {flag}; "
        "echo 'Connection timed out' >&2; exit 1; fi"
    )
    steps = [
        managed_file_step("site-conf", str(conf), "NEW\n", depends_on=(), reload=flaky_reload),
        Step(
            name="later",
            depends_on=("site-conf",),
            check=PathExists(str(tmp_path / "never")),
            apply=ShellAction(("exit 3",)),
        ),
    ]

    report = make_executor(max_retries=2).run(steps, LOCALHOST)

    assert report.result_for("site-conf").attempts == 2
    assert report.result_for("site-conf").status == StepStatus.ROLLED_BACK
    assert conf.read_text() == "OLD\n"
