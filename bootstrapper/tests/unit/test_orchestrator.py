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
"""Unit tests for multi-host orchestration."""

from bootstrapper.app.application.config import parse_config
from bootstrapper.app.application.deployment_service import DeploymentService
from bootstrapper.app.application.orchestrator import (
    EXIT_CONFIG,
    EXIT_FAILED,
    EXIT_OK,
    Orchestrator,
)
from bootstrapper.app.domain.models import CheckOutcome, CommandResult, RunStatus, StepStatus
from bootstrapper.app.infrastructure.deployment_log import InMemoryDeploymentLog
from bootstrapper.app.infrastructure.env_secret_store import InMemorySecretStore
from bootstrapper.app.infrastructure.in_memory_event_store import InMemoryEventStore
from bootstrapper.app.infrastructure.simulated_command_runner import SimulatedCommandRunner

SECRETS = {"db_password": "Sup3r-S3cret!", "wp_salt_seed": "salt-seed"}
FILE_STEPS = {
    "php-overrides",
    "nginx-tuning",
    "wp-config",
    "nginx-site",
    "nginx-site-https",
    "certbot-reload-hook",
}


class BrokenNginxRunner(SimulatedCommandRunner):
    """Simulated host where `nginx -t` fails on one address."""

    def __init__(self, broken: str):
        super().__init__()
        self.broken = broken

    def run(self, host, command, timeout=300.0):
        if host.address == self.broken and "nginx -t" in command:
            self.commands.append((host.key, command))
            return CommandResult(exit_code=1, stderr="emerg: bad directive")
        return super().run(host, command, timeout)


def make_config(**overrides):
    data = {
        "hosts": [{"address": "203.0.113.10"}, {"address": "203.0.113.11"}],
        "site": {"domain": "example.com", "email": "ops@example.com"},
    }
    data.update(overrides)
    return parse_config(data)


def make_orchestrator(runner, secrets=SECRETS, **kwargs):
    return Orchestrator(
        runner=runner,
        secret_store=InMemorySecretStore(dict(secrets)),
        sleep=lambda _: None,
        **kwargs,
    )


def statuses(report):
    return {r.step: r.status for r in report.step_results}


def test_provision_converges_then_second_run_skips_everything():
    runner = SimulatedCommandRunner()
    orchestrator = make_orchestrator(runner)
    config = make_config()

    first = orchestrator.provision(config, run_id="run-1")
    second = orchestrator.provision(config, run_id="run-2")

    assert first.exit_code == EXIT_OK
    assert set(first.reports) == {"203.0.113.10:22", "203.0.113.11:22"}
    for report in first.reports.values():
        applied = {n for n, s in statuses(report).items() if s == StepStatus.APPLIED}
        assert applied == FILE_STEPS
    assert second.exit_code == EXIT_OK
    for report in second.reports.values():
        assert set(statuses(report).values()) == {StepStatus.SKIPPED}


def test_missing_secret_is_config_error_before_any_host_is_touched():
    runner = SimulatedCommandRunner()
    events = InMemoryEventStore()
    orchestrator = make_orchestrator(runner, secrets={"wp_salt_seed": "x"}, publisher=events)

    result = orchestrator.provision(make_config(), run_id="run-1")

    assert result.exit_code == EXIT_CONFIG
    assert "db_password" in result.error
    assert result.reports == {}
    assert runner.commands == []
    assert events.list_events(run_id="run-1")[-1].status == "config_error"


def test_failed_host_does_not_stop_other_hosts():
    runner = BrokenNginxRunner(broken="203.0.113.11")
    orchestrator = make_orchestrator(runner)

    result = orchestrator.provision(make_config(), run_id="run-1")

    assert result.exit_code == EXIT_FAILED
    good = result.reports["203.0.113.10:22"]
    bad = result.reports["203.0.113.11:22"]
    assert good.status == RunStatus.COMPLETED
    assert bad.status == RunStatus.FAILED
    assert StepStatus.FAILED in statuses(bad).values()
    assert bad.not_run


def test_deploy_targets_registered_only_for_completed_hosts():
    runner = BrokenNginxRunner(broken="203.0.113.11")
    deployments = DeploymentService(runner=runner, log=InMemoryDeploymentLog())
    orchestrator = make_orchestrator(runner, deployments=deployments)
    config = make_config(deploy={"repository": "git@github.com:example/app.git"})

    orchestrator.provision(config)

    assert [t.host.key for t in deployments.targets()] == ["203.0.113.10:22"]


def test_register_deploy_targets_without_provisioning():
    deployments = DeploymentService(runner=SimulatedCommandRunner(), log=InMemoryDeploymentLog())
    orchestrator = make_orchestrator(SimulatedCommandRunner(), deployments=deployments)

    assert orchestrator.register_deploy_targets(make_config()) == 0
    count = orchestrator.register_deploy_targets(
        make_config(deploy={"repository": "git@github.com:example/app.git"})
    )

    assert count == 2


def test_plan_probes_without_writing_files():
    runner = SimulatedCommandRunner()
    orchestrator = make_orchestrator(runner)

    result = orchestrator.plan(make_config(hosts=[{"address": "203.0.113.10"}]))

    assert result.exit_code == EXIT_OK
    checks = dict(result.checks["203.0.113.10:22"])
    assert checks["apt-index"].outcome == CheckOutcome.SATISFIED
    assert checks["nginx-tuning"].outcome == CheckOutcome.UNSATISFIED
    assert runner.files == {}


def test_events_bracket_the_run():
    events = InMemoryEventStore()
    orchestrator = make_orchestrator(SimulatedCommandRunner(), publisher=events)

    orchestrator.provision(make_config(hosts=[{"address": "203.0.113.10"}]), run_id="run-9")

    types = [e.type for e in events.list_events(run_id="run-9")]
    assert types[0] == "orchestration_status"
    assert types[-1] == "orchestration_complete"
    assert "step_status" in types


def test_missing_host_credential_is_config_error():
    runner = SimulatedCommandRunner()
    orchestrator = make_orchestrator(runner)
    config = make_config(hosts=[{"address": "203.0.113.10", "credential_ref": "web1_key"}])

    result = orchestrator.provision(config)

    assert result.exit_code == EXIT_CONFIG
    assert "web1_key" in result.error
    assert runner.commands == []


def test_host_credential_present_in_store_is_accepted():
    orchestrator = make_orchestrator(
        SimulatedCommandRunner(), secrets={**SECRETS, "web1_key": "-----BEGIN KEY-----"}
    )
    config = make_config(hosts=[{"address": "203.0.113.10", "credential_ref": "web1_key"}])

    assert orchestrator.provision(config).exit_code == EXIT_OK
