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
"""Command line entrypoint.

Exit codes: 0 success, 1 a host or deployment failed, 2 bad configuration.
"""

import logging
import os

import click
import yaml
from rich.console import Console
from rich.table import Table

from bootstrapper.app.application.config import SiteConfig, load_config
from bootstrapper.app.application.deployment_service import DeploymentService, DeployTarget
from bootstrapper.app.application.orchestrator import EXIT_CONFIG, EXIT_FAILED, EXIT_OK, Orchestrator
from bootstrapper.app.application.renderer import TemplateRenderer
from bootstrapper.app.application.secrets import Redactor, SecretResolver
from bootstrapper.app.domain.errors import ConfigError
from bootstrapper.app.domain.models import CheckOutcome, DeployStatus, TriggerEvent
from bootstrapper.app.infrastructure.alerts import LoggingAlertSink
from bootstrapper.app.infrastructure.deployment_log import (
    DeploymentLog,
    InMemoryDeploymentLog,
    JsonlDeploymentLog,
)
from bootstrapper.app.infrastructure.env_secret_store import EnvSecretStore
from bootstrapper.app.infrastructure.runners import RUNNER_MODES, build_runner

console = Console()

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
OUTCOME_STYLES = {
    CheckOutcome.SATISFIED: "green",
    CheckOutcome.UNSATISFIED: "yellow",
    CheckOutcome.CHECK_FAILED: "red",
}
STATUS_STYLES = {
    "skipped": "dim",
    "applied": "green",
    "failed": "red",
    "rolled_back": "yellow",
}


class Services:
    """Wiring shared by the commands of one invocation."""

    def __init__(self, runner_mode: str):
        self.runner_mode = runner_mode
        self.redactor = Redactor()
        self.secret_store = EnvSecretStore()
        self.secret_resolver = SecretResolver(self.secret_store, self.redactor)
        self._runner = None

    @property
    def runner(self):
        if self._runner is None:
            self._runner = build_runner(self.runner_mode, self.secret_resolver.resolve)
        return self._runner

    def orchestrator(self) -> Orchestrator:
        return Orchestrator(
            runner=self.runner, secret_store=self.secret_store, redactor=self.redactor
        )


def _config_error(ctx: click.Context, exc: ConfigError) -> None:
    console.print(f"[red]Configuration error:[/red] {exc.message}", markup=True, highlight=False)
    ctx.exit(EXIT_CONFIG)


def _load(ctx: click.Context, path: str) -> SiteConfig:
    try:
        return load_config(path)
    except ConfigError as exc:
        _config_error(ctx, exc)
        raise


@click.group()
@click.version_option(version="0.1.0")
@click.option(
    "--log-level",
    envvar="BOOTSTRAPPER_LOG_LEVEL",
    default="INFO",
    show_default=True,
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
)
@click.option(
    "--runner",
    "runner_mode",
    envvar="BOOTSTRAPPER_RUNNER_MODE",
    default="ssh",
    show_default=True,
    type=click.Choice(RUNNER_MODES),
    help="How commands reach hosts.",
)
@click.pass_context
def cli(ctx, log_level, runner_mode):
    """Bootstrap LEMP servers idempotently and deploy on push."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = Services(runner_mode)


@cli.command()
@click.argument("config_path", type=click.Path(dir_okay=False))
@click.pass_context
def plan(ctx, config_path):
    """Probe every step without changing anything."""
    services: Services = ctx.obj
    config = _load(ctx, config_path)
    result = services.orchestrator().plan(config)
    if result.error:
        console.print(f"[red]Configuration error:[/red] {result.error}", highlight=False)
        ctx.exit(result.exit_code)
    for host, checks in result.checks.items():
        table = Table(title=f"Plan for {host}")
        table.add_column("Step", style="cyan", no_wrap=True)
        table.add_column("State")
        table.add_column("Detail", style="dim")
        for step, check in checks:
            style = OUTCOME_STYLES[check.outcome]
            table.add_row(step, f"[{style}]{check.outcome.value}[/{style}]", check.detail or "")
        console.print(table)
    ctx.exit(result.exit_code)


@cli.command()
@click.argument("config_path", type=click.Path(dir_okay=False))
@click.option("--run-id", default=None, help="Correlation id for logs and events.")
@click.pass_context
def provision(ctx, config_path, run_id):
    """Converge every configured host."""
    services: Services = ctx.obj
    config = _load(ctx, config_path)
    result = services.orchestrator().provision(config, run_id=run_id)
    if result.error:
        console.print(f"[red]Configuration error:[/red] {result.error}", highlight=False)
        ctx.exit(result.exit_code)

    for host, report in result.reports.items():
        table = Table(title=f"{host}: {report.status.value}")
        table.add_column("Step", style="cyan", no_wrap=True)
        table.add_column("Status")
        table.add_column("Attempts", justify="right")
        table.add_column("Notes", style="dim")
        for step in report.step_results:
            style = STATUS_STYLES.get(step.status.value, "white")
            notes = step.error or ""
            if not step.rollback_available and step.status.value != "skipped":
                notes = (notes + " (no rollback)").strip()
            if step.rollback_error:
                notes = f"{notes} rollback failed: {step.rollback_error}".strip()
            table.add_row(
                step.step,
                f"[{style}]{step.status.value}[/{style}]",
                str(step.attempts),
                notes,
            )
        for name in report.not_run:
            table.add_row(name, "[dim]not run[/dim]", "0", "")
        console.print(table)
    console.print(f"run_id={result.run_id} exit_code={result.exit_code}", highlight=False)
    ctx.exit(result.exit_code)


def _parse_vars(pairs, vars_file) -> dict:
    variables: dict = {}
    if vars_file:
        with open(vars_file, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Variables file {vars_file} must contain a mapping")
        variables.update(loaded)
    for pair in pairs:
        if "=" not in pair:
            raise ConfigError(f"Expected KEY=VALUE, got {pair!r}")
        key, value = pair.split("=", 1)
        variables[key.strip()] = yaml.safe_load(value) if value else ""
    return variables


@cli.command()
@click.argument("template_id")
@click.option("--var", "pairs", multiple=True, help="Template variable as KEY=VALUE.")
@click.option("--vars-file", type=click.Path(exists=True, dir_okay=False), default=None)
@click.option("--output", type=click.Path(dir_okay=False), default=None,
              help="Write atomically to this path instead of stdout.")
@click.option("--mode", default="644", show_default=True, help="Octal file mode for --output.")
@click.pass_context
def render(ctx, template_id, pairs, vars_file, output, mode):
    """Render one template from the bundled set."""
    renderer = TemplateRenderer()
    try:
        variables = _parse_vars(pairs, vars_file)
        if output is None:
            click.echo(renderer.render(template_id, variables), nl=False)
            return
        rendered = renderer.render_file(template_id, variables, output)
    except ConfigError as exc:
        _config_error(ctx, exc)
        return
    changed = renderer.write(rendered, mode=int(mode, 8))
    click.echo(f"{output}: {'written' if changed else 'unchanged'}")


@cli.command()
@click.argument("config_path", type=click.Path(dir_okay=False))
@click.option("--commit", "commit_sha", required=True, help="Commit SHA to deploy.")
@click.option("--branch", default=None, help="Defaults to the configured branch.")
@click.option("--host", "host_key", default=None, help="Only this host (address:port).")
@click.option("--log", "log_path", type=click.Path(dir_okay=False), default=None,
              help="Append deployment records to this JSONL file.")
@click.pass_context
def deploy(ctx, config_path, commit_sha, branch, host_key, log_path):
    """Deploy a commit to provisioned hosts now."""
    services: Services = ctx.obj
    config = _load(ctx, config_path)
    if config.deploy is None:
        _config_error(ctx, ConfigError("No deploy section in site configuration"))
    log: DeploymentLog = JsonlDeploymentLog(log_path) if log_path else InMemoryDeploymentLog()
    service = DeploymentService(
        runner=services.runner,
        log=log,
        alerts=LoggingAlertSink(),
        redactor=services.redactor,
    )
    event = TriggerEvent(
        repository=config.deploy.repository_name or config.deploy.repository,
        commit_sha=commit_sha.strip().lower(),
        branch=branch or config.deploy.branch,
    )
    targets = [t for t in config.host_targets() if host_key is None or t.key == host_key]
    if not targets:
        _config_error(ctx, ConfigError(f"No configured host matches {host_key}"))

    exit_code = EXIT_OK
    for target in targets:
        try:
            record = service.deploy(DeployTarget(host=target, settings=config.deploy), event)
        except ConfigError as exc:
            _config_error(ctx, exc)
            return
        if record.outcome == DeployStatus.SUCCESS:
            console.print(f"[green]{record.host}[/green] deployed {record.commit_sha}", highlight=False)
        else:
            exit_code = EXIT_FAILED
            console.print(f"[red]{record.host}[/red] failed: {record.error}", highlight=False)
    ctx.exit(exit_code)


@cli.command()
@click.option("--host", "bind_host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8080, show_default=True, type=int)
@click.option("--config", "config_path", envvar="BOOTSTRAPPER_CONFIG",
              type=click.Path(dir_okay=False), default=None,
              help="Site configuration whose hosts are already provisioned.")
@click.pass_context
def serve(ctx, bind_host, port, config_path):
    """Run the HTTP API and deploy trigger listener."""
    import uvicorn

    services: Services = ctx.obj
    os.environ["BOOTSTRAPPER_RUNNER_MODE"] = services.runner_mode
    if config_path:
        os.environ["BOOTSTRAPPER_CONFIG"] = config_path
    from bootstrapper.app.api import main as api

    if config_path:
        count = api.enable_deploy_triggers(_load(ctx, config_path))
        logging.getLogger(__name__).info("Deploy triggers enabled for %s host(s)", count)
    uvicorn.run(api.app, host=bind_host, port=port)


def main() -> None:
    cli(prog_name="bootstrapper")


if __name__ == "__main__":
    main()
