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
"""Unit tests for the step catalog."""

import pytest

from bootstrapper.app.application.checks import AnyOf
from bootstrapper.app.application.config import parse_config
from bootstrapper.app.application.pipeline import PHASES, build_pipeline
from bootstrapper.app.application.renderer import TemplateRenderer
from bootstrapper.app.application.secrets import SecretResolver
from bootstrapper.app.application.step_executor import topological_order
from bootstrapper.app.application.steps import ShellAction, SqlScriptAction
from bootstrapper.app.domain.errors import MissingSecret
from bootstrapper.app.infrastructure.env_secret_store import InMemorySecretStore

DB_PASSWORD = "Sup3r-S3cret!"
SECRETS = {"db_password": DB_PASSWORD, "wp_salt_seed": "salt-seed"}


def make_config(**overrides):
    data = {
        "hosts": [{"address": "203.0.113.10"}],
        "site": {"domain": "example.com", "email": "ops@example.com"},
        "deploy": {"repository": "git@github.com:example/app.git"},
    }
    data.update(overrides)
    return parse_config(data)


def build(config, secrets=SECRETS):
    return build_pipeline(
        config, SecretResolver(InMemorySecretStore(secrets)), TemplateRenderer()
    )


def test_full_pipeline_orders_and_covers_every_phase():
    steps = topological_order(build(make_config()))
    names = [s.name for s in steps]

    for required in (
        "apt-index",
        "nginx-package",
        "mariadb-service",
        "php-fpm-service",
        "database",
        "wp-config",
        "nginx-site",
        "certificate",
        "nginx-site-https",
        "deploy-mirror",
    ):
        assert required in names
    assert names.index("certificate") < names.index("nginx-site-https")
    assert names.index("nginx-site-enabled") < names.index("certificate")
    assert {s.phase for s in steps} == set(PHASES)


def test_optional_features_can_be_disabled():
    config = make_config(
        tls={"enabled": False}, wordpress={"enabled": False}, deploy=None
    )
    names = {s.name for s in build(config)}

    assert "certificate" not in names
    assert "wp-config" not in names
    assert "deploy-mirror" not in names
    assert "nginx-site" in names


def test_secrets_never_appear_in_commands():
    steps = build(make_config())
    commands = [
        command
        for step in steps
        for action in (step.apply, step.rollback)
        if isinstance(action, ShellAction)
        for command in action.commands
    ]

    assert commands
    assert not any(DB_PASSWORD in c for c in commands)
    database = next(s for s in steps if s.name == "database")
    assert isinstance(database.apply, SqlScriptAction)
    assert DB_PASSWORD in database.apply.script
    assert DB_PASSWORD not in repr(database.apply)


def test_site_check_accepts_http_or_https_variant():
    steps = build(make_config())
    site = next(s for s in steps if s.name == "nginx-site")

    assert isinstance(site.check, AnyOf)
    assert len(site.check.checks) == 2


def test_missing_secret_fails_while_building():
    with pytest.raises(MissingSecret, match="db_password"):
        build(make_config(), secrets={"wp_salt_seed": "x"})


def site_content(steps, name):
    step = next(s for s in steps if s.name == name)
    return step.apply.content


def root_lines(text):
    return sorted({line.strip() for line in text.splitlines() if line.strip().startswith("root ")})


def test_site_without_wordpress_serves_the_deploy_symlink():
    config = make_config(wordpress={"enabled": False})
    steps = build(config)

    for name in ("nginx-site", "nginx-site-https"):
        assert root_lines(site_content(steps, name)) == [
            "root /srv/example.com/current;",
            "root /var/www/example.com;",
        ]
    assert config.deploy.current == "/srv/example.com/current"
    web_root = next(s for s in steps if s.name == "web-root")
    assert not any("/srv/example.com" in c for c in web_root.apply.commands)
    assert "deploy-link" not in {s.name for s in steps}


def test_wordpress_site_links_the_deploy_symlink_into_themes():
    steps = topological_order(build(make_config()))
    link = next(s for s in steps if s.name == "deploy-link")

    assert (
        "ln -sfn /srv/example.com/current /var/www/example.com/wp-content/themes/app"
        in link.apply.commands
    )
    assert root_lines(site_content(steps, "nginx-site")) == ["root /var/www/example.com;"]
    names = [s.name for s in steps]
    assert names.index("wp-config") < names.index("deploy-link")
