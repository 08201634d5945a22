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
"""Unit tests for site configuration loading."""

import pytest

from bootstrapper.app.application.config import load_config, parse_config
from bootstrapper.app.domain.errors import ConfigError
from bootstrapper.app.domain.models import Transport


def base_config(**overrides):
    data = {
        "hosts": [{"address": "203.0.113.10", "sudo": True, "username": "ubuntu"}],
        "site": {"domain": "Example.com", "email": "ops@example.com"},
    }
    data.update(overrides)
    return data


def test_defaults_are_derived_from_site():
    config = parse_config(
        base_config(deploy={"repository": "git@github.com:example/app.git"})
    )

    assert config.site.domain == "example.com"
    assert config.site.web_root == "/var/www/example.com"
    assert config.site.php_socket == "/run/php/php8.1-fpm.sock"
    assert config.deploy.path == "/srv/example.com"
    assert config.deploy.services == ["php8.1-fpm", "nginx"]
    target = config.host_targets()[0]
    assert target.key == "203.0.113.10:22"
    assert target.sudo is True
    assert target.transport == Transport.SSH


def test_invalid_domain_is_rejected():
    with pytest.raises(ConfigError, match="site.domain"):
        parse_config(base_config(site={"domain": "not a domain", "email": "a@b.c"}))


def test_tls_requires_email():
    with pytest.raises(ConfigError, match="email"):
        parse_config(base_config(site={"domain": "example.com"}))


def test_tls_disabled_needs_no_email():
    config = parse_config(base_config(site={"domain": "example.com"}, tls={"enabled": False}))

    assert config.tls.enabled is False


def test_duplicate_hosts_are_rejected():
    with pytest.raises(ConfigError, match="Duplicate"):
        parse_config(base_config(hosts=[{"address": "h1"}, {"address": "h1"}]))


def test_database_identifiers_are_restricted():
    with pytest.raises(ConfigError, match="database.name"):
        parse_config(base_config(database={"name": "wp`; DROP"}))


def test_non_mapping_is_rejected():
    with pytest.raises(ConfigError, match="mapping"):
        parse_config(["not", "a", "mapping"])


def test_load_config_from_yaml(tmp_path):
    path = tmp_path / "site.yml"
    path.write_text(
        "hosts:\n"
        "  - address: 203.0.113.10\n"
        "site:\n"
        "  domain: example.com\n"
        "  email: ops@example.com\n"
        "  aliases: [www.example.com]\n"
    )

    config = load_config(path)

    assert config.site.server_names == ["example.com", "www.example.com"]


def test_load_config_reports_bad_yaml_and_missing_file(tmp_path):
    bad = tmp_path / "bad.yml"
    bad.write_text("hosts: [unclosed\n")

    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_config(bad)
    with pytest.raises(ConfigError, match="Cannot read"):
        load_config(tmp_path / "absent.yml")


def test_wordpress_deploys_are_linked_as_a_theme():
    config = parse_config(
        base_config(deploy={"repository": "git@github.com:example/shop-theme.git"})
    )

    assert config.deploy.mount == "wp-content/themes/shop-theme"
    assert config.release_link == "/var/www/example.com/wp-content/themes/shop-theme"
    assert config.document_root == "/var/www/example.com"


def test_site_without_wordpress_serves_the_live_release():
    config = parse_config(
        base_config(
            wordpress={"enabled": False},
            deploy={"repository": "git@github.com:example/app.git"},
        )
    )

    assert config.release_link is None
    assert config.document_root == "/srv/example.com/current"


@pytest.mark.parametrize(
    "web_root", ["/srv/example.com", "/srv/example.com/current", "/srv/example.com/x"]
)
def test_web_root_inside_deploy_path_is_rejected(web_root):
    data = base_config(deploy={"repository": "git@github.com:example/app.git"})
    data["site"]["web_root"] = web_root

    with pytest.raises(ConfigError, match="web_root must not be inside deploy.path"):
        parse_config(data)


def test_mount_cannot_escape_web_root():
    with pytest.raises(ConfigError, match="deploy.mount"):
        parse_config(
            base_config(deploy={"repository": "git@github.com:example/app.git", "mount": "../etc"})
        )
