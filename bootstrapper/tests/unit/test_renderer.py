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
"""Unit tests for template rendering."""

import pytest

from bootstrapper.app.application.renderer import (
    SALT_NAMES,
    TemplateRenderer,
    derive_salts,
    php_literal,
    sql_literal,
)
from bootstrapper.app.application.secrets import Secret
from bootstrapper.app.domain.errors import InvalidTemplate, MissingVariable

SITE_VARS = {"domain": "example.com", "php_socket": "/run/php/php8.1-fpm.sock"}


def test_server_block_has_single_server_name_and_fastcgi_pass():
    renderer = TemplateRenderer()

    text = renderer.render("nginx_http.conf.j2", SITE_VARS)

    assert text.count("server_name example.com;") == 1
    assert text.count("fastcgi_pass unix:/run/php/php8.1-fpm.sock;") == 1
    assert "root /var/www/example.com;" in text


def test_rendering_is_deterministic():
    renderer = TemplateRenderer()

    first = renderer.render("nginx_http.conf.j2", SITE_VARS)
    second = renderer.render("nginx_http.conf.j2", dict(SITE_VARS))

    assert first == second


def test_aliases_are_added_to_server_name():
    renderer = TemplateRenderer()

    text = renderer.render(
        "nginx_https.conf.j2", {**SITE_VARS, "aliases": ["www.example.com"]}
    )

    assert text.count("server_name example.com www.example.com;") == 2
    assert "ssl_certificate /etc/letsencrypt/live/example.com/fullchain.pem;" in text


def test_missing_variables_are_all_named():
    renderer = TemplateRenderer()

    with pytest.raises(MissingVariable) as excinfo:
        renderer.render("nginx_http.conf.j2", {})

    assert excinfo.value.names == ["domain", "php_socket"]
    assert excinfo.value.template_id == "nginx_http.conf.j2"


def test_unknown_template_is_invalid():
    with pytest.raises(InvalidTemplate, match="Unknown template"):
        TemplateRenderer().render("apache.conf.j2", {})


def test_malformed_template_is_invalid(tmp_path):
    (tmp_path / "broken.j2").write_text("server_name {{ domain ;\n")
    renderer = TemplateRenderer(template_dir=tmp_path)

    with pytest.raises(InvalidTemplate, match="broken.j2"):
        renderer.render("broken.j2", {"domain": "example.com"})


def test_sql_and_php_literals_escape_quotes():
    assert sql_literal("it's") == "'it''s'"
    assert sql_literal("back\\slash") == "'back\\\\slash'"
    assert php_literal("it's") == "'it\\'s'"


def test_secret_values_render_but_never_repr():
    renderer = TemplateRenderer()
    password = Secret("db_password", "p'ss")

    text = renderer.render(
        "db_setup.sql.j2",
        {"db_name": "wordpress", "db_user": "wp", "db_password": password},
    )

    assert "IDENTIFIED BY 'p''ss';" in text
    assert "CREATE DATABASE IF NOT EXISTS `wordpress`" in text
    assert "p'ss" not in repr(password)


def test_derived_salts_are_stable_and_distinct():
    first = derive_salts(Secret("seed", "s3cret"))
    second = derive_salts("s3cret")

    assert first == second
    assert set(first) == set(SALT_NAMES)
    assert len(set(first.values())) == len(SALT_NAMES)


def test_wp_config_contains_every_salt():
    renderer = TemplateRenderer()
    salts = derive_salts("seed")

    text = renderer.render(
        "wp-config.php.j2",
        {
            "db_name": "wordpress",
            "db_user": "wp",
            "db_password": Secret("db_password", "pw"),
            "salts": salts,
            "force_ssl": True,
        },
    )

    for name, value in salts.items():
        assert f"define( '{name}', '{value}' );" in text
    assert "define( 'FORCE_SSL_ADMIN', true );" in text
    assert "$table_prefix = 'wp_';" in text


def test_write_only_touches_disk_when_changed(tmp_path):
    renderer = TemplateRenderer()
    target = tmp_path / "tuning.conf"

    rendered = renderer.render_file("nginx_tuning.conf.j2", {}, str(target))
    assert renderer.write(rendered) is True
    mtime = target.stat().st_mtime_ns

    again = renderer.render_file("nginx_tuning.conf.j2", {}, str(target))
    assert again.changed is False
    assert renderer.write(again) is False
    assert target.stat().st_mtime_ns == mtime
    assert "client_max_body_size 64m;" in target.read_text()


def test_renewal_hook_quotes_service_names():
    text = TemplateRenderer().render(
        "certbot_reload_hook.sh.j2", {"services": ["nginx", "php8.1-fpm; rm -rf /"]}
    )

    assert text.startswith("#!/bin/sh\n")
    assert "systemctl reload nginx\n" in text
    assert "systemctl reload 'php8.1-fpm; rm -rf /'\n" in text
