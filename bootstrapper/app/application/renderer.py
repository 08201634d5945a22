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
"""Template rendering for every config artifact the pipeline writes.

Rendering is pure: the same template and variables always produce the
same text. Writing is a separate step (`TemplateRenderer.write`) that only
touches disk when the content changed, and always via temp file + rename.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import shlex
from pathlib import Path
from typing import Any, Mapping, Optional

from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateNotFound,
    TemplateSyntaxError,
    UndefinedError,
    meta,
)

from bootstrapper.app.application.secrets import Secret
from bootstrapper.app.domain.errors import InvalidTemplate, MissingVariable
from bootstrapper.app.domain.models import RenderedFile
from bootstrapper.app.infrastructure.local_files import atomic_write, read_text

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"

# Optional variables; anything else a template references is required.
TEMPLATE_DEFAULTS: dict[str, dict[str, Any]] = {
    "nginx_http.conf.j2": {"aliases": [], "web_root": "", "acme_root": ""},
    "nginx_https.conf.j2": {"aliases": [], "web_root": "", "acme_root": "", "cert_dir": ""},
    "nginx_tuning.conf.j2": {
        "client_max_body_size": "64m",
        "gzip_comp_level": 5,
        "fastcgi_read_timeout": 300,
    },
    "php_overrides.ini.j2": {
        "upload_max_filesize": "64M",
        "post_max_size": "64M",
        "memory_limit": "256M",
        "max_execution_time": 300,
    },
    "wp-config.php.j2": {"db_host": "localhost", "table_prefix": "wp_"},
    "db_setup.sql.j2": {"db_host": "localhost"},
}

SALT_NAMES = (
    "AUTH_KEY",
    "SECURE_AUTH_KEY",
    "LOGGED_IN_KEY",
    "NONCE_KEY",
    "AUTH_SALT",
    "SECURE_AUTH_SALT",
    "LOGGED_IN_SALT",
    "NONCE_SALT",
)


def _reveal(value: Any) -> str:
    if isinstance(value, Secret):
        return value.reveal()
    return str(value)


def shell_quote(value: Any) -> str:
    return shlex.quote(_reveal(value))


def sql_literal(value: Any) -> str:
    text = _reveal(value).replace("\\", "\\\\").replace("'", "''")
    return f"'{text}'"


def sql_identifier(value: Any) -> str:
    text = _reveal(value).replace("`", "``")
    return f"`{text}`"


def php_literal(value: Any) -> str:
    text = _reveal(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{text}'"


def derive_salts(seed: Secret | str) -> dict[str, str]:
    """Deterministic WordPress keys derived from one secret seed."""
    key = _reveal(seed).encode("utf-8")
    return {
        name: hmac.new(key, name.encode("ascii"), hashlib.sha512).hexdigest()
        for name in SALT_NAMES
    }


class TemplateRenderer:
    """jinja2-backed renderer with strict variables and escaping filters."""

    def __init__(self, template_dir: Path | str = TEMPLATE_DIR):
        self.env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["shell_quote"] = shell_quote
        self.env.filters["sql_literal"] = sql_literal
        self.env.filters["sql_identifier"] = sql_identifier
        self.env.filters["php_literal"] = php_literal

    def required_variables(self, template_id: str) -> set[str]:
        """Variables a template needs that have no default."""
        source = self._source(template_id)
        try:
            parsed = self.env.parse(source)
        except TemplateSyntaxError as exc:
            raise InvalidTemplate(
                f"Invalid template {template_id} line {exc.lineno}: {exc.message}"
            ) from exc
        names = meta.find_undeclared_variables(parsed)
        return names - set(TEMPLATE_DEFAULTS.get(template_id, {}))

    def _source(self, template_id: str) -> str:
        try:
            source, _, _ = self.env.loader.get_source(self.env, template_id)
        except TemplateNotFound as exc:
            raise InvalidTemplate(f"Unknown template: {template_id}") from exc
        return source

    def render(self, template_id: str, variables: Mapping[str, Any]) -> str:
        """Render a template; fails on absent variables or bad syntax."""
        missing = sorted(self.required_variables(template_id) - set(variables))
        if missing:
            raise MissingVariable(template_id, missing)
        context = dict(TEMPLATE_DEFAULTS.get(template_id, {}))
        context.update(variables)
        try:
            return self.env.get_template(template_id).render(**context)
        except UndefinedError as exc:
            raise MissingVariable(template_id, [str(exc.message)]) from exc
        except TemplateSyntaxError as exc:
            raise InvalidTemplate(
                f"Invalid template {template_id} line {exc.lineno}: {exc.message}"
            ) from exc

    def render_file(
        self, template_id: str, variables: Mapping[str, Any], path: str
    ) -> RenderedFile:
        """Render and compare against the current local file."""
        return RenderedFile(
            path=path,
            desired=self.render(template_id, variables),
            current=read_text(path),
        )

    def write(self, rendered: RenderedFile, mode: int = 0o644, owner: Optional[str] = None) -> bool:
        """Write only when content differs. Returns True when written."""
        if not rendered.changed:
            logger.debug("Unchanged, not writing %s", rendered.path)
            return False
        atomic_write(rendered.path, rendered.desired, mode=mode, owner=owner)
        rendered.current = rendered.desired
        return True
