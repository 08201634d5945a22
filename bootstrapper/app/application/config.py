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
"""Site configuration loaded from YAML and validated with pydantic."""

from __future__ import annotations

import re
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from bootstrapper.app.domain.errors import ConfigError
from bootstrapper.app.domain.models import HostTarget, Transport

DOMAIN_PATTERN = re.compile(
    r"^(?=.{1,253}$)(?!-)[A-Za-z0-9-]{1,63}(?<!-)(\.(?!-)[A-Za-z0-9-]{1,63}(?<!-))+$"
)
IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")
SIZE_PATTERN = re.compile(r"^\d+[kKmMgG]?$")


def _validate_domain(value: str) -> str:
    value = value.strip().lower()
    if not DOMAIN_PATTERN.match(value):
        raise ValueError(f"Invalid domain name: {value}")
    return value


class HostConfig(BaseModel):
    """One server to bootstrap."""

    address: str = Field(min_length=1, max_length=255)
    port: int = Field(default=22, ge=1, le=65535)
    username: str = Field(default="root", min_length=1, max_length=64)
    credential_ref: Optional[str] = None
    transport: Transport = Transport.SSH
    sudo: bool = False

    def to_target(self) -> HostTarget:
        return HostTarget(
            address=self.address,
            port=self.port,
            username=self.username,
            credential_ref=self.credential_ref,
            transport=self.transport,
            sudo=self.sudo,
        )


class TuningSettings(BaseModel):
    """Nginx and PHP runtime tuning knobs."""

    client_max_body_size: str = "64m"
    gzip_comp_level: int = Field(default=5, ge=1, le=9)
    fastcgi_read_timeout: int = Field(default=300, ge=1)
    upload_max_filesize: str = "64M"
    post_max_size: str = "64M"
    memory_limit: str = "256M"
    max_execution_time: int = Field(default=300, ge=1)

    @field_validator(
        "client_max_body_size", "upload_max_filesize", "post_max_size", "memory_limit"
    )
    @classmethod
    def _size(cls, value: str) -> str:
        if not SIZE_PATTERN.match(value):
            raise ValueError(f"Invalid size value: {value}")
        return value


class SiteSettings(BaseModel):
    """The website served by the stack."""

    domain: str
    aliases: List[str] = Field(default_factory=list)
    email: Optional[str] = None
    web_root: Optional[str] = None
    php_version: str = Field(default="8.1", pattern=r"^\d+\.\d+$")
    firewall: bool = True
    tuning: TuningSettings = Field(default_factory=TuningSettings)

    @field_validator("domain")
    @classmethod
    def _domain(cls, value: str) -> str:
        return _validate_domain(value)

    @field_validator("aliases")
    @classmethod
    def _aliases(cls, value: List[str]) -> List[str]:
        return [_validate_domain(alias) for alias in value]

    @model_validator(mode="after")
    def _default_web_root(self) -> "SiteSettings":
        if not self.web_root:
            self.web_root = f"/var/www/{self.domain}"
        return self

    @property
    def php_socket(self) -> str:
        return f"/run/php/php{self.php_version}-fpm.sock"

    @property
    def php_fpm_service(self) -> str:
        return f"php{self.php_version}-fpm"

    @property
    def server_names(self) -> List[str]:
        return [self.domain, *self.aliases]


class DatabaseSettings(BaseModel):
    name: str = Field(default="wordpress", max_length=64, pattern=IDENTIFIER_PATTERN.pattern)
    user: str = Field(default="wordpress", max_length=32, pattern=IDENTIFIER_PATTERN.pattern)
    password_ref: str = "db_password"


class TlsSettings(BaseModel):
    enabled: bool = True
    min_days: int = Field(default=30, ge=1, le=89)
    staging: bool = False


class WordPressSettings(BaseModel):
    enabled: bool = True
    salt_ref: str = "wp_salt_seed"
    table_prefix: str = Field(default="wp_", pattern=r"^[A-Za-z0-9_]+$")
    download_url: str = "https://wordpress.org/latest.tar.gz"


class DeploySettings(BaseModel):
    """Push-to-deploy settings for the application repository."""

    repository: str = Field(min_length=1)
    repository_name: Optional[str] = None
    branch: str = Field(default="main", min_length=1)
    path: Optional[str] = None
    health_url: Optional[str] = None
    services: List[str] = Field(default_factory=list)
    keep_releases: int = Field(default=5, ge=1, le=50)
    owner: str = "www-data:www-data"
    webhook_secret_ref: Optional[str] = None
    health_attempts: int = Field(default=5, ge=1, le=30)
    health_delay: float = Field(default=2.0, ge=0.0, le=60.0)
    # link under the web root that points at the live release; unset serves it directly
    mount: Optional[str] = None

    @field_validator("mount")
    @classmethod
    def _mount(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip().strip("/")
        if not value or ".." in value.split("/"):
            raise ValueError(f"Invalid deploy.mount: {value!r}")
        return value

    @property
    def current(self) -> str:
        return f"{self.path}/current"

    @property
    def repository_slug(self) -> str:
        name = (self.repository_name or self.repository).rstrip("/")
        name = re.split(r"[/:]", name)[-1]
        return name[: -len(".git")] if name.endswith(".git") else name


class ExecutorSettings(BaseModel):
    max_retries: int = Field(default=3, ge=0, le=10)
    backoff_base: float = Field(default=1.0, ge=0.0, le=60.0)
    backoff_max: float = Field(default=30.0, ge=0.0, le=600.0)
    command_timeout: float = Field(default=300.0, gt=0.0, le=7200.0)


class SiteConfig(BaseModel):
    """Complete declarative description of one site and its servers."""

    hosts: List[HostConfig] = Field(min_length=1)
    site: SiteSettings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    tls: TlsSettings = Field(default_factory=TlsSettings)
    wordpress: WordPressSettings = Field(default_factory=WordPressSettings)
    deploy: Optional[DeploySettings] = None
    executor: ExecutorSettings = Field(default_factory=ExecutorSettings)

    @model_validator(mode="after")
    def _check(self) -> "SiteConfig":
        keys = [f"{h.address}:{h.port}" for h in self.hosts]
        if len(keys) != len(set(keys)):
            raise ValueError("Duplicate host entries")
        if self.tls.enabled and not self.site.email:
            raise ValueError("site.email is required when tls.enabled is true")
        if self.deploy is not None:
            if not self.deploy.path:
                self.deploy.path = f"/srv/{self.site.domain}"
            if not self.deploy.services:
                self.deploy.services = [self.site.php_fpm_service, "nginx"]
            if self.wordpress.enabled and not self.deploy.mount:
                self.deploy.mount = f"wp-content/themes/{self.deploy.repository_slug}"
            base = self.deploy.path.rstrip("/")
            web_root = (self.site.web_root or "").rstrip("/")
            if web_root == base or web_root.startswith(base + "/"):
                raise ValueError(
                    "site.web_root must not be inside deploy.path; releases are "
                    "published through the deploy.path/current link"
                )
        return self

    @property
    def document_root(self) -> str:
        """Directory nginx serves: the live release when it is the whole site."""
        if self.deploy is not None and not self.deploy.mount:
            return self.deploy.current
        return self.site.web_root or f"/var/www/{self.site.domain}"

    @property
    def release_link(self) -> Optional[str]:
        """Path under the web root that is linked to the live release."""
        if self.deploy is None or not self.deploy.mount:
            return None
        return f"{self.site.web_root}/{self.deploy.mount}"

    def host_targets(self) -> List[HostTarget]:
        return [h.to_target() for h in self.hosts]


def parse_config(data: object) -> SiteConfig:
    """Validate already-parsed data; errors become ConfigError."""
    if not isinstance(data, dict):
        raise ConfigError("Site configuration must be a mapping")
    try:
        return SiteConfig.model_validate(data)
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise ConfigError(f"Invalid site configuration: {details}") from exc


def load_config(path: str | Path) -> SiteConfig:
    """Load and validate a YAML site file."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read config {path}: {exc}") from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    return parse_config(data)
