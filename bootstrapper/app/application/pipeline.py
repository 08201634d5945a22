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
"""Step catalog: provision, install, configure, certify, enable deploys."""

from __future__ import annotations

import shlex
from typing import Any

from bootstrapper.app.application.checks import (
    AllOf,
    AnyOf,
    CertificateValid,
    CommandProbe,
    FileMatches,
    PackagesInstalled,
    PathExists,
    ServiceActive,
)
from bootstrapper.app.application.config import SiteConfig
from bootstrapper.app.application.renderer import TemplateRenderer, derive_salts
from bootstrapper.app.application.secrets import SecretResolver
from bootstrapper.app.application.steps import (
    RestoreFileAction,
    ShellAction,
    SqlScriptAction,
    Step,
    WriteFileAction,
)

PROVISION = "provision"
INSTALL = "install"
CONFIGURE = "configure"
CERTIFY = "certify"
TRIGGER = "trigger"

PHASES = (PROVISION, INSTALL, CONFIGURE, CERTIFY, TRIGGER)

APT = "DEBIAN_FRONTEND=noninteractive apt-get"
BASE_PACKAGES = ("ca-certificates", "curl", "git", "openssl", "tar", "ufw", "unzip")
PHP_EXTENSIONS = ("fpm", "mysql", "curl", "gd", "mbstring", "xml", "zip", "intl")
WEB_OWNER = "www-data:www-data"
GIT_ENV = "GIT_SSH_COMMAND='ssh -o BatchMode=yes -o StrictHostKeyChecking=accept-new'"
RELOAD_NGINX = "systemctl reload nginx"


def _q(value: str) -> str:
    return shlex.quote(value)


def install_packages_step(
    name: str, packages: tuple[str, ...], depends_on: tuple[str, ...], phase: str = INSTALL
) -> Step:
    return Step(
        name=name,
        phase=phase,
        depends_on=depends_on,
        check=PackagesInstalled(packages),
        apply=ShellAction(
            (f"{APT} install -y --no-install-recommends {' '.join(packages)}",)
        ),
        timeout=900,
    )


def service_step(name: str, service: str, depends_on: tuple[str, ...]) -> Step:
    return Step(
        name=name,
        phase=INSTALL,
        depends_on=depends_on,
        check=ServiceActive(service),
        apply=ShellAction((f"systemctl enable --now {_q(service)}",)),
    )


def managed_file_step(
    name: str,
    path: str,
    content: str,
    depends_on: tuple[str, ...],
    validate: str | None = None,
    reload: str | None = None,
    mode: int = 0o644,
    owner: str | None = None,
    phase: str = CONFIGURE,
) -> Step:
    """File that converges to rendered content, restorable on rollback."""
    return Step(
        name=name,
        phase=phase,
        depends_on=depends_on,
        check=FileMatches(path, content),
        apply=WriteFileAction(
            path, content, mode=mode, owner=owner, validate=validate, reload=reload
        ),
        rollback=RestoreFileAction(path, reload=reload),
    )


def _database_probe(config: SiteConfig) -> AllOf:
    db = config.database

    def probe(sql: str, expected: str) -> CommandProbe:
        # exit 2 when mysql itself fails, so the probe reports check_failed
        return CommandProbe(
            f"out=$(mysql -N -B -e {_q(sql)}) || exit 2; "
            f"printf '%s\\n' \"$out\" | grep -qx {_q(expected)}",
        )

    return AllOf(
        (
            probe(f"SHOW DATABASES LIKE '{db.name}'", db.name),
            probe(
                f"SELECT User FROM mysql.user WHERE User='{db.user}' AND Host='localhost'",
                db.user,
            ),
        )
    )


def build_pipeline(
    config: SiteConfig, secrets: SecretResolver, renderer: TemplateRenderer
) -> list[Step]:
    """All steps for one host, with explicit dependencies."""
    site = config.site
    db = config.database
    web_root = site.web_root or f"/var/www/{site.domain}"
    php = site.php_version
    site_path = f"/etc/nginx/sites-available/{site.domain}"
    enabled_path = f"/etc/nginx/sites-enabled/{site.domain}"
    cert_dir = f"/etc/letsencrypt/live/{site.domain}"

    steps: list[Step] = [
        Step(
            name="apt-index",
            phase=PROVISION,
            check=CommandProbe(
                "test -n \"$(find /var/lib/apt/lists -maxdepth 1 -name '*_Packages' "
                "-mmin -1440 -print -quit)\""
            ),
            apply=ShellAction((f"{APT} update",)),
            timeout=600,
        ),
        install_packages_step(
            "base-packages", BASE_PACKAGES, ("apt-index",), phase=PROVISION
        ),
        install_packages_step("nginx-package", ("nginx",), ("base-packages",)),
        install_packages_step(
            "mariadb-package", ("mariadb-server", "mariadb-client"), ("base-packages",)
        ),
        install_packages_step(
            "php-packages",
            tuple(f"php{php}-{ext}" for ext in PHP_EXTENSIONS),
            ("base-packages",),
        ),
        service_step("nginx-service", "nginx", ("nginx-package",)),
        service_step("mariadb-service", "mariadb", ("mariadb-package",)),
        service_step("php-fpm-service", site.php_fpm_service, ("php-packages",)),
    ]

    if site.firewall:
        steps.append(
            Step(
                name="firewall",
                phase=CONFIGURE,
                depends_on=("nginx-package", "base-packages"),
                check=CommandProbe(
                    "out=$(ufw status) || exit 2; "
                    "printf '%s\\n' \"$out\" | grep -q 'Status: active' && "
                    "printf '%s\\n' \"$out\" | grep -q 'Nginx Full' && "
                    "printf '%s\\n' \"$out\" | grep -q 'OpenSSH'"
                ),
                apply=ShellAction(
                    ("ufw allow OpenSSH", "ufw allow 'Nginx Full'", "ufw --force enable")
                ),
            )
        )

    db_password = secrets.resolve(db.password_ref)
    db_script = renderer.render(
        "db_setup.sql.j2",
        {"db_name": db.name, "db_user": db.user, "db_password": db_password},
    )
    steps.append(
        Step(
            name="database",
            phase=CONFIGURE,
            depends_on=("mariadb-service",),
            check=_database_probe(config),
            apply=SqlScriptAction(db_script),
            rollback=ShellAction(
                (
                    "mysql -e "
                    + _q(
                        f"DROP USER IF EXISTS '{db.user}'@'localhost'; "
                        f"DROP DATABASE IF EXISTS `{db.name}`;"
                    ),
                )
            ),
        )
    )

    tuning = site.tuning.model_dump()
    steps.append(
        managed_file_step(
            "php-overrides",
            f"/etc/php/{php}/fpm/conf.d/99-bootstrapper.ini",
            renderer.render("php_overrides.ini.j2", tuning),
            depends_on=("php-fpm-service",),
            validate=f"php-fpm{php} -t",
            reload=f"systemctl reload {site.php_fpm_service}",
        )
    )
    steps.append(
        managed_file_step(
            "nginx-tuning",
            "/etc/nginx/conf.d/bootstrapper-tuning.conf",
            renderer.render("nginx_tuning.conf.j2", tuning),
            depends_on=("nginx-service",),
            validate="nginx -t",
            reload=RELOAD_NGINX,
        )
    )

    site_vars: dict[str, Any] = {
        "domain": site.domain,
        "aliases": site.aliases,
        "web_root": config.document_root,
        "acme_root": web_root,
        "php_socket": site.php_socket,
    }
    http_block = renderer.render("nginx_http.conf.j2", site_vars)
    https_block = renderer.render(
        "nginx_https.conf.j2", {**site_vars, "cert_dir": cert_dir}
    )

    steps.append(
        Step(
            name="web-root",
            phase=CONFIGURE,
            depends_on=("nginx-package",),
            check=PathExists(web_root),
            apply=ShellAction(
                (f"mkdir -p {_q(web_root)}", f"chown {WEB_OWNER} {_q(web_root)}")
            ),
        )
    )
    content_step = "web-root"
    if config.wordpress.enabled:
        wp = config.wordpress
        archive = "/tmp/bootstrapper-wordpress.tar.gz"
        steps.append(
            Step(
                name="wordpress-core",
                phase=CONFIGURE,
                depends_on=("web-root", "base-packages"),
                check=PathExists(f"{web_root}/wp-includes/version.php"),
                apply=ShellAction(
                    (
                        f"curl -fsSL {_q(wp.download_url)} -o {archive}",
                        f"tar -xzf {archive} -C {_q(web_root)} --strip-components=1",
                        f"rm -f {archive}",
                        f"chown -R {WEB_OWNER} {_q(web_root)}",
                    )
                ),
                timeout=900,
            )
        )
        wp_config = renderer.render(
            "wp-config.php.j2",
            {
                "db_name": db.name,
                "db_user": db.user,
                "db_password": db_password,
                "salts": derive_salts(secrets.resolve(wp.salt_ref)),
                "table_prefix": wp.table_prefix,
                "force_ssl": config.tls.enabled,
            },
        )
        steps.append(
            managed_file_step(
                "wp-config",
                f"{web_root}/wp-config.php",
                wp_config,
                depends_on=("wordpress-core", "database"),
                mode=0o640,
                owner=WEB_OWNER,
            )
        )
        content_step = "wp-config"

    steps.append(
        Step(
            name="nginx-site",
            phase=CONFIGURE,
            depends_on=("nginx-service", "php-fpm-service", content_step),
            # either variant counts, so an issued certificate is not undone
            check=AnyOf(
                (FileMatches(site_path, http_block), FileMatches(site_path, https_block))
            ),
            apply=WriteFileAction(site_path, http_block),
            rollback=RestoreFileAction(site_path),
        )
    )
    steps.append(
        Step(
            name="nginx-site-enabled",
            phase=CONFIGURE,
            depends_on=("nginx-site", "nginx-tuning"),
            check=CommandProbe(
                f"[ \"$(readlink -f {_q(enabled_path)})\" = {_q(site_path)} ] && "
                "[ ! -e /etc/nginx/sites-enabled/default ]"
            ),
            apply=ShellAction(
                (
                    f"ln -sfn {_q(site_path)} {_q(enabled_path)}",
                    "rm -f /etc/nginx/sites-enabled/default",
                    f"nginx -t || {{ rm -f {_q(enabled_path)}; exit 1; }}",
                    RELOAD_NGINX,
                )
            ),
            rollback=ShellAction((f"rm -f {_q(enabled_path)}", RELOAD_NGINX)),
        )
    )

    if config.tls.enabled:
        domains = " ".join(f"-d {_q(name)}" for name in site.server_names)
        certbot = (
            f"certbot certonly --webroot -w {_q(web_root)} --cert-name {_q(site.domain)} "
            f"{domains} --non-interactive --agree-tos -m {_q(site.email or '')} "
            "--force-renewal"
        )
        if config.tls.staging:
            certbot += " --staging"
        steps.extend(
            [
                install_packages_step(
                    "certbot-package", ("certbot",), ("base-packages",), phase=CERTIFY
                ),
                Step(
                    name="certificate",
                    phase=CERTIFY,
                    depends_on=("certbot-package", "nginx-site-enabled"),
                    check=CertificateValid(
                        f"{cert_dir}/fullchain.pem", min_days=config.tls.min_days
                    ),
                    apply=ShellAction((certbot,)),
                    timeout=600,
                ),
                managed_file_step(
                    "nginx-site-https",
                    site_path,
                    https_block,
                    depends_on=("certificate",),
                    validate="nginx -t",
                    reload=RELOAD_NGINX,
                    phase=CERTIFY,
                ),
                managed_file_step(
                    "certbot-reload-hook",
                    "/etc/letsencrypt/renewal-hooks/deploy/bootstrapper-reload-nginx.sh",
                    renderer.render("certbot_reload_hook.sh.j2", {"services": ["nginx"]}),
                    depends_on=("certificate",),
                    mode=0o755,
                    phase=CERTIFY,
                ),
                Step(
                    name="certbot-timer",
                    phase=CERTIFY,
                    depends_on=("certbot-package",),
                    check=ServiceActive("certbot.timer"),
                    apply=ShellAction(("systemctl enable --now certbot.timer",)),
                ),
            ]
        )

    if config.deploy is not None:
        deploy = config.deploy
        base = deploy.path or f"/srv/{site.domain}"
        mirror = f"{base}/repo.git"
        steps.extend(
            [
                Step(
                    name="deploy-layout",
                    phase=TRIGGER,
                    depends_on=("base-packages",),
                    check=CommandProbe(f"test -d {_q(base + '/releases')}"),
                    apply=ShellAction((f"mkdir -p {_q(base + '/releases')}",)),
                ),
                Step(
                    name="deploy-mirror",
                    phase=TRIGGER,
                    depends_on=("deploy-layout",),
                    check=PathExists(f"{mirror}/HEAD"),
                    apply=ShellAction(
                        (f"{GIT_ENV} git clone --mirror {_q(deploy.repository)} {_q(mirror)}",)
                    ),
                    rollback=ShellAction((f"rm -rf {_q(mirror)}",)),
                    timeout=900,
                ),
            ]
        )
        link = config.release_link
        if link is not None:
            current = _q(deploy.current)
            steps.append(
                Step(
                    name="deploy-link",
                    phase=TRIGGER,
                    depends_on=("deploy-layout", content_step),
                    check=CommandProbe(f"[ \"$(readlink {_q(link)})\" = {current} ]"),
                    apply=ShellAction(
                        (
                            f"mkdir -p {_q(link.rsplit('/', 1)[0])}",
                            # never replace a directory someone put there by hand
                            f"[ ! -e {_q(link)} ] || [ -L {_q(link)} ]",
                            f"ln -sfn {current} {_q(link)}",
                        )
                    ),
                    rollback=ShellAction((f"rm -f {_q(link)}",)),
                )
            )
    return steps
