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
"""SSH command runner built on Netmiko's linux driver."""

from __future__ import annotations

import io
import logging
import re
import shlex
import time
from typing import Any, Callable, Dict, Optional
from uuid import uuid4

import paramiko
from netmiko import ConnectHandler  # type: ignore[import-untyped]
from netmiko.exceptions import (  # type: ignore[import-untyped]
    NetmikoAuthenticationException,
    NetmikoTimeoutException,
    ReadTimeout,
)

from bootstrapper.app.application.command_runner import (
    DEFAULT_TIMEOUT,
    CommandRunner,
    privileged,
)
from bootstrapper.app.application.secrets import Secret
from bootstrapper.app.domain.errors import (
    CommandTimeout,
    FatalError,
    HostConnectionError,
)
from bootstrapper.app.domain.models import CommandResult, HostTarget

logger = logging.getLogger(__name__)

RC_MARKER = "__BOOTSTRAPPER_RC__"
RC_PATTERN = re.compile(rf"{RC_MARKER}(\d+)\s*$", re.MULTILINE)

# Limits
MAX_OUTPUT_SIZE = 1024 * 1024  # 1 MiB
CONNECTION_TIMEOUT = 10

KEY_CLASSES = (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey)


def trim_output(output: str, max_size: int = MAX_OUTPUT_SIZE) -> str:
    """Trim output to max size, keeping the tail (latest content)."""
    if len(output) <= max_size:
        return output
    return output[-max_size:]


def split_exit_code(output: str) -> tuple[str, Optional[int]]:
    """Separate the exit code sentinel from command output."""
    match = RC_PATTERN.search(output)
    if match is None:
        return output, None
    return output[: match.start()].rstrip("\n"), int(match.group(1))


def load_private_key(material: str) -> paramiko.PKey:
    """Parse private key text of any supported type."""
    for key_class in KEY_CLASSES:
        try:
            return key_class.from_private_key(io.StringIO(material))
        except paramiko.SSHException:
            continue
    raise FatalError("Unsupported or invalid private key")


class NetmikoCommandRunner(CommandRunner):
    """Opens one SSH session per command and closes it afterwards.

    Netmiko returns a single merged stream, so stderr is folded into
    stdout and the exit code is recovered from an echoed sentinel.
    """

    def __init__(self, credential_resolver: Callable[[str], Secret]):
        self.credential_resolver = credential_resolver

    def _connection_params(self, host: HostTarget) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "device_type": "linux",
            "host": host.address,
            "port": host.port,
            "username": host.username,
            "timeout": CONNECTION_TIMEOUT,
        }
        if host.credential_ref is None:
            params["use_keys"] = True
            return params
        credential = self.credential_resolver(host.credential_ref).reveal()
        if credential.lstrip().startswith("-----BEGIN"):
            params["use_keys"] = True
            params["pkey"] = load_private_key(credential)
        else:
            params["password"] = credential
        return params

    def _connect(self, host: HostTarget) -> Any:
        try:
            return ConnectHandler(**self._connection_params(host))
        except NetmikoAuthenticationException as e:
            raise FatalError(f"Authentication failed for {host.key}: {str(e)}")
        except NetmikoTimeoutException as e:
            raise HostConnectionError(f"Connection timeout for {host.key}: {str(e)}")
        except (OSError, paramiko.SSHException) as e:
            raise HostConnectionError(f"Connection error for {host.key}: {str(e)}")

    def run(
        self, host: HostTarget, command: str, timeout: float = DEFAULT_TIMEOUT
    ) -> CommandResult:
        logger.debug("ssh %s: %s", host.key, command)
        connection = self._connect(host)
        started = time.monotonic()
        try:
            output = connection.send_command(
                f'( {command} ); echo "{RC_MARKER}$?"',
                read_timeout=timeout,
            )
        except ReadTimeout as e:
            raise CommandTimeout(
                f"Command timed out after {timeout}s: {str(e)}", command=command
            )
        except (OSError, EOFError, paramiko.SSHException) as e:
            raise HostConnectionError(
                f"Connection lost on {host.key}: {str(e)}", command=command
            )
        finally:
            try:
                connection.disconnect()
            except Exception:
                logger.debug("Disconnect from %s failed", host.key, exc_info=True)

        stdout, exit_code = split_exit_code(output)
        if exit_code is None:
            raise FatalError(
                "Could not read exit status from session output",
                command=command,
                output=trim_output(stdout)[-2000:],
            )
        return CommandResult(
            exit_code=exit_code,
            stdout=trim_output(stdout),
            stderr="",
            duration=time.monotonic() - started,
        )

    def put_file(
        self,
        host: HostTarget,
        path: str,
        content: str,
        mode: int = 0o644,
        owner: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Upload over SFTP to a staging file, then install and rename."""
        logger.debug("ssh %s: put %s (%s bytes)", host.key, path, len(content))
        staging = f"/tmp/.bootstrapper-{uuid4().hex}"
        connection = self._connect(host)
        try:
            sftp = connection.remote_conn_pre.open_sftp()
            try:
                sftp.putfo(io.BytesIO(content.encode("utf-8")), staging)
                sftp.chmod(staging, 0o600)
            finally:
                sftp.close()
        except (OSError, paramiko.SSHException) as e:
            raise HostConnectionError(f"Upload to {host.key} failed: {str(e)}")
        finally:
            try:
                connection.disconnect()
            except Exception:
                logger.debug("Disconnect from %s failed", host.key, exc_info=True)

        target = shlex.quote(path)
        temp_target = shlex.quote(f"{path}.{uuid4().hex[:8]}.tmp")
        ownership = ""
        if owner:
            user, _, group = owner.partition(":")
            ownership = f" -o {shlex.quote(user)}"
            if group:
                ownership += f" -g {shlex.quote(group)}"
        install = (
            f"mkdir -p \"$(dirname {target})\" && "
            f"install -m {mode:o}{ownership} {staging} {temp_target} && "
            f"mv -f {temp_target} {target}; rc=$?; rm -f {staging}; exit $rc"
        )
        result = self.run(host, privileged(host, install), timeout=timeout)
        if not result.ok:
            raise FatalError(
                f"Could not install {path}",
                command=f"install {path}",
                exit_code=result.exit_code,
                output=result.tail(),
            )
