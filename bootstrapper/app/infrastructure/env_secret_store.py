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
"""Secret stores backed by the process environment or a dict."""

from __future__ import annotations

import os
import re
from threading import Lock
from typing import Mapping

from bootstrapper.app.application.secrets import SecretStore

DEFAULT_PREFIX = "BOOTSTRAPPER_SECRET_"


def env_name(name: str, prefix: str = DEFAULT_PREFIX) -> str:
    """Map a secret reference like `db-password` to BOOTSTRAPPER_SECRET_DB_PASSWORD."""
    return prefix + re.sub(r"[^A-Za-z0-9]", "_", name).upper()


class EnvSecretStore(SecretStore):
    """Reads secrets injected into the environment by an external store."""

    def __init__(self, environ: Mapping[str, str] | None = None, prefix: str = DEFAULT_PREFIX):
        self.environ = environ if environ is not None else os.environ
        self.prefix = prefix

    def get(self, name: str) -> str | None:
        return self.environ.get(env_name(name, self.prefix))


class InMemorySecretStore(SecretStore):
    """Thread-safe dict-backed store."""

    def __init__(self, values: Mapping[str, str] | None = None) -> None:
        self._lock = Lock()
        self._values = dict(values or {})

    def set(self, name: str, value: str) -> None:
        with self._lock:
            self._values[name] = value

    def get(self, name: str) -> str | None:
        with self._lock:
            return self._values.get(name)
