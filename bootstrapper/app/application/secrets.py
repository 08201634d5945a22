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
"""Secret references, resolution and redaction."""

from __future__ import annotations

from threading import Lock
from typing import Protocol

from bootstrapper.app.domain.errors import MissingSecret

REDACTED = "***"


class Secret:
    """Secret value that never shows up in repr or str."""

    __slots__ = ("name", "_value")

    def __init__(self, name: str, value: str):
        self.name = name
        self._value = value

    def reveal(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return f"Secret({self.name!r}, {REDACTED!r})"

    __str__ = __repr__

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Secret):
            return NotImplemented
        return self.name == other.name and self._value == other._value

    def __hash__(self) -> int:
        return hash(self.name)


class SecretStore(Protocol):
    """External secret source."""

    def get(self, name: str) -> str | None:
        """Return the secret value or None when unknown."""


class Redactor:
    """Replaces every registered secret value with a placeholder."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._values: set[str] = set()

    def register(self, value: str) -> None:
        if not value:
            return
        with self._lock:
            self._values.add(value)

    def redact(self, text: str | None) -> str | None:
        if not text:
            return text
        with self._lock:
            values = sorted(self._values, key=len, reverse=True)
        for value in values:
            text = text.replace(value, REDACTED)
        return text


class SecretResolver:
    """Resolves secret references and registers them for redaction."""

    def __init__(self, store: SecretStore, redactor: Redactor | None = None):
        self.store = store
        self.redactor = redactor or Redactor()

    def resolve(self, name: str) -> Secret:
        value = self.store.get(name)
        if value is None or value == "":
            raise MissingSecret(f"Secret not found: {name}")
        self.redactor.register(value)
        return Secret(name, value)
