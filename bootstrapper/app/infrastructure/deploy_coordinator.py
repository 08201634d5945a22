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
"""Per-host deployment serialization."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Condition, Thread
from typing import Any, Callable

from bootstrapper.app.domain.errors import DeployInProgress

logger = logging.getLogger(__name__)


@dataclass
class _HostSlot:
    active: Thread | None = None
    pending: Callable[[], Any] | None = None


class DeployCoordinator:
    """Runs at most one deployment per host, with at most one queued behind it.

    A request arriving while a deployment is active becomes the pending one;
    a request arriving while one is already pending is rejected.
    """

    def __init__(self) -> None:
        self._cond = Condition()
        self._slots: dict[str, _HostSlot] = {}

    def _start_locked(self, host: str, slot: _HostSlot, target: Callable[[], Any]) -> None:
        thread = Thread(target=self._run, args=(host, target), daemon=True)
        slot.active = thread
        thread.start()

    def _run(self, host: str, target: Callable[[], Any]) -> None:
        try:
            target()
        except Exception:
            logger.exception("Deployment worker for %s crashed", host)
        finally:
            with self._cond:
                slot = self._slots[host]
                if slot.pending is not None:
                    next_target, slot.pending = slot.pending, None
                    self._start_locked(host, slot, next_target)
                else:
                    slot.active = None
                self._cond.notify_all()

    def submit(self, host: str, target: Callable[[], Any]) -> str:
        """Start or queue a deployment. Returns "started" or "queued"."""
        with self._cond:
            slot = self._slots.setdefault(host, _HostSlot())
            if slot.active is None:
                self._start_locked(host, slot, target)
                return "started"
            if slot.pending is None:
                slot.pending = target
                return "queued"
            raise DeployInProgress(
                f"Deployment already running with one queued for {host}"
            )

    def is_running(self, host: str) -> bool:
        with self._cond:
            slot = self._slots.get(host)
            return bool(slot and slot.active is not None)

    def has_pending(self, host: str) -> bool:
        with self._cond:
            slot = self._slots.get(host)
            return bool(slot and slot.pending is not None)

    def wait_idle(self, host: str, timeout: float | None = None) -> bool:
        """Block until the host has nothing active or queued."""
        with self._cond:
            return self._cond.wait_for(
                lambda: self._slots.get(host) is None
                or (self._slots[host].active is None and self._slots[host].pending is None),
                timeout=timeout,
            )
