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
"""HTTP health probe used after a deployment cutover."""

from __future__ import annotations

import logging
import time
from typing import Callable

import requests

logger = logging.getLogger(__name__)


class HttpHealthProbe:
    """GETs a URL until it answers with an acceptable status or attempts run out."""

    def __init__(
        self,
        attempts: int = 5,
        delay: float = 2.0,
        timeout: float = 10.0,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.attempts = max(1, attempts)
        self.delay = delay
        self.timeout = timeout
        self.session = session or requests.Session()
        self.sleep = sleep

    def check(self, url: str) -> tuple[bool, str]:
        """Return (healthy, detail of the last attempt)."""
        detail = "not probed"
        for attempt in range(1, self.attempts + 1):
            try:
                response = self.session.get(url, timeout=self.timeout, allow_redirects=True)
                if response.status_code < 400:
                    return True, f"HTTP {response.status_code} on attempt {attempt}"
                detail = f"HTTP {response.status_code}"
            except requests.exceptions.RequestException as e:
                detail = f"Request failed: {str(e)}"
            logger.warning("Health probe %s attempt %s/%s: %s", url, attempt, self.attempts, detail)
            if attempt < self.attempts and self.delay > 0:
                self.sleep(self.delay)
        return False, detail
