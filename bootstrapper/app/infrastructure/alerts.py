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
"""Alert sinks for failed deployments."""

from __future__ import annotations

import logging

import requests

from bootstrapper.app.domain.models import DeploymentRecord
from bootstrapper.app.infrastructure.deployment_log import record_to_dict

logger = logging.getLogger(__name__)


class LoggingAlertSink:
    """Writes failed deployments to the error log."""

    def alert(self, record: DeploymentRecord) -> None:
        logger.error(
            "ALERT deployment %s of %s@%s to %s failed: %s",
            record.deployment_id,
            record.repository,
            record.commit_sha[:12],
            record.host,
            record.error,
        )


class WebhookAlertSink:
    """POSTs failed deployment records as JSON to an operator webhook."""

    def __init__(self, url: str, timeout: float = 10.0, session: requests.Session | None = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.fallback = LoggingAlertSink()

    def alert(self, record: DeploymentRecord) -> None:
        self.fallback.alert(record)
        try:
            response = self.session.post(
                self.url, json=record_to_dict(record), timeout=self.timeout
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error("Failed to deliver deployment alert to %s: %s", self.url, str(e))
