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
"""Unit tests for deployment alert sinks."""

import logging
from unittest.mock import MagicMock

import requests

from bootstrapper.app.domain.models import DeploymentRecord, DeployStatus
from bootstrapper.app.infrastructure.alerts import LoggingAlertSink, WebhookAlertSink


def make_record():
    return DeploymentRecord(
        deployment_id="d1",
        host="10.0.0.1:22",
        repository="acme/shop",
        commit_sha="0123456789abcdef",
        branch="main",
        timestamp="2026-01-01T00:00:00+00:00",
        outcome=DeployStatus.FAILED,
        error="health check failed",
    )


def test_logging_sink_writes_error(caplog):
    with caplog.at_level(logging.ERROR):
        LoggingAlertSink().alert(make_record())

    assert "ALERT deployment d1" in caplog.text
    assert "health check failed" in caplog.text


def test_webhook_sink_posts_record():
    session = MagicMock()

    WebhookAlertSink("https://alerts.example.com/hook", session=session).alert(make_record())

    session.post.assert_called_once()
    args, kwargs = session.post.call_args
    assert args == ("https://alerts.example.com/hook",)
    assert kwargs["json"]["deployment_id"] == "d1"
    assert kwargs["json"]["outcome"] == "failed"


def test_webhook_delivery_failure_is_logged(caplog):
    session = MagicMock()
    session.post.side_effect = requests.exceptions.ConnectionError("refused")

    with caplog.at_level(logging.ERROR):
        WebhookAlertSink("https://alerts.example.com/hook", session=session).alert(make_record())

    assert "Failed to deliver deployment alert" in caplog.text
