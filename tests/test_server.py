#!/usr/bin/env python
#
# Copyright (c) 2024-2025, Ryan Galloway (ryan@rsgalloway.com)
#
# Redistribution and use in source and binary forms, with or without
# modification, are permitted provided that the following conditions are met:
#
#  - Redistributions of source code must retain the above copyright notice,
#    this list of conditions and the following disclaimer.
#
#  - Redistributions in binary form must reproduce the above copyright notice,
#    this list of conditions and the following disclaimer in the documentation
#    and/or other materials provided with the distribution.
#
#  - Neither the name of the software nor the names of its contributors
#    may be used to endorse or promote products derived from this software
#    without specific prior written permission.
#
# THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS"
# AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE
# IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE
# ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE
# LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR
# CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF
# SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS
# INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN
# CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE)
# ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE
# POSSIBILITY OF SUCH DAMAGE.
#

__doc__ = """
Contains tests for the server module.
"""

import json
import urllib.error
import urllib.request

import pytest

from s3mirror import __version__, config
from s3mirror.server import Metrics, start_server, stop_server
from s3mirror.sync import DownloadError, RunOutcome


def test_metrics_observe():
    """Test counters accumulate pull outcomes and failures."""
    metrics = Metrics()
    error = DownloadError("boom", "k", "/p")
    metrics.observe(
        RunOutcome(
            listed=5, pulled=3, installed=2, deleted=1, duration=1.5, errors=[error]
        )
    )
    metrics.observe(RunOutcome(listed=4, pulled=1, installed=1))
    metrics.observe_failure()

    assert metrics.runs == 3
    assert metrics.failed_runs == 1
    assert metrics.listed == 4
    assert metrics.pulled == 3
    assert metrics.deleted == 1
    assert metrics.errors == 1


def test_metrics_render():
    """Test counters render in prometheus text format."""
    metrics = Metrics(namespace="test")
    metrics.observe(RunOutcome(listed=7, installed=2))

    text = metrics.render()
    assert "# TYPE test_files_pulled_total counter" in text
    assert "test_objects_listed 7" in text
    assert "test_files_pulled_total 2" in text
    assert text.endswith("\n")


@pytest.fixture
def server():
    metrics = Metrics()
    metrics.observe(RunOutcome(listed=3, installed=3))
    srv = start_server(metrics, port=0, host="127.0.0.1")
    yield srv
    stop_server(srv)


def _get(server, path):
    port = server.server_address[1]
    with urllib.request.urlopen(f"http://127.0.0.1:{port}{path}", timeout=5) as resp:
        return resp.status, resp.read().decode()


def test_server_metrics(server):
    """Test /metrics serves the rendered counters."""
    status, body = _get(server, "/metrics")
    assert status == 200
    assert "s3mirror_objects_listed 3" in body


def test_server_version(server):
    """Test /version serves name, version and build time."""
    status, body = _get(server, "/version")
    assert status == 200
    assert json.loads(body) == {
        "name": "s3mirror",
        "version": __version__,
        "build_time": config.BUILD_TIME,
    }


def test_server_health(server):
    """Test /health reports ok."""
    status, body = _get(server, "/health")
    assert json.loads(body) == {"ok": True}


def test_server_not_found(server):
    """Test unknown paths return 404."""
    with pytest.raises(urllib.error.HTTPError) as err:
        _get(server, "/nope")
    assert err.value.code == 404
