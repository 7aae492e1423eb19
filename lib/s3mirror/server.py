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
Contains the metrics sink and the http server that exposes it.

Endpoints:

    /metrics    prometheus text exposition format
    /version    {"name": "s3mirror", "version": "...", "build_time": "..."}
    /health     {"ok": true}
"""

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Optional

from s3mirror import __version__, config
from s3mirror.logger import get_logger


class Metrics:
    """Thread safe counters fed by the syncer after each pull."""

    def __init__(self, namespace: str = config.METRICS_NAMESPACE):
        self.namespace = namespace
        self._lock = threading.Lock()
        self.runs = 0
        self.failed_runs = 0
        self.listed = 0
        self.pulled = 0
        self.deleted = 0
        self.errors = 0
        self.last_duration = 0.0

    def observe(self, outcome) -> None:
        """Records a completed pull.

        :param outcome: RunOutcome.
        """
        with self._lock:
            self.runs += 1
            self.listed = outcome.listed
            self.pulled += outcome.installed
            self.deleted += outcome.deleted
            self.errors += len(outcome.errors)
            self.last_duration = outcome.duration

    def observe_failure(self) -> None:
        """Records a pull that raised SyncError."""
        with self._lock:
            self.runs += 1
            self.failed_runs += 1

    def render(self) -> str:
        """Returns the counters in prometheus text format."""
        ns = self.namespace
        with self._lock:
            rows = [
                ("runs_total", "counter", "Pulls started.", self.runs),
                ("failed_runs_total", "counter", "Failed pulls.", self.failed_runs),
                ("objects_listed", "gauge", "Objects in last listing.", self.listed),
                ("files_pulled_total", "counter", "Files downloaded.", self.pulled),
                ("files_deleted_total", "counter", "Files deleted.", self.deleted),
                ("download_errors_total", "counter", "Failed downloads.", self.errors),
                ("last_run_seconds", "gauge", "Pull duration.", self.last_duration),
            ]
        lines = []
        for name, kind, help_text, value in rows:
            lines.append(f"# HELP {ns}_{name} {help_text}")
            lines.append(f"# TYPE {ns}_{name} {kind}")
            lines.append(f"{ns}_{name} {value}")
        return "\n".join(lines) + "\n"


class MetricsHandler(BaseHTTPRequestHandler):
    """Serves /metrics, /version and /health."""

    metrics: Metrics
    log: logging.Logger

    def do_GET(self):
        path = self.path.split("?", 1)[0]
        if path == "/metrics":
            self._send(200, "text/plain; version=0.0.4", self.metrics.render())
        elif path == "/version":
            body = json.dumps(
                {
                    "name": config.LOG_NAME,
                    "version": __version__,
                    "build_time": config.BUILD_TIME,
                }
            )
            self._send(200, "application/json", body)
        elif path == "/health":
            self._send(200, "application/json", json.dumps({"ok": True}))
        else:
            self._send(404, "text/plain", "not found\n")

    def _send(self, status: int, content_type: str, body: str) -> None:
        data = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def log_message(self, format, *args):
        self.log.debug("%s - %s", self.address_string(), format % args)


def start_server(
    metrics: Metrics,
    port: int = config.METRICS_PORT,
    host: str = config.METRICS_HOST,
    logger: Optional[logging.Logger] = None,
) -> HTTPServer:
    """Starts the metrics server in a daemon thread.

    :param metrics: metrics to expose.
    :param port: port to bind, 0 picks a free port.
    :param host: address to bind.
    :param logger: optional logger.
    :return: the HTTPServer, pass it to stop_server() to shut it down.
    """
    log = logger or get_logger("server")
    handler = type(
        "BoundMetricsHandler", (MetricsHandler,), {"metrics": metrics, "log": log}
    )
    server = HTTPServer((host, port), handler)
    thread = threading.Thread(
        target=server.serve_forever, name="s3mirror-metrics", daemon=True
    )
    thread.start()
    log.info("binding on %s:%d", host, server.server_address[1])
    return server


def stop_server(server: HTTPServer) -> None:
    """Stops a server started with start_server()."""
    server.shutdown()
    server.server_close()
