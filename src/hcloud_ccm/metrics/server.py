"""Prometheus metrics HTTP server.

Exposes the credential reload counters, and the robot cache statistics
when a cached client is attached, in Prometheus text format on /metrics.
"""

import http.server
import logging
import socketserver
import threading
from typing import Optional

from hcloud_ccm.hotreload.counters import RELOAD_COUNTERS, ReloadCounters

logger = logging.getLogger(__name__)

# Metric names following Prometheus conventions
METRIC_RELOADS_TOTAL = "hcloud_ccm_credentials_reload_total"
METRIC_RELOAD_ERRORS_TOTAL = "hcloud_ccm_credentials_reload_errors_total"
METRIC_CACHE_HITS_TOTAL = "hcloud_ccm_robot_cache_hits_total"
METRIC_CACHE_MISSES_TOTAL = "hcloud_ccm_robot_cache_misses_total"


def generate_metrics(
    counters: ReloadCounters = RELOAD_COUNTERS,
    cached_client=None,
) -> str:
    """Generate Prometheus text format metrics.

    Args:
        counters: Reload counters to expose.
        cached_client: Optional CachedRobotClient whose hit/miss counts to expose.

    Returns:
        Prometheus text format string.
    """
    snapshot = counters.snapshot()

    lines = [
        f"# HELP {METRIC_RELOADS_TOTAL} Successful credential reloads per API",
        f"# TYPE {METRIC_RELOADS_TOTAL} counter",
    ]
    for api, values in snapshot.items():
        lines.append(f'{METRIC_RELOADS_TOTAL}{{api="{api}"}} {values["reloads"]}')
    lines.append("")

    lines += [
        f"# HELP {METRIC_RELOAD_ERRORS_TOTAL} Rejected credential reloads per API",
        f"# TYPE {METRIC_RELOAD_ERRORS_TOTAL} counter",
    ]
    for api, values in snapshot.items():
        lines.append(f'{METRIC_RELOAD_ERRORS_TOTAL}{{api="{api}"}} {values["errors"]}')
    lines.append("")

    if cached_client is not None:
        stats = cached_client.stats()
        lines += [
            f"# HELP {METRIC_CACHE_HITS_TOTAL} Robot requests served from cache",
            f"# TYPE {METRIC_CACHE_HITS_TOTAL} counter",
            f"{METRIC_CACHE_HITS_TOTAL} {stats['hits']}",
            "",
            f"# HELP {METRIC_CACHE_MISSES_TOTAL} Robot requests sent upstream",
            f"# TYPE {METRIC_CACHE_MISSES_TOTAL} counter",
            f"{METRIC_CACHE_MISSES_TOTAL} {stats['misses']}",
            "",
        ]

    return "\n".join(lines)


class MetricsHandler(http.server.BaseHTTPRequestHandler):
    """HTTP request handler for Prometheus metrics endpoint."""

    def log_message(self, format: str, *args) -> None:
        logger.debug("metrics: " + format, *args)

    def do_GET(self) -> None:
        """Handle GET requests."""
        if self.path == "/metrics":
            content = generate_metrics(self.server.counters, self.server.cached_client)
            self._send(200, content, "text/plain; version=0.0.4; charset=utf-8")
        elif self.path == "/health":
            self._send(200, "OK", "text/plain")
        else:
            self.send_response(404)
            self.end_headers()

    def _send(self, status: int, content: str, content_type: str) -> None:
        body = content.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)


class _MetricsHTTPServer(socketserver.ThreadingMixIn, http.server.HTTPServer):
    allow_reuse_address = True
    daemon_threads = True

    counters: ReloadCounters
    cached_client = None


class MetricsServer:
    """Prometheus metrics HTTP server."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 8233,
        counters: ReloadCounters = RELOAD_COUNTERS,
        cached_client=None,
    ):
        """Initialize metrics server.

        Args:
            host: Address to bind.
            port: Port to listen on; 0 picks a free port.
            counters: Reload counters to expose.
            cached_client: Optional CachedRobotClient to report on.
        """
        self.host = host
        self.port = port
        self.counters = counters
        self.cached_client = cached_client
        self._server: Optional[_MetricsHTTPServer] = None
        self._server_thread: Optional[threading.Thread] = None

    @property
    def address(self) -> tuple:
        if self._server is None:
            return (self.host, self.port)
        return self._server.server_address[:2]

    def start(self) -> None:
        """Start serving from a daemon thread."""
        self._server = _MetricsHTTPServer((self.host, self.port), MetricsHandler)
        self._server.counters = self.counters
        self._server.cached_client = self.cached_client

        self._server_thread = threading.Thread(
            target=self._server.serve_forever,
            name="metrics-server",
            daemon=True,
        )
        self._server_thread.start()
        logger.info("Serving metrics on http://%s:%d/metrics", *self.address)

    def stop(self) -> None:
        """Stop the metrics server."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._server_thread:
            self._server_thread.join()
            self._server_thread = None


__all__ = [
    "METRIC_RELOADS_TOTAL",
    "METRIC_RELOAD_ERRORS_TOTAL",
    "METRIC_CACHE_HITS_TOTAL",
    "METRIC_CACHE_MISSES_TOTAL",
    "MetricsServer",
    "generate_metrics",
]
