"""
Pytest fixtures for hcloud-ccm tests.

Test imports use the src/hcloud_ccm/ package (see pythonpath in pyproject.toml).
API calls go to a local fake API server that records the Authorization
header of every request.
"""

import http.server
import json
import os
import socketserver
import threading
import time
from pathlib import Path
from urllib.parse import parse_qs, urlparse

import pytest

from hcloud_ccm.config.audit import disable_audit_logging
from hcloud_ccm.config.credentials import get_directory
from hcloud_ccm.hotreload import stop_all


# ═══════════════════════════════════════════════════════════════════════════════
# Path Constants
# ═══════════════════════════════════════════════════════════════════════════════

PROJECT_ROOT = Path(__file__).parent.parent
SRC_DIR = PROJECT_ROOT / "src"

# Load fixtures data
FIXTURES_DIR = Path(__file__).parent / "fixtures"
with open(FIXTURES_DIR / "api_responses.json") as f:
    FIXTURES = json.load(f)


# ═══════════════════════════════════════════════════════════════════════════════
# Credential Constants
# ═══════════════════════════════════════════════════════════════════════════════


def make_token(seed: str) -> str:
    """Build a 64 character token from a readable seed."""
    return (seed * 64)[:64]


TOKEN_ONE = make_token("token-one-")
TOKEN_TWO = make_token("token-two-")
TOKEN_THREE = make_token("token-three-")

ROBOT_USER = "robot-user-1"
ROBOT_PASSWORD = "robot-password-1"
ROBOT_USER_ROTATED = "robot-user-2"
ROBOT_PASSWORD_ROTATED = "robot-password-2"

# Rotations must become visible within this many seconds
ROTATION_TIMEOUT = 3.0


# ═══════════════════════════════════════════════════════════════════════════════
# Fake API Server
# ═══════════════════════════════════════════════════════════════════════════════


class _FakeAPIHandler(http.server.BaseHTTPRequestHandler):
    def log_message(self, format, *args):
        pass

    def do_GET(self):
        api = self.server.api
        parsed = urlparse(self.path)
        auth = self.headers.get("Authorization")
        api.record(parsed.path, auth)

        failure = api.pop_failure()
        if failure is not None:
            status, body = failure
            return self._send(status, body)

        if api.accepted_auth is not None and auth not in api.accepted_auth:
            if parsed.path.startswith("/robot"):
                return self._send(401, FIXTURES["error_robot_unauthorized"])
            return self._send(401, FIXTURES["error_unauthorized"])

        status, body = api.route(parsed.path, parse_qs(parsed.query))
        self._send(status, body)

    def _send(self, status, body):
        payload = json.dumps(body).encode("utf-8") if body is not None else b""
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)


class _FakeHTTPServer(socketserver.ThreadingMixIn, http.server.HTTPServer):
    daemon_threads = True


class FakeAPI:
    """hcloud and robot API stand-in serving tests/fixtures/api_responses.json.

    Attributes:
        accepted_auth: If set, requests whose Authorization header is not in
            this set get a 401 with the API's error envelope.
    """

    def __init__(self):
        self._server = _FakeHTTPServer(("127.0.0.1", 0), _FakeAPIHandler)
        self._server.api = self
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._lock = threading.Lock()
        self._requests = []
        self._failures = []
        self.accepted_auth = None

    @property
    def base_url(self):
        host, port = self._server.server_address[:2]
        return f"http://{host}:{port}"

    @property
    def hcloud_endpoint(self):
        return f"{self.base_url}/v1"

    @property
    def robot_endpoint(self):
        return f"{self.base_url}/robot"

    def start(self):
        self._thread.start()

    def stop(self):
        self._server.shutdown()
        self._server.server_close()
        self._thread.join(timeout=5)

    def record(self, path, auth):
        with self._lock:
            self._requests.append((path, auth))

    @property
    def requests(self):
        with self._lock:
            return list(self._requests)

    @property
    def auth_headers(self):
        return [auth for _, auth in self.requests]

    @property
    def last_auth(self):
        headers = self.auth_headers
        return headers[-1] if headers else None

    def count(self, path):
        return sum(1 for p, _ in self.requests if p == path)

    def fail_next(self, status, count=1, body=None):
        """Answer the next ``count`` requests with ``status``."""
        with self._lock:
            self._failures.extend([(status, body)] * count)

    def pop_failure(self):
        with self._lock:
            return self._failures.pop(0) if self._failures else None

    def route(self, path, query):
        if path == "/v1/servers":
            if query.get("name"):
                name = query["name"][0]
                servers = [
                    s
                    for page in ("servers_page_1", "servers_page_2")
                    for s in FIXTURES[page]["servers"]
                    if s["name"] == name
                ]
                return 200, {"servers": servers, "meta": {"pagination": {"next_page": None}}}
            page = query.get("page", ["1"])[0]
            return 200, FIXTURES["servers_page_2" if page == "2" else "servers_page_1"]
        if path == "/v1/servers/1":
            return 200, FIXTURES["server_1"]
        if path.startswith("/v1/servers/"):
            return 404, FIXTURES["error_not_found"]
        if path == "/v1/networks/1":
            return 200, FIXTURES["network_1"]
        if path == "/v1/load_balancers":
            return 200, FIXTURES["load_balancers"]
        if path == "/robot/server":
            return 200, FIXTURES["robot_servers"]
        if path.startswith("/robot/server/"):
            number = int(path.rsplit("/", 1)[1])
            for item in FIXTURES["robot_servers"]:
                if item["server"]["server_number"] == number:
                    return 200, item
            return 404, {"error": {"status": 404, "code": "SERVER_NOT_FOUND", "message": "Server not found"}}
        return 404, {"error": {"code": "not_found", "message": f"{path} not found"}}


@pytest.fixture
def fake_api():
    """Running fake API server."""
    api = FakeAPI()
    api.start()
    yield api
    api.stop()


# ═══════════════════════════════════════════════════════════════════════════════
# Credentials Fixtures
# ═══════════════════════════════════════════════════════════════════════════════


def write_credential(directory: Path, name: str, value) -> None:
    """Replace a credential file atomically, the way a secret mount updates."""
    data = value.encode("utf-8") if isinstance(value, str) else value
    tmp = directory / f".{name}.tmp"
    tmp.write_bytes(data)
    os.replace(tmp, directory / name)


@pytest.fixture
def root_dir(tmp_path):
    """Root directory with an empty etc/hetzner-secret below it."""
    get_directory(tmp_path).mkdir(parents=True)
    return tmp_path


@pytest.fixture
def secret_dir(root_dir):
    """The credentials directory below ``root_dir``."""
    return get_directory(root_dir)


@pytest.fixture
def hcloud_secret(secret_dir):
    """Credentials directory holding TOKEN_ONE."""
    write_credential(secret_dir, "hcloud", TOKEN_ONE)
    return secret_dir


@pytest.fixture
def robot_secret(secret_dir):
    """Credentials directory holding the first robot user/password pair."""
    write_credential(secret_dir, "robot-user", ROBOT_USER)
    write_credential(secret_dir, "robot-password", ROBOT_PASSWORD)
    return secret_dir


# ═══════════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════════


def wait_until(predicate, timeout: float = ROTATION_TIMEOUT, interval: float = 0.02) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` seconds passed."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_for():
    """The ``wait_until`` polling helper."""
    return wait_until


@pytest.fixture
def write_secret():
    """The ``write_credential`` helper."""
    return write_credential


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


# ═══════════════════════════════════════════════════════════════════════════════
# Isolation
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture(autouse=True)
def _stop_watches_and_audit():
    """Stop leftover watches and disable audit logging after every test."""
    yield
    stop_all()
    disable_audit_logging()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every HCLOUD_* and ROBOT_* variable from the environment."""
    for var in list(os.environ):
        if var.startswith(("HCLOUD_", "ROBOT_")):
            monkeypatch.delenv(var, raising=False)
    return monkeypatch
