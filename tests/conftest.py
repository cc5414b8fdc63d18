# WeBill Live API Test Suite - Shared Configuration and Fixtures
#
# This module provides:
# - Test server provisioning (ephemeral SQLite per test run)
# - Demo data seeding through the webill CLI
# - Failure message formatting
#
# Runs against a real HTTP server. Point TEST_BACKEND_URL at a running
# instance and set TEST_EXTERNAL_SERVER=1 to skip server management.

import os
import sys
import time
import tempfile
import subprocess
import shutil
from pathlib import Path
from typing import Generator, Optional, Dict, Any
from dataclasses import dataclass, field

import pytest
import httpx

# Add backend to path for imports
REPO_ROOT = Path(__file__).parent.parent
BACKEND_DIR = REPO_ROOT / "backend"
sys.path.insert(0, str(BACKEND_DIR))


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class TestConfig:
    """Test configuration with environment variable overrides."""
    backend_base_url: str = os.environ.get("TEST_BACKEND_URL", "http://127.0.0.1:5001")

    # Timeouts
    request_timeout: float = float(os.environ.get("TEST_REQUEST_TIMEOUT", "30"))
    server_startup_timeout: float = float(os.environ.get("TEST_SERVER_STARTUP_TIMEOUT", "30"))


# =============================================================================
# FAILURE MESSAGE HELPER
# =============================================================================

class TestFailure(Exception):
    """
    Custom exception with detailed, human-readable failure messages.

    Structure:
    1. Scenario: What was being tested
    2. Expected: What should have happened
    3. Actual: What actually happened
    4. Likely Cause: Most probable reason for failure
    5. Code Location: Where to look in the codebase
    """

    def __init__(
        self,
        scenario: str,
        expected: str,
        actual: str,
        likely_cause: str,
        code_location: str,
        response: Optional[httpx.Response] = None,
        extra_context: Optional[Dict[str, Any]] = None
    ):
        self.scenario = scenario
        self.expected = expected
        self.actual = actual
        self.likely_cause = likely_cause
        self.code_location = code_location
        self.response = response
        self.extra_context = extra_context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        lines = [
            "",
            "=" * 80,
            "TEST FAILURE DETAILS",
            "=" * 80,
            f"SCENARIO: {self.scenario}",
            "-" * 80,
            f"EXPECTED: {self.expected}",
            f"ACTUAL: {self.actual}",
            "-" * 80,
            f"LIKELY CAUSE: {self.likely_cause}",
            f"CODE LOCATION: {self.code_location}",
        ]

        if self.response is not None:
            lines.extend([
                "-" * 80,
                f"HTTP STATUS: {self.response.status_code}",
                f"RESPONSE BODY: {self.response.text[:1000]}",
            ])

        if self.extra_context:
            lines.append("-" * 80)
            lines.append("EXTRA CONTEXT:")
            for key, value in self.extra_context.items():
                lines.append(f"  {key}: {value}")

        lines.append("=" * 80)
        return "\n".join(lines)


def assert_response(
    response: httpx.Response,
    expected_status: int,
    scenario: str,
    code_location: str,
    expected_body_contains: Optional[str] = None
):
    """
    Assert HTTP response status and optionally body content.
    Raises TestFailure with detailed message on failure.
    """
    if response.status_code != expected_status:
        raise TestFailure(
            scenario=scenario,
            expected=f"HTTP {expected_status}",
            actual=f"HTTP {response.status_code}",
            likely_cause=_infer_cause(response),
            code_location=code_location,
            response=response
        )

    if expected_body_contains and expected_body_contains not in response.text:
        raise TestFailure(
            scenario=scenario,
            expected=f"Response body contains: {expected_body_contains}",
            actual=f"Response body: {response.text[:500]}",
            likely_cause="Response format changed or wrong endpoint hit",
            code_location=code_location,
            response=response
        )


def _infer_cause(response: httpx.Response) -> str:
    """Infer likely cause from response status/body."""
    if response.status_code == 404:
        return "Resource not found - wrong ID or deleted"
    elif response.status_code == 400:
        return "Invalid request - missing required field or validation failed"
    elif response.status_code == 409:
        return "Conflict - duplicate resource or business rule violation"
    elif response.status_code == 500:
        return "Server error - check backend logs for stack trace"
    elif response.status_code == 504:
        return "Report exceeded REPORT_TIMEOUT_SECONDS"
    else:
        return f"Unexpected status code {response.status_code}"


# =============================================================================
# HTTP CLIENT
# =============================================================================

class APIClient:
    """HTTP client wrapper with JSON convenience methods."""

    def __init__(self, base_url: str, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(timeout=timeout)

    def _headers(self, extra: Optional[Dict] = None) -> Dict:
        headers = {"Content-Type": "application/json"}
        if extra:
            headers.update(extra)
        return headers

    def get(self, path: str, params: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.client.get(f"{self.base_url}{path}", headers=self._headers(), params=params, **kwargs)

    def post(self, path: str, json: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.client.post(f"{self.base_url}{path}", headers=self._headers(), json=json, **kwargs)

    def put(self, path: str, json: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.client.put(f"{self.base_url}{path}", headers=self._headers(), json=json, **kwargs)

    def delete(self, path: str, **kwargs) -> httpx.Response:
        return self.client.delete(f"{self.base_url}{path}", headers=self._headers(), **kwargs)

    def close(self):
        """Close the HTTP client."""
        self.client.close()


# =============================================================================
# SERVER MANAGEMENT
# =============================================================================

@dataclass
class SeedData:
    """Ids of the demo rows inserted by `flask webill seed-demo`."""
    customer_id: Optional[int] = None
    supplier_id: Optional[int] = None
    item_ids: Dict[str, int] = field(default_factory=dict)


class ServerManager:
    """
    Manages Flask backend server lifecycle for tests.
    """

    def __init__(self, config: TestConfig):
        self.config = config
        self.process: Optional[subprocess.Popen] = None
        self.db_file: Optional[Path] = None

    def _env(self) -> Dict[str, str]:
        env = os.environ.copy()
        env["DATABASE_URL"] = f"sqlite:///{self.db_file}"
        env["FLASK_APP"] = "webill"
        return env

    def start(self) -> bool:
        """Seed a fresh database file, then start the Flask server on it."""
        temp_dir = tempfile.mkdtemp(prefix="webill_test_")
        self.db_file = Path(temp_dir) / "test_webill.sqlite3"

        subprocess.run(
            [sys.executable, "-m", "flask", "webill", "seed-demo"],
            cwd=str(BACKEND_DIR),
            env=self._env(),
            check=True,
            capture_output=True,
        )

        self.process = subprocess.Popen(
            [sys.executable, "-m", "flask", "run", "--port", "5001"],
            cwd=str(BACKEND_DIR),
            env=self._env(),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        return self._wait_for_server()

    def _wait_for_server(self) -> bool:
        """Wait for server to be responsive."""
        start_time = time.time()
        while time.time() - start_time < self.config.server_startup_timeout:
            try:
                response = httpx.get(f"{self.config.backend_base_url}/health", timeout=2.0)
                if response.status_code in (200, 503):  # 503 means degraded but running
                    return True
            except (httpx.ConnectError, httpx.TimeoutException):
                pass
            time.sleep(0.5)
        return False

    def stop(self):
        """Stop the Flask server and cleanup."""
        if self.process:
            self.process.terminate()
            try:
                self.process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self.process.kill()
            self.process = None

        if self.db_file and self.db_file.parent.exists():
            shutil.rmtree(self.db_file.parent, ignore_errors=True)

    def seed_data(self) -> SeedData:
        """Read back the demo row ids from the database file."""
        from webill import create_app
        from webill.extensions import db
        from webill.models import Item, Party

        app = create_app({"SQLALCHEMY_DATABASE_URI": f"sqlite:///{self.db_file}"})
        with app.app_context():
            seed = SeedData()
            seed.customer_id = db.session.query(Party.id).filter_by(email="john.doe@example.com").scalar()
            seed.supplier_id = db.session.query(Party.id).filter_by(email="supplier@techcorp.com").scalar()
            seed.item_ids = {sku: item_id for item_id, sku in db.session.query(Item.id, Item.sku).all()}
            db.session.remove()
        return seed


# =============================================================================
# PYTEST FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def test_config() -> TestConfig:
    """Provide test configuration."""
    return TestConfig()


@pytest.fixture(scope="session")
def server_manager(test_config: TestConfig) -> Generator[ServerManager, None, None]:
    """
    Manage test server lifecycle.
    Server is started once per test session.
    """
    manager = ServerManager(test_config)

    # For CI/external server mode, don't manage server
    if os.environ.get("TEST_EXTERNAL_SERVER"):
        if not manager._wait_for_server():
            pytest.skip(f"No WeBill server reachable at {test_config.backend_base_url}")
        yield manager
    else:
        if not manager.start():
            manager.stop()
            pytest.fail("Failed to start test server")
        yield manager
        manager.stop()


@pytest.fixture(scope="session")
def seed(server_manager: ServerManager) -> SeedData:
    """Demo row ids; tests that need them skip against an external server."""
    if server_manager.db_file is None:
        pytest.skip("Seed data is only known for a managed test server")
    return server_manager.seed_data()


@pytest.fixture(scope="session")
def api_client(test_config: TestConfig, server_manager: ServerManager) -> Generator[APIClient, None, None]:
    """Provide API client for session-scoped tests."""
    client = APIClient(test_config.backend_base_url, timeout=test_config.request_timeout)
    yield client
    client.close()


@pytest.fixture
def client(api_client: APIClient) -> APIClient:
    """Provide API client for each test."""
    return api_client


# =============================================================================
# TEST MARKERS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "smoke: Quick smoke tests for critical paths")
    config.addinivalue_line("markers", "ledger: Transaction and stock tests")
    config.addinivalue_line("markers", "invoices: Invoice lifecycle tests")
    config.addinivalue_line("markers", "reports: Reporting endpoint tests")
