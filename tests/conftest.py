"""
pytest configuration and fixtures.
"""

import sys
from pathlib import Path
from typing import List, Optional

import pytest

# Modules live at the repository root
sys.path.insert(0, str(Path(__file__).parent.parent))

from errors import NetworkClientError, QueryError
from identity import IdentityResolver
from main import Services, create_app
from models import Field, ProductRow, ValueKind
from tailnet import NodeStatus, WhoIsResult


class FakeDatabase:
    def __init__(self, reachable: bool = True, rows: Optional[List[ProductRow]] = None,
                 error: Optional[Exception] = None):
        self.reachable = reachable
        self.rows = rows if rows is not None else []
        self.error = error
        self.ping_timeouts = []
        self.query_timeouts = []

    def ping(self, timeout):
        self.ping_timeouts.append(timeout)
        return self.reachable

    def fetch_products(self, timeout):
        self.query_timeouts.append(timeout)
        if self.error is not None:
            raise self.error
        return list(self.rows)


class FakeNetwork:
    def __init__(self, status: Optional[NodeStatus] = None,
                 whois: Optional[WhoIsResult] = None):
        self._status = status
        self._whois = whois
        self.whois_calls = []

    def status(self):
        if self._status is None:
            raise NetworkClientError("no tailscaled")
        return self._status

    def whois(self, remote_addr):
        self.whois_calls.append(remote_addr)
        if self._whois is None:
            raise NetworkClientError("no tailscaled")
        return self._whois


def _product(id_, name, price, created_at):
    return ProductRow((
        Field("id", ValueKind.NUMBER, id_),
        Field("name", ValueKind.TEXT, name),
        Field("price", ValueKind.TEXT, price),
        Field("created_at", ValueKind.TIMESTAMP, created_at),
    ))


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def fake_network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def static_dir(tmp_path) -> Path:
    (tmp_path / "index.html").write_text("<html>demo</html>")
    (tmp_path / "app.js").write_text("// app")
    return tmp_path


@pytest.fixture
def make_client(static_dir):
    """Build a Flask test client around the given fakes."""
    def _make(db=None, network=None, embedded=False):
        db = db or FakeDatabase()
        network = network or FakeNetwork()
        services = Services(
            db=db,
            network=network,
            resolver=IdentityResolver(network, embedded=embedded),
            static_dir=str(static_dir),
        )
        app = create_app(services)
        app.testing = True
        return app.test_client()
    return _make


@pytest.fixture
def failing_db() -> FakeDatabase:
    return FakeDatabase(reachable=False, error=QueryError('Failed to query database: syntax error at or near "FORM"'))


@pytest.fixture
def make_product():
    return _product
