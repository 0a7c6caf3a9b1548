"""
Shared test fixtures and configuration.
"""

import textwrap
from pathlib import Path

import pytest

from windsc.adapters.mock import MockOpener, MockWindowsHost
from windsc.core.engine.lifecycle import FeatureLifecycle
from windsc.core.engine.reconciler import Reconciler
from windsc.core.models.connection import Connection

HOST = "win01.example.test"


@pytest.fixture
def opener() -> MockOpener:
    """Opener with one Windows host registered under HOST."""
    opener = MockOpener()
    opener.add_host(HOST)
    return opener


@pytest.fixture
def host(opener: MockOpener) -> MockWindowsHost:
    """The mock Windows host behind HOST, with a typical feature catalog."""
    host = opener.hosts[HOST]
    host.add_feature("Web-Server", sub_features=["Web-Asp-Net45", "Web-Mgmt-Console"])
    host.add_feature("Telnet-Client")
    host.add_feature("NET-Framework-45-Core", installed=True)
    return host


@pytest.fixture
def connection() -> Connection:
    return Connection(host=HOST, username="Administrator", password="s3cret")


@pytest.fixture
def reconciler(opener: MockOpener) -> Reconciler:
    return Reconciler(opener)


@pytest.fixture
def lifecycle(reconciler: Reconciler) -> FeatureLifecycle:
    return FeatureLifecycle(reconciler)


@pytest.fixture
def write_config(tmp_path: Path):
    """Write a windsc.yml into tmp_path and return its path."""

    def _write(body: str) -> Path:
        path = tmp_path / "windsc.yml"
        path.write_text(textwrap.dedent(body), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def basic_config(write_config, monkeypatch) -> Path:
    """windsc.yml with two features on HOST, password from the environment."""
    monkeypatch.setenv("WINDSC_TEST_PASSWORD", "s3cret")
    return write_config(f"""\
        connection:
          host: {HOST}
          username: Administrator
          password_env: WINDSC_TEST_PASSWORD
        features:
          - name: Web-Server
            key: web
            sub_features: [Web-Asp-Net45]
          - name: Telnet-Client
    """)
