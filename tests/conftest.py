"""Shared test fixtures for clusterup tests.

This module provides in-memory stand-ins for the external collaborators:
- FakeDocker: the container runtime client
- FakeControlPlane: the control-plane container helper
- cluster_client: a MagicMock cluster client with sensible answers
"""

from __future__ import annotations

import io
import json
from contextlib import contextmanager
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from clusterup.bootstrap.cluster import ClusterClient
from clusterup.bootstrap.runtime import ContainerInfo, ProxySettings
from clusterup.config import RunConfig
from clusterup.errors import NotFoundError

# =============================================================================
# Runtime and control plane
# =============================================================================


class FakeDocker:
    """Runtime client that answers from fixed state and records mutations."""

    def __init__(
        self,
        container: ContainerInfo | None = None,
        host: str = "",
        api: str = "1.40",
        is_rh: bool = False,
        insecure: tuple[bool, bool] = (True, True),
        proxy: ProxySettings | None = None,
    ):
        self.container = container
        self.host = host
        self.api = api
        self.is_rh = is_rh
        self.insecure = insecure
        self.proxy = proxy or ProxySettings()
        self.removed: list[str] = []
        self.pulled: list[str] = []
        self.runs: list[tuple[str, ...]] = []

    def ping(self) -> None:
        pass

    def api_version(self) -> tuple[str, bool]:
        return self.api, self.is_rh

    def insecure_registry_configured(self) -> tuple[bool, bool]:
        return self.insecure

    def get_container_state(self, name: str):
        if self.container is None:
            return None, False
        return self.container, self.container.running

    def remove_container(self, name: str) -> None:
        self.removed.append(name)

    def check_and_pull(self, image: str, out) -> None:
        self.pulled.append(image)

    def run(self, *args: str, timeout: float | None = None, input: str | None = None) -> str:
        self.runs.append(args)
        return ""

    def host_ip(self) -> str:
        return self.host

    def proxy_settings(self) -> ProxySettings:
        return self.proxy


class FakeControlPlane:
    """Control-plane helper with canned host signals."""

    def __init__(
        self,
        bound: tuple[int, ...] = (),
        server: str = "10.0.0.5",
        others: tuple[str, ...] = ("192.168.1.10",),
        nsenter: bool = False,
    ):
        self.bound = bound
        self.server = server
        self.others = others
        self.nsenter = nsenter
        self.started_with: RunConfig | None = None
        self.host_dirs_shared: bool | None = None
        self.network_checks: list[str] = []
        self.listeners: list[int] = []

    def test_ports(self, ports):
        return [p for p in ports if p in self.bound]

    def can_use_nsenter_mounter(self) -> bool:
        return self.nsenter

    def ensure_host_directories(self, config, shared_volume: bool) -> None:
        self.host_dirs_shared = shared_volume

    def server_ip(self) -> str:
        return self.server

    def other_ips(self, exclude: str) -> list[str]:
        return [ip for ip in self.others if ip != exclude]

    @contextmanager
    def port_listener(self, port: int = 8443):
        self.listeners.append(port)
        yield "listener"

    def start(self, config, out) -> None:
        self.started_with = config
        out.write("Server healthy after 1.0s\n")

    def start_socat_tunnel(self):
        return MagicMock()

    def test_container_networking(self, server_ip: str) -> None:
        self.network_checks.append(server_ip)

    def origin_log(self, tail: int = 50) -> str:
        return ""


@pytest.fixture
def fake_docker() -> FakeDocker:
    return FakeDocker()


@pytest.fixture
def fake_controlplane() -> FakeControlPlane:
    return FakeControlPlane()


# =============================================================================
# Cluster client
# =============================================================================


def make_cluster_client(
    registry_present: bool = False,
    version: str = "v3.9.0+a1b2c3d",
) -> MagicMock:
    """MagicMock cluster client; the registry service exists only when asked."""
    cluster = MagicMock(spec=ClusterClient)

    def get_service(namespace, name):
        if registry_present:
            return {"metadata": {"name": name, "namespace": namespace}}
        raise NotFoundError(f'services "{name}" not found')

    cluster.get_service.side_effect = get_service
    cluster.server_version.return_value = version
    cluster.admin_command.return_value = json.dumps({"kind": "List", "items": []})
    cluster.remove_duplicate_nodes.return_value = []
    cluster.get_oauth_client.return_value = {"metadata": {"name": "openshift-web-console"}}
    return cluster


@pytest.fixture
def cluster_client() -> MagicMock:
    return make_cluster_client()


# =============================================================================
# Configuration and output
# =============================================================================


@pytest.fixture
def local_config_dir(tmp_path: Path) -> Path:
    """Local config dir holding a service signer certificate."""
    master = tmp_path / "openshift.local.config" / "master"
    master.mkdir(parents=True)
    (master / "service-signer.crt").write_text("-----BEGIN CERTIFICATE-----\n")
    return tmp_path / "openshift.local.config"


@pytest.fixture
def run_config(local_config_dir: Path) -> RunConfig:
    return RunConfig(local_config_dir=local_config_dir, server_ip="10.0.0.5")


@pytest.fixture
def out() -> io.StringIO:
    return io.StringIO()


@pytest.fixture(autouse=True)
def _no_kubeconfig(monkeypatch):
    monkeypatch.delenv("KUBECONFIG", raising=False)
    monkeypatch.delenv("DOCKER_HOST", raising=False)


@pytest.fixture
def make_docker():
    return FakeDocker


@pytest.fixture
def make_controlplane():
    return FakeControlPlane


@pytest.fixture
def make_cluster():
    return make_cluster_client
