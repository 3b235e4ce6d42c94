"""Shared fixtures for cluster up scenario tests.

A scenario runs the real preflight, task registry, orchestrator and
installer. Only the host boundary is replaced: the Docker client, the
control-plane helper and the cluster client come from tests/conftest.py.
"""

from __future__ import annotations

import io
from dataclasses import dataclass, field, replace
from unittest.mock import MagicMock

import pytest

from clusterup.bootstrap.orchestrator import RunResult
from clusterup.bootstrap.preflight import Preflight
from clusterup.bootstrap.up import ClusterUp
from clusterup.config import RunConfig

ALLOW_ALL_MASTER_CONFIG = """\
oauthConfig:
  identityProviders:
  - name: anypassword
    challenge: true
    login: true
    provider:
      apiVersion: v1
      kind: AllowAllPasswordIdentityProvider
"""


@dataclass
class Host:
    """One machine with its Docker daemon and (possibly) a previous cluster."""

    config: RunConfig
    docker: object
    controlplane: object
    cluster: MagicMock
    out: io.StringIO = field(default_factory=io.StringIO)
    up: ClusterUp | None = None

    def cluster_up(self, **overrides) -> RunResult:
        preflight = Preflight(
            machine=MagicMock(),
            docker=self.docker,
            probe=MagicMock(),
            local_addresses=lambda: [],
            controlplane_factory=lambda docker, image: self.controlplane,
        )
        self.up = ClusterUp(
            replace(self.config, **overrides),
            self.out,
            preflight=preflight,
            cluster_factory=lambda local_config_dir, server_ip: self.cluster,
        )
        return self.up.run()

    @property
    def output(self) -> str:
        return self.out.getvalue()


@pytest.fixture
def host(run_config, fake_docker, fake_controlplane, cluster_client) -> Host:
    """A fresh host: no container, no previous cluster state."""
    return Host(
        config=replace(run_config, server_ip=""),
        docker=fake_docker,
        controlplane=fake_controlplane,
        cluster=cluster_client,
    )


@pytest.fixture
def previous_cluster(host, local_config_dir, make_cluster) -> Host:
    """A host whose previous cluster left its data and configuration behind."""
    (local_config_dir / "master" / "master-config.yaml").write_text(ALLOW_ALL_MASTER_CONFIG)
    host.cluster = make_cluster(registry_present=True)
    return host
