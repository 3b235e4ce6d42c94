"""Composition root for cluster up.

Runs preflight to resolve the configuration, then builds the cluster
client, re-entry oracle and installer from the resolved snapshot and runs
the task list.
"""

from __future__ import annotations

from collections.abc import Callable
from functools import partial
from pathlib import Path
from typing import IO, Any

import structlog
import yaml

from ..config import RunConfig
from ..errors import NotFoundError, StartError
from ..shared.paths import master_config
from .cluster import ClusterClient
from .controlplane import DEFAULT_NAMESPACE, REGISTRY_SERVICE
from .install import ClusterInstaller
from .orchestrator import Orchestrator, RunResult
from .preflight import Preflight
from .reentry import ReentryOracle
from .tasks import TaskRegistry

logger = structlog.get_logger(__name__)


def registry_present(cluster: ClusterClient) -> bool:
    """Whether the registry service exists; other errors propagate."""
    try:
        cluster.get_service(DEFAULT_NAMESPACE, REGISTRY_SERVICE)
    except NotFoundError:
        return False
    return True


def load_master_config(local_config_dir: Path) -> dict[str, Any]:
    with open(master_config(local_config_dir)) as f:
        return yaml.safe_load(f) or {}


class ClusterUp:
    """One cluster up run."""

    def __init__(
        self,
        config: RunConfig,
        out: IO[str],
        preflight: Preflight | None = None,
        cluster_factory: Callable[[Path, str], ClusterClient] = ClusterClient,
        installer_factory: Callable[..., ClusterInstaller] = ClusterInstaller,
        registry: TaskRegistry | None = None,
    ):
        """Initialize run.

        Args:
            config: Options from the command line; resolved further by preflight.
            out: Caller-visible output stream.
            preflight: Preflight steps and the host clients they discover.
            cluster_factory: Builds the cluster client from (local config dir, server IP).
            installer_factory: Builds the installer for the resolved configuration.
            registry: Builds the task list.
        """
        self.config = config
        self.out = out
        self.preflight = preflight or Preflight()
        self.cluster_factory = cluster_factory
        self.installer_factory = installer_factory
        self.registry = registry or TaskRegistry()
        self.installer: ClusterInstaller | None = None

    def run(self) -> RunResult:
        """Run preflight and the task list.

        Raises:
            TaskError: A preflight step or task failed.
        """
        orchestrator = Orchestrator(self.out, verbose=self.config.verbose > 0)
        config = orchestrator.preflight(self.preflight.steps(self.config), self.config)
        self.config = config
        logger.info("configuration resolved", server_ip=config.server_ip, dns_port=config.dns_port)

        if self.preflight.docker is None or self.preflight.controlplane is None:
            raise StartError("preflight did not produce a Docker client")

        cluster = self.cluster_factory(config.local_config_dir, config.server_ip)
        oracle = ReentryOracle(
            config.use_existing_config,
            registry_probe=partial(registry_present, cluster),
            config_loader=partial(load_master_config, config.local_config_dir),
        )
        self.installer = self.installer_factory(
            config, self.preflight.docker, self.preflight.controlplane, cluster, oracle
        )

        tasks = self.registry.build(config, oracle, self.installer)
        result = orchestrator.run(tasks)
        if not result.success and result.error is not None:
            raise result.error
        return result
