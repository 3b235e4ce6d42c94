"""Preflight steps for cluster up.

Each step is a read-only check against the host that may resolve part of
the run configuration (runtime variant, DNS port, mount strategy, server
address). Steps return a new RunConfig snapshot; the orchestrator threads
it from one step to the next.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path
from typing import IO

import structlog
from packaging.version import InvalidVersion, Version

from ..config import DEFAULT_MACHINE_NAME, RunConfig
from ..errors import (
    StartError,
    already_running,
    invalid_insecure_registry_argument,
    kubeconfig_not_writeable,
    no_insecure_registry_argument,
    no_machine_client,
    no_runtime_client,
    ports_unavailable,
)
from .address import AddressResolver, Probe, ReachabilityProbe, ResolvedAddress, local_ips
from .controlplane import (
    ALL_PORTS,
    ALTERNATE_DNS_PORT,
    BASE_PORTS,
    CONTAINER_NAME,
    DEFAULT_DNS_PORT,
    DEFAULT_PORTS,
    DOWN_COMMAND,
    ROUTER_PORTS,
    ControlPlaneHelper,
)
from .machine import DockerMachine
from .orchestrator import PreflightStep
from .proxy import default_no_proxy
from .reporter import warn
from .runtime import DockerHelper

logger = structlog.get_logger(__name__)

MIN_DOCKER_API_VERSION = Version("1.22")


def resolve_dns_port(unavailable: set[int], check_alternate_ports: bool) -> tuple[int, list[str]]:
    """Apply the port policy to the set of ports already in use.

    Returns:
        (dns_port, warnings)

    Raises:
        StartError: A mandatory port is taken.
    """
    if not check_alternate_ports:
        taken = unavailable & set(DEFAULT_PORTS)
        if taken:
            raise ports_unavailable(sorted(taken))
        return DEFAULT_DNS_PORT, []

    if unavailable & set(BASE_PORTS):
        raise ports_unavailable(sorted(unavailable))

    dns_port = DEFAULT_DNS_PORT
    warnings: list[str] = []
    if DEFAULT_DNS_PORT in unavailable:
        if ALTERNATE_DNS_PORT in unavailable:
            raise ports_unavailable(sorted(unavailable))
        dns_port = ALTERNATE_DNS_PORT
        warnings.append(
            f"Binding DNS on port {ALTERNATE_DNS_PORT} instead of {DEFAULT_DNS_PORT}, "
            "which may not be resolvable from all clients."
        )
    for port in ROUTER_PORTS:
        if port in unavailable:
            warnings.append(
                f"Port {port} is already in use and may cause routing issues for applications."
            )
    return dns_port, warnings


def check_kubeconfig_writeable(path: str) -> None:
    """Ensure the client kubeconfig can be created or modified."""
    kubeconfig = Path(path)
    try:
        if kubeconfig.exists():
            with open(kubeconfig, "r+"):
                pass
        else:
            kubeconfig.parent.mkdir(parents=True, exist_ok=True)
            kubeconfig.touch()
    except OSError as e:
        raise kubeconfig_not_writeable(path, e) from e


def socat_available() -> bool:
    if not shutil.which("socat"):
        return False
    try:
        subprocess.run(["socat", "-V"], capture_output=True, timeout=10, check=True)
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("socat check failed", error=str(e))
        return False
    return True


class Preflight:
    """Preflight steps and the host clients they discover."""

    def __init__(
        self,
        machine: DockerMachine | None = None,
        docker: DockerHelper | None = None,
        probe: Probe | None = None,
        local_addresses: Callable[[], list[str]] = local_ips,
        controlplane_factory: Callable[[DockerHelper, str], ControlPlaneHelper] = ControlPlaneHelper,
    ):
        """Initialize preflight.

        Args:
            machine: Machine provisioner, used when a machine is configured.
            docker: Runtime client to use instead of one from the environment.
            probe: Reachability probe for address candidates; by default one
                backed by a listener on the runtime host.
            local_addresses: Enumerates this machine's interface addresses.
            controlplane_factory: Builds the control-plane helper for a client and image.
        """
        self.controlplane_factory = controlplane_factory
        self.machine = machine or DockerMachine()
        self.docker = docker
        self.controlplane: ControlPlaneHelper | None = None
        self.probe = probe
        self.local_addresses = local_addresses
        self.address: ResolvedAddress | None = None

    def steps(self, config: RunConfig) -> list[PreflightStep]:
        return [
            PreflightStep(
                "Create Docker machine", self.create_machine, lambda c: c.create_machine
            ),
            PreflightStep("Create Docker client", self.create_client),
            PreflightStep("Checking for existing control plane container", self.check_existing_container),
            PreflightStep("Checking Docker version", self.check_docker_version),
            PreflightStep("Checking client configuration", self.check_client_config),
            PreflightStep(
                "Checking prerequisites for port forwarding",
                self.check_port_forwarding,
                lambda c: c.port_forwarding,
            ),
            PreflightStep(f"Checking for {config.image_ref} image", self.check_image),
            PreflightStep(
                "Checking Docker daemon configuration",
                self.check_insecure_registry,
                lambda c: not c.skip_registry_check,
            ),
            PreflightStep("Checking for available ports", self.check_ports),
            PreflightStep("Checking type of volume mount", self.check_mount_strategy),
            PreflightStep("Creating host directories", self.ensure_host_directories),
            PreflightStep("Finding server IP", self.determine_server_ip),
            PreflightStep(
                "Configuring proxy exclusions", self.update_no_proxy, lambda c: c.has_proxy
            ),
        ]

    def _require_docker(self) -> DockerHelper:
        if self.docker is None:
            raise StartError("no Docker client available")
        return self.docker

    def _require_controlplane(self) -> ControlPlaneHelper:
        if self.controlplane is None:
            raise StartError("no Docker client available")
        return self.controlplane

    def create_machine(self, config: RunConfig, out: IO[str]) -> RunConfig:
        name = config.machine_name or DEFAULT_MACHINE_NAME
        out.write(f"Creating docker-machine {name}\n")
        self.machine.create(name)
        return replace(config, machine_name=name)

    def create_client(self, config: RunConfig, out: IO[str]) -> RunConfig:
        if config.machine_name:
            self.docker = self._machine_client(config.machine_name, out)
        else:
            docker = self.docker or DockerHelper(env=self._docker_env())
            try:
                docker.ping()
            except StartError as e:
                raise no_runtime_client(e) from e
            self.docker = docker
        self.controlplane = self.controlplane_factory(self.docker, config.image_ref)
        return config

    def _docker_env(self) -> dict[str, str]:
        env: dict[str, str] = {}
        if os.environ.get("DOCKER_TLS_VERIFY") and not os.environ.get("DOCKER_CERT_PATH"):
            env["DOCKER_CERT_PATH"] = str(Path.home() / ".docker")
        if not os.environ.get("DOCKER_HOST"):
            logger.debug("no DOCKER_HOST configured, using the default socket")
        return env

    def _machine_client(self, name: str, out: IO[str]) -> DockerHelper:
        logger.debug("getting client for docker machine", machine=name)
        try:
            if not self.machine.is_running(name):
                out.write(f"Starting Docker machine '{name}'\n")
                try:
                    self.machine.start(name)
                except StartError as e:
                    raise StartError(f"cannot start Docker machine {name!r}", cause=e) from e
                out.write(f"Started Docker machine '{name}'\n")
            return self.machine.client(name)
        except StartError as e:
            raise no_machine_client(name, e) from e

    def check_existing_container(self, config: RunConfig, out: IO[str]) -> RunConfig:
        docker = self._require_docker()
        try:
            container, running = docker.get_container_state(CONTAINER_NAME)
        except StartError as e:
            raise StartError("unexpected error while checking control plane container state", cause=e) from e
        if running:
            raise already_running(DOWN_COMMAND)
        if container is not None:
            try:
                docker.remove_container(CONTAINER_NAME)
            except StartError as e:
                raise StartError("cannot delete existing control plane container", cause=e) from e
            out.write("Deleted existing control plane container\n")
        return config

    def check_docker_version(self, config: RunConfig, out: IO[str]) -> RunConfig:
        try:
            api, is_rh = self._require_docker().api_version()
            parsed = Version(api)
        except (StartError, InvalidVersion, ValueError) as e:
            logger.debug("failed to check Docker API version", error=str(e))
            warn(out, "Cannot verify Docker version")
            return config
        if parsed < MIN_DOCKER_API_VERSION:
            warn(out, f"Docker version is {api}, it needs to be >= {MIN_DOCKER_API_VERSION}")
        return replace(config, is_rh_docker=is_rh)

    def check_client_config(self, config: RunConfig, out: IO[str]) -> RunConfig:
        kubeconfig = os.environ.get("KUBECONFIG", "")
        if kubeconfig:
            check_kubeconfig_writeable(kubeconfig)
        return config

    def check_port_forwarding(self, config: RunConfig, out: IO[str]) -> RunConfig:
        if not socat_available():
            warn(
                out,
                "Port forwarding requires the socat command line utility. "
                "The cluster public IP may not be reachable. Please make sure socat is installed.",
            )
        return config

    def check_image(self, config: RunConfig, out: IO[str]) -> RunConfig:
        self._require_docker().check_and_pull(config.image_ref, out)
        return config

    def check_insecure_registry(self, config: RunConfig, out: IO[str]) -> RunConfig:
        configured, has_entries = self._require_docker().insecure_registry_configured()
        if not configured:
            if has_entries:
                raise invalid_insecure_registry_argument()
            raise no_insecure_registry_argument()
        return config

    def check_ports(self, config: RunConfig, out: IO[str]) -> RunConfig:
        controlplane = self._require_controlplane()
        ports = ALL_PORTS if config.check_alternate_ports else DEFAULT_PORTS
        unavailable = set(controlplane.test_ports(ports))
        dns_port, warnings = resolve_dns_port(unavailable, config.check_alternate_ports)
        for message in warnings:
            warn(out, message)
        return replace(config, dns_port=dns_port)

    def check_mount_strategy(self, config: RunConfig, out: IO[str]) -> RunConfig:
        controlplane = self._require_controlplane()
        use_nsenter = controlplane.can_use_nsenter_mounter() and config.is_rh_docker
        if use_nsenter:
            out.write("Using nsenter mounter for volumes\n")
        else:
            out.write("Using Docker shared volumes for volumes\n")
        return replace(config, use_nsenter_mount=use_nsenter)

    def ensure_host_directories(self, config: RunConfig, out: IO[str]) -> RunConfig:
        controlplane = self._require_controlplane()
        controlplane.ensure_host_directories(config, shared_volume=not config.use_nsenter_mount)
        return config

    def determine_server_ip(self, config: RunConfig, out: IO[str]) -> RunConfig:
        controlplane = self._require_controlplane()
        resolver = AddressResolver(
            runtime=self._require_docker(),
            cluster=controlplane,
            probe=self.probe or ReachabilityProbe(listener=controlplane.port_listener),
            machine=self.machine if config.machine_name else None,
            local_addresses=self.local_addresses,
        )
        self.address = resolver.resolve(config, out)
        return replace(
            config,
            server_ip=self.address.primary,
            additional_ips=self.address.alternates,
            port_forwarding=self.address.port_forwarding,
        )

    def update_no_proxy(self, config: RunConfig, out: IO[str]) -> RunConfig:
        controlplane = self._require_controlplane()
        try:
            cluster_ip = controlplane.server_ip()
        except StartError as e:
            logger.debug("cannot get server IP for NO_PROXY", error=str(e))
            cluster_ip = ""
        no_proxy = default_no_proxy(config.no_proxy, config.server_ip, cluster_ip)
        return replace(config, no_proxy=no_proxy)
