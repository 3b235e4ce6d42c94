"""Control-plane container management for cluster up.

This module runs the control-plane container on the runtime host and
exposes the host-side signals the rest of cluster up needs: port
availability, mount strategy, and the addresses the server can see.
"""

from __future__ import annotations

import shlex
import subprocess
from collections.abc import Iterator
from contextlib import contextmanager
from typing import IO

import structlog

from ..config import MASTER_PORT, RunConfig
from ..errors import ProbeError, StartError
from .health import HealthPoller
from .runtime import DockerHelper

logger = structlog.get_logger(__name__)

CONTAINER_NAME = "origin"
DOWN_COMMAND = "clusterup down"

# Ports
BASE_PORTS = (4001, 7001, MASTER_PORT, 10250)
ROUTER_PORTS = (80, 443)
DEFAULT_DNS_PORT = 53
ALTERNATE_DNS_PORT = 8053
DEFAULT_PORTS = BASE_PORTS + (DEFAULT_DNS_PORT,)
ALL_PORTS = ROUTER_PORTS + BASE_PORTS + (DEFAULT_DNS_PORT, ALTERNATE_DNS_PORT)

# Cluster service network
REGISTRY_SERVICE_IP = "172.30.1.1"
SERVICE_CATALOG_SERVICE_IP = "172.30.1.2"
SERVICE_NETWORK = "172.30.0.0/8"

# Namespaces and well-known objects
DEFAULT_NAMESPACE = "default"
OPENSHIFT_NAMESPACE = "openshift"
INFRA_NAMESPACE = "openshift-infra"
REGISTRY_SERVICE = "docker-registry"

# Paths inside the control-plane container
CONTAINER_CONFIG_DIR = "/var/lib/origin/openshift.local.config"
CONTAINER_VOLUMES_DIR = "/var/lib/origin/openshift.local.volumes"
CONTAINER_ETCD_DIR = "/var/lib/origin/openshift.local.etcd"

# /proc/net socket state for a listening TCP socket
TCP_LISTEN = "0A"


def metrics_host(routing_suffix: str) -> str:
    return f"hawkular-metrics-openshift-infra.{routing_suffix}"


def logging_host(routing_suffix: str) -> str:
    return f"kibana-logging.{routing_suffix}"


def catalog_host(routing_suffix: str) -> str:
    return f"apiserver-kube-service-catalog.{routing_suffix}"


def master_url(ip: str) -> str:
    return f"https://{ip}:{MASTER_PORT}"


def parse_bound_ports(proc_net: str) -> set[int]:
    """Ports in use according to /proc/net/{tcp,tcp6,udp,udp6} content.

    TCP sockets count only when listening; any bound UDP socket counts.
    """
    ports: set[int] = set()
    protocol = "tcp"
    for line in proc_net.splitlines():
        line = line.strip()
        if line.startswith("==>"):
            protocol = "udp" if "udp" in line else "tcp"
            continue
        fields = line.split()
        if len(fields) < 4 or fields[0] == "sl" or ":" not in fields[1]:
            continue
        _, _, port_hex = fields[1].rpartition(":")
        try:
            port = int(port_hex, 16)
        except ValueError:
            continue
        if protocol == "tcp" and fields[3] != TCP_LISTEN:
            continue
        ports.add(port)
    return ports


class ControlPlaneHelper:
    """Run and interrogate the control-plane container."""

    def __init__(
        self,
        docker: DockerHelper,
        image: str,
        poller: HealthPoller | None = None,
    ):
        """Initialize helper.

        Args:
            docker: Runtime client for the target host.
            image: Full control-plane image reference.
            poller: Health poller used after the container starts.
        """
        self.docker = docker
        self.image = image
        self.poller = poller or HealthPoller()

    def _host_command(self, script: str, *extra: str, timeout: float | None = None) -> str:
        """Run a shell script on the host's network and pid namespaces."""
        return self.docker.run(
            "--privileged",
            "--net=host",
            "--pid=host",
            *extra,
            "--entrypoint",
            "/bin/bash",
            self.image,
            "-c",
            script,
            timeout=timeout,
        )

    def test_ports(self, ports: tuple[int, ...]) -> list[int]:
        """Return the subset of ports already bound on the runtime host."""
        listing = self._host_command(
            "tail -n +1 /proc/net/tcp /proc/net/tcp6 /proc/net/udp /proc/net/udp6 2>/dev/null"
        )
        bound = parse_bound_ports(listing)
        return [p for p in ports if p in bound]

    def can_use_nsenter_mounter(self) -> bool:
        """Whether the host supports mounting volumes through nsenter."""
        try:
            self._host_command("nsenter --mount=/proc/1/ns/mnt -- mount --version")
        except StartError as e:
            logger.debug("nsenter mounter unavailable", error=str(e))
            return False
        return True

    def ensure_host_directories(self, config: RunConfig, shared_volume: bool) -> None:
        """Create host directories; make the volumes dir a shared mount if needed."""
        dirs = [config.host_config_dir, config.host_volumes_dir, config.host_pv_dir]
        if config.host_data_dir:
            dirs.append(config.host_data_dir)
        script = "mkdir -p " + " ".join(shlex.quote(f"/rootfs{d}") for d in dirs)
        if shared_volume:
            volumes = shlex.quote(config.host_volumes_dir)
            script += (
                f" && nsenter --mount=/proc/1/ns/mnt -- /bin/sh -c "
                f"'mount --bind {volumes} {volumes} && mount --make-shared {volumes}'"
            )
        self._host_command(script, "-v", "/:/rootfs")

    def server_ip(self) -> str:
        """Address the control plane would bind to, as it reports it."""
        ip = self.docker.run("--privileged", "--net=host", self.image, "start", "--print-ip").strip()
        if not ip:
            raise StartError("server did not report an IP")
        return ip

    @contextmanager
    def port_listener(self, port: int = MASTER_PORT) -> Iterator[str]:
        """Hold port open on the runtime host network until the block exits.

        Yields the listener container id.
        """
        container_id = self.docker.run_detached(
            "--net=host",
            "--entrypoint",
            "socat",
            self.image,
            f"TCP-LISTEN:{port},crlf,reuseaddr,fork",
            "SYSTEM:echo ok",
        )
        logger.debug("port listener started", port=port, container=container_id[:12])
        try:
            yield container_id
        finally:
            try:
                self.docker.remove_container(container_id)
            except StartError as e:
                logger.warning("cannot remove port listener", container=container_id[:12], error=str(e))

    def other_ips(self, exclude: str) -> list[str]:
        """Other IPv4 addresses assigned to the runtime host."""
        output = self.docker.run("--net=host", "--entrypoint", "hostname", self.image, "-I")
        ips = []
        for candidate in output.split():
            if candidate == exclude or ":" in candidate or candidate.startswith("127."):
                continue
            if candidate not in ips:
                ips.append(candidate)
        return ips

    def _run_args(self, config: RunConfig) -> list[str]:
        propagation = "" if config.use_nsenter_mount else ":rslave"
        volumes = [
            "/var/log:/var/log",
            "/var/run:/var/run",
            "/sys:/sys:ro",
            "/dev:/dev",
            "/:/rootfs:ro",
            f"{config.host_config_dir}:{CONTAINER_CONFIG_DIR}:z",
            f"{config.host_volumes_dir}:{CONTAINER_VOLUMES_DIR}{propagation}",
            f"{config.host_pv_dir}:{config.host_pv_dir}",
        ]
        if config.host_data_dir:
            volumes.append(f"{config.host_data_dir}:{CONTAINER_ETCD_DIR}:z")

        env = list(config.environment)
        if config.use_nsenter_mount:
            env.append("OPENSHIFT_CONTAINERIZED=false")
        if config.http_proxy:
            env.append(f"HTTP_PROXY={config.http_proxy}")
        if config.https_proxy:
            env.append(f"HTTPS_PROXY={config.https_proxy}")
        if config.no_proxy:
            env.append(f"NO_PROXY={','.join(config.no_proxy)}")

        args = ["--privileged", "--net=host", "--pid=host"]
        for volume in volumes:
            args += ["-v", volume]
        for pair in env:
            args += ["-e", pair]
        return args

    def _start_args(self, config: RunConfig) -> list[str]:
        args = [
            f"--master={master_url(config.server_ip)}",
            f"--public-master={config.master_url}",
            f"--dns=0.0.0.0:{config.dns_port}",
            f"--loglevel={config.server_log_level}",
        ]
        if config.host_data_dir:
            args.append(f"--etcd-dir={CONTAINER_ETCD_DIR}")
        if config.additional_ips:
            hostnames = [config.server_ip, *config.additional_ips, "localhost", "127.0.0.1"]
            args.append(f"--hostname={','.join(hostnames)}")
        return args

    def start(self, config: RunConfig, out: IO[str]) -> None:
        """Start the control-plane container and wait until it is healthy.

        With write_config, only writes the server configuration to the host
        config dir and returns.
        """
        run_args = self._run_args(config)
        start_args = self._start_args(config)

        if config.write_config:
            self.docker.run(
                *run_args,
                self.image,
                "start",
                *start_args,
                f"--write-config={CONTAINER_CONFIG_DIR}",
                timeout=300,
            )
            out.write(f"Wrote server configuration to {config.host_config_dir}\n")
            return

        if config.use_existing_config:
            start_args.append(f"--master-config={CONTAINER_CONFIG_DIR}/master/master-config.yaml")

        container_id = self.docker.run_detached(
            "--name", CONTAINER_NAME, *run_args, self.image, "start", *start_args
        )
        logger.info("control plane container started", container=container_id[:12])
        out.write("Waiting for the server to become healthy\n")

        health = self.poller.wait_for_healthy_sync(master_url(config.server_ip))
        if not health.healthy:
            raise StartError(
                "could not start the control plane",
                details=self.origin_log(),
                solution=f"Check the server logs:\n$ docker logs {CONTAINER_NAME}",
            ).with_cause(StartError(health.error or "server not healthy"))
        out.write(f"Server healthy after {health.elapsed_seconds:.1f}s\n")

        self._copy_local_config(config)

    def _copy_local_config(self, config: RunConfig) -> None:
        """Copy the generated master config and admin kubeconfig to the client."""
        config.local_config_dir.mkdir(parents=True, exist_ok=True)
        self.docker.copy_from(
            CONTAINER_NAME, f"{CONTAINER_CONFIG_DIR}/master", str(config.local_config_dir)
        )

    def start_socat_tunnel(self) -> subprocess.Popen:
        """Forward the local master port into the control-plane container."""
        target = f"docker exec -i {CONTAINER_NAME} socat - TCP\\:127.0.0.1\\:{MASTER_PORT}"
        argv = ["socat", f"TCP-L:{MASTER_PORT},reuseaddr,fork,backlog=20", f"SYSTEM:{target}"]
        try:
            return subprocess.Popen(
                argv,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                env=self.docker._environ(),
                start_new_session=True,
            )
        except FileNotFoundError as e:
            raise StartError(
                "socat is required for port forwarding",
                cause=e,
                solution="Install socat or run with --forward-ports=false.",
            ) from e

    def test_container_networking(self, server_ip: str) -> None:
        """Verify a container can reach the master through the host network."""
        url = f"{master_url(server_ip)}/healthz"
        try:
            status = self.docker.run(
                "--entrypoint",
                "curl",
                self.image,
                "-k",
                "-s",
                "-o",
                "/dev/null",
                "-w",
                "%{http_code}",
                url,
                timeout=60,
            ).strip()
        except StartError as e:
            raise ProbeError(f"cannot reach {url} from a container", cause=e) from e
        if status != "200":
            raise ProbeError(f"{url} answered HTTP {status or 'nothing'} from a container")

    def origin_log(self, tail: int = 50) -> str:
        try:
            return self.docker.logs(CONTAINER_NAME, tail=tail)
        except StartError:
            return ""

    def stop(self) -> None:
        self.docker.stop_container(CONTAINER_NAME)
        self.docker.remove_container(CONTAINER_NAME)
