"""Container runtime client for cluster up.

Thin wrapper around the docker CLI. An environment overlay lets the same
client talk to a daemon inside a provisioned machine.
"""

from __future__ import annotations

import ipaddress
import json
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import IO, Any
from urllib.parse import urlparse

import structlog

from ..errors import INSECURE_REGISTRY_CIDR, CommandError, StartError

logger = structlog.get_logger(__name__)

LOOPBACK_CIDR = "127.0.0.0/8"


@dataclass
class ProxySettings:
    """HTTP(S) proxy configuration, either requested or on the daemon."""

    http: str = ""
    https: str = ""
    no_proxy: tuple[str, ...] = ()

    @property
    def configured(self) -> bool:
        return bool(self.http or self.https)


@dataclass
class ContainerInfo:
    """Subset of `docker inspect` output for a container."""

    name: str
    id: str = ""
    running: bool = False
    status: str = ""
    labels: dict[str, str] = field(default_factory=dict)


class DockerHelper:
    """Run docker CLI commands against one daemon."""

    def __init__(self, env: dict[str, str] | None = None, timeout: float = 30.0):
        """Initialize helper.

        Args:
            env: Extra environment for docker (DOCKER_HOST, DOCKER_CERT_PATH, ...).
            timeout: Timeout in seconds for short-lived commands.
        """
        self.env = dict(env or {})
        self.timeout = timeout

    def _environ(self) -> dict[str, str]:
        environ = dict(os.environ)
        environ.update(self.env)
        return environ

    def _docker(
        self,
        *args: str,
        timeout: float | None = None,
        input: str | None = None,
    ) -> subprocess.CompletedProcess:
        argv = ["docker", *args]
        logger.debug("running docker", argv=argv)
        try:
            return subprocess.run(
                argv,
                capture_output=True,
                text=True,
                input=input,
                timeout=timeout if timeout is not None else self.timeout,
                env=self._environ(),
            )
        except FileNotFoundError as e:
            raise StartError("Docker not found. Is Docker installed?", cause=e) from e
        except subprocess.TimeoutExpired as e:
            raise StartError(f"docker {args[0]} timed out", cause=e) from e

    def _check(self, result: subprocess.CompletedProcess, what: str) -> str:
        if result.returncode != 0:
            raise CommandError(
                what,
                argv=tuple(result.args),
                returncode=result.returncode,
                stderr=result.stderr or "",
            )
        return result.stdout

    def ping(self) -> None:
        """Verify the daemon answers."""
        if not shutil.which("docker"):
            raise StartError(
                "Docker not found",
                solution="Install Docker: https://docs.docker.com/get-docker/",
            )
        self._check(self._docker("version", "--format", "{{.Server.Version}}"), "Docker not responding")

    def docker_host(self) -> str:
        return self._environ().get("DOCKER_HOST", "")

    def host_ip(self) -> str:
        """IP of the daemon when reached over tcp://, otherwise ''."""
        parsed = urlparse(self.docker_host())
        if parsed.scheme != "tcp" or not parsed.hostname:
            return ""
        return parsed.hostname

    def api_version(self) -> tuple[str, bool]:
        """Daemon API version and whether the daemon is the Red Hat variant."""
        data = json.loads(self._check(self._docker("version", "--format", "{{json .}}"), "docker version failed"))
        server = data.get("Server") or {}
        api = server.get("ApiVersion") or server.get("APIVersion") or ""
        version = server.get("Version", "")
        is_rh = "rhel" in version or "redhat" in version.lower()
        for component in server.get("Components") or []:
            if "rhel" in str(component.get("Version", "")):
                is_rh = True
        return api, is_rh

    def info(self) -> dict[str, Any]:
        return json.loads(self._check(self._docker("info", "--format", "{{json .}}"), "docker info failed"))

    def insecure_registry_configured(self) -> tuple[bool, bool]:
        """Check the daemon's insecure registry ranges.

        Returns:
            (configured, has_entries): configured is True when some range
            covers the cluster service network; has_entries is True when any
            range other than loopback is present.
        """
        registry_config = self.info().get("RegistryConfig") or {}
        cidrs = registry_config.get("InsecureRegistryCIDRs") or []
        wanted = ipaddress.ip_network(INSECURE_REGISTRY_CIDR)
        has_entries = False
        for cidr in cidrs:
            if cidr == LOOPBACK_CIDR:
                continue
            has_entries = True
            try:
                network = ipaddress.ip_network(cidr, strict=False)
            except ValueError:
                continue
            if network.version == wanted.version and wanted.subnet_of(network):
                return True, True
        return False, has_entries

    def proxy_settings(self) -> ProxySettings:
        info = self.info()
        no_proxy = info.get("NoProxy") or ""
        return ProxySettings(
            http=info.get("HttpProxy") or "",
            https=info.get("HttpsProxy") or "",
            no_proxy=tuple(p.strip() for p in no_proxy.split(",") if p.strip()),
        )

    def get_container_state(self, name: str) -> tuple[ContainerInfo | None, bool]:
        """Inspect a container by name.

        Returns:
            (info, running); info is None when no such container exists.
        """
        result = self._docker("inspect", "--type", "container", name)
        if result.returncode != 0:
            if "No such" in (result.stderr or ""):
                return None, False
            self._check(result, f"cannot inspect container {name}")
        entries = json.loads(result.stdout or "[]")
        if not entries:
            return None, False
        entry = entries[0]
        state = entry.get("State") or {}
        info = ContainerInfo(
            name=name,
            id=entry.get("Id", ""),
            running=bool(state.get("Running")),
            status=state.get("Status", ""),
            labels=(entry.get("Config") or {}).get("Labels") or {},
        )
        return info, info.running

    def remove_container(self, name: str) -> None:
        self._check(self._docker("rm", "-f", name), f"cannot remove container {name}")

    def stop_container(self, name: str) -> None:
        self._check(self._docker("stop", name, timeout=120), f"cannot stop container {name}")

    def image_exists(self, image: str) -> bool:
        return self._docker("image", "inspect", image).returncode == 0

    def check_and_pull(self, image: str, out: IO[str]) -> None:
        """Pull an image unless it is already present."""
        if self.image_exists(image):
            logger.debug("image present", image=image)
            return
        out.write(f"Pulling image {image}\n")
        result = self._docker("pull", image, timeout=1800)
        self._check(result, f"cannot pull image {image}")
        out.write("Image pull complete\n")

    def run(self, *args: str, timeout: float | None = None, input: str | None = None) -> str:
        """`docker run --rm ...` and return its stdout.

        With input, the container's stdin is attached and fed input.
        """
        flags = ["--rm", "-i"] if input is not None else ["--rm"]
        result = self._docker("run", *flags, *args, timeout=timeout, input=input)
        return self._check(result, "docker run failed")

    def run_detached(self, *args: str) -> str:
        """`docker run -d ...` and return the container id."""
        return self._check(self._docker("run", "-d", *args, timeout=300), "docker run failed").strip()

    def copy_from(self, container: str, source: str, dest: str) -> None:
        self._check(
            self._docker("cp", f"{container}:{source}", dest, timeout=120),
            f"cannot copy {source} from {container}",
        )

    def logs(self, container: str, tail: int | None = None) -> str:
        args = ["logs"]
        if tail:
            args.extend(["--tail", str(tail)])
        result = self._docker(*args, container)
        return (result.stdout or "") + (result.stderr or "")

    def follow_logs(self, container: str, tail: int | None = None) -> subprocess.Popen:
        """Stream a container's logs to this process's stdout."""
        args = ["docker", "logs", "-f"]
        if tail:
            args.extend(["--tail", str(tail)])
        args.append(container)
        try:
            return subprocess.Popen(args, env=self._environ())
        except FileNotFoundError as e:
            raise StartError("Docker not found. Is Docker installed?", cause=e) from e
