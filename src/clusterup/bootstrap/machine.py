"""Docker machine provisioning for cluster up.

Wraps the docker-machine CLI to create, start and address a remote
container host.
"""

from __future__ import annotations

import subprocess

import structlog

from ..errors import CommandError, StartError
from .runtime import DockerHelper

logger = structlog.get_logger(__name__)

DEFAULT_DRIVER = "virtualbox"


class DockerMachine:
    """Manage a docker-machine host."""

    def __init__(self, driver: str = DEFAULT_DRIVER):
        self.driver = driver

    def _run(self, *args: str, timeout: float = 60.0) -> str:
        argv = ["docker-machine", *args]
        logger.debug("running docker-machine", argv=argv)
        try:
            result = subprocess.run(argv, capture_output=True, text=True, timeout=timeout)
        except FileNotFoundError as e:
            raise StartError(
                "docker-machine not found",
                cause=e,
                solution="Install docker-machine or run without a Docker machine.",
            ) from e
        except subprocess.TimeoutExpired as e:
            raise StartError(f"docker-machine {args[0]} timed out", cause=e) from e
        if result.returncode != 0:
            raise CommandError(
                f"docker-machine {args[0]} failed",
                argv=tuple(argv),
                returncode=result.returncode,
                stderr=result.stderr or "",
            )
        return result.stdout.strip()

    def create(self, name: str) -> None:
        self._run("create", "--driver", self.driver, name, timeout=900)

    def is_running(self, name: str) -> bool:
        try:
            return self._run("status", name) == "Running"
        except CommandError:
            return False

    def start(self, name: str) -> None:
        self._run("start", name, timeout=600)

    def ip(self, name: str) -> str:
        address = self._run("ip", name)
        if not address:
            raise StartError(f"docker-machine reported no IP for {name!r}")
        return address

    def client(self, name: str) -> DockerHelper:
        """Runtime client pointed at the machine's daemon."""
        env: dict[str, str] = {}
        for line in self._run("env", "--shell", "bash", name).splitlines():
            line = line.strip()
            if not line.startswith("export "):
                continue
            key, _, value = line[len("export ") :].partition("=")
            env[key] = value.strip().strip('"')
        return DockerHelper(env=env)
