"""Server address resolution for cluster up.

Picks the one address the client will use to reach the control plane out
of several unreliable signals, then collects the other addresses the
server certificate should also cover.

Resolution order (first success wins):

1. explicit public hostname that is a concrete IP (never probed)
2. docker-machine IP (disables port forwarding)
3. loopback when port forwarding is on
4. the runtime daemon's tcp:// host
5. loopback
6. the address the control plane reports for itself
7. other addresses assigned to the runtime host
"""

from __future__ import annotations

import ipaddress
import socket
import time
from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import IO, Protocol

import psutil
import structlog

from ..config import MASTER_PORT, RunConfig
from ..errors import ProbeError, StartError, cannot_determine_server_address
from .health import HealthPoller
from .reporter import warn

logger = structlog.get_logger(__name__)

LOOPBACK = "127.0.0.1"

Probe = Callable[[str], None]
Listener = Callable[[int], AbstractContextManager[object]]


class MachineIPSource(Protocol):
    def ip(self, name: str) -> str: ...


class RuntimeHostSource(Protocol):
    def host_ip(self) -> str: ...


class ClusterIPSource(Protocol):
    def server_ip(self) -> str: ...

    def other_ips(self, exclude: str) -> list[str]: ...


@dataclass(frozen=True)
class AddressCandidate:
    """One address considered during resolution."""

    source: str
    ip: str
    testable: bool = True


@dataclass(frozen=True)
class ResolvedAddress:
    """Outcome of address resolution."""

    primary: str
    source: str
    alternates: tuple[str, ...] = ()
    port_forwarding: bool = False
    alternates_error: StartError | None = None


def concrete_ip(hostname: str) -> str | None:
    """Normalized IP if hostname is a literal, non-wildcard address."""
    try:
        ip = ipaddress.ip_address(hostname.strip())
    except ValueError:
        return None
    if ip.is_unspecified:
        return None
    return str(ip)


def local_ips() -> list[str]:
    """IPv4 addresses of this machine's up, non-loopback interfaces."""
    stats = psutil.net_if_stats()
    ips: list[str] = []
    for name, addrs in psutil.net_if_addrs().items():
        stat = stats.get(name)
        if stat is None or not stat.isup:
            continue
        for addr in addrs:
            if addr.family != socket.AF_INET:
                continue
            if ipaddress.ip_address(addr.address).is_loopback:
                continue
            ips.append(addr.address)
    return ips


class ReachabilityProbe:
    """Connectivity test of the master port on a candidate.

    A candidate passes when a control plane there answers its health
    endpoint, or when a TCP connection to the port completes. Before the
    control plane exists, a listener (run on the runtime host's network)
    holds the port open while the probe connects; a refused connection
    means nothing on the runtime host answered at that address.
    """

    def __init__(
        self,
        port: int = MASTER_PORT,
        timeout_seconds: float = 2.0,
        poller: HealthPoller | None = None,
        listener: Listener | None = None,
        attempts: int = 5,
        retry_interval: float = 0.5,
    ):
        """Initialize probe.

        Args:
            port: Port to test on each candidate.
            timeout_seconds: Timeout for each connection attempt.
            poller: Health poller for an already running control plane.
            listener: Opens a temporary listener on the port on the runtime host.
            attempts: Connection attempts per candidate; the listener may
                still be starting when the first one is made.
            retry_interval: Pause between connection attempts.
        """
        self.port = port
        self.timeout_seconds = timeout_seconds
        self.poller = poller or HealthPoller(max_attempts=1, timeout_seconds=timeout_seconds)
        self.listener = listener
        self.attempts = attempts
        self.retry_interval = retry_interval

    def __call__(self, ip: str) -> None:
        if self.poller.check_once(f"https://{ip}:{self.port}"):
            return
        if self.listener is None:
            self._connect(ip)
            return
        with self.listener(self.port):
            self._connect(ip)

    def _connect(self, ip: str) -> None:
        error: OSError | None = None
        for attempt in range(self.attempts):
            if attempt:
                time.sleep(self.retry_interval)
            try:
                with socket.create_connection((ip, self.port), timeout=self.timeout_seconds):
                    return
            except OSError as e:
                logger.debug("connect failed", ip=ip, port=self.port, attempt=attempt + 1, error=str(e))
                error = e
        raise ProbeError(f"{ip}:{self.port} is not reachable", cause=error) from error


class AddressResolver:
    """Resolve the server address for a run."""

    def __init__(
        self,
        runtime: RuntimeHostSource,
        cluster: ClusterIPSource,
        probe: Probe,
        machine: MachineIPSource | None = None,
        local_addresses: Callable[[], list[str]] = local_ips,
    ):
        """Initialize resolver.

        Args:
            runtime: Reports the daemon host address, if any.
            cluster: Reports the control plane's own and other host addresses.
            probe: Raises when a candidate address is not reachable.
            machine: Reports a provisioned machine's address.
            local_addresses: Enumerates this machine's interface addresses.
        """
        self.runtime = runtime
        self.cluster = cluster
        self.probe = probe
        self.machine = machine
        self.local_addresses = local_addresses

    def resolve(self, config: RunConfig, out: IO[str]) -> ResolvedAddress:
        """Resolve primary and alternate addresses.

        Raises:
            StartError: No candidate could be confirmed.
        """
        primary, port_forwarding = self._primary(config, out)
        out.write(f"Using {primary.ip} as the server IP\n")
        alternates, error = self._alternates(primary.ip, port_forwarding)
        if error is not None:
            warn(out, f"Cannot determine additional server IPs: {error.message}")
        logger.debug("additional server IPs", ips=alternates)
        return ResolvedAddress(
            primary=primary.ip,
            source=primary.source,
            alternates=alternates,
            port_forwarding=port_forwarding,
            alternates_error=error,
        )

    def _accept(self, candidate: AddressCandidate) -> bool:
        try:
            self.probe(candidate.ip)
        except StartError as e:
            logger.debug("address candidate rejected", source=candidate.source, ip=candidate.ip, reason=str(e))
            return False
        return True

    def _primary(self, config: RunConfig, out: IO[str]) -> tuple[AddressCandidate, bool]:
        port_forwarding = config.port_forwarding

        ip = concrete_ip(config.public_hostname)
        if ip:
            out.write(f"Using public hostname IP {ip} as the host IP\n")
            return AddressCandidate("public-hostname", ip, testable=False), port_forwarding

        if config.machine_name:
            if self.machine is None:
                raise StartError(f"no machine provisioner for {config.machine_name!r}")
            try:
                ip = self.machine.ip(config.machine_name)
            except StartError as e:
                raise StartError(
                    "could not determine IP address",
                    cause=e,
                    solution="Ensure that docker-machine is functional.",
                ) from e
            out.write(f"Using docker-machine IP {ip} as the host IP\n")
            return AddressCandidate("machine", ip, testable=False), False

        if port_forwarding:
            return AddressCandidate("port-forwarding", LOOPBACK, testable=False), True

        host_ip = self.runtime.host_ip()
        if host_ip:
            candidate = AddressCandidate("runtime-host", host_ip)
            if self._accept(candidate):
                return candidate, False

        candidate = AddressCandidate("loopback", LOOPBACK)
        if self._accept(candidate):
            return candidate, False

        server_ip = ""
        try:
            server_ip = self.cluster.server_ip()
        except StartError as e:
            logger.debug("cannot get server IP from control plane", error=str(e))
        if server_ip:
            candidate = AddressCandidate("cluster-reported", server_ip)
            if self._accept(candidate):
                return candidate, False

        try:
            others = self.cluster.other_ips(server_ip)
        except StartError as e:
            raise cannot_determine_server_address(e) from e
        for ip in others:
            candidate = AddressCandidate("host-interface", ip)
            if self._accept(candidate):
                return candidate, False

        raise cannot_determine_server_address()

    def _alternates(
        self,
        primary: str,
        port_forwarding: bool,
    ) -> tuple[tuple[str, ...], StartError | None]:
        found: set[str] = set()
        try:
            found.update(self.cluster.other_ips(primary))
        except StartError as e:
            return (), StartError("could not determine additional IPs", cause=e)
        if port_forwarding:
            try:
                found.update(self.local_addresses())
            except (OSError, psutil.Error) as e:
                return tuple(sorted(found - {primary})), StartError(
                    "could not determine additional local IPs", cause=e
                )
        found.discard(primary)
        return tuple(sorted(found)), None
