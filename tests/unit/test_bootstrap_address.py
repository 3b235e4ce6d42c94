"""Unit tests for bootstrap address module."""

from __future__ import annotations

import io
import socket
from collections import namedtuple
from contextlib import contextmanager
from unittest.mock import MagicMock, patch

import psutil
import pytest

from clusterup.bootstrap.address import (
    LOOPBACK,
    AddressResolver,
    ReachabilityProbe,
    concrete_ip,
    local_ips,
)
from clusterup.config import RunConfig
from clusterup.errors import ProbeError, StartError

Snicaddr = namedtuple("Snicaddr", ["family", "address", "netmask", "broadcast", "ptp"])
Snicstats = namedtuple("Snicstats", ["isup", "duplex", "speed", "mtu", "flags"])


def reachable_only(*ips):
    """Probe that accepts only the given addresses and records every call."""
    probed = []

    def probe(ip):
        probed.append(ip)
        if ip not in ips:
            raise ProbeError(f"{ip} is not reachable")

    probe.probed = probed
    return probe


def make_resolver(host="", server="10.0.0.5", others=("192.168.1.10",), probe=None, machine=None, local=()):
    runtime = MagicMock()
    runtime.host_ip.return_value = host
    cluster = MagicMock()
    cluster.server_ip.return_value = server
    cluster.other_ips.side_effect = lambda exclude: [ip for ip in others if ip != exclude]
    return AddressResolver(
        runtime=runtime,
        cluster=cluster,
        probe=probe or MagicMock(),
        machine=machine,
        local_addresses=lambda: list(local),
    )


class TestConcreteIP:
    """Tests for concrete_ip."""

    def test_literal_ipv4(self):
        """Test a literal IPv4 address is returned as is."""
        assert concrete_ip("10.1.2.3") == "10.1.2.3"

    def test_whitespace_is_stripped(self):
        """Test surrounding whitespace is ignored."""
        assert concrete_ip(" 10.1.2.3 ") == "10.1.2.3"

    def test_hostname_is_not_concrete(self):
        """Test DNS names are not concrete addresses."""
        assert concrete_ip("cluster.example.com") is None

    def test_wildcard_is_not_concrete(self):
        """Test 0.0.0.0 is not a concrete address."""
        assert concrete_ip("0.0.0.0") is None

    def test_empty(self):
        """Test an empty hostname has no address."""
        assert concrete_ip("") is None


class TestLocalIPs:
    """Tests for local interface enumeration."""

    def test_skips_loopback_down_and_ipv6(self, monkeypatch):
        """Test only IPv4 addresses of up, non-loopback interfaces are listed."""
        def fake_if_addrs():
            return {
                "lo": [Snicaddr(socket.AF_INET, "127.0.0.1", "255.0.0.0", None, None)],
                "eth0": [
                    Snicaddr(socket.AF_INET, "192.168.1.10", "255.255.255.0", None, None),
                    Snicaddr(socket.AF_INET6, "fe80::1", "ffff:ffff:ffff:ffff::", None, None),
                ],
                "eth1": [Snicaddr(socket.AF_INET, "10.10.0.4", "255.255.0.0", None, None)],
            }

        def fake_if_stats():
            return {
                "lo": Snicstats(True, 0, 0, 65536, ""),
                "eth0": Snicstats(True, 2, 1000, 1500, ""),
                "eth1": Snicstats(False, 2, 1000, 1500, ""),
            }

        monkeypatch.setattr(psutil, "net_if_addrs", fake_if_addrs)
        monkeypatch.setattr(psutil, "net_if_stats", fake_if_stats)

        assert local_ips() == ["192.168.1.10"]


class TestReachabilityProbe:
    """Tests for ReachabilityProbe."""

    def test_healthy_endpoint_needs_no_socket(self):
        """Test a healthy control plane confirms the address without a raw connect."""
        poller = MagicMock()
        poller.check_once.return_value = True
        probe = ReachabilityProbe(poller=poller)

        with patch("clusterup.bootstrap.address.socket.create_connection") as connect:
            probe("10.0.0.5")

        poller.check_once.assert_called_once_with("https://10.0.0.5:8443")
        connect.assert_not_called()

    def test_refused_connection_is_rejected(self):
        """Nothing answering on the port rejects the candidate."""
        poller = MagicMock()
        poller.check_once.return_value = False
        probe = ReachabilityProbe(poller=poller, attempts=2, retry_interval=0)

        with patch(
            "clusterup.bootstrap.address.socket.create_connection",
            side_effect=ConnectionRefusedError(),
        ) as connect:
            with pytest.raises(ProbeError, match="127.0.0.1:8443 is not reachable") as exc_info:
                probe("127.0.0.1")

        assert connect.call_count == 2
        assert isinstance(exc_info.value.cause, ConnectionRefusedError)

    def test_listener_is_open_while_connecting(self):
        """The runtime host listener is up for the connect and closed after it."""
        poller = MagicMock()
        poller.check_once.return_value = False
        events = []

        @contextmanager
        def listener(port):
            events.append(("open", port))
            yield "abc123"
            events.append(("close", port))

        def connect(address, timeout):
            events.append(("connect", address))
            return MagicMock()

        probe = ReachabilityProbe(poller=poller, listener=listener)

        with patch("clusterup.bootstrap.address.socket.create_connection", side_effect=connect):
            probe("10.0.0.5")

        assert events == [("open", 8443), ("connect", ("10.0.0.5", 8443)), ("close", 8443)]

    def test_listener_is_closed_when_candidate_is_rejected(self):
        """Test the listener is removed even when the connect fails."""
        poller = MagicMock()
        poller.check_once.return_value = False
        closed = []

        @contextmanager
        def listener(port):
            try:
                yield "abc123"
            finally:
                closed.append(port)

        probe = ReachabilityProbe(poller=poller, listener=listener, attempts=1)

        with patch(
            "clusterup.bootstrap.address.socket.create_connection",
            side_effect=socket.timeout("timed out"),
        ):
            with pytest.raises(ProbeError):
                probe("10.0.0.5")

        assert closed == [8443]

    def test_retries_while_listener_starts(self):
        """A refused first attempt is retried before the candidate is rejected."""
        poller = MagicMock()
        poller.check_once.return_value = False
        probe = ReachabilityProbe(poller=poller, attempts=3, retry_interval=0.25)

        with (
            patch(
                "clusterup.bootstrap.address.socket.create_connection",
                side_effect=[ConnectionRefusedError(), MagicMock()],
            ) as connect,
            patch("clusterup.bootstrap.address.time.sleep") as sleep,
        ):
            probe("10.0.0.5")

        assert connect.call_count == 2
        sleep.assert_called_once_with(0.25)

    def test_timeout_is_rejected(self):
        """A candidate that never answers is rejected."""
        poller = MagicMock()
        poller.check_once.return_value = False
        probe = ReachabilityProbe(poller=poller, attempts=1)

        with patch(
            "clusterup.bootstrap.address.socket.create_connection",
            side_effect=socket.timeout("timed out"),
        ):
            with pytest.raises(ProbeError, match="10.0.0.5:8443"):
                probe("10.0.0.5")


class TestAddressResolver:
    """Tests for AddressResolver."""

    def test_concrete_public_hostname_is_never_probed(self):
        """An explicit IP wins without any reachability probe."""
        probe = MagicMock()
        resolver = make_resolver(host="10.9.9.9", probe=probe)
        out = io.StringIO()

        resolved = resolver.resolve(RunConfig(public_hostname="172.16.0.7"), out)

        assert resolved.primary == "172.16.0.7"
        assert resolved.source == "public-hostname"
        probe.assert_not_called()
        assert "Using 172.16.0.7 as the server IP" in out.getvalue()

    def test_public_hostname_that_is_a_name_falls_through(self):
        """Test a public hostname that is a DNS name does not pick the address."""
        probe = reachable_only("10.9.9.9")
        resolver = make_resolver(host="10.9.9.9", probe=probe)

        resolved = resolver.resolve(RunConfig(public_hostname="cluster.example.com"), io.StringIO())

        assert resolved.primary == "10.9.9.9"
        assert resolved.source == "runtime-host"

    def test_port_forwarding_returns_loopback(self):
        """With forwarding on, loopback wins regardless of other signals."""
        probe = MagicMock()
        resolver = make_resolver(host="10.9.9.9", probe=probe, local=("192.168.1.50",))

        resolved = resolver.resolve(RunConfig(port_forwarding=True), io.StringIO())

        assert resolved.primary == LOOPBACK
        assert resolved.port_forwarding is True
        probe.assert_not_called()
        assert resolved.alternates == ("192.168.1.10", "192.168.1.50")

    def test_machine_ip_disables_port_forwarding(self):
        """Test a docker-machine address turns port forwarding off."""
        machine = MagicMock()
        machine.ip.return_value = "192.168.99.100"
        probe = MagicMock()
        resolver = make_resolver(probe=probe, machine=machine)

        resolved = resolver.resolve(
            RunConfig(machine_name="openshift", port_forwarding=True), io.StringIO()
        )

        assert resolved.primary == "192.168.99.100"
        assert resolved.port_forwarding is False
        machine.ip.assert_called_once_with("openshift")
        probe.assert_not_called()

    def test_machine_ip_failure_suggests_checking_docker_machine(self):
        """Test a docker-machine lookup failure suggests checking docker-machine."""
        machine = MagicMock()
        machine.ip.side_effect = StartError("docker-machine ip failed")
        resolver = make_resolver(machine=machine)

        with pytest.raises(StartError) as exc_info:
            resolver.resolve(RunConfig(machine_name="openshift"), io.StringIO())

        assert exc_info.value.solution == "Ensure that docker-machine is functional."

    def test_reachable_runtime_host(self):
        """Test the runtime daemon host wins when it answers."""
        probe = reachable_only("10.9.9.9", LOOPBACK)
        resolver = make_resolver(host="10.9.9.9", probe=probe)

        resolved = resolver.resolve(RunConfig(), io.StringIO())

        assert resolved.primary == "10.9.9.9"
        assert probe.probed == ["10.9.9.9"]

    def test_unreachable_runtime_host_falls_back_to_loopback(self):
        """Test loopback is tried after an unreachable daemon host."""
        probe = reachable_only(LOOPBACK)
        resolver = make_resolver(host="10.9.9.9", probe=probe)

        resolved = resolver.resolve(RunConfig(), io.StringIO())

        assert resolved.primary == LOOPBACK
        assert probe.probed == ["10.9.9.9", LOOPBACK]

    def test_cluster_reported_address(self):
        """Test the control plane's own address is used when loopback fails."""
        probe = reachable_only("10.0.0.5")
        resolver = make_resolver(server="10.0.0.5", probe=probe)

        resolved = resolver.resolve(RunConfig(), io.StringIO())

        assert resolved.primary == "10.0.0.5"
        assert resolved.source == "cluster-reported"

    def test_returns_the_host_address_that_was_confirmed(self):
        """The enumerated candidate that passed the probe is the one returned."""
        probe = reachable_only("192.168.1.20")
        resolver = make_resolver(
            server="10.0.0.5", others=("192.168.1.10", "192.168.1.20"), probe=probe
        )

        resolved = resolver.resolve(RunConfig(), io.StringIO())

        assert resolved.primary == "192.168.1.20"
        assert resolved.source == "host-interface"
        assert probe.probed == [LOOPBACK, "10.0.0.5", "192.168.1.10", "192.168.1.20"]

    def test_nothing_reachable(self):
        """Test resolution fails when no candidate answers."""
        resolver = make_resolver(probe=reachable_only())

        with pytest.raises(StartError, match="cannot determine a server IP"):
            resolver.resolve(RunConfig(), io.StringIO())

    def test_other_ips_failure_is_fatal_during_primary_resolution(self):
        """Test a failed host address lookup is fatal when no candidate answered."""
        resolver = make_resolver(probe=reachable_only())
        resolver.cluster.other_ips.side_effect = StartError("hostname -I failed")

        with pytest.raises(StartError) as exc_info:
            resolver.resolve(RunConfig(), io.StringIO())

        assert "cannot determine a server IP" in exc_info.value.message
        assert exc_info.value.cause is not None

    def test_alternates_exclude_primary_and_are_sorted(self):
        """Test alternates leave out the primary and are sorted."""
        resolver = make_resolver(others=("192.168.1.30", "10.0.0.5", "192.168.1.10"))

        resolved = resolver.resolve(RunConfig(public_hostname="10.0.0.5"), io.StringIO())

        assert resolved.alternates == ("192.168.1.10", "192.168.1.30")
        assert resolved.alternates_error is None

    def test_alternates_failure_only_warns(self):
        """Test a failed alternates lookup keeps the primary address."""
        resolver = make_resolver()
        resolver.cluster.other_ips.side_effect = StartError("hostname -I failed")
        out = io.StringIO()

        resolved = resolver.resolve(RunConfig(public_hostname="10.0.0.5"), out)

        assert resolved.primary == "10.0.0.5"
        assert resolved.alternates == ()
        assert resolved.alternates_error is not None
        assert "WARNING: Cannot determine additional server IPs" in out.getvalue()

    def test_refused_loopback_falls_through_to_cluster_address(self):
        """With nothing listening locally, the cluster-reported address is probed and used."""
        poller = MagicMock()
        poller.check_once.return_value = False
        probe = ReachabilityProbe(poller=poller, attempts=1)
        resolver = make_resolver(server="10.0.0.5", probe=probe)
        dialed = []

        def connect(address, timeout):
            dialed.append(address[0])
            if address[0] == LOOPBACK:
                raise ConnectionRefusedError()
            return MagicMock()

        with patch("clusterup.bootstrap.address.socket.create_connection", side_effect=connect):
            resolved = resolver.resolve(RunConfig(), io.StringIO())

        assert resolved.primary == "10.0.0.5"
        assert resolved.source == "cluster-reported"
        assert dialed == [LOOPBACK, "10.0.0.5"]
        resolver.cluster.server_ip.assert_called_once()

    def test_local_address_lookup_denied_only_warns(self):
        """psutil errors while listing local addresses degrade to a warning."""
        resolver = make_resolver()

        def denied():
            raise psutil.AccessDenied()

        resolver.local_addresses = denied
        out = io.StringIO()

        resolved = resolver.resolve(RunConfig(port_forwarding=True), out)

        assert resolved.primary == LOOPBACK
        assert resolved.alternates == ("192.168.1.10",)
        assert resolved.alternates_error is not None
        assert isinstance(resolved.alternates_error.cause, psutil.AccessDenied)
        assert "WARNING: Cannot determine additional server IPs" in out.getvalue()
