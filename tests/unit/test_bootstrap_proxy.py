"""Unit tests for bootstrap proxy module."""

from __future__ import annotations

from clusterup.bootstrap.proxy import ProxyReconciler, default_no_proxy
from clusterup.bootstrap.runtime import ProxySettings


class TestProxyReconciler:
    """Tests for ProxyReconciler.check."""

    def test_nothing_configured(self):
        """Test no warnings without any proxy."""
        assert ProxyReconciler().check(ProxySettings(), ProxySettings()) == []

    def test_desired_but_missing_on_daemon(self):
        """Test a requested proxy missing on the daemon warns."""
        warnings = ProxyReconciler().check(ProxySettings(http="http://p:8080"), ProxySettings())

        assert len(warnings) == 1
        assert "http://p:8080" in warnings[0]
        assert "not configured for the Docker daemon" in warnings[0]

    def test_daemon_proxy_not_requested(self):
        """Test a daemon proxy that was not requested warns."""
        actual = ProxySettings(https="http://corp:3128", no_proxy=("172.30.1.1",))

        warnings = ProxyReconciler().check(ProxySettings(), actual)

        assert len(warnings) == 1
        assert "HTTPS proxy (http://corp:3128)" in warnings[0]

    def test_mismatch(self):
        """Test differing proxy values warn."""
        desired = ProxySettings(http="http://a:1")
        actual = ProxySettings(http="http://b:2", no_proxy=("172.30.1.1",))

        warnings = ProxyReconciler().check(desired, actual)

        assert len(warnings) == 1
        assert "http://a:1" in warnings[0]
        assert "http://b:2" in warnings[0]

    def test_matching_settings(self):
        """Test matching settings produce no warnings."""
        settings = ProxySettings(http="http://p:8080", https="http://p:8443", no_proxy=("172.30.1.1",))
        assert ProxyReconciler().check(settings, settings) == []

    def test_registry_missing_from_daemon_no_proxy(self):
        """Test the registry address missing from daemon NO_PROXY warns."""
        settings = ProxySettings(http="http://p:8080", no_proxy=("localhost",))

        warnings = ProxyReconciler().check(settings, settings)

        assert len(warnings) == 1
        assert "172.30.1.1" in warnings[0]

    def test_render(self):
        """Test warnings render one per line."""
        text = ProxyReconciler.render(["first", "second"])
        assert text == "WARNING: first\nWARNING: second\n"

    def test_render_empty(self):
        """Test no warnings render to nothing."""
        assert ProxyReconciler.render([]) == ""


class TestDefaultNoProxy:
    """Tests for default_no_proxy."""

    def test_appends_defaults_in_order(self):
        """Test default entries are appended in order."""
        result = default_no_proxy((), "10.0.0.5", "10.0.0.6")

        assert result == (
            "127.0.0.1",
            "10.0.0.5",
            "localhost",
            "172.30.1.1",
            "172.30.1.2",
            "172.30.0.0/8",
            "10.0.0.6",
        )

    def test_keeps_existing_entries_first_without_duplicates(self):
        """Test existing entries come first without duplicates."""
        result = default_no_proxy(("example.com", "localhost"), "10.0.0.5")

        assert result[:2] == ("example.com", "localhost")
        assert result.count("localhost") == 1
        assert "" not in result
