"""Unit tests for the clusterup commands."""

from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from clusterup.bootstrap.runtime import ContainerInfo
from clusterup.errors import StartError, already_running
from clusterup.main import cli


@pytest.fixture
def runner():
    """Create CLI runner."""
    return CliRunner()


@pytest.fixture
def defaults_file(tmp_path, monkeypatch):
    """Empty defaults file so the user's own defaults never leak in."""
    for var in ("CLUSTERUP_IMAGE", "CLUSTERUP_VERSION", "CLUSTERUP_IMAGE_STREAMS"):
        monkeypatch.delenv(var, raising=False)
    path = tmp_path / "config.yaml"
    path.write_text("")
    return str(path)


@pytest.fixture(autouse=True)
def no_home_dirs():
    with patch("clusterup.commands.cluster.ensure_dirs") as mock_ensure:
        yield mock_ensure


@pytest.fixture
def docker():
    """Runtime client returned for any --docker-machine value."""
    client = MagicMock()
    with patch("clusterup.commands.cluster._docker", return_value=client):
        yield client


class TestUp:
    """Tests for clusterup up."""

    def test_builds_run_config(self, runner, defaults_file, no_home_dirs):
        """Test flags are mapped to the run configuration."""
        with patch("clusterup.commands.cluster.ClusterUp") as mock_up:
            result = runner.invoke(
                cli,
                [
                    "-c",
                    defaults_file,
                    "-v",
                    "up",
                    "--version",
                    "v3.7.1",
                    "--metrics",
                    "--no-forward-ports",
                    "--no-proxy",
                    "example.com",
                    "-e",
                    "FOO=bar",
                ],
            )

        assert result.exit_code == 0, result.output
        config = mock_up.call_args.args[0]
        assert config.image_ref == "openshift/origin:v3.7.1"
        assert config.install_metrics is True
        assert config.port_forwarding is False
        assert config.no_proxy == ("example.com",)
        assert config.environment == ("FOO=bar",)
        assert config.verbose == 1
        mock_up.return_value.run.assert_called_once()
        no_home_dirs.assert_called_once()

    def test_logs_where_persisted_defaults_came_from(self, runner, tmp_path, monkeypatch):
        """Defaults read from the config file are reported at debug level."""
        for var in ("CLUSTERUP_IMAGE", "CLUSTERUP_VERSION", "CLUSTERUP_IMAGE_STREAMS"):
            monkeypatch.delenv(var, raising=False)
        path = tmp_path / "config.yaml"
        path.write_text("version: v3.7.1\n")

        with (
            patch("clusterup.commands.cluster.ClusterUp") as mock_up,
            patch("clusterup.commands.cluster.logger") as mock_logger,
        ):
            result = runner.invoke(cli, ["-c", str(path), "up"])

        assert result.exit_code == 0, result.output
        assert mock_up.call_args.args[0].image_version == "v3.7.1"
        mock_logger.debug.assert_any_call("persisted default", key="version", value="v3.7.1", source="config file")
        logged_keys = [
            c.kwargs["key"] for c in mock_logger.debug.call_args_list if c.args == ("persisted default",)
        ]
        assert logged_keys == ["version"]

    def test_create_machine_uses_default_name(self, runner, defaults_file):
        """Test --create-machine uses the default machine name."""
        with patch("clusterup.commands.cluster.ClusterUp") as mock_up:
            result = runner.invoke(cli, ["-c", defaults_file, "up", "--create-machine"])

        assert result.exit_code == 0, result.output
        config = mock_up.call_args.args[0]
        assert config.machine_name == "openshift"
        assert config.port_forwarding is False

    def test_defaults_file_values(self, runner, tmp_path, monkeypatch):
        """Test persisted defaults fill unset flags."""
        monkeypatch.delenv("CLUSTERUP_IMAGE", raising=False)
        path = tmp_path / "config.yaml"
        path.write_text("image: registry.example.com/origin\n")

        with patch("clusterup.commands.cluster.ClusterUp") as mock_up:
            result = runner.invoke(cli, ["-c", str(path), "up", "--no-forward-ports"])

        assert result.exit_code == 0, result.output
        assert mock_up.call_args.args[0].image == "registry.example.com/origin"

    def test_failure_exits_nonzero(self, runner, defaults_file):
        """Test a failed start exits non-zero."""
        with patch("clusterup.commands.cluster.ClusterUp") as mock_up:
            mock_up.return_value.run.side_effect = already_running("clusterup down")
            result = runner.invoke(cli, ["-c", defaults_file, "up", "--no-forward-ports"])

        assert result.exit_code == 1
        assert "already running" in result.output


class TestDown:
    """Tests for clusterup down."""

    def test_not_running(self, runner, docker):
        """Test down with no cluster running."""
        docker.get_container_state.return_value = (None, False)

        result = runner.invoke(cli, ["down"])

        assert result.exit_code == 0
        assert "Cluster is not running." in result.output

    def test_stops_container(self, runner, docker):
        """Test down stops the container."""
        docker.get_container_state.return_value = (ContainerInfo(name="origin", running=True), True)

        with patch("clusterup.commands.cluster.ControlPlaneHelper") as mock_helper:
            result = runner.invoke(cli, ["down"])

        assert result.exit_code == 0
        mock_helper.return_value.stop.assert_called_once()
        assert "Cluster stopped." in result.output

    def test_docker_error(self, runner, docker):
        """Test a Docker error fails down."""
        docker.get_container_state.side_effect = StartError("Docker not found")

        result = runner.invoke(cli, ["down"])

        assert result.exit_code == 1
        assert "Docker not found" in result.output


class TestStatus:
    """Tests for clusterup status."""

    def test_not_running(self, runner, docker):
        """Test status with no container."""
        docker.get_container_state.return_value = (None, False)

        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "clusterup up" in result.output

    def test_stopped_container(self, runner, docker):
        """Test status of a stopped container."""
        docker.get_container_state.return_value = (ContainerInfo(name="origin", status="exited"), False)

        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 1
        assert "exists but is exited" in result.output

    def test_running_shows_console_url(self, runner, docker, tmp_path):
        """Test status of a running cluster shows the console URL."""
        docker.get_container_state.return_value = (ContainerInfo(name="origin", running=True), True)
        (tmp_path / "master").mkdir()
        (tmp_path / "master" / "master-config.yaml").write_text(
            "masterPublicURL: https://10.0.0.5:8443\n"
        )

        with patch("clusterup.commands.cluster.LOCAL_CONFIG_DIR", tmp_path):
            result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "Cluster is running." in result.output
        assert "Web console URL: https://10.0.0.5:8443/console/" in result.output


class TestLogs:
    """Tests for clusterup logs."""

    def test_tail(self, runner, docker):
        """Test logs prints the last lines."""
        docker.logs.return_value = "Server started\n"

        result = runner.invoke(cli, ["logs", "--tail", "10"])

        assert result.exit_code == 0
        assert result.output == "Server started\n"
        docker.logs.assert_called_once_with("origin", tail=10)

    def test_follow(self, runner, docker):
        """Test logs --follow streams."""
        result = runner.invoke(cli, ["logs", "-f"])

        assert result.exit_code == 0
        docker.follow_logs.assert_called_once_with("origin", tail=100)
        docker.follow_logs.return_value.wait.assert_called_once()
