"""Cluster commands.

This module provides `clusterup up`, which starts a single-node cluster in
a container on the local (or a provisioned) Docker host, plus the `down`,
`status` and `logs` companions.
"""

from __future__ import annotations

import sys
from pathlib import Path

import click
import yaml
from rich.console import Console
from rich.markup import escape

from ..bootstrap import (
    CONTAINER_NAME,
    ClusterUp,
    ControlPlaneHelper,
    DockerHelper,
    DockerMachine,
)
from ..bootstrap.up import load_master_config
from ..config import (
    DEFAULT_MACHINE_NAME,
    PERSISTED_KEYS,
    CLIDefaults,
    RunConfig,
    default_port_forwarding,
    load_defaults,
)
from ..errors import StartError
from ..shared.logging import get_logger
from ..shared.paths import LOCAL_CONFIG_DIR, ensure_dirs

console = Console(stderr=True)
logger = get_logger(__name__)


def _defaults(ctx: click.Context) -> CLIDefaults:
    config_path = (ctx.obj or {}).get("config_path")
    defaults = load_defaults(Path(config_path) if config_path else None)
    for key in PERSISTED_KEYS:
        source = defaults.get_source(key)
        if source != "default":
            logger.debug("persisted default", key=key, value=getattr(defaults, key), source=source)
    return defaults


def _fail(err: StartError) -> None:
    console.print("[red]Error:[/red]", escape(str(err)))
    sys.exit(1)


def _docker(machine: str) -> DockerHelper:
    if machine:
        return DockerMachine().client(machine)
    return DockerHelper()


@click.command()
@click.option("--create-machine", is_flag=True, help="Create a Docker machine if one doesn't exist")
@click.option("--docker-machine", "machine_name", default="", help="Docker machine to use")
@click.option("--image", default=None, help="Control-plane image to use")
@click.option("--version", "image_version", default=None, help="Image tag to use")
@click.option("--image-streams", default=None, help="Image stream set to import (centos7 or rhel7)")
@click.option("--host-config-dir", default=None, help="Host directory for server configuration")
@click.option("--host-volumes-dir", default=None, help="Host directory for volumes")
@click.option("--host-data-dir", default="", help="Host directory for etcd data; empty keeps it in the container")
@click.option("--host-pv-dir", default=None, help="Host directory for persistent volumes")
@click.option("--use-existing-config", is_flag=True, help="Reuse the configuration and data of a previous run")
@click.option("--write-config", is_flag=True, help="Only write the server configuration")
@click.option("--public-hostname", default="", help="Public hostname or IP of the server")
@click.option("--routing-suffix", default=None, help="Default suffix for application routes")
@click.option("--metrics", "install_metrics", is_flag=True, help="Install metrics")
@click.option("--logging", "install_logging", is_flag=True, help="Install logging")
@click.option("--service-catalog", "install_service_catalog", is_flag=True, help="Install the service catalog")
@click.option("--skip-registry-check", is_flag=True, help="Skip the Docker daemon registry check")
@click.option(
    "--forward-ports/--no-forward-ports",
    "port_forwarding",
    default=None,
    help="Forward the master port from the container host to localhost",
)
@click.option("--server-loglevel", default=0, type=int, help="Server log level")
@click.option("-e", "--env", "environment", multiple=True, help="KEY=VALUE for the server process")
@click.option("--http-proxy", default="", help="HTTP proxy for the cluster")
@click.option("--https-proxy", default="", help="HTTPS proxy for the cluster")
@click.option("--no-proxy", multiple=True, help="Host or CIDR that bypasses the proxy")
@click.pass_context
def up(
    ctx: click.Context,
    create_machine: bool,
    machine_name: str,
    image: str | None,
    image_version: str | None,
    image_streams: str | None,
    host_config_dir: str | None,
    host_volumes_dir: str | None,
    host_data_dir: str,
    host_pv_dir: str | None,
    use_existing_config: bool,
    write_config: bool,
    public_hostname: str,
    routing_suffix: str | None,
    install_metrics: bool,
    install_logging: bool,
    install_service_catalog: bool,
    skip_registry_check: bool,
    port_forwarding: bool | None,
    server_loglevel: int,
    environment: tuple[str, ...],
    http_proxy: str,
    https_proxy: str,
    no_proxy: tuple[str, ...],
) -> None:
    """Start a single-node cluster."""
    defaults = _defaults(ctx)
    if create_machine and not machine_name:
        machine_name = DEFAULT_MACHINE_NAME
    if port_forwarding is None:
        port_forwarding = default_port_forwarding() and not machine_name

    config = RunConfig(
        image=image or defaults.image,
        image_version=image_version or defaults.version,
        image_streams=image_streams or defaults.image_streams,
        create_machine=create_machine,
        machine_name=machine_name,
        install_metrics=install_metrics,
        install_logging=install_logging,
        install_service_catalog=install_service_catalog,
        skip_registry_check=skip_registry_check,
        port_forwarding=port_forwarding,
        use_existing_config=use_existing_config,
        write_config=write_config,
        public_hostname=public_hostname,
        routing_suffix=routing_suffix if routing_suffix is not None else defaults.routing_suffix,
        host_config_dir=host_config_dir or defaults.host_config_dir,
        host_volumes_dir=host_volumes_dir or defaults.host_volumes_dir,
        host_data_dir=host_data_dir,
        host_pv_dir=host_pv_dir or defaults.host_pv_dir,
        server_log_level=server_loglevel,
        environment=environment,
        http_proxy=http_proxy,
        https_proxy=https_proxy,
        no_proxy=no_proxy,
        verbose=(ctx.obj or {}).get("verbose", 0),
    )

    logger.debug("starting cluster up", image=config.image_ref, machine=config.machine_name or None)
    try:
        ensure_dirs()
        ClusterUp(config, sys.stdout).run()
    except StartError as e:
        _fail(e)


@click.command()
@click.option("--docker-machine", "machine_name", default="", help="Docker machine to use")
def down(machine_name: str) -> None:
    """Stop and remove the control-plane container."""
    try:
        docker = _docker(machine_name)
        container, _ = docker.get_container_state(CONTAINER_NAME)
        if container is None:
            click.echo("Cluster is not running.")
            return
        ControlPlaneHelper(docker, image="").stop()
    except StartError as e:
        _fail(e)
    click.echo("Cluster stopped.")


@click.command()
@click.option("--docker-machine", "machine_name", default="", help="Docker machine to use")
def status(machine_name: str) -> None:
    """Show whether the cluster is running and where to reach it."""
    try:
        container, running = _docker(machine_name).get_container_state(CONTAINER_NAME)
    except StartError as e:
        _fail(e)
        return

    if container is None:
        click.echo("Cluster is not running. Run: clusterup up")
        return
    if not running:
        click.echo(f"Cluster container exists but is {container.status or 'stopped'}.")
        sys.exit(1)

    click.echo("Cluster is running.")
    try:
        master = load_master_config(LOCAL_CONFIG_DIR)
    except (OSError, yaml.YAMLError) as e:
        console.print(f"[dim]Cannot read local server configuration: {escape(str(e))}[/dim]")
        return
    public_url = master.get("masterPublicURL")
    if public_url:
        click.echo(f"Web console URL: {public_url}/console/")


@click.command()
@click.option("--follow", "-f", is_flag=True, help="Follow log output")
@click.option("--tail", default=100, type=int, help="Number of lines")
@click.option("--docker-machine", "machine_name", default="", help="Docker machine to use")
def logs(follow: bool, tail: int, machine_name: str) -> None:
    """Show control-plane container logs."""
    try:
        docker = _docker(machine_name)
        if follow:
            docker.follow_logs(CONTAINER_NAME, tail=tail).wait()
        else:
            click.echo(docker.logs(CONTAINER_NAME, tail=tail), nl=False)
    except StartError as e:
        _fail(e)
