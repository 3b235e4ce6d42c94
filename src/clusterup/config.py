"""Run configuration for cluster up.

RunConfig is an immutable snapshot of every resolved option for one run.
Preflight steps never mutate it; they return a new snapshot built with
dataclasses.replace().

Persisted CLI defaults live in ~/.clusterup/config.yaml and can be overridden
by environment variables. CLI flags take precedence over both.
"""

import os
import platform
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .shared.paths import CONFIG_FILE, LOCAL_CONFIG_DIR

# Default values
DEFAULT_IMAGE = "openshift/origin"
DEFAULT_IMAGE_VERSION = "v3.9.0"
DEFAULT_IMAGE_STREAMS = "centos7"
DEFAULT_MACHINE_NAME = "openshift"
DEFAULT_HOST_CONFIG_DIR = "/var/lib/origin/openshift.local.config"
DEFAULT_HOST_VOLUMES_DIR = "/var/lib/origin/openshift.local.volumes"
DEFAULT_HOST_PV_DIR = "/var/lib/origin/openshift.local.pv"
DEFAULT_PV_COUNT = 100
DEFAULT_DNS_PORT = 53
MASTER_PORT = 8443

# Keys that may be persisted in the config file
PERSISTED_KEYS = (
    "image",
    "version",
    "image_streams",
    "host_config_dir",
    "host_volumes_dir",
    "host_pv_dir",
    "routing_suffix",
)

# Environment variable mappings
ENV_VARS = {
    "image": "CLUSTERUP_IMAGE",
    "version": "CLUSTERUP_VERSION",
    "image_streams": "CLUSTERUP_IMAGE_STREAMS",
}


def default_port_forwarding() -> bool:
    """Port forwarding defaults to on for macOS without a DOCKER_HOST."""
    return platform.system() == "Darwin" and not os.environ.get("DOCKER_HOST")


@dataclass(frozen=True)
class RunConfig:
    """Resolved options for one cluster up run."""

    image: str = DEFAULT_IMAGE
    image_version: str = DEFAULT_IMAGE_VERSION
    image_streams: str = DEFAULT_IMAGE_STREAMS

    # Machine provisioning
    create_machine: bool = False
    machine_name: str = ""

    # Feature toggles
    install_metrics: bool = False
    install_logging: bool = False
    install_service_catalog: bool = False
    skip_registry_check: bool = False
    port_forwarding: bool = False
    use_existing_config: bool = False
    write_config: bool = False
    check_alternate_ports: bool = True

    # Addressing
    public_hostname: str = ""
    routing_suffix: str = ""

    # Directories
    local_config_dir: Path = LOCAL_CONFIG_DIR
    host_config_dir: str = DEFAULT_HOST_CONFIG_DIR
    host_volumes_dir: str = DEFAULT_HOST_VOLUMES_DIR
    host_data_dir: str = ""
    host_pv_dir: str = DEFAULT_HOST_PV_DIR
    pv_count: int = DEFAULT_PV_COUNT

    # Server process
    server_log_level: int = 0
    environment: tuple[str, ...] = ()

    # Proxy
    http_proxy: str = ""
    https_proxy: str = ""
    no_proxy: tuple[str, ...] = ()

    # Client verbosity (-v count)
    verbose: int = 0

    # Discovered during preflight
    dns_port: int = DEFAULT_DNS_PORT
    server_ip: str = ""
    additional_ips: tuple[str, ...] = ()
    use_nsenter_mount: bool = False
    is_rh_docker: bool = False

    @property
    def image_ref(self) -> str:
        """Full reference of the control-plane image."""
        return f"{self.image}:{self.image_version}"

    @property
    def image_format(self) -> str:
        """Per-component image template understood by the cluster."""
        return f"{self.image}-${{component}}:{self.image_version}"

    @property
    def effective_routing_suffix(self) -> str:
        if self.routing_suffix:
            return self.routing_suffix
        return f"{self.server_ip}.nip.io"

    @property
    def public_master(self) -> str:
        """Public hostname if given, otherwise the server IP."""
        return self.public_hostname or self.server_ip

    @property
    def master_url(self) -> str:
        return f"https://{self.public_master}:{MASTER_PORT}"

    @property
    def has_proxy(self) -> bool:
        return bool(self.http_proxy or self.https_proxy)


@dataclass
class CLIDefaults:
    """Persisted defaults for cluster up flags."""

    image: str = DEFAULT_IMAGE
    version: str = DEFAULT_IMAGE_VERSION
    image_streams: str = DEFAULT_IMAGE_STREAMS
    host_config_dir: str = DEFAULT_HOST_CONFIG_DIR
    host_volumes_dir: str = DEFAULT_HOST_VOLUMES_DIR
    host_pv_dir: str = DEFAULT_HOST_PV_DIR
    routing_suffix: str = ""

    # Track where each value came from
    _sources: dict[str, str] = field(default_factory=dict)

    def get_source(self, key: str) -> str:
        """Get the source of a default value."""
        return self._sources.get(key, "default")


def get_config_path() -> Path:
    """Get the CLI config file path.

    Returns:
        Path to ~/.clusterup/config.yaml
    """
    return CONFIG_FILE


def load_defaults(config_path: Path | None = None) -> CLIDefaults:
    """Load persisted CLI defaults.

    Precedence (highest to lowest):
    1. Environment variables
    2. Config file (~/.clusterup/config.yaml)
    3. Defaults

    Returns:
        CLIDefaults with values and sources
    """
    defaults = CLIDefaults()
    sources: dict[str, str] = {key: "default" for key in PERSISTED_KEYS}

    path = config_path or get_config_path()
    if path.exists():
        try:
            with open(path) as f:
                file_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError):
            file_config = {}  # Ignore config file errors, use defaults

        for key in PERSISTED_KEYS:
            if key in file_config:
                setattr(defaults, key, str(file_config[key]))
                sources[key] = "config file"

    for key, env_var in ENV_VARS.items():
        if os.environ.get(env_var):
            setattr(defaults, key, os.environ[env_var])
            sources[key] = "environment"

    defaults._sources = sources
    return defaults
