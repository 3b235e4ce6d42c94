"""Shared modules for clusterup.

Filesystem layout and logging setup used by every command.
"""

from .logging import configure_logging, get_logger, level_for_verbosity
from .paths import (
    CLUSTERUP_DIR,
    CONFIG_FILE,
    LOCAL_CONFIG_DIR,
    admin_kubeconfig,
    ensure_dirs,
    master_config,
)

__all__ = [
    # Paths
    "CLUSTERUP_DIR",
    "CONFIG_FILE",
    "LOCAL_CONFIG_DIR",
    "admin_kubeconfig",
    "ensure_dirs",
    "master_config",
    # Logging
    "configure_logging",
    "get_logger",
    "level_for_verbosity",
]
