"""Path management for clusterup.

Manages the ~/.clusterup/ directory structure on the client machine.
"""

from pathlib import Path

# Base directory for all clusterup data
CLUSTERUP_DIR = Path.home() / ".clusterup"

# Persisted CLI defaults
CONFIG_FILE = CLUSTERUP_DIR / "config.yaml"

# Local copy of the server configuration (admin kubeconfig, master config)
LOCAL_CONFIG_DIR = CLUSTERUP_DIR / "openshift.local.config"


def ensure_dirs() -> None:
    """Create directory structure if missing.

    Creates:
    - ~/.clusterup/ (mode 0o700 - user-only access)
    - ~/.clusterup/openshift.local.config/ (mode 0o700)
    """
    CLUSTERUP_DIR.mkdir(mode=0o700, exist_ok=True)
    LOCAL_CONFIG_DIR.mkdir(mode=0o700, exist_ok=True)


def admin_kubeconfig(local_config_dir: Path) -> Path:
    """Path of the cluster admin kubeconfig inside a local config dir."""
    return local_config_dir / "master" / "admin.kubeconfig"


def master_config(local_config_dir: Path) -> Path:
    """Path of the persisted server configuration inside a local config dir."""
    return local_config_dir / "master" / "master-config.yaml"
