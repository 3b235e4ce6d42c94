"""Version-gated behavior for cluster up.

Behavior that depends on the cluster version is declared as tables of
(minimum version, behavior) pairs and resolved once per run into a
ClusterFeatures value, instead of comparing versions at each call site.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from packaging.version import InvalidVersion, Version

T = TypeVar("T")

ZERO_VERSION = Version("0.0.0")

_NUMERIC_PREFIX = re.compile(r"(\d+)\.(\d+)(?:\.(\d+))?")


def parse_cluster_version(raw: str) -> Version:
    """Parse a cluster version string such as 'v3.9.0+a1b2c3d'.

    Raises:
        InvalidVersion: If no version can be extracted.
    """
    text = raw.strip().lstrip("v").split("+", 1)[0]
    try:
        return Version(text)
    except InvalidVersion:
        match = _NUMERIC_PREFIX.match(text)
        if not match:
            raise
        return Version(".".join(part or "0" for part in match.groups()))


@dataclass(frozen=True)
class VersionTable(Generic[T]):
    """Sorted (minimum version, behavior) pairs with a fallback."""

    entries: tuple[tuple[Version, T], ...]
    default: T

    @classmethod
    def of(cls, entries: Iterable[tuple[str, T]], default: T) -> VersionTable[T]:
        parsed = sorted(
            ((Version(v), behavior) for v, behavior in entries),
            key=lambda item: item[0],
            reverse=True,
        )
        return cls(tuple(parsed), default)

    def resolve(self, version: Version) -> T:
        """Behavior of the highest entry whose minimum is <= version."""
        for minimum, behavior in self.entries:
            if version >= minimum:
                return behavior
        return self.default


class AddonInstallPath(Enum):
    """How metrics and logging are installed."""

    ANSIBLE = "ansible"
    LEGACY = "legacy"


class BrokerImageStyle(Enum):
    """Image reference style for the template service broker."""

    PER_COMPONENT = "per_component"  # <image>-${component}:<version>
    SINGLE = "single"  # <image>:<version>


ADDON_INSTALL_PATHS = VersionTable.of([("3.6.0", AddonInstallPath.ANSIBLE)], AddonInstallPath.LEGACY)
ADMIN_TEMPLATES = VersionTable.of([("3.6.0", True)], False)
# The cluster matches this client; bump each release.
CLUSTER_CURRENT = VersionTable.of([("3.9.0", True)], False)
# Per-component broker images start after 3.7.0
BROKER_IMAGE_STYLES = VersionTable.of(
    [("3.7.1", BrokerImageStyle.PER_COMPONENT)], BrokerImageStyle.SINGLE
)

# Playbook path templates inside the ansible image; {component} is metrics or logging
ANSIBLE_PLAYBOOKS = VersionTable.of(
    [("3.9.0", "playbooks/openshift-{component}/config.yml")],
    "playbooks/byo/openshift-cluster/openshift-{component}.yml",
)


@dataclass(frozen=True)
class ClusterFeatures:
    """Version-gated behavior resolved for one cluster version."""

    version: Version
    addon_install_path: AddonInstallPath
    import_admin_templates: bool
    is_current: bool
    broker_image_style: BrokerImageStyle
    playbook_template: str

    @classmethod
    def for_version(cls, version: Version) -> ClusterFeatures:
        return cls(
            version=version,
            addon_install_path=ADDON_INSTALL_PATHS.resolve(version),
            import_admin_templates=ADMIN_TEMPLATES.resolve(version),
            is_current=CLUSTER_CURRENT.resolve(version),
            broker_image_style=BROKER_IMAGE_STYLES.resolve(version),
            playbook_template=ANSIBLE_PLAYBOOKS.resolve(version),
        )

    @property
    def use_ansible(self) -> bool:
        return self.addon_install_path == AddonInstallPath.ANSIBLE

    def playbook(self, component: str) -> str:
        return self.playbook_template.format(component=component)
