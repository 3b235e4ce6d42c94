"""Proxy reconciliation between cluster up and the container daemon.

Findings here are advisory: they are rendered into the final summary and
never fail a run.
"""

from __future__ import annotations

from collections.abc import Iterable

from .controlplane import REGISTRY_SERVICE_IP, SERVICE_CATALOG_SERVICE_IP, SERVICE_NETWORK
from .runtime import ProxySettings


class ProxyReconciler:
    """Compare requested proxy settings with the daemon's."""

    KINDS = (("HTTP", "http"), ("HTTPS", "https"))

    def check(self, desired: ProxySettings, actual: ProxySettings) -> list[str]:
        warnings: list[str] = []
        for label, attr in self.KINDS:
            wanted = getattr(desired, attr)
            present = getattr(actual, attr)
            if wanted and not present:
                warnings.append(
                    f"You specified an {label} proxy ({wanted}) for cluster up, "
                    "but one is not configured for the Docker daemon"
                )
            elif present and not wanted:
                warnings.append(
                    f"An {label} proxy ({present}) is configured for the Docker daemon, "
                    "but you did not specify one for cluster up"
                )
            elif wanted != present:
                warnings.append(
                    f"The {label} proxy configured for the Docker daemon ({present}) "
                    f"does not match the one specified for cluster up ({wanted})"
                )

        if actual.configured and REGISTRY_SERVICE_IP not in actual.no_proxy:
            warnings.append(
                f"A proxy is configured for the Docker daemon, but the registry IP "
                f"({REGISTRY_SERVICE_IP}) is not in its NO_PROXY list. "
                "Pushes to the internal registry may fail."
            )
        return warnings

    @staticmethod
    def render(warnings: Iterable[str]) -> str:
        """One advisory block, or '' when there is nothing to report."""
        lines = [f"WARNING: {w}" for w in warnings]
        if not lines:
            return ""
        return "\n".join(lines) + "\n"


def default_no_proxy(
    no_proxy: Iterable[str],
    server_ip: str,
    cluster_ip: str = "",
) -> tuple[str, ...]:
    """Append the addresses that must bypass a configured proxy.

    Existing entries keep their order; defaults are added only if missing.
    """
    entries = [e for e in no_proxy if e]
    defaults = [
        "127.0.0.1",
        server_ip,
        "localhost",
        REGISTRY_SERVICE_IP,
        SERVICE_CATALOG_SERVICE_IP,
        SERVICE_NETWORK,
        cluster_ip,
    ]
    for entry in defaults:
        if entry and entry not in entries:
            entries.append(entry)
    return tuple(entries)
