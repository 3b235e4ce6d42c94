"""Re-entry decisions for cluster up.

When asked to reuse an existing configuration, cluster up probes the live
cluster and the persisted server configuration to decide which setup steps
can be skipped. Each decision is computed once per run and then cached.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

ALLOW_ALL_PROVIDER = "AllowAllPasswordIdentityProvider"


class ReentryOracle:
    """Memoized answers to "initialize data?" and "create the default user?"."""

    def __init__(
        self,
        use_existing_config: bool,
        registry_probe: Callable[[], bool],
        config_loader: Callable[[], dict[str, Any]],
    ):
        """Initialize oracle.

        Args:
            use_existing_config: The caller asked to reuse prior state.
            registry_probe: Returns True when the registry service exists.
                Raises when the cluster cannot be contacted.
            config_loader: Returns the persisted master configuration.
        """
        self.use_existing_config = use_existing_config
        self._registry_probe = registry_probe
        self._config_loader = config_loader
        self._should_initialize_data: bool | None = None
        self._should_create_user: bool | None = None

    def should_initialize_data(self) -> bool:
        if self._should_initialize_data is None:
            self._should_initialize_data = self._initialize_data()
        return self._should_initialize_data

    def should_create_user(self) -> bool:
        if self._should_create_user is None:
            self._should_create_user = self._create_user()
        return self._should_create_user

    def _initialize_data(self) -> bool:
        if not self.use_existing_config:
            return True
        try:
            registry_present = self._registry_probe()
        except Exception as e:
            logger.debug("cannot contact existing cluster, initializing data", error=str(e))
            return True
        logger.debug("registry service probe", present=registry_present)
        return not registry_present

    def _create_user(self) -> bool:
        if not self.use_existing_config:
            return True
        try:
            master_config = self._config_loader()
        except Exception as e:
            logger.debug("cannot read master config, creating user", error=str(e))
            return True

        providers = identity_providers(master_config)
        if providers is None:
            logger.debug("master config has no readable identity providers, creating user")
            return True
        if len(providers) != 1:
            logger.debug("custom identity providers, not creating user", count=len(providers))
            return False
        entry = providers[0]
        provider = (entry.get("provider") or {}) if isinstance(entry, dict) else None
        if not isinstance(provider, dict):
            logger.debug("unreadable identity provider, creating user")
            return True
        kind = provider.get("kind")
        if kind != ALLOW_ALL_PROVIDER:
            logger.debug("non allow-all identity provider, not creating user", kind=kind)
            return False
        return self.should_initialize_data()


def identity_providers(master_config: Any) -> list[Any] | None:
    """oauthConfig.identityProviders of a parsed master config.

    None when the document does not have the expected shape.
    """
    if master_config is None:
        return []
    if not isinstance(master_config, dict):
        return None
    oauth = master_config.get("oauthConfig") or {}
    if not isinstance(oauth, dict):
        return None
    providers = oauth.get("identityProviders") or []
    if not isinstance(providers, list):
        return None
    return providers
