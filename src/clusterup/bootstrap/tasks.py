"""Task list for cluster up.

The registry builds, in a fixed declared order, the named tasks for one run.
Each optional task is paired with a condition that is evaluated by the
orchestrator immediately before the task would run, so conditions may
observe the effects of earlier tasks.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import IO, TYPE_CHECKING

if TYPE_CHECKING:
    from ..config import RunConfig
    from .install import ClusterInstaller
    from .reentry import ReentryOracle

TaskAction = Callable[[IO[str]], None]
Condition = Callable[[], bool]

INITIAL_PROJECT_NAME = "myproject"


@dataclass(frozen=True)
class Task:
    """A named step of the start process."""

    name: str
    action: TaskAction
    condition: Condition | None = None
    route_to_stdout: bool = False  # duplicate output live regardless of verbosity


def simple_task(name: str, action: TaskAction, route_to_stdout: bool = False) -> Task:
    return Task(name=name, action=action, route_to_stdout=route_to_stdout)


def conditional_task(
    name: str,
    action: TaskAction,
    condition: Condition,
    route_to_stdout: bool = False,
) -> Task:
    return Task(name=name, action=action, condition=condition, route_to_stdout=route_to_stdout)


class TaskRegistry:
    """Build the ordered task list for a run."""

    def build(
        self,
        config: RunConfig,
        oracle: ReentryOracle,
        installer: ClusterInstaller,
    ) -> tuple[Task, ...]:
        """Build the task list.

        Order is part of the contract: the web console is installed after the
        broker is registered so it can discover it, login precedes project
        creation, and server information is always last.

        Args:
            config: Resolved run configuration.
            oracle: Re-entry decisions for this run.
            installer: Implementation of the installation steps.

        Returns:
            Immutable, ordered tuple of tasks.
        """
        init_data = oracle.should_initialize_data
        create_user = oracle.should_create_user

        tasks: list[Task] = [
            simple_task("Starting control plane", installer.start_control_plane),
        ]
        if config.write_config:
            return tuple(tasks)

        tasks += [
            simple_task("Setting up persistent storage", installer.post_startup),
            conditional_task(
                "Adding default OAuthClient redirect URIs",
                installer.ensure_default_redirect_uris,
                init_data,
            ),
            conditional_task("Installing registry", installer.install_registry, init_data),
            conditional_task("Installing router", installer.install_router, init_data),
            conditional_task(
                "Installing metrics",
                installer.install_metrics,
                lambda: config.install_metrics and init_data(),
                route_to_stdout=True,
            ),
            conditional_task("Importing image streams", installer.import_image_streams, init_data),
            conditional_task("Importing templates", installer.import_templates, init_data),
            conditional_task(
                "Importing internal templates", installer.import_internal_templates, init_data
            ),
            conditional_task(
                "Importing logging templates",
                installer.import_logging_templates,
                lambda: config.install_logging and init_data(),
            ),
            conditional_task(
                "Installing logging",
                installer.install_logging,
                lambda: config.install_logging and init_data(),
                route_to_stdout=True,
            ),
            conditional_task(
                "Installing service catalog",
                installer.install_service_catalog,
                lambda: config.install_service_catalog and init_data(),
            ),
            conditional_task(
                "Installing template service broker",
                installer.install_template_service_broker,
                lambda: config.install_service_catalog and init_data(),
            ),
            # Registration is not persisted, so it runs even when reusing data
            conditional_task(
                "Registering template service broker with service catalog",
                installer.register_template_service_broker,
                lambda: config.install_service_catalog,
            ),
            conditional_task(
                "Installing web console",
                installer.install_web_console,
                lambda: init_data() and installer.cluster_is_current(),
            ),
            conditional_task(
                "Checking container networking",
                installer.check_container_networking,
                lambda: config.verbose > 0,
            ),
            conditional_task("Login to server", installer.login, create_user),
            conditional_task(
                f'Creating initial project "{INITIAL_PROJECT_NAME}"',
                installer.create_project,
                create_user,
            ),
            simple_task("Server Information", installer.server_info, route_to_stdout=True),
        ]
        return tuple(tasks)
