"""Error taxonomy for cluster up.

Fatal conditions are raised as StartError (or a subclass) and printed once by
the CLI. Degraded conditions are never raised; they are written as warnings
on the active task's output.
"""

from __future__ import annotations

from dataclasses import dataclass


# Insecure registry range the daemon must allow for pushes to the internal registry
INSECURE_REGISTRY_CIDR = "172.30.0.0/16"


@dataclass(eq=False)
class StartError(Exception):
    """Base error for a failed start.

    Carries the underlying cause, optional details (e.g. server logs) and an
    optional solution (usually a literal command to run).
    """

    message: str
    cause: BaseException | None = None
    details: str = ""
    solution: str = ""

    def with_cause(self, cause: BaseException) -> StartError:
        self.cause = cause
        return self

    def with_details(self, details: str) -> StartError:
        self.details = details
        return self

    def with_solution(self, solution: str) -> StartError:
        self.solution = solution
        return self

    def __str__(self) -> str:
        parts = [self.message]
        if self.details:
            parts.append(f"Details:\n{_indent(self.details)}")
        if self.cause is not None:
            parts.append(f"Caused By:\n{_indent(str(self.cause))}")
        if self.solution:
            parts.append(f"Solution:\n{_indent(self.solution)}")
        return "\n".join(parts)


@dataclass(eq=False)
class TaskError(StartError):
    """A task failed; names the task in front of the underlying error."""

    task: str = ""

    def __str__(self) -> str:
        rendered = super().__str__()
        if self.task:
            return f"{self.task} failed: {rendered}"
        return rendered


@dataclass(eq=False)
class CommandError(StartError):
    """An external command exited non-zero."""

    argv: tuple[str, ...] = ()
    returncode: int | None = None
    stderr: str = ""

    def __str__(self) -> str:
        text = self.message
        if self.returncode is not None:
            text += f" (exit code {self.returncode})"
        if self.stderr:
            text += f": {self.stderr.strip()}"
        return text


@dataclass(eq=False)
class NotFoundError(StartError):
    """A cluster object does not exist."""


@dataclass(eq=False)
class ProbeError(StartError):
    """A reachability probe failed."""


def _indent(text: str, prefix: str = "  ") -> str:
    return "\n".join(f"{prefix}{line}" if line else line for line in text.splitlines())


def wrap_task_error(task_name: str, err: BaseException) -> TaskError:
    """Wrap any exception raised by a task, keeping known remediation text."""
    if isinstance(err, TaskError):
        return err
    if isinstance(err, StartError):
        return TaskError(
            message=err.message,
            cause=err.cause,
            details=err.details,
            solution=err.solution,
            task=task_name,
        )
    return TaskError(message=str(err) or type(err).__name__, cause=err, task=task_name)


def no_runtime_client(cause: BaseException) -> StartError:
    return StartError(
        "cannot obtain a Docker client",
        cause=cause,
        solution=(
            "Ensure that Docker is installed and accessible in the current environment.\n"
            "Run 'docker ps' to verify that you can reach the Docker daemon."
        ),
    )


def no_machine_client(machine: str, cause: BaseException) -> StartError:
    return StartError(
        f"cannot obtain a client for Docker machine {machine!r}",
        cause=cause,
        solution="Ensure that the Docker machine exists and is running:\n$ docker-machine ls",
    )


def kubeconfig_not_writeable(path: str, cause: BaseException) -> StartError:
    return StartError(
        f"KUBECONFIG is set to a file that cannot be created or modified: {path}",
        cause=cause,
        solution=(
            "Ensure that the current user has write access to the file, or unset "
            "KUBECONFIG to use the default location."
        ),
    )


def no_insecure_registry_argument() -> StartError:
    return StartError(
        "Docker daemon is not configured with an insecure registry for the cluster",
        solution=(
            "Ensure that the Docker daemon is running with the following argument:\n"
            f"    --insecure-registry {INSECURE_REGISTRY_CIDR}"
        ),
    )


def invalid_insecure_registry_argument() -> StartError:
    return StartError(
        "Docker daemon has insecure registries configured, but none covers the cluster service network",
        solution=(
            "Add the following to the Docker daemon's insecure registries:\n"
            f"    --insecure-registry {INSECURE_REGISTRY_CIDR}"
        ),
    )


def already_running(down_command: str) -> StartError:
    return StartError(
        "the cluster is already running",
        solution=f"To start the cluster again, stop the current cluster:\n$ {down_command}",
    )


def ports_unavailable(ports: list[int]) -> StartError:
    listed = ", ".join(str(p) for p in sorted(ports))
    return StartError(
        "a port needed by the cluster is not available",
        details=f"Unavailable ports: {listed}",
        solution="Stop the processes bound to these ports and try again.",
    )


def cannot_determine_server_address(cause: BaseException | None = None) -> StartError:
    return StartError("cannot determine a server IP to use", cause=cause)
