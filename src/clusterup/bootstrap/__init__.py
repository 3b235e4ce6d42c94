"""Bootstrap package for starting a single-node cluster.

This package provides the `clusterup up` command which:
1. Runs preflight checks that resolve the run configuration
2. Starts the control-plane container and waits for health
3. Installs the registry, router and optional add-ons
4. Creates the default user and project
5. Prints the server information
"""

from .address import AddressCandidate, AddressResolver, ReachabilityProbe, ResolvedAddress
from .cluster import ClusterClient
from .controlplane import CONTAINER_NAME, ControlPlaneHelper
from .health import HealthCheckResult, HealthPoller
from .install import ClusterInstaller
from .machine import DockerMachine
from .orchestrator import Orchestrator, PreflightStep, RunResult, RunState, TaskState
from .preflight import Preflight
from .proxy import ProxyReconciler
from .reentry import ReentryOracle
from .reporter import DeferredSink, ProgressReporter
from .runtime import ContainerInfo, DockerHelper, ProxySettings
from .tasks import Task, TaskRegistry
from .up import ClusterUp
from .versions import ClusterFeatures

__all__ = [
    # Address resolution
    "AddressCandidate",
    "AddressResolver",
    "ReachabilityProbe",
    "ResolvedAddress",
    # Re-entry
    "ReentryOracle",
    # Tasks and orchestration
    "Task",
    "TaskRegistry",
    "Orchestrator",
    "PreflightStep",
    "RunResult",
    "RunState",
    "TaskState",
    "DeferredSink",
    "ProgressReporter",
    "Preflight",
    "ClusterUp",
    # Proxy
    "ProxyReconciler",
    "ProxySettings",
    # Collaborators
    "ContainerInfo",
    "DockerHelper",
    "DockerMachine",
    "ClusterClient",
    "CONTAINER_NAME",
    "ControlPlaneHelper",
    "ClusterInstaller",
    "ClusterFeatures",
    # Health polling
    "HealthPoller",
    "HealthCheckResult",
]
