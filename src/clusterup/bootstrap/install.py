"""Installation steps run by cluster up after preflight.

ClusterInstaller implements every action of the task list. It is only
constructed once the run configuration has been fully resolved.
"""

from __future__ import annotations

import json
import subprocess
from concurrent.futures import Future, ThreadPoolExecutor
from typing import IO

import structlog
from packaging.version import InvalidVersion

from ..config import RunConfig
from ..errors import NotFoundError, StartError
from . import manifests
from .addons import AddonInstaller
from .cluster import ClusterClient
from .controlplane import (
    DEFAULT_NAMESPACE,
    INFRA_NAMESPACE,
    OPENSHIFT_NAMESPACE,
    REGISTRY_SERVICE,
    REGISTRY_SERVICE_IP,
    ControlPlaneHelper,
    master_url,
)
from .proxy import ProxyReconciler
from .reentry import ReentryOracle
from .runtime import DockerHelper, ProxySettings
from .tasks import INITIAL_PROJECT_NAME
from .versions import ZERO_VERSION, ClusterFeatures, parse_cluster_version

logger = structlog.get_logger(__name__)

INITIAL_USER = "developer"
INITIAL_PASSWORD = "developer"
INITIAL_PROJECT_DISPLAY = "My Project"
INITIAL_PROJECT_DESCRIPTION = "Initial developer project"

DEFAULT_REDIRECT_CLIENT = "openshift-web-console"
DEVELOPMENT_REDIRECT_URI = "https://localhost:9000"

ROUTER_SERVICE = "router"
ADMIN_NAMESPACE = "kube-system"


def suggested_redirect_patch() -> str:
    patch = json.dumps({"redirectURIs": [DEVELOPMENT_REDIRECT_URI]})
    return f"oc patch oauthclient/{DEFAULT_REDIRECT_CLIENT} -p '{patch}'"


class ClusterInstaller:
    """Actions for each task of a cluster up run."""

    def __init__(
        self,
        config: RunConfig,
        docker: DockerHelper,
        controlplane: ControlPlaneHelper,
        cluster: ClusterClient,
        oracle: ReentryOracle,
    ):
        self.config = config
        self.docker = docker
        self.controlplane = controlplane
        self.cluster = cluster
        self.oracle = oracle
        self.tunnel: subprocess.Popen | None = None
        self._features: ClusterFeatures | None = None
        self._addons: AddonInstaller | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._network_check: Future | None = None

    @property
    def features(self) -> ClusterFeatures:
        """Version-gated behavior, resolved once from the running cluster."""
        if self._features is None:
            raw = self.cluster.server_version()
            try:
                version = parse_cluster_version(raw)
            except InvalidVersion:
                logger.warning("cannot parse cluster version", version=raw)
                version = ZERO_VERSION
            logger.info("cluster version", version=str(version))
            self._features = ClusterFeatures.for_version(version)
        return self._features

    @property
    def addons(self) -> AddonInstaller:
        if self._addons is None:
            self._addons = AddonInstaller(self.docker, self.cluster, self.config, self.features)
        return self._addons

    def cluster_is_current(self) -> bool:
        return self.features.is_current

    # Startup

    def start_control_plane(self, out: IO[str]) -> None:
        out.write(f"Starting the control plane using {self.config.image_ref}\n")
        if self.config.port_forwarding:
            self.tunnel = self.controlplane.start_socat_tunnel()
        self.controlplane.start(self.config, out)
        if not self.config.write_config and self.config.verbose > 0:
            self._start_network_check()

    def _start_network_check(self) -> None:
        """Probe container networking in the background; consumed by a later task."""
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="network-check")
        self._network_check = self._executor.submit(
            self.controlplane.test_container_networking, self.config.server_ip
        )
        self._executor.shutdown(wait=False)

    def post_startup(self, out: IO[str]) -> None:
        stale = self.cluster.remove_duplicate_nodes()
        if stale:
            out.write(f"Removed stale nodes: {', '.join(stale)}\n")
        self.cluster.setup_persistent_storage(self.config.host_pv_dir, self.config.pv_count)

    # Data initialization

    def ensure_default_redirect_uris(self, out: IO[str]) -> None:
        """Add the development redirect URI; failures only print a manual fix."""
        try:
            client = self.cluster.get_oauth_client(DEFAULT_REDIRECT_CLIENT)
        except NotFoundError:
            out.write(f'Unable to find OAuthClient "{DEFAULT_REDIRECT_CLIENT}"\n')
            return
        except StartError as e:
            logger.debug("cannot fetch oauth client", error=str(e))
            out.write(
                f'Unable to fetch OAuthClient "{DEFAULT_REDIRECT_CLIENT}".\n'
                f"To manually add a development redirect URI, run:\n"
                f"    {suggested_redirect_patch()}\n"
            )
            return

        redirects = list(client.get("redirectURIs") or [])
        if DEVELOPMENT_REDIRECT_URI in redirects:
            return
        client["redirectURIs"] = redirects + [DEVELOPMENT_REDIRECT_URI]
        try:
            self.cluster.update_oauth_client(client)
        except StartError as e:
            logger.debug("cannot update oauth client", error=str(e))
            out.write(
                f'Unable to add development redirect URI to the "{DEFAULT_REDIRECT_CLIENT}" '
                f"OAuthClient.\nTo manually add it, run:\n"
                f"    {suggested_redirect_patch()}\n"
            )

    def _service_exists(self, name: str) -> bool:
        try:
            self.cluster.get_service(DEFAULT_NAMESPACE, name)
        except NotFoundError:
            return False
        return True

    def install_registry(self, out: IO[str]) -> None:
        if self._service_exists(REGISTRY_SERVICE):
            out.write("Registry already installed\n")
            return
        self.cluster.admin_command(
            ["adm", "policy", "add-scc-to-user", "privileged", "-z", "registry", "-n", DEFAULT_NAMESPACE]
        )
        objects = json.loads(
            self.cluster.admin_command(
                [
                    "adm",
                    "registry",
                    f"--images={self.config.image_format}",
                    f"--mount-host={self.config.host_pv_dir}/registry",
                    "--service-account=registry",
                    "-n",
                    DEFAULT_NAMESPACE,
                    "-o",
                    "json",
                ]
            )
        )
        for item in objects.get("items") or []:
            if item.get("kind") == "Service":
                item.setdefault("spec", {})["clusterIP"] = REGISTRY_SERVICE_IP
        self.cluster.create_objects(DEFAULT_NAMESPACE, objects)

    def install_router(self, out: IO[str]) -> None:
        if self._service_exists(ROUTER_SERVICE):
            out.write("Router already installed\n")
            return
        self.cluster.admin_command(
            ["adm", "policy", "add-scc-to-user", "privileged", "-z", "router", "-n", DEFAULT_NAMESPACE]
        )
        self.cluster.admin_command(
            [
                "adm",
                "router",
                f"--images={self.config.image_format}",
                "--service-account=router",
                "-n",
                DEFAULT_NAMESPACE,
            ],
            out,
        )

    def _import(self, out: IO[str], namespace: str, locations: dict[str, str]) -> None:
        for name, path in sorted(locations.items()):
            location = manifests.resolve(self.config.image_version, path)
            logger.debug("importing objects", name=name, namespace=namespace, location=location)
            try:
                self.cluster.import_objects(namespace, location)
            except StartError as e:
                raise StartError(f'cannot import "{name}" into {namespace}', cause=e) from e

    def import_image_streams(self, out: IO[str]) -> None:
        path = manifests.IMAGE_STREAMS.get(self.config.image_streams)
        if path is None:
            known = ", ".join(sorted(manifests.IMAGE_STREAMS))
            raise StartError(
                f"unknown image stream set {self.config.image_streams!r}",
                solution=f"Use one of: {known}",
            )
        self._import(out, OPENSHIFT_NAMESPACE, {self.config.image_streams: path})

    def import_templates(self, out: IO[str]) -> None:
        self._import(out, OPENSHIFT_NAMESPACE, manifests.TEMPLATES)
        if self.features.import_admin_templates:
            self._import(out, ADMIN_NAMESPACE, manifests.ADMIN_TEMPLATES)

    def import_internal_templates(self, out: IO[str]) -> None:
        self._import(out, INFRA_NAMESPACE, manifests.INTERNAL_TEMPLATES)
        if self.features.is_current:
            logger.debug("importing templates for the current version")
            self._import(out, INFRA_NAMESPACE, manifests.INTERNAL_CURRENT_TEMPLATES)
        else:
            logger.debug("importing templates for the previous version")
            self._import(out, INFRA_NAMESPACE, manifests.INTERNAL_PREVIOUS_TEMPLATES)

    def import_logging_templates(self, out: IO[str]) -> None:
        self._import(out, INFRA_NAMESPACE, manifests.LOGGING_TEMPLATES)

    # Add-ons

    def install_metrics(self, out: IO[str]) -> None:
        self.addons.install_metrics(out)

    def install_logging(self, out: IO[str]) -> None:
        self.addons.install_logging(out)

    def install_service_catalog(self, out: IO[str]) -> None:
        self.addons.install_service_catalog(out)

    def install_template_service_broker(self, out: IO[str]) -> None:
        self.addons.install_template_service_broker(out)

    def register_template_service_broker(self, out: IO[str]) -> None:
        self.addons.register_template_service_broker(out)

    def install_web_console(self, out: IO[str]) -> None:
        self.addons.install_web_console(
            out,
            with_metrics=self.config.install_metrics,
            with_logging=self.config.install_logging,
        )

    # Verification and user setup

    def check_container_networking(self, out: IO[str]) -> None:
        server_ip = self.config.server_ip
        try:
            if self._network_check is not None:
                self._network_check.result()
            else:
                self.controlplane.test_container_networking(server_ip)
        except StartError as e:
            raise StartError(
                "containers cannot communicate with the master",
                cause=e,
                details="The cluster was started. However, the container networking test failed.",
                solution=(
                    f"Ensure that access to ports tcp/8443, udp/53 and udp/8053 is allowed on {server_ip}.\n"
                    "You may need to open these ports on your machine's firewall."
                ),
            ) from e

    def login(self, out: IO[str]) -> None:
        self.cluster.login(INITIAL_USER, INITIAL_PASSWORD, master_url(self.config.server_ip), out)

    def create_project(self, out: IO[str]) -> None:
        self.cluster.create_project(
            INITIAL_PROJECT_NAME, INITIAL_PROJECT_DISPLAY, INITIAL_PROJECT_DESCRIPTION, out
        )

    def server_info(self, out: IO[str]) -> None:
        out.write(self.summary())

    def summary(self) -> str:
        """Text shown after a successful start."""
        init_data = self.oracle.should_initialize_data()
        lines = [
            "Server started.",
            "",
            "The server is accessible via web console at:",
            f"    {self.config.master_url}",
            "",
        ]
        if self.config.install_metrics and init_data:
            lines += ["The metrics service is available at:", f"    {self.addons.metrics_url()}", ""]
        if self.config.install_logging and init_data:
            lines += ["The kibana logging UI is available at:", f"    {self.addons.logging_url()}", ""]
        if self.oracle.should_create_user():
            lines += [
                "You are logged in as:",
                f"    User:     {INITIAL_USER}",
                "    Password: <any value>",
                "",
                "To login as administrator:",
                "    oc login -u system:admin",
                "",
            ]
        text = "\n".join(lines) + "\n"
        return text + self.proxy_warnings()

    def proxy_warnings(self) -> str:
        try:
            actual = self.docker.proxy_settings()
        except StartError as e:
            return f"Unexpected error: {e}\n"
        desired = ProxySettings(
            http=self.config.http_proxy,
            https=self.config.https_proxy,
            no_proxy=self.config.no_proxy,
        )
        reconciler = ProxyReconciler()
        return reconciler.render(reconciler.check(desired, actual))
