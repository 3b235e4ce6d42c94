"""Optional add-on installers for cluster up.

Metrics and logging are installed either by running the ansible installer
image against the cluster or, on older clusters, by processing the legacy
deployer templates. The choice comes from ClusterFeatures.
"""

from __future__ import annotations

import base64
from typing import IO, Any

import structlog
import yaml

from ..config import RunConfig
from ..errors import StartError
from . import manifests
from .cluster import ClusterClient
from .controlplane import (
    CONTAINER_CONFIG_DIR,
    INFRA_NAMESPACE,
    SERVICE_CATALOG_SERVICE_IP,
    catalog_host,
    logging_host,
    master_url,
    metrics_host,
)
from .runtime import DockerHelper
from .versions import BrokerImageStyle, ClusterFeatures

logger = structlog.get_logger(__name__)

METRICS_NAMESPACE = INFRA_NAMESPACE
LOGGING_NAMESPACE = "logging"
CATALOG_NAMESPACE = "kube-service-catalog"
BROKER_NAMESPACE = "openshift-template-service-broker"
CONSOLE_NAMESPACE = "openshift-web-console"

INVENTORY_PATH = "/tmp/inventory.yml"


def image_prefix(image: str) -> str:
    """Prefix shared by per-component images, e.g. openshift/origin-."""
    return f"{image}-"


class AddonInstaller:
    """Install the optional cluster add-ons."""

    def __init__(
        self,
        docker: DockerHelper,
        cluster: ClusterClient,
        config: RunConfig,
        features: ClusterFeatures,
    ):
        self.docker = docker
        self.cluster = cluster
        self.config = config
        self.features = features

    def metrics_url(self) -> str:
        return f"https://{metrics_host(self.config.effective_routing_suffix)}/hawkular/metrics"

    def logging_url(self) -> str:
        return f"https://{logging_host(self.config.effective_routing_suffix)}"

    # Ansible

    def build_inventory(self, component_vars: dict[str, Any]) -> dict[str, Any]:
        """Ansible YAML inventory targeting the single master."""
        host = self.config.server_ip
        common = {
            "ansible_connection": "local",
            "openshift_deployment_type": "origin",
            "openshift_release": self.config.image_version,
            "openshift_image_tag": self.config.image_version,
            "openshift_master_default_subdomain": self.config.effective_routing_suffix,
            "openshift_master_config_dir": f"{CONTAINER_CONFIG_DIR}/master",
            "openshift_master_public_api_url": self.config.master_url,
            "openshift_hosted_templates_import_command": "create",
        }
        common.update(component_vars)
        return {
            "all": {
                "children": {
                    "masters": {"hosts": {host: {}}},
                    "nodes": {"hosts": {host: {"openshift_node_labels": {"region": "infra"}}}},
                },
                "vars": common,
            }
        }

    def run_playbook(self, component: str, component_vars: dict[str, Any], out: IO[str]) -> None:
        """Run a component playbook from the ansible image on the host network."""
        playbook = self.features.playbook(component)
        inventory = yaml.safe_dump(self.build_inventory(component_vars), sort_keys=False)
        ansible_image = f"{image_prefix(self.config.image)}ansible:{self.config.image_version}"
        out.write(f"Running {playbook} from {ansible_image}\n")
        script = f"cat > {INVENTORY_PATH} && ansible-playbook -i {INVENTORY_PATH} {playbook}"
        try:
            output = self.docker.run(
                "--net=host",
                "-v",
                f"{self.config.host_config_dir}:{CONTAINER_CONFIG_DIR}:z",
                "--entrypoint",
                "/bin/bash",
                ansible_image,
                "-c",
                script,
                timeout=3600,
                input=inventory,
            )
        except StartError as e:
            raise StartError(f"failed to install {component}", cause=e) from e
        out.write(output)

    # Add-ons

    def install_metrics(self, out: IO[str]) -> None:
        hostname = metrics_host(self.config.effective_routing_suffix)
        if self.features.use_ansible:
            self.run_playbook(
                "metrics",
                {
                    "openshift_metrics_install_metrics": True,
                    "openshift_metrics_hawkular_hostname": hostname,
                    "openshift_metrics_image_prefix": image_prefix(self.config.image),
                    "openshift_metrics_image_version": self.config.image_version,
                    "openshift_metrics_resolution": "10s",
                },
                out,
            )
            return

        self.cluster.admin_command(
            ["create", "serviceaccount", "metrics-deployer", "-n", METRICS_NAMESPACE]
        )
        deployer = f"system:serviceaccount:{METRICS_NAMESPACE}:metrics-deployer"
        self.cluster.admin_command(
            ["adm", "policy", "add-role-to-user", "edit", deployer, "-n", METRICS_NAMESPACE]
        )
        self.cluster.process_template(
            METRICS_NAMESPACE,
            manifests.METRICS_DEPLOYER_URL,
            {
                "HAWKULAR_METRICS_HOSTNAME": hostname,
                "IMAGE_PREFIX": image_prefix(self.config.image),
                "IMAGE_VERSION": self.config.image_version,
                "MASTER_URL": master_url(self.config.server_ip),
            },
        )

    def install_logging(self, out: IO[str]) -> None:
        hostname = logging_host(self.config.effective_routing_suffix)
        if self.features.use_ansible:
            self.run_playbook(
                "logging",
                {
                    "openshift_logging_install_logging": True,
                    "openshift_logging_kibana_hostname": hostname,
                    "openshift_logging_master_public_url": self.config.master_url,
                    "openshift_logging_image_prefix": image_prefix(self.config.image),
                    "openshift_logging_image_version": self.config.image_version,
                    "openshift_logging_es_cluster_size": 1,
                },
                out,
            )
            return

        self.cluster.ensure_namespace(LOGGING_NAMESPACE)
        self.cluster.process_template(
            INFRA_NAMESPACE, manifests.LOGGING_ACCOUNT_TEMPLATE, target_namespace=LOGGING_NAMESPACE
        )
        self.cluster.process_template(
            INFRA_NAMESPACE,
            manifests.LOGGING_DEPLOYER_TEMPLATE,
            {
                "KIBANA_HOSTNAME": hostname,
                "PUBLIC_MASTER_URL": self.config.master_url,
                "MASTER_URL": master_url(self.config.server_ip),
                "IMAGE_PREFIX": image_prefix(self.config.image),
                "IMAGE_VERSION": self.config.image_version,
                "MODE": "install",
            },
            target_namespace=LOGGING_NAMESPACE,
        )

    def install_service_catalog(self, out: IO[str]) -> None:
        self.cluster.ensure_namespace(CATALOG_NAMESPACE)
        self.cluster.process_template(
            INFRA_NAMESPACE,
            manifests.SERVICE_CATALOG_TEMPLATE,
            {
                "SERVICE_CATALOG_SERVICE_IP": SERVICE_CATALOG_SERVICE_IP,
                "SERVICE_CATALOG_IMAGE": self._component_image("service-catalog"),
                "CORS_ALLOWED_ORIGIN": ".*",
            },
            target_namespace=CATALOG_NAMESPACE,
        )
        host = catalog_host(self.config.effective_routing_suffix)
        route = ["create", "route", "passthrough", "apiserver", "--service=apiserver"]
        self.cluster.admin_command([*route, f"--hostname={host}", "-n", CATALOG_NAMESPACE])
        out.write(f"Service catalog API available at https://{host}\n")

    def broker_image(self) -> str:
        if self.features.broker_image_style == BrokerImageStyle.PER_COMPONENT:
            return self._component_image("template-service-broker")
        return self.config.image_ref

    def install_template_service_broker(self, out: IO[str]) -> None:
        self.cluster.ensure_namespace(BROKER_NAMESPACE)
        self.cluster.process_template(
            INFRA_NAMESPACE,
            manifests.BROKER_APISERVER_TEMPLATE,
            {
                "IMAGE": self.broker_image(),
                "LOGLEVEL": str(self.config.server_log_level),
                "NAMESPACE": BROKER_NAMESPACE,
            },
            target_namespace=BROKER_NAMESPACE,
        )
        self.cluster.process_template(
            INFRA_NAMESPACE,
            manifests.BROKER_RBAC_TEMPLATE,
            {"NAMESPACE": BROKER_NAMESPACE},
            target_namespace=BROKER_NAMESPACE,
        )

    def register_template_service_broker(self, out: IO[str]) -> None:
        ca_path = self.config.local_config_dir / "master" / "service-signer.crt"
        try:
            ca_bundle = base64.b64encode(ca_path.read_bytes()).decode()
        except OSError as e:
            raise StartError(f"cannot read service signer certificate {ca_path}", cause=e) from e
        self.cluster.process_template(
            INFRA_NAMESPACE,
            manifests.BROKER_REGISTRATION_TEMPLATE,
            {"TSB_NAMESPACE": BROKER_NAMESPACE, "CA_BUNDLE": ca_bundle},
        )

    def install_web_console(self, out: IO[str], with_metrics: bool, with_logging: bool) -> None:
        console_config = {
            "apiVersion": "webconsole.config.openshift.io/v1",
            "kind": "WebConsoleConfiguration",
            "clusterInfo": {
                "consolePublicURL": f"{self.config.master_url}/console/",
                "masterPublicURL": self.config.master_url,
                "metricsPublicURL": self.metrics_url() if with_metrics else "",
                "loggingPublicURL": self.logging_url() if with_logging else "",
            },
            "servingInfo": {"bindAddress": "0.0.0.0:8443"},
        }
        self.cluster.ensure_namespace(CONSOLE_NAMESPACE)
        self.cluster.process_template(
            INFRA_NAMESPACE,
            manifests.WEB_CONSOLE_TEMPLATE,
            {
                "IMAGE": self._component_image("web-console"),
                "LOGLEVEL": str(self.config.server_log_level),
                "NAMESPACE": CONSOLE_NAMESPACE,
                "API_SERVER_CONFIG": yaml.safe_dump(console_config, sort_keys=False),
            },
            target_namespace=CONSOLE_NAMESPACE,
        )

    def _component_image(self, component: str) -> str:
        return self.config.image_format.replace("${component}", component)
