"""Locations of the manifests and templates cluster up imports.

Paths are relative to the origin source tree and are fetched from the
release branch matching the control-plane image version.
"""

from __future__ import annotations

from packaging.version import InvalidVersion

from .versions import parse_cluster_version

SOURCE_BASE_URL = "https://raw.githubusercontent.com/openshift/origin"
METRICS_DEPLOYER_URL = "https://raw.githubusercontent.com/openshift/origin-metrics/master/metrics.yaml"

IMAGE_STREAMS = {
    "centos7": "examples/image-streams/image-streams-centos7.json",
    "rhel7": "examples/image-streams/image-streams-rhel7.json",
}

TEMPLATES = {
    "mongodb": "examples/db-templates/mongodb-persistent-template.json",
    "mariadb": "examples/db-templates/mariadb-persistent-template.json",
    "mysql": "examples/db-templates/mysql-persistent-template.json",
    "postgresql": "examples/db-templates/postgresql-persistent-template.json",
    "cakephp quickstart": "examples/quickstarts/cakephp-mysql-persistent.json",
    "dancer quickstart": "examples/quickstarts/dancer-mysql-persistent.json",
    "django quickstart": "examples/quickstarts/django-postgresql-persistent.json",
    "nodejs quickstart": "examples/quickstarts/nodejs-mongodb-persistent.json",
    "rails quickstart": "examples/quickstarts/rails-postgresql-persistent.json",
    "jenkins pipeline persistent": "examples/jenkins/jenkins-persistent-template.json",
    "sample pipeline": "examples/jenkins/pipeline/samplepipeline.yaml",
}

# Compatible with both the current and the previous cluster version
INTERNAL_TEMPLATES = {
    "service catalog": "examples/service-catalog/service-catalog.yaml",
    "template service broker rbac": "install/templateservicebroker/rbac-template.yaml",
    "template service broker registration": (
        "install/service-catalog-broker-resources/template-service-broker-registration.yaml"
    ),
}

INTERNAL_CURRENT_TEMPLATES = {
    "web console server template": "install/origin-web-console/console-template.yaml",
    "template service broker apiserver": "install/templateservicebroker/apiserver-template.yaml",
}

INTERNAL_PREVIOUS_TEMPLATES = {
    "template service broker apiserver": "install/templateservicebroker/previous/apiserver-template.yaml",
}

LOGGING_TEMPLATES = {
    "logging": "examples/logging/logging-deployer.yaml",
}

ADMIN_TEMPLATES = {
    "prometheus": "examples/prometheus/prometheus.yaml",
    "heapster standalone": "examples/heapster/heapster-standalone.yaml",
}

# Template object names once imported
SERVICE_CATALOG_TEMPLATE = "service-catalog"
BROKER_RBAC_TEMPLATE = "template-service-broker-rbac"
BROKER_APISERVER_TEMPLATE = "template-service-broker-apiserver"
BROKER_REGISTRATION_TEMPLATE = "template-service-broker-registration"
WEB_CONSOLE_TEMPLATE = "openshift-web-console"
LOGGING_DEPLOYER_TEMPLATE = "logging-deployer-template"
LOGGING_ACCOUNT_TEMPLATE = "logging-deployer-account-template"


def source_ref(image_version: str) -> str:
    """Branch of the source tree matching an image version tag."""
    try:
        version = parse_cluster_version(image_version)
    except InvalidVersion:
        return "master"
    return f"release-{version.major}.{version.minor}"


def resolve(image_version: str, path: str) -> str:
    """URL of a source-tree path for an image version."""
    return f"{SOURCE_BASE_URL}/{source_ref(image_version)}/{path}"
