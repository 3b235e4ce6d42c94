"""Cluster client for cluster up.

Talks to the control plane through the `oc` CLI, authenticated with the
admin kubeconfig the server generated in the local config directory.
"""

from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import IO, Any

import structlog
import yaml

from ..errors import CommandError, NotFoundError, StartError
from ..shared.paths import admin_kubeconfig
from .controlplane import master_url

logger = structlog.get_logger(__name__)

PV_RECLAIM_POLICY = "Recycle"
PV_CAPACITY = "100Gi"


class ClusterClient:
    """Admin client for the cluster started by cluster up."""

    def __init__(self, local_config_dir: Path, server_ip: str, timeout: float = 120.0):
        """Initialize client.

        Args:
            local_config_dir: Directory holding master/admin.kubeconfig.
            server_ip: Address the server was started on.
            timeout: Timeout in seconds for each oc call.
        """
        self.local_config_dir = local_config_dir
        self.server_ip = server_ip
        self.timeout = timeout

    @property
    def kubeconfig(self) -> Path:
        return admin_kubeconfig(self.local_config_dir)

    def _oc_cmd(self) -> list[str]:
        """Build base oc command."""
        return [
            "oc",
            "--config",
            str(self.kubeconfig),
            "--server",
            master_url(self.server_ip),
            "--insecure-skip-tls-verify=true",
        ]

    def _run(
        self,
        argv: list[str],
        input: str | None = None,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess:
        logger.debug("running oc", argv=argv)
        try:
            return subprocess.run(
                argv,
                capture_output=True,
                text=True,
                input=input,
                timeout=timeout or self.timeout,
            )
        except FileNotFoundError as e:
            raise StartError(
                "oc not found. Is the cluster client installed?",
                cause=e,
            ) from e
        except subprocess.TimeoutExpired as e:
            raise StartError(f"oc {argv[1] if len(argv) > 1 else ''} timed out", cause=e) from e

    def _oc(self, *args: str, input: str | None = None, timeout: float | None = None) -> str:
        result = self._run(self._oc_cmd() + list(args), input=input, timeout=timeout)
        if result.returncode != 0:
            stderr = result.stderr or ""
            if "NotFound" in stderr or "not found" in stderr:
                raise NotFoundError(stderr.strip())
            raise CommandError(
                f"oc {args[0]} failed",
                argv=tuple(result.args),
                returncode=result.returncode,
                stderr=stderr,
            )
        return result.stdout

    def _get_json(self, *args: str) -> dict[str, Any]:
        return json.loads(self._oc("get", *args, "-o", "json"))

    def get_oauth_client(self, name: str) -> dict[str, Any]:
        return self._get_json("oauthclient", name)

    def update_oauth_client(self, obj: dict[str, Any]) -> None:
        self._oc("replace", "-f", "-", input=json.dumps(obj))

    def get_service(self, namespace: str, name: str) -> dict[str, Any]:
        """Raises NotFoundError when the service does not exist."""
        return self._get_json("service", name, "-n", namespace)

    def list_nodes(self) -> list[dict[str, str]]:
        """Registered nodes with their creation timestamps."""
        items = self._get_json("nodes").get("items") or []
        return [
            {
                "name": item["metadata"]["name"],
                "created": item["metadata"].get("creationTimestamp", ""),
            }
            for item in items
        ]

    def delete_node(self, name: str) -> None:
        self._oc("delete", "node", name)

    def remove_duplicate_nodes(self) -> list[str]:
        """Keep only the most recently registered node."""
        nodes = sorted(self.list_nodes(), key=lambda n: n["created"])
        stale = [n["name"] for n in nodes[:-1]]
        for name in stale:
            logger.info("removing stale node", node=name)
            self.delete_node(name)
        return stale

    def setup_persistent_storage(self, host_pv_dir: str, count: int) -> None:
        """Create hostPath persistent volumes pv0001..pvNNNN."""
        existing = {
            item["metadata"]["name"] for item in self._get_json("pv").get("items") or []
        }
        volumes = [
            self._build_persistent_volume(name, host_pv_dir)
            for name in (f"pv{i:04d}" for i in range(1, count + 1))
            if name not in existing
        ]
        if not volumes:
            logger.debug("persistent volumes already present", count=len(existing))
            return
        manifest = yaml.dump_all(volumes, default_flow_style=False, sort_keys=False)
        self._oc("create", "-f", "-", input=manifest)

    def _build_persistent_volume(self, name: str, host_pv_dir: str) -> dict[str, Any]:
        return {
            "apiVersion": "v1",
            "kind": "PersistentVolume",
            "metadata": {"name": name, "labels": {"volume": name}},
            "spec": {
                "capacity": {"storage": PV_CAPACITY},
                "accessModes": ["ReadWriteOnce", "ReadWriteMany", "ReadOnlyMany"],
                "persistentVolumeReclaimPolicy": PV_RECLAIM_POLICY,
                "hostPath": {"path": f"{host_pv_dir}/{name}"},
            },
        }

    def create_objects(self, namespace: str, objects: dict[str, Any]) -> None:
        self._oc("create", "-n", namespace, "-f", "-", input=json.dumps(objects))

    def import_objects(self, namespace: str, location: str) -> None:
        self._oc("apply", "-n", namespace, "-f", location)

    def ensure_namespace(self, name: str) -> None:
        try:
            self._get_json("namespace", name)
        except NotFoundError:
            self._oc("create", "namespace", name)

    def process_template(
        self,
        namespace: str,
        template: str,
        params: dict[str, str] | None = None,
        target_namespace: str | None = None,
    ) -> None:
        """Process a template and apply its objects.

        Args:
            namespace: Namespace holding the template.
            template: Template name in namespace, or a file/URL location.
            params: Template parameter values.
            target_namespace: Where to create the objects (default: namespace).
        """
        args = ["process", "-n", namespace]
        if "/" in template:
            args += ["-f", template]
        else:
            args.append(template)
        for key, value in (params or {}).items():
            args += ["-p", f"{key}={value}"]
        objects = self._oc(*args, "-o", "yaml")
        self._oc("apply", "-n", target_namespace or namespace, "-f", "-", input=objects)

    def server_version(self) -> str:
        data = json.loads(self._oc("get", "--raw", "/version/openshift"))
        return data.get("gitVersion", "")

    def admin_command(self, args: list[str], out: IO[str] | None = None) -> str:
        output = self._oc(*args, timeout=600)
        if out is not None and output:
            out.write(output)
        return output

    def _user_command(self, args: list[str], out: IO[str]) -> None:
        result = self._run(["oc", *args])
        out.write(result.stdout or "")
        if result.returncode != 0:
            raise CommandError(
                f"oc {args[0]} failed",
                argv=tuple(result.args),
                returncode=result.returncode,
                stderr=result.stderr or "",
            )

    def login(self, user: str, password: str, server: str, out: IO[str]) -> None:
        """Log in to the cluster with the user's own kubeconfig."""
        self._user_command(
            ["login", server, "-u", user, "-p", password, "--insecure-skip-tls-verify=true"],
            out,
        )

    def create_project(self, name: str, display_name: str, description: str, out: IO[str]) -> None:
        self._user_command(
            ["new-project", name, f"--display-name={display_name}", f"--description={description}"],
            out,
        )
