"""
Shared pytest fixtures for pgo-support tests.

Nothing here talks to a cluster:
- FakeContainer: stands in for a pod exec function with a small file system
- FakeDynamic: answers dynamic client list calls from canned items
- fake_cluster: KubeClients wired to mocks that look like a small PostgresCluster
"""

from __future__ import annotations

import copy
import fnmatch
import io
import shlex
import tarfile
from dataclasses import dataclass, field
from pathlib import Path
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException
from kubernetes.dynamic.exceptions import ResourceNotFoundError
from rich.console import Console

from pgo_support import naming
from pgo_support.errors import RemoteCommandError
from pgo_support.export import ExportOptions
from pgo_support.kube import KubeClients, KubeTarget
from pgo_support.remote import ExecResult

CLUSTER = "hippo"
NAMESPACE = "postgres-operator"


# =============================================================================
# Remote exec fakes
# =============================================================================


class FakeContainer:
    """
    An exec function backed by an in-memory file system.

    stat reports ``sizes[path]`` when set, so tests can make the remote side
    claim a different length from the bytes cat actually delivers.
    """

    def __init__(
        self,
        files: dict[str, bytes] | None = None,
        outputs: dict[str, str] | None = None,
        sizes: dict[str, int] | None = None,
        failures: dict[str, Exception] | None = None,
    ) -> None:
        self.files = files or {}
        self.outputs = outputs or {}
        self.sizes = sizes or {}
        self.failures = failures or {}
        self.calls: list[list[str]] = []

    @property
    def scripts(self) -> list[str]:
        return [command[-1] for command in self.calls]

    def __call__(self, command, stdin=None, stdout=None, timeout=None) -> ExecResult:
        self.calls.append(list(command))
        script = command[-1]
        if script in self.failures:
            raise self.failures[script]

        if script.startswith("stat -c %s -- "):
            path = shlex.split(script)[-1]
            self._require(command, path)
            return ExecResult(stdout=f"{self.sizes.get(path, len(self.files[path]))}\n")
        if script.startswith("cat -- "):
            path = shlex.split(script)[-1]
            self._require(command, path)
            if stdout is not None:
                stdout.write(self.files[path])
                return ExecResult()
            return ExecResult(stdout=self.files[path].decode())
        if script.startswith("ls -1dt "):
            pattern = script.split()[2]
            matches = sorted((p for p in self.files if fnmatch.fnmatch(p, pattern)), reverse=True)
            if not matches:
                raise RemoteCommandError(
                    command, 2, f"ls: cannot access '{pattern}': No such file or directory\n"
                )
            if "| head -" in script:
                matches = matches[: int(script.rsplit("-", 1)[1])]
            return ExecResult(stdout="".join(f"{m}\n" for m in matches))
        if script in self.outputs:
            return ExecResult(stdout=self.outputs[script])
        raise RemoteCommandError(command, 127, f"bash: {script.split()[0]}: command not found")

    def _require(self, command: list[str], path: str) -> None:
        if path not in self.files:
            raise RemoteCommandError(command, 1, f"{path}: No such file or directory")


@dataclass
class FakePodExecutors:
    """Replacement for PodExecutor that hands out FakeContainers by (pod, container)."""

    containers: dict[tuple[str, str], FakeContainer] = field(default_factory=dict)

    def __call__(self, core: Any, poll_interval: float = 1.0) -> "FakePodExecutors":
        return self

    def bind(self, namespace: str, pod: str, container: str) -> FakeContainer:
        return self.containers.setdefault((pod, container), FakeContainer())


# =============================================================================
# Kubernetes API fakes
# =============================================================================


class FakeResourceList:
    def __init__(self, items: list[dict[str, Any]]) -> None:
        self._items = items

    def to_dict(self) -> dict[str, Any]:
        return {"kind": "List", "items": copy.deepcopy(self._items)}


class FakeResource:
    def __init__(self, items: list[dict[str, Any]]) -> None:
        self.items = items
        self.calls: list[dict[str, Any]] = []

    def get(self, **kwargs: Any) -> FakeResourceList:
        self.calls.append(kwargs)
        return FakeResourceList(self.items)


class FakeDynamic:
    """
    DynamicClient stand-in. ``lists`` maps (api_version, resource) to items;
    an unknown pair raises ResourceNotFoundError like discovery does.
    """

    def __init__(
        self,
        lists: dict[tuple[str, str], list[dict[str, Any]]] | None = None,
        errors: dict[tuple[str, str], Exception] | None = None,
    ) -> None:
        self.lists = lists or {}
        self.errors = errors or {}
        self.lookups: list[tuple[str, str]] = []
        self.resources = self

    def get(self, api_version: str, name: str) -> FakeResource:
        key = (api_version, name)
        self.lookups.append(key)
        if key in self.errors:
            raise self.errors[key]
        if key not in self.lists:
            raise ResourceNotFoundError(f"No matches found for {{'api_version': {api_version!r}, 'name': {name!r}}}")
        return FakeResource(self.lists[key])


def forbidden(reason: str = "Forbidden") -> ApiException:
    return ApiException(status=403, reason=reason)


def not_found(reason: str = "Not Found") -> ApiException:
    return ApiException(status=404, reason=reason)


def item(kind: str, name: str, **extra: Any) -> dict[str, Any]:
    obj = {
        "kind": kind,
        "metadata": {
            "name": name,
            "namespace": NAMESPACE,
            "creationTimestamp": "2026-10-01T00:00:00Z",
        },
    }
    obj.update(extra)
    return obj


def make_pod(
    name: str,
    containers: list[str],
    init_containers: list[str] | None = None,
    restarts: dict[str, int] | None = None,
) -> client.V1Pod:
    restarts = restarts or {}

    def status(container: str) -> client.V1ContainerStatus:
        return client.V1ContainerStatus(
            name=container,
            image="registry.example/image:1",
            image_id="sha256:0",
            ready=True,
            restart_count=restarts.get(container, 0),
        )

    return client.V1Pod(
        metadata=client.V1ObjectMeta(name=name, namespace=NAMESPACE),
        spec=client.V1PodSpec(
            containers=[client.V1Container(name=c) for c in containers],
            init_containers=[client.V1Container(name=c) for c in init_containers or []],
        ),
        status=client.V1PodStatus(
            container_statuses=[status(c) for c in containers],
            init_container_statuses=[status(c) for c in init_containers or []],
        ),
    )


def make_clients(dynamic: FakeDynamic | None = None) -> KubeClients:
    """KubeClients whose API surfaces are mocks; to_dict uses the real serializer."""
    clients = KubeClients(
        api_client=client.ApiClient(client.Configuration()),
        target=KubeTarget(context="kind-pgo", namespace=NAMESPACE),
    )
    clients.core = MagicMock(name="core")
    clients.version = MagicMock(name="version")
    clients.custom = MagicMock(name="custom")
    clients.apiextensions = MagicMock(name="apiextensions")
    clients.dynamic = dynamic or FakeDynamic()
    return clients


def archive_names(path: Path) -> list[str]:
    with tarfile.open(path, "r:gz") as tar:
        return tar.getnames()


def archive_text(path: Path, name: str) -> str:
    with tarfile.open(path, "r:gz") as tar:
        member = tar.extractfile(name)
        assert member is not None
        return member.read().decode()


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def console() -> Console:
    return Console(file=io.StringIO(), width=200, color_system=None)


@pytest.fixture
def options(tmp_path: Path) -> ExportOptions:
    return ExportOptions(cluster_name=CLUSTER, namespace=NAMESPACE, output_dir=tmp_path)


@pytest.fixture
def pod_executors(monkeypatch: pytest.MonkeyPatch) -> FakePodExecutors:
    executors = FakePodExecutors()
    monkeypatch.setattr("pgo_support.export.context.PodExecutor", executors)
    return executors


@pytest.fixture
def fake_cluster(monkeypatch: pytest.MonkeyPatch, pod_executors: FakePodExecutors) -> SimpleNamespace:
    """
    A PostgresCluster with one instance pod, a repo host, an operator pod,
    and canned output for every command the steps run.
    """
    labels = {naming.LABEL_CLUSTER: CLUSTER}
    dynamic = FakeDynamic(
        lists={
            ("apps/v1", "statefulsets"): [item("StatefulSet", "hippo-instance1-abcd", spec={"replicas": 1})],
            ("apps/v1", "deployments"): [item("Deployment", "pgo", spec={"replicas": 1})],
            ("apps/v1", "replicasets"): [],
            ("batch/v1", "jobs"): [],
            ("batch/v1", "cronjobs"): [],
            ("policy/v1", "poddisruptionbudgets"): [],
            ("v1", "pods"): [item("Pod", "hippo-instance1-abcd-0")],
            ("v1", "persistentvolumeclaims"): [item("PersistentVolumeClaim", "hippo-instance1-abcd-pgdata")],
            ("v1", "configmaps"): [item("ConfigMap", "hippo-config")],
            ("v1", "services"): [item("Service", "hippo-primary")],
            ("v1", "endpoints"): [],
            ("v1", "serviceaccounts"): [],
            ("networking.k8s.io/v1", "ingresses"): [],
            ("networking.k8s.io/v1", "networkpolicies"): [],
            ("v1", "limitranges"): [],
            ("v1", "resourcequotas"): [],
        }
    )
    clients = make_clients(dynamic)

    cluster = {
        "apiVersion": f"{naming.PGO_GROUP}/{naming.PGO_VERSION}",
        "kind": "PostgresCluster",
        "metadata": {"name": CLUSTER, "namespace": NAMESPACE, "labels": labels},
        "spec": {"postgresVersion": 16},
    }
    clients.custom.get_namespaced_custom_object.return_value = cluster

    def list_custom(group, version, namespace, plural, **kwargs):
        if plural == naming.POSTGRESCLUSTERS:
            return {"items": [cluster]}
        raise not_found()

    clients.custom.list_namespaced_custom_object.side_effect = list_custom
    clients.apiextensions.read_custom_resource_definition.return_value = SimpleNamespace(
        metadata=SimpleNamespace(labels={naming.LABEL_APP_VERSION: "5.5.0"})
    )
    clients.version.get_code.return_value = SimpleNamespace(git_version="v1.29.2")
    clients.core.list_node.return_value = {"items": [item("Node", "worker-1")]}
    clients.core.read_namespace.return_value = {"kind": "Namespace", "metadata": {"name": NAMESPACE}}
    clients.core.list_namespaced_event.return_value = {"items": []}
    clients.core.read_namespaced_pod_log.return_value = SimpleNamespace(data=b"log line\n")

    instance = make_pod("hippo-instance1-abcd-0", ["database", "replication-cert-copy"], ["postgres-startup"])
    repo_host = make_pod("hippo-repo-host-0", ["pgbackrest"])
    operator = make_pod("pgo-7c9d8-xyz", ["operator"])
    pods = {
        naming.cluster_labels(CLUSTER): [instance, repo_host],
        naming.instance_labels(CLUSTER): [instance],
        naming.primary_instance_labels(CLUSTER): [instance],
        naming.repo_host_labels(CLUSTER): [repo_host],
        naming.operator_labels(): [operator],
    }

    def list_pods(namespace, label_selector=None, **kwargs):
        return client.V1PodList(items=pods.get(label_selector, []))

    clients.core.list_namespaced_pod.side_effect = list_pods

    database = FakeContainer(
        files={
            "pgdata/pg16/log/postgresql-Mon.log": b"LOG:  database system is ready\n",
            "pgdata/pg16/postgresql.conf": b"shared_buffers = 128MB\n",
            "pgdata/patroni/log/patroni.log": b"INFO: no action\n",
            "pgdata/pgbackrest/log/db-backup.log": b"P00   INFO: backup command end\n",
        },
        outputs={
            "patronictl list": "+ Cluster: hippo-ha +\n",
            "patronictl history": "TL LSN Reason\n",
            "patronictl show-config": "loop_wait: 10\n",
            "pgbackrest info --output=text": "stanza: db\n    status: ok\n",
            "pgbackrest check --stanza=db": "",
            "ps aux --width 500": "USER PID COMMAND\npostgres 1 patroni\n",
            "date": "Sun Oct 18 12:00:00 UTC 2026\n",
        },
    )
    pgbackrest = FakeContainer(files={"pgbackrest/repo1/log/db-expire.log": b"P00   INFO: expire command end\n"})
    pod_executors.containers[("hippo-instance1-abcd-0", "database")] = database
    pod_executors.containers[("hippo-repo-host-0", "pgbackrest")] = pgbackrest

    def no_kubectl(*args, **kwargs):
        raise FileNotFoundError("kubectl")

    monkeypatch.setattr("pgo_support.export.steps.subprocess.run", no_kubectl)

    return SimpleNamespace(
        clients=clients,
        dynamic=dynamic,
        database=database,
        pgbackrest=pgbackrest,
        executors=pod_executors,
        cluster=cluster,
    )
