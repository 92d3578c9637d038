"""Kubernetes API clients and namespace resolution for the export."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path
from typing import Any

from kubernetes import client, config
from kubernetes.dynamic import DynamicClient

from pgo_support.errors import SetupError

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_NAMESPACE = Path("/var/run/secrets/kubernetes.io/serviceaccount/namespace")
IN_CLUSTER_CONTEXT = "in-cluster"


@dataclass
class KubeTarget:
    """Where the kube configuration came from."""

    context: str
    namespace: str | None = None
    in_cluster: bool = False


def _load_kube_config(kubeconfig_path: str | None, context: str | None) -> tuple[client.Configuration, KubeTarget]:
    """Load in-cluster or kubeconfig-based configuration."""
    if not kubeconfig_path and not context:
        try:
            config.load_incluster_config()
            logger.debug("Using in-cluster configuration")
            namespace = None
            if SERVICE_ACCOUNT_NAMESPACE.exists():
                namespace = SERVICE_ACCOUNT_NAMESPACE.read_text(encoding="utf-8").strip() or None
            return client.Configuration.get_default_copy(), KubeTarget(
                context=IN_CLUSTER_CONTEXT, namespace=namespace, in_cluster=True
            )
        except config.ConfigException:
            pass
    kwargs: dict[str, Any] = {}
    if kubeconfig_path:
        kwargs["config_file"] = str(kubeconfig_path)
    if context:
        kwargs["context"] = context
    config.load_kube_config(**kwargs)

    contexts, active = config.list_kube_config_contexts(config_file=kwargs.get("config_file"))
    selected = active
    if context:
        selected = next((c for c in contexts if c.get("name") == context), active)
    selected = selected or {}
    namespace = (selected.get("context") or {}).get("namespace")
    return client.Configuration.get_default_copy(), KubeTarget(
        context=selected.get("name", ""), namespace=namespace
    )


@dataclass
class KubeClients:
    """The API surfaces used by the collection steps."""

    api_client: client.ApiClient
    target: KubeTarget = field(default_factory=lambda: KubeTarget(context=""))

    @cached_property
    def core(self) -> client.CoreV1Api:
        return client.CoreV1Api(self.api_client)

    @cached_property
    def version(self) -> client.VersionApi:
        return client.VersionApi(self.api_client)

    @cached_property
    def custom(self) -> client.CustomObjectsApi:
        return client.CustomObjectsApi(self.api_client)

    @cached_property
    def apiextensions(self) -> client.ApiextensionsV1Api:
        return client.ApiextensionsV1Api(self.api_client)

    @cached_property
    def dynamic(self) -> DynamicClient:
        # Discovery runs on construction, so build it only when a step needs it.
        return DynamicClient(self.api_client)

    def to_dict(self, obj: Any) -> Any:
        """Serialize a typed API object to the dict the server would send."""
        return self.api_client.sanitize_for_serialization(obj)


def load_clients(kubeconfig: str | None = None, context: str | None = None) -> KubeClients:
    """Load configuration and return the clients for one export run."""
    try:
        cfg, target = _load_kube_config(kubeconfig, context)
    except config.ConfigException as e:
        raise SetupError(f"could not load kube configuration: {e}") from e
    return KubeClients(api_client=client.ApiClient(cfg), target=target)


def resolve_namespace(explicit: str | None, clients: KubeClients) -> str:
    """Namespace from the flag, then the kube context, then ``default``."""
    return explicit or clients.target.namespace or "default"
