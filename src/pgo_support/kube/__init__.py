"""Kubernetes access: configuration loading and API clients."""

from pgo_support.kube.clients import KubeClients, KubeTarget, load_clients, resolve_namespace

__all__ = [
    "KubeClients",
    "KubeTarget",
    "load_clients",
    "resolve_namespace",
]
