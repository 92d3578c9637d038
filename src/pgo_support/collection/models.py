"""Resource kinds collected into the export."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ResourceKindSpec(BaseModel):
    """A group/version/resource to list, with an older or newer kind to try when it is unknown."""

    model_config = ConfigDict(frozen=True)

    group: str = Field(default="", description="API group; empty for the core group")
    version: str
    resource: str = Field(..., description="Plural resource name, e.g. statefulsets")
    fallback: ResourceKindSpec | None = Field(
        default=None,
        description="Kind to list once when the server does not know this one",
    )

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    def __str__(self) -> str:
        return f"{self.resource}.{self.api_version}"


def kind(group: str, version: str, resource: str, fallback: ResourceKindSpec | None = None) -> ResourceKindSpec:
    return ResourceKindSpec(group=group, version=version, resource=resource, fallback=fallback)


# Resources that carry the cluster label.
NAMESPACED_RESOURCES: list[ResourceKindSpec] = [
    kind("apps", "v1", "statefulsets"),
    kind("apps", "v1", "deployments"),
    kind("apps", "v1", "replicasets"),
    kind("batch", "v1", "jobs"),
    # batch/v1 from Kubernetes 1.21; batch/v1beta1 was removed in 1.25.
    kind("batch", "v1", "cronjobs", fallback=kind("batch", "v1beta1", "cronjobs")),
    kind("policy", "v1", "poddisruptionbudgets", fallback=kind("policy", "v1beta1", "poddisruptionbudgets")),
    kind("", "v1", "pods"),
    kind("", "v1", "persistentvolumeclaims"),
    kind("", "v1", "configmaps"),
    kind("", "v1", "services"),
    kind("", "v1", "endpoints"),
    kind("", "v1", "serviceaccounts"),
    kind("networking.k8s.io", "v1", "ingresses"),
]

# Resources in the namespace that affect the cluster without carrying its label.
OTHER_NAMESPACED_RESOURCES: list[ResourceKindSpec] = [
    kind("networking.k8s.io", "v1", "networkpolicies"),
    kind("", "v1", "limitranges"),
    kind("", "v1", "resourcequotas"),
]

# Operator objects, selected by the control-plane label.
OPERATOR_RESOURCES: list[ResourceKindSpec] = [
    kind("apps", "v1", "deployments"),
    kind("apps", "v1", "replicasets"),
    kind("", "v1", "pods"),
]
