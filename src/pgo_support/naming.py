"""Labels, container names, and API groups used by PGO objects."""

from __future__ import annotations

# labelPrefix is common to all PostgresCluster object labels.
LABEL_PREFIX = "postgres-operator.crunchydata.com/"

LABEL_CLUSTER = LABEL_PREFIX + "cluster"
LABEL_DATA = LABEL_PREFIX + "data"
LABEL_ROLE = LABEL_PREFIX + "role"
LABEL_PGBACKREST_DEDICATED = LABEL_PREFIX + "pgbackrest-dedicated"
LABEL_CONTROL_PLANE = LABEL_PREFIX + "control-plane"
LABEL_APP_NAME = "app.kubernetes.io/name"
LABEL_APP_VERSION = "app.kubernetes.io/version"

DATA_POSTGRES = "postgres"

# Patroni sets this role on the Pod that is currently the leader.
ROLE_PATRONI_LEADER = "master"

CONTROL_PLANE_OPERATOR = "postgres-operator"
MONITORING_APP_NAME = "postgres-operator-monitoring"

# Container running PostgreSQL and its supporting tools: Patroni, pgBackRest, etc.
CONTAINER_DATABASE = "database"
# Container of the dedicated pgBackRest repository host.
CONTAINER_PGBACKREST = "pgbackrest"

PGO_GROUP = "postgres-operator.crunchydata.com"
PGO_VERSION = "v1beta1"
POSTGRESCLUSTERS = "postgresclusters"
PGUPGRADES = "pgupgrades"
POSTGRESCLUSTER_CRD = f"{POSTGRESCLUSTERS}.{PGO_GROUP}"


def _selector(labels: dict[str, str]) -> str:
    return ",".join(f"{key}={value}" if value else key for key, value in labels.items())


def cluster_labels(cluster_name: str) -> str:
    """Selector matching every object that belongs to the PostgresCluster."""
    return _selector({LABEL_CLUSTER: cluster_name})


def instance_labels(cluster_name: str) -> str:
    """Selector matching the Pods that store Postgres data."""
    return _selector({LABEL_CLUSTER: cluster_name, LABEL_DATA: DATA_POSTGRES})


def primary_instance_labels(cluster_name: str) -> str:
    """Selector matching the primary instance Pod."""
    return _selector(
        {
            LABEL_CLUSTER: cluster_name,
            LABEL_DATA: DATA_POSTGRES,
            LABEL_ROLE: ROLE_PATRONI_LEADER,
        }
    )


def repo_host_labels(cluster_name: str) -> str:
    """Selector matching the dedicated pgBackRest repository host Pod."""
    return _selector({LABEL_CLUSTER: cluster_name, LABEL_PGBACKREST_DEDICATED: ""})


def operator_labels() -> str:
    return _selector({LABEL_CONTROL_PLANE: CONTROL_PLANE_OPERATOR})


def monitoring_labels() -> str:
    return _selector({LABEL_APP_NAME: MONITORING_APP_NAME})
