"""Aligned-column summaries of Kubernetes objects, in the spirit of kubectl get."""

from __future__ import annotations

import io
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable

from rich.console import Console
from rich.table import Table
from rich.text import Text

TABLE_WIDTH = 4096
UNKNOWN = "<unknown>"
NONE = "<none>"

Row = list[str]
Column = tuple[str, Callable[[dict[str, Any], datetime], str]]


def render_table(headers: Iterable[str], rows: Iterable[Iterable[str]]) -> bytes:
    """Render rows as plain text columns separated by spaces."""
    table = Table(box=None, show_edge=False, pad_edge=False, header_style="none")
    for header in headers:
        table.add_column(Text(header), no_wrap=True, overflow="ignore")
    for row in rows:
        table.add_row(*(Text(str(cell)) for cell in row))

    buf = io.StringIO()
    console = Console(
        file=buf,
        width=TABLE_WIDTH,
        color_system=None,
        force_terminal=False,
        highlight=False,
        emoji=False,
    )
    console.print(table)
    lines = [line.rstrip() for line in buf.getvalue().splitlines()]
    return ("\n".join(lines) + "\n").encode("utf-8")


def parse_time(value: Any) -> datetime | None:
    """Parse an RFC 3339 timestamp as the API server sends it."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def human_duration(delta: timedelta) -> str:
    """Approximate a duration the way kubectl prints ages."""
    seconds = int(delta.total_seconds())
    # Up to a second into the future is treated as now.
    if seconds < -1:
        return "<invalid>"
    if seconds < 0:
        return "0s"
    if seconds < 60 * 2:
        return f"{seconds}s"
    minutes = seconds // 60
    if minutes < 10:
        s = seconds % 60
        return f"{minutes}m" if s == 0 else f"{minutes}m{s}s"
    if minutes < 60 * 3:
        return f"{minutes}m"
    hours = minutes // 60
    if hours < 8:
        m = minutes % 60
        return f"{hours}h" if m == 0 else f"{hours}h{m}m"
    if hours < 48:
        return f"{hours}h"
    if hours < 24 * 8:
        h = hours % 24
        return f"{hours // 24}d" if h == 0 else f"{hours // 24}d{h}h"
    if hours < 24 * 365 * 2:
        return f"{hours // 24}d"
    if hours < 24 * 365 * 8:
        dy = (hours // 24) % 365
        years = hours // 24 // 365
        return f"{years}y" if dy == 0 else f"{years}y{dy}d"
    return f"{hours // 24 // 365}y"


def since(value: Any, now: datetime) -> str:
    timestamp = parse_time(value)
    if timestamp is None:
        return UNKNOWN
    return human_duration(now - timestamp)


def _get(obj: Any, *keys: str, default: Any = None) -> Any:
    for key in keys:
        if not isinstance(obj, dict):
            return default
        obj = obj.get(key)
        if obj is None:
            return default
    return obj


def _name(item: dict[str, Any], now: datetime) -> str:
    return _get(item, "metadata", "name", default="")


def _age(item: dict[str, Any], now: datetime) -> str:
    return since(_get(item, "metadata", "creationTimestamp"), now)


def _pod_ready(item: dict[str, Any], now: datetime) -> str:
    statuses = _get(item, "status", "containerStatuses", default=[])
    total = len(_get(item, "spec", "containers", default=[])) or len(statuses)
    ready = sum(1 for s in statuses if s.get("ready"))
    return f"{ready}/{total}"


def _pod_status(item: dict[str, Any], now: datetime) -> str:
    if _get(item, "metadata", "deletionTimestamp"):
        return "Terminating"
    for status in _get(item, "status", "containerStatuses", default=[]):
        waiting = _get(status, "state", "waiting")
        if waiting and waiting.get("reason"):
            return waiting["reason"]
        terminated = _get(status, "state", "terminated")
        if terminated and terminated.get("reason"):
            return terminated["reason"]
    return _get(item, "status", "reason") or _get(item, "status", "phase", default=UNKNOWN)


def _pod_restarts(item: dict[str, Any], now: datetime) -> str:
    statuses = _get(item, "status", "containerStatuses", default=[])
    return str(sum(int(s.get("restartCount") or 0) for s in statuses))


def _ratio(ready_key: str, total_key: str, total_from: str = "status") -> Callable[[dict[str, Any], datetime], str]:
    def column(item: dict[str, Any], now: datetime) -> str:
        ready = _get(item, "status", ready_key, default=0)
        total = _get(item, total_from, total_key, default=0)
        return f"{ready}/{total}"

    return column


def _field(*keys: str, default: str = "0") -> Callable[[dict[str, Any], datetime], str]:
    def column(item: dict[str, Any], now: datetime) -> str:
        value = _get(item, *keys)
        return default if value is None or value == "" else str(value)

    return column


def _service_ports(item: dict[str, Any], now: datetime) -> str:
    ports = _get(item, "spec", "ports", default=[])
    if not ports:
        return NONE
    return ",".join(f"{p.get('port')}/{p.get('protocol', 'TCP')}" for p in ports)


def _pvc_capacity(item: dict[str, Any], now: datetime) -> str:
    return _get(item, "status", "capacity", "storage", default="")


def _node_status(item: dict[str, Any], now: datetime) -> str:
    ready = "Unknown"
    for condition in _get(item, "status", "conditions", default=[]):
        if condition.get("type") == "Ready":
            ready = "Ready" if condition.get("status") == "True" else "NotReady"
    if _get(item, "spec", "unschedulable"):
        ready += ",SchedulingDisabled"
    return ready


def _node_roles(item: dict[str, Any], now: datetime) -> str:
    labels = _get(item, "metadata", "labels", default={})
    prefix = "node-role.kubernetes.io/"
    roles = sorted(key[len(prefix):] for key in labels if key.startswith(prefix))
    return ",".join(roles) or NONE


def _node_internal_ip(item: dict[str, Any], now: datetime) -> str:
    for address in _get(item, "status", "addresses", default=[]):
        if address.get("type") == "InternalIP":
            return address.get("address", NONE)
    return NONE


def _node_info(key: str) -> Callable[[dict[str, Any], datetime], str]:
    return _field("status", "nodeInfo", key, default=UNKNOWN)


NAME: Column = ("NAME", _name)
AGE: Column = ("AGE", _age)

COLUMNS: dict[str, list[Column]] = {
    "pods": [NAME, ("READY", _pod_ready), ("STATUS", _pod_status), ("RESTARTS", _pod_restarts), AGE],
    "statefulsets": [NAME, ("READY", _ratio("readyReplicas", "replicas", "spec")), AGE],
    "deployments": [
        NAME,
        ("READY", _ratio("readyReplicas", "replicas", "spec")),
        ("UP-TO-DATE", _field("status", "updatedReplicas")),
        ("AVAILABLE", _field("status", "availableReplicas")),
        AGE,
    ],
    "replicasets": [
        NAME,
        ("DESIRED", _field("spec", "replicas")),
        ("CURRENT", _field("status", "replicas")),
        ("READY", _field("status", "readyReplicas")),
        AGE,
    ],
    "jobs": [NAME, ("COMPLETIONS", _ratio("succeeded", "completions", "spec")), AGE],
    "services": [
        NAME,
        ("TYPE", _field("spec", "type", default="ClusterIP")),
        ("CLUSTER-IP", _field("spec", "clusterIP", default=NONE)),
        ("PORT(S)", _service_ports),
        AGE,
    ],
    "persistentvolumeclaims": [
        NAME,
        ("STATUS", _field("status", "phase", default=UNKNOWN)),
        ("VOLUME", _field("spec", "volumeName", default="")),
        ("CAPACITY", _pvc_capacity),
        ("STORAGECLASS", _field("spec", "storageClassName", default="")),
        AGE,
    ],
    "nodes": [
        NAME,
        ("STATUS", _node_status),
        ("ROLES", _node_roles),
        AGE,
        ("VERSION", _node_info("kubeletVersion")),
        ("INTERNAL-IP", _node_internal_ip),
        ("OS-IMAGE", _node_info("osImage")),
        ("KERNEL-VERSION", _node_info("kernelVersion")),
        ("CONTAINER-RUNTIME", _node_info("containerRuntimeVersion")),
    ],
}

DEFAULT_COLUMNS: list[Column] = [NAME, AGE]


def summarize(resource: str, items: list[dict[str, Any]], now: datetime | None = None) -> bytes:
    """Table of items with columns chosen by resource, in the order given."""
    now = now or datetime.now(timezone.utc)
    columns = COLUMNS.get(resource, DEFAULT_COLUMNS)
    rows = [[fn(item, now) for _, fn in columns] for item in items]
    return render_table([header for header, _ in columns], rows)


def summarize_events(events: list[dict[str, Any]], now: datetime | None = None) -> bytes:
    """Events table with the same columns as kubectl events."""
    now = now or datetime.now(timezone.utc)
    rows: list[Row] = []
    for event in events:
        first_seen = since(event.get("eventTime"), now)
        if not parse_time(event.get("eventTime")):
            first_seen = since(event.get("firstTimestamp"), now)
        series = event.get("series")
        if series:
            interval = (
                f"{since(series.get('lastObservedTime'), now)} "
                f"(x{series.get('count', 0)} over {first_seen})"
            )
        else:
            interval = first_seen
        involved = event.get("involvedObject") or {}
        rows.append(
            [
                interval,
                event.get("type") or "",
                event.get("reason") or "",
                f"{involved.get('kind', '')}/{involved.get('name', '')}",
                (event.get("message") or "").strip(),
            ]
        )
    return render_table(["LAST SEEN", "TYPE", "REASON", "OBJECT", "MESSAGE"], rows)
