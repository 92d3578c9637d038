"""Collection steps. Each takes the RunContext and writes its findings to the archive.

Steps raise on failure; the orchestrator decides whether an error is a
skippable RBAC denial or a failed step, and moves on either way. Errors that
only affect one item of a step (one pod, one file) are handled here so the
rest of the step still runs.
"""

from __future__ import annotations

import subprocess
from datetime import datetime
from typing import Any

import urllib3
from kubernetes.client.rest import ApiException

from pgo_support import __version__, naming
from pgo_support.collection import (
    NAMESPACED_RESOURCES,
    OPERATOR_RESOURCES,
    OTHER_NAMESPACED_RESOURCES,
    ResourceCollector,
    manifest,
    summarize,
    summarize_events,
)
from pgo_support.errors import (
    CollectionError,
    RemoteCommandError,
    describe,
    is_forbidden,
    is_not_found,
)
from pgo_support.export.context import RunContext
from pgo_support.remote import ExecResult, Executor, is_missing_path, split_lines
from pgo_support.remote.executor import PATRONICTL_COMMANDS

# --- helpers -----------------------------------------------------------------


def _list_pods(run: RunContext, selector: str, namespace: str | None = None) -> list[Any]:
    pods = run.clients.core.list_namespaced_pod(namespace or run.namespace, label_selector=selector)
    return list(pods.items or [])


def _primary_pod(run: RunContext) -> str:
    pods = _list_pods(run, naming.primary_instance_labels(run.cluster_name))
    if len(pods) != 1:
        raise CollectionError(f"expected one primary instance pod, found {len(pods)}")
    return pods[0].metadata.name


def _collector(run: RunContext) -> ResourceCollector:
    return ResourceCollector(run.clients.dynamic, run.writer, run_logger=run.logger)


def _section(title: str, result: ExecResult) -> str:
    text = f"{title}\n{result.stdout}"
    if result.stderr:
        text += f"\nError returned: {result.stderr}\n"
    return text


def _run_section(title: str, call) -> str:
    """Output of one diagnostic command; a failing command is recorded in place."""
    try:
        return _section(title, call())
    except RemoteCommandError as e:
        return f"{title}\nError returned: {e}\n"


def _listed_files(run: RunContext, pod: str, what: str, call) -> list[str]:
    """File names from an ls helper. Missing directories are noted, not raised."""
    try:
        result = call()
    except RemoteCommandError as e:
        if is_missing_path(e.stderr):
            run.debug("No %s in pod %s: %s", what, pod, e.stderr.strip())
            return []
        raise
    if result.stderr:
        if is_missing_path(result.stderr):
            run.debug("No %s in pod %s: %s", what, pod, result.stderr.strip())
        else:
            run.info("%s", result.stderr.strip())
    return split_lines(result.stdout)


def _stream_files(run: RunContext, pods: list[Any], container: str, what: str, listers) -> None:
    """List files with each lister and stream them out of every pod."""
    if not pods:
        run.info("No pods found for %s, skipping", what)
        return
    for pod in pods:
        name = pod.metadata.name
        executor = run.executor(name, container)
        paths: list[str] = []
        for lister in listers:
            paths.extend(_listed_files(run, name, what, lambda: lister(executor)))
        if not paths:
            continue
        copied = run.streamer(executor).stream_pod_files(
            run.namespace, name, container, paths, run.cluster_name
        )
        run.debug("Archived %d of %d %s from pod %s", copied, len(paths), what, name)


def _archive_pod_logs(run: RunContext, pods: list[Any], namespace: str, prefix: str) -> None:
    """Container logs, including init containers and the previous run of restarted containers."""
    core = run.clients.core
    for pod in pods:
        name = pod.metadata.name
        containers = list(pod.spec.containers or []) + list(pod.spec.init_containers or [])
        statuses = list(pod.status.container_statuses or []) + list(pod.status.init_container_statuses or [])
        restarts = {s.name: s.restart_count or 0 for s in statuses}

        for container in containers:
            runs = [(False, f"{container.name}.log")]
            if restarts.get(container.name):
                runs.append((True, f"{container.name}-previous.log"))
            for previous, filename in runs:
                try:
                    resp = core.read_namespaced_pod_log(
                        name,
                        namespace,
                        container=container.name,
                        previous=previous,
                        _preload_content=False,
                    )
                except ApiException as e:
                    # 400 is returned for containers that have not started yet.
                    if is_forbidden(e) or e.status == 400:
                        run.info("%s", describe(e))
                        continue
                    raise
                run.write(f"{prefix}/pods/{name}/logs/{filename}", resp.data)


# --- cluster wide ------------------------------------------------------------


def gather_cli_version(run: RunContext) -> None:
    """Client version and the operator version labelled on the PostgresCluster CRD."""
    lines = [f"Client Version: v{__version__}"]
    try:
        crd = run.clients.apiextensions.read_custom_resource_definition(naming.POSTGRESCLUSTER_CRD)
    except ApiException as e:
        if not (is_forbidden(e) or is_not_found(e)):
            raise
        lines.append(f"Operator version not available: {describe(e)}")
    else:
        version = (crd.metadata.labels or {}).get(naming.LABEL_APP_VERSION)
        lines.append(f"Operator Version: v{version}" if version else "Operator version not found.")
    run.write(f"{run.cluster_name}/pgo-cli-version", "\n".join(lines) + "\n")


def gather_cluster_names(run: RunContext) -> None:
    clusters = run.clients.custom.list_namespaced_custom_object(
        naming.PGO_GROUP, naming.PGO_VERSION, run.namespace, naming.POSTGRESCLUSTERS
    )
    names = [item.get("metadata", {}).get("name", "") for item in clusters.get("items", [])]
    run.write(f"{run.cluster_name}/cluster-names", "".join(f"{name}\n" for name in names))


def gather_kube_context(run: RunContext) -> None:
    run.write(f"{run.cluster_name}/current-context", f"{run.clients.target.context}\n")


def gather_server_version(run: RunContext) -> None:
    info = run.clients.version.get_code()
    run.write(f"{run.cluster_name}/server-version", f"{info.git_version}\n")


def gather_nodes(run: RunContext) -> None:
    """Nodes in -o wide columns. Needs cluster-scoped list on nodes."""
    nodes = run.clients.to_dict(run.clients.core.list_node())
    items = nodes.get("items") or []
    if not items:
        run.info("Resource nodes not found, skipping")
        return
    run.write(f"{run.cluster_name}/nodes/list", summarize("nodes", items))


def gather_current_namespace(run: RunContext) -> None:
    namespace = run.clients.to_dict(run.clients.core.read_namespace(run.namespace))
    run.write(f"{run.cluster_name}/current-namespace.yaml", manifest(namespace))


# --- namespaced resources ----------------------------------------------------


def gather_cluster_manifest(run: RunContext) -> None:
    if run.cluster is None:
        raise CollectionError(
            f"PostgresCluster {run.cluster_name} was not available in namespace {run.namespace}"
        )
    run.write(f"{run.cluster_name}/postgrescluster.yaml", manifest(run.cluster))


def gather_namespaced_resources(run: RunContext) -> None:
    _collector(run).collect(
        NAMESPACED_RESOURCES,
        run.namespace,
        naming.cluster_labels(run.cluster_name),
        run.cluster_name,
    )


def gather_other_namespaced_resources(run: RunContext) -> None:
    """Namespace objects that affect the cluster without carrying its label."""
    _collector(run).collect(OTHER_NAMESPACED_RESOURCES, run.namespace, None, run.cluster_name)


def gather_events(run: RunContext) -> None:
    events = run.clients.to_dict(run.clients.core.list_namespaced_event(run.namespace))
    run.write(f"{run.cluster_name}/events", summarize_events(events.get("items") or []))


# --- files from containers ---------------------------------------------------


def gather_postgres_logs(run: RunContext) -> None:
    """The newest Postgres logs and the configuration files of every instance."""
    count = run.options.pg_logs_count
    _stream_files(
        run,
        _list_pods(run, naming.instance_labels(run.cluster_name)),
        naming.CONTAINER_DATABASE,
        "Postgres logs and configuration",
        [lambda ex: ex.list_pg_logs(count), Executor.list_pg_configs],
    )


def gather_pgbackrest_logs(run: RunContext) -> None:
    count = run.options.pg_logs_count
    _stream_files(
        run,
        _list_pods(run, naming.instance_labels(run.cluster_name)),
        naming.CONTAINER_DATABASE,
        "pgBackRest logs",
        [lambda ex: ex.list_pgbackrest_logs(count)],
    )


def gather_patroni_logs(run: RunContext) -> None:
    count = run.options.pg_logs_count
    _stream_files(
        run,
        _list_pods(run, naming.instance_labels(run.cluster_name)),
        naming.CONTAINER_DATABASE,
        "Patroni logs",
        [lambda ex: ex.list_patroni_logs(count)],
    )


def gather_repo_host_logs(run: RunContext) -> None:
    count = run.options.pg_logs_count
    _stream_files(
        run,
        _list_pods(run, naming.repo_host_labels(run.cluster_name)),
        naming.CONTAINER_PGBACKREST,
        "pgBackRest repo host logs",
        [lambda ex: ex.list_repo_host_logs(count)],
    )


# --- pod logs ------------------------------------------------------------------


def gather_pod_logs(run: RunContext) -> None:
    pods = _list_pods(run, naming.cluster_labels(run.cluster_name))
    _archive_pod_logs(run, pods, run.namespace, run.cluster_name)


def gather_monitoring_logs(run: RunContext) -> None:
    namespace = run.options.monitoring_namespace or run.namespace
    pods = _list_pods(run, naming.monitoring_labels(), namespace)
    if not pods:
        run.info("No monitoring pods found in namespace %s, skipping", namespace)
        return
    _archive_pod_logs(run, pods, namespace, "monitoring")


def gather_operator(run: RunContext) -> None:
    """Operator Deployment, ReplicaSets, Pods, and the logs of its containers."""
    namespace = run.options.operator_namespace or run.namespace
    _collector(run).collect(OPERATOR_RESOURCES, namespace, naming.operator_labels(), "operator")
    pods = _list_pods(run, naming.operator_labels(), namespace)
    if not pods:
        run.info("No operator pods found in namespace %s, skipping", namespace)
        return
    _archive_pod_logs(run, pods, namespace, "operator")


# --- commands run in containers ----------------------------------------------


def gather_patroni_info(run: RunContext) -> None:
    executor = run.executor(_primary_pod(run), naming.CONTAINER_DATABASE)
    text = "".join(
        _run_section(f"patronictl {sub}", lambda sub=sub: executor.patronictl(sub))
        for sub in PATRONICTL_COMMANDS
    )
    run.write(f"{run.cluster_name}/patroni-info", text)


def gather_pgbackrest_info(run: RunContext) -> None:
    executor = run.executor(_primary_pod(run), naming.CONTAINER_DATABASE)
    text = _run_section("pgbackrest info", executor.pgbackrest_info)
    text += _run_section("pgbackrest check", executor.pgbackrest_check)
    run.write(f"{run.cluster_name}/pgbackrest-info", text)


def gather_process_info(run: RunContext) -> None:
    pods = _list_pods(run, naming.instance_labels(run.cluster_name))
    for pod in pods:
        name = pod.metadata.name
        try:
            result = run.executor(name, naming.CONTAINER_DATABASE).processes()
        except RemoteCommandError as e:
            run.info("Could not list processes in pod %s: %s", name, e)
            continue
        run.write(f"{run.cluster_name}/processes/{name}", _section("ps aux --width 500", result))


def gather_system_time(run: RunContext) -> None:
    """Local time next to the time in every instance, to spot clock skew."""
    lines = [f"Local time: {datetime.now().astimezone().strftime('%a %b %d %H:%M:%S %Z %Y')}"]
    for pod in _list_pods(run, naming.instance_labels(run.cluster_name)):
        name = pod.metadata.name
        try:
            result = run.executor(name, naming.CONTAINER_DATABASE).system_time()
        except RemoteCommandError as e:
            lines.append(f"{name}: error: {e}")
            continue
        lines.append(f"{name}: {result.stdout.strip()}")
    run.write(f"{run.cluster_name}/system-time", "\n".join(lines) + "\n")


# --- bounded lookups -----------------------------------------------------------


def gather_plugin_list(run: RunContext) -> None:
    """kubectl plugins installed on this workstation."""
    command = ["kubectl", "plugin", "list"]
    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=run.options.command_timeout,
        )
    except FileNotFoundError:
        run.info("kubectl not found in PATH, skipping plugin list")
        return
    except subprocess.TimeoutExpired:
        run.info("kubectl plugin list timed out after %gs, skipping", run.options.command_timeout)
        return
    text = result.stdout
    if result.stderr:
        text += result.stderr
    run.write(f"{run.cluster_name}/plugin-list", text)


def gather_pgupgrade(run: RunContext) -> None:
    """PGUpgrade objects that target this cluster, when the PGUpgrade API is installed."""
    try:
        upgrades = run.clients.custom.list_namespaced_custom_object(
            naming.PGO_GROUP,
            naming.PGO_VERSION,
            run.namespace,
            naming.PGUPGRADES,
            _request_timeout=run.options.command_timeout,
        )
    except ApiException as e:
        if not is_not_found(e):
            raise
        run.info("PGUpgrade API not found, skipping")
        return
    except (urllib3.exceptions.TimeoutError, urllib3.exceptions.MaxRetryError) as e:
        run.info("PGUpgrade lookup did not finish within %gs: %s", run.options.command_timeout, e)
        return

    found = False
    for item in upgrades.get("items", []):
        if (item.get("spec") or {}).get("postgresClusterName") != run.cluster_name:
            continue
        found = True
        name = item.get("metadata", {}).get("name", "")
        run.write(f"{run.cluster_name}/pgupgrades/{name}.yaml", manifest(item))
    if not found:
        run.info("No PGUpgrade found for %s, skipping", run.cluster_name)
