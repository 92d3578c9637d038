"""Tests for individual collection steps."""

from __future__ import annotations

import subprocess
from types import SimpleNamespace

import pytest
import urllib3
from kubernetes.client.rest import ApiException

from pgo_support import naming
from pgo_support.archive import ArchiveWriter
from pgo_support.errors import CollectionError
from pgo_support.export import ExportOptions, RunContext
from pgo_support.export import steps
from pgo_support.remote import StagingArea

from conftest import CLUSTER, NAMESPACE, FakeContainer, archive_names, archive_text, forbidden, make_pod

INSTANCE = "hippo-instance1-abcd-0"


@pytest.fixture
def run(fake_cluster, options, console, tmp_path):
    ctx = RunContext(options, fake_cluster.clients, console=console, cluster=fake_cluster.cluster)
    ctx.writer = ArchiveWriter.open(tmp_path / "steps.tar.gz", run_logger=ctx.logger)
    ctx.staging = StagingArea(tmp_path / "staging")
    yield ctx
    if not ctx.writer.closed:
        ctx.writer.close()
    ctx.close()


def _names(run):
    run.writer.close()
    return archive_names(run.options.output_dir / "steps.tar.gz")


def _text(run, name):
    if not run.writer.closed:
        run.writer.close()
    return archive_text(run.options.output_dir / "steps.tar.gz", name)


def test_pg_logs_count_limits_listing(run, fake_cluster):
    fake_cluster.database.files.update(
        {
            "pgdata/pg16/log/postgresql-Sun.log": b"a\n",
            "pgdata/pg16/log/postgresql-Sat.log": b"b\n",
        }
    )
    run.options = run.options.model_copy(update={"pg_logs_count": 1})

    steps.gather_postgres_logs(run)

    assert "ls -1dt pgdata/pg[0-9][0-9]/log/* | head -1" in fake_cluster.database.scripts
    logs = [n for n in _names(run) if "/log/" in n]
    assert len(logs) == 1


def test_missing_log_directory_is_not_an_error(run, fake_cluster):
    fake_cluster.pgbackrest.files.clear()

    steps.gather_repo_host_logs(run)

    assert _names(run) == []


def test_pod_logs_include_previous_run_and_skip_unstarted(run, fake_cluster):
    pod = make_pod(INSTANCE, ["database"], ["postgres-startup"], restarts={"database": 3})
    fake_cluster.clients.core.list_namespaced_pod.side_effect = None
    fake_cluster.clients.core.list_namespaced_pod.return_value = SimpleNamespace(items=[pod])

    def read_log(name, namespace, container=None, previous=False, **kwargs):
        if container == "postgres-startup":
            raise ApiException(status=400, reason="Bad Request")
        return SimpleNamespace(data=f"{container} previous={previous}\n".encode())

    fake_cluster.clients.core.read_namespaced_pod_log.side_effect = read_log

    steps.gather_pod_logs(run)

    assert _names(run) == [
        f"hippo/pods/{INSTANCE}/logs/database.log",
        f"hippo/pods/{INSTANCE}/logs/database-previous.log",
    ]
    assert _text(run, f"hippo/pods/{INSTANCE}/logs/database-previous.log") == "database previous=True\n"


def test_operator_version_unavailable(run, fake_cluster):
    fake_cluster.clients.apiextensions.read_custom_resource_definition.side_effect = forbidden()

    steps.gather_cli_version(run)

    text = _text(run, "hippo/pgo-cli-version")
    assert text.startswith("Client Version: v")
    assert "Operator version not available: (403) Forbidden" in text


def test_patroni_info_needs_one_primary(run, fake_cluster):
    fake_cluster.clients.core.list_namespaced_pod.side_effect = None
    fake_cluster.clients.core.list_namespaced_pod.return_value = SimpleNamespace(items=[])

    with pytest.raises(CollectionError, match="found 0"):
        steps.gather_patroni_info(run)


def test_pgbackrest_info_records_command_failures(run, fake_cluster):
    del fake_cluster.database.outputs["pgbackrest check --stanza=db"]

    steps.gather_pgbackrest_info(run)

    text = _text(run, "hippo/pgbackrest-info")
    assert "pgbackrest info\nstanza: db" in text
    assert "pgbackrest check\nError returned:" in text


def test_system_time_lists_local_and_pod_time(run):
    steps.gather_system_time(run)

    lines = _text(run, "hippo/system-time").splitlines()
    assert lines[0].startswith("Local time: ")
    assert lines[1] == f"{INSTANCE}: Sun Oct 18 12:00:00 UTC 2026"


def test_plugin_list_written(run, monkeypatch):
    def fake_run(command, capture_output, text, timeout):
        assert command == ["kubectl", "plugin", "list"]
        assert timeout == 30.0
        return subprocess.CompletedProcess(command, 0, stdout="/usr/local/bin/kubectl-pgo\n", stderr="")

    monkeypatch.setattr("pgo_support.export.steps.subprocess.run", fake_run)
    steps.gather_plugin_list(run)

    assert _text(run, "hippo/plugin-list") == "/usr/local/bin/kubectl-pgo\n"


def test_plugin_list_timeout_is_skipped(run, monkeypatch):
    def slow(command, **kwargs):
        raise subprocess.TimeoutExpired(command, kwargs["timeout"])

    monkeypatch.setattr("pgo_support.export.steps.subprocess.run", slow)
    steps.gather_plugin_list(run)

    assert _names(run) == []


def test_pgupgrade_only_for_this_cluster(run, fake_cluster):
    upgrades = {
        "items": [
            {"metadata": {"name": "hippo-upgrade"}, "spec": {"postgresClusterName": CLUSTER}},
            {"metadata": {"name": "rhino-upgrade"}, "spec": {"postgresClusterName": "rhino"}},
        ]
    }
    fake_cluster.clients.custom.list_namespaced_custom_object.side_effect = None
    fake_cluster.clients.custom.list_namespaced_custom_object.return_value = upgrades

    steps.gather_pgupgrade(run)

    args = fake_cluster.clients.custom.list_namespaced_custom_object.call_args
    assert args.args[3] == naming.PGUPGRADES
    assert args.kwargs["_request_timeout"] == 30.0
    assert _names(run) == ["hippo/pgupgrades/hippo-upgrade.yaml"]


def test_pgupgrade_timeout_is_skipped(run, fake_cluster):
    fake_cluster.clients.custom.list_namespaced_custom_object.side_effect = urllib3.exceptions.ReadTimeoutError(
        None, "/apis", "Read timed out."
    )

    steps.gather_pgupgrade(run)

    assert _names(run) == []


def test_monitoring_uses_its_own_namespace(run, fake_cluster):
    run.options = ExportOptions(
        cluster_name=CLUSTER,
        namespace=NAMESPACE,
        output_dir=run.options.output_dir,
        monitoring_namespace="monitoring",
    )
    monitor = make_pod("crunchy-prometheus-0", ["prometheus"])

    def list_pods(namespace, label_selector=None, **kwargs):
        if namespace == "monitoring" and label_selector == naming.monitoring_labels():
            return SimpleNamespace(items=[monitor])
        return SimpleNamespace(items=[])

    fake_cluster.clients.core.list_namespaced_pod.side_effect = list_pods

    steps.gather_monitoring_logs(run)

    assert _names(run) == ["monitoring/pods/crunchy-prometheus-0/logs/prometheus.log"]
    assert fake_cluster.clients.core.read_namespaced_pod_log.call_args.args[1] == "monitoring"


def test_process_info_continues_past_a_failing_pod(run, fake_cluster, pod_executors):
    broken = make_pod("hippo-instance1-efgh-0", ["database"])
    healthy = make_pod(INSTANCE, ["database"])
    fake_cluster.clients.core.list_namespaced_pod.side_effect = None
    fake_cluster.clients.core.list_namespaced_pod.return_value = SimpleNamespace(items=[broken, healthy])
    pod_executors.containers[("hippo-instance1-efgh-0", "database")] = FakeContainer()

    steps.gather_process_info(run)

    assert _names(run) == [f"hippo/processes/{INSTANCE}"]
