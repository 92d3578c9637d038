"""List resource kinds through the dynamic client and archive them as tables and YAML."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import yaml
from kubernetes.client.rest import ApiException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import ResourceNotFoundError

from pgo_support.archive import ArchiveEntry, ArchiveWriter
from pgo_support.collection.models import ResourceKindSpec
from pgo_support.collection.tables import summarize
from pgo_support.errors import describe, is_forbidden, is_not_found

logger = logging.getLogger(__name__)


@dataclass
class ResourceListing:
    """Items returned for a kind, and the kind that actually answered."""

    kind: ResourceKindSpec
    items: list[dict[str, Any]] = field(default_factory=list)


def _list(
    dynamic: DynamicClient,
    kind: ResourceKindSpec,
    namespace: str | None,
    label_selector: str | None,
) -> list[dict[str, Any]]:
    api = dynamic.resources.get(api_version=kind.api_version, name=kind.resource)
    kwargs: dict[str, Any] = {}
    if namespace:
        kwargs["namespace"] = namespace
    if label_selector:
        kwargs["label_selector"] = label_selector
    data = api.get(**kwargs).to_dict()
    items = data.get("items") or []
    # Items in a list response omit their own apiVersion and kind.
    item_kind = str(data.get("kind", "")).removesuffix("List")
    for item in items:
        item.setdefault("apiVersion", kind.api_version)
        if item_kind:
            item.setdefault("kind", item_kind)
    return items


def list_with_fallback(
    dynamic: DynamicClient,
    kind: ResourceKindSpec,
    namespace: str | None = None,
    label_selector: str | None = None,
) -> ResourceListing:
    """
    List kind. When the server does not know the kind and a fallback is
    registered, list the fallback once instead. Any other error, including a
    second "not found", is raised.
    """
    try:
        return ResourceListing(kind=kind, items=_list(dynamic, kind, namespace, label_selector))
    except (ApiException, ResourceNotFoundError) as e:
        if kind.fallback is None or not is_not_found(e):
            raise
        logger.debug("%s not found, trying %s", kind, kind.fallback)
    fallback = kind.fallback
    return ResourceListing(kind=fallback, items=_list(dynamic, fallback, namespace, label_selector))


def manifest(item: dict[str, Any]) -> bytes:
    return yaml.safe_dump(item, sort_keys=False, default_flow_style=False).encode("utf-8")


class ResourceCollector:
    """Writes a summary table and one manifest per item for each resource kind."""

    def __init__(
        self,
        dynamic: DynamicClient,
        writer: ArchiveWriter,
        run_logger: logging.Logger | None = None,
    ) -> None:
        self.dynamic = dynamic
        self.writer = writer
        self.log = run_logger or logger

    def list(
        self,
        kind: ResourceKindSpec,
        namespace: str | None,
        label_selector: str | None,
        prefix: str,
    ) -> tuple[bytes | None, list[ArchiveEntry]]:
        """
        Entries for one kind: ``<prefix>/<resource>/list`` and
        ``<prefix>/<resource>/<name>.yaml`` in the order the API returned them.
        An empty list yields no entries.
        """
        listing = list_with_fallback(self.dynamic, kind, namespace, label_selector)
        resource = listing.kind.resource
        if not listing.items:
            self.log.info("Resource %s not found, skipping", resource)
            return None, []

        table = summarize(resource, listing.items)
        entries = [ArchiveEntry(path=f"{prefix}/{resource}/list", content=table)]
        for item in listing.items:
            name = (item.get("metadata") or {}).get("name", "")
            entries.append(ArchiveEntry(path=f"{prefix}/{resource}/{name}.yaml", content=manifest(item)))
        return table, entries

    def collect(
        self,
        kinds: list[ResourceKindSpec],
        namespace: str | None,
        label_selector: str | None,
        prefix: str,
    ) -> int:
        """
        Archive every kind. A Forbidden kind, or one the server does not serve in
        any known version, is logged and skipped so that the rest still get
        collected; any other error is raised.
        Returns the number of entries written.
        """
        written = 0
        for kind in kinds:
            try:
                _, entries = self.list(kind, namespace, label_selector, prefix)
            except (ApiException, ResourceNotFoundError) as e:
                if is_forbidden(e):
                    self.log.info("%s", describe(e))
                    continue
                if is_not_found(e):
                    self.log.info("Resource %s not found, skipping", kind.resource)
                    continue
                raise
            for entry in entries:
                self.writer.write(entry)
                written += 1
        return written
