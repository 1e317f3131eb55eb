"""Sets of Kubernetes resources loaded from files and applied to a cluster."""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from servingop.apis import GroupResource, KnativeServing, NotFoundError

Transformer = Callable[["Unstructured"], None]

_MANIFEST_SUFFIXES = frozenset({".yaml", ".yml", ".json"})

_CLUSTER_SCOPED_KINDS = frozenset(
    {
        "apiservice",
        "clusterrole",
        "clusterrolebinding",
        "customresourcedefinition",
        "mutatingwebhookconfiguration",
        "namespace",
        "node",
        "persistentvolume",
        "podsecuritypolicy",
        "priorityclass",
        "storageclass",
        "validatingwebhookconfiguration",
    }
)


@dataclass
class Unstructured:
    """A Kubernetes object held as plain nested dictionaries."""

    object: dict[str, Any] = field(default_factory=dict)

    def get_nested(self, *args: str) -> Any:
        """Return the value at the given field path; raise KeyError if absent."""
        value: Any = self.object
        for name in args:
            if not isinstance(value, dict) or name not in value:
                raise KeyError(".".join(args))
            value = value[name]
        return value

    def set_nested(self, value: Any, *args: str) -> None:
        """Set the value at the given field path, creating maps on the way."""
        *parents, last = args
        target = self.object
        for name in parents:
            child = target.setdefault(name, {})
            if not isinstance(child, dict):
                raise TypeError(f"{name} is not a map")
            target = child
        target[last] = value

    def deep_copy(self) -> Unstructured:
        return Unstructured(copy.deepcopy(self.object))

    def _get_str(self, *args: str) -> str:
        try:
            return self.get_nested(*args) or ""
        except KeyError:
            return ""

    def _set_str(self, value: str, *args: str) -> None:
        if value:
            self.set_nested(value, *args)
            return
        try:
            parent = self.get_nested(*args[:-1]) if len(args) > 1 else self.object
        except KeyError:
            return
        if isinstance(parent, dict):
            parent.pop(args[-1], None)

    @property
    def api_version(self) -> str:
        return self._get_str("apiVersion")

    @api_version.setter
    def api_version(self, value: str) -> None:
        self._set_str(value, "apiVersion")

    @property
    def kind(self) -> str:
        return self._get_str("kind")

    @kind.setter
    def kind(self, value: str) -> None:
        self._set_str(value, "kind")

    @property
    def name(self) -> str:
        return self._get_str("metadata", "name")

    @name.setter
    def name(self, value: str) -> None:
        self._set_str(value, "metadata", "name")

    @property
    def namespace(self) -> str:
        return self._get_str("metadata", "namespace")

    @namespace.setter
    def namespace(self, value: str) -> None:
        self._set_str(value, "metadata", "namespace")


def _guess_resource(kind: str) -> str:
    plural = kind.lower()
    if plural.endswith("s"):
        return plural + "es"
    if plural.endswith("y"):
        return plural[:-1] + "ies"
    return plural + "s"


def _group_resource(api_version: str, kind: str) -> GroupResource:
    group = api_version.rpartition("/")[0]
    return GroupResource(group, _guess_resource(kind))


class Cluster:
    """An in-memory store of cluster objects keyed by version, kind, namespace and name."""

    def __init__(self, resources: Iterable[Unstructured] = ()) -> None:
        self._objects: dict[tuple[str, str, str, str], Unstructured] = {}
        for item in resources:
            self.apply(item)

    @staticmethod
    def _key(item: Unstructured) -> tuple[str, str, str, str]:
        return (item.api_version, item.kind, item.namespace, item.name)

    def get(self, api_version: str, kind: str, namespace: str, name: str) -> Unstructured:
        try:
            return self._objects[(api_version, kind, namespace, name)].deep_copy()
        except KeyError:
            raise NotFoundError(_group_resource(api_version, kind), name) from None

    def apply(self, resource: Unstructured) -> Unstructured:
        """Create the object or replace it, keeping the status already observed."""
        key = self._key(resource)
        desired = resource.deep_copy()
        current = self._objects.get(key)
        if current is not None and "status" in current.object:
            desired.object["status"] = copy.deepcopy(current.object["status"])
        self._objects[key] = desired
        return desired.deep_copy()

    def delete(self, resource: Unstructured) -> None:
        key = self._key(resource)
        if key not in self._objects:
            raise NotFoundError(_group_resource(resource.api_version, resource.kind), resource.name)
        del self._objects[key]


def _manifest_files(path: Path, recursive: bool) -> list[Path]:
    if path.is_file():
        return [path]
    if not path.is_dir():
        raise FileNotFoundError(f"no such manifest path: {path}")
    candidates = path.rglob("*") if recursive else path.glob("*")
    return sorted(p for p in candidates if p.is_file() and p.suffix.lower() in _MANIFEST_SUFFIXES)


def _load_resources(file: Path) -> Iterable[Unstructured]:
    with file.open(encoding="utf-8") as stream:
        for document in yaml.safe_load_all(stream):
            if not document:
                continue
            if not isinstance(document, dict):
                raise ValueError(f"{file}: manifest document is not a mapping")
            yield Unstructured(document)


class Manifest:
    """An ordered set of resources bound to a cluster."""

    def __init__(self, resources: Iterable[Unstructured] = (), cluster: Cluster | None = None) -> None:
        self.resources = list(resources)
        self.cluster = cluster

    @classmethod
    def from_path(cls, path: str | Path, recursive: bool = False, cluster: Cluster | None = None) -> Manifest:
        """Load every YAML or JSON document found at a file or directory."""
        resources = [
            item for file in _manifest_files(Path(path), recursive) for item in _load_resources(file)
        ]
        return cls(resources, cluster)

    def transform(self, *args: Transformer) -> Manifest:
        """Return a new manifest with each transformer applied to copies of the resources."""
        result = []
        for item in self.resources:
            copied = item.deep_copy()
            for transformer in args:
                transformer(copied)
            result.append(copied)
        return Manifest(result, self.cluster)

    def _require_cluster(self) -> Cluster:
        if self.cluster is None:
            raise ValueError("manifest has no cluster")
        return self.cluster

    def apply_all(self) -> None:
        cluster = self._require_cluster()
        for item in self.resources:
            cluster.apply(item)

    def delete_all(self) -> None:
        """Delete every resource in reverse order, ignoring those already gone."""
        for item in reversed(self.resources):
            self.delete(item)

    def delete(self, resource: Unstructured) -> None:
        """Delete one resource from the cluster, ignoring it if already gone."""
        cluster = self._require_cluster()
        try:
            cluster.delete(resource)
        except NotFoundError:
            pass


def _is_cluster_scoped(kind: str) -> bool:
    return kind.lower() in _CLUSTER_SCOPED_KINDS


def inject_owner(owner: KnativeServing) -> Transformer:
    """Make the owner the controller of every namespaced resource."""
    gvk = owner.group_version_kind()
    reference = {
        "apiVersion": f"{gvk.group}/{gvk.version}",
        "kind": gvk.kind,
        "name": owner.name,
        "uid": owner.uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }

    def transform(item: Unstructured) -> None:
        if not _is_cluster_scoped(item.kind):
            item.set_nested([dict(reference)], "metadata", "ownerReferences")

    return transform


def inject_namespace(namespace: str) -> Transformer:
    """Move every namespaced resource, and references to it, into the namespace."""

    def transform(item: Unstructured) -> None:
        kind = item.kind.lower()
        if kind == "namespace":
            item.name = namespace
        elif kind in ("clusterrolebinding", "rolebinding"):
            for subject in item.object.get("subjects") or []:
                if isinstance(subject, dict) and subject.get("kind") == "ServiceAccount":
                    subject["namespace"] = namespace
        elif kind == "apiservice":
            service = (item.object.get("spec") or {}).get("service")
            if isinstance(service, dict):
                service["namespace"] = namespace
        elif kind in ("mutatingwebhookconfiguration", "validatingwebhookconfiguration"):
            for hook in item.object.get("webhooks") or []:
                service = (hook.get("clientConfig") or {}).get("service")
                if isinstance(service, dict):
                    service["namespace"] = namespace
        if not _is_cluster_scoped(kind):
            item.namespace = namespace

    return transform