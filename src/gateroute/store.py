"""Resource store used by the compiler.

The compiler never talks to a cluster directly. All reads go through a
ResourceStore, which must keep two outcomes apart:

- NotFound: ``get`` returns None.
- Failure: any other problem raises StoreError.

InMemoryResourceStore holds parsed manifests and backs the CLI and tests.

Usage:
    store = InMemoryResourceStore.from_manifests(load_manifests("cluster.yaml"))
    service = store.get("Service", NamespacedName("default", "api"))
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

import structlog
import yaml

from gateroute.errors import ManifestError
from gateroute.model.constants import RouteKind
from gateroute.model.resources import (
    Gateway,
    LabelSelector,
    Namespace,
    NamespacedName,
    ReferenceGrant,
    Service,
    TargetGroupConfiguration,
)
from gateroute.model.routes import Route, route_from_dict

logger = structlog.get_logger()

GATEWAY = "Gateway"
SERVICE = "Service"
NAMESPACE = "Namespace"
REFERENCE_GRANT = "ReferenceGrant"
TARGET_GROUP_CONFIGURATION = "TargetGroupConfiguration"

_PARSERS: dict[str, Callable[[dict[str, Any]], Any]] = {
    GATEWAY: Gateway.from_dict,
    SERVICE: Service.from_dict,
    NAMESPACE: Namespace.from_dict,
    REFERENCE_GRANT: ReferenceGrant.from_dict,
    TARGET_GROUP_CONFIGURATION: TargetGroupConfiguration.from_dict,
    **{kind.value: route_from_dict for kind in RouteKind},
}


class ResourceStore(ABC):
    """Read-only access to cluster resources.

    Implementations are synchronous and blocking. They must return None from
    ``get`` when an object does not exist and raise StoreError for every
    other failure.
    """

    @abstractmethod
    def get(self, kind: str, key: NamespacedName) -> Any | None:
        """Fetch a single resource.

        Args:
            kind: Resource kind, e.g. "Service".
            key: Namespaced name of the resource. Cluster scoped kinds
                use an empty namespace.

        Returns:
            The resource, or None if it does not exist.

        Raises:
            StoreError: If the lookup failed.
        """

    @abstractmethod
    def list(
        self,
        kind: str,
        namespace: str | None = None,
        label_selector: LabelSelector | None = None,
    ) -> list[Any]:
        """List resources of a kind.

        Args:
            kind: Resource kind.
            namespace: Restrict to one namespace; None lists all namespaces.
            label_selector: Restrict to objects whose labels match.

        Returns:
            Matching resources ordered by namespace and name.

        Raises:
            StoreError: If the listing failed.
        """

    def get_gateway(self, namespace: str, name: str) -> Gateway | None:
        return self.get(GATEWAY, NamespacedName(namespace, name))

    def get_service(self, namespace: str, name: str) -> Service | None:
        return self.get(SERVICE, NamespacedName(namespace, name))

    def list_routes(self, kind: RouteKind) -> list[Route]:
        return self.list(kind.value)

    def list_reference_grants(self, namespace: str | None = None) -> list[ReferenceGrant]:
        return self.list(REFERENCE_GRANT, namespace=namespace)

    def list_target_group_configurations(self, namespace: str) -> list[TargetGroupConfiguration]:
        return self.list(TARGET_GROUP_CONFIGURATION, namespace=namespace)

    def list_namespace_names(self, label_selector: LabelSelector) -> set[str]:
        return {ns.name for ns in self.list(NAMESPACE, label_selector=label_selector)}


class InMemoryResourceStore(ResourceStore):
    """ResourceStore backed by parsed manifests held in memory."""

    def __init__(self) -> None:
        self._objects: dict[str, dict[NamespacedName, Any]] = {}

    def add(self, kind: str, resource: Any) -> None:
        """Add or replace a resource.

        Args:
            kind: Resource kind.
            resource: Parsed resource with a ``metadata`` attribute.
        """
        meta = resource.metadata
        key = NamespacedName(meta.namespace, meta.name)
        self._objects.setdefault(kind, {})[key] = resource

    def add_manifest(self, document: dict[str, Any]) -> None:
        """Parse a manifest document and add it.

        Unsupported kinds are skipped with a debug log entry.

        Raises:
            ManifestError: If a supported kind cannot be parsed.
        """
        kind = document.get("kind", "")
        if kind == "List":
            for item in document.get("items") or []:
                self.add_manifest(item)
            return
        parser = _PARSERS.get(kind)
        if parser is None:
            logger.debug("Skipping unsupported manifest kind", kind=kind)
            return
        try:
            resource = parser(document)
        except (KeyError, TypeError, ValueError) as e:
            if isinstance(e, ManifestError):
                raise
            name = (document.get("metadata") or {}).get("name")
            raise ManifestError(f"Invalid {kind} manifest {name!r}: {e}") from e
        self.add(kind, resource)

    @classmethod
    def from_manifests(cls, documents: Iterable[dict[str, Any]]) -> InMemoryResourceStore:
        store = cls()
        for document in documents:
            if document:
                store.add_manifest(document)
        return store

    def get(self, kind: str, key: NamespacedName) -> Any | None:
        return self._objects.get(kind, {}).get(key)

    def list(
        self,
        kind: str,
        namespace: str | None = None,
        label_selector: LabelSelector | None = None,
    ) -> list[Any]:
        result = []
        for key in sorted(self._objects.get(kind, {})):
            if namespace is not None and key.namespace != namespace:
                continue
            resource = self._objects[kind][key]
            if label_selector is not None and not label_selector.matches(resource.metadata.labels):
                continue
            result.append(resource)
        return result

    def __len__(self) -> int:
        return sum(len(objects) for objects in self._objects.values())


def load_manifests(path: str | Path) -> list[dict[str, Any]]:
    """Load every YAML document from a manifest file.

    Args:
        path: Path to a YAML file, possibly holding several documents.

    Returns:
        The non-empty documents in file order.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ManifestError: If the file is not valid YAML or a document is not a mapping.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Manifest file not found: {path}")

    try:
        documents = list(yaml.safe_load_all(path.read_text(encoding="utf-8")))
    except yaml.YAMLError as e:
        raise ManifestError(f"Invalid YAML in {path}: {e}") from e

    result = []
    for document in documents:
        if document is None:
            continue
        if not isinstance(document, dict):
            raise ManifestError(f"Manifest document in {path} is not a mapping")
        result.append(document)
    return result
