"""Backend reference resolution.

Turns a rule's backend references into concrete forwarding targets.

Resolution has three outcomes:
    - RESOLVED: a Backend was produced
    - NO_BACKEND: the reference intentionally yields nothing (weight 0,
      unsupported kind)
    - NOT_AUTHORIZED_OR_ABSENT: the target is missing or the route may not
      reference it. Both cases share one reason and message so a route
      owner cannot probe other namespaces for the existence of resources.

Structural problems (missing port, weight out of range) raise
RouteLoadError. Resource store failures raise StoreError and are never
turned into a resolution outcome.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from gateroute.errors import RouteLoadError
from gateroute.model.constants import (
    CORE_GROUP,
    DEFAULT_WEIGHT,
    GATEWAY_API_GROUP,
    MAX_WEIGHT,
    RouteReason,
)
from gateroute.model.resources import (
    BackendRef,
    Gateway,
    NamespacedName,
    Service,
    ServicePort,
    TargetGroupConfiguration,
)
from gateroute.model.routes import Route
from gateroute.store import ResourceStore

logger = structlog.get_logger()

SERVICE_KIND = "Service"
GATEWAY_KIND = "Gateway"


class BackendKind(Enum):
    """Kinds of resolved backends."""

    SERVICE = "Service"
    GATEWAY = "Gateway"


@dataclass(frozen=True, eq=False)
class Backend:
    """A resolved forwarding target.

    Built fresh on every rule materialization and never modified.
    """

    kind: BackendKind
    backend_ref: BackendRef
    target: NamespacedName
    port: int
    weight: int = DEFAULT_WEIGHT
    service: Service | None = None
    service_port: ServicePort | None = None
    gateway: Gateway | None = None
    load_balancer_address: str | None = None
    """Address of the target Gateway's load balancer, for Gateway backends."""

    target_group_config: TargetGroupConfiguration | None = None
    target_group_props: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "target": str(self.target),
            "port": self.port,
            "weight": self.weight,
        }
        if self.load_balancer_address is not None:
            data["load_balancer_address"] = self.load_balancer_address
        if self.target_group_config is not None:
            data["target_group_configuration"] = self.target_group_config.name
        if self.target_group_props:
            data["target_group_props"] = self.target_group_props
        return data


class ResolutionStatus(Enum):
    RESOLVED = "Resolved"
    NO_BACKEND = "NoBackend"
    NOT_AUTHORIZED_OR_ABSENT = "NotAuthorizedOrAbsent"


@dataclass(frozen=True)
class BackendResolution:
    """Outcome of resolving one backend reference."""

    status: ResolutionStatus
    backend: Backend | None = None
    reason: RouteReason | None = None
    message: str | None = None

    @property
    def resolved(self) -> bool:
        return self.status == ResolutionStatus.RESOLVED

    @classmethod
    def of(cls, backend: Backend) -> BackendResolution:
        return cls(status=ResolutionStatus.RESOLVED, backend=backend)

    @classmethod
    def nothing(cls, reason: RouteReason | None = None, message: str | None = None) -> BackendResolution:
        return cls(status=ResolutionStatus.NO_BACKEND, reason=reason, message=message)

    @classmethod
    def hidden(cls, kind: str, target: NamespacedName, message: str | None = None) -> BackendResolution:
        return cls(
            status=ResolutionStatus.NOT_AUTHORIZED_OR_ABSENT,
            reason=RouteReason.BACKEND_NOT_FOUND,
            message=message or f"{kind} ({target.namespace}:{target.name}) not found",
        )


def reference_grant_permits(
    store: ResourceStore,
    from_kind: str,
    from_namespace: str,
    to_kind: str,
    target: NamespacedName,
) -> bool:
    """Check whether a ReferenceGrant allows a cross-namespace reference.

    Only grants in the target's namespace are consulted, and the grant must
    list the referencing kind itself as a source.

    Args:
        store: Resource store.
        from_kind: Kind of the referencing route.
        from_namespace: Namespace of the referencing route.
        to_kind: Kind of the referenced resource.
        target: Referenced resource.

    Returns:
        True if some grant permits the reference.

    Raises:
        StoreError: If grants cannot be listed.
    """
    for grant in store.list_reference_grants(target.namespace):
        if grant.permits(from_kind, from_namespace, to_kind, target.name):
            return True
    return False


def lookup_target_group_configuration(
    store: ResourceStore,
    service: Service,
) -> TargetGroupConfiguration | None:
    """Find the TargetGroupConfiguration that targets a service.

    At most one configuration per service is expected. When several exist,
    the first by name is used and a warning is logged.
    """
    matches = [
        tg_config
        for tg_config in store.list_target_group_configurations(service.metadata.namespace)
        if tg_config.target_kind == SERVICE_KIND and tg_config.target_name == service.metadata.name
    ]
    if not matches:
        return None
    if len(matches) > 1:
        logger.warning(
            "Multiple target group configurations for service",
            service=str(service.namespaced_name),
            configurations=[m.name for m in matches],
        )
    return matches[0]


def target_group_props_for_route(
    tg_config: TargetGroupConfiguration,
    route: Route,
) -> dict[str, Any]:
    """Compute the target group properties that apply to a route.

    The route configuration whose identifier matches the route most
    specifically is merged over the default configuration. An identifier
    ``Kind:Namespace:Name`` may leave namespace and name empty; every
    non-empty part must match the route.

    Args:
        tg_config: Configuration targeting the backend service.
        route: Route referencing the service.

    Returns:
        Merged properties. Route values win; ``tags`` and
        ``targetGroupAttributes`` merge key by key.
    """
    route_parts = (route.route_kind.value, route.namespace, route.name)
    best = None
    best_score = -1
    for route_config in tg_config.route_configurations:
        parts = route_config.parts
        if any(part and part != actual for part, actual in zip(parts, route_parts)):
            continue
        score = sum(1 for part in parts if part)
        if score > best_score:
            best = route_config
            best_score = score

    props = copy.deepcopy(tg_config.default_configuration)
    if best is None:
        return props
    return merge_target_group_props(props, best.target_group_props)


def merge_target_group_props(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if key == "tags" and isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = {**merged[key], **value}
        elif key == "targetGroupAttributes" and merged.get(key) and isinstance(value, list):
            attributes = {a["key"]: a["value"] for a in merged[key]}
            attributes.update({a["key"]: a["value"] for a in value})
            merged[key] = [{"key": k, "value": attributes[k]} for k in sorted(attributes)]
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class BackendResolver:
    """Resolves backend references for the rules of a route.

    Example:
        resolver = BackendResolver(store)
        resolution = resolver.resolve(rule.backend_refs[0], route)
        if resolution.resolved:
            print(resolution.backend.target, resolution.backend.weight)
    """

    def __init__(self, store: ResourceStore, max_weight: int = MAX_WEIGHT):
        self.store = store
        self.max_weight = max_weight

    def resolve(self, backend_ref: BackendRef, route: Route) -> BackendResolution:
        """Resolve one backend reference of a route.

        Args:
            backend_ref: The reference from a route rule.
            route: The route owning the rule.

        Returns:
            The resolution outcome.

        Raises:
            RouteLoadError: If the port is missing or the weight is out of range.
            StoreError: If the resource store fails.
        """
        if backend_ref.kind == SERVICE_KIND and backend_ref.group == CORE_GROUP:
            kind = BackendKind.SERVICE
        elif backend_ref.kind == GATEWAY_KIND and backend_ref.group == GATEWAY_API_GROUP:
            kind = BackendKind.GATEWAY
        else:
            logger.warning(
                "Ignoring backend of unsupported kind",
                route=str(route.route_identifier),
                kind=backend_ref.kind,
                group=backend_ref.group,
            )
            return BackendResolution.nothing(
                RouteReason.INVALID_KIND,
                f"Unsupported backend kind {backend_ref.kind}",
            )

        weight = DEFAULT_WEIGHT if backend_ref.weight is None else backend_ref.weight
        if weight == 0:
            logger.debug(
                "Skipping backend with zero weight",
                route=str(route.route_identifier),
                backend=backend_ref.name,
            )
            return BackendResolution.nothing()
        if weight < 0 or weight > self.max_weight:
            raise RouteLoadError(
                RouteReason.UNSUPPORTED_VALUE,
                f"Weight {weight} for backend {backend_ref.name} must be between 0 and {self.max_weight}",
            )
        if backend_ref.port is None:
            raise RouteLoadError(
                RouteReason.UNSUPPORTED_VALUE,
                f"Port is required for backend {backend_ref.kind} {backend_ref.name}",
            )

        namespace = backend_ref.namespace or route.namespace
        target = NamespacedName(namespace, backend_ref.name)

        if namespace != route.namespace and not reference_grant_permits(
            self.store, route.route_kind.value, route.namespace, backend_ref.kind, target
        ):
            logger.debug(
                "Backend reference not permitted",
                route=str(route.route_identifier),
                target=str(target),
            )
            return BackendResolution.hidden(backend_ref.kind, target)

        if kind == BackendKind.GATEWAY:
            return self._resolve_gateway(backend_ref, route, target, weight)
        return self._resolve_service(backend_ref, route, target, weight)

    def _resolve_service(
        self,
        backend_ref: BackendRef,
        route: Route,
        target: NamespacedName,
        weight: int,
    ) -> BackendResolution:
        service = self.store.get_service(target.namespace, target.name)
        if service is None:
            return BackendResolution.hidden(SERVICE_KIND, target)

        service_port = service.find_port(backend_ref.port)
        if service_port is None:
            return BackendResolution.hidden(
                SERVICE_KIND,
                target,
                f"Unable to find service port for port {backend_ref.port}",
            )

        tg_config = lookup_target_group_configuration(self.store, service)
        return BackendResolution.of(
            Backend(
                kind=BackendKind.SERVICE,
                backend_ref=backend_ref,
                target=target,
                port=backend_ref.port,
                weight=weight,
                service=service,
                service_port=service_port,
                target_group_config=tg_config,
                target_group_props=(
                    target_group_props_for_route(tg_config, route) if tg_config else None
                ),
            )
        )

    def _resolve_gateway(
        self,
        backend_ref: BackendRef,
        route: Route,
        target: NamespacedName,
        weight: int,
    ) -> BackendResolution:
        gateway = self.store.get_gateway(target.namespace, target.name)
        if gateway is None:
            return BackendResolution.hidden(GATEWAY_KIND, target)
        if not gateway.addresses:
            return BackendResolution.hidden(
                GATEWAY_KIND,
                target,
                f"Gateway ({target.namespace}:{target.name}) is not usable yet, "
                "load balancer address is not provisioned",
            )
        return BackendResolution.of(
            Backend(
                kind=BackendKind.GATEWAY,
                backend_ref=backend_ref,
                target=target,
                port=backend_ref.port,
                weight=weight,
                gateway=gateway,
                load_balancer_address=gateway.addresses[0],
            )
        )
