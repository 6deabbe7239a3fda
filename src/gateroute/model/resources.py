"""Cluster resources consumed by the compiler.

Each resource is a plain dataclass built from a manifest dictionary with
``from_dict``. Only the fields the compiler reads are kept; everything else
in the manifest is ignored.

Example:
    gateway = Gateway.from_dict(yaml.safe_load('''
        apiVersion: gateway.networking.k8s.io/v1
        kind: Gateway
        metadata: {name: web, namespace: default}
        spec:
          gatewayClassName: alb
          listeners:
            - {name: http, port: 80, protocol: HTTP}
    '''))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from gateroute.errors import ManifestError
from gateroute.model.constants import (
    CORE_GROUP,
    GATEWAY_API_GROUP,
    NamespacesFrom,
    Protocol,
)

DEFAULT_NAMESPACE = "default"


@dataclass(frozen=True, order=True)
class NamespacedName:
    """Namespace plus name identity of a namespaced resource."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str, default_namespace: str = DEFAULT_NAMESPACE) -> NamespacedName:
        """Parse ``namespace/name`` or a bare ``name``."""
        if "/" in value:
            namespace, _, name = value.partition("/")
            if not namespace or not name:
                raise ValueError(f"Invalid namespaced name: {value}")
            return cls(namespace, name)
        if not value:
            raise ValueError("Name must not be empty")
        return cls(default_namespace, value)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a manifest timestamp (RFC 3339) into a datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise ManifestError(f"Invalid timestamp: {value}") from e
    # Naive timestamps are taken as UTC.
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass
class ObjectMeta:
    """The subset of object metadata the compiler uses."""

    name: str
    namespace: str = DEFAULT_NAMESPACE
    labels: dict[str, str] = field(default_factory=dict)
    creation_timestamp: datetime | None = None
    generation: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None, namespaced: bool = True) -> ObjectMeta:
        data = data or {}
        name = data.get("name")
        if not name:
            raise ManifestError("metadata.name is required")
        return cls(
            name=name,
            namespace=(data.get("namespace") or DEFAULT_NAMESPACE) if namespaced else "",
            labels=dict(data.get("labels") or {}),
            creation_timestamp=parse_timestamp(data.get("creationTimestamp")),
            generation=int(data.get("generation") or 0),
        )


@dataclass(frozen=True)
class LabelSelectorRequirement:
    """A single ``matchExpressions`` entry."""

    key: str
    operator: str
    values: tuple[str, ...] = ()

    def matches(self, labels: dict[str, str]) -> bool:
        if self.operator == "In":
            return labels.get(self.key) in self.values
        if self.operator == "NotIn":
            return self.key not in labels or labels[self.key] not in self.values
        if self.operator == "Exists":
            return self.key in labels
        if self.operator == "DoesNotExist":
            return self.key not in labels
        raise ValueError(f"Unsupported label selector operator: {self.operator}")


@dataclass(frozen=True)
class LabelSelector:
    """Kubernetes label selector.

    An empty selector matches every object.
    """

    match_labels: tuple[tuple[str, str], ...] = ()
    match_expressions: tuple[LabelSelectorRequirement, ...] = ()

    def matches(self, labels: dict[str, str]) -> bool:
        """Check whether a label set satisfies the selector.

        Args:
            labels: Labels of the candidate object.

        Returns:
            True if every label and every expression is satisfied.
        """
        for key, value in self.match_labels:
            if labels.get(key) != value:
                return False
        return all(expr.matches(labels) for expr in self.match_expressions)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> LabelSelector:
        data = data or {}
        expressions = []
        for expr in data.get("matchExpressions") or []:
            operator = expr.get("operator", "")
            if operator not in ("In", "NotIn", "Exists", "DoesNotExist"):
                raise ManifestError(f"Unsupported label selector operator: {operator}")
            expressions.append(
                LabelSelectorRequirement(
                    key=expr["key"],
                    operator=operator,
                    values=tuple(expr.get("values") or ()),
                )
            )
        return cls(
            match_labels=tuple(sorted((data.get("matchLabels") or {}).items())),
            match_expressions=tuple(expressions),
        )


@dataclass(frozen=True)
class RouteGroupKind:
    """An entry of a listener's ``allowedRoutes.kinds``."""

    kind: str
    group: str = GATEWAY_API_GROUP


@dataclass
class Listener:
    """One port/protocol/hostname unit of a Gateway."""

    name: str
    port: int
    protocol: str
    hostname: str | None = None
    allowed_kinds: tuple[RouteGroupKind, ...] | None = None
    """Explicit ``allowedRoutes.kinds``; None when the listener leaves it unset."""

    namespaces_from: NamespacesFrom = NamespacesFrom.SAME
    namespace_selector: LabelSelector | None = None

    @property
    def protocol_type(self) -> Protocol | None:
        """The protocol as an enum, or None if it is not a known protocol."""
        try:
            return Protocol(self.protocol)
        except ValueError:
            return None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Listener:
        allowed = data.get("allowedRoutes") or {}
        namespaces = allowed.get("namespaces") or {}
        kinds = allowed.get("kinds")
        try:
            namespaces_from = NamespacesFrom(namespaces.get("from", NamespacesFrom.SAME.value))
        except ValueError as e:
            raise ManifestError(f"Invalid allowedRoutes.namespaces.from: {namespaces.get('from')}") from e
        selector = namespaces.get("selector")
        try:
            port = int(data.get("port", 0))
        except (TypeError, ValueError) as e:
            raise ManifestError(f"Invalid listener port: {data.get('port')}") from e
        return cls(
            name=data.get("name", ""),
            port=port,
            protocol=str(data.get("protocol", "")),
            hostname=data.get("hostname") or None,
            allowed_kinds=(
                tuple(
                    RouteGroupKind(kind=k["kind"], group=k.get("group", GATEWAY_API_GROUP))
                    for k in kinds
                )
                if kinds
                else None
            ),
            namespaces_from=namespaces_from,
            namespace_selector=LabelSelector.from_dict(selector) if selector is not None else None,
        )


@dataclass
class Gateway:
    """A Gateway and the parts of its status the compiler reads."""

    metadata: ObjectMeta
    gateway_class_name: str = ""
    listeners: list[Listener] = field(default_factory=list)
    addresses: list[str] = field(default_factory=list)
    """Provisioned load balancer addresses from ``status.addresses``."""

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def namespaced_name(self) -> NamespacedName:
        return NamespacedName(self.metadata.namespace, self.metadata.name)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Gateway:
        spec = data.get("spec") or {}
        status = data.get("status") or {}
        return cls(
            metadata=ObjectMeta.from_dict(data.get("metadata")),
            gateway_class_name=spec.get("gatewayClassName", ""),
            listeners=[Listener.from_dict(item) for item in spec.get("listeners") or []],
            addresses=[a["value"] for a in status.get("addresses") or [] if a.get("value")],
        )


@dataclass(frozen=True)
class ParentReference:
    """A route's reference to the Gateway (and optionally listener) it wants."""

    name: str
    namespace: str | None = None
    kind: str = "Gateway"
    group: str = GATEWAY_API_GROUP
    section_name: str | None = None
    port: int | None = None

    @property
    def is_generic(self) -> bool:
        """True when the reference names no specific listener."""
        return self.section_name is None and self.port is None

    def __str__(self) -> str:
        text = f"{self.kind}/{self.namespace or '-'}/{self.name}"
        if self.section_name is not None:
            text += f"#{self.section_name}"
        if self.port is not None:
            text += f":{self.port}"
        return text

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"group": self.group, "kind": self.kind, "name": self.name}
        if self.namespace is not None:
            data["namespace"] = self.namespace
        if self.section_name is not None:
            data["sectionName"] = self.section_name
        if self.port is not None:
            data["port"] = self.port
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ParentReference:
        if not data.get("name"):
            raise ManifestError("parentRefs[].name is required")
        return cls(
            name=data["name"],
            namespace=data.get("namespace"),
            kind=data.get("kind") or "Gateway",
            group=data.get("group", GATEWAY_API_GROUP),
            section_name=data.get("sectionName"),
            port=int(data["port"]) if data.get("port") is not None else None,
        )


@dataclass(frozen=True)
class BackendRef:
    """An unresolved backend reference from a route rule."""

    name: str
    namespace: str | None = None
    kind: str = "Service"
    group: str = CORE_GROUP
    port: int | None = None
    weight: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind, "name": self.name}
        if self.namespace is not None:
            data["namespace"] = self.namespace
        if self.port is not None:
            data["port"] = self.port
        if self.weight is not None:
            data["weight"] = self.weight
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackendRef:
        if not data.get("name"):
            raise ManifestError("backendRefs[].name is required")
        kind = data.get("kind") or "Service"
        return cls(
            name=data["name"],
            namespace=data.get("namespace"),
            kind=kind,
            group=data.get("group", GATEWAY_API_GROUP if kind == "Gateway" else CORE_GROUP),
            port=int(data["port"]) if data.get("port") is not None else None,
            weight=int(data["weight"]) if data.get("weight") is not None else None,
        )


@dataclass(frozen=True)
class ReferenceGrantFrom:
    kind: str
    namespace: str
    group: str = GATEWAY_API_GROUP


@dataclass(frozen=True)
class ReferenceGrantTo:
    kind: str
    name: str | None = None
    group: str = CORE_GROUP


@dataclass
class ReferenceGrant:
    """Authorizes references from other namespaces into the grant's namespace."""

    metadata: ObjectMeta
    from_: list[ReferenceGrantFrom] = field(default_factory=list)
    to: list[ReferenceGrantTo] = field(default_factory=list)

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    def permits(self, from_kind: str, from_namespace: str, to_kind: str, to_name: str | None) -> bool:
        """Check whether the grant admits a reference.

        Args:
            from_kind: Kind of the referencing resource.
            from_namespace: Namespace of the referencing resource.
            to_kind: Kind of the referenced resource.
            to_name: Name of the referenced resource, or None to accept
                grants of any target name only.

        Returns:
            True if one ``from`` entry and one ``to`` entry both match.
        """
        from_ok = any(f.kind == from_kind and f.namespace == from_namespace for f in self.from_)
        if not from_ok:
            return False
        return any(t.kind == to_kind and (t.name is None or t.name == to_name) for t in self.to)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReferenceGrant:
        spec = data.get("spec") or {}
        return cls(
            metadata=ObjectMeta.from_dict(data.get("metadata")),
            from_=[
                ReferenceGrantFrom(
                    kind=f.get("kind", ""),
                    namespace=f.get("namespace", ""),
                    group=f.get("group", GATEWAY_API_GROUP),
                )
                for f in spec.get("from") or []
            ],
            to=[
                ReferenceGrantTo(
                    kind=t.get("kind", ""),
                    name=t.get("name") or None,
                    group=t.get("group", CORE_GROUP),
                )
                for t in spec.get("to") or []
            ],
        )


@dataclass(frozen=True)
class ServicePort:
    port: int
    name: str | None = None
    protocol: str = "TCP"
    target_port: int | str | None = None
    node_port: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServicePort:
        return cls(
            port=int(data["port"]),
            name=data.get("name"),
            protocol=data.get("protocol", "TCP"),
            target_port=data.get("targetPort"),
            node_port=data.get("nodePort"),
        )


@dataclass
class Service:
    metadata: ObjectMeta
    ports: list[ServicePort] = field(default_factory=list)
    service_type: str = "ClusterIP"

    @property
    def namespaced_name(self) -> NamespacedName:
        return NamespacedName(self.metadata.namespace, self.metadata.name)

    def find_port(self, port: int) -> ServicePort | None:
        """Return the service port with exactly this port number."""
        for candidate in self.ports:
            if candidate.port == port:
                return candidate
        return None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Service:
        spec = data.get("spec") or {}
        return cls(
            metadata=ObjectMeta.from_dict(data.get("metadata")),
            ports=[ServicePort.from_dict(p) for p in spec.get("ports") or []],
            service_type=spec.get("type", "ClusterIP"),
        )


@dataclass(frozen=True)
class RouteConfiguration:
    """Target group properties for routes matching ``Kind:Namespace:Name``."""

    identifier: str
    target_group_props: dict[str, Any]

    @property
    def parts(self) -> tuple[str, str, str]:
        kind, _, rest = self.identifier.partition(":")
        namespace, _, name = rest.partition(":")
        return kind, namespace, name


@dataclass
class TargetGroupConfiguration:
    """Per-service target group settings."""

    metadata: ObjectMeta
    target_kind: str = "Service"
    target_name: str = ""
    default_configuration: dict[str, Any] = field(default_factory=dict)
    route_configurations: list[RouteConfiguration] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.metadata.name

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TargetGroupConfiguration:
        spec = data.get("spec") or {}
        target = spec.get("targetReference") or {}
        return cls(
            metadata=ObjectMeta.from_dict(data.get("metadata")),
            target_kind=target.get("kind") or "Service",
            target_name=target.get("name", ""),
            default_configuration=dict(spec.get("defaultConfiguration") or {}),
            route_configurations=[
                RouteConfiguration(
                    identifier=rc.get("identifier", ""),
                    target_group_props=dict(rc.get("targetGroupProps") or {}),
                )
                for rc in spec.get("routeConfigurations") or []
            ],
        )


@dataclass
class Namespace:
    metadata: ObjectMeta

    @property
    def name(self) -> str:
        return self.metadata.name

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Namespace:
        return cls(metadata=ObjectMeta.from_dict(data.get("metadata"), namespaced=False))
