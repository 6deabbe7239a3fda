"""Route resources.

Routes form a closed set of variants sharing one interface:

- HTTPRoute: hostnames, HTTP matches (path, method, headers, query params), filters
- GRPCRoute: hostnames, GRPC method matches and headers
- TLSRoute: hostnames, backends only
- TCPRoute / UDPRoute: backends only

Every variant exposes ``route_kind``, ``route_identifier``, ``hostnames``,
``parent_refs`` and ``rules``. Code that needs kind-specific behaviour
dispatches on ``route_kind`` rather than on class checks.

Example:
    route = route_from_dict({
        "kind": "HTTPRoute",
        "metadata": {"name": "api", "namespace": "default"},
        "spec": {
            "parentRefs": [{"name": "web"}],
            "hostnames": ["api.example.com"],
            "rules": [{
                "matches": [{"path": {"type": "Exact", "value": "/v1"}}],
                "backendRefs": [{"name": "api", "port": 8080}],
            }],
        },
    })
    print(route.route_identifier)  # HTTPRoute/default/api
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from gateroute.errors import ManifestError
from gateroute.model.constants import (
    FilterType,
    GRPCMethodMatchType,
    HeaderMatchType,
    PathMatchType,
    RewriteType,
    RouteKind,
)
from gateroute.model.resources import BackendRef, NamespacedName, ObjectMeta, ParentReference


@dataclass(frozen=True)
class RouteIdentifier:
    """Kind plus namespaced name; unique across all routes."""

    kind: RouteKind
    namespace: str
    name: str

    @property
    def namespaced_name(self) -> NamespacedName:
        return NamespacedName(self.namespace, self.name)

    def __str__(self) -> str:
        return f"{self.kind.value}/{self.namespace}/{self.name}"


# Matches


@dataclass(frozen=True)
class HTTPPathMatch:
    type: PathMatchType
    value: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HTTPPathMatch:
        try:
            match_type = PathMatchType(data.get("type", PathMatchType.PATH_PREFIX.value))
        except ValueError as e:
            raise ManifestError(f"Invalid path match type: {data.get('type')}") from e
        return cls(type=match_type, value=data.get("value", "/"))


@dataclass(frozen=True)
class ValueMatch:
    """A header or query parameter match."""

    name: str
    value: str
    type: HeaderMatchType = HeaderMatchType.EXACT

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ValueMatch:
        try:
            match_type = HeaderMatchType(data.get("type", HeaderMatchType.EXACT.value))
        except ValueError as e:
            raise ManifestError(f"Invalid match type: {data.get('type')}") from e
        return cls(name=data["name"], value=str(data.get("value", "")), type=match_type)


@dataclass(frozen=True)
class HTTPRouteMatch:
    path: HTTPPathMatch | None = None
    method: str | None = None
    headers: tuple[ValueMatch, ...] = ()
    query_params: tuple[ValueMatch, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HTTPRouteMatch:
        path = data.get("path")
        return cls(
            path=HTTPPathMatch.from_dict(path) if path is not None else None,
            method=data.get("method"),
            headers=tuple(ValueMatch.from_dict(h) for h in data.get("headers") or []),
            query_params=tuple(ValueMatch.from_dict(q) for q in data.get("queryParams") or []),
        )


@dataclass(frozen=True)
class GRPCMethodMatch:
    type: GRPCMethodMatchType = GRPCMethodMatchType.EXACT
    service: str | None = None
    method: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GRPCMethodMatch:
        try:
            match_type = GRPCMethodMatchType(data.get("type", GRPCMethodMatchType.EXACT.value))
        except ValueError as e:
            raise ManifestError(f"Invalid GRPC method match type: {data.get('type')}") from e
        return cls(type=match_type, service=data.get("service"), method=data.get("method"))


@dataclass(frozen=True)
class GRPCRouteMatch:
    method: GRPCMethodMatch | None = None
    headers: tuple[ValueMatch, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GRPCRouteMatch:
        method = data.get("method")
        return cls(
            method=GRPCMethodMatch.from_dict(method) if method is not None else None,
            headers=tuple(ValueMatch.from_dict(h) for h in data.get("headers") or []),
        )


# Filters


@dataclass(frozen=True)
class PathModifier:
    type: RewriteType
    replace_full_path: str | None = None
    replace_prefix_match: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PathModifier:
        try:
            modifier_type = RewriteType(data.get("type", ""))
        except ValueError as e:
            raise ManifestError(f"Invalid path modifier type: {data.get('type')}") from e
        return cls(
            type=modifier_type,
            replace_full_path=data.get("replaceFullPath"),
            replace_prefix_match=data.get("replacePrefixMatch"),
        )


@dataclass(frozen=True)
class RequestRedirect:
    scheme: str | None = None
    hostname: str | None = None
    path: PathModifier | None = None
    port: int | None = None
    status_code: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RequestRedirect:
        path = data.get("path")
        return cls(
            scheme=data.get("scheme"),
            hostname=data.get("hostname"),
            path=PathModifier.from_dict(path) if path else None,
            port=int(data["port"]) if data.get("port") is not None else None,
            status_code=int(data["statusCode"]) if data.get("statusCode") is not None else None,
        )


@dataclass(frozen=True)
class URLRewrite:
    hostname: str | None = None
    path: PathModifier | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> URLRewrite:
        path = data.get("path")
        return cls(
            hostname=data.get("hostname"),
            path=PathModifier.from_dict(path) if path else None,
        )


@dataclass(frozen=True)
class RouteFilter:
    """A rule filter; only the field matching ``type`` is populated."""

    type: FilterType
    request_redirect: RequestRedirect | None = None
    url_rewrite: URLRewrite | None = None
    config: tuple[tuple[str, Any], ...] = ()
    """Raw settings of filter types the compiler does not interpret."""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RouteFilter:
        try:
            filter_type = FilterType(data.get("type", ""))
        except ValueError as e:
            raise ManifestError(f"Invalid filter type: {data.get('type')}") from e
        redirect = data.get("requestRedirect")
        rewrite = data.get("urlRewrite")
        other = {
            k: v for k, v in data.items() if k not in ("type", "requestRedirect", "urlRewrite")
        }
        return cls(
            type=filter_type,
            request_redirect=(
                RequestRedirect.from_dict(redirect) if redirect is not None else None
            ),
            url_rewrite=URLRewrite.from_dict(rewrite) if rewrite is not None else None,
            config=tuple(sorted(other.items())),
        )


# Rules


@dataclass
class RouteRule:
    """Kind-independent part of a route rule."""

    backend_refs: list[BackendRef] = field(default_factory=list)
    name: str | None = None

    @property
    def filters(self) -> list[RouteFilter]:
        return []

    @property
    def matches(self) -> list[Any]:
        return []

    @staticmethod
    def _backend_refs(data: dict[str, Any]) -> list[BackendRef]:
        return [BackendRef.from_dict(b) for b in data.get("backendRefs") or []]


@dataclass
class HTTPRouteRule(RouteRule):
    http_matches: list[HTTPRouteMatch] = field(default_factory=list)
    http_filters: list[RouteFilter] = field(default_factory=list)

    @property
    def filters(self) -> list[RouteFilter]:
        return self.http_filters

    @property
    def matches(self) -> list[HTTPRouteMatch]:
        return self.http_matches

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HTTPRouteRule:
        return cls(
            backend_refs=cls._backend_refs(data),
            name=data.get("name"),
            http_matches=[HTTPRouteMatch.from_dict(m) for m in data.get("matches") or []],
            http_filters=[RouteFilter.from_dict(f) for f in data.get("filters") or []],
        )


@dataclass
class GRPCRouteRule(RouteRule):
    grpc_matches: list[GRPCRouteMatch] = field(default_factory=list)
    grpc_filters: list[RouteFilter] = field(default_factory=list)

    @property
    def filters(self) -> list[RouteFilter]:
        return self.grpc_filters

    @property
    def matches(self) -> list[GRPCRouteMatch]:
        return self.grpc_matches

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GRPCRouteRule:
        return cls(
            backend_refs=cls._backend_refs(data),
            name=data.get("name"),
            grpc_matches=[GRPCRouteMatch.from_dict(m) for m in data.get("matches") or []],
            grpc_filters=[RouteFilter.from_dict(f) for f in data.get("filters") or []],
        )


@dataclass
class StreamRouteRule(RouteRule):
    """Rule of a TCP, TLS or UDP route: backends only."""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StreamRouteRule:
        return cls(backend_refs=cls._backend_refs(data), name=data.get("name"))


# Routes


@dataclass
class Route:
    """Common shape of every route kind."""

    metadata: ObjectMeta
    parent_refs: list[ParentReference] = field(default_factory=list)
    hostnames: list[str] = field(default_factory=list)
    rules: list[Any] = field(default_factory=list)

    route_kind = RouteKind.HTTP

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def namespaced_name(self) -> NamespacedName:
        return NamespacedName(self.metadata.namespace, self.metadata.name)

    @property
    def creation_timestamp(self) -> datetime | None:
        return self.metadata.creation_timestamp

    @property
    def generation(self) -> int:
        return self.metadata.generation

    @property
    def route_identifier(self) -> RouteIdentifier:
        return RouteIdentifier(self.route_kind, self.metadata.namespace, self.metadata.name)

    @classmethod
    def _parse_rule(cls, data: dict[str, Any]) -> Any:
        return StreamRouteRule.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Route:
        spec = data.get("spec") or {}
        return cls(
            metadata=ObjectMeta.from_dict(data.get("metadata")),
            parent_refs=[ParentReference.from_dict(p) for p in spec.get("parentRefs") or []],
            hostnames=list(spec.get("hostnames") or []),
            rules=[cls._parse_rule(r) for r in spec.get("rules") or []],
        )


@dataclass
class HTTPRoute(Route):
    rules: list[HTTPRouteRule] = field(default_factory=list)

    route_kind = RouteKind.HTTP

    @classmethod
    def _parse_rule(cls, data: dict[str, Any]) -> HTTPRouteRule:
        return HTTPRouteRule.from_dict(data)


@dataclass
class GRPCRoute(Route):
    rules: list[GRPCRouteRule] = field(default_factory=list)

    route_kind = RouteKind.GRPC

    @classmethod
    def _parse_rule(cls, data: dict[str, Any]) -> GRPCRouteRule:
        return GRPCRouteRule.from_dict(data)


@dataclass
class TLSRoute(Route):
    rules: list[StreamRouteRule] = field(default_factory=list)

    route_kind = RouteKind.TLS


@dataclass
class TCPRoute(Route):
    rules: list[StreamRouteRule] = field(default_factory=list)

    route_kind = RouteKind.TCP


@dataclass
class UDPRoute(Route):
    rules: list[StreamRouteRule] = field(default_factory=list)

    route_kind = RouteKind.UDP


ROUTE_TYPES: dict[RouteKind, type[Route]] = {
    RouteKind.HTTP: HTTPRoute,
    RouteKind.GRPC: GRPCRoute,
    RouteKind.TLS: TLSRoute,
    RouteKind.TCP: TCPRoute,
    RouteKind.UDP: UDPRoute,
}


def route_from_dict(data: dict[str, Any]) -> Route:
    """Create the matching route variant from a manifest.

    Args:
        data: Manifest dictionary with a route ``kind``.

    Returns:
        The parsed route.

    Raises:
        ManifestError: If the kind is not a route kind or the manifest is malformed.
    """
    try:
        kind = RouteKind.from_kind(data.get("kind", ""))
    except ValueError as e:
        raise ManifestError(str(e)) from e
    return ROUTE_TYPES[kind].from_dict(data)
