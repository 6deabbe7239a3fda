"""Gateway API vocabulary shared across the compiler.

Enums use the exact strings that appear in manifests and in published
status conditions, so values can be compared to raw manifest data and
written back without translation.
"""

from __future__ import annotations

from enum import Enum

GATEWAY_API_GROUP = "gateway.networking.k8s.io"
CORE_GROUP = ""

MIN_PORT = 1
MAX_PORT = 65535

MAX_WEIGHT = 999
"""Largest backend weight accepted by the load balancer."""

DEFAULT_WEIGHT = 1

MAX_MATCH_INDEX = 2**63 - 1
"""Match index given to the synthetic entry of a rule without matches."""


class ControllerClass(Enum):
    """Load balancer flavor a Gateway is reconciled for."""

    ALB = "alb"
    NLB = "nlb"


class Protocol(Enum):
    """Listener protocols."""

    HTTP = "HTTP"
    HTTPS = "HTTPS"
    GRPC = "GRPC"
    TCP = "TCP"
    UDP = "UDP"
    TLS = "TLS"


class RouteKind(Enum):
    """Route resource kinds."""

    HTTP = "HTTPRoute"
    GRPC = "GRPCRoute"
    TCP = "TCPRoute"
    TLS = "TLSRoute"
    UDP = "UDPRoute"

    @classmethod
    def from_kind(cls, kind: str) -> RouteKind:
        """Look up a route kind by its manifest ``kind`` string.

        Raises:
            ValueError: If the kind is not a route kind.
        """
        for member in cls:
            if member.value == kind:
                return member
        raise ValueError(f"Unknown route kind: {kind}")


class NamespacesFrom(Enum):
    """Namespace policy of a listener's allowed routes."""

    SAME = "Same"
    ALL = "All"
    SELECTOR = "Selector"


class ListenerReason(Enum):
    """Condition reasons published for listeners."""

    ACCEPTED = "Accepted"
    INVALID_ROUTE_KINDS = "InvalidRouteKinds"
    PORT_UNAVAILABLE = "PortUnavailable"
    UNSUPPORTED_PROTOCOL = "UnsupportedProtocol"
    PROTOCOL_CONFLICT = "ProtocolConflict"
    HOSTNAME_CONFLICT = "HostnameConflict"
    REF_NOT_PERMITTED = "RefNotPermitted"


class RouteReason(Enum):
    """Condition reasons published for routes."""

    ACCEPTED = "Accepted"
    NOT_ALLOWED_BY_LISTENERS = "NotAllowedByListeners"
    NO_MATCHING_LISTENER_HOSTNAME = "NoMatchingListenerHostname"
    NO_MATCHING_PARENT = "NoMatchingParent"
    REF_NOT_PERMITTED = "RefNotPermitted"
    BACKEND_NOT_FOUND = "BackendNotFound"
    UNSUPPORTED_VALUE = "UnsupportedValue"
    INVALID_KIND = "InvalidKind"


class PathMatchType(Enum):
    """HTTP path match types, with their precedence rank."""

    EXACT = "Exact"
    PATH_PREFIX = "PathPrefix"
    REGULAR_EXPRESSION = "RegularExpression"

    @property
    def rank(self) -> int:
        return _PATH_MATCH_RANK[self]


class GRPCMethodMatchType(Enum):
    """GRPC method match types, with their precedence rank."""

    EXACT = "Exact"
    REGULAR_EXPRESSION = "RegularExpression"

    @property
    def rank(self) -> int:
        return _GRPC_MATCH_RANK[self]


class HeaderMatchType(Enum):
    """Header and query parameter match types."""

    EXACT = "Exact"
    REGULAR_EXPRESSION = "RegularExpression"


class FilterType(Enum):
    """Route rule filter types."""

    REQUEST_HEADER_MODIFIER = "RequestHeaderModifier"
    RESPONSE_HEADER_MODIFIER = "ResponseHeaderModifier"
    REQUEST_MIRROR = "RequestMirror"
    REQUEST_REDIRECT = "RequestRedirect"
    URL_REWRITE = "URLRewrite"
    EXTENSION_REF = "ExtensionRef"


class RewriteType(Enum):
    """Path modifier types used by redirects and URL rewrites."""

    REPLACE_FULL_PATH = "ReplaceFullPath"
    REPLACE_PREFIX_MATCH = "ReplacePrefixMatch"


_PATH_MATCH_RANK = {
    PathMatchType.EXACT: 3,
    PathMatchType.PATH_PREFIX: 2,
    PathMatchType.REGULAR_EXPRESSION: 1,
}

_GRPC_MATCH_RANK = {
    GRPCMethodMatchType.EXACT: 3,
    GRPCMethodMatchType.REGULAR_EXPRESSION: 1,
}

DEFAULT_PROTOCOL_ROUTE_KINDS: dict[Protocol, tuple[RouteKind, ...]] = {
    Protocol.HTTP: (RouteKind.HTTP,),
    Protocol.HTTPS: (RouteKind.HTTP, RouteKind.GRPC),
    Protocol.GRPC: (RouteKind.GRPC,),
    Protocol.TCP: (RouteKind.TCP,),
    Protocol.UDP: (RouteKind.UDP,),
    Protocol.TLS: (RouteKind.TLS,),
}

CONTROLLER_PROTOCOLS: dict[ControllerClass, frozenset[Protocol]] = {
    ControllerClass.ALB: frozenset({Protocol.HTTP, Protocol.HTTPS, Protocol.GRPC}),
    ControllerClass.NLB: frozenset({Protocol.TCP, Protocol.UDP, Protocol.TLS}),
}

CONTROLLER_ROUTE_KINDS: dict[ControllerClass, frozenset[RouteKind]] = {
    ControllerClass.ALB: frozenset({RouteKind.HTTP, RouteKind.GRPC}),
    ControllerClass.NLB: frozenset({RouteKind.TCP, RouteKind.TLS, RouteKind.UDP}),
}

HOSTNAME_ROUTE_KINDS = frozenset({RouteKind.HTTP, RouteKind.GRPC, RouteKind.TLS})
"""Route kinds whose hostnames take part in listener matching."""

# Protocols allowed to share a port with each other.
COMPATIBLE_PORT_PROTOCOLS = frozenset({Protocol.TCP, Protocol.UDP})
