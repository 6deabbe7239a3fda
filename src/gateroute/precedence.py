"""Routing rule precedence.

Orders the matches of all HTTP and GRPC routes on a listener port the way
Gateway API requires, most specific first. Each (rule, match) pair becomes
one RulePrecedence entry; a rule without matches becomes a single entry
that sorts after every real match of that rule.

Comparison, first difference wins:
    1. Hostnames (specific before wildcard, more labels, longer)
    2. HTTP path match type / GRPC method match type
    3. HTTP path length / GRPC service length, then method length
    4. HTTP only: method present
    5. Header match count
    6. HTTP only: query parameter match count
    7. Route creation timestamp, earlier first
    8. Route namespace/name, smaller first
    9. Rule index
    10. Match index

HTTP entries precede GRPC entries in the final list.

Example:
    entries = sort_rules(loaded_routes, compatible_hostnames)
    for entry in entries:
        print(entry.route.route_identifier, entry.rule_index, entry.match_index)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import cmp_to_key
from typing import Any

from gateroute.hostnames import hostname_list_precedence
from gateroute.loader import LoadedRoute, LoadedRule
from gateroute.model.constants import MAX_MATCH_INDEX, RouteKind
from gateroute.model.routes import GRPCRouteMatch, HTTPRouteMatch, RouteIdentifier

# Routes without a creation timestamp sort as the newest.
_MISSING_TIMESTAMP = datetime.max.replace(tzinfo=UTC)


@dataclass(frozen=True)
class HTTPMatchFactors:
    path_type: int = 0
    path_length: int = 0
    has_method: bool = False
    header_count: int = 0
    query_param_count: int = 0

    @classmethod
    def from_match(cls, match: HTTPRouteMatch | None) -> HTTPMatchFactors:
        if match is None:
            return cls()
        return cls(
            path_type=match.path.type.rank if match.path else 0,
            path_length=len(match.path.value) if match.path else 0,
            has_method=match.method is not None,
            header_count=len(match.headers),
            query_param_count=len(match.query_params),
        )


@dataclass(frozen=True)
class GRPCMatchFactors:
    method_type: int = 0
    service_length: int = 0
    method_length: int = 0
    header_count: int = 0

    @classmethod
    def from_match(cls, match: GRPCRouteMatch | None) -> GRPCMatchFactors:
        if match is None:
            return cls()
        method = match.method
        return cls(
            method_type=method.type.rank if method else 0,
            service_length=len(method.service or "") if method else 0,
            method_length=len(method.method or "") if method else 0,
            header_count=len(match.headers),
        )


@dataclass(frozen=True, eq=False)
class RulePrecedence:
    """One (rule, match) entry of the ordered rule table."""

    route: LoadedRoute
    rule: LoadedRule
    rule_index: int
    match_index: int
    match: Any | None
    hostnames: tuple[str, ...]
    creation_timestamp: datetime
    namespaced_name: str
    http_factors: HTTPMatchFactors | None = None
    grpc_factors: GRPCMatchFactors | None = None

    @property
    def route_kind(self) -> RouteKind:
        return self.route.route_kind

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "route": str(self.route.route_identifier),
            "rule_index": self.rule_index,
            "match_index": None if self.match_index == MAX_MATCH_INDEX else self.match_index,
            "hostnames": list(self.hostnames),
            "backends": [b.to_dict() for b in self.rule.backends],
        }
        if self.http_factors is not None:
            data["factors"] = {
                "path_type": self.http_factors.path_type,
                "path_length": self.http_factors.path_length,
                "has_method": self.http_factors.has_method,
                "header_count": self.http_factors.header_count,
                "query_param_count": self.http_factors.query_param_count,
            }
        elif self.grpc_factors is not None:
            data["factors"] = {
                "method_type": self.grpc_factors.method_type,
                "service_length": self.grpc_factors.service_length,
                "method_length": self.grpc_factors.method_length,
                "header_count": self.grpc_factors.header_count,
            }
        return data


def build_precedences(route: LoadedRoute, hostnames: Iterable[str]) -> list[RulePrecedence]:
    """Create the precedence entries of one HTTP or GRPC route.

    Args:
        route: The materialized route.
        hostnames: Hostnames the route serves on the port being compiled.

    Returns:
        One entry per (rule, match), or per rule when it has no matches.
    """
    common = {
        "hostnames": tuple(hostnames),
        "creation_timestamp": route.route.creation_timestamp or _MISSING_TIMESTAMP,
        "namespaced_name": str(route.route.namespaced_name),
    }
    is_http = route.route_kind == RouteKind.HTTP

    entries = []
    for rule in route.rules:
        indexed = list(enumerate(rule.matches)) or [(MAX_MATCH_INDEX, None)]
        for match_index, match in indexed:
            factors: dict[str, Any]
            if is_http:
                factors = {"http_factors": HTTPMatchFactors.from_match(match)}
            else:
                factors = {"grpc_factors": GRPCMatchFactors.from_match(match)}
            entries.append(
                RulePrecedence(
                    route=route,
                    rule=rule,
                    rule_index=rule.index,
                    match_index=match_index,
                    match=match,
                    **common,
                    **factors,
                )
            )
    return entries


def _cmp(a: Any, b: Any) -> int:
    """Return -1 when ``a`` should sort first, 1 when ``b`` should."""
    if a == b:
        return 0
    return -1 if a > b else 1


def _compare_common(a: RulePrecedence, b: RulePrecedence) -> int:
    if a.creation_timestamp != b.creation_timestamp:
        return -1 if a.creation_timestamp < b.creation_timestamp else 1
    if a.namespaced_name != b.namespaced_name:
        return -1 if a.namespaced_name < b.namespaced_name else 1
    if a.rule_index != b.rule_index:
        return -1 if a.rule_index < b.rule_index else 1
    if a.match_index != b.match_index:
        return -1 if a.match_index < b.match_index else 1
    return 0


def compare_http(a: RulePrecedence, b: RulePrecedence) -> int:
    """Compare two HTTP entries; negative when ``a`` has higher precedence."""
    result = hostname_list_precedence(a.hostnames, b.hostnames)
    if result != 0:
        return -result

    fa, fb = a.http_factors, b.http_factors
    for left, right in (
        (fa.path_type, fb.path_type),
        (fa.path_length, fb.path_length),
        (fa.has_method, fb.has_method),
        (fa.header_count, fb.header_count),
        (fa.query_param_count, fb.query_param_count),
    ):
        result = _cmp(left, right)
        if result != 0:
            return result
    return _compare_common(a, b)


def compare_grpc(a: RulePrecedence, b: RulePrecedence) -> int:
    """Compare two GRPC entries; negative when ``a`` has higher precedence."""
    result = hostname_list_precedence(a.hostnames, b.hostnames)
    if result != 0:
        return -result

    fa, fb = a.grpc_factors, b.grpc_factors
    for left, right in (
        (fa.method_type, fb.method_type),
        (fa.service_length, fb.service_length),
        (fa.method_length, fb.method_length),
        (fa.header_count, fb.header_count),
    ):
        result = _cmp(left, right)
        if result != 0:
            return result
    return _compare_common(a, b)


def sort_rules(
    routes: Iterable[LoadedRoute],
    compatible_hostnames: Mapping[RouteIdentifier, list[str]] | None = None,
) -> list[RulePrecedence]:
    """Produce the ordered rule table for one listener port.

    Args:
        routes: Materialized routes attached to the port. Routes of kinds
            other than HTTP and GRPC are ignored.
        compatible_hostnames: Per route hostnames shared with the port's
            listeners. A route missing here uses its declared hostnames.

    Returns:
        HTTP entries in precedence order followed by GRPC entries in
        precedence order.
    """
    compatible_hostnames = compatible_hostnames or {}
    http_entries: list[RulePrecedence] = []
    grpc_entries: list[RulePrecedence] = []

    for route in routes:
        hostnames = compatible_hostnames.get(route.route_identifier) or route.hostnames
        if route.route_kind == RouteKind.HTTP:
            http_entries.extend(build_precedences(route, hostnames))
        elif route.route_kind == RouteKind.GRPC:
            grpc_entries.extend(build_precedences(route, hostnames))

    http_entries.sort(key=cmp_to_key(compare_http))
    grpc_entries.sort(key=cmp_to_key(compare_grpc))
    return http_entries + grpc_entries
