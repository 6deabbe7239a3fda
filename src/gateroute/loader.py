"""Route materialization.

Resolves the backends of every rule of the attached routes. Each route is
materialized on its own: a structural problem in one route is recorded and
the remaining routes are still loaded. Resource store failures propagate.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog

from gateroute.backends import Backend, BackendResolution, BackendResolver
from gateroute.errors import RouteLoadError
from gateroute.model.constants import RouteKind, RouteReason
from gateroute.model.resources import ParentReference
from gateroute.model.routes import Route, RouteFilter, RouteIdentifier, RouteRule
from gateroute.store import ResourceStore

logger = structlog.get_logger()


@dataclass(frozen=True, eq=False)
class LoadedRule:
    """A route rule together with its resolved backends."""

    rule: RouteRule
    index: int
    backends: tuple[Backend, ...] = ()

    @property
    def matches(self) -> list[Any]:
        return self.rule.matches

    @property
    def filters(self) -> list[RouteFilter]:
        return self.rule.filters


@dataclass(eq=False)
class LoadedRoute:
    """A route whose rules have been materialized."""

    route: Route
    rules: list[LoadedRule] = field(default_factory=list)

    @property
    def route_identifier(self) -> RouteIdentifier:
        return self.route.route_identifier

    @property
    def route_kind(self) -> RouteKind:
        return self.route.route_kind

    @property
    def hostnames(self) -> list[str]:
        return self.route.hostnames

    @property
    def parent_refs(self) -> list[ParentReference]:
        return self.route.parent_refs


@dataclass(frozen=True)
class RouteLoadFailure:
    """A problem found while materializing a route."""

    route: Route
    reason: RouteReason
    message: str
    rule_index: int | None = None

    def to_dict(self) -> dict:
        return {
            "route": str(self.route.route_identifier),
            "reason": self.reason.value,
            "message": self.message,
            "rule_index": self.rule_index,
        }


@dataclass
class LoadResult:
    routes: dict[RouteIdentifier, LoadedRoute] = field(default_factory=dict)
    failures: list[RouteLoadFailure] = field(default_factory=list)
    """Routes that could not be materialized at all."""

    unresolved_refs: list[RouteLoadFailure] = field(default_factory=list)
    """Backend references that resolved to nothing for a reason worth reporting."""


class RouteLoader:
    """Materializes routes, resolving backends with a BackendResolver."""

    def __init__(self, store: ResourceStore, resolver: BackendResolver | None = None):
        self.store = store
        self.resolver = resolver or BackendResolver(store)

    def load(self, routes: Iterable[Route]) -> LoadResult:
        """Materialize routes.

        Args:
            routes: Attached routes.

        Returns:
            Loaded routes keyed by identifier, plus failures.

        Raises:
            StoreError: If the resource store fails.
        """
        result = LoadResult()
        for route in routes:
            unresolved: list[RouteLoadFailure] = []
            try:
                loaded = self.load_route(route, unresolved)
            except RouteLoadError as e:
                logger.warning(
                    "Failed to load route",
                    route=str(route.route_identifier),
                    reason=e.reason.value,
                    error=e.message,
                )
                result.failures.append(RouteLoadFailure(route=route, reason=e.reason, message=e.message))
                continue
            result.routes[route.route_identifier] = loaded
            result.unresolved_refs.extend(unresolved)
        return result

    def load_route(
        self,
        route: Route,
        unresolved: list[RouteLoadFailure] | None = None,
    ) -> LoadedRoute:
        """Materialize a single route.

        Args:
            route: Route to load.
            unresolved: Collects references that resolved to nothing with a reason.

        Raises:
            RouteLoadError: If a rule has a structurally invalid backend.
            StoreError: If the resource store fails.
        """
        loaded = LoadedRoute(route=route)
        for index, rule in enumerate(route.rules):
            backends = []
            for backend_ref in rule.backend_refs:
                resolution = self.resolver.resolve(backend_ref, route)
                if resolution.resolved:
                    backends.append(resolution.backend)
                elif unresolved is not None and resolution.reason is not None:
                    unresolved.append(_unresolved_failure(route, index, resolution))
            loaded.rules.append(LoadedRule(rule=rule, index=index, backends=tuple(backends)))
        return loaded


def _unresolved_failure(route: Route, index: int, resolution: BackendResolution) -> RouteLoadFailure:
    return RouteLoadFailure(
        route=route,
        reason=resolution.reason,
        message=resolution.message or "",
        rule_index=index,
    )
