"""Route to listener attachment.

A route attaches to a listener only when both sides agree:

Route side:
    - one of the route's parent references names this Gateway
      (kind Gateway, same name, namespace explicit or the route's own)
    - that reference's sectionName and port, when set, name this listener

Listener side:
    - the listener is valid
    - the route's namespace passes the listener's namespace policy
    - the route's kind is one of the listener's supported kinds
    - for HTTP, GRPC and TLS routes, at least one route hostname is
      compatible with the listener hostname

A parent reference that reached a listener on the route side but was turned
down on the listener side reports the listener's reason. A reference that
reached no listener at all reports NoMatchingParent.

Example:
    resolver = AttachmentResolver(store)
    result = resolver.resolve(gateway, listener_results, routes)
    for port, routes in result.routes_by_port.items():
        print(port, [str(r.route_identifier) for r in routes])
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog

from gateroute.hostnames import intersect_hostnames, validate_hostname
from gateroute.listeners import ListenerValidationResult, ListenerValidationResults
from gateroute.model.constants import (
    GATEWAY_API_GROUP,
    HOSTNAME_ROUTE_KINDS,
    NamespacesFrom,
    RouteReason,
)
from gateroute.model.resources import Gateway, LabelSelector, Listener, ParentReference
from gateroute.model.routes import Route, RouteIdentifier
from gateroute.store import ResourceStore

logger = structlog.get_logger()


@dataclass(frozen=True)
class AttachmentFailure:
    """A route (parent reference) that could not attach, for status publication."""

    route: Route
    parent_ref: ParentReference | None
    reason: RouteReason
    message: str

    def to_dict(self) -> dict:
        return {
            "route": str(self.route.route_identifier),
            "parent_ref": self.parent_ref.to_dict() if self.parent_ref else None,
            "reason": self.reason.value,
            "message": self.message,
        }


@dataclass(frozen=True)
class AttachmentDecision:
    """Listener side verdict for one route."""

    accepted: bool
    reason: RouteReason | None = None
    message: str | None = None
    hostnames: tuple[str, ...] = ()


@dataclass
class AttachmentResult:
    """Everything attachment produces for one Gateway."""

    routes_by_port: dict[int, list[Route]] = field(default_factory=dict)
    compatible_hostnames_by_port: dict[int, dict[RouteIdentifier, list[str]]] = field(
        default_factory=dict
    )
    failed_attachments: list[AttachmentFailure] = field(default_factory=list)
    matched_parent_refs: dict[RouteIdentifier, list[ParentReference]] = field(default_factory=dict)

    def attached_routes(self) -> list[Route]:
        """Routes attached to at least one port, each listed once."""
        seen: set[RouteIdentifier] = set()
        routes = []
        for port in sorted(self.routes_by_port):
            for route in self.routes_by_port[port]:
                if route.route_identifier not in seen:
                    seen.add(route.route_identifier)
                    routes.append(route)
        return routes

    def hostnames_for(self, port: int, route: Route) -> list[str]:
        """Compatible hostnames of a route on a port, or its declared hostnames."""
        hostnames = self.compatible_hostnames_by_port.get(port, {}).get(route.route_identifier)
        if hostnames:
            return hostnames
        return list(route.hostnames)


def parent_ref_targets_gateway(gateway: Gateway, route: Route, ref: ParentReference) -> bool:
    """Check whether a parent reference names this Gateway."""
    if ref.kind != "Gateway" or ref.group != GATEWAY_API_GROUP:
        return False
    namespace = ref.namespace if ref.namespace is not None else route.namespace
    return ref.name == gateway.name and namespace == gateway.namespace


def route_targets_gateway(gateway: Gateway, route: Route) -> bool:
    return any(parent_ref_targets_gateway(gateway, route, ref) for ref in route.parent_refs)


def parent_ref_matches_listener(ref: ParentReference, listener: Listener) -> bool:
    """Check a parent reference's sectionName and port against a listener."""
    if ref.section_name is not None and ref.section_name != listener.name:
        return False
    if ref.port is not None and ref.port != listener.port:
        return False
    return True


class ListenerAttachmentHelper:
    """Listener side attachment checks.

    Namespace selector lookups are memoized per instance, so an instance
    must not outlive a single reconciliation pass.
    """

    def __init__(self, store: ResourceStore):
        self.store = store
        self._selector_namespaces: dict[LabelSelector, set[str]] = {}

    def check(
        self,
        gateway: Gateway,
        listener_result: ListenerValidationResult,
        route: Route,
    ) -> AttachmentDecision:
        """Decide whether a listener accepts a route.

        Args:
            gateway: Gateway owning the listener.
            listener_result: Validation result of the listener.
            route: Candidate route.

        Returns:
            The decision, with the compatible hostnames when accepted.

        Raises:
            StoreError: If namespaces cannot be listed for a selector.
        """
        listener = listener_result.listener
        if not listener_result.valid:
            return AttachmentDecision(
                accepted=False,
                reason=RouteReason.NOT_ALLOWED_BY_LISTENERS,
                message=f"Listener {listener.name} is not valid: {listener_result.reason.value}",
            )

        if not self.namespace_allowed(gateway, listener, route):
            return AttachmentDecision(
                accepted=False,
                reason=RouteReason.NOT_ALLOWED_BY_LISTENERS,
                message=(
                    f"Route namespace {route.namespace} is not allowed by listener "
                    f"{listener.name} ({listener.namespaces_from.value})"
                ),
            )

        if route.route_kind not in listener_result.supported_kinds:
            return AttachmentDecision(
                accepted=False,
                reason=RouteReason.NOT_ALLOWED_BY_LISTENERS,
                message=f"Route kind {route.route_kind.value} is not allowed by listener {listener.name}",
            )

        return self.hostname_decision(listener, route)

    def namespace_allowed(self, gateway: Gateway, listener: Listener, route: Route) -> bool:
        if listener.namespaces_from == NamespacesFrom.ALL:
            return True
        if listener.namespaces_from == NamespacesFrom.SAME:
            return route.namespace == gateway.namespace
        if listener.namespace_selector is None:
            return False
        return route.namespace in self._namespaces_for(listener.namespace_selector)

    def hostname_decision(self, listener: Listener, route: Route) -> AttachmentDecision:
        if route.route_kind not in HOSTNAME_ROUTE_KINDS:
            return AttachmentDecision(accepted=True)

        if listener.hostname is None:
            return AttachmentDecision(
                accepted=True,
                hostnames=tuple(intersect_hostnames(None, route.hostnames)),
            )
        if not route.hostnames:
            return AttachmentDecision(accepted=True)

        valid, error = validate_hostname(listener.hostname)
        if not valid:
            logger.warning(
                "Listener hostname is invalid",
                listener=listener.name,
                hostname=listener.hostname,
                error=error,
            )
            return AttachmentDecision(
                accepted=False,
                reason=RouteReason.NO_MATCHING_LISTENER_HOSTNAME,
                message=f"Listener {listener.name} hostname {listener.hostname} is invalid: {error}",
            )

        hostnames = intersect_hostnames(listener.hostname, route.hostnames)
        if not hostnames:
            return AttachmentDecision(
                accepted=False,
                reason=RouteReason.NO_MATCHING_LISTENER_HOSTNAME,
                message=f"No route hostname matches listener {listener.name} hostname {listener.hostname}",
            )
        return AttachmentDecision(accepted=True, hostnames=tuple(hostnames))

    def _namespaces_for(self, selector: LabelSelector) -> set[str]:
        if selector not in self._selector_namespaces:
            self._selector_namespaces[selector] = self.store.list_namespace_names(selector)
        return self._selector_namespaces[selector]


class AttachmentResolver:
    """Maps routes onto the listeners of one Gateway."""

    def __init__(self, store: ResourceStore):
        self.store = store

    def resolve(
        self,
        gateway: Gateway,
        listener_results: ListenerValidationResults,
        routes: Iterable[Route],
    ) -> AttachmentResult:
        """Attach routes to listeners.

        Routes that do not reference this Gateway are ignored. Output does
        not depend on the order routes are given in.

        Args:
            gateway: The Gateway.
            listener_results: Validation results of the Gateway's listeners.
            routes: Candidate routes of any kind.

        Returns:
            Routes per port, compatible hostnames, failures and matched
            parent references.

        Raises:
            StoreError: If a namespace selector cannot be evaluated.
        """
        helper = ListenerAttachmentHelper(self.store)
        result = AttachmentResult()
        hostnames_by_port: dict[int, dict[RouteIdentifier, set[str]]] = {}
        ports_by_route: dict[int, dict[RouteIdentifier, Route]] = {}

        for route in _unique_sorted(routes):
            if not route_targets_gateway(gateway, route):
                continue

            refs = [
                (index, ref)
                for index, ref in enumerate(route.parent_refs)
                if parent_ref_targets_gateway(gateway, route, ref)
            ]
            matched: set[int] = set()
            attached: set[int] = set()
            rejections: dict[int, list[AttachmentDecision]] = {}

            for listener_result in listener_results:
                listener = listener_result.listener
                listener_refs = [i for i, ref in refs if parent_ref_matches_listener(ref, listener)]
                if not listener_refs:
                    continue
                matched.update(listener_refs)

                decision = helper.check(gateway, listener_result, route)
                if not decision.accepted:
                    for index in listener_refs:
                        rejections.setdefault(index, []).append(decision)
                    continue

                attached.update(listener_refs)
                ports_by_route.setdefault(listener.port, {})[route.route_identifier] = route
                if decision.hostnames:
                    hostnames_by_port.setdefault(listener.port, {}).setdefault(
                        route.route_identifier, set()
                    ).update(decision.hostnames)

            self._record_parent_refs(route, refs, matched, attached, rejections, result)

        for port in sorted(ports_by_route):
            by_id = ports_by_route[port]
            result.routes_by_port[port] = [by_id[key] for key in sorted(by_id, key=str)]
        for port in sorted(hostnames_by_port):
            by_id = hostnames_by_port[port]
            result.compatible_hostnames_by_port[port] = {
                key: sorted(by_id[key]) for key in sorted(by_id, key=str)
            }

        logger.debug(
            "Resolved route attachment",
            gateway=str(gateway.namespaced_name),
            ports=len(result.routes_by_port),
            failures=len(result.failed_attachments),
        )
        return result

    @staticmethod
    def _record_parent_refs(
        route: Route,
        refs: list[tuple[int, ParentReference]],
        matched: set[int],
        attached: set[int],
        rejections: dict[int, list[AttachmentDecision]],
        result: AttachmentResult,
    ) -> None:
        for index, ref in refs:
            if index in attached:
                result.matched_parent_refs.setdefault(route.route_identifier, []).append(ref)
                continue

            if index not in matched:
                result.failed_attachments.append(
                    AttachmentFailure(
                        route=route,
                        parent_ref=ref,
                        reason=RouteReason.NO_MATCHING_PARENT,
                        message=f"No listener matches parent reference {ref}",
                    )
                )
                continue

            seen: set[tuple[RouteReason | None, str | None]] = set()
            for decision in rejections.get(index, []):
                key = (decision.reason, decision.message)
                if key in seen:
                    continue
                seen.add(key)
                result.failed_attachments.append(
                    AttachmentFailure(
                        route=route,
                        parent_ref=ref,
                        reason=decision.reason or RouteReason.NOT_ALLOWED_BY_LISTENERS,
                        message=decision.message or "",
                    )
                )


def _unique_sorted(routes: Iterable[Route]) -> list[Route]:
    by_id: dict[RouteIdentifier, Route] = {}
    for route in routes:
        by_id.setdefault(route.route_identifier, route)
    return [by_id[key] for key in sorted(by_id, key=str)]
