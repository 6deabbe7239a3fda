"""Listener validation.

Checks every listener of a Gateway against the controller class it is
reconciled for. Checks run in a fixed order and the first failure decides
the listener's reason:

1. Route kinds (explicit kinds must be supported by the controller class)
2. Port range
3. Protocol supported by the controller class
4. Protocol conflict with an earlier listener on the same port (TCP and UDP may share)
5. Hostname conflict with an earlier listener on the same port
6. Namespace selector policy needs a ReferenceGrant from another namespace

Every listener is evaluated; a failure never stops the remaining listeners.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from gateroute.model.constants import (
    COMPATIBLE_PORT_PROTOCOLS,
    CONTROLLER_PROTOCOLS,
    CONTROLLER_ROUTE_KINDS,
    DEFAULT_PROTOCOL_ROUTE_KINDS,
    MAX_PORT,
    MIN_PORT,
    ControllerClass,
    ListenerReason,
    NamespacesFrom,
    RouteKind,
)
from gateroute.model.resources import Gateway, Listener
from gateroute.store import ResourceStore

logger = structlog.get_logger()

ACCEPTED_MESSAGE = "Listener is accepted"


@dataclass
class ListenerValidationResult:
    """Outcome of validating one listener."""

    listener: Listener
    valid: bool = True
    reason: ListenerReason = ListenerReason.ACCEPTED
    message: str = ACCEPTED_MESSAGE
    supported_kinds: tuple[RouteKind, ...] = ()

    @property
    def name(self) -> str:
        return self.listener.name

    def reject(self, reason: ListenerReason, message: str) -> None:
        self.valid = False
        self.reason = reason
        self.message = message

    def to_dict(self) -> dict:
        return {
            "name": self.listener.name,
            "port": self.listener.port,
            "protocol": self.listener.protocol,
            "valid": self.valid,
            "reason": self.reason.value,
            "message": self.message,
            "supported_kinds": [kind.value for kind in self.supported_kinds],
        }


@dataclass
class ListenerValidationResults:
    """Validation outcome for all listeners of a Gateway."""

    results: dict[str, ListenerValidationResult] = field(default_factory=dict)

    @property
    def has_errors(self) -> bool:
        return any(not result.valid for result in self.results.values())

    @property
    def valid_listeners(self) -> list[ListenerValidationResult]:
        return [result for result in self.results.values() if result.valid]

    def __getitem__(self, name: str) -> ListenerValidationResult:
        return self.results[name]

    def __iter__(self):
        return iter(self.results.values())

    def __len__(self) -> int:
        return len(self.results)


def supported_route_kinds(
    controller_class: ControllerClass,
    listener: Listener,
) -> tuple[tuple[RouteKind, ...], bool]:
    """Compute the route kinds a listener accepts.

    Args:
        controller_class: Controller class reconciling the Gateway.
        listener: The listener.

    Returns:
        Tuple of (supported kinds, all explicit kinds supported). When the
        listener sets no kinds, the protocol's default kinds are returned.
    """
    if not listener.allowed_kinds:
        protocol = listener.protocol_type
        if protocol is None:
            return (), True
        return DEFAULT_PROTOCOL_ROUTE_KINDS[protocol], True

    allowed = CONTROLLER_ROUTE_KINDS[controller_class]
    kinds: list[RouteKind] = []
    all_supported = True
    for group_kind in listener.allowed_kinds:
        try:
            kind = RouteKind.from_kind(group_kind.kind)
        except ValueError:
            all_supported = False
            continue
        if kind not in allowed:
            all_supported = False
            continue
        if kind not in kinds:
            kinds.append(kind)
    return tuple(kinds), all_supported


class ListenerValidator:
    """Validates the listeners of a Gateway for one controller class.

    A validator holds no state between calls; one instance may validate
    any number of Gateways.
    """

    def __init__(self, store: ResourceStore, controller_class: ControllerClass):
        self.store = store
        self.controller_class = controller_class

    def validate(self, gateway: Gateway) -> ListenerValidationResults:
        """Validate every listener of a Gateway.

        Args:
            gateway: Gateway whose listeners are validated.

        Returns:
            One result per listener, in declaration order.

        Raises:
            StoreError: If reference grants cannot be listed.
        """
        results = ListenerValidationResults()
        port_protocols: dict[int, str] = {}
        port_hostnames: dict[int, set[str]] = {}

        for listener in gateway.listeners:
            kinds, kinds_supported = supported_route_kinds(self.controller_class, listener)
            result = ListenerValidationResult(listener=listener, supported_kinds=kinds)

            if not kinds_supported:
                result.reject(
                    ListenerReason.INVALID_ROUTE_KINDS,
                    f"Invalid route kind for listener {listener.name}",
                )
            elif not MIN_PORT <= listener.port <= MAX_PORT:
                result.reject(
                    ListenerReason.PORT_UNAVAILABLE,
                    f"Port {listener.port} is not available (listener name {listener.name})",
                )
            elif listener.protocol_type not in CONTROLLER_PROTOCOLS[self.controller_class]:
                result.reject(
                    ListenerReason.UNSUPPORTED_PROTOCOL,
                    f"Unsupported protocol {listener.protocol} for listener {listener.name}",
                )
            else:
                self._check_conflicts(listener, result, port_protocols, port_hostnames)
                if result.valid and listener.namespaces_from == NamespacesFrom.SELECTOR:
                    self._check_selector_permitted(gateway, listener, result)

            if not result.valid:
                logger.info(
                    "Listener rejected",
                    gateway=str(gateway.namespaced_name),
                    listener=listener.name,
                    reason=result.reason.value,
                )
            results.results[listener.name] = result

        return results

    def _check_conflicts(
        self,
        listener: Listener,
        result: ListenerValidationResult,
        port_protocols: dict[int, str],
        port_hostnames: dict[int, set[str]],
    ) -> None:
        existing = port_protocols.get(listener.port)
        if existing is None:
            port_protocols[listener.port] = listener.protocol
        elif existing != listener.protocol and not _protocols_can_share_port(existing, listener.protocol):
            result.reject(
                ListenerReason.PROTOCOL_CONFLICT,
                f"Protocol conflict for port {listener.port}",
            )

        if listener.hostname is None:
            return
        hostnames = port_hostnames.setdefault(listener.port, set())
        if listener.hostname in hostnames:
            if result.valid:
                result.reject(
                    ListenerReason.HOSTNAME_CONFLICT,
                    f"Hostname conflict for port {listener.port} with hostname {listener.hostname}",
                )
        else:
            hostnames.add(listener.hostname)

    def _check_selector_permitted(
        self,
        gateway: Gateway,
        listener: Listener,
        result: ListenerValidationResult,
    ) -> None:
        for grant in self.store.list_reference_grants():
            if grant.namespace != gateway.namespace:
                return
        result.reject(
            ListenerReason.REF_NOT_PERMITTED,
            f"RefNotPermitted for listener {listener.name}",
        )


def _protocols_can_share_port(first: str, second: str) -> bool:
    return {first, second} <= {p.value for p in COMPATIBLE_PORT_PROTOCOLS}
