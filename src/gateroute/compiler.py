"""Gateway compilation pass.

Runs the full pipeline for one Gateway:

    listeners -> attachment -> backend resolution -> classification -> precedence

Every call to ``GatewayCompiler.compile`` builds its own validators,
resolvers and accumulators, so one compiler may serve concurrent passes
over different Gateways.

Example:
    compiler = GatewayCompiler(store, ControllerClass.ALB)
    result = compiler.compile(gateway)

    for port, entries in result.rules_by_port.items():
        for entry in entries:
            print(port, entry.route.route_identifier, entry_transforms(entry))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from gateroute.attachment import AttachmentResolver, AttachmentResult
from gateroute.backends import BackendResolver
from gateroute.classifier import (
    CleanupPlan,
    ResourceLimits,
    ResourceUsage,
    RouteAccounting,
    account_routes,
    plan_cleanup,
    validate_resource_limits,
)
from gateroute.core.config import CompilerConfig
from gateroute.errors import ResourceLimitError
from gateroute.listeners import ListenerValidationResults, ListenerValidator
from gateroute.loader import LoadResult, RouteLoader
from gateroute.model.constants import ControllerClass, RouteKind
from gateroute.model.resources import Gateway
from gateroute.precedence import RulePrecedence, sort_rules
from gateroute.store import ResourceStore
from gateroute.transforms import Transform, build_transforms

logger = structlog.get_logger()


def entry_transforms(entry: RulePrecedence) -> list[Transform]:
    """Compile the request transforms of one rule table entry."""
    return build_transforms(entry.route_kind, entry.rule.filters, entry.match)


@dataclass
class CompileResult:
    """Everything a compilation pass produces for one Gateway."""

    gateway: Gateway
    controller_class: ControllerClass
    listeners: ListenerValidationResults
    attachment: AttachmentResult
    load: LoadResult
    rules_by_port: dict[int, list[RulePrecedence]] = field(default_factory=dict)
    accounting: list[RouteAccounting] = field(default_factory=list)
    usage: ResourceUsage = field(default_factory=ResourceUsage)
    limit_errors: list[str] = field(default_factory=list)
    cleanup: list[CleanupPlan] = field(default_factory=list)
    """Rule changes against the previous pass, when one was given."""

    @property
    def rules(self) -> list[RulePrecedence]:
        """Rule table entries of all ports, ports in ascending order."""
        return [entry for port in sorted(self.rules_by_port) for entry in self.rules_by_port[port]]

    @property
    def rule_validation_errors(self) -> list[dict[str, Any]]:
        """Validation problems of HTTP route rules, one entry per rule."""
        return [
            {
                "route": str(accounting.route.route_identifier),
                "rule_index": index,
                "errors": [str(error) for error in errors],
            }
            for accounting in self.accounting
            for index, errors in sorted(accounting.validation_errors.items())
        ]

    @property
    def has_errors(self) -> bool:
        return bool(
            self.listeners.has_errors
            or self.attachment.failed_attachments
            or self.load.failures
            or self.load.unresolved_refs
            or self.limit_errors
            or any(accounting.validation_errors for accounting in self.accounting)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "gateway": str(self.gateway.namespaced_name),
            "controller_class": self.controller_class.value,
            "listeners": [result.to_dict() for result in self.listeners],
            "routes_by_port": {
                str(port): [str(route.route_identifier) for route in routes]
                for port, routes in self.attachment.routes_by_port.items()
            },
            "failed_attachments": [f.to_dict() for f in self.attachment.failed_attachments],
            "route_failures": [f.to_dict() for f in self.load.failures + self.load.unresolved_refs],
            "rule_validation_errors": self.rule_validation_errors,
            "rules_by_port": {
                str(port): [
                    {**entry.to_dict(), "transforms": [t.to_dict() for t in entry_transforms(entry)]}
                    for entry in entries
                ]
                for port, entries in self.rules_by_port.items()
            },
            "usage": self.usage.to_dict(),
            "limit_errors": self.limit_errors,
            "cleanup": [plan.to_dict() for plan in self.cleanup],
        }


class GatewayCompiler:
    """Compiles Gateways against a resource store.

    Args:
        store: Resource store to read routes and referenced resources from.
        controller_class: Controller class; defaults to the configured one.
        config: Compiler settings; defaults to values from the environment.
    """

    def __init__(
        self,
        store: ResourceStore,
        controller_class: ControllerClass | None = None,
        config: CompilerConfig | None = None,
    ):
        self.store = store
        self.config = config or CompilerConfig()
        self.controller_class = controller_class or self.config.controller_class
        self.limits = ResourceLimits(
            max_target_groups=self.config.max_target_groups,
            max_rules_per_route=self.config.max_rules_per_route,
        )

    def compile(self, gateway: Gateway, previous: CompileResult | None = None) -> CompileResult:
        """Run one compilation pass over a Gateway.

        Args:
            gateway: The Gateway to compile.
            previous: Result of the previous pass over the same Gateway, used
                to plan the cleanup of rules that changed since.

        Returns:
            Listener results, attachment, loaded routes and the ordered
            rule table per port.

        Raises:
            StoreError: If the resource store fails; the pass should be retried.
            ResourceLimitError: If limits are exceeded and enforcement is on.
        """
        log = logger.bind(gateway=str(gateway.namespaced_name), controller=self.controller_class.value)

        listeners = ListenerValidator(self.store, self.controller_class).validate(gateway)

        kinds = [
            kind
            for kind in RouteKind
            if any(kind in result.supported_kinds for result in listeners.valid_listeners)
        ]
        routes = [route for kind in kinds for route in self.store.list_routes(kind)]

        attachment = AttachmentResolver(self.store).resolve(gateway, listeners, routes)

        resolver = BackendResolver(self.store, max_weight=self.config.max_backend_weight)
        load = RouteLoader(self.store, resolver).load(attachment.attached_routes())

        rules_by_port = {}
        for port, port_routes in attachment.routes_by_port.items():
            loaded = [
                load.routes[route.route_identifier]
                for route in port_routes
                if route.route_identifier in load.routes
            ]
            rules_by_port[port] = sort_rules(
                loaded,
                attachment.compatible_hostnames_by_port.get(port),
            )

        accounting = account_routes(load.routes.values(), self.limits, self.config.max_backend_weight)
        usage = sum((a.usage for a in accounting), ResourceUsage())
        limit_errors = [error for a in accounting for error in a.limit_errors]
        gateway_usage = ResourceUsage(target_groups_required=usage.target_groups_required)
        limit_errors.extend(
            error
            for error in validate_resource_limits(gateway_usage, self.limits)
            if error not in limit_errors
        )

        result = CompileResult(
            gateway=gateway,
            controller_class=self.controller_class,
            listeners=listeners,
            attachment=attachment,
            load=load,
            rules_by_port=rules_by_port,
            accounting=accounting,
            usage=usage,
            limit_errors=limit_errors,
            cleanup=plan_cleanup(previous.load.routes, load.routes) if previous is not None else [],
        )

        log.info(
            "Compiled gateway",
            listeners=len(listeners),
            invalid_listeners=sum(1 for r in listeners if not r.valid),
            routes=len(load.routes),
            failed_attachments=len(attachment.failed_attachments),
            rules=len(result.rules),
            target_groups=usage.target_groups_required,
        )

        if limit_errors and self.config.enforce_resource_limits:
            raise ResourceLimitError(limit_errors)
        return result
