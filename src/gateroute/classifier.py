"""Rule classification and resource accounting.

Rules fall into three categories:
    - Redirect-only: a RequestRedirect filter and no backends. Answered by
      the load balancer itself, so no target group is created for it.
    - Backend: backends and no redirect filter.
    - Mixed: backends and a redirect filter.

Classification depends on backend count only; the content of a redirect
filter never matters. Target group quota is charged for the backends of
non redirect-only rules and for nothing else, and cleanup between two
passes only ever releases target groups of such rules.

Example:
    usage = calculate_resource_usage(loaded_route)
    errors = validate_resource_limits(usage, ResourceLimits())
    print(generate_resource_report(loaded_route.route_identifier, usage, ResourceLimits()))
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

import structlog

from gateroute.backends import Backend
from gateroute.loader import LoadedRoute, LoadedRule
from gateroute.model.constants import MAX_PORT, MAX_WEIGHT, MIN_PORT, FilterType
from gateroute.model.routes import HTTPRouteRule, RequestRedirect, RouteIdentifier

logger = structlog.get_logger()

DEFAULT_MAX_TARGET_GROUPS = 100
DEFAULT_MAX_RULES_PER_ROUTE = 100


class RuleCategory(Enum):
    REDIRECT_ONLY = "redirect_only"
    BACKEND = "backend"
    MIXED = "mixed"
    EMPTY = "empty"


def has_redirect_filter(rule: LoadedRule) -> bool:
    """Check whether a rule carries a RequestRedirect filter, configured or not."""
    return any(f.type == FilterType.REQUEST_REDIRECT for f in rule.filters)


def is_redirect_only(rule: LoadedRule) -> bool:
    """A rule is redirect-only when it redirects and has no backends."""
    return has_redirect_filter(rule) and len(rule.backends) == 0


def classify_rule(rule: LoadedRule) -> RuleCategory:
    redirect = has_redirect_filter(rule)
    if rule.backends:
        return RuleCategory.MIXED if redirect else RuleCategory.BACKEND
    return RuleCategory.REDIRECT_ONLY if redirect else RuleCategory.EMPTY


def target_group_backends(rules: Iterable[LoadedRule]) -> list[Backend]:
    """Backends that need a target group, skipping redirect-only rules.

    Also the only backends a target group cleanup pass may consider.
    """
    backends: list[Backend] = []
    for rule in rules:
        if not is_redirect_only(rule):
            backends.extend(rule.backends)
    return backends


def effective_target_group_count(rules: Iterable[LoadedRule]) -> int:
    return len(target_group_backends(rules))


# Validation


@dataclass(frozen=True)
class ValidationError:
    """A problem with one field of a rule."""

    field: str
    message: str

    def __str__(self) -> str:
        return f"validation error in field {self.field}: {self.message}"


def format_validation_errors(errors: list[ValidationError]) -> str:
    """Render validation errors as a single message."""
    if not errors:
        return ""
    if len(errors) == 1:
        return str(errors[0])
    lines = [f"multiple validation errors ({len(errors)}):"]
    lines.extend(f"  {i + 1}. {error}" for i, error in enumerate(errors))
    return "\n".join(lines)


def validate_http_route_rule(rule: LoadedRule, max_weight: int = MAX_WEIGHT) -> list[ValidationError]:
    """Validate a materialized HTTP route rule.

    Args:
        rule: The rule to validate.
        max_weight: Largest accepted backend weight.

    Returns:
        All problems found; empty when the rule is valid.
    """
    errors: list[ValidationError] = []
    redirect = has_redirect_filter(rule)

    if is_redirect_only(rule):
        errors.extend(_validate_redirect_only(rule))
    if rule.backends:
        errors.extend(_validate_backends(rule.backends, max_weight))
    if not rule.backends and not redirect:
        errors.append(ValidationError("rule", "rule must have either backends or redirect filters"))
    return errors


def _validate_redirect_only(rule: LoadedRule) -> list[ValidationError]:
    if not isinstance(rule.rule, HTTPRouteRule):
        return [ValidationError("rule.type", "redirect-only rule must be an HTTPRoute rule")]

    errors: list[ValidationError] = []
    for i, route_filter in enumerate(rule.filters):
        if route_filter.type != FilterType.REQUEST_REDIRECT:
            continue
        if route_filter.request_redirect is None:
            errors.append(
                ValidationError(
                    f"rule.filters[{i}].requestRedirect",
                    "RequestRedirect filter must have configuration",
                )
            )
        else:
            errors.extend(validate_redirect(route_filter.request_redirect, i))
    return errors


def _validate_backends(backends: Iterable[Backend], max_weight: int) -> list[ValidationError]:
    errors: list[ValidationError] = []
    total = 0
    for i, backend in enumerate(backends):
        if backend.weight < 0:
            errors.append(ValidationError(f"rule.backends[{i}].weight", "backend weight must be non-negative"))
        if backend.weight > max_weight:
            errors.append(
                ValidationError(f"rule.backends[{i}].weight", f"backend weight must not exceed {max_weight}")
            )
        total += backend.weight
    if total == 0:
        errors.append(ValidationError("rule.backends", "at least one backend must have positive weight"))
    return errors


def validate_redirect(redirect: RequestRedirect, filter_index: int) -> list[ValidationError]:
    """Validate the settings of a RequestRedirect filter."""
    prefix = f"rule.filters[{filter_index}].requestRedirect"
    errors: list[ValidationError] = []
    if redirect.scheme is not None and redirect.scheme not in ("http", "https"):
        errors.append(
            ValidationError(
                f"{prefix}.scheme",
                f"invalid scheme '{redirect.scheme}', must be 'http' or 'https'",
            )
        )
    if redirect.status_code is not None and not 300 <= redirect.status_code <= 399:
        errors.append(
            ValidationError(
                f"{prefix}.statusCode",
                f"invalid status code {redirect.status_code}, must be between 300 and 399",
            )
        )
    if redirect.port is not None and not MIN_PORT <= redirect.port <= MAX_PORT:
        errors.append(
            ValidationError(
                f"{prefix}.port",
                f"invalid port {redirect.port}, must be between {MIN_PORT} and {MAX_PORT}",
            )
        )
    return errors


# Resource accounting


@dataclass
class ResourceUsage:
    total_rules: int = 0
    redirect_only_rules: int = 0
    backend_rules: int = 0
    mixed_rules: int = 0
    target_groups_required: int = 0
    target_groups_skipped: int = 0

    def __add__(self, other: ResourceUsage) -> ResourceUsage:
        return ResourceUsage(
            total_rules=self.total_rules + other.total_rules,
            redirect_only_rules=self.redirect_only_rules + other.redirect_only_rules,
            backend_rules=self.backend_rules + other.backend_rules,
            mixed_rules=self.mixed_rules + other.mixed_rules,
            target_groups_required=self.target_groups_required + other.target_groups_required,
            target_groups_skipped=self.target_groups_skipped + other.target_groups_skipped,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ResourceLimits:
    max_target_groups: int = DEFAULT_MAX_TARGET_GROUPS
    max_rules_per_route: int = DEFAULT_MAX_RULES_PER_ROUTE


def calculate_resource_usage(route: LoadedRoute) -> ResourceUsage:
    """Count the rules of a route by category and the target groups they need."""
    usage = ResourceUsage(total_rules=len(route.rules))
    for rule in route.rules:
        category = classify_rule(rule)
        if category == RuleCategory.REDIRECT_ONLY:
            usage.redirect_only_rules += 1
            usage.target_groups_skipped += 1
        elif category == RuleCategory.BACKEND:
            usage.backend_rules += 1
            usage.target_groups_required += len(rule.backends)
        elif category == RuleCategory.MIXED:
            usage.mixed_rules += 1
            usage.target_groups_required += len(rule.backends)

    logger.debug(
        "Calculated resource usage",
        route=str(route.route_identifier),
        **usage.to_dict(),
    )
    return usage


def validate_resource_limits(usage: ResourceUsage, limits: ResourceLimits) -> list[str]:
    """Check usage against limits.

    Returns:
        Error messages; empty when within limits.
    """
    errors = []
    if usage.target_groups_required > limits.max_target_groups:
        errors.append(
            f"target group limit exceeded: required {usage.target_groups_required}, "
            f"limit {limits.max_target_groups}"
        )
    if usage.total_rules > limits.max_rules_per_route:
        errors.append(
            f"rule limit exceeded: total {usage.total_rules}, limit {limits.max_rules_per_route}"
        )
    return errors


def suggest_optimizations(usage: ResourceUsage) -> list[str]:
    suggestions = []
    if usage.backend_rules > 0 and usage.redirect_only_rules == 0:
        suggestions.append(
            "Consider using redirect-only rules for simple redirects to reduce target group usage"
        )
    if usage.target_groups_required > usage.backend_rules + usage.mixed_rules:
        suggestions.append(
            "Consider consolidating multiple backends into fewer rules to optimize target group usage"
        )
    if usage.mixed_rules > 0:
        suggestions.append(
            "Mixed rules (redirect + backend) are efficient but ensure redirect logic is necessary"
        )
    return suggestions


def _percent(part: int, whole: int) -> float:
    return part / whole * 100 if whole else 0.0


def generate_resource_report(name: Any, usage: ResourceUsage, limits: ResourceLimits) -> str:
    """Render a plain text resource usage report for a route."""
    lines = [
        f"Resource Usage Report for Route {name}",
        "=====================================",
        f"Total Rules: {usage.total_rules}",
        f"  - Redirect-only Rules: {usage.redirect_only_rules}",
        f"  - Backend Rules: {usage.backend_rules}",
        f"  - Mixed Rules: {usage.mixed_rules}",
        "",
        "Target Group Usage:",
        f"  - Required: {usage.target_groups_required}",
        f"  - Skipped (redirect-only): {usage.target_groups_skipped}",
        f"  - Efficiency: {_percent(usage.target_groups_skipped, usage.total_rules):.1f}% (skipped/total)",
        "",
        "Resource Limits:",
        f"  - Target Groups: {usage.target_groups_required}/{limits.max_target_groups} "
        f"({_percent(usage.target_groups_required, limits.max_target_groups):.1f}%)",
        f"  - Rules: {usage.total_rules}/{limits.max_rules_per_route} "
        f"({_percent(usage.total_rules, limits.max_rules_per_route):.1f}%)",
    ]
    return "\n".join(lines) + "\n"


@dataclass
class RouteAccounting:
    """Usage and findings for one route."""

    route: LoadedRoute
    usage: ResourceUsage
    limit_errors: list[str] = field(default_factory=list)
    validation_errors: dict[int, list[ValidationError]] = field(default_factory=dict)


def account_routes(
    routes: Iterable[LoadedRoute],
    limits: ResourceLimits,
    max_weight: int = MAX_WEIGHT,
) -> list[RouteAccounting]:
    """Compute usage, limit errors and HTTP rule validation for routes."""
    result = []
    for route in routes:
        usage = calculate_resource_usage(route)
        accounting = RouteAccounting(
            route=route,
            usage=usage,
            limit_errors=validate_resource_limits(usage, limits),
        )
        for rule in route.rules:
            if isinstance(rule.rule, HTTPRouteRule):
                errors = validate_http_route_rule(rule, max_weight)
                if errors:
                    accounting.validation_errors[rule.index] = errors
        result.append(accounting)
    return result


# Cleanup


def target_group_key(backend: Backend) -> tuple[str, str, int]:
    """Identity of the target group a backend is bound to."""
    return (backend.kind.value, str(backend.target), backend.port)


@dataclass(frozen=True)
class RuleTransition:
    """Category change of the rule at one index between two passes.

    ``old`` is None for an added rule and ``new`` is None for a removed one.
    """

    index: int
    old: RuleCategory | None
    new: RuleCategory | None

    @property
    def redirect_only_changed(self) -> bool:
        return (self.old == RuleCategory.REDIRECT_ONLY) != (self.new == RuleCategory.REDIRECT_ONLY)

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "old": self.old.value if self.old else None,
            "new": self.new.value if self.new else None,
            "redirect_only_changed": self.redirect_only_changed,
        }


@dataclass
class CleanupPlan:
    """What changing a route's rules frees up.

    Redirect-only rules never had target groups, so they are counted as
    skipped and contribute nothing to release.
    """

    route: RouteIdentifier
    redirect_only_rules_skipped: int = 0
    target_groups_to_release: list[Backend] = field(default_factory=list)
    transitions: list[RuleTransition] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.transitions or self.target_groups_to_release)

    def to_dict(self) -> dict[str, Any]:
        return {
            "route": str(self.route),
            "redirect_only_rules_skipped": self.redirect_only_rules_skipped,
            "target_groups_to_release": [
                f"{backend.target}:{backend.port}" for backend in self.target_groups_to_release
            ],
            "transitions": [t.to_dict() for t in self.transitions],
        }


def plan_rule_cleanup(
    route: RouteIdentifier,
    old_rules: list[LoadedRule],
    new_rules: list[LoadedRule],
) -> CleanupPlan:
    """Compare the rules of a route before and after a change.

    Rules are paired by index. Target groups of the old rules that no
    non redirect-only new rule still uses are released.

    Args:
        route: Route the rules belong to.
        old_rules: Rules from the previous pass; empty for a new route.
        new_rules: Rules from this pass; empty for a removed route.

    Returns:
        Skipped redirect-only rules, target groups to release and the
        category transitions, in rule index order.
    """
    plan = CleanupPlan(route=route)
    for rule in old_rules:
        if is_redirect_only(rule):
            plan.redirect_only_rules_skipped += 1
            logger.debug("Skipping cleanup of redirect-only rule", route=str(route), rule=rule.index)

    kept = {target_group_key(backend) for backend in target_group_backends(new_rules)}
    released: dict[tuple[str, str, int], Backend] = {}
    for backend in target_group_backends(old_rules):
        key = target_group_key(backend)
        if key not in kept:
            released.setdefault(key, backend)
    plan.target_groups_to_release = [released[key] for key in sorted(released)]

    for index in range(max(len(old_rules), len(new_rules))):
        old = classify_rule(old_rules[index]) if index < len(old_rules) else None
        new = classify_rule(new_rules[index]) if index < len(new_rules) else None
        if old != new:
            plan.transitions.append(RuleTransition(index=index, old=old, new=new))

    if plan.changed:
        logger.info(
            "Planned rule cleanup",
            route=str(route),
            redirect_only_skipped=plan.redirect_only_rules_skipped,
            release=len(plan.target_groups_to_release),
            transitions=len(plan.transitions),
        )
    return plan


def plan_cleanup(
    previous: Mapping[RouteIdentifier, LoadedRoute],
    current: Mapping[RouteIdentifier, LoadedRoute],
) -> list[CleanupPlan]:
    """Plan cleanup for every route whose rules changed between two passes."""
    plans = []
    for identifier in sorted(set(previous) | set(current), key=str):
        old = previous[identifier].rules if identifier in previous else []
        new = current[identifier].rules if identifier in current else []
        plan = plan_rule_cleanup(identifier, old, new)
        if plan.changed:
            plans.append(plan)
    return plans
