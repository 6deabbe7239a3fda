"""Hostname matching for listeners and routes.

Hostnames follow Gateway API rules:
    - A wildcard hostname has "*" as its entire leftmost label (*.example.com)
    - *.example.com matches api.example.com and a.b.example.com
    - *.example.com does NOT match example.com
    - Comparison is case sensitive; manifests are expected to be lower case

Also provides the ordering used when ranking routing rules: a specific
hostname outranks a wildcard, and among hostnames of the same class more
labels, then a longer string, rank first.
"""

from __future__ import annotations

import ipaddress
import re
from collections.abc import Iterable

import structlog

logger = structlog.get_logger()

MAX_HOSTNAME_LENGTH = 253
MAX_LABEL_LENGTH = 63

_LABEL_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


def is_wildcard(hostname: str) -> bool:
    """Check if a hostname is a wildcard hostname.

    Examples:
        >>> is_wildcard("*.example.com")
        True
        >>> is_wildcard("*example.com")
        False
    """
    return hostname.startswith("*.")


def validate_hostname(hostname: str) -> tuple[bool, str | None]:
    """Validate a listener or route hostname.

    Args:
        hostname: Hostname to validate.

    Returns:
        Tuple of (is_valid, error_message).

    Examples:
        >>> validate_hostname("*.example.com")
        (True, None)
        >>> validate_hostname("10.0.0.1")
        (False, 'hostname can not be IP address')
    """
    if not hostname:
        return False, "hostname must not be empty"

    try:
        ipaddress.ip_address(hostname)
        return False, "hostname can not be IP address"
    except ValueError:
        pass

    if len(hostname) > MAX_HOSTNAME_LENGTH:
        return False, f"hostname exceeds {MAX_HOSTNAME_LENGTH} characters"

    labels = hostname.split(".")
    if labels[0] == "*":
        labels = labels[1:]
        if not labels:
            return False, "wildcard hostname must have a domain"

    for label in labels:
        if len(label) == 0 or len(label) > MAX_LABEL_LENGTH:
            return False, "invalid hostname label length"
        if "*" in label:
            return False, "wildcard must be the entire leftmost label"
        if not _LABEL_RE.match(label):
            return False, f"invalid hostname label: {label}"

    return True, None


def is_hostname_valid(hostname: str) -> bool:
    return validate_hostname(hostname)[0]


def is_hostname_compatible(first: str, second: str) -> bool:
    """Check whether two hostnames can match a common request host.

    Args:
        first: Listener or route hostname.
        second: Listener or route hostname.

    Returns:
        True if they are equal, or a wildcard covers the other hostname.
        Two wildcards are compatible when one domain contains the other.

    Examples:
        >>> is_hostname_compatible("*.example.com", "a.b.example.com")
        True
        >>> is_hostname_compatible("*.example.com", "example.com")
        False
        >>> is_hostname_compatible("*.example.com", "*.test.example.com")
        True
    """
    if first == second:
        return True

    first_wild = is_wildcard(first)
    second_wild = is_wildcard(second)

    if first_wild and second_wild:
        return first[1:].endswith(second[1:]) or second[1:].endswith(first[1:])
    if first_wild:
        return second.endswith(first[1:])
    if second_wild:
        return first.endswith(second[1:])
    return False


def compatible_hostname(listener_hostname: str, route_hostname: str) -> str | None:
    """Return the effective hostname a listener and route hostname share.

    The more specific of the two wins: a specific hostname under a wildcard
    keeps the specific one; two compatible wildcards keep the narrower one.

    Returns:
        The shared hostname, or None if they are not compatible.
    """
    if not is_hostname_compatible(listener_hostname, route_hostname):
        return None
    if hostname_precedence(listener_hostname, route_hostname) > 0:
        return listener_hostname
    return route_hostname


def intersect_hostnames(
    listener_hostname: str | None,
    route_hostnames: Iterable[str],
) -> list[str]:
    """Compute the hostnames a route serves through a listener.

    Invalid route hostnames are skipped.

    Args:
        listener_hostname: The listener hostname, or None for any host.
        route_hostnames: Hostnames declared by the route.

    Returns:
        Distinct compatible hostnames in route declaration order.
    """
    result: list[str] = []
    for hostname in route_hostnames:
        valid, error = validate_hostname(hostname)
        if not valid:
            logger.warning("Skipping invalid route hostname", hostname=hostname, error=error)
            continue
        if listener_hostname is None:
            shared = hostname
        else:
            shared = compatible_hostname(listener_hostname, hostname)
        if shared is not None and shared not in result:
            result.append(shared)
    return result


def hostname_precedence(first: str, second: str) -> int:
    """Compare two hostnames by routing precedence.

    Args:
        first: A hostname.
        second: Another hostname.

    Returns:
        1 if ``first`` ranks higher, -1 if ``second`` ranks higher, 0 on a tie.

    Examples:
        >>> hostname_precedence("a.example.com", "*.example.com")
        1
        >>> hostname_precedence("*.b.com", "*.a.b.com")
        -1
    """
    first_wild = is_wildcard(first)
    second_wild = is_wildcard(second)
    if first_wild != second_wild:
        return -1 if first_wild else 1

    first_dots = first.count(".")
    second_dots = second.count(".")
    if first_dots != second_dots:
        return 1 if first_dots > second_dots else -1

    if len(first) != len(second):
        return 1 if len(first) > len(second) else -1
    return 0


def _precedence_key(hostname: str) -> tuple[int, int, int]:
    return (0 if is_wildcard(hostname) else 1, hostname.count("."), len(hostname))


def sort_by_precedence(hostnames: Iterable[str]) -> list[str]:
    """Sort hostnames from highest to lowest precedence.

    Hostnames with equal precedence are ordered alphabetically so the
    result does not depend on input order.
    """
    return sorted(sorted(hostnames), key=_precedence_key, reverse=True)


def hostname_list_precedence(first: Iterable[str], second: Iterable[str]) -> int:
    """Compare two hostname lists by their best hostnames.

    Both lists are ordered by precedence and compared element by element;
    the first differing pair decides. Running out of either list without a
    decision is a tie.

    Returns:
        1 if ``first`` ranks higher, -1 if ``second`` ranks higher, 0 on a tie.
    """
    for a, b in zip(sort_by_precedence(first), sort_by_precedence(second)):
        result = hostname_precedence(a, b)
        if result != 0:
            return result
    return 0
