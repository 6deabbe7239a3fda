"""Gateroute exception hierarchy.

Structural problems found while compiling a Gateway are recorded as typed
reason/message records rather than raised. The exceptions below are reserved
for the few situations that do abort work:

- StoreError: the resource store failed for a reason other than NotFound.
  Always propagated so the caller can retry the reconciliation.
- RouteLoadError: a route rule cannot be materialized (missing backend port,
  weight out of range). Caught per route by the loader.
- ManifestError: a manifest document cannot be parsed into a resource.
- ResourceLimitError: resource limits were exceeded while enforcement is on.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from gateroute.model.constants import RouteReason


class GaterouteError(Exception):
    """Base class for all gateroute errors."""


class StoreError(GaterouteError):
    """Resource store failure unrelated to a missing object."""

    def __init__(self, message: str, kind: str | None = None, key: str | None = None):
        super().__init__(message)
        self.kind = kind
        self.key = key


class ManifestError(GaterouteError, ValueError):
    """A manifest document could not be parsed."""


class RouteLoadError(GaterouteError):
    """A route rule could not be materialized.

    Carries the condition reason to publish against the route.
    """

    def __init__(self, reason: RouteReason, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


class ResourceLimitError(GaterouteError):
    """Compiled rules exceed the configured resource limits."""

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = errors
