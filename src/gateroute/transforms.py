"""Request transform compilation.

Compiles URLRewrite filters into (regex, replacement) pairs that the load
balancer applies to the request path or Host header. Replacement templates
use ``$N`` backreferences.

Path rewrites:
    ReplaceFullPath "/cat"       -> regex "^([^?]*)", replace "/cat"
    ReplacePrefixMatch "/cat"    -> regex "(^/foo(/)?)", replace "/cat$2"
    ReplacePrefixMatch "/cat/"   -> regex "(^/foo(/)?)", replace "/cat/"
    ReplacePrefixMatch "" or "/" -> regex "(^/foo(/)?)", replace "/"

The matched prefix loses any trailing slash, so PathPrefix "/foo/" compiles
like "/foo" and the root prefix "/" compiles to "(^(/)?)".

The query string is never consumed by a path regex, so it survives every
rewrite unchanged.

Example:
    transform = compile_prefix_rewrite("/foo", "/cat")
    apply_rewrite(transform, "/foo/bar?x=1")  # "/cat/bar?x=1"
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache

from gateroute.model.constants import FilterType, PathMatchType, RewriteType, RouteKind
from gateroute.model.routes import HTTPRouteMatch, PathModifier, RouteFilter

FULL_PATH_REGEX = "^([^?]*)"
HOST_REGEX = ".*"

_BACKREFERENCE_RE = re.compile(r"(\$\d+)")
_METACHARACTER_RE = re.compile(r"([\\.^$*+?()\[\]{}|])")


class TransformType(Enum):
    URL_REWRITE = "url-rewrite"
    HOST_HEADER_REWRITE = "host-header-rewrite"


@dataclass(frozen=True)
class RewriteConfig:
    regex: str
    replace: str


@dataclass(frozen=True)
class Transform:
    """A compiled request transform."""

    type: TransformType
    rewrite: RewriteConfig

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type.value, "regex": self.rewrite.regex, "replace": self.rewrite.replace}


def escape_regex(value: str) -> str:
    """Backslash-escape regex metacharacters, leaving other characters as written.

    Examples:
        >>> escape_regex("/my-app/v1.0")
        '/my-app/v1\\\\.0'
    """
    return _METACHARACTER_RE.sub(r"\\\1", value)


def compile_full_path_rewrite(path: str) -> RewriteConfig:
    """Replace everything before the query string with ``path``."""
    return RewriteConfig(regex=FULL_PATH_REGEX, replace=path)


def compile_prefix_rewrite(prefix: str, replacement: str) -> RewriteConfig:
    """Replace the matched path prefix.

    A trailing slash on the prefix is dropped and the root prefix becomes
    empty, so the slash after the prefix is always captured as group 2. A
    replacement without a trailing slash puts it back, keeping the path
    segments apart.

    Args:
        prefix: The PathPrefix value the rule matched on.
        replacement: The new prefix.

    Returns:
        The compiled rewrite.
    """
    regex = f"(^{escape_regex(prefix.rstrip('/'))}(/)?)"
    if replacement in ("", "/"):
        replace = "/"
    elif replacement.endswith("/"):
        replace = replacement
    else:
        replace = f"{replacement}$2"
    return RewriteConfig(regex=regex, replace=replace)


def compile_host_rewrite(hostname: str) -> RewriteConfig:
    """Replace the whole Host header value with ``hostname``."""
    return RewriteConfig(regex=HOST_REGEX, replace=hostname)


def compile_path_modifier(modifier: PathModifier, match: HTTPRouteMatch | None) -> RewriteConfig | None:
    """Compile a URLRewrite path modifier for the match it applies to.

    Returns:
        The rewrite, or None when the modifier carries no value.
    """
    if modifier.type == RewriteType.REPLACE_FULL_PATH:
        if modifier.replace_full_path is None:
            return None
        return compile_full_path_rewrite(modifier.replace_full_path)

    if modifier.replace_prefix_match is None:
        return None
    prefix = "/"
    if match is not None and match.path is not None and match.path.type == PathMatchType.PATH_PREFIX:
        prefix = match.path.value
    return compile_prefix_rewrite(prefix, modifier.replace_prefix_match)


def build_transforms(
    route_kind: RouteKind,
    filters: list[RouteFilter],
    match: HTTPRouteMatch | None,
) -> list[Transform]:
    """Compile the URLRewrite filters of a rule for one of its matches.

    Path rewrites come before Host header rewrites. Only HTTP routes
    produce transforms.
    """
    if route_kind != RouteKind.HTTP:
        return []

    url: list[Transform] = []
    host: list[Transform] = []
    for route_filter in filters:
        if route_filter.type != FilterType.URL_REWRITE or route_filter.url_rewrite is None:
            continue
        rewrite = route_filter.url_rewrite
        if rewrite.path is not None:
            config = compile_path_modifier(rewrite.path, match)
            if config is not None:
                url.append(Transform(TransformType.URL_REWRITE, config))
        if rewrite.hostname is not None:
            host.append(Transform(TransformType.HOST_HEADER_REWRITE, compile_host_rewrite(rewrite.hostname)))
    return url + host


def to_python_replacement(template: str) -> str:
    """Translate a ``$N`` replacement template to Python ``re`` syntax.

    Examples:
        >>> to_python_replacement("/cat$2")
        '/cat\\\\g<2>'
    """
    parts = []
    for part in _BACKREFERENCE_RE.split(template):
        if _BACKREFERENCE_RE.fullmatch(part):
            parts.append(f"\\g<{part[1:]}>")
        else:
            parts.append(part.replace("\\", "\\\\"))
    return "".join(parts)


@lru_cache(maxsize=256)
def _compile(regex: str) -> re.Pattern[str]:
    return re.compile(regex)


def apply_rewrite(rewrite: RewriteConfig | Transform, value: str) -> str:
    """Apply a compiled rewrite to a path or Host value.

    Args:
        rewrite: Rewrite or transform to apply.
        value: Request path (with optional query string) or Host value.

    Returns:
        The rewritten value; unchanged when the regex does not match.
    """
    if isinstance(rewrite, Transform):
        rewrite = rewrite.rewrite
    return _compile(rewrite.regex).sub(to_python_replacement(rewrite.replace), value, count=1)
