"""Shared fixtures and manifest builders."""

from __future__ import annotations

from typing import Any

import pytest
import structlog

from gateroute.core.config import clear_config
from gateroute.store import InMemoryResourceStore


@pytest.fixture(autouse=True)
def reset_global_state():
    """Reset structlog and cached config between tests.

    CLI tests configure structlog against CliRunner's temporary streams.
    """
    yield
    structlog.reset_defaults()
    clear_config()


def gateway_manifest(
    listeners: list[dict[str, Any]],
    name: str = "gw",
    namespace: str = "default",
    addresses: list[str] | None = None,
) -> dict[str, Any]:
    manifest: dict[str, Any] = {
        "apiVersion": "gateway.networking.k8s.io/v1",
        "kind": "Gateway",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"gatewayClassName": "alb", "listeners": listeners},
    }
    if addresses:
        manifest["status"] = {"addresses": [{"type": "Hostname", "value": a} for a in addresses]}
    return manifest


def listener(name: str, port: int, protocol: str = "HTTP", **extra: Any) -> dict[str, Any]:
    return {"name": name, "port": port, "protocol": protocol, **extra}


def route_manifest(
    kind: str = "HTTPRoute",
    name: str = "route",
    namespace: str = "default",
    parent_refs: list[dict[str, Any]] | None = None,
    hostnames: list[str] | None = None,
    rules: list[dict[str, Any]] | None = None,
    created: str | None = None,
) -> dict[str, Any]:
    metadata: dict[str, Any] = {"name": name, "namespace": namespace}
    if created:
        metadata["creationTimestamp"] = created
    spec: dict[str, Any] = {
        "parentRefs": parent_refs if parent_refs is not None else [{"name": "gw"}],
        "rules": rules if rules is not None else [{"backendRefs": [{"name": "svc", "port": 80}]}],
    }
    if hostnames is not None:
        spec["hostnames"] = hostnames
    return {
        "apiVersion": "gateway.networking.k8s.io/v1",
        "kind": kind,
        "metadata": metadata,
        "spec": spec,
    }


def service_manifest(name: str = "svc", namespace: str = "default", ports: tuple[int, ...] = (80,)) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"ports": [{"port": p, "protocol": "TCP"} for p in ports]},
    }


def reference_grant_manifest(
    namespace: str,
    from_namespace: str,
    from_kind: str = "HTTPRoute",
    to_kind: str = "Service",
    to_name: str | None = None,
    name: str = "grant",
) -> dict[str, Any]:
    to: dict[str, Any] = {"group": "", "kind": to_kind}
    if to_name:
        to["name"] = to_name
    return {
        "apiVersion": "gateway.networking.k8s.io/v1beta1",
        "kind": "ReferenceGrant",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {
            "from": [{"group": "gateway.networking.k8s.io", "kind": from_kind, "namespace": from_namespace}],
            "to": [to],
        },
    }


def namespace_manifest(name: str, labels: dict[str, str] | None = None) -> dict[str, Any]:
    return {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": name, "labels": labels or {}}}


def make_store(*documents: dict[str, Any]) -> InMemoryResourceStore:
    return InMemoryResourceStore.from_manifests(documents)
