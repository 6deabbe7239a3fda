"""Gateroute - Gateway API route attachment and precedence compiler.

Decides which routes attach to which listener of a Gateway, resolves their
backends, classifies their rules and produces the ordered rule table used to
program a load balancer.

Usage:
    from gateroute import GatewayCompiler, InMemoryResourceStore, load_manifests
    from gateroute.model.constants import ControllerClass

    store = InMemoryResourceStore.from_manifests(load_manifests("cluster.yaml"))
    compiler = GatewayCompiler(store, ControllerClass.ALB)
    result = compiler.compile(store.get_gateway("default", "web"))

    for entry in result.rules:
        print(entry.route.route_identifier, entry.rule_index, entry.match_index)
"""

from gateroute.compiler import CompileResult, GatewayCompiler
from gateroute.store import InMemoryResourceStore, ResourceStore, load_manifests

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "CompileResult",
    "GatewayCompiler",
    "InMemoryResourceStore",
    "ResourceStore",
    "load_manifests",
]
