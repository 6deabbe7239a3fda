"""Tests for route to listener attachment."""

from __future__ import annotations

from conftest import (
    gateway_manifest,
    listener,
    make_store,
    namespace_manifest,
    reference_grant_manifest,
    route_manifest,
)

from gateroute.attachment import AttachmentResolver, parent_ref_matches_listener
from gateroute.listeners import ListenerValidator
from gateroute.model.constants import ControllerClass, RouteReason
from gateroute.model.resources import Gateway, Listener, ParentReference
from gateroute.model.routes import route_from_dict


def _attach(listeners, route_docs, *extra, controller=ControllerClass.ALB):
    gateway_doc = gateway_manifest(listeners)
    store = make_store(gateway_doc, *route_docs, *extra)
    gateway = Gateway.from_dict(gateway_doc)
    results = ListenerValidator(store, controller).validate(gateway)
    routes = [route_from_dict(doc) for doc in route_docs]
    return AttachmentResolver(store).resolve(gateway, results, routes), routes


class TestParentRefMatching:
    """Tests for sectionName and port matching."""

    def test_generic_ref_matches_any_listener(self):
        """Test a ref without sectionName or port matches every listener."""
        ref = ParentReference(name="gw")
        assert ref.is_generic
        assert parent_ref_matches_listener(ref, Listener(name="http", port=80, protocol="HTTP"))

    def test_section_name_and_port(self):
        """Test sectionName and port must both match when set."""
        http = Listener(name="http", port=80, protocol="HTTP")
        assert parent_ref_matches_listener(ParentReference(name="gw", section_name="http"), http)
        assert not parent_ref_matches_listener(ParentReference(name="gw", section_name="https"), http)
        assert not parent_ref_matches_listener(ParentReference(name="gw", section_name="http", port=8080), http)


class TestAttachmentResolver:
    """Tests for AttachmentResolver."""

    def test_route_attaches(self):
        """Test a same-namespace route attaches to a listener."""
        result, routes = _attach([listener("http", 80)], [route_manifest(name="web")])

        assert [str(r.route_identifier) for r in result.routes_by_port[80]] == ["HTTPRoute/default/web"]
        assert result.failed_attachments == []
        assert result.matched_parent_refs[routes[0].route_identifier] == routes[0].parent_refs

    def test_routes_for_other_gateways_ignored(self):
        """Test routes that reference another Gateway are skipped silently."""
        other = route_manifest(name="other", parent_refs=[{"name": "elsewhere"}])
        result, _ = _attach([listener("http", 80)], [other])

        assert result.routes_by_port == {}
        assert result.failed_attachments == []

    def test_namespace_not_allowed(self):
        """Test a Same policy rejects routes from other namespaces."""
        route = route_manifest(name="web", namespace="team-a", parent_refs=[{"name": "gw", "namespace": "default"}])
        result, _ = _attach([listener("http", 80)], [route])

        assert result.routes_by_port == {}
        assert len(result.failed_attachments) == 1
        assert result.failed_attachments[0].reason == RouteReason.NOT_ALLOWED_BY_LISTENERS

    def test_parent_ref_namespace_defaults_to_route(self):
        """Test a ref without namespace does not reach a Gateway in another namespace."""
        route = route_manifest(name="web", namespace="team-a")
        result, _ = _attach([listener("http", 80, allowedRoutes={"namespaces": {"from": "All"}})], [route])

        assert result.routes_by_port == {}
        assert result.failed_attachments == []

    def test_all_namespaces(self):
        """Test an All policy accepts routes from other namespaces."""
        route = route_manifest(name="web", namespace="team-a", parent_refs=[{"name": "gw", "namespace": "default"}])
        result, _ = _attach([listener("http", 80, allowedRoutes={"namespaces": {"from": "All"}})], [route])

        assert 80 in result.routes_by_port

    def test_selector_namespaces(self):
        """Test a Selector policy admits only namespaces with matching labels."""
        selector = {"namespaces": {"from": "Selector", "selector": {"matchLabels": {"team": "a"}}}}
        ref = [{"name": "gw", "namespace": "default"}]
        routes = [
            route_manifest(name="web", namespace="team-a", parent_refs=ref),
            route_manifest(name="web", namespace="team-b", parent_refs=ref),
        ]
        result, _ = _attach(
            [listener("http", 80, allowedRoutes=selector)],
            routes,
            namespace_manifest("team-a", {"team": "a"}),
            namespace_manifest("team-b", {"team": "b"}),
            reference_grant_manifest("team-a", from_namespace="default", from_kind="Gateway"),
        )

        assert [str(r.route_identifier) for r in result.routes_by_port[80]] == ["HTTPRoute/team-a/web"]
        assert len(result.failed_attachments) == 1
        assert result.failed_attachments[0].route.namespace == "team-b"
        assert result.failed_attachments[0].reason == RouteReason.NOT_ALLOWED_BY_LISTENERS

    def test_kind_not_allowed(self):
        """Test a GRPCRoute does not attach to an HTTP listener."""
        route = route_manifest(kind="GRPCRoute", name="rpc", rules=[{"backendRefs": [{"name": "svc", "port": 80}]}])
        result, _ = _attach([listener("http", 80)], [route])

        assert result.routes_by_port == {}
        assert result.failed_attachments[0].reason == RouteReason.NOT_ALLOWED_BY_LISTENERS

    def test_no_matching_hostname(self):
        """Test disjoint hostnames give NoMatchingListenerHostname."""
        route = route_manifest(name="web", hostnames=["web.example.org"])
        result, _ = _attach([listener("http", 80, hostname="*.example.com")], [route])

        assert result.routes_by_port == {}
        assert result.failed_attachments[0].reason == RouteReason.NO_MATCHING_LISTENER_HOSTNAME

    def test_compatible_hostnames_recorded(self):
        """Test the hostnames shared with the listener are recorded per port."""
        route = route_manifest(name="web", hostnames=["api.example.com", "web.example.org"])
        result, routes = _attach([listener("http", 80, hostname="*.example.com")], [route])

        identifier = routes[0].route_identifier
        assert result.compatible_hostnames_by_port[80][identifier] == ["api.example.com"]
        assert result.hostnames_for(80, routes[0]) == ["api.example.com"]

    def test_stream_routes_ignore_hostnames(self):
        """Test TCP routes attach regardless of listener hostname."""
        route = route_manifest(kind="TCPRoute", name="db")
        result, _ = _attach(
            [listener("tcp", 5432, "TCP", hostname="db.example.com")],
            [route],
            controller=ControllerClass.NLB,
        )
        assert 5432 in result.routes_by_port

    def test_unknown_section_name(self):
        """Test a sectionName naming no listener gives NoMatchingParent."""
        route = route_manifest(name="web", parent_refs=[{"name": "gw", "sectionName": "missing"}])
        result, _ = _attach([listener("http", 80)], [route])

        failure = result.failed_attachments[0]
        assert failure.reason == RouteReason.NO_MATCHING_PARENT
        assert failure.parent_ref.section_name == "missing"

    def test_invalid_listener(self):
        """Test routes are not attached to invalid listeners."""
        route = route_manifest(name="web", parent_refs=[{"name": "gw", "sectionName": "https"}])
        result, _ = _attach([listener("http", 80, "HTTP"), listener("https", 80, "HTTPS")], [route])

        assert result.routes_by_port == {}
        assert result.failed_attachments[0].reason == RouteReason.NOT_ALLOWED_BY_LISTENERS

    def test_generic_ref_attached_when_any_listener_accepts(self):
        """Test a generic ref rejected by one listener but accepted by another is not a failure."""
        route = route_manifest(name="web", hostnames=["web.example.com"])
        result, routes = _attach(
            [
                listener("api", 80, hostname="api.example.com"),
                listener("web", 8080, hostname="web.example.com"),
            ],
            [route],
        )

        assert list(result.routes_by_port) == [8080]
        assert result.failed_attachments == []
        assert result.matched_parent_refs[routes[0].route_identifier] == routes[0].parent_refs

    def test_generic_ref_with_namespace_rejection(self):
        """Test a listener rejecting on namespace policy does not fail an otherwise attached ref."""
        route = route_manifest(name="web", namespace="team-a", parent_refs=[{"name": "gw", "namespace": "default"}])
        result, routes = _attach(
            [
                listener("same", 80),
                listener("all", 8080, allowedRoutes={"namespaces": {"from": "All"}}),
            ],
            [route],
        )

        assert list(result.routes_by_port) == [8080]
        assert all(f.reason != RouteReason.NO_MATCHING_PARENT for f in result.failed_attachments)
        assert result.failed_attachments == []
        assert routes[0].route_identifier in result.matched_parent_refs

    def test_each_rejected_ref_reported(self):
        """Test every parent ref that fails is reported separately."""
        route = route_manifest(
            name="web",
            parent_refs=[
                {"name": "gw", "sectionName": "http"},
                {"name": "gw", "sectionName": "missing"},
            ],
        )
        result, routes = _attach([listener("http", 80)], [route])

        assert 80 in result.routes_by_port
        assert [f.reason for f in result.failed_attachments] == [RouteReason.NO_MATCHING_PARENT]
        assert result.matched_parent_refs[routes[0].route_identifier] == [routes[0].parent_refs[0]]

    def test_order_independent(self):
        """Test attachment output does not depend on route order."""
        docs = [route_manifest(name=name) for name in ("c", "a", "b")]
        first, _ = _attach([listener("http", 80)], docs)
        second, _ = _attach([listener("http", 80)], list(reversed(docs)))

        names = [r.name for r in first.routes_by_port[80]]
        assert names == ["a", "b", "c"]
        assert names == [r.name for r in second.routes_by_port[80]]

    def test_attached_routes_unique(self):
        """Test a route attached to several ports is listed once."""
        result, _ = _attach([listener("a", 80), listener("b", 8080)], [route_manifest(name="web")])

        assert sorted(result.routes_by_port) == [80, 8080]
        assert [r.name for r in result.attached_routes()] == ["web"]
