"""Tests for listener validation."""

from __future__ import annotations

from conftest import gateway_manifest, listener, make_store, reference_grant_manifest

from gateroute.listeners import ListenerValidator, supported_route_kinds
from gateroute.model.constants import ControllerClass, ListenerReason, RouteKind
from gateroute.model.resources import Gateway, Listener, RouteGroupKind


def _validate(listeners, controller=ControllerClass.ALB, *extra, namespace="default"):
    gateway_doc = gateway_manifest(listeners, namespace=namespace)
    store = make_store(gateway_doc, *extra)
    return ListenerValidator(store, controller).validate(Gateway.from_dict(gateway_doc))


class TestSupportedRouteKinds:
    """Tests for supported_route_kinds."""

    def test_protocol_defaults(self):
        """Test listeners without kinds get the protocol's defaults."""
        https = Listener(name="https", port=443, protocol="HTTPS")
        kinds, ok = supported_route_kinds(ControllerClass.ALB, https)
        assert ok is True
        assert kinds == (RouteKind.HTTP, RouteKind.GRPC)

    def test_explicit_kinds_filtered(self):
        """Test kinds unsupported by the controller class are dropped and flagged."""
        http = Listener(
            name="http",
            port=80,
            protocol="HTTP",
            allowed_kinds=(RouteGroupKind("HTTPRoute"), RouteGroupKind("TCPRoute")),
        )
        kinds, ok = supported_route_kinds(ControllerClass.ALB, http)
        assert kinds == (RouteKind.HTTP,)
        assert ok is False

    def test_unknown_kind(self):
        """Test an unknown kind marks the listener as unsupported."""
        tcp = Listener(name="tcp", port=80, protocol="TCP", allowed_kinds=(RouteGroupKind("FooRoute"),))
        kinds, ok = supported_route_kinds(ControllerClass.NLB, tcp)
        assert kinds == ()
        assert ok is False


class TestListenerValidator:
    """Tests for ListenerValidator."""

    def test_valid_listener(self):
        """Test a plain HTTP listener is accepted."""
        results = _validate([listener("http", 80)])
        result = results["http"]

        assert result.valid
        assert result.reason == ListenerReason.ACCEPTED
        assert result.message == "Listener is accepted"
        assert not results.has_errors

    def test_invalid_route_kinds(self):
        """Test explicit unsupported kinds give InvalidRouteKinds."""
        results = _validate(
            [listener("http", 80, allowedRoutes={"kinds": [{"kind": "TCPRoute"}]})]
        )
        assert results["http"].reason == ListenerReason.INVALID_ROUTE_KINDS
        assert results["http"].message == "Invalid route kind for listener http"

    def test_port_out_of_range(self):
        """Test ports outside 1-65535 give PortUnavailable."""
        results = _validate([listener("zero", 0), listener("big", 70000)])
        assert results["zero"].reason == ListenerReason.PORT_UNAVAILABLE
        assert results["big"].reason == ListenerReason.PORT_UNAVAILABLE
        assert results["big"].message == "Port 70000 is not available (listener name big)"

    def test_unsupported_protocol(self):
        """Test TCP is not supported by the ALB controller class."""
        results = _validate([listener("tcp", 9000, "TCP")])
        assert results["tcp"].reason == ListenerReason.UNSUPPORTED_PROTOCOL
        assert results["tcp"].message == "Unsupported protocol TCP for listener tcp"

    def test_protocol_conflict(self):
        """Test HTTP and HTTPS on one port conflict for the second listener only."""
        results = _validate([listener("http", 80, "HTTP"), listener("https", 80, "HTTPS")])

        assert results["http"].valid
        assert results["https"].reason == ListenerReason.PROTOCOL_CONFLICT
        assert results["https"].message == "Protocol conflict for port 80"
        assert sum(1 for r in results if r.reason == ListenerReason.PROTOCOL_CONFLICT) == 1

    def test_tcp_udp_share_port(self):
        """Test TCP and UDP can share a port under NLB."""
        results = _validate([listener("tcp", 80, "TCP"), listener("udp", 80, "UDP")], ControllerClass.NLB)
        assert results["tcp"].valid
        assert results["udp"].valid

    def test_hostname_conflict(self):
        """Test a repeated hostname on one port gives HostnameConflict."""
        results = _validate(
            [
                listener("a", 80, hostname="api.example.com"),
                listener("b", 80, hostname="api.example.com"),
                listener("c", 8080, hostname="api.example.com"),
            ]
        )
        assert results["a"].valid
        assert results["b"].reason == ListenerReason.HOSTNAME_CONFLICT
        assert results["b"].message == "Hostname conflict for port 80 with hostname api.example.com"
        assert results["c"].valid

    def test_protocol_conflict_takes_priority(self):
        """Test a listener with both conflicts reports the protocol conflict."""
        results = _validate(
            [
                listener("a", 80, "HTTP", hostname="api.example.com"),
                listener("b", 80, "HTTPS", hostname="api.example.com"),
            ]
        )
        assert results["b"].reason == ListenerReason.PROTOCOL_CONFLICT

    def test_all_listeners_evaluated(self):
        """Test a failing listener does not stop validation of the rest."""
        results = _validate([listener("bad", 0), listener("good", 80)])
        assert len(results) == 2
        assert not results["bad"].valid
        assert results["good"].valid
        assert [r.name for r in results.valid_listeners] == ["good"]

    def test_selector_without_grant(self):
        """Test Selector namespaces need a grant outside the gateway namespace."""
        selector = {"namespaces": {"from": "Selector", "selector": {"matchLabels": {"team": "a"}}}}
        results = _validate([listener("http", 80, allowedRoutes=selector)])
        assert results["http"].reason == ListenerReason.REF_NOT_PERMITTED
        assert results["http"].message == "RefNotPermitted for listener http"

    def test_selector_with_grant(self):
        """Test a grant in another namespace from the gateway namespace permits Selector."""
        selector = {"namespaces": {"from": "Selector", "selector": {"matchLabels": {"team": "a"}}}}
        grant = reference_grant_manifest("team-a", from_namespace="default", from_kind="Gateway")
        results = _validate([listener("http", 80, allowedRoutes=selector)], ControllerClass.ALB, grant)
        assert results["http"].valid

    def test_selector_any_foreign_grant(self):
        """Test any grant outside the gateway namespace permits Selector, whatever its sources."""
        selector = {"namespaces": {"from": "Selector", "selector": {"matchLabels": {"team": "a"}}}}
        grant = reference_grant_manifest("team-b", from_namespace="team-c")
        results = _validate([listener("http", 80, allowedRoutes=selector)], ControllerClass.ALB, grant)
        assert results["http"].valid

    def test_selector_grant_in_own_namespace_ignored(self):
        """Test grants in the gateway's own namespace do not count."""
        selector = {"namespaces": {"from": "Selector", "selector": {}}}
        grant = reference_grant_manifest("default", from_namespace="default", from_kind="Gateway")
        results = _validate([listener("http", 80, allowedRoutes=selector)], ControllerClass.ALB, grant)
        assert results["http"].reason == ListenerReason.REF_NOT_PERMITTED

    def test_to_dict(self):
        """Test listener result serialization."""
        data = _validate([listener("http", 80)])["http"].to_dict()
        assert data == {
            "name": "http",
            "port": 80,
            "protocol": "HTTP",
            "valid": True,
            "reason": "Accepted",
            "message": "Listener is accepted",
            "supported_kinds": ["HTTPRoute"],
        }
