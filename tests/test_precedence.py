"""Tests for routing rule precedence."""

from __future__ import annotations

import random

from conftest import make_store, route_manifest, service_manifest

from gateroute.loader import RouteLoader
from gateroute.model.constants import MAX_MATCH_INDEX
from gateroute.model.routes import route_from_dict
from gateroute.precedence import sort_rules

BACKEND = {"name": "svc", "port": 80}


def _loaded(name="web", kind="HTTPRoute", matches=None, rules=None, hostnames=None, namespace="default", created=None):
    if rules is None:
        rule = {"backendRefs": [BACKEND]}
        if matches is not None:
            rule["matches"] = matches
        rules = [rule]
    doc = route_manifest(
        kind=kind,
        name=name,
        namespace=namespace,
        hostnames=hostnames,
        rules=rules,
        created=created,
    )
    store = make_store(service_manifest(namespace=namespace))
    return RouteLoader(store).load_route(route_from_dict(doc))


def _path(value, match_type="PathPrefix", **extra):
    return {"path": {"type": match_type, "value": value}, **extra}


def _order(entries):
    return [(e.route.route_identifier.name, e.rule_index, e.match_index) for e in entries]


class TestHTTPPrecedence:
    """Tests for HTTP match ordering."""

    def test_path_type_order(self):
        """Test Exact before PathPrefix before RegularExpression."""
        route = _loaded(
            matches=[
                _path("/api", "RegularExpression"),
                _path("/api", "PathPrefix"),
                _path("/api", "Exact"),
            ]
        )
        assert [e.match_index for e in sort_rules([route])] == [2, 1, 0]

    def test_longer_path_first(self):
        """Test a longer path outranks a shorter one of the same type."""
        route = _loaded(matches=[_path("/"), _path("/api/v1"), _path("/api")])
        assert [e.match.path.value for e in sort_rules([route])] == ["/api/v1", "/api", "/"]

    def test_method_headers_query_params(self):
        """Test method, then header count, then query parameter count."""
        route = _loaded(
            matches=[
                _path("/a"),
                _path("/a", queryParams=[{"name": "q", "value": "1"}]),
                _path("/a", headers=[{"name": "x", "value": "1"}]),
                _path("/a", method="GET"),
            ]
        )
        assert [e.match_index for e in sort_rules([route])] == [3, 2, 1, 0]

    def test_path_type_outranks_length(self):
        """Test a short Exact path beats a long prefix."""
        route = _loaded(matches=[_path("/very/long/prefix"), _path("/x", "Exact")])
        assert [e.match_index for e in sort_rules([route])] == [1, 0]

    def test_hostname_outranks_path(self):
        """Test a specific hostname wins over a more specific path on a wildcard."""
        wildcard = _loaded(name="wild", hostnames=["*.example.com"], matches=[_path("/api", "Exact")])
        specific = _loaded(name="specific", hostnames=["api.example.com"], matches=[_path("/")])
        assert _order(sort_rules([wildcard, specific])) == [("specific", 0, 0), ("wild", 0, 0)]

    def test_compatible_hostnames_used(self):
        """Test compatible hostnames replace the route's own hostnames."""
        first = _loaded(name="a", hostnames=["*.example.com"], matches=[_path("/")])
        second = _loaded(name="b", hostnames=["*.example.com"], matches=[_path("/")])
        compatible = {first.route_identifier: ["api.example.com"]}

        assert _order(sort_rules([second, first], compatible))[0][0] == "a"

    def test_creation_timestamp(self):
        """Test the older route wins a tie; routes without timestamp sort last."""
        old = _loaded(name="z-old", matches=[_path("/")], created="2024-01-01T00:00:00Z")
        new = _loaded(name="a-new", matches=[_path("/")], created="2024-06-01T00:00:00Z")
        unknown = _loaded(name="0-unknown", matches=[_path("/")])

        assert [e.route.route_identifier.name for e in sort_rules([unknown, new, old])] == [
            "z-old",
            "a-new",
            "0-unknown",
        ]

    def test_namespaced_name_tie_break(self):
        """Test namespace/name breaks ties between equal routes."""
        routes = [
            _loaded(name="b", matches=[_path("/")]),
            _loaded(name="a", namespace="team", matches=[_path("/")]),
            _loaded(name="a", matches=[_path("/")]),
        ]
        assert [str(e.namespaced_name) for e in sort_rules(routes)] == ["default/a", "default/b", "team/a"]

    def test_rule_and_match_index(self):
        """Test rule index, then match index, settle remaining ties."""
        route = _loaded(
            rules=[
                {"matches": [_path("/"), _path("/")], "backendRefs": [BACKEND]},
                {"matches": [_path("/")], "backendRefs": [BACKEND]},
            ]
        )
        assert [(e.rule_index, e.match_index) for e in sort_rules([route])] == [(0, 0), (0, 1), (1, 0)]

    def test_rule_without_matches(self):
        """Test a rule without matches is one entry ordered after real matches."""
        route = _loaded(
            rules=[
                {"backendRefs": [BACKEND]},
                {"matches": [_path("/")], "backendRefs": [BACKEND]},
            ]
        )
        entries = sort_rules([route])

        assert [(e.rule_index, e.match_index) for e in entries] == [(1, 0), (0, MAX_MATCH_INDEX)]
        assert entries[1].match is None
        assert entries[1].to_dict()["match_index"] is None


class TestGRPCPrecedence:
    """Tests for GRPC match ordering."""

    def test_method_type_and_lengths(self):
        """Test Exact before RegularExpression, then service and method length."""
        route = _loaded(
            kind="GRPCRoute",
            matches=[
                {"method": {"type": "RegularExpression", "service": "pkg.LongService", "method": "Get"}},
                {"method": {"type": "Exact", "service": "pkg.Svc", "method": "Get"}},
                {"method": {"type": "Exact", "service": "pkg.Service", "method": "Get"}},
                {"method": {"type": "Exact", "service": "pkg.Service", "method": "GetAll"}},
            ],
        )
        assert [e.match_index for e in sort_rules([route])] == [3, 2, 1, 0]

    def test_http_before_grpc(self):
        """Test HTTP entries precede GRPC entries."""
        grpc = _loaded(name="a", kind="GRPCRoute", matches=[{"method": {"service": "pkg.S", "method": "M"}}])
        http = _loaded(name="z", matches=[_path("/")])
        assert [e.route_kind.value for e in sort_rules([grpc, http])] == ["HTTPRoute", "GRPCRoute"]

    def test_stream_routes_ignored(self):
        """Test TCP routes produce no rule table entries."""
        tcp = _loaded(kind="TCPRoute", rules=[{"backendRefs": [BACKEND]}])
        assert sort_rules([tcp]) == []


class TestDeterminism:
    """Tests for stable ordering."""

    def test_order_independent_and_idempotent(self):
        """Test shuffled input sorts the same and sorting is repeatable."""
        routes = [
            _loaded(name=f"r{i}", hostnames=[host], matches=[_path(path, kind)])
            for i, (host, path, kind) in enumerate(
                [
                    ("api.example.com", "/", "PathPrefix"),
                    ("*.example.com", "/v1", "Exact"),
                    ("api.example.com", "/v1", "PathPrefix"),
                    ("web.example.com", "/v1", "PathPrefix"),
                    ("a.b.example.com", "/", "RegularExpression"),
                ]
            )
        ]
        expected = _order(sort_rules(routes))
        shuffled = list(routes)
        random.Random(7).shuffle(shuffled)

        assert _order(sort_rules(shuffled)) == expected
        assert _order(sort_rules(routes)) == expected
        assert expected[0][0] == "r4"
        assert expected[-1][0] == "r1"
