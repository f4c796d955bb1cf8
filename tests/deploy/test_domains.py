"""Tests for the pre-rollout domain resolution check."""

from __future__ import annotations

import socket
from unittest.mock import patch

from conftest import SERVER, api_descriptor, web_descriptor
from rollout.deploy.descriptor import ServiceDescriptor
from rollout.deploy.domains import DomainMismatch, check_domains, resolve_addresses


def _services(*descriptors):
    return [ServiceDescriptor.model_validate(d) for d in descriptors]


class TestCheckDomains:
    def test_matching_domain(self):
        assert check_domains(_services(web_descriptor()), lambda name: {SERVER}) == []

    def test_domain_points_elsewhere(self):
        def resolver(name):
            return {"198.51.100.7"} if name == "shop.example.com" else {name}

        mismatches = check_domains(_services(web_descriptor()), resolver)
        assert len(mismatches) == 1
        assert mismatches[0].service == "web"
        assert mismatches[0].resolved == ["198.51.100.7"]
        assert "resolves to 198.51.100.7, not to any of 203.0.113.10" in mismatches[0].message

    def test_domain_does_not_resolve(self):
        def resolver(name):
            return set() if name == "shop.example.com" else {SERVER}

        [mismatch] = check_domains(_services(web_descriptor()), resolver)
        assert mismatch.message == "web: shop.example.com does not resolve"

    def test_server_hostname_resolved(self):
        lookups = {"shop.example.com": {"10.0.0.5"}, "app1.internal": {"10.0.0.5"}}
        services = _services(web_descriptor(servers=["app1.internal"]))
        assert check_domains(services, lambda name: lookups.get(name, set())) == []

    def test_unrouted_services_skipped_and_lookups_cached(self):
        calls = []

        def resolver(name):
            calls.append(name)
            return {SERVER}

        services = _services(
            api_descriptor(), web_descriptor(), web_descriptor(service="worker", route=None)
        )
        assert check_domains(services, resolver) == []
        assert calls.count("shop.example.com") == 1
        assert calls.count(SERVER) == 1


class TestResolveAddresses:
    def test_collects_addresses(self):
        infos = [
            (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("10.0.0.1", 0)),
            (socket.AF_INET6, socket.SOCK_STREAM, 6, "", ("::1", 0, 0, 0)),
            (socket.AF_INET, socket.SOCK_DGRAM, 17, "", ("10.0.0.1", 0)),
        ]
        with patch("rollout.deploy.domains.socket.getaddrinfo", return_value=infos):
            assert resolve_addresses("example.com") == {"10.0.0.1", "::1"}

    def test_unresolvable(self):
        with patch(
            "rollout.deploy.domains.socket.getaddrinfo", side_effect=socket.gaierror("nope")
        ):
            assert resolve_addresses("nope.invalid") == set()


def test_mismatch_model():
    mismatch = DomainMismatch(service="web", host="a.com", resolved=[], expected=["1.2.3.4"])
    assert mismatch.model_dump()["host"] == "a.com"
