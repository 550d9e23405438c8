"""Tests for the public port allocator."""

import pytest

from apps2compose.core.ports import PortAllocator
from apps2compose.pacts.types import PortCacheEntry, PortPriority

RESERVED = {80, 433, 443, 8333}
OPTIONAL = PortPriority.OPTIONAL
RECOMMENDED = PortPriority.RECOMMENDED
REQUIRED = PortPriority.REQUIRED


@pytest.fixture
def ports():
    return PortAllocator(RESERVED)


def owner(ports, port):
    entry = ports.claims[port]
    return entry.app, entry.container


class TestReserve:

    def test_free_port_is_granted(self, ports):
        assert ports.reserve("alpha", "main", 3000)
        assert owner(ports, 3000) == ("alpha", "main")
        assert ports.claims[3000].internal_port == 3000

    def test_same_claim_twice_is_noop(self, ports):
        assert ports.reserve("alpha", "main", 3000)
        assert ports.reserve("alpha", "main", 3000)
        assert list(ports.claims) == [3000]

    def test_equal_priority_requester_moves(self, ports):
        ports.reserve("alpha", "main", 3000, OPTIONAL, dynamic=True)
        assert ports.reserve("beta", "main", 3000, OPTIONAL, dynamic=True)
        assert owner(ports, 3000) == ("alpha", "main")
        assert owner(ports, 3001) == ("beta", "main")
        # Dynamic claims listen on their public port
        assert ports.claims[3001].internal_port == 3001

    def test_moved_static_claim_keeps_internal_port(self, ports):
        ports.reserve("alpha", "web", 8080, OPTIONAL)
        assert ports.reserve("beta", "web", 8080, OPTIONAL)
        assert ports.claims[8081].internal_port == 8080
        assert not ports.claims[8081].dynamic

    def test_move_skips_reserved_and_claimed_ports(self, ports):
        ports.reserve("alpha", "main", 441)
        ports.reserve("beta", "main", 442)
        assert ports.reserve("gamma", "main", 441)
        # 442 claimed, 443 reserved
        assert owner(ports, 444) == ("gamma", "main")

    def test_higher_priority_evicts_incumbent(self, ports):
        ports.reserve("alpha", "main", 9735, OPTIONAL)
        assert ports.reserve("lnd", "main", 9735, REQUIRED)
        assert owner(ports, 9735) == ("lnd", "main")
        assert owner(ports, 9736) == ("alpha", "main")
        assert ports.claims[9736].internal_port == 9735

    def test_evicted_dynamic_claim_tracks_new_port(self, ports):
        ports.reserve("alpha", "main", 3000, OPTIONAL, dynamic=True)
        ports.reserve("beta", "main", 3000, RECOMMENDED)
        assert ports.claims[3001].app == "alpha"
        assert ports.claims[3001].internal_port == 3001

    def test_lower_priority_requester_moves(self, ports):
        ports.reserve("alpha", "main", 5000, RECOMMENDED)
        assert ports.reserve("beta", "main", 5000, OPTIONAL)
        assert owner(ports, 5000) == ("alpha", "main")
        assert owner(ports, 5001) == ("beta", "main")

    def test_required_vs_required_fails(self, ports):
        assert ports.reserve("lnd", "main", 9735, REQUIRED)
        assert not ports.reserve("core-ln", "main", 9735, REQUIRED)
        assert owner(ports, 9735) == ("lnd", "main")
        assert len(ports.claims) == 1

    def test_required_requester_vs_recommended_incumbent_evicts(self, ports):
        ports.reserve("alpha", "main", 50001, RECOMMENDED)
        assert ports.reserve("electrs", "main", 50001, REQUIRED)
        assert owner(ports, 50001) == ("electrs", "main")

    def test_optional_requester_vs_required_incumbent_moves(self, ports):
        ports.reserve("lnd", "main", 9735, REQUIRED)
        assert ports.reserve("alpha", "main", 9735, OPTIONAL)
        assert owner(ports, 9736) == ("alpha", "main")

    def test_evicted_claim_skips_owners_other_claims(self, ports):
        ports.reserve("alpha", "main", 8080, OPTIONAL)
        ports.reserve("alpha", "main", 8081, REQUIRED)
        assert ports.reserve("beta", "main", 8080, REQUIRED)
        assert owner(ports, 8080) == ("beta", "main")
        assert ports.claims[8081].internal_port == 8081
        assert ports.claims[8081].priority is REQUIRED
        assert owner(ports, 8082) == ("alpha", "main")
        assert ports.claims[8082].internal_port == 8080

    def test_moved_requester_skips_its_other_claims(self, ports):
        ports.reserve("alpha", "main", 5000, REQUIRED)
        ports.reserve("beta", "main", 5001, REQUIRED)
        assert ports.reserve("beta", "main", 5000, OPTIONAL)
        assert ports.claims[5001].internal_port == 5001
        assert ports.claims[5001].priority is REQUIRED
        assert owner(ports, 5002) == ("beta", "main")
        assert ports.claims[5002].internal_port == 5000


class TestReservedPorts:

    def test_fresh_claim_redirected_from_reserved_port(self, ports):
        assert ports.reserve("gamma", "main", 80, REQUIRED)
        assert 80 not in ports.claims
        assert owner(ports, 81) == ("gamma", "main")
        assert ports.claims[81].internal_port == 80

    def test_reserved_run_is_skipped(self, ports):
        ports.reserve("gamma", "main", 443)
        assert owner(ports, 444) == ("gamma", "main")

    def test_cached_owner_of_reserved_port_keeps_it(self):
        cache = {80: PortCacheEntry("dashboard", 80, "web", priority=REQUIRED)}
        ports = PortAllocator(RESERVED, cache)
        assert ports.reserve("dashboard", "web", 80, REQUIRED)
        assert owner(ports, 80) == ("dashboard", "web")

    def test_required_conflict_on_cached_reserved_port_fails(self):
        cache = {80: PortCacheEntry("dashboard", 80, "web", priority=REQUIRED)}
        ports = PortAllocator(RESERVED, cache)
        assert not ports.reserve("gamma", "main", 80, REQUIRED)

    def test_alternate_reserved_set(self):
        ports = PortAllocator({3000})
        ports.reserve("alpha", "main", 3000)
        assert owner(ports, 3001) == ("alpha", "main")


class TestCapabilityAliasing:

    def test_implementations_share_one_port(self, ports):
        assert ports.reserve("bitcoin-core", "service", 8332, REQUIRED, implements="bitcoin")
        assert ports.reserve("bitcoin-knots", "service", 8332, REQUIRED, implements="bitcoin")
        assert list(ports.claims) == [8332]
        assert ports.port_map()["bitcoin"]["service"][0].public_port == 8332

    def test_aliasing_needs_the_shared_container(self, ports):
        ports.reserve("bitcoin-core", "main", 8332, REQUIRED, implements="bitcoin")
        assert not ports.reserve("bitcoin-knots", "main", 8332, REQUIRED, implements="bitcoin")

    def test_no_capability_does_not_alias(self, ports):
        ports.reserve("alpha", "service", 8000, REQUIRED)
        assert not ports.reserve("beta", "service", 8000, REQUIRED)


class TestStability:

    def test_moved_claim_found_again_from_cache(self, ports):
        ports.reserve("alpha", "main", 3000, OPTIONAL, dynamic=True)
        ports.reserve("beta", "main", 3000, OPTIONAL, dynamic=True)
        rerun = PortAllocator(RESERVED, ports.claims)
        rerun.reserve("beta", "main", 3000, OPTIONAL, dynamic=True)
        rerun.reserve("alpha", "main", 3000, OPTIONAL, dynamic=True)
        assert rerun.claims == ports.claims

    def test_redirected_reserved_claim_is_stable(self, ports):
        ports.reserve("gamma", "main", 80, REQUIRED)
        ports.reserve("delta", "main", 81)
        rerun = PortAllocator(RESERVED, dict(ports.claims))
        assert rerun.reserve("gamma", "main", 80, REQUIRED)
        assert rerun.claims == ports.claims

    def test_evicted_claim_is_stable(self, ports):
        ports.reserve("alpha", "main", 9735, OPTIONAL)
        ports.reserve("lnd", "main", 9735, REQUIRED)
        before = {p: e.to_dict() for p, e in ports.claims.items()}
        rerun = PortAllocator(RESERVED, ports.claims)
        rerun.reserve("alpha", "main", 9735, OPTIONAL)
        rerun.reserve("lnd", "main", 9735, REQUIRED)
        assert {p: e.to_dict() for p, e in rerun.claims.items()} == before

    def test_owner_with_two_claims_is_stable(self, ports):
        ports.reserve("alpha", "main", 8080, OPTIONAL)
        ports.reserve("alpha", "main", 8081, REQUIRED)
        ports.reserve("beta", "main", 8080, REQUIRED)
        before = {p: e.to_dict() for p, e in ports.claims.items()}
        rerun = PortAllocator(RESERVED, ports.claims)
        rerun.reserve("alpha", "main", 8080, OPTIONAL)
        rerun.reserve("alpha", "main", 8081, REQUIRED)
        rerun.reserve("beta", "main", 8080, REQUIRED)
        assert {p: e.to_dict() for p, e in rerun.claims.items()} == before


def test_uniqueness_under_contention(ports):
    priorities = [OPTIONAL, RECOMMENDED, REQUIRED]
    granted = []
    for i in range(30):
        if ports.reserve(f"app{i}", "main", 3000 + (i % 4), priorities[i % 3],
                         dynamic=i % 2 == 0):
            granted.append((f"app{i}", "main"))
    owners = [(e.app, e.container) for e in ports.claims.values()]
    # Nobody was dropped or duplicated while claims were moved around
    assert sorted(owners) == sorted(granted)
    assert len(granted) < 30
    assert not RESERVED & set(ports.claims)


def test_port_map_groups_by_app_and_capability(ports):
    ports.reserve("lnd", "service", 10009, REQUIRED, implements="lightning")
    ports.reserve("lnd", "web", 3000, OPTIONAL, dynamic=True, implements="lightning")
    ports.reserve("alpha", "main", 3000, OPTIONAL, dynamic=True)
    port_map = ports.port_map()
    assert set(port_map) == {"lightning", "lnd", "alpha"}
    assert port_map["lightning"]["service"][0].public_port == 10009
    assert port_map["lnd"]["web"][0].public_port == 3000
    element = port_map["alpha"]["main"][0]
    assert (element.public_port, element.internal_port, element.dynamic) == (3001, 3001, True)
