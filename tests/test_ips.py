"""Tests for the IP allocator."""

import pytest

from apps2compose.core.errors import IpSpaceExhausted, PipelineError
from apps2compose.core.ips import IpAllocator


def test_sequential_first_seen_order():
    ips = IpAllocator()
    a = ips.assign("APP_A_MAIN_IP")
    b = ips.assign("APP_B_MAIN_IP")
    again = ips.assign("APP_A_MAIN_IP")
    assert (a, b) == ("10.21.21.20", "10.21.21.21")
    assert again == a
    assert len(ips.ip_map) == 2


def test_cached_addresses_are_kept():
    cache = {"APP_A_MAIN_IP": "10.21.21.20", "APP_B_MAIN_IP": "10.21.21.21"}
    ips = IpAllocator(cache=cache)
    assert ips.assign("APP_B_MAIN_IP") == "10.21.21.21"
    assert ips.assign("APP_C_MAIN_IP") == "10.21.21.22"


def test_cursor_skips_addresses_in_use():
    # Cache with a gap: len() says 20 + 2 = 22, but .22 is taken
    cache = {"APP_A_MAIN_IP": "10.21.21.20", "APP_B_MAIN_IP": "10.21.21.22"}
    ips = IpAllocator(cache=cache)
    assert ips.assign("APP_C_MAIN_IP") == "10.21.21.23"


def test_custom_subnet():
    ips = IpAllocator("172.30.1", first_suffix=100)
    assert ips.assign("APP_X_WEB_IP") == "172.30.1.100"


def test_exhaustion_after_236_addresses():
    ips = IpAllocator()
    for i in range(236):
        ips.assign(f"APP_{i}_MAIN_IP")
    assert ips.ip_map["APP_235_MAIN_IP"] == "10.21.21.255"
    with pytest.raises(IpSpaceExhausted):
        ips.assign("APP_ONE_TOO_MANY_IP")
    # Known names still resolve
    assert ips.assign("APP_0_MAIN_IP") == "10.21.21.20"


def test_exhaustion_is_fatal_pipeline_error():
    ips = IpAllocator(first_suffix=255)
    ips.assign("APP_A_MAIN_IP")
    with pytest.raises(PipelineError):
        ips.assign("APP_B_MAIN_IP")
