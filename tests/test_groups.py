import socket

import pytest

from errors import CapacityError, ConfigurationError
from groups import (
    Endpoint,
    IPv4Endpoint,
    IPv6Endpoint,
    detect_family,
    expand_into,
    expand_token,
    parse_endpoint,
    parse_token,
)
from storage import SessionTable


def groups_of(pairs):
    return [group for _, group in pairs]


def test_detect_family_by_colon():
    assert detect_family("225.1.2.3") == socket.AF_INET
    assert detect_family("ff2e::1") == socket.AF_INET6


def test_parse_token_parts():
    assert parse_token("225.1.2.3") == (None, "225.1.2.3", 1)
    assert parse_token("225.1.2.3+4") == (None, "225.1.2.3", 4)
    assert parse_token("10.0.0.1,232.1.1.1+2") == ("10.0.0.1", "232.1.1.1", 2)
    assert parse_token("2001:db8::1,ff3e::8000:1") == ("2001:db8::1", "ff3e::8000:1", 1)


@pytest.mark.parametrize("token", ["225.1.2.3+", "225.1.2.3+x", "225.1.2.3+-1", "10.0.0.1,", ""])
def test_parse_token_rejects_malformed(token):
    with pytest.raises(ConfigurationError):
        parse_token(token)


def test_expand_sequential_ipv4():
    pairs = expand_token("239.1.1.1+3")
    assert groups_of(pairs) == ["239.1.1.1", "239.1.1.2", "239.1.1.3"]


def test_expand_low_octet_overflow():
    assert groups_of(expand_token("239.1.1.255+2")) == ["239.1.1.255", "239.1.2.0"]


def test_expand_ipv4_wraps_whole_address():
    assert groups_of(expand_token("255.255.255.255+2")) == ["255.255.255.255", "0.0.0.0"]


def test_expand_ipv6_increments_low_32_bits():
    assert groups_of(expand_token("ff2e::1+3")) == ["ff2e::1", "ff2e::2", "ff2e::3"]
    assert groups_of(expand_token("ff2e::ffff+2")) == ["ff2e::ffff", "ff2e::1:0"]


def test_expand_ipv6_wraps_without_carry():
    pairs = expand_token("ff2e::1:ffff:ffff+2")
    assert groups_of(pairs) == ["ff2e::1:ffff:ffff", "ff2e::1:0:0"]


def test_expand_keeps_source_on_every_replica():
    pairs = expand_token("10.0.0.1,232.1.1.1+2")
    assert pairs == [("10.0.0.1", "232.1.1.1"), ("10.0.0.1", "232.1.1.2")]


def test_count_argument_overrides_suffix():
    assert len(expand_token("225.1.2.3+5", count=2)) == 2


@pytest.mark.parametrize("count", [0, -3])
def test_count_below_one_rejected(count):
    with pytest.raises(ConfigurationError):
        expand_token("225.1.2.3", count=count)


@pytest.mark.parametrize("group", ["239.1.1", "239.1.1.256", "not-a-group", "ff2e::zz"])
def test_invalid_group_rejected(group):
    with pytest.raises(ConfigurationError, match="not a valid multicast group"):
        expand_token(group)


def test_first_replica_round_trips():
    source, group, _ = parse_token("10.0.0.1,232.43.211.234+4")
    pairs = expand_token("10.0.0.1,232.43.211.234+4")
    assert pairs[0] == (source, group)
    assert str(parse_endpoint(pairs[0][1])) == group


def test_endpoint_variants():
    v4 = parse_endpoint("225.1.2.3", 1234)
    v6 = parse_endpoint("ff2e::42", 1234)
    assert isinstance(v4, IPv4Endpoint)
    assert isinstance(v6, IPv6Endpoint)
    assert v4.sockaddr == ("225.1.2.3", 1234)
    assert v6.sockaddr == ("ff2e::42", 1234, 0, 0)
    assert v4.increment().port == 1234
    assert type(v6.increment()) is IPv6Endpoint


def test_limit_exceeded_raises_capacity_error():
    with pytest.raises(CapacityError):
        expand_token("225.1.2.3+5", limit=4)


def test_expand_into_is_all_or_nothing():
    table = SessionTable(capacity=4)
    expand_into(table, "225.1.2.3+2")

    with pytest.raises(CapacityError):
        expand_into(table, "226.1.2.3+3")

    assert [s.group for s in table] == ["225.1.2.3", "225.1.2.4"]


def test_endpoint_base_is_abstract():
    with pytest.raises(TypeError):
        Endpoint(bytes(4))
