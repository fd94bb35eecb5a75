import socket

import pytest

from config import MARK_ACTIVE, MARK_BLANK, STATUS_HISTORY
from errors import AddressError, CapacityError
from storage import SessionTable


def test_add_beyond_capacity():
    table = SessionTable(capacity=2)
    assert table.add(None, "225.1.2.3") == 0
    assert table.add(None, "225.1.2.4") == 1

    with pytest.raises(CapacityError):
        table.add(None, "225.1.2.5")
    assert len(table) == 2


def test_put_leaves_table_unmodified_when_full():
    table = SessionTable(capacity=3)
    table.put([(None, "225.1.2.3")])

    with pytest.raises(CapacityError):
        table.put([(None, "225.1.2.4"), (None, "225.1.2.5"), (None, "225.1.2.6")])

    assert len(table) == 1
    assert [s.group for s in table] == ["225.1.2.3"]


def test_resolve_sets_endpoints_and_family_counters(table):
    assert table.need4 == 3
    assert table.need6 == 0
    assert table.families() == {socket.AF_INET}

    ssm = table[2]
    assert ssm.grp.port == 1234
    assert ssm.src.port == 0
    assert str(ssm.src) == "10.0.0.1"
    assert table[0].src is None


def test_resolve_ipv6():
    table = SessionTable()
    table.put([("2001:db8::1", "ff3e::1"), (None, "225.1.2.3")])
    table.resolve_all(4321)

    assert table.need6 == 1
    assert table.need4 == 1
    assert table.families() == {socket.AF_INET, socket.AF_INET6}
    assert table[0].grp.sockaddr == ("ff3e::1", 4321, 0, 0)


@pytest.mark.parametrize("source", ["2001:db8::1", "10.0.0"])
def test_resolve_rejects_bad_source(source):
    table = SessionTable()
    table.add(source, "232.1.1.1")

    with pytest.raises(AddressError):
        table.resolve(0, 1234)
    assert table.need4 == 0


def test_reset_history_blanks_and_seeds_spinner(table):
    session = table[0]
    session.mark()
    table.reset_history(0)

    assert len(session.history) == STATUS_HISTORY
    assert set(session.history) == {MARK_BLANK}
    assert session.spin == ord("3")
    assert table[1].spin == ord("4")


def test_history_length_invariant_when_idle(table):
    for _ in range(STATUS_HISTORY + 5):
        table.age()

    for session in table:
        assert len(session.history) == STATUS_HISTORY
        assert set(session.history) == {MARK_BLANK}


def test_age_slides_activity_left(table):
    session = table[1]
    session.mark()
    assert session.active

    table.age()
    assert not session.active
    assert session.history[-2] == MARK_ACTIVE
    assert len(session.history) == STATUS_HISTORY


def test_total_and_label(table):
    table[0].count = 5
    table[2].count = 7
    assert table.total() == 12
    assert table[0].label == "*,225.1.2.3"
    assert table[2].label == "10.0.0.1,232.1.1.1"


def test_clear(table):
    table.clear()
    assert len(table) == 0
    assert table.families() == set()
