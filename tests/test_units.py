import logging

import pytest

from robTomas.functional_unit import FunctionalUnit, compute_result
from robTomas.instruction import OpType, UnitClass
from robTomas.memory import MemoryAlignmentError
from robTomas.reorder_buffer import ROBEntry, empty_rob, indices_between, is_full, next_index, occupancy
from robTomas.reservation_station import Pending, ReservationStation, Resolved


def test_station_issue_and_snoop():
    rs = ReservationStation(name="Add1", unit_class=UnitClass.ADD)
    rs = rs.issue(4, OpType.ADD, Pending(2), Pending(3), dest=5, address=None)
    assert rs.busy and not rs.is_ready_to_dispatch()
    assert (rs.Qj, rs.Qk) == (2, 3)

    rs = rs.snoop_cdb(2, 10)
    assert rs.Vj == 10 and rs.Qj is None
    assert rs.Qk == 3
    assert rs.snoop_cdb(7, 1) is rs

    rs = rs.snoop_cdb(3, 1)
    assert rs.is_ready_to_dispatch()
    assert (rs.Vj, rs.Vk) == (10, 1)


def test_station_rejects_double_issue():
    rs = ReservationStation(name="Mul1", unit_class=UnitClass.MUL).issue(
        0, OpType.MUL, Resolved(1), Resolved(2), dest=0, address=None)
    with pytest.raises(RuntimeError, match="busy"):
        rs.issue(1, OpType.MUL, Resolved(1), Resolved(2), dest=1, address=None)
    assert not rs.clear().busy


def _unit(op, vj=0, vk=0, address=None, unit_class=UnitClass.ADD):
    return FunctionalUnit(name="Unit", unit_class=unit_class).start(0, op, vj, vk, address, latency=1)


@pytest.mark.parametrize("op, vj, vk, expected", [
    (OpType.ADD, 5, 3, 8),
    (OpType.SUB, 5, 3, 2),
    (OpType.MUL, 5, 3, 15),
    (OpType.DIV, 7, 2, 3),
    (OpType.BEQ, 4, 4, 1),
    (OpType.BNE, 4, 5, 0),
    (OpType.NOP, 0, 0, 0),
])
def test_compute_result(op, vj, vk, expected, default_config):
    assert compute_result(_unit(op, vj, vk), {}, default_config) == expected


def test_divide_by_zero_yields_zero(default_config, caplog):
    with caplog.at_level(logging.WARNING, logger="robTomas.functional_unit"):
        assert compute_result(_unit(OpType.DIV, 9, 0), {}, default_config) == 0
    assert "by zero" in caplog.text


def test_load_reads_memory_and_checks_alignment(default_config):
    load = _unit(OpType.LOAD, address=4, unit_class=UnitClass.LOAD)
    assert compute_result(load, {4: 3}, default_config) == 3
    with pytest.raises(MemoryAlignmentError):
        compute_result(_unit(OpType.LOAD, address=5, unit_class=UnitClass.LOAD), {}, default_config)
    with pytest.raises(MemoryAlignmentError):
        compute_result(_unit(OpType.STORE, vj=1, address=2, unit_class=UnitClass.STORE), {}, default_config)


def test_unit_rejects_second_dispatch():
    fu = _unit(OpType.ADD, 1, 2)
    with pytest.raises(RuntimeError):
        fu.start(1, OpType.ADD, 1, 2, None, latency=2)


def test_rob_full_leaves_one_slot_free():
    rob = list(empty_rob(4))
    for i in range(3):
        rob[i] = ROBEntry(index=i, busy=True, instruction_id=i)
    assert is_full(rob, head=0, tail=3)
    assert occupancy(rob) == 3
    assert not is_full(empty_rob(4), head=0, tail=0)


def test_rob_index_wraps():
    assert next_index(7, 8) == 0
    assert list(indices_between(6, 2, 8)) == [6, 7, 0, 1]
    assert list(indices_between(3, 3, 8)) == []
