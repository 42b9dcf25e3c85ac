import logging

import pytest

from robTomas import register_file
from robTomas.instruction import CommitKind
from robTomas.reorder_buffer import ROBEntry, empty_rob
from robTomas.reservation_station import Pending, Resolved


def test_initial_registers_apply_values(default_config):
    regs = register_file.initial_registers(default_config, {"R3": 7})
    assert regs["R3"] == 7
    assert regs["R1"] == 0
    assert len(regs) == 8


def test_initial_registers_reject_unknown_name(default_config):
    with pytest.raises(ValueError, match="Invalid register"):
        register_file.initial_registers(default_config, {"R9": 1})


def test_zero_register_reads_zero_and_discards_writes(default_config, caplog):
    regs = register_file.initial_registers(default_config)
    with caplog.at_level(logging.WARNING, logger="robTomas.register_file"):
        new_regs = register_file.write_register(regs, "R0", 99, default_config)
    assert new_regs["R0"] == 0
    assert register_file.read_register(new_regs, "R0", default_config) == 0
    assert "zero register" in caplog.text


def test_write_register_does_not_modify_input(default_config):
    regs = register_file.initial_registers(default_config)
    new_regs = register_file.write_register(regs, "R2", 11, default_config)
    assert new_regs["R2"] == 11
    assert regs["R2"] == 0


def test_read_operand_follows_rat(default_config):
    regs = register_file.initial_registers(default_config, {"R1": 4})
    rob = list(empty_rob(4))
    rob[1] = ROBEntry(index=1, busy=True, instruction_id=0, kind=CommitKind.ALU, destination="R1")
    rob[2] = ROBEntry(index=2, busy=True, instruction_id=1, kind=CommitKind.ALU, destination="R2",
                      value=13, ready=True)
    rat = {"R1": 1, "R2": 2}

    assert register_file.read_operand("R1", regs, rat, rob, default_config) == Pending(1)
    assert register_file.read_operand("R2", regs, rat, rob, default_config) == Resolved(13)
    assert register_file.read_operand("R3", regs, rat, rob, default_config) == Resolved(0)
    assert register_file.read_operand("R0", regs, {"R0": 1}, rob, default_config) == Resolved(0)
    assert register_file.read_operand(None, regs, rat, rob, default_config) == Resolved(0)


def test_rename_overwrites_older_mapping():
    rat = register_file.rename({}, "R1", 0)
    rat = register_file.rename(rat, "R1", 3)
    assert rat == {"R1": 3}


def test_clear_if_matches_keeps_younger_mapping():
    rat = {"R1": 3}
    assert register_file.clear_if_matches(rat, "R1", 0) == {"R1": 3}
    assert register_file.clear_if_matches(rat, "R1", 3) == {}
    assert rat == {"R1": 3}


def test_restore_drops_committed_and_reused_slots():
    rob = list(empty_rob(4))
    rob[0] = ROBEntry(index=0, busy=True, instruction_id=3, kind=CommitKind.ALU, destination="R1")
    # Slot 2 now holds an instruction younger than the branch
    rob[2] = ROBEntry(index=2, busy=True, instruction_id=9, kind=CommitKind.ALU, destination="R5")
    snapshot = {"R1": 0, "R2": 1, "R3": 2}

    assert register_file.restore(snapshot, rob, branch_id=5) == {"R1": 0}
