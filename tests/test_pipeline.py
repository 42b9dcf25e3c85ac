from collections import Counter

import pytest

from conftest import advance_n, build_program
from robTomas.config import current_config
from robTomas.instruction import InstructionState
from robTomas.issue import issue_stage
from robTomas.memory import MemoryAlignmentError
from robTomas.processor import advance, is_simulation_complete, reset, run_simulation
from robTomas.reorder_buffer import occupancy


def test_advance_leaves_argument_untouched(basic_state):
    after = advance(basic_state)
    assert basic_state.cycle == 0
    assert all(instr.state == InstructionState.IDLE for instr in basic_state.instructions)
    assert after.cycle == 1
    assert after.instructions[0].state == InstructionState.ISSUED
    assert after.instructions[0].issue_cycle == 0


def test_basic_program_end_to_end(basic_state):
    state = run_simulation(basic_state)

    assert is_simulation_complete(state)
    assert state.instructions_committed == 6
    assert state.registers["R1"] == 5
    assert state.registers["R2"] == 3
    assert state.registers["R3"] == 8
    assert state.registers["R4"] == 40
    assert state.registers["R5"] == 37
    assert state.memory == {0: 5, 4: 3, 8: 37}
    assert state.rat == {}
    assert not any(rs.busy for rs in state.reservation_stations)
    assert not any(fu.busy for fu in state.functional_units)
    assert occupancy(state.rob) == 0


def test_stage_timestamps_are_ordered(basic_state):
    state = run_simulation(basic_state)
    for instr in state.instructions:
        assert instr.state == InstructionState.COMMITTED
        assert (instr.issue_cycle < instr.exec_start_cycle <= instr.exec_end_cycle
                < instr.write_back_cycle < instr.commit_cycle)


def test_commit_follows_program_order(basic_state):
    state = run_simulation(basic_state)
    commits = [instr.commit_cycle for instr in state.instructions]
    assert commits == sorted(commits)
    assert len(set(commits)) == len(commits)


def test_one_broadcast_per_cycle():
    program = build_program(
        ("LOAD", "R1", None, None, 0),
        ("ADD", "R2", "R3", "R4"),
    )
    state = run_simulation(reset(program, registers={"R3": 1, "R4": 2}, memory={0: 9}))

    load, add = state.instructions
    assert load.exec_end_cycle == add.exec_end_cycle == 3
    assert (add.write_back_cycle, load.write_back_cycle) == (4, 5)
    # The ADD broadcast first, but the older LOAD still retires first
    assert load.commit_cycle < add.commit_cycle
    assert state.registers["R1"] == 9
    assert state.registers["R2"] == 3


def test_ready_transitions_never_exceed_one_per_cycle(basic_state):
    state = run_simulation(basic_state)
    per_cycle = Counter(i.write_back_cycle for i in state.instructions if i.write_back_cycle is not None)
    assert max(per_cycle.values()) == 1


def test_execute_latency():
    program = build_program(("MUL", "R3", "R1", "R2"))
    state = run_simulation(reset(program, registers={"R1": 6, "R2": 7}))

    mul = state.instructions[0]
    assert mul.issue_cycle == 0
    assert mul.exec_start_cycle == 1
    assert mul.exec_end_cycle - mul.exec_start_cycle == 3
    assert mul.write_back_cycle == 5
    assert mul.commit_cycle == 6
    assert state.cycle == 7
    assert state.registers["R3"] == 42


def test_configured_latency_is_used():
    program = build_program(("ADD", "R3", "R1", "R2"))
    cfg = current_config(latencies={"ADD": 5})
    state = run_simulation(reset(program, registers={"R1": 1}, config=cfg))
    add = state.instructions[0]
    assert add.exec_end_cycle - add.exec_start_cycle == 4


def test_issue_stalls_without_change_when_rob_full():
    program = build_program(("ADD", "R1", "R2", "R3"), ("ADD", "R4", "R2", "R3"))
    state = advance(reset(program, config=current_config(rob_size=2)))

    new_state, stalled = issue_stage(state)
    assert stalled
    assert new_state is state
    assert state.instructions[1].state == InstructionState.IDLE


def test_issue_stalls_when_station_class_full():
    program = build_program(
        ("MUL", "R1", "R2", "R3"),
        ("STORE", None, "R1", None, 0),
        ("STORE", None, "R1", None, 4),
    )
    state = advance_n(reset(program, registers={"R2": 3, "R3": 4}), 3)

    assert state.last_stalls.issue
    assert state.last_stalls.data_hazard
    assert state.issue_stalls == 1
    assert state.cycles_with_any_stall == 1
    assert state.instructions[2].state == InstructionState.IDLE

    state = run_simulation(state)
    assert state.memory == {0: 12, 4: 12}


def test_structural_hazard_is_counted():
    program = build_program(("MUL", "R1", "R2", "R3"), ("MUL", "R4", "R2", "R3"))
    state = advance_n(reset(program, registers={"R2": 3, "R3": 4}), 3)
    assert state.last_stalls.structural_hazard
    assert state.structural_hazard_stalls >= 1


def test_load_waits_for_pending_base_register():
    program = build_program(
        ("LOAD", "R1", None, None, 0),
        ("LOAD", "R2", "R1", None, 0),
    )
    state = advance(reset(program, memory={0: 8, 8: 21}))

    new_state, stalled = issue_stage(state)
    assert stalled and new_state is state

    state = run_simulation(state)
    assert state.registers["R1"] == 8
    assert state.registers["R2"] == 21


def test_waw_rename_keeps_youngest_producer():
    program = build_program(("ADD", "R1", "R2", "R3"), ("MUL", "R1", "R2", "R3"))
    state = advance_n(reset(program, registers={"R2": 2, "R3": 5}), 2)
    assert state.rat["R1"] == 1

    state = run_simulation(state)
    assert state.registers["R1"] == 10
    assert state.rat == {}


def test_zero_register_is_never_written():
    program = build_program(("ADD", "R0", "R1", "R2"), ("ADD", "R3", "R0", "R1"))
    state = run_simulation(reset(program, registers={"R1": 1, "R2": 2}))
    assert state.registers["R0"] == 0
    assert state.registers["R3"] == 1
    assert state.instructions_committed == 2


def test_misaligned_load_faults():
    program = build_program(("LOAD", "R1", None, None, 2))
    with pytest.raises(MemoryAlignmentError):
        run_simulation(reset(program))


def test_misaligned_load_allowed_when_policy_off():
    program = build_program(("LOAD", "R1", None, None, 2))
    state = run_simulation(reset(program, memory={2: 9}, config=current_config(enforce_alignment=False)))
    assert state.registers["R1"] == 9


def test_division_by_zero_commits_zero():
    program = build_program(("DIV", "R3", "R1", "R2"))
    state = run_simulation(reset(program, registers={"R1": 9, "R3": 4}))
    assert state.registers["R3"] == 0


def test_nop_retires_without_effect():
    program = build_program(("NOP",), ("ADD", "R1", "R2", "R3"))
    state = run_simulation(reset(program, registers={"R2": 1, "R3": 1}))
    assert state.instructions_committed == 2
    assert state.registers["R1"] == 2


@pytest.mark.parametrize("program, message", [
    (build_program(("ADD", "R9", "R1", "R2")), "Invalid register"),
    (build_program(("BEQ", None, "R1", "R2", 7)), "outside the program"),
])
def test_reset_rejects_malformed_programs(program, message):
    with pytest.raises(ValueError, match=message):
        reset(program)


def test_reset_rejects_ids_out_of_position(basic_program):
    with pytest.raises(ValueError, match="position"):
        reset(list(reversed(basic_program)))


def test_rob_occupancy_stays_below_capacity():
    program = build_program(*[("ADD", f"R{i % 7 + 1}", "R1", "R2") for i in range(12)])
    cfg = current_config(rob_size=4)
    state = reset(program, registers={"R1": 1, "R2": 1}, config=cfg)
    while not is_simulation_complete(state):
        state = advance(state)
        assert occupancy(state.rob) <= cfg.rob_size - 1
    assert state.instructions_committed == 12


def test_snapshots_are_read_only(basic_state):
    later = advance(basic_state)
    with pytest.raises(TypeError):
        later.registers["R1"] = 99
    with pytest.raises(TypeError):
        later.memory[0] = -1
    with pytest.raises(TypeError):
        later.rat["R1"] = 3
    with pytest.raises(TypeError):
        later.config.latencies["ADD"] = 9
    assert basic_state.registers["R1"] == 0
    assert basic_state.memory[0] == 5


def test_states_are_hashable(basic_state):
    state = run_simulation(basic_state, max_cycles=3)
    assert hash(state) == hash(state)
    assert hash(state.config) == hash(current_config())
