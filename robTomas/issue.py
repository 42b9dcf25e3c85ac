import logging
from dataclasses import replace
from typing import Optional, Tuple

from . import register_file
from .checkpoint import create_checkpoint, governing_checkpoint
from .instruction import MEMORY_OPS, CommitKind, Instruction, InstructionState, OpType
from .reorder_buffer import ROBEntry, is_full, next_index
from .reservation_station import Pending, Resolved
from .state import MachineState

logger = logging.getLogger(__name__)


def next_idle(state: MachineState) -> Optional[Instruction]:
    """Oldest instruction that has been fetched but not yet issued."""
    for instr in state.instructions:
        if instr.state == InstructionState.IDLE:
            return instr
    return None


def redirect_fetch(state: MachineState, target: int) -> MachineState:
    """
    Points fetch at static instruction `target`.

    Instructions still idle belong to the path being abandoned and are dropped;
    fresh idle instances of program[target:] are appended with new ids, so ids
    keep increasing in fetch order even when a loop revisits a PC.
    """
    kept = [instr for instr in state.instructions if instr.state != InstructionState.IDLE]
    next_id = state.next_instruction_id
    for slot in state.program[target:]:
        kept.append(slot.fresh_instance(next_id))
        next_id += 1
    return replace(state, instructions=tuple(kept), pc=target, next_instruction_id=next_id)


def _free_station_index(state: MachineState, instr: Instruction) -> Optional[int]:
    unit_class = instr.get_fu_type()
    for index, rs in enumerate(state.reservation_stations):
        if rs.unit_class == unit_class and not rs.busy:
            return index
    return None


def _branch_in_flight(state: MachineState) -> bool:
    return any(entry.busy and entry.kind == CommitKind.BRANCH for entry in state.rob)


def _stall(state: MachineState, instr: Instruction, reason: str) -> Tuple[MachineState, bool]:
    logger.debug("Cycle %d: Issue stalled on %s (id %d): %s", state.cycle, instr, instr.id, reason)
    return state, True


def issue_stage(state: MachineState) -> Tuple[MachineState, bool]:
    """
    Tries to admit the oldest idle instruction into a reservation station and the ROB.

    All preconditions are checked before anything is written, so a stall leaves
    the state untouched.

    Returns:
        (new_state, stalled). `stalled` is False when there was nothing to issue.
    """
    instr = next_idle(state)
    if instr is None:
        return state, False

    config = state.config
    if not config.speculation_enabled and _branch_in_flight(state):
        return _stall(state, instr, "waiting for in-flight branch")
    if is_full(state.rob, state.rob_head, state.rob_tail):
        return _stall(state, instr, "ROB full")
    rs_index = _free_station_index(state, instr)
    if rs_index is None:
        return _stall(state, instr, f"no free {instr.get_fu_type().value} reservation station")

    def operand(name):
        return register_file.read_operand(name, state.registers, state.rat, state.rob, config)

    address = None
    if instr.op_type in MEMORY_OPS:
        base = operand(instr.base_register)
        if isinstance(base, Pending):
            return _stall(state, instr, f"base register {instr.base_register} waiting on ROB{base.rob_index}")
        address = base.value + (instr.imm or 0)

    if instr.op_type == OpType.LOAD:
        j, k = base, Resolved(0)
    elif instr.op_type == OpType.STORE:
        j, k = operand(instr.src1), Resolved(address)
    elif instr.op_type == OpType.NOP:
        j, k = Resolved(0), Resolved(0)
    else:
        j, k = operand(instr.src1), operand(instr.src2)

    governing = governing_checkpoint(state.checkpoints) if config.speculation_enabled else None
    speculative = governing is not None
    checkpoint_id = governing.id if governing else None

    rob_index = state.rob_tail
    destination = instr.dest if instr.writes_register else None
    rob = list(state.rob)
    rob[rob_index] = ROBEntry(
        index=rob_index,
        busy=True,
        instruction_id=instr.id,
        kind=instr.commit_kind,
        destination=destination,
        is_speculative=speculative,
        checkpoint_id=checkpoint_id,
        address=address,
    )

    stations = list(state.reservation_stations)
    stations[rs_index] = stations[rs_index].issue(instr.id, instr.op_type, j, k, rob_index, address)

    rat = state.rat
    if destination is not None and destination != config.zero_register:
        rat = register_file.rename(rat, destination, rob_index)

    rob_tail = next_index(rob_index, len(rob))
    instructions = tuple(
        replace(other, state=InstructionState.ISSUED, issue_cycle=state.cycle, rob_index=rob_index,
                is_speculative=speculative, checkpoint_id=checkpoint_id)
        if other.id == instr.id else other
        for other in state.instructions
    )

    new_state = replace(
        state,
        instructions=instructions,
        reservation_stations=tuple(stations),
        rob=tuple(rob),
        rob_tail=rob_tail,
        rat=rat,
        pc=instr.pc + 1,
    )
    logger.debug("Cycle %d: Issued %s (id %d) to %s, ROB%d%s", state.cycle, instr, instr.id,
                 stations[rs_index].name, rob_index, " [speculative]" if speculative else "")

    if instr.is_branch and config.speculation_enabled:
        new_state = _speculate(new_state, instr, rob_tail)
    return new_state, False


def _speculate(state: MachineState, branch: Instruction, rob_tail: int) -> MachineState:
    """Predicts `branch`, saves a checkpoint and steers fetch down the predicted path."""
    predicted_taken = state.predictor.predict(branch.pc)
    predicted_target = branch.imm if predicted_taken else branch.pc + 1
    checkpoint = create_checkpoint(state, branch.id, branch.pc, predicted_taken, predicted_target, rob_tail)
    state = replace(
        state,
        checkpoints=state.checkpoints + (checkpoint,),
        next_checkpoint_id=state.next_checkpoint_id + 1,
    )
    logger.debug("Cycle %d: Predicted branch %d %s, target %d (checkpoint %d)", state.cycle, branch.id,
                 "taken" if predicted_taken else "not taken", predicted_target, checkpoint.id)
    if predicted_taken:
        state = redirect_fetch(state, predicted_target)
    return state
