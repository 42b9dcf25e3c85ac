"""Writeback over the Common Data Bus.

There is a single bus, so at most one result is broadcast per cycle. Results
that finish together wait in a FIFO queue in the order they were collected.
"""
import logging
from dataclasses import replace
from typing import List, Optional, Tuple

from .instruction import InstructionState, find_instruction, update_instruction
from .state import CDBBroadcast, MachineState

logger = logging.getLogger(__name__)


def collect_results(state: MachineState) -> Tuple[CDBBroadcast, ...]:
    """Appends every finished, not yet queued functional unit result to the broadcast queue."""
    queue: List[CDBBroadcast] = list(state.pending_broadcasts)
    queued = {b.instruction_id for b in queue}
    for fu in state.functional_units:
        if not fu.has_result or fu.instruction_id in queued:
            continue
        instr = find_instruction(state.instructions, fu.instruction_id)
        if instr.state != InstructionState.READY or instr.rob_index is None:
            continue
        queue.append(CDBBroadcast(rob_index=instr.rob_index, value=fu.result, instruction_id=instr.id))
        queued.add(instr.id)
    return tuple(queue)


def broadcast(state: MachineState, item: CDBBroadcast) -> MachineState:
    """Writes one result into its ROB entry and wakes every reservation station waiting on it."""
    entry = state.rob[item.rob_index]
    if not entry.busy or entry.instruction_id != item.instruction_id:
        raise RuntimeError(
            f"CDB broadcast for instruction {item.instruction_id} targets ROB{item.rob_index}, "
            f"which holds instruction {entry.instruction_id}"
        )
    rob = list(state.rob)
    rob[item.rob_index] = replace(entry, value=item.value, ready=True)
    stations = tuple(rs.snoop_cdb(item.rob_index, item.value) for rs in state.reservation_stations)
    return replace(state, rob=tuple(rob), reservation_stations=stations)


def writeback_stage(state: MachineState) -> MachineState:
    """
    Queues newly finished results, then broadcasts the oldest queued one,
    frees its functional unit and marks the instruction written back.
    """
    queue = collect_results(state)
    if not queue:
        return replace(state, pending_broadcasts=queue)

    item, rest = queue[0], queue[1:]
    state = broadcast(replace(state, pending_broadcasts=rest), item)

    units = tuple(
        fu.clear() if fu.busy and fu.instruction_id == item.instruction_id else fu
        for fu in state.functional_units
    )
    instructions = list(state.instructions)
    instr = update_instruction(instructions, item.instruction_id,
                               state=InstructionState.WRITEBACK, write_back_cycle=state.cycle)
    logger.debug("Cycle %d: CDB Broadcasting: ROB%d with result %d (%s)%s", state.cycle, item.rob_index,
                 item.value, instr, f", {len(rest)} still queued" if rest else "")
    return replace(state, functional_units=units, instructions=tuple(instructions))


def peek(state: MachineState) -> Optional[CDBBroadcast]:
    """Next queued broadcast, if any (display helper)."""
    return state.pending_broadcasts[0] if state.pending_broadcasts else None
