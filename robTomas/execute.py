import logging
from dataclasses import dataclass, replace
from typing import List, Tuple

from .checkpoint import resolve_checkpoint
from .functional_unit import FunctionalUnit, compute_result
from .instruction import Instruction, InstructionState, find_instruction, update_instruction
from .state import MachineState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecuteStalls:
    data_hazard: bool = False
    structural_hazard: bool = False


def execute_stage(state: MachineState) -> Tuple[MachineState, ExecuteStalls]:
    """
    Dispatches ready reservation stations to functional units, then advances
    every busy unit by one cycle.

    Units dispatched this cycle count down this cycle too, so an operation of
    latency L finishes at the end of its L-th cycle in the unit.

    Raises:
        MemoryAlignmentError: a LOAD/STORE finishing this cycle has a misaligned address.
    """
    state, stalls = _dispatch(state)
    state = _countdown(state)
    return state, stalls


def _dispatch(state: MachineState) -> Tuple[MachineState, ExecuteStalls]:
    stations = list(state.reservation_stations)
    units = list(state.functional_units)
    instructions = list(state.instructions)
    data_hazard = structural_hazard = False

    bound = {fu.instruction_id for fu in units if fu.busy}
    for rs_index, rs in enumerate(stations):
        if not rs.busy or rs.instruction_id is None:
            continue
        instr = find_instruction(instructions, rs.instruction_id)
        if instr.state != InstructionState.ISSUED:
            continue

        if not rs.is_ready_to_dispatch():
            data_hazard = True
            logger.debug("Cycle %d: %s waiting for operands (Qj=%s, Qk=%s)",
                         state.cycle, rs.name, rs.Qj, rs.Qk)
            continue

        fu_index = _free_unit_index(units, rs.unit_class)
        if fu_index is None:
            structural_hazard = True
            logger.debug("Cycle %d: %s ready but no free %s unit", state.cycle, rs.name, rs.unit_class.value)
            continue

        if rs.instruction_id in bound:
            raise RuntimeError(f"Instruction {rs.instruction_id} is already bound to a functional unit")
        latency = state.config.latency(rs.op_type.name)
        units[fu_index] = units[fu_index].start(rs.instruction_id, rs.op_type, rs.Vj, rs.Vk, rs.address, latency)
        bound.add(rs.instruction_id)
        update_instruction(instructions, rs.instruction_id,
                           state=InstructionState.EXECUTING, exec_start_cycle=state.cycle)
        stations[rs_index] = rs.clear()
        logger.debug("Cycle %d: %s (%s) started execution on %s, %d cycle(s)",
                     state.cycle, rs.name, instr, units[fu_index].name, latency)

    new_state = replace(state, reservation_stations=tuple(stations), functional_units=tuple(units),
                        instructions=tuple(instructions))
    return new_state, ExecuteStalls(data_hazard=data_hazard, structural_hazard=structural_hazard)


def _countdown(state: MachineState) -> MachineState:
    units = list(state.functional_units)
    instructions = list(state.instructions)
    checkpoints = state.checkpoints

    for fu_index, fu in enumerate(units):
        if not fu.busy or fu.cycles_remaining == 0:
            continue
        fu = replace(fu, cycles_remaining=fu.cycles_remaining - 1)
        if fu.cycles_remaining == 0:
            result = compute_result(fu, state.memory, state.config)
            fu = replace(fu, result=result)
            instr = update_instruction(instructions, fu.instruction_id,
                                       state=InstructionState.READY, exec_end_cycle=state.cycle)
            logger.debug("Cycle %d: %s (%s) finished execution. Result: %d",
                         state.cycle, fu.name, instr, result)
            if instr.is_branch and state.config.speculation_enabled:
                checkpoints = _resolve_branch(state, checkpoints, instr, result)
        units[fu_index] = fu

    return replace(state, functional_units=tuple(units), instructions=tuple(instructions),
                   checkpoints=checkpoints)


def _resolve_branch(state: MachineState, checkpoints, branch: Instruction, comparison: int):
    """Settles the branch's checkpoint. Commit acts on the outcome later."""
    taken, target = branch.branch_outcome(comparison)
    checkpoints = resolve_checkpoint(checkpoints, branch.id, taken, target)
    for checkpoint in checkpoints:
        if checkpoint.instruction_id == branch.id:
            logger.debug("Cycle %d: Branch %d resolved %s to %d, prediction %s", state.cycle, branch.id,
                         "taken" if taken else "not taken", target,
                         "correct" if checkpoint.correct else "WRONG")
    return checkpoints


def _free_unit_index(units: List[FunctionalUnit], unit_class):
    for index, fu in enumerate(units):
        if fu.unit_class == unit_class and not fu.busy:
            return index
    return None

