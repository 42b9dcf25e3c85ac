"""Speculation manager: branch checkpoints, their resolution, and the flush.

Checkpoints are kept in issue order. The youngest checkpoint that is not
known to be correct governs newly issued instructions; a misprediction
discovered at commit discards that checkpoint's whole suffix.
"""
import logging
from dataclasses import replace
from typing import Optional, Sequence, Tuple

from . import register_file
from .instruction import InstructionState
from .reorder_buffer import ROBEntry, indices_between
from .state import BranchCheckpoint, MachineState

logger = logging.getLogger(__name__)


def create_checkpoint(state: MachineState, instruction_id: int, pc: int, predicted_taken: bool,
                      predicted_target: int, rob_tail: int) -> BranchCheckpoint:
    """
    Captures the RAT and the ROB tail right after the branch's own ROB slot
    was allocated, so a rollback keeps the branch and discards what follows.
    """
    return BranchCheckpoint(
        id=state.next_checkpoint_id,
        instruction_id=instruction_id,
        pc=pc,
        rat_snapshot=register_file.snapshot(state.rat),
        rob_tail_snapshot=rob_tail,
        predicted_taken=predicted_taken,
        predicted_target=predicted_target,
    )


def governing_checkpoint(checkpoints: Sequence[BranchCheckpoint]) -> Optional[BranchCheckpoint]:
    """
    Youngest checkpoint not yet known to be correct. Anything issued while one
    exists is speculative; a resolved-but-wrong checkpoint keeps governing until
    its flush, so wrong-path instructions are still squashed.
    """
    for checkpoint in reversed(checkpoints):
        if not (checkpoint.resolved and checkpoint.correct):
            return checkpoint
    return None


def resolve_checkpoint(checkpoints: Sequence[BranchCheckpoint], instruction_id: int,
                       actual_taken: bool, actual_target: int) -> Tuple[BranchCheckpoint, ...]:
    """Records the actual outcome of the branch `instruction_id` and whether it was predicted right."""
    resolved = []
    for checkpoint in checkpoints:
        if checkpoint.instruction_id == instruction_id:
            correct = (checkpoint.predicted_taken == actual_taken
                       and checkpoint.predicted_target == actual_target)
            checkpoint = replace(checkpoint, resolved=True, correct=correct,
                                 actual_taken=actual_taken, actual_target=actual_target)
        resolved.append(checkpoint)
    return tuple(resolved)


def remove_checkpoint(checkpoints: Sequence[BranchCheckpoint], checkpoint_id: int) -> Tuple[BranchCheckpoint, ...]:
    return tuple(cp for cp in checkpoints if cp.id != checkpoint_id)


def clear_speculation(state: MachineState, checkpoint_id: int) -> MachineState:
    """A branch committed as predicted: what it governed is no longer speculative."""
    rob = tuple(
        replace(entry, is_speculative=False, checkpoint_id=None)
        if entry.busy and entry.checkpoint_id == checkpoint_id else entry
        for entry in state.rob
    )
    instructions = tuple(
        replace(instr, is_speculative=False)
        if instr.checkpoint_id == checkpoint_id and instr.is_speculative and not instr.is_done else instr
        for instr in state.instructions
    )
    return replace(state, rob=rob, instructions=instructions)


def flush_speculative_state(state: MachineState, checkpoint: BranchCheckpoint) -> MachineState:
    """
    Rolls the machine back to `checkpoint` after a misprediction.

    Restores the RAT, resets the ROB tail and clears the discarded range,
    cancels reservation stations, functional units and queued broadcasts
    bound to speculative instructions, marks those instructions flushed and
    drops every younger checkpoint. The program counter is left to the caller.
    """
    branch_id = checkpoint.instruction_id
    squashed = {
        instr.id for instr in state.instructions
        if instr.is_speculative and instr.id > branch_id
        and instr.state not in (InstructionState.COMMITTED, InstructionState.IDLE, InstructionState.FLUSHED)
    }

    rob = list(state.rob)
    for index in indices_between(checkpoint.rob_tail_snapshot, state.rob_tail, len(rob)):
        rob[index] = ROBEntry(index=index)
    rob = tuple(rob)

    rat = register_file.restore(checkpoint.rat_snapshot, rob, branch_id)

    reservation_stations = tuple(
        rs.clear() if rs.busy and rs.instruction_id in squashed else rs
        for rs in state.reservation_stations
    )
    functional_units = tuple(
        fu.clear() if fu.busy and fu.instruction_id in squashed else fu
        for fu in state.functional_units
    )
    pending_broadcasts = tuple(
        b for b in state.pending_broadcasts if b.instruction_id not in squashed
    )
    instructions = tuple(
        replace(instr, state=InstructionState.FLUSHED) if instr.id in squashed else instr
        for instr in state.instructions
    )
    checkpoints = tuple(cp for cp in state.checkpoints if cp.instruction_id <= branch_id)

    logger.debug("Cycle %d: Flushed %d speculative instruction(s) after branch %d, ROB tail %d -> %d",
                 state.cycle, len(squashed), branch_id, state.rob_tail, checkpoint.rob_tail_snapshot)

    return replace(
        state,
        rob=rob,
        rob_tail=checkpoint.rob_tail_snapshot,
        rat=rat,
        reservation_stations=reservation_stations,
        functional_units=functional_units,
        pending_broadcasts=pending_broadcasts,
        instructions=instructions,
        checkpoints=checkpoints,
        flush_count=state.flush_count + 1,
    )


def count_flushed_instructions(before: MachineState, after: MachineState) -> int:
    """Number of instructions that became flushed between two snapshots."""
    was_flushed = {instr.id for instr in before.instructions if instr.state == InstructionState.FLUSHED}
    return sum(
        1 for instr in after.instructions
        if instr.state == InstructionState.FLUSHED and instr.id not in was_flushed
    )
