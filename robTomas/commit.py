import logging
from dataclasses import replace

from . import register_file
from .checkpoint import clear_speculation, flush_speculative_state, remove_checkpoint
from .instruction import CommitKind, Instruction, InstructionState
from .issue import redirect_fetch
from .memory import write_word
from .reorder_buffer import ROBEntry, next_index
from .state import MachineState

logger = logging.getLogger(__name__)


def commit_stage(state: MachineState) -> MachineState:
    """
    Retires the ROB head if it is ready.

    Only the head is ever inspected, which is what keeps retirement in
    program order. A speculative head whose checkpoint is still unresolved
    waits, so no result escapes ahead of its governing branch.
    """
    head = state.rob[state.rob_head]
    if not head.busy or not head.ready:
        return state
    if head.is_speculative and head.checkpoint_id is not None:
        owner = state.checkpoint_by_id(head.checkpoint_id)
        if owner is not None and not owner.resolved:
            logger.debug("Cycle %d: Commit waiting on unresolved checkpoint %d", state.cycle, owner.id)
            return state

    instr = state.instruction(head.instruction_id)
    if instr.state != InstructionState.WRITEBACK:
        raise RuntimeError(f"Cannot commit instruction {instr.id} ({instr}) in state {instr.state.value}")

    if head.kind in (CommitKind.ALU, CommitKind.LOAD):
        if head.destination is not None:
            state = replace(
                state,
                registers=register_file.write_register(state.registers, head.destination, head.value,
                                                       state.config),
                rat=register_file.clear_if_matches(state.rat, head.destination, state.rob_head),
            )
    elif head.kind == CommitKind.STORE:
        state = replace(state, memory=write_word(state.memory, head.address, head.value, state.config))
    elif head.kind == CommitKind.BRANCH:
        state = _commit_branch(state, instr, head)

    rob = list(state.rob)
    rob[state.rob_head] = ROBEntry(index=state.rob_head)
    instructions = tuple(
        replace(other, state=InstructionState.COMMITTED, commit_cycle=state.cycle)
        if other.id == instr.id else other
        for other in state.instructions
    )
    logger.debug("Cycle %d: Committed %s (id %d) from ROB%d", state.cycle, instr, instr.id, state.rob_head)
    return replace(
        state,
        rob=tuple(rob),
        rob_head=next_index(state.rob_head, len(rob)),
        instructions=instructions,
        instructions_committed=state.instructions_committed + 1,
    )


def _commit_branch(state: MachineState, branch: Instruction, head: ROBEntry) -> MachineState:
    taken, target = branch.branch_outcome(head.value)
    checkpoint = state.checkpoint_for(branch.id)

    if checkpoint is None:
        # Issue stalled behind this branch, so fetch only has to follow it.
        if taken:
            state = redirect_fetch(state, target)
        return state

    if not checkpoint.resolved:
        raise RuntimeError(f"Branch {branch.id} reached commit with an unresolved checkpoint")

    if checkpoint.correct:
        state = clear_speculation(state, checkpoint.id)
        state = replace(state, branch_correct=state.branch_correct + 1)
    else:
        logger.info("Cycle %d: Branch misprediction at pc %d (predicted %s), redirecting to %d",
                    state.cycle, branch.pc, "taken" if checkpoint.predicted_taken else "not taken", target)
        state = flush_speculative_state(state, checkpoint)
        state = redirect_fetch(state, target)
        state = replace(state, misprediction_count=state.misprediction_count + 1)

    return replace(
        state,
        branches_executed=state.branches_executed + 1,
        predictor=state.predictor.update(branch.pc, taken),
        checkpoints=remove_checkpoint(state.checkpoints, checkpoint.id),
    )
