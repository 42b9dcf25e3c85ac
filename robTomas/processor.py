import argparse
import logging
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .branch_predictor import predictor_state_name
from .cdb import writeback_stage
from .commit import commit_stage
from .config import MachineConfig, PREDICTOR_KINDS, current_config
from .execute import execute_stage
from .instruction import Instruction, InstructionState
from .issue import issue_stage
from .reorder_buffer import occupancy
from .state import CycleStalls, MachineState, initial_state

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimulatorMetrics:
    cycle: int
    instructions_committed: int
    ipc: float
    stall_cycles: int
    issue_stalls: int
    data_hazard_stalls: int
    structural_hazard_stalls: int
    cycles_with_any_stall: int
    flush_count: int
    misprediction_count: int
    branches_executed: int
    branch_correct: int
    branch_accuracy: float


def reset(
    program: Sequence[Instruction],
    registers: Optional[Mapping[str, int]] = None,
    memory: Optional[Mapping[int, int]] = None,
    config: Optional[MachineConfig] = None,
) -> MachineState:
    """
    Builds the initial machine state for `program`.

    Raises:
        ValueError: the program references unknown registers, has ids that do
                    not match their positions, or branches outside itself.
    """
    return initial_state(program, config or current_config(), registers, memory)


def advance(state: MachineState) -> MachineState:
    """
    Simulates a single clock cycle and returns the next state.

    Stages run in reverse pipeline order, Commit -> Writeback -> Execute -> Issue,
    so each stage sees what the later stages left behind in the previous cycle:
    a misprediction flush cancels speculative producers before they broadcast,
    a broadcast frees units and operands in time for this cycle's dispatch,
    and an instruction issued now cannot also execute now.
    """
    logger.debug("--- Cycle %d Start ---", state.cycle)
    state = commit_stage(state)
    state = writeback_stage(state)
    state, exec_stalls = execute_stage(state)
    state, issue_stalled = issue_stage(state)

    stalls = CycleStalls(
        issue=issue_stalled,
        data_hazard=exec_stalls.data_hazard,
        structural_hazard=exec_stalls.structural_hazard,
    )
    return replace(
        state,
        cycle=state.cycle + 1,
        issue_stalls=state.issue_stalls + stalls.issue,
        data_hazard_stalls=state.data_hazard_stalls + stalls.data_hazard,
        structural_hazard_stalls=state.structural_hazard_stalls + stalls.structural_hazard,
        cycles_with_any_stall=state.cycles_with_any_stall + stalls.any,
        last_stalls=stalls,
    )


def is_simulation_complete(state: MachineState) -> bool:
    """True when nothing is left to fetch and every table has drained."""
    if any(instr.state == InstructionState.IDLE for instr in state.instructions):
        return False
    if occupancy(state.rob) or state.pending_broadcasts:
        return False
    if any(rs.busy for rs in state.reservation_stations):
        return False
    return not any(fu.busy for fu in state.functional_units)


def run_simulation(state: MachineState, max_cycles: int = 1000) -> MachineState:
    """Advances until the program drains or `max_cycles` cycles have elapsed."""
    while not is_simulation_complete(state) and state.cycle < max_cycles:
        state = advance(state)
    if is_simulation_complete(state):
        logger.info("Simulation completed in %d cycles, %d instructions committed.",
                    state.cycle, state.instructions_committed)
    else:
        logger.warning("Simulation stopped at max cycles: %d", max_cycles)
    return state


def branch_accuracy(state: MachineState) -> float:
    """Fraction of committed predicted branches that were predicted correctly; 1.0 before any."""
    if state.branches_executed == 0:
        return 1.0
    return state.branch_correct / state.branches_executed


def get_metrics(state: MachineState) -> SimulatorMetrics:
    ipc = state.instructions_committed / state.cycle if state.cycle > 0 else 0.0
    return SimulatorMetrics(
        cycle=state.cycle,
        instructions_committed=state.instructions_committed,
        ipc=ipc,
        stall_cycles=state.cycles_with_any_stall,
        issue_stalls=state.issue_stalls,
        data_hazard_stalls=state.data_hazard_stalls,
        structural_hazard_stalls=state.structural_hazard_stalls,
        cycles_with_any_stall=state.cycles_with_any_stall,
        flush_count=state.flush_count,
        misprediction_count=state.misprediction_count,
        branches_executed=state.branches_executed,
        branch_correct=state.branch_correct,
        branch_accuracy=branch_accuracy(state),
    )


def snapshot_tables(state: MachineState) -> Dict[str, List[Dict[str, Any]]]:
    """Flattens every table into lists of row dicts for display."""
    return {
        "instructions": [
            {
                "ID": instr.id, "PC": instr.pc, "Instruction": str(instr), "State": instr.state.value,
                "Issue": instr.issue_cycle, "ExecStart": instr.exec_start_cycle,
                "ExecEnd": instr.exec_end_cycle, "WriteBack": instr.write_back_cycle,
                "Commit": instr.commit_cycle, "Speculative": instr.is_speculative, "ROB": instr.rob_index,
            }
            for instr in state.instructions
        ],
        "reservation_stations": [
            {
                "Name": rs.name, "Type": rs.unit_class.value, "Busy": rs.busy,
                "Op": rs.op_type.name if rs.op_type else None,
                "Vj": rs.Vj, "Vk": rs.Vk, "Qj": rs.Qj, "Qk": rs.Qk,
                "Dest": rs.dest, "A": rs.address, "Instr": rs.instruction_id,
            }
            for rs in state.reservation_stations
        ],
        "functional_units": [
            {
                "Name": fu.name, "Type": fu.unit_class.value, "Busy": fu.busy, "Instr": fu.instruction_id,
                "Op": fu.op_type.name if fu.op_type else None,
                "Cycles Left": fu.cycles_remaining, "Total": fu.total_cycles, "Result": fu.result,
            }
            for fu in state.functional_units
        ],
        "rob": [
            {
                "Index": entry.index,
                "Head": entry.index == state.rob_head, "Tail": entry.index == state.rob_tail,
                "Busy": entry.busy, "Instr": entry.instruction_id,
                "Type": entry.kind.value if entry.kind else None, "Dest": entry.destination,
                "Value": entry.value, "Ready": entry.ready, "Speculative": entry.is_speculative,
                "Checkpoint": entry.checkpoint_id, "Address": entry.address,
            }
            for entry in state.rob
        ],
        "registers": [
            {"Register": name, "Value": value, "ROB": state.rat.get(name)}
            for name, value in state.registers.items()
        ],
        "memory": [
            {"Address": address, "Value": state.memory[address]} for address in sorted(state.memory)
        ],
        "checkpoints": [
            {
                "ID": cp.id, "Branch": cp.instruction_id, "PC": cp.pc,
                "Predicted": "taken" if cp.predicted_taken else "not taken",
                "Target": cp.predicted_target, "ROB Tail": cp.rob_tail_snapshot,
                "Resolved": cp.resolved, "Correct": cp.correct,
            }
            for cp in state.checkpoints
        ],
        "predictor": [
            {"PC": pc, "Counter": predictor_state_name(counter)}
            for pc, counter in sorted(state.predictor.table.items())
        ],
        "cdb_queue": [
            {"ROB": b.rob_index, "Value": b.value, "Instr": b.instruction_id}
            for b in state.pending_broadcasts
        ],
    }


def format_timing_table(state: MachineState) -> str:
    """Renders the per-instruction timing log in a fixed-width table."""
    lines = [
        f"{'Instruction':<24} | {'ID':>3} | {'Issue':>5} | {'ExecStart':>9} | {'ExecEnd':>7} | "
        f"{'WriteBack':>9} | {'Commit':>6} | State",
        "-" * 96,
    ]

    def cell(value):
        return "-" if value is None else str(value)

    for instr in sorted(state.instructions, key=lambda i: i.id):
        lines.append(
            f"{str(instr):<24} | {instr.id:>3} | {cell(instr.issue_cycle):>5} | "
            f"{cell(instr.exec_start_cycle):>9} | {cell(instr.exec_end_cycle):>7} | "
            f"{cell(instr.write_back_cycle):>9} | {cell(instr.commit_cycle):>6} | {instr.state.value}"
        )
    return "\n".join(lines)


class Processor:
    """Orchestrates the simulation: a mutable holder around the pure step functions."""

    def __init__(self, config: Optional[MachineConfig] = None):
        self.config = config or current_config()
        self.state: Optional[MachineState] = None
        self.history: List[MachineState] = []

    def load_program(
        self,
        program: Sequence[Instruction],
        initial_memory_data: Optional[Mapping[int, int]] = None,
        initial_register_data: Optional[Mapping[str, int]] = None,
    ):
        """Loads a pre-assembled program and the initial register and memory images."""
        self.state = reset(program, initial_register_data, initial_memory_data, self.config)
        self.history = []
        logger.info("Program loaded. %d instructions.", len(self.state.program))

    def _require_state(self) -> MachineState:
        if self.state is None:
            raise RuntimeError("No program loaded")
        return self.state

    def run_cycle(self) -> MachineState:
        state = self._require_state()
        self.history.append(state)
        self.state = advance(state)
        return self.state

    def step_back(self) -> MachineState:
        """Returns to the state before the last run_cycle()."""
        if not self.history:
            raise RuntimeError("Already at the initial state")
        self.state = self.history.pop()
        return self.state

    def is_simulation_complete(self) -> bool:
        return is_simulation_complete(self._require_state())

    def run_simulation(self, max_cycles: int = 1000) -> MachineState:
        while not self.is_simulation_complete() and self._require_state().cycle < max_cycles:
            self.run_cycle()
        if not self.is_simulation_complete():
            logger.warning("Simulation stopped at max cycles: %d", max_cycles)
        return self.state

    def metrics(self) -> SimulatorMetrics:
        return get_metrics(self._require_state())

    def print_timing_results(self):
        """Prints the instruction timing log in a formatted way."""
        print("\n--- Instruction Timing Results ---")
        print(format_timing_table(self._require_state()))
        print("--- End of Timing Results ---")


def _build_parser() -> argparse.ArgumentParser:
    from .programs import get_preset_keys

    parser = argparse.ArgumentParser(description="Run a preset program on the Tomasulo/ROB simulator.")
    parser.add_argument("--program", default="basic_arithmetic", choices=get_preset_keys(),
                        help="preset program to run")
    parser.add_argument("--predictor", default=None, choices=PREDICTOR_KINDS,
                        help="branch predictor (default: config.BRANCH_PREDICTOR)")
    parser.add_argument("--no-speculation", action="store_true",
                        help="stall issue behind branches instead of predicting them")
    parser.add_argument("--rob-size", type=int, default=None, help="number of ROB slots")
    parser.add_argument("--no-alignment", action="store_true",
                        help="accept LOAD/STORE addresses that are not word-aligned")
    parser.add_argument("--max-cycles", type=int, default=1000)
    parser.add_argument("-v", "--verbose", action="store_true", help="trace every pipeline event")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    from .programs import get_preset

    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(message)s")

    overrides = {}
    if args.predictor:
        overrides["branch_predictor"] = args.predictor
    if args.no_speculation:
        overrides["speculation_enabled"] = False
    if args.rob_size is not None:
        overrides["rob_size"] = args.rob_size
    if args.no_alignment:
        overrides["enforce_alignment"] = False

    preset = get_preset(args.program)
    try:
        config = current_config(**overrides)
    except ValueError as e:
        parser.error(str(e))
    processor = Processor(config=config)
    processor.load_program(preset.instructions, initial_memory_data=preset.memory,
                           initial_register_data=preset.registers)
    state = processor.run_simulation(max_cycles=args.max_cycles)

    print(f"=== {preset.name} ===")
    processor.print_timing_results()
    print("\nFinal Register File State:")
    for name, value in state.registers.items():
        print(f"  {name}: {value}")
    print("\nFinal Memory State:")
    for address in sorted(state.memory):
        print(f"  [{address:>3}] {state.memory[address]}")
    print("\nMetrics:")
    for key, value in asdict(processor.metrics()).items():
        print(f"  {key}: {value:.3f}" if isinstance(value, float) else f"  {key}: {value}")
    return 0 if processor.is_simulation_complete() else 1


if __name__ == '__main__':
    raise SystemExit(main())
