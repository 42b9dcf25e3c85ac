from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Sequence, Tuple

from .branch_predictor import BranchPredictor
from .config import MachineConfig
from .functional_unit import FunctionalUnit
from .instruction import BRANCH_OPS, Instruction, InstructionState, UnitClass
from .memory import initial_memory
from .register_file import initial_registers
from .reorder_buffer import ROBEntry, empty_rob
from .reservation_station import ReservationStation


@dataclass(frozen=True)
class BranchCheckpoint:
    """Recovery point saved when a conditional branch is issued under speculation."""

    id: int
    instruction_id: int
    pc: int
    rat_snapshot: Mapping[str, int] = field(hash=False)
    rob_tail_snapshot: int
    predicted_taken: bool
    predicted_target: int
    resolved: bool = False
    correct: Optional[bool] = None
    actual_taken: Optional[bool] = None
    actual_target: Optional[int] = None


@dataclass(frozen=True)
class CDBBroadcast:
    rob_index: int
    value: int
    instruction_id: int


@dataclass(frozen=True)
class CycleStalls:
    """Stall causes observed during one cycle."""
    issue: bool = False
    data_hazard: bool = False
    structural_hazard: bool = False

    @property
    def any(self) -> bool:
        return self.issue or self.data_hazard or self.structural_hazard


@dataclass(frozen=True)
class MachineState:
    """
    Complete, immutable snapshot of the machine between two clock edges.

    Every stage takes a MachineState and returns a new one; tables are tuples
    of frozen entries and the mapping fields (registers, rat, memory) are
    read-only views that are replaced, never modified in place.
    """

    config: MachineConfig
    program: Tuple[Instruction, ...]
    instructions: Tuple[Instruction, ...]
    reservation_stations: Tuple[ReservationStation, ...]
    functional_units: Tuple[FunctionalUnit, ...]
    rob: Tuple[ROBEntry, ...]
    registers: Mapping[str, int] = field(hash=False)
    memory: Mapping[int, int] = field(hash=False)
    predictor: BranchPredictor
    rob_head: int = 0
    rob_tail: int = 0
    rat: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}), hash=False)
    pc: int = 0
    next_instruction_id: int = 0
    checkpoints: Tuple[BranchCheckpoint, ...] = ()
    next_checkpoint_id: int = 0
    pending_broadcasts: Tuple[CDBBroadcast, ...] = ()

    cycle: int = 0
    instructions_committed: int = 0
    issue_stalls: int = 0
    data_hazard_stalls: int = 0
    structural_hazard_stalls: int = 0
    cycles_with_any_stall: int = 0
    flush_count: int = 0
    misprediction_count: int = 0
    branches_executed: int = 0
    branch_correct: int = 0
    last_stalls: CycleStalls = CycleStalls()

    def instruction(self, instr_id: int) -> Instruction:
        for instr in self.instructions:
            if instr.id == instr_id:
                return instr
        raise RuntimeError(f"Corrupt instruction reference: no instruction with id {instr_id}")

    def checkpoint_for(self, instruction_id: int) -> Optional[BranchCheckpoint]:
        for checkpoint in self.checkpoints:
            if checkpoint.instruction_id == instruction_id:
                return checkpoint
        return None

    def checkpoint_by_id(self, checkpoint_id: int) -> Optional[BranchCheckpoint]:
        for checkpoint in self.checkpoints:
            if checkpoint.id == checkpoint_id:
                return checkpoint
        return None


def _validate_program(program: Sequence[Instruction], config: MachineConfig) -> None:
    known = set(config.register_names)
    for position, instr in enumerate(program):
        if instr.id != position:
            raise ValueError(
                f"Corrupt instruction reference: instruction at position {position} has id {instr.id}"
            )
        if instr.state != InstructionState.IDLE:
            raise ValueError(f"Instruction {instr.id} ({instr}) is not idle")
        for reg in (instr.dest, instr.src1, instr.src2):
            if reg is not None and reg not in known:
                raise ValueError(f"Invalid register '{reg}' in instruction {instr.id} ({instr})")
        if instr.op_type in BRANCH_OPS:
            if instr.imm is None or not 0 <= instr.imm <= len(program):
                raise ValueError(f"Branch target {instr.imm} of instruction {instr.id} is outside the program")
        if instr.op_type.name not in config.latencies:
            raise ValueError(f"No latency configured for opcode {instr.op_type.name}")


def _build_stations(config: MachineConfig) -> Tuple[ReservationStation, ...]:
    stations = []
    for unit_class in UnitClass:
        for i in range(config.rs_counts[unit_class.value]):
            name = f"{unit_class.value.capitalize()}{i + 1}"
            stations.append(ReservationStation(name=name, unit_class=unit_class))
    return tuple(stations)


def _build_units() -> Tuple[FunctionalUnit, ...]:
    return tuple(
        FunctionalUnit(name=f"{unit_class.value.capitalize()}Unit1", unit_class=unit_class)
        for unit_class in UnitClass
    )


def initial_state(
    program: Sequence[Instruction],
    config: MachineConfig,
    registers: Optional[Mapping[str, int]] = None,
    memory: Optional[Mapping[int, int]] = None,
) -> MachineState:
    """Builds the power-on state: every program instruction idle, all tables empty."""
    program = tuple(program)
    _validate_program(program, config)
    return MachineState(
        config=config,
        program=program,
        instructions=program,
        reservation_stations=_build_stations(config),
        functional_units=_build_units(),
        rob=empty_rob(config.rob_size),
        registers=initial_registers(config, registers),
        memory=initial_memory(memory),
        predictor=BranchPredictor(kind=config.branch_predictor),
        next_instruction_id=len(program),
    )
