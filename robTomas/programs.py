"""
Preset programs, already assembled into instruction lists.

Each preset also carries the memory image it expects. Branch immediates are
absolute instruction indices.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from .instruction import Instruction

_ins = Instruction.build


@dataclass(frozen=True)
class PresetProgram:
    name: str
    description: str
    instructions: Tuple[Instruction, ...]
    memory: Dict[int, int] = field(default_factory=lambda: {0: 5, 4: 3}, hash=False)
    registers: Dict[str, int] = field(default_factory=dict, hash=False)


PRESET_PROGRAMS: Dict[str, PresetProgram] = {
    "basic_arithmetic": PresetProgram(
        name="Basic Arithmetic",
        description="Simple ADD, SUB, MUL operations",
        instructions=(
            _ins(0, "LOAD", "R1", imm=0),
            _ins(1, "LOAD", "R2", imm=4),
            _ins(2, "ADD", "R3", "R1", "R2"),
            _ins(3, "MUL", "R4", "R3", "R1"),
            _ins(4, "SUB", "R5", "R4", "R2"),
            _ins(5, "STORE", src1="R5", imm=8),
        ),
    ),
    "raw_hazard": PresetProgram(
        name="RAW Hazard Demo",
        description="R4 waits for R1, R6 waits for both R4 and R1",
        instructions=(
            _ins(0, "LOAD", "R2", imm=0),
            _ins(1, "LOAD", "R3", imm=4),
            _ins(2, "ADD", "R1", "R2", "R3"),
            _ins(3, "SUB", "R4", "R1", "R5"),
            _ins(4, "MUL", "R6", "R4", "R1"),
        ),
    ),
    "waw_hazard": PresetProgram(
        name="WAW Hazard (Resolved by RAT)",
        description="Two writes to R1; renaming keeps only the younger one visible",
        instructions=(
            _ins(0, "LOAD", "R2", imm=0),
            _ins(1, "LOAD", "R3", imm=4),
            _ins(2, "LOAD", "R5", imm=8),
            _ins(3, "ADD", "R1", "R2", "R3"),
            _ins(4, "MUL", "R1", "R4", "R5"),
            _ins(5, "SUB", "R6", "R1", "R7"),
        ),
    ),
    "load_use": PresetProgram(
        name="Load-Use Hazard",
        description="Using a value immediately after LOAD",
        instructions=(
            _ins(0, "LOAD", "R1", imm=0),
            _ins(1, "ADD", "R2", "R1", "R3"),
            _ins(2, "MUL", "R4", "R2", "R5"),
        ),
    ),
    "parallel_execution": PresetProgram(
        name="Parallel Execution",
        description="Independent instructions executing in parallel",
        instructions=(
            _ins(0, "LOAD", "R1", imm=0),
            _ins(1, "LOAD", "R2", imm=4),
            _ins(2, "LOAD", "R3", imm=8),
            _ins(3, "ADD", "R4", "R1", "R2"),
            _ins(4, "MUL", "R5", "R3", "R1"),
            _ins(5, "SUB", "R6", "R2", "R3"),
        ),
    ),
    "branch_loop": PresetProgram(
        name="Countdown Loop",
        description="Sums 3 + 2 + 1 with a BNE loop; exercises prediction and recovery",
        instructions=(
            _ins(0, "LOAD", "R1", imm=0),          # counter
            _ins(1, "LOAD", "R2", imm=4),          # step
            _ins(2, "LOAD", "R3", imm=8),          # accumulator
            _ins(3, "ADD", "R3", "R3", "R1"),      # LOOP
            _ins(4, "SUB", "R1", "R1", "R2"),
            _ins(5, "BNE", src1="R1", src2="R0", imm=3),
            _ins(6, "STORE", src1="R3", imm=12),
        ),
        memory={0: 3, 4: 1, 8: 0},
    ),
    "complex_program": PresetProgram(
        name="Complex Program",
        description="Mix of all instruction types",
        instructions=(
            _ins(0, "LOAD", "R1", imm=0),
            _ins(1, "LOAD", "R2", imm=4),
            _ins(2, "LOAD", "R3", imm=8),
            _ins(3, "ADD", "R4", "R1", "R2"),
            _ins(4, "SUB", "R5", "R3", "R1"),
            _ins(5, "MUL", "R6", "R4", "R5"),
            _ins(6, "DIV", "R7", "R6", "R2"),
            _ins(7, "STORE", src1="R7", imm=12),
            _ins(8, "STORE", src1="R6", imm=16),
        ),
        memory={0: 5, 4: 3, 8: 9},
    ),
    "fibonacci_start": PresetProgram(
        name="Fibonacci Start",
        description="First few Fibonacci numbers",
        instructions=(
            _ins(0, "LOAD", "R1", imm=0),          # F(0)
            _ins(1, "LOAD", "R2", imm=4),          # F(1)
            _ins(2, "ADD", "R3", "R1", "R2"),
            _ins(3, "ADD", "R4", "R2", "R3"),
            _ins(4, "ADD", "R5", "R3", "R4"),
            _ins(5, "STORE", src1="R5", imm=8),
        ),
        memory={0: 0, 4: 1},
    ),
}


def get_preset_keys() -> List[str]:
    return list(PRESET_PROGRAMS)


def get_preset(key: str) -> PresetProgram:
    try:
        return PRESET_PROGRAMS[key]
    except KeyError:
        raise ValueError(f"Unknown preset program '{key}'") from None


def get_default_preset() -> PresetProgram:
    return PRESET_PROGRAMS["basic_arithmetic"]
