# robTomas Processor Configuration
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

# General Configuration
NUM_REGISTERS = 8  # R0-R7
ZERO_REGISTER: Optional[str] = "R0"  # Reads as 0, committed writes are discarded. None disables.
ROB_SIZE = 8  # One slot always stays free, so at most ROB_SIZE - 1 entries are in flight
WORD_SIZE_BYTES = 4
ENFORCE_ALIGNMENT = True  # LOAD/STORE addresses must be multiples of WORD_SIZE_BYTES

# Reservation Station Configuration
# One functional unit exists per class; rs_count is the number of stations feeding it.
# You can override this dictionary at runtime using the set_fu_config() function.
FU_CONFIG = {
    "ADD":   {"rs_count": 2},   # ADD, SUB, BEQ, BNE, NOP
    "MUL":   {"rs_count": 2},   # MUL, DIV
    "LOAD":  {"rs_count": 2},
    "STORE": {"rs_count": 1},
}

# Execution latency in cycles, per opcode
LATENCIES = {
    "ADD": 2,
    "SUB": 2,
    "MUL": 4,
    "DIV": 8,
    "LOAD": 3,
    "STORE": 3,
    "BEQ": 1,
    "BNE": 1,
    "NOP": 1,
}

# Branch Speculation
SPECULATION_ENABLED = True
BRANCH_PREDICTOR = "2-bit"  # "always-taken", "always-not-taken" or "2-bit"

PREDICTOR_KINDS = ("always-taken", "always-not-taken", "2-bit")


def set_fu_config(new_config: dict):
    """
    Override the global FU_CONFIG at runtime.
    Example usage:
        import robTomas.config as config
        config.set_fu_config({"ADD": {"rs_count": 3}, ...})
    """
    global FU_CONFIG
    FU_CONFIG = new_config


def set_latencies(new_latencies: dict):
    """Override the per-opcode latency table."""
    global LATENCIES
    LATENCIES = new_latencies


def set_rob_size(size: int):
    global ROB_SIZE
    ROB_SIZE = size


def set_branch_predictor(kind: str, speculation_enabled: bool = True):
    """Select the predictor used for newly created machines."""
    global BRANCH_PREDICTOR, SPECULATION_ENABLED
    BRANCH_PREDICTOR = kind
    SPECULATION_ENABLED = speculation_enabled


@dataclass(frozen=True)
class MachineConfig:
    """Frozen hardware parameters carried inside every machine state."""

    rob_size: int = 8
    rs_counts: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}), hash=False)
    latencies: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}), hash=False)
    register_names: Tuple[str, ...] = ()
    zero_register: Optional[str] = "R0"
    word_size_bytes: int = 4
    enforce_alignment: bool = True
    speculation_enabled: bool = True
    branch_predictor: str = "2-bit"

    def validate(self) -> "MachineConfig":
        if self.rob_size < 2:
            raise ValueError(f"ROB size must be at least 2, got {self.rob_size}")
        for unit_class in ("ADD", "MUL", "LOAD", "STORE"):
            count = self.rs_counts.get(unit_class, 0)
            if count < 1:
                raise ValueError(f"Reservation station count for {unit_class} must be >= 1, got {count}")
        for op_name, latency in self.latencies.items():
            if latency < 1:
                raise ValueError(f"Latency for {op_name} must be >= 1, got {latency}")
        if self.branch_predictor not in PREDICTOR_KINDS:
            raise ValueError(
                f"Unknown branch predictor '{self.branch_predictor}' "
                f"(expected one of {', '.join(PREDICTOR_KINDS)})"
            )
        if self.word_size_bytes < 1:
            raise ValueError(f"Word size must be positive, got {self.word_size_bytes}")
        if self.zero_register is not None and self.zero_register not in self.register_names:
            raise ValueError(f"Zero register {self.zero_register} is not an architectural register")
        return self

    def latency(self, op_name: str) -> int:
        try:
            return self.latencies[op_name]
        except KeyError:
            raise ValueError(f"No latency configured for opcode {op_name}") from None


def current_config(
    fu_config: Optional[dict] = None,
    latencies: Optional[dict] = None,
    **overrides,
) -> MachineConfig:
    """
    Builds a validated MachineConfig from the module-level settings.

    Module globals are read at call time, so set_fu_config() and friends
    affect every machine created afterwards. Keyword overrides win over globals.
    """
    fu_config = fu_config if fu_config is not None else FU_CONFIG
    merged_latencies = dict(LATENCIES)
    if latencies:
        merged_latencies.update(latencies)
    params = dict(
        rob_size=ROB_SIZE,
        rs_counts=MappingProxyType({unit: vals["rs_count"] for unit, vals in fu_config.items()}),
        latencies=MappingProxyType(merged_latencies),
        register_names=tuple(f"R{i}" for i in range(NUM_REGISTERS)),
        zero_register=ZERO_REGISTER,
        word_size_bytes=WORD_SIZE_BYTES,
        enforce_alignment=ENFORCE_ALIGNMENT,
        speculation_enabled=SPECULATION_ENABLED,
        branch_predictor=BRANCH_PREDICTOR,
    )
    params.update(overrides)
    return MachineConfig(**params).validate()
