"""Committed register file and Register Alias Table (RAT).

Both tables are read-only mappings: every helper builds a new dict and hands
back a MappingProxyType over it, so a state snapshot can never be changed
through a later one.
"""
import logging
from types import MappingProxyType
from typing import Mapping, Optional, Sequence

from .config import MachineConfig
from .reorder_buffer import ROBEntry
from .reservation_station import Operand, Pending, Resolved

logger = logging.getLogger(__name__)


def initial_registers(config: MachineConfig, values: Optional[Mapping[str, int]] = None) -> Mapping[str, int]:
    """All architectural registers start at 0, then `values` is applied."""
    registers = {name: 0 for name in config.register_names}
    for name, value in (values or {}).items():
        if name not in registers:
            raise ValueError(f"Invalid register: '{name}'")
        if name == config.zero_register:
            if value != 0:
                logger.warning("Ignoring initial value %d for zero register %s", value, name)
            continue
        registers[name] = int(value)
    return MappingProxyType(registers)


def read_register(registers: Mapping[str, int], name: str, config: MachineConfig) -> int:
    """Reads the committed value. The zero register always reads 0."""
    if name == config.zero_register:
        return 0
    try:
        return registers[name]
    except KeyError:
        raise ValueError(f"Invalid register: '{name}'") from None


def write_register(registers: Mapping[str, int], name: str, value: int, config: MachineConfig) -> Mapping[str, int]:
    """
    Commits `value` to `name`. Writes to the zero register are discarded
    (with a warning) rather than rejected.
    """
    if name not in registers:
        raise ValueError(f"Invalid register: '{name}'")
    if name == config.zero_register:
        logger.warning("Discarding committed write of %d to zero register %s", value, name)
        return MappingProxyType(dict(registers))
    new_registers = dict(registers)
    new_registers[name] = value
    return MappingProxyType(new_registers)


def read_operand(
    name: Optional[str],
    registers: Mapping[str, int],
    rat: Mapping[str, int],
    rob: Sequence[ROBEntry],
    config: MachineConfig,
) -> Operand:
    """
    Resolves a source register at issue time.

    A renamed register whose producer already broadcast reads the value from
    the ROB; one still in flight yields a pending tag on the producer's ROB index.
    """
    if name is None:
        return Resolved(0)
    if name == config.zero_register:
        return Resolved(0)
    rob_index = rat.get(name)
    if rob_index is not None:
        entry = rob[rob_index]
        if entry.busy and entry.ready and entry.value is not None:
            return Resolved(entry.value)
        return Pending(rob_index)
    return Resolved(read_register(registers, name, config))


def rename(rat: Mapping[str, int], register: str, rob_index: int) -> Mapping[str, int]:
    """Points `register` at a new producer, overwriting any older mapping (WAW)."""
    new_rat = dict(rat)
    new_rat[register] = rob_index
    return MappingProxyType(new_rat)


def clear_if_matches(rat: Mapping[str, int], register: str, rob_index: int) -> Mapping[str, int]:
    """Drops the mapping only if a younger issue has not already renamed the register."""
    if rat.get(register) != rob_index:
        return MappingProxyType(dict(rat))
    new_rat = dict(rat)
    del new_rat[register]
    return MappingProxyType(new_rat)


def snapshot(rat: Mapping[str, int]) -> Mapping[str, int]:
    return MappingProxyType(dict(rat))


def restore(rat_snapshot: Mapping[str, int], rob: Sequence[ROBEntry], branch_id: int) -> Mapping[str, int]:
    """
    Rebuilds the RAT from a checkpoint snapshot.

    Producers that committed since the snapshot was taken have freed their ROB
    slot (which may since have been reused by a squashed instruction), so only
    mappings that still name a live entry older than the branch survive.
    """
    restored = {}
    for register, rob_index in rat_snapshot.items():
        entry = rob[rob_index]
        if entry.busy and entry.instruction_id is not None and entry.instruction_id < branch_id:
            restored[register] = rob_index
    return MappingProxyType(restored)
