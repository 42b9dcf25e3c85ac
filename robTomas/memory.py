from types import MappingProxyType
from typing import List, Mapping, Optional, Tuple

from .config import MachineConfig


class MemoryAlignmentError(ValueError):
    """A LOAD/STORE address is not a multiple of the word size."""

    def __init__(self, address: int, word_size: int):
        super().__init__(
            f"Memory alignment error: Address {address} is not word-aligned "
            f"(must be a multiple of {word_size})"
        )
        self.address = address
        self.word_size = word_size


def initial_memory(values: Optional[Mapping[int, int]] = None) -> Mapping[int, int]:
    """
    Builds the sparse memory image. Uninitialized words read as 0.

    Args:
        values: word-aligned byte address -> value. Alignment is checked when
                the address is accessed by a LOAD/STORE, not here.
    """
    return MappingProxyType({int(address): int(value) for address, value in (values or {}).items()})


def validate_alignment(address: int, config: MachineConfig) -> None:
    if config.enforce_alignment and address % config.word_size_bytes != 0:
        raise MemoryAlignmentError(address, config.word_size_bytes)


def read_word(memory: Mapping[int, int], address: int, config: MachineConfig) -> int:
    """
    Reads the word at `address`.

    Raises:
        MemoryAlignmentError: if alignment is enforced and the address is misaligned.
    """
    validate_alignment(address, config)
    return memory.get(address, 0)


def write_word(memory: Mapping[int, int], address: int, value: int, config: MachineConfig) -> Mapping[int, int]:
    """Returns a new read-only memory image with `value` stored at `address`."""
    validate_alignment(address, config)
    new_memory = dict(memory)
    new_memory[address] = value
    return MappingProxyType(new_memory)


def dump(memory: Mapping[int, int], start_address: int = 0, num_words: int = 16,
         word_size: int = 4) -> List[Tuple[int, int]]:
    """Returns a list of (address, value) tuples for a word-stepped memory range."""
    return [
        (addr, memory.get(addr, 0))
        for addr in range(start_address, start_address + num_words * word_size, word_size)
    ]
