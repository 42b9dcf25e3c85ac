from dataclasses import dataclass
from typing import Iterator, Optional, Sequence, Tuple

from .instruction import CommitKind


@dataclass(frozen=True)
class ROBEntry:
    """One slot of the circular reorder buffer."""

    index: int
    busy: bool = False
    instruction_id: Optional[int] = None
    kind: Optional[CommitKind] = None
    destination: Optional[str] = None  # Absent for STORE, BRANCH and NOP
    value: Optional[int] = None
    ready: bool = False
    is_speculative: bool = False
    checkpoint_id: Optional[int] = None
    address: Optional[int] = None  # Effective address for LOAD/STORE

    def __str__(self) -> str:
        if not self.busy:
            return f"ROB{self.index}: Free"
        owner = f", Spec(cp{self.checkpoint_id})" if self.is_speculative else ""
        value = self.value if self.ready else "-"
        return (f"ROB{self.index}: Instr {self.instruction_id} {self.kind.value} "
                f"-> {self.destination or '-'} = {value}{owner}")


def empty_rob(size: int) -> Tuple[ROBEntry, ...]:
    return tuple(ROBEntry(index=i) for i in range(size))


def next_index(index: int, size: int) -> int:
    return (index + 1) % size


def is_full(rob: Sequence[ROBEntry], head: int, tail: int) -> bool:
    """
    The buffer is full when advancing the tail would land on a busy head.
    Checking the head's busy flag tells "full" apart from "empty" when the
    indices meet.
    """
    return next_index(tail, len(rob)) == head and rob[head].busy


def occupancy(rob: Sequence[ROBEntry]) -> int:
    return sum(1 for entry in rob if entry.busy)


def indices_between(start: int, end: int, size: int) -> Iterator[int]:
    """Yields slot indices from `start` up to, not including, `end`, wrapping around."""
    index = start
    while index != end:
        yield index
        index = next_index(index, size)
