from dataclasses import dataclass, field
from enum import IntEnum
from types import MappingProxyType
from typing import Mapping


class CounterState(IntEnum):
    """2-bit saturating counter. The high bit set means "predict taken"."""
    STRONGLY_NOT_TAKEN = 0
    WEAKLY_NOT_TAKEN = 1
    WEAKLY_TAKEN = 2
    STRONGLY_TAKEN = 3


_STATE_NAMES = {
    CounterState.STRONGLY_NOT_TAKEN: "SNT",
    CounterState.WEAKLY_NOT_TAKEN: "WNT",
    CounterState.WEAKLY_TAKEN: "WT",
    CounterState.STRONGLY_TAKEN: "ST",
}

DEFAULT_COUNTER = CounterState.WEAKLY_NOT_TAKEN


@dataclass(frozen=True)
class BranchPredictor:
    """
    Direction predictor.

    kind is one of "always-taken", "always-not-taken" or "2-bit". The 2-bit
    table is keyed by branch PC and filled on demand; a PC that was never
    updated sits at Weakly-Not-Taken.
    """

    kind: str = "2-bit"
    table: Mapping[int, CounterState] = field(default_factory=lambda: MappingProxyType({}), hash=False)

    def counter(self, pc: int) -> CounterState:
        return self.table.get(pc, DEFAULT_COUNTER)

    def predict(self, pc: int) -> bool:
        if self.kind == "always-taken":
            return True
        if self.kind == "always-not-taken":
            return False
        return self.counter(pc) >= CounterState.WEAKLY_TAKEN

    def update(self, pc: int, taken: bool) -> "BranchPredictor":
        """Returns the predictor after training on one resolved outcome. Static kinds never change."""
        if self.kind != "2-bit":
            return self
        current = self.counter(pc)
        if taken:
            new_state = CounterState(min(CounterState.STRONGLY_TAKEN, current + 1))
        else:
            new_state = CounterState(max(CounterState.STRONGLY_NOT_TAKEN, current - 1))
        table = dict(self.table)
        table[pc] = new_state
        return BranchPredictor(kind=self.kind, table=MappingProxyType(table))


def predictor_state_name(state: CounterState) -> str:
    """Short human-readable counter name (SNT, WNT, WT, ST)."""
    return _STATE_NAMES.get(state, "Unknown")
