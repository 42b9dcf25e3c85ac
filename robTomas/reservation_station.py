from dataclasses import dataclass, replace
from typing import Optional, Union

from .instruction import OpType, UnitClass


@dataclass(frozen=True)
class Resolved:
    """Operand whose value is known."""
    value: int

    def __str__(self) -> str:
        return f"Val:{self.value}"


@dataclass(frozen=True)
class Pending:
    """Operand still waiting for the producer in ROB slot `rob_index` to broadcast."""
    rob_index: int

    def __str__(self) -> str:
        return f"Tag:ROB{self.rob_index}"


Operand = Union[Resolved, Pending]


@dataclass(frozen=True)
class ReservationStation:
    """Represents a single entry in a reservation station pool for a functional unit class."""

    name: str
    unit_class: UnitClass

    busy: bool = False
    op_type: Optional[OpType] = None
    j: Optional[Operand] = None  # Source operand 1
    k: Optional[Operand] = None  # Source operand 2
    dest: Optional[int] = None   # ROB index receiving the result
    address: Optional[int] = None  # Effective address for LOAD/STORE, frozen at issue
    instruction_id: Optional[int] = None

    def issue(self, instruction_id: int, op: OpType, j: Operand, k: Operand,
              dest: int, address: Optional[int]) -> "ReservationStation":
        """Returns this station populated with a newly issued instruction."""
        if self.busy:
            raise RuntimeError(f"Cannot issue to already busy RS: {self.name}")
        return replace(self, busy=True, op_type=op, j=j, k=k, dest=dest,
                       address=address, instruction_id=instruction_id)

    def clear(self) -> "ReservationStation":
        """Returns the station freed with all fields reset."""
        return ReservationStation(name=self.name, unit_class=self.unit_class)

    def is_ready_to_dispatch(self) -> bool:
        """True when the station is busy and neither operand waits on a producer."""
        return self.busy and isinstance(self.j, Resolved) and isinstance(self.k, Resolved)

    def snoop_cdb(self, rob_index: int, value: int) -> "ReservationStation":
        """Captures a CDB broadcast for every operand waiting on `rob_index`."""
        if not self.busy:
            return self
        j, k = self.j, self.k
        if isinstance(j, Pending) and j.rob_index == rob_index:
            j = Resolved(value)
        if isinstance(k, Pending) and k.rob_index == rob_index:
            k = Resolved(value)
        if j is self.j and k is self.k:
            return self
        return replace(self, j=j, k=k)

    # Classic Tomasulo field names, for display
    @property
    def Vj(self) -> Optional[int]:
        return self.j.value if isinstance(self.j, Resolved) else None

    @property
    def Vk(self) -> Optional[int]:
        return self.k.value if isinstance(self.k, Resolved) else None

    @property
    def Qj(self) -> Optional[int]:
        return self.j.rob_index if isinstance(self.j, Pending) else None

    @property
    def Qk(self) -> Optional[int]:
        return self.k.rob_index if isinstance(self.k, Pending) else None

    def __str__(self) -> str:
        if not self.busy:
            return f"RS({self.name}, FU: {self.unit_class.value}): Free"
        return (
            f"RS({self.name}, FU: {self.unit_class.value}, Busy: {self.busy}, "
            f"Op: {self.op_type.name if self.op_type else 'N/A'}, Instr: {self.instruction_id}, "
            f"Vj: {self.j}, Vk: {self.k}, Dest: ROB{self.dest}, A: {self.address})"
        )
