import logging
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from .config import MachineConfig
from .instruction import OpType, UnitClass
from .memory import read_word, validate_alignment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FunctionalUnit:
    """
    An unpipelined execution unit: it holds one operation from
    dispatch until its result is broadcast on the CDB.

    Operands are copied from the reservation station at dispatch time and
    never re-read from it afterwards.
    """

    name: str
    unit_class: UnitClass

    busy: bool = False
    instruction_id: Optional[int] = None
    op_type: Optional[OpType] = None
    cycles_remaining: int = 0
    total_cycles: int = 0
    vj: Optional[int] = None
    vk: Optional[int] = None
    address: Optional[int] = None
    result: Optional[int] = None

    def start(self, instruction_id: int, op: OpType, vj: int, vk: int,
              address: Optional[int], latency: int) -> "FunctionalUnit":
        if self.busy:
            raise RuntimeError(
                f"Cannot dispatch instruction {instruction_id} to busy unit {self.name} "
                f"(bound to instruction {self.instruction_id})"
            )
        return replace(self, busy=True, instruction_id=instruction_id, op_type=op,
                       cycles_remaining=latency, total_cycles=latency,
                       vj=vj, vk=vk, address=address, result=None)

    def clear(self) -> "FunctionalUnit":
        return FunctionalUnit(name=self.name, unit_class=self.unit_class)

    @property
    def has_result(self) -> bool:
        return self.busy and self.cycles_remaining == 0 and self.result is not None

    def __str__(self) -> str:
        if not self.busy:
            return f"FU({self.name}): Free"
        progress = f"{self.total_cycles - self.cycles_remaining}/{self.total_cycles}"
        result = f", Result: {self.result}" if self.result is not None else ""
        return f"FU({self.name}, Op: {self.op_type.name}, Instr: {self.instruction_id}, {progress}{result})"


def compute_result(fu: FunctionalUnit, memory: Mapping[int, int], config: MachineConfig) -> int:
    """Computes the result of the operation held by `fu` from its captured operands."""
    op = fu.op_type
    vj = fu.vj if fu.vj is not None else 0
    vk = fu.vk if fu.vk is not None else 0

    if op == OpType.ADD:
        return vj + vk
    if op == OpType.SUB:
        return vj - vk
    if op == OpType.MUL:
        return vj * vk
    if op == OpType.DIV:
        if vk == 0:
            logger.warning("%s: DIV of %d by zero for instruction %s, result forced to 0",
                           fu.name, vj, fu.instruction_id)
            return 0
        return vj // vk
    if op == OpType.LOAD:
        return read_word(memory, fu.address, config)
    if op == OpType.STORE:
        # The write itself happens at commit; the address is checked now so a
        # bad store faults at execute like a bad load does.
        validate_alignment(fu.address, config)
        return vj
    if op in (OpType.BEQ, OpType.BNE):
        return 1 if vj == vk else 0
    if op == OpType.NOP:
        return 0
    raise RuntimeError(f"{fu.name}: unknown op_type {op} for computation")
