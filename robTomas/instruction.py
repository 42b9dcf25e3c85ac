from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import Iterable, List, Optional, Tuple


class OpType(Enum):
    ADD = auto()    # Add: ADD Rdest, Rsrc1, Rsrc2
    SUB = auto()    # Subtract: SUB Rdest, Rsrc1, Rsrc2
    MUL = auto()    # Multiply: MUL Rdest, Rsrc1, Rsrc2
    DIV = auto()    # Divide: DIV Rdest, Rsrc1, Rsrc2
    LOAD = auto()   # Load: LOAD Rdest, offset(Rbase)
    STORE = auto()  # Store: STORE Rsrc, offset(Rbase)
    BEQ = auto()    # Branch if Equal: BEQ Rs1, Rs2, target
    BNE = auto()    # Branch if Not Equal: BNE Rs1, Rs2, target
    NOP = auto()    # No operation


class InstructionState(Enum):
    IDLE = "idle"
    ISSUED = "issued"
    EXECUTING = "executing"
    READY = "ready"
    WRITEBACK = "writeback"
    COMMITTED = "committed"
    FLUSHED = "flushed"


class UnitClass(Enum):
    """Operation class shared by a group of reservation stations and one functional unit."""
    ADD = "ADD"
    MUL = "MUL"
    LOAD = "LOAD"
    STORE = "STORE"


class CommitKind(Enum):
    ALU = "ALU"
    LOAD = "LOAD"
    STORE = "STORE"
    BRANCH = "BRANCH"


BRANCH_OPS = (OpType.BEQ, OpType.BNE)
MEMORY_OPS = (OpType.LOAD, OpType.STORE)
TERMINAL_STATES = (InstructionState.COMMITTED, InstructionState.FLUSHED)

_UNIT_CLASS = {
    OpType.ADD: UnitClass.ADD, OpType.SUB: UnitClass.ADD,
    OpType.BEQ: UnitClass.ADD, OpType.BNE: UnitClass.ADD,
    OpType.NOP: UnitClass.ADD,
    OpType.MUL: UnitClass.MUL, OpType.DIV: UnitClass.MUL,
    OpType.LOAD: UnitClass.LOAD,
    OpType.STORE: UnitClass.STORE,
}


@dataclass(frozen=True)
class Instruction:
    """
    One instruction instance flowing through the pipeline.

    The first block of fields is the identity handed over by the assembler;
    the rest is lifecycle bookkeeping filled in stage by stage. Stages never
    mutate an Instruction, they replace it.

    Operand conventions:
        ADD/SUB/MUL/DIV  dest <- src1 op src2
        LOAD             dest <- MEM[imm + src1]     (src1 optional base)
        STORE            MEM[imm + src2] <- src1     (src2 optional base)
        BEQ/BNE          compare src1, src2; imm is the absolute target index
    """
    id: int
    op_type: OpType
    dest: Optional[str] = None
    src1: Optional[str] = None
    src2: Optional[str] = None
    imm: Optional[int] = None
    pc: int = 0  # Static index of this instruction in the program

    state: InstructionState = InstructionState.IDLE
    issue_cycle: Optional[int] = None
    exec_start_cycle: Optional[int] = None
    exec_end_cycle: Optional[int] = None
    write_back_cycle: Optional[int] = None
    commit_cycle: Optional[int] = None
    is_speculative: bool = False
    rob_index: Optional[int] = None
    checkpoint_id: Optional[int] = None

    @classmethod
    def build(cls, pc: int, op: str, dest: Optional[str] = None, src1: Optional[str] = None,
              src2: Optional[str] = None, imm: Optional[int] = None) -> "Instruction":
        """Convenience constructor for a program slot; `op` is the mnemonic."""
        try:
            op_type = OpType[op.upper()]
        except KeyError:
            raise ValueError(f"Unknown operation: '{op}'") from None
        return cls(id=pc, op_type=op_type, dest=dest or None, src1=src1 or None,
                   src2=src2 or None, imm=imm, pc=pc)

    def get_fu_type(self) -> UnitClass:
        """Returns the class of Functional Unit required by this instruction."""
        return _UNIT_CLASS[self.op_type]

    @property
    def commit_kind(self) -> CommitKind:
        if self.op_type == OpType.LOAD:
            return CommitKind.LOAD
        if self.op_type == OpType.STORE:
            return CommitKind.STORE
        if self.op_type in BRANCH_OPS:
            return CommitKind.BRANCH
        return CommitKind.ALU

    @property
    def is_branch(self) -> bool:
        return self.op_type in BRANCH_OPS

    @property
    def writes_register(self) -> bool:
        return self.dest is not None and self.commit_kind in (CommitKind.ALU, CommitKind.LOAD)

    @property
    def base_register(self) -> Optional[str]:
        if self.op_type == OpType.LOAD:
            return self.src1
        if self.op_type == OpType.STORE:
            return self.src2
        return None

    @property
    def is_done(self) -> bool:
        return self.state in TERMINAL_STATES

    def branch_outcome(self, comparison: int) -> Tuple[bool, int]:
        """
        Maps the branch unit's comparison result (1 when the operands are equal)
        to the actual (taken, target) pair.
        """
        if not self.is_branch:
            raise RuntimeError(f"Instruction {self.id} ({self}) is not a branch")
        equal = bool(comparison)
        taken = equal if self.op_type == OpType.BEQ else not equal
        return taken, (self.imm if taken else self.pc + 1)

    def fresh_instance(self, new_id: int) -> "Instruction":
        """Returns an idle copy of this program slot under a new dynamic id."""
        return Instruction(id=new_id, op_type=self.op_type, dest=self.dest, src1=self.src1,
                           src2=self.src2, imm=self.imm, pc=self.pc)

    def __str__(self) -> str:
        name = self.op_type.name
        if self.op_type == OpType.NOP:
            return name
        if self.op_type == OpType.LOAD:
            return f"{name} {self.dest}, {_address_text(self.imm, self.src1)}"
        if self.op_type == OpType.STORE:
            return f"{name} {self.src1}, {_address_text(self.imm, self.src2)}"
        if self.is_branch:
            return f"{name} {self.src1}, {self.src2}, {self.imm}"
        return f"{name} {self.dest}, {self.src1}, {self.src2}"


def _address_text(offset: Optional[int], base: Optional[str]) -> str:
    offset = offset or 0
    return f"{offset}({base})" if base else str(offset)


def update_instruction(instructions: List[Instruction], instr_id: int, **changes) -> Instruction:
    """Replaces the instruction with `instr_id` in a working list and returns the new value."""
    for pos, instr in enumerate(instructions):
        if instr.id == instr_id:
            instructions[pos] = replace(instr, **changes)
            return instructions[pos]
    raise RuntimeError(f"Corrupt instruction reference: no instruction with id {instr_id}")


def find_instruction(instructions: Iterable[Instruction], instr_id: int) -> Instruction:
    for instr in instructions:
        if instr.id == instr_id:
            return instr
    raise RuntimeError(f"Corrupt instruction reference: no instruction with id {instr_id}")
