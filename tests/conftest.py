import pytest

from robTomas.config import current_config
from robTomas.instruction import Instruction
from robTomas.processor import advance, reset


def build_program(*rows):
    """Turns (op, dest, src1, src2, imm) rows into a program with ids equal to positions."""
    program = []
    for pc, row in enumerate(rows):
        op, *operands = row
        operands += [None] * (4 - len(operands))
        dest, src1, src2, imm = operands
        program.append(Instruction.build(pc, op, dest, src1, src2, imm))
    return program


def advance_n(state, cycles):
    for _ in range(cycles):
        state = advance(state)
    return state


@pytest.fixture
def default_config():
    return current_config()


@pytest.fixture
def basic_program():
    return build_program(
        ("LOAD", "R1", None, None, 0),
        ("LOAD", "R2", None, None, 4),
        ("ADD", "R3", "R1", "R2"),
        ("MUL", "R4", "R3", "R1"),
        ("SUB", "R5", "R4", "R2"),
        ("STORE", None, "R5", None, 8),
    )


@pytest.fixture
def basic_state(basic_program, default_config):
    return reset(basic_program, memory={0: 5, 4: 3}, config=default_config)
