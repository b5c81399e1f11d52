from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
from typing import ClassVar, Union

from langtwo.syntax import Operator

# ─────────────────────────────────────────────────────────────────────────────
# Register and label addressing
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Register:
    index: int

    # listing prefix, see assembler
    prefix: ClassVar[str] = "?"

    def __str__(self):
        return f"{self.prefix}{self.index}"


@dataclass(frozen=True)
class GlobalRegister(Register):
    """slot `index` of frame 0, whatever the current call depth"""

    prefix: ClassVar[str] = "g"

    def __repr__(self):
        return f"Global({self.index})"


@dataclass(frozen=True)
class ArpRegister(Register):
    """slot `index` relative to the activation record pointer (the topmost frame)"""

    prefix: ClassVar[str] = "a"

    def __repr__(self):
        return f"Arp({self.index})"


@dataclass(frozen=True)
class Label:
    pass


@dataclass(frozen=True)
class NamedLabel(Label):
    """function entry point, keyed by the function name"""

    name: str

    def __str__(self):
        return f"@{self.name}"

    def __repr__(self):
        return f"Named({self.name!r})"


@dataclass(frozen=True)
class NumberedLabel(Label):
    """anonymous branch target for control blocks"""

    number: int

    def __str__(self):
        return f".L{self.number}"

    def __repr__(self):
        return f"Numbered({self.number})"


# ─────────────────────────────────────────────────────────────────────────────
# OpId enum
# ─────────────────────────────────────────────────────────────────────────────


class OpId(Enum):
    # control markers
    LABEL = 0
    CALL = 1
    RETURN = 2
    # operand stack transfer
    PUSH = 3
    POP = 4
    PUSHI = 5
    # register-register arithmetic
    ADD = 6
    SUB = 7
    MUL = 8
    DIV = 9
    MOD = 10
    # register-immediate arithmetic
    ADDI = 11
    SUBI = 12
    MULI = 13
    DIVI = 14
    # comparisons, write 1 or 0
    CMPEQ = 15
    CMPLT = 16
    CMPLTE = 17
    CMPGT = 18
    CMPGTE = 19
    # data movement
    LOADI = 20
    I2I = 21
    # control transfer
    JUMPI = 22
    CONDBRANCH = 23


# ─────────────────────────────────────────────────────────────────────────────
# Operation base classes
# ─────────────────────────────────────────────────────────────────────────────


class Operation:
    opcode: ClassVar[OpId]

    def __repr__(self):
        r = self.__class__.__old_repr__(self)
        value = r[r.index("(") + 1 :]
        return self.opcode.name + "(" + value


@dataclass
class ArithmeticOperation(Operation):
    """reads two registers, writes the result to `out`"""

    lhs: Register
    rhs: Register
    out: Register


@dataclass
class ImmediateArithmeticOperation(Operation):
    """reads a register and an immediate, writes the result to `out`"""

    lhs: Register
    rhs: int
    out: Register


@dataclass
class ComparisonOperation(Operation):
    """writes 1 to `out` if the comparison holds, 0 otherwise"""

    lhs: Register
    rhs: Register
    out: Register


# ─────────────────────────────────────────────────────────────────────────────
# Control markers
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class LabelOp(Operation):
    """no-op at execution time, marks a branch target"""

    opcode: ClassVar[OpId] = OpId.LABEL
    label: Label


@dataclass
class CallOp(Operation):
    opcode: ClassVar[OpId] = OpId.CALL
    label: Label


@dataclass
class ReturnOp(Operation):
    opcode: ClassVar[OpId] = OpId.RETURN


# ─────────────────────────────────────────────────────────────────────────────
# Operand stack transfer
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class PushOp(Operation):
    opcode: ClassVar[OpId] = OpId.PUSH
    reg: Register


@dataclass
class PopOp(Operation):
    opcode: ClassVar[OpId] = OpId.POP
    reg: Register


@dataclass
class PushIOp(Operation):
    opcode: ClassVar[OpId] = OpId.PUSHI
    val: int


# ─────────────────────────────────────────────────────────────────────────────
# Arithmetic
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class AddOp(ArithmeticOperation):
    opcode: ClassVar[OpId] = OpId.ADD


@dataclass
class SubOp(ArithmeticOperation):
    opcode: ClassVar[OpId] = OpId.SUB


@dataclass
class MulOp(ArithmeticOperation):
    opcode: ClassVar[OpId] = OpId.MUL


@dataclass
class DivOp(ArithmeticOperation):
    opcode: ClassVar[OpId] = OpId.DIV


@dataclass
class ModOp(ArithmeticOperation):
    opcode: ClassVar[OpId] = OpId.MOD


@dataclass
class AddIOp(ImmediateArithmeticOperation):
    opcode: ClassVar[OpId] = OpId.ADDI


@dataclass
class SubIOp(ImmediateArithmeticOperation):
    opcode: ClassVar[OpId] = OpId.SUBI


@dataclass
class MulIOp(ImmediateArithmeticOperation):
    opcode: ClassVar[OpId] = OpId.MULI


@dataclass
class DivIOp(ImmediateArithmeticOperation):
    opcode: ClassVar[OpId] = OpId.DIVI


# ─────────────────────────────────────────────────────────────────────────────
# Comparisons
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class CmpEqOp(ComparisonOperation):
    opcode: ClassVar[OpId] = OpId.CMPEQ


@dataclass
class CmpLtOp(ComparisonOperation):
    opcode: ClassVar[OpId] = OpId.CMPLT


@dataclass
class CmpLteOp(ComparisonOperation):
    opcode: ClassVar[OpId] = OpId.CMPLTE


@dataclass
class CmpGtOp(ComparisonOperation):
    opcode: ClassVar[OpId] = OpId.CMPGT


@dataclass
class CmpGteOp(ComparisonOperation):
    opcode: ClassVar[OpId] = OpId.CMPGTE


# ─────────────────────────────────────────────────────────────────────────────
# Data movement
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class LoadIOp(Operation):
    opcode: ClassVar[OpId] = OpId.LOADI
    val: int
    out: Register


@dataclass
class I2iOp(Operation):
    """copies `lhs` into `rhs`"""

    opcode: ClassVar[OpId] = OpId.I2I
    lhs: Register
    rhs: Register


# ─────────────────────────────────────────────────────────────────────────────
# Control transfer
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class JumpIOp(Operation):
    opcode: ClassVar[OpId] = OpId.JUMPI
    label: Label


@dataclass
class CondBranchOp(Operation):
    """goes to label_true if `cond` holds exactly 1, otherwise to label_false"""

    opcode: ClassVar[OpId] = OpId.CONDBRANCH
    cond: Register
    label_true: Label
    label_false: Label


# ─────────────────────────────────────────────────────────────────────────────
# Fix __repr__ for all operation subclasses
# ─────────────────────────────────────────────────────────────────────────────


def all_operation_types() -> list[type[Operation]]:
    """every concrete operation class, i.e. every class with its own opcode"""
    found = []
    pending = list(Operation.__subclasses__())
    while pending:
        cls = pending.pop(0)
        pending.extend(cls.__subclasses__())
        if "opcode" in cls.__dict__:
            found.append(cls)
    return found


for cls in all_operation_types():
    cls.__old_repr__ = cls.__repr__
    cls.__repr__ = Operation.__repr__


OPERATIONS_BY_ID: dict[OpId, type[Operation]] = {
    cls.opcode: cls for cls in all_operation_types()
}


# ─────────────────────────────────────────────────────────────────────────────
# Operator dispatch table
# ─────────────────────────────────────────────────────────────────────────────

BINARY_OPS: dict[Operator, type[Union[ArithmeticOperation, ComparisonOperation]]] = {
    Operator.ADD: AddOp,
    Operator.SUB: SubOp,
    Operator.MUL: MulOp,
    Operator.DIV: DivOp,
    Operator.MOD: ModOp,
    Operator.EQ: CmpEqOp,
    Operator.LT: CmpLtOp,
    Operator.LTE: CmpLteOp,
    Operator.GT: CmpGtOp,
    Operator.GTE: CmpGteOp,
}

CONTROL_TRANSFER_OPS = (JumpIOp, CondBranchOp, CallOp, ReturnOp)
"""operations after which execution does not fall through to the next index"""


def operation_registers(op: Operation) -> list[Register]:
    """every register operand of `op`, in field order"""
    return [
        getattr(op, f.name)
        for f in fields(op)
        if isinstance(getattr(op, f.name), Register)
    ]
