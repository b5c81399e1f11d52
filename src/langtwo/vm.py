from __future__ import annotations
from dataclasses import dataclass, field
import sys
from typing import Callable

from langtwo import wrap_i32
from langtwo.error import (
    ArithmeticFault,
    LabelResolutionFault,
    ResourceExhaustedFault,
    StackUnderflowFault,
)
from langtwo.ir import IR
from langtwo.bytecode.operations import (
    ArithmeticOperation,
    CallOp,
    ComparisonOperation,
    CondBranchOp,
    GlobalRegister,
    I2iOp,
    ImmediateArithmeticOperation,
    JumpIOp,
    Label,
    LabelOp,
    LoadIOp,
    OpId,
    Operation,
    PopOp,
    PushIOp,
    PushOp,
    Register,
    ReturnOp,
    operation_registers,
)

# number of registers in every frame
FRAME_SIZE = 256
# max number of frames on top of the global frame
MAX_CALL_DEPTH = 1024
MAX_OPERAND_STACK_SIZE = 65536

# assigned in compiler_main or by the --vm-debug pytest option
debug = False


def trunc_div(lhs: int, rhs: int) -> int:
    """division rounding toward zero. rhs must be nonzero"""
    quotient = abs(lhs) // abs(rhs)
    if (lhs < 0) != (rhs < 0):
        quotient = -quotient
    return quotient


def trunc_mod(lhs: int, rhs: int) -> int:
    """remainder of trunc_div, takes the sign of lhs. rhs must be nonzero"""
    return lhs - rhs * trunc_div(lhs, rhs)


ARITHMETIC_FUNCS: dict[OpId, Callable[[int, int], int]] = {
    OpId.ADD: lambda a, b: a + b,
    OpId.SUB: lambda a, b: a - b,
    OpId.MUL: lambda a, b: a * b,
    OpId.DIV: trunc_div,
    OpId.MOD: trunc_mod,
    OpId.ADDI: lambda a, b: a + b,
    OpId.SUBI: lambda a, b: a - b,
    OpId.MULI: lambda a, b: a * b,
    OpId.DIVI: trunc_div,
}

COMPARISON_FUNCS: dict[OpId, Callable[[int, int], bool]] = {
    OpId.CMPEQ: lambda a, b: a == b,
    OpId.CMPLT: lambda a, b: a < b,
    OpId.CMPLTE: lambda a, b: a <= b,
    OpId.CMPGT: lambda a, b: a > b,
    OpId.CMPGTE: lambda a, b: a >= b,
}


def resolve_labels(ir: IR) -> dict[Label, int]:
    """maps every label to the index of its LabelOp. also makes sure every register
    fits in a frame, so that execution never has to check"""
    label_map: dict[Label, int] = {}
    for idx, op in enumerate(ir.instructions):
        for reg in operation_registers(op):
            if reg.index >= FRAME_SIZE or reg.index < 0:
                raise ResourceExhaustedFault(
                    f"Register {reg} is outside of a {FRAME_SIZE} register frame",
                    op,
                    idx,
                )
        if not isinstance(op, LabelOp):
            continue
        if op.label in label_map:
            raise LabelResolutionFault(f"Duplicate label {op.label}", op, idx)
        label_map[op.label] = idx
    return label_map


@dataclass
class Frame:
    """one register file. frame 0 holds the globals, the others are activation records"""

    registers: list[int] = field(default_factory=lambda: [0] * FRAME_SIZE)


class VirtualMachine:
    """Executes an IR. Single use: construct a new one for every run."""

    def __init__(self, ir: IR):
        self.ir = ir
        self.ip = 0
        self.operand_stack: list[int] = []
        self.return_stack: list[int] = []
        self.frames: list[Frame] = [Frame()]

        self.label_map = resolve_labels(ir)

        self.handlers: dict[type[Operation], Callable] = {
            LabelOp: self.handle_label,
            CallOp: self.handle_call,
            ReturnOp: self.handle_return,
            PushOp: self.handle_push,
            PopOp: self.handle_pop,
            PushIOp: self.handle_pushi,
            LoadIOp: self.handle_loadi,
            I2iOp: self.handle_i2i,
            JumpIOp: self.handle_jumpi,
            CondBranchOp: self.handle_condbranch,
        }

    def run(self) -> int | None:
        """runs until the instruction pointer leaves the instruction list. returns the
        value of the result register, or None if the IR has none"""
        instructions = self.ir.instructions
        while 0 <= self.ip < len(instructions):
            op = instructions[self.ip]
            if debug:
                print(
                    f"[{self.ip}] {op!r} depth={len(self.frames) - 1} stack={self.operand_stack}",
                    file=sys.stderr,
                )
            next_ip = self.dispatch(op)
            self.ip = self.ip + 1 if next_ip is None else next_ip

        if self.ir.result is None:
            return None
        return self.read(self.ir.result)

    def dispatch(self, op: Operation) -> int | None:
        """executes one op. returns the next ip, or None to fall through"""
        if isinstance(op, ArithmeticOperation):
            return self.handle_arithmetic(op, self.read(op.rhs))
        if isinstance(op, ImmediateArithmeticOperation):
            return self.handle_arithmetic(op, wrap_i32(op.rhs))
        if isinstance(op, ComparisonOperation):
            return self.handle_comparison(op)
        handler = self.handlers.get(type(op))
        assert handler is not None, op
        return handler(op)

    def frame_of(self, reg: Register) -> Frame:
        if isinstance(reg, GlobalRegister):
            return self.frames[0]
        return self.frames[-1]

    def read(self, reg: Register) -> int:
        return self.frame_of(reg).registers[reg.index]

    def write(self, reg: Register, value: int):
        self.frame_of(reg).registers[reg.index] = value

    def resolve(self, label: Label, op: Operation) -> int:
        idx = self.label_map.get(label)
        if idx is None:
            raise LabelResolutionFault(f"Unknown label {label}", op, self.ip)
        return idx

    def push_operand(self, value: int, op: Operation):
        if len(self.operand_stack) >= MAX_OPERAND_STACK_SIZE:
            raise ResourceExhaustedFault(
                f"Operand stack is full ({MAX_OPERAND_STACK_SIZE} values)", op, self.ip
            )
        self.operand_stack.append(value)

    def handle_label(self, op: LabelOp):
        return None

    def handle_call(self, op: CallOp):
        target = self.resolve(op.label, op)
        if len(self.return_stack) >= MAX_CALL_DEPTH:
            raise ResourceExhaustedFault(
                f"Call depth exceeded {MAX_CALL_DEPTH}", op, self.ip
            )
        self.return_stack.append(self.ip)
        self.frames.append(Frame())
        return target

    def handle_return(self, op: ReturnOp):
        if not self.return_stack:
            raise StackUnderflowFault("Return with no caller", op, self.ip)
        if len(self.frames) <= 1:
            raise StackUnderflowFault("Return would pop the global frame", op, self.ip)
        self.frames.pop()
        return self.return_stack.pop() + 1

    def handle_push(self, op: PushOp):
        self.push_operand(self.read(op.reg), op)

    def handle_pushi(self, op: PushIOp):
        self.push_operand(wrap_i32(op.val), op)

    def handle_pop(self, op: PopOp):
        if not self.operand_stack:
            raise StackUnderflowFault("Pop from an empty operand stack", op, self.ip)
        self.write(op.reg, self.operand_stack.pop())

    def handle_arithmetic(self, op, rhs: int):
        if op.opcode in (OpId.DIV, OpId.MOD, OpId.DIVI) and rhs == 0:
            raise ArithmeticFault("Division by zero", op, self.ip)
        lhs = self.read(op.lhs)
        self.write(op.out, wrap_i32(ARITHMETIC_FUNCS[op.opcode](lhs, rhs)))

    def handle_comparison(self, op: ComparisonOperation):
        result = COMPARISON_FUNCS[op.opcode](self.read(op.lhs), self.read(op.rhs))
        self.write(op.out, 1 if result else 0)

    def handle_loadi(self, op: LoadIOp):
        self.write(op.out, wrap_i32(op.val))

    def handle_i2i(self, op: I2iOp):
        self.write(op.rhs, self.read(op.lhs))

    def handle_jumpi(self, op: JumpIOp):
        return self.resolve(op.label, op)

    def handle_condbranch(self, op: CondBranchOp):
        # exactly 1, not any nonzero value
        if self.read(op.cond) == 1:
            return self.resolve(op.label_true, op)
        return self.resolve(op.label_false, op)


def run_ir(ir: IR) -> int | None:
    return VirtualMachine(ir).run()
