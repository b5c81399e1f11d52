from __future__ import annotations
from typing import Union

from langtwo.error import BackendError
from langtwo.ir import IR
from langtwo.bytecode.operations import (
    BINARY_OPS,
    CallOp,
    CondBranchOp,
    I2iOp,
    JumpIOp,
    LabelOp,
    LoadIOp,
    NamedLabel,
    NumberedLabel,
    Operation,
    PopOp,
    PushOp,
    Register,
    ReturnOp,
    operation_registers,
)
from langtwo.state import CompileState
from langtwo.vm import FRAME_SIZE
from langtwo.syntax import (
    AstAssign,
    AstBinaryOp,
    AstBlock,
    AstBoolean,
    AstBreak,
    AstExpr,
    AstFnDef,
    AstFuncCall,
    AstIf,
    AstInt,
    AstLoop,
    AstName,
    AstProgram,
    AstStr,
)
from langtwo.visitors import Emitter

# the registers that hold the value of a construct (None if it has no value), and the
# instructions that compute it
Lowered = tuple[Union[Register, None], list[Operation]]


class GenerateIr(Emitter):
    """Lowers the AST into a flat instruction stream. Each emit method returns the
    register holding the node's value along with the instructions computing it.

    Semantic passes must have run without errors first: this emitter assumes
    every break has an enclosing loop and every function body ends with a value."""

    def emit_AstProgram(self, node: AstProgram, state: CompileState) -> IR:
        ir = IR()
        for stmt in node.stmts:
            reg, ops = self.emit(stmt, state)
            ir.instructions.extend(ops)
            # fn defs and loops leave the previous result in place
            if isinstance(stmt, AstExpr):
                ir.result = reg
        return ir

    def emit_AstBlock(self, node: AstBlock, state: CompileState) -> Lowered:
        result = None
        ops = []
        for stmt in node.stmts:
            result, stmt_ops = self.emit(stmt, state)
            ops.extend(stmt_ops)
        return result, ops

    def emit_AstInt(self, node: AstInt, state: CompileState) -> Lowered:
        out = state.new_register()
        return out, [LoadIOp(node.value, out)]

    def emit_AstBoolean(self, node: AstBoolean, state: CompileState) -> Lowered:
        out = state.new_register()
        return out, [LoadIOp(1 if node.value else 0, out)]

    def emit_AstStr(self, node: AstStr, state: CompileState) -> Lowered:
        assert False, "string literals should have been rejected"

    def emit_AstName(self, node: AstName, state: CompileState) -> Lowered:
        # a name that was never assigned gets a fresh register, which reads as 0
        return state.variable_register(node.name), []

    def emit_AstAssign(self, node: AstAssign, state: CompileState) -> Lowered:
        value, ops = self.emit(node.value, state)
        var = state.variable_register(node.name)
        ops.append(I2iOp(value, var))
        return var, ops

    def emit_AstBinaryOp(self, node: AstBinaryOp, state: CompileState) -> Lowered:
        lhs, ops = self.emit(node.lhs, state)
        rhs, rhs_ops = self.emit(node.rhs, state)
        ops.extend(rhs_ops)
        out = state.new_register()
        ops.append(BINARY_OPS[node.op](lhs, rhs, out))
        return out, ops

    def emit_branch(
        self,
        block: AstBlock | None,
        out: Register,
        end: NumberedLabel,
        state: CompileState,
    ) -> list[Operation]:
        ops = []
        result = None
        if block is not None:
            result, ops = self.emit(block, state)
        if result is None:
            ops.append(LoadIOp(0, out))
        else:
            ops.append(I2iOp(result, out))
        ops.append(JumpIOp(end))
        return ops

    def emit_AstIf(self, node: AstIf, state: CompileState) -> Lowered:
        out = state.new_register()
        cond, ops = self.emit(node.condition, state)

        label_true = state.new_label()
        label_end = state.new_label()
        label_false = state.new_label()

        ops.append(CondBranchOp(cond, label_true, label_false))
        ops.append(LabelOp(label_true))
        ops.extend(self.emit_branch(node.body, out, label_end, state))
        ops.append(LabelOp(label_false))
        ops.extend(self.emit_branch(node.els, out, label_end, state))
        ops.append(LabelOp(label_end))
        return out, ops

    def emit_AstLoop(self, node: AstLoop, state: CompileState) -> Lowered:
        label_start = state.new_label()
        label_end = state.new_label()
        state.loop_end_labels[node] = label_end

        ops = [LabelOp(label_start)]
        _, body_ops = self.emit(node.body, state)
        ops.extend(body_ops)
        ops.append(JumpIOp(label_start))
        ops.append(LabelOp(label_end))
        return None, ops

    def emit_AstBreak(self, node: AstBreak, state: CompileState) -> Lowered:
        enclosing_loop = state.enclosing_loops[node]
        return None, [JumpIOp(state.loop_end_labels[enclosing_loop])]

    def emit_AstFuncCall(self, node: AstFuncCall, state: CompileState) -> Lowered:
        ops = []
        arg_regs = []
        for arg in node.args:
            reg, arg_ops = self.emit(arg, state)
            ops.extend(arg_ops)
            arg_regs.append(reg)
        # reversed, so that the callee pops the first arg first
        for reg in reversed(arg_regs):
            ops.append(PushOp(reg))
        ops.append(CallOp(NamedLabel(node.name)))
        out = state.new_register()
        ops.append(PopOp(out))
        return out, ops

    def emit_AstFnDef(self, node: AstFnDef, state: CompileState) -> Lowered:
        label_end = state.new_label()
        entry = LabelOp(NamedLabel(node.name))

        previous_entry = state.func_entry_ops.get(node.name)
        if previous_entry is not None:
            # the last definition wins. move the earlier body off the name
            previous_entry.label = state.new_label()
        state.func_entry_ops[node.name] = entry

        ops = [JumpIOp(label_end), entry]

        state.push_scope()
        for param in node.parameters:
            ops.append(PopOp(state.variable_register(param)))
        result, body_ops = self.emit(node.body, state)
        state.pop_scope()

        assert result is not None, node
        ops.extend(body_ops)
        ops.append(PushOp(result))
        ops.append(ReturnOp())
        ops.append(LabelOp(label_end))
        return None, ops


class IrPass:
    def run(self, ir: IR, state: CompileState) -> Union[IR, BackendError]:
        pass


class CheckLabels(IrPass):
    def run(self, ir, state: CompileState):
        labels = set()
        for op in ir:
            if not isinstance(op, LabelOp):
                continue
            if op.label in labels:
                return BackendError(f"Label {op.label} already exists")
            labels.add(op.label)
        return ir


class FinalChecks(IrPass):
    def run(self, ir, state: CompileState):
        if len(ir) > state.max_instruction_count:
            return BackendError(
                f"Too many instructions (expected at most {state.max_instruction_count}, had {len(ir)})"
            )

        for op in ir:
            for reg in operation_registers(op):
                if reg.index >= FRAME_SIZE:
                    return BackendError(
                        f"Register {reg} does not fit in a frame of {FRAME_SIZE} registers"
                    )

        return ir
