from __future__ import annotations

from langtwo.bytecode.operations import BINARY_OPS
from langtwo.state import CompileState, FunctionSymbol
from langtwo.syntax import (
    AstBinaryOp,
    AstBreak,
    AstFnDef,
    AstFuncCall,
    AstLoop,
    AstStr,
)
from langtwo.visitors import STOP_DESCENT, TopDownVisitor, Visitor


class CollectFunctions(TopDownVisitor):
    """Builds the function symbol table. Calls may appear before the definition
    they target, so this runs before any call is checked or generated.

    Redefining a function either shadows the earlier definition (the default,
    last definition wins) or is an error with the reject_redefinition flag."""

    def visit_AstFnDef(self, node: AstFnDef, state: CompileState):
        if len(set(node.parameters)) != len(node.parameters):
            # repeated names share a register, so the last argument wins
            state.warn(f"Function '{node.name}' has duplicate parameter names", node)

        existing = state.functions.get(node.name)
        if existing is not None:
            if state.compile_args.get("reject_redefinition", False):
                state.err(f"Function '{node.name}' has already been defined", node)
                return STOP_DESCENT
            state.warn(
                f"Function '{node.name}' redefined, the earlier definition is unreachable",
                node,
            )

        state.functions[node.name] = FunctionSymbol(node.name, node.parameters, node)
        return STOP_DESCENT


class SetEnclosingLoops(Visitor):
    """sets the enclosing loop of any break it finds"""

    def __init__(self, loop: AstLoop):
        super().__init__()
        self.loop = loop

    def visit_AstBreak(self, node: AstBreak, state: CompileState):
        state.enclosing_loops[node] = self.loop


class CheckBreakInLoop(TopDownVisitor):
    # outer loops are visited first, so nested loops overwrite the mapping of
    # their own breaks with the innermost loop
    def visit_AstLoop(self, node: AstLoop, state: CompileState):
        SetEnclosingLoops(node).run(node.body, state)

    def visit_AstBreak(self, node: AstBreak, state: CompileState):
        if node not in state.enclosing_loops:
            state.err("Cannot break outside of a loop", node)


class CheckFunctionBodies(Visitor):
    """a function returns the value of the last line of its body, so that line has to
    produce one"""

    def visit_AstFnDef(self, node: AstFnDef, state: CompileState):
        if len(node.body.stmts) == 0:
            state.err(f"Function '{node.name}' has an empty body", node)
            return
        last = node.body.stmts[-1]
        if isinstance(last, (AstLoop, AstBreak)):
            state.err(
                f"Function '{node.name}' must end with an expression to return", last
            )


class CheckOperators(Visitor):
    def visit_AstBinaryOp(self, node: AstBinaryOp, state: CompileState):
        if node.op not in BINARY_OPS:
            state.err(f"Operator '{node.op.value}' has no lowering", node)


class CheckLiterals(Visitor):
    def visit_AstStr(self, node: AstStr, state: CompileState):
        # registers only hold 32 bit integers
        state.err("String literals are not supported", node)


class CheckCallArity(Visitor):
    """only run with the strict_calls flag. without it, a call that pushes the wrong
    number of arguments silently misreads the operand stack"""

    def visit_AstFuncCall(self, node: AstFuncCall, state: CompileState):
        func = state.functions.get(node.name)
        if func is None:
            state.err(f"Unknown function '{node.name}'", node)
            return
        if len(node.args) != len(func.parameters):
            state.err(
                f"Function '{node.name}' takes {len(func.parameters)} argument(s), "
                f"{len(node.args)} given",
                node,
            )
