from __future__ import annotations
import argparse
import sys
from pathlib import Path

from lark import Lark, LarkError

from langtwo.codegen import CheckLabels, FinalChecks, GenerateIr, IrPass
from langtwo.error import BackendError, CompileError, VmFault, handle_lark_error
from langtwo.ir import IR
from langtwo.semantics import (
    CheckBreakInLoop,
    CheckCallArity,
    CheckFunctionBodies,
    CheckLiterals,
    CheckOperators,
    CollectFunctions,
)
from langtwo.state import CompileState
from langtwo.syntax import AstProgram, LangTwoTransformer
from langtwo.visitors import Visitor
import langtwo.error
import langtwo.vm

# Load grammar once at module level
_langtwo_grammar_path = Path(__file__).parent / "grammar.lark"
_langtwo_grammar_str = _langtwo_grammar_path.read_text()

_langtwo_parser = Lark(
    _langtwo_grammar_str,
    start="input",
    parser="lalr",
    propagate_positions=True,
    maybe_placeholders=True,
)


def text_to_ast(text: str) -> AstProgram:
    from lark.exceptions import VisitError

    langtwo.error.input_text = text
    langtwo.error.input_lines = text.splitlines()
    try:
        tree = _langtwo_parser.parse(text, on_error=handle_lark_error)
    except LarkError as e:
        handle_lark_error(e)
        return None
    try:
        transformed = LangTwoTransformer().transform(tree)
    except RecursionError:
        print(
            CompileError("Maximum recursion depth exceeded (code is too deeply nested)"),
            file=sys.stderr,
        )
        exit(1)
    except VisitError as e:
        # VisitError wraps exceptions that occur during tree transformation
        if isinstance(e.orig_exc, RecursionError):
            print(
                CompileError(
                    "Maximum recursion depth exceeded (code is too deeply nested)"
                ),
                file=sys.stderr,
            )
        elif isinstance(e.orig_exc, langtwo.error.SyntaxErrorDuringTransform):
            print(
                CompileError(e.orig_exc.msg, e.orig_exc.node),
                file=sys.stderr,
            )
        else:
            print(
                CompileError(f"Internal error during parsing: {e.orig_exc}"),
                file=sys.stderr,
            )
        exit(1)
    return transformed


class IRBuilder:
    """Lowers a program to IR. Single use: every build needs a fresh builder."""

    def __init__(self, compile_args: dict | None = None):
        self.state = CompileState(compile_args=compile_args or dict())
        self.used = False

    def build(self, program: AstProgram) -> IR | CompileError | BackendError:
        assert not self.used, "IRBuilder instances cannot be reused"
        self.used = True

        state = self.state

        semantics_passes: list[Visitor] = [
            # calls may come before the definition they reach, so the function table
            # has to be complete before anything looks at a call
            CollectFunctions(),
            # check that breaks are in loops, and store which loop they're in
            CheckBreakInLoop(),
            CheckFunctionBodies(),
            CheckOperators(),
            CheckLiterals(),
        ]
        if state.compile_args.get("strict_calls", False):
            semantics_passes.append(CheckCallArity())

        ir_passes: list[IrPass] = [CheckLabels(), FinalChecks()]

        for compile_pass in semantics_passes:
            compile_pass.run(program, state)
            if len(state.errors) != 0:
                return state.errors[0]

        try:
            ir = GenerateIr().emit(program, state)
        except RecursionError:
            return CompileError(
                "Maximum recursion depth exceeded (code is too deeply nested)"
            )

        for compile_pass in ir_passes:
            ir = compile_pass.run(ir, state)
            if isinstance(ir, BackendError):
                # early return errors
                return ir

        # print out warnings
        for warning in state.warnings:
            print(warning)

        return ir


def ast_to_ir(
    program: AstProgram, compile_args: dict | None = None
) -> IR | CompileError | BackendError:
    return IRBuilder(compile_args).build(program)


def _run(ir: IR, backend: str) -> int | None:
    if backend == "llvm":
        # llvmlite is only loaded when asked for
        from langtwo.llvm_backend import run_ir_jit

        return run_ir_jit(ir)
    return langtwo.vm.run_ir(ir)


def _print_result(result: int | None):
    if result is not None:
        print(result)


def compiler_main(args: list[str] | None = None):
    arg_parser = argparse.ArgumentParser(
        description="Compile a langtwo program to register IR and run it"
    )
    arg_parser.add_argument("input", type=Path, help="The input source file")
    arg_parser.add_argument(
        "--emit",
        choices=["ir", "llvm"],
        default=None,
        help="Print the IR listing or the LLVM IR instead of running the program",
    )
    arg_parser.add_argument(
        "--backend",
        choices=["vm", "llvm"],
        default="vm",
        help="The execution engine",
    )
    arg_parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Show compiler stack traces and trace every executed instruction",
    )
    arg_parser.add_argument(
        "--strict-calls",
        action="store_true",
        default=False,
        help="Reject calls to unknown functions and calls with the wrong number of arguments",
    )
    arg_parser.add_argument(
        "--reject-redefinition",
        action="store_true",
        default=False,
        help="Make redefining a function an error instead of shadowing it",
    )

    parsed = arg_parser.parse_args(args)

    if not parsed.input.exists():
        print(f"Input file {parsed.input} does not exist", file=sys.stderr)
        exit(1)

    langtwo.error.file_name = str(parsed.input)
    langtwo.error.debug = parsed.debug
    langtwo.vm.debug = parsed.debug

    program = text_to_ast(parsed.input.read_text())

    compile_args = {
        "strict_calls": parsed.strict_calls,
        "reject_redefinition": parsed.reject_redefinition,
    }
    ir = ast_to_ir(program, compile_args)
    if isinstance(ir, (CompileError, BackendError)):
        print(ir, file=sys.stderr)
        exit(1)

    if parsed.emit == "ir":
        from langtwo.bytecode.assembler import operations_to_text

        print(operations_to_text(ir))
        return
    if parsed.emit == "llvm":
        from langtwo.llvm_backend import ir_to_llvm

        print(str(ir_to_llvm(ir)))
        return

    try:
        result = _run(ir, parsed.backend)
    except VmFault as e:
        print(e.describe(), file=sys.stderr)
        exit(1)
    _print_result(result)


def vm_main(args: list[str] | None = None):
    arg_parser = argparse.ArgumentParser(
        description="Assemble an IR listing and run it on the register VM"
    )
    arg_parser.add_argument("input", type=Path, help="The input IR listing")
    arg_parser.add_argument(
        "--backend",
        choices=["vm", "llvm"],
        default="vm",
        help="The execution engine",
    )
    arg_parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Trace every executed instruction",
    )

    parsed = arg_parser.parse_args(args)

    if not parsed.input.exists():
        print(f"Input file {parsed.input} does not exist", file=sys.stderr)
        exit(1)

    langtwo.error.file_name = str(parsed.input)
    langtwo.vm.debug = parsed.debug

    from langtwo.bytecode.assembler import parse

    ir = parse(parsed.input.read_text())

    try:
        result = _run(ir, parsed.backend)
    except VmFault as e:
        print(e.describe(), file=sys.stderr)
        exit(1)
    _print_result(result)
