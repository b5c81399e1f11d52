import langtwo.error
from langtwo.bytecode.assembler import operations_to_text, parse
from langtwo.compiler import ast_to_ir, text_to_ast
from langtwo.error import BackendError, CompileError, FaultCode, VmFault
from langtwo.ir import IR
from langtwo.vm import VirtualMachine


class CompilationFailed(Exception):
    """Raised when compilation fails expectedly (semantic or backend error)."""

    def __init__(self, error: CompileError | BackendError):
        self.error = error
        super().__init__(f"Compilation failed:\n{error}")


def compile_seq(seq: str, flags: list[str] = None) -> IR:
    """Compile a source string to IR in memory."""
    langtwo.error.file_name = "<test>"

    program = text_to_ast(seq)
    if program is None:
        # This shouldn't happen - text_to_ast calls exit(1) on parse errors
        raise RuntimeError("Parsing failed")

    compile_args = {}
    for flag in flags or []:
        compile_args[flag] = True

    ir = ast_to_ir(program, compile_args)
    if isinstance(ir, (CompileError, BackendError)):
        raise CompilationFailed(ir)

    return ir


def run_seq(ir: IR, backend: str = "vm") -> int | None:
    """Run an IR on the given execution engine."""
    if backend == "llvm":
        from langtwo.llvm_backend import run_ir_jit

        return run_ir_jit(ir)
    assert backend == "vm", backend
    return VirtualMachine(ir).run()


def run_listing(listing: str, backend: str = "vm") -> int | None:
    return run_seq(parse(listing), backend)


def assert_compile_success(seq: str, flags: list[str] = None) -> IR:
    return compile_seq(seq, flags)


def assert_run_success(
    seq: str, expected: int | None, flags: list[str] = None, backend: str = "vm"
):
    ir = compile_seq(seq, flags)
    result = run_seq(ir, backend)
    assert result == expected, (
        f"expected {expected}, got {result}. IR:\n{operations_to_text(ir)}"
    )


def assert_compile_failure(
    seq: str, flags: list[str] = None
) -> CompileError | BackendError | None:
    """returns the error, or None if parsing itself failed"""
    try:
        compile_seq(seq, flags)
    except SystemExit:
        # parse errors exit
        return None
    except CompilationFailed as e:
        # Compilation failed as expected
        return e.error

    # no error was generated
    raise RuntimeError("compile_seq succeeded")


def assert_run_failure(
    seq: str, fault_code: FaultCode, flags: list[str] = None, backend: str = "vm"
) -> VmFault:
    ir = compile_seq(seq, flags)
    return assert_ir_failure(ir, fault_code, backend)


def assert_ir_failure(ir: IR, fault_code: FaultCode, backend: str = "vm") -> VmFault:
    try:
        run_seq(ir, backend)
    except VmFault as e:
        if e.code != fault_code:
            raise RuntimeError("run_seq failed with error", e.code, "expected", fault_code)
        return e

    raise RuntimeError("run_seq succeeded")
