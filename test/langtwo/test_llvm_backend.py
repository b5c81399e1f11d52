import pytest

from langtwo.bytecode.assembler import parse
from langtwo.error import (
    ArithmeticFault,
    FaultCode,
    LabelResolutionFault,
    ResourceExhaustedFault,
)
from langtwo.llvm_backend import JITCompiler, find_leaders, ir_to_llvm, run_ir_jit
from langtwo.test_helpers import compile_seq


class TestTranslation:
    def test_module_shape(self):
        module = ir_to_llvm(compile_seq("fn f(a) { a + 1; } f(2);"))
        text = str(module)
        assert 'define i32 @"run"(i32*' in text or 'define i32 @"run"(ptr' in text
        assert '@"fault_ip"' in text
        # one dispatch for the single return
        assert text.count("switch i32") == 1

    def test_module_name(self):
        module = ir_to_llvm(compile_seq("1;"), module_name="prog")
        assert module.name == "prog"

    def test_leaders(self):
        ir = parse(
            """
loadi 1, g0
condbranch g0, .L0, .L1
label .L0
call @f
loadi 2, g0
label .L1
"""
        )
        # after the branch, each label, and the return point of the call
        assert find_leaders(ir) == [0, 2, 4, 5]

    def test_leaders_of_empty_program(self):
        assert find_leaders(parse("")) == []

    def test_duplicate_label(self):
        with pytest.raises(LabelResolutionFault):
            ir_to_llvm(parse("label @f\nlabel @f\n"))

    def test_register_outside_frame(self):
        with pytest.raises(ResourceExhaustedFault):
            ir_to_llvm(parse("loadi 0, a300\n"))


class TestJITCompiler:
    def test_get_ir_before_compile(self):
        with pytest.raises(RuntimeError, match="No module compiled"):
            JITCompiler().get_ir()

    def test_run_before_compile(self):
        with pytest.raises(RuntimeError, match="No code compiled"):
            JITCompiler().run()

    def test_compile_then_run(self):
        jit = JITCompiler()
        jit.compile(compile_seq("6 * 7;"))
        assert "mul i32" in jit.get_ir()
        assert jit.run() == 42

    def test_run_twice_resets_machine(self):
        # globals are reset at entry, so a second run starts from zeroed registers
        jit = JITCompiler()
        jit.compile(compile_seq("a = a + 1; a;"))
        assert jit.run() == 1
        assert jit.run() == 1

    def test_no_result(self):
        assert run_ir_jit(compile_seq("fn f() { 1; }")) is None

    def test_fault_reports_ip_and_op(self):
        ir = parse("loadi 0, g0\nloadi 4, g1\nmod g1, g0, g2\n")
        with pytest.raises(ArithmeticFault) as excinfo:
            run_ir_jit(ir)
        fault = excinfo.value
        assert fault.code == FaultCode.ARITHMETIC
        assert fault.ip == 2
        assert fault.op == ir.instructions[2]

    def test_fault_after_return_to_caller(self):
        ir = compile_seq("fn f() { 1; } f(); nope();")
        with pytest.raises(LabelResolutionFault) as excinfo:
            run_ir_jit(ir)
        assert excinfo.value.ip == len(ir.instructions) - 2
