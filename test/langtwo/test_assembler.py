import pytest

from langtwo.bytecode.assembler import operations_to_text, parse
from langtwo.bytecode.operations import (
    AddIOp,
    ArpRegister,
    CallOp,
    CondBranchOp,
    GlobalRegister,
    LabelOp,
    LoadIOp,
    NamedLabel,
    NumberedLabel,
    OpId,
    OPERATIONS_BY_ID,
    PushIOp,
    ReturnOp,
    operation_registers,
)
from langtwo.test_helpers import compile_seq, run_seq


FIB = """
fn fib(a, b, n) {
    sum = a + b;
    if (n > 1) {
        fib(b, sum, n - 1);
    } else {
        sum;
    }
}
fib(1, 1, 10);
"""


class TestListing:
    def test_text_format(self):
        ir = compile_seq("fn f(x) { x; } f(2);")
        assert operations_to_text(ir) == (
            "    jumpi .L0\n"
            "label @f\n"
            "    pop a0\n"
            "    push a0\n"
            "    return\n"
            "label .L0\n"
            "    loadi 2, g0\n"
            "    push g0\n"
            "    call @f\n"
            "    pop g1\n"
            ".result g1\n"
        )

    def test_no_result_line_without_result(self):
        assert operations_to_text(compile_seq("fn f() { 1; }")).count(".result") == 0

    @pytest.mark.parametrize(
        "seq",
        [
            "",
            "a = 5; a - 3;",
            "if (1 < 2) { 3; } else { 4; }",
            "a = 1; loop { if (a >= 10) { break; } a = a + 1; } a;",
            "f(); fn f() { 1; } fn f() { 2; }",
            FIB,
        ],
    )
    def test_listing_reassembles(self, seq):
        ir = compile_seq(seq)
        reassembled = parse(operations_to_text(ir))
        assert reassembled.instructions == ir.instructions
        assert reassembled.result == ir.result

    def test_reassembled_program_runs(self):
        ir = parse(operations_to_text(compile_seq(FIB)))
        assert run_seq(ir) == 144


class TestParse:
    def test_operand_kinds(self):
        ir = parse(
            """
# a comment on its own line
label @main
condbranch a3, .L0, .L12   # trailing comment
addi g0, -4, g1
pushi 7
call @main
return
"""
        )
        assert ir.instructions == [
            LabelOp(NamedLabel("main")),
            CondBranchOp(ArpRegister(3), NumberedLabel(0), NumberedLabel(12)),
            AddIOp(GlobalRegister(0), -4, GlobalRegister(1)),
            PushIOp(7),
            CallOp(NamedLabel("main")),
            ReturnOp(),
        ]
        assert ir.result is None

    def test_result_line(self):
        ir = parse("loadi 3, a7\n.result a7")
        assert ir.instructions == [LoadIOp(3, ArpRegister(7))]
        assert ir.result == ArpRegister(7)

    def test_empty_listing(self):
        ir = parse("\n\n")
        assert ir.instructions == []
        assert ir.result is None

    def test_unknown_mnemonic(self):
        with pytest.raises(RuntimeError, match="unknown mnemonic frobnicate"):
            parse("loadi 1, g0\nfrobnicate g0\n")

    def test_wrong_operand_count(self):
        with pytest.raises(RuntimeError, match="line 1: add takes 3 operand"):
            parse("add g0, g1\n")

    def test_wrong_operand_kind(self):
        with pytest.raises(RuntimeError, match="must be a Register"):
            parse("loadi 1, 2\n")
        with pytest.raises(RuntimeError, match="must be a Label"):
            parse("jumpi g0\n")


class TestOperations:
    def test_every_opcode_has_an_operation(self):
        assert set(OPERATIONS_BY_ID) == set(OpId)

    def test_operation_registers(self):
        op = CondBranchOp(GlobalRegister(4), NumberedLabel(0), NumberedLabel(1))
        assert operation_registers(op) == [GlobalRegister(4)]
        assert operation_registers(AddIOp(ArpRegister(1), 3, ArpRegister(2))) == [
            ArpRegister(1),
            ArpRegister(2),
        ]

    def test_repr_shows_opcode(self):
        assert repr(LoadIOp(3, GlobalRegister(0))) == "LOADI(val=3, out=Global(0))"
