import pytest

from langtwo.bytecode.operations import BINARY_OPS
from langtwo.error import BackendError, CompileError
from langtwo.syntax import Operator
from langtwo.test_helpers import (
    assert_compile_failure,
    assert_compile_success,
    assert_run_success,
)


class TestBreak:
    def test_break_outside_loop(self):
        err = assert_compile_failure("break;")
        assert isinstance(err, CompileError)
        assert err.msg == "Cannot break outside of a loop"

    def test_break_in_if_outside_loop(self):
        err = assert_compile_failure("if (1) { break; }")
        assert err.msg == "Cannot break outside of a loop"

    def test_break_in_function_outside_loop(self):
        err = assert_compile_failure("fn f() { break; 1; }")
        assert err.msg == "Cannot break outside of a loop"

    def test_break_inside_if_inside_loop(self):
        assert_compile_success("loop { if (1) { break; } }")


class TestFunctionBodies:
    def test_empty_body(self):
        err = assert_compile_failure("fn f() { }")
        assert "empty body" in err.msg

    def test_body_ending_in_loop(self):
        err = assert_compile_failure("fn f() { loop { break; } }")
        assert "must end with an expression" in err.msg

    def test_body_ending_in_if(self):
        # an if always has a value
        assert_run_success("fn f(a) { if (a) { 5; } } f(1);", 5)

    def test_duplicate_parameters_share_a_register(self, capsys):
        # both names bind one register, which is popped twice
        assert_run_success("fn f(a, a) { a; } f(1, 2);", 2)
        assert "duplicate parameter names" in capsys.readouterr().out


class TestOperators:
    def test_operator_without_lowering(self, monkeypatch):
        monkeypatch.delitem(BINARY_OPS, Operator.MOD)
        err = assert_compile_failure("7 % 2;")
        assert isinstance(err, CompileError)
        assert err.msg == "Operator '%' has no lowering"

    def test_every_operator_has_a_lowering(self):
        assert set(BINARY_OPS) == set(Operator)


class TestLiterals:
    def test_string_literal(self):
        err = assert_compile_failure('a = "text";')
        assert err.msg == "String literals are not supported"

    def test_string_literal_in_function(self):
        err = assert_compile_failure('fn f() { "text"; }')
        assert err.msg == "String literals are not supported"


class TestRedefinition:
    def test_redefinition_is_a_warning(self, capsys):
        assert_run_success("fn f() { 1; } fn f() { 2; } f();", 2)
        assert "Warning: Function 'f' redefined" in capsys.readouterr().out

    def test_reject_redefinition(self):
        err = assert_compile_failure(
            "fn f() { 1; } fn f() { 2; } f();", ["reject_redefinition"]
        )
        assert "already been defined" in err.msg

    def test_reject_redefinition_allows_distinct_names(self):
        assert_run_success("fn f() { 1; } fn g() { 2; } f() + g();", 3, ["reject_redefinition"])


class TestStrictCalls:
    def test_unknown_function(self):
        err = assert_compile_failure("nope();", ["strict_calls"])
        assert err.msg == "Unknown function 'nope'"

    @pytest.mark.parametrize("args", ["", "1", "1, 2, 3"])
    def test_wrong_arity(self, args):
        err = assert_compile_failure(
            f"fn add(a, b) {{ a + b; }} add({args});", ["strict_calls"]
        )
        assert "takes 2 argument(s)" in err.msg

    def test_call_before_definition(self):
        assert_run_success("add(1, 2); fn add(a, b) { a + b; }", 3, ["strict_calls"])

    def test_recursive_call(self):
        assert_compile_success(
            "fn f(n) { if (n == 0) { 0; } else { f(n - 1); } } f(3);", ["strict_calls"]
        )

    def test_default_allows_unknown_functions(self):
        # the mistake only shows up at runtime
        assert_compile_success("nope();")


class TestErrorReporting:
    def test_error_points_at_source(self):
        err = assert_compile_failure("a = 1;\nbreak;\n")
        text = repr(err)
        assert "<test>:2" in text
        assert "break;" in text
        assert "^" in text

    def test_parse_error_exits(self):
        assert assert_compile_failure("a = ;") is None

    def test_backend_error(self):
        err = assert_compile_failure(" ".join(["1;"] * 257))
        assert isinstance(err, BackendError)
        assert "<test>" in repr(err)
