import pytest

import langtwo.error
import langtwo.vm
from langtwo.compiler import compiler_main, vm_main


@pytest.fixture(autouse=True)
def restore_globals():
    file_name = langtwo.error.file_name
    error_debug = langtwo.error.debug
    vm_debug = langtwo.vm.debug
    yield
    langtwo.error.file_name = file_name
    langtwo.error.debug = error_debug
    langtwo.vm.debug = vm_debug


def write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(text)
    return str(path)


class TestCompilerMain:
    def test_runs_program(self, tmp_path, capsys):
        path = write(tmp_path, "prog.l2", "fn sq(x) { x * x; } sq(9);")
        compiler_main([path])
        assert capsys.readouterr().out == "81\n"

    def test_runs_program_with_llvm(self, tmp_path, capsys):
        path = write(tmp_path, "prog.l2", "fn sq(x) { x * x; } sq(9);")
        compiler_main([path, "--backend", "llvm"])
        assert capsys.readouterr().out == "81\n"

    def test_no_result_prints_nothing(self, tmp_path, capsys):
        path = write(tmp_path, "prog.l2", "fn f() { 1; }")
        compiler_main([path])
        assert capsys.readouterr().out == ""

    def test_emit_ir(self, tmp_path, capsys):
        path = write(tmp_path, "prog.l2", "1 + 2;")
        compiler_main([path, "--emit", "ir"])
        assert capsys.readouterr().out == (
            "    loadi 1, g0\n"
            "    loadi 2, g1\n"
            "    add g0, g1, g2\n"
            ".result g2\n"
            "\n"
        )

    def test_emit_llvm(self, tmp_path, capsys):
        path = write(tmp_path, "prog.l2", "1 + 2;")
        compiler_main([path, "--emit", "llvm"])
        assert '@"run"' in capsys.readouterr().out

    def test_missing_input(self, tmp_path, capsys):
        with pytest.raises(SystemExit):
            compiler_main([str(tmp_path / "missing.l2")])
        assert "does not exist" in capsys.readouterr().err

    def test_compile_error(self, tmp_path, capsys):
        path = write(tmp_path, "prog.l2", "break;")
        with pytest.raises(SystemExit):
            compiler_main([path])
        err = capsys.readouterr().err
        assert "Cannot break outside of a loop" in err
        assert "prog.l2:1" in err

    def test_strict_calls_flag(self, tmp_path, capsys):
        path = write(tmp_path, "prog.l2", "nope();")
        with pytest.raises(SystemExit):
            compiler_main([path, "--strict-calls"])
        assert "Unknown function 'nope'" in capsys.readouterr().err

    def test_reject_redefinition_flag(self, tmp_path, capsys):
        path = write(tmp_path, "prog.l2", "fn f() { 1; } fn f() { 2; }")
        with pytest.raises(SystemExit):
            compiler_main([path, "--reject-redefinition"])
        assert "already been defined" in capsys.readouterr().err

    def test_fault(self, tmp_path, capsys):
        path = write(tmp_path, "prog.l2", "1 / 0;")
        with pytest.raises(SystemExit):
            compiler_main([path])
        assert "ARITHMETIC: Division by zero" in capsys.readouterr().err

    def test_debug_traces_execution(self, tmp_path, capsys):
        path = write(tmp_path, "prog.l2", "3;")
        compiler_main([path, "--debug"])
        captured = capsys.readouterr()
        assert captured.out == "3\n"
        assert "LOADI" in captured.err


class TestVmMain:
    LISTING = "loadi 20, g0\naddi g0, 22, g1\n.result g1\n"

    def test_runs_listing(self, tmp_path, capsys, backend):
        path = write(tmp_path, "prog.ir", self.LISTING)
        vm_main([path, "--backend", backend])
        assert capsys.readouterr().out == "42\n"

    def test_fault(self, tmp_path, capsys):
        path = write(tmp_path, "prog.ir", "pop g0\n")
        with pytest.raises(SystemExit):
            vm_main([path])
        assert "STACK_UNDERFLOW" in capsys.readouterr().err

    def test_missing_input(self, tmp_path):
        with pytest.raises(SystemExit):
            vm_main([str(tmp_path / "missing.ir")])
