from __future__ import annotations
from dataclasses import dataclass, field

from langtwo.error import CompileError
from langtwo.bytecode.operations import (
    ArpRegister,
    GlobalRegister,
    LabelOp,
    NumberedLabel,
    Register,
)
from langtwo.syntax import AstBreak, AstFnDef, AstLoop


DEFAULT_MAX_INSTRUCTION_COUNT = 1 << 16


@dataclass
class Scope:
    """register allocation state for one function body (or the top level)"""

    next_free_reg: int = 0
    """index of the next register to hand out. only ever grows"""
    variables: dict[str, Register] = field(default_factory=dict)
    """variable name to the register it lives in"""


@dataclass
class FunctionSymbol:
    name: str
    parameters: list[str]
    definition: AstFnDef


@dataclass
class CompileState:
    """a collection of input, internal and output state variables and maps"""

    compile_args: dict = field(default_factory=dict)

    max_instruction_count: int = DEFAULT_MAX_INSTRUCTION_COUNT

    scopes: list[Scope] = field(default_factory=lambda: [Scope()])
    """stack of register scopes. the first one is the top level"""

    next_label: int = 0

    functions: dict[str, FunctionSymbol] = field(default_factory=dict)
    """function name to its last definition"""

    enclosing_loops: dict[AstBreak, AstLoop] = field(default_factory=dict)
    """map of break to the innermost loop which contains it"""

    loop_end_labels: dict[AstLoop, NumberedLabel] = field(default_factory=dict)
    """loop node mapped to the label just past the end of the loop"""

    func_entry_ops: dict[str, LabelOp] = field(default_factory=dict)
    """function name to the entry label op of the most recently generated definition"""

    errors: list[CompileError] = field(default_factory=list)
    """a list of all compile exceptions generated by passes"""

    warnings: list[CompileError] = field(default_factory=list)
    """a list of all compiler warnings generated by passes"""

    @property
    def scope(self) -> Scope:
        assert len(self.scopes) > 0, "Missing scopes"
        return self.scopes[-1]

    def push_scope(self):
        self.scopes.append(Scope())

    def pop_scope(self):
        assert len(self.scopes) > 1, "Cannot pop the top level scope"
        self.scopes.pop()

    def new_register(self) -> Register:
        """hands out the next free register of the current scope. global at the top
        level, activation-record relative inside a function"""
        idx = self.scope.next_free_reg
        self.scope.next_free_reg += 1
        if len(self.scopes) == 1:
            return GlobalRegister(idx)
        return ArpRegister(idx)

    def variable_register(self, name: str) -> Register:
        """the register bound to `name` in the current scope, binding a fresh one if
        the name has not been seen yet"""
        reg = self.scope.variables.get(name)
        if reg is None:
            reg = self.new_register()
            self.scope.variables[name] = reg
        return reg

    def new_label(self) -> NumberedLabel:
        label = NumberedLabel(self.next_label)
        self.next_label += 1
        return label

    def err(self, msg, n):
        """adds a compile exception to internal state"""
        self.errors.append(CompileError(msg, n))

    def warn(self, msg, n):
        self.warnings.append(CompileError("Warning: " + msg, n))
