from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from lark import Token, Transformer, v_args
from lark.tree import Meta

from langtwo import I32_MAX, I32_MIN
from langtwo.error import SyntaxErrorDuringTransform


class Operator(str, Enum):
    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"
    MOD = "%"
    EQ = "=="
    LT = "<"
    LTE = "<="
    GT = ">"
    GTE = ">="

    @property
    def precedence(self) -> int:
        """lower binds weaker, i.e. ends up higher in the tree"""
        return OPERATOR_PRECEDENCE[self]


OPERATOR_PRECEDENCE: dict[Operator, int] = {
    Operator.EQ: 0,
    Operator.LT: 0,
    Operator.LTE: 0,
    Operator.GT: 0,
    Operator.GTE: 0,
    # % shares a level with + and -
    Operator.ADD: 1,
    Operator.SUB: 1,
    Operator.MOD: 1,
    Operator.MUL: 2,
    Operator.DIV: 2,
}


@dataclass(eq=False)
class Ast:
    meta: Meta = field(repr=False)


@dataclass(eq=False)
class AstExpr(Ast):
    pass


@dataclass(eq=False)
class AstInt(AstExpr):
    value: int


@dataclass(eq=False)
class AstStr(AstExpr):
    value: str


@dataclass(eq=False)
class AstBoolean(AstExpr):
    value: bool


@dataclass(eq=False)
class AstName(AstExpr):
    name: str


@dataclass(eq=False)
class AstAssign(AstExpr):
    name: str
    value: AstExpr


@dataclass(eq=False)
class AstBinaryOp(AstExpr):
    lhs: AstExpr
    op: Operator
    rhs: AstExpr


@dataclass(eq=False)
class AstFuncCall(AstExpr):
    name: str
    args: list[AstExpr]


@dataclass(eq=False)
class AstBlock(Ast):
    stmts: list[AstBlockLine]


@dataclass(eq=False)
class AstIf(AstExpr):
    condition: AstExpr
    body: AstBlock
    els: Union[AstBlock, None]


@dataclass(eq=False)
class AstLoop(Ast):
    body: AstBlock


@dataclass(eq=False)
class AstBreak(Ast):
    pass


AstBlockLine = Union[AstExpr, AstLoop, AstBreak]


@dataclass(eq=False)
class AstFnDef(Ast):
    name: str
    parameters: list[str]
    body: AstBlock


AstStmt = Union[AstFnDef, AstBlockLine]


@dataclass(eq=False)
class AstProgram(Ast):
    stmts: list[AstStmt]


def no_inline(type):
    @v_args(meta=True, inline=False)
    def wrapper(self, meta, tree):
        return type(meta, tree)

    return wrapper


def handle_int(meta, token: Token, negate: bool = False) -> AstInt:
    value = int(token)
    if negate:
        value = -value
    if value < I32_MIN or value > I32_MAX:
        raise SyntaxErrorDuringTransform(
            f"Integer literal {value} does not fit in 32 bits", token
        )
    return AstInt(meta, value)


def handle_str(meta, token: Token) -> AstStr:
    return AstStr(meta, str(token)[1:-1])


@v_args(meta=True, inline=True)
class LangTwoTransformer(Transformer):
    input = no_inline(AstProgram)
    block = no_inline(AstBlock)

    NAME = str

    def fn_def(self, meta, name: str, params: list[str] | None, body: AstBlock):
        return AstFnDef(meta, name, params or [], body)

    @v_args(meta=False, inline=False)
    def params(self, names):
        return list(names)

    @v_args(meta=False, inline=False)
    def args(self, exprs):
        return list(exprs)

    def loop(self, meta, body: AstBlock):
        return AstLoop(meta, body)

    def brk(self, meta):
        return AstBreak(meta)

    def if_expr(self, meta, condition, body, els):
        return AstIf(meta, condition, body, els)

    def assign(self, meta, name: str, value):
        return AstAssign(meta, name, value)

    def binary_op(self, meta, lhs, op: Token, rhs):
        return AstBinaryOp(meta, lhs, Operator(op.value), rhs)

    def int_literal(self, meta, token: Token):
        return handle_int(meta, token)

    def neg_int_literal(self, meta, _minus: Token, token: Token):
        return handle_int(meta, token, negate=True)

    def true_literal(self, meta):
        return AstBoolean(meta, True)

    def false_literal(self, meta):
        return AstBoolean(meta, False)

    def str_literal(self, meta, token: Token):
        return handle_str(meta, token)

    def func_call(self, meta, name: str, args: list | None):
        return AstFuncCall(meta, name, args or [])

    def name(self, meta, name: str):
        return AstName(meta, name)
