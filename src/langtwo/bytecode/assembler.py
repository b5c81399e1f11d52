from __future__ import annotations
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Union

from lark import Lark, Token, Transformer, v_args
from lark.tree import Meta

from langtwo.bytecode.operations import (
    ArpRegister,
    GlobalRegister,
    Label,
    LabelOp,
    NamedLabel,
    NumberedLabel,
    OpId,
    Operation,
    OPERATIONS_BY_ID,
    Register,
)
from langtwo.ir import IR

listing_grammar_str = (Path(__file__).parent / "grammar.lark").read_text()

_listing_parser = Lark(
    listing_grammar_str,
    start="input",
    parser="lalr",
    propagate_positions=True,
    maybe_placeholders=True,
)


@dataclass
class Node:
    meta: Meta = field(repr=False)


@dataclass
class NodeOp(Node):
    mnemonic: str
    operands: list[Union[Register, Label, int]]


@dataclass
class NodeResult(Node):
    reg: Register


@dataclass
class NodeBody(Node):
    stmts: list[Union[NodeOp, NodeResult]]


def no_inline(type):
    @v_args(meta=True, inline=False)
    def wrapper(self, meta, tree):
        return type(meta, tree)

    return wrapper


def handle_op(meta, tree: list):
    return NodeOp(meta, str(tree[0]), list(tree[1:]))


@v_args(meta=True, inline=True)
class ListingTransformer(Transformer):
    input = no_inline(NodeBody)
    op = no_inline(handle_op)

    def result(self, meta, reg: Register):
        return NodeResult(meta, reg)

    def global_reg(self, meta, token: Token):
        return GlobalRegister(int(token[1:]))

    def arp_reg(self, meta, token: Token):
        return ArpRegister(int(token[1:]))

    def named_label(self, meta, token: Token):
        return NamedLabel(str(token[1:]))

    def numbered_label(self, meta, token: Token):
        return NumberedLabel(int(token[2:]))

    def immediate(self, meta, token: Token):
        return int(token)


# the operand kind each annotation accepts
_OPERAND_KINDS = {
    "Register": Register,
    "Label": Label,
    "int": int,
}


def build_operation(stmt: NodeOp) -> Operation:
    try:
        op_type = OPERATIONS_BY_ID[OpId[stmt.mnemonic.upper()]]
    except KeyError:
        raise RuntimeError(
            f"line {stmt.meta.line}: unknown mnemonic {stmt.mnemonic}"
        ) from None

    op_fields = fields(op_type)
    if len(op_fields) != len(stmt.operands):
        raise RuntimeError(
            f"line {stmt.meta.line}: {stmt.mnemonic} takes {len(op_fields)} operand(s), "
            f"{len(stmt.operands)} given"
        )
    for op_field, operand in zip(op_fields, stmt.operands):
        kind = _OPERAND_KINDS[op_field.type]
        if not isinstance(operand, kind):
            raise RuntimeError(
                f"line {stmt.meta.line}: operand {op_field.name} of {stmt.mnemonic} "
                f"must be a {op_field.type}, got {operand}"
            )
    return op_type(*stmt.operands)


def assemble(body: NodeBody) -> IR:
    ir = IR()
    for stmt in body.stmts:
        if isinstance(stmt, NodeResult):
            ir.result = stmt.reg
            continue
        ir.instructions.append(build_operation(stmt))
    return ir


def parse(text: str) -> IR:
    """turns an IR listing back into an IR"""
    tree = _listing_parser.parse(text)
    body = ListingTransformer().transform(tree)
    return assemble(body)


def operations_to_text(ir: IR) -> str:
    out = ""
    for op in ir.instructions:
        # labels sit at the left margin, everything else is indented
        if not isinstance(op, LabelOp):
            out += "    "
        out += op.opcode.name.lower()

        operands = [str(getattr(op, op_field.name)) for op_field in fields(op)]
        if len(operands) > 0:
            out += " " + ", ".join(operands)

        out += "\n"

    if ir.result is not None:
        out += f".result {ir.result}\n"

    return out
