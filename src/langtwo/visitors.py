from __future__ import annotations

from dataclasses import fields

from langtwo.syntax import Ast

STOP_DESCENT = object()
"""returned from a TopDownVisitor visit method to skip the children of that node"""


def children(node: Ast) -> list[Ast]:
    """the direct child nodes of `node`, in source order"""
    result = []
    for f in fields(node):
        if f.name == "meta":
            continue
        value = getattr(node, f.name)
        if isinstance(value, Ast):
            result.append(value)
        elif isinstance(value, list):
            result.extend(v for v in value if isinstance(v, Ast))
    return result


class Visitor:
    """Calls visit_<NodeClass> for every node under (and including) the start node,
    children before parents. A method may name several classes, joined by "_",
    e.g. visit_AstLoop_AstBreak. visit_default catches everything else."""

    def __init__(self):
        self._dispatch: dict[type, object] = {}

    def _find_visit_method(self, node_type: type):
        method = self._dispatch.get(node_type)
        if method is not None:
            return method
        method = getattr(self, "visit_default", None)
        for attr in dir(self):
            if not attr.startswith("visit_") or attr == "visit_default":
                continue
            if node_type.__name__ in attr[len("visit_"):].split("_"):
                method = getattr(self, attr)
                break
        self._dispatch[node_type] = method
        return method

    def visit(self, node: Ast, state):
        method = self._find_visit_method(type(node))
        if method is None:
            return None
        return method(node, state)

    def run(self, start: Ast, state):
        for child in children(start):
            self.run(child, state)
        self.visit(start, state)


class TopDownVisitor(Visitor):
    """Like Visitor, but parents are visited before their children. Returning
    STOP_DESCENT from a visit method skips that node's children."""

    def run(self, start: Ast, state):
        if self.visit(start, state) is STOP_DESCENT:
            return
        for child in children(start):
            self.run(child, state)


class Emitter:
    """Dispatches emit(node) to emit_<Class>, trying the node's own class first and
    then its base classes. Every node that can reach an emitter must have a method,
    there is no fallback."""

    def emit(self, node, state):
        for cls in type(node).__mro__:
            method = getattr(self, "emit_" + cls.__name__, None)
            if method is not None:
                return method(node, state)
        assert False, f"{type(self).__name__} cannot emit {type(node).__name__}"
