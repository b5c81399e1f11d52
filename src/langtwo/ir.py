from __future__ import annotations
from dataclasses import dataclass, field

from langtwo.bytecode.operations import Operation, Register


@dataclass
class IR:
    """the output of the builder: a flat instruction stream, plus the register that holds
    the value of the last top-level expression statement (None if there was none)"""

    instructions: list[Operation] = field(default_factory=list)
    result: Register | None = None

    def __len__(self):
        return len(self.instructions)

    def __iter__(self):
        return iter(self.instructions)
