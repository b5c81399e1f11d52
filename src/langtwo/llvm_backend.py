"""
LLVM backend for langtwo using llvmlite.

This module translates a register IR into native code. The whole instruction
stream becomes one LLVM function, `i32 run(i32* result)`, which executes the
same machine as langtwo.vm: register frames, an operand stack and a return
stack all live in module globals. The function returns a FaultCode value and
writes the value of the result register through its argument.
"""

from __future__ import annotations
import ctypes
from dataclasses import dataclass, field

from llvmlite import ir, binding

from langtwo import I32_MIN, wrap_i32
from langtwo.error import FAULTS_BY_CODE, FaultCode
from langtwo.ir import IR
from langtwo.bytecode.operations import (
    CONTROL_TRANSFER_OPS,
    ArithmeticOperation,
    CallOp,
    ComparisonOperation,
    CondBranchOp,
    GlobalRegister,
    I2iOp,
    ImmediateArithmeticOperation,
    JumpIOp,
    Label,
    LabelOp,
    LoadIOp,
    OpId,
    PopOp,
    PushIOp,
    PushOp,
    Register,
    ReturnOp,
)
from langtwo.visitors import Emitter
from langtwo.vm import (
    FRAME_SIZE,
    MAX_CALL_DEPTH,
    MAX_OPERAND_STACK_SIZE,
    resolve_labels,
)


# No need to call binding.initialize() in newer versions of llvmlite - it's automatic


I32 = ir.IntType(32)
FRAME_TYPE = ir.ArrayType(I32, FRAME_SIZE)

FAULT_MESSAGES = {
    FaultCode.LABEL_RESOLUTION: "Unknown label",
    FaultCode.STACK_UNDERFLOW: "Stack underflow",
    FaultCode.ARITHMETIC: "Division by zero",
    FaultCode.RESOURCE_EXHAUSTED: "Call depth or operand stack exhausted",
}

# builder method for each arithmetic opcode
ARITHMETIC_INSTRUCTIONS = {
    OpId.ADD: "add",
    OpId.ADDI: "add",
    OpId.SUB: "sub",
    OpId.SUBI: "sub",
    OpId.MUL: "mul",
    OpId.MULI: "mul",
    OpId.DIV: "sdiv",
    OpId.DIVI: "sdiv",
    OpId.MOD: "srem",
}

COMPARISON_PREDICATES = {
    OpId.CMPEQ: "==",
    OpId.CMPLT: "<",
    OpId.CMPLTE: "<=",
    OpId.CMPGT: ">",
    OpId.CMPGTE: ">=",
}


def i32(value: int) -> ir.Constant:
    return ir.Constant(I32, wrap_i32(value))


def find_leaders(program: IR) -> list[int]:
    """Indices of the instructions that start a basic block: the first one, every
    label, and every instruction after a control transfer (which includes the
    return point of every call)."""
    count = len(program.instructions)
    leaders = {0}
    for idx, op in enumerate(program.instructions):
        if isinstance(op, LabelOp):
            leaders.add(idx)
        if isinstance(op, CONTROL_TRANSFER_OPS):
            leaders.add(idx + 1)
    return sorted(idx for idx in leaders if idx < count)


@dataclass
class LLVMTranslationState:
    """State for LLVM code generation."""

    module: ir.Module
    builder: ir.IRBuilder
    function: ir.Function
    program: IR
    label_map: dict[Label, int]
    """label to the index of its LabelOp"""
    frames: ir.GlobalVariable = None
    """[MAX_CALL_DEPTH + 1 x [FRAME_SIZE x i32]], frame 0 holds the globals"""
    fp: ir.GlobalVariable = None
    """index of the topmost frame"""
    stack: ir.GlobalVariable = None
    sp: ir.GlobalVariable = None
    rets: ir.GlobalVariable = None
    """return stack. holds call site ids, not instruction indices"""
    rsp: ir.GlobalVariable = None
    fault_ip: ir.GlobalVariable = None
    """index of the instruction that faulted"""
    blocks: dict[int, ir.Block] = field(default_factory=dict)
    """basic block starting at each leader"""
    exit_block: ir.Block = None
    call_sites: dict[int, int] = field(default_factory=dict)
    """index of each CallOp to its call site id"""
    ip: int = 0
    """index of the instruction being translated"""

    def block_at(self, idx: int) -> ir.Block:
        if idx >= len(self.program.instructions):
            return self.exit_block
        return self.blocks[idx]

    def register_ptr(self, reg: Register) -> ir.Value:
        if isinstance(reg, GlobalRegister):
            frame = i32(0)
        else:
            frame = self.builder.load(self.fp)
        return self.builder.gep(
            self.frames, [i32(0), frame, i32(reg.index)], inbounds=True
        )

    def read(self, reg: Register) -> ir.Value:
        return self.builder.load(self.register_ptr(reg))

    def write(self, reg: Register, value: ir.Value):
        self.builder.store(value, self.register_ptr(reg))

    def fault(self, code: FaultCode):
        """terminates the current block with a fault at the current instruction"""
        self.builder.store(i32(self.ip), self.fault_ip)
        self.builder.ret(i32(code.value))

    def guard(self, failed: ir.Value, code: FaultCode):
        """faults if `failed` holds, otherwise continues in a fresh block"""
        fault_block = self.function.append_basic_block(name=f"fault.{self.ip}")
        ok_block = self.function.append_basic_block(name=f"ok.{self.ip}")
        self.builder.cbranch(failed, fault_block, ok_block)
        self.builder.position_at_end(fault_block)
        self.fault(code)
        self.builder.position_at_end(ok_block)

    def target_block(self, label: Label) -> ir.Block:
        """the block a jump to `label` goes to. unknown labels only fault once the
        jump is taken"""
        idx = self.label_map.get(label)
        if idx is not None:
            return self.blocks[idx]
        unresolved = self.function.append_basic_block(name=f"unresolved.{self.ip}")
        with self.builder.goto_block(unresolved):
            self.fault(FaultCode.LABEL_RESOLUTION)
        return unresolved


class LLVMEmitter(Emitter):
    """Emits the LLVM instructions for one IR operation at a time."""

    def emit_LabelOp(self, op: LabelOp, state: LLVMTranslationState):
        pass

    def emit_JumpIOp(self, op: JumpIOp, state: LLVMTranslationState):
        state.builder.branch(state.target_block(op.label))

    def emit_CondBranchOp(self, op: CondBranchOp, state: LLVMTranslationState):
        builder = state.builder
        # exactly 1, not any nonzero value
        is_one = builder.icmp_signed("==", state.read(op.cond), i32(1), name="is_one")
        builder.cbranch(
            is_one, state.target_block(op.label_true), state.target_block(op.label_false)
        )

    def emit_CallOp(self, op: CallOp, state: LLVMTranslationState):
        builder = state.builder
        if op.label not in state.label_map:
            state.fault(FaultCode.LABEL_RESOLUTION)
            return

        rsp = builder.load(state.rsp, name="rsp")
        state.guard(
            builder.icmp_signed(">=", rsp, i32(MAX_CALL_DEPTH)),
            FaultCode.RESOURCE_EXHAUSTED,
        )
        ret_slot = builder.gep(state.rets, [i32(0), rsp], inbounds=True)
        builder.store(i32(state.call_sites[state.ip]), ret_slot)
        builder.store(builder.add(rsp, i32(1)), state.rsp)

        # push a zeroed frame
        fp = builder.add(builder.load(state.fp), i32(1), name="fp")
        builder.store(fp, state.fp)
        frame = builder.gep(state.frames, [i32(0), fp], inbounds=True)
        builder.store(ir.Constant(FRAME_TYPE, None), frame)

        builder.branch(state.blocks[state.label_map[op.label]])

    def emit_ReturnOp(self, op: ReturnOp, state: LLVMTranslationState):
        builder = state.builder
        rsp = builder.load(state.rsp, name="rsp")
        state.guard(builder.icmp_signed("==", rsp, i32(0)), FaultCode.STACK_UNDERFLOW)
        rsp = builder.sub(rsp, i32(1), name="rsp")
        builder.store(rsp, state.rsp)
        call_site = builder.load(
            builder.gep(state.rets, [i32(0), rsp], inbounds=True), name="call_site"
        )
        builder.store(builder.sub(builder.load(state.fp), i32(1)), state.fp)

        # go back to the instruction after the call site
        unknown_site = state.function.append_basic_block(name=f"bad_return.{state.ip}")
        with builder.goto_block(unknown_site):
            state.fault(FaultCode.STACK_UNDERFLOW)
        switch = builder.switch(call_site, unknown_site)
        for call_idx, site_id in state.call_sites.items():
            switch.add_case(i32(site_id), state.block_at(call_idx + 1))

    def push(self, value: ir.Value, state: LLVMTranslationState):
        builder = state.builder
        sp = builder.load(state.sp, name="sp")
        state.guard(
            builder.icmp_signed(">=", sp, i32(MAX_OPERAND_STACK_SIZE)),
            FaultCode.RESOURCE_EXHAUSTED,
        )
        builder.store(value, builder.gep(state.stack, [i32(0), sp], inbounds=True))
        builder.store(builder.add(sp, i32(1)), state.sp)

    def emit_PushOp(self, op: PushOp, state: LLVMTranslationState):
        self.push(state.read(op.reg), state)

    def emit_PushIOp(self, op: PushIOp, state: LLVMTranslationState):
        self.push(i32(op.val), state)

    def emit_PopOp(self, op: PopOp, state: LLVMTranslationState):
        builder = state.builder
        sp = builder.load(state.sp, name="sp")
        state.guard(builder.icmp_signed("==", sp, i32(0)), FaultCode.STACK_UNDERFLOW)
        sp = builder.sub(sp, i32(1), name="sp")
        builder.store(sp, state.sp)
        value = builder.load(builder.gep(state.stack, [i32(0), sp], inbounds=True))
        state.write(op.reg, value)

    def arithmetic(self, op, lhs: ir.Value, rhs: ir.Value, state: LLVMTranslationState):
        builder = state.builder
        instruction = ARITHMETIC_INSTRUCTIONS[op.opcode]
        if instruction in ("sdiv", "srem"):
            state.guard(builder.icmp_signed("==", rhs, i32(0)), FaultCode.ARITHMETIC)
            # MIN / -1 overflows. dividing by 1 instead gives the wrapped quotient
            # (MIN) and the right remainder (0)
            overflows = builder.and_(
                builder.icmp_signed("==", lhs, i32(I32_MIN)),
                builder.icmp_signed("==", rhs, i32(-1)),
            )
            rhs = builder.select(overflows, i32(1), rhs)
        result = getattr(builder, instruction)(lhs, rhs)
        state.write(op.out, result)

    def emit_ArithmeticOperation(
        self, op: ArithmeticOperation, state: LLVMTranslationState
    ):
        self.arithmetic(op, state.read(op.lhs), state.read(op.rhs), state)

    def emit_ImmediateArithmeticOperation(
        self, op: ImmediateArithmeticOperation, state: LLVMTranslationState
    ):
        self.arithmetic(op, state.read(op.lhs), i32(op.rhs), state)

    def emit_ComparisonOperation(
        self, op: ComparisonOperation, state: LLVMTranslationState
    ):
        builder = state.builder
        holds = builder.icmp_signed(
            COMPARISON_PREDICATES[op.opcode], state.read(op.lhs), state.read(op.rhs)
        )
        state.write(op.out, builder.zext(holds, I32))

    def emit_LoadIOp(self, op: LoadIOp, state: LLVMTranslationState):
        state.write(op.out, i32(op.val))

    def emit_I2iOp(self, op: I2iOp, state: LLVMTranslationState):
        state.write(op.rhs, state.read(op.lhs))


def _add_global(module: ir.Module, typ: ir.Type, name: str, internal: bool = True):
    var = ir.GlobalVariable(module, typ, name=name)
    var.initializer = ir.Constant(typ, None)
    if internal:
        var.linkage = "internal"
    return var


def ir_to_llvm(program: IR, module_name: str = "langtwo_module") -> ir.Module:
    """Translate a register IR to an LLVM module.

    Raises the same construction faults as the VM: duplicate labels, and registers
    that do not fit in a frame."""
    label_map = resolve_labels(program)

    module = ir.Module(name=module_name)
    module.triple = binding.get_default_triple()

    func_type = ir.FunctionType(I32, [I32.as_pointer()])
    function = ir.Function(module, func_type, name="run")
    entry_block = function.append_basic_block(name="entry")
    builder = ir.IRBuilder(entry_block)

    state = LLVMTranslationState(
        module=module,
        builder=builder,
        function=function,
        program=program,
        label_map=label_map,
    )
    state.frames = _add_global(
        module, ir.ArrayType(FRAME_TYPE, MAX_CALL_DEPTH + 1), "frames"
    )
    state.fp = _add_global(module, I32, "fp")
    state.stack = _add_global(module, ir.ArrayType(I32, MAX_OPERAND_STACK_SIZE), "stack")
    state.sp = _add_global(module, I32, "sp")
    state.rets = _add_global(module, ir.ArrayType(I32, MAX_CALL_DEPTH), "rets")
    state.rsp = _add_global(module, I32, "rsp")
    # read back by the runner after a fault
    state.fault_ip = _add_global(module, I32, "fault_ip", internal=False)

    # reset the machine, so that run can be called more than once
    for var in (state.fp, state.sp, state.rsp, state.fault_ip):
        builder.store(i32(0), var)
    builder.store(
        ir.Constant(FRAME_TYPE, None),
        builder.gep(state.frames, [i32(0), i32(0)], inbounds=True),
    )

    for idx in find_leaders(program):
        state.blocks[idx] = function.append_basic_block(name=f"ip.{idx}")
    state.exit_block = function.append_basic_block(name="exit")

    call_idxs = [
        idx for idx, op in enumerate(program.instructions) if isinstance(op, CallOp)
    ]
    state.call_sites = {idx: site_id for site_id, idx in enumerate(call_idxs)}

    builder.branch(state.block_at(0))

    emitter = LLVMEmitter()
    for idx, op in enumerate(program.instructions):
        if idx in state.blocks:
            # fall through into the next block
            if not builder.block.is_terminated:
                builder.branch(state.blocks[idx])
            builder.position_at_end(state.blocks[idx])
        state.ip = idx
        emitter.emit(op, state)

    if not builder.block.is_terminated:
        builder.branch(state.exit_block)

    builder.position_at_end(state.exit_block)
    if program.result is not None:
        builder.store(state.read(program.result), function.args[0])
    builder.ret(i32(FaultCode.NO_ERROR.value))

    return module


class JITCompiler:
    """JIT compiles and executes a register IR using LLVM's MCJIT engine."""

    def __init__(self, module_name: str = "langtwo_module"):
        self.module_name = module_name
        self.program: IR = None
        self.ir_module = None
        self.engine = None
        self._initialized = False

    def _ensure_initialized(self):
        """Initialize LLVM native target (only once)."""
        if not self._initialized:
            binding.initialize_native_target()
            binding.initialize_native_asmprinter()
            self._initialized = True

    def compile(self, program: IR) -> None:
        """Compile a register IR to native machine code."""
        self._ensure_initialized()
        self.program = program
        self.ir_module = ir_to_llvm(program, self.module_name)
        self._create_engine()

    def _create_engine(self):
        """Create the MCJIT execution engine."""
        # Parse the IR
        llvm_ir = str(self.ir_module)
        llvm_mod = binding.parse_assembly(llvm_ir)
        llvm_mod.verify()

        # Create target machine
        target = binding.Target.from_default_triple()
        target_machine = target.create_target_machine()

        # Create execution engine with an empty backing module
        backing_mod = binding.parse_assembly("")
        self.engine = binding.create_mcjit_compiler(backing_mod, target_machine)

        # Add our module
        self.engine.add_module(llvm_mod)
        self.engine.finalize_object()

    def get_ir(self) -> str:
        """Get the LLVM IR as a string."""
        if self.ir_module is None:
            raise RuntimeError("No module compiled yet")
        return str(self.ir_module)

    def run(self, program: IR = None) -> int | None:
        """
        Compile (if needed) and run the code.

        Args:
            program: Optional register IR (if not already compiled)

        Returns:
            The value of the result register, or None if the IR has none

        Raises:
            VmFault: the subclass matching the fault code the code returned
        """
        if program is not None:
            self.compile(program)

        if self.engine is None:
            raise RuntimeError("No code compiled - call compile() first")

        return self._execute()

    def _execute(self) -> int | None:
        """Execute the compiled code."""
        func_ptr = self.engine.get_function_address("run")
        if func_ptr == 0:
            raise RuntimeError("Could not find 'run' function")

        cfunc = ctypes.CFUNCTYPE(ctypes.c_int32, ctypes.POINTER(ctypes.c_int32))(
            func_ptr
        )

        result = ctypes.c_int32(0)
        code = FaultCode(cfunc(ctypes.byref(result)))
        if code != FaultCode.NO_ERROR:
            fault_ip_addr = self.engine.get_global_value_address("fault_ip")
            fault_ip = ctypes.c_int32.from_address(fault_ip_addr).value
            raise FAULTS_BY_CODE[code](
                FAULT_MESSAGES[code], self.program.instructions[fault_ip], fault_ip
            )

        if self.program.result is None:
            return None
        return result.value


def run_ir_jit(program: IR) -> int | None:
    """
    Compile and run a register IR using JIT compilation.

    Returns:
        The value of the result register, or None if the IR has none
    """
    compiler = JITCompiler()
    return compiler.run(program)
