"""
hepf_core/program_model.py
══════════════════════════

In-memory program model analysed by every hepf-core pass.

    Module ──owns──▶ Function ──owns──▶ Block ──owns──▶ Instruction
                        │                  │                  │
                        └── params         └── preds/succs    └── operands / result : Value

Blocks are arena-indexed: ``function.blocks[i].index == i`` and block 0
is the entry.  Path-level analyses work on these integer indices.

Values are identity-hashed handles.  Constants are interned per function
(``1`` used twice is one Value); globals are interned per module.

A :class:`FunctionBuilder` is the only supported way to build a
:class:`Function`.  It resolves forward references (needed for phi
operands on back edges), wires successor/predecessor edges from the
terminator labels, and raises :class:`~hepf_core.errors.ModelError` on
malformed input.  The model is never mutated once ``finish()`` returns.
"""

from __future__ import annotations

import enum
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

from .errors import ModelError


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 - Values
# ═══════════════════════════════════════════════════════════════════════════

class ValueKind(enum.Enum):
    ARGUMENT = "argument"
    GLOBAL = "global"
    CONSTANT = "constant"
    NULL = "null"
    UNDEF = "undef"
    INSTRUCTION = "instruction"


class Value:
    """An opaque program value.

    Equality is identity.  Two distinct ``Value`` objects are never the
    same lock, even if they print the same; use
    :func:`hepf_core.call_classifier.canonicalize` to see through casts.
    """

    __slots__ = ("name", "kind", "definition")

    def __init__(self, name: str, kind: ValueKind) -> None:
        self.name = name
        self.kind = kind
        self.definition: Optional[Instruction] = None

    @property
    def is_null_or_undef(self) -> bool:
        return self.kind in (ValueKind.NULL, ValueKind.UNDEF)

    @property
    def is_constant(self) -> bool:
        return self.kind in (ValueKind.CONSTANT, ValueKind.NULL, ValueKind.UNDEF)

    def __repr__(self) -> str:
        return self.name


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 - Instructions
# ═══════════════════════════════════════════════════════════════════════════

class InstKind(enum.Enum):
    CALL = "call"
    LOAD = "load"
    STORE = "store"
    BRANCH = "branch"
    PHI = "phi"
    OTHER = "other"


TERMINATOR_OPCODES = frozenset({"br", "ret", "unreachable"})

_KIND_BY_OPCODE: Dict[str, InstKind] = {
    "call": InstKind.CALL,
    "load": InstKind.LOAD,
    "store": InstKind.STORE,
    "phi": InstKind.PHI,
    "br": InstKind.BRANCH,
    "ret": InstKind.BRANCH,
    "unreachable": InstKind.BRANCH,
}


class Instruction:
    """One instruction.

    Attributes
    ----------
    opcode : str
        Textual opcode (``call``, ``load``, ``cast``, ``add`` ...).
    kind : InstKind
        Coarse category derived from the opcode.
    operands : tuple of Value
        Ordered operands.  For calls these are the arguments only; for
        phis the incoming values; for stores ``(value, address)``.
    result : Value or None
        The value this instruction defines, if any.
    callee : str or None
        Resolved callee name of a direct call (without ``@``).
    callee_value : Value or None
        Called value of an indirect call.
    incoming_labels : tuple of str
        Phi only: the predecessor label paired with each operand.
    targets : tuple of str
        Terminators only: successor labels, in order.
    """

    __slots__ = (
        "opcode",
        "kind",
        "operands",
        "result",
        "callee",
        "callee_value",
        "incoming_labels",
        "targets",
        "block",
        "index",
        "line",
    )

    def __init__(
        self,
        opcode: str,
        operands: Sequence[Value] = (),
        result: Optional[Value] = None,
        *,
        callee: Optional[str] = None,
        callee_value: Optional[Value] = None,
        incoming_labels: Sequence[str] = (),
        targets: Sequence[str] = (),
        line: Optional[int] = None,
    ) -> None:
        self.opcode = opcode
        self.kind = _KIND_BY_OPCODE.get(opcode, InstKind.OTHER)
        self.operands: Tuple[Value, ...] = tuple(operands)
        self.result = result
        self.callee = callee
        self.callee_value = callee_value
        self.incoming_labels: Tuple[str, ...] = tuple(incoming_labels)
        self.targets: Tuple[str, ...] = tuple(targets)
        self.block: Optional[Block] = None
        self.index: int = -1
        self.line = line

    # ----- classification helpers -----------------------------------------

    @property
    def is_call(self) -> bool:
        return self.kind is InstKind.CALL

    @property
    def is_indirect_call(self) -> bool:
        return self.kind is InstKind.CALL and self.callee is None

    @property
    def is_intrinsic(self) -> bool:
        return self.callee is not None and self.callee.startswith("llvm.")

    @property
    def is_terminator(self) -> bool:
        return self.opcode in TERMINATOR_OPCODES

    @property
    def touches_memory(self) -> bool:
        return self.kind in (InstKind.LOAD, InstKind.STORE)

    @property
    def arguments(self) -> Tuple[Value, ...]:
        return self.operands if self.kind is InstKind.CALL else ()

    @property
    def address(self) -> Optional[Value]:
        """Address operand of a load or store."""
        if self.kind is InstKind.LOAD:
            return self.operands[0]
        if self.kind is InstKind.STORE:
            return self.operands[1]
        return None

    def __repr__(self) -> str:
        from .ir_parser import format_instruction
        return f"<Instruction {format_instruction(self)}>"


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3 - Blocks, functions, modules
# ═══════════════════════════════════════════════════════════════════════════

class Block:
    """A basic block.  ``successors`` may contain duplicates when a
    terminator names the same label twice; ``predecessors`` mirrors it."""

    __slots__ = ("name", "index", "function", "instructions",
                 "successors", "predecessors")

    def __init__(self, name: str, index: int) -> None:
        self.name = name
        self.index = index
        self.function: Optional[Function] = None
        self.instructions: List[Instruction] = []
        self.successors: List[Block] = []
        self.predecessors: List[Block] = []

    @property
    def terminator(self) -> Optional[Instruction]:
        if self.instructions and self.instructions[-1].is_terminator:
            return self.instructions[-1]
        return None

    @property
    def is_exit(self) -> bool:
        return not self.successors

    def __iter__(self) -> Iterator[Instruction]:
        return iter(self.instructions)

    def __len__(self) -> int:
        return len(self.instructions)

    def __repr__(self) -> str:
        return f"<Block {self.name} #{self.index}>"


class Function:
    """A function definition or declaration.  Declarations have no blocks."""

    __slots__ = ("name", "params", "blocks", "is_declaration", "_by_name")

    def __init__(
        self,
        name: str,
        params: Sequence[Value] = (),
        blocks: Sequence[Block] = (),
        *,
        is_declaration: bool = False,
    ) -> None:
        self.name = name
        self.params: Tuple[Value, ...] = tuple(params)
        self.blocks: Tuple[Block, ...] = tuple(blocks)
        self.is_declaration = is_declaration
        self._by_name: Dict[str, Block] = {b.name: b for b in self.blocks}

    @property
    def entry(self) -> Optional[Block]:
        return self.blocks[0] if self.blocks else None

    def block(self, name: str) -> Block:
        return self._by_name[name]

    def instructions(self) -> Iterator[Instruction]:
        for block in self.blocks:
            yield from block.instructions

    @property
    def instruction_count(self) -> int:
        return sum(len(b.instructions) for b in self.blocks)

    def __repr__(self) -> str:
        kind = "declare" if self.is_declaration else "define"
        return f"<Function {kind} @{self.name} ({len(self.blocks)} blocks)>"


class Module:
    """An ordered collection of functions plus declared globals."""

    def __init__(self, name: str = "<module>") -> None:
        self.name = name
        self.functions: Dict[str, Function] = {}
        self.globals: Dict[str, Value] = {}

    def global_value(self, name: str) -> Value:
        """Return the interned global ``@name``, creating it on first use."""
        value = self.globals.get(name)
        if value is None:
            value = Value("@" + name, ValueKind.GLOBAL)
            self.globals[name] = value
        return value

    def add_function(self, function: Function) -> None:
        existing = self.functions.get(function.name)
        if existing is not None and not existing.is_declaration:
            if not function.is_declaration:
                raise ModelError(f"function @{function.name} defined twice")
            return
        self.functions[function.name] = function

    def definitions(self) -> Iterator[Function]:
        for function in self.functions.values():
            if not function.is_declaration:
                yield function

    def __iter__(self) -> Iterator[Function]:
        return iter(self.functions.values())

    def __len__(self) -> int:
        return len(self.functions)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 4 - Builder
# ═══════════════════════════════════════════════════════════════════════════

Operand = Union[Value, str, int, None]


class FunctionBuilder:
    """Incrementally build a :class:`Function`.

    Operands may be given as ``Value`` objects or as text: ``"%x"`` (local
    or parameter, may be a forward reference), ``"@g"`` (global), an
    ``int`` or integer string (constant), ``"null"``/``None`` and
    ``"undef"``.

    Example::

        fb = FunctionBuilder("worker", params=["m"])
        entry = fb.block("entry")
        fb.call(entry, "pthread_mutex_lock", ["%m"])
        fb.ret(entry)
        fn = fb.finish()
    """

    def __init__(
        self,
        name: str,
        params: Sequence[str] = (),
        *,
        module: Optional[Module] = None,
    ) -> None:
        self.name = name
        self.module = module if module is not None else Module()
        self._blocks: List[Block] = []
        self._block_names: Dict[str, Block] = {}
        self._locals: Dict[str, Value] = {}
        self._constants: Dict[str, Value] = {}
        self._params: List[Value] = []
        for param in params:
            pname = param.lstrip("%")
            if pname in self._locals:
                raise self._error(f"duplicate parameter %{pname}")
            value = Value("%" + pname, ValueKind.ARGUMENT)
            self._locals[pname] = value
            self._params.append(value)
        self._defined = set(self._locals)
        self._finished = False

    def _error(self, message: str) -> ModelError:
        return ModelError(message, function=self.name)

    # ----- values ---------------------------------------------------------

    def param(self, name: str) -> Value:
        return self.value("%" + name.lstrip("%"))

    def value(self, operand: Operand) -> Value:
        """Resolve an operand spelling to a :class:`Value`."""
        if isinstance(operand, Value):
            return operand
        if operand is None:
            return self._constant("null", ValueKind.NULL)
        if isinstance(operand, int):
            return self._constant(str(operand), ValueKind.CONSTANT)
        text = operand.strip()
        if text.startswith("%"):
            name = text[1:]
            value = self._locals.get(name)
            if value is None:
                value = Value(text, ValueKind.INSTRUCTION)
                self._locals[name] = value
            return value
        if text.startswith("@"):
            return self.module.global_value(text[1:])
        if text == "null":
            return self._constant(text, ValueKind.NULL)
        if text == "undef":
            return self._constant(text, ValueKind.UNDEF)
        try:
            int(text)
        except ValueError:
            raise self._error(f"cannot interpret operand {text!r}") from None
        return self._constant(text, ValueKind.CONSTANT)

    def _constant(self, text: str, kind: ValueKind) -> Value:
        value = self._constants.get(text)
        if value is None:
            value = Value(text, kind)
            self._constants[text] = value
        return value

    def _define(self, result: Optional[str]) -> Optional[Value]:
        if result is None:
            return None
        name = result.lstrip("%")
        if name in self._defined:
            raise self._error(f"%{name} defined more than once")
        self._defined.add(name)
        return self.value("%" + name)

    # ----- blocks ---------------------------------------------------------

    def block(self, name: str) -> Block:
        """Create the next block.  The first block created is the entry."""
        if name in self._block_names:
            raise self._error(f"duplicate label {name!r}")
        block = Block(name, len(self._blocks))
        self._blocks.append(block)
        self._block_names[name] = block
        return block

    def _append(self, block: Block, inst: Instruction) -> Instruction:
        if self._finished:
            raise self._error("builder already finished")
        inst.block = block
        inst.index = len(block.instructions)
        block.instructions.append(inst)
        if inst.result is not None:
            inst.result.definition = inst
        return inst

    # ----- instructions ---------------------------------------------------

    def call(
        self,
        block: Block,
        callee: Union[str, Value],
        args: Sequence[Operand] = (),
        result: Optional[str] = None,
        *,
        line: Optional[int] = None,
    ) -> Instruction:
        """Append a call.  ``callee`` is a function name (``"f"`` or
        ``"@f"``) for a direct call, or ``"%fp"``/a Value for an indirect
        one."""
        arg_values = [self.value(a) for a in args]
        if isinstance(callee, str) and not callee.startswith("%"):
            inst = Instruction("call", arg_values, self._define(result),
                               callee=callee.lstrip("@"), line=line)
        else:
            inst = Instruction("call", arg_values, self._define(result),
                               callee_value=self.value(callee), line=line)
        return self._append(block, inst)

    def load(self, block: Block, address: Operand, result: str, *,
             line: Optional[int] = None) -> Instruction:
        return self._append(block, Instruction(
            "load", [self.value(address)], self._define(result), line=line))

    def store(self, block: Block, value: Operand, address: Operand, *,
              line: Optional[int] = None) -> Instruction:
        return self._append(block, Instruction(
            "store", [self.value(value), self.value(address)], line=line))

    def phi(
        self,
        block: Block,
        incoming: Sequence[Tuple[Operand, str]],
        result: str,
        *,
        line: Optional[int] = None,
    ) -> Instruction:
        values = [self.value(v) for v, _ in incoming]
        labels = [label for _, label in incoming]
        return self._append(block, Instruction(
            "phi", values, self._define(result),
            incoming_labels=labels, line=line))

    def op(
        self,
        block: Block,
        opcode: str,
        operands: Sequence[Operand] = (),
        result: Optional[str] = None,
        *,
        line: Optional[int] = None,
    ) -> Instruction:
        """Append any other instruction (``cast``, ``offset``, ``add`` ...)."""
        if opcode in _KIND_BY_OPCODE:
            raise self._error(f"use the dedicated builder method for {opcode!r}")
        return self._append(block, Instruction(
            opcode, [self.value(o) for o in operands],
            self._define(result), line=line))

    def br(
        self,
        block: Block,
        targets: Sequence[str],
        condition: Operand = None,
        *,
        line: Optional[int] = None,
    ) -> Instruction:
        operands = [self.value(condition)] if condition is not None else []
        return self._append(block, Instruction(
            "br", operands, targets=targets, line=line))

    def ret(self, block: Block, value: Operand = None, *,
            line: Optional[int] = None) -> Instruction:
        operands = [self.value(value)] if value is not None else []
        return self._append(block, Instruction("ret", operands, line=line))

    def unreachable(self, block: Block, *,
                    line: Optional[int] = None) -> Instruction:
        return self._append(block, Instruction("unreachable", line=line))

    # ----- finish ---------------------------------------------------------

    def finish(self) -> Function:
        """Resolve labels and locals and return the immutable Function."""
        undefined = sorted(n for n in self._locals if n not in self._defined)
        if undefined:
            raise self._error(
                "use of undefined value " + ", ".join("%" + n for n in undefined))

        for block in self._blocks:
            for inst in block.instructions[:-1]:
                if inst.is_terminator:
                    raise self._error(
                        f"terminator {inst.opcode!r} in the middle of block "
                        f"{block.name!r}")
            term = block.terminator
            if term is None:
                # Treated as a dead end.
                continue
            for label in term.targets:
                target = self._block_names.get(label)
                if target is None:
                    raise self._error(
                        f"block {block.name!r} branches to undefined label "
                        f"{label!r}")
                block.successors.append(target)
                target.predecessors.append(block)
            for inst in block.instructions:
                if inst.kind is InstKind.PHI:
                    for label in inst.incoming_labels:
                        if label not in self._block_names:
                            raise self._error(
                                f"phi in {block.name!r} names undefined "
                                f"label {label!r}")

        function = Function(self.name, self._params, self._blocks)
        for block in self._blocks:
            block.function = function
        self._finished = True
        return function


def declare_function(name: str) -> Function:
    """Return an external declaration (no body)."""
    return Function(name.lstrip("@"), is_declaration=True)
