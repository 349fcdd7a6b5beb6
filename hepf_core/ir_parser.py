"""
hepf_core/ir_parser.py
══════════════════════

Textual front end: a compact, LLVM-flavoured program format parsed with a
parsimonious PEG grammar into :mod:`hepf_core.program_model` objects, plus
the printer used by ``hepf-core dump``.

Example::

    ; comment
    declare @pthread_mutex_lock
    global @g_lock

    define @worker(%m, %buf) {
    entry:
      %p = cast %m
      call @pthread_mutex_lock(%p)
      %x = load %buf
      br %x, body, done
    body:
      %y = phi [%x, entry], [%z, body]
      %z = add %y, 1
      store %z, %buf
      br body, done
    done:
      call @pthread_mutex_unlock(%m)
      ret
    }

Instructions before the first label form an implicit ``entry`` block.
Successor edges come from the labels named by each block's terminator; a
block without a terminator is a dead end.

Parsing happens in two steps: the :class:`_SyntaxVisitor` turns the parse
tree into small syntax records, then :func:`_build_module` feeds those to
:class:`~hepf_core.program_model.FunctionBuilder`, which performs the
semantic checks and raises :class:`~hepf_core.errors.ModelError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional, Union

from parsimonious.exceptions import ParseError
from parsimonious.grammar import Grammar
from parsimonious.nodes import Node, NodeVisitor

from .errors import IRParseError, ModelError
from .program_model import (
    Function,
    FunctionBuilder,
    InstKind,
    Instruction,
    Module,
    declare_function,
)

logger = logging.getLogger(__name__)


IR_GRAMMAR = Grammar(r'''
    # ─────────────────────────────────────────────────────────────
    # Top level
    # ─────────────────────────────────────────────────────────────

    module          = _ toplevel*
    toplevel        = (function / declare / global_decl) _

    function        = kw_define ws global_name _ "(" _ params? _ ")" _ "{" _ instruction* block* "}"
    declare         = kw_declare ws global_name (_ "(" _ params? _ ")")?
    global_decl     = kw_global ws global_name
    params          = local_name (_ "," _ local_name)*

    block           = label_def _ instruction*
    label_def       = label_name ":"

    # ─────────────────────────────────────────────────────────────
    # Instructions
    # ─────────────────────────────────────────────────────────────

    instruction     = (assign / statement) _
    assign          = local_name _ "=" _ rhs
    rhs             = call / load / phi / generic_op
    statement       = call / store / br / ret / unreachable / bare_op

    call            = kw_call ws callee _ "(" _ operands? _ ")"
    callee          = global_name / local_name
    load            = kw_load ws operand
    store           = kw_store ws operand _ "," _ operand
    phi             = kw_phi ws incoming (_ "," _ incoming)*
    incoming        = "[" _ operand _ "," _ label_ref _ "]"
    generic_op      = !reserved opcode (ws operands)?
    bare_op         = !label_def !reserved opcode (ws operands)?

    br              = kw_br ws (operand _ "," _)? label_ref (_ "," _ label_ref)*
    ret             = kw_ret (ws operand)?
    unreachable     = kw_unreachable

    operands        = operand (_ "," _ operand)*
    operand         = local_name / global_name / number / null_lit / undef_lit

    # ─────────────────────────────────────────────────────────────
    # Tokens
    # ─────────────────────────────────────────────────────────────

    local_name      = ~r"%[A-Za-z0-9_.$]+"
    global_name     = ~r"@[A-Za-z0-9_.$]+"
    number          = ~r"-?[0-9]+"
    null_lit        = ~r"null(?![A-Za-z0-9_.$])"
    undef_lit       = ~r"undef(?![A-Za-z0-9_.$])"
    label_name      = ~r"[A-Za-z_.$][A-Za-z0-9_.$]*"
    label_ref       = ~r"[A-Za-z_.$][A-Za-z0-9_.$]*"
    opcode          = ~r"[A-Za-z_][A-Za-z0-9_.]*"

    reserved        = ~r"(call|load|store|phi|br|ret|unreachable|define|declare|global)(?![A-Za-z0-9_.$])"
    kw_define       = ~r"define(?![A-Za-z0-9_.$])"
    kw_declare      = ~r"declare(?![A-Za-z0-9_.$])"
    kw_global       = ~r"global(?![A-Za-z0-9_.$])"
    kw_call         = ~r"call(?![A-Za-z0-9_.$])"
    kw_load         = ~r"load(?![A-Za-z0-9_.$])"
    kw_store        = ~r"store(?![A-Za-z0-9_.$])"
    kw_phi          = ~r"phi(?![A-Za-z0-9_.$])"
    kw_br           = ~r"br(?![A-Za-z0-9_.$])"
    kw_ret          = ~r"ret(?![A-Za-z0-9_.$])"
    kw_unreachable  = ~r"unreachable(?![A-Za-z0-9_.$])"

    ws              = ~r"[ \t]+"
    _               = ~r"(?:\s|;[^\n]*)*"
''')


# ═══════════════════════════════════════════════════════════════════════════
#  Syntax records
# ═══════════════════════════════════════════════════════════════════════════

class _Syntax:
    """Marker base for records produced by the visitor."""


@dataclass
class _Tok(_Syntax):
    kind: str       # local | global | number | null | undef
    text: str


@dataclass
class _LabelRef(_Syntax):
    name: str


@dataclass
class _LabelDef(_Syntax):
    name: str
    line: int


@dataclass
class _Opcode(_Syntax):
    name: str


@dataclass
class _Incoming(_Syntax):
    value: _Tok
    label: str


@dataclass
class _Inst(_Syntax):
    opcode: str
    line: int
    operands: List[_Tok] = field(default_factory=list)
    result: Optional[str] = None
    callee: Optional[_Tok] = None
    incoming: List[_Incoming] = field(default_factory=list)
    targets: List[str] = field(default_factory=list)


@dataclass
class _BlockSyn(_Syntax):
    label: str
    line: int
    instructions: List[_Inst] = field(default_factory=list)


@dataclass
class _FunctionSyn(_Syntax):
    name: str
    line: int
    params: List[str] = field(default_factory=list)
    blocks: List[_BlockSyn] = field(default_factory=list)


@dataclass
class _Declare(_Syntax):
    name: str


@dataclass
class _GlobalDecl(_Syntax):
    name: str


def _flatten(items) -> Iterator[_Syntax]:
    for item in items:
        if isinstance(item, _Syntax):
            yield item
        elif isinstance(item, list):
            yield from _flatten(item)


def _of(items, kind) -> list:
    return [i for i in items if isinstance(i, kind)]


# ═══════════════════════════════════════════════════════════════════════════
#  Parse tree → syntax records
# ═══════════════════════════════════════════════════════════════════════════

class _SyntaxVisitor(NodeVisitor):
    """Transforms the parsimonious parse tree into syntax records.

    Every ``visit_*`` method returns either a record or a flat list of
    records, so parents pick their pieces out by type instead of by
    child position.
    """

    grammar = IR_GRAMMAR

    def __init__(self, text: str) -> None:
        self._text = text

    def _line(self, node: Node) -> int:
        return self._text.count("\n", 0, node.start) + 1

    def generic_visit(self, node, visited_children):
        return list(_flatten(visited_children))

    # ----- tokens ---------------------------------------------------------

    def visit_local_name(self, node, visited_children):
        return _Tok("local", node.text)

    def visit_global_name(self, node, visited_children):
        return _Tok("global", node.text)

    def visit_number(self, node, visited_children):
        return _Tok("number", node.text)

    def visit_null_lit(self, node, visited_children):
        return _Tok("null", node.text)

    def visit_undef_lit(self, node, visited_children):
        return _Tok("undef", node.text)

    def visit_label_ref(self, node, visited_children):
        return _LabelRef(node.text)

    def visit_label_def(self, node, visited_children):
        return _LabelDef(node.text[:-1], self._line(node))

    def visit_opcode(self, node, visited_children):
        return _Opcode(node.text)

    # ----- instructions ---------------------------------------------------

    def visit_call(self, node, visited_children):
        toks = _of(_flatten(visited_children), _Tok)
        return _Inst("call", self._line(node), operands=toks[1:], callee=toks[0])

    def visit_load(self, node, visited_children):
        return _Inst("load", self._line(node),
                     operands=_of(_flatten(visited_children), _Tok))

    def visit_store(self, node, visited_children):
        return _Inst("store", self._line(node),
                     operands=_of(_flatten(visited_children), _Tok))

    def visit_incoming(self, node, visited_children):
        items = list(_flatten(visited_children))
        return _Incoming(_of(items, _Tok)[0], _of(items, _LabelRef)[0].name)

    def visit_phi(self, node, visited_children):
        return _Inst("phi", self._line(node),
                     incoming=_of(_flatten(visited_children), _Incoming))

    def visit_generic_op(self, node, visited_children):
        items = list(_flatten(visited_children))
        return _Inst(_of(items, _Opcode)[0].name, self._line(node),
                     operands=_of(items, _Tok))

    visit_bare_op = visit_generic_op

    def visit_br(self, node, visited_children):
        items = list(_flatten(visited_children))
        return _Inst("br", self._line(node), operands=_of(items, _Tok),
                     targets=[l.name for l in _of(items, _LabelRef)])

    def visit_ret(self, node, visited_children):
        return _Inst("ret", self._line(node),
                     operands=_of(_flatten(visited_children), _Tok))

    def visit_unreachable(self, node, visited_children):
        return _Inst("unreachable", self._line(node))

    def visit_assign(self, node, visited_children):
        items = list(_flatten(visited_children))
        inst = _of(items, _Inst)[0]
        inst.result = items[0].text
        return inst

    # ----- structure ------------------------------------------------------

    def visit_block(self, node, visited_children):
        items = list(_flatten(visited_children))
        label = _of(items, _LabelDef)[0]
        return _BlockSyn(label.name, label.line, _of(items, _Inst))

    def visit_function(self, node, visited_children):
        items = list(_flatten(visited_children))
        name = items[0].text[1:]
        params = [t.text for t in _of(items, _Tok)[1:]]
        fn = _FunctionSyn(name, self._line(node), params)
        leading = [i for i in items if isinstance(i, _Inst)]
        if leading:
            fn.blocks.append(_BlockSyn("entry", leading[0].line, leading))
        fn.blocks.extend(_of(items, _BlockSyn))
        return fn

    def visit_declare(self, node, visited_children):
        toks = _of(_flatten(visited_children), _Tok)
        return _Declare(toks[0].text[1:])

    def visit_global_decl(self, node, visited_children):
        toks = _of(_flatten(visited_children), _Tok)
        return _GlobalDecl(toks[0].text[1:])


# ═══════════════════════════════════════════════════════════════════════════
#  Syntax records → program model
# ═══════════════════════════════════════════════════════════════════════════

def _build_function(syn: _FunctionSyn, module: Module) -> Function:
    fb = FunctionBuilder(syn.name, [p[1:] for p in syn.params], module=module)
    blocks = [fb.block(b.label) for b in syn.blocks]
    for block, bsyn in zip(blocks, syn.blocks):
        for inst in bsyn.instructions:
            ops = [t.text for t in inst.operands]
            if inst.opcode == "call":
                fb.call(block, inst.callee.text, ops, inst.result, line=inst.line)
            elif inst.opcode == "load":
                fb.load(block, ops[0], inst.result, line=inst.line)
            elif inst.opcode == "store":
                fb.store(block, ops[0], ops[1], line=inst.line)
            elif inst.opcode == "phi":
                fb.phi(block, [(i.value.text, i.label) for i in inst.incoming],
                       inst.result, line=inst.line)
            elif inst.opcode == "br":
                fb.br(block, inst.targets, ops[0] if ops else None, line=inst.line)
            elif inst.opcode == "ret":
                fb.ret(block, ops[0] if ops else None, line=inst.line)
            elif inst.opcode == "unreachable":
                fb.unreachable(block, line=inst.line)
            else:
                fb.op(block, inst.opcode, ops, inst.result, line=inst.line)
    return fb.finish()


def _build_module(items: List[_Syntax], name: str) -> Module:
    module = Module(name)
    for item in items:
        if isinstance(item, _GlobalDecl):
            module.global_value(item.name)
        elif isinstance(item, _Declare):
            module.add_function(declare_function(item.name))
        elif isinstance(item, _FunctionSyn):
            try:
                module.add_function(_build_function(item, module))
            except ModelError as exc:
                logger.debug("model error in @%s (line %d): %s",
                             item.name, item.line, exc.message)
                raise
    return module


# ═══════════════════════════════════════════════════════════════════════════
#  Public API
# ═══════════════════════════════════════════════════════════════════════════

def parse_module(text: str, name: str = "<input>") -> Module:
    """Parse program text into a :class:`Module`.

    Raises
    ------
    IRParseError
        The text does not match the grammar.
    ModelError
        The text parses but is not a well-formed program.
    """
    try:
        tree = IR_GRAMMAR.parse(text)
    except ParseError as exc:
        raise IRParseError(
            f"syntax error near {text[exc.pos:exc.pos + 20]!r}",
            line=exc.line(),
            column=exc.column(),
            source_name=name,
        ) from exc
    items = list(_flatten([_SyntaxVisitor(text).visit(tree)]))
    module = _build_module(items, name)
    logger.debug("parsed %s: %d functions", name, len(module))
    return module


def parse_file(path: Union[str, Path]) -> Module:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise IRParseError(f"cannot read file: {exc.strerror}",
                           source_name=str(path)) from exc
    return parse_module(text, name=str(path))


def parse_function(text: str) -> Function:
    """Parse text holding exactly one function definition."""
    module = parse_module(text)
    definitions = list(module.definitions())
    if len(definitions) != 1:
        raise ModelError(f"expected one function definition, found {len(definitions)}")
    return definitions[0]


# ═══════════════════════════════════════════════════════════════════════════
#  Printer
# ═══════════════════════════════════════════════════════════════════════════

def format_instruction(inst: Instruction) -> str:
    ops = ", ".join(v.name for v in inst.operands)
    prefix = f"{inst.result.name} = " if inst.result is not None else ""
    if inst.kind is InstKind.CALL:
        target = "@" + inst.callee if inst.callee is not None else inst.callee_value.name
        return f"{prefix}call {target}({ops})"
    if inst.kind is InstKind.PHI:
        pairs = ", ".join(f"[{v.name}, {label}]"
                          for v, label in zip(inst.operands, inst.incoming_labels))
        return f"{prefix}phi {pairs}"
    if inst.opcode == "br":
        parts = [v.name for v in inst.operands] + list(inst.targets)
        return "br " + ", ".join(parts)
    if ops:
        return f"{prefix}{inst.opcode} {ops}"
    return f"{prefix}{inst.opcode}"


def format_function(function: Function) -> str:
    if function.is_declaration:
        return f"declare @{function.name}"
    params = ", ".join(p.name for p in function.params)
    lines = [f"define @{function.name}({params}) {{"]
    for block in function.blocks:
        lines.append(f"{block.name}:")
        for inst in block.instructions:
            lines.append("  " + format_instruction(inst))
    lines.append("}")
    return "\n".join(lines)


def format_module(module: Module) -> str:
    chunks: List[str] = []
    if module.globals:
        chunks.append("\n".join(f"global @{g}" for g in module.globals))
    declarations = [f for f in module if f.is_declaration]
    if declarations:
        chunks.append("\n".join(format_function(f) for f in declarations))
    for function in module.definitions():
        chunks.append(format_function(function))
    return "\n\n".join(chunks) + "\n"
