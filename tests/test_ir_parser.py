# tests/test_ir_parser.py
"""Tests for the textual IR front end and printer."""

import textwrap

import pytest

from hepf_core.errors import IRParseError, ModelError
from hepf_core.ir_parser import (
    format_instruction,
    format_module,
    parse_file,
    parse_function,
    parse_module,
)
from hepf_core.program_model import InstKind, ValueKind


def _src(text):
    return textwrap.dedent(text)


class TestParseModule:

    def test_worker_module_shape(self, worker_module):
        assert [f.name for f in worker_module] == [
            "pthread_mutex_lock", "pthread_mutex_unlock", "worker", "leaky", "plain"]
        assert [f.name for f in worker_module.definitions()] == ["worker", "leaky", "plain"]
        assert "g_lock" in worker_module.globals

        worker = worker_module.functions["worker"]
        assert [b.name for b in worker.blocks] == ["entry", "body", "done"]
        assert [p.name for p in worker.params] == ["%m", "%buf"]
        assert worker.instruction_count == 12
        body = worker.block("body")
        assert [s.name for s in body.successors] == ["body", "done"]
        assert [p.name for p in body.predecessors] == ["entry", "body"]

    def test_instruction_details(self, worker_module):
        entry = worker_module.functions["worker"].entry
        cast, lock, load, cmp, br = entry.instructions
        assert cast.opcode == "cast" and cast.result.name == "%p"
        assert lock.callee == "pthread_mutex_lock"
        assert lock.arguments == (cast.result,)
        assert load.kind is InstKind.LOAD and load.address.kind is ValueKind.ARGUMENT
        assert cmp.operands[1].kind is ValueKind.CONSTANT
        assert br.targets == ("body", "done")
        assert lock.line == 9

    def test_phi_forward_reference(self, worker_module):
        body = worker_module.functions["worker"].block("body")
        phi, add = body.instructions[0], body.instructions[1]
        assert phi.incoming_labels == ("entry", "body")
        assert phi.operands[1] is add.result
        assert add.result.definition is add

    def test_globals_are_shared(self, worker_module):
        leaky = worker_module.functions["leaky"]
        lock = leaky.entry.instructions[1]
        unlock = leaky.block("unlock").instructions[0]
        assert lock.arguments[0] is unlock.arguments[0]
        assert lock.arguments[0] is worker_module.globals["g_lock"]

    def test_implicit_entry_block(self, worker_module):
        plain = worker_module.functions["plain"]
        assert [b.name for b in plain.blocks] == ["entry"]
        assert plain.entry.terminator.opcode == "ret"

    def test_indirect_call_and_special_operands(self):
        fn = parse_function(_src("""\
            define @f(%fp) {
              call %fp(null, undef, -3)
              ret
            }
        """))
        call = fn.entry.instructions[0]
        assert call.is_indirect_call
        assert call.callee_value.name == "%fp"
        assert [v.kind for v in call.arguments] == [
            ValueKind.NULL, ValueKind.UNDEF, ValueKind.CONSTANT]

    def test_keyword_prefixed_names(self):
        fn = parse_function(_src("""\
            define @f(%m) {
            entry:
              br retry
            retry:
              %loaded = callx %m
              br call_done
            call_done:
              ret
            }
        """))
        assert [b.name for b in fn.blocks] == ["entry", "retry", "call_done"]
        assert fn.block("retry").instructions[0].opcode == "callx"

    def test_comments_and_declare_with_params(self):
        module = parse_module(_src("""\
            ; leading comment
            declare @ext(%a, %b)   ; trailing comment
            define @f() {
              ret   ; done
            }
        """))
        assert module.functions["ext"].is_declaration
        assert len(list(module.definitions())) == 1

    def test_dead_end_block(self):
        fn = parse_function(_src("""\
            define @f(%c) {
            entry:
              br %c, a, b
            a:
              %x = add 1, 2
            b:
              ret
            }
        """))
        assert fn.block("a").is_exit
        assert fn.block("a").terminator is None

    def test_empty_function_body(self):
        fn = parse_function("define @f() {\n}\n")
        assert not fn.blocks
        assert not fn.is_declaration


class TestSyntaxErrors:

    def test_error_position(self):
        text = _src("""\
            define @good() {
              ret
            }

            define @bad() {
              %x =
            }
        """)
        with pytest.raises(IRParseError) as info:
            parse_module(text, name="bad.ir")
        err = info.value
        assert err.line == 5
        assert str(err).startswith("bad.ir:5:")

    def test_load_needs_a_result(self):
        with pytest.raises(IRParseError):
            parse_function("define @f(%p) {\n  load %p\n  ret\n}\n")

    def test_missing_file(self, tmp_path):
        with pytest.raises(IRParseError) as info:
            parse_file(tmp_path / "absent.ir")
        assert "cannot read file" in str(info.value)


class TestModelErrors:

    @pytest.mark.parametrize("body", [
        "entry:\n  br nowhere\n",
        "entry:\n  ret %nope\n",
        "entry:\n  %a = add 1, 2\n  %a = add 3, 4\n  ret\n",
        "entry:\n  ret\n  %a = add 1, 2\n",
        "entry:\n  ret\nentry:\n  ret\n",
        "entry:\n  br next\nnext:\n  %v = phi [1, elsewhere]\n  ret\n",
    ], ids=["label", "local", "redefined", "mid-block-terminator",
            "duplicate-label", "phi-label"])
    def test_malformed_function(self, body):
        with pytest.raises(ModelError) as info:
            parse_function("define @f() {\n" + body + "}\n")
        assert info.value.function == "f"
        assert str(info.value).startswith("in function @f:")

    def test_function_defined_twice(self):
        text = "define @f() {\n  ret\n}\ndefine @f() {\n  ret\n}\n"
        with pytest.raises(ModelError):
            parse_module(text)

    def test_parse_function_needs_exactly_one(self):
        with pytest.raises(ModelError):
            parse_function("declare @g\n")


class TestPrinter:

    def test_dump_reparses_to_same_text(self, worker_module):
        text = format_module(worker_module)
        assert format_module(parse_module(text)) == text

    def test_dump_layout(self, worker_module):
        text = format_module(worker_module)
        assert text.startswith("global @g_lock\n\ndeclare @pthread_mutex_lock\n")
        assert "  %y = phi [%x, entry], [%z, body]\n" in text
        assert "  br %c, body, done\n" in text

    def test_format_instruction(self, worker_module):
        entry = worker_module.functions["leaky"].entry
        assert format_instruction(entry.instructions[2]) == "%n = call @read()"
        assert format_instruction(entry.instructions[1]) == "call @spin_lock(@g_lock)"
