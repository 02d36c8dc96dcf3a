# tests/test_mir_model.py
"""
Tests for the CFG model: place identity, spans, function bodies and the
JSON dump loader.
"""

import json

import pytest

from mirdata_shims.errors import MalformedCFGError
from mirdata_shims.mir_model import (
    EMPTY_SPAN,
    Assert,
    Assign,
    BasicBlock,
    BinOp,
    Call,
    CallExpr,
    Constant,
    Copy,
    FunctionBody,
    Goto,
    Overflow,
    Place,
    ProjectionElem,
    ProjectionKind,
    Return,
    SourceSpan,
    StorageLive,
    SwitchInt,
    Use,
    function_from_dict,
    load_program,
    program_from_dict,
    referenced_paths,
    same_tracked_location,
)
from tests.builders import (
    BORROW_LAMPORTS,
    CLOCK_GET,
    GET_MUT,
    FILE,
    span,
    vulnerable_withdraw,
    withdraw_dump,
)


class TestPlaceIdentity:
    """Test the balance place identity rule."""

    def test_same_base_is_same_location(self):
        field = Place(7, (ProjectionElem(ProjectionKind.FIELD, 2),))
        assert same_tracked_location(Place(7), Place(7).deref())
        assert same_tracked_location(Place(7).deref(), field)

    def test_different_base(self):
        assert not same_tracked_location(Place(7), Place(8))

    def test_none_is_never_the_same(self):
        assert not same_tracked_location(None, Place(7))
        assert not same_tracked_location(Place(7), None)
        assert not same_tracked_location(None, None)

    def test_structural_equality_still_sees_projections(self):
        assert Place(7) != Place(7).deref()

    @pytest.mark.parametrize("place,text", [
        (Place(3), "_3"),
        (Place(3).deref(), "(*_3)"),
        (Place(3, (ProjectionElem(ProjectionKind.FIELD, 1),)), "(_3.1)"),
        (Place(3, (ProjectionElem(ProjectionKind.INDEX, 4),)), "_3[_4]"),
        (Place(3, (ProjectionElem(ProjectionKind.CONSTANT_INDEX, 0),)), "_3[0]"),
    ])
    def test_str(self, place, text):
        assert str(place) == text


class TestSourceSpan:
    """Test span joins and rendering."""

    def test_empty(self):
        assert EMPTY_SPAN.is_empty
        assert not span(3).is_empty

    def test_to_covers_both(self):
        merged = span(6).to(span(3))
        assert (merged.lo, merged.hi, merged.line) == (300, 620, 3)
        assert merged.file == FILE

    def test_to_ignores_empty(self):
        assert span(3).to(EMPTY_SPAN) == span(3)
        assert EMPTY_SPAN.to(span(3)) == span(3)

    def test_str(self):
        assert str(SourceSpan("a.rs", 0, 1, 4, 2)) == "a.rs:4:2"
        assert str(SourceSpan("a.rs", 0, 1, 4)) == "a.rs:4"


class TestFunctionBody:
    """Test block ordering and CFG edges."""

    def test_blocks_iterate_in_id_order(self):
        body = FunctionBody("f", [
            BasicBlock(2, [], Return()),
            BasicBlock(0, [], Goto(1)),
            BasicBlock(1, [], Goto(2)),
        ])
        assert [b.id for b in body] == [0, 1, 2]
        assert len(body) == 3

    def test_duplicate_block_id(self):
        with pytest.raises(MalformedCFGError, match="bb1"):
            FunctionBody("f", [BasicBlock(1), BasicBlock(1)])

    def test_successors_and_predecessors(self):
        body = FunctionBody("f", [
            BasicBlock(0, [], SwitchInt(Copy(Place(1)), ((0, 1),), 2)),
            BasicBlock(1, [], Goto(2)),
            BasicBlock(2, [], Return()),
        ])
        assert body.successors(0) == (1, 2)
        assert body.predecessors(2) == [0, 1]
        assert body.successors(99) == ()
        body.validate()

    def test_validate_dangling_target(self):
        body = FunctionBody("f", [BasicBlock(0, [], Goto(5))])
        with pytest.raises(MalformedCFGError, match="bb5"):
            body.validate()

    def test_items_put_terminator_last(self):
        block = BasicBlock(0, [StorageLive(1), StorageLive(2)], Return())
        assert [type(i).__name__ for i in block.items()] == [
            "StorageLive", "StorageLive", "Return",
        ]
        assert block.label() == "bb0 [2 stmts, Return]"

    def test_builder_withdraw(self):
        body = vulnerable_withdraw()
        body.validate()
        assert body.block_ids == list(range(8))


class TestReferencedPaths:
    """Test callee and constant path extraction."""

    def test_call_callee(self):
        assert list(referenced_paths(Call(GET_MUT))) == [GET_MUT]

    def test_inline_call_and_constant_paths(self):
        item = Assign(
            Place(3),
            CallExpr(BORROW_LAMPORTS, (Constant(path=CLOCK_GET), Copy(Place(1)))),
        )
        assert list(referenced_paths(item)) == [BORROW_LAMPORTS, CLOCK_GET]

    def test_assert_operands(self):
        item = Assert(Overflow(BinOp.SUB, Constant(path=CLOCK_GET), Constant(1)))
        assert list(referenced_paths(item)) == [CLOCK_GET]

    def test_plain_assignment(self):
        assert list(referenced_paths(Assign(Place(1), Use(Constant(3))))) == []


class TestLoader:
    """Test the JSON dump loader and its validation."""

    def test_program_from_dict(self):
        program = program_from_dict(withdraw_dump())
        assert program.file == FILE
        body = program.function("withdraw")
        assert body is not None
        assert body.block_ids == [0, 1, 2, 3, 4]
        call = body.block(1).terminator
        assert isinstance(call, Call)
        assert call.destination == Place(7)
        assert call.span.file == FILE
        assign = body.block(3).statements[0]
        assert isinstance(assign, Assign)
        assert assign.destination == Place(7).deref()
        assert assign.source.op is BinOp.SUB

    def test_load_program(self, tmp_path):
        path = tmp_path / "withdraw.mir.json"
        path.write_text(json.dumps(withdraw_dump()), encoding="utf-8")
        assert [f.name for f in load_program(path).functions] == ["withdraw"]

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(MalformedCFGError):
            load_program(path)

    def test_missing_span(self):
        dump = withdraw_dump()
        del dump["functions"][0]["blocks"][0]["terminator"]["span"]
        with pytest.raises(MalformedCFGError, match="span"):
            program_from_dict(dump)

    def test_unknown_statement_kind(self):
        dump = withdraw_dump()
        dump["functions"][0]["blocks"][0]["statements"][0]["kind"] = "InlineAsm"
        with pytest.raises(MalformedCFGError, match="InlineAsm"):
            program_from_dict(dump)

    def test_dangling_target(self):
        dump = withdraw_dump()
        dump["functions"][0]["blocks"][0]["terminator"]["target"] = 42
        with pytest.raises(MalformedCFGError, match="bb42"):
            program_from_dict(dump)

    def test_non_integer_block_id(self):
        dump = withdraw_dump()
        dump["functions"][0]["blocks"][0]["id"] = "entry"
        with pytest.raises(MalformedCFGError):
            program_from_dict(dump)

    def test_missing_name(self):
        with pytest.raises(MalformedCFGError):
            function_from_dict({"blocks": []})

    def test_not_an_object(self):
        with pytest.raises(MalformedCFGError):
            program_from_dict([])

    def test_assert_terminator(self):
        body = function_from_dict({
            "name": "f",
            "blocks": [
                {
                    "id": 0,
                    "terminator": {
                        "kind": "Assert",
                        "msg": {
                            "kind": "Overflow",
                            "op": "Sub",
                            "left": {"kind": "copy", "place": {"local": 7, "projection": [{"kind": "deref"}]}},
                            "right": {"kind": "constant", "value": 5},
                        },
                        "cond": {"kind": "move", "place": {"local": 9}},
                        "expected": False,
                        "target": 1,
                        "span": {"lo": 1, "hi": 2, "line": 1},
                    },
                },
                {"id": 1, "terminator": {"kind": "Return", "span": {"line": 2}}},
            ],
        })
        term = body.block(0).terminator
        assert isinstance(term, Assert)
        assert term.kind == Overflow(BinOp.SUB, Copy(Place(7).deref()), Constant(5))
        assert term.expected is False

    @pytest.mark.parametrize("functions", [None, {"name": "f"}, "withdraw"])
    def test_functions_must_be_a_list(self, functions):
        with pytest.raises(MalformedCFGError, match="must be a list"):
            program_from_dict({"file": FILE, "functions": functions})

    def test_missing_dump_file(self, tmp_path):
        with pytest.raises(MalformedCFGError, match="cannot read dump"):
            load_program(tmp_path / "absent.json")

    def test_dump_is_not_utf8(self, tmp_path):
        path = tmp_path / "latin1.json"
        path.write_bytes(b'{"file": "caf\xe9.rs", "functions": []}')
        with pytest.raises(MalformedCFGError, match="cannot read dump"):
            load_program(path)

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text('{"functions": [', encoding="utf-8")
        with pytest.raises(MalformedCFGError, match="invalid JSON"):
            load_program(path)
