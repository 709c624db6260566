# tests/test_metadata_parser.py

from __future__ import annotations

from datetime import date

import pytest

from tasktree.parsing.metadata import (
    MarkerKind,
    ParsedMetadata,
    display_description,
    metadata_line,
    parse,
    render,
)
from tasktree.tasks.task_models import Priority

TODAY = date(2026, 3, 10)  # a Tuesday


def test_plain_text_has_no_metadata() -> None:
    meta = parse("Buy milk and eggs", today=TODAY)
    assert meta.plain_text == "Buy milk and eggs"
    assert not meta.has_metadata


def test_empty_and_blank_descriptions_are_total() -> None:
    assert parse("").plain_text == ""
    assert parse(None).plain_text == ""
    assert parse("   ").plain_text == "   "
    assert parse("text\n   ").plain_text == "text\n   "


def test_full_metadata_line() -> None:
    meta = parse("Write report\n^abc !def -^ghi -!jkl ~mno p1 @2026-04-01 #work #q2", today=TODAY)
    assert meta.plain_text == "Write report"
    assert meta.parent_id == "abc"
    assert meta.blocks_ids == ["def"]
    assert meta.subtask_ids == ["ghi"]
    assert meta.blocked_by_ids == ["jkl"]
    assert meta.related_ids == ["mno"]
    assert meta.priority is Priority.HIGH
    assert meta.due_date == date(2026, 4, 1)
    assert meta.due_raw == "2026-04-01"
    assert meta.tags == ["work", "q2"]


def test_one_unknown_token_makes_the_line_plain_text() -> None:
    text = "Call Bob\n^abc tomorrow-ish #x"
    meta = parse(text, today=TODAY)
    assert meta.plain_text == text
    assert not meta.has_metadata


def test_unresolvable_due_token_keeps_the_metadata_line() -> None:
    text = "Email\np2 @someday #work"
    meta = parse(text, today=TODAY)
    assert meta.plain_text == "Email"
    assert meta.due_raw == "someday"
    assert meta.due_date is None
    assert meta.priority is Priority.MEDIUM
    assert meta.tags == ["work"]
    assert render(meta) == text
    assert display_description(text) == "Email"


def test_only_last_line_counts() -> None:
    meta = parse("p1 #tag\nactual words here", today=TODAY)
    assert not meta.has_metadata
    assert meta.plain_text == "p1 #tag\nactual words here"


def test_single_line_of_markers_has_empty_plain_text() -> None:
    meta = parse("p2 #home", today=TODAY)
    assert meta.plain_text == ""
    assert meta.priority is Priority.MEDIUM
    assert meta.tags == ["home"]


def test_priority_words_are_case_insensitive_and_first_wins() -> None:
    meta = parse("x\nHIGH p3", today=TODAY)
    assert meta.priority is Priority.HIGH


def test_first_parent_wins_and_lists_dedup() -> None:
    meta = parse("x\n^aaa ^bbb !ccc !ccc ~ddd ~ddd", today=TODAY)
    assert meta.parent_id == "aaa"
    assert meta.blocks_ids == ["ccc"]
    assert meta.related_ids == ["ddd"]


def test_inverse_markers_are_not_read_as_forward_ones() -> None:
    meta = parse("x\n-^abc -!def", today=TODAY)
    assert meta.parent_id is None
    assert meta.blocks_ids == []
    assert meta.subtask_ids == ["abc"]
    assert meta.blocked_by_ids == ["def"]


def test_relative_due_token_keeps_raw_literal() -> None:
    meta = parse("x\n@tomorrow", today=TODAY)
    assert meta.due_date == date(2026, 3, 11)
    assert meta.due_raw == "tomorrow"
    assert render(meta) == "x\n@tomorrow"


def test_render_canonical_order() -> None:
    meta = parse("Task\n#b p3 ~rrr -!qqq -^sss !ttt ^ppp @fri", today=TODAY)
    assert render(meta) == "Task\n^ppp !ttt -^sss -!qqq ~rrr p3 @fri #b"


def test_render_without_metadata_returns_plain_text() -> None:
    assert render(ParsedMetadata(plain_text="just text")) == "just text"


def test_render_without_plain_text_returns_line_only() -> None:
    assert render(ParsedMetadata(plain_text="", tags=["a"])) == "#a"


def test_render_uses_iso_when_no_raw_token() -> None:
    meta = ParsedMetadata(plain_text="x", due_date=date(2026, 5, 2))
    assert metadata_line(meta) == "@2026-05-02"


@pytest.mark.parametrize(
    "meta",
    [
        ParsedMetadata(plain_text="Plain only"),
        ParsedMetadata(plain_text="Two\nlines", priority=Priority.LOW, tags=["a", "b-c"]),
        ParsedMetadata(
            plain_text="Graph",
            parent_id="p01",
            subtask_ids=["s01", "s02"],
            blocks_ids=["b01"],
            blocked_by_ids=["k01"],
            related_ids=["r01", "r02"],
        ),
        ParsedMetadata(
            plain_text="Due",
            due_date=date(2026, 3, 13),
            due_raw="fri",
            priority=Priority.HIGH,
        ),
    ],
)
def test_round_trip(meta: ParsedMetadata) -> None:
    assert parse(render(meta), today=TODAY) == meta


def test_with_ids_replaces_one_category_only() -> None:
    meta = parse("x\n^aaa !bbb p1 #t", today=TODAY)
    changed = meta.with_ids(MarkerKind.BLOCKS, ["ccc", "ccc", "ddd"])
    assert changed.blocks_ids == ["ccc", "ddd"]
    assert changed.parent_id == "aaa"
    assert changed.priority is Priority.HIGH
    assert changed.tags == ["t"]
    assert meta.blocks_ids == ["bbb"]


def test_marker_kind_inverses() -> None:
    assert MarkerKind.PARENT.inverse is MarkerKind.SUBTASK
    assert MarkerKind.BLOCKED_BY.inverse is MarkerKind.BLOCKS
    assert MarkerKind.RELATED.inverse is MarkerKind.RELATED


def test_display_description_hides_metadata_line() -> None:
    assert display_description("Shop\n^abc #home") == "Shop"
    assert display_description("Shop\nmilk") == "Shop\nmilk"
    # A single line is always shown, even when it is all markers.
    assert display_description("#home p1") == "#home p1"
