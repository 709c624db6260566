# src/tasktree/parsing/metadata.py

"""
Task description <-> structured metadata codec.

Only the LAST line of a description is considered, and only when every
whitespace-separated token on it is a recognized marker:

    p1 p2 p3 high medium low    priority (first one wins)
    @<date>                      due date, see parsing.dates (first one wins;
                                 an unreadable date resolves to None)
    #tag                         tag, repeatable
    ^abc                         parent (first one wins)
    -^abc                        has subtask abc (inverse of ^)
    !abc                         blocks abc
    -!abc                        blocked by abc (inverse of !)
    ~abc                         related to abc (symmetric)

A line with any other token is plain text, so parse() never fails.
render() regenerates the metadata line from fields in a fixed order:
^parent !blocks -^subtasks -!blocked-by ~related priority @due #tags
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import date
from enum import StrEnum

from ..core.ports import DateResolver
from ..tasks.task_models import ID_LENGTH, Priority
from .dates import resolve_date


class MarkerKind(StrEnum):
    PARENT = "^"
    SUBTASK = "-^"
    BLOCKS = "!"
    BLOCKED_BY = "-!"
    RELATED = "~"

    @property
    def inverse(self) -> MarkerKind:
        return _INVERSE[self]


_INVERSE = {
    MarkerKind.PARENT: MarkerKind.SUBTASK,
    MarkerKind.SUBTASK: MarkerKind.PARENT,
    MarkerKind.BLOCKS: MarkerKind.BLOCKED_BY,
    MarkerKind.BLOCKED_BY: MarkerKind.BLOCKS,
    MarkerKind.RELATED: MarkerKind.RELATED,
}

# Render order of the relationship markers.
MARKER_ORDER = (
    MarkerKind.PARENT,
    MarkerKind.BLOCKS,
    MarkerKind.SUBTASK,
    MarkerKind.BLOCKED_BY,
    MarkerKind.RELATED,
)

_LIST_FIELDS = {
    MarkerKind.SUBTASK: "subtask_ids",
    MarkerKind.BLOCKS: "blocks_ids",
    MarkerKind.BLOCKED_BY: "blocked_by_ids",
    MarkerKind.RELATED: "related_ids",
}

_PRIORITY_TOKENS = {
    "p1": Priority.HIGH,
    "p2": Priority.MEDIUM,
    "p3": Priority.LOW,
    "high": Priority.HIGH,
    "medium": Priority.MEDIUM,
    "low": Priority.LOW,
}

_PRIORITY_RENDER = {
    Priority.HIGH: "p1",
    Priority.MEDIUM: "p2",
    Priority.LOW: "p3",
}

# Longer prefixes first so "-^abc" is not read as "^abc".
_MARKER_RE = re.compile(rf"^(-\^|-!|\^|!|~)(\w{{{ID_LENGTH}}})$")
_TAG_RE = re.compile(r"^#([\w-]+)$")
_DUE_RE = re.compile(r"^@(\S+)$")


@dataclass(slots=True)
class ParsedMetadata:
    plain_text: str
    priority: Priority | None = None
    due_date: date | None = None
    due_raw: str | None = None
    tags: list[str] = field(default_factory=list)
    parent_id: str | None = None
    subtask_ids: list[str] = field(default_factory=list)
    blocks_ids: list[str] = field(default_factory=list)
    blocked_by_ids: list[str] = field(default_factory=list)
    related_ids: list[str] = field(default_factory=list)

    @property
    def has_metadata(self) -> bool:
        return bool(
            self.priority
            or self.due_raw
            or self.due_date
            or self.tags
            or self.parent_id
            or self.subtask_ids
            or self.blocks_ids
            or self.blocked_by_ids
            or self.related_ids
        )

    def ids(self, kind: MarkerKind) -> list[str]:
        if kind is MarkerKind.PARENT:
            return [self.parent_id] if self.parent_id else []
        return list(getattr(self, _LIST_FIELDS[kind]))

    def with_ids(self, kind: MarkerKind, ids: list[str]) -> ParsedMetadata:
        if kind is MarkerKind.PARENT:
            return replace(self, parent_id=ids[0] if ids else None)
        return replace(self, **{_LIST_FIELDS[kind]: _unique(ids)})


def _unique(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


def _apply_token(
    meta: ParsedMetadata, token: str, today: date | None, resolve: DateResolver
) -> bool:
    """Fold one token into `meta`. Returns False if it is not a marker."""
    prio = _PRIORITY_TOKENS.get(token.lower())
    if prio is not None:
        if meta.priority is None:
            meta.priority = prio
        return True

    m = _MARKER_RE.match(token)
    if m:
        kind = MarkerKind(m.group(1))
        ref = m.group(2)
        if kind is MarkerKind.PARENT:
            if meta.parent_id is None:
                meta.parent_id = ref
        else:
            ids: list[str] = getattr(meta, _LIST_FIELDS[kind])
            if ref not in ids:
                ids.append(ref)
        return True

    m = _TAG_RE.match(token)
    if m:
        if m.group(1) not in meta.tags:
            meta.tags.append(m.group(1))
        return True

    m = _DUE_RE.match(token)
    if m:
        # An unreadable date keeps its token (and the line) with no resolved date.
        if meta.due_raw is None:
            meta.due_raw = m.group(1)
            meta.due_date = resolve(meta.due_raw, today)
        return True

    return False


def parse(
    description: str | None,
    *,
    today: date | None = None,
    resolve: DateResolver = resolve_date,
) -> ParsedMetadata:
    """Split a description into plain text and metadata. Pure and total."""
    if not description or not description.strip():
        return ParsedMetadata(plain_text=description or "")

    lines = description.split("\n")
    tokens = lines[-1].split()
    if not tokens:
        return ParsedMetadata(plain_text=description)

    meta = ParsedMetadata(plain_text="\n".join(lines[:-1]))
    for token in tokens:
        if not _apply_token(meta, token, today, resolve):
            return ParsedMetadata(plain_text=description)
    return meta


def metadata_line(meta: ParsedMetadata) -> str:
    parts: list[str] = []
    for kind in MARKER_ORDER:
        parts.extend(f"{kind.value}{ref}" for ref in _unique(meta.ids(kind)))

    if meta.priority is not None:
        parts.append(_PRIORITY_RENDER[meta.priority])

    if meta.due_raw:
        parts.append(f"@{meta.due_raw}")
    elif meta.due_date is not None:
        parts.append(f"@{meta.due_date.isoformat()}")

    parts.extend(f"#{tag}" for tag in _unique(meta.tags))
    return " ".join(parts)


def render(meta: ParsedMetadata) -> str:
    """Inverse of parse(): plain text plus a regenerated metadata line."""
    line = metadata_line(meta)
    if not line:
        return meta.plain_text
    if not meta.plain_text:
        return line
    return f"{meta.plain_text}\n{line}"


def display_description(description: str) -> str:
    """
    Text to show to a human: hides a metadata-only last line.

    A single-line description is always shown as-is (otherwise the task would look empty).
    """
    if not description or not description.strip():
        return description

    lines = description.split("\n")
    if len(lines) == 1:
        return description

    if parse(description).has_metadata:
        return "\n".join(lines[:-1]).rstrip()
    return description.rstrip()
