"""Unified-diff line mapping.

Translates between new-file line numbers and raw patch text. GitHub only
accepts an inline comment on a line the patch exposes on the RIGHT side
(an added line or a context line reachable from a hunk header), so this module
is the single source of truth for which lines a comment may target.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_HUNK_HEADER_RE = re.compile(r"^@@ -\d+(?:,\d+)? \+(\d+)(?:,\d+)? @@")


@dataclass(frozen=True)
class MappedLine:
    """One new-file line exposed by a patch."""

    line: int
    text: str


def iter_new_lines(patch: str | None):
    """Yield a MappedLine for every context or added line in the patch, in order.

    A hunk header resets the cursor to the hunk's new-file start. Deleted
    lines and "\\ No newline at end of file" markers never consume a number.
    Anything before the first hunk header has no cursor and is ignored.
    """
    if not patch:
        return
    cursor: int | None = None
    # A trailing newline terminates the last line; it is not an extra empty line.
    for raw in patch.removesuffix("\n").split("\n"):
        header = _HUNK_HEADER_RE.match(raw)
        if header:
            cursor = int(header.group(1))
            continue
        if cursor is None:
            continue
        if raw.startswith("-") or raw.startswith("\\"):
            continue
        yield MappedLine(line=cursor, text=raw[1:] if raw.startswith("+") else raw)
        cursor += 1


def build_line_map(patch: str | None) -> dict[int, MappedLine]:
    """Return the line map for a patch, keyed by new-file line number."""
    return {mapped.line: mapped for mapped in iter_new_lines(patch)}


def compute_valid_lines(patch: str | None) -> set[int]:
    """Return the set of new-file line numbers that can receive an inline comment."""
    return {mapped.line for mapped in iter_new_lines(patch)}


def extract_snippet(patch: str | None, target_line: int) -> str | None:
    """Return the target line with one line of context either side, or None.

    The window is clipped at the ends of the mapped sequence, so a target on
    the first or last mapped line yields two lines instead of three.
    """
    mapped = list(iter_new_lines(patch))
    for idx, entry in enumerate(mapped):
        if entry.line == target_line:
            window = mapped[max(0, idx - 1) : idx + 2]
            return "\n".join(m.text for m in window)
    return None
