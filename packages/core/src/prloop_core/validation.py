"""Gate-keeping of model-proposed comments against the diff-line contract."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from prloop_core.utils.diff import compute_valid_lines

logger = logging.getLogger(__name__)

CATEGORIES = (
    "bug",
    "security",
    "error-handling",
    "performance",
    "concurrency",
    "resource-leak",
    "api-contract",
    "other",
)


@dataclass
class ValidationResult:
    valid: list[dict] = field(default_factory=list)
    dropped: list = field(default_factory=list)


def _is_well_formed(comment) -> bool:
    if not isinstance(comment, dict):
        return False
    file, line, body = comment.get("file"), comment.get("line"), comment.get("body")
    if not isinstance(file, str) or not file:
        return False
    # bool is an int subclass; True must not address line 1.
    if isinstance(line, bool):
        return False
    if isinstance(line, float):
        if not line.is_integer():
            return False
    elif not isinstance(line, int):
        return False
    return isinstance(body, str) and bool(body.strip())


def validate_comments(comments: list, file_patches: dict[str, str | None]) -> ValidationResult:
    """Split model comments into those that address a commentable line and the rest.

    A comment survives only if it names a file, an integer line and a
    non-empty body, and the line appears in that file's patch. An integral
    float line such as 12.0 is accepted and rewritten as an int; every other
    surviving comment is returned unchanged. Dropped comments are returned for
    counting, never raised.
    """
    result = ValidationResult()
    valid_lines: dict[str, set[int]] = {}

    for comment in comments:
        if not _is_well_formed(comment):
            result.dropped.append(comment)
            continue
        if isinstance(comment["line"], float):
            comment = {**comment, "line": int(comment["line"])}
        file = comment["file"]
        if file not in valid_lines:
            valid_lines[file] = compute_valid_lines(file_patches.get(file))
        if comment["line"] not in valid_lines[file]:
            logger.debug("Dropping comment for %s:%d (not in diff)", file, comment["line"])
            result.dropped.append(comment)
            continue
        result.valid.append(comment)

    return result


def normalize_category(comment: dict) -> str:
    category = comment.get("category")
    return category if category in CATEGORIES else "other"


def apply_comment_caps(comments: list[dict], max_per_file: int, max_total: int) -> list[dict]:
    """Keep comments in model order, up to max_per_file per file and max_total overall."""
    kept: list[dict] = []
    per_file: dict[str, int] = {}
    for comment in comments:
        if len(kept) >= max_total:
            break
        count = per_file.get(comment["file"], 0)
        if count >= max_per_file:
            continue
        per_file[comment["file"]] = count + 1
        kept.append(comment)
    return kept
