"""Context-window budgeting for PR reviews.

A whole pull request is reviewed in as few model calls as possible. Every
changed file contributes its diff and, when there is room, its full content;
files are packed greedily into one or more prompt chunks so that no chunk's
estimated token cost exceeds the budget left after the system prompt and the
model's response are reserved.

Packing is a deterministic greedy heuristic: identical input always produces
identical chunks, in the same order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from prloop_core.utils.code import detect_language

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_WINDOW = 200_000
RESERVED_SYSTEM_TOKENS = 4_000
RESERVED_RESPONSE_TOKENS = 4_000

# Characters per estimated token. Real tokenizers average closer to 4 chars
# per token for English prose and code; 3 over-estimates cost, so the budget
# errs on the side of leaving headroom in the model's window.
CHARS_PER_TOKEN = 3

SECTION_SEPARATOR = "\n---\n\n"
NO_DIFF_PLACEHOLDER = "(no diff available)"
CONTENT_OMITTED_NOTE = "(full content omitted: file too large for the context budget)"
NOTHING_FIT_PLACEHOLDER = "(no file content fit within the context budget)"
# Appended to every chunk in the user message; counted against the chunk budget.
USER_PROMPT_SUFFIX = "\n\nRespond with only the JSON array of comments for the files above."


@dataclass(frozen=True)
class ChangedFile:
    """A file changed by the pull request, as fetched at the reviewed head SHA.

    ``content`` is the full file body at head (None when unavailable, e.g.
    binary or deleted files). ``patch`` is GitHub's pre-rendered unified diff
    (None for binary files and diffs GitHub refuses to render). ``sha`` is the
    blob id, used to fetch content that is too large for the contents API.
    """

    filename: str
    status: str  # "added" | "modified" | "removed" | "renamed"
    patch: str | None = None
    content: str | None = None
    sha: str | None = None


@dataclass(frozen=True)
class FileSection:
    filename: str
    text: str
    full_content: bool


@dataclass
class PromptChunk:
    """One bounded unit of prompt content, submitted to the model as one request."""

    manifest: str
    sections: list[FileSection] = field(default_factory=list)

    @property
    def filenames(self) -> list[str]:
        return [s.filename for s in self.sections]

    @property
    def text(self) -> str:
        bodies = [s.text for s in self.sections] or [NOTHING_FIT_PLACEHOLDER]
        return SECTION_SEPARATOR.join([self.manifest, *bodies])

    @property
    def estimated_tokens(self) -> int:
        return estimate_tokens(self.text + USER_PROMPT_SUFFIX)


@dataclass
class ContextResult:
    """Output of build_chunks.

    truncated_count counts every file that lost context: files delivered
    diff-only because their full content did not fit (omitted_content) plus
    files that did not fit at all (dropped).
    """

    chunks: list[PromptChunk]
    omitted_content: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)

    @property
    def truncated_count(self) -> int:
        return len(self.omitted_content) + len(self.dropped)


def estimate_tokens(text: str) -> int:
    return _tokens_for_chars(len(text))


def _tokens_for_chars(n_chars: int) -> int:
    # Ceiling division keeps the estimate monotonic and never under-counts.
    return -(-n_chars // CHARS_PER_TOKEN)


def effective_budget(
    context_window: int = DEFAULT_CONTEXT_WINDOW,
    reserved_system: int = RESERVED_SYSTEM_TOKENS,
    reserved_response: int = RESERVED_RESPONSE_TOKENS,
) -> int:
    """Return the tokens available to file content in a single chunk."""
    return context_window - reserved_system - reserved_response


def build_manifest(files: list[ChangedFile]) -> str:
    """List every changed file and its status, in input order."""
    lines = [f"# Changed files ({len(files)})", ""]
    lines.extend(f"- `{f.filename}` ({f.status})" for f in files)
    return "\n".join(lines)


def render_section(file: ChangedFile, include_content: bool) -> str:
    """Render one file's prompt section: its diff, then its full content or an omission note."""
    diff_text = file.patch or NO_DIFF_PLACEHOLDER
    section = f"## File: {file.filename} ({file.status})\n\n### Diff\n```diff\n{diff_text}\n```\n"
    if file.content is None:
        return section
    if include_content:
        return section + f"\n### Full file content\n```{detect_language(file.filename)}\n{file.content}\n```\n"
    return section + f"\n### Full file content\n{CONTENT_OMITTED_NOTE}\n"


class _ChunkBuilder:
    """Tracks the character cost of the chunk currently being filled."""

    def __init__(self, manifest: str, budget: int):
        self.manifest = manifest
        self.budget = budget
        self.sections: list[FileSection] = []
        self.chars = len(manifest) + len(USER_PROMPT_SUFFIX)

    @property
    def is_empty(self) -> bool:
        return not self.sections

    def fits(self, text: str) -> bool:
        return _tokens_for_chars(self.chars + len(SECTION_SEPARATOR) + len(text)) <= self.budget

    def add(self, section: FileSection) -> None:
        self.sections.append(section)
        self.chars += len(SECTION_SEPARATOR) + len(section.text)

    def place(self, file: ChangedFile) -> FileSection | None:
        """Add the richest section that fits: full content first, then diff-only."""
        if file.content is not None:
            full = render_section(file, include_content=True)
            if self.fits(full):
                section = FileSection(file.filename, full, full_content=True)
                self.add(section)
                return section
        diff_only = render_section(file, include_content=False)
        if self.fits(diff_only):
            section = FileSection(file.filename, diff_only, full_content=False)
            self.add(section)
            return section
        return None

    def to_chunk(self) -> PromptChunk:
        return PromptChunk(manifest=self.manifest, sections=list(self.sections))


def build_chunks(files: list[ChangedFile], budget: int | None = None) -> ContextResult:
    """Pack changed files into token-bounded prompt chunks.

    Files are visited smallest diff first (a stable sort, so ties keep input
    order). For each file: diff + full content if it fits the current chunk,
    else diff-only. If neither fits, the current chunk is closed and both are
    retried in a fresh chunk; a file whose diff-only section does not fit even
    an empty chunk is dropped.
    """
    if budget is None:
        budget = effective_budget()

    manifest = build_manifest(files)
    ordered = sorted(files, key=lambda f: estimate_tokens(f.patch or ""))

    chunks: list[PromptChunk] = []
    omitted: list[str] = []
    dropped: list[str] = []
    current = _ChunkBuilder(manifest, budget)

    for file in ordered:
        placed = current.place(file)
        if placed is None and not current.is_empty:
            chunks.append(current.to_chunk())
            current = _ChunkBuilder(manifest, budget)
            placed = current.place(file)

        if placed is None:
            logger.debug("Dropping %s: diff does not fit an empty chunk", file.filename)
            dropped.append(file.filename)
        elif file.content is not None and not placed.full_content:
            omitted.append(file.filename)

    if not current.is_empty:
        chunks.append(current.to_chunk())

    if not chunks:
        # Nothing fit anywhere; still send the manifest so the model sees what changed.
        chunks.append(PromptChunk(manifest=manifest))

    return ContextResult(chunks=chunks, omitted_content=omitted, dropped=dropped)
