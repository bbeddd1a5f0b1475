"""Core PR review orchestration: one invocation runs one review round."""

from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from github import GithubException
from rich.console import Console

from prloop_core.config import load_skills
from prloop_core.gh.pull_request import (
    dismiss_review,
    get_diff,
    get_file_content,
    get_pull,
    get_repo,
    get_review_comment_ids,
    post_review,
    to_changed_file,
)
from prloop_core.lifecycle import RoundContext, RoundLifecycle, build_previous_feedback_section
from prloop_core.providers.anthropic import AnthropicReviewer
from prloop_core.providers.base import ContextTooLargeError, ReviewerError
from prloop_core.providers.openai import OpenAIReviewer
from prloop_core.utils.code import detect_languages, is_code_file
from prloop_core.utils.context import build_chunks, effective_budget
from prloop_core.utils.diff import extract_snippet
from prloop_core.validation import apply_comment_caps, normalize_category, validate_comments
from prloop_store.base import BaseStore
from prloop_store.noop import NoOpStore

console = Console()
logger = logging.getLogger(__name__)

_CATEGORY_COLOR = {"bug": "red", "security": "red", "concurrency": "yellow", "performance": "yellow"}


@dataclass
class ReviewSummary:
    """Result returned by run_review, used by the CLI for reporting."""

    repo: str
    pr_number: int
    head_sha: str
    round_number: int = 1
    outcome: str | None = None  # "Changes Requested" | "Approved" | None when the round failed
    reviewed_files: list[str] = field(default_factory=list)
    skipped_files: list[str] = field(default_factory=list)
    truncated_count: int = 0
    chunk_count: int = 0
    oversize_chunks: int = 0
    comments_generated: int = 0
    comments_dropped: int = 0
    total_comments: int = 0
    comments: list[dict] = field(default_factory=list)
    review_id: int | None = None
    too_large: bool = False
    error: str | None = None  # set when the model API was unavailable
    reviewed_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


def _get_reviewer(config: dict):
    model = config["model"]
    if model == "anthropic":
        return AnthropicReviewer(api_key=config["anthropic_api_key"], model=config.get("model_id"))
    if model == "openai":
        return OpenAIReviewer(api_key=config["openai_api_key"], model=config.get("model_id"))
    raise ValueError(f"Unknown model provider: {model!r}. Choose 'anthropic' or 'openai'.")


def _is_excluded(filename: str, patterns: list[str]) -> bool:
    """Return True if filename matches any ignore pattern.

    Supports:
    - fnmatch globs on the full path: "src/generated/*.py"
    - fnmatch globs on the basename: "*.lock", "*.min.js"
    - Directory names/prefixes: "migrations/", "tests" (matches any file within that tree)
    """
    for pattern in patterns:
        if fnmatch.fnmatch(filename, pattern):
            return True
        if fnmatch.fnmatch(filename.rsplit("/", 1)[-1], pattern):
            return True
        prefix = pattern.rstrip("/") + "/"
        if filename.startswith(prefix) or ("/" + prefix) in filename:
            return True
    return False


def select_files(diff_files, ignore_patterns: list[str], max_files: int) -> tuple[list, list[str], int]:
    """Split changed files into (files to review, skipped names, total reviewable count).

    Removed files, ignored paths and non-code files are skipped; what remains
    is capped at max_files in the host's order.
    """
    reviewable, skipped = [], []
    for f in diff_files:
        if f.status == "removed" or _is_excluded(f.filename, ignore_patterns) or not is_code_file(f.filename):
            skipped.append(f.filename)
        else:
            reviewable.append(f)
    return reviewable[:max_files], skipped, len(reviewable)


def act_marker(act_id: str | None) -> str:
    return f"\n\n<!-- prloop:act:{act_id} -->" if act_id else ""


def _build_summary(
    comments: list[dict],
    files_reviewed: int,
    total_reviewable: int,
    truncated_count: int = 0,
    dropped_count: int = 0,
    oversize_chunks: int = 0,
    round_number: int = 1,
    act_id: str | None = None,
) -> str:
    """Build the top-level review body posted as the GitHub review description."""
    notes = []
    if total_reviewable > files_reviewed:
        notes.append(
            f"Reviewed {files_reviewed}/{total_reviewable} files. "
            "Increase `max_files_per_review` in `.prloop.yml` to review more."
        )
    if truncated_count:
        notes.append(f"Context was truncated for {truncated_count} large file(s).")
    if oversize_chunks:
        notes.append(f"{oversize_chunks} batch(es) were too large for the model and were skipped.")
    if dropped_count:
        notes.append(f"{dropped_count} comment(s) referenced lines outside the diff and were dropped.")

    heading = "## prloop review" + (f" (round {round_number})" if round_number > 1 else "")
    lines = [heading, ""]

    if comments:
        file_count = len({c["file"] for c in comments})
        lines.append(f"> Found **{len(comments)}** issue(s) in **{file_count}** file(s).")
        lines.append("")

        by_file: dict[str, dict[str, int]] = {}
        for c in comments:
            counts = by_file.setdefault(c["file"], {})
            category = normalize_category(c)
            counts[category] = counts.get(category, 0) + 1
        lines.append("| File | Comments | Categories |")
        lines.append("|------|:--------:|------------|")
        for path, counts in by_file.items():
            cats = ", ".join(f"{name} ×{n}" if n > 1 else name for name, n in sorted(counts.items()))
            lines.append(f"| `{path}` | {sum(counts.values())} | {cats} |")
        lines.append("")
        lines.append(f"Most critical: {comments[0]['body'][:100]}")
    else:
        lines.append(f"> Reviewed {files_reviewed} file(s), no issues found.")

    if notes:
        lines.append("")
        lines.append(" ".join(notes))

    return "\n".join(lines) + act_marker(act_id)


def _build_notice(reason: str) -> str:
    return f"## prloop review\n\n> {reason}"


def print_shadow_comments(comments: list[dict], file_patches: dict[str, str | None]) -> None:
    """Print review comments to the terminal without posting to GitHub."""
    if not comments:
        console.print("[yellow]Shadow mode: no comments generated.[/yellow]")
        return
    console.print(f"\n[bold]Shadow review: {len(comments)} comment(s) (not posted)[/bold]\n")
    for c in comments:
        category = normalize_category(c)
        color = _CATEGORY_COLOR.get(category, "blue")
        console.print(
            f"[bold cyan]{c['file']}[/bold cyan]  line [bold]{c['line']}[/bold]  [{color}]{category.upper()}[/{color}]"
        )
        snippet = extract_snippet(file_patches.get(c["file"]), c["line"])
        if snippet:
            for snippet_line in snippet.splitlines():
                console.print(f"  [dim]{snippet_line}[/dim]", highlight=False)
        console.print(f"  {c['body']}")
        console.print()


def _post_notice(this_repo, this_pr, head_sha: str, body: str, shadow: bool) -> int | None:
    if shadow:
        console.print(f"[yellow]{body}[/yellow]")
        return None
    review = post_review(this_repo, this_pr, head_sha, body, [])
    return review.id


def run_review(
    repo: str,
    pr_number: int,
    config: dict,
    store: BaseStore | None = None,
    shadow: bool = False,
    repo_obj=None,
) -> ReviewSummary | None:
    """Run one review round for a PR and return a ReviewSummary.

    Returns None only for skipped PRs (drafts). Shadow mode prints the
    comments instead of posting them and records nothing in the store.
    """
    # Configuration errors surface here, before any GitHub call or store write.
    reviewer = _get_reviewer(config)
    skills = load_skills(config)

    this_repo = repo_obj if repo_obj is not None else get_repo(repo, token=config["github_token"])

    try:
        this_pr = get_pull(this_repo, pr_number)
    except GithubException:
        raise ValueError(f"PR #{pr_number} not found in {repo}.")

    if this_pr.draft and not config.get("review_draft_prs", False):
        console.print("[yellow]Skipping draft PR. Set review_draft_prs: true in .prloop.yml to review drafts.[/yellow]")
        return None

    head_sha = this_pr.head.sha
    if shadow or store is None:
        store = NoOpStore()
    lifecycle = RoundLifecycle(store, repo, pr_number)

    try:
        ctx = lifecycle.begin(
            this_pr.body or "",
            {"title": this_pr.title, "author": getattr(this_pr.user, "login", None)},
        )
        return _review_round(
            this_repo, this_pr, repo, pr_number, head_sha, config, reviewer, skills, lifecycle, ctx, shadow
        )
    finally:
        lifecycle.flush()


def _review_round(
    this_repo,
    this_pr,
    repo: str,
    pr_number: int,
    head_sha: str,
    config: dict,
    reviewer,
    skills: str,
    lifecycle: RoundLifecycle,
    ctx: RoundContext,
    shadow: bool,
) -> ReviewSummary:
    summary = ReviewSummary(repo=repo, pr_number=pr_number, head_sha=head_sha, round_number=ctx.number)

    selected, skipped, total_reviewable = select_files(
        list(get_diff(this_pr)),
        config.get("ignore_patterns", []),
        config.get("max_files_per_review", 15),
    )
    summary.skipped_files = skipped
    for name in skipped:
        console.print(f"  Skipping: {name}")

    changed = [
        to_changed_file(f, get_file_content(this_repo, f.filename, head_sha, getattr(f, "sha", None)))
        for f in selected
    ]
    file_patches = {f.filename: f.patch for f in changed}
    summary.reviewed_files = [f.filename for f in changed]

    budget = effective_budget(
        config.get("context_window", 200000),
        config.get("reserved_system_tokens", 4000),
        config.get("reserved_response_tokens", 4000),
    )
    context = build_chunks(changed, budget)
    summary.chunk_count = len(context.chunks)
    summary.truncated_count = context.truncated_count

    lifecycle.open_round(
        ctx,
        {
            "sha": head_sha,
            "files_reviewed": len(changed),
            "chunks": len(context.chunks),
            "context_truncated": context.truncated_count > 0,
            "languages": detect_languages(summary.reviewed_files),
            "reviewed_at": summary.reviewed_at,
        },
        dismiss=lambda review_id: dismiss_review(this_pr, review_id, head_sha),
    )
    if ctx.number > 1:
        console.print(f"[cyan]Re-review: round {ctx.number} for {repo}#{pr_number}[/cyan]")

    if not changed:
        console.print("[yellow]No reviewable files in this PR.[/yellow]")

    previous = build_previous_feedback_section(ctx.previous_feedback, config.get("max_prev_feedback_chars", 4000))

    proposals: list = []
    for i, chunk in enumerate(context.chunks if changed else [], 1):
        console.print(f"\n[[{i}/{len(context.chunks)}]] Reviewing {len(chunk.filenames)} file(s)")
        try:
            found = reviewer.review(
                chunk.text,
                skills,
                title=this_pr.title or "",
                description=this_pr.body or "",
                previous_feedback=previous,
            )
        except ContextTooLargeError as e:
            logger.warning("Chunk %d exceeds the model context, skipping: %s", i, e)
            summary.oversize_chunks += 1
            continue
        except ReviewerError as e:
            summary.error = str(e)
            console.print(f"[red]Model unavailable: {e}[/red]")
            review_id = _post_notice(
                this_repo,
                this_pr,
                head_sha,
                _build_notice("Review could not complete: the model API was unavailable. Push again to retry."),
                shadow,
            )
            lifecycle.record_summary(ctx, {"error": str(e), "github_review_id": review_id})
            return summary
        console.print(f"  {len(found)} comment(s) proposed.")
        proposals.extend(found)

    if changed and summary.oversize_chunks == len(context.chunks):
        summary.too_large = True
        review_id = _post_notice(
            this_repo,
            this_pr,
            head_sha,
            _build_notice("This PR is too large to review: every batch exceeded the model's context window."),
            shadow,
        )
        lifecycle.record_summary(ctx, {"error": "too large", "github_review_id": review_id})
        return summary

    validation = validate_comments(proposals, file_patches)
    comments = apply_comment_caps(
        validation.valid,
        config.get("max_comments_per_file", 5),
        config.get("max_comments_total", 20),
    )
    summary.comments_generated = len(proposals)
    summary.comments_dropped = len(validation.dropped)
    summary.total_comments = len(comments)
    summary.comments = comments
    summary.outcome = "Changes Requested" if comments else "Approved"

    if shadow:
        print_shadow_comments(comments, file_patches)
        console.print(f"[bold]Shadow review complete. {len(comments)} comment(s) would be posted.[/bold]")
        return summary

    act_id = lifecycle.commit_outcome(ctx, comments)
    body = _build_summary(
        comments,
        files_reviewed=len(changed),
        total_reviewable=total_reviewable,
        truncated_count=context.truncated_count,
        dropped_count=len(validation.dropped),
        oversize_chunks=summary.oversize_chunks,
        round_number=ctx.number,
        act_id=act_id,
    )
    try:
        review = post_review(this_repo, this_pr, head_sha, body, comments)
    except GithubException as e:
        logger.warning("Could not post review for %s#%d: %s", repo, pr_number, e)
        console.print(f"[red]Failed to post review: {e}[/red]")
        summary.error = f"post failed: {e}"
        summary.outcome = None
        lifecycle.record_summary(
            ctx,
            {
                "error": summary.error,
                "comments_generated": summary.comments_generated,
                "comments_posted": 0,
                "github_review_id": None,
            },
        )
        return summary
    summary.review_id = review.id
    console.print(f"\n[green]Review posted: {summary.outcome}. {len(comments)} comment(s).[/green]")

    comment_ids: list[int] = []
    if comments:
        try:
            comment_ids = get_review_comment_ids(this_pr, review.id)
        except GithubException as e:
            logger.warning("Could not fetch comment ids for review %s: %s", review.id, e)

    lifecycle.record_comments(ctx, comments, comment_ids, file_patches)
    lifecycle.record_summary(
        ctx,
        {
            "comments_generated": summary.comments_generated,
            "comments_posted": len(comments),
            "comments_dropped": summary.comments_dropped,
            "github_review_id": review.id,
        },
    )
    return summary
