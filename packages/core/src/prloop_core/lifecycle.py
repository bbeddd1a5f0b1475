"""Multi-round review lifecycle for one pull request.

A pull request's review history is a run holding rounds in creation order.
Each new review event opens round N+1 and, in the same step, marks round N
Superseded; the active round is therefore always the highest-numbered round
without a Superseded outcome. Comments from earlier rounds are carried into
the next prompt so the model does not contradict itself, and when the PR
closes the active round's comments are classified from thread resolution.

All state lives in the store and is read once per invocation. Store failures
never abort a review: they are logged and history features switch off.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable

from prloop_core.utils.diff import extract_snippet
from prloop_core.validation import normalize_category
from prloop_store.base import BaseStore
from prloop_store.models import (
    ACCEPTED,
    ACTIVE,
    APPROVED,
    CHANGES_REQUESTED,
    CLOSED,
    IGNORED,
    MERGED,
    SUMMARY_LABEL,
    SUPERSEDED,
    RoundRecord,
    RunRecord,
    run_name,
)

logger = logging.getLogger(__name__)

MAX_PREV_FEEDBACK_CHARS = 4000
ACT_MARKER_RE = re.compile(r"<!-- prloop:act:(act_\w+) -->")

_FEEDBACK_TRUNCATED = "(earlier rounds truncated)"
_FEEDBACK_HEADER = """## Previous review rounds

You have reviewed this PR before. Below are your comments from previous rounds.
The author pushed changes after each round to address your feedback.

Do NOT contradict or re-raise issues from previous rounds. If the author
correctly addressed a previous comment, that issue is resolved; do not suggest
reversing it. Only flag genuinely new issues not covered below.
"""


@dataclass
class RoundFeedback:
    round: int
    sha: str
    comments: list[dict] = field(default_factory=list)


@dataclass
class ThreadStatus:
    resolved: bool
    latest_reply: str | None = None


@dataclass
class RoundContext:
    """Where a review round sits in its run. run_id is None when history is disabled."""

    run_id: str | None
    number: int = 1
    previous_feedback: list[RoundFeedback] = field(default_factory=list)
    active_round: RoundRecord | None = None
    round_id: str | None = None

    @property
    def history_enabled(self) -> bool:
        return self.run_id is not None


def find_active_round(run: RunRecord) -> RoundRecord | None:
    """Return the highest-numbered round that has not been superseded."""
    for rnd in sorted(run.rounds, key=lambda r: r.number, reverse=True):
        if not rnd.is_superseded:
            return rnd
    return None


def next_round_number(run: RunRecord) -> int:
    active = find_active_round(run)
    if active is not None:
        return active.number + 1
    return max((r.number for r in run.rounds), default=0) + 1


def collect_previous_feedback(run: RunRecord) -> list[RoundFeedback]:
    """Return every round's posted comments, oldest round first; rounds without comments are skipped."""
    feedback = []
    for rnd in sorted(run.rounds, key=lambda r: r.number):
        comments = [
            {
                "file": g.opts.get("file", ""),
                "line": g.opts.get("line", 0),
                "category": g.opts.get("category") or "other",
                "body": g.opts.get("body", ""),
            }
            for g in rnd.comment_groups
        ]
        if comments:
            feedback.append(RoundFeedback(round=rnd.number, sha=rnd.head_sha, comments=comments))
    return feedback


def _render_round(feedback: RoundFeedback) -> str:
    lines = [f"### Round {feedback.round} ({(feedback.sha or '')[:7]})"]
    for c in feedback.comments:
        lines.append(f"- `{c['file']}:{c['line']}` ({c['category']}): \"{c['body']}\"")
    return "\n".join(lines) + "\n"


def build_previous_feedback_section(feedback: list[RoundFeedback], max_chars: int = MAX_PREV_FEEDBACK_CHARS) -> str:
    """Render prior rounds for the system prompt, within max_chars.

    Rounds are kept newest first; once the next older round would exceed the
    budget it and every round before it are dropped and a truncation note is
    shown. Kept rounds are rendered oldest first.
    """
    if not feedback:
        return ""

    kept: list[str] = []
    # Header, truncation note and their joins are always reserved.
    used = len(_FEEDBACK_HEADER) + len(_FEEDBACK_TRUNCATED) + 3
    truncated = False
    for fb in reversed(feedback):
        block = _render_round(fb)
        if used + len(block) + 1 > max_chars:
            truncated = True
            break
        kept.append(block)
        used += len(block) + 1

    parts = [_FEEDBACK_HEADER]
    if truncated:
        parts.append(_FEEDBACK_TRUNCATED + "\n")
    parts.extend(reversed(kept))
    return "\n".join(parts) + "\n"


def parse_act_marker(text: str | None) -> str | None:
    """Return the upstream act id embedded in a PR body, if any."""
    match = ACT_MARKER_RE.search(text or "")
    return match.group(1) if match else None


class RoundLifecycle:
    """Drives one PR's run through the store: begin → open_round → commit → record."""

    def __init__(self, store: BaseStore, repo: str, pr_number: int):
        self.store = store
        self.repo = repo
        self.pr_number = pr_number
        self.name = run_name(repo, pr_number)

    def _safely(self, action: str, fn: Callable, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            logger.warning("Store %s failed (%s): %s", action, type(e).__name__, e)
            return None

    def find_run(self) -> RunRecord | None:
        return self._safely("lookup", self.store.find_run, self.name)

    # ------------------------------------------------------------------ #
    # Review events                                                        #
    # ------------------------------------------------------------------ #

    def begin(self, pr_body: str = "", run_opts: dict | None = None) -> RoundContext:
        """Locate (or create) the run for this PR and work out the next round."""
        try:
            run = self.store.find_run(self.name)
        except Exception as e:
            logger.warning("Store unreachable, skipping re-review detection: %s", e)
            return RoundContext(run_id=None)

        if run is not None:
            return RoundContext(
                run_id=run.id,
                number=next_round_number(run),
                previous_feedback=collect_previous_feedback(run),
                active_round=find_active_round(run),
            )

        upstream_act = parse_act_marker(pr_body)
        opts = {"repo": self.repo, "pr": self.pr_number, **(run_opts or {})}
        run_id = self._safely("create_run", self.store.create_run, self.name, opts, follow_up_of=upstream_act)
        if upstream_act and run_id:
            logger.info("Run %s linked as follow-up of %s", run_id, upstream_act)
        return RoundContext(run_id=run_id)

    def open_round(
        self,
        ctx: RoundContext,
        opts: dict,
        dismiss: Callable[[int], object] | None = None,
    ) -> RoundContext:
        """Create round N+1, then supersede round N and retract its posted review.

        Dismissal is best effort; the caller's dismiss callable is expected to
        log and swallow its own failures.
        """
        if not ctx.history_enabled:
            return ctx

        ctx.round_id = self._safely("create_round", self.store.create_round, ctx.run_id, ctx.number, opts)
        previous = ctx.active_round
        if ctx.round_id is None or previous is None:
            return ctx

        review_id = previous.summary.opts.get("github_review_id") if previous.summary else None
        if review_id and dismiss is not None:
            dismiss(review_id)
        self._safely("supersede", self.store.record_outcome, previous.id, SUPERSEDED, {"by_round": ctx.number})
        return ctx

    def commit_outcome(self, ctx: RoundContext, valid_comments: list[dict]) -> str | None:
        """Classify the round and record the next action; returns the act id, if any."""
        if ctx.round_id is None:
            return None
        has_issues = bool(valid_comments)
        name = CHANGES_REQUESTED if has_issues else APPROVED
        outcome_id = self._safely(
            "outcome", self.store.record_outcome, ctx.round_id, name, {"comments": len(valid_comments)}
        )
        if outcome_id is None:
            return None
        return self._safely(
            "act",
            self.store.record_act,
            outcome_id,
            "revise" if has_issues else "merge",
            {"pr": self.pr_number, "repo": self.repo},
        )

    def record_comments(
        self,
        ctx: RoundContext,
        comments: list[dict],
        comment_ids: list[int],
        file_patches: dict[str, str | None],
    ) -> None:
        """Record one group per posted comment; ids are matched by submission order."""
        if ctx.round_id is None:
            return
        for i, c in enumerate(comments):
            opts = {
                "file": c["file"],
                "line": c["line"],
                "body": c["body"],
                "category": normalize_category(c),
                "github_comment_id": comment_ids[i] if i < len(comment_ids) else None,
            }
            snippet = extract_snippet(file_patches.get(c["file"]), c["line"])
            if snippet:
                opts["snippet"] = snippet
            self._safely("comment_group", self.store.create_comment_group, ctx.round_id, f"{c['file']}:{c['line']}", opts)

    def record_summary(self, ctx: RoundContext, opts: dict) -> None:
        if ctx.round_id is None:
            return
        self._safely("summary", self.store.create_comment_group, ctx.round_id, SUMMARY_LABEL, opts)

    # ------------------------------------------------------------------ #
    # Close event                                                          #
    # ------------------------------------------------------------------ #

    def record_close(
        self,
        merged: bool,
        merged_by: str | None,
        thread_status: Callable[[int], ThreadStatus],
    ) -> bool:
        """Record the run's terminal outcome and classify the active round's comments.

        Returns False when there is no run to update (the PR predates
        tracking, or the store is unavailable).
        """
        run = self.find_run()
        if run is None:
            return False

        if run.terminal_outcome:
            logger.info("Run %s already closed as %s", run.id, run.terminal_outcome)
        elif merged:
            self._safely("outcome", self.store.record_outcome, run.id, MERGED, {"merged_by": merged_by})
        else:
            self._safely("outcome", self.store.record_outcome, run.id, CLOSED, {})

        active = find_active_round(run)
        if active is None:
            return True
        if not any(o.name == ACTIVE for o in active.outcomes):
            self._safely("outcome", self.store.record_outcome, active.id, ACTIVE, {})

        for group in active.comment_groups:
            if any(o.name in (ACCEPTED, IGNORED) for o in group.outcomes):
                continue
            comment_id = group.opts.get("github_comment_id")
            if not comment_id:
                continue
            status = thread_status(comment_id)
            if status.resolved:
                self._safely("outcome", self.store.record_outcome, group.id, ACCEPTED, {})
            else:
                opts = {"reason": status.latest_reply} if status.latest_reply else {}
                self._safely("outcome", self.store.record_outcome, group.id, IGNORED, opts)
        return True

    def flush(self) -> None:
        """Send buffered history; a failure here is logged, never raised."""
        try:
            self.store.flush()
        except Exception as e:
            logger.warning("Failed to flush review history: %s", e)
