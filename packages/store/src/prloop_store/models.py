"""Run/round history data models.

Decoupled from prloop_core so the store layer can be used independently
and prloop_core has no knowledge of persistence concerns.

A run is the lifetime record of one pull request. Each review attempt is a
round group under the run; each posted inline comment (plus one "_summary"
entry) is a comment group under its round. Outcomes attach to any of the
three by id, and an act (the next action expected) attaches to an outcome.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

RUN_LABEL = "Code Review"
SUMMARY_LABEL = "_summary"

SUPERSEDED = "Superseded"
CHANGES_REQUESTED = "Changes Requested"
APPROVED = "Approved"
MERGED = "Merged"
CLOSED = "Closed"
ACCEPTED = "Accepted"
IGNORED = "Ignored"
ACTIVE = "Active"


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def run_name(repo: str, pr_number: int) -> str:
    return f"{repo}#{pr_number}"


@dataclass
class OutcomeRecord:
    id: str
    target_id: str
    name: str
    opts: dict = field(default_factory=dict)
    recorded_at: str = ""


@dataclass
class CommentGroupRecord:
    """One posted inline comment, or the round's "_summary" entry."""

    id: str
    round_id: str
    label: str
    opts: dict = field(default_factory=dict)
    outcomes: list[OutcomeRecord] = field(default_factory=list)

    @property
    def is_summary(self) -> bool:
        return self.label == SUMMARY_LABEL


@dataclass
class RoundRecord:
    id: str
    run_id: str
    number: int
    opts: dict = field(default_factory=dict)
    created_at: str = ""
    groups: list[CommentGroupRecord] = field(default_factory=list)
    outcomes: list[OutcomeRecord] = field(default_factory=list)

    @property
    def head_sha(self) -> str:
        return self.opts.get("sha", "")

    @property
    def is_superseded(self) -> bool:
        return any(o.name == SUPERSEDED for o in self.outcomes)

    @property
    def summary(self) -> CommentGroupRecord | None:
        return next((g for g in self.groups if g.is_summary), None)

    @property
    def comment_groups(self) -> list[CommentGroupRecord]:
        return [g for g in self.groups if not g.is_summary]

    @property
    def error(self) -> str:
        """Why the round posted no review, when it failed."""
        return (self.summary.opts.get("error") or "") if self.summary else ""

    @property
    def verdict(self) -> str:
        """The round's classification outcome, if one was committed."""
        for o in self.outcomes:
            if o.name in (CHANGES_REQUESTED, APPROVED):
                return o.name
        return ""


@dataclass
class RunRecord:
    """The review history of one pull request, rounds in creation order."""

    id: str
    name: str
    label: str = RUN_LABEL
    opts: dict = field(default_factory=dict)
    follow_up_of: str | None = None
    created_at: str = ""
    rounds: list[RoundRecord] = field(default_factory=list)
    outcomes: list[OutcomeRecord] = field(default_factory=list)

    @property
    def repo(self) -> str:
        return self.opts.get("repo", "")

    @property
    def pr_number(self) -> int:
        return self.opts.get("pr", 0)

    @property
    def terminal_outcome(self) -> str:
        for o in self.outcomes:
            if o.name in (MERGED, CLOSED):
                return o.name
        return ""


def assemble_run(run_row: dict, group_rows: list[dict], outcome_rows: list[dict]) -> RunRecord:
    """Build a RunRecord tree from flat rows, as both backends persist them.

    group_rows must be in creation order; each has kind "round" or "comment".
    outcome_rows may include outcomes for unrelated targets; they are ignored.
    """
    outcomes_by_target: dict[str, list[OutcomeRecord]] = {}
    for row in outcome_rows:
        outcome = OutcomeRecord(
            id=row["id"],
            target_id=row["target_id"],
            name=row["name"],
            opts=row.get("opts") or {},
            recorded_at=row.get("recorded_at", ""),
        )
        outcomes_by_target.setdefault(outcome.target_id, []).append(outcome)

    run = RunRecord(
        id=run_row["id"],
        name=run_row["name"],
        label=run_row.get("label", RUN_LABEL),
        opts=run_row.get("opts") or {},
        follow_up_of=run_row.get("follow_up_of"),
        created_at=run_row.get("created_at", ""),
        outcomes=outcomes_by_target.get(run_row["id"], []),
    )

    rounds: dict[str, RoundRecord] = {}
    for row in group_rows:
        if row["kind"] == "round":
            opts = row.get("opts") or {}
            rounds[row["id"]] = RoundRecord(
                id=row["id"],
                run_id=run.id,
                number=int(opts.get("round", 0)),
                opts=opts,
                created_at=row.get("created_at", ""),
                outcomes=outcomes_by_target.get(row["id"], []),
            )
    for row in group_rows:
        if row["kind"] == "comment" and row.get("parent_id") in rounds:
            rounds[row["parent_id"]].groups.append(
                CommentGroupRecord(
                    id=row["id"],
                    round_id=row["parent_id"],
                    label=row["label"],
                    opts=row.get("opts") or {},
                    outcomes=outcomes_by_target.get(row["id"], []),
                )
            )

    run.rounds = list(rounds.values())
    return run
