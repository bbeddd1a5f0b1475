"""No-op store: the default when no store is configured.

Reviews are posted to GitHub but no history is kept: every lookup misses and
every write returns None, so re-review supersession and outcome tracking
simply do not activate. Using a NoOpStore rather than None lets the pipeline
always call the store without conditional checks.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prloop_store.base import BaseStore

if TYPE_CHECKING:
    from prloop_store.models import RunRecord


class NoOpStore(BaseStore):
    """Silently discards all records, zero configuration required."""

    def find_run(self, name: str) -> RunRecord | None:
        return None

    def list_runs(self, repo: str, pr_number: int | None = None) -> list[RunRecord]:
        return []

    def create_run(self, name: str, opts: dict, follow_up_of: str | None = None) -> str | None:
        return None

    def create_round(self, run_id: str, number: int, opts: dict) -> str | None:
        return None

    def create_comment_group(self, round_id: str, label: str, opts: dict) -> str | None:
        return None

    def record_outcome(self, target_id: str, name: str, opts: dict | None = None) -> str | None:
        return None

    def record_act(self, outcome_id: str, name: str, opts: dict | None = None) -> str | None:
        return None
