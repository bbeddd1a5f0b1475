"""Abstract store interface.

Any team-specific storage backend (Gist, SQLite, Postgres, S3) implements
this interface. prloop_core depends on BaseStore, not on a concrete backend,
so backends are swappable without touching the review pipeline.

Every write returns an opaque id, or None when the backend keeps no history.
Callers treat a None id as "history disabled for this run".
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prloop_store.models import RunRecord


class BaseStore(ABC):
    """Pluggable persistence layer for run/round review history.

    Implementations must be safe to call from CI environments where no
    interactive credentials are available; all auth must happen via
    constructor arguments or environment variables resolved at init time.
    Writes may be buffered until flush().
    """

    @abstractmethod
    def find_run(self, name: str) -> RunRecord | None:
        """Return the most recent run named ``owner/repo#N`` under the review label, or None."""

    @abstractmethod
    def list_runs(self, repo: str, pr_number: int | None = None) -> list[RunRecord]:
        """Return runs for a repo in creation order, optionally filtered by PR number.

        Returns an empty list if no runs exist; never raises.
        """

    @abstractmethod
    def create_run(self, name: str, opts: dict, follow_up_of: str | None = None) -> str | None:
        """Create a run; ``follow_up_of`` links it to an upstream act id."""

    @abstractmethod
    def create_round(self, run_id: str, number: int, opts: dict) -> str | None:
        """Create a round group under a run."""

    @abstractmethod
    def create_comment_group(self, round_id: str, label: str, opts: dict) -> str | None:
        """Create a comment (or summary) group under a round."""

    @abstractmethod
    def record_outcome(self, target_id: str, name: str, opts: dict | None = None) -> str | None:
        """Attach a named outcome to a run, round or comment group."""

    @abstractmethod
    def record_act(self, outcome_id: str, name: str, opts: dict | None = None) -> str | None:
        """Record the next action expected after an outcome."""

    def flush(self) -> None:
        """Durably send any buffered writes.

        Default is a no-op for backends that write through.
        """

    def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Optional: subclasses that need cleanup should override this.
        Default is a no-op so callers can always call close() safely.
        """
