"""Record what happened to a PR's review once the PR is closed."""

from __future__ import annotations

import logging

from github import GithubException
from rich.console import Console

from prloop_core.gh.pull_request import build_thread_map, get_latest_replies, get_pull, get_repo
from prloop_core.lifecycle import RoundLifecycle, ThreadStatus
from prloop_store.base import BaseStore

console = Console()
logger = logging.getLogger(__name__)


def _thread_lookup(this_pr, repo: str, pr_number: int):
    """Return a comment-id → ThreadStatus callable.

    Thread state is fetched on the first call (one GraphQL query plus one
    listing of review comments). If a fetch fails every thread reads as
    unresolved with no reply.
    """
    cache: dict[str, dict] = {}

    def load() -> None:
        try:
            cache["threads"] = build_thread_map(this_pr, repo, pr_number)
        except (GithubException, KeyError, TypeError) as e:
            logger.warning("Could not fetch review threads for %s#%d: %s", repo, pr_number, e)
            cache["threads"] = {}
        try:
            cache["replies"] = get_latest_replies(this_pr)
        except GithubException as e:
            logger.warning("Could not fetch review replies for %s#%d: %s", repo, pr_number, e)
            cache["replies"] = {}

    def lookup(comment_id: int) -> ThreadStatus:
        if not cache:
            load()
        return ThreadStatus(
            resolved=cache["threads"].get(comment_id, False),
            latest_reply=cache["replies"].get(comment_id),
        )

    return lookup


def track_outcome(repo: str, pr_number: int, config: dict, store: BaseStore, repo_obj=None) -> bool:
    """Record Merged/Closed on the PR's run and classify the active round's comments.

    Returns False when the PR has no recorded run (nothing to update).
    """
    this_repo = repo_obj if repo_obj is not None else get_repo(repo, token=config["github_token"])
    try:
        this_pr = get_pull(this_repo, pr_number)
    except GithubException:
        raise ValueError(f"PR #{pr_number} not found in {repo}.")

    lifecycle = RoundLifecycle(store, repo, pr_number)
    try:
        merged = bool(this_pr.merged)
        merged_by = this_pr.merged_by.login if merged and this_pr.merged_by else None
        recorded = lifecycle.record_close(merged, merged_by, _thread_lookup(this_pr, repo, pr_number))
    finally:
        lifecycle.flush()

    if recorded:
        console.print(f"[green]Recorded outcome for {repo}#{pr_number}: {'Merged' if merged else 'Closed'}[/green]")
    else:
        console.print(f"[dim]No review history for {repo}#{pr_number}; nothing to record.[/dim]")
    return recorded
