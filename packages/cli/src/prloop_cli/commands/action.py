"""action command: GitHub Actions entry point.

Reads the pull_request event payload that Actions writes to
GITHUB_EVENT_PATH and runs the matching command: a review for opened,
synchronize and reopened events, outcome tracking for closed ones.
"""

from __future__ import annotations

import json

import click
from rich.console import Console

from prloop_cli.commands.outcome import outcome_cmd
from prloop_cli.commands.review import review_cmd

console = Console()

REVIEW_ACTIONS = ("opened", "synchronize", "reopened")


def read_event(event_path: str) -> dict:
    try:
        with open(event_path, encoding="utf-8") as f:
            event = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise click.UsageError(f"Could not read event payload {event_path}: {e}")
    if not isinstance(event, dict) or "pull_request" not in event:
        raise click.UsageError("Event payload has no pull_request; run prloop from a pull_request workflow.")
    return event


@click.command("action")
@click.option(
    "--event-path",
    envvar="GITHUB_EVENT_PATH",
    required=True,
    help="Path to the GitHub event JSON. Defaults to $GITHUB_EVENT_PATH.",
)
@click.pass_context
def action_cmd(ctx, event_path: str):
    """Run prloop for the pull_request event that triggered this workflow."""
    event = read_event(event_path)
    action = event.get("action")
    repo = event.get("repository", {}).get("full_name")
    pr_number = event["pull_request"].get("number")
    if not repo or not pr_number:
        raise click.UsageError("Event payload is missing repository.full_name or pull_request.number.")

    if action == "closed":
        ctx.invoke(outcome_cmd, repo=repo, pr_number=pr_number)
    elif action in REVIEW_ACTIONS:
        ctx.invoke(review_cmd, repo=repo, pr_number=pr_number)
    else:
        console.print(f"[dim]Ignoring pull_request action {action!r}.[/dim]")
