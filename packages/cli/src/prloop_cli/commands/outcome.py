"""outcome command: record what happened to a closed pull request's review."""

from __future__ import annotations

import click

from prloop_cli.auth import require_credentials
from prloop_core.outcome import track_outcome


@click.command("outcome")
@click.option("--repo", required=True, help="GitHub repository in owner/name format.")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.pass_context
def outcome_cmd(ctx, repo: str, pr_number: int):
    """Record Merged/Closed for a PR and whether its review comments were accepted.

    Comments whose threads were resolved count as accepted; the rest count
    as ignored, with the author's latest reply kept as the reason. Does
    nothing for PRs prloop never reviewed.
    """
    config = ctx.obj["config"]
    require_credentials(config, need_model=False)
    try:
        track_outcome(repo, pr_number, config, ctx.obj["store"])
    except ValueError as e:
        raise click.ClickException(str(e))
