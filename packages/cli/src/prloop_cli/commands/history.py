"""history command: display past review runs from the store."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from prloop_store.models import RunRecord

console = Console()

_VERDICT_STYLE = {
    "Approved": "green",
    "Changes Requested": "red",
    "Merged": "green",
    "Closed": "dim",
    "Error": "red",
}


def _styled(name: str | None) -> str:
    if not name:
        return "[dim]—[/dim]"
    style = _VERDICT_STYLE.get(name, "yellow")
    return f"[{style}]{name}[/{style}]"


def _comment_stats(run: RunRecord) -> str:
    accepted = ignored = 0
    for rnd in run.rounds:
        for group in rnd.comment_groups:
            names = {o.name for o in group.outcomes}
            accepted += "Accepted" in names
            ignored += "Ignored" in names
    if not (accepted or ignored):
        return ""
    return f"{accepted} accepted / {ignored} ignored"


@click.command("history")
@click.option("--repo", required=True, help="GitHub repository (owner/name).")
@click.option("--pr", "pr_number", type=int, default=None, help="Filter by PR number.")
@click.option("--limit", default=20, show_default=True, help="Maximum number of runs to show.")
@click.pass_context
def history_cmd(ctx, repo: str, pr_number: int | None, limit: int):
    """Show past review runs for a repository, one row per round.

    Reads from the configured store (Gist or SQLite). Run `prloop init` to
    set up a store if you haven't already.
    """
    from prloop_store.noop import NoOpStore

    store = ctx.obj.get("store") if ctx.obj else None
    if store is None or isinstance(store, NoOpStore):
        raise click.UsageError(
            "No store configured. Add 'store: sqlite' or 'store: gist' to .prloop.yml, "
            "or run `prloop init` to set one up."
        )

    runs = store.list_runs(repo, pr_number=pr_number)
    if not runs:
        console.print("[yellow]No review runs found.[/yellow]")
        return

    # Most recent first, capped at --limit.
    runs = list(reversed(runs))[:limit]

    table = Table(title=f"Review History: {repo}", show_header=True, header_style="bold cyan")
    table.add_column("PR", style="bold", width=6)
    table.add_column("Round", justify="right", width=6)
    table.add_column("SHA", width=8)
    table.add_column("Verdict", width=18)
    table.add_column("Comments", justify="right", width=9)
    table.add_column("Run outcome", width=28)
    table.add_column("Reviewed At", width=20)

    for run in runs:
        run_cell = _styled(run.terminal_outcome)
        stats = _comment_stats(run)
        if stats:
            run_cell += f"\n[dim]{stats}[/dim]"
        if not run.rounds:
            table.add_row(f"#{run.pr_number}", "—", "", "", "", run_cell, run.created_at[:19].replace("T", " "))
            continue
        for i, rnd in enumerate(sorted(run.rounds, key=lambda r: r.number)):
            verdict = "Superseded" if rnd.is_superseded else ("Error" if rnd.error else rnd.verdict)
            table.add_row(
                f"#{run.pr_number}" if i == 0 else "",
                str(rnd.number),
                (rnd.head_sha or "")[:7],
                _styled(verdict),
                str(len(rnd.comment_groups)),
                run_cell if i == 0 else "",
                (rnd.created_at or "")[:19].replace("T", " "),
            )

    console.print(table)
