"""review command: run one AI review round on a pull request."""

from __future__ import annotations

import click
from rich.console import Console

from prloop_cli.auth import require_credentials
from prloop_core.gh.pull_request import get_pull_requests, get_repo
from prloop_core.reviewer import run_review

console = Console()


@click.command("review")
@click.option("--repo", required=True, help="GitHub repository in owner/name format.")
@click.option(
    "--pr",
    "pr_number",
    type=int,
    default=None,
    help="Pull request number. Omit to list open PRs interactively.",
)
@click.option(
    "--model",
    type=click.Choice(["anthropic", "openai"]),
    default=None,
    help="AI model provider. Overrides config file.",
)
@click.option(
    "--skills",
    "skills_path",
    default=None,
    help="Path to a Markdown skills file. Overrides config file.",
)
@click.option(
    "--shadow",
    "-s",
    is_flag=True,
    help="Dry-run mode: print review comments without posting to GitHub or recording history.",
)
@click.pass_context
def review_cmd(
    ctx,
    repo: str,
    pr_number: int | None,
    model: str | None,
    skills_path: str | None,
    shadow: bool,
):
    """Review a pull request and post one COMMENT review with inline comments.

    If the PR was reviewed before, the previous round is superseded (its
    review dismissed) and its comments are given to the model so it does
    not repeat or contradict itself.

    \b
    Required environment variables:
      GITHUB_TOKEN         GitHub personal access token (or use gh CLI)
      ANTHROPIC_API_KEY    Required when using --model anthropic
      OPENAI_API_KEY       Required when using --model openai
    """
    config = dict(ctx.obj["config"])
    for key, value in {"model": model, "skills": skills_path}.items():
        if value is not None:
            config[key] = value
    require_credentials(config)

    this_repo = get_repo(repo, token=config["github_token"])

    if pr_number is None:
        prs = list(get_pull_requests(this_repo))
        if not prs:
            console.print("[yellow]No open pull requests found.[/yellow]")
            return
        console.print("\nOpen pull requests:")
        for pr in prs:
            console.print(f"  [bold]#{pr.number}[/bold]  {pr.title}")
        pr_number = click.prompt("\nEnter the pull request number", type=int)

    try:
        summary = run_review(
            repo=repo,
            pr_number=pr_number,
            config=config,
            store=ctx.obj.get("store"),
            shadow=shadow,
            repo_obj=this_repo,
        )
    except (ValueError, FileNotFoundError) as e:
        raise click.ClickException(str(e))

    if summary is not None and summary.error:
        ctx.exit(1)
