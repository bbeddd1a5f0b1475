"""CLI entry point for prloop.

Commands:
  review   run one AI review round on a pull request
  outcome  record what happened to a closed pull request's review
  action   GitHub Actions entry point; dispatches on the pull_request event
  init     interactive setup wizard for new teams
  history  display past review runs from the configured store
"""

from __future__ import annotations

import importlib.metadata
import logging
import os

import click
from rich.console import Console
from rich.logging import RichHandler

from prloop_cli.commands.action import action_cmd
from prloop_cli.commands.history import history_cmd
from prloop_cli.commands.init import init_cmd
from prloop_cli.commands.outcome import outcome_cmd
from prloop_cli.commands.review import review_cmd

console = Console()


def _build_store(config: dict):
    """Instantiate the configured store from .prloop.yml settings.

    Store selection hierarchy:
      store: gist   → GistStore  (requires gist_id and github_token)
      store: sqlite → SQLiteStore (requires store_path or uses .prloop.db)
      (default)     → NoOpStore  (no history; re-review and outcome tracking are off)

    This factory lives in cli.py so neither prloop_core nor prloop_store
    know about the CLI config format.
    """
    from prloop_store.noop import NoOpStore

    store_type = config.get("store", "noop")

    if store_type == "gist":
        from prloop_store.gist import GistStore

        gist_id = config.get("gist_id")
        token = config.get("gist_token") or config.get("github_token")
        if not gist_id or not token:
            console.print("[yellow]GistStore requires gist_id and a GitHub token. Falling back to no store.[/yellow]")
            return NoOpStore()
        return GistStore(gist_id=gist_id, token=token)

    if store_type == "sqlite":
        from prloop_store.sqlite import SQLiteStore

        db_path = config.get("store_path", ".prloop.db")
        return SQLiteStore(db_path=db_path)

    if store_type != "noop":
        console.print(f"[yellow]Unknown store {store_type!r}. Falling back to no store.[/yellow]")
    return NoOpStore()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=verbose)],
        force=True,
    )


@click.group()
@click.version_option(
    version=importlib.metadata.version("prloop"),
    prog_name="prloop",
)
@click.option(
    "--config",
    "config_path",
    default=".prloop.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRLOOP_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """AI code review for GitHub PRs that remembers earlier rounds."""
    from prloop_core.config import load_config
    from prloop_cli.auth import resolve_github_token

    _setup_logging(verbose)
    ctx.ensure_object(dict)

    config = load_config(config_path)
    # Gist writes need a PAT with gist scope; the Actions GITHUB_TOKEN has none.
    config["gist_token"] = config.get("gist_token") or os.environ.get("PRLOOP_GIST_TOKEN")

    # Resolve token early so all subcommands share the same resolution.
    token = resolve_github_token()
    if token:
        config["github_token"] = token

    store = _build_store(config)
    ctx.obj["store"] = store
    ctx.obj["config"] = config
    ctx.call_on_close(store.close)


main.add_command(review_cmd)
main.add_command(outcome_cmd)
main.add_command(action_cmd)
main.add_command(init_cmd)
main.add_command(history_cmd)
