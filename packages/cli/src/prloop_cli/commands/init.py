"""init command: interactive setup wizard for new teams.

Writes .prloop.yml, a starter .prloop/skills.md the team can edit, and
optionally a GitHub Actions workflow that runs `prloop action` on every
pull_request event (including `closed`, so outcomes get recorded).
"""

from __future__ import annotations

import importlib.metadata
import logging
import os
import subprocess
import tempfile
from pathlib import Path

import click
import yaml
from rich.console import Console

from prloop_core.config import BUILTIN_SKILLS_PATH, REPO_SKILLS_PATH

console = Console()
logger = logging.getLogger(__name__)

_WORKFLOW_PATH = Path(".github/workflows/prloop.yml")
_WORKFLOW_TEMPLATE = """\
name: prloop review

on:
  pull_request:
    types: [opened, synchronize, reopened, closed]

jobs:
  review:
    runs-on: ubuntu-latest
    permissions:
      contents: read
      pull-requests: write

    steps:
      - uses: actions/checkout@v4

      - name: Set up Python
        uses: actions/setup-python@v5
        with:
          python-version: "3.12"

      - name: Install prloop
        run: pip install "prloop[{provider}]=={version}"

      - name: Run prloop
        env:
          GITHUB_TOKEN: ${{{{ secrets.GITHUB_TOKEN }}}}
          {api_key_env}: ${{{{ secrets.{api_key_env} }}}}{gist_env}
        run: prloop action
"""
_GIST_ENV = "\n          PRLOOP_GIST_TOKEN: ${{ secrets.PRLOOP_GIST_TOKEN }}"


@click.command("init")
@click.option("--repo", default=None, help="GitHub repository (owner/name). Auto-detected from git remote.")
def init_cmd(repo: str | None):
    """Set up prloop for your repository.

    Creates .prloop.yml and .prloop/skills.md, optionally creates a shared
    GitHub Gist for review history, and generates a GitHub Actions workflow.
    """
    console.print("\n[bold cyan]prloop init[/bold cyan]: repository setup\n")

    if repo is None:
        repo = _detect_repo_from_git()
        if repo:
            console.print(f"[dim]Detected repository: {repo}[/dim]")
        else:
            repo = click.prompt("GitHub repository (owner/name)")

    provider = click.prompt(
        "AI provider",
        type=click.Choice(["anthropic", "openai"]),
        default="anthropic",
    )
    api_key_env = "ANTHROPIC_API_KEY" if provider == "anthropic" else "OPENAI_API_KEY"
    model_id = click.prompt("Model id (blank for the provider default)", default="", show_default=False)

    console.print("\nReview history store (needed for re-review rounds and outcome tracking):")
    console.print("  [bold]none[/bold]    no history")
    console.print("  [bold]sqlite[/bold]  local SQLite file (good for solo use)")
    console.print("  [bold]gist[/bold]    shared GitHub Gist, zero infrastructure (recommended for CI)")
    store_type = click.prompt(
        "Store backend",
        type=click.Choice(["none", "sqlite", "gist"]),
        default="gist",
    )

    config: dict = {"model": provider}
    if model_id:
        config["model_id"] = model_id

    if store_type == "sqlite":
        db_path = click.prompt("SQLite database path", default=".prloop.db")
        config["store"] = "sqlite"
        if db_path != ".prloop.db":
            config["store_path"] = db_path
        console.print(f"[green]SQLite store configured at {db_path}[/green]")

    elif store_type == "gist":
        console.print(
            "\n[yellow]Note:[/yellow] the Gist store needs a token with [bold]gist[/bold] scope. "
            "The built-in GITHUB_TOKEN in Actions does not cover Gists; "
            "store a PAT as the PRLOOP_GIST_TOKEN repository secret."
        )
        gist_id = _create_team_gist(repo)
        if gist_id:
            console.print(f"[green]Created history Gist: {gist_id}[/green]")
            config["store"] = "gist"
            config["gist_id"] = gist_id
        else:
            console.print("[yellow]Gist creation failed; add store: gist and gist_id to .prloop.yml manually.[/yellow]")

    _write_config(config)
    console.print("[green]Wrote .prloop.yml[/green]")

    if _write_skills():
        console.print(f"[green]Created {REPO_SKILLS_PATH}; edit it to tune what prloop flags.[/green]")
    else:
        console.print(f"[dim]{REPO_SKILLS_PATH} already exists, left unchanged.[/dim]")

    if click.confirm(f"\nGenerate {_WORKFLOW_PATH} for GitHub Actions?", default=True):
        _write_workflow(provider, api_key_env, gist=config.get("store") == "gist")
        console.print(f"[green]Created {_WORKFLOW_PATH}[/green]")
        console.print(
            f"\n[yellow]Remember to add [bold]{api_key_env}[/bold] to your "
            "GitHub repository secrets (Settings → Secrets → Actions).[/yellow]"
        )

    console.print("\n[bold green]Setup complete![/bold green]")
    console.print(f"Run a review with: [bold]prloop review --repo {repo} --pr <number>[/bold]")


def _detect_repo_from_git() -> str | None:
    """Try to detect the GitHub repo slug from the git remote URL."""
    try:
        result = subprocess.run(
            ["git", "remote", "get-url", "origin"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    url = result.stdout.strip()
    # https://github.com/owner/repo.git and git@github.com:owner/repo.git
    if "github.com" not in url:
        return None
    slug = url.split("github.com")[-1].lstrip("/:").removesuffix(".git")
    return slug if "/" in slug else None


def _create_team_gist(repo: str) -> str | None:
    """Create a private Gist holding an empty history document and return its ID."""
    # gh names Gist files after the uploaded path, so the file must carry the store's name.
    with tempfile.TemporaryDirectory() as tmp_dir:
        named_path = os.path.join(tmp_dir, "prloop_history.json")
        with open(named_path, "w", encoding="utf-8") as f:
            f.write('{"runs": [], "groups": [], "outcomes": [], "acts": []}')
        try:
            result = subprocess.run(
                ["gh", "gist", "create", "--public=false", "--desc", f"prloop review history for {repo}", named_path],
                capture_output=True,
                text=True,
                timeout=15,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            logger.warning("Could not run gh gist create: %s", e)
            return None

    if result.returncode == 0:
        return result.stdout.strip().rstrip("/").split("/")[-1]
    logger.warning("gh gist create failed: %s", result.stderr.strip())
    return None


def _write_config(config: dict) -> None:
    """Write or update .prloop.yml, preserving any existing keys."""
    path = Path(".prloop.yml")
    existing: dict = {}
    if path.exists():
        existing = yaml.safe_load(path.read_text()) or {}
    existing.update(config)
    path.write_text(yaml.dump(existing, default_flow_style=False, sort_keys=False))


def _write_skills() -> bool:
    """Copy the built-in skills into the repo unless the team already has its own."""
    if REPO_SKILLS_PATH.exists():
        return False
    REPO_SKILLS_PATH.parent.mkdir(parents=True, exist_ok=True)
    REPO_SKILLS_PATH.write_text(BUILTIN_SKILLS_PATH.read_text())
    return True


def _write_workflow(provider: str, api_key_env: str, gist: bool = False) -> None:
    """Write the GitHub Actions workflow file."""
    _WORKFLOW_PATH.parent.mkdir(parents=True, exist_ok=True)
    _WORKFLOW_PATH.write_text(
        _WORKFLOW_TEMPLATE.format(
            provider=provider,
            api_key_env=api_key_env,
            version=importlib.metadata.version("prloop"),
            gist_env=_GIST_ENV if gist else "",
        )
    )
