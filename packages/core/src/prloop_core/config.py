import os
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "model": "anthropic",  # provider: "anthropic" | "openai"
    "model_id": None,  # None = provider default
    "max_files_per_review": 15,
    "ignore_patterns": [],  # fnmatch patterns or directory names to skip (e.g. "migrations/", "*.min.js")
    "max_prev_feedback_chars": 4000,
    "context_window": 200000,
    "reserved_system_tokens": 4000,
    "reserved_response_tokens": 4000,
    "max_comments_per_file": 5,
    "max_comments_total": 20,
    "skills": None,  # None = use built-in default; set to a path string to override
    "review_draft_prs": False,
    "store": "noop",  # "noop" | "sqlite" | "gist"
}

BUILTIN_SKILLS_PATH = Path(__file__).parent / "skills.md"
REPO_SKILLS_PATH = Path(".prloop") / "skills.md"


def load_config(config_path: str = ".prloop.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prloop.yml in the current directory
      3. CLI argument overrides
    """
    config = {**DEFAULT_CONFIG, "ignore_patterns": list(DEFAULT_CONFIG["ignore_patterns"])}

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        if not isinstance(file_config, dict):
            raise ValueError(f"{config_path} must contain a YAML mapping, got {type(file_config).__name__}.")
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Resolve credentials from environment variables
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")
    config["openai_api_key"] = os.environ.get("OPENAI_API_KEY")

    return config


def load_skills(config: dict) -> str:
    """
    Load the reviewer skills prompt.

    If ``skills`` is set in config, loads from that path (relative to cwd).
    Otherwise uses .prloop/skills.md when the repo has one (written by
    ``prloop init``), then the built-in default.
    """
    custom_path = config.get("skills")
    if custom_path:
        p = Path(custom_path)
        if not p.exists():
            raise FileNotFoundError(f"Skills file not found: {custom_path}")
        return p.read_text()

    if REPO_SKILLS_PATH.exists():
        return REPO_SKILLS_PATH.read_text()

    if BUILTIN_SKILLS_PATH.exists():
        return BUILTIN_SKILLS_PATH.read_text()

    raise FileNotFoundError("No skills configured and built-in default is missing.")
