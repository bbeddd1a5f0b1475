"""Tests for configuration loading."""

import pytest

from prloop_core.config import load_config, load_skills


def test_defaults_applied_when_no_config_file(tmp_path):
    config = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    assert config["model"] == "anthropic"
    assert config["model_id"] is None
    assert config["max_files_per_review"] == 15
    assert config["ignore_patterns"] == []
    assert config["max_prev_feedback_chars"] == 4000
    assert config["context_window"] == 200000
    assert config["reserved_system_tokens"] == 4000
    assert config["reserved_response_tokens"] == 4000
    assert config["max_comments_per_file"] == 5
    assert config["max_comments_total"] == 20
    assert config["skills"] is None
    assert config["review_draft_prs"] is False
    assert config["store"] == "noop"


def test_config_file_overrides_defaults(tmp_path):
    cfg = tmp_path / ".loop.yml"
    cfg.write_text("model: openai\nmax_files_per_review: 30\ncontext_window: 128000\n")
    config = load_config(config_path=str(cfg))
    assert config["model"] == "openai"
    assert config["max_files_per_review"] == 30
    assert config["context_window"] == 128000


def test_ignore_patterns_loaded(tmp_path):
    cfg = tmp_path / ".loop.yml"
    cfg.write_text("ignore_patterns:\n  - migrations/\n  - '*.lock'\n")
    config = load_config(config_path=str(cfg))
    assert config["ignore_patterns"] == ["migrations/", "*.lock"]


def test_empty_config_file_uses_defaults(tmp_path):
    cfg = tmp_path / ".loop.yml"
    cfg.write_text("")
    assert load_config(config_path=str(cfg))["model"] == "anthropic"


def test_non_mapping_config_file_raises(tmp_path):
    cfg = tmp_path / ".loop.yml"
    cfg.write_text("- just\n- a list\n")
    with pytest.raises(ValueError):
        load_config(config_path=str(cfg))


def test_cli_overrides_config_file(tmp_path):
    cfg = tmp_path / ".loop.yml"
    cfg.write_text("model: openai\n")
    config = load_config(config_path=str(cfg), cli_overrides={"model": "anthropic"})
    assert config["model"] == "anthropic"


def test_none_cli_overrides_ignored(tmp_path):
    cfg = tmp_path / ".loop.yml"
    cfg.write_text("model: openai\n")
    config = load_config(config_path=str(cfg), cli_overrides={"model": None})
    assert config["model"] == "openai"


def test_custom_skills_path(tmp_path):
    skills_file = tmp_path / "my-skills.md"
    skills_file.write_text("# Custom Skills\n- Rule 1")
    cfg = tmp_path / ".loop.yml"
    cfg.write_text(f"skills: {skills_file}\n")
    config = load_config(config_path=str(cfg))
    assert "Custom Skills" in load_skills(config)


def test_repo_skills_file_preferred_over_builtin(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / ".prloop").mkdir()
    (tmp_path / ".prloop" / "skills.md").write_text("# Team rules")
    assert load_skills({"skills": None}) == "# Team rules"


def test_builtin_skills_loaded_as_fallback(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    content = load_skills(load_config(config_path="nonexistent.yml"))
    assert "What to flag" in content


def test_missing_custom_skills_raises(tmp_path):
    config = {"skills": str(tmp_path / "does-not-exist.md")}
    with pytest.raises(FileNotFoundError):
        load_skills(config)


def test_env_vars_loaded(monkeypatch):
    monkeypatch.setenv("GITHUB_TOKEN", "gh-token")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "ant-key")
    monkeypatch.setenv("OPENAI_API_KEY", "oai-key")
    config = load_config(config_path="nonexistent.yml")
    assert config["github_token"] == "gh-token"
    assert config["anthropic_api_key"] == "ant-key"
    assert config["openai_api_key"] == "oai-key"


def test_ignore_list_is_not_shared_reference(tmp_path):
    """Mutating one config's ignore list must not affect another."""
    config_a = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    config_b = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    config_a["ignore_patterns"].append("migrations/")
    assert config_b["ignore_patterns"] == []
