"""Tests for store backends: NoOpStore, SQLiteStore, GistStore and the shared model assembly."""

from __future__ import annotations

import json
import re
from unittest.mock import MagicMock, patch

import pytest

from prloop_store.gist import GistStore
from prloop_store.models import SUPERSEDED, RunRecord, assemble_run, run_name
from prloop_store.noop import NoOpStore
from prloop_store.sqlite import SQLiteStore

ID_RE = r"^{}_[0-9a-f]{{16}}$"


def _populate(store, repo="owner/repo", pr_number=1, rounds=2):
    """Write one run with `rounds` rounds, each holding one comment and a summary."""
    run_id = store.create_run(run_name(repo, pr_number), {"repo": repo, "pr": pr_number})
    round_ids = []
    for n in range(1, rounds + 1):
        round_id = store.create_round(run_id, n, {"sha": f"{n}" * 40})
        store.create_comment_group(round_id, f"src/a.py:{n}", {"file": "src/a.py", "line": n, "body": "bug"})
        store.create_comment_group(round_id, "_summary", {"github_review_id": 500 + n})
        round_ids.append(round_id)
    store.flush()
    return run_id, round_ids


# ---------------------------------------------------------------------------
# NoOpStore
# ---------------------------------------------------------------------------


class TestNoOpStore:
    def test_writes_return_none(self):
        store = NoOpStore()
        assert store.create_run("owner/repo#1", {}) is None
        assert store.create_round("run_x", 1, {}) is None
        assert store.create_comment_group("grp_x", "a.py:1", {}) is None
        assert store.record_outcome("grp_x", SUPERSEDED) is None
        assert store.record_act("oc_x", "revise") is None

    def test_reads_miss(self):
        store = NoOpStore()
        assert store.find_run("owner/repo#1") is None
        assert store.list_runs("owner/repo") == []
        store.flush()
        store.close()


# ---------------------------------------------------------------------------
# SQLiteStore
# ---------------------------------------------------------------------------


class TestSQLiteStore:
    @pytest.fixture
    def store(self, tmp_path):
        s = SQLiteStore(db_path=str(tmp_path / "prloop.db"))
        yield s
        s.close()

    def test_ids_are_prefixed(self, store):
        run_id, (round_id, _) = _populate(store)
        outcome_id = store.record_outcome(round_id, SUPERSEDED, {"by_round": 2})
        act_id = store.record_act(outcome_id, "revise")
        assert re.match(ID_RE.format("run"), run_id)
        assert re.match(ID_RE.format("grp"), round_id)
        assert re.match(ID_RE.format("oc"), outcome_id)
        assert re.match(ID_RE.format("act"), act_id)

    def test_find_run_assembles_tree(self, store):
        run_id, round_ids = _populate(store)
        store.record_outcome(round_ids[0], SUPERSEDED, {"by_round": 2})

        run = store.find_run("owner/repo#1")

        assert run.id == run_id
        assert run.repo == "owner/repo"
        assert run.pr_number == 1
        assert [r.number for r in run.rounds] == [1, 2]
        assert run.rounds[0].is_superseded
        assert run.rounds[1].head_sha == "2" * 40
        assert [g.label for g in run.rounds[1].comment_groups] == ["src/a.py:2"]
        assert run.rounds[1].summary.opts == {"github_review_id": 502}

    def test_find_run_misses(self, store):
        assert store.find_run("owner/repo#404") is None

    def test_find_run_returns_latest_by_name(self, store):
        store.create_run("owner/repo#1", {"repo": "owner/repo", "pr": 1})
        latest = store.create_run("owner/repo#1", {"repo": "owner/repo", "pr": 1})
        assert store.find_run("owner/repo#1").id == latest

    def test_list_runs_filters_repo_and_pr(self, store):
        _populate(store, pr_number=1)
        _populate(store, pr_number=2)
        _populate(store, repo="other/repo", pr_number=1)
        assert [r.pr_number for r in store.list_runs("owner/repo")] == [1, 2]
        assert [r.pr_number for r in store.list_runs("owner/repo", pr_number=2)] == [2]
        assert store.list_runs("nobody/repo") == []

    def test_outcomes_attach_to_their_target(self, store):
        run_id, (round_id,) = _populate(store, rounds=1)
        group = store.find_run("owner/repo#1").rounds[0].comment_groups[0]
        store.record_outcome(run_id, "Merged", {"merged_by": "octocat"})
        store.record_outcome(group.id, "Ignored", {"reason": "later"})

        run = store.find_run("owner/repo#1")
        assert run.terminal_outcome == "Merged"
        assert run.rounds[0].outcomes == []
        assert run.rounds[0].comment_groups[0].outcomes[0].opts == {"reason": "later"}

    def test_comment_group_for_unknown_round(self, store):
        assert store.create_comment_group("grp_missing", "a.py:1", {}) is None

    def test_follow_up_of_persisted(self, store):
        store.create_run("owner/repo#9", {"repo": "owner/repo", "pr": 9}, follow_up_of="act_0000000000000001")
        assert store.find_run("owner/repo#9").follow_up_of == "act_0000000000000001"

    def test_persists_across_connections_after_flush(self, tmp_path):
        db_path = str(tmp_path / "shared.db")
        store_a = SQLiteStore(db_path=db_path)
        _populate(store_a)
        store_a.close()

        store_b = SQLiteStore(db_path=db_path)
        assert len(store_b.find_run("owner/repo#1").rounds) == 2
        store_b.close()


# ---------------------------------------------------------------------------
# GistStore
# ---------------------------------------------------------------------------


def _make_gist_mock(doc: dict | None = None):
    """Return a mock Gist whose prloop_history.json holds ``doc`` (no file when None)."""
    gist = MagicMock()
    if doc is None:
        gist.files = {}
    else:
        file_mock = MagicMock()
        file_mock.content = json.dumps(doc)
        gist.files = {"prloop_history.json": file_mock}
    return gist


@pytest.fixture
def gh():
    with patch("prloop_store.gist.Github") as github_cls, patch(
        "prloop_store.gist.InputFileContent", side_effect=lambda content: content
    ):
        yield github_cls.return_value


def _edited_doc(gist) -> dict:
    files = gist.edit.call_args.kwargs["files"]
    return json.loads(files["prloop_history.json"])


class TestGistStore:
    def test_constructs_client_with_token(self):
        with patch("prloop_store.gist.Github") as github_cls:
            GistStore(gist_id="abc123", token="tok")
        github_cls.assert_called_once_with("tok")

    def test_document_is_read_lazily_once(self, gh):
        gh.get_gist.return_value = _make_gist_mock({"runs": [], "groups": [], "outcomes": [], "acts": []})
        store = GistStore(gist_id="abc123", token="tok")
        gh.get_gist.assert_not_called()

        store.find_run("owner/repo#1")
        store.list_runs("owner/repo")
        _populate(store)

        gh.get_gist.assert_called_once_with("abc123")

    def test_writes_are_sent_on_flush_only(self, gh):
        gist = _make_gist_mock(None)
        gh.get_gist.return_value = gist
        store = GistStore(gist_id="abc123", token="tok")

        run_id = store.create_run("owner/repo#1", {"repo": "owner/repo", "pr": 1})
        store.create_round(run_id, 1, {"sha": "a" * 40})
        gist.edit.assert_not_called()

        store.flush()
        gist.edit.assert_called_once()
        doc = _edited_doc(gist)
        assert [r["id"] for r in doc["runs"]] == [run_id]
        assert doc["groups"][0]["opts"] == {"sha": "a" * 40, "round": 1}

    def test_flush_without_changes_does_not_edit(self, gh):
        gist = _make_gist_mock({"runs": []})
        gh.get_gist.return_value = gist
        store = GistStore(gist_id="abc123", token="tok")
        store.find_run("owner/repo#1")
        store.flush()
        gist.edit.assert_not_called()

    def test_round_trip_through_document(self, gh):
        gist = _make_gist_mock(None)
        gh.get_gist.return_value = gist
        writer = GistStore(gist_id="abc123", token="tok")
        run_id, round_ids = _populate(writer)
        writer.record_outcome(round_ids[0], SUPERSEDED, {"by_round": 2})
        writer.flush()

        gh.get_gist.return_value = _make_gist_mock(_edited_doc(gist))
        run = GistStore(gist_id="abc123", token="tok").find_run("owner/repo#1")

        assert run.id == run_id
        assert [r.is_superseded for r in run.rounds] == [True, False]
        assert run.rounds[1].summary.opts["github_review_id"] == 502

    def test_corrupt_document_reads_as_empty(self, gh):
        gist = MagicMock()
        broken = MagicMock()
        broken.content = "{not json"
        gist.files = {"prloop_history.json": broken}
        gh.get_gist.return_value = gist
        assert GistStore(gist_id="abc123", token="tok").list_runs("owner/repo") == []

    def test_unreadable_gist_disables_store(self, gh):
        gh.get_gist.side_effect = Exception("404 Not Found")
        store = GistStore(gist_id="abc123", token="tok")

        assert store.find_run("owner/repo#1") is None
        assert store.create_run("owner/repo#1", {}) is None
        store.flush()

        gh.get_gist.assert_called_once()

    def test_flush_failure_does_not_raise(self, gh, caplog):
        gist = _make_gist_mock(None)
        gist.edit.side_effect = Exception("403 Forbidden")
        gh.get_gist.return_value = gist
        store = GistStore(gist_id="abc123", token="tok")
        store.create_run("owner/repo#1", {"repo": "owner/repo", "pr": 1})

        store.flush()

        assert "GistStore.flush() failed" in caplog.text

    def test_flush_failure_hints_at_token_in_actions(self, gh, caplog, monkeypatch):
        monkeypatch.setenv("GITHUB_ACTIONS", "true")
        gist = _make_gist_mock(None)
        gist.edit.side_effect = Exception("403 Forbidden")
        gh.get_gist.return_value = gist
        store = GistStore(gist_id="abc123", token="tok")
        store.create_run("owner/repo#1", {})

        store.flush()

        assert "GITHUB_TOKEN" in caplog.text

    def test_no_token_hint_outside_actions(self, gh, caplog, monkeypatch):
        monkeypatch.delenv("GITHUB_ACTIONS", raising=False)
        gist = _make_gist_mock(None)
        gist.edit.side_effect = Exception("403 Forbidden")
        gh.get_gist.return_value = gist
        store = GistStore(gist_id="abc123", token="tok")
        store.create_run("owner/repo#1", {})

        store.flush()

        assert "GITHUB_TOKEN" not in caplog.text


# ---------------------------------------------------------------------------
# assemble_run
# ---------------------------------------------------------------------------


class TestAssembleRun:
    def test_orphan_comment_groups_and_foreign_outcomes_are_ignored(self):
        run = assemble_run(
            {"id": "run_1", "name": "owner/repo#1", "opts": {"repo": "owner/repo", "pr": 1}},
            [
                {"id": "grp_r", "kind": "round", "label": "Review 1", "opts": {"round": 1}},
                {"id": "grp_c", "kind": "comment", "parent_id": "grp_r", "label": "a.py:1", "opts": {}},
                {"id": "grp_x", "kind": "comment", "parent_id": "grp_gone", "label": "b.py:1", "opts": {}},
            ],
            [{"id": "oc_1", "target_id": "grp_elsewhere", "name": "Accepted"}],
        )
        assert isinstance(run, RunRecord)
        (rnd,) = run.rounds
        assert [g.id for g in rnd.groups] == ["grp_c"]
        assert rnd.outcomes == []
        assert run.terminal_outcome == ""

    def test_verdict_reads_classification_outcome(self):
        run = assemble_run(
            {"id": "run_1", "name": "n"},
            [{"id": "grp_r", "kind": "round", "label": "Review 1", "opts": {"round": 1}}],
            [
                {"id": "oc_1", "target_id": "grp_r", "name": "Changes Requested"},
                {"id": "oc_2", "target_id": "grp_r", "name": SUPERSEDED},
            ],
        )
        assert run.rounds[0].verdict == "Changes Requested"
        assert run.rounds[0].is_superseded
