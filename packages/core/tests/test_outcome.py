"""Tests for outcome tracking on PR close."""

from unittest.mock import MagicMock

import pytest
from github import GithubException

from prloop_core.lifecycle import RoundLifecycle
from prloop_core.outcome import _thread_lookup, track_outcome
from prloop_store.models import ACCEPTED, IGNORED, MERGED
from prloop_store.sqlite import SQLiteStore

REPO = "owner/repo"


@pytest.fixture
def store(tmp_path):
    s = SQLiteStore(db_path=str(tmp_path / "history.db"))
    yield s
    s.close()


def _seed_round(store, comment_ids):
    lifecycle = RoundLifecycle(store, REPO, 5)
    ctx = lifecycle.begin()
    lifecycle.open_round(ctx, {"sha": "a" * 40})
    comments = [{"file": "a.py", "line": i + 1, "body": f"issue {i}", "category": "bug"} for i in range(len(comment_ids))]
    lifecycle.commit_outcome(ctx, comments)
    lifecycle.record_comments(ctx, comments, comment_ids, {})
    lifecycle.flush()


def _closed_pr(merged=True, login="octocat"):
    pr = MagicMock()
    pr.merged = merged
    pr.merged_by.login = login
    return pr


def _repo_with(pr):
    repo = MagicMock()
    repo.get_pull.return_value = pr
    return repo


class TestTrackOutcome:
    def test_classifies_comments_from_thread_state(self, mocker, store):
        _seed_round(store, [101, 102])
        mocker.patch("prloop_core.outcome.build_thread_map", return_value={101: True, 102: False})
        mocker.patch("prloop_core.outcome.get_latest_replies", return_value={102: "out of scope"})

        assert track_outcome(REPO, 5, {}, store, repo_obj=_repo_with(_closed_pr())) is True

        run = store.find_run("owner/repo#5")
        assert [(o.name, o.opts) for o in run.outcomes] == [(MERGED, {"merged_by": "octocat"})]
        groups = {g.opts["github_comment_id"]: g for g in run.rounds[0].comment_groups}
        assert groups[101].outcomes[0].name == ACCEPTED
        assert groups[102].outcomes[0].name == IGNORED
        assert groups[102].outcomes[0].opts == {"reason": "out of scope"}

    def test_unknown_pr_makes_no_thread_calls(self, mocker, store):
        thread_map = mocker.patch("prloop_core.outcome.build_thread_map")
        assert track_outcome(REPO, 5, {}, store, repo_obj=_repo_with(_closed_pr())) is False
        thread_map.assert_not_called()

    def test_closed_unmerged(self, mocker, store):
        _seed_round(store, [])
        track_outcome(REPO, 5, {}, store, repo_obj=_repo_with(_closed_pr(merged=False)))
        assert store.find_run("owner/repo#5").terminal_outcome == "Closed"

    def test_missing_pr_raises_value_error(self, store):
        repo = MagicMock()
        repo.get_pull.side_effect = GithubException(404, {}, None)
        with pytest.raises(ValueError, match="PR #5 not found"):
            track_outcome(REPO, 5, {}, store, repo_obj=repo)

    def test_builds_repo_from_token(self, mocker, store):
        get_repo = mocker.patch("prloop_core.outcome.get_repo", return_value=_repo_with(_closed_pr()))
        track_outcome(REPO, 5, {"github_token": "gh-token"}, store)
        get_repo.assert_called_once_with(REPO, token="gh-token")


class TestThreadLookup:
    def test_fetches_once(self, mocker):
        thread_map = mocker.patch("prloop_core.outcome.build_thread_map", return_value={1: True})
        replies = mocker.patch("prloop_core.outcome.get_latest_replies", return_value={2: "nope"})
        lookup = _thread_lookup(MagicMock(), REPO, 5)

        assert lookup(1).resolved is True
        second = lookup(2)
        assert second.resolved is False
        assert second.latest_reply == "nope"
        thread_map.assert_called_once()
        replies.assert_called_once()

    def test_fetch_failure_reads_as_unresolved(self, mocker):
        mocker.patch("prloop_core.outcome.build_thread_map", side_effect=GithubException(502, {}, None))
        mocker.patch("prloop_core.outcome.get_latest_replies", side_effect=GithubException(502, {}, None))
        status = _thread_lookup(MagicMock(), REPO, 5)(1)
        assert status.resolved is False
        assert status.latest_reply is None
