from __future__ import annotations

import base64
import logging

from github import Github, GithubException

from prloop_core.utils.context import ChangedFile

logger = logging.getLogger(__name__)

MAX_REPLY_CHARS = 280

_THREADS_QUERY = """
query($owner: String!, $name: String!, $number: Int!, $after: String) {
  repository(owner: $owner, name: $name) {
    pullRequest(number: $number) {
      reviewThreads(first: 100, after: $after) {
        pageInfo { hasNextPage endCursor }
        nodes {
          isResolved
          comments(first: 1) { nodes { databaseId } }
        }
      }
    }
  }
}
"""


def get_repo(repo_name: str, token: str):
    return Github(token).get_repo(repo_name)


def get_pull(repo, pr_number: int):
    return repo.get_pull(pr_number)


def get_pull_requests(repo, state: str = "open"):
    return repo.get_pulls(state=state)


def get_diff(pr):
    return pr.get_files()


def get_file_content(repo, path: str, ref: str, blob_sha: str | None = None) -> str | None:
    """Return the decoded text of a file at ``ref``, or None when it cannot be read.

    The contents API refuses files over 1 MB (``encoding == "none"``); those are
    read through the git blob instead.
    """
    try:
        contents = repo.get_contents(path, ref=ref)
        if not isinstance(contents, list) and contents.encoding != "none":
            return contents.decoded_content.decode("utf-8", errors="replace")
    except GithubException as e:
        if not blob_sha:
            logger.warning("Could not fetch %s@%s: %s", path, ref[:7], e)
            return None

    if not blob_sha:
        return None
    try:
        blob = repo.get_git_blob(blob_sha)
        return base64.b64decode(blob.content).decode("utf-8", errors="replace")
    except (GithubException, ValueError) as e:
        logger.warning("Could not fetch blob %s for %s: %s", blob_sha[:7], path, e)
        return None


def to_changed_file(file, content: str | None = None) -> ChangedFile:
    return ChangedFile(
        filename=file.filename,
        status=file.status,
        patch=file.patch,
        content=content,
        sha=getattr(file, "sha", None),
    )


def post_review(repo, pr, head_sha: str, body: str, comments: list[dict]):
    """Post one COMMENT review pinned to ``head_sha`` with right-side line comments."""
    api_comments = [{"path": c["file"], "line": c["line"], "side": "RIGHT", "body": c["body"]} for c in comments]
    return pr.create_review(
        commit=repo.get_commit(head_sha),
        body=body,
        event="COMMENT",
        comments=api_comments,
    )


def get_review_comment_ids(pr, review_id: int) -> list[int]:
    """Return the ids of a review's comments in the order they were submitted."""
    return [c.id for c in pr.get_single_review_comments(review_id)]


def dismiss_review(pr, review_id: int, head_sha: str) -> bool:
    """Dismiss an earlier review. Returns False (and logs) when GitHub refuses."""
    try:
        pr.get_review(review_id).dismiss(f"Superseded by new review after commit {head_sha[:7]}")
        return True
    except GithubException as e:
        logger.warning("Could not dismiss review %s: %s", review_id, e)
        return False


def build_thread_map(pr, repo_full_name: str, pr_number: int) -> dict[int, bool]:
    """Map each review thread's root comment id to whether the thread is resolved."""
    owner, name = repo_full_name.split("/", 1)
    threads: dict[int, bool] = {}
    after = None
    while True:
        _, data = pr._requester.graphql_query(
            _THREADS_QUERY, {"owner": owner, "name": name, "number": pr_number, "after": after}
        )
        page = data["data"]["repository"]["pullRequest"]["reviewThreads"]
        for node in page["nodes"]:
            roots = node["comments"]["nodes"]
            if roots and roots[0].get("databaseId") is not None:
                threads[roots[0]["databaseId"]] = bool(node["isResolved"])
        if not page["pageInfo"]["hasNextPage"]:
            return threads
        after = page["pageInfo"]["endCursor"]


def get_latest_replies(pr) -> dict[int, str]:
    """Map root comment id to the latest human reply in its thread, truncated."""
    replies: dict[int, str] = {}
    for c in pr.get_review_comments():
        root = getattr(c, "in_reply_to_id", None)
        if not root:
            continue
        user = getattr(c, "user", None)
        if user is not None and getattr(user, "type", "User") == "Bot":
            continue
        replies[root] = (c.body or "")[:MAX_REPLY_CHARS]
    return replies
