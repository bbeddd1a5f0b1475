"""GistStore: zero-infrastructure team review history via GitHub Gist.

Data format: a single JSON file named `prloop_history.json` inside the Gist,
holding four flat arrays (runs, groups, outcomes, acts) with the same
fields as the SQLite tables.

The document is read once, on first use. Writes are applied to the in-memory
copy and only sent back to GitHub by flush(), so a review round costs one read
and one write regardless of how many records it creates.
"""

from __future__ import annotations

import json
import logging
import os

from github import Github, InputFileContent

from prloop_store.base import BaseStore
from prloop_store.models import RUN_LABEL, RunRecord, assemble_run, new_id, utc_now

logger = logging.getLogger(__name__)

_GIST_FILENAME = "prloop_history.json"
_SECTIONS = ("runs", "groups", "outcomes", "acts")


class GistStore(BaseStore):
    """Stores run/round history in a GitHub Gist as one JSON document.

    Suitable for teams with hundreds or low thousands of runs. For very
    high-volume teams switch to SQLiteStore.

    If the Gist cannot be read, the store disables itself for the rest of the
    process: lookups miss, writes return None and flush() does nothing, so a
    partially loaded document can never overwrite the real one.
    """

    def __init__(self, gist_id: str, token: str):
        self._gist_id = gist_id
        self._gh = Github(token)
        self._gist = None
        self._doc: dict | None = None
        self._available = True
        self._dirty = False

    def _get_gist(self):
        return self._gh.get_gist(self._gist_id)

    def _load(self) -> dict | None:
        if self._doc is not None or not self._available:
            return self._doc
        try:
            self._gist = self._get_gist()
            self._doc = self._read_document(self._gist)
        except Exception as e:
            logger.warning("GistStore: could not read history (%s): %s", type(e).__name__, e)
            self._available = False
        return self._doc

    @staticmethod
    def _read_document(gist) -> dict:
        """Read the JSON document from the Gist file; a missing or corrupt file reads as empty."""
        doc: dict = {}
        file_obj = gist.files.get(_GIST_FILENAME)
        if file_obj is not None:
            try:
                doc = json.loads(file_obj.content) or {}
            except (json.JSONDecodeError, AttributeError):
                logger.warning("GistStore: %s is not valid JSON, starting empty", _GIST_FILENAME)
                doc = {}
        if not isinstance(doc, dict):
            doc = {}
        for section in _SECTIONS:
            doc.setdefault(section, [])
        return doc

    # -- reads -------------------------------------------------------------

    def find_run(self, name: str) -> RunRecord | None:
        doc = self._load()
        if doc is None:
            return None
        matches = [r for r in doc["runs"] if r.get("label") == RUN_LABEL and r.get("name") == name]
        return self._assemble(doc, matches[-1]) if matches else None

    def list_runs(self, repo: str, pr_number: int | None = None) -> list[RunRecord]:
        doc = self._load()
        if doc is None:
            return []
        runs = [r for r in doc["runs"] if r.get("repo") == repo]
        if pr_number is not None:
            runs = [r for r in runs if r.get("pr_number") == pr_number]
        return [self._assemble(doc, r) for r in runs]

    @staticmethod
    def _assemble(doc: dict, run_row: dict) -> RunRecord:
        run_id = run_row["id"]
        groups = [g for g in doc["groups"] if g.get("run_id") == run_id]
        outcomes = [o for o in doc["outcomes"] if o.get("run_id") == run_id]
        return assemble_run(run_row, groups, outcomes)

    # -- writes ------------------------------------------------------------

    def _append(self, section: str, row: dict) -> str | None:
        doc = self._load()
        if doc is None:
            return None
        doc[section].append(row)
        self._dirty = True
        return row["id"]

    def _find_group(self, group_id: str) -> dict | None:
        doc = self._load() or {"groups": []}
        return next((g for g in doc["groups"] if g.get("id") == group_id), None)

    def create_run(self, name: str, opts: dict, follow_up_of: str | None = None) -> str | None:
        return self._append(
            "runs",
            {
                "id": new_id("run"),
                "name": name,
                "label": RUN_LABEL,
                "repo": opts.get("repo"),
                "pr_number": opts.get("pr"),
                "follow_up_of": follow_up_of,
                "opts": opts,
                "created_at": utc_now(),
            },
        )

    def create_round(self, run_id: str, number: int, opts: dict) -> str | None:
        return self._append(
            "groups",
            {
                "id": new_id("grp"),
                "run_id": run_id,
                "parent_id": run_id,
                "kind": "round",
                "label": f"Review {number}",
                "opts": {**opts, "round": number},
                "created_at": utc_now(),
            },
        )

    def create_comment_group(self, round_id: str, label: str, opts: dict) -> str | None:
        parent = self._find_group(round_id)
        if parent is None:
            logger.warning("GistStore: unknown round %s, comment group not recorded", round_id)
            return None
        return self._append(
            "groups",
            {
                "id": new_id("grp"),
                "run_id": parent["run_id"],
                "parent_id": round_id,
                "kind": "comment",
                "label": label,
                "opts": opts,
                "created_at": utc_now(),
            },
        )

    def record_outcome(self, target_id: str, name: str, opts: dict | None = None) -> str | None:
        group = self._find_group(target_id)
        return self._append(
            "outcomes",
            {
                "id": new_id("oc"),
                "run_id": group["run_id"] if group else target_id,
                "target_id": target_id,
                "name": name,
                "opts": opts or {},
                "recorded_at": utc_now(),
            },
        )

    def record_act(self, outcome_id: str, name: str, opts: dict | None = None) -> str | None:
        return self._append(
            "acts",
            {"id": new_id("act"), "outcome_id": outcome_id, "name": name, "opts": opts or {}, "created_at": utc_now()},
        )

    def flush(self) -> None:
        """Write the document back to the Gist if anything changed."""
        if not self._dirty or self._doc is None:
            return
        try:
            self._gist.edit(files={_GIST_FILENAME: InputFileContent(json.dumps(self._doc, indent=2))})
            self._dirty = False
        except Exception as e:
            # The review is already posted; only history is lost here.
            logger.warning("GistStore.flush() failed (%s): %s", type(e).__name__, e)
            if os.environ.get("GITHUB_ACTIONS") == "true":
                logger.warning(
                    "The built-in GITHUB_TOKEN does not have Gist permissions. "
                    "Use a PAT with 'gist' scope stored as a repository secret."
                )
