"""SQLiteStore: local file-based store for power users and CI caching.

Schema:
  runs:      one row per pull request lifetime (repo + PR number indexed).
  groups:    rounds (kind='round', parent = run) and comment groups
              (kind='comment', parent = round), in insertion order.
  outcomes:  named outcomes attached to a run, round or comment group.
  acts:      the next action recorded against an outcome.

Writes are committed on flush(), so a run's records land together.
"""

from __future__ import annotations

import json
import logging
import sqlite3

from prloop_store.base import BaseStore
from prloop_store.models import RUN_LABEL, RunRecord, assemble_run, new_id, utc_now

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS runs (
    id            TEXT PRIMARY KEY,
    name          TEXT NOT NULL,
    label         TEXT NOT NULL,
    repo          TEXT,
    pr_number     INTEGER,
    follow_up_of  TEXT,
    opts_json     TEXT DEFAULT '{}',
    created_at    TEXT
);
CREATE TABLE IF NOT EXISTS groups (
    id          TEXT PRIMARY KEY,
    run_id      TEXT NOT NULL,
    parent_id   TEXT NOT NULL,
    kind        TEXT NOT NULL,
    label       TEXT NOT NULL,
    opts_json   TEXT DEFAULT '{}',
    created_at  TEXT
);
CREATE TABLE IF NOT EXISTS outcomes (
    id           TEXT PRIMARY KEY,
    run_id       TEXT,
    target_id    TEXT NOT NULL,
    name         TEXT NOT NULL,
    opts_json    TEXT DEFAULT '{}',
    recorded_at  TEXT
);
CREATE TABLE IF NOT EXISTS acts (
    id          TEXT PRIMARY KEY,
    outcome_id  TEXT NOT NULL,
    name        TEXT NOT NULL,
    opts_json   TEXT DEFAULT '{}',
    created_at  TEXT
);
CREATE INDEX IF NOT EXISTS idx_runs_name   ON runs (label, name);
CREATE INDEX IF NOT EXISTS idx_runs_pr     ON runs (repo, pr_number);
CREATE INDEX IF NOT EXISTS idx_groups_run  ON groups (run_id);
CREATE INDEX IF NOT EXISTS idx_outcomes    ON outcomes (run_id);
"""


class SQLiteStore(BaseStore):
    """Stores run/round history in a local SQLite database file.

    The database file path defaults to `.prloop.db` in the current working
    directory. Configure via .prloop.yml: `store_path: /path/to/prloop.db`.
    """

    def __init__(self, db_path: str = ".prloop.db"):
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    # -- reads -------------------------------------------------------------

    def find_run(self, name: str) -> RunRecord | None:
        row = self._conn.execute(
            "SELECT * FROM runs WHERE label=? AND name=? ORDER BY rowid DESC LIMIT 1",
            (RUN_LABEL, name),
        ).fetchone()
        return self._load_run(row) if row is not None else None

    def list_runs(self, repo: str, pr_number: int | None = None) -> list[RunRecord]:
        if pr_number is not None:
            rows = self._conn.execute(
                "SELECT * FROM runs WHERE repo=? AND pr_number=? ORDER BY rowid",
                (repo, pr_number),
            ).fetchall()
        else:
            rows = self._conn.execute("SELECT * FROM runs WHERE repo=? ORDER BY rowid", (repo,)).fetchall()
        return [self._load_run(r) for r in rows]

    def _load_run(self, row: sqlite3.Row) -> RunRecord:
        groups = self._conn.execute("SELECT * FROM groups WHERE run_id=? ORDER BY rowid", (row["id"],)).fetchall()
        outcomes = self._conn.execute(
            "SELECT * FROM outcomes WHERE run_id=? ORDER BY rowid", (row["id"],)
        ).fetchall()
        return assemble_run(
            self._row_to_dict(row),
            [self._row_to_dict(g) for g in groups],
            [self._row_to_dict(o) for o in outcomes],
        )

    @staticmethod
    def _row_to_dict(row: sqlite3.Row) -> dict:
        d = dict(row)
        d["opts"] = json.loads(d.pop("opts_json", None) or "{}")
        return d

    # -- writes ------------------------------------------------------------

    def create_run(self, name: str, opts: dict, follow_up_of: str | None = None) -> str | None:
        run_id = new_id("run")
        self._conn.execute(
            """
            INSERT INTO runs (id, name, label, repo, pr_number, follow_up_of, opts_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (run_id, name, RUN_LABEL, opts.get("repo"), opts.get("pr"), follow_up_of, json.dumps(opts), utc_now()),
        )
        return run_id

    def create_round(self, run_id: str, number: int, opts: dict) -> str | None:
        round_id = new_id("grp")
        self._insert_group(round_id, run_id, run_id, "round", f"Review {number}", {**opts, "round": number})
        return round_id

    def create_comment_group(self, round_id: str, label: str, opts: dict) -> str | None:
        row = self._conn.execute("SELECT run_id FROM groups WHERE id=?", (round_id,)).fetchone()
        if row is None:
            logger.warning("SQLiteStore: unknown round %s, comment group not recorded", round_id)
            return None
        group_id = new_id("grp")
        self._insert_group(group_id, row["run_id"], round_id, "comment", label, opts)
        return group_id

    def _insert_group(self, group_id: str, run_id: str, parent_id: str, kind: str, label: str, opts: dict) -> None:
        self._conn.execute(
            """
            INSERT INTO groups (id, run_id, parent_id, kind, label, opts_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (group_id, run_id, parent_id, kind, label, json.dumps(opts), utc_now()),
        )

    def record_outcome(self, target_id: str, name: str, opts: dict | None = None) -> str | None:
        outcome_id = new_id("oc")
        self._conn.execute(
            "INSERT INTO outcomes (id, run_id, target_id, name, opts_json, recorded_at) VALUES (?, ?, ?, ?, ?, ?)",
            (outcome_id, self._run_id_for(target_id), target_id, name, json.dumps(opts or {}), utc_now()),
        )
        return outcome_id

    def _run_id_for(self, target_id: str) -> str:
        row = self._conn.execute("SELECT run_id FROM groups WHERE id=?", (target_id,)).fetchone()
        return row["run_id"] if row is not None else target_id

    def record_act(self, outcome_id: str, name: str, opts: dict | None = None) -> str | None:
        act_id = new_id("act")
        self._conn.execute(
            "INSERT INTO acts (id, outcome_id, name, opts_json, created_at) VALUES (?, ?, ?, ?, ?)",
            (act_id, outcome_id, name, json.dumps(opts or {}), utc_now()),
        )
        return act_id

    def flush(self) -> None:
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()
