from __future__ import annotations

import json
import re
from pathlib import Path

import pytest
from typer.testing import CliRunner

from giapha.cli import app


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "giapha.db"


@pytest.fixture()
def run(db_path: Path):
    runner = CliRunner()
    env = {"GIAPHA_LOG_LEVEL": "ERROR"}

    def _run(*args: str, expect: int = 0):
        result = runner.invoke(app, [*args, "--db", str(db_path)], env=env, catch_exceptions=False)
        assert result.exit_code == expect, result.output
        return result

    return _run


def _submitted_id(output: str) -> str:
    match = re.search(r"Submitted ([0-9a-f-]{36})", output)
    assert match, output
    return match.group(1)


def test_init_creates_database(run, db_path: Path):
    result = run("init")
    assert "Registry ready" in result.output
    assert db_path.exists()


def test_build_tree_and_check(run):
    assert "Created P001" in run("person", "add", "Nguyễn Văn An", "-g", "1", "--gender", "male").output
    run("person", "add", "Trần Thị Bình", "-g", "1", "--gender", "female")
    run("person", "add", "Nguyễn Văn Cường", "-g", "2", "--birth-date", "1960-01-02")
    run("person", "add", "Lê Thị Gấm", "-g", "2", "--gender", "female")

    assert "Created F001" in run("family", "add", "--father", "P001", "--mother", "P002", "-c", "P003").output
    run("family", "add", "--father", "P003")
    run("family", "add-spouse", "F002", "P004", "--as", "mother")
    run("family", "add-child", "F002", "P004", expect=1)

    shown = run("person", "show", "P003").output
    assert "F001" in shown
    assert "F002" in shown
    assert "1960" in shown

    assert "consistent" in run("check").output


def test_move_and_delete(run):
    for name in ("A", "B", "C"):
        run("person", "add", name, "-g", "1")
    run("family", "add", "--father", "P001", "-c", "P003")
    run("family", "add", "--father", "P002")

    run("family", "move-child", "P003", "F001", "F002")
    result = run("person", "delete", "P003", expect=1)
    assert "integrity" in result.output

    run("family", "remove-child", "F002", "P003")
    assert "Deleted P003" in run("person", "delete", "P003").output
    run("check")


def test_member_role_is_refused(run):
    result = run("person", "add", "A", "-g", "1", "--role", "member", expect=1)
    assert "permission" in result.output


def test_contribution_review_and_apply(run):
    payload = json.dumps({"displayName": "Phạm Văn A", "generation": 3})
    cid = _submitted_id(run("contribute", "add_person", payload, "--user", "u-1", "--email", "a@example.com").output)

    listed = run("contributions", "--status", "pending").output
    assert "Showing 1 contributions" in listed

    reviewed = run("review", cid, "approved", "--note", "ok").output
    assert '"insertedId": "P001"' in reviewed

    again = run("apply", cid).output
    assert '"skipped": true' in again

    audit = run("audit", "--action", "approve").output
    assert "Showing 1 entries" in audit


def test_rejected_contribution(run):
    cid = _submitted_id(run("contribute", "add_post", json.dumps({"body": "xin chào"})).output)

    run("review", cid, "rejected", "--note", "trùng")
    assert "Showing 1 entries" in run("audit", "--action", "reject").output
    assert '"skipped": true' in run("apply", cid).output


def test_failed_apply_exits_nonzero(run):
    cid = _submitted_id(
        run("contribute", "edit_person_field", json.dumps({"dbColumn": "password", "value": "x"}), "-p", "P001").output
    )
    run("review", cid, "approved", "--no-apply")

    result = run("apply", cid, expect=1)
    assert '"code": "validation"' in result.output


def test_invalid_status_filter(run):
    assert "Invalid status" in run("contributions", "--status", "done", expect=1).output


def test_invalid_person_fields(run):
    result = run("person", "add", "A", "-g", "0", expect=1)
    assert "validation" in result.output


def test_reorder_children(run):
    for name in ("A", "B", "C"):
        run("person", "add", name, "-g", "1")
    run("family", "add", "--father", "P001", "-c", "P002", "-c", "P003")

    assert "P003, P002" in run("family", "reorder", "F001", "P003", "P002").output
    assert "validation" in run("family", "reorder", "F001", "P003", expect=1).output
    run("check")
