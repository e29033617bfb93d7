from __future__ import annotations

from datetime import UTC, datetime

import pytest

from achievement_tracker.models import AchievementStatus, ReviewDecision
from achievement_tracker.repositories import PostgresReferencesRepository

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _row(ref_id: str = "5b0f3c36-1d57-4d57-9b7c-1f0e2f9ad001", status: str = "draft") -> tuple:
    return (ref_id, "stu_1", "a" * 24, status, None, None, None, None, NOW, NOW)


class FakeCursor:
    def __init__(self, runner: "FakeRunner"):
        self._runner = runner
        self.rowcount = -1

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, query: str, params=None):
        self._runner.statements.append((query, params))
        self.rowcount = self._runner.rowcount

    def fetchone(self):
        return self._runner.one.pop(0) if self._runner.one else None

    def fetchall(self):
        return list(self._runner.many)


class FakeConnection:
    def __init__(self, runner: "FakeRunner"):
        self._runner = runner

    def cursor(self):
        return FakeCursor(self._runner)


class FakeRunner:
    def __init__(self, *, rowcount: int = 1, one: list | None = None, many: list | None = None):
        self.rowcount = rowcount
        self.one = list(one or [])
        self.many = list(many or [])
        self.statements: list[tuple[str, tuple | None]] = []
        self.calls = 0

    def run_in_tx(self, *, fn):
        self.calls += 1
        return fn(FakeConnection(self))


def test_rejects_invalid_table_names():
    with pytest.raises(ValueError, match="invalid SQL identifier"):
        PostgresReferencesRepository(tx_runner=FakeRunner(), table_name="refs;drop table refs")
    with pytest.raises(ValueError, match="invalid SQL identifier"):
        PostgresReferencesRepository(tx_runner=FakeRunner(), students_table="students s")


def test_create_draft_inserts_and_maps_returned_row():
    runner = FakeRunner(one=[_row()])
    repo = PostgresReferencesRepository(tx_runner=runner, table_name="achievement_references")
    ref = repo.create_draft(student_id="stu_1", content_id="a" * 24)

    sql, params = runner.statements[0]
    assert "INSERT INTO achievement_references" in sql
    assert "RETURNING" in sql
    assert params[1:] == ("stu_1", "a" * 24, "draft")
    assert ref.status is AchievementStatus.DRAFT
    assert ref.created_at == NOW


def test_submit_is_a_single_guarded_update():
    runner = FakeRunner(rowcount=1)
    repo = PostgresReferencesRepository(tx_runner=runner)
    assert repo.submit_draft(reference_id="r1", student_id="stu_1") is True

    sql, params = runner.statements[0]
    assert "UPDATE achievement_references" in sql
    assert "AND student_id = %s" in sql
    assert "AND status = %s" in sql
    assert "submitted_at = NOW()" in sql
    assert params == ("submitted", "r1", "stu_1", "draft")
    assert runner.calls == 1


def test_zero_rows_affected_is_guard_failure():
    repo = PostgresReferencesRepository(tx_runner=FakeRunner(rowcount=0))
    assert repo.submit_draft(reference_id="r1", student_id="stu_1") is False
    assert repo.review(reference_id="r1", decision=ReviewDecision.VERIFIED, reviewer_id="u") is False
    assert repo.delete_by_student(reference_id="r1", student_id="stu_1") is False
    assert repo.force_delete(reference_id="r1", admin_id="u_admin") is False
    assert repo.hard_delete(reference_id="r1") is False


def test_review_params_carry_note_only_for_rejection():
    runner = FakeRunner()
    repo = PostgresReferencesRepository(tx_runner=runner)
    repo.review(reference_id="r1", decision=ReviewDecision.VERIFIED, reviewer_id="u_adv", note="ignored")
    repo.review(reference_id="r1", decision=ReviewDecision.REJECTED, reviewer_id="u_adv", note=" weak ")

    verified_sql, verified_params = runner.statements[0]
    assert "WHERE id = %s" in verified_sql and "AND status = %s" in verified_sql
    assert verified_params == ("verified", "u_adv", None, "r1", "submitted")
    _, rejected_params = runner.statements[1]
    assert rejected_params == ("rejected", "u_adv", "weak", "r1", "submitted")


def test_student_delete_clears_attribution():
    runner = FakeRunner()
    PostgresReferencesRepository(tx_runner=runner).delete_by_student(reference_id="r1", student_id="stu_1")
    sql, params = runner.statements[0]
    assert "verified_by = NULL" in sql
    assert "rejection_note = NULL" in sql
    assert params == ("deleted", "r1", "stu_1", "draft")


def test_force_delete_guards_against_already_deleted():
    runner = FakeRunner()
    PostgresReferencesRepository(tx_runner=runner).force_delete(reference_id="r1", admin_id="u_admin")
    sql, params = runner.statements[0]
    assert "status != %s" in sql
    assert params == ("deleted", "u_admin", "r1", "deleted")


def test_hard_delete_requires_deleted_status():
    runner = FakeRunner()
    assert PostgresReferencesRepository(tx_runner=runner).hard_delete(reference_id="r1") is True
    sql, params = runner.statements[0]
    assert sql.startswith("DELETE FROM achievement_references")
    assert params == ("r1", "deleted")


def test_get_returns_none_when_missing():
    assert PostgresReferencesRepository(tx_runner=FakeRunner()).get(reference_id="r1") is None


def test_list_by_statuses_counts_then_pages_with_advisor_join():
    runner = FakeRunner(one=[(2,)], many=[_row("r2", "submitted"), _row("r1", "submitted")])
    repo = PostgresReferencesRepository(tx_runner=runner, students_table="students")
    rows, total = repo.list_by_statuses(
        statuses=[AchievementStatus.SUBMITTED],
        advisor_id="lect_a",
        page=2,
        page_size=5,
    )

    assert total == 2
    assert [row.id for row in rows] == ["r2", "r1"]
    count_sql, count_params = runner.statements[0]
    assert count_sql.startswith("SELECT COUNT(*) FROM achievement_references ar JOIN students s")
    assert count_params == (["submitted"], "lect_a")
    list_sql, list_params = runner.statements[1]
    assert "ORDER BY ar.created_at DESC" in list_sql
    assert "s.advisor_id = %s" in list_sql
    assert list_params == (["submitted"], "lect_a", 5, 5)


def test_list_by_statuses_student_filter_has_no_join():
    runner = FakeRunner(one=[(0,)])
    repo = PostgresReferencesRepository(tx_runner=runner)
    rows, total = repo.list_by_statuses(statuses=[AchievementStatus.DRAFT], student_id="stu_1")
    assert (rows, total) == ([], 0)
    count_sql, count_params = runner.statements[0]
    assert "JOIN" not in count_sql
    assert count_params == (["draft"], "stu_1")


def test_list_content_links_maps_rows():
    runner = FakeRunner(many=[("r1", "a" * 24, "deleted", NOW)])
    links = PostgresReferencesRepository(tx_runner=runner).list_content_links()
    assert len(links) == 1
    assert links[0].status is AchievementStatus.DELETED
    assert links[0].content_id == "a" * 24
