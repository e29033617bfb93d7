from __future__ import annotations

import itertools
import re
import threading
import uuid
from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from achievement_tracker.db.postgres import PostgresTxRunner
from achievement_tracker.directory import StudentDirectory
from achievement_tracker.models import (
    ALLOWED_TRANSITIONS,
    AchievementReference,
    AchievementStatus,
    ContentLink,
    ReviewDecision,
)


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


def _offset(page: int, page_size: int) -> int:
    return (max(1, page) - 1) * max(1, page_size)


def _review_note(decision: ReviewDecision, note: str | None) -> str | None:
    if decision is not ReviewDecision.REJECTED or note is None:
        return None
    return note.strip() or None


class InMemoryReferencesRepository:
    """Reference rows held in a dict; each guarded write is a compare-and-set under one lock."""

    def __init__(
        self,
        references: dict[str, AchievementReference] | None = None,
        *,
        student_directory: StudentDirectory,
    ) -> None:
        if student_directory is None:
            raise ValueError("student_directory is required")
        self._references = {} if references is None else references
        self._student_directory = student_directory
        self._lock = threading.Lock()
        self._order: dict[str, int] = {}
        self._seq = itertools.count()

    @staticmethod
    def _now() -> datetime:
        return datetime.now(UTC)

    def _compare_and_set(
        self,
        *,
        reference_id: str,
        guard: Callable[[AchievementReference], bool],
        to_status: AchievementStatus,
        **changes: Any,
    ) -> bool:
        with self._lock:
            row = self._references.get(reference_id)
            if row is None or not guard(row):
                return False
            if to_status not in ALLOWED_TRANSITIONS[row.status]:
                return False
            now = self._now()
            self._references[reference_id] = replace(row, status=to_status, updated_at=now, **changes)
            return True

    def create_draft(self, *, student_id: str, content_id: str) -> AchievementReference:
        now = self._now()
        row = AchievementReference(
            id=str(uuid.uuid4()),
            student_id=student_id,
            content_id=content_id,
            status=AchievementStatus.DRAFT,
            submitted_at=None,
            verified_at=None,
            verified_by=None,
            rejection_note=None,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._references[row.id] = row
            self._order[row.id] = next(self._seq)
        return row

    def submit_draft(self, *, reference_id: str, student_id: str) -> bool:
        return self._compare_and_set(
            reference_id=reference_id,
            guard=lambda row: row.student_id == student_id and row.status is AchievementStatus.DRAFT,
            to_status=AchievementStatus.SUBMITTED,
            submitted_at=self._now(),
        )

    def review(
        self,
        *,
        reference_id: str,
        decision: ReviewDecision,
        reviewer_id: str,
        note: str | None = None,
    ) -> bool:
        return self._compare_and_set(
            reference_id=reference_id,
            guard=lambda row: row.status is AchievementStatus.SUBMITTED,
            to_status=AchievementStatus(decision.value),
            verified_at=self._now(),
            verified_by=reviewer_id,
            rejection_note=_review_note(decision, note),
        )

    def force_delete(self, *, reference_id: str, admin_id: str) -> bool:
        return self._compare_and_set(
            reference_id=reference_id,
            guard=lambda row: row.status is not AchievementStatus.DELETED,
            to_status=AchievementStatus.DELETED,
            verified_at=self._now(),
            verified_by=admin_id,
            rejection_note=None,
        )

    def delete_by_student(self, *, reference_id: str, student_id: str) -> bool:
        return self._compare_and_set(
            reference_id=reference_id,
            guard=lambda row: row.student_id == student_id and row.status is AchievementStatus.DRAFT,
            to_status=AchievementStatus.DELETED,
            verified_at=self._now(),
            verified_by=None,
            rejection_note=None,
        )

    def hard_delete(self, *, reference_id: str) -> bool:
        with self._lock:
            row = self._references.get(reference_id)
            if row is None or row.status is not AchievementStatus.DELETED:
                return False
            del self._references[reference_id]
            self._order.pop(reference_id, None)
            return True

    def get(self, *, reference_id: str) -> AchievementReference | None:
        return self._references.get(reference_id)

    def list_by_statuses(
        self,
        *,
        statuses: Sequence[AchievementStatus],
        student_id: str | None = None,
        advisor_id: str | None = None,
        page: int = 1,
        page_size: int = 10,
    ) -> tuple[list[AchievementReference], int]:
        wanted = set(statuses)
        with self._lock:
            rows = list(self._references.values())
        rows = [row for row in rows if row.status in wanted]
        if student_id is not None:
            rows = [row for row in rows if row.student_id == student_id]
        if advisor_id is not None:
            directory = self._student_directory
            rows = [row for row in rows if directory.get_advisor_of(row.student_id) == advisor_id]
        rows.sort(key=lambda row: (row.created_at, self._order.get(row.id, 0)), reverse=True)
        start = _offset(page, page_size)
        return rows[start : start + max(1, page_size)], len(rows)

    def list_content_links(self) -> list[ContentLink]:
        with self._lock:
            rows = list(self._references.values())
        return [
            ContentLink(reference_id=row.id, content_id=row.content_id, status=row.status, updated_at=row.updated_at)
            for row in rows
        ]


_COLUMNS = (
    "id, student_id, content_id, status, submitted_at, verified_at, verified_by, rejection_note, created_at, updated_at"
)


def _opt_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _row_to_reference(row: Sequence[Any]) -> AchievementReference:
    return AchievementReference(
        id=str(row[0]),
        student_id=str(row[1]),
        content_id=str(row[2]),
        status=AchievementStatus(row[3]),
        submitted_at=row[4],
        verified_at=row[5],
        verified_by=_opt_str(row[6]),
        rejection_note=row[7],
        created_at=row[8],
        updated_at=row[9],
    )


class PostgresReferencesRepository:
    """Authoritative reference rows; every transition is one conditional UPDATE checked by rowcount."""

    def __init__(
        self,
        *,
        tx_runner: PostgresTxRunner,
        table_name: str = "achievement_references",
        students_table: str = "students",
    ) -> None:
        self._tx_runner = tx_runner
        self._table_name = _validate_identifier(table_name)
        self._students_table = _validate_identifier(students_table)

    def _execute_guarded(self, sql: str, params: tuple[Any, ...]) -> bool:
        def _op(conn: Any) -> bool:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.rowcount == 1

        return self._tx_runner.run_in_tx(fn=_op)

    def create_draft(self, *, student_id: str, content_id: str) -> AchievementReference:
        sql = f"""
            INSERT INTO {self._table_name} (id, student_id, content_id, status, created_at, updated_at)
            VALUES (%s, %s, %s, %s, NOW(), NOW())
            RETURNING {_COLUMNS}
        """
        params = (str(uuid.uuid4()), student_id, content_id, AchievementStatus.DRAFT.value)

        def _op(conn: Any) -> AchievementReference:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                row = cur.fetchone()
            if row is None:
                raise RuntimeError("INSERT ... RETURNING produced no row")
            return _row_to_reference(row)

        return self._tx_runner.run_in_tx(fn=_op)

    def submit_draft(self, *, reference_id: str, student_id: str) -> bool:
        sql = f"""
            UPDATE {self._table_name}
            SET status = %s,
                submitted_at = NOW(),
                updated_at = NOW()
            WHERE id = %s
              AND student_id = %s
              AND status = %s
        """
        return self._execute_guarded(
            sql,
            (AchievementStatus.SUBMITTED.value, reference_id, student_id, AchievementStatus.DRAFT.value),
        )

    def review(
        self,
        *,
        reference_id: str,
        decision: ReviewDecision,
        reviewer_id: str,
        note: str | None = None,
    ) -> bool:
        sql = f"""
            UPDATE {self._table_name}
            SET status = %s,
                verified_at = NOW(),
                verified_by = %s,
                rejection_note = %s,
                updated_at = NOW()
            WHERE id = %s
              AND status = %s
        """
        return self._execute_guarded(
            sql,
            (
                decision.value,
                reviewer_id,
                _review_note(decision, note),
                reference_id,
                AchievementStatus.SUBMITTED.value,
            ),
        )

    def force_delete(self, *, reference_id: str, admin_id: str) -> bool:
        sql = f"""
            UPDATE {self._table_name}
            SET status = %s,
                verified_at = NOW(),
                verified_by = %s,
                rejection_note = NULL,
                updated_at = NOW()
            WHERE id = %s
              AND status != %s
        """
        deleted = AchievementStatus.DELETED.value
        return self._execute_guarded(sql, (deleted, admin_id, reference_id, deleted))

    def delete_by_student(self, *, reference_id: str, student_id: str) -> bool:
        sql = f"""
            UPDATE {self._table_name}
            SET status = %s,
                verified_at = NOW(),
                verified_by = NULL,
                rejection_note = NULL,
                updated_at = NOW()
            WHERE id = %s
              AND student_id = %s
              AND status = %s
        """
        return self._execute_guarded(
            sql,
            (AchievementStatus.DELETED.value, reference_id, student_id, AchievementStatus.DRAFT.value),
        )

    def hard_delete(self, *, reference_id: str) -> bool:
        sql = f"DELETE FROM {self._table_name} WHERE id = %s AND status = %s"
        return self._execute_guarded(sql, (reference_id, AchievementStatus.DELETED.value))

    def get(self, *, reference_id: str) -> AchievementReference | None:
        sql = f"""
            SELECT {_COLUMNS}
            FROM {self._table_name}
            WHERE id = %s
            LIMIT 1
        """

        def _op(conn: Any) -> AchievementReference | None:
            with conn.cursor() as cur:
                cur.execute(sql, (reference_id,))
                row = cur.fetchone()
            return None if row is None else _row_to_reference(row)

        return self._tx_runner.run_in_tx(fn=_op)

    def list_by_statuses(
        self,
        *,
        statuses: Sequence[AchievementStatus],
        student_id: str | None = None,
        advisor_id: str | None = None,
        page: int = 1,
        page_size: int = 10,
    ) -> tuple[list[AchievementReference], int]:
        params: list[Any] = [[AchievementStatus(s).value for s in statuses]]
        where = "ar.status = ANY(%s)"
        join = ""
        if student_id is not None:
            params.append(student_id)
            where += " AND ar.student_id = %s"
        if advisor_id is not None:
            join = f" JOIN {self._students_table} s ON ar.student_id = s.id"
            params.append(advisor_id)
            where += " AND s.advisor_id = %s"

        count_sql = f"SELECT COUNT(*) FROM {self._table_name} ar{join} WHERE {where}"
        columns = ", ".join(f"ar.{name.strip()}" for name in _COLUMNS.split(","))
        list_sql = f"""
            SELECT {columns}
            FROM {self._table_name} ar{join}
            WHERE {where}
            ORDER BY ar.created_at DESC, ar.id DESC
            LIMIT %s OFFSET %s
        """
        limit = max(1, page_size)

        def _op(conn: Any) -> tuple[list[AchievementReference], int]:
            with conn.cursor() as cur:
                cur.execute(count_sql, tuple(params))
                total_row = cur.fetchone()
                cur.execute(list_sql, (*params, limit, _offset(page, page_size)))
                rows = cur.fetchall() or []
            total = int(total_row[0]) if total_row else 0
            return [_row_to_reference(row) for row in rows], total

        return self._tx_runner.run_in_tx(fn=_op)

    def list_content_links(self) -> list[ContentLink]:
        sql = f"SELECT id, content_id, status, updated_at FROM {self._table_name}"

        def _op(conn: Any) -> list[ContentLink]:
            with conn.cursor() as cur:
                cur.execute(sql)
                rows = cur.fetchall() or []
            return [
                ContentLink(
                    reference_id=str(row[0]),
                    content_id=str(row[1]),
                    status=AchievementStatus(row[2]),
                    updated_at=row[3],
                )
                for row in rows
            ]

        return self._tx_runner.run_in_tx(fn=_op)
