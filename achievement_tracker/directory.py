from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Protocol

from achievement_tracker.db.postgres import PostgresTxRunner
from achievement_tracker.models import Actor

__all__ = [
    "Actor",
    "IdentityResolver",
    "InMemoryDirectory",
    "PostgresDirectory",
    "ReviewerDirectory",
    "StudentDirectory",
    "StudentRecord",
]


@dataclass(frozen=True)
class StudentRecord:
    id: str
    user_id: str
    advisor_id: str | None = None


class IdentityResolver(Protocol):
    def resolve_role(self, actor: Actor) -> str | None: ...

    def resolve_owned_student_id(self, actor: Actor) -> str | None: ...


class StudentDirectory(Protocol):
    def get_advisor_of(self, student_id: str) -> str | None: ...

    def get_student_by_id(self, student_id: str) -> StudentRecord | None: ...


class ReviewerDirectory(Protocol):
    def get_reviewer_by_actor(self, actor: Actor) -> str | None: ...


class InMemoryDirectory:
    """Users, students and reviewers kept in dicts; satisfies all three directory protocols."""

    def __init__(self) -> None:
        self._roles: dict[str, str] = {}
        self._students: dict[str, StudentRecord] = {}
        self._student_by_user: dict[str, str] = {}
        self._reviewer_by_user: dict[str, str] = {}

    def add_user(self, *, user_id: str, role: str) -> None:
        self._roles[user_id] = role

    def add_student(self, *, student_id: str, user_id: str, advisor_id: str | None = None) -> StudentRecord:
        record = StudentRecord(id=student_id, user_id=user_id, advisor_id=advisor_id)
        self._students[student_id] = record
        self._student_by_user[user_id] = student_id
        return record

    def add_reviewer(self, *, reviewer_id: str, user_id: str) -> None:
        self._reviewer_by_user[user_id] = reviewer_id

    def resolve_role(self, actor: Actor) -> str | None:
        return self._roles.get(actor.subject)

    def resolve_owned_student_id(self, actor: Actor) -> str | None:
        return self._student_by_user.get(actor.subject)

    def get_advisor_of(self, student_id: str) -> str | None:
        record = self._students.get(student_id)
        return None if record is None else record.advisor_id

    def get_student_by_id(self, student_id: str) -> StudentRecord | None:
        return self._students.get(student_id)

    def get_reviewer_by_actor(self, actor: Actor) -> str | None:
        return self._reviewer_by_user.get(actor.subject)


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


class PostgresDirectory:
    def __init__(
        self,
        *,
        tx_runner: PostgresTxRunner,
        users_table: str = "users",
        roles_table: str = "roles",
        students_table: str = "students",
        lecturers_table: str = "lecturers",
    ) -> None:
        self._tx_runner = tx_runner
        self._users_table = _validate_identifier(users_table)
        self._roles_table = _validate_identifier(roles_table)
        self._students_table = _validate_identifier(students_table)
        self._lecturers_table = _validate_identifier(lecturers_table)

    def _fetch_one(self, sql: str, params: tuple[Any, ...]) -> tuple[Any, ...] | None:
        def _op(conn: Any) -> tuple[Any, ...] | None:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchone()

        return self._tx_runner.run_in_tx(fn=_op)

    def resolve_role(self, actor: Actor) -> str | None:
        sql = f"""
            SELECT r.name
            FROM {self._users_table} u
            JOIN {self._roles_table} r ON u.role_id = r.id
            WHERE u.id = %s
            LIMIT 1
        """
        row = self._fetch_one(sql, (actor.subject,))
        return None if row is None else str(row[0])

    def resolve_owned_student_id(self, actor: Actor) -> str | None:
        sql = f"SELECT id FROM {self._students_table} WHERE user_id = %s LIMIT 1"
        row = self._fetch_one(sql, (actor.subject,))
        return None if row is None else str(row[0])

    def get_advisor_of(self, student_id: str) -> str | None:
        sql = f"SELECT advisor_id FROM {self._students_table} WHERE id = %s LIMIT 1"
        row = self._fetch_one(sql, (student_id,))
        if row is None or row[0] is None:
            return None
        return str(row[0])

    def get_student_by_id(self, student_id: str) -> StudentRecord | None:
        sql = f"SELECT id, user_id, advisor_id FROM {self._students_table} WHERE id = %s LIMIT 1"
        row = self._fetch_one(sql, (student_id,))
        if row is None:
            return None
        return StudentRecord(
            id=str(row[0]),
            user_id=str(row[1]),
            advisor_id=None if row[2] is None else str(row[2]),
        )

    def get_reviewer_by_actor(self, actor: Actor) -> str | None:
        sql = f"SELECT id FROM {self._lecturers_table} WHERE user_id = %s LIMIT 1"
        row = self._fetch_one(sql, (actor.subject,))
        return None if row is None else str(row[0])
