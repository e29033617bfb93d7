from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from achievement_tracker.content_store import create_content_store_from_env
from achievement_tracker.db.postgres import PostgresTxRunner
from achievement_tracker.directory import InMemoryDirectory, PostgresDirectory
from achievement_tracker.lifecycle import AchievementLifecycle
from achievement_tracker.repositories import InMemoryReferencesRepository, PostgresReferencesRepository
from achievement_tracker.scope import ScopeResolver


def _as_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(env: Mapping[str, str], name: str, *, default: int, minimum: int = 1) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


def true_stack_required(environ: Mapping[str, str] | None = None) -> bool:
    env = os.environ if environ is None else environ
    return _as_bool(env.get("AT_REQUIRE_TRUESTACK", "false"))


@dataclass(frozen=True)
class ServiceSettings:
    reference_backend: str
    content_backend: str
    directory_backend: str
    postgres_dsn: str
    references_table: str
    students_table: str
    store_timeout_ms: int
    default_page_size: int
    max_page_size: int
    require_truestack: bool

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ServiceSettings":
        env = os.environ if environ is None else environ
        return cls(
            reference_backend=env.get("AT_REFERENCE_BACKEND", "memory").strip().lower() or "memory",
            content_backend=env.get("AT_CONTENT_BACKEND", "memory").strip().lower() or "memory",
            directory_backend=env.get("AT_DIRECTORY_BACKEND", "memory").strip().lower() or "memory",
            postgres_dsn=env.get("POSTGRES_DSN", "").strip(),
            references_table=env.get("AT_REFERENCES_TABLE", "achievement_references").strip()
            or "achievement_references",
            students_table=env.get("AT_STUDENTS_TABLE", "students").strip() or "students",
            store_timeout_ms=_env_int(env, "AT_STORE_TIMEOUT_MS", default=5000),
            default_page_size=_env_int(env, "AT_DEFAULT_PAGE_SIZE", default=10),
            max_page_size=_env_int(env, "AT_MAX_PAGE_SIZE", default=100),
            require_truestack=true_stack_required(env),
        )

    def check_truestack(self) -> None:
        if not self.require_truestack:
            return
        memory = [
            name
            for name, backend in (
                ("AT_REFERENCE_BACKEND", self.reference_backend),
                ("AT_CONTENT_BACKEND", self.content_backend),
                ("AT_DIRECTORY_BACKEND", self.directory_backend),
            )
            if backend == "memory"
        ]
        if memory:
            raise RuntimeError(f"AT_REQUIRE_TRUESTACK forbids memory backends: {', '.join(memory)}")

    def tx_runner(self) -> PostgresTxRunner:
        if not self.postgres_dsn:
            raise RuntimeError("POSTGRES_DSN must be set for postgres backends")
        return PostgresTxRunner(self.postgres_dsn, timeout_ms=self.store_timeout_ms)


def build_directory(settings: ServiceSettings) -> InMemoryDirectory | PostgresDirectory:
    if settings.directory_backend == "postgres":
        return PostgresDirectory(tx_runner=settings.tx_runner(), students_table=settings.students_table)
    if settings.directory_backend == "memory":
        return InMemoryDirectory()
    raise ValueError(f"unsupported AT_DIRECTORY_BACKEND: {settings.directory_backend}")


def build_references(
    settings: ServiceSettings, *, directory: InMemoryDirectory | PostgresDirectory
) -> InMemoryReferencesRepository | PostgresReferencesRepository:
    if settings.reference_backend == "postgres":
        return PostgresReferencesRepository(
            tx_runner=settings.tx_runner(),
            table_name=settings.references_table,
            students_table=settings.students_table,
        )
    if settings.reference_backend == "memory":
        return InMemoryReferencesRepository(student_directory=directory)
    raise ValueError(f"unsupported AT_REFERENCE_BACKEND: {settings.reference_backend}")


def build_lifecycle_from_env(environ: Mapping[str, str] | None = None) -> AchievementLifecycle:
    env = os.environ if environ is None else environ
    settings = ServiceSettings.from_env(env)
    settings.check_truestack()
    directory = build_directory(settings)
    return AchievementLifecycle(
        content_store=create_content_store_from_env(env),
        references=build_references(settings, directory=directory),
        identity=directory,
        students=directory,
        scopes=ScopeResolver(identity=directory, reviewers=directory),
        default_page_size=settings.default_page_size,
        max_page_size=settings.max_page_size,
    )
