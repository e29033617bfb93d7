from __future__ import annotations

import json
import logging
import os
import re
import threading
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from achievement_tracker.errors import StoreUnavailable
from achievement_tracker.models import ContentDeleteResult
from achievement_tracker.schemas import AchievementContent, AchievementPayload

logger = logging.getLogger(__name__)

_CONTENT_ID_RE = re.compile(r"[0-9a-f]{24}")


def new_content_id() -> str:
    return uuid.uuid4().hex[:24]


def is_content_id(value: str) -> bool:
    return bool(_CONTENT_ID_RE.fullmatch(value or ""))


def _build_record(*, content_id: str, student_id: str, payload: AchievementPayload) -> AchievementContent:
    now = datetime.now(UTC)
    return AchievementContent(
        id=content_id,
        student_id=student_id,
        created_at=now,
        updated_at=now,
        **payload.model_dump(),
    )


class ContentStore(Protocol):
    def create(self, *, student_id: str, payload: AchievementPayload) -> str: ...

    def get_many(self, content_ids: Iterable[str]) -> list[AchievementContent]: ...

    def delete(self, content_id: str) -> ContentDeleteResult: ...

    def list_ids(self) -> list[str]: ...


@dataclass(frozen=True)
class ContentStoreConfig:
    backend: str
    root: str
    bucket: str
    prefix: str
    endpoint: str
    region: str
    access_key: str
    secret_key: str
    timeout_ms: int


class InMemoryContentStore:
    def __init__(self) -> None:
        self._records: dict[str, AchievementContent] = {}
        self._lock = threading.Lock()

    def create(self, *, student_id: str, payload: AchievementPayload) -> str:
        content_id = new_content_id()
        record = _build_record(content_id=content_id, student_id=student_id, payload=payload)
        with self._lock:
            self._records[content_id] = record
        return content_id

    def get_many(self, content_ids: Iterable[str]) -> list[AchievementContent]:
        with self._lock:
            return [self._records[cid] for cid in dict.fromkeys(content_ids) if cid in self._records]

    def delete(self, content_id: str) -> ContentDeleteResult:
        with self._lock:
            if self._records.pop(content_id, None) is None:
                return ContentDeleteResult.ABSENT
        return ContentDeleteResult.DELETED

    def list_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._records)


class LocalContentStore:
    """One JSON document per content record under ``root``."""

    def __init__(self, *, root: str | Path) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, content_id: str) -> Path:
        return self._root / f"{content_id}.json"

    def create(self, *, student_id: str, payload: AchievementPayload) -> str:
        content_id = new_content_id()
        record = _build_record(content_id=content_id, student_id=student_id, payload=payload)
        path = self._path_for(content_id)
        tmp = path.with_suffix(".json.tmp")
        try:
            tmp.write_text(record.model_dump_json(), encoding="utf-8")
            os.replace(tmp, path)
        except OSError as exc:
            logger.warning("content_write_failed content_id=%s error=%s", content_id, exc)
            raise StoreUnavailable() from exc
        return content_id

    def get_many(self, content_ids: Iterable[str]) -> list[AchievementContent]:
        records: list[AchievementContent] = []
        for content_id in dict.fromkeys(content_ids):
            if not is_content_id(content_id):
                continue
            try:
                raw = self._path_for(content_id).read_text(encoding="utf-8")
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise StoreUnavailable() from exc
            records.append(AchievementContent.model_validate_json(raw))
        return records

    def delete(self, content_id: str) -> ContentDeleteResult:
        if not is_content_id(content_id):
            return ContentDeleteResult.ABSENT
        try:
            self._path_for(content_id).unlink()
        except FileNotFoundError:
            return ContentDeleteResult.ABSENT
        except OSError as exc:
            raise StoreUnavailable() from exc
        return ContentDeleteResult.DELETED

    def list_ids(self) -> list[str]:
        return sorted(path.stem for path in self._root.glob("*.json") if is_content_id(path.stem))


def _import_boto3() -> tuple[Any, Any, Any]:
    try:
        import boto3  # type: ignore
        from botocore.config import Config  # type: ignore
        from botocore.exceptions import BotoCoreError, ClientError  # type: ignore
    except ImportError as exc:
        raise RuntimeError("boto3 is required for s3 content backend") from exc
    return boto3, Config, (BotoCoreError, ClientError)


def _is_not_found(exc: Exception) -> bool:
    response = getattr(exc, "response", None) or {}
    code = str(response.get("Error", {}).get("Code", ""))
    return code in {"404", "NoSuchKey", "NotFound"}


class S3ContentStore:
    def __init__(self, *, config: ContentStoreConfig) -> None:
        boto3, Config, errors = _import_boto3()
        if not config.bucket:
            raise ValueError("CONTENT_S3_BUCKET must be set for s3 content backend")
        self._errors = errors
        self._bucket = config.bucket
        self._prefix = config.prefix.strip("/")
        timeout_s = max(1.0, config.timeout_ms / 1000)
        session = boto3.session.Session(
            aws_access_key_id=config.access_key or None,
            aws_secret_access_key=config.secret_key or None,
            region_name=config.region or None,
        )
        self._client = session.client(
            "s3",
            endpoint_url=config.endpoint or None,
            config=Config(
                connect_timeout=timeout_s,
                read_timeout=timeout_s,
                retries={"max_attempts": 1},
            ),
        )

    def _key_for(self, content_id: str) -> str:
        name = f"{content_id}.json"
        return f"{self._prefix}/{name}" if self._prefix else name

    def create(self, *, student_id: str, payload: AchievementPayload) -> str:
        content_id = new_content_id()
        record = _build_record(content_id=content_id, student_id=student_id, payload=payload)
        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=self._key_for(content_id),
                Body=record.model_dump_json().encode("utf-8"),
                ContentType="application/json",
            )
        except self._errors as exc:
            logger.warning("content_write_failed content_id=%s error=%s", content_id, type(exc).__name__)
            raise StoreUnavailable() from exc
        return content_id

    def get_many(self, content_ids: Iterable[str]) -> list[AchievementContent]:
        records: list[AchievementContent] = []
        for content_id in dict.fromkeys(content_ids):
            if not is_content_id(content_id):
                continue
            try:
                response = self._client.get_object(Bucket=self._bucket, Key=self._key_for(content_id))
                raw = response["Body"].read()
            except self._errors as exc:
                if _is_not_found(exc):
                    continue
                raise StoreUnavailable() from exc
            records.append(AchievementContent.model_validate_json(raw))
        return records

    def delete(self, content_id: str) -> ContentDeleteResult:
        if not is_content_id(content_id):
            return ContentDeleteResult.ABSENT
        key = self._key_for(content_id)
        try:
            self._client.head_object(Bucket=self._bucket, Key=key)
        except self._errors as exc:
            if _is_not_found(exc):
                return ContentDeleteResult.ABSENT
            raise StoreUnavailable() from exc
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except self._errors as exc:
            raise StoreUnavailable() from exc
        return ContentDeleteResult.DELETED

    def list_ids(self) -> list[str]:
        prefix = f"{self._prefix}/" if self._prefix else ""
        ids: list[str] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
                for item in page.get("Contents", []):
                    name = str(item["Key"])[len(prefix) :]
                    if name.endswith(".json") and is_content_id(name[: -len(".json")]):
                        ids.append(name[: -len(".json")])
        except self._errors as exc:
            raise StoreUnavailable() from exc
        return sorted(ids)


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def create_content_store_from_env(
    environ: Mapping[str, str] | None = None,
) -> InMemoryContentStore | LocalContentStore | S3ContentStore:
    env = os.environ if environ is None else environ
    config = ContentStoreConfig(
        backend=env.get("AT_CONTENT_BACKEND", "memory").strip().lower() or "memory",
        root=env.get("AT_CONTENT_ROOT", ".local/achievement-content").strip() or ".local/achievement-content",
        bucket=env.get("CONTENT_S3_BUCKET", "").strip(),
        prefix=env.get("CONTENT_S3_PREFIX", "").strip(),
        endpoint=env.get("CONTENT_S3_ENDPOINT", "").strip(),
        region=env.get("CONTENT_S3_REGION", "").strip(),
        access_key=env.get("CONTENT_S3_ACCESS_KEY", "").strip(),
        secret_key=env.get("CONTENT_S3_SECRET_KEY", "").strip(),
        timeout_ms=_env_int(env, "AT_STORE_TIMEOUT_MS", 5000),
    )
    if config.backend == "s3":
        return S3ContentStore(config=config)
    if config.backend == "local":
        return LocalContentStore(root=config.root)
    if config.backend == "memory":
        return InMemoryContentStore()
    raise ValueError(f"unsupported AT_CONTENT_BACKEND: {config.backend}")
