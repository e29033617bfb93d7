from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from achievement_tracker.models import AchievementStatus, ContentLink


class _ContentIds(Protocol):
    def list_ids(self) -> list[str]: ...


class _ContentLinks(Protocol):
    def list_content_links(self) -> list[ContentLink]: ...


def build_orphan_report(
    *,
    content_store: _ContentIds,
    references: _ContentLinks,
    stale_after: timedelta | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Compare both stores and list what a partial create or purge left behind.

    Read-only. ``purge_pending`` only includes deleted references older than
    ``stale_after`` when it is given.
    """
    content_ids = set(content_store.list_ids())
    links = references.list_content_links()
    linked_ids = {link.content_id for link in links}
    cutoff = None if stale_after is None else (now or datetime.now(UTC)) - stale_after

    missing_content = sorted(link.reference_id for link in links if link.content_id not in content_ids)
    purge_pending = sorted(
        link.reference_id
        for link in links
        if link.status is AchievementStatus.DELETED
        and link.content_id in content_ids
        and (cutoff is None or link.updated_at <= cutoff)
    )
    unreferenced = sorted(content_ids - linked_ids)
    return {
        "consistent": not (unreferenced or missing_content or purge_pending),
        "content_total": len(content_ids),
        "reference_total": len(links),
        "unreferenced_content": unreferenced,
        "missing_content": missing_content,
        "purge_pending": purge_pending,
    }
