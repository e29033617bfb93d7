from achievement_tracker.ops.reconciliation import build_orphan_report

__all__ = [
    "build_orphan_report",
]
