#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from datetime import timedelta
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from achievement_tracker.content_store import create_content_store_from_env
from achievement_tracker.ops.reconciliation import build_orphan_report
from achievement_tracker.settings import ServiceSettings, build_directory, build_references


def main() -> int:
    parser = argparse.ArgumentParser(description="Report content and reference records left out of step")
    parser.add_argument(
        "--stale-days",
        type=int,
        default=0,
        help="only report deleted references untouched for at least this many days",
    )
    args = parser.parse_args()

    settings = ServiceSettings.from_env()
    references = build_references(settings, directory=build_directory(settings))
    result = build_orphan_report(
        content_store=create_content_store_from_env(),
        references=references,
        stale_after=timedelta(days=args.stale_days) if args.stale_days > 0 else None,
    )
    print(json.dumps(result, ensure_ascii=True, sort_keys=True, indent=2))
    return 0 if result["consistent"] else 2


if __name__ == "__main__":
    raise SystemExit(main())
