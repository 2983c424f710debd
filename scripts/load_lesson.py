from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Ensure repository root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from tutor_rag.db.async_store import AsyncChunkStore
from tutor_rag.utils.settings import default_settings
from tutor_rag.utils.types import SourceContent, SupplementItem


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Store a lesson JSON file so it can be indexed.")
    parser.add_argument("path", type=Path, help="Lesson JSON with source_id, title, full_text and optional supplements")
    parser.add_argument("--db-url", default=default_settings().db_url, help="DB URL or SQLite path; defaults to TUTOR_DB_URL")
    return parser.parse_args()


def lesson_from_json(data: dict) -> SourceContent:
    supplements = [
        SupplementItem(kind=item["kind"], payload=item.get("payload") or {}, item_id=item.get("item_id"))
        for item in data.pop("supplements", [])
    ]
    return SourceContent(supplements=supplements, **data)


async def _run(args: argparse.Namespace) -> int:
    lesson = lesson_from_json(json.loads(args.path.read_text(encoding="utf-8")))
    store = AsyncChunkStore(args.db_url)
    try:
        await store.init_models()
        await store.upsert_source(lesson)
    finally:
        await store.close()
    print(f"Stored lesson '{lesson.source_id}' ({len(lesson.full_text)} chars, {len(lesson.supplements)} supplements)")
    return 0


def main() -> int:
    return asyncio.run(_run(parse_args()))


if __name__ == "__main__":
    sys.exit(main())
