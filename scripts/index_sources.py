from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

# Ensure repository root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from tutor_rag.context import TutorContext
from tutor_rag.utils.settings import default_settings


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Chunk, embed and index stored lessons.")
    parser.add_argument("--source-id", help="Index a single source; omit to index every stored source")
    parser.add_argument("--batch-size", type=int, default=None, help="Sources per batch when indexing everything")
    parser.add_argument("--db-url", default=None, help="Overrides TUTOR_DB_URL")
    return parser.parse_args()


async def _run(args: argparse.Namespace) -> int:
    settings = default_settings(override={"db_url": args.db_url} if args.db_url else None)
    async with TutorContext(settings) as ctx:
        if args.source_id:
            report = await ctx.index_source(args.source_id)
            print(
                f"{report.source_id}: main={report.main_chunks} examples={report.examples} "
                f"questions={report.questions} visuals={report.visuals} failed={report.failed}"
            )
            return 1 if report.failed else 0

        summary = await ctx.index_all(args.batch_size)
        print(f"Processed: {summary['processed']} | Failed: {summary['failed']} | Chunks: {summary['total_chunks']}")
        stats = await ctx.indexer.get_index_stats()
        print("By type: " + ", ".join(f"{key}={value}" for key, value in stats.items()))
        return 1 if summary["failed"] else 0


def main() -> int:
    return asyncio.run(_run(parse_args()))


if __name__ == "__main__":
    sys.exit(main())
