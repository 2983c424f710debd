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
    parser = argparse.ArgumentParser(description="Ask the tutor a question against the indexed lessons.")
    parser.add_argument("question", help="Student question")
    parser.add_argument("--source-id", help="Restrict retrieval to one lesson")
    parser.add_argument("--user-id", help="Student id for personalization")
    parser.add_argument("--quiz", type=int, default=0, help="Also generate N quiz questions for --source-id")
    parser.add_argument("--db-url", default=None, help="Overrides TUTOR_DB_URL")
    return parser.parse_args()


async def _run(args: argparse.Namespace) -> int:
    settings = default_settings(override={"db_url": args.db_url} if args.db_url else None)
    async with TutorContext(settings) as ctx:
        response = await ctx.answer(args.question, args.source_id, args.user_id)
        print(f"Confidence: {response.confidence}")
        print(response.answer)
        for idx, item in enumerate(response.sources, start=1):
            print(f"  [{idx}] {item.source_info.title or item.chunk.source_id} #{item.chunk.chunk_index} score={item.score:.2f}")

        if args.quiz and args.source_id:
            questions = await ctx.generate_questions(args.source_id, args.quiz, args.user_id)
            for idx, question in enumerate(questions, start=1):
                print(f"\nQ{idx} ({question['type']}, {question['difficulty']}): {question['question']}")
                for option in question["options"]:
                    print(f"   - {option}")
    return 0


def main() -> int:
    return asyncio.run(_run(parse_args()))


if __name__ == "__main__":
    sys.exit(main())
