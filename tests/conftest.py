import hashlib
import pathlib
import re
import sys

import pytest

# Ensure the repository root is on the path for direct test runs.
REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.append(str(REPO_ROOT))

from tutor_rag.context import TutorContext
from tutor_rag.utils.settings import default_settings

WORD_RE = re.compile(r"\w+")


class BagOfWordsEmbedder:
    """Deterministic hashed bag-of-words vectors; texts sharing words score higher."""

    def __init__(self, dim: int = 64, fail_on: str | None = None) -> None:
        self.dim = dim
        self.fail_on = fail_on
        self.calls = 0

    async def embed(self, text):
        self.calls += 1
        if self.fail_on and self.fail_on in text:
            raise RuntimeError("embedding service unavailable")
        vector = [0.0] * self.dim
        for word in WORD_RE.findall(text.lower()):
            slot = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % self.dim
            vector[slot] += 1.0
        if not any(vector):
            vector[0] = 1.0
        return vector


class StaticEmbedder:
    """Returns the same vector for every text."""

    def __init__(self, vector):
        self.vector = list(vector)
        self.calls = 0

    async def embed(self, text):
        self.calls += 1
        return list(self.vector)


class ScriptedCompleter:
    """Completion fake that replays queued replies and records every call."""

    def __init__(self, replies=None, json_replies=None, fail=False):
        self.replies = list(replies or [])
        self.json_replies = list(json_replies or [])
        self.fail = fail
        self.calls = []

    async def complete(self, messages, options=None):
        self.calls.append((list(messages), options))
        if self.fail:
            raise RuntimeError("completion service unavailable")
        return self.replies.pop(0) if self.replies else "إجابة مولدة"

    async def complete_json(self, messages, options=None):
        self.calls.append((list(messages), options))
        if self.fail:
            raise RuntimeError("completion service unavailable")
        return self.json_replies.pop(0) if self.json_replies else []


@pytest.fixture
def settings(tmp_path):
    return default_settings(
        override={
            "db_url": str(tmp_path / "tutor.db"),
            "index_call_delay": 0,
            "batch_delay": 0,
            "openai_api_key": "",
            "embedding_provider": "openai",
        }
    )


@pytest.fixture
def make_context(settings):
    """Build a TutorContext with fakes; call it inside the running event loop."""

    def factory(embedder=None, completer=None, **overrides):
        for key, value in overrides.items():
            setattr(settings, key, value)
        return TutorContext(
            settings,
            embedder=embedder or BagOfWordsEmbedder(),
            completer=completer or ScriptedCompleter(),
        )

    return factory
