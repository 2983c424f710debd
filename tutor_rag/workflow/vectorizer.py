from __future__ import annotations

import asyncio
from typing import List

from sentence_transformers import SentenceTransformer

from tutor_rag.logging_config import get_logger

logger = get_logger(__name__)


class LocalEmbeddingService:
    """Embedding collaborator that encodes text with a local sentence-transformers model."""

    _MODEL_CACHE: dict[str, SentenceTransformer] = {}

    def __init__(self, model_name: str) -> None:
        self.model_name = model_name
        if model_name in self._MODEL_CACHE:
            self._model = self._MODEL_CACHE[model_name]
            logger.info("Reusing cached embedding model %s", model_name)
        else:
            self._model = SentenceTransformer(model_name)
            self._MODEL_CACHE[model_name] = self._model
            logger.info("Loaded embedding model %s", model_name)

    def _encode(self, text: str) -> List[float]:
        vector = self._model.encode([text], convert_to_numpy=True, normalize_embeddings=True)[0]
        return vector.tolist()

    async def embed(self, text: str) -> List[float]:
        return await asyncio.to_thread(self._encode, text)
