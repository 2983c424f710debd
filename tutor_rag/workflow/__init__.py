from .answer_cache import AnswerCache
from .chunking import SmartChunker
from .classifiers import QuestionClassifier
from .indexer import DocumentIndexer
from .learning import LearningPatternEngine
from .llm import OpenAICompletionService, OpenAIEmbeddingService
from .rag import RAGPipeline
from .similarity import FIFOCache, SimilaritySearchEngine

__all__ = [
    "AnswerCache",
    "SmartChunker",
    "QuestionClassifier",
    "DocumentIndexer",
    "LearningPatternEngine",
    "OpenAICompletionService",
    "OpenAIEmbeddingService",
    "RAGPipeline",
    "FIFOCache",
    "SimilaritySearchEngine",
]
