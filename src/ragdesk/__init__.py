"""
ragdesk - Retrieval core of a desktop document assistant.
"""

from ragdesk.rag import (
    Answer,
    CancelToken,
    Document,
    EmbeddingStore,
    GenerationClient,
    OllamaEmbedding,
    QuerySession,
    RAGPipeline,
    load_documents,
)
from ragdesk.utils.config import AssistantConfig, load_config

__version__ = "0.1.0"
__all__ = [
    "Answer",
    "CancelToken",
    "Document",
    "EmbeddingStore",
    "GenerationClient",
    "OllamaEmbedding",
    "QuerySession",
    "RAGPipeline",
    "load_documents",
    "AssistantConfig",
    "load_config",
]
