"""Retrieval-augmented question answering for ragdesk.

This module provides the retrieval core:
- Document, chunk and answer data structures
- Word chunking and an in-memory embedding store backed by a JSON table
- Cosine ranking with source-diverse chunk selection
- Context assembly under a character budget
- Confidence scoring that gates generation
- A generation client with backend fallback, timeouts and cancellation

Example:
    ```python
    from ragdesk.rag import (
        EmbeddingStore,
        GenerationClient,
        OllamaEmbedding,
        RAGPipeline,
        load_documents,
    )
    from ragdesk.providers import OllamaChatBackend

    pipeline = RAGPipeline(
        EmbeddingStore("embedding_db/embeddings.json"),
        OllamaEmbedding(),
        GenerationClient([OllamaChatBackend()]),
    )

    await pipeline.reindex(load_documents("source_docs"))
    answer = await pipeline.query("What color should an e-stop be?")
    ```
"""

# Data structures
from .document import (
    Answer,
    Chunk,
    Diagnostics,
    Document,
    DocumentStats,
    IndexReport,
    RankedChunk,
    RetrievalResult,
    SearchDiagnostics,
    Source,
    StoreStats,
)

# Base classes
from .base import (
    BaseChunker,
    BaseConfidenceScorer,
    BaseEmbedding,
    BaseGenerationBackend,
    BaseSelector,
)

# Errors
from .exceptions import (
    CorruptTableError,
    DimensionMismatchError,
    EmbeddingResponseError,
    EmbeddingServiceError,
    EmbeddingServiceUnavailableError,
    EmptyQuestionError,
    GenerationConnectionError,
    GenerationError,
    GenerationResponseError,
    GenerationTimeoutError,
    ImageRejectedError,
    PipelineStateError,
    RAGError,
    RequestCanceled,
    StoreError,
    StoreNotFoundError,
)

# Indexing
from .chunking import WordChunker, chunk_words
from .embeddings import FakeEmbedding, LocalEmbedding, OllamaEmbedding
from .loader import load_documents
from .store import EmbeddingStore

# Retrieval
from .ranking import cosine_similarity, rank
from .selector import SourceDiversitySelector, select_chunks
from .context import assemble_context
from .confidence import MeanTopKConfidence, confidence_level
from .query import QueryEnhancer

# Generation
from .generation import CancelToken, GenerationClient, GenerationResult, build_messages

# Pipeline
from .pipeline import QueryRun, QuerySession, QueryState, RAGPipeline

__all__ = [
    # Data structures
    "Answer",
    "Chunk",
    "Diagnostics",
    "Document",
    "DocumentStats",
    "IndexReport",
    "RankedChunk",
    "RetrievalResult",
    "SearchDiagnostics",
    "Source",
    "StoreStats",
    # Base classes
    "BaseChunker",
    "BaseConfidenceScorer",
    "BaseEmbedding",
    "BaseGenerationBackend",
    "BaseSelector",
    # Errors
    "CorruptTableError",
    "DimensionMismatchError",
    "EmbeddingResponseError",
    "EmbeddingServiceError",
    "EmbeddingServiceUnavailableError",
    "EmptyQuestionError",
    "GenerationConnectionError",
    "GenerationError",
    "GenerationResponseError",
    "GenerationTimeoutError",
    "ImageRejectedError",
    "PipelineStateError",
    "RAGError",
    "RequestCanceled",
    "StoreError",
    "StoreNotFoundError",
    # Indexing
    "WordChunker",
    "chunk_words",
    "FakeEmbedding",
    "LocalEmbedding",
    "OllamaEmbedding",
    "load_documents",
    "EmbeddingStore",
    # Retrieval
    "cosine_similarity",
    "rank",
    "SourceDiversitySelector",
    "select_chunks",
    "assemble_context",
    "MeanTopKConfidence",
    "confidence_level",
    "QueryEnhancer",
    # Generation
    "CancelToken",
    "GenerationClient",
    "GenerationResult",
    "build_messages",
    # Pipeline
    "QueryRun",
    "QuerySession",
    "QueryState",
    "RAGPipeline",
]
