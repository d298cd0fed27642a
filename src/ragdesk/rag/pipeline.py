"""Retrieval pipeline and per-request state machine."""

import logging
import time
from enum import Enum
from pathlib import Path
from typing import Optional

from ragdesk.utils.config import AssistantConfig, RetrievalSettings
from ragdesk.utils.logging import log_duration, set_log_level

from .base import BaseConfidenceScorer, BaseEmbedding, BaseSelector
from .chunking import WordChunker
from .confidence import MeanTopKConfidence, confidence_level
from .context import assemble_context
from .document import (
    Answer,
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
from .exceptions import (
    DimensionMismatchError,
    EmbeddingServiceError,
    EmptyQuestionError,
    GenerationError,
    GenerationTimeoutError,
    PipelineStateError,
    RAGError,
    RequestCanceled,
    StoreError,
)
from .generation import CancelToken, GenerationClient, GenerationResult, build_messages
from .prompts import REFUSAL_MESSAGE, SYSTEM_PROMPT
from .query import QueryEnhancer
from .ranking import rank
from .selector import SourceDiversitySelector
from .store import EmbeddingStore

logger = logging.getLogger(__name__)

# Sources returned with a refusal
REFUSAL_SOURCES = 3


class QueryState(str, Enum):
    """Lifecycle of a single query."""
    IDLE = "idle"
    RETRIEVING = "retrieving"
    REFUSED = "refused"
    GENERATING = "generating"
    DONE = "done"
    FAILED = "failed"
    CANCELED = "canceled"


_TRANSITIONS: dict[QueryState, frozenset[QueryState]] = {
    QueryState.IDLE: frozenset({QueryState.RETRIEVING}),
    QueryState.RETRIEVING: frozenset({
        QueryState.REFUSED,
        QueryState.GENERATING,
        QueryState.FAILED,
        QueryState.CANCELED,
    }),
    QueryState.GENERATING: frozenset({
        QueryState.DONE,
        QueryState.FAILED,
        QueryState.CANCELED,
    }),
}

TERMINAL_STATES = frozenset({
    QueryState.REFUSED,
    QueryState.DONE,
    QueryState.FAILED,
    QueryState.CANCELED,
})


class QueryRun:
    """State of one request. Never shared between requests."""

    def __init__(self, question: str):
        self.question = question
        self.state = QueryState.IDLE
        self.history: list[QueryState] = [QueryState.IDLE]
        self._started = time.perf_counter()

    def advance(self, state: QueryState) -> None:
        if state not in _TRANSITIONS.get(self.state, frozenset()):
            raise PipelineStateError(f"Illegal transition {self.state.value} -> {state.value}")
        logger.debug(f"Query state {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self._started) * 1000)


class RAGPipeline:
    """Retrieval-augmented question answering over an embedding store.

    Example:
        ```python
        pipeline = RAGPipeline.from_config(load_config())

        await pipeline.reindex(load_documents("source_docs"))
        answer = await pipeline.query("What color should an e-stop be?")
        print(answer.answer, answer.confidence_level)
        ```
    """

    def __init__(
        self,
        store: EmbeddingStore,
        embedding: BaseEmbedding,
        generator: GenerationClient,
        *,
        settings: Optional[RetrievalSettings] = None,
        default_model: str = "qwen2:0.5b",
        enhancer: Optional[QueryEnhancer] = None,
        selector: Optional[BaseSelector] = None,
        scorer: Optional[BaseConfidenceScorer] = None,
        system_prompt: Optional[str] = None,
    ):
        """Initialize the pipeline.

        Args:
            store: Embedding store holding the corpus
            embedding: Embedding client for queries and indexing
            generator: Language model client
            settings: Retrieval constants (default: RetrievalSettings())
            default_model: Model used when a query names none
            enhancer: Query enhancer (default: QueryEnhancer())
            selector: Chunk selector (default: SourceDiversitySelector
                with the thresholds from settings)
            scorer: Confidence scorer (default: MeanTopKConfidence())
            system_prompt: System prompt override
        """
        self.store = store
        self.embedding = embedding
        self.generator = generator
        self.settings = settings or RetrievalSettings()
        self.default_model = default_model
        self.enhancer = enhancer or QueryEnhancer()
        self.selector = selector or SourceDiversitySelector(
            self.settings.diversity_threshold,
            self.settings.fallback_threshold,
        )
        self.scorer = scorer or MeanTopKConfidence()
        self.system_prompt = system_prompt or SYSTEM_PROMPT

    @classmethod
    def from_config(cls, config: AssistantConfig) -> "RAGPipeline":
        """Build a pipeline with HTTP clients from configuration."""
        from ragdesk.providers import OllamaChatBackend, OpenAICompatibleBackend

        from .embeddings import LocalEmbedding, OllamaEmbedding

        set_log_level(config.log_level)

        embedding: BaseEmbedding
        if config.embedding.provider == "local":
            embedding = LocalEmbedding(config.embedding.model)
        else:
            embedding = OllamaEmbedding(
                base_url=config.embedding.base_url,
                model=config.embedding.model,
                timeout=config.embedding.timeout,
            )

        generation = config.generation
        backends = []
        for backend in generation.backends:
            if backend.kind == "openai":
                backends.append(OpenAICompatibleBackend(
                    base_url=backend.base_url,
                    api_key=backend.api_key,
                    served_model=backend.served_model,
                    temperature=generation.temperature,
                    max_tokens=generation.max_tokens,
                ))
            else:
                backends.append(OllamaChatBackend(
                    base_url=backend.base_url,
                    temperature=generation.temperature,
                    max_tokens=generation.max_tokens,
                    structured=backend.structured,
                ))

        generator = GenerationClient(
            backends,
            fallback_model=generation.fallback_model,
            timeout=generation.timeout,
            vision_markers=generation.vision_markers,
        )
        store = EmbeddingStore(
            config.table_path,
            chunker=WordChunker(config.retrieval.chunk_size),
        )

        return cls(
            store,
            embedding,
            generator,
            settings=config.retrieval,
            default_model=generation.model,
            system_prompt=generation.system_prompt,
        )

    async def retrieve(self, question: str) -> RetrievalResult:
        """Run retrieval only: enhance, embed, rank, select, assemble, score.

        Raises:
            EmptyQuestionError: If the question is blank
            StoreError: If the embedding table is missing or corrupt
            EmbeddingServiceError: If the question cannot be embedded
            DimensionMismatchError: If the query and stored vectors differ
        """
        if not question.strip():
            raise EmptyQuestionError()

        chunks = await self.store.load()

        enhanced = self.enhancer.enhance(question)
        if enhanced != question.lower():
            logger.info(f"Enhanced query: {enhanced!r}")

        query_vector = await self.embedding.embed(enhanced)
        logger.debug(f"Query embedded ({len(query_vector)} dimensions)")

        ranked = rank(query_vector, chunks)
        selected = self.selector.select(ranked, self.settings.top_k)
        for position, chunk in enumerate(selected, start=1):
            logger.debug(f"  {position}. {chunk.similarity * 100:.1f}% - {chunk.id}")

        context = assemble_context(selected, self.settings.max_context_chars)
        confidence = self.scorer.score(selected)

        return RetrievalResult(
            chunks=selected,
            context=context,
            confidence=confidence,
            enhanced_query=enhanced,
            diagnostics=SearchDiagnostics(
                total_chunks_searched=len(chunks),
                chunks_used=len(selected),
                top_similarity=selected[0].similarity if selected else 0.0,
            ),
        )

    async def generate(
        self,
        context: str,
        question: str,
        *,
        model: str,
        image: Optional[bytes] = None,
        cancel_token: Optional[CancelToken] = None,
        timeout: Optional[float] = None,
    ) -> GenerationResult:
        """Build the prompt messages and call the language model."""
        vision = self.generator.supports_vision(model)
        if image is not None and not vision:
            logger.warning(f"Image provided but {model} does not support vision, using text only")

        messages = build_messages(
            context,
            question,
            image=image,
            vision=vision,
            system_prompt=self.system_prompt,
        )
        return await self.generator.generate(model, messages, cancel_token, timeout)

    async def query(
        self,
        question: str,
        image: Optional[bytes] = None,
        model: Optional[str] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> Answer:
        """Answer a question.

        Always returns an ``Answer``: low confidence yields a refusal
        without calling the language model, and store, embedding and
        generation failures yield a ``failed`` answer with a message
        for the user.
        """
        run = QueryRun(question)
        model = model or self.default_model
        logger.info(f"Query: {question!r} (model: {model})")

        run.advance(QueryState.RETRIEVING)
        try:
            with log_duration(logger, "Retrieval"):
                retrieval = await self.retrieve(question)
        except EmptyQuestionError as e:
            logger.warning("Empty question, nothing to answer")
            return self._failed(run, e, "empty_question", model, image)
        except StoreError as e:
            logger.error(f"Retrieval unavailable: {e.message}")
            return self._failed(run, e, "store_not_ready", model, image)
        except EmbeddingServiceError as e:
            logger.error(f"Query embedding failed: {e.message}")
            return self._failed(run, e, "embedding_unavailable", model, image)
        except DimensionMismatchError as e:
            logger.exception(f"Embedding dimension mismatch: {e.message}")
            return self._failed(run, e, "dimension_mismatch", model, image)

        if cancel_token is not None and cancel_token.cancelled:
            run.advance(QueryState.CANCELED)
            return self._answer(
                run, retrieval, RequestCanceled.user_message,
                model=model, image=image,
            )

        logger.info(
            f"Confidence: {retrieval.confidence}% "
            f"(top similarity: {retrieval.diagnostics.top_similarity * 100:.1f}%)"
        )

        if retrieval.confidence < self.settings.min_confidence:
            logger.info("Confidence too low, refusing to answer")
            run.advance(QueryState.REFUSED)
            return self._answer(
                run, retrieval, REFUSAL_MESSAGE,
                model=model, image=image,
                sources=retrieval.chunks[:REFUSAL_SOURCES],
            )

        run.advance(QueryState.GENERATING)
        try:
            with log_duration(logger, "Generation"):
                result = await self.generate(
                    retrieval.context,
                    question,
                    model=model,
                    image=image,
                    cancel_token=cancel_token,
                )
        except RequestCanceled:
            logger.info("Query canceled during generation")
            run.advance(QueryState.CANCELED)
            return self._answer(
                run, retrieval, RequestCanceled.user_message,
                model=model, image=image,
            )
        except GenerationTimeoutError as e:
            logger.error(f"Generation timed out: {e.message}")
            return self._failed(run, e, "generation_timeout", model, image, retrieval)
        except GenerationError as e:
            logger.error(f"Generation failed: {e.message}")
            return self._failed(run, e, "generation_failed", model, image, retrieval)

        run.advance(QueryState.DONE)
        answer = self._answer(
            run, retrieval, result.answer,
            model=result.model, image=image,
            reasoning=result.reasoning,
        )
        logger.info(f"Query completed in {answer.diagnostics.elapsed_formatted}")
        return answer

    def _failed(
        self,
        run: QueryRun,
        error: RAGError,
        kind: str,
        model: str,
        image: Optional[bytes],
        retrieval: Optional[RetrievalResult] = None,
    ) -> Answer:
        run.advance(QueryState.FAILED)
        return self._answer(
            run, retrieval or RetrievalResult(), error.user_message,
            model=model, image=image, error=kind,
        )

    def _answer(
        self,
        run: QueryRun,
        retrieval: RetrievalResult,
        text: str,
        *,
        model: str,
        image: Optional[bytes],
        sources: Optional[list[RankedChunk]] = None,
        reasoning: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Answer:
        elapsed_ms = run.elapsed_ms
        chunks = retrieval.chunks if sources is None else sources
        # Refusals are presented as "low" regardless of the band
        level = (
            "low" if run.state is QueryState.REFUSED
            else confidence_level(retrieval.confidence)
        )

        return Answer(
            answer=text,
            reasoning=reasoning,
            query=run.question,
            status=run.state.value,
            sources=[Source.from_ranked(chunk) for chunk in chunks],
            confidence=retrieval.confidence,
            confidence_level=level,
            has_image=image is not None,
            model_used=model,
            diagnostics=Diagnostics(
                total_chunks_searched=retrieval.diagnostics.total_chunks_searched,
                chunks_used=retrieval.diagnostics.chunks_used,
                top_similarity=retrieval.diagnostics.top_similarity,
                confidence_score=retrieval.confidence,
                embedding_model=self.embedding.model_name,
                generation_model=model,
                elapsed_ms=elapsed_ms,
                elapsed_formatted=f"{elapsed_ms / 1000:.2f}s",
            ),
            elapsed_ms=elapsed_ms,
            error=error,
        )

    async def reindex(self, documents: list[Document], concurrency: int = 1) -> IndexReport:
        """Rebuild the embedding table from documents.

        Raises:
            EmbeddingServiceError: If any chunk cannot be embedded; the
                previous table stays in place
        """
        report = await self.store.build(documents, self.embedding, concurrency=concurrency)
        logger.info(
            f"Indexed {report.documents_indexed} documents ({report.chunks_indexed} chunks)"
        )
        return report

    def set_table_path(self, path: str | Path) -> None:
        """Switch to another embedding table."""
        self.store.set_path(path)

    async def stats(self) -> StoreStats:
        """Per-document chunk counts for the current table."""
        counts = await self.store.counts_by_source()
        documents = [
            DocumentStats(name=name, chunks=entry.chunks, total_chars=entry.total_chars)
            for name, entry in counts.items()
        ]
        return StoreStats(
            document_count=len(documents),
            chunk_count=sum(d.chunks for d in documents),
            documents=documents,
        )

    async def aclose(self) -> None:
        """Close network clients."""
        await self.embedding.aclose()
        await self.generator.aclose()


class QuerySession:
    """One user's conversation: starting a query cancels the previous one."""

    def __init__(self, pipeline: RAGPipeline):
        self.pipeline = pipeline
        self._current: Optional[CancelToken] = None

    def cancel(self) -> None:
        if self._current is not None:
            self._current.cancel()

    async def ask(
        self,
        question: str,
        image: Optional[bytes] = None,
        model: Optional[str] = None,
    ) -> Answer:
        self.cancel()
        token = CancelToken()
        self._current = token
        try:
            return await self.pipeline.query(question, image=image, model=model, cancel_token=token)
        finally:
            if self._current is token:
                self._current = None
