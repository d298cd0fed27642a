"""In-memory embedding store backed by a persisted JSON table."""

import asyncio
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import TypeAdapter, ValidationError

from .base import BaseChunker, BaseEmbedding
from .chunking import WordChunker
from .document import Chunk, Document, IndexReport, SourceCounts, TableRecord
from .exceptions import (
    CorruptTableError,
    DimensionMismatchError,
    EmbeddingServiceError,
    StoreNotFoundError,
)

logger = logging.getLogger(__name__)

_table_adapter = TypeAdapter(list[TableRecord])


class EmbeddingStore:
    """The full corpus held in memory as an immutable snapshot.

    The table is loaded lazily on first use and cached until the path
    changes or a build completes. Readers rank against the tuple returned
    by ``load()``; builds and path changes swap the cache reference
    instead of mutating it, so an in-flight query keeps a consistent
    snapshot.

    Example:
        ```python
        store = EmbeddingStore("embedding_db/embeddings.json")
        await store.build(documents, OllamaEmbedding())
        chunks = await store.load()
        ```
    """

    def __init__(
        self,
        table_path: str | Path,
        chunker: Optional[BaseChunker] = None,
    ):
        """Initialize the store.

        Args:
            table_path: Location of the persisted embedding table
            chunker: Chunker used by ``build`` (default: WordChunker)
        """
        self._table_path = Path(table_path)
        self.chunker = chunker or WordChunker()
        self._chunks: tuple[Chunk, ...] | None = None
        self._load_lock = asyncio.Lock()

    @property
    def table_path(self) -> Path:
        return self._table_path

    @property
    def is_loaded(self) -> bool:
        return self._chunks is not None

    def set_path(self, table_path: str | Path) -> None:
        """Point the store at another table and drop the cache."""
        self._table_path = Path(table_path)
        self.invalidate()
        logger.info(f"Updated embeddings path: {self._table_path}")

    def invalidate(self) -> None:
        """Drop the cached chunks; the next ``load()`` re-reads the table."""
        self._chunks = None

    async def load(self) -> tuple[Chunk, ...]:
        """Return the cached corpus, reading the table on first use.

        Raises:
            StoreNotFoundError: If the table does not exist
            CorruptTableError: If the table does not parse
            DimensionMismatchError: If stored embeddings differ in length
        """
        chunks = self._chunks
        if chunks is not None:
            return chunks

        async with self._load_lock:
            if self._chunks is not None:
                return self._chunks

            path = self._table_path
            logger.info(f"Loading document embeddings from {path}")

            loop = asyncio.get_running_loop()
            chunks = await loop.run_in_executor(None, _read_table, path)

            # The path may have been swapped while reading
            if path == self._table_path:
                self._chunks = chunks

            logger.info(f"Loaded {len(chunks)} document chunks")
            return chunks

    async def build(
        self,
        documents: list[Document],
        embedding: BaseEmbedding,
        concurrency: int = 1,
    ) -> IndexReport:
        """Chunk, embed and persist all documents, replacing the table.

        Embedding calls run one at a time unless ``concurrency`` is
        greater than one. The table is only written once every chunk has
        an embedding, and is swapped in atomically.

        Args:
            documents: Documents to index
            embedding: Embedding client
            concurrency: Maximum embedding calls in flight

        Returns:
            Build summary

        Raises:
            EmbeddingServiceError: If any embedding call fails; the
                previous table is left untouched
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        pending: list[tuple[Document, int, int, str]] = []
        indexed_documents = 0
        for document in documents:
            texts = self.chunker.chunk(document)
            if not texts:
                logger.warning(f"{document.name} produced no chunks, skipping")
                continue
            indexed_documents += 1
            for index, text in enumerate(texts, start=1):
                pending.append((document, index, len(texts), text))

        logger.info(f"Embedding {len(pending)} chunks from {indexed_documents} documents")

        semaphore = asyncio.Semaphore(concurrency)

        async def embed_one(document: Document, index: int, total: int, text: str) -> Chunk:
            async with semaphore:
                vector = await embedding.embed(text)
            chunk_id = Chunk.make_id(document.name, index)
            logger.debug(f"Embedded {chunk_id} ({index}/{total})")
            return Chunk(
                id=chunk_id,
                text=text,
                embedding=vector,
                source=document.name,
                chunk_index=index,
                total_chunks=total,
                created_at=datetime.now(timezone.utc),
            )

        try:
            if concurrency == 1:
                chunks = [await embed_one(*item) for item in pending]
            else:
                # gather keeps input order
                chunks = await _gather_or_cancel([embed_one(*item) for item in pending])
        except EmbeddingServiceError:
            logger.error("Embedding failed, keeping previous table")
            raise

        _check_dimensions(chunks)

        path = self._table_path
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, _write_table, path, chunks)
        self.invalidate()

        logger.info(f"Saved {len(chunks)} embeddings to {path}")
        return IndexReport(
            chunks_indexed=len(chunks),
            documents_indexed=indexed_documents,
            table_path=str(path),
        )

    async def counts_by_source(self) -> dict[str, SourceCounts]:
        """Aggregate chunk counts and text size per source document."""
        counts: dict[str, SourceCounts] = {}
        for chunk in await self.load():
            entry = counts.setdefault(chunk.source, SourceCounts())
            entry.chunks += 1
            entry.total_chars += len(chunk.text)
        return counts


async def _gather_or_cancel(coros: list) -> list:
    """Gather in input order; on the first failure cancel the rest and wait for them."""
    tasks = [asyncio.ensure_future(coro) for coro in coros]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def _check_dimensions(chunks: list[Chunk] | tuple[Chunk, ...]) -> None:
    if not chunks:
        return
    expected = len(chunks[0].embedding)
    for chunk in chunks:
        if len(chunk.embedding) != expected:
            raise DimensionMismatchError(expected, len(chunk.embedding), chunk.id)


def _read_table(path: Path) -> tuple[Chunk, ...]:
    """Read and validate a persisted table."""
    if not path.exists():
        raise StoreNotFoundError(str(path))

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        records = _table_adapter.validate_python(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise CorruptTableError(str(path), f"invalid JSON ({e})") from e
    except ValidationError as e:
        raise CorruptTableError(str(path), f"unexpected record shape ({e.error_count()} errors)") from e

    seen: set[str] = set()
    for record in records:
        if record.id in seen:
            raise CorruptTableError(str(path), f"duplicate chunk id '{record.id}'")
        seen.add(record.id)

    chunks = tuple(Chunk.from_record(record) for record in records)
    _check_dimensions(chunks)
    return chunks


def _write_table(path: Path, chunks: list[Chunk]) -> None:
    """Write the table to a temporary file and swap it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = [chunk.to_record().model_dump(mode="json") for chunk in chunks]

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
