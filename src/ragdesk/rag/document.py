"""Document, chunk and result data structures for the retrieval pipeline."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

PREVIEW_LENGTH = 150


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Document(BaseModel):
    """A source document to be indexed.

    Attributes:
        name: Document filename, used as the chunk source
        text: Raw document text
    """

    name: str
    text: str

    def __repr__(self) -> str:
        preview = self.text[:50] + "..." if len(self.text) > 50 else self.text
        return f"Document(name={self.name!r}, text={preview!r})"


class RecordMetadata(BaseModel):
    """Source metadata stored with each persisted record."""

    source: str
    chunk_index: int
    total_chunks: int
    processed_at: datetime


class TableRecord(BaseModel):
    """One record of the persisted embedding table."""

    id: str
    document: str
    embedding: list[float]
    metadata: RecordMetadata


class Chunk(BaseModel):
    """A contiguous slice of a source document with its embedding.

    Attributes:
        id: Unique identifier, ``{source}-chunk-{index}``
        text: Trimmed, non-empty chunk content
        embedding: Embedding vector
        source: Originating document filename
        chunk_index: 1-based position within the source
        total_chunks: Number of chunks in the source
        created_at: When the embedding was generated
    """

    id: str
    text: str
    embedding: list[float]
    source: str
    chunk_index: int
    total_chunks: int
    created_at: datetime = Field(default_factory=_utcnow)

    @staticmethod
    def make_id(source: str, index: int) -> str:
        return f"{source}-chunk-{index}"

    @classmethod
    def from_record(cls, record: TableRecord) -> "Chunk":
        return cls(
            id=record.id,
            text=record.document,
            embedding=record.embedding,
            source=record.metadata.source,
            chunk_index=record.metadata.chunk_index,
            total_chunks=record.metadata.total_chunks,
            created_at=record.metadata.processed_at,
        )

    def to_record(self) -> TableRecord:
        return TableRecord(
            id=self.id,
            document=self.text,
            embedding=self.embedding,
            metadata=RecordMetadata(
                source=self.source,
                chunk_index=self.chunk_index,
                total_chunks=self.total_chunks,
                processed_at=self.created_at,
            ),
        )

    def __repr__(self) -> str:
        preview = self.text[:30] + "..." if len(self.text) > 30 else self.text
        return f"Chunk(id={self.id!r}, source={self.source!r}, text={preview!r})"


class RankedChunk(BaseModel):
    """A chunk scored against one query.

    Attributes:
        chunk: The stored chunk
        similarity: Cosine similarity to the query vector
    """

    chunk: Chunk
    similarity: float

    @property
    def id(self) -> str:
        return self.chunk.id

    @property
    def source(self) -> str:
        return self.chunk.source

    @property
    def text(self) -> str:
        return self.chunk.text

    def __repr__(self) -> str:
        return f"RankedChunk(id={self.id!r}, similarity={self.similarity:.4f})"


class SearchDiagnostics(BaseModel):
    """Counters describing one retrieval pass."""

    total_chunks_searched: int = 0
    chunks_used: int = 0
    top_similarity: float = 0.0


class RetrievalResult(BaseModel):
    """Output of the retrieval stage for one query."""

    chunks: list[RankedChunk] = Field(default_factory=list)
    context: str = ""
    confidence: int = 0
    enhanced_query: str = ""
    diagnostics: SearchDiagnostics = Field(default_factory=SearchDiagnostics)


class Source(BaseModel):
    """A source reference returned to the caller."""

    id: str
    source: str
    similarity: float
    content_preview: str

    @classmethod
    def from_ranked(cls, ranked: RankedChunk) -> "Source":
        return cls(
            id=ranked.id,
            source=ranked.source,
            similarity=ranked.similarity,
            content_preview=ranked.text[:PREVIEW_LENGTH] + "...",
        )


class Diagnostics(BaseModel):
    """Diagnostic metadata attached to every answer."""

    total_chunks_searched: int = 0
    chunks_used: int = 0
    top_similarity: float = 0.0
    confidence_score: int = 0
    embedding_model: str = ""
    generation_model: str = ""
    elapsed_ms: int = 0
    elapsed_formatted: str = "0.00s"


class Answer(BaseModel):
    """Terminal response of one query."""

    answer: str
    reasoning: Optional[str] = None
    query: str
    status: str
    sources: list[Source] = Field(default_factory=list)
    confidence: int = 0
    confidence_level: str = "low"
    has_image: bool = False
    model_used: str = ""
    diagnostics: Diagnostics = Field(default_factory=Diagnostics)
    elapsed_ms: int = 0
    error: Optional[str] = None


class IndexReport(BaseModel):
    """Summary of a completed build."""

    chunks_indexed: int
    documents_indexed: int
    table_path: str


class SourceCounts(BaseModel):
    """Per-source aggregate over the stored chunks."""

    chunks: int = 0
    total_chars: int = 0


class DocumentStats(BaseModel):
    """Per-document statistics for the UI."""

    name: str
    chunks: int
    total_chars: int


class StoreStats(BaseModel):
    """Corpus statistics."""

    document_count: int
    chunk_count: int
    documents: list[DocumentStats] = Field(default_factory=list)
