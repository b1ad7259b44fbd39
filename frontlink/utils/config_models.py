from pydantic import BaseModel, Field
from typing import Dict, Any, List, Optional


class ComponentConfig(BaseModel):
    """A model for a single pluggable component (chunker, embedder, summarizer)."""

    type: str
    config: Dict[str, Any] = {}


class SourceConfig(BaseModel):
    """Where the documents live and which of them to pick up."""

    path: Optional[str] = None
    glob_patterns: List[str] = ["**/*.md"]
    include_drafts: bool = False
    prune: bool = True


class StoreConfig(BaseModel):
    path: Optional[str] = None


class ServiceConfig(BaseModel):
    """Batching, concurrency and retry settings for external service calls."""

    batch_size: int = Field(16, ge=1, le=2048)
    max_workers: int = Field(4, ge=1, le=32)
    max_retries: int = Field(3, ge=0, le=10)
    retry_delay: float = Field(1.0, ge=0)
    backoff_multiplier: float = Field(2.0, ge=1)
    max_delay: float = Field(60.0, ge=0)
    requests_per_minute: Optional[float] = Field(500.0, gt=0)


class EmbeddingConfig(BaseModel):
    # Sends "<title>\n\n<chunk>" to the embedder; stored chunk text is unchanged.
    prepend_title: bool = False


class SimilarityConfig(BaseModel):
    max_related: int = Field(3, ge=1, le=50)
    min_similarity: float = Field(0.4, ge=0.0, le=1.0)
    field: str = "related"


class WriterConfig(BaseModel):
    backup: bool = True
    overwrite: bool = True


class SummaryConfig(BaseModel):
    min_length: int = Field(1000, ge=0)


class AppConfig(BaseModel):
    """The top-level model for the whole frontlink.yaml configuration."""

    source: SourceConfig = Field(default_factory=SourceConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    chunker: ComponentConfig = Field(
        default_factory=lambda: ComponentConfig(
            type="recursive_character", config={"chunk_size": 2000, "chunk_overlap": 0}
        )
    )
    embedder: ComponentConfig = Field(
        default_factory=lambda: ComponentConfig(
            type="openai", config={"model_name": "text-embedding-3-small"}
        )
    )
    summarizer: ComponentConfig = Field(
        default_factory=lambda: ComponentConfig(type="openai", config={"model_name": "gpt-4o"})
    )
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    similarity: SimilarityConfig = Field(default_factory=SimilarityConfig)
    writer: WriterConfig = Field(default_factory=WriterConfig)
    summary: SummaryConfig = Field(default_factory=SummaryConfig)
