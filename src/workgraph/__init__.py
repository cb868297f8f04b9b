"""Workgraph - in-memory knowledge graph with workflow pattern analysis."""

from .analysis import GraphAnalyzer
from .cache import CacheConfig, VectorCache
from .embeddings import CachedEmbedder, EmbeddingProvider, SentenceTransformerEmbedder
from .errors import (
    ExternalProviderError,
    GraphError,
    NodeNotFoundError,
    NumericDegenerateError,
    RelationshipNotFoundError,
    SnapshotNotFoundError,
    SourceNotFoundError,
    TargetNotFoundError,
)
from .models import (
    Analysis,
    GraphSnapshot,
    KnowledgeNode,
    NodeContent,
    NodeMetadata,
    Pattern,
    QueryParams,
    Relationship,
)
from .persistence import SnapshotStore
from .service import KnowledgeGraphService
from .similarity import cosine_similarity, k_means_cluster
from .store import GraphStore
from .vectors import InMemoryVectorStore, SqliteVectorStore, VectorStore

__version__ = "0.1.0"

__all__ = [
    "Analysis",
    "CacheConfig",
    "CachedEmbedder",
    "EmbeddingProvider",
    "ExternalProviderError",
    "GraphAnalyzer",
    "GraphError",
    "GraphSnapshot",
    "GraphStore",
    "InMemoryVectorStore",
    "KnowledgeGraphService",
    "KnowledgeNode",
    "NodeContent",
    "NodeMetadata",
    "NodeNotFoundError",
    "NumericDegenerateError",
    "Pattern",
    "QueryParams",
    "Relationship",
    "RelationshipNotFoundError",
    "SentenceTransformerEmbedder",
    "SnapshotNotFoundError",
    "SnapshotStore",
    "SourceNotFoundError",
    "SqliteVectorStore",
    "TargetNotFoundError",
    "VectorCache",
    "VectorStore",
    "cosine_similarity",
    "k_means_cluster",
]
