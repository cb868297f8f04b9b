"""Knowledge graph service - composes the store, analyzer and embeddings.

Every mutation runs under one re-entrant lock together with the analyzer
rebuild that follows it, so readers never see an analyzer built from a
half-applied change. Embedding provider and vector store calls happen
outside the lock and always finish before the graph is touched.
"""

import logging
import threading
from collections import Counter
from typing import Any, Iterable

import numpy as np
from pydantic import BaseModel

from .analysis import (
    GraphAnalyzer,
    analyze_workflows,
    calculate_metrics,
    find_bottlenecks,
    pattern_insight,
)
from .constants import DEFAULT_SUGGESTION_LIMIT, DEFAULT_SUGGESTION_MIN_SCORE
from .embeddings import EmbeddingProvider, node_to_text
from .errors import (
    ExternalProviderError,
    GraphError,
    NodeNotFoundError,
    SourceNotFoundError,
    TargetNotFoundError,
)
from .learning import apply_learning, improve
from .models import (
    Analysis,
    GraphSnapshot,
    GraphStats,
    GraphValidation,
    KnowledgeNode,
    NodeCluster,
    Pattern,
    QueryParams,
    Relationship,
    RelationshipSuggestion,
    RelationType,
    ValidationIssue,
    ValidationWarning,
    WorkflowMetrics,
)
from .similarity import default_cluster_count, k_means_cluster, rank_by_similarity
from .store import GraphStore, coerce_params
from .vectors import VectorStore

logger = logging.getLogger(__name__)


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class KnowledgeGraphService:
    """Caller-facing API over an in-memory knowledge graph."""

    def __init__(
        self,
        store: GraphStore | None = None,
        embedder: EmbeddingProvider | None = None,
        vector_store: VectorStore | None = None,
        rng: np.random.Generator | None = None,
    ):
        """Initialize the service.

        Args:
            store: Backing node store (default: empty GraphStore)
            embedder: Embedding provider for the vector operations (optional)
            vector_store: Where embed_node() upserts vectors, and where
                suggest_relationships() searches when set (optional)
            rng: Random generator for clustering (default: unseeded)
        """
        self._store = store if store is not None else GraphStore()
        self.embedder = embedder
        self.vector_store = vector_store
        self._rng = rng
        self._lock = threading.RLock()
        self._analyzer = GraphAnalyzer([])
        self._rebuild()

    def _rebuild(self) -> None:
        """Replace the analyzer with one built from the current graph."""
        self._analyzer = GraphAnalyzer(list(self._store.nodes.values()), self._store.relationships())

    @property
    def analyzer(self) -> GraphAnalyzer:
        return self._analyzer

    @property
    def store(self) -> GraphStore:
        return self._store

    # --- Nodes ---

    def add_node(self, node: KnowledgeNode) -> KnowledgeNode:
        with self._lock:
            self._store.add_node(node)
            self._rebuild()
            return node

    def get_node(self, node_id: str) -> KnowledgeNode:
        with self._lock:
            return self._store.get_node(node_id)

    def update_node(self, node_id: str, updates: dict[str, Any] | BaseModel) -> KnowledgeNode:
        with self._lock:
            node = self._store.update_node(node_id, updates)
            self._rebuild()
            return node

    def delete_node(self, node_id: str) -> KnowledgeNode:
        """Delete a node. Relationships pointing at it are left dangling."""
        self.get_node(node_id)
        if self.vector_store is not None:
            self.vector_store.delete(node_id)
        with self._lock:
            node = self._store.delete_node(node_id)
            self._rebuild()
            return node

    def batch_add_nodes(self, nodes: Iterable[KnowledgeNode]) -> list[KnowledgeNode]:
        """Insert/overwrite many nodes with a single analyzer rebuild."""
        nodes = list(nodes)
        with self._lock:
            for node in nodes:
                self._store.add_node(node)
            self._rebuild()
        logger.debug(f"Added {len(nodes)} nodes")
        return nodes

    # --- Relationships ---

    def add_relationship(self, relationship: Relationship) -> Relationship:
        with self._lock:
            self._store.add_relationship(relationship)
            self._rebuild()
            return relationship

    def update_relationship(
        self,
        source_id: str,
        target_id: str,
        updates: dict[str, Any] | BaseModel,
        rel_type: RelationType | None = None,
    ) -> list[Relationship]:
        with self._lock:
            updated = self._store.update_relationship(source_id, target_id, updates, rel_type)
            self._rebuild()
            return updated

    def delete_relationship(
        self,
        source_id: str,
        target_id: str,
        rel_type: RelationType | None = None,
    ) -> int:
        with self._lock:
            removed = self._store.delete_relationship(source_id, target_id, rel_type)
            if removed:
                self._rebuild()
            return removed

    def batch_add_relationships(self, relationships: Iterable[Relationship]) -> list[Relationship]:
        """Add many relationships, all or nothing.

        Every endpoint is checked before the first relationship is attached.

        Raises:
            SourceNotFoundError: If any source node is missing
            TargetNotFoundError: If any target node is missing
        """
        relationships = list(relationships)
        with self._lock:
            for rel in relationships:
                if not self._store.has_node(rel.source_id):
                    raise SourceNotFoundError(rel.source_id)
                if not self._store.has_node(rel.target_id):
                    raise TargetNotFoundError(rel.target_id)

            for rel in relationships:
                self._store.add_relationship(rel)
            self._rebuild()
        logger.debug(f"Added {len(relationships)} relationships")
        return relationships

    # --- Queries ---

    def query(self, params: QueryParams | dict | None = None) -> list[KnowledgeNode]:
        with self._lock:
            return self._store.query(params)

    def find_related(
        self,
        node_id: str,
        params: QueryParams | dict | None = None,
    ) -> list[KnowledgeNode]:
        with self._lock:
            return self._store.find_related(node_id, params)

    # --- Analysis ---

    def _node_patterns(self, node_id: str) -> list[Pattern]:
        """Patterns involving an existing node."""
        if not self._store.has_node(node_id):
            raise NodeNotFoundError(node_id)
        return self._analyzer.patterns_for(node_id)

    def find_patterns(self, params: QueryParams | dict | None = None) -> Analysis:
        """Full analysis, optionally restricted to one pattern type."""
        with self._lock:
            patterns = self._analyzer.analyze_patterns()
            pattern_type = coerce_params(params).pattern_type
            if pattern_type is not None:
                patterns = [p for p in patterns if p.type == pattern_type]
            return self._analyzer.build_analysis(patterns)

    def analyze(self, node_id: str) -> Analysis:
        """Analysis restricted to patterns the node takes part in."""
        with self._lock:
            return self._analyzer.build_analysis(self._node_patterns(node_id))

    def learn(self, analysis: Analysis) -> list[str]:
        """Reinforce nodes referenced by the analysis patterns.

        Returns:
            IDs of updated nodes
        """
        with self._lock:
            updated = apply_learning(self._store, analysis)
            self._rebuild()
            return updated

    def improve_node(self, node_id: str, improvements: dict[str, Any] | BaseModel) -> KnowledgeNode:
        """Merge improvements, bump the version, stamp updated."""
        with self._lock:
            improved = improve(self._store.get_node(node_id), improvements)
            self._store.nodes[node_id] = improved
            self._rebuild()
            return improved

    def suggest_improvements(self, node_id: str) -> Analysis:
        with self._lock:
            patterns = self._node_patterns(node_id)
            return Analysis(
                patterns=patterns,
                insights=[
                    pattern_insight(
                        p,
                        kind="improvement_opportunity",
                        description=f"Potential improvement based on {p.type} pattern",
                    )
                    for p in patterns
                ],
                metrics=calculate_metrics(patterns),
                workflow_analysis=analyze_workflows(patterns),
            )

    # --- Workflows ---

    def find_workflow_patterns(self, node_id: str) -> list[Pattern]:
        with self._lock:
            return self._node_patterns(node_id)

    def analyze_workflow_efficiency(self, node_id: str) -> Analysis:
        with self._lock:
            return self._analyzer.build_analysis(self._node_patterns(node_id))

    def optimize_workflow(self, node_id: str) -> Analysis:
        """Patterns around the node that promise a gain, as optimization insights."""
        with self._lock:
            patterns = [
                p for p in self._node_patterns(node_id)
                if p.optimization is not None and p.optimization.potential_gain > 0
            ]
            return Analysis(
                patterns=patterns,
                insights=[
                    pattern_insight(
                        p,
                        kind="optimization_opportunity",
                        description=f"Optimization based on {p.type} pattern",
                        importance=p.optimization.potential_gain,
                    )
                    for p in patterns
                ],
                metrics=calculate_metrics(patterns),
                workflow_analysis=analyze_workflows(patterns),
            )

    def predict_workflow_outcome(self, node_id: str) -> Analysis:
        with self._lock:
            patterns = self._node_patterns(node_id)
            return Analysis(
                patterns=patterns,
                insights=[
                    pattern_insight(
                        p,
                        kind="prediction",
                        description=f"Prediction based on {p.type} pattern",
                        actionable=False,
                    )
                    for p in patterns
                ],
                metrics=calculate_metrics(patterns),
                workflow_analysis=analyze_workflows(patterns),
            )

    # --- Validation and stats ---

    def validate_graph(self) -> GraphValidation:
        """Report structural problems as data. Never raises."""
        with self._lock:
            nodes = list(self._store.nodes.values())
            errors: list[ValidationIssue] = []
            warnings: list[ValidationWarning] = []

            for node in nodes:
                if not node.relationships:
                    warnings.append(ValidationWarning(
                        type="orphaned_node",
                        message=f"Node {node.id} has no relationships",
                        suggestion="Consider connecting this node to related concepts",
                        affected_nodes=[node.id],
                    ))

            for rel in self._store.dangling_relationships():
                errors.append(ValidationIssue(
                    type="broken_relationship",
                    message=f"Relationship {rel.source_id} -> {rel.target_id} references non-existent target",
                    node_id=rel.source_id,
                    relationship_ids=[rel.target_id],
                    severity="critical",
                    impact=["data_integrity", "graph_consistency"],
                ))

            for node in nodes:
                if node.type != "workflow":
                    continue
                steps = self._analyzer.workflow_steps(node.id)
                if not steps:
                    warnings.append(ValidationWarning(
                        type="empty_workflow",
                        message=f"Workflow {node.id} has no steps",
                        suggestion="Add steps to complete the workflow definition",
                        affected_nodes=[node.id],
                    ))
                    continue

                ordering = self._analyzer.workflow_edges(steps)
                if ordering and not GraphAnalyzer.is_acyclic(ordering):
                    errors.append(ValidationIssue(
                        type="temporal_cycle",
                        message=f"Workflow {node.id} contains circular temporal dependencies",
                        node_id=node.id,
                        severity="major",
                        impact=["workflow_execution", "temporal_consistency"],
                    ))

            return GraphValidation(is_valid=not errors, errors=errors, warnings=warnings)

    def get_stats(self) -> GraphStats:
        with self._lock:
            nodes = list(self._store.nodes.values())
            relationships = self._store.relationships()
            return GraphStats(
                total_nodes=len(nodes),
                nodes_by_type=dict(Counter(n.type for n in nodes)),
                total_relationships=len(relationships),
                relationships_by_type=dict(Counter(r.type for r in relationships)),
                average_confidence=_mean([n.metadata.confidence for n in nodes]),
                workflow_metrics=self._workflow_metrics(nodes),
            )

    def _workflow_metrics(self, nodes: list[KnowledgeNode]) -> WorkflowMetrics:
        workflows = [n for n in nodes if n.type == "workflow"]
        if not workflows:
            return WorkflowMetrics()

        durations = [
            w.content.workflow.estimated_duration
            for w in workflows
            if w.content.workflow is not None and w.content.workflow.estimated_duration is not None
        ]
        success_rates = [w.metadata.reliability for w in workflows if w.metadata.reliability is not None]

        return WorkflowMetrics(
            average_duration=_mean(durations),
            success_rate=_mean(success_rates),
            bottlenecks=find_bottlenecks(self._analyzer.analyze_patterns()),
            critical_paths=self._analyzer.critical_paths(),
        )

    # --- Persistence boundary ---

    def snapshot(self) -> GraphSnapshot:
        with self._lock:
            return self._store.snapshot()

    def restore(self, snapshot: GraphSnapshot) -> None:
        with self._lock:
            self._store.restore(snapshot)
            self._rebuild()
        logger.debug(f"Restored {len(snapshot.nodes)} nodes, {len(snapshot.relationships)} relationships")

    # --- Embeddings ---

    def _require_embedder(self) -> EmbeddingProvider:
        if self.embedder is None:
            raise GraphError("No embedding provider configured")
        return self.embedder

    def _embed(self, texts: list[str]) -> list[list[float]]:
        """Embed texts, tagging any provider failure as ExternalProviderError."""
        embedder = self._require_embedder()
        try:
            if len(texts) == 1:
                return [embedder.embed(texts[0])]
            return embedder.embed_batch(texts)
        except GraphError:
            raise
        except Exception as e:
            name = getattr(embedder, "name", type(embedder).__name__)
            raise ExternalProviderError(f"Embedding provider {name} failed: {e}", provider=name) from e

    def embed_node(self, node_id: str) -> list[float]:
        """Embed a node's text and store the vector on the node.

        The vector is also upserted into the vector store when one is
        configured. Provider failures leave the graph unchanged.
        """
        self._require_embedder()
        node = self.get_node(node_id)

        [vector] = self._embed([node_to_text(node)])
        if self.vector_store is not None:
            self.vector_store.upsert(node_id, vector, {"type": node.type, "title": node.title})

        self.update_node(node_id, {"vector": vector})
        return vector

    def embed_nodes(self, node_ids: Iterable[str] | None = None) -> list[str]:
        """Embed many nodes in one provider batch (default: nodes without a vector).

        Returns:
            IDs of nodes that received a vector
        """
        self._require_embedder()
        with self._lock:
            if node_ids is None:
                targets = [n for n in self._store.nodes.values() if n.vector is None]
            else:
                targets = [self._store.get_node(nid) for nid in node_ids]
        if not targets:
            return []

        vectors = self._embed([node_to_text(n) for n in targets])
        if self.vector_store is not None:
            for node, vector in zip(targets, vectors):
                self.vector_store.upsert(node.id, vector, {"type": node.type, "title": node.title})

        embedded = []
        with self._lock:
            for node, vector in zip(targets, vectors):
                if not self._store.has_node(node.id):
                    logger.warning(f"Node {node.id} was deleted while embedding, skipping")
                    continue
                self._store.update_node(node.id, {"vector": vector})
                embedded.append(node.id)
            self._rebuild()
        return embedded

    def suggest_relationships(
        self,
        node_id: str,
        top_k: int = DEFAULT_SUGGESTION_LIMIT,
        min_score: float = DEFAULT_SUGGESTION_MIN_SCORE,
    ) -> list[RelationshipSuggestion]:
        """Nodes similar to this one that it does not already point at.

        Read-only. Uses the node's stored vector, embedding it on the fly
        if it has none. Searches the vector store when configured,
        otherwise scans node vectors in memory.
        """
        with self._lock:
            node = self._store.get_node(node_id)
            excluded = {node_id, *(r.target_id for r in node.relationships)}
            candidates = [
                (n.id, n.vector) for n in self._store.nodes.values()
                if n.id not in excluded and n.vector
            ]
            existing = set(self._store.nodes)

        vector = node.vector
        if not vector:
            [vector] = self._embed([node_to_text(node)])

        if self.vector_store is not None:
            matches = self.vector_store.query(vector, top_k + len(excluded), min_score)
            ranked = [
                (m.id, m.score) for m in matches
                if m.id not in excluded and m.id in existing
            ][:top_k]
        else:
            ranked = rank_by_similarity(vector, candidates, top_k, min_score)

        return [
            RelationshipSuggestion(source_id=node_id, target_id=target_id, score=score)
            for target_id, score in ranked
        ]

    def cluster_nodes(
        self,
        k: int | None = None,
        node_ids: Iterable[str] | None = None,
    ) -> list[NodeCluster]:
        """Group nodes by embedding similarity with k-means.

        Nodes without a stored vector are embedded for this call only.
        k defaults to default_cluster_count() for the number of nodes.
        """
        with self._lock:
            if node_ids is None:
                nodes = list(self._store.nodes.values())
            else:
                nodes = [self._store.get_node(nid) for nid in node_ids]
        if not nodes:
            return []

        missing = [n for n in nodes if not n.vector]
        fresh: dict[str, list[float]] = {}
        if missing:
            vectors = self._embed([node_to_text(n) for n in missing])
            fresh = {n.id: v for n, v in zip(missing, vectors)}

        ids = [n.id for n in nodes]
        matrix = [n.vector or fresh[n.id] for n in nodes]
        clusters = k_means_cluster(
            matrix,
            k if k is not None else default_cluster_count(len(nodes)),
            rng=self._rng,
        )
        return [
            NodeCluster(
                node_ids=[ids[i] for i in c.members],
                centroid=c.centroid,
                cohesion=c.cohesion,
                average_similarity=c.average_similarity,
            )
            for c in clusters
        ]
