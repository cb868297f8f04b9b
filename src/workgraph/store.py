"""In-memory node store for the knowledge graph.

Nodes are keyed by ID. Relationships are owned by their source node, so
attaching or detaching a relationship is a mutation of that node.
Deleting a node does not touch relationships that point at it; those
show up as broken relationships in graph validation.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from .errors import (
    NodeNotFoundError,
    RelationshipNotFoundError,
    SourceNotFoundError,
    TargetNotFoundError,
)
from .models import (
    GraphSnapshot,
    KnowledgeNode,
    QueryParams,
    Relationship,
    RelationType,
    utc_now,
)

logger = logging.getLogger(__name__)


def _as_updates(updates: dict[str, Any] | BaseModel) -> dict[str, Any]:
    if isinstance(updates, BaseModel):
        return updates.model_dump(exclude_unset=True)
    return dict(updates)


def merge_node(node: KnowledgeNode, updates: dict[str, Any] | BaseModel) -> KnowledgeNode:
    """Shallow-merge top-level fields of `updates` over `node`.

    Fields not named in `updates` are preserved. Fields that are named are
    replaced wholesale, nested objects included (no deep merge). The
    result is revalidated.

    Raises:
        ValueError: If updates try to change the node ID
    """
    changes = _as_updates(updates)
    if "id" in changes and changes["id"] != node.id:
        raise ValueError(f"Cannot change node id {node.id} to {changes['id']}")

    data = {**node.model_dump(), **changes}
    return KnowledgeNode.model_validate(data)


def coerce_params(params: QueryParams | dict | None) -> QueryParams:
    if params is None:
        return QueryParams()
    if isinstance(params, QueryParams):
        return params
    return QueryParams.model_validate(params)


def _paginate(nodes: list[KnowledgeNode], params: QueryParams) -> list[KnowledgeNode]:
    nodes = nodes[params.offset:]
    if params.limit is not None:
        nodes = nodes[:params.limit]
    return nodes


@dataclass
class GraphStore:
    """Node map plus the relationship lists hanging off each node."""

    nodes: dict[str, KnowledgeNode] = field(default_factory=dict)  # id -> node

    # --- Nodes ---

    def has_node(self, node_id: str) -> bool:
        return node_id in self.nodes

    def get_node(self, node_id: str) -> KnowledgeNode:
        node = self.nodes.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def add_node(self, node: KnowledgeNode) -> KnowledgeNode:
        """Insert a node, replacing any node with the same ID."""
        if node.id in self.nodes:
            logger.debug(f"Overwriting node {node.id}")
        self.nodes[node.id] = node
        return node

    def update_node(self, node_id: str, updates: dict[str, Any] | BaseModel) -> KnowledgeNode:
        """Shallow-merge updates into an existing node."""
        node = self.get_node(node_id)
        merged = merge_node(node, updates)
        self.nodes[node_id] = merged
        return merged

    def delete_node(self, node_id: str) -> KnowledgeNode:
        """Remove a node. Relationships targeting it elsewhere are left in place."""
        node = self.get_node(node_id)
        del self.nodes[node_id]
        return node

    # --- Relationships ---

    def add_relationship(self, relationship: Relationship) -> Relationship:
        """Append a relationship to its source node. No duplicate check."""
        source = self.nodes.get(relationship.source_id)
        if source is None:
            raise SourceNotFoundError(relationship.source_id)
        if relationship.target_id not in self.nodes:
            raise TargetNotFoundError(relationship.target_id)

        source.relationships.append(relationship)
        return relationship

    def _matching(
        self,
        source: KnowledgeNode,
        target_id: str,
        rel_type: RelationType | None,
    ) -> list[int]:
        return [
            i for i, r in enumerate(source.relationships)
            if r.target_id == target_id and (rel_type is None or r.type == rel_type)
        ]

    def update_relationship(
        self,
        source_id: str,
        target_id: str,
        updates: dict[str, Any] | BaseModel,
        rel_type: RelationType | None = None,
    ) -> list[Relationship]:
        """Update every relationship source -> target (of `rel_type`, if given).

        Same matching rule as delete_relationship(). `updated` is stamped
        unless the caller sets it.

        Returns:
            The updated relationships

        Raises:
            SourceNotFoundError: If the source node does not exist
            RelationshipNotFoundError: If nothing matched
        """
        source = self.nodes.get(source_id)
        if source is None:
            raise SourceNotFoundError(source_id)

        indices = self._matching(source, target_id, rel_type)
        if not indices:
            raise RelationshipNotFoundError(source_id, target_id, rel_type)

        changes = {"updated": utc_now(), **_as_updates(updates)}
        if changes.get("source_id", source_id) != source_id:
            raise ValueError("Cannot move a relationship to another source node")

        updated = []
        for i in indices:
            data = {**source.relationships[i].model_dump(), **changes}
            rel = Relationship.model_validate(data)
            source.relationships[i] = rel
            updated.append(rel)
        return updated

    def delete_relationship(
        self,
        source_id: str,
        target_id: str,
        rel_type: RelationType | None = None,
    ) -> int:
        """Remove every relationship source -> target (of `rel_type`, if given).

        Returns:
            Number of relationships removed
        """
        source = self.nodes.get(source_id)
        if source is None:
            raise SourceNotFoundError(source_id)

        doomed = set(self._matching(source, target_id, rel_type))
        source.relationships = [
            r for i, r in enumerate(source.relationships) if i not in doomed
        ]
        return len(doomed)

    def relationships(self) -> list[Relationship]:
        """All relationships, in node insertion order."""
        return [r for node in self.nodes.values() for r in node.relationships]

    def dangling_relationships(self) -> list[Relationship]:
        """Relationships whose target node no longer exists."""
        return [r for r in self.relationships() if r.target_id not in self.nodes]

    # --- Queries ---

    def query(self, params: QueryParams | dict | None = None) -> list[KnowledgeNode]:
        """Filter nodes. All given filters must match, then offset/limit apply."""
        params = coerce_params(params)
        results = list(self.nodes.values())

        if params.type is not None:
            results = [n for n in results if n.type in params.type]

        if params.tags:
            wanted = params.tags
            results = [n for n in results if all(t in n.metadata.tags for t in wanted)]

        if params.date_range is not None:
            start, end = params.date_range.start, params.date_range.end
            results = [n for n in results if start <= n.metadata.updated <= end]

        if params.confidence is not None:
            lo, hi = params.confidence.min, params.confidence.max
            results = [n for n in results if lo <= n.metadata.confidence <= hi]

        if params.relationship_type is not None:
            results = [
                n for n in results
                if any(r.type == params.relationship_type for r in n.relationships)
            ]

        if params.time_window is not None:
            window = params.time_window
            results = [
                n for n in results
                if n.content.workflow is not None
                and n.content.workflow.time_window is not None
                and n.content.workflow.time_window.overlaps(window)
            ]

        return _paginate(results, params)

    def find_related(
        self,
        node_id: str,
        params: QueryParams | dict | None = None,
    ) -> list[KnowledgeNode]:
        """Nodes referenced by this node's relationships.

        When `params` is given, the neighbour set is intersected with the
        nodes matching the query filters, then paginated.
        """
        node = self.get_node(node_id)

        related_ids: list[str] = []
        seen = {node_id}
        for rel in node.relationships:
            for nid in (rel.source_id, rel.target_id):
                if nid not in seen and nid in self.nodes:
                    seen.add(nid)
                    related_ids.append(nid)

        related = [self.nodes[nid] for nid in related_ids]
        if params is None:
            return related

        params = coerce_params(params)
        unpaged = params.model_copy(update={"limit": None, "offset": 0})
        allowed = {n.id for n in self.query(unpaged)}
        return _paginate([n for n in related if n.id in allowed], params)

    # --- Persistence boundary ---

    def snapshot(self) -> GraphSnapshot:
        """Deep copy of the graph with relationships listed separately."""
        return GraphSnapshot(
            nodes=[
                n.model_copy(update={"relationships": []}, deep=True)
                for n in self.nodes.values()
            ],
            relationships=[r.model_copy(deep=True) for r in self.relationships()],
        )

    def restore(self, snapshot: GraphSnapshot) -> None:
        """Replace the store contents with a snapshot.

        Relationships are re-attached to their source nodes. Dangling
        targets are kept as they were. The store is left untouched if a
        relationship's source is missing from the snapshot.
        """
        nodes: dict[str, KnowledgeNode] = {}
        for node in snapshot.nodes:
            nodes[node.id] = node.model_copy(deep=True)

        for rel in snapshot.relationships:
            source = nodes.get(rel.source_id)
            if source is None:
                raise SourceNotFoundError(rel.source_id)
            source.relationships.append(rel.model_copy(deep=True))

        self.nodes = nodes
        logger.debug(f"Restored {len(nodes)} nodes from snapshot taken {snapshot.taken_at}")
