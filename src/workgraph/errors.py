"""Exception types raised by workgraph.

Structural problems found by graph validation are returned as data
(see GraphValidation); only the conditions below are raised.
"""


class GraphError(Exception):
    """Base error for knowledge graph operations."""
    pass


class NodeNotFoundError(GraphError, KeyError):
    """A referenced node id does not exist."""

    label = "Node"

    def __init__(self, node_id: str):
        super().__init__(f"{self.label} not found: {node_id}")
        self.node_id = node_id

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.args[0]


class SourceNotFoundError(NodeNotFoundError):
    """Relationship source node does not exist."""

    label = "Source node"


class TargetNotFoundError(NodeNotFoundError):
    """Relationship target node does not exist."""

    label = "Target node"


class RelationshipNotFoundError(GraphError, KeyError):
    """No relationship matched a source/target pair."""

    def __init__(self, source_id: str, target_id: str, rel_type: str | None = None):
        suffix = f" ({rel_type})" if rel_type else ""
        super().__init__(f"Relationship not found: {source_id} -> {target_id}{suffix}")
        self.source_id = source_id
        self.target_id = target_id
        self.rel_type = rel_type

    def __str__(self) -> str:
        return self.args[0]


class SnapshotNotFoundError(GraphError, KeyError):
    """No stored snapshot with the requested id (or no snapshots at all)."""

    def __init__(self, snapshot_id: str | None = None):
        message = f"Snapshot not found: {snapshot_id}" if snapshot_id else "No snapshots stored"
        super().__init__(message)
        self.snapshot_id = snapshot_id

    def __str__(self) -> str:
        return self.args[0]


class NumericDegenerateError(GraphError, ValueError):
    """Numeric operation has no defined result (zero vector, empty set)."""
    pass


class ExternalProviderError(GraphError):
    """Embedding provider or vector store call failed."""

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.provider = provider
