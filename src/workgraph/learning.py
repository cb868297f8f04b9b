"""Feedback rules that write analysis results back onto nodes.

Provides:
- reinforce_node(): the per-pattern nudge applied by learn()
- apply_learning(): run the nudge over every node an analysis references
- improve(): merge improvements and bump the node version

These are simple additive rules, not gradient-based learning.
"""

import logging
from typing import Any

from pydantic import BaseModel

from .constants import LEARNING_CONFIDENCE_INCREMENT, MAX_CONFIDENCE, MAX_IMPORTANCE
from .models import Analysis, KnowledgeNode, Pattern, utc_now
from .store import GraphStore, merge_node

logger = logging.getLogger(__name__)


def reinforce_node(
    node: KnowledgeNode,
    pattern: Pattern,
    increment: float = LEARNING_CONFIDENCE_INCREMENT,
) -> KnowledgeNode:
    """Return a copy of `node` nudged by one pattern it takes part in.

    - confidence += increment, clamped to 1.0
    - frequency += pattern frequency (missing frequency counts as 0)
    - importance += pattern impact, clamped to 1.0 (missing counts as 0)
    """
    meta = node.metadata
    metadata = meta.model_copy(update={
        "confidence": min(MAX_CONFIDENCE, meta.confidence + increment),
        "frequency": (meta.frequency or 0.0) + pattern.frequency,
        "importance": min(MAX_IMPORTANCE, (meta.importance or 0.0) + pattern.impact),
    })
    return node.model_copy(update={"metadata": metadata})


def apply_learning(
    store: GraphStore,
    analysis: Analysis,
    increment: float = LEARNING_CONFIDENCE_INCREMENT,
) -> list[str]:
    """Reinforce every node referenced by the analysis patterns.

    A node referenced by several patterns is nudged once per pattern.
    Referenced nodes that no longer exist are skipped with a warning.

    Args:
        store: Graph store (modified in place)
        analysis: Analysis whose patterns drive the update
        increment: Confidence step per pattern

    Returns:
        IDs of updated nodes, first-touched order
    """
    updated: dict[str, None] = {}

    for pattern in analysis.patterns:
        for node_id in pattern.related_nodes:
            node = store.nodes.get(node_id)
            if node is None:
                logger.warning(f"Skipping learning for missing node {node_id} ({pattern.type} pattern)")
                continue
            store.nodes[node_id] = reinforce_node(node, pattern, increment)
            updated[node_id] = None

    logger.debug(f"Learning touched {len(updated)} nodes from {len(analysis.patterns)} patterns")
    return list(updated)


def improve(node: KnowledgeNode, improvements: dict[str, Any] | BaseModel) -> KnowledgeNode:
    """Merge improvements into a node, then bump version and stamp updated.

    The version always becomes the pre-merge version + 1, even when the
    improvements carry their own metadata.
    """
    merged = merge_node(node, improvements)
    metadata = merged.metadata.model_copy(update={
        "version": node.metadata.version + 1,
        "updated": utc_now(),
    })
    return merged.model_copy(update={"metadata": metadata})
