"""Shared test fixtures and helpers for workgraph tests."""

import tempfile
from pathlib import Path

import numpy as np
import pytest

from workgraph.models import (
    KnowledgeNode,
    NodeContent,
    NodeMetadata,
    Relationship,
    WorkflowInfo,
)
from workgraph.service import KnowledgeGraphService


# --- Helpers ---


def make_node(
    node_id: str,
    type: str = "concept",
    title: str | None = None,
    duration: float | None = None,
    **metadata,
) -> KnowledgeNode:
    """Build a node with a readable title and optional workflow duration."""
    workflow = WorkflowInfo(estimated_duration=duration) if duration is not None else None
    return KnowledgeNode(
        id=node_id,
        type=type,
        content=NodeContent(title=title or node_id.upper(), workflow=workflow),
        metadata=NodeMetadata(**metadata),
    )


def rel(source_id: str, target_id: str, type: str = "related", strength: float = 0.5) -> Relationship:
    return Relationship(source_id=source_id, target_id=target_id, type=type, strength=strength)


class FakeEmbedder:
    """Deterministic embedding provider keyed on words in the text.

    Each keyword owns one dimension; unknown texts embed to the last one.
    """

    name = "fake"

    def __init__(self, keywords=("deploy", "test", "review", "docs"), fail_times: int = 0):
        self.keywords = list(keywords)
        self.fail_times = fail_times
        self.calls = 0

    def _vector(self, text: str) -> list[float]:
        lowered = text.lower()
        vector = [1.0 if k in lowered else 0.0 for k in self.keywords]
        vector.append(0.0 if any(vector) else 1.0)
        return vector

    def _maybe_fail(self):
        self.calls += 1
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RuntimeError("provider down")

    def embed(self, text: str) -> list[float]:
        self._maybe_fail()
        return self._vector(text)

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self._maybe_fail()
        return [self._vector(t) for t in texts]


class FakeClock:
    """Manually advanced clock for cache expiry tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# --- Fixtures ---


@pytest.fixture
def temp_dir():
    """Provide a temporary directory, removed after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def service():
    """Provide an empty KnowledgeGraphService."""
    return KnowledgeGraphService(rng=np.random.default_rng(7))


@pytest.fixture
def workflow_service(service):
    """Service holding workflow w1 with steps s1 -> s2 -> s3.

    Steps are part_of w1 and chained by follows edges.
    """
    service.batch_add_nodes([
        make_node("w1", type="workflow", title="Release", duration=600, reliability=0.9),
        make_node("s1", type="step", title="Build", duration=100, confidence=0.6, importance=0.4, frequency=2),
        make_node("s2", type="step", title="Test", duration=200, confidence=0.8, importance=0.6, frequency=4),
        make_node("s3", type="step", title="Deploy", duration=300, confidence=1.0, importance=0.8, frequency=6),
    ])
    service.batch_add_relationships([
        rel("s1", "w1", "part_of", 0.9),
        rel("s2", "w1", "part_of", 0.9),
        rel("s3", "w1", "part_of", 0.9),
        rel("s1", "s2", "follows", 0.7),
        rel("s2", "s3", "follows", 0.7),
    ])
    return service


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def clock():
    return FakeClock()
