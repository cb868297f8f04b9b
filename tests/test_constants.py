"""Tests for the tunables in constants.py.

Verifies the documented values and that the modules reading them import
from constants.py instead of redefining them.
"""

import ast
from pathlib import Path

import pytest

import workgraph.constants as constants

SRC = Path(__file__).parent.parent / "src" / "workgraph"


class TestConstantsValues:
    """Verify every tunable has its documented value."""

    def test_learning(self):
        assert constants.LEARNING_CONFIDENCE_INCREMENT == 0.1
        assert constants.MAX_CONFIDENCE == 1.0
        assert constants.MAX_IMPORTANCE == 1.0

    def test_pattern_weights_sum_to_one(self):
        total = constants.PATTERN_NODE_CONFIDENCE_WEIGHT + constants.PATTERN_EDGE_STRENGTH_WEIGHT
        assert total == pytest.approx(1.0)

    def test_thresholds(self):
        assert constants.BOTTLENECK_VARIABILITY_THRESHOLD == 0.5
        assert constants.SUGGESTION_GAIN_THRESHOLD == 0.3

    def test_metric_targets(self):
        assert constants.CONFIDENCE_METRIC_BENCHMARK == 0.8
        assert constants.CONFIDENCE_METRIC_GOAL == 0.9
        assert constants.IMPACT_METRIC_BENCHMARK == 0.7
        assert constants.IMPACT_METRIC_GOAL == 0.8

    def test_clustering(self):
        assert constants.KMEANS_MAX_ITERATIONS == 100
        assert constants.KMEANS_TOLERANCE == 1e-4
        assert constants.MAX_DEFAULT_CLUSTERS == 5

    def test_workflow_pattern_types(self):
        assert constants.WORKFLOW_PATTERN_TYPES == ("sequence", "parallel", "choice")

    def test_time_constants(self):
        assert constants.SECONDS_PER_DAY == 86400
        assert constants.SECONDS_PER_WEEK == 604800


class TestNoDuplicateDefinitions:
    """Constants are defined once, in constants.py."""

    def _get_module_level_assignments(self, filepath: Path) -> set[str]:
        """Parse a Python file and return top-level UPPER_CASE assignment names."""
        tree = ast.parse(filepath.read_text())
        names = set()
        for node in ast.iter_child_nodes(tree):
            if isinstance(node, ast.Assign):
                for target in node.targets:
                    if isinstance(target, ast.Name) and target.id.isupper():
                        names.add(target.id)
        return names

    @pytest.mark.parametrize("module", ["analysis.py", "similarity.py", "learning.py", "cache.py"])
    def test_module_defines_no_tunables(self, module):
        defined = {name for name in dir(constants) if name.isupper()}
        overlap = self._get_module_level_assignments(SRC / module) & defined
        assert overlap == set(), f"Constants redefined in {module}: {overlap}"

    @pytest.mark.parametrize("module", ["analysis.py", "similarity.py", "learning.py", "cache.py"])
    def test_module_imports_from_constants(self, module):
        assert "from .constants import" in (SRC / module).read_text()
