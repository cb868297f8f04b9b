"""Pattern detection and structural analysis over a graph snapshot.

Provides:
- GraphAnalyzer: read-only pass over nodes and relationships, built once
  per graph version (pattern detection, cycles, longest paths)
- find_bottlenecks() / analyze_workflows(): workflow aggregation
- generate_insights() / calculate_metrics(): Analysis assembly

The analyzer never mutates what it is given. It is rebuilt from scratch
after every graph mutation rather than patched incrementally.
"""

import logging
import math
from collections import defaultdict
from typing import Iterable

from .constants import (
    BOTTLENECK_VARIABILITY_THRESHOLD,
    CONFIDENCE_METRIC_BENCHMARK,
    CONFIDENCE_METRIC_GOAL,
    DEPENDENCY_RELATION_TYPES,
    IMPACT_METRIC_BENCHMARK,
    IMPACT_METRIC_GOAL,
    LONGEST_PATH_MAX_EXPANSIONS,
    ORDERING_RELATION_TYPES,
    PATTERN_EDGE_STRENGTH_WEIGHT,
    PATTERN_NODE_CONFIDENCE_WEIGHT,
    SUGGESTION_GAIN_THRESHOLD,
    WORKFLOW_PATTERN_TYPES,
)
from .models import (
    Analysis,
    CriticalPath,
    Insight,
    InsightImpact,
    KnowledgeNode,
    Metric,
    MetricContext,
    Pattern,
    PatternOptimization,
    PatternTemporal,
    Relationship,
    Timeline,
    WorkflowAnalysis,
)

logger = logging.getLogger(__name__)


def _mean(values: Iterable[float]) -> float:
    values = list(values)
    if not values:
        return 0.0
    return sum(values) / len(values)


def _unique(ids: Iterable[str]) -> list[str]:
    """Deduplicate, keeping first-seen order."""
    return list(dict.fromkeys(ids))


class GraphAnalyzer:
    """Read-only analysis over one version of the graph."""

    def __init__(
        self,
        nodes: Iterable[KnowledgeNode],
        relationships: Iterable[Relationship] | None = None,
    ):
        """Index the graph.

        Args:
            nodes: Graph nodes
            relationships: Edges to analyze (default: every node's own
                relationship list)
        """
        self.nodes = list(nodes)
        if relationships is None:
            relationships = [r for n in self.nodes for r in n.relationships]
        self.relationships = list(relationships)

        self._by_id = {n.id: n for n in self.nodes}
        self._outgoing: dict[str, list[Relationship]] = defaultdict(list)
        self._incoming: dict[str, list[Relationship]] = defaultdict(list)
        for rel in self.relationships:
            self._outgoing[rel.source_id].append(rel)
            self._incoming[rel.target_id].append(rel)

        self._patterns: list[Pattern] | None = None

    def _touching(self, node_id: str) -> list[Relationship]:
        """Edges with node_id at either end (self-loops once)."""
        out = self._outgoing.get(node_id, [])
        inc = [r for r in self._incoming.get(node_id, []) if r.source_id != node_id]
        return out + inc

    def _resolve(self, ids: Iterable[str]) -> list[KnowledgeNode]:
        """Look up IDs, dropping any that are not in the graph."""
        return [self._by_id[i] for i in ids if i in self._by_id]

    # --- Scoring ---

    @staticmethod
    def _confidence(nodes: list[KnowledgeNode], edges: list[Relationship]) -> float:
        """Blend node confidence with the strength of the edges defining a pattern.

        Linear in every edge strength with a positive weight, so a stronger
        edge never lowers the result.
        """
        node_mean = _mean(n.metadata.confidence for n in nodes)
        if not edges:
            return node_mean
        return (
            PATTERN_NODE_CONFIDENCE_WEIGHT * node_mean
            + PATTERN_EDGE_STRENGTH_WEIGHT * _mean(r.strength for r in edges)
        )

    @staticmethod
    def _frequency(nodes: list[KnowledgeNode]) -> float:
        return _mean(n.metadata.frequency or 0.0 for n in nodes)

    @staticmethod
    def _impact(nodes: list[KnowledgeNode]) -> float:
        return _mean(n.metadata.importance or 0.0 for n in nodes)

    @staticmethod
    def _durations(nodes: list[KnowledgeNode]) -> list[float]:
        return [
            n.content.workflow.estimated_duration
            for n in nodes
            if n.content.workflow is not None
            and n.content.workflow.estimated_duration is not None
        ]

    def _temporal(self, nodes: list[KnowledgeNode]) -> PatternTemporal:
        """Duration statistics; variability is the population std of durations."""
        durations = self._durations(nodes)
        average = _mean(durations)
        variability = 0.0
        if durations:
            variability = math.sqrt(_mean((d - average) ** 2 for d in durations))

        return PatternTemporal(
            average_duration=average,
            variability=variability,
            time_windows=[
                n.content.workflow.time_window
                for n in nodes
                if n.content.workflow is not None
                and n.content.workflow.time_window is not None
            ],
        )

    def _optimization(self, nodes: list[KnowledgeNode]) -> PatternOptimization:
        return PatternOptimization(
            potential_gain=max((n.metadata.importance or 0.0 for n in nodes), default=0.0),
            risk_level=1.0 - _mean(n.metadata.reliability or 0.0 for n in nodes) if nodes else 0.0,
            prerequisites=self._prerequisites(nodes),
        )

    def _prerequisites(self, nodes: list[KnowledgeNode]) -> list[str]:
        """Sources of depends_on edges pointing into any of the nodes."""
        return _unique(
            r.source_id
            for n in nodes
            for r in self._incoming.get(n.id, [])
            if r.type == "depends_on"
        )

    # --- Pattern detection ---

    def analyze_patterns(self) -> list[Pattern]:
        """All detected patterns, grouped by kind in a fixed order."""
        if self._patterns is None:
            self._patterns = [
                *self._sequence_patterns(),
                *self._parallel_patterns(),
                *self._choice_patterns(),
                *self._iteration_patterns(),
                *self._temporal_patterns(),
                *self._dependency_patterns(),
                *self._optimization_patterns(),
            ]
            logger.debug(f"Detected {len(self._patterns)} patterns over {len(self.nodes)} nodes")
        return list(self._patterns)

    def patterns_for(self, node_id: str) -> list[Pattern]:
        """Patterns whose related nodes include node_id."""
        return [p for p in self.analyze_patterns() if node_id in p.related_nodes]

    def workflow_steps(self, workflow_id: str) -> list[str]:
        """IDs of nodes that are part_of the workflow, in edge order."""
        return _unique(
            r.source_id
            for r in self._incoming.get(workflow_id, [])
            if r.type == "part_of" and r.source_id in self._by_id
        )

    def workflow_edges(self, steps: Iterable[str]) -> list[Relationship]:
        """The follows edges leaving the given steps."""
        return [
            r
            for step in _unique(steps)
            for r in self._outgoing.get(step, [])
            if r.type == "follows"
        ]

    def _workflows(self) -> list[KnowledgeNode]:
        return [n for n in self.nodes if n.type == "workflow"]

    def _part_of_edges(self, step_ids: list[str], workflow_id: str) -> list[Relationship]:
        wanted = set(step_ids)
        return [
            r for r in self._incoming.get(workflow_id, [])
            if r.type == "part_of" and r.source_id in wanted
        ]

    def _sequence_patterns(self) -> list[Pattern]:
        patterns = []
        for workflow in self._workflows():
            step_ids = self.workflow_steps(workflow.id)
            if len(step_ids) <= 1:
                continue
            steps = self._resolve(step_ids)
            patterns.append(Pattern(
                type="sequence",
                description=f"Sequential workflow: {workflow.title}",
                confidence=self._confidence(steps, self._part_of_edges(step_ids, workflow.id)),
                impact=self._impact(steps),
                frequency=self._frequency(steps),
                related_nodes=step_ids,
                temporal=self._temporal(steps),
            ))
        return patterns

    def _parallel_patterns(self) -> list[Pattern]:
        patterns = []
        for workflow in self._workflows():
            independent = [
                step_id for step_id in self.workflow_steps(workflow.id)
                if not any(r.type in ORDERING_RELATION_TYPES for r in self._touching(step_id))
            ]
            if len(independent) <= 1:
                continue
            steps = self._resolve(independent)
            patterns.append(Pattern(
                type="parallel",
                description=f"Parallel steps in workflow: {workflow.title}",
                confidence=self._confidence(steps, self._part_of_edges(independent, workflow.id)),
                impact=self._impact(steps),
                frequency=self._frequency(steps),
                related_nodes=independent,
                optimization=self._optimization(steps),
            ))
        return patterns

    def _choice_patterns(self) -> list[Pattern]:
        patterns = []
        for decision in self.nodes:
            if decision.type != "condition":
                continue
            edges = [
                r for r in self._outgoing.get(decision.id, [])
                if r.type == "enables" and r.target_id in self._by_id
            ]
            if len(edges) <= 1:
                continue
            outcome_ids = _unique(r.target_id for r in edges)
            outcomes = self._resolve(outcome_ids)
            patterns.append(Pattern(
                type="choice",
                description=f"Decision point: {decision.title}",
                confidence=self._confidence([decision, *outcomes], edges),
                impact=self._impact(outcomes),
                frequency=self._frequency(outcomes),
                related_nodes=_unique([decision.id, *outcome_ids]),
            ))
        return patterns

    def _iteration_patterns(self) -> list[Pattern]:
        patterns = []
        for cycle in self.find_cycles():
            members = self._resolve(cycle)
            edges = [
                r
                for i, source in enumerate(cycle)
                for r in self._outgoing.get(source, [])
                if r.target_id == cycle[(i + 1) % len(cycle)]
            ]
            patterns.append(Pattern(
                type="iteration",
                description="Iterative workflow pattern",
                confidence=self._confidence(members, edges),
                impact=self._impact(members),
                frequency=self._frequency(members),
                related_nodes=cycle,
                temporal=self._temporal(members),
            ))
        return patterns

    def _neighbourhood(self, node: KnowledgeNode, edges: list[Relationship]) -> list[str]:
        return _unique([node.id, *(
            r.other_end(node.id) for r in edges if r.other_end(node.id) in self._by_id
        )])

    def _temporal_patterns(self) -> list[Pattern]:
        patterns = []
        for node in self.nodes:
            if node.content.workflow is None or node.content.workflow.time_window is None:
                continue
            edges = self._touching(node.id)
            related_ids = self._neighbourhood(node, edges)
            members = self._resolve(related_ids)
            patterns.append(Pattern(
                type="temporal",
                description=f"Time-constrained workflow: {node.title}",
                confidence=self._confidence(members, edges),
                impact=self._impact(members),
                frequency=self._frequency(members),
                related_nodes=related_ids,
                temporal=self._temporal(members),
            ))
        return patterns

    def _dependency_patterns(self) -> list[Pattern]:
        patterns = []
        for node in self.nodes:
            edges = [r for r in self._touching(node.id) if r.type in DEPENDENCY_RELATION_TYPES]
            if not edges:
                continue
            related_ids = self._neighbourhood(node, edges)
            members = self._resolve(related_ids)
            patterns.append(Pattern(
                type="dependency",
                description=f"Dependency chain: {node.title}",
                confidence=self._confidence(members, edges),
                impact=self._impact(members),
                frequency=self._frequency(members),
                related_nodes=related_ids,
            ))
        return patterns

    def _optimization_patterns(self) -> list[Pattern]:
        patterns = []
        for improvement in self.nodes:
            if improvement.type != "improvement":
                continue
            edges = [
                r for r in self._outgoing.get(improvement.id, [])
                if r.type == "improves" and r.target_id in self._by_id
            ]
            if not edges:
                continue
            target_ids = _unique(r.target_id for r in edges)
            targets = self._resolve(target_ids)
            patterns.append(Pattern(
                type="optimization",
                description=f"Optimization opportunity: {improvement.title}",
                confidence=self._confidence([improvement, *targets], edges),
                impact=self._impact([improvement, *targets]),
                frequency=self._frequency(targets),
                related_nodes=_unique([improvement.id, *target_ids]),
                optimization=self._optimization(targets),
            ))
        return patterns

    # --- Graph search ---

    def find_cycles(self) -> list[list[str]]:
        """Directed cycles reachable by DFS over all relationships.

        Every node is tried as a root, but nodes are visited once overall,
        so each cycle is reported at most once. Not an exhaustive cycle
        enumeration.
        """
        visited: set[str] = set()
        cycles: list[list[str]] = []

        for root in self._by_id:
            if root in visited:
                continue
            visited.add(root)
            path = [root]
            position = {root: 0}
            stack = [iter(self._outgoing.get(root, []))]

            while stack:
                rel = next(stack[-1], None)
                if rel is None:
                    stack.pop()
                    del position[path.pop()]
                    continue

                target = rel.target_id
                if target in position:
                    cycles.append(path[position[target]:])
                elif target not in visited:
                    visited.add(target)
                    position[target] = len(path)
                    path.append(target)
                    stack.append(iter(self._outgoing.get(target, [])))

        return cycles

    @staticmethod
    def is_acyclic(relationships: Iterable[Relationship]) -> bool:
        """True if the given edges contain no directed cycle.

        Every source is tried as a root, so disconnected components are
        covered.
        """
        graph: dict[str, list[str]] = defaultdict(list)
        for rel in relationships:
            graph[rel.source_id].append(rel.target_id)

        visited: set[str] = set()
        for root in list(graph):
            if root in visited:
                continue
            visited.add(root)
            on_stack = {root}
            stack = [(root, iter(graph.get(root, [])))]

            while stack:
                node, neighbours = stack[-1]
                neighbour = next(neighbours, None)
                if neighbour is None:
                    stack.pop()
                    on_stack.discard(node)
                    continue
                if neighbour in on_stack:
                    return False
                if neighbour not in visited:
                    visited.add(neighbour)
                    on_stack.add(neighbour)
                    stack.append((neighbour, iter(graph.get(neighbour, []))))

        return True

    @staticmethod
    def longest_path(
        node_ids: Iterable[str],
        relationships: Iterable[Relationship],
        max_expansions: int = LONGEST_PATH_MAX_EXPANSIONS,
    ) -> list[str]:
        """Longest simple path using only the given nodes and edges.

        Exhaustive DFS from every node. A node already on the current path
        is never pushed again, so cycles in the input cannot loop the
        search. The search gives up after max_expansions pushes and returns
        the best path found so far. Ties go to the first path found.
        """
        graph: dict[str, list[str]] = {nid: [] for nid in node_ids}
        for rel in relationships:
            if rel.source_id in graph and rel.target_id in graph:
                graph[rel.source_id].append(rel.target_id)

        longest: list[str] = []
        expansions = 0

        for start in graph:
            if expansions >= max_expansions:
                logger.warning(f"Longest path search stopped after {expansions} expansions")
                return longest
            expansions += 1
            path = [start]
            on_path = {start}
            stack = [iter(graph[start])]
            if len(path) > len(longest):
                longest = list(path)

            while stack:
                nxt = next(stack[-1], None)
                if nxt is None:
                    stack.pop()
                    on_path.discard(path.pop())
                    continue
                if nxt in on_path:
                    continue
                if expansions >= max_expansions:
                    logger.warning(f"Longest path search stopped after {expansions} expansions")
                    return longest

                expansions += 1
                path.append(nxt)
                on_path.add(nxt)
                stack.append(iter(graph[nxt]))
                if len(path) > len(longest):
                    longest = list(path)

        return longest

    def critical_paths(self) -> list[CriticalPath]:
        """Longest follows-chain through each workflow that has steps."""
        paths = []
        for workflow in self._workflows():
            steps = self.workflow_steps(workflow.id)
            if not steps:
                continue
            path = self.longest_path(steps, self.workflow_edges(steps))
            if path:
                paths.append(CriticalPath(
                    workflow_id=workflow.id,
                    path=path,
                    frequency=self._frequency(self._resolve(steps)),
                ))
        return paths

    def build_analysis(self, patterns: list[Pattern] | None = None) -> Analysis:
        """Wrap patterns (default: all) with insights, metrics and workflow analysis."""
        if patterns is None:
            patterns = self.analyze_patterns()
        return Analysis(
            patterns=patterns,
            insights=generate_insights(patterns),
            metrics=calculate_metrics(patterns),
            workflow_analysis=analyze_workflows(patterns),
        )


# ─────────────────────────────────────────────────────────────────────────────
# Pattern aggregation
# ─────────────────────────────────────────────────────────────────────────────


def find_bottlenecks(patterns: Iterable[Pattern]) -> list[str]:
    """Related nodes of patterns whose duration variability is high."""
    return _unique(
        node_id
        for p in patterns
        if p.temporal is not None and p.temporal.variability > BOTTLENECK_VARIABILITY_THRESHOLD
        for node_id in p.related_nodes
    )


def _gain(pattern: Pattern) -> float:
    return pattern.optimization.potential_gain if pattern.optimization else 0.0


def analyze_workflows(patterns: Iterable[Pattern]) -> WorkflowAnalysis | None:
    """Efficiency and timeline estimate over workflow-shaped patterns.

    The timeline is a heuristic: optimal sums average durations, actual
    inflates each by (1 + variability), variance sums variabilities.

    Returns:
        None when no sequence/parallel/choice pattern is present
    """
    workflow_patterns = [p for p in patterns if p.type in WORKFLOW_PATTERN_TYPES]
    if not workflow_patterns:
        return None

    timeline = Timeline()
    for p in workflow_patterns:
        if p.temporal is None:
            continue
        timeline.optimal += p.temporal.average_duration
        timeline.actual += p.temporal.average_duration * (1 + p.temporal.variability)
        timeline.variance += p.temporal.variability

    return WorkflowAnalysis(
        efficiency=_mean(p.impact for p in workflow_patterns),
        bottlenecks=find_bottlenecks(workflow_patterns),
        suggestions=[
            f"Optimize {p.description} for potential {round(_gain(p) * 100)}% improvement"
            for p in workflow_patterns
            if _gain(p) > SUGGESTION_GAIN_THRESHOLD
        ],
        timeline=timeline,
    )


def suggested_actions(pattern: Pattern) -> list[str]:
    """Concrete follow-ups derived from a pattern's optimization/temporal data."""
    actions = []
    if pattern.optimization is not None:
        actions.append(
            f"Implement optimization with {round(pattern.optimization.potential_gain * 100)}% potential gain"
        )
        if pattern.optimization.prerequisites:
            actions.append(
                f"Address prerequisites: {', '.join(pattern.optimization.prerequisites)}"
            )
    if pattern.temporal is not None:
        actions.append(
            f"Reduce duration variability from {round(pattern.temporal.variability * 100)}%"
        )
        actions.append(
            f"Optimize for target duration of {pattern.temporal.average_duration:g}s"
        )
    return actions


def pattern_insight(
    pattern: Pattern,
    kind: str | None = None,
    description: str | None = None,
    importance: float | None = None,
    actionable: bool = True,
) -> Insight:
    """Build one insight from a pattern.

    Defaults: type and description copied from the pattern, importance is
    the pattern impact. Non-actionable insights carry no suggested actions.
    """
    return Insight(
        type=kind or pattern.type,
        description=description or pattern.description,
        importance=pattern.impact if importance is None else importance,
        actionable=actionable,
        suggested_actions=suggested_actions(pattern) if actionable else [],
        impact=InsightImpact(
            time_reduction=pattern.temporal.average_duration if pattern.temporal else 0.0,
            quality_improvement=pattern.impact,
            resource_optimization=_gain(pattern),
        ),
    )


def generate_insights(patterns: Iterable[Pattern], kind: str | None = None) -> list[Insight]:
    """One actionable insight per pattern, typed `kind` when given."""
    return [pattern_insight(p, kind=kind) for p in patterns]


def calculate_metrics(patterns: Iterable[Pattern]) -> list[Metric]:
    """Mean pattern confidence and impact.

    Trend labels, benchmarks and goals are fixed values, not derived from
    history. An empty pattern list yields 0.0 for both.
    """
    patterns = list(patterns)
    confidences = [p.confidence for p in patterns]
    impacts = [p.impact for p in patterns]
    return [
        Metric(
            name="pattern_confidence",
            value=_mean(confidences),
            trend="stable",
            context=MetricContext(
                historical=confidences,
                benchmark=CONFIDENCE_METRIC_BENCHMARK,
                goal=CONFIDENCE_METRIC_GOAL,
            ),
        ),
        Metric(
            name="pattern_impact",
            value=_mean(impacts),
            trend="increasing",
            context=MetricContext(
                historical=impacts,
                benchmark=IMPACT_METRIC_BENCHMARK,
                goal=IMPACT_METRIC_GOAL,
            ),
        ),
    ]
