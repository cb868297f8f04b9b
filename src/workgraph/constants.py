"""Tunable constants for workgraph.

Grouped by the subsystem that reads them.
"""

# ─────────────────────────────────────────────────────────────────────────────
# Learning feedback
# ─────────────────────────────────────────────────────────────────────────────

LEARNING_CONFIDENCE_INCREMENT = 0.1
MAX_CONFIDENCE = 1.0
MAX_IMPORTANCE = 1.0

# ─────────────────────────────────────────────────────────────────────────────
# Pattern analysis
# ─────────────────────────────────────────────────────────────────────────────

# confidence = NODE * mean(node confidence) + EDGE * mean(edge strength)
PATTERN_NODE_CONFIDENCE_WEIGHT = 0.6
PATTERN_EDGE_STRENGTH_WEIGHT = 0.4

BOTTLENECK_VARIABILITY_THRESHOLD = 0.5
SUGGESTION_GAIN_THRESHOLD = 0.3

WORKFLOW_PATTERN_TYPES = ("sequence", "parallel", "choice")
DEPENDENCY_RELATION_TYPES = ("depends_on", "blocks", "enables")
ORDERING_RELATION_TYPES = ("depends_on", "follows")

# Upper bound on DFS pushes for a single longest-path search
LONGEST_PATH_MAX_EXPANSIONS = 100_000

# ─────────────────────────────────────────────────────────────────────────────
# Metrics (static, not derived from history)
# ─────────────────────────────────────────────────────────────────────────────

CONFIDENCE_METRIC_BENCHMARK = 0.8
CONFIDENCE_METRIC_GOAL = 0.9
IMPACT_METRIC_BENCHMARK = 0.7
IMPACT_METRIC_GOAL = 0.8

# ─────────────────────────────────────────────────────────────────────────────
# Vector similarity / clustering
# ─────────────────────────────────────────────────────────────────────────────

KMEANS_MAX_ITERATIONS = 100
KMEANS_TOLERANCE = 1e-4
MAX_DEFAULT_CLUSTERS = 5

DEFAULT_SUGGESTION_LIMIT = 5
DEFAULT_SUGGESTION_MIN_SCORE = 0.7

# ─────────────────────────────────────────────────────────────────────────────
# Embedding cache
# ─────────────────────────────────────────────────────────────────────────────

DEFAULT_CACHE_TTL_SECONDS = 3600
DEFAULT_CACHE_MAX_SIZE = 10_000
DEFAULT_CACHE_NAMESPACE = "vectors"

DEFAULT_EMBEDDING_MODEL = "all-MiniLM-L6-v2"
DEFAULT_EMBEDDING_DIMENSION = 384
DEFAULT_PROVIDER_RETRIES = 2

# ─────────────────────────────────────────────────────────────────────────────
# Time
# ─────────────────────────────────────────────────────────────────────────────

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400
SECONDS_PER_WEEK = 604800
SECONDS_PER_MONTH = 2592000  # 30 days
SECONDS_PER_YEAR = 31536000  # 365 days

# ─────────────────────────────────────────────────────────────────────────────
# CLI
# ─────────────────────────────────────────────────────────────────────────────

DEFAULT_DB_FILENAME = "workgraph.db"
DEFAULT_QUERY_LIMIT = 50
