from prometheus_client import CONTENT_TYPE_LATEST
from prometheus_client import CollectorRegistry
from prometheus_client import Counter
from prometheus_client import Histogram
from prometheus_client import generate_latest

from imbue.git_bundle_sync.data_types import SyncOutcome
from imbue.git_bundle_sync.primitives import RemoteUrl
from imbue.git_bundle_sync.primitives import SyncOperation

METRICS_CONTENT_TYPE = CONTENT_TYPE_LATEST


class SyncMetrics:
    """Process-wide counters for push and pull operations.

    Each instance owns its registry, so tests can build one without touching global state.
    The orchestrators only ever write to it.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        self.ops_total = Counter(
            "git_sync_ops_total",
            "Number of push and pull operations started",
            ["op", "repository_url"],
            registry=self.registry,
        )
        self.ops_error_total = Counter(
            "git_sync_ops_error_total",
            "Number of push and pull operations that failed",
            ["op", "repository_url"],
            registry=self.registry,
        )
        self.outcomes_total = Counter(
            "git_sync_outcomes_total",
            "Number of push and pull operations by outcome",
            ["op", "outcome"],
            registry=self.registry,
        )
        self.op_duration_seconds = Histogram(
            "git_sync_op_duration_seconds",
            "Time spent handling push and pull operations",
            ["op"],
            registry=self.registry,
        )

    def record_attempt(self, operation: SyncOperation, url: RemoteUrl) -> None:
        self.ops_total.labels(op=operation.lower(), repository_url=str(url)).inc()

    def record_outcome(self, operation: SyncOperation, url: RemoteUrl, outcome: SyncOutcome, elapsed: float) -> None:
        op_label = operation.lower()
        self.outcomes_total.labels(op=op_label, outcome=outcome.kind.lower()).inc()
        self.op_duration_seconds.labels(op=op_label).observe(elapsed)
        if outcome.is_failure():
            self.ops_error_total.labels(op=op_label, repository_url=str(url)).inc()

    def get_sample_value(self, name: str, labels: dict[str, str]) -> float:
        """Current value of one sample (zero if it was never recorded)."""
        value = self.registry.get_sample_value(name, labels)
        return 0.0 if value is None else value

    def render(self) -> bytes:
        """The registry in the Prometheus text exposition format."""
        return generate_latest(self.registry)
