"""Prometheus series recorded by the probe loop.

`ProbeMetrics` owns the four series the monitor exposes and registers them into
an injected `CollectorRegistry`. The process-wide default registry of
prometheus_client is never touched, so tests can build as many independent
registries as they need.

Every series carries a `from` label holding the monitor's identity (availability
zone or local IP). The value is fixed at construction, so it behaves like a
constant label on every sample.
"""

from collections.abc import Iterable

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram
from prometheus_client.registry import Collector

from app.webmon.core.errors import MetricRegistrationError
from app.webmon.core.logging_config import get_logger
from app.webmon.core.types import ProbeFailure, ProbeResult

logger = get_logger(__name__)

ORIGIN_LABEL = "from"
OUTBOUND_IP_LABEL = "outbound_ip"
ERROR_LABEL = "error"


def register_series(registry: CollectorRegistry, series: Collector) -> None:
    """Register one series, surfacing duplicates instead of ignoring them.

    Args:
        registry: Target registry.
        series: Metric to register.

    Raises:
        MetricRegistrationError: If the registry already holds a series with
            a colliding name.
    """
    name = getattr(series, "_name", type(series).__name__)
    try:
        registry.register(series)
    except ValueError as exc:
        raise MetricRegistrationError(name, str(exc)) from exc
    logger.debug("Metric series registered", series=name)


def is_expected_egress(token: str, expected: frozenset[str]) -> bool:
    """Return True if `token` is one of the configured egress values.

    Membership is exact and case-sensitive. An empty `expected` set accepts
    nothing, so every token counts as a mismatch.
    """
    return token in expected


class ProbeMetrics:
    """The four labeled series for one monitored target.

    Metric names follow ``<namespace>_<subsystem>_<component>_<suffix>``:

        - ``..._load_time_seconds`` (histogram, by outbound_ip)
        - ``..._response_status`` (gauge, by outbound_ip)
        - ``..._errors_total`` (counter, by error)
        - ``..._egress_mismatches_total`` (counter, by outbound_ip)

    Recording methods are safe to call from any task or thread; the
    prometheus_client metric objects lock internally.

    Args:
        registry: Registry the series are registered into.
        origin: Value of the `from` label (the resolved identity).
        namespace: Prometheus namespace.
        subsystem: Prometheus subsystem.
        component: Name of this monitor instance.
    """

    def __init__(
        self,
        registry: CollectorRegistry,
        origin: str,
        namespace: str = "monitoring",
        subsystem: str = "website",
        component: str = "webmon",
    ) -> None:
        self.registry = registry
        self.origin = origin
        self._registered = False

        common = {"namespace": namespace, "subsystem": subsystem, "registry": None}

        self.load_time = Histogram(
            f"{component}_load_time_seconds",
            "Website load time in seconds, until response headers arrive",
            labelnames=(ORIGIN_LABEL, OUTBOUND_IP_LABEL),
            **common,
        )
        self.response_status = Gauge(
            f"{component}_response_status",
            "HTTP status code of the last response",
            labelnames=(ORIGIN_LABEL, OUTBOUND_IP_LABEL),
            **common,
        )
        self.errors = Counter(
            f"{component}_errors",
            "Probes that received no response",
            labelnames=(ORIGIN_LABEL, ERROR_LABEL),
            **common,
        )
        self.egress_mismatches = Counter(
            f"{component}_egress_mismatches",
            "Probes whose reported egress IP is not in the expected set",
            labelnames=(ORIGIN_LABEL, OUTBOUND_IP_LABEL),
            **common,
        )

    @property
    def series(self) -> Iterable[Collector]:
        return (self.load_time, self.response_status, self.errors, self.egress_mismatches)

    @property
    def registered(self) -> bool:
        return self._registered

    def register(self) -> None:
        """Register all four series.

        Must be called once, before the probe loop starts.

        Raises:
            MetricRegistrationError: On the first series that collides with an
                existing one, including a second call on the same registry.
        """
        for series in self.series:
            register_series(self.registry, series)
        self._registered = True
        logger.info("Probe metrics registered", origin=self.origin)

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    def observe_load_time(self, outbound_ip: str, seconds: float) -> None:
        self.load_time.labels(self.origin, outbound_ip).observe(seconds)

    def set_response_status(self, outbound_ip: str, status_code: int) -> None:
        self.response_status.labels(self.origin, outbound_ip).set(status_code)

    def increment_error(self, error: str) -> None:
        self.errors.labels(self.origin, error).inc()

    def increment_mismatch(self, outbound_ip: str) -> None:
        self.egress_mismatches.labels(self.origin, outbound_ip).inc()

    def record(self, result: ProbeResult, expected: frozenset[str]) -> bool:
        """Apply one probe result to the series.

        A failure only increments the error counter. A success observes load
        time and status under the same outbound_ip, then checks it against
        `expected`.

        Args:
            result: Outcome of one probe iteration.
            expected: Allowed egress tokens.

        Returns:
            True if the result was a success whose egress token was unexpected.
        """
        outcome = result.outcome
        if isinstance(outcome, ProbeFailure):
            self.increment_error(outcome.error)
            return False

        self.observe_load_time(outcome.outbound_ip, result.elapsed_seconds)
        self.set_response_status(outcome.outbound_ip, outcome.status_code)

        if is_expected_egress(outcome.outbound_ip, expected):
            return False
        self.increment_mismatch(outcome.outbound_ip)
        return True
