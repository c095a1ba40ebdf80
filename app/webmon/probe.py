"""The probe loop: GET the target, measure, classify, record, sleep.

The loop runs as a single asyncio task next to the scrape endpoint. Iterations
never overlap: the next probe starts only after the previous one finished and
the interval elapsed. A failed probe is counted and the loop moves on to the
next scheduled tick; it is never retried early.
"""

import asyncio
import errno
import time
from datetime import datetime, timezone

import httpx

from app.config import Settings
from app.webmon.core.logging_config import get_logger
from app.webmon.core.types import ProbeFailure, ProbeResult, ProbeSuccess
from app.webmon.metrics import ProbeMetrics

logger = get_logger(__name__)


def build_probe_client(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create the HTTP client used for every probe.

    The client keeps httpx's default timeout. Redirects are followed so a
    target such as ``https://google.com`` is measured up to the final page.
    """
    return httpx.AsyncClient(
        follow_redirects=True,
        headers={"User-Agent": f"{settings.COMPONENT_NAME}/{settings.VERSION}"},
        transport=transport,
    )


def _contains_refused(exc: BaseException, seen: set[int]) -> bool:
    if id(exc) in seen:
        return False
    seen.add(id(exc))

    if isinstance(exc, ConnectionRefusedError):
        return True
    if isinstance(exc, OSError) and exc.errno == errno.ECONNREFUSED:
        return True
    # anyio reports failed connection attempts as an exception group
    if isinstance(exc, BaseExceptionGroup):
        if any(_contains_refused(inner, seen) for inner in exc.exceptions):
            return True

    for linked in (exc.__cause__, exc.__context__):
        if linked is not None and _contains_refused(linked, seen):
            return True
    return False


def describe_failure(exc: BaseException) -> str:
    """Turn a transport error into a short, low-cardinality label value.

    Examples:
        >>> describe_failure(httpx.ReadTimeout("timed out"))
        'timeout'
    """
    if isinstance(exc, httpx.TimeoutException):
        return "timeout"
    if _contains_refused(exc, set()):
        return "connection refused"
    message = str(exc).strip().lower()
    return message or type(exc).__name__


class ProbeLoop:
    """Periodically probe one target and record the results.

    Args:
        client: HTTP client used for every request. Not owned; the caller
            closes it.
        metrics: Registered series to record into.
        target_url: URL probed on every tick.
        interval_seconds: Sleep between the end of one probe and the start of
            the next.
        expected_egress: Egress tokens the target is allowed to report.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        metrics: ProbeMetrics,
        target_url: str,
        interval_seconds: float,
        expected_egress: frozenset[str] = frozenset(),
    ) -> None:
        self._client = client
        self._metrics = metrics
        self.target_url = target_url
        self.interval_seconds = interval_seconds
        self.expected_egress = expected_egress
        self.iterations = 0
        self.last_result: ProbeResult | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: httpx.AsyncClient,
        metrics: ProbeMetrics,
    ) -> "ProbeLoop":
        return cls(
            client=client,
            metrics=metrics,
            target_url=str(settings.TARGET_URL),
            interval_seconds=settings.POLL_INTERVAL_SECONDS,
            expected_egress=settings.EXPECTED_EGRESS_SET,
        )

    async def probe_once(self) -> ProbeResult:
        """Issue one GET and classify the outcome.

        Elapsed time is taken when the response headers arrive. The body is
        then drained in full and the connection released before returning.

        Returns:
            A `ProbeResult` whose outcome is `ProbeFailure` if no response
            could be read, `ProbeSuccess` otherwise (whatever the status).
        """
        timestamp = datetime.now(timezone.utc)
        start = time.perf_counter()
        try:
            async with self._client.stream("GET", self.target_url) as response:
                elapsed = time.perf_counter() - start
                await response.aread()
                token = response.text
        except httpx.HTTPError as exc:
            return ProbeResult(
                timestamp=timestamp,
                elapsed_seconds=time.perf_counter() - start,
                outcome=ProbeFailure(error=describe_failure(exc)),
            )

        return ProbeResult(
            timestamp=timestamp,
            elapsed_seconds=elapsed,
            outcome=ProbeSuccess(status_code=response.status_code, outbound_ip=token),
        )

    async def tick(self) -> ProbeResult | None:
        """Run one Probing state: probe, record, log.

        Returns:
            The result, or None if the iteration failed in an unexpected way
            (logged, nothing recorded).
        """
        try:
            result = await self.probe_once()
            mismatch = self._metrics.record(result, self.expected_egress)
        except Exception:
            logger.exception("Probe iteration failed unexpectedly")
            return None

        self.last_result = result
        outcome = result.outcome
        if not result.succeeded:
            logger.warning(
                "Probe failed",
                error=outcome.error,
                elapsed=round(result.elapsed_seconds, 6),
            )
            return result

        logger.info(
            "Probe completed",
            status=outcome.status_code,
            load_time=round(result.elapsed_seconds, 6),
            outbound_ip=outcome.outbound_ip,
        )
        if mismatch:
            logger.warning(
                "Unexpected egress IP",
                outbound_ip=outcome.outbound_ip,
                expected=sorted(self.expected_egress),
            )
        return result

    async def run(
        self,
        stop: asyncio.Event | None = None,
        max_iterations: int | None = None,
    ) -> int:
        """Alternate Probing and Sleeping until stopped.

        Production passes neither argument and the task runs until the
        process exits (the lifespan sets `stop` on shutdown).

        Args:
            stop: Event that ends the loop; also interrupts the sleep.
            max_iterations: Stop after this many probes.

        Returns:
            Number of probes issued.
        """
        if stop is None:
            stop = asyncio.Event()

        logger.info(
            "Starting to monitor target",
            url=self.target_url,
            interval=self.interval_seconds,
        )
        count = 0
        while not stop.is_set():
            await self.tick()
            count += 1
            self.iterations += 1
            if max_iterations is not None and count >= max_iterations:
                break
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        return count
