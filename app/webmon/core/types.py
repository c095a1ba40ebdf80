"""Canonical records produced by one probe iteration.

A `ProbeResult` is built by the probe loop, handed to the metrics layer and
then dropped. Nothing here is persisted.
"""

from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


# ═══════════════════════════════════════════════════════════════════════════
# BASE CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════

class CanonicalModel(BaseModel):
    """Shared configuration for all probe records.

    Configuration:
        frozen: Records cannot be modified after creation.
        extra: Unknown fields are rejected.
        str_strip_whitespace: Response bodies such as "10.0.0.5\\n" normalize
            to "10.0.0.5" before they become label values.
    """
    model_config = ConfigDict(
        frozen=True,
        extra='forbid',
        str_strip_whitespace=True,
    )


# ═══════════════════════════════════════════════════════════════════════════
# OUTCOMES (Discriminated Union)
# ═══════════════════════════════════════════════════════════════════════════

class ProbeSuccess(CanonicalModel):
    """The target answered with an HTTP response.

    Attributes:
        kind: Discriminator field (always "success").
        status_code: HTTP status code exactly as received. Codes outside the
            registered classes (e.g. 600-999) are still responses.
        outbound_ip: Response body, read as the egress token of the request.
    """
    kind: Literal["success"] = "success"
    status_code: int
    outbound_ip: str


class ProbeFailure(CanonicalModel):
    """No response was received at all.

    Attributes:
        kind: Discriminator field (always "failure").
        error: Short description used as the error counter's label value.
    """
    kind: Literal["failure"] = "failure"
    error: str = Field(min_length=1)


ProbeOutcome = Annotated[
    Union[ProbeSuccess, ProbeFailure],
    Field(discriminator='kind')
]


# ═══════════════════════════════════════════════════════════════════════════
# PROBE RESULT
# ═══════════════════════════════════════════════════════════════════════════

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProbeResult(CanonicalModel):
    """Measurement and classification of a single probe.

    Attributes:
        timestamp: When the request was issued (UTC).
        elapsed_seconds: Time until response headers arrived, or until the
            transport gave up for a failure.
        outcome: Either a `ProbeSuccess` or a `ProbeFailure`.

    Example:
        >>> result = ProbeResult(
        ...     elapsed_seconds=0.05,
        ...     outcome=ProbeSuccess(status_code=200, outbound_ip="10.0.0.5"),
        ... )
        >>> result.succeeded
        True
    """
    timestamp: datetime = Field(default_factory=_utcnow)
    elapsed_seconds: float = Field(ge=0)
    outcome: ProbeOutcome

    @property
    def succeeded(self) -> bool:
        """True when the target returned a response."""
        return isinstance(self.outcome, ProbeSuccess)
