"""Fatal startup errors.

Everything raised from here aborts startup: the lifespan lets it propagate and
uvicorn exits non-zero. Per-probe failures never use these classes; they are
absorbed into the error and mismatch counters instead.
"""


class StartupError(Exception):
    """Base class for errors that must terminate the process."""


class IdentityResolutionError(StartupError):
    """Neither the metadata endpoint nor the outbound socket yielded an identity."""


class MetricRegistrationError(StartupError):
    """A metric series could not be registered (usually a duplicate).

    Attributes:
        series_name: Name of the series that failed to register.
    """

    def __init__(self, series_name: str, reason: str) -> None:
        self.series_name = series_name
        super().__init__(f"Cannot register metric series '{series_name}': {reason}")
