"""HTTP health check probe for container orchestration.

Execute a lightweight HTTP GET against the monitor's /health/live endpoint
and return an exit code for the container runtime.

Exit Codes:
    0: Healthy - Endpoint returned HTTP 200.
    1: Unhealthy - Connection failed or non-200 response.

Environment Variables:
    HEALTHCHECK_HOST: Target host address (default: 127.0.0.1).
    HEALTHCHECK_PORT: Target port number (default: 9100, the scrape port).
"""

import os
import sys
import urllib.request

TIMEOUT = 2  # seconds


def build_url() -> str:
    host = os.environ.get("HEALTHCHECK_HOST", "127.0.0.1")
    port = os.environ.get("HEALTHCHECK_PORT", "9100")
    return f"http://{host}:{port}/health/live"


def check(url: str, timeout: float = TIMEOUT) -> int:
    """Return 0 if `url` answers 200, else 1."""
    try:
        with urllib.request.urlopen(url, timeout=timeout) as response:
            return 0 if response.status == 200 else 1
    except OSError:
        # URLError, HTTPError (4xx/5xx) and socket timeouts are all OSError.
        return 1


if __name__ == "__main__":
    sys.exit(check(build_url()))
