"""Resolve the label describing where this monitor runs.

On EC2 the instance metadata service answers with the availability zone. Off
EC2 (a laptop, another cloud) the metadata address does not answer, and the
local outbound IP is used instead.
"""

import socket

import httpx

from app.config import Settings
from app.webmon.core.errors import IdentityResolutionError
from app.webmon.core.logging_config import get_logger

logger = get_logger(__name__)


def fetch_placement_zone(
    url: str,
    timeout: float,
    transport: httpx.BaseTransport | None = None,
) -> str | None:
    """Ask the cloud metadata endpoint for the placement zone.

    Args:
        url: Metadata URL returning the zone as the plain-text body.
        timeout: Request timeout in seconds.
        transport: Optional transport override, used by tests.

    Returns:
        The zone string, or None if the endpoint failed, returned a non-2xx
        status or an empty body.
    """
    try:
        with httpx.Client(timeout=timeout, transport=transport) as client:
            response = client.get(url)
    except httpx.HTTPError as exc:
        logger.warning("Metadata endpoint unreachable", url=url, error=str(exc))
        return None

    if not response.is_success:
        logger.warning("Metadata endpoint returned an error", url=url, status=response.status_code)
        return None

    zone = response.text.strip()
    return zone or None


def get_outbound_ip(host: str, port: int) -> str:
    """Return the local address the kernel would use to reach `host`.

    Connecting a UDP socket sends no packet; it only selects a route.

    Raises:
        IdentityResolutionError: If no route to `host` exists.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect((host, port))
            return sock.getsockname()[0]
    except OSError as exc:
        raise IdentityResolutionError(
            f"Could not determine the local outbound IP via {host}:{port}: {exc}"
        ) from exc


def resolve_identity(
    settings: Settings,
    transport: httpx.BaseTransport | None = None,
) -> str:
    """Return the `from` label: availability zone, else local outbound IP.

    Args:
        settings: Application settings with the metadata and fallback endpoints.
        transport: Optional transport override for the metadata request.

    Raises:
        IdentityResolutionError: If both lookups fail.
    """
    zone = fetch_placement_zone(
        settings.IDENTITY_METADATA_URL,
        settings.IDENTITY_METADATA_TIMEOUT,
        transport=transport,
    )
    if zone:
        logger.info("Resolved availability zone", origin=zone)
        return zone

    logger.warning("Could not find availability zone, trying the local IP")
    address = get_outbound_ip(settings.IDENTITY_FALLBACK_HOST, settings.IDENTITY_FALLBACK_PORT)
    logger.info("Found local IP address", origin=address)
    return address
