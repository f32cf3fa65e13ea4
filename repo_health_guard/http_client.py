"""Shared HTTP client handling."""

import httpx

USER_AGENT = "repo-health-guard"


def create_async_http_client(
    verify_ssl: bool = True,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create an async HTTP client with connection pooling.

    Args:
        verify_ssl: Whether to verify TLS certificates.
        transport: Optional transport override, e.g. ``httpx.MockTransport``.
    """
    return httpx.AsyncClient(
        verify=verify_ssl,
        timeout=10,
        headers={"User-Agent": USER_AGENT},
        limits=httpx.Limits(
            max_connections=20,
            max_keepalive_connections=10,
            keepalive_expiry=30.0,
        ),
        transport=transport,
    )
