"""HTTP plumbing shared by every OAuth2 request."""

import logging
from typing import Mapping
from urllib.parse import urlencode

import httpx

from .. import __version__

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

# Form fields never written to logs in clear text
SECRET_FIELDS = frozenset({"client_secret", "code_verifier", "refresh_token", "token", "device_code"})


def create_http_client(
    skip_tls_verify: bool = False,
    timeout: float = DEFAULT_TIMEOUT,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create the async HTTP client used for one CLI invocation.

    Args:
        skip_tls_verify: Disable TLS certificate verification
        timeout: Per-request timeout in seconds
        transport: Optional transport override (used by tests)
    """
    if skip_tls_verify:
        logger.warning("TLS certificate verification is disabled")

    return httpx.AsyncClient(
        verify=not skip_tls_verify,
        timeout=timeout,
        transport=transport,
        headers={"User-Agent": f"oidc-cli/{__version__}"},
    )


def mask_form(form: Mapping[str, str]) -> dict[str, str]:
    """Copy a form with secret values replaced for logging."""
    return {key: "*****" if key in SECRET_FIELDS else value for key, value in form.items()}


async def post_form(
    client: httpx.AsyncClient,
    url: str,
    form: Mapping[str, str],
    headers: Mapping[str, str] | None = None,
) -> httpx.Response:
    """POST a form-encoded body and return the raw response."""
    request_headers = dict(headers or {})
    request_headers["Content-Type"] = FORM_CONTENT_TYPE

    logger.debug(f"POST {url}")
    if form:
        logger.debug(f"Request body: {urlencode(mask_form(form))}")

    response = await client.post(url, data=dict(form), headers=request_headers)
    logger.debug(f"Response status from {url}: {response.status_code}")
    return response
