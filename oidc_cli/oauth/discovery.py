"""OpenID Connect discovery (OpenID Connect Discovery 1.0, RFC 8414).

Fetches the provider's discovery document so that endpoints the user did
not pass explicitly can be filled in.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from .errors import OIDCError

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/openid-configuration"


def _http_status_hint(status_code: int) -> str:
    """Get a user-friendly hint for common HTTP status codes."""
    hints = {
        401: "Discovery endpoint requires authentication",
        403: "Access forbidden - check if the discovery URL is correct",
        404: "Endpoint not found - the provider may not support discovery at this URL",
        500: "Server error - the provider may be experiencing issues",
        502: "Bad gateway - there may be a proxy or network issue",
        503: "Service unavailable - the provider may be temporarily down",
    }
    return hints.get(status_code, "")


class DiscoveryError(OIDCError):
    """Error fetching or validating the discovery document."""

    pass


def discovery_url_for(issuer: str) -> str:
    """Build the standard discovery URL for an issuer."""
    return issuer.rstrip("/") + WELL_KNOWN_PATH


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    return value if isinstance(value, str) and value else None


@dataclass
class DiscoveryDocument:
    """The subset of provider metadata the CLI makes use of."""

    issuer: str
    authorization_endpoint: str | None = None
    pushed_authorization_request_endpoint: str | None = None
    token_endpoint: str | None = None
    introspection_endpoint: str | None = None
    userinfo_endpoint: str | None = None
    revocation_endpoint: str | None = None
    device_authorization_endpoint: str | None = None
    jwks_uri: str | None = None
    token_endpoint_auth_methods_supported: list[str] = field(default_factory=list)
    code_challenge_methods_supported: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DiscoveryDocument":
        """Create from JSON response.

        Raises:
            DiscoveryError: If ``issuer`` is missing
        """
        issuer = _optional_str(data, "issuer")
        if issuer is None:
            raise DiscoveryError("Discovery document missing required field: 'issuer'")

        auth_methods = data.get("token_endpoint_auth_methods_supported") or []
        challenge_methods = data.get("code_challenge_methods_supported") or []

        return cls(
            issuer=issuer,
            authorization_endpoint=_optional_str(data, "authorization_endpoint"),
            pushed_authorization_request_endpoint=_optional_str(
                data, "pushed_authorization_request_endpoint"
            ),
            token_endpoint=_optional_str(data, "token_endpoint"),
            introspection_endpoint=_optional_str(data, "introspection_endpoint"),
            userinfo_endpoint=_optional_str(data, "userinfo_endpoint"),
            revocation_endpoint=_optional_str(data, "revocation_endpoint"),
            device_authorization_endpoint=_optional_str(data, "device_authorization_endpoint"),
            jwks_uri=_optional_str(data, "jwks_uri"),
            token_endpoint_auth_methods_supported=[m for m in auth_methods if isinstance(m, str)],
            code_challenge_methods_supported=[m for m in challenge_methods if isinstance(m, str)],
        )

    def supports_pkce(self) -> bool:
        """Check if the provider advertises PKCE with S256."""
        return "S256" in self.code_challenge_methods_supported


async def fetch_discovery_document(
    issuer: str,
    discovery_url: str | None = None,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = 30.0,
) -> DiscoveryDocument:
    """Fetch and validate the provider's discovery document.

    Args:
        issuer: The configured issuer URL
        discovery_url: Optional override for the discovery endpoint
        http_client: Optional HTTP client to use
        timeout: Request timeout in seconds (only used for an owned client)

    Returns:
        DiscoveryDocument instance

    Raises:
        DiscoveryError: If the document cannot be fetched or parsed, or the
            issuer it names differs from the configured one
    """
    url = discovery_url or discovery_url_for(issuer)

    client = http_client or httpx.AsyncClient(timeout=timeout)
    should_close = http_client is None

    logger.debug(f"Fetching discovery document from {url}")

    try:
        response = await client.get(url, headers={"Accept": "application/json"})

        if response.status_code != 200:
            hint = _http_status_hint(response.status_code)
            error_msg = f"Failed to fetch discovery document from {url}: HTTP {response.status_code}"
            if hint:
                error_msg += f". {hint}"
            raise DiscoveryError(error_msg)

        try:
            data = response.json()
        except (ValueError, TypeError) as e:
            raise DiscoveryError(f"Discovery document was not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise DiscoveryError(f"Discovery document from {url} is not a JSON object")

        document = DiscoveryDocument.from_dict(data)

        # An overridden URL may legitimately serve a different issuer
        if discovery_url is None and document.issuer.rstrip("/") != issuer.rstrip("/"):
            raise DiscoveryError(
                f"Issuer mismatch: configured {issuer}, discovery document says {document.issuer}"
            )

        logger.debug(f"Successfully fetched discovery document from {url}")
        return document

    except httpx.ConnectError as e:
        raise DiscoveryError(
            f"Could not connect to {url}: {e}. "
            f"Check that the issuer URL is correct and the provider is reachable."
        ) from e
    except httpx.TimeoutException as e:
        raise DiscoveryError(f"Timeout fetching discovery document from {url}: {e}") from e
    except httpx.RequestError as e:
        raise DiscoveryError(f"Network error fetching discovery document: {e}") from e
    except httpx.InvalidURL as e:
        raise DiscoveryError(f"Invalid discovery URL {url}: {e}") from e
    finally:
        if should_close:
            await client.aclose()
