"""Back-channel flows: client credentials, token refresh and introspection.

None of these involve the browser; each is a single form POST built and
parsed by the codec layer, with failures wrapped by stage like the
authorization code flow.
"""

import logging
from typing import TYPE_CHECKING, Any

import httpx

from .dpop import DPOP_HEADER, create_dpop_proof
from .flow import STAGE_CONFIGURATION, OAuthFlowError, flow_stage
from .http import create_http_client, post_form
from .requests import (
    INTROSPECTION_MEDIA_TYPES,
    AuthMethod,
    IntrospectionRequest,
    TokenRequest,
    client_credentials_request,
    parse_introspection_response,
    parse_token_response,
    refresh_token_request,
)

if TYPE_CHECKING:
    from ..config import OIDCConfig

logger = logging.getLogger(__name__)

STAGE_CLIENT_CREDENTIALS = "client_credentials"
STAGE_TOKEN_REFRESH = "token_refresh"
STAGE_INTROSPECTION = "introspection"


class _BackChannelFlow:
    """Shared plumbing: HTTP client ownership, client auth and DPoP."""

    stage = ""

    def __init__(
        self,
        config: "OIDCConfig",
        http_client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ):
        self.config = config
        self.http_client = http_client
        self.logger = logger or logging.getLogger(__name__)

    def _auth_method(self) -> AuthMethod:
        # Any client without a secret is public and sends only client_id
        if not self.config.client_secret:
            return AuthMethod.NONE
        return self.config.auth_method or AuthMethod.BASIC

    def _require(self, value: str | None, what: str) -> str:
        if not value:
            raise OAuthFlowError(STAGE_CONFIGURATION, ValueError(f"{what} is required"))
        return value

    async def _post(self, url: str, form: dict[str, str], headers: dict[str, str]) -> httpx.Response:
        client = self.http_client or create_http_client(
            skip_tls_verify=self.config.skip_tls_verify, timeout=self.config.timeout
        )
        should_close = self.http_client is None
        try:
            return await post_form(client, url, form, headers)
        finally:
            if should_close:
                await client.aclose()

    async def _request_token(self, token_request: TokenRequest, dpop: bool) -> dict[str, Any]:
        token_endpoint = self._require(self.config.token_endpoint, "token endpoint")

        with flow_stage(self.stage):
            headers: dict[str, str] = {}
            if dpop:
                if self.config.key_pair is None:
                    raise ValueError("DPoP requires a private key")
                headers[DPOP_HEADER] = create_dpop_proof(self.config.key_pair, "POST", token_endpoint)

            form, request_headers = token_request.encode(headers)
            self.logger.debug(f"Requesting token with grant type {token_request.grant_type}")
            response = await self._post(token_endpoint, form, request_headers)
            return parse_token_response(response)


class ClientCredentialsFlow(_BackChannelFlow):
    """Client Credentials grant (RFC 6749 4.4)."""

    stage = STAGE_CLIENT_CREDENTIALS

    def __init__(
        self,
        config: "OIDCConfig",
        scopes: str = "",
        dpop: bool = False,
        http_client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ):
        super().__init__(config, http_client, logger)
        self.scopes = scopes
        self.dpop = dpop

    async def run(self) -> dict[str, Any]:
        """Request a token for the client itself.

        Raises:
            OAuthFlowError: If the request fails
        """
        token_request = client_credentials_request(
            self.config.client_id,
            self.config.client_secret,
            self._auth_method(),
            scope=self.scopes or None,
        )
        return await self._request_token(token_request, self.dpop)


class TokenRefreshFlow(_BackChannelFlow):
    """Refresh Token grant (RFC 6749 6)."""

    stage = STAGE_TOKEN_REFRESH

    def __init__(
        self,
        config: "OIDCConfig",
        refresh_token: str,
        scopes: str = "",
        dpop: bool = False,
        http_client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ):
        super().__init__(config, http_client, logger)
        self.refresh_token = refresh_token
        self.scopes = scopes
        self.dpop = dpop

    async def run(self) -> dict[str, Any]:
        """Exchange the refresh token for a new token set.

        Raises:
            OAuthFlowError: If the request fails
        """
        refresh_token = self._require(self.refresh_token, "refresh token")
        token_request = refresh_token_request(
            self.config.client_id,
            self.config.client_secret,
            self._auth_method(),
            refresh_token,
            scope=self.scopes or None,
        )
        return await self._request_token(token_request, self.dpop)


class IntrospectFlow(_BackChannelFlow):
    """Token introspection (RFC 7662).

    The call is authorized either by the client credentials or, when
    ``bearer_token`` is set, by that token alone.
    """

    stage = STAGE_INTROSPECTION

    def __init__(
        self,
        config: "OIDCConfig",
        token: str,
        token_type_hint: str = "access_token",
        bearer_token: str = "",
        response_format: str = "json",
        http_client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ):
        super().__init__(config, http_client, logger)
        self.token = token
        self.token_type_hint = token_type_hint
        self.bearer_token = bearer_token
        self.response_format = response_format

    async def run(self) -> dict[str, Any]:
        """Introspect the token.

        Returns:
            The introspection response, or ``{"jwt": ...}`` for JWT formats

        Raises:
            OAuthFlowError: If the request fails
        """
        endpoint = self._require(self.config.introspection_endpoint, "introspection endpoint")
        token = self._require(self.token, "token")
        if not self.bearer_token and not self.config.client_secret:
            raise OAuthFlowError(
                STAGE_CONFIGURATION, ValueError("client secret or bearer token is required")
            )

        media_type = INTROSPECTION_MEDIA_TYPES.get(self.response_format)
        if media_type is None:
            valid = ", ".join(INTROSPECTION_MEDIA_TYPES)
            raise OAuthFlowError(
                STAGE_CONFIGURATION,
                ValueError(f"invalid response format {self.response_format!r}, valid values are: {valid}"),
            )

        with flow_stage(self.stage):
            request = IntrospectionRequest(
                token=token,
                client_id=self.config.client_id,
                client_secret=self.config.client_secret,
                auth_method=self._auth_method(),
                token_type_hint=self.token_type_hint,
                bearer_token=self.bearer_token,
                accept_media_type=media_type,
            )
            form, headers = request.encode()
            response = await self._post(endpoint, form, headers)
            return parse_introspection_response(response)
