"""OAuth2 authorization code flow.

This module orchestrates the browser-based flow end to end:
1. Generate a PKCE pair (optional)
2. Build the authorization request, pushing it first when PAR is on
3. Start the localhost callback server
4. Open the browser
5. Wait for the callback and validate it
6. Sign a DPoP proof for the token request (optional)
7. Exchange the code for tokens
"""

import asyncio
import hmac
import logging
import webbrowser
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterator

import httpx

from .callback import CALLBACK_TIMEOUT, DEFAULT_CALLBACK_URI, CallbackServer
from .dpop import DPOP_HEADER, create_dpop_proof
from .errors import OIDCError, ProviderDeniedError, StateMismatchError
from .http import create_http_client, post_form
from .pkce import PKCEPair, generate_pkce_pair, generate_state
from .requests import (
    AuthMethod,
    AuthorizationRequest,
    PushedAuthorizationRequest,
    authorization_code_request,
    build_authorization_url,
    parse_par_response,
    parse_token_response,
    pushed_authorization_redirect,
)

if TYPE_CHECKING:
    from ..config import OIDCConfig

logger = logging.getLogger(__name__)

STAGE_CONFIGURATION = "configuration"
STAGE_PKCE = "pkce"
STAGE_AUTHORIZATION_REQUEST = "authorization_request"
STAGE_CALLBACK_SERVER = "callback_server"
STAGE_CALLBACK = "callback"
STAGE_DPOP = "dpop"
STAGE_TOKEN_EXCHANGE = "token_exchange"


class OAuthFlowError(OIDCError):
    """A flow stage failed.

    Attributes:
        stage: Name of the stage that failed
        cause: The original exception, also chained as ``__cause__``
    """

    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage} failed: {cause}")

    def caused_by(self, kind: type[BaseException]) -> bool:
        """Check whether any exception in the cause chain is a ``kind``."""
        error: BaseException | None = self.cause
        while error is not None:
            if isinstance(error, kind):
                return True
            error = error.__cause__
        return False


@contextmanager
def flow_stage(stage: str) -> Iterator[None]:
    """Re-raise any failure inside the block as OAuthFlowError for ``stage``.

    Task cancellation is not an Exception and passes through untouched.
    httpx.InvalidURL is not an httpx.HTTPError, so it is listed on its own.
    """
    try:
        yield
    except OAuthFlowError:
        raise
    except (OIDCError, httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
        raise OAuthFlowError(stage, e) from e


@dataclass
class AuthorizationCodeFlowConfig:
    """Per-run options of the authorization code flow."""

    callback_uri: str = DEFAULT_CALLBACK_URI
    scopes: str = ""
    prompt: str = ""
    acr_values: str = ""
    login_hint: str = ""
    max_age: str = ""
    ui_locales: str = ""
    state: str = ""
    custom_args: dict[str, str] = field(default_factory=dict)
    pkce: bool = False
    par: bool = False
    dpop: bool = False


class AuthorizationCodeFlow:
    """Orchestrates the complete authorization code flow.

    Usage:
        flow = AuthorizationCodeFlow(config, AuthorizationCodeFlowConfig(pkce=True))
        tokens = await flow.run()
    """

    def __init__(
        self,
        config: "OIDCConfig",
        flow_config: AuthorizationCodeFlowConfig,
        http_client: httpx.AsyncClient | None = None,
        open_browser: Callable[[str], Any] = webbrowser.open,
        on_status: Callable[[str], None] | None = None,
        logger: logging.Logger | None = None,
        callback_timeout: float = CALLBACK_TIMEOUT,
    ):
        """Initialize the flow.

        Args:
            config: Client credentials and endpoints
            flow_config: Options for this run
            http_client: Optional HTTP client; one is created from config otherwise
            open_browser: Opens a URL in the user's browser, returns falsy on failure
            on_status: Optional callback for status messages
            logger: Logger to use instead of the module logger
            callback_timeout: Seconds to wait for the browser callback
        """
        self.config = config
        self.flow_config = flow_config
        self.http_client = http_client
        self.open_browser = open_browser
        self.on_status = on_status or (lambda msg: None)
        self.logger = logger or logging.getLogger(__name__)
        self.callback_timeout = callback_timeout

    def _emit_status(self, message: str) -> None:
        self.logger.info(message)
        self.on_status(message)

    def _auth_method(self) -> AuthMethod:
        # Any client without a secret is public, whether or not PKCE is enabled
        if not self.config.client_secret:
            return AuthMethod.NONE
        return self.config.auth_method or AuthMethod.BASIC

    def _authorization_request(self, redirect_uri: str, pkce: PKCEPair | None) -> AuthorizationRequest:
        flow_config = self.flow_config
        request = AuthorizationRequest(
            client_id=self.config.client_id,
            redirect_uri=redirect_uri,
            scope=flow_config.scopes,
            state=flow_config.state or generate_state(),
            prompt=flow_config.prompt,
            acr_values=flow_config.acr_values,
            login_hint=flow_config.login_hint,
            max_age=flow_config.max_age,
            ui_locales=flow_config.ui_locales,
            custom_args=dict(flow_config.custom_args),
        )
        if pkce is not None:
            request.set_pkce(pkce.challenge, pkce.method)
        return request

    async def _push_authorization_request(
        self,
        client: httpx.AsyncClient,
        request: AuthorizationRequest,
        auth_method: AuthMethod,
    ) -> AuthorizationRequest:
        endpoint = self.config.par_endpoint
        if not endpoint:
            raise ValueError("no pushed authorization request endpoint configured")

        self._emit_status("Pushing authorization request...")
        par = PushedAuthorizationRequest(request, self.config.client_secret, auth_method)
        form, headers = par.encode()
        response = parse_par_response(await post_form(client, endpoint, form, headers))
        self.logger.debug(f"PAR request_uri expires in {response.expires_in}s")
        return pushed_authorization_redirect(request.client_id, response.request_uri)

    def _open_browser(self, url: str) -> None:
        self._emit_status("Opening browser for authorization...")
        try:
            opened = self.open_browser(url)
        except Exception as e:
            self.logger.warning(f"Could not open browser: {e}")
            opened = False
        if not opened:
            self._emit_status(f"Could not open browser. Please open this URL manually:\n{url}")

    async def run(self, cancel_event: asyncio.Event | None = None) -> dict[str, Any]:
        """Execute the complete flow.

        Args:
            cancel_event: Optional event that aborts the wait for the callback

        Returns:
            The parsed token endpoint response

        Raises:
            OAuthFlowError: If any stage fails; ``caused_by`` tells which kind
        """
        if not self.config.authorization_endpoint or not self.config.token_endpoint:
            raise OAuthFlowError(
                STAGE_CONFIGURATION,
                ValueError("authorization and token endpoints are required"),
            )

        auth_method = self._auth_method()

        pkce: PKCEPair | None = None
        if self.flow_config.pkce:
            with flow_stage(STAGE_PKCE):
                pkce = generate_pkce_pair()

        client = self.http_client or create_http_client(
            skip_tls_verify=self.config.skip_tls_verify, timeout=self.config.timeout
        )
        should_close = self.http_client is None

        server: CallbackServer | None = None
        try:
            # Listener must be up before the browser can redirect to it
            with flow_stage(STAGE_CALLBACK_SERVER):
                server = CallbackServer(self.flow_config.callback_uri, logger=self.logger)
                redirect_uri = await server.start()
            self._emit_status(f"Waiting for callback on {redirect_uri}")

            with flow_stage(STAGE_AUTHORIZATION_REQUEST):
                request = self._authorization_request(redirect_uri, pkce)
                browser_request = request
                if self.flow_config.par:
                    browser_request = await self._push_authorization_request(
                        client, request, auth_method
                    )
                auth_url = build_authorization_url(
                    self.config.authorization_endpoint, browser_request
                )

            self._open_browser(auth_url)

            with flow_stage(STAGE_CALLBACK):
                result = await server.wait_for_callback(
                    timeout=self.callback_timeout, cancel_event=cancel_event
                )
                if not result.is_success():
                    raise ProviderDeniedError(result.error, result.error_description)
                # constant-time comparison; a missing state counts as a mismatch
                if not hmac.compare_digest(result.state or "", request.state):
                    raise StateMismatchError("State mismatch in callback - possible CSRF attack")
                if not result.code:
                    raise ProviderDeniedError("invalid_response", "no authorization code in callback")

            headers: dict[str, str] = {}
            if self.flow_config.dpop:
                with flow_stage(STAGE_DPOP):
                    if self.config.key_pair is None:
                        raise ValueError("DPoP requires a private key")
                    headers[DPOP_HEADER] = create_dpop_proof(
                        self.config.key_pair, "POST", self.config.token_endpoint
                    )

            with flow_stage(STAGE_TOKEN_EXCHANGE):
                self._emit_status("Exchanging code for tokens...")
                token_request = authorization_code_request(
                    self.config.client_id,
                    self.config.client_secret,
                    auth_method,
                    code=result.code,
                    redirect_uri=redirect_uri,
                    code_verifier=pkce.verifier if pkce else None,
                )
                form, request_headers = token_request.encode(headers)
                response = await post_form(client, self.config.token_endpoint, form, request_headers)
                tokens = parse_token_response(response)

            self._emit_status("Successfully authenticated!")
            return tokens

        finally:
            if server is not None:
                await server.stop()
            if should_close:
                await client.aclose()
