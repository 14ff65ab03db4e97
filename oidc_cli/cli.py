"""CLI entry point for oidc-cli."""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from typing import Any, Awaitable, Callable, NoReturn

import click
import httpx

from . import __version__
from .config import OIDCConfig, load_env
from .oauth.callback import DEFAULT_CALLBACK_URI, CallbackCancelledError, CallbackTimeoutError
from .oauth.discovery import fetch_discovery_document
from .oauth.errors import OIDCError
from .oauth.flow import AuthorizationCodeFlow, AuthorizationCodeFlowConfig, OAuthFlowError
from .oauth.grants import ClientCredentialsFlow, IntrospectFlow, TokenRefreshFlow
from .oauth.http import create_http_client
from .oauth.requests import INTROSPECTION_MEDIA_TYPES, AuthMethod, parse_custom_args
from .output import OutputHandler

# Logger for CLI
logger = logging.getLogger("oidc_cli")

CANCELLED_MESSAGE = "operation cancelled"
TIMED_OUT_MESSAGE = "operation timed out"


def _load_env_file(ctx: click.Context, param: click.Parameter, value: str | None) -> str | None:
    """Load the .env file before any option reads its environment variable."""
    load_env(Path(value) if value else None)
    return value


@click.group()
@click.option(
    "--env-file",
    "env_path",
    type=click.Path(exists=True, dir_okay=False),
    is_eager=True,
    expose_value=False,
    callback=_load_env_file,
    help="Path to .env file (default: ./.env)",
)
@click.option("--issuer", envvar="OIDC_ISSUER", default="", help="Issuer URL of the provider")
@click.option("--discovery-url", envvar="OIDC_DISCOVERY_URL", default=None, help="Override the discovery URL")
@click.option("--client-id", envvar="OIDC_CLIENT_ID", default="", help="Client ID")
@click.option("--client-secret", envvar="OIDC_CLIENT_SECRET", default=None, help="Client secret (supports ${VAR})")
@click.option(
    "--auth-method",
    envvar="OIDC_AUTH_METHOD",
    type=click.Choice([m.value for m in AuthMethod]),
    default=None,
    help="Client authentication method at the token endpoint",
)
@click.option("--skip-tls-verify", envvar="OIDC_SKIP_TLS_VERIFY", is_flag=True, help="Disable TLS certificate verification")
@click.option("--timeout", envvar="OIDC_TIMEOUT", type=float, default=10.0, show_default=True, help="HTTP timeout in seconds")
@click.option("--json", "json_mode", is_flag=True, help="Output in JSON format")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(version=__version__)
@click.pass_context
def main(
    ctx: click.Context,
    issuer: str,
    discovery_url: str | None,
    client_id: str,
    client_secret: str | None,
    auth_method: str | None,
    skip_tls_verify: bool,
    timeout: float,
    json_mode: bool,
    verbose: bool,
) -> None:
    """oidc-cli - Get OAuth2 and OpenID Connect tokens without all the fuss."""
    ctx.ensure_object(dict)
    ctx.obj["json_mode"] = json_mode
    ctx.obj["output"] = OutputHandler(json_mode)
    ctx.obj["config"] = OIDCConfig(
        issuer=issuer,
        discovery_url=discovery_url,
        client_id=client_id,
        client_secret=client_secret,
        auth_method=AuthMethod(auth_method) if auth_method else None,
        skip_tls_verify=skip_tls_verify,
        timeout=timeout,
    )

    # Configure logging based on verbosity
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)


def get_config(ctx: click.Context, **endpoints: str | None) -> OIDCConfig:
    """Get config from context with command-level endpoint overrides applied."""
    config: OIDCConfig = ctx.obj["config"]
    for name, value in endpoints.items():
        if value:
            setattr(config, name, value)
    return config


def _require_client_id(config: OIDCConfig) -> None:
    if not config.client_id:
        raise click.UsageError("client-id is required")


def _read_stdin_value(value: str) -> str:
    """Resolve '-' to the first line of stdin."""
    if value != "-":
        return value
    return click.get_text_stream("stdin").readline().strip()


async def _with_cancellation(coro: Awaitable[Any]) -> Any:
    """Run a coroutine as a task that SIGINT/SIGTERM cancel."""
    loop = asyncio.get_running_loop()
    task = asyncio.ensure_future(coro)

    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, task.cancel)
            installed.append(sig)
        except (NotImplementedError, RuntimeError, ValueError):
            # No signal support on this loop or thread; Ctrl-C still raises KeyboardInterrupt
            pass

    try:
        return await task
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


async def _discover_and_run(
    config: OIDCConfig,
    endpoints: tuple[str, ...],
    make_flow: Callable[[httpx.AsyncClient], Any],
) -> Any:
    """Fill missing endpoints from discovery, then run the flow on one HTTP client."""
    async with create_http_client(config.skip_tls_verify, config.timeout) as client:
        if config.needs_discovery(*endpoints):
            document = await fetch_discovery_document(
                config.issuer, config.discovery_url, http_client=client
            )
            config.apply_discovery(document)
        return await make_flow(client).run()


def run_flow(
    ctx: click.Context,
    config: OIDCConfig,
    endpoints: tuple[str, ...],
    make_flow: Callable[[httpx.AsyncClient], Any],
) -> Any | NoReturn:
    """Run a flow to completion and map its outcome to an exit status.

    Cancellation exits 0, every other failure exits 1.
    """
    output: OutputHandler = ctx.obj["output"]

    if config.needs_discovery(*endpoints) and not (config.issuer or config.discovery_url):
        raise click.UsageError("issuer is required")

    try:
        config.load_keys()
        return asyncio.run(_with_cancellation(_discover_and_run(config, endpoints, make_flow)))
    except (asyncio.CancelledError, KeyboardInterrupt):
        output.notice(CANCELLED_MESSAGE)
        ctx.exit(0)
    except OAuthFlowError as e:
        if e.caused_by(CallbackCancelledError):
            output.notice(CANCELLED_MESSAGE)
            ctx.exit(0)
        if e.caused_by(CallbackTimeoutError):
            output.error(TimeoutError(TIMED_OUT_MESSAGE), help_text=str(e))
        output.error(e)
    except OIDCError as e:
        output.error(e)
    raise SystemExit(1)  # Never reached due to sys.exit in output.error


@main.command("authorization_code")
@click.option("--authorization-url", default=None, help="Override the authorization endpoint")
@click.option("--token-url", default=None, help="Override the token endpoint")
@click.option("--par-url", default=None, help="Override the pushed authorization request endpoint")
@click.option("--scopes", default="openid", show_default=True, help="Space separated list of scopes")
@click.option("--callback-uri", default=DEFAULT_CALLBACK_URI, show_default=True, help="Redirect URI to listen on")
@click.option("--prompt", default="", help="prompt parameter (e.g. login, consent)")
@click.option("--acr-values", default="", help="acr_values parameter")
@click.option("--login-hint", default="", help="login_hint parameter")
@click.option("--max-age", default="", help="max_age parameter")
@click.option("--ui-locales", default="", help="ui_locales parameter")
@click.option("--state", default="", help="state parameter (random when omitted)")
@click.option("--custom", "custom", multiple=True, help="Extra authorization parameter key=value (repeatable)")
@click.option("--pkce", is_flag=True, help="Use PKCE (S256)")
@click.option("--par", is_flag=True, help="Use pushed authorization requests")
@click.option("--dpop", is_flag=True, help="Bind tokens with DPoP proofs")
@click.option("--private-key", type=click.Path(exists=True, dir_okay=False), default=None, help="PEM private key for DPoP")
@click.option("--public-key", type=click.Path(exists=True, dir_okay=False), default=None, help="PEM public key for DPoP")
@click.pass_context
def authorization_code(
    ctx: click.Context,
    authorization_url: str | None,
    token_url: str | None,
    par_url: str | None,
    scopes: str,
    callback_uri: str,
    prompt: str,
    acr_values: str,
    login_hint: str,
    max_age: str,
    ui_locales: str,
    state: str,
    custom: tuple[str, ...],
    pkce: bool,
    par: bool,
    dpop: bool,
    private_key: str | None,
    public_key: str | None,
) -> None:
    """Run the browser-based authorization code flow."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(
        ctx,
        authorization_endpoint=authorization_url,
        token_endpoint=token_url,
        par_endpoint=par_url,
    )
    _require_client_id(config)

    if dpop and not private_key:
        raise click.UsageError("--private-key is required with --dpop")
    if private_key:
        config.private_key_file = Path(private_key)
        config.public_key_file = Path(public_key) if public_key else None

    try:
        custom_args = parse_custom_args(custom)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--custom") from e

    flow_config = AuthorizationCodeFlowConfig(
        callback_uri=callback_uri,
        scopes=scopes,
        prompt=prompt,
        acr_values=acr_values,
        login_hint=login_hint,
        max_age=max_age,
        ui_locales=ui_locales,
        state=state,
        custom_args=custom_args,
        pkce=pkce,
        par=par,
        dpop=dpop,
    )

    endpoints = ("authorization_endpoint", "token_endpoint")
    if par:
        endpoints += ("par_endpoint",)

    tokens = run_flow(
        ctx,
        config,
        endpoints,
        lambda client: AuthorizationCodeFlow(
            config, flow_config, http_client=client, on_status=output.status
        ),
    )
    output.success(tokens)


@main.command("client_credentials")
@click.option("--token-url", default=None, help="Override the token endpoint")
@click.option("--scopes", default="", help="Space separated list of scopes")
@click.option("--dpop", is_flag=True, help="Bind tokens with DPoP proofs")
@click.option("--private-key", type=click.Path(exists=True, dir_okay=False), default=None, help="PEM private key for DPoP")
@click.option("--public-key", type=click.Path(exists=True, dir_okay=False), default=None, help="PEM public key for DPoP")
@click.pass_context
def client_credentials(
    ctx: click.Context,
    token_url: str | None,
    scopes: str,
    dpop: bool,
    private_key: str | None,
    public_key: str | None,
) -> None:
    """Run the client credentials grant."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx, token_endpoint=token_url)
    _require_client_id(config)
    if not config.client_secret:
        raise click.UsageError("client-secret is required")

    if dpop and not private_key:
        raise click.UsageError("--private-key is required with --dpop")
    if private_key:
        config.private_key_file = Path(private_key)
        config.public_key_file = Path(public_key) if public_key else None

    tokens = run_flow(
        ctx,
        config,
        ("token_endpoint",),
        lambda client: ClientCredentialsFlow(config, scopes=scopes, dpop=dpop, http_client=client),
    )
    output.success(tokens)


@main.command("token_refresh")
@click.option("--token-url", default=None, help="Override the token endpoint")
@click.option("--refresh-token", required=True, help="Refresh token, or '-' to read it from stdin")
@click.option("--scopes", default="", help="Space separated list of scopes")
@click.option("--dpop", is_flag=True, help="Bind tokens with DPoP proofs")
@click.option("--private-key", type=click.Path(exists=True, dir_okay=False), default=None, help="PEM private key for DPoP")
@click.option("--public-key", type=click.Path(exists=True, dir_okay=False), default=None, help="PEM public key for DPoP")
@click.pass_context
def token_refresh(
    ctx: click.Context,
    token_url: str | None,
    refresh_token: str,
    scopes: str,
    dpop: bool,
    private_key: str | None,
    public_key: str | None,
) -> None:
    """Exchange a refresh token for a new token set."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx, token_endpoint=token_url)
    _require_client_id(config)

    refresh_token = _read_stdin_value(refresh_token)
    if not refresh_token:
        raise click.UsageError("refresh token is required")

    if dpop and not private_key:
        raise click.UsageError("--private-key is required with --dpop")
    if private_key:
        config.private_key_file = Path(private_key)
        config.public_key_file = Path(public_key) if public_key else None

    tokens = run_flow(
        ctx,
        config,
        ("token_endpoint",),
        lambda client: TokenRefreshFlow(
            config, refresh_token, scopes=scopes, dpop=dpop, http_client=client
        ),
    )
    output.success(tokens)


@main.command("introspect")
@click.option("--introspection-url", default=None, help="Override the introspection endpoint")
@click.option("--token", required=True, help="Token to introspect, or '-' to read it from stdin")
@click.option("--token-type", default="access_token", show_default=True, help="token_type_hint to send")
@click.option("--bearer-token", default="", help="Authorize with this bearer token instead of client credentials")
@click.option(
    "--response-format",
    type=click.Choice(list(INTROSPECTION_MEDIA_TYPES)),
    default="json",
    show_default=True,
    help="Requested response format",
)
@click.pass_context
def introspect(
    ctx: click.Context,
    introspection_url: str | None,
    token: str,
    token_type: str,
    bearer_token: str,
    response_format: str,
) -> None:
    """Introspect a token (RFC 7662)."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx, introspection_endpoint=introspection_url)
    _require_client_id(config)
    if not config.client_secret and not bearer_token:
        raise click.UsageError("client-secret or bearer-token is required")

    token = _read_stdin_value(token)
    if not token:
        raise click.UsageError("token is required")

    result = run_flow(
        ctx,
        config,
        ("introspection_endpoint",),
        lambda client: IntrospectFlow(
            config,
            token,
            token_type_hint=token_type,
            bearer_token=bearer_token,
            response_format=response_format,
            http_client=client,
        ),
    )
    output.success(result)
