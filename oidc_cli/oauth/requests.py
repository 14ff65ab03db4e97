"""Builders and parsers for OAuth2 requests and responses.

Every flow goes through this module: it assembles form bodies for each
grant type, applies client authentication the same way everywhere, and
classifies responses into exactly one of success, OAuthProtocolError,
HTTPFailureError or JSONParsingError.
"""

import base64
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

import httpx

from .errors import HTTPFailureError, JSONParsingError, OAuthProtocolError
from .pkce import CHALLENGE_METHOD

GRANT_AUTHORIZATION_CODE = "authorization_code"
GRANT_REFRESH_TOKEN = "refresh_token"
GRANT_CLIENT_CREDENTIALS = "client_credentials"
GRANT_DEVICE_CODE = "urn:ietf:params:oauth:grant-type:device_code"

INTROSPECTION_DEFAULT_MEDIA_TYPE = "application/json"

# --response-format values for introspection -> Accept media type
INTROSPECTION_MEDIA_TYPES = {
    "json": "application/json",
    "jwt": "application/jwt",
    "token-introspection+jwt": "application/token-introspection+jwt",
}


class AuthMethod(str, Enum):
    """OAuth2 client authentication methods at the token endpoint."""

    BASIC = "client_secret_basic"
    POST = "client_secret_post"
    NONE = "none"

    @classmethod
    def parse(cls, value: str) -> "AuthMethod":
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise ValueError(
                f"invalid auth method {value!r}, valid values are: {valid}"
            ) from None

    def __str__(self) -> str:
        return self.value


def parse_custom_args(values: Iterable[str]) -> dict[str, str]:
    """Parse repeated ``key=value`` arguments into a dict.

    Raises:
        ValueError: If an argument has no ``=``
    """
    args: dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValueError(f"invalid custom argument {item!r}, must be in the format key=value")
        args[key] = value
    return args


def basic_auth_header(client_id: str, client_secret: str) -> str:
    """Build an HTTP Basic Authorization header value (RFC 6749 2.3.1)."""
    credentials = f"{quote(client_id, safe='')}:{quote(client_secret, safe='')}"
    return "Basic " + base64.b64encode(credentials.encode("utf-8")).decode("ascii")


def apply_client_auth(
    form: dict[str, str],
    headers: dict[str, str],
    client_id: str,
    client_secret: str | None,
    auth_method: AuthMethod,
) -> None:
    """Add client authentication to a request in place.

    client_secret_basic puts the credentials in the Authorization header
    only; client_secret_post puts client_id and a non-empty client_secret
    in the body; none sends only client_id in the body.
    """
    if auth_method is AuthMethod.BASIC:
        headers["Authorization"] = basic_auth_header(client_id, client_secret or "")
    elif auth_method is AuthMethod.POST:
        form["client_id"] = client_id
        if client_secret:
            form["client_secret"] = client_secret
    else:
        form["client_id"] = client_id


@dataclass
class AuthorizationRequest:
    """Parameters of the front-channel authorization request."""

    client_id: str
    redirect_uri: str = ""
    scope: str = ""
    state: str = ""
    prompt: str = ""
    acr_values: str = ""
    login_hint: str = ""
    max_age: str = ""
    ui_locales: str = ""
    code_challenge: str = ""
    code_challenge_method: str = ""
    request_uri: str = ""
    custom_args: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.client_id:
            raise ValueError("client_id is required")

    def set_pkce(self, challenge: str, method: str = CHALLENGE_METHOD) -> None:
        self.code_challenge = challenge
        self.code_challenge_method = method

    def to_params(self) -> dict[str, str]:
        """Flatten to query parameters; empty values are left out."""
        params = {"response_type": "code", "client_id": self.client_id}
        optional = {
            "state": self.state,
            "redirect_uri": self.redirect_uri,
            "scope": self.scope,
            "prompt": self.prompt,
            "acr_values": self.acr_values,
            "login_hint": self.login_hint,
            "max_age": self.max_age,
            "ui_locales": self.ui_locales,
            "code_challenge_method": self.code_challenge_method,
            "code_challenge": self.code_challenge,
            "request_uri": self.request_uri,
        }
        params.update({key: value for key, value in optional.items() if value})
        params.update(self.custom_args)
        return params


def build_authorization_url(endpoint: str, request: AuthorizationRequest) -> str:
    """Build the browser URL for an authorization request.

    Query parameters already present on the endpoint are kept unless the
    request overrides them.
    """
    parts = urlsplit(endpoint)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"invalid authorization endpoint: {endpoint!r}")

    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    query.update(request.to_params())
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def pushed_authorization_redirect(client_id: str, request_uri: str) -> AuthorizationRequest:
    """The redirect that follows a successful PAR carries only these two values."""
    return AuthorizationRequest(client_id=client_id, request_uri=request_uri)


@dataclass
class PushedAuthorizationRequest:
    """Back-channel push of an authorization request (RFC 9126)."""

    request: AuthorizationRequest
    client_secret: str | None = None
    auth_method: AuthMethod = AuthMethod.BASIC

    def encode(self) -> tuple[dict[str, str], dict[str, str]]:
        """Return the form body and headers for the PAR endpoint."""
        form = self.request.to_params()
        form.pop("request_uri", None)
        form.pop("client_id", None)
        headers: dict[str, str] = {}
        apply_client_auth(form, headers, self.request.client_id, self.client_secret, self.auth_method)
        return form, headers


@dataclass(frozen=True)
class PushedAuthorizationResponse:
    request_uri: str
    expires_in: int


@dataclass
class TokenRequest:
    """A token endpoint request for one grant type."""

    grant_type: str
    client_id: str
    client_secret: str | None = None
    auth_method: AuthMethod = AuthMethod.BASIC
    params: dict[str, str] = field(default_factory=dict)

    def encode(self, headers: dict[str, str] | None = None) -> tuple[dict[str, str], dict[str, str]]:
        """Return the form body and headers, with client authentication applied.

        Args:
            headers: Extra headers to send, e.g. a DPoP proof
        """
        form = dict(self.params)
        form["grant_type"] = self.grant_type
        request_headers = dict(headers or {})
        apply_client_auth(form, request_headers, self.client_id, self.client_secret, self.auth_method)
        return form, request_headers


def authorization_code_request(
    client_id: str,
    client_secret: str | None,
    auth_method: AuthMethod,
    code: str,
    redirect_uri: str,
    code_verifier: str | None = None,
) -> TokenRequest:
    params = {"code": code, "redirect_uri": redirect_uri}
    if code_verifier:
        params["code_verifier"] = code_verifier
    return TokenRequest(GRANT_AUTHORIZATION_CODE, client_id, client_secret, auth_method, params)


def refresh_token_request(
    client_id: str,
    client_secret: str | None,
    auth_method: AuthMethod,
    refresh_token: str,
    scope: str | None = None,
) -> TokenRequest:
    params = {"refresh_token": refresh_token}
    if scope:
        params["scope"] = scope
    return TokenRequest(GRANT_REFRESH_TOKEN, client_id, client_secret, auth_method, params)


def client_credentials_request(
    client_id: str,
    client_secret: str | None,
    auth_method: AuthMethod,
    scope: str | None = None,
) -> TokenRequest:
    params = {"scope": scope} if scope else {}
    return TokenRequest(GRANT_CLIENT_CREDENTIALS, client_id, client_secret, auth_method, params)


def device_code_request(
    client_id: str,
    client_secret: str | None,
    auth_method: AuthMethod,
    device_code: str,
) -> TokenRequest:
    return TokenRequest(
        GRANT_DEVICE_CODE, client_id, client_secret, auth_method, {"device_code": device_code}
    )


@dataclass
class IntrospectionRequest:
    """Token introspection request (RFC 7662)."""

    token: str
    client_id: str = ""
    client_secret: str | None = None
    auth_method: AuthMethod = AuthMethod.BASIC
    token_type_hint: str = ""
    bearer_token: str = ""
    accept_media_type: str = ""
    custom_args: dict[str, str] = field(default_factory=dict)

    def encode(self) -> tuple[dict[str, str], dict[str, str]]:
        """Return the form body and headers for the introspection endpoint.

        A bearer token, when given, authorizes the call instead of the
        client credentials.
        """
        form = {"token": self.token}
        if self.token_type_hint:
            form["token_type_hint"] = self.token_type_hint
        form.update(self.custom_args)

        headers = {"Accept": self.accept_media_type or INTROSPECTION_DEFAULT_MEDIA_TYPE}
        if self.bearer_token:
            headers["Authorization"] = f"Bearer {self.bearer_token}"
        else:
            apply_client_auth(form, headers, self.client_id, self.client_secret, self.auth_method)
        return form, headers


def _decode_json(response: httpx.Response) -> Any:
    try:
        return json.loads(response.content)
    except (ValueError, UnicodeDecodeError):
        return None


def parse_oauth_response(response: httpx.Response) -> dict[str, Any]:
    """Parse a token-style JSON response.

    The body is decoded before the status is looked at, since OAuth2 error
    responses are JSON on non-2xx statuses.

    Returns:
        The decoded JSON object

    Raises:
        OAuthProtocolError: Non-2xx with an OAuth2 ``error`` member
        HTTPFailureError: Non-2xx without one
        JSONParsingError: 2xx whose body is not a JSON object
    """
    data = _decode_json(response)
    raw_body = response.text

    if not response.is_success:
        if isinstance(data, dict) and isinstance(data.get("error"), str):
            description = data.get("error_description")
            raise OAuthProtocolError(
                status_code=response.status_code,
                raw_body=raw_body,
                error=data["error"],
                error_description=description if isinstance(description, str) else None,
            )
        raise HTTPFailureError(status_code=response.status_code, raw_body=raw_body)

    if not isinstance(data, dict):
        raise JSONParsingError(status_code=response.status_code, raw_body=raw_body)

    return data


def parse_token_response(response: httpx.Response) -> dict[str, Any]:
    """Parse a token endpoint response (any grant type)."""
    return parse_oauth_response(response)


def parse_introspection_response(response: httpx.Response) -> dict[str, Any]:
    """Parse an introspection response.

    A 2xx response in a JWT media type is returned as ``{"jwt": body}``.
    """
    content_type = response.headers.get("Content-Type", "")
    if response.is_success and "jwt" in content_type.lower():
        return {"jwt": response.text.strip()}
    return parse_oauth_response(response)


def parse_par_response(response: httpx.Response) -> PushedAuthorizationResponse:
    """Parse a pushed authorization response.

    Raises:
        JSONParsingError: If the success body lacks ``request_uri``
    """
    data = parse_oauth_response(response)

    request_uri = data.get("request_uri")
    if not isinstance(request_uri, str) or not request_uri:
        raise JSONParsingError(status_code=response.status_code, raw_body=response.text)

    try:
        expires_in = int(data.get("expires_in", 0))
    except (TypeError, ValueError):
        raise JSONParsingError(status_code=response.status_code, raw_body=response.text) from None

    return PushedAuthorizationResponse(request_uri=request_uri, expires_in=expires_in)
