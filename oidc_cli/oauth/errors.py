"""Error taxonomy shared by the OAuth2/OIDC protocol engine.

Every error raised by the engine derives from OIDCError so the CLI can
report it uniformly. The three response-parse failures (OAuthProtocolError,
HTTPFailureError, JSONParsingError) are disjoint: callers can branch on the
exception type without inspecting status codes.
"""

from typing import Any


class OIDCError(Exception):
    """Base class for all oidc-cli protocol errors."""

    pass


class RandomnessUnavailableError(OIDCError):
    """The operating system entropy source failed."""

    pass


class ProviderDeniedError(OIDCError):
    """The authorization endpoint redirected back with an OAuth2 error."""

    def __init__(self, error: str | None, error_description: str | None = None):
        self.error = error or "unknown_error"
        self.error_description = error_description or ""
        message = f"authorization failed with error {self.error}"
        if self.error_description:
            message += f" and description {self.error_description}"
        super().__init__(message)


class StateMismatchError(OIDCError):
    """The state returned to the callback does not match the one sent."""

    pass


class OAuth2Error(OIDCError):
    """A token-style endpoint returned something other than a usable response.

    Attributes:
        status_code: HTTP status of the response
        error: OAuth2 ``error`` member, if the body carried one
        error_description: OAuth2 ``error_description`` member, if present
        raw_body: The undecoded response body
    """

    def __init__(
        self,
        status_code: int,
        raw_body: str = "",
        error: str | None = None,
        error_description: str | None = None,
    ):
        self.status_code = status_code
        self.raw_body = raw_body
        self.error = error
        self.error_description = error_description
        super().__init__(self._format())

    def _format(self) -> str:
        if self.error:
            if self.error_description:
                return f"error: {self.error} - {self.error_description}, status: {self.status_code}"
            return f"error: {self.error}, status: {self.status_code}"
        return f"request failed with status: {self.status_code}, body: {self.raw_body}"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status_code": self.status_code}
        if self.error:
            data["error"] = self.error
        if self.error_description:
            data["error_description"] = self.error_description
        return data


class OAuthProtocolError(OAuth2Error):
    """Non-2xx response carrying a standard OAuth2 error body."""

    pass


class HTTPFailureError(OAuth2Error):
    """Non-2xx response without an OAuth2 error body."""

    pass


class JSONParsingError(OAuth2Error):
    """2xx response whose body is not a JSON object."""

    def _format(self) -> str:
        return f"json parsing error, status: {self.status_code}, body: {self.raw_body}"
