"""Output formatters for human-readable and JSON output."""

import json
import sys
from typing import Any

import click

from .oauth.errors import OAuth2Error
from .oauth.flow import OAuthFlowError


def format_json(data: Any, success: bool = True) -> str:
    """Format data as JSON output."""
    if success:
        output = {"success": True, "data": data}
    else:
        output = data  # Error dict already has success: false
    return json.dumps(output, indent=2, default=str)


def _error_details(error: Exception) -> dict[str, Any]:
    """Collect the OAuth2 fields carried by an error or its cause."""
    if isinstance(error, OAuthFlowError):
        details: dict[str, Any] = {"stage": error.stage}
        cause = error.cause
        if isinstance(cause, OAuth2Error):
            details.update(cause.to_dict())
        return details
    if isinstance(error, OAuth2Error):
        return error.to_dict()
    return {}


def format_error_json(
    error: Exception,
    help_text: str | None = None,
) -> str:
    """Format an error as JSON with helpful information."""
    cause = error.cause if isinstance(error, OAuthFlowError) else error
    return json.dumps(
        {
            "success": False,
            "error": {
                "type": type(cause).__name__,
                "message": str(error),
                **_error_details(error),
                "help": help_text or "",
            },
        },
        indent=2,
    )


def output_json(data: Any, success: bool = True) -> None:
    """Output data as JSON to stdout."""
    click.echo(format_json(data, success))


def output_error_json(
    error: Exception,
    help_text: str | None = None,
) -> None:
    """Output an error as JSON to stdout."""
    click.echo(format_error_json(error, help_text))
    sys.exit(1)


def output_human(message: str) -> None:
    """Output a human-readable message."""
    click.echo(message)


def output_error_human(error: Exception, help_text: str | None = None) -> None:
    """Output an error in human-readable format."""
    click.secho(f"Error: {error}", fg="red", err=True)
    if help_text:
        click.echo(f"\n{help_text}", err=True)
    sys.exit(1)


class OutputHandler:
    """Handles output formatting based on mode (JSON or human).

    Results go to stdout; status lines and errors go to stderr so that
    token output can be piped.
    """

    def __init__(self, json_mode: bool = False):
        self.json_mode = json_mode

    def success(self, data: Any) -> None:
        """Output a token or introspection response."""
        if self.json_mode:
            output_json(data)
        else:
            output_human(json.dumps(data, indent=2, default=str))

    def status(self, message: str) -> None:
        """Report flow progress on stderr (human mode only)."""
        if not self.json_mode:
            click.echo(message, err=True)

    def notice(self, message: str) -> None:
        """Report a terminal notice such as cancellation on stderr."""
        click.echo(message, err=True)

    def error(
        self,
        error: Exception,
        help_text: str | None = None,
    ) -> None:
        """Output error response and exit with status 1."""
        if self.json_mode:
            output_error_json(error, help_text)
        else:
            output_error_human(error, help_text)
