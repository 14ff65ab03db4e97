"""Client configuration for oidc-cli."""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .oauth.discovery import DiscoveryDocument
from .oauth.http import DEFAULT_TIMEOUT
from .oauth.keys import KeyPair, load_key_pair
from .oauth.requests import AuthMethod

logger = logging.getLogger(__name__)

# Env file search paths in priority order
ENV_SEARCH_PATHS = [
    Path(".env"),
]


def _resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} patterns in a string from environment variables.

    Handles:
    - Full replacement: "${VAR}" -> "value"
    - Partial replacement: "prefix_${VAR}_suffix" -> "prefix_value_suffix"
    - Missing vars resolve to empty string
    """
    if "${" not in value:
        return value

    result = value
    for match in re.finditer(r'\$\{([^}]+)\}', value):
        env_var = match.group(1)
        env_value = os.environ.get(env_var, "")
        result = result.replace(match.group(0), env_value)
    return result


def find_env_file(explicit_path: Path | None = None) -> Path | None:
    """Find the .env file to load."""
    if explicit_path:
        if explicit_path.exists():
            return explicit_path
        return None

    for path in ENV_SEARCH_PATHS:
        if path.exists():
            return path
    return None


def load_env(env_path: Path | None = None) -> Path | None:
    """Load a .env file into the process environment.

    Variables already set in the environment win over the file.

    Returns:
        The file that was loaded, or None
    """
    env_file = find_env_file(env_path)
    if env_file:
        load_dotenv(env_file)
        logger.debug(f"Loaded environment from {env_file}")
    return env_file


@dataclass
class OIDCConfig:
    """Client credentials, provider endpoints and transport settings."""

    issuer: str = ""
    discovery_url: str | None = None
    client_id: str = ""
    client_secret: str | None = None
    auth_method: AuthMethod | None = None
    authorization_endpoint: str | None = None
    par_endpoint: str | None = None
    token_endpoint: str | None = None
    introspection_endpoint: str | None = None
    skip_tls_verify: bool = False
    timeout: float = DEFAULT_TIMEOUT
    private_key_file: Path | None = None
    public_key_file: Path | None = None
    key_pair: KeyPair | None = None

    def __post_init__(self) -> None:
        if self.client_secret:
            self.client_secret = _resolve_env_vars(self.client_secret)

    def apply_discovery(self, document: DiscoveryDocument) -> None:
        """Fill endpoints the user did not set from a discovery document.

        When no auth method was configured, the first one the provider
        supports that this client also implements is used.
        """
        if not self.authorization_endpoint:
            self.authorization_endpoint = document.authorization_endpoint
        if not self.par_endpoint:
            self.par_endpoint = document.pushed_authorization_request_endpoint
        if not self.token_endpoint:
            self.token_endpoint = document.token_endpoint
        if not self.introspection_endpoint:
            self.introspection_endpoint = document.introspection_endpoint

        if self.auth_method is None:
            for method in document.token_endpoint_auth_methods_supported:
                try:
                    self.auth_method = AuthMethod(method)
                except ValueError:
                    continue
                logger.debug(f"Using auth method {method} from discovery")
                break

    def load_keys(self) -> KeyPair | None:
        """Load the DPoP key pair from the configured PEM files, if any."""
        if self.private_key_file is None:
            return None
        self.key_pair = load_key_pair(self.private_key_file, self.public_key_file)
        logger.debug(f"Loaded {self.key_pair.family.value} key pair for DPoP")
        return self.key_pair

    def needs_discovery(self, *endpoints: str) -> bool:
        """Check whether any of the named endpoint attributes is still unset."""
        return any(not getattr(self, name) for name in endpoints)
