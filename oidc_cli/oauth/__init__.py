"""OAuth2 / OpenID Connect protocol engine for oidc-cli.

Main Components:
    AuthorizationCodeFlow: Browser-based authorization code flow
    ClientCredentialsFlow, TokenRefreshFlow, IntrospectFlow: Back-channel flows
    CallbackServer: Single-use localhost redirect listener
    create_dpop_proof: DPoP proof signing
    fetch_discovery_document: Provider metadata

Quick Start:
    from oidc_cli.oauth import AuthorizationCodeFlow, AuthorizationCodeFlowConfig

    flow = AuthorizationCodeFlow(config, AuthorizationCodeFlowConfig(pkce=True))
    tokens = await flow.run()
"""

from .callback import (
    CallbackCancelledError,
    CallbackError,
    CallbackResult,
    CallbackServer,
    CallbackTimeoutError,
    ListenerBindError,
)
from .discovery import DiscoveryDocument, DiscoveryError, fetch_discovery_document
from .dpop import create_dpop_proof, public_jwk, signing_algorithm
from .errors import (
    HTTPFailureError,
    JSONParsingError,
    OAuth2Error,
    OAuthProtocolError,
    OIDCError,
    ProviderDeniedError,
    RandomnessUnavailableError,
    StateMismatchError,
)
from .flow import AuthorizationCodeFlow, AuthorizationCodeFlowConfig, OAuthFlowError
from .grants import ClientCredentialsFlow, IntrospectFlow, TokenRefreshFlow
from .keys import (
    DPoPError,
    KeyFamily,
    KeyLoadError,
    KeyPair,
    KeyTypeMismatchError,
    UnsupportedKeyTypeError,
    load_key_pair,
)
from .pkce import PKCEPair, generate_code_challenge, generate_code_verifier, generate_pkce_pair
from .requests import AuthMethod

__all__ = [
    # Flows
    "AuthorizationCodeFlow",
    "AuthorizationCodeFlowConfig",
    "ClientCredentialsFlow",
    "TokenRefreshFlow",
    "IntrospectFlow",
    "OAuthFlowError",
    "AuthMethod",
    # Discovery
    "fetch_discovery_document",
    "DiscoveryDocument",
    "DiscoveryError",
    # Errors
    "OIDCError",
    "OAuth2Error",
    "OAuthProtocolError",
    "HTTPFailureError",
    "JSONParsingError",
    "ProviderDeniedError",
    "StateMismatchError",
    "RandomnessUnavailableError",
    # PKCE
    "generate_pkce_pair",
    "generate_code_verifier",
    "generate_code_challenge",
    "PKCEPair",
    # Callback
    "CallbackServer",
    "CallbackResult",
    "CallbackError",
    "CallbackTimeoutError",
    "CallbackCancelledError",
    "ListenerBindError",
    # DPoP
    "create_dpop_proof",
    "public_jwk",
    "signing_algorithm",
    "KeyPair",
    "KeyFamily",
    "load_key_pair",
    "KeyLoadError",
    "DPoPError",
    "KeyTypeMismatchError",
    "UnsupportedKeyTypeError",
]
