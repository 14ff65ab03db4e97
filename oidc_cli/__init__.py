"""oidc-cli - A command-line OAuth2 and OpenID Connect client."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("oidc-cli")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback for development

__all__ = [
    "__version__",
    "OIDCConfig",
    "load_env",
    "OutputHandler",
]


# Lazy imports to avoid circular dependencies
def __getattr__(name: str) -> object:
    """Lazy import module components."""
    if name in ("OIDCConfig", "load_env"):
        from .config import OIDCConfig, load_env
        return {"OIDCConfig": OIDCConfig, "load_env": load_env}[name]
    elif name == "OutputHandler":
        from .output import OutputHandler
        return OutputHandler
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
