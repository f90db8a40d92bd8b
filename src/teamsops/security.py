"""Token acquisition for Microsoft Graph.

The core never manages tokens itself: it receives a TokenProvider and asks
it for a ready-to-use access token before each request. Credentials come
from azure-identity, which caches and refreshes tokens.

Two modes are supported:
- managed_identity (default): secretless. No client secrets may be present
  in the environment; ManagedIdentityCredential is used.
- client_secret: app registration with a client secret read from
  GRAPH_CLIENT_SECRET (the client-credentials flow used by admin scripts).
"""

from __future__ import annotations

import logging
import os
from typing import Protocol

from azure.core.credentials import AccessToken, TokenCredential
from azure.core.exceptions import AzureError, ClientAuthenticationError
from azure.identity import ClientSecretCredential, ManagedIdentityCredential

from .config import GRAPH_SCOPE, AuthMode, Config

logger = logging.getLogger(__name__)

CLIENT_SECRET_ENV_VAR = "GRAPH_CLIENT_SECRET"

# Environment variables that indicate credential leakage in secretless mode
FORBIDDEN_CREDENTIAL_ENV_VARS: tuple[str, ...] = (
    "AZURE_CLIENT_SECRET",
    "AZURE_CLIENT_CERTIFICATE_PATH",
    "AZURE_CLIENT_CERTIFICATE_PASSWORD",
    "AZURE_USERNAME",
    "AZURE_PASSWORD",
    CLIENT_SECRET_ENV_VAR,
)


class AuthError(Exception):
    """Raised when an access token cannot be obtained.

    Fatal for the whole batch: no operation can proceed without a token.
    """

    pass


class SecretlessViolationError(Exception):
    """Raised when secrets are present while running in managed identity mode."""

    pass


class TokenProvider(Protocol):
    """Capability that yields a Graph access token."""

    def get_token(self) -> AccessToken: ...


def enforce_secretless_architecture() -> None:
    """Ensure no credential secrets are present in the environment.

    Raises:
        SecretlessViolationError: If any credential environment variable is set.
    """
    for env_var in FORBIDDEN_CREDENTIAL_ENV_VARS:
        if os.environ.get(env_var):
            logger.critical(
                "Secretless architecture violation",
                extra={
                    "security_event": "credential_detected",
                    "env_var": env_var,
                    "action": "startup_blocked",
                },
            )
            raise SecretlessViolationError(
                f"{env_var} is set but GRAPH_AUTH_MODE is managed_identity. "
                f"Remove the secret or set GRAPH_AUTH_MODE=client_secret explicitly."
            )


def build_credential(config: Config) -> TokenCredential:
    """Create the azure-identity credential for the configured auth mode.

    Raises:
        SecretlessViolationError: Managed identity mode with secrets in the environment.
        AuthError: Client secret mode without GRAPH_CLIENT_SECRET.
    """
    match config.auth_mode:
        case AuthMode.MANAGED_IDENTITY:
            enforce_secretless_architecture()
            if config.client_id:
                logger.info(
                    "Using user-assigned managed identity",
                    extra={"client_id": config.client_id[:8] + "..."},
                )
                return ManagedIdentityCredential(client_id=config.client_id)
            logger.info("Using system-assigned managed identity")
            return ManagedIdentityCredential()

        case AuthMode.CLIENT_SECRET:
            secret = os.environ.get(CLIENT_SECRET_ENV_VAR)
            if not secret:
                raise AuthError(
                    f"{CLIENT_SECRET_ENV_VAR} is required when GRAPH_AUTH_MODE is client_secret"
                )
            # SAFETY: tenant_id and client_id are validated non-None in
            # Config.__post_init__() when auth_mode is CLIENT_SECRET
            logger.warning(
                "Using client secret credential",
                extra={"security_event": "secret_credential", "tenant_id": config.tenant_id},
            )
            return ClientSecretCredential(
                tenant_id=config.tenant_id or "",
                client_id=config.client_id or "",
                client_secret=secret,
            )

        case _:
            raise ValueError(f"Unsupported auth mode: {config.auth_mode}")


class CredentialTokenProvider:
    """TokenProvider backed by an azure-identity credential.

    azure-identity caches tokens and refreshes them before expiry, so every
    call can simply ask the credential.
    """

    def __init__(self, credential: TokenCredential, scope: str = GRAPH_SCOPE) -> None:
        self._credential = credential
        self._scope = scope

    @classmethod
    def from_config(cls, config: Config) -> CredentialTokenProvider:
        return cls(build_credential(config))

    @property
    def scope(self) -> str:
        return self._scope

    def get_token(self) -> AccessToken:
        """Return an access token for the Graph scope.

        Raises:
            AuthError: If the credential cannot produce a token.
        """
        try:
            return self._credential.get_token(self._scope)
        except ClientAuthenticationError as e:
            logger.error(
                "Graph authentication failed",
                extra={"security_event": "auth_failed", "error": str(e)},
            )
            raise AuthError(f"Authentication failed: {e.message}") from e
        except AzureError as e:
            logger.error(
                "Token acquisition failed",
                extra={"security_event": "auth_failed", "error": str(e)},
            )
            raise AuthError(f"Token acquisition failed: {e}") from e

    def close(self) -> None:
        close = getattr(self._credential, "close", None)
        if callable(close):
            close()
