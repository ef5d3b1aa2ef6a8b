"""MSAL client-credentials authentication for Microsoft Graph."""

import logging
from typing import Optional

import msal
import requests

from ..config import GraphConfig
from ..utils.exceptions import AuthenticationError, ConfigurationError, TransportError
from ..utils.translations import NULL_TRANSLATOR, Translator
from .base import AuthProvider

logger = logging.getLogger(__name__)

GRAPH_SCOPE = "https://graph.microsoft.com/.default"
AUTHORITY_TEMPLATE = "https://login.microsoftonline.com/{tenant_id}"
TOKEN_FAILURE = "Failed to obtain access token from Microsoft Graph."


def require_credentials(config: GraphConfig, translator: Translator = NULL_TRANSLATOR) -> None:
    """
    Raises:
        ConfigurationError: If tenant, client id or secret is missing
    """
    for name in ("tenant_id", "client_id", "client_secret"):
        if not getattr(config, name):
            raise ConfigurationError(f"{name} {translator('cannot be empty.')}")


class ClientCredentialsAuthProvider(AuthProvider):
    """App-only token acquisition with a client id and secret."""

    def __init__(
        self,
        config: GraphConfig,
        app: Optional[msal.ConfidentialClientApplication] = None,
        translator: Translator = NULL_TRANSLATOR,
    ):
        """
        Initialize the provider.

        The MSAL application is created on first use: building it contacts
        the authority for tenant discovery.

        Args:
            config: Graph configuration with tenant, client id and secret
            app: Prebuilt MSAL application (tests, custom http clients)
            translator: Message catalog for user-facing errors

        Raises:
            ConfigurationError: If tenant, client id or secret is missing
        """
        require_credentials(config, translator)

        self._ = translator
        self.config = config
        self.scopes = [GRAPH_SCOPE]
        self.authority = config.authority or AUTHORITY_TEMPLATE.format(tenant_id=config.tenant_id)
        self._app = app

    @property
    def app(self) -> msal.ConfidentialClientApplication:
        """Lazy-load the MSAL application."""
        if self._app is None:
            logger.info("Initializing Graph auth with client credentials flow (app-only)")
            try:
                self._app = msal.ConfidentialClientApplication(
                    client_id=self.config.client_id,
                    client_credential=self.config.client_secret,
                    authority=self.authority,
                    timeout=self.config.timeout,
                )
            except requests.RequestException as e:
                raise TransportError(f"Could not reach authority {self.authority}: {e}") from e
            except ValueError as e:
                # MSAL rejects unknown tenants and malformed authorities this way
                raise AuthenticationError(f"Invalid authority {self.authority}: {e}") from e
        return self._app

    def acquire_token(self) -> str:
        try:
            result = self.app.acquire_token_for_client(scopes=self.scopes)
        except requests.RequestException as e:
            raise TransportError(f"Token request failed: {e}") from e

        if result and "access_token" in result:
            logger.debug("Token acquired via client credentials flow")
            return result["access_token"]

        message = self._(TOKEN_FAILURE)
        error_desc = (result or {}).get("error_description", "Unknown error")
        logger.critical(f"{message} {error_desc}")
        raise AuthenticationError(f"{message} {error_desc}")

    def clear_cache(self) -> None:
        if self._app is not None:
            self._app.remove_tokens_for_client()
            logger.info("Client credential tokens cleared")
