"""Abstract base class for authentication providers."""

from abc import ABC, abstractmethod


class AuthProvider(ABC):
    """Abstract base class for authentication providers."""

    @abstractmethod
    def acquire_token(self) -> str:
        """
        Exchange credentials for a bearer token.

        Returns:
            Access token string

        Raises:
            AuthenticationError: If the token endpoint returns no token
            TransportError: If the token endpoint cannot be reached
        """

    @abstractmethod
    def clear_cache(self) -> None:
        """Forget cached tokens so the next acquire goes to the token endpoint."""
