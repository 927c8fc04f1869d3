"""Interface for credential providers.

Defines the contract the request executor relies on to obtain a bearer
token for every attempt, allowing the token source to be swapped (a real
auth endpoint, a static token for tests).
"""

import abc


class CredentialProvider(abc.ABC):
    """Abstract Base Class for bearer token sources."""

    @abc.abstractmethod
    def get_token(self) -> str:
        """Returns a currently valid bearer token, fetching one if needed.

        Raises:
            AuthenticationError: If a new token could not be obtained.
        """
        pass

    @abc.abstractmethod
    def refresh(self) -> str:
        """Discards any cached token and fetches a new one."""
        pass

    @abc.abstractmethod
    def is_valid(self) -> bool:
        """Whether the cached token can still be used without a refresh."""
        pass

    @abc.abstractmethod
    def clear_cache(self) -> None:
        """Drops every cached credential and key."""
        pass
