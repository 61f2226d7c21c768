"""
Custom exceptions for the bundle searcher.
"""


class SearcherError(Exception):
    """Base exception for all bundle searcher errors."""


class ConfigError(SearcherError):
    """Raised for configuration-related errors."""


class ReadError(SearcherError):
    """Raised when a chain read fails."""


class NotFoundError(ReadError):
    """Raised when an account has no position on the lending pool."""


class BuildError(SearcherError):
    """Raised when a liquidation transaction cannot be built."""


class SigningError(SearcherError):
    """Raised when signing a transaction or message fails."""


class RelayClientError(SearcherError):
    """Base for errors talking to the relay."""


class TransportError(RelayClientError):
    """Raised when the relay is unreachable or times out."""


class RelayError(RelayClientError):
    """Raised when the relay answers with a structured error."""

    def __init__(self, message: str, code=None):
        super().__init__(message)
        self.message = message
        self.code = code

    def __str__(self) -> str:
        if self.code is None:
            return self.message
        return f"{self.message} (code {self.code})"
