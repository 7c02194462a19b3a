"""Custom exceptions for podsync."""


class PodsyncError(Exception):
    """Base exception for all podsync errors."""

    pass


class ConfigError(PodsyncError):
    """Configuration-related errors."""

    pass


class InvalidConfigError(ConfigError):
    """Invalid configuration data."""

    pass


class ConfigNotFoundError(ConfigError):
    """Configuration file not found."""

    pass


class ValidationError(PodsyncError):
    """Malformed metadata, detected before anything is sent to the network.

    Attributes:
        field: Name of the missing or invalid field
    """

    def __init__(self, field: str, message: str | None = None) -> None:
        self.field = field
        super().__init__(message or f"{field} is missing or invalid")


class NotFoundError(PodsyncError):
    """A lookup found no match."""

    pass


class ImplementationError(PodsyncError):
    """A code path was called in a way it does not support."""

    pass


class PayloadError(PodsyncError):
    """Record payload could not be encoded or decoded."""

    pass


class NetworkError(PodsyncError):
    """Network-related errors."""

    pass


class QueryError(NetworkError):
    """Gateway query failed or returned an unusable response."""

    pass


class PublicationError(NetworkError):
    """Creating, signing or broadcasting a record failed."""

    pass


class FeedFetchError(NetworkError):
    """No metadata could be reconstructed for a feed.

    Attributes:
        messages: Error messages gathered while fetching each batch
    """

    def __init__(self, feed_url: str, messages: list[str]) -> None:
        self.feed_url = feed_url
        self.messages = messages
        joined = "\n".join(f"  - {msg}" for msg in messages)
        super().__init__(
            f"Encountered the following errors when fetching {feed_url} metadata:\n{joined}"
        )
