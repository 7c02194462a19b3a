"""Utility functions and helpers for podsync."""

from podsync.utils.errors import (
    ConfigError,
    ConfigNotFoundError,
    FeedFetchError,
    ImplementationError,
    InvalidConfigError,
    NetworkError,
    NotFoundError,
    PayloadError,
    PodsyncError,
    PublicationError,
    QueryError,
    ValidationError,
)
from podsync.utils.paths import (
    get_config_dir,
    get_config_file,
    get_data_dir,
    get_history_file,
    get_log_dir,
)

__all__ = [
    # Errors
    "PodsyncError",
    "ConfigError",
    "InvalidConfigError",
    "ConfigNotFoundError",
    "ValidationError",
    "NotFoundError",
    "ImplementationError",
    "PayloadError",
    "NetworkError",
    "QueryError",
    "PublicationError",
    "FeedFetchError",
    # Paths
    "get_config_dir",
    "get_config_file",
    "get_data_dir",
    "get_history_file",
    "get_log_dir",
]
