"""podsync - sync podcast metadata with an append-only content-addressed network."""

__version__ = "0.1.0"
