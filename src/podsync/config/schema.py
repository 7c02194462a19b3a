"""Configuration schema models using Pydantic."""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

from podsync import __version__

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]

DEFAULT_MAX_BATCH_SIZE = 96 * 1024  # bytes, compressed payload plus tags


class GatewayConfig(BaseModel):
    """Network gateway used for tag queries and payload downloads."""

    url: str = "https://arweave.net"
    timeout_seconds: float = 30.0
    max_retries: int = 3

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class PublishConfig(BaseModel):
    """Protocol tags attached to every published record."""

    tag_prefix: str = "podsync"
    app_name: str = "podsync"
    app_version: str = __version__


class PartitionSettings(BaseModel):
    """Tunables of the batch size search."""

    target_ratio: float = Field(default=0.8, gt=0, le=1)
    pass_margin: float = Field(default=0.05, ge=0, lt=0.1)
    max_passes: int = Field(default=10, ge=1)
    initial_episodes: int = Field(default=100, ge=1)


class SyncConfig(BaseModel):
    """Sync orchestration configuration."""

    # None disables partitioning: every diff becomes a single batch
    max_batch_size: int | None = Field(default=DEFAULT_MAX_BATCH_SIZE, gt=0)
    min_confirmations: int = 3
    record_expiry_seconds: int = 60 * 60
    max_fetch_batches: int = 100


class GlobalConfig(BaseModel):
    """Global podsync configuration."""

    version: str = "1"
    log_level: LogLevel = "INFO"

    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    publish: PublishConfig = Field(default_factory=PublishConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    partition: PartitionSettings = Field(default_factory=PartitionSettings)
