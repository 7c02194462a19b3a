"""Network layer: tag codec, record cache, record building and gateway reads."""

from .cache import IdMappingCache, RecordCache
from .gateway import GatewayClient, QueryField, RecordStatus
from .records import (
    DispatchingSigner,
    Signer,
    compress_metadata,
    decompress_metadata,
    format_metadata_tags,
    format_thread_tags,
    new_record,
)
from .feed import FeedFetcher

__all__ = [
    "RecordCache",
    "IdMappingCache",
    "GatewayClient",
    "QueryField",
    "RecordStatus",
    "Signer",
    "DispatchingSigner",
    "compress_metadata",
    "decompress_metadata",
    "format_metadata_tags",
    "format_thread_tags",
    "new_record",
    "FeedFetcher",
]
