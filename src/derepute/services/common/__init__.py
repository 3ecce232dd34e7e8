"""Building blocks shared by the Derepute services.

Attributes:
    FeedConfig, RetryConfig, UptimeConfig: Shared configuration models.
    OnionooClient: Async client for the Onionoo relay feed.
    transform_entries: Feed entries to validated, ordered records.
    chunk_records: Contiguous fixed-size chunking.
"""

from .configs import FeedConfig, RetryConfig, UptimeConfig
from .feed import FeedStatus, OnionooClient, load_details_document
from .transform import (
    SORT_FIELDS,
    RecordStats,
    chunk_records,
    derive_uptime,
    filter_by_flags,
    filter_by_min_weight,
    is_storable,
    parse_feed_timestamp,
    sort_records,
    summarize_records,
    transform_entries,
    transform_entry,
)


__all__ = [
    "SORT_FIELDS",
    "FeedConfig",
    "FeedStatus",
    "OnionooClient",
    "RecordStats",
    "RetryConfig",
    "UptimeConfig",
    "chunk_records",
    "derive_uptime",
    "filter_by_flags",
    "filter_by_min_weight",
    "is_storable",
    "load_details_document",
    "parse_feed_timestamp",
    "sort_records",
    "summarize_records",
    "transform_entries",
    "transform_entry",
]
