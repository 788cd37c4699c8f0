# modules/listing_watch/lib/__init__.py
from __future__ import annotations

# Re-export commonly-used types for convenience
from .config import ConfigError, Settings
from .engine import run_once
from .ledger import MergeResult, merge, update_ledger
from .ledger_codec import LedgerCodec, read_ledger, write_ledger
from .models import HarvestResult, Ledger, ListingRecord, UrlReport
from .recency import RecencyPolicy, TimestampError, parse_timestamp
from .traversal import TraversalController, TraversalCursor

__all__ = [
    "ConfigError",
    "HarvestResult",
    "Ledger",
    "LedgerCodec",
    "ListingRecord",
    "MergeResult",
    "RecencyPolicy",
    "Settings",
    "TimestampError",
    "TraversalController",
    "TraversalCursor",
    "UrlReport",
    "merge",
    "parse_timestamp",
    "read_ledger",
    "run_once",
    "update_ledger",
    "write_ledger",
]
