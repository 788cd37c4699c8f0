"""
Ledger merge: rotate last run's "New" into "Previously added", then rebuild
"New" from this run's scrape, keeping only links the ledger has never seen.

Phases (each runs once, in order):
  load    -> read the workbook; missing/corrupt means an empty ledger
  rotate  -> append every New row to Previously added; collect known links
             (rows without a link are carried but never become known links)
  filter  -> admit fresh items with a non-empty, unknown link (first wins)
  commit  -> one atomic write of both sheets
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from . import logging_bridge
from .ledger_codec import LedgerCodec, LedgerCorrupt, LedgerNotFound, read_ledger, write_ledger
from .models import Ledger, ListingRecord

log = logging.getLogger(__name__)


@dataclass
class MergeResult:
    ledger: Ledger
    added: list[ListingRecord] = field(default_factory=list)

    @property
    def added_count(self) -> int:
        return len(self.added)


def load(path: str, codec: LedgerCodec) -> Ledger:
    """Read the persisted ledger, degrading to an empty one instead of failing."""
    try:
        return read_ledger(path, codec)
    except LedgerNotFound:
        log.info("No ledger at %s; starting a fresh one.", path)
    except LedgerCorrupt as e:
        logging_bridge.error({
            "component": "listing_watch.ledger",
            "op": "load",
            "ledger_path": path,
            "error": repr(e),
            "recovery": "empty_ledger",
        })
    return Ledger()


def merge(ledger: Ledger, fresh_items: Iterable[ListingRecord]) -> MergeResult:
    """
    Rotate + filter, in memory. The input ledger is not mutated.

    Previously added keeps its historical order with rotated rows appended;
    New holds the admitted fresh items in their given order.
    """
    # rotate
    previously_added = [*ledger.previously_added, *ledger.new]
    known_links = {r.link for r in previously_added if r.link}

    # filter
    added: list[ListingRecord] = []
    for item in fresh_items:
        if not item.link or item.link in known_links:
            continue
        known_links.add(item.link)
        added.append(item)

    return MergeResult(ledger=Ledger(new=list(added), previously_added=previously_added), added=added)


def commit(path: str, ledger: Ledger, codec: LedgerCodec) -> None:
    """Persist both partitions in one write. LedgerWriteError propagates."""
    try:
        write_ledger(path, ledger, codec)
    except Exception as e:
        logging_bridge.error({
            "component": "listing_watch.ledger",
            "op": "commit",
            "ledger_path": path,
            "error": repr(e),
        })
        raise


def update_ledger(path: str, fresh_items: Iterable[ListingRecord], codec: LedgerCodec | None = None) -> MergeResult:
    """Run load -> rotate -> filter -> commit against the file at `path`."""
    codec = codec or LedgerCodec()
    before = load(path, codec)
    result = merge(before, fresh_items)
    commit(path, result.ledger, codec)

    logging_bridge.activity({
        "component": "listing_watch.ledger",
        "op": "merged",
        "ledger_path": path,
        "rotated": len(before.new),
        "new_rows": len(result.ledger.new),
        "previously_added_rows": len(result.ledger.previously_added),
        "added": result.added_count,
    })
    return result
