from __future__ import annotations

import logging
from typing import Any

# The service package provides JSONL sinks; the module must still import and
# log (through stdlib logging) when run without it.
try:
    from service import logging_utils as _sink  # type: ignore
except Exception:  # pragma: no cover
    _sink = None

_SECRET_KEYS = {"password", "token", "secret", "api_key", "apikey", "authorization"}


def _scrub(record: dict[str, Any]) -> dict[str, Any]:
    out = dict(record)
    for k in list(out):
        lk = str(k).lower()
        if lk in _SECRET_KEYS or lk.startswith("smtp_"):
            out[k] = "***REDACTED***"
    return out


def activity(record: dict[str, Any]) -> None:
    """Structured progress record; falls back to the 'listing_watch.activity' logger."""
    payload = _scrub(record)
    if _sink is not None:
        try:
            _sink.write_activity_log(payload)
            return
        except OSError:
            logging.getLogger(__name__).debug("activity sink failed", exc_info=True)
    logging.getLogger("listing_watch.activity").info(payload)


def error(record: dict[str, Any]) -> None:
    """Structured error record; always mirrored to the 'listing_watch.error' logger."""
    payload = _scrub(record)
    logging.getLogger("listing_watch.error").error(payload)
    if _sink is not None:
        try:
            _sink.write_error_log(payload)
        except OSError:
            logging.getLogger(__name__).debug("error sink failed", exc_info=True)
