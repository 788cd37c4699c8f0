"""
Recency window for a run and parsing of the source's posting timestamps.

The source prints minute-resolution local times ("Datums: 12.10.2025 14:33"),
so every window carries an hour of slack over the nominal period.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo

from dateutil import tz as _tz

DEFAULT_SOURCE_TZ = "Europe/Riga"
TIMESTAMP_FORMAT = "%d.%m.%Y %H:%M"

_WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")
_PREFIX_RE = re.compile(r"^\s*Datums:\s*", re.I)
_TIMESTAMP_RE = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4})\s+(\d{1,2}):(\d{2})$")


class TimestampError(ValueError):
    """Raised when a posting timestamp string cannot be parsed."""


def resolve_tz(name: str | None) -> tzinfo:
    """Look up a tz by IANA name; unknown names raise ValueError."""
    zone = _tz.gettz(name or DEFAULT_SOURCE_TZ)
    if zone is None:
        raise ValueError(f"Unknown timezone: {name!r}")
    return zone


def parse_timestamp(raw: str | None, source_tz: tzinfo | None = None) -> datetime:
    """
    Parse 'dd.mm.yyyy hh:mm' (optionally prefixed with 'Datums:') into an aware
    datetime in `source_tz`. Empty or malformed input raises TimestampError;
    there is no fallback to "now".
    """
    text = _PREFIX_RE.sub("", (raw or "").strip()).strip()
    if not text:
        raise TimestampError("empty timestamp")
    m = _TIMESTAMP_RE.match(text)
    if not m:
        raise TimestampError(f"unrecognized timestamp: {raw!r}")
    day, month, year, hour, minute = (int(g) for g in m.groups())
    try:
        naive = datetime(year, month, day, hour, minute)
    except ValueError as e:
        raise TimestampError(f"out-of-range timestamp {raw!r}: {e}") from e
    return naive.replace(tzinfo=source_tz or resolve_tz(DEFAULT_SOURCE_TZ))


def format_timestamp(dt: datetime, source_tz: tzinfo | None = None) -> str:
    """Render an instant back in the source's display format and timezone."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(source_tz or resolve_tz(DEFAULT_SOURCE_TZ))
    return dt.strftime(TIMESTAMP_FORMAT)


@dataclass(frozen=True)
class RecencyPolicy:
    """
    How far back a run looks.

    kind:
      - "fixed":   always `hours`
      - "weekday": `hours`, except on `wide_days` (0=Monday) where `wide_hours`
                   is used so the first run after a weekend still covers it
    """

    kind: str = "weekday"
    hours: int = 25
    wide_hours: int = 73
    wide_days: tuple[int, ...] = (0,)

    def window_hours(self, day_of_week: int) -> int:
        if self.kind == "weekday" and day_of_week in self.wide_days:
            return self.wide_hours
        return self.hours

    def is_widened(self, day_of_week: int) -> bool:
        return self.window_hours(day_of_week) != self.hours

    def cutoff_instant(self, now: datetime, day_of_week: int | None = None) -> datetime:
        """
        Earliest posting time still considered new. Computed per call from
        `now`; `day_of_week` defaults to now's own weekday. The window is in
        elapsed hours, so a DST change inside it does not stretch or shrink it.
        """
        dow = now.weekday() if day_of_week is None else day_of_week
        delta = timedelta(hours=self.window_hours(dow))
        if now.tzinfo is None:
            return now - delta
        return (now.astimezone(timezone.utc) - delta).astimezone(now.tzinfo)

    @classmethod
    def from_dict(cls, raw: dict | None) -> RecencyPolicy:
        """
        Accepts {"policy": "fixed"|"weekday", "hours": int, "wide_hours": int,
        "wide_days": ["mon", ...] | [0, ...]}.
        """
        raw = dict(raw or {})
        kind = str(raw.get("policy") or raw.get("kind") or "weekday").strip().lower()
        if kind not in {"fixed", "weekday"}:
            raise ValueError(f"cutoff.policy must be 'fixed' or 'weekday' (got {kind!r})")

        default_hours = 24 if kind == "fixed" else 25
        hours = int(raw.get("hours") or default_hours)
        wide_hours = int(raw.get("wide_hours") or 73)
        if hours <= 0 or wide_hours <= 0:
            raise ValueError("cutoff hours must be >= 1")

        wide_days = tuple(_weekday_index(d) for d in (raw.get("wide_days") or ["mon"]))
        return cls(kind=kind, hours=hours, wide_hours=wide_hours, wide_days=wide_days)


def _weekday_index(value: object) -> int:
    if isinstance(value, int) and 0 <= value <= 6:
        return value
    key = str(value).strip().lower()[:3]
    if key not in _WEEKDAYS:
        raise ValueError(f"Unknown weekday: {value!r}")
    return _WEEKDAYS.index(key)
