"""
XLSX storage for the ledger (openpyxl).

Read contract: every cell is normalized once, here, to exactly one of
None / str / datetime, so the merge engine never sees storage-specific
shapes (hyperlink objects, numbers, naive dates). Writes go to a temp file in
the target directory and are moved into place with os.replace, so a failed
write never truncates an existing ledger. Only the two ledger sheets are
rewritten; any other sheet in the workbook is left alone.
"""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import date, datetime, tzinfo

from openpyxl import Workbook, load_workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from .models import Ledger, ListingRecord
from .recency import TimestampError, format_timestamp, parse_timestamp, resolve_tz

log = logging.getLogger(__name__)

NEW_SHEET = "New"
PREVIOUS_SHEET = "Previously added"

HEADERS = ("link", "price", "districtText", "areaText", "cadastreText", "date", "description")
COLUMN_WIDTHS = (70, 17, 13, 8, 12, 17, 60)
DATE_NUMBER_FORMAT = "dd.mm.yyyy hh:mm"
DATE_CELL_MODES = ("datetime", "text")

_FIELD_BY_HEADER = {
    "link": "link",
    "price": "price",
    "districtText": "district_text",
    "areaText": "area_text",
    "cadastreText": "cadastre_text",
    "date": "date",
    "description": "description",
}

_HEADER_FONT = Font(bold=True, size=8.5)
_HEADER_FILL = PatternFill(fill_type="solid", start_color="FFE6E6E6", end_color="FFE6E6E6")
_DATA_FONT = Font(size=8.5)
_LINK_FONT = Font(size=8.5, color="FF0000FF", underline="single")
_ALIGN = Alignment(vertical="center", horizontal="left")
_NEW_TAB_COLOR = "FF92D050"


class LedgerError(Exception):
    """Base class for ledger storage failures."""


class LedgerNotFound(LedgerError):
    """No ledger file at the given path."""


class LedgerCorrupt(LedgerError):
    """The file exists but is not a readable ledger workbook."""


class LedgerWriteError(LedgerError):
    """The ledger could not be persisted."""


CellValue = str | datetime | None


@dataclass(frozen=True)
class LedgerCodec:
    """
    date_cell: "datetime" stores typed date cells (formatted dd.mm.yyyy hh:mm);
               "text" stores the source's display string.
    source_tz: timezone naive workbook dates are interpreted in.
    """

    date_cell: str = "datetime"
    source_tz: tzinfo | None = None

    def __post_init__(self) -> None:
        if self.date_cell not in DATE_CELL_MODES:
            raise ValueError(f"date_cell must be one of {DATE_CELL_MODES} (got {self.date_cell!r})")

    @property
    def tz(self) -> tzinfo:
        return self.source_tz or resolve_tz(None)

    # ---- read ----
    def read(self, path: str) -> Ledger:
        if not os.path.exists(path):
            raise LedgerNotFound(path)
        try:
            wb = load_workbook(path)
        except Exception as e:
            raise LedgerCorrupt(f"{path}: {e!r}") from e
        try:
            return Ledger(
                new=self._read_sheet(wb, NEW_SHEET),
                previously_added=self._read_sheet(wb, PREVIOUS_SHEET),
            )
        except Exception as e:
            raise LedgerCorrupt(f"{path}: {e!r}") from e
        finally:
            wb.close()

    def _read_sheet(self, wb: Workbook, name: str) -> list[ListingRecord]:
        if name not in wb.sheetnames:
            return []
        ws = wb[name]
        rows = list(ws.iter_rows())
        if not rows:
            return []

        header = [self.cell_value(c) for c in rows[0]]
        columns = {h: i for i, h in enumerate(header) if isinstance(h, str) and h in _FIELD_BY_HEADER}
        if "link" in columns:
            body = rows[1:]
            extras = [(h, i) for i, h in enumerate(header) if isinstance(h, str) and h not in _FIELD_BY_HEADER]
        else:
            # Headerless sheet: fall back to the canonical column order.
            columns = {h: i for i, h in enumerate(HEADERS)}
            body = rows
            extras = []

        out: list[ListingRecord] = []
        for row in body:
            values = {h: (self.cell_value(row[i]) if i < len(row) else None) for h, i in columns.items()}
            extra = tuple((h, self.cell_value(row[i]) if i < len(row) else None) for h, i in extras)
            record = self._record_from(values, extra)
            if record is not None:
                out.append(record)
        return out

    def cell_value(self, cell) -> CellValue:
        """Normalize one openpyxl cell to None / str / datetime."""
        hyperlink = getattr(cell, "hyperlink", None)
        target = getattr(hyperlink, "target", None) if hyperlink is not None else None
        if target:
            return str(target).strip()

        v = cell.value
        if v is None:
            return None
        if isinstance(v, datetime):
            return v.replace(tzinfo=self.tz) if v.tzinfo is None else v
        if isinstance(v, date):
            return datetime(v.year, v.month, v.day, tzinfo=self.tz)
        if isinstance(v, bool):
            return "true" if v else "false"
        if isinstance(v, float) and v.is_integer():
            return str(int(v))
        s = str(v).strip()
        return s or None

    def _record_from(
        self, values: dict[str, CellValue], extra: tuple[tuple[str, CellValue], ...] = ()
    ) -> ListingRecord | None:
        # Blank rows are dropped; rows with content but no link are carried as-is.
        if all(v is None for v in values.values()) and all(v is None for _, v in extra):
            return None

        posted_at: datetime | None = None
        raw_date = values.get("date")
        if isinstance(raw_date, datetime):
            posted_at = raw_date
            posted_at_raw = format_timestamp(raw_date, self.tz)
        else:
            posted_at_raw = _text(raw_date)
            if posted_at_raw:
                with contextlib.suppress(TimestampError):
                    posted_at = parse_timestamp(posted_at_raw, self.tz)

        return ListingRecord(
            link=_text(values.get("link")),
            price=_text(values.get("price")),
            district_text=_text(values.get("districtText")),
            area_text=_text(values.get("areaText")),
            cadastre_text=_text(values.get("cadastreText")),
            posted_at=posted_at,
            posted_at_raw=posted_at_raw,
            description=_text(values.get("description")),
            extra=extra,
        )

    # ---- write ----
    def write(self, path: str, ledger: Ledger) -> None:
        """
        Replace the "New" and "Previously added" sheets of the workbook at
        `path` (other sheets are kept) and save it atomically.
        """
        directory = os.path.dirname(os.path.abspath(path)) or "."
        tmp_path: str | None = None
        try:
            wb = self._workbook_for(path)
            self._write_sheet(_replace_sheet(wb, PREVIOUS_SHEET), ledger.previously_added)
            new_ws = _replace_sheet(wb, NEW_SHEET)
            new_ws.sheet_properties.tabColor = _NEW_TAB_COLOR
            self._write_sheet(new_ws, ledger.new)

            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".ledger-", suffix=".xlsx", dir=directory)
            os.close(fd)
            wb.save(tmp_path)
            os.replace(tmp_path, path)
            tmp_path = None
        except Exception as e:
            raise LedgerWriteError(f"Failed to write ledger {path}: {e!r}") from e
        finally:
            if tmp_path:
                with contextlib.suppress(OSError):
                    os.remove(tmp_path)

        log.info(
            "Ledger saved: %s (New: %d rows, Previously added: %d rows)",
            path,
            len(ledger.new),
            len(ledger.previously_added),
        )

    def _workbook_for(self, path: str) -> Workbook:
        if os.path.exists(path):
            try:
                return load_workbook(path)
            except Exception as e:
                log.warning("Existing ledger %s is unreadable (%r); writing a fresh workbook.", path, e)
        wb = Workbook()
        wb.remove(wb.active)
        return wb

    def _write_sheet(self, ws, records: list[ListingRecord]) -> None:
        extra_headers: list[str] = []
        for rec in records:
            for h, _ in rec.extra:
                if h not in extra_headers:
                    extra_headers.append(h)

        for col, header in enumerate((*HEADERS, *extra_headers), start=1):
            cell = ws.cell(row=1, column=col, value=_safe(header))
            cell.font = _HEADER_FONT
            cell.fill = _HEADER_FILL
            cell.alignment = _ALIGN
            if col <= len(COLUMN_WIDTHS):
                ws.column_dimensions[get_column_letter(col)].width = COLUMN_WIDTHS[col - 1]
        ws.freeze_panes = "A2"

        for row, rec in enumerate(records, start=2):
            extra = {h: self._naive(v) for h, v in rec.extra}
            values = (
                rec.link,
                rec.price,
                rec.district_text,
                rec.area_text,
                rec.cadastre_text,
                self._date_value(rec),
                rec.description,
                *(extra.get(h) for h in extra_headers),
            )
            for col, value in enumerate(values, start=1):
                cell = ws.cell(row=row, column=col, value=_safe(value))
                cell.font = _DATA_FONT
                cell.alignment = _ALIGN
            link_cell = ws.cell(row=row, column=1)
            if isinstance(link_cell.value, str) and link_cell.value.startswith("http"):
                link_cell.hyperlink = link_cell.value
                link_cell.font = _LINK_FONT
            date_cell = ws.cell(row=row, column=6)
            if isinstance(date_cell.value, datetime):
                date_cell.number_format = DATE_NUMBER_FORMAT

    def _naive(self, value: CellValue) -> CellValue:
        if isinstance(value, datetime) and value.tzinfo is not None:
            return value.astimezone(self.tz).replace(tzinfo=None)
        return value

    def _date_value(self, rec: ListingRecord) -> datetime | str:
        if rec.posted_at is None:
            return rec.posted_at_raw
        if self.date_cell == "datetime":
            # Excel has no timezone; store wall-clock time in the source tz.
            return rec.posted_at.astimezone(self.tz).replace(tzinfo=None)
        return rec.posted_at_raw or format_timestamp(rec.posted_at, self.tz)


def _replace_sheet(wb: Workbook, name: str):
    """Fresh, empty sheet called `name`, at the position the old one had."""
    if name not in wb.sheetnames:
        return wb.create_sheet(name)
    index = wb.sheetnames.index(name)
    wb.remove(wb[name])
    return wb.create_sheet(name, index)


def _safe(value: CellValue) -> CellValue:
    """Cell-ready value: XML-illegal control characters stripped, "" as blank."""
    if isinstance(value, str):
        value = ILLEGAL_CHARACTERS_RE.sub("", value)
        return value or None
    return value


def _text(v: CellValue) -> str:
    if v is None:
        return ""
    if isinstance(v, datetime):
        return v.isoformat()
    return v


# ---- module-level conveniences ---------------------------------------------


def read_ledger(path: str, codec: LedgerCodec | None = None) -> Ledger:
    """Read a ledger; raises LedgerNotFound / LedgerCorrupt."""
    return (codec or LedgerCodec()).read(path)


def write_ledger(path: str, ledger: Ledger, codec: LedgerCodec | None = None) -> None:
    """Persist a ledger atomically; raises LedgerWriteError."""
    (codec or LedgerCodec()).write(path, ledger)
