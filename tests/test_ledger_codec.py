import os
from datetime import datetime

import pytest
from openpyxl import Workbook, load_workbook

from modules.listing_watch.lib import ledger_codec
from modules.listing_watch.lib.ledger_codec import LedgerCodec, LedgerCorrupt, LedgerNotFound
from modules.listing_watch.lib.models import Ledger, ListingRecord
from modules.listing_watch.lib.recency import resolve_tz

RIGA = resolve_tz("Europe/Riga")
POSTED = datetime(2025, 10, 14, 9, 15, tzinfo=RIGA)


def _record(n: int = 1, **kw) -> ListingRecord:
    base = dict(
        link=f"https://www.ss.com/msg/lv/real-estate/plots-and-lands/{n}.html",
        price="12 000 €",
        district_text="Ogre un raj.",
        area_text="2.5 ha",
        cadastre_text="74010010123",
        posted_at=POSTED,
        posted_at_raw="14.10.2025 09:15",
        description="Land plot near the river.",
    )
    base.update(kw)
    return ListingRecord(**base)


def test_missing_file_raises_not_found(tmp_path):
    with pytest.raises(LedgerNotFound):
        LedgerCodec().read(str(tmp_path / "nope.xlsx"))


def test_garbage_file_raises_corrupt(tmp_path):
    path = tmp_path / "bad.xlsx"
    path.write_bytes(b"PK\x03\x04 definitely not a workbook")
    with pytest.raises(LedgerCorrupt):
        LedgerCodec().read(str(path))


def test_datetime_mode_round_trips_records(tmp_path):
    path = str(tmp_path / "lands.xlsx")
    codec = LedgerCodec(date_cell="datetime", source_tz=RIGA)
    original = Ledger(new=[_record(2)], previously_added=[_record(1, area_text="", description="")])

    codec.write(path, original)
    loaded = codec.read(path)

    assert loaded == original


def test_datetime_mode_writes_typed_date_cells(tmp_path):
    path = str(tmp_path / "lands.xlsx")
    LedgerCodec(date_cell="datetime", source_tz=RIGA).write(path, Ledger(new=[_record()]))

    ws = load_workbook(path)[ledger_codec.NEW_SHEET]
    cell = ws["F2"]
    assert cell.value == datetime(2025, 10, 14, 9, 15)
    assert cell.number_format == ledger_codec.DATE_NUMBER_FORMAT


def test_text_mode_stores_display_string(tmp_path):
    path = str(tmp_path / "forests.xlsx")
    codec = LedgerCodec(date_cell="text", source_tz=RIGA)
    codec.write(path, Ledger(new=[_record()]))

    ws = load_workbook(path)[ledger_codec.NEW_SHEET]
    assert ws["F2"].value == "14.10.2025 09:15"
    assert codec.read(path).new[0].posted_at == POSTED


def test_layout_and_styling(tmp_path):
    path = str(tmp_path / "lands.xlsx")
    LedgerCodec(source_tz=RIGA).write(path, Ledger(new=[_record(2)], previously_added=[_record(1)]))

    wb = load_workbook(path)
    assert wb.sheetnames == [ledger_codec.PREVIOUS_SHEET, ledger_codec.NEW_SHEET]
    ws = wb[ledger_codec.NEW_SHEET]
    assert [c.value for c in ws[1]] == list(ledger_codec.HEADERS)
    assert ws.freeze_panes == "A2"
    assert ws["A1"].font.bold
    assert ws["A1"].fill.start_color.rgb == "FFE6E6E6"
    assert ws.column_dimensions["A"].width == 70
    assert ws.sheet_properties.tabColor.rgb == "FF92D050"
    assert ws["A2"].hyperlink.target == _record(2).link
    assert ws["A2"].font.underline == "single"


def test_empty_optional_fields_write_blank_cells(tmp_path):
    path = str(tmp_path / "lands.xlsx")
    LedgerCodec(source_tz=RIGA).write(path, Ledger(new=[_record(cadastre_text="")]))
    ws = load_workbook(path)[ledger_codec.NEW_SHEET]
    assert ws["E2"].value is None


def test_reads_sheet_without_header_row_and_six_columns(tmp_path):
    path = str(tmp_path / "legacy.xlsx")
    wb = Workbook()
    ws = wb.active
    ws.title = ledger_codec.NEW_SHEET
    ws.append(["https://www.ss.com/msg/9.html", "5 000 €", "Talsi", "1 ha", 74010010999, "13.10.2025 18:40"])
    wb.save(path)

    loaded = LedgerCodec(source_tz=RIGA).read(path)
    (r,) = loaded.new
    assert r.link == "https://www.ss.com/msg/9.html"
    assert r.cadastre_text == "74010010999"
    assert r.posted_at == datetime(2025, 10, 13, 18, 40, tzinfo=RIGA)
    assert r.description == ""
    assert loaded.previously_added == []


def test_rows_without_link_are_carried_through_a_write(tmp_path):
    path = str(tmp_path / "lands.xlsx")
    wb = Workbook()
    ws = wb.active
    ws.title = ledger_codec.PREVIOUS_SHEET
    ws.append(list(ledger_codec.HEADERS))
    ws.append([None, "hand note row", "Ogre"])
    ws.append(["https://www.ss.com/msg/1.html", "2 €"])
    wb.save(path)

    codec = LedgerCodec(source_tz=RIGA)
    loaded = codec.read(path)
    assert [(r.link, r.price) for r in loaded.previously_added] == [
        ("", "hand note row"),
        ("https://www.ss.com/msg/1.html", "2 €"),
    ]
    assert loaded.links() == ["https://www.ss.com/msg/1.html"]

    codec.write(path, loaded)
    ws = load_workbook(path)[ledger_codec.PREVIOUS_SHEET]
    assert [c.value for c in ws[2]][:3] == [None, "hand note row", "Ogre"]
    assert ws["A2"].hyperlink is None
    assert ws["A3"].value == "https://www.ss.com/msg/1.html"


def test_unparsable_stored_date_keeps_raw_text(tmp_path):
    path = str(tmp_path / "lands.xlsx")
    codec = LedgerCodec(date_cell="text", source_tz=RIGA)
    codec.write(path, Ledger(new=[_record(posted_at=None, posted_at_raw="vakar")]))
    r = codec.read(path).new[0]
    assert r.posted_at is None
    assert r.posted_at_raw == "vakar"


def test_write_replaces_file_and_creates_directory(tmp_path):
    path = str(tmp_path / "state" / "nested" / "lands.xlsx")
    ledger_codec.write_ledger(path, Ledger(new=[_record(1)]), LedgerCodec(source_tz=RIGA))
    ledger_codec.write_ledger(path, Ledger(previously_added=[_record(1)]), LedgerCodec(source_tz=RIGA))
    loaded = ledger_codec.read_ledger(path, LedgerCodec(source_tz=RIGA))
    assert loaded.new == [] and len(loaded.previously_added) == 1
    assert os.listdir(os.path.dirname(path)) == ["lands.xlsx"]


def test_unknown_date_cell_mode_rejected():
    with pytest.raises(ValueError):
        LedgerCodec(date_cell="serial")


def test_control_characters_in_scraped_text_are_stripped(tmp_path):
    path = str(tmp_path / "lands.xlsx")
    codec = LedgerCodec(source_tz=RIGA)
    codec.write(path, Ledger(new=[_record(price="12\x02 000 €", description="Zeme\x02 pie upes\x1f")]))

    (r,) = codec.read(path).new
    assert r.price == "12 000 €"
    assert r.description == "Zeme pie upes"


def test_workbook_build_failure_becomes_write_error(tmp_path, monkeypatch):
    def _boom(self, ws, records):
        raise RuntimeError("cannot build sheet")

    monkeypatch.setattr(LedgerCodec, "_write_sheet", _boom)
    path = tmp_path / "lands.xlsx"
    with pytest.raises(ledger_codec.LedgerWriteError):
        LedgerCodec(source_tz=RIGA).write(str(path), Ledger(new=[_record()]))
    assert not path.exists()


def test_other_sheets_in_the_workbook_survive_a_write(tmp_path):
    path = str(tmp_path / "lands.xlsx")
    codec = LedgerCodec(source_tz=RIGA)
    codec.write(path, Ledger(new=[_record(1)]))

    wb = load_workbook(path)
    notes = wb.create_sheet("Notes", 1)
    notes["A1"] = "call the owner of msg 1"
    wb.save(path)

    codec.write(path, Ledger(new=[_record(2)], previously_added=[_record(1)]))

    wb = load_workbook(path)
    assert wb.sheetnames == [ledger_codec.PREVIOUS_SHEET, "Notes", ledger_codec.NEW_SHEET]
    assert wb["Notes"]["A1"].value == "call the owner of msg 1"
    assert wb[ledger_codec.NEW_SHEET]["A2"].value == _record(2).link


def test_extra_columns_follow_their_rows_through_rotation(tmp_path):
    path = str(tmp_path / "lands.xlsx")
    wb = Workbook()
    ws = wb.active
    ws.title = ledger_codec.NEW_SHEET
    ws.append([*ledger_codec.HEADERS, "status"])
    ws.append([_record(1).link, "1 €", None, None, None, "14.10.2025 09:15", None, "called"])
    wb.save(path)

    codec = LedgerCodec(date_cell="text", source_tz=RIGA)
    loaded = codec.read(path)
    assert loaded.new[0].extra == (("status", "called"),)

    codec.write(path, Ledger(previously_added=loaded.new))
    ws = load_workbook(path)[ledger_codec.PREVIOUS_SHEET]
    assert ws.cell(row=1, column=8).value == "status"
    assert ws.cell(row=2, column=8).value == "called"
