from __future__ import annotations

from datetime import datetime

from . import utils
from .models import ListingRecord

_TABLE_STYLE = "border-collapse:collapse;width:100%;font-family:Arial,sans-serif;font-size:10pt;"
_COLUMNS = ("Link", "Price", "District", "Area", "Cadastre", "Date")


def build_table(items: list[ListingRecord]) -> str:
    """
    One row per listing admitted into the New sheet:
      Link | Price | District | Area | Cadastre | Date
    """
    if not items:
        return '<p style="color:#666;font-style:italic;">No new items found in this run.</p>'

    head = "".join(f'<th style="text-align:left;">{c}</th>' for c in _COLUMNS)
    rows: list[str] = []
    for r in items:
        link_html = f'<a href="{utils.esc(r.link)}" style="color:#0066cc;text-decoration:none;">View Listing</a>'
        cells = [
            link_html,
            utils.esc(r.price),
            utils.esc(r.district_text or "N/A"),
            utils.esc(r.area_text or "N/A"),
            utils.esc(r.cadastre_text or "N/A"),
            utils.esc(r.posted_at_raw),
        ]
        rows.append("<tr>" + "".join(f"<td>{c}</td>" for c in cells) + "</tr>")
    return (
        f"<table border='1' cellpadding='8' cellspacing='0' style='{_TABLE_STYLE}'>"
        f"<thead><tr style='background-color:#f2f2f2;'>{head}</tr></thead>"
        f"<tbody>{''.join(rows)}</tbody></table>"
    )


def build_report(
    items: list[ListingRecord],
    *,
    title: str,
    window_hours: int,
    widened: bool,
    completed_at: datetime,
    attachment_name: str | None = None,
) -> str:
    """Full report body: run summary, the new-listings table, and footnotes."""
    parts: list[str] = [
        '<div style="font-family:Arial,sans-serif;max-width:800px;margin:0 auto;">',
        f'<h2 style="color:#333;border-bottom:2px solid #0066cc;padding-bottom:10px;">{utils.esc(title)}</h2>',
        '<div style="background-color:#f8f9fa;padding:15px;border-radius:5px;margin-bottom:20px;">',
        f"<p><strong>Scraping completed on:</strong> {utils.esc(completed_at.strftime('%Y-%m-%d %H:%M:%S'))}<br>",
        f"<strong>New listings found in the past {window_hours} hours:</strong> {len(items)}</p>",
        "</div>",
        '<h3 style="color:#0066cc;">New Listings</h3>',
        build_table(items),
    ]

    notes: list[str] = []
    if attachment_name:
        notes.append(
            f"The complete dataset including previous listings is attached as {utils.esc(attachment_name)}. "
            "Some previously found listings may no longer be available on the portal."
        )
    notes.append("This report contains only the new items discovered in the latest run.")
    if widened:
        notes.append(f"<strong>Extended window:</strong> includes listings from the past {window_hours} hours.")
    parts.append(
        '<div style="margin-top:30px;padding:15px;background-color:#f0f8ff;border-radius:5px;">'
        f"<p><strong>Note:</strong> {'<br>'.join(notes)}</p></div>"
    )
    parts.append("</div>")
    return "\n".join(parts)
