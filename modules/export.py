"""CSV and Excel exports of visitor records."""

from __future__ import annotations

import csv
import io
from typing import Iterable, Sequence

from fastapi.responses import Response
from openpyxl import Workbook

from schemas.visitor import VisitorRequest
from utils.time import format_ts

VISITOR_COLUMNS: list[tuple[str, str]] = [
    ("visitor_code", "Visitor Code"),
    ("name", "Name"),
    ("mobile", "Mobile"),
    ("email", "Email"),
    ("purpose", "Purpose"),
    ("to_meet", "Host"),
    ("status", "Status"),
    ("created", "Created"),
    ("decided", "Decided"),
    ("approved_by", "Approved By"),
]


def visitor_rows(records: Iterable[VisitorRequest]) -> list[dict]:
    """Flatten records into export rows with formatted timestamps."""
    rows = []
    for rec in records:
        row = rec.model_dump(mode="json", exclude={"photo", "qr_code", "decision_token"})
        row["created"] = format_ts(rec.created_at)
        row["decided"] = format_ts(rec.decision_at) if rec.decision_at else ""
        row["approved_by"] = rec.approved_by or ""
        rows.append(row)
    return rows


def export_csv(rows: list[dict], columns: Sequence[tuple[str, str]], filename: str) -> Response:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow([label for _, label in columns])
    for row in rows:
        writer.writerow([row.get(key, "") for key, _ in columns])
    return Response(
        buf.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}.csv"'},
    )


def export_excel(rows: list[dict], columns: Sequence[tuple[str, str]], filename: str) -> Response:
    wb = Workbook()
    ws = wb.active
    ws.title = "Visitors"
    ws.append([label for _, label in columns])
    for row in rows:
        ws.append([row.get(key, "") for key, _ in columns])
    bio = io.BytesIO()
    wb.save(bio)
    return Response(
        bio.getvalue(),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{filename}.xlsx"'},
    )
