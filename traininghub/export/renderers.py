"""File renderers — write a collected export dataset to Excel, CSV, PDF or JSON."""

from __future__ import annotations

import csv
import json
import os
import re
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Optional
from xml.sax.saxutils import escape

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer

from ..utils.logging import get_logger
from .errors import RenderError

logger = get_logger("export.renderers")

Dataset = dict[str, list[dict[str, Any]]]

MEDIA_TYPES = {
    "excel": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "csv": "text/csv; charset=utf-8",
    "pdf": "application/pdf",
    "json": "application/json; charset=utf-8",
}

# (header, record key, kind) per sheet; kind is "text", "bool" or "date"
COLUMN_SCHEMAS: dict[str, list[tuple[str, str, str]]] = {
    "applications": [
        ("ID", "id", "text"),
        ("Applicant Name", "applicant_name", "text"),
        ("Course Title", "course_title", "text"),
        ("Tamkeen Support", "course_is_tamkeen_support", "bool"),
        ("Status", "status", "text"),
        ("Priority", "priority", "text"),
        ("Submitted At", "submitted_at", "date"),
        ("Department", "department", "text"),
        ("Job Title", "job_title", "text"),
        ("Manager Name", "manager_name", "text"),
        ("Manager Email", "manager_email", "text"),
    ],
    "courses": [
        ("ID", "id", "text"),
        ("Title", "title", "text"),
        ("Category", "category", "text"),
        ("Level", "level", "text"),
        ("Duration", "duration", "text"),
        ("Format", "format", "text"),
        ("Price", "price", "text"),
        ("Active", "is_active", "bool"),
        ("Created At", "created_at", "date"),
    ],
    "employees": [
        ("ID", "id", "text"),
        ("Full Name", "full_name", "text"),
        ("Email", "email", "text"),
        ("Employee ID", "employee_id", "text"),
        ("Department", "department", "text"),
        ("Job Title", "job_title", "text"),
        ("Experience Years", "experience_years", "text"),
        ("Manager Name", "manager_name", "text"),
        ("Manager Email", "manager_email", "text"),
    ],
}

CSV_HEADER = [
    "Type",
    "ID",
    "Name",
    "Title/Category",
    "Tamkeen Support",
    "Status",
    "Department/Level",
    "Date",
    "Additional Info",
]

PDF_SECTION_LIMITS = {"applications": 20, "courses": 15, "employees": 15}

HEADER_FILL = PatternFill(start_color="FFD3D3D3", end_color="FFD3D3D3", fill_type="solid")
EMPTY_EXPORT_MESSAGE = "No records matched the selected filters."


def _yes_no(value: Any) -> str:
    return "Yes" if value else "No"


def _format_date(value: Any) -> str:
    """Locale date string for a date, datetime or ISO string; "" when absent."""
    if value is None or value == "":
        return ""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return value
    if isinstance(value, (date, datetime)):
        return value.strftime("%x")
    return str(value)


def _cell_value(record: dict, key: str, kind: str) -> Any:
    value = record.get(key)
    if kind == "bool":
        return _yes_no(value)
    if kind == "date":
        return _format_date(value)
    return "" if value is None else value


def _text(value: Any) -> str:
    return "" if value is None else str(value)


class FileRenderer(ABC):
    """Writes a dataset to a file at ``path`` in one format."""

    format: str = ""
    extension: str = ""

    @property
    def media_type(self) -> str:
        return MEDIA_TYPES[self.format]

    @abstractmethod
    def write(self, dataset: Dataset, path: str) -> None:
        ...


class ExcelRenderer(FileRenderer):
    format = "excel"
    extension = "xlsx"

    def write(self, dataset: Dataset, path: str) -> None:
        workbook = Workbook()
        workbook.remove(workbook.active)

        for entity_type, columns in COLUMN_SCHEMAS.items():
            records = dataset.get(entity_type) or []
            if not records:
                continue
            sheet = workbook.create_sheet(title=entity_type.capitalize())
            sheet.append([header for header, _, _ in columns])
            for cell in sheet[1]:
                cell.font = Font(bold=True)
                cell.fill = HEADER_FILL
            for record in records:
                sheet.append([_cell_value(record, key, kind) for _, key, kind in columns])
            for idx, (header, _, _) in enumerate(columns, start=1):
                sheet.column_dimensions[sheet.cell(row=1, column=idx).column_letter].width = max(
                    12, len(header) + 4
                )

        if not workbook.sheetnames:
            sheet = workbook.create_sheet(title="Summary")
            sheet.append([EMPTY_EXPORT_MESSAGE])

        workbook.save(path)


class CsvRenderer(FileRenderer):
    format = "csv"
    extension = "csv"

    @staticmethod
    def _application_row(r: dict) -> list[str]:
        return [
            "Application",
            _text(r.get("id")),
            _text(r.get("applicant_name")),
            _text(r.get("course_title")),
            _yes_no(r.get("course_is_tamkeen_support")),
            _text(r.get("status")),
            _text(r.get("department")),
            _format_date(r.get("submitted_at")),
            f"Priority: {_text(r.get('priority'))}",
        ]

    @staticmethod
    def _course_row(r: dict) -> list[str]:
        return [
            "Course",
            _text(r.get("id")),
            _text(r.get("title")),
            _text(r.get("category")),
            _yes_no(r.get("is_tamkeen_support")),
            "Active" if r.get("is_active") else "Inactive",
            _text(r.get("level")),
            _format_date(r.get("created_at")),
            f"Duration: {_text(r.get('duration'))}, Format: {_text(r.get('format'))}",
        ]

    @staticmethod
    def _employee_row(r: dict) -> list[str]:
        return [
            "Employee",
            _text(r.get("id")),
            _text(r.get("full_name")),
            _text(r.get("job_title")),
            "",
            "Active" if r.get("is_active", True) else "Inactive",
            _text(r.get("department")),
            "",
            f"Experience: {_text(r.get('experience_years'))} years, "
            f"Manager: {_text(r.get('manager_name'))}",
        ]

    def write(self, dataset: Dataset, path: str) -> None:
        row_builders = (
            ("applications", self._application_row),
            ("courses", self._course_row),
            ("employees", self._employee_row),
        )
        # utf-8-sig prefixes the BOM spreadsheet tools look for
        with open(path, "w", newline="", encoding="utf-8-sig") as f:
            writer = csv.writer(f)
            writer.writerow(CSV_HEADER)
            for entity_type, build_row in row_builders:
                for record in dataset.get(entity_type) or []:
                    writer.writerow(build_row(record))


def _pdf_line(entity_type: str, r: dict) -> str:
    if entity_type == "applications":
        return (
            f"{_text(r.get('applicant_name'))} - {_text(r.get('course_title'))} "
            f"({_text(r.get('status'))}, submitted {_format_date(r.get('submitted_at')) or 'n/a'})"
        )
    if entity_type == "courses":
        return f"{_text(r.get('title'))} - {_text(r.get('category'))} ({_text(r.get('level'))})"
    return f"{_text(r.get('full_name'))} - {_text(r.get('job_title'))} ({_text(r.get('department'))})"


def _pdf_section_lines(entity_type: str, records: list[dict]) -> list[str]:
    """Body lines for one PDF section, truncated to the per-type limit."""
    limit = PDF_SECTION_LIMITS[entity_type]
    lines = [_pdf_line(entity_type, r) for r in records[:limit]]
    if len(records) > limit:
        lines.append(f"... and {len(records) - limit} more {entity_type}")
    return lines


class PdfRenderer(FileRenderer):
    format = "pdf"
    extension = "pdf"

    def write(self, dataset: Dataset, path: str) -> None:
        styles = getSampleStyleSheet()
        story = [
            Paragraph("Export Report", styles["Title"]),
            Paragraph(
                f"Generated on: {datetime.now(timezone.utc).strftime('%x')}",
                styles["Normal"],
            ),
            Spacer(1, 12),
        ]

        has_sections = False
        for entity_type in PDF_SECTION_LIMITS:
            records = dataset.get(entity_type) or []
            if not records:
                continue
            has_sections = True
            story.append(
                Paragraph(f"{entity_type.capitalize()} ({len(records)})", styles["Heading2"])
            )
            for line in _pdf_section_lines(entity_type, records):
                story.append(Paragraph(escape(line), styles["Normal"]))
            story.append(Spacer(1, 12))

        if not has_sections:
            story.append(Paragraph(EMPTY_EXPORT_MESSAGE, styles["Normal"]))

        SimpleDocTemplate(path, pagesize=A4, title="Export Report").build(story)


def _json_default(value: Any) -> str:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


class JsonRenderer(FileRenderer):
    format = "json"
    extension = "json"

    def write(self, dataset: Dataset, path: str) -> None:
        payload = {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "data": dataset,
        }
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, default=_json_default)


RENDERERS: dict[str, FileRenderer] = {
    r.format: r for r in (ExcelRenderer(), CsvRenderer(), PdfRenderer(), JsonRenderer())
}


def build_export_file_name(name: str, job_id: str, today: Optional[date] = None) -> str:
    """``<sanitized name>_<YYYY-MM-DD>_<job id>``; the extension is added by the renderer."""
    today = today or datetime.now(timezone.utc).date()
    safe_name = re.sub(r"[^a-zA-Z0-9]", "_", name)
    return f"{safe_name}_{today.isoformat()}_{job_id}"


def render_export_file(
    dataset: Dataset, fmt: str, file_name: str, output_dir: str | Path
) -> tuple[str, int]:
    """Render ``dataset`` as ``fmt`` into ``output_dir``.

    Returns ``(absolute path, size in bytes)``. Blocking: call it from an
    executor when on the event loop.
    """
    renderer = RENDERERS.get(fmt)
    if renderer is None:
        raise RenderError(f"Unsupported export format: {fmt}")

    try:
        Path(output_dir).mkdir(parents=True, exist_ok=True)
        path = os.path.abspath(os.path.join(output_dir, f"{file_name}.{renderer.extension}"))
        renderer.write(dataset, path)
        size = os.path.getsize(path)
    except Exception as exc:
        logger.error("export_render_failed", format=fmt, file_name=file_name, error=str(exc))
        raise RenderError(f"Failed to render {fmt} export: {exc}") from exc

    logger.info("export_file_rendered", format=fmt, path=path, size=size)
    return path, size
