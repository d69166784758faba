"""
BOQ PROGRESS SPREADSHEET EXPORT / IMPORT

One worksheet per contract building, header in row 1, columns:
    N°, Item, Unit, Contract Qty, Unit Price, Total Amt, Prev Qty,
    Actual Qty, Cumul Qty, Cumul %, Prev Amt, Actual Amt, Cumul Amt

Actual Qty, Cumul Qty and Cumul % encode the same progress. On import the
edited one is detected against the stored line (previous quantity plus
stored actual): an inconsistent Cumul Qty wins, then an inconsistent
Cumul %, otherwise Actual Qty is taken as entered.

Unreadable workbooks and sheets without a header row abort the whole
import before any line changes. Rows that do not match a line are skipped
and reported.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from io import BytesIO
from typing import Dict, List, Optional, Tuple
import logging
import re
import zipfile

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException

from ipc_ledger.core.boq_progress import (
    commit_actual_quantity, commit_cumulative_percent, commit_cumulative_quantity,
)
from ipc_ledger.core.financial_precision import (
    FinancialPrecisionError, ratio_percent, safe_add, to_decimal,
)
from ipc_ledger.models import BoqItem, ContractBuilding

logger = logging.getLogger(__name__)

# (header label, BoqItem attribute)
COLUMNS = [
    ("N°", "no"),
    ("Item", "key"),
    ("Unit", "unite"),
    ("Contract Qty", "qte"),
    ("Unit Price", "unit_price"),
    ("Total Amt", "total_amount"),
    ("Prev Qty", "preced_qte"),
    ("Actual Qty", "actual_qte"),
    ("Cumul Qty", "cumul_qte"),
    ("Cumul %", "cumul_percent"),
    ("Prev Amt", "preced_amount"),
    ("Actual Amt", "actual_amount"),
    ("Cumul Amt", "cumul_amount"),
]
TEXT_COLUMNS = {"no", "key", "unite"}
PROGRESS_COLUMNS = {"actual_qte", "cumul_qte", "cumul_percent"}

HEADER_ALIASES = {
    "no": "no",
    "n°": "no",
    "n": "no",
    "item": "key",
}

CONSISTENCY_TOLERANCE = Decimal("0.0001")
MAX_SHEET_TITLE = 31
INVALID_SHEET_CHARS = re.compile(r"[\[\]:*?/\\]")


class SpreadsheetImportError(Exception):
    """Raised when a workbook cannot be imported at all"""
    pass


@dataclass
class ImportReport:
    buildings: List[ContractBuilding]
    updated_rows: int = 0
    skipped: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


# =============================================================================
# HELPERS
# =============================================================================

def sheet_titles(buildings: List[ContractBuilding]) -> List[str]:
    """Worksheet title per building: Excel-safe, at most 31 chars, unique."""
    titles = []
    for index, building in enumerate(buildings, 1):
        base = INVALID_SHEET_CHARS.sub("-", building.building_name or "").strip().strip("'")
        base = base[:MAX_SHEET_TITLE] or f"Building {index}"
        title, suffix = base, 2
        while title.lower() in (t.lower() for t in titles):
            tail = f" ({suffix})"
            title = base[:MAX_SHEET_TITLE - len(tail)] + tail
            suffix += 1
        titles.append(title)
    return titles


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _number(value) -> Optional[Decimal]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, str):
        value = value.replace(",", "").replace("%", "")
    return to_decimal(value)


def _header_map(header_row) -> Dict[str, int]:
    labels = {label.lower(): attribute for label, attribute in COLUMNS}
    mapping = {}
    for index, cell in enumerate(header_row or ()):
        text = _text(cell).lower()
        attribute = labels.get(text) or HEADER_ALIASES.get(text)
        if attribute and attribute not in mapping:
            mapping[attribute] = index
    return mapping


# =============================================================================
# EXPORT
# =============================================================================

def export_boq_progress(buildings: List[ContractBuilding]) -> bytes:
    """Write BOQ progress to an .xlsx workbook, one sheet per building."""
    wb = Workbook()
    wb.remove(wb.active)

    header_font = Font(bold=True, color='FFFFFF')
    header_fill = PatternFill(start_color='1F4E78', end_color='1F4E78', fill_type='solid')
    editable_fill = PatternFill(start_color='FFF2CC', end_color='FFF2CC', fill_type='solid')
    thin_border = Border(
        left=Side(style='thin'),
        right=Side(style='thin'),
        top=Side(style='thin'),
        bottom=Side(style='thin')
    )

    for building, title in zip(buildings, sheet_titles(buildings)):
        ws = wb.create_sheet(title=title)

        for col, (label, _) in enumerate(COLUMNS, 1):
            cell = ws.cell(row=1, column=col, value=label)
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = Alignment(horizontal='center')
            cell.border = thin_border

        for row_num, boq in enumerate(building.boqs_contract, 2):
            for col, (_, attribute) in enumerate(COLUMNS, 1):
                value = getattr(boq, attribute)
                cell = ws.cell(row=row_num, column=col, value=value)
                cell.border = thin_border
                if attribute in TEXT_COLUMNS:
                    continue
                cell.number_format = '#,##0.00'
                if attribute in PROGRESS_COLUMNS and not boq.is_header_row:
                    cell.fill = editable_fill
            if boq.is_header_row:
                ws.cell(row=row_num, column=2).font = Font(bold=True)

        # Column widths from the first 100 rows
        for col, (label, _) in enumerate(COLUMNS, 1):
            max_length = len(label)
            for row in range(2, min(len(building.boqs_contract) + 2, 100)):
                cell_value = ws.cell(row=row, column=col).value
                if cell_value is not None:
                    max_length = max(max_length, min(len(str(cell_value)), 50))
            ws.column_dimensions[get_column_letter(col)].width = max_length + 2

        ws.freeze_panes = 'A2'

    if not wb.worksheets:
        wb.create_sheet(title="BOQ")

    buffer = BytesIO()
    wb.save(buffer)
    buffer.seek(0)
    logger.info(f"[EXPORT] BOQ progress workbook with {len(buildings)} building sheet(s)")
    return buffer.getvalue()


# =============================================================================
# IMPORT
# =============================================================================

@dataclass
class _SheetRow:
    row_number: int
    position: int
    no: str
    key: str
    values: Dict[str, Optional[Decimal]]


def _read_workbook(data: bytes):
    try:
        return load_workbook(BytesIO(data), data_only=True, read_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as e:
        logger.error(f"[IMPORT] Unreadable workbook: {e}")
        raise SpreadsheetImportError("Unable to read the workbook. Please upload a valid .xlsx file")


def _parse_sheet(ws) -> Tuple[List[_SheetRow], List[str]]:
    rows = ws.iter_rows(values_only=True)
    header = _header_map(next(rows, None))
    if "no" not in header or "key" not in header or not PROGRESS_COLUMNS & set(header):
        raise SpreadsheetImportError(
            f"Sheet '{ws.title}' is missing the header row (N°, Item and a progress column)"
        )

    parsed, skipped = [], []
    position = 0
    for row_number, values in enumerate(rows, 2):
        values = values or ()

        def cell(attribute):
            index = header.get(attribute)
            return values[index] if index is not None and index < len(values) else None

        no, key = _text(cell("no")), _text(cell("key"))
        if not no and not key and all(cell(a) is None for a in PROGRESS_COLUMNS):
            continue

        try:
            numbers = {attribute: _number(cell(attribute)) for attribute in PROGRESS_COLUMNS}
        except FinancialPrecisionError:
            skipped.append(f"{ws.title} row {row_number}: progress is not a number")
            position += 1
            continue

        parsed.append(_SheetRow(row_number, position, no, key, numbers))
        position += 1
    return parsed, skipped


def _match_item(row: _SheetRow, boqs: List[BoqItem]) -> Optional[int]:
    """Index of the line matching (N°, Item), falling back to (N°, row position)."""
    for index, boq in enumerate(boqs):
        if _text(boq.no) == row.no and _text(boq.key).lower() == row.key.lower():
            return index
    if row.position < len(boqs) and _text(boqs[row.position].no) == row.no:
        return row.position
    return None


def _differs(a: Decimal, b: Decimal) -> bool:
    return abs(a - b) > CONSISTENCY_TOLERANCE


def apply_row(item: BoqItem, values: Dict[str, Optional[Decimal]]):
    """
    Apply one imported row to its line. Returns an EditResult, or None
    when the row carries no progress.
    """
    actual = values.get("actual_qte")
    cumul = values.get("cumul_qte")
    percent = values.get("cumul_percent")
    stored_cumul = safe_add(item.preced_qte, item.actual_qte)

    if cumul is not None and _differs(cumul, stored_cumul):
        return commit_cumulative_quantity(item, cumul)

    if percent is not None and to_decimal(item.qte) != 0:
        if _differs(percent, ratio_percent(stored_cumul, item.qte)):
            return commit_cumulative_percent(item, percent)

    if actual is not None:
        return commit_actual_quantity(item, actual)
    if cumul is not None:
        return commit_cumulative_quantity(item, cumul)
    if percent is not None:
        return commit_cumulative_percent(item, percent)
    return None


def import_boq_progress(data: bytes, buildings: List[ContractBuilding]) -> ImportReport:
    """
    Read BOQ progress from an exported workbook.

    Sheets are matched to buildings by title, then by order. Header lines
    (no quantity and no price) are never changed.
    """
    wb = _read_workbook(data)
    try:
        sheets = [(ws.title, _parse_sheet(ws)) for ws in wb.worksheets]
    finally:
        wb.close()

    titles = sheet_titles(buildings)
    by_title = {title.lower(): index for index, title in enumerate(titles)}

    report = ImportReport(buildings=list(buildings))
    for sheet_index, (title, (rows, skipped)) in enumerate(sheets):
        report.skipped.extend(skipped)
        building_index = by_title.get(title.lower())
        if building_index is None:
            if sheet_index < len(buildings) and titles[sheet_index].lower() not in {t.lower() for t, _ in sheets}:
                building_index = sheet_index
            else:
                report.skipped.append(f"Sheet '{title}': no matching building")
                continue

        building = report.buildings[building_index]
        boqs = list(building.boqs_contract)
        for row in rows:
            index = _match_item(row, boqs)
            if index is None:
                report.skipped.append(f"{title} row {row.row_number}: no matching BOQ line ({row.no} {row.key})")
                continue
            if boqs[index].is_header_row:
                continue

            result = apply_row(boqs[index], row.values)
            if result is None:
                continue
            if result.warning:
                report.warnings.append(f"{title} row {row.row_number}: {result.warning}")
            boqs[index] = result.value
            report.updated_rows += 1

        report.buildings[building_index] = building.model_copy(update={"boqs_contract": boqs})

    logger.info(
        f"[IMPORT] {report.updated_rows} row(s) updated, {len(report.skipped)} skipped, "
        f"{len(report.warnings)} warning(s)"
    )
    return report
