"""
BOQ progress workbook export/import tests
Workbooks are edited with openpyxl the way a surveyor would in Excel.
"""
from io import BytesIO
import pytest
from openpyxl import Workbook, load_workbook

from ipc_ledger.models import ContractBuilding
from ipc_ledger.spreadsheet import (
    COLUMNS,
    SpreadsheetImportError,
    export_boq_progress,
    import_boq_progress,
    sheet_titles,
)

# row 1 header; row 2 SUBSTRUCTURE; row 3 Excavation; row 4 Concrete
EXCAVATION_ROW = 3
ACTUAL_COL, CUMUL_COL, PERCENT_COL = 8, 9, 10


def edit(data, *cells, title=None):
    """Apply (row, column, value) edits to the first sheet and save"""
    wb = load_workbook(BytesIO(data))
    ws = wb.worksheets[0]
    for row, column, value in cells:
        ws.cell(row=row, column=column, value=value)
    if title:
        ws.title = title
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def exported(building):
    return export_boq_progress([building])


def excavation(report):
    return report.buildings[0].boqs_contract[1]


class TestExport:
    """Workbook layout"""

    def test_sheet_per_building_with_header(self, exported):
        wb = load_workbook(BytesIO(exported))
        assert wb.sheetnames == ["Block A"]
        ws = wb["Block A"]
        assert [c.value for c in ws[1]] == [label for label, _ in COLUMNS]
        assert ws.freeze_panes == "A2"

    def test_line_values(self, exported):
        ws = load_workbook(BytesIO(exported))["Block A"]
        row = [c.value for c in ws[EXCAVATION_ROW]]
        assert row[:2] == ["1.1", "Excavation"]
        assert row[6] == 20
        assert row[8] == 20
        assert row[9] == 20
        assert row[12] == 200

    def test_no_buildings_still_valid(self):
        wb = load_workbook(BytesIO(export_boq_progress([])))
        assert wb.sheetnames == ["BOQ"]


class TestImport:
    """Reading progress back"""

    def test_unchanged_workbook_keeps_quantities(self, exported, building):
        report = import_boq_progress(exported, [building])
        assert report.skipped == []
        assert report.warnings == []
        for before, after in zip(building.boqs_contract, report.buildings[0].boqs_contract):
            assert after.actual_qte == before.actual_qte
            assert after.cumul_qte == before.cumul_qte

    def test_actual_quantity_edit(self, exported, building):
        report = import_boq_progress(edit(exported, (EXCAVATION_ROW, ACTUAL_COL, 30)), [building])
        assert excavation(report).actual_qte == 30
        assert excavation(report).cumul_qte == 50
        assert excavation(report).actual_amount == 300

    def test_cumulative_quantity_edit(self, exported, building):
        report = import_boq_progress(edit(exported, (EXCAVATION_ROW, CUMUL_COL, 70)), [building])
        assert excavation(report).actual_qte == 50
        assert excavation(report).cumul_percent == 70

    def test_cumulative_percent_edit(self, exported, building):
        report = import_boq_progress(edit(exported, (EXCAVATION_ROW, PERCENT_COL, 60)), [building])
        assert excavation(report).actual_qte == 40
        assert excavation(report).cumul_qte == 60

    def test_cumulative_below_previous_warns(self, exported, building):
        report = import_boq_progress(edit(exported, (EXCAVATION_ROW, CUMUL_COL, 10)), [building])
        assert excavation(report).cumul_qte == 20
        assert len(report.warnings) == 1
        assert "cannot be less than previous quantity" in report.warnings[0]
        assert report.warnings[0].startswith("Block A row 3")

    def test_header_line_never_changes(self, exported, building):
        report = import_boq_progress(edit(exported, (2, ACTUAL_COL, 5)), [building])
        assert report.buildings[0].boqs_contract[0].actual_qte == 0

    def test_unmatched_row_skipped(self, exported, building):
        data = edit(exported, (5, 1, "9.9"), (5, 2, "Ghost item"), (5, ACTUAL_COL, 3))
        report = import_boq_progress(data, [building])
        assert len(report.skipped) == 1
        assert "no matching BOQ line" in report.skipped[0]

    def test_relabelled_line_matched_by_position(self, exported, building):
        data = edit(exported, (EXCAVATION_ROW, 2, "Excavation in rock"), (EXCAVATION_ROW, ACTUAL_COL, 30))
        report = import_boq_progress(data, [building])
        assert excavation(report).actual_qte == 30
        assert report.skipped == []

    def test_non_numeric_progress_skipped(self, exported, building):
        report = import_boq_progress(edit(exported, (EXCAVATION_ROW, ACTUAL_COL, "lots")), [building])
        assert report.skipped == ["Block A row 3: progress is not a number"]
        assert excavation(report).actual_qte == 0

    @pytest.mark.parametrize("cell", ["nan", "NaN", "inf"])
    def test_non_finite_progress_skipped(self, exported, building, cell):
        report = import_boq_progress(edit(exported, (EXCAVATION_ROW, ACTUAL_COL, cell)), [building])
        assert report.skipped == ["Block A row 3: progress is not a number"]
        assert excavation(report).actual_qte == 0
        assert excavation(report).cumul_qte == 20

    def test_renamed_sheet_matched_by_order(self, exported, building):
        data = edit(exported, (EXCAVATION_ROW, ACTUAL_COL, 15), title="Sheet1")
        report = import_boq_progress(data, [building])
        assert excavation(report).actual_qte == 15

    def test_input_buildings_untouched(self, exported, building):
        import_boq_progress(edit(exported, (EXCAVATION_ROW, ACTUAL_COL, 30)), [building])
        assert building.boqs_contract[1].actual_qte == 0


class TestImportFailures:
    """Whole-file failures change nothing"""

    def test_not_a_workbook(self, building):
        with pytest.raises(SpreadsheetImportError, match="valid .xlsx"):
            import_boq_progress(b"not a spreadsheet", [building])

    def test_missing_header_row(self, building):
        wb = Workbook()
        wb.active.append(["Description", "Amount"])
        wb.active.append(["Excavation", 30])
        buffer = BytesIO()
        wb.save(buffer)
        with pytest.raises(SpreadsheetImportError, match="missing the header row"):
            import_boq_progress(buffer.getvalue(), [building])


class TestSheetTitles:
    """Excel worksheet naming rules"""

    def test_invalid_characters_replaced(self):
        assert sheet_titles([ContractBuilding(building_name="A/B:C")]) == ["A-B-C"]

    def test_truncated_to_31(self):
        assert len(sheet_titles([ContractBuilding(building_name="x" * 40)])[0]) == 31

    def test_unique_and_default(self):
        titles = sheet_titles([
            ContractBuilding(building_name="Block A"),
            ContractBuilding(building_name="block a"),
            ContractBuilding(building_name=""),
        ])
        assert titles == ["Block A", "block a (2)", "Building 3"]
