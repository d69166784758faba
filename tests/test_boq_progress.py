"""
BOQ progress calculator tests
Three entry points (actual, cumulative qty, cumulative %) must agree.
"""
import pytest

from ipc_ledger.core.boq_progress import (
    apply_percentage_to_building,
    building_totals,
    clear_building_quantities,
    commit_actual_quantity,
    commit_cumulative_percent,
    commit_cumulative_quantity,
    from_actual_quantity,
    from_cumulative_percent,
    from_cumulative_quantity,
    hydrate_buildings,
    overall_totals,
    recalculate_item,
    set_deduction_percent,
    set_material_percent,
    update_building_item,
)
from ipc_ledger.models import BoqItem, ContractBuilding


class TestProgressEntryPoints:
    """Actual quantity, cumulative quantity and cumulative percent entry"""

    def test_actual_quantity_scenario(self, boq_item):
        """qte 100 @ 10, 20 previous, 30 this period"""
        item = from_actual_quantity(boq_item, 30)
        assert item.actual_qte == 30
        assert item.cumul_qte == 50
        assert item.cumul_percent == 50
        assert item.cumul_amount == 500
        assert item.actual_amount == 300
        assert item.preced_amount == 200
        assert item.total_amount == 1000

    def test_cumulative_quantity_entry(self, boq_item):
        item = from_cumulative_quantity(boq_item, 50)
        assert item.actual_qte == 30
        assert item.cumul_qte == 50

    def test_cumulative_percent_entry(self, boq_item):
        item = from_cumulative_percent(boq_item, 75)
        assert item.cumul_qte == 75
        assert item.actual_qte == 55
        assert item.cumul_amount == 750

    @pytest.mark.parametrize("entry, value", [
        (from_actual_quantity, 12.5),
        (from_cumulative_quantity, 61.25),
        (from_cumulative_percent, 33.3),
        (from_actual_quantity, -4),
        (from_cumulative_quantity, 3),
    ])
    def test_cumulative_is_previous_plus_actual(self, boq_item, entry, value):
        item = entry(boq_item, value)
        assert item.cumul_qte == pytest.approx(item.preced_qte + item.actual_qte)
        assert item.actual_qte >= 0

    def test_cumulative_below_previous_floors_actual(self, boq_item):
        item = from_cumulative_quantity(boq_item, 15)
        assert item.actual_qte == 0
        assert item.cumul_qte == 20

    def test_reapplying_actual_is_idempotent(self, boq_item):
        item = from_actual_quantity(boq_item, 33.333)
        assert from_actual_quantity(item, item.actual_qte) == item

    def test_zero_contract_quantity_has_zero_percent(self, make_boq):
        item = from_actual_quantity(make_boq(qte=0, unit_price=10, preced_qte=5), 3)
        assert item.cumul_qte == 8
        assert item.cumul_percent == 0

    def test_percent_entry_ignored_without_contract_quantity(self, make_boq):
        item = make_boq(qte=0, unit_price=10, preced_qte=5)
        assert from_cumulative_percent(item, 80) == item


class TestDeductionTracking:
    """Deduction percent never lags physical progress"""

    def test_deduction_raised_to_cumulative_percent(self, boq_item):
        item = from_actual_quantity(boq_item.model_copy(update={"deduction_percent": 40}), 30)
        assert item.deduction_percent == 50

    def test_higher_deduction_kept(self, boq_item):
        item = from_actual_quantity(boq_item.model_copy(update={"deduction_percent": 80}), 30)
        assert item.deduction_percent == 80

    def test_deduction_capped_at_hundred(self, boq_item):
        item = from_actual_quantity(boq_item, 150)
        assert item.cumul_percent == 170
        assert item.deduction_percent == 100

    def test_deduction_value_follows_material_value(self, boq_item):
        item = set_material_percent(boq_item, 15, 20).value
        item = set_deduction_percent(item, 40)
        assert item.material_value == 150
        assert item.deduction_value == 60

    @pytest.mark.parametrize("entered, expected", [(120, 100), (-5, 0), (35.5, 35.5)])
    def test_deduction_percent_clamped(self, boq_item, entered, expected):
        assert set_deduction_percent(boq_item, entered).deduction_percent == expected


class TestCommitValidation:
    """Commit-time reverts and warnings"""

    def test_cumulative_below_previous_reverts_with_warning(self, boq_item):
        result = commit_cumulative_quantity(boq_item, 15)
        assert result.has_warning
        assert "previous quantity (20.00)" in result.warning
        assert result.value.cumul_qte == 20
        assert result.value.actual_qte == 0

    def test_valid_cumulative_commit_has_no_warning(self, boq_item):
        result = commit_cumulative_quantity(boq_item, 45)
        assert not result.has_warning
        assert result.value.actual_qte == 25

    def test_negative_actual_reset_to_zero(self, boq_item):
        result = commit_actual_quantity(boq_item, -5)
        assert result.warning == "Quantity cannot be negative"
        assert result.value.actual_qte == 0

    def test_percent_below_previous_reverts(self, boq_item):
        result = commit_cumulative_percent(boq_item, 10)
        assert result.has_warning
        assert result.value.cumul_qte == 20
        assert result.value.cumul_percent == 20

    def test_percent_commit_without_contract_quantity(self, make_boq):
        item = make_boq(qte=0, unit_price=0, preced_qte=0)
        result = commit_cumulative_percent(item, 50)
        assert result.value == item
        assert not result.has_warning


class TestMaterialSupply:
    """Material supply percent is capped by the contract"""

    def test_over_cap_resets_to_zero(self, boq_item):
        result = set_material_percent(boq_item, 35, 20)
        assert result.value.material_percent == 0
        assert result.value.material_value == 0
        assert "20.00%" in result.warning

    def test_within_cap_is_kept(self, boq_item):
        result = set_material_percent(boq_item, 20, 20)
        assert not result.has_warning
        assert result.value.material_percent == 20
        assert result.value.material_value == 200


class TestRecalculation:
    """Derived fields are recomputed, never trusted from input"""

    def test_stale_derived_fields_are_overwritten(self):
        item = recalculate_item(BoqItem(
            id=1, qte=10, unitPrice=5, precedQte=2, actualQte=3,
            cumulQte=999, cumulAmount=999, cumulPercent=999
        ))
        assert item.cumul_qte == 5
        assert item.cumul_amount == 25
        assert item.cumul_percent == 50

    def test_hydrate_buildings(self):
        buildings = hydrate_buildings([ContractBuilding(
            id=1, boqsContract=[{"id": 1, "qte": 4, "unitPrice": 2.5, "precedQte": 1, "actualQte": 1}]
        )])
        assert buildings[0].boqs_contract[0].cumul_amount == 5

    def test_update_building_item_replaces_only_target(self, building):
        buildings = update_building_item([building], 10, 2, lambda boq: from_actual_quantity(boq, 5))
        updated = buildings[0].boqs_contract
        assert updated[2].actual_qte == 5
        assert updated[1] == building.boqs_contract[1]
        assert building.boqs_contract[2].actual_qte == 0


class TestBulkOperations:
    """Per-building bulk helpers"""

    def test_apply_percentage_skips_header_rows(self, building):
        result = apply_percentage_to_building(building, 50)
        header, excavation, concrete = result.value.boqs_contract
        assert header == building.boqs_contract[0]
        assert excavation.actual_qte == 50
        assert excavation.cumul_qte == 70
        assert concrete.actual_qte == 25

    def test_apply_percentage_out_of_range(self, building):
        result = apply_percentage_to_building(building, 250)
        assert result.has_warning
        assert result.value == building

    def test_clear_quantities(self, building):
        filled = apply_percentage_to_building(building, 40).value
        cleared = clear_building_quantities(filled)
        assert all(boq.actual_qte == 0 for boq in cleared.boqs_contract)
        assert cleared.boqs_contract[1].cumul_qte == 20

    def test_building_and_overall_totals(self, building):
        filled = apply_percentage_to_building(building, 10).value
        totals = building_totals(filled)
        assert totals["total_amount"] == 11000
        assert totals["actual_amount"] == 100 + 1000
        assert totals["preced_amount"] == 200
        assert overall_totals([filled, filled])["actual_amount"] == 2200
