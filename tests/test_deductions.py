"""
Deduction calculator tests (labor, machine, material)
"""
import pytest

from ipc_ledger.core.deductions import (
    apply_deduction,
    compute_deduction,
    set_cumulative_deduction_percent,
    total_actual_deductions,
)
from ipc_ledger.models import DeductionKind, LaborItem, MachineItem, MaterialItem


@pytest.fixture
def labor():
    """500 consumed, 100 already deducted, 30% cumulative"""
    return LaborItem(id=1, ref="L-01", quantity=10, unit_price=50, precedent_amount=100, deduction=30)


@pytest.fixture
def material():
    """sale unit 20 x (100 allocated - 30 stock - 20 transferred) = 1000"""
    return MaterialItem(
        id=3, designation="Rebar", sale_unit=20, allocated=100, stock_qte=30,
        transfered_qte=20, precedent_amount=250, deduction=40
    )


class TestComputeDeduction:
    """Derived deduction figures"""

    def test_labor_figures(self, labor):
        figures = compute_deduction(labor, DeductionKind.LABOR)
        assert figures.consumed_amount == 500
        assert figures.previous_percent == 20
        assert figures.actual_percent == 10
        assert figures.cumulative_deduction_amount == 150
        assert figures.previous_deduction_amount == 100
        assert figures.actual_deduction_amount == 50

    def test_machine_uses_quantity_times_price(self):
        machine = MachineItem(id=2, quantity=4, unit_price=250, precedent_amount=0, deduction=25)
        figures = compute_deduction(machine, DeductionKind.MACHINE)
        assert figures.consumed_amount == 1000
        assert figures.actual_deduction_amount == 250

    def test_material_consumed_amount(self, material):
        figures = compute_deduction(material, DeductionKind.MATERIAL)
        assert figures.consumed_amount == 1000
        assert figures.previous_percent == 25
        assert figures.actual_percent == 15
        assert figures.actual_deduction_amount == 150

    def test_zero_consumed_gives_all_zero(self):
        item = LaborItem(id=1, quantity=0, unit_price=50, precedent_amount=100, deduction=30)
        figures = compute_deduction(item, DeductionKind.LABOR)
        assert figures.previous_percent == 0
        assert figures.actual_percent == 0
        assert figures.cumulative_deduction_amount == 0
        assert figures.actual_deduction_amount == 0

    def test_actual_percent_may_be_negative(self, labor):
        figures = compute_deduction(labor.model_copy(update={"deduction": 10}), DeductionKind.LABOR)
        assert figures.actual_percent == -10
        assert figures.actual_deduction_amount == -50

    @pytest.mark.parametrize("quantity, unit_price, precedent, percent", [
        (3, 33.33, 17.5, 42),
        (7, 12.1, 0, 100),
        (1, 999.99, 333.33, 12.5),
    ])
    def test_previous_plus_actual_equals_cumulative(self, quantity, unit_price, precedent, percent):
        item = LaborItem(id=1, quantity=quantity, unit_price=unit_price,
                         precedent_amount=precedent, deduction=percent)
        figures = compute_deduction(item, DeductionKind.LABOR)
        assert figures.previous_percent + figures.actual_percent == pytest.approx(percent)
        assert (figures.previous_deduction_amount + figures.actual_deduction_amount
                == pytest.approx(figures.cumulative_deduction_amount))

    def test_previous_percent_follows_price_edits(self, labor):
        """precedent_amount is fixed; the percent is re-derived"""
        figures = compute_deduction(labor.model_copy(update={"unit_price": 100}), DeductionKind.LABOR)
        assert figures.previous_percent == 10


class TestApplyDeduction:
    """Writing derived figures back onto the line"""

    def test_apply_sets_derived_fields(self, labor):
        item = apply_deduction(labor, DeductionKind.LABOR)
        assert item.amount == 500
        assert item.previous_deduction == 20
        assert item.actual_deduction == 10
        assert item.actual_amount == 50
        assert item.cumul_amount == 150
        assert item.precedent_amount == 100

    @pytest.mark.parametrize("entered, expected", [(150, 100), (-10, 0), (45, 45)])
    def test_cumulative_percent_clamped(self, labor, entered, expected):
        item = set_cumulative_deduction_percent(labor, DeductionKind.LABOR, entered)
        assert item.deduction == expected

    def test_total_actual_deductions(self, labor, material):
        machine = MachineItem(id=2, quantity=4, unit_price=250, deduction=25)
        assert total_actual_deductions([labor], [machine], [material]) == 50 + 250 + 150

    def test_total_actual_deductions_empty(self):
        assert total_actual_deductions([], None, []) == 0
