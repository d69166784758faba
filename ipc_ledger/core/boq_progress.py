"""
BOQ PROGRESS CALCULATOR

Progress on a BOQ line can be entered three ways: actual quantity,
cumulative quantity or cumulative percent. The three adapters below
normalize their input to an actual quantity and hand it to one core
update, so every entry point produces the same derived figures.

LOCKED FORMULAS:
- cumul_qte = preced_qte + actual_qte
- cumul_percent = qte == 0 ? 0 : cumul_qte / qte * 100
- total_amount = qte * unit_price
- preced/actual/cumul_amount = respective quantity * unit_price
- material_value = material_percent% of total_amount
- deduction_value = deduction_percent% of material_value

Deduction tracking never lags physical progress: when the deduction
percent is at or below the new cumulative percent it is raised to
min(cumul_percent, 100).
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional
import logging

from ipc_ledger import config
from ipc_ledger.core.financial_precision import (
    to_decimal, to_float, safe_add, safe_multiply, safe_subtract,
    calculate_percentage, ratio_percent, floor_zero, clamp_percentage,
    round_financial, HUNDRED, ZERO,
)
from ipc_ledger.models import BoqItem, ContractBuilding, VariationOrder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EditResult:
    """Outcome of a committed edit: the new value plus an optional user warning."""
    value: Any
    warning: Optional[str] = None

    @property
    def has_warning(self) -> bool:
        return self.warning is not None


def _fmt(value: Decimal) -> str:
    return f"{float(value):.2f}"


def _warn(message: str) -> str:
    logger.warning(f"[BOQ] {message}")
    return message


# =============================================================================
# DERIVED FIELDS
# =============================================================================

def recalculate_item(item: BoqItem) -> BoqItem:
    """Recompute every derived field from the stored quantities and percents."""
    qte = to_decimal(item.qte)
    unit_price = to_decimal(item.unit_price)
    preced = to_decimal(item.preced_qte)
    actual = to_decimal(item.actual_qte)
    cumul = safe_add(preced, actual)

    total_amount = safe_multiply(qte, unit_price)
    material_value = calculate_percentage(total_amount, item.material_percent)

    return item.model_copy(update={
        "cumul_qte": to_float(cumul),
        "total_amount": to_float(total_amount),
        "preced_amount": to_float(safe_multiply(preced, unit_price)),
        "actual_amount": to_float(safe_multiply(actual, unit_price)),
        "cumul_amount": to_float(safe_multiply(cumul, unit_price)),
        "cumul_percent": to_float(ratio_percent(cumul, qte)),
        "material_value": to_float(material_value),
        "deduction_value": to_float(calculate_percentage(material_value, item.deduction_percent)),
    })


def _apply_actual_quantity(item: BoqItem, actual_qty: Decimal) -> BoqItem:
    actual = floor_zero(actual_qty)
    cumul = safe_add(item.preced_qte, actual)
    cumul_percent = ratio_percent(cumul, item.qte)

    deduction_percent = to_decimal(item.deduction_percent)
    if deduction_percent <= cumul_percent:
        deduction_percent = min(cumul_percent, HUNDRED)

    return recalculate_item(item.model_copy(update={
        "actual_qte": to_float(actual),
        "deduction_percent": to_float(deduction_percent),
    }))


# =============================================================================
# ENTRY POINTS (free typing, no warnings)
# =============================================================================

def from_actual_quantity(item: BoqItem, entered_actual_qty) -> BoqItem:
    """Progress entered as this period's quantity."""
    return _apply_actual_quantity(item, to_decimal(entered_actual_qty))


def from_cumulative_quantity(item: BoqItem, entered_cumul_qty) -> BoqItem:
    """Progress entered as cumulative quantity to date."""
    actual = floor_zero(safe_subtract(entered_cumul_qty, item.preced_qte))
    return _apply_actual_quantity(item, actual)


def from_cumulative_percent(item: BoqItem, entered_percent) -> BoqItem:
    """Progress entered as cumulative percent of contracted quantity."""
    if to_decimal(item.qte) == ZERO:
        return item
    cumul_qty = calculate_percentage(item.qte, entered_percent)
    return from_cumulative_quantity(item, cumul_qty)


# =============================================================================
# COMMIT-TIME VALIDATION (on blur / enter)
# =============================================================================

def commit_actual_quantity(item: BoqItem, entered_actual_qty) -> EditResult:
    entered = to_decimal(entered_actual_qty)
    warning = None
    if entered < ZERO:
        warning = _warn("Quantity cannot be negative")
        entered = ZERO
    return EditResult(_apply_actual_quantity(item, entered), warning)


def commit_cumulative_quantity(item: BoqItem, entered_cumul_qty) -> EditResult:
    """Cumulative below previous is reverted to the previous quantity."""
    entered = to_decimal(entered_cumul_qty)
    minimum = to_decimal(item.preced_qte)
    warning = None
    if entered < minimum:
        warning = _warn(
            f"Cumulative quantity cannot be less than previous quantity ({_fmt(minimum)})"
        )
        entered = minimum
    return EditResult(from_cumulative_quantity(item, entered), warning)


def commit_cumulative_percent(item: BoqItem, entered_percent) -> EditResult:
    """Cumulative percent below the previous percent is reverted to it."""
    if to_decimal(item.qte) == ZERO:
        return EditResult(item)
    entered = to_decimal(entered_percent)
    minimum = ratio_percent(item.preced_qte, item.qte)
    warning = None
    if entered < minimum:
        warning = _warn(
            f"Cumulative percentage cannot be less than previous percentage ({_fmt(minimum)}%)"
        )
        return EditResult(from_cumulative_quantity(item, item.preced_qte), warning)
    return EditResult(from_cumulative_percent(item, entered), warning)


def set_material_percent(item: BoqItem, entered_percent, material_supply_cap) -> EditResult:
    """
    Material-supply percent above the contract cap is reset to 0, not
    clamped to the cap. This mirrors the desktop system's behaviour.
    """
    entered = to_decimal(entered_percent)
    cap = to_decimal(material_supply_cap)
    warning = None
    if entered > cap:
        warning = _warn(
            f"Material supply cannot exceed the contract limit of {_fmt(cap)}%"
        )
        entered = ZERO
    entered = floor_zero(entered)
    return EditResult(
        recalculate_item(item.model_copy(update={"material_percent": to_float(entered)})),
        warning
    )


def set_deduction_percent(item: BoqItem, entered_percent) -> BoqItem:
    clamped = clamp_percentage(entered_percent)
    return recalculate_item(item.model_copy(update={"deduction_percent": to_float(clamped)}))


# =============================================================================
# COLLECTION HELPERS
# =============================================================================

def update_building_item(
    buildings: List[ContractBuilding],
    building_id: int,
    boq_id: int,
    update: Callable[[BoqItem], BoqItem]
) -> List[ContractBuilding]:
    """Return new buildings with one contract BOQ item replaced by update(item)."""
    result = []
    for building in buildings:
        if building.id == building_id:
            building = building.model_copy(update={
                "boqs_contract": [
                    update(boq) if boq.id == boq_id else boq
                    for boq in building.boqs_contract
                ]
            })
        result.append(building)
    return result


def update_vo_item(
    vos: List[VariationOrder],
    vo_id: int,
    building_id: int,
    boq_id: int,
    update: Callable[[BoqItem], BoqItem]
) -> List[VariationOrder]:
    """Return new VOs with one VO BOQ item replaced by update(item)."""
    result = []
    for vo in vos:
        if vo.id == vo_id:
            buildings = []
            for building in vo.buildings:
                if building.id == building_id:
                    building = building.model_copy(update={
                        "boqs": [update(boq) if boq.id == boq_id else boq for boq in building.boqs]
                    })
                buildings.append(building)
            vo = vo.model_copy(update={"buildings": buildings})
        result.append(vo)
    return result


def hydrate_buildings(buildings: List[ContractBuilding]) -> List[ContractBuilding]:
    """Recompute derived fields for every line after a fetch."""
    return [
        b.model_copy(update={"boqs_contract": [recalculate_item(boq) for boq in b.boqs_contract]})
        for b in buildings
    ]


def hydrate_vos(vos: List[VariationOrder]) -> List[VariationOrder]:
    return [
        vo.model_copy(update={
            "buildings": [
                b.model_copy(update={"boqs": [recalculate_item(boq) for boq in b.boqs]})
                for b in vo.buildings
            ]
        })
        for vo in vos
    ]


# =============================================================================
# BULK OPERATIONS
# =============================================================================

def apply_percentage_to_building(building: ContractBuilding, percentage) -> EditResult:
    """Set every line's actual quantity to percentage% of its contracted quantity."""
    pct = to_decimal(percentage)
    if pct < ZERO or pct > to_decimal(config.MAX_BULK_PERCENTAGE):
        return EditResult(
            building,
            _warn(f"Percentage must be between 0 and {config.MAX_BULK_PERCENTAGE:g}")
        )
    boqs = [
        boq if boq.is_header_row
        else from_actual_quantity(boq, round_financial(calculate_percentage(boq.qte, pct)))
        for boq in building.boqs_contract
    ]
    return EditResult(building.model_copy(update={"boqs_contract": boqs}))


def clear_building_quantities(building: ContractBuilding) -> ContractBuilding:
    return building.model_copy(update={
        "boqs_contract": [from_actual_quantity(boq, 0) for boq in building.boqs_contract]
    })


def building_totals(building: ContractBuilding) -> Dict[str, float]:
    totals = {"total_amount": ZERO, "actual_amount": ZERO, "cumul_amount": ZERO, "preced_amount": ZERO}
    for boq in building.boqs_contract:
        for field in totals:
            totals[field] += to_decimal(getattr(boq, field))
    return {field: to_float(value) for field, value in totals.items()}


def overall_totals(buildings: List[ContractBuilding]) -> Dict[str, float]:
    totals = {"total_amount": 0.0, "actual_amount": 0.0, "cumul_amount": 0.0, "preced_amount": 0.0}
    for building in buildings:
        for field, value in building_totals(building).items():
            totals[field] = to_float(safe_add(totals[field], value))
    return totals
