"""
ADVANCE PAYMENT CALCULATOR

LOCKED FORMULAS:
- boq_total = SUM(qte * unit_price) over contract BOQ lines
- vo_amount = +/- SUM(qte * unit_price) over VO lines (Omission is negative)
- selected_total:
    'all'      -> max(0, boq_total + SUM(all signed VO amounts))
    'boq'      -> boq_total
    [vo ids]   -> max(0, boq_total + SUM(signed amounts of listed VOs))
- eligible_amount = selected_total * eligible_percent / 100
- previous_paid = editing ? max(0, stored_cumulative - own_stored_amount) : stored_cumulative
- remaining = max(0, eligible_amount - previous_paid)
- this_period_amount = remaining * clamp(user_percent, 0, 100) / 100

When editing, the stored cumulative already contains this record's own
saved amount; backing it out keeps "previous" equal to what other,
earlier certificates paid.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Union
import logging

from ipc_ledger.core.financial_precision import (
    to_decimal, to_float, safe_add, safe_multiply, safe_subtract,
    calculate_percentage, floor_zero, clamp_percentage, ZERO,
)
from ipc_ledger.models import ContractBuilding, VariationOrder, AdvancePaymentSelection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdvancePaymentLedger:
    selected_total: float
    eligible_amount: float
    previous_paid: float
    remaining: float
    user_percent: float
    this_period_amount: float


def boq_total(buildings: List[ContractBuilding]) -> Decimal:
    total = ZERO
    for building in buildings or []:
        for boq in building.boqs_contract:
            total = safe_add(total, safe_multiply(boq.qte, boq.unit_price))
    return total


def vo_amount(vo: VariationOrder) -> Decimal:
    """Contract value of a VO, signed by its type."""
    total = ZERO
    for building in vo.buildings:
        for boq in building.boqs:
            total = safe_add(total, safe_multiply(boq.qte, boq.unit_price))
    return total * vo.type.sign


def signed_vo_amounts(vos: List[VariationOrder]) -> Dict[int, Decimal]:
    amounts: Dict[int, Decimal] = {}
    for vo in vos or []:
        amounts[vo.id] = safe_add(amounts.get(vo.id, ZERO), vo_amount(vo))
    return amounts


def selected_total(
    selection: AdvancePaymentSelection,
    boq_total_amount,
    vo_amounts: Dict[int, Union[Decimal, float]]
) -> Decimal:
    base = to_decimal(boq_total_amount)
    if selection == "boq":
        return base
    if selection == "all":
        return floor_zero(safe_add(base, *vo_amounts.values()))
    listed = set(selection or [])
    return floor_zero(safe_add(base, *[amt for vo_id, amt in vo_amounts.items() if vo_id in listed]))


def eligible_amount(selected, eligible_percent) -> Decimal:
    return calculate_percentage(selected, eligible_percent)


def previous_to_date(stored_cumulative, own_stored_amount, editing: bool) -> Decimal:
    """Amount paid/released by other, earlier certificates."""
    if editing:
        return floor_zero(safe_subtract(stored_cumulative, own_stored_amount))
    return to_decimal(stored_cumulative)


def remaining_amount(available, previous) -> Decimal:
    return floor_zero(safe_subtract(available, previous))


def this_period_amount(remaining, user_percent) -> Decimal:
    return calculate_percentage(remaining, clamp_percentage(user_percent))


def compute_advance_payment(
    buildings: List[ContractBuilding],
    vos: List[VariationOrder],
    selection: AdvancePaymentSelection,
    eligible_percent,
    stored_cumulative,
    own_stored_amount,
    user_percent,
    editing: bool = False
) -> AdvancePaymentLedger:
    selected = selected_total(selection, boq_total(buildings), signed_vo_amounts(vos))
    eligible = eligible_amount(selected, eligible_percent)
    previous = previous_to_date(stored_cumulative, own_stored_amount, editing)
    remaining = remaining_amount(eligible, previous)
    percent = clamp_percentage(user_percent)

    ledger = AdvancePaymentLedger(
        selected_total=to_float(selected),
        eligible_amount=to_float(eligible),
        previous_paid=to_float(previous),
        remaining=to_float(remaining),
        user_percent=to_float(percent),
        this_period_amount=to_float(this_period_amount(remaining, percent)),
    )
    logger.debug(f"[ADVANCE] selection={selection!r} ledger={ledger}")
    return ledger
