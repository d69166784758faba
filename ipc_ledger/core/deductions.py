"""
DEDUCTION CALCULATOR (Labor / Machine / Material)

LOCKED FORMULAS:
- Labor/Machine consumed_amount = quantity * unit_price
- Material consumed_amount = sale_unit * (allocated - stock_qte - transfered_qte)
- previous_percent = consumed == 0 ? 0 : precedent_amount / consumed * 100
- actual_percent = cumulative_percent - previous_percent (NOT clamped)
- cumulative/previous/actual deduction amount = percent% of consumed_amount

precedent_amount is what was actually deducted to date and is authoritative.
The previous percent is always derived from it so that price or quantity
edits keep the ratio consistent. A negative actual percent is shown as-is:
it signals the cumulative percent was edited below what was already taken.
"""

from dataclasses import dataclass
from typing import Iterable, Union
import logging

from ipc_ledger.core.financial_precision import (
    to_decimal, to_float, safe_add, safe_multiply, safe_subtract,
    calculate_percentage, ratio_percent, clamp_percentage, ZERO,
)
from ipc_ledger.models import DeductionKind, LaborItem, MachineItem, MaterialItem

logger = logging.getLogger(__name__)

AnyDeductionItem = Union[LaborItem, MachineItem, MaterialItem]


@dataclass(frozen=True)
class DeductionFigures:
    consumed_amount: float
    previous_percent: float
    actual_percent: float
    cumulative_deduction_amount: float
    previous_deduction_amount: float
    actual_deduction_amount: float


def consumed_amount(item: AnyDeductionItem, kind: DeductionKind):
    if kind == DeductionKind.MATERIAL:
        net_quantity = safe_subtract(
            safe_subtract(item.allocated, item.stock_qte),
            item.transfered_qte
        )
        return safe_multiply(item.sale_unit, net_quantity)
    return safe_multiply(item.quantity, item.unit_price)


def compute_deduction(item: AnyDeductionItem, kind: DeductionKind) -> DeductionFigures:
    """Derive every deduction figure for one labor, machine or material line."""
    kind = DeductionKind(kind)
    consumed = consumed_amount(item, kind)
    cumulative_percent = to_decimal(item.deduction)

    if consumed == ZERO:
        return DeductionFigures(
            consumed_amount=to_float(consumed),
            previous_percent=0.0,
            actual_percent=0.0,
            cumulative_deduction_amount=0.0,
            previous_deduction_amount=0.0,
            actual_deduction_amount=0.0,
        )

    previous_percent = ratio_percent(item.precedent_amount, consumed)
    actual_percent = cumulative_percent - previous_percent

    return DeductionFigures(
        consumed_amount=to_float(consumed),
        previous_percent=to_float(previous_percent),
        actual_percent=to_float(actual_percent),
        cumulative_deduction_amount=to_float(calculate_percentage(consumed, cumulative_percent)),
        previous_deduction_amount=to_float(calculate_percentage(consumed, previous_percent)),
        actual_deduction_amount=to_float(calculate_percentage(consumed, actual_percent)),
    )


def apply_deduction(item: AnyDeductionItem, kind: DeductionKind) -> AnyDeductionItem:
    """Return the item with its derived deduction fields refreshed."""
    figures = compute_deduction(item, kind)
    update = {
        "consumed_amount": figures.consumed_amount,
        "previous_deduction": figures.previous_percent,
        "actual_deduction": figures.actual_percent,
        "previous_amount": figures.previous_deduction_amount,
        "actual_amount": figures.actual_deduction_amount,
        "cumul_amount": figures.cumulative_deduction_amount,
    }
    if kind != DeductionKind.MATERIAL:
        update["amount"] = figures.consumed_amount
    return item.model_copy(update=update)


def set_cumulative_deduction_percent(item: AnyDeductionItem, kind: DeductionKind, entered_percent) -> AnyDeductionItem:
    clamped = clamp_percentage(entered_percent)
    if clamped != to_decimal(entered_percent):
        logger.warning(
            f"[DEDUCTION] {DeductionKind(kind).value} {item.id}: "
            f"percent {entered_percent} clamped to {to_float(clamped)}"
        )
    return apply_deduction(item.model_copy(update={"deduction": to_float(clamped)}), kind)


def apply_all(items: Iterable[AnyDeductionItem], kind: DeductionKind) -> list:
    return [apply_deduction(item, kind) for item in items]


def total_actual_deductions(labors, machines, materials) -> float:
    """Sum of this period's deduction amounts across all three categories."""
    total = ZERO
    for kind, items in (
        (DeductionKind.LABOR, labors),
        (DeductionKind.MACHINE, machines),
        (DeductionKind.MATERIAL, materials),
    ):
        for item in items or []:
            total = safe_add(total, compute_deduction(item, kind).actual_deduction_amount)
    return to_float(total)
