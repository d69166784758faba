"""
IPC FINANCIAL SUMMARY

Interim / Final certificates:
- gross_amount = SUM(contract BOQ actual_amount) + SUM(signed VO actual_amount)
- retention_amount = gross_amount * retention_percentage / 100
- advance_recovery = gross_amount * advance_payment_percentage / 100
- deductions = SUM(actual deduction amounts of labor, machine, material)
- net_payable = gross - retention - advance_recovery - deductions - penalty

Advance-payment and retention-release certificates pay their ledger's
this-period amount and carry no progress.
"""

from dataclasses import dataclass
import logging

from ipc_ledger.core.deductions import total_actual_deductions
from ipc_ledger.core.financial_precision import (
    to_decimal, to_float, safe_add, safe_subtract, calculate_percentage, ZERO,
)
from ipc_ledger.models import IpcForm, IpcType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IpcFinancialSummary:
    contract_amount: float
    vo_amount: float
    gross_amount: float
    retention_amount: float
    advance_recovery: float
    deductions: float
    penalty: float
    net_payable: float


def contract_actual_amount(form: IpcForm):
    total = ZERO
    for building in form.buildings:
        for boq in building.boqs_contract:
            total = safe_add(total, boq.actual_amount)
    return total


def vo_actual_amount(form: IpcForm):
    total = ZERO
    for vo in form.vos:
        for building in vo.buildings:
            for boq in building.boqs:
                total = safe_add(total, to_decimal(boq.actual_amount) * vo.type.sign)
    return total


def summarize(form: IpcForm) -> IpcFinancialSummary:
    contract_amount = contract_actual_amount(form)
    vo_amount = vo_actual_amount(form)
    gross = safe_add(contract_amount, vo_amount)
    retention = calculate_percentage(gross, form.retention_percentage)
    recovery = calculate_percentage(gross, form.advance_payment_percentage)
    deductions = to_decimal(total_actual_deductions(form.labors, form.machines, form.materials))
    penalty = to_decimal(form.penalty)

    if form.type == IpcType.ADVANCE_PAYMENT.value:
        net = to_decimal(form.advance_payment_amount)
    elif form.type == IpcType.RETENTION.value:
        net = to_decimal(form.retention_release_amount)
    else:
        net = safe_subtract(gross, safe_add(retention, recovery, deductions, penalty))

    return IpcFinancialSummary(
        contract_amount=to_float(contract_amount),
        vo_amount=to_float(vo_amount),
        gross_amount=to_float(gross),
        retention_amount=to_float(retention),
        advance_recovery=to_float(recovery),
        deductions=to_float(deductions),
        penalty=to_float(penalty),
        net_payable=to_float(net),
    )
