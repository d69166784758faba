"""
RETENTION RELEASE CALCULATOR

total_held is the cumulative retention computed and stored by the backend
from all prior interim certificates; it is never recomputed here.

- previously_released = editing ? max(0, stored_cumulative - own_stored_amount) : stored_cumulative
- remaining = max(0, total_held - previously_released)
- this_period_amount = remaining * clamp(user_percent, 0, 100) / 100
"""

from dataclasses import dataclass
import logging

from ipc_ledger.core.advance_payment import previous_to_date, remaining_amount, this_period_amount
from ipc_ledger.core.financial_precision import to_float, clamp_percentage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetentionReleaseLedger:
    total_held: float
    previously_released: float
    remaining: float
    user_percent: float
    this_period_amount: float


def compute_retention_release(
    total_held,
    stored_cumulative,
    own_stored_amount,
    user_percent,
    editing: bool = False
) -> RetentionReleaseLedger:
    previous = previous_to_date(stored_cumulative, own_stored_amount, editing)
    remaining = remaining_amount(total_held, previous)
    percent = clamp_percentage(user_percent)

    return RetentionReleaseLedger(
        total_held=to_float(total_held),
        previously_released=to_float(previous),
        remaining=to_float(remaining),
        user_percent=to_float(percent),
        this_period_amount=to_float(this_period_amount(remaining, percent)),
    )
