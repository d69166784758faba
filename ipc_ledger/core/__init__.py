"""
IPC Financial Ledger core: pure calculators and workflow utilities.
"""
from .financial_precision import (
    to_decimal,
    to_float,
    round_financial,
    safe_multiply,
    safe_divide,
    safe_subtract,
    safe_add,
    calculate_percentage,
    ratio_percent,
    clamp_percentage,
    FinancialPrecisionError
)

from .boq_progress import (
    EditResult,
    recalculate_item,
    from_actual_quantity,
    from_cumulative_quantity,
    from_cumulative_percent,
    commit_actual_quantity,
    commit_cumulative_quantity,
    commit_cumulative_percent,
    set_material_percent,
    set_deduction_percent,
)

from .deductions import (
    DeductionFigures,
    compute_deduction,
    apply_deduction,
    set_cumulative_deduction_percent,
    total_actual_deductions,
)

from .advance_payment import (
    AdvancePaymentLedger,
    compute_advance_payment,
    selected_total,
)

from .retention_release import (
    RetentionReleaseLedger,
    compute_retention_release,
)

from .ipc_summary import (
    IpcFinancialSummary,
    summarize,
)

from .state_machine import (
    StateMachine,
    StateMachineError,
    InvalidTransitionError,
    GuardConditionError,
)

from .request_guard import (
    RequestGeneration,
    InFlightGuard,
)

__all__ = [
    # Financial Precision
    'to_decimal',
    'to_float',
    'round_financial',
    'safe_multiply',
    'safe_divide',
    'safe_subtract',
    'safe_add',
    'calculate_percentage',
    'ratio_percent',
    'clamp_percentage',
    'FinancialPrecisionError',
    # BOQ Progress
    'EditResult',
    'recalculate_item',
    'from_actual_quantity',
    'from_cumulative_quantity',
    'from_cumulative_percent',
    'commit_actual_quantity',
    'commit_cumulative_quantity',
    'commit_cumulative_percent',
    'set_material_percent',
    'set_deduction_percent',
    # Deductions
    'DeductionFigures',
    'compute_deduction',
    'apply_deduction',
    'set_cumulative_deduction_percent',
    'total_actual_deductions',
    # Advance Payment / Retention Release
    'AdvancePaymentLedger',
    'compute_advance_payment',
    'selected_total',
    'RetentionReleaseLedger',
    'compute_retention_release',
    # Summary
    'IpcFinancialSummary',
    'summarize',
    # Workflow utilities
    'StateMachine',
    'StateMachineError',
    'InvalidTransitionError',
    'GuardConditionError',
    'RequestGeneration',
    'InFlightGuard',
]
