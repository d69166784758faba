"""
PREVIOUS VALUE CORRECTION WORKFLOW

Corrects the baseline carried forward from earlier certificates
(PrecedQte on BOQ/VO lines, PrecedentAmount on deductions).

RULES:
1. Only ContractsManager, QuantitySurveyor and Admin may open a correction
2. The entered value must parse, be >= 0 and differ from the current value
3. The reason is trimmed and must be 10..500 characters
4. The backend persists the value and writes the audit log; it is authoritative
5. On success the confirmed value is applied to the matching line and the
   line's cumulative figures are recomputed from its existing actual quantity
6. On failure the server's message is surfaced and local state is untouched

Attempt lifecycle:
    idle -> form_open -> validating -> submitting -> applied | rejected
    validating -> form_open      (validation failed)
    rejected   -> form_open      (retry)
    form_open  -> idle           (cancel)
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
import logging

from ipc_ledger import config
from ipc_ledger.api_client import ApiError, IpcApiClient
from ipc_ledger.auth import AuthenticatedUser
from ipc_ledger.core.boq_progress import recalculate_item
from ipc_ledger.core.deductions import apply_deduction
from ipc_ledger.core.financial_precision import (
    FinancialPrecisionError, to_decimal, to_float, round_financial,
)
from ipc_ledger.core.state_machine import StateMachine
from ipc_ledger.models import (
    BoqItem, CorrectionEntityType, CorrectionField, CorrectionHistoryEntry,
    CorrectionHistoryQuery, CorrectionRequest, CorrectionResult,
    DeductionKind, IpcForm,
)
from ipc_ledger.permissions import PermissionChecker

logger = logging.getLogger(__name__)


class CorrectionState:
    IDLE = "idle"
    FORM_OPEN = "form_open"
    VALIDATING = "validating"
    SUBMITTING = "submitting"
    APPLIED = "applied"
    REJECTED = "rejected"


ENTITY_TYPE_LABELS = {
    "ContractBoqItem": "BOQ Item",
    "ContractVo": "Variation Order",
    "Labor": "Labor",
    "Machine": "Machine",
    "Material": "Material",
}

DEDUCTION_KINDS = {
    CorrectionEntityType.LABOR: (DeductionKind.LABOR, "labors"),
    CorrectionEntityType.MACHINE: (DeductionKind.MACHINE, "machines"),
    CorrectionEntityType.MATERIAL: (DeductionKind.MATERIAL, "materials"),
}


class CorrectionValidationError(Exception):
    """Raised when a correction fails client-side validation"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


@dataclass(frozen=True)
class CorrectionTarget:
    """The baseline value a user wants to correct."""
    entity_type: CorrectionEntityType
    entity_id: int
    field_name: CorrectionField
    current_value: float
    contract_dataset_id: int
    description: str = ""


class CorrectionAttempt:
    """One pass through the correction form; driven by the correction state machine."""

    def __init__(self, target: CorrectionTarget):
        self.target = target
        self.status = CorrectionState.IDLE
        self.history: List[Dict[str, Any]] = []
        self.error: Optional[str] = None
        self.request: Optional[CorrectionRequest] = None
        self.result: Optional[CorrectionResult] = None


def _start_validation(attempt: "CorrectionAttempt", context: Dict[str, Any]) -> None:
    attempt.error = None
    attempt.request = None


def _clear_error(attempt: "CorrectionAttempt", context: Dict[str, Any]) -> None:
    attempt.error = None


def _record_error(attempt: "CorrectionAttempt", context: Dict[str, Any]) -> None:
    attempt.error = context.get("error")


def _has_validated_request(attempt: "CorrectionAttempt", context: Dict[str, Any]) -> Tuple[bool, str]:
    return attempt.request is not None, "Correction has not passed validation"


def build_state_machine() -> StateMachine:
    machine = StateMachine("correction")
    machine.register(CorrectionState.IDLE, CorrectionState.FORM_OPEN, description="Open correction form")
    machine.register(CorrectionState.FORM_OPEN, CorrectionState.IDLE, description="Cancel")
    machine.register(
        CorrectionState.FORM_OPEN, CorrectionState.VALIDATING,
        handler=_start_validation, description="Validate input"
    )
    machine.register(
        CorrectionState.VALIDATING, CorrectionState.FORM_OPEN,
        handler=_record_error, description="Validation failed"
    )
    machine.register(
        CorrectionState.VALIDATING, CorrectionState.SUBMITTING,
        guard=_has_validated_request, description="Submit to backend"
    )
    machine.register(CorrectionState.SUBMITTING, CorrectionState.APPLIED, description="Backend confirmed")
    machine.register(
        CorrectionState.SUBMITTING, CorrectionState.REJECTED,
        handler=_record_error, description="Backend refused"
    )
    machine.register(
        CorrectionState.REJECTED, CorrectionState.FORM_OPEN,
        handler=_clear_error, description="Retry"
    )
    return machine


correction_state_machine = build_state_machine()


# =============================================================================
# VALIDATION
# =============================================================================

def validate_correction(new_value, current_value, reason: Optional[str]) -> Tuple[float, str]:
    """
    Check a correction before it may be submitted.

    Returns the parsed value and the trimmed reason; raises
    CorrectionValidationError with the first failing rule's message.
    """
    try:
        value = to_decimal(new_value)
    except FinancialPrecisionError:
        raise CorrectionValidationError("Please enter a valid number")

    if value < 0:
        raise CorrectionValidationError("Value cannot be negative")

    if abs(value - to_decimal(current_value)) < to_decimal(config.CORRECTION_VALUE_TOLERANCE):
        raise CorrectionValidationError("New value must be different from current value")

    reason = (reason or "").strip()
    if len(reason) < config.CORRECTION_REASON_MIN_LENGTH:
        raise CorrectionValidationError(
            f"Reason must be at least {config.CORRECTION_REASON_MIN_LENGTH} characters"
        )
    if len(reason) > config.CORRECTION_REASON_MAX_LENGTH:
        raise CorrectionValidationError(
            f"Reason cannot exceed {config.CORRECTION_REASON_MAX_LENGTH} characters"
        )

    return to_float(value), reason


# =============================================================================
# APPLYING A CONFIRMED CORRECTION
# =============================================================================

def _with_preced_qte(boq: BoqItem, new_preced_qte: float) -> BoqItem:
    # actual_qte is kept; cumul_qte = new preced + existing actual
    return recalculate_item(boq.model_copy(update={"preced_qte": new_preced_qte}))


def apply_correction(form: IpcForm, target: CorrectionTarget, confirmed_value: float) -> IpcForm:
    """
    Return a new form with the confirmed baseline written into the matching line.

    CumulQte corrections rewrite a historical certificate and leave the
    current lines untouched.
    """
    entity_type = CorrectionEntityType(target.entity_type)
    field_name = CorrectionField(target.field_name)
    matched = False

    if field_name == CorrectionField.CUMUL_QTE:
        logger.info(f"[CORRECTION] Historical cumulative corrected for {entity_type.name} {target.entity_id}")
        return form

    if entity_type == CorrectionEntityType.CONTRACT_BOQ_ITEM:
        buildings = []
        for building in form.buildings:
            boqs = []
            for boq in building.boqs_contract:
                if boq.id == target.entity_id:
                    boq = _with_preced_qte(boq, confirmed_value)
                    matched = True
                boqs.append(boq)
            buildings.append(building.model_copy(update={"boqs_contract": boqs}))
        update = {"buildings": buildings}

    elif entity_type == CorrectionEntityType.CONTRACT_VO:
        vos = []
        for vo in form.vos:
            vo_buildings = []
            for building in vo.buildings:
                boqs = []
                for boq in building.boqs:
                    if boq.id == target.entity_id:
                        boq = _with_preced_qte(boq, confirmed_value)
                        matched = True
                    boqs.append(boq)
                vo_buildings.append(building.model_copy(update={"boqs": boqs}))
            vos.append(vo.model_copy(update={"buildings": vo_buildings}))
        update = {"vos": vos}

    else:
        kind, attribute = DEDUCTION_KINDS[entity_type]
        items = []
        for item in getattr(form, attribute):
            if item.id == target.entity_id:
                item = apply_deduction(item.model_copy(update={"precedent_amount": confirmed_value}), kind)
                matched = True
            items.append(item)
        update = {attribute: items}

    if not matched:
        logger.warning(
            f"[CORRECTION] No {entity_type.name} line with id {target.entity_id} in the open IPC"
        )
        return form

    return form.model_copy(update=update)


# =============================================================================
# SERVICE
# =============================================================================

class CorrectionService:
    """Runs correction attempts against the backend."""

    def __init__(
        self,
        client: IpcApiClient,
        permission_checker: Optional[PermissionChecker] = None,
        state_machine: Optional[StateMachine] = None
    ):
        self.client = client
        self.permissions = permission_checker or PermissionChecker()
        self.state_machine = state_machine or correction_state_machine

    def can_correct(self, user: Optional[AuthenticatedUser]) -> bool:
        return self.permissions.can_correct_previous_values(user)

    def open(self, target: CorrectionTarget, user: Optional[AuthenticatedUser]) -> CorrectionAttempt:
        """Start an attempt; raises PermissionDeniedError for ineligible roles."""
        self.permissions.check_correction_role(user)
        attempt = CorrectionAttempt(target)
        self.state_machine.transition(attempt, CorrectionState.FORM_OPEN)
        return attempt

    def cancel(self, attempt: CorrectionAttempt) -> None:
        self.state_machine.transition(attempt, CorrectionState.IDLE)

    def retry(self, attempt: CorrectionAttempt) -> None:
        self.state_machine.transition(attempt, CorrectionState.FORM_OPEN)

    def validate(self, attempt: CorrectionAttempt, new_value, reason: Optional[str]) -> CorrectionRequest:
        """Run the validation step; a failure returns the attempt to the open form."""
        self.state_machine.transition(attempt, CorrectionState.VALIDATING)
        try:
            value, trimmed_reason = validate_correction(new_value, attempt.target.current_value, reason)
        except CorrectionValidationError as e:
            self.state_machine.transition(attempt, CorrectionState.FORM_OPEN, {"error": e.message})
            raise

        target = attempt.target
        attempt.request = CorrectionRequest(
            entity_type=target.entity_type,
            entity_id=target.entity_id,
            contract_dataset_id=target.contract_dataset_id,
            field_name=target.field_name,
            new_value=value,
            reason=trimmed_reason,
        )
        return attempt.request

    async def submit(self, attempt: CorrectionAttempt, new_value, reason: Optional[str], form: IpcForm) -> IpcForm:
        """
        Validate, submit and apply one correction.

        Returns the form with the confirmed value applied. On a validation
        or backend failure the exception propagates and `form` is unchanged.
        """
        request = self.validate(attempt, new_value, reason)
        self.state_machine.transition(attempt, CorrectionState.SUBMITTING)

        try:
            result = await self.client.correct_previous_value(request)
        except ApiError as e:
            self.state_machine.transition(attempt, CorrectionState.REJECTED, {"error": e.message})
            logger.error(f"[CORRECTION] Rejected {request.entity_type.name} {request.entity_id}: {e.message}")
            raise

        attempt.result = result
        self.state_machine.transition(attempt, CorrectionState.APPLIED)
        logger.info(
            f"[CORRECTION] {request.entity_type.name} {request.entity_id} {request.field_name.value}: "
            f"{result.old_value} -> {result.new_value} (correction {result.correction_id})"
        )
        return apply_correction(form, attempt.target, result.new_value)

    async def history(
        self,
        contract_dataset_id: int,
        entity_type: Optional[CorrectionEntityType] = None,
        entity_id: Optional[int] = None,
        from_date=None,
        to_date=None,
        limit: int = config.CORRECTION_HISTORY_DEFAULT_LIMIT
    ) -> List[CorrectionHistoryEntry]:
        query = CorrectionHistoryQuery(
            contract_dataset_id=contract_dataset_id,
            entity_type=entity_type,
            entity_id=entity_id,
            from_date=from_date or None,
            to_date=to_date or None,
            limit=limit,
        )
        return await self.client.get_correction_history(query)


# =============================================================================
# DISPLAY FORMATTING
# =============================================================================

def format_amount(value) -> str:
    """Thousands separators; two decimals only when the value has cents."""
    if value is None:
        return "-"
    rounded = round_financial(value)
    if rounded == rounded.to_integral_value():
        return f"{int(rounded):,}"
    return f"{rounded:,.2f}"


def format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    return value.strftime("%d %b %Y %H:%M")


def format_history_entry(entry: CorrectionHistoryEntry) -> Dict[str, str]:
    difference = to_float(to_decimal(entry.new_value) - to_decimal(entry.old_value))
    return {
        "corrected_at": format_timestamp(entry.corrected_at),
        "entity_type": ENTITY_TYPE_LABELS.get(entry.entity_type, entry.entity_type),
        "entity": entry.entity_description,
        "field": entry.field_name,
        "old_value": format_amount(entry.old_value),
        "new_value": format_amount(entry.new_value),
        "difference": format_amount(difference),
        "corrected_by": entry.corrected_by_name,
        "reason": entry.reason,
    }
