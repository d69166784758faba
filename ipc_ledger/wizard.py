"""
IPC WIZARD STATE OWNER

Owns the certificate being created or edited and moves it through four
steps:
    1. Contract & IPC type
    2. Period, buildings & BOQ/VO progress
    3. Deductions & financial adjustments
    4. Preview & save

Every change to the form goes through set_form_data(), which also marks
the document dirty. Async loads take a request generation when they start
and drop their result if a newer load started or the wizard was closed
meanwhile.
"""

from datetime import date
from typing import Callable, List, Optional
import logging

from ipc_ledger import config
from ipc_ledger.api_client import ApiError, IpcApiClient
from ipc_ledger.core.advance_payment import AdvancePaymentLedger, compute_advance_payment
from ipc_ledger.core.boq_progress import (
    EditResult, commit_actual_quantity, commit_cumulative_percent,
    commit_cumulative_quantity, hydrate_buildings, hydrate_vos,
    set_material_percent, update_building_item, update_vo_item,
)
from ipc_ledger.core.deductions import apply_all, set_cumulative_deduction_percent
from ipc_ledger.core.financial_precision import clamp_percentage, to_decimal, to_float, ZERO
from ipc_ledger.core.ipc_summary import IpcFinancialSummary, summarize
from ipc_ledger.core.request_guard import InFlightGuard, RequestGeneration
from ipc_ledger.core.retention_release import RetentionReleaseLedger, compute_retention_release
from ipc_ledger.models import (
    AdvancePaymentSelection, BoqItem, Contract, DeductionKind, IpcForm, IpcType,
)

logger = logging.getLogger(__name__)

FIRST_STEP = 1
LAST_STEP = 4
EDIT_ENTRY_STEP = 2

IPC_TYPES = [t.value for t in IpcType]

# How progress on a BOQ line was entered
PROGRESS_ENTRY = {
    "actual": commit_actual_quantity,
    "cumulative": commit_cumulative_quantity,
    "percent": commit_cumulative_percent,
}

DEDUCTION_COLLECTIONS = {
    DeductionKind.LABOR: "labors",
    DeductionKind.MACHINE: "machines",
    DeductionKind.MATERIAL: "materials",
}

# Form fields feeding each ledger; a change to any of them resyncs the stored amount
ADVANCE_PAYMENT_INPUTS = {
    "type", "buildings", "vos", "advance_payment_selection", "advance_payment_eligible",
    "advance_payment_percentage", "advance_payment_amount_cumul",
}
RETENTION_RELEASE_INPUTS = {
    "type", "retention_amount_cumul", "retention_release_cumul", "retention_release_percentage",
}


class WizardError(Exception):
    """Base exception for wizard errors"""
    pass


class StepValidationError(WizardError):
    """Raised when the current step's gate blocks forward navigation"""
    def __init__(self, step: int, message: str):
        self.step = step
        self.message = message
        super().__init__(message)


def initial_form(today: Optional[date] = None) -> IpcForm:
    return IpcForm(
        date_ipc=(today or date.today()).isoformat(),
        retention_percentage=config.DEFAULT_RETENTION_PERCENTAGE,
    )


def _date_only(value: Optional[str]) -> str:
    """Backend dates may carry a time part: '2026-03-31T00:00:00' -> '2026-03-31'."""
    return (value or "").split("T")[0]


def step_validation_message(form: IpcForm, step: int) -> Optional[str]:
    """The message blocking `step`, or None when its gate holds."""
    if step == 1:
        if form.contracts_dataset_id <= 0:
            return "Please select a contract"
        if not form.type:
            return "Please select an IPC type"
        if not form.date_ipc:
            return "Please set the IPC date"
        return None

    if step == 2:
        if not form.from_date or not form.to_date:
            return "Please set the work period start and end dates"
        has_progress = any(
            to_decimal(boq.actual_qte) > ZERO
            for building in form.buildings
            for boq in building.boqs_contract
        )
        if not has_progress:
            return "Please enter progress on at least one BOQ line"
        return None

    # Steps 3 and 4 have no required input
    return None


class IPCWizard:
    """
    Explicit state owner for the IPC wizard.

    Usage:
        wizard = IPCWizard(client)
        await wizard.load_contracts()
        await wizard.select_contract(12)
        wizard.set_form_data(type=IpcType.INTERIM.value)
        wizard.go_to_next_step()
    """

    def __init__(self, client: IpcApiClient, today: Optional[date] = None):
        self.client = client
        self._today = today

        self.form = initial_form(today)
        self.current_step = FIRST_STEP
        self.has_unsaved_changes = False
        self.leave_pending = False
        self.loading = False
        self.loading_contracts = False

        self.contracts: List[Contract] = []
        self.selected_contract: Optional[Contract] = None

        # Amounts this record contributed to the stored cumulatives when it was opened
        self._own_advance_payment_amount = 0.0
        self._own_retention_release_amount = 0.0

        self._contract_list_requests = RequestGeneration("contract list")
        self._contract_list_guard = InFlightGuard("contract list")
        self._form_requests = RequestGeneration("IPC form")
        self._save_requests = RequestGeneration("IPC save")
        self._save_guard = InFlightGuard("IPC save")

    # =========================================================================
    # FORM STATE
    # =========================================================================

    @property
    def is_edit_mode(self) -> bool:
        return self.form.is_edit

    def set_form_data(self, mark_dirty: bool = True, **changes) -> IpcForm:
        """Single entry point for every form mutation."""
        unknown = set(changes) - set(IpcForm.model_fields)
        if unknown:
            raise WizardError(f"Unknown form fields: {sorted(unknown)}")

        for collection in ("buildings", "vos", "labors", "machines", "materials"):
            if collection in changes and changes[collection] is None:
                changes[collection] = []

        self.form = self.form.model_copy(update=changes)
        self._resync_ledgers(set(changes))
        if mark_dirty:
            self.has_unsaved_changes = True
        return self.form

    def reset(self) -> None:
        self._form_requests.invalidate()
        self.form = initial_form(self._today)
        self.selected_contract = None
        self.current_step = FIRST_STEP
        self.has_unsaved_changes = False
        self.leave_pending = False
        self._own_advance_payment_amount = 0.0
        self._own_retention_release_amount = 0.0

    def _load_form(self, form: IpcForm) -> None:
        """Replace the form with freshly fetched data; derived fields are recomputed."""
        self.form = form.model_copy(update={
            "buildings": hydrate_buildings(form.buildings),
            "vos": hydrate_vos(form.vos),
            "labors": apply_all(form.labors, DeductionKind.LABOR),
            "machines": apply_all(form.machines, DeductionKind.MACHINE),
            "materials": apply_all(form.materials, DeductionKind.MATERIAL),
        })
        self._resync_ledgers(ADVANCE_PAYMENT_INPUTS | RETENTION_RELEASE_INPUTS)

    # =========================================================================
    # STEP NAVIGATION
    # =========================================================================

    def validate_current_step(self) -> bool:
        return step_validation_message(self.form, self.current_step) is None

    def go_to_next_step(self) -> int:
        """
        Advance one step.

        Raises StepValidationError when the current step's gate fails.
        Leaving step 2 recomputes the financial figures.
        """
        if self.current_step >= LAST_STEP:
            return self.current_step

        message = step_validation_message(self.form, self.current_step)
        if message:
            logger.info(f"[WIZARD] Step {self.current_step} blocked: {message}")
            raise StepValidationError(self.current_step, message)

        leaving = self.current_step
        self.current_step += 1
        if leaving == 2:
            self.calculate_financials()
        return self.current_step

    def go_to_previous_step(self) -> int:
        if self.current_step > FIRST_STEP:
            self.current_step -= 1
        return self.current_step

    # =========================================================================
    # UNSAVED CHANGES
    # =========================================================================

    def request_leave(self) -> bool:
        """True when the wizard may be left now; otherwise a confirm is pending."""
        if not self.has_unsaved_changes:
            return True
        self.leave_pending = True
        return False

    def confirm_leave(self, discard: bool) -> bool:
        """Resolve a pending leave: discard leaves, anything else stays."""
        self.leave_pending = False
        if discard:
            self.has_unsaved_changes = False
            logger.info("[WIZARD] Unsaved changes discarded")
            return True
        return False

    # =========================================================================
    # ASYNC LOADS
    # =========================================================================

    async def load_contracts(self, status: int = config.CONTRACT_LIST_STATUS) -> Optional[List[Contract]]:
        if not self._contract_list_guard.try_acquire():
            return None

        token = self._contract_list_requests.begin()
        self.loading_contracts = True
        try:
            contracts = await self.client.list_contracts(status)
        except ApiError as e:
            if not self._contract_list_requests.is_current(token):
                return None
            logger.error(f"[WIZARD] Failed to load contracts: {e.message}")
            raise
        finally:
            self._contract_list_guard.release()
            self.loading_contracts = False

        if not self._contract_list_requests.is_current(token):
            return None
        self.contracts = contracts
        return contracts

    async def select_contract(self, contract_id: int) -> Optional[IpcForm]:
        """
        Pick a contract and load the initial certificate data for it.
        On failure the selection and the form are reset.
        """
        contract = next((c for c in self.contracts if c.id == contract_id), None)
        if contract is None:
            logger.warning(f"[WIZARD] Contract {contract_id} is not in the loaded list")
            return None

        self.selected_contract = contract
        token = self._form_requests.begin()
        self.loading = True
        try:
            data = await self.client.get_contract_data_for_new_ipc(contract_id)
        except ApiError as e:
            if not self._form_requests.is_current(token):
                return None
            logger.error(f"[WIZARD] Failed to load contract {contract_id}: {e.message}")
            self.loading = False
            self.reset()
            raise
        finally:
            # a superseded load leaves the flag to the newer one
            if self._form_requests.is_current(token):
                self.loading = False

        if not self._form_requests.is_current(token):
            return None

        # Fields the backend sent override the current form; the rest are kept
        fetched = {
            name: getattr(data, name)
            for name in data.model_fields_set
            if name in IpcForm.model_fields
        }
        fetched["contracts_dataset_id"] = contract_id
        self._load_form(self.form.model_copy(update=fetched))
        self.has_unsaved_changes = True
        return self.form

    async def load_ipc_for_edit(self, ipc_id: int) -> Optional[IpcForm]:
        """Open a saved certificate; edit mode starts at step 2 with a clean state."""
        if not isinstance(ipc_id, int) or isinstance(ipc_id, bool) or ipc_id <= 0:
            raise WizardError(f"Invalid IPC id: {ipc_id!r}")

        token = self._form_requests.begin()
        self.loading = True
        try:
            data = await self.client.open_ipc(ipc_id)
        except ApiError as e:
            if not self._form_requests.is_current(token):
                return None
            logger.error(f"[WIZARD] Failed to load IPC {ipc_id}: {e.message}")
            raise
        finally:
            if self._form_requests.is_current(token):
                self.loading = False

        if not self._form_requests.is_current(token):
            return None

        self._own_advance_payment_amount = data.advance_payment_amount
        self._own_retention_release_amount = data.retention_release_amount
        self._load_form(data.model_copy(update={
            "from_date": _date_only(data.from_date),
            "to_date": _date_only(data.to_date),
            "date_ipc": _date_only(data.date_ipc),
        }))
        self.selected_contract = next(
            (c for c in self.contracts if c.id == self.form.contracts_dataset_id), None
        )
        self.current_step = EDIT_ENTRY_STEP
        self.has_unsaved_changes = False
        logger.info(f"[WIZARD] Opened IPC {ipc_id} for edit")
        return self.form

    async def submit(self):
        """Save the certificate (create when id is 0, update otherwise)."""
        if not self._save_guard.try_acquire():
            return None

        token = self._save_requests.begin()
        self.loading = True
        try:
            result = await self.client.save_ipc(self.form)
        except ApiError as e:
            logger.error(f"[WIZARD] Failed to save IPC: {e.message}")
            raise
        finally:
            self._save_guard.release()
            self.loading = False

        if not self._save_requests.is_current(token):
            return None
        self.has_unsaved_changes = False
        logger.info(f"[WIZARD] IPC {'updated' if self.is_edit_mode else 'created'}")
        return result

    def close(self) -> None:
        """The wizard is gone: responses still in flight are ignored."""
        self.loading = False
        self.loading_contracts = False
        self._contract_list_requests.close()
        self._form_requests.close()
        self._save_requests.close()

    # =========================================================================
    # FINANCIALS
    # =========================================================================

    @property
    def financial_summary(self) -> IpcFinancialSummary:
        return summarize(self.form)

    def calculate_financials(self) -> IpcFinancialSummary:
        summary = summarize(self.form)
        self.set_form_data(
            advance_payment=summary.advance_recovery,
            retention_amount=summary.retention_amount,
        )
        return summary

    def advance_payment_ledger(self) -> AdvancePaymentLedger:
        form = self.form
        return compute_advance_payment(
            buildings=form.buildings,
            vos=form.vos,
            selection=form.advance_payment_selection,
            eligible_percent=form.advance_payment_eligible,
            stored_cumulative=form.advance_payment_amount_cumul,
            own_stored_amount=self._own_advance_payment_amount,
            user_percent=form.advance_payment_percentage,
            editing=form.is_edit,
        )

    def retention_release_ledger(self) -> RetentionReleaseLedger:
        form = self.form
        return compute_retention_release(
            total_held=form.retention_amount_cumul,
            stored_cumulative=form.retention_release_cumul,
            own_stored_amount=self._own_retention_release_amount,
            user_percent=form.retention_release_percentage,
            editing=form.is_edit,
        )

    def _resync_ledgers(self, changed: set) -> None:
        # The stored this-period amount always equals what the ledger displays
        if self.form.type == IpcType.ADVANCE_PAYMENT.value and changed & ADVANCE_PAYMENT_INPUTS:
            amount = self.advance_payment_ledger().this_period_amount
            self.form = self.form.model_copy(update={"advance_payment_amount": amount})
        if self.form.type == IpcType.RETENTION.value and changed & RETENTION_RELEASE_INPUTS:
            amount = self.retention_release_ledger().this_period_amount
            self.form = self.form.model_copy(update={"retention_release_amount": amount})

    # =========================================================================
    # CONVENIENCE MUTATORS
    # =========================================================================

    def _commit_progress(self, entry: str, value, apply: Callable) -> EditResult:
        commit = PROGRESS_ENTRY[entry]
        warnings = []

        def update(boq: BoqItem) -> BoqItem:
            result = commit(boq, value)
            if result.warning:
                warnings.append(result.warning)
            return result.value

        return EditResult(apply(update), warnings[0] if warnings else None)

    def update_boq_progress(self, building_id: int, boq_id: int, value, entry: str = "actual") -> EditResult:
        """Commit progress on a contract BOQ line; entry is 'actual', 'cumulative' or 'percent'."""
        result = self._commit_progress(
            entry, value,
            lambda update: update_building_item(self.form.buildings, building_id, boq_id, update)
        )
        self.set_form_data(buildings=result.value)
        return result

    def update_vo_progress(self, vo_id: int, building_id: int, boq_id: int, value, entry: str = "actual") -> EditResult:
        result = self._commit_progress(
            entry, value,
            lambda update: update_vo_item(self.form.vos, vo_id, building_id, boq_id, update)
        )
        self.set_form_data(vos=result.value)
        return result

    def update_material_percent(self, building_id: int, boq_id: int, percent) -> EditResult:
        warnings = []

        def update(boq: BoqItem) -> BoqItem:
            result = set_material_percent(boq, percent, self.form.material_supply)
            if result.warning:
                warnings.append(result.warning)
            return result.value

        buildings = update_building_item(self.form.buildings, building_id, boq_id, update)
        self.set_form_data(buildings=buildings)
        return EditResult(buildings, warnings[0] if warnings else None)

    def update_deduction_percent(self, kind: DeductionKind, item_id: int, percent) -> list:
        kind = DeductionKind(kind)
        attribute = DEDUCTION_COLLECTIONS[kind]
        items = [
            set_cumulative_deduction_percent(item, kind, percent) if item.id == item_id else item
            for item in getattr(self.form, attribute)
        ]
        self.set_form_data(**{attribute: items})
        return items

    def set_advance_payment_selection(self, selection: AdvancePaymentSelection) -> AdvancePaymentLedger:
        if selection not in ("all", "boq"):
            selection = [int(vo_id) for vo_id in selection]
        self.set_form_data(advance_payment_selection=selection)
        return self.advance_payment_ledger()

    def set_advance_payment_percent(self, percent) -> AdvancePaymentLedger:
        self.set_form_data(advance_payment_percentage=to_float(clamp_percentage(percent)))
        return self.advance_payment_ledger()

    def set_retention_release_percent(self, percent) -> RetentionReleaseLedger:
        self.set_form_data(retention_release_percentage=to_float(clamp_percentage(percent)))
        return self.retention_release_ledger()

    def set_penalty(self, amount, reason: Optional[str] = None) -> EditResult:
        value = to_decimal(amount)
        warning = None
        if value < ZERO:
            warning = "Penalty cannot be negative"
            logger.warning(f"[WIZARD] {warning}")
            value = ZERO
        changes = {"penalty": to_float(value)}
        if reason is not None:
            changes["penalty_reason"] = reason
        self.set_form_data(**changes)
        return EditResult(self.form.penalty, warning)
