from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Union, Literal, Any
from datetime import date, datetime
from enum import Enum, IntEnum


class LedgerModel(BaseModel):
    """Base for backend DTOs: camelCase aliases, nulls fall back to defaults."""

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    def to_payload(self) -> dict:
        """Serialize for the backend (camelCase keys, JSON-safe values)."""
        return self.model_dump(by_alias=True, mode="json")

    class Config:
        populate_by_name = True
        extra = "allow"


# ============================================
# ENUMS
# ============================================
class IpcType(str, Enum):
    INTERIM = "Provisoire / Interim"
    FINAL = "Final / Final"
    RETENTION = "Rg / Retention"
    ADVANCE_PAYMENT = "Avance / Advance Payment"


class VoType(str, Enum):
    ADDITION = "Addition"
    OMISSION = "Omission"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.strip().lower():
                    return member
        return None

    @property
    def sign(self) -> int:
        return -1 if self is VoType.OMISSION else 1


class CorrectionEntityType(IntEnum):
    """Maps to the backend CorrectionEntityType enum."""
    CONTRACT_BOQ_ITEM = 0
    CONTRACT_VO = 1
    LABOR = 2
    MACHINE = 3
    MATERIAL = 4


class CorrectionField(str, Enum):
    PRECED_QTE = "PrecedQte"
    CUMUL_QTE = "CumulQte"
    PRECEDENT_AMOUNT = "PrecedentAmount"


class DeductionKind(str, Enum):
    LABOR = "labor"
    MACHINE = "machine"
    MATERIAL = "material"


# ============================================
# BOQ LINE ITEMS
# ============================================
class BoqItem(LedgerModel):
    """
    One bill-of-quantities row, for a contract building or a VO building.

    `preced_qte` is the baseline from prior periods; `actual_qte` is this
    period's input. Every other amount/percent field is derived and
    recomputed by core.boq_progress.
    """
    id: int = 0
    no: Optional[str] = None
    key: Optional[str] = None
    unite: Optional[str] = None
    qte: float = 0.0
    unit_price: float = Field(default=0.0, alias="unitPrice")
    order_boq: int = Field(default=0, alias="orderBoq")
    preced_qte: float = Field(default=0.0, alias="precedQte")
    actual_qte: float = Field(default=0.0, alias="actualQte")
    cumul_qte: float = Field(default=0.0, alias="cumulQte")

    # Derived
    total_amount: float = Field(default=0.0, alias="totalAmount")
    preced_amount: float = Field(default=0.0, alias="precedAmount")
    actual_amount: float = Field(default=0.0, alias="actualAmount")
    cumul_amount: float = Field(default=0.0, alias="cumulAmount")
    cumul_percent: float = Field(default=0.0, alias="cumulPercent")

    # Material supply & deduction tracking
    material_percent: float = Field(default=0.0, alias="materialPercent")
    material_value: float = Field(default=0.0, alias="materialValue")
    deduction_percent: float = Field(default=0.0, alias="deductionPercent")
    deduction_value: float = Field(default=0.0, alias="deductionValue")

    @property
    def is_header_row(self) -> bool:
        """Section/header rows carry no quantity and no price."""
        return self.qte == 0 and self.unit_price == 0


class ContractBuilding(LedgerModel):
    id: int = 0
    building_name: str = Field(default="", alias="buildingName")
    sheet_id: Optional[int] = Field(default=None, alias="sheetId")
    sheet_name: Optional[str] = Field(default=None, alias="sheetName")
    boqs_contract: List[BoqItem] = Field(default_factory=list, alias="boqsContract")


class VoBuilding(LedgerModel):
    id: int = 0
    building_name: str = Field(default="", alias="buildingName")
    boqs: List[BoqItem] = Field(default_factory=list)


class VariationOrder(LedgerModel):
    id: int = 0
    vo_number: str = Field(default="", alias="voNumber")
    type: VoType = VoType.ADDITION
    buildings: List[VoBuilding] = Field(default_factory=list)


# ============================================
# DEDUCTION LINE ITEMS
# ============================================
class DeductionItem(LedgerModel):
    """
    Shared shape of labor, machine and material deductions.

    `precedent_amount` is the amount actually deducted to date and is
    authoritative. `deduction` is the user-editable cumulative percent.
    """
    id: int = 0
    unit: Optional[str] = None
    deduction: float = 0.0
    precedent_amount: float = Field(default=0.0, alias="precedentAmount")
    precedent_amount_old: float = Field(default=0.0, alias="precedentAmountOld")

    # Derived
    consumed_amount: float = Field(default=0.0, alias="consumedAmount")
    previous_deduction: float = Field(default=0.0, alias="previousDeduction")
    actual_deduction: float = Field(default=0.0, alias="actualDeduction")
    previous_amount: float = Field(default=0.0, alias="previousAmount")
    actual_amount: float = Field(default=0.0, alias="actualAmount")
    cumul_amount: float = Field(default=0.0, alias="cumulAmount")


class LaborItem(DeductionItem):
    ref: Optional[str] = None
    activity_description: Optional[str] = Field(default=None, alias="activityDescription")
    labor_type: Optional[str] = Field(default=None, alias="laborType")
    unit_price: float = Field(default=0.0, alias="unitPrice")
    quantity: float = 0.0
    amount: float = 0.0


class MachineItem(DeductionItem):
    ref: Optional[str] = None
    machine_acronym: Optional[str] = Field(default=None, alias="machineAcronym")
    machine_type: Optional[str] = Field(default=None, alias="machineType")
    unit_price: float = Field(default=0.0, alias="unitPrice")
    quantity: float = 0.0
    amount: float = 0.0


class MaterialItem(DeductionItem):
    bc: Optional[str] = None
    designation: Optional[str] = None
    allocated: float = 0.0
    quantity: float = 0.0  # ordered quantity
    sale_unit: float = Field(default=0.0, alias="saleUnit")
    stock_qte: float = Field(default=0.0, alias="stockQte")
    transfered_qte: float = Field(default=0.0, alias="transferedQte")
    livree: float = 0.0  # delivered quantity
    total_sale: float = Field(default=0.0, alias="totalSale")


# ============================================
# CONTRACTS
# ============================================
class Contract(LedgerModel):
    id: int
    contract_number: str = Field(default="", alias="contractNumber")
    project_name: str = Field(default="Unknown Project", alias="projectName")
    subcontractor_name: str = Field(default="Unknown Subcontractor", alias="subcontractorName")
    trade_name: str = Field(default="Unknown Trade", alias="tradeName")
    total_amount: float = Field(default=0.0, alias="totalAmount")
    status: str = "Active"
    buildings: List[ContractBuilding] = Field(default_factory=list)

    @classmethod
    def from_api(cls, raw: dict) -> "Contract":
        """Normalize the contracts-dataset list entry (nested or flat names)."""
        project = raw.get("project") or {}
        subcontractor = raw.get("subcontractor") or {}
        trade = raw.get("trade") or {}
        return cls(
            id=raw["id"],
            contract_number=raw.get("contractNumber") or f"Contract #{raw['id']}",
            project_name=project.get("name") or raw.get("projectName") or "Unknown Project",
            subcontractor_name=(
                subcontractor.get("companyName")
                or raw.get("subcontractorName")
                or "Unknown Subcontractor"
            ),
            trade_name=trade.get("name") or raw.get("tradeName") or "Unknown Trade",
            total_amount=raw.get("amount") or 0,
            status=str(raw.get("status") or "Active"),
        )


# ============================================
# IPC FORM STATE
# ============================================
AdvancePaymentSelection = Union[Literal["all", "boq"], List[int]]


class IpcSummaryData(LedgerModel):
    amount: float = 0.0
    previous_paid: float = Field(default=0.0, alias="previousPaid")
    remaining: float = 0.0


class IpcForm(LedgerModel):
    """The aggregate document edited by the IPC wizard and saved as a whole."""
    id: int = 0
    contracts_dataset_id: int = Field(default=0, alias="contractsDatasetId")
    number: int = 0
    status: Optional[str] = None
    type: str = ""
    contract: Optional[str] = None
    subcontractor_name: Optional[str] = Field(default=None, alias="subcontractorName")
    date_ipc: str = Field(default="", alias="dateIpc")
    from_date: str = Field(default="", alias="fromDate")
    to_date: str = Field(default="", alias="toDate")
    previous_ipc_to_date: Optional[str] = Field(default=None, alias="previousIpcToDate")

    buildings: List[ContractBuilding] = Field(default_factory=list)
    vos: List[VariationOrder] = Field(default_factory=list)
    labors: List[LaborItem] = Field(default_factory=list)
    machines: List[MachineItem] = Field(default_factory=list)
    materials: List[MaterialItem] = Field(default_factory=list)

    # Penalties
    penalty: float = 0.0
    previous_penalty: float = Field(default=0.0, alias="previousPenalty")
    penalty_reason: Optional[str] = Field(default=None, alias="penaltyReason")

    # Contract percentages
    retention_percentage: float = Field(default=10.0, alias="retentionPercentage")
    advance_payment_percentage: float = Field(default=0.0, alias="advancePaymentPercentage")
    advance_payment_eligible: float = Field(default=0.0, alias="advancePaymentEligible")
    material_supply: float = Field(default=0.0, alias="materialSupply")

    # Advance payment / retention release ledger inputs
    advance_payment_selection: AdvancePaymentSelection = Field(default="all", alias="advancePaymentSelection")
    advance_payment_amount: float = Field(default=0.0, alias="advancePaymentAmount")
    advance_payment_amount_cumul: float = Field(default=0.0, alias="advancePaymentAmountCumul")
    retention_amount: float = Field(default=0.0, alias="retentionAmount")
    retention_amount_cumul: float = Field(default=0.0, alias="retentionAmountCumul")
    retention_release_percentage: float = Field(default=0.0, alias="retentionReleasePercentage")
    retention_release_amount: float = Field(default=0.0, alias="retentionReleaseAmount")
    retention_release_cumul: float = Field(default=0.0, alias="retentionReleaseCumul")
    advance_payment: float = Field(default=0.0, alias="advancePayment")

    ipc_summary_data: Optional[IpcSummaryData] = Field(default=None, alias="ipcSummaryData")
    remarks: Optional[str] = None

    @property
    def is_edit(self) -> bool:
        return self.id > 0


# ============================================
# PREVIOUS VALUE CORRECTIONS
# ============================================
class CorrectionRequest(LedgerModel):
    entity_type: CorrectionEntityType = Field(alias="entityType")
    entity_id: int = Field(alias="entityId")
    contract_dataset_id: int = Field(alias="contractDatasetId")
    field_name: CorrectionField = Field(alias="fieldName")
    new_value: float = Field(alias="newValue")
    reason: str


class RecalculatedValues(LedgerModel):
    preced_amount: Optional[float] = Field(default=None, alias="precedAmount")
    actual_qte: Optional[float] = Field(default=None, alias="actualQte")
    cumul_qte: Optional[float] = Field(default=None, alias="cumulQte")
    actual_amount: Optional[float] = Field(default=None, alias="actualAmount")
    previous_deduction: Optional[float] = Field(default=None, alias="previousDeduction")
    actual_deduction: Optional[float] = Field(default=None, alias="actualDeduction")


class CorrectionResult(LedgerModel):
    correction_id: int = Field(default=0, alias="correctionId")
    old_value: float = Field(default=0.0, alias="oldValue")
    new_value: float = Field(alias="newValue")
    field_name: str = Field(default="", alias="fieldName")
    corrected_at: Optional[datetime] = Field(default=None, alias="correctedAt")
    recalculated_values: Optional[RecalculatedValues] = Field(default=None, alias="recalculatedValues")


class CorrectionHistoryEntry(LedgerModel):
    id: int = 0
    entity_type: str = Field(default="", alias="entityType")
    entity_id: int = Field(default=0, alias="entityId")
    entity_description: str = Field(default="", alias="entityDescription")
    field_name: str = Field(default="", alias="fieldName")
    old_value: float = Field(default=0.0, alias="oldValue")
    new_value: float = Field(default=0.0, alias="newValue")
    reason: str = ""
    corrected_by_name: str = Field(default="", alias="correctedByName")
    corrected_at: Optional[datetime] = Field(default=None, alias="correctedAt")
    contract_dataset_id: int = Field(default=0, alias="contractDatasetId")


class CorrectionHistoryQuery(LedgerModel):
    contract_dataset_id: int = Field(alias="contractDatasetId")
    entity_type: Optional[CorrectionEntityType] = Field(default=None, alias="entityType")
    entity_id: Optional[int] = Field(default=None, alias="entityId")
    from_date: Optional[date] = Field(default=None, alias="fromDate")
    to_date: Optional[date] = Field(default=None, alias="toDate")
    limit: int = 100

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


# ============================================
# IPC LIST & APPROVAL WORKFLOW
# ============================================
class IpcListItem(LedgerModel):
    id: int
    contract: str = ""
    number: int = 0
    subcontractor_name: str = Field(default="", alias="subcontractorName")
    trade_name: str = Field(default="", alias="tradeName")
    project_name: str = Field(default="", alias="projectName")
    total_amount: float = Field(default=0.0, alias="totalAmount")
    status: str = ""
    type: Optional[str] = None
    retention: float = 0.0
    paid: float = 0.0
    contracts_dataset_id: int = Field(default=0, alias="contractsDatasetId")
    is_generated: bool = Field(default=False, alias="isGenerated")


class ApprovalAction(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    AUTO_APPROVED = "AutoApproved"
    REJECTED = "Rejected"


class IpcApprovalStep(LedgerModel):
    id: int = 0
    step_order: int = Field(default=0, alias="stepOrder")
    approver_role: str = Field(default="", alias="approverRole")
    role_name: Optional[str] = Field(default=None, alias="roleName")
    action: str = ApprovalAction.PENDING.value
    approver_name: Optional[str] = Field(default=None, alias="approverName")
    comment: Optional[str] = None
    action_date: Optional[datetime] = Field(default=None, alias="actionDate")

    @property
    def is_complete(self) -> bool:
        return self.action in (ApprovalAction.APPROVED.value, ApprovalAction.AUTO_APPROVED.value)


class IpcApprovalStatus(LedgerModel):
    """Approval chain of one certificate, in the order the roles sign it."""
    ipc_id: int = Field(default=0, alias="ipcId")
    current_status: str = Field(default="", alias="currentStatus")
    current_approval_step: Optional[str] = Field(default=None, alias="currentApprovalStep")
    generated_by_role: Optional[str] = Field(default=None, alias="generatedByRole")
    generated_by_user_id: Optional[str] = Field(default=None, alias="generatedByUserId")
    steps: List[IpcApprovalStep] = Field(default_factory=list)

    def ordered_steps(self, chain=()) -> List[IpcApprovalStep]:
        """Steps by order; with none recorded yet, the whole chain as pending."""
        if self.steps:
            return sorted(self.steps, key=lambda s: s.step_order)
        return [
            IpcApprovalStep(step_order=order, approver_role=role, role_name=role)
            for order, role in enumerate(chain, 1)
        ]

    def can_approve(self, role: Optional[str]) -> bool:
        return (
            self.current_status == "PendingApproval"
            and role is not None
            and role == self.current_approval_step
        )

    def progress_percent(self, chain=()) -> int:
        steps = self.ordered_steps(chain)
        if not steps:
            return 0
        return round(sum(1 for s in steps if s.is_complete) * 100 / len(steps))
