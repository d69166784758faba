"""
IPC financial summary tests
"""
import pytest

from ipc_ledger.core.boq_progress import from_actual_quantity
from ipc_ledger.core.ipc_summary import summarize
from ipc_ledger.models import ContractBuilding, IpcForm, IpcType, LaborItem


@pytest.fixture
def interim_form(make_boq, variation_orders):
    """gross 350 = 300 contract + 100 addition - 50 omission"""
    addition, omission = variation_orders
    addition.buildings[0].boqs[0] = from_actual_quantity(addition.buildings[0].boqs[0], 1)
    omission.buildings[0].boqs[0] = from_actual_quantity(omission.buildings[0].boqs[0], 0.5)
    return IpcForm(
        id=0,
        contracts_dataset_id=12,
        type=IpcType.INTERIM.value,
        buildings=[ContractBuilding(id=10, boqs_contract=[from_actual_quantity(make_boq(), 30)])],
        vos=[addition, omission],
        labors=[LaborItem(id=1, quantity=10, unit_price=50, precedent_amount=100, deduction=30)],
        retention_percentage=10,
        advance_payment_percentage=5,
        penalty=20,
    )


class TestSummarize:
    """Gross to net for progress certificates"""

    def test_interim_net_payable(self, interim_form):
        summary = summarize(interim_form)
        assert summary.contract_amount == 300
        assert summary.vo_amount == 50
        assert summary.gross_amount == 350
        assert summary.retention_amount == 35
        assert summary.advance_recovery == 17.5
        assert summary.deductions == 50
        assert summary.penalty == 20
        assert summary.net_payable == pytest.approx(350 - 35 - 17.5 - 50 - 20)

    def test_empty_form(self):
        summary = summarize(IpcForm())
        assert summary.gross_amount == 0
        assert summary.net_payable == 0

    def test_advance_payment_certificate_pays_ledger_amount(self, interim_form):
        form = interim_form.model_copy(update={
            "type": IpcType.ADVANCE_PAYMENT.value, "advance_payment_amount": 1200,
        })
        assert summarize(form).net_payable == 1200

    def test_retention_certificate_pays_release_amount(self, interim_form):
        form = interim_form.model_copy(update={
            "type": IpcType.RETENTION.value, "retention_release_amount": 800,
        })
        assert summarize(form).net_payable == 800
