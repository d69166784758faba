"""
Shared fixtures for the IPC ledger tests.
Backend calls go through httpx.MockTransport; nothing touches the network.
"""
import asyncio
import pytest
import httpx

from ipc_ledger.api_client import IpcApiClient
from ipc_ledger.auth import TokenProvider
from ipc_ledger.core.boq_progress import recalculate_item
from ipc_ledger.models import BoqItem, ContractBuilding, VariationOrder, VoBuilding

BASE_URL = "http://ipc-backend.test/"
TEST_TOKEN = "test-token"


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def make_boq():
    """Factory for a recalculated BOQ line"""
    def _make(id=1, no="1.1", key="Concrete C30", qte=100.0, unit_price=10.0,
              preced_qte=20.0, actual_qte=0.0, **extra):
        return recalculate_item(BoqItem(
            id=id, no=no, key=key, unite="m3", qte=qte, unit_price=unit_price,
            preced_qte=preced_qte, actual_qte=actual_qte, **extra
        ))
    return _make


@pytest.fixture
def boq_item(make_boq):
    """qte 100 @ 10, 20 carried forward"""
    return make_boq()


@pytest.fixture
def building(make_boq):
    return ContractBuilding(
        id=10,
        building_name="Block A",
        boqs_contract=[
            make_boq(id=0, no="1", key="SUBSTRUCTURE", qte=0, unit_price=0, preced_qte=0),
            make_boq(id=1, no="1.1", key="Excavation", qte=100, unit_price=10, preced_qte=20),
            make_boq(id=2, no="1.2", key="Concrete C30", qte=50, unit_price=200, preced_qte=0),
        ],
    )


@pytest.fixture
def variation_orders(make_boq):
    return [
        VariationOrder(id=1, vo_number="VO-001", type="Addition", buildings=[
            VoBuilding(id=10, building_name="Block A", boqs=[
                make_boq(id=101, no="V1", key="Extra slab", qte=20, unit_price=100, preced_qte=0),
            ]),
        ]),
        VariationOrder(id=2, vo_number="VO-002", type="Omission", buildings=[
            VoBuilding(id=10, building_name="Block A", boqs=[
                make_boq(id=201, no="V2", key="Removed wall", qte=5, unit_price=100, preced_qte=0),
            ]),
        ]),
    ]


@pytest.fixture
def api_client_factory():
    """Build an IpcApiClient whose requests are answered by `handler`"""
    def _factory(handler, token=TEST_TOKEN):
        return IpcApiClient(
            TokenProvider.static(token),
            base_url=BASE_URL,
            transport=httpx.MockTransport(handler),
        )
    return _factory


def envelope(value=None, error=None):
    """Backend Result<T> envelope"""
    if error:
        return {"isSuccess": False, "value": None, "error": {"message": error}}
    return {"isSuccess": True, "value": value, "error": None}
