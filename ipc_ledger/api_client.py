"""
IPC BACKEND API CLIENT

Thin async wrapper over the backend REST API. The backend owns
persistence, the correction audit log and PDF/Excel rendering; this
client only moves JSON and file bytes.

Failures raise ApiError carrying the server's message when one is
provided, otherwise a generic per-operation message.
"""

from typing import Any, Dict, List, Optional
import httpx
import logging

from ipc_ledger import config
from ipc_ledger.auth import TokenProvider
from ipc_ledger.models import (
    Contract, IpcForm, IpcSummaryData, IpcListItem, IpcApprovalStatus,
    CorrectionRequest, CorrectionResult,
    CorrectionHistoryQuery, CorrectionHistoryEntry,
)

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Raised when a backend call fails"""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class UnauthorizedError(ApiError):
    """Raised on HTTP 401; the caller must sign in again"""
    pass


def _error_message(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return payload.get("message") or payload.get("detail")


def unwrap_result(payload: Any, fallback: str) -> Any:
    """
    Unwrap the backend Result envelope: {isSuccess, value, error: {message}}.
    Bare payloads pass through unchanged.
    """
    if isinstance(payload, dict) and "isSuccess" in payload:
        if payload.get("isSuccess") and payload.get("value") is not None:
            return payload["value"]
        raise ApiError(_error_message(payload) or fallback)
    return payload


class IpcApiClient:
    """
    Async client for the IPC endpoints.

    Usage:
        async with IpcApiClient(TokenProvider.static(token)) as client:
            form = await client.open_ipc(42)
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str = config.API_URL,
        timeout: float = config.API_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.token_provider = token_provider
        self._client = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/api/",
            timeout=timeout,
            transport=transport
        )

    async def __aenter__(self) -> "IpcApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    async def _request(
        self,
        method: str,
        endpoint: str,
        fallback: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        binary: bool = False
    ) -> Any:
        headers = {"Authorization": f"Bearer {self.token_provider.get_token()}"}
        endpoint = endpoint.lstrip("/")

        try:
            response = await self._client.request(method, endpoint, json=json, params=params, headers=headers)
        except httpx.TimeoutException:
            logger.error(f"[API] {method} {endpoint} timed out")
            raise ApiError(f"{fallback}: request timed out")
        except httpx.HTTPError as e:
            logger.error(f"[API] {method} {endpoint} failed: {e}")
            raise ApiError(f"{fallback}: {e}")

        if response.status_code == 401:
            raise UnauthorizedError("Unauthorized. Please log in again.", status_code=401)

        if not response.is_success:
            try:
                message = _error_message(response.json())
            except ValueError:
                message = response.text or None
            message = message or f"HTTP error! status: {response.status_code}"
            logger.error(f"[API] {method} {endpoint} -> {response.status_code}: {message}")
            raise ApiError(message, status_code=response.status_code)

        if binary:
            return response.content
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            raise ApiError(f"{fallback}: invalid response format", status_code=response.status_code)

    # =========================================================================
    # CONTRACTS
    # =========================================================================

    async def list_contracts(self, status: int = config.CONTRACT_LIST_STATUS) -> List[Contract]:
        payload = await self._request(
            "GET", f"ContractsDatasets/GetContractsDatasetsList/{status}", "Failed to load contracts"
        )
        if isinstance(payload, dict) and isinstance(payload.get("data"), list):
            payload = payload["data"]
        if not isinstance(payload, list):
            return []
        return [Contract.from_api(raw) for raw in payload]

    # =========================================================================
    # IPC LIST
    # =========================================================================

    def _ipc_list(self, payload: Any, fallback: str) -> List[IpcListItem]:
        payload = unwrap_result(payload, fallback)
        if not isinstance(payload, list):
            raise ApiError(f"{fallback}: invalid response format")
        return [IpcListItem.model_validate(raw) for raw in payload]

    async def list_ipcs(self) -> List[IpcListItem]:
        fallback = "Failed to fetch IPCs list"
        return self._ipc_list(await self._request("GET", "Ipc/GetIpcsList", fallback), fallback)

    async def list_ipcs_by_contract(self, contracts_dataset_id: int) -> List[IpcListItem]:
        fallback = "Failed to fetch contract IPCs"
        payload = await self._request("GET", f"Ipc/GetIpcsByContract/{contracts_dataset_id}", fallback)
        return self._ipc_list(payload, fallback)

    # =========================================================================
    # IPC DOCUMENTS
    # =========================================================================

    async def get_contract_data_for_new_ipc(self, contracts_dataset_id: int) -> IpcForm:
        fallback = "Failed to load initial IPC data"
        payload = await self._request(
            "POST", "Ipc/GetContractDataForNewIpc", fallback,
            params={"ContractDataSetID": contracts_dataset_id}
        )
        return IpcForm.model_validate(unwrap_result(payload, fallback))

    async def open_ipc(self, ipc_id: int) -> IpcForm:
        fallback = "Failed to load IPC data for edit"
        payload = await self._request("GET", f"Ipc/OpenIpc/{ipc_id}", fallback)
        return IpcForm.model_validate(unwrap_result(payload, fallback))

    async def save_ipc(self, form: IpcForm) -> Any:
        fallback = "Failed to save IPC"
        payload = await self._request("POST", "Ipc/SaveIpc", fallback, json=form.to_payload())
        return unwrap_result(payload, fallback)

    async def get_ipc_summary_data(self, contracts_dataset_id: int) -> IpcSummaryData:
        fallback = "Failed to fetch IPC summary data"
        payload = await self._request("GET", f"Ipc/GetIpcSummaryData/{contracts_dataset_id}", fallback)
        return IpcSummaryData.model_validate(unwrap_result(payload, fallback))

    async def export_ipc_pdf(self, ipc_id: int) -> bytes:
        return await self._request("GET", f"Ipc/ExportIpcPdf/{ipc_id}", "Failed to export IPC PDF", binary=True)

    async def export_ipc_excel(self, ipc_id: int) -> bytes:
        return await self._request("GET", f"Ipc/ExportIpcExcel/{ipc_id}", "Failed to export IPC Excel", binary=True)

    async def export_ipc_zip(self, ipc_id: int) -> bytes:
        """All documents of a certificate in one archive."""
        return await self._request("GET", f"Ipc/ExportIpc/{ipc_id}", "Failed to export IPC ZIP", binary=True)

    async def live_preview_ipc_pdf(self, form: IpcForm) -> bytes:
        """Render the unsaved form as PDF."""
        return await self._request(
            "POST", "Ipc/LivePreviewIpcPdf", "Failed to preview IPC PDF",
            json=form.to_payload(), binary=True
        )

    async def live_preview_ipc_excel(self, form: IpcForm) -> bytes:
        return await self._request(
            "POST", "Ipc/LivePreviewIpcExcel", "Failed to preview IPC Excel",
            json=form.to_payload(), binary=True
        )

    async def delete_ipc(self, ipc_id: int) -> bool:
        fallback = "Failed to delete IPC"
        payload = await self._request("DELETE", f"Ipc/DeleteIpc/{ipc_id}", fallback)
        return bool(unwrap_result(payload, fallback))

    # =========================================================================
    # ISSUING & APPROVAL
    # =========================================================================

    async def generate_ipc(self, ipc_id: int) -> bool:
        """Issue the certificate documents; the IPC then enters approval."""
        fallback = "Failed to generate IPC"
        payload = await self._request("POST", f"Ipc/GenerateIpc/{ipc_id}", fallback)
        return bool(unwrap_result(payload, fallback))

    async def unissue_ipc(self, ipc_id: int, reason: str) -> str:
        """
        Revert an issued IPC to editable. The backend allows this only for
        the last IPC of a contract, and only once; a refusal comes back as a
        {code, message} body with status 200.
        """
        fallback = "Failed to un-issue IPC"
        payload = unwrap_result(
            await self._request("POST", f"Ipc/UnissueIpc/{ipc_id}", fallback, json={"reason": reason}),
            fallback
        )
        message = payload.get("message") if isinstance(payload, dict) else None
        if isinstance(payload, dict) and payload.get("code") and "successfully" not in (message or ""):
            logger.error(f"[API] Un-issue of IPC {ipc_id} refused: {payload['code']}")
            raise ApiError(message or fallback)
        return message or ""

    async def approve_ipc(self, ipc_id: int, comment: Optional[str] = None) -> str:
        fallback = "Failed to approve IPC"
        payload = await self._request("POST", f"Ipc/ApproveIpc/{ipc_id}", fallback, json={"comment": comment})
        payload = unwrap_result(payload, fallback)
        return payload.get("message", "") if isinstance(payload, dict) else ""

    async def reject_ipc(self, ipc_id: int, comment: Optional[str] = None) -> str:
        """Reject at the current approval step; the IPC returns to Editable."""
        fallback = "Failed to reject IPC"
        payload = await self._request("POST", f"Ipc/RejectIpc/{ipc_id}", fallback, json={"comment": comment})
        payload = unwrap_result(payload, fallback)
        return payload.get("message", "") if isinstance(payload, dict) else ""

    async def get_approval_status(self, ipc_id: int) -> IpcApprovalStatus:
        fallback = "Failed to fetch approval status"
        payload = await self._request("GET", f"Ipc/GetApprovalStatus/{ipc_id}", fallback)
        return IpcApprovalStatus.model_validate(unwrap_result(payload, fallback))

    # =========================================================================
    # PREVIOUS VALUE CORRECTIONS
    # =========================================================================

    async def correct_previous_value(self, request: CorrectionRequest) -> CorrectionResult:
        fallback = "Failed to correct previous value"
        payload = await self._request("POST", "Ipc/CorrectPreviousValue", fallback, json=request.to_payload())
        return CorrectionResult.model_validate(unwrap_result(payload, fallback))

    async def get_correction_history(self, query: CorrectionHistoryQuery) -> List[CorrectionHistoryEntry]:
        fallback = "Failed to fetch correction history"
        payload = await self._request("POST", "Ipc/GetCorrectionHistory", fallback, json=query.to_payload())
        entries = unwrap_result(payload, fallback)
        return [CorrectionHistoryEntry.model_validate(e) for e in entries or []]
