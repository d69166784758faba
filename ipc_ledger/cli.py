"""
ipc-ledger command line

    ipc-ledger list [--contract ID]
    ipc-ledger download IPC_ID --format pdf|xlsx|zip [--dir DIR]
    ipc-ledger export-boq IPC_ID [--output FILE]
    ipc-ledger history CONTRACT_ID [--limit N]

The bearer token is read from IPC_API_TOKEN; the backend URL from IPC_API_URL.
"""

from pathlib import Path
from typing import List, Optional
import argparse
import asyncio
import logging

import httpx

from ipc_ledger import config
from ipc_ledger.api_client import ApiError, IpcApiClient
from ipc_ledger.auth import AuthenticationError, TokenProvider
from ipc_ledger.correction_service import format_amount, format_history_entry
from ipc_ledger.filenames import ipc_filename, ipc_zip_filename
from ipc_ledger.logging_config import setup_logging
from ipc_ledger.models import CorrectionHistoryQuery
from ipc_ledger.spreadsheet import export_boq_progress

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ipc-ledger", description="Interim Payment Certificate ledger")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    commands = parser.add_subparsers(dest="command", required=True)

    listing = commands.add_parser("list", help="List certificates")
    listing.add_argument("--contract", type=int, help="Only certificates of this contract")

    download = commands.add_parser("download", help="Download certificate documents")
    download.add_argument("ipc_id", type=int)
    download.add_argument("--format", choices=("pdf", "xlsx", "zip"), default="pdf")
    download.add_argument("--dir", type=Path, default=Path("."))

    boq = commands.add_parser("export-boq", help="Write BOQ progress to a workbook")
    boq.add_argument("ipc_id", type=int)
    boq.add_argument("--output", type=Path)

    history = commands.add_parser("history", help="Show previous value corrections")
    history.add_argument("contract_id", type=int)
    history.add_argument("--limit", type=int, default=100)
    return parser


async def _list(client: IpcApiClient, args) -> List[str]:
    if args.contract:
        ipcs = await client.list_ipcs_by_contract(args.contract)
    else:
        ipcs = await client.list_ipcs()
    return [
        f"{ipc.id}\t{ipc.contract}\tIPC#{ipc.number:03d}\t{ipc.status}\t{format_amount(ipc.total_amount)}"
        for ipc in ipcs
    ]


async def _download(client: IpcApiClient, args) -> List[str]:
    form = await client.open_ipc(args.ipc_id)
    if args.format == "zip":
        data = await client.export_ipc_zip(args.ipc_id)
        filename = ipc_zip_filename(form)
    elif args.format == "xlsx":
        data = await client.export_ipc_excel(args.ipc_id)
        filename = ipc_filename(form, "xlsx")
    else:
        data = await client.export_ipc_pdf(args.ipc_id)
        filename = ipc_filename(form, "pdf")
    path = args.dir / filename
    path.write_bytes(data)
    logger.info(f"Saved IPC {args.ipc_id} to {path}")
    return [str(path)]


async def _export_boq(client: IpcApiClient, args) -> List[str]:
    form = await client.open_ipc(args.ipc_id)
    path = args.output or Path(ipc_filename(form, "xlsx").replace("IPC#", "BOQ-IPC#"))
    path.write_bytes(export_boq_progress(form.buildings))
    return [str(path)]


async def _history(client: IpcApiClient, args) -> List[str]:
    query = CorrectionHistoryQuery(contract_dataset_id=args.contract_id, limit=args.limit)
    lines = []
    for entry in await client.get_correction_history(query):
        row = format_history_entry(entry)
        lines.append(
            f"{row['corrected_at']}\t{row['entity_type']}\t{row['entity']}\t{row['field']}\t"
            f"{row['old_value']} -> {row['new_value']} ({row['difference']})\t"
            f"{row['corrected_by']}\t{row['reason']}"
        )
    return lines


COMMANDS = {
    "list": _list,
    "download": _download,
    "export-boq": _export_boq,
    "history": _history,
}


async def _run(args, transport: Optional[httpx.AsyncBaseTransport]) -> List[str]:
    provider = TokenProvider.static(config.API_TOKEN)
    async with IpcApiClient(provider, transport=transport) as client:
        return await COMMANDS[args.command](client, args)


def main(argv: Optional[List[str]] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> int:
    """Entry point of the `ipc-ledger` script; returns the process exit code."""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level.upper() if args.log_level else None)

    try:
        lines = asyncio.run(_run(args, transport))
    except (ApiError, AuthenticationError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1

    for line in lines:
        print(line)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
