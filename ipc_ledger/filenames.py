"""
Document filenames following the desktop system's naming:

    IPC:      {Subcontractor}-{Contract}-IPC#{Number:000}.{ext}
    IPC zip:  {Subcontractor}-{Contract}-IPC#{Number:000}_Documents.zip
    Contract: {Contract}.{ext}
    VO:       {Contract}-{VoNumber}.{ext}
"""

from typing import Optional
import re

from ipc_ledger.models import IpcForm

INVALID_FILENAME_CHARS = re.compile(r'[/\\:*?"<>|]')
WHITESPACE = re.compile(r'\s+')
MAX_FILENAME_LENGTH = 200

IPC_EXTENSIONS = ("xlsx", "pdf", "zip")


def sanitize_filename(name: str) -> str:
    name = INVALID_FILENAME_CHARS.sub("-", name or "")
    name = WHITESPACE.sub(" ", name).strip()
    return name[:MAX_FILENAME_LENGTH]


def ipc_filename(
    form: IpcForm,
    extension: str,
    subcontractor_name: Optional[str] = None,
    contract_number: Optional[str] = None
) -> str:
    if extension not in IPC_EXTENSIONS:
        raise ValueError(f"Unsupported IPC document extension: {extension!r}")
    subcontractor = subcontractor_name or form.subcontractor_name or "Unknown"
    contract = contract_number or form.contract or "Unknown"
    base = f"{subcontractor}-{contract}-IPC#{form.number or 0:03d}"
    return f"{sanitize_filename(base)}.{extension}"


def ipc_zip_filename(form: IpcForm, **names) -> str:
    filename = ipc_filename(form, "zip", **names)
    return filename[:-len(".zip")] + "_Documents.zip"


def contract_filename(contract_number: str, extension: str = "docx") -> str:
    return f"{sanitize_filename(contract_number)}.{extension}"


def vo_filename(contract_number: str, vo_number: str, extension: str = "docx") -> str:
    return f"{sanitize_filename(f'{contract_number}-{vo_number}')}.{extension}"
