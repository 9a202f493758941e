from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Sequence

import aiohttp

from ..types import ValidationError

MAX_FILE_SIZE = 50 * 1024 * 1024
MAX_TOTAL_SIZE = 100 * 1024 * 1024
UPLOAD_FIELD_NAME = "files"


@dataclass(frozen=True)
class UploadFile:
    data: bytes
    name: str
    content_type: str = "application/pdf"


def load_upload_files(paths: Iterable[Path]) -> List[UploadFile]:
    files: List[UploadFile] = []
    for path in paths:
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        files.append(UploadFile(data=path.read_bytes(), name=path.name, content_type=content_type))
    return files


def check_upload_sizes(files: Sequence[UploadFile]) -> None:
    """Reject oversized uploads before anything is sent."""
    errors = {}
    for f in files:
        if len(f.data) > MAX_FILE_SIZE:
            errors[f.name] = f"File exceeds {MAX_FILE_SIZE // (1024 * 1024)}MB limit"
    total = sum(len(f.data) for f in files)
    if total > MAX_TOTAL_SIZE:
        errors["files"] = f"Total upload exceeds {MAX_TOTAL_SIZE // (1024 * 1024)}MB limit"
    if not files:
        errors["files"] = "No files selected"
    if errors:
        raise ValidationError(errors)


def build_upload_form(files: Sequence[UploadFile]) -> aiohttp.FormData:
    form = aiohttp.FormData()
    for f in files:
        form.add_field(UPLOAD_FIELD_NAME, f.data, filename=f.name, content_type=f.content_type)
    return form

