from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

PathLike = Union[str, Path]

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_STORAGE_PATH = Path.home() / ".studymate" / "storage.json"
SIGN_IN_PATH = "/auth/sign-in"

BASE_URL_ENV = "STUDYMATE_API_URL"
STORAGE_PATH_ENV = "STUDYMATE_STORAGE_PATH"


def normalize_base_url(address: str) -> str:
    trimmed = address.strip().rstrip("/")
    if not trimmed:
        return DEFAULT_BASE_URL
    if "://" not in trimmed:
        return f"http://{trimmed}"
    return trimmed


@dataclass(frozen=True)
class ClientConfig:
    base_url: str = DEFAULT_BASE_URL
    storage_path: Path = DEFAULT_STORAGE_PATH
    sign_in_path: str = SIGN_IN_PATH

    @classmethod
    def from_env(
        cls,
        *,
        base_url: Optional[str] = None,
        storage_path: Optional[PathLike] = None,
        dotenv_path: Optional[PathLike] = None,
    ) -> "ClientConfig":
        """Build a config from keyword overrides, then the environment, then defaults.

        A ``.env`` file is loaded first when present; variables already set in
        the process environment win over it.
        """
        load_dotenv(dotenv_path=dotenv_path, override=False)
        resolved_url = base_url or os.environ.get(BASE_URL_ENV) or DEFAULT_BASE_URL
        resolved_storage = storage_path or os.environ.get(STORAGE_PATH_ENV) or DEFAULT_STORAGE_PATH
        return cls(
            base_url=normalize_base_url(resolved_url),
            storage_path=Path(resolved_storage).expanduser(),
        )

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"
