from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

JSONDict = Dict[str, Any]
DeltaCallback = Callable[[str], None]
ProgressCallback = Callable[[JSONDict], None]


@dataclass(frozen=True)
class UserProfile:
    id: str
    email: str
    username: str
    created_at: str = ""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    last_sign_in_at: Optional[str] = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    _FIELDS = (
        "id",
        "email",
        "username",
        "created_at",
        "first_name",
        "last_name",
        "profile_image_url",
        "last_sign_in_at",
    )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UserProfile":
        if not isinstance(data, Mapping):
            raise ValueError("user record must be a JSON object")
        for required in ("id", "email", "username"):
            if required not in data:
                raise ValueError(f"user record missing {required!r}")
        known = {k: data.get(k) for k in cls._FIELDS if k in data}
        known["id"] = str(known["id"])
        known["created_at"] = known.get("created_at") or ""
        extra = {k: v for k, v in data.items() if k not in cls._FIELDS}
        return cls(**known, extra=extra)

    def to_dict(self) -> JSONDict:
        out: JSONDict = dict(self.extra)
        for name in self._FIELDS:
            value = getattr(self, name)
            if value is not None:
                out[name] = value
        return out


@dataclass(frozen=True)
class AuthResponse:
    access_token: str
    refresh_token: str
    user: UserProfile
    token_type: str = "bearer"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AuthResponse":
        access_token = data.get("access_token")
        refresh_token = data.get("refresh_token")
        if not access_token or not refresh_token:
            raise ValueError("auth response missing tokens")
        return cls(
            access_token=str(access_token),
            refresh_token=str(refresh_token),
            user=UserProfile.from_dict(data.get("user") or {}),
            token_type=str(data.get("token_type") or "bearer"),
        )


@dataclass
class StreamResult:
    full_text: str = ""
    metadata: JSONDict = field(default_factory=dict)
    completed: bool = False


@dataclass(frozen=True)
class QueryResponse:
    answer: str
    session_id: Optional[str]
    session_name: str = ""
    is_new_session: bool = False
    message_count: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QueryResponse":
        return cls(
            answer=str(data.get("answer") or ""),
            session_id=data.get("session_id"),
            session_name=str(data.get("session_name") or ""),
            is_new_session=bool(data.get("is_new_session", False)),
            message_count=int(data.get("message_count") or 0),
        )


class StudyMateError(RuntimeError):
    pass


class ApiError(StudyMateError):
    def __init__(self, message: str, *, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class AuthenticationError(StudyMateError):
    pass


class SessionExpiredError(AuthenticationError):
    pass


class StreamError(StudyMateError):
    def __init__(self, message: str, *, payload: Optional[JSONDict] = None):
        super().__init__(message)
        self.payload = payload or {}


class ValidationError(StudyMateError):
    def __init__(self, errors: Mapping[str, str]):
        self.errors = dict(errors)
        super().__init__("; ".join(f"{k}: {v}" for k, v in self.errors.items()))
