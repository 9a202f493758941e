from __future__ import annotations

import json
from typing import Any, Dict

import aiohttp

from ..types import ApiError

SIGN_UP_PATH = "/auth/signup"
SIGN_IN_PATH = "/auth/signin"
REFRESH_PATH = "/auth/refresh"
FORGOT_PASSWORD_PATH = "/auth/forgot-password"
RESET_PASSWORD_PATH = "/auth/reset-password"
ME_PATH = "/me"

UPLOAD_MULTIPLE_PATH = "/upload-multiple"
DOCUMENTS_PATH = "/documents"

CHAT_SESSIONS_PATH = "/chat-sessions"

QUERY_PATH = "/query"
QUERY_STREAM_PATH = "/query-stream"

NOTES_PATH = "/notes"
NOTES_GENERATE_PATH = "/notes/generate"

FLASHCARDS_PATH = "/flashcards"
FLASHCARDS_STREAM_PATH = "/flashcards/generate-stream"

QUIZZES_PATH = "/quizzes"
QUIZZES_STREAM_PATH = "/quizzes/generate-stream"
QUIZ_ATTEMPTS_PATH = "/quiz-attempts"

STATS_PATH = "/stats"
ADMIN_STATS_PATH = "/admin/stats"
HEALTH_PATH = "/health"

SSE_HEADERS = {
    "Accept": "text/event-stream",
    "Cache-Control": "no-cache",
}

DEFAULT_ERROR_DETAIL = "An error occurred"


def document_path(document_id: str) -> str:
    return f"{DOCUMENTS_PATH}/{document_id}"


def document_view_path(document_id: str) -> str:
    return f"{DOCUMENTS_PATH}/{document_id}/view"


def chat_session_path(session_id: str, *suffix: str) -> str:
    return "/".join([CHAT_SESSIONS_PATH, session_id, *suffix])


def note_path(note_id: str, *suffix: str) -> str:
    return "/".join([NOTES_PATH, note_id, *suffix])


def quiz_path(quiz_id: str, *suffix: str) -> str:
    return "/".join([QUIZZES_PATH, quiz_id, *suffix])


def quiz_attempt_path(attempt_id: str, *suffix: str) -> str:
    return "/".join([QUIZ_ATTEMPTS_PATH, attempt_id, *suffix])


def _detail_from_body(body: Any) -> str:
    if isinstance(body, dict):
        detail = body.get("detail")
        if isinstance(detail, str) and detail:
            return detail
        if isinstance(detail, list) and detail:
            # Validation errors arrive as a list of {loc, msg, ...} objects.
            messages = [str(item.get("msg", item)) if isinstance(item, dict) else str(item) for item in detail]
            return "; ".join(messages)
    return ""


async def raise_for_api_status(resp: aiohttp.ClientResponse) -> None:
    if 200 <= resp.status < 300:
        return
    raw = await resp.text()
    try:
        body = json.loads(raw)
    except ValueError:
        body = {"detail": DEFAULT_ERROR_DETAIL}
    detail = _detail_from_body(body) or f"HTTP error! status: {resp.status}"
    raise ApiError(detail, status=resp.status)


async def read_json(resp: aiohttp.ClientResponse) -> Any:
    """Raise ApiError for non-2xx responses, otherwise decode the JSON body."""
    await raise_for_api_status(resp)
    raw = await resp.text()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError as e:
        raise ApiError(f"Invalid JSON response: {raw[:300]}", status=resp.status) from e


def compact(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in payload.items() if v is not None}
