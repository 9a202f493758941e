from __future__ import annotations

from typing import Any, Callable, List, Optional, Sequence

from ..storage import REMEMBERED_EMAIL_KEY
from ..types import (
    AuthResponse,
    DeltaCallback,
    JSONDict,
    ProgressCallback,
    QueryResponse,
    StreamError,
    StreamResult,
    UserProfile,
    ValidationError,
)
from ..validation import validate_email, validate_password_reset, validate_sign_in, validate_sign_up
from . import protocol
from .fetch import AuthenticatedFetcher
from .protocol import compact, raise_for_api_status, read_json
from .sse import TextDeltaStream
from .upload import UploadFile, build_upload_form, check_upload_sizes


QUIZ_DIFFICULTIES = ("easy", "medium", "hard")
NOTE_STYLES = ("short", "moderate", "descriptive")


class _APIGroup:
    def __init__(self, fetcher: AuthenticatedFetcher):
        self._fetch = fetcher

    @property
    def session(self):
        return self._fetch.session

    async def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        async with self._fetch.open(method, path, **kwargs) as resp:
            return await read_json(resp)

    async def _bytes(self, path: str) -> bytes:
        async with self._fetch.open("GET", path) as resp:
            await raise_for_api_status(resp)
            return await resp.read()

    async def _open_stream(
        self,
        path: str,
        payload: JSONDict,
        *,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TextDeltaStream:
        resp = await self._fetch.request("POST", path, json_body=payload, headers=protocol.SSE_HEADERS)
        try:
            await raise_for_api_status(resp)
        except BaseException:
            resp.release()
            raise
        return TextDeltaStream(resp.content.iter_any(), on_progress=on_progress, on_close=resp.release)

    async def _drain_stream(
        self,
        path: str,
        payload: JSONDict,
        *,
        on_delta: Optional[DeltaCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> StreamResult:
        stream = await self._open_stream(path, payload, on_progress=on_progress)
        async for delta in stream:
            if on_delta is not None:
                on_delta(delta)
        return stream.result


class AuthAPI(_APIGroup):
    async def _authenticate(self, path: str, body: JSONDict) -> AuthResponse:
        self.session.set_loading(True)
        try:
            payload = await self._json("POST", path, json_body=body, anonymous=True)
            auth = AuthResponse.from_dict(payload or {})
        finally:
            self.session.set_loading(False)
        self.session.set_auth(auth.user, auth.access_token, auth.refresh_token)
        return auth

    async def sign_up(
        self,
        *,
        email: str,
        password: str,
        username: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        profile_image_url: Optional[str] = None,
    ) -> AuthResponse:
        validate_sign_up(email, password, username)
        body = compact(
            {
                "email": email,
                "password": password,
                "username": username,
                "first_name": first_name,
                "last_name": last_name,
                "profile_image_url": profile_image_url,
            }
        )
        return await self._authenticate(protocol.SIGN_UP_PATH, body)

    async def sign_in(self, email: str, password: str, *, remember: bool = False) -> AuthResponse:
        validate_sign_in(email, password)
        auth = await self._authenticate(protocol.SIGN_IN_PATH, {"email": email, "password": password})
        if remember:
            self.session.store.set(REMEMBERED_EMAIL_KEY, email)
        else:
            self.session.store.remove(REMEMBERED_EMAIL_KEY)
        return auth

    def remembered_email(self) -> Optional[str]:
        return self.session.store.get(REMEMBERED_EMAIL_KEY)

    async def forgot_password(self, email: str) -> JSONDict:
        validate_email(email)
        return await self._json(
            "POST", protocol.FORGOT_PASSWORD_PATH, json_body={"email": email}, anonymous=True
        ) or {}

    async def reset_password(self, token: str, password: str, confirm_password: Optional[str] = None) -> JSONDict:
        if not token:
            raise ValidationError({"token": "Reset token is missing. Please request a new password reset link."})
        validate_password_reset(password, password if confirm_password is None else confirm_password)
        return await self._json(
            "POST",
            protocol.RESET_PASSWORD_PATH,
            json_body={"token": token, "new_password": password},
            anonymous=True,
        ) or {}

    async def get_current_user(self) -> UserProfile:
        user = UserProfile.from_dict(await self._json("GET", protocol.ME_PATH) or {})
        if self.session.is_authenticated:
            self.session.set_user(user)
        return user

    async def update_profile(self, **fields: Any) -> UserProfile:
        user = UserProfile.from_dict(await self._json("PUT", protocol.ME_PATH, json_body=compact(fields)) or {})
        self.session.set_user(user)
        return user


class DocumentsAPI(_APIGroup):
    async def upload(self, files: Sequence[UploadFile]) -> List[JSONDict]:
        check_upload_sizes(files)
        # The form is rebuilt per attempt; a consumed FormData cannot be resent after a refresh.
        return await self._json(
            "POST",
            protocol.UPLOAD_MULTIPLE_PATH,
            data=lambda: build_upload_form(files),
        ) or []

    async def list(self) -> List[JSONDict]:
        return await self._json("GET", protocol.DOCUMENTS_PATH) or []

    async def delete(self, document_id: str) -> JSONDict:
        return await self._json("DELETE", protocol.document_path(document_id)) or {}

    async def download(self, document_id: str) -> bytes:
        return await self._bytes(protocol.document_view_path(document_id))


class ChatAPI(_APIGroup):
    async def create_session(
        self,
        session_name: str,
        *,
        document_ids: Sequence[str] = (),
        session_type: str = "conversation",
    ) -> JSONDict:
        body = {
            "session_name": session_name,
            "session_type": session_type,
            "document_ids": list(document_ids),
        }
        return await self._json("POST", protocol.CHAT_SESSIONS_PATH, json_body=body)

    async def list_sessions(self) -> List[JSONDict]:
        return await self._json("GET", protocol.CHAT_SESSIONS_PATH) or []

    async def rename_session(self, session_id: str, new_name: str) -> JSONDict:
        # The endpoint takes the bare name as a JSON string body.
        return await self._json("PUT", protocol.chat_session_path(session_id, "name"), json_body=new_name) or {}

    async def delete_session(self, session_id: str) -> JSONDict:
        return await self._json("DELETE", protocol.chat_session_path(session_id)) or {}

    async def get_messages(self, session_id: str, limit: int = 50) -> List[JSONDict]:
        return await self._json(
            "GET", protocol.chat_session_path(session_id, "messages"), params={"limit": limit}
        ) or []

    async def add_message(
        self,
        session_id: str,
        content: str,
        *,
        tokens_used: Optional[int] = None,
        source_documents: Optional[List[JSONDict]] = None,
        retrieval_query: Optional[str] = None,
    ) -> JSONDict:
        body = compact(
            {
                "content": content,
                "tokens_used": tokens_used,
                "source_documents": source_documents,
                "retrieval_query": retrieval_query,
            }
        )
        return await self._json("POST", protocol.chat_session_path(session_id, "messages"), json_body=body)


def query_response_from_stream(result: StreamResult, session_id: Optional[str]) -> QueryResponse:
    if result.completed:
        # The terminal frame is authoritative: its fields replace the defaults wholesale.
        fields = dict(result.metadata)
    else:
        fields = {"session_id": session_id}
    fields["answer"] = result.full_text
    return QueryResponse.from_dict(fields)


class QueryAPI(_APIGroup):
    async def query(
        self,
        question: str,
        *,
        session_id: Optional[str] = None,
        new_chat: Optional[bool] = None,
    ) -> QueryResponse:
        body = compact({"question": question, "session_id": session_id, "new_chat": new_chat})
        return QueryResponse.from_dict(await self._json("POST", protocol.QUERY_PATH, json_body=body) or {})

    async def query_with_chat_context(self, session_id: str, question: str) -> QueryResponse:
        payload = await self._json(
            "POST", protocol.chat_session_path(session_id, "query"), json_body={"question": question}
        )
        return QueryResponse.from_dict(payload or {})

    async def open_query_stream(
        self,
        question: str,
        *,
        session_id: Optional[str] = None,
        new_chat: Optional[bool] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TextDeltaStream:
        body = compact({"question": question, "session_id": session_id, "new_chat": new_chat})
        return await self._open_stream(protocol.QUERY_STREAM_PATH, body, on_progress=on_progress)

    async def query_stream(
        self,
        question: str,
        *,
        session_id: Optional[str] = None,
        new_chat: Optional[bool] = None,
        on_chunk: Optional[DeltaCallback] = None,
    ) -> QueryResponse:
        body = compact({"question": question, "session_id": session_id, "new_chat": new_chat})
        result = await self._drain_stream(protocol.QUERY_STREAM_PATH, body, on_delta=on_chunk)
        return query_response_from_stream(result, session_id)


class NotesAPI(_APIGroup):
    async def generate(
        self,
        document_ids: Sequence[str],
        *,
        note_style: str = "moderate",
        user_prompt: Optional[str] = None,
        title: Optional[str] = None,
    ) -> JSONDict:
        if not document_ids:
            raise ValidationError({"document_ids": "Please select at least one document"})
        if note_style not in NOTE_STYLES:
            raise ValidationError({"note_style": f"Note style must be one of {', '.join(NOTE_STYLES)}"})
        body = compact(
            {
                "document_ids": list(document_ids),
                "note_style": note_style,
                "user_prompt": user_prompt,
                "title": title,
            }
        )
        return await self._json("POST", protocol.NOTES_GENERATE_PATH, json_body=body)

    async def list(self, limit: int = 50, offset: int = 0) -> List[JSONDict]:
        return await self._json("GET", protocol.NOTES_PATH, params={"limit": limit, "offset": offset}) or []

    async def get(self, note_id: str) -> JSONDict:
        return await self._json("GET", protocol.note_path(note_id))

    async def ask(self, note_id: str, question: str) -> JSONDict:
        return await self._json("POST", protocol.note_path(note_id, "ask"), json_body={"question": question})

    async def download_markdown(self, note_id: str) -> bytes:
        return await self._bytes(protocol.note_path(note_id, "download", "markdown"))

    async def download_pdf(self, note_id: str) -> bytes:
        return await self._bytes(protocol.note_path(note_id, "download", "pdf"))

    async def delete(self, note_id: str) -> JSONDict:
        return await self._json("DELETE", protocol.note_path(note_id)) or {}


class FlashcardsAPI(_APIGroup):
    async def generate_stream(
        self,
        *,
        topic: Optional[str] = None,
        document_ids: Optional[Sequence[str]] = None,
        num_flashcards: int = 10,
        on_progress: Optional[Callable[[str, str], None]] = None,
    ) -> List[JSONDict]:
        if not topic and not document_ids:
            raise ValidationError({"topic": "Enter a topic or select at least one document"})
        body = compact(
            {
                "topic": topic or None,
                "document_ids": list(document_ids) if document_ids else None,
                "num_flashcards": num_flashcards,
            }
        )

        def _progress(payload: JSONDict) -> None:
            if on_progress is not None:
                on_progress(str(payload.get("status") or ""), str(payload.get("message") or ""))

        result = await self._drain_stream(protocol.FLASHCARDS_STREAM_PATH, body, on_progress=_progress)
        if not result.completed:
            raise StreamError("Flashcard generation ended before completing")
        return list(result.metadata.get("flashcards") or [])

    async def list(self) -> List[JSONDict]:
        return await self._json("GET", protocol.FLASHCARDS_PATH) or []


class QuizAPI(_APIGroup):
    async def generate_stream(
        self,
        document_ids: Sequence[str],
        *,
        num_questions: int = 10,
        time_limit_minutes: int = 30,
        difficulty: str = "medium",
        title: Optional[str] = None,
        on_event: Optional[ProgressCallback] = None,
    ) -> JSONDict:
        errors = {}
        if not document_ids:
            errors["document_ids"] = "Please select at least one document"
        if not 1 <= num_questions <= 50:
            errors["num_questions"] = "Number of questions must be between 1 and 50"
        if not 1 <= time_limit_minutes <= 180:
            errors["time_limit_minutes"] = "Time limit must be between 1 and 180 minutes"
        if difficulty not in QUIZ_DIFFICULTIES:
            errors["difficulty"] = f"Difficulty must be one of {', '.join(QUIZ_DIFFICULTIES)}"
        if errors:
            raise ValidationError(errors)

        body = compact(
            {
                "document_ids": list(document_ids),
                "num_questions": num_questions,
                "time_limit_minutes": time_limit_minutes,
                "difficulty": difficulty,
                "title": title or None,
            }
        )
        result = await self._drain_stream(protocol.QUIZZES_STREAM_PATH, body, on_progress=on_event)
        if not result.completed:
            raise StreamError("Quiz generation ended before completing")
        quiz = result.metadata.get("quiz")
        if isinstance(quiz, dict):
            return quiz
        if "quiz_id" in result.metadata:
            return await self.get(str(result.metadata["quiz_id"]))
        raise StreamError("Quiz generation finished without a quiz", payload=result.metadata)

    async def list(self) -> List[JSONDict]:
        return await self._json("GET", protocol.QUIZZES_PATH) or []

    async def get(self, quiz_id: str) -> JSONDict:
        return await self._json("GET", protocol.quiz_path(quiz_id))

    async def get_attempts(self, quiz_id: str) -> List[JSONDict]:
        return await self._json("GET", protocol.quiz_path(quiz_id, "attempts")) or []

    async def start_attempt(self, quiz_id: str) -> JSONDict:
        return await self._json("POST", protocol.quiz_path(quiz_id, "attempts"))

    async def get_attempt(self, attempt_id: str) -> JSONDict:
        return await self._json("GET", protocol.quiz_attempt_path(attempt_id))

    async def submit_answer(
        self,
        attempt_id: str,
        question_id: str,
        answer_index: int,
        time_spent_seconds: int = 0,
    ) -> JSONDict:
        body = {
            "question_id": question_id,
            "selected_answer": answer_index,
            "time_spent_seconds": time_spent_seconds,
        }
        return await self._json("POST", protocol.quiz_attempt_path(attempt_id, "answers"), json_body=body)

    async def complete_attempt(self, attempt_id: str, time_spent_seconds: int) -> JSONDict:
        return await self._json(
            "POST",
            protocol.quiz_attempt_path(attempt_id, "complete"),
            json_body={"time_spent_seconds": time_spent_seconds},
        )

    async def abandon_attempt(self, attempt_id: str) -> JSONDict:
        return await self._json("POST", protocol.quiz_attempt_path(attempt_id, "abandon")) or {}


class StatsAPI(_APIGroup):
    async def user_stats(self) -> JSONDict:
        return await self._json("GET", protocol.STATS_PATH)

    async def admin_stats(self) -> JSONDict:
        return await self._json("GET", protocol.ADMIN_STATS_PATH)


class HealthAPI(_APIGroup):
    async def check(self) -> JSONDict:
        return await self._json("GET", protocol.HEALTH_PATH, anonymous=True)
