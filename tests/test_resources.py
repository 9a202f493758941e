from __future__ import annotations

import json

import pytest

from studymate_client.api.client import StudyMateClient
from studymate_client.api.resources import query_response_from_stream
from studymate_client.api.upload import UploadFile
from studymate_client.session import SessionState
from studymate_client.types import ApiError, SessionExpiredError, StreamError, StreamResult, ValidationError


def sse_frame(payload):
    return f"data: {json.dumps(payload)}\n\n".encode("utf-8")


@pytest.fixture
def redirects():
    return []


@pytest.fixture
async def client(backend_config, http, signed_in, redirects):
    c = StudyMateClient(config=backend_config, session=signed_in, http=http, on_session_expired=redirects.append)
    yield c
    await c.close()


async def test_query_stream_refreshes_then_streams(backend, client):
    backend.stream_frames = [
        sse_frame({"content": "Photo"}),
        sse_frame({"content": ""}),
        sse_frame({"content": "synthesis"}),
        sse_frame(
            {
                "done": True,
                "full_response": "Photosynthesis converts light.",
                "session_id": "s1",
                "session_name": "Biology",
                "is_new_session": True,
                "message_count": 2,
            }
        ),
    ]
    chunks = []

    response = await client.query.query_stream("What is photosynthesis?", session_id="s0", on_chunk=chunks.append)

    assert chunks == ["Photo", "synthesis"]
    assert response.answer == "Photosynthesis converts light."
    assert response.session_id == "s1"
    assert response.session_name == "Biology"
    assert response.is_new_session is True
    assert response.message_count == 2
    assert backend.refresh_calls == 1
    assert backend.stream_bodies == [{"question": "What is photosynthesis?", "session_id": "s0"}]


async def test_query_stream_error_frame_raises(backend, client):
    backend.stream_frames = [sse_frame({"content": "a"}), sse_frame({"error": True, "message": "No documents"})]

    with pytest.raises(StreamError, match="No documents"):
        await client.query.query_stream("q")


async def test_query_stream_without_terminal_keeps_requested_session(backend, client):
    backend.stream_frames = [sse_frame({"content": "partial"})]

    response = await client.query.query_stream("q", session_id="s0")

    assert response.answer == "partial"
    assert response.session_id == "s0"


def test_terminal_metadata_replaces_defaults():
    result = StreamResult(full_text="x", metadata={"session_name": "Only name"}, completed=True)
    response = query_response_from_stream(result, "requested")
    assert response.session_id is None
    assert response.session_name == "Only name"


async def test_flashcards_stream_reports_progress(backend, client):
    backend.stream_frames = [
        sse_frame({"status": "searching", "message": "Searching documents..."}),
        sse_frame({"status": "generating", "message": "Generating flashcards..."}),
        sse_frame({"done": True, "flashcards": [{"front": "ATP?", "back": "Energy"}]}),
    ]
    progress = []

    cards = await client.flashcards.generate_stream(
        topic="cells", num_flashcards=1, on_progress=lambda s, m: progress.append((s, m))
    )

    assert cards == [{"front": "ATP?", "back": "Energy"}]
    assert progress == [("searching", "Searching documents..."), ("generating", "Generating flashcards...")]
    assert backend.stream_bodies == [{"topic": "cells", "num_flashcards": 1}]


async def test_flashcards_stream_cut_short_raises(backend, client):
    backend.stream_frames = [sse_frame({"status": "searching", "message": "..."})]

    with pytest.raises(StreamError):
        await client.flashcards.generate_stream(topic="cells")


async def test_flashcards_need_topic_or_documents(backend, client):
    with pytest.raises(ValidationError):
        await client.flashcards.generate_stream()
    assert backend.stream_bodies == []


async def test_quiz_stream_returns_quiz(backend, client):
    backend.stream_frames = [
        sse_frame({"status": "creating", "message": "Creating quiz..."}),
        sse_frame({"done": True, "status": "complete", "quiz": {"id": "q1", "title": "Cells"}}),
    ]
    events = []

    quiz = await client.quizzes.generate_stream(["d1"], num_questions=5, on_event=events.append)

    assert quiz == {"id": "q1", "title": "Cells"}
    assert events == [{"status": "creating", "message": "Creating quiz..."}]


@pytest.mark.parametrize(
    "kwargs, field",
    [
        ({"document_ids": []}, "document_ids"),
        ({"document_ids": ["d1"], "num_questions": 51}, "num_questions"),
        ({"document_ids": ["d1"], "time_limit_minutes": 0}, "time_limit_minutes"),
        ({"document_ids": ["d1"], "difficulty": "brutal"}, "difficulty"),
    ],
)
async def test_quiz_validation_never_reaches_network(backend, client, kwargs, field):
    with pytest.raises(ValidationError) as exc:
        await client.quizzes.generate_stream(**kwargs)
    assert field in exc.value.errors
    assert backend.stream_bodies == []


async def test_non_json_error_body_gets_generic_detail(backend, client):
    with pytest.raises(ApiError, match="An error occurred") as exc:
        await client.stats.user_stats()
    assert exc.value.status == 500


async def test_sign_in_stores_session_and_remembers_email(backend, backend_config, http, store):
    session = SessionState(store)
    async with StudyMateClient(config=backend_config, session=session, http=http) as c:
        auth = await c.auth.sign_in("ada@example.com", "correct-horse", remember=True)

    assert auth.user.username == "ada"
    assert session.access_token == "fresh-access"
    assert store.get("remembered_email") == "ada@example.com"


async def test_bad_credentials_surface_detail(backend, backend_config, http, store):
    session = SessionState(store)
    async with StudyMateClient(config=backend_config, session=session, http=http) as c:
        with pytest.raises(ApiError, match="Invalid email or password") as exc:
            await c.auth.sign_in("ada@example.com", "wrong")
    assert exc.value.status == 401
    assert backend.refresh_calls == 0
    assert session.is_authenticated is False


async def test_invalid_sign_in_input_is_not_sent(backend, backend_config, http, store):
    async with StudyMateClient(config=backend_config, session=SessionState(store), http=http) as c:
        with pytest.raises(ValidationError):
            await c.auth.sign_in("not-an-email", "x")
    assert backend.sign_in_bodies == []


async def test_health_is_anonymous(backend, client):
    payload = await client.health.check()
    assert payload["status"] == "healthy"
    assert payload["auth"] is None


async def test_download_returns_bytes(backend, client):
    assert await client.documents.download("d1") == b"%PDF-1.4 fake"


async def test_upload_checks_sizes_before_sending(backend, client):
    with pytest.raises(ValidationError):
        await client.documents.upload([])
    assert backend.document_auth == []

    result = await client.documents.upload([UploadFile(data=b"%PDF", name="a.pdf")])
    assert result == [{"id": "d1", "filename": "notes.pdf", "embedding_status": "completed"}]


async def test_refresh_failure_surfaces_session_expiry(backend, client, redirects):
    backend.refresh_ok = False

    with pytest.raises(SessionExpiredError):
        await client.documents.list()

    assert client.session.is_authenticated is False
    assert redirects == ["/auth/sign-in"]


async def test_sign_out_clears_session(backend_config, http, signed_in):
    signed_out = []
    async with StudyMateClient(config=backend_config, session=signed_in, http=http, on_sign_out=signed_out.append) as c:
        c.sign_out()

    assert signed_in.access_token is None
    assert signed_in.store.get("refresh_token") is None
    assert signed_out == ["/auth/sign-in"]


async def test_sign_in_marks_session_loading_while_in_flight(backend, backend_config, http, store):
    session = SessionState(store)
    seen = []
    backend.on_sign_in = lambda: seen.append(session.is_loading)

    async with StudyMateClient(config=backend_config, session=session, http=http) as c:
        with pytest.raises(ApiError):
            await c.auth.sign_in("ada@example.com", "wrong")
        assert session.is_loading is False

        await c.auth.sign_in("ada@example.com", "correct-horse")

    assert seen == [True, True]
    assert session.is_loading is False


async def test_remembered_email_follows_remember_flag(backend, backend_config, http, store):
    async with StudyMateClient(config=backend_config, session=SessionState(store), http=http) as c:
        await c.auth.sign_in("ada@example.com", "correct-horse", remember=True)
        assert c.auth.remembered_email() == "ada@example.com"

        await c.auth.sign_in("ada@example.com", "correct-horse")
        assert c.auth.remembered_email() is None
