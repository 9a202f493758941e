from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional

import aiohttp
import pytest
from aiohttp import web

from studymate_client.config import ClientConfig
from studymate_client.session import SessionState
from studymate_client.storage import MemoryStore
from studymate_client.types import UserProfile

USER = {
    "id": "u1",
    "email": "ada@example.com",
    "username": "ada",
    "created_at": "2024-01-01T00:00:00Z",
}

STALE_TOKEN = "stale-access"
FRESH_TOKEN = "fresh-access"


class FakeBackend:
    """In-process stand-in for the StudyMate API, served with aiohttp.web."""

    def __init__(self) -> None:
        self.valid_tokens = {FRESH_TOKEN}
        self.refresh_ok = True
        self.refresh_delay = 0.05
        self.refresh_includes_user = True
        self.on_sign_in: Optional[Callable[[], None]] = None
        self.always_unauthorized = False
        self.refresh_calls = 0
        self.refresh_bodies: List[Dict[str, Any]] = []
        self.document_auth: List[Optional[str]] = []
        self.document_content_types: List[Optional[str]] = []
        self.stream_frames: List[bytes] = []
        self.stream_bodies: List[Dict[str, Any]] = []
        self.sign_in_bodies: List[Dict[str, Any]] = []

    def _authorized(self, request: web.Request) -> bool:
        header = request.headers.get("Authorization", "")
        token = header[len("Bearer ") :] if header.startswith("Bearer ") else None
        return not self.always_unauthorized and token in self.valid_tokens

    async def refresh(self, request: web.Request) -> web.Response:
        self.refresh_calls += 1
        self.refresh_bodies.append(await request.json())
        await asyncio.sleep(self.refresh_delay)
        if not self.refresh_ok:
            return web.json_response({"detail": "Invalid refresh token"}, status=401)
        body: Dict[str, Any] = {"access_token": FRESH_TOKEN, "refresh_token": "fresh-refresh", "token_type": "bearer"}
        if self.refresh_includes_user:
            body["user"] = USER
        return web.json_response(body)

    async def sign_in(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.sign_in_bodies.append(body)
        if self.on_sign_in is not None:
            self.on_sign_in()
        if body.get("password") != "correct-horse":
            return web.json_response({"detail": "Invalid email or password"}, status=401)
        return web.json_response(
            {"access_token": FRESH_TOKEN, "refresh_token": "fresh-refresh", "token_type": "bearer", "user": USER}
        )

    async def documents(self, request: web.Request) -> web.Response:
        self.document_auth.append(request.headers.get("Authorization"))
        self.document_content_types.append(request.headers.get("Content-Type"))
        if not self._authorized(request):
            return web.json_response({"detail": "Could not validate credentials"}, status=401)
        return web.json_response([{"id": "d1", "filename": "notes.pdf", "embedding_status": "completed"}])

    async def me(self, request: web.Request) -> web.Response:
        if not self._authorized(request):
            return web.json_response({"detail": "Could not validate credentials"}, status=401)
        return web.json_response(USER)

    async def view(self, request: web.Request) -> web.Response:
        if not self._authorized(request):
            return web.json_response({"detail": "Could not validate credentials"}, status=401)
        return web.Response(body=b"%PDF-1.4 fake", content_type="application/pdf")

    async def stream(self, request: web.Request) -> web.StreamResponse:
        if not self._authorized(request):
            return web.json_response({"detail": "Could not validate credentials"}, status=401)
        self.stream_bodies.append(await request.json())
        resp = web.StreamResponse(status=200, headers={"Content-Type": "text/event-stream"})
        await resp.prepare(request)
        for frame in self.stream_frames:
            await resp.write(frame)
        await resp.write_eof()
        return resp

    async def broken(self, request: web.Request) -> web.Response:
        return web.Response(status=500, text="upstream exploded")

    async def health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "healthy", "message": "ok", "auth": request.headers.get("Authorization")})

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/auth/refresh", self.refresh)
        app.router.add_post("/auth/signin", self.sign_in)
        app.router.add_get("/documents", self.documents)
        app.router.add_post("/documents", self.documents)
        app.router.add_post("/upload-multiple", self.documents)
        app.router.add_get("/documents/{id}/view", self.view)
        app.router.add_get("/me", self.me)
        app.router.add_post("/query-stream", self.stream)
        app.router.add_post("/flashcards/generate-stream", self.stream)
        app.router.add_post("/quizzes/generate-stream", self.stream)
        app.router.add_get("/stats", self.broken)
        app.router.add_get("/health", self.health)
        return app


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
async def backend_config(aiohttp_server, backend: FakeBackend) -> ClientConfig:
    server = await aiohttp_server(backend.app())
    return ClientConfig(base_url=f"http://{server.host}:{server.port}")


@pytest.fixture
async def http():
    async with aiohttp.ClientSession() as session:
        yield session


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def user() -> UserProfile:
    return UserProfile.from_dict(USER)


@pytest.fixture
def signed_in(store: MemoryStore, user: UserProfile) -> SessionState:
    """A session whose access token the backend no longer accepts."""
    session = SessionState(store)
    session.set_auth(user, STALE_TOKEN, "old-refresh")
    return session
