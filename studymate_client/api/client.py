from __future__ import annotations

from typing import Callable, Optional

import aiohttp

from ..config import ClientConfig
from ..session import SessionState
from ..storage import JsonFileStore, KeyValueStore
from .fetch import AuthenticatedFetcher, SessionExpiredCallback
from .resources import (
    AuthAPI,
    ChatAPI,
    DocumentsAPI,
    FlashcardsAPI,
    HealthAPI,
    NotesAPI,
    QueryAPI,
    QuizAPI,
    StatsAPI,
)


class StudyMateClient:
    def __init__(
        self,
        *,
        config: Optional[ClientConfig] = None,
        store: Optional[KeyValueStore] = None,
        session: Optional[SessionState] = None,
        http: Optional[aiohttp.ClientSession] = None,
        on_session_expired: Optional[SessionExpiredCallback] = None,
        on_sign_out: Optional[Callable[[str], None]] = None,
    ):
        self.config = config or ClientConfig.from_env()
        if session is None:
            session = SessionState(store if store is not None else JsonFileStore(self.config.storage_path))
            session.rehydrate()
        self.session = session
        self._owns_http = http is None
        self._http = http
        self._on_session_expired = on_session_expired
        self._on_sign_out = on_sign_out
        self._fetcher: Optional[AuthenticatedFetcher] = None

    @property
    def fetcher(self) -> AuthenticatedFetcher:
        if self._fetcher is None:
            if self._http is None:
                self._http = aiohttp.ClientSession()
            self._fetcher = AuthenticatedFetcher(
                self.session,
                http=self._http,
                config=self.config,
                on_session_expired=self._on_session_expired,
            )
        return self._fetcher

    @property
    def auth(self) -> AuthAPI:
        return AuthAPI(self.fetcher)

    @property
    def documents(self) -> DocumentsAPI:
        return DocumentsAPI(self.fetcher)

    @property
    def chat(self) -> ChatAPI:
        return ChatAPI(self.fetcher)

    @property
    def query(self) -> QueryAPI:
        return QueryAPI(self.fetcher)

    @property
    def notes(self) -> NotesAPI:
        return NotesAPI(self.fetcher)

    @property
    def flashcards(self) -> FlashcardsAPI:
        return FlashcardsAPI(self.fetcher)

    @property
    def quizzes(self) -> QuizAPI:
        return QuizAPI(self.fetcher)

    @property
    def stats(self) -> StatsAPI:
        return StatsAPI(self.fetcher)

    @property
    def health(self) -> HealthAPI:
        return HealthAPI(self.fetcher)

    def sign_out(self) -> None:
        self.session.clear_auth()
        if self._on_sign_out is not None:
            self._on_sign_out(self.config.sign_in_path)

    async def close(self) -> None:
        if self._owns_http and self._http is not None:
            await self._http.close()
            self._http = None
            self._fetcher = None

    async def __aenter__(self) -> "StudyMateClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
