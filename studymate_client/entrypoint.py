from __future__ import annotations

import asyncio
from pathlib import Path
from typing import AsyncIterator, Callable, Optional, Union

from .api.client import StudyMateClient
from .api.resources import query_response_from_stream
from .config import ClientConfig
from .types import QueryResponse

PathLike = Union[str, Path]


class StudyMate:
    """Ask questions about uploaded documents without managing a client by hand.

    Every call opens a short-lived client against the stored session, so the
    credentials written by ``studymate signin`` are picked up automatically.
    """

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        storage_path: Optional[PathLike] = None,
        session_id: Optional[str] = None,
    ):
        self.config = ClientConfig.from_env(base_url=base_url, storage_path=storage_path)
        self.session_id = session_id

    def _client(self) -> StudyMateClient:
        return StudyMateClient(config=self.config)

    async def astream_ask(
        self,
        question: str,
        *,
        session_id: Optional[str] = None,
        new_chat: Optional[bool] = None,
    ) -> AsyncIterator[str]:
        """Yield answer deltas as they arrive; remembers the session id when done."""
        async with self._client() as client:
            stream = await client.query.open_query_stream(
                question,
                session_id=session_id or self.session_id,
                new_chat=new_chat,
            )
            async for delta in stream:
                yield delta
            session = stream.result.metadata.get("session_id")
            if session:
                self.session_id = str(session)

    async def aask(
        self,
        question: str,
        *,
        session_id: Optional[str] = None,
        new_chat: Optional[bool] = None,
        on_chunk: Optional[Callable[[str], None]] = None,
    ) -> QueryResponse:
        async with self._client() as client:
            target_session = session_id or self.session_id
            stream = await client.query.open_query_stream(
                question,
                session_id=target_session,
                new_chat=new_chat,
            )
            async for delta in stream:
                if on_chunk is not None:
                    on_chunk(delta)
            response = query_response_from_stream(stream.result, target_session)
        if response.session_id:
            self.session_id = response.session_id
        return response

    def ask(
        self,
        question: str,
        *,
        session_id: Optional[str] = None,
        new_chat: Optional[bool] = None,
        on_chunk: Optional[Callable[[str], None]] = None,
    ) -> QueryResponse:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(
                self.aask(question, session_id=session_id, new_chat=new_chat, on_chunk=on_chunk)
            )
        raise RuntimeError(
            "StudyMate.ask() cannot be called from within an active event loop. "
            "Use `await StudyMate.aask(...)` or `StudyMate.astream_ask(...)` instead."
        )
