from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Mapping, Optional

import aiohttp
from aiohttp import hdrs
from multidict import CIMultiDict

from ..config import ClientConfig
from ..session import SessionState
from ..types import SessionExpiredError, StudyMateError, UserProfile
from .protocol import REFRESH_PATH, read_json

logger = logging.getLogger(__name__)

SessionExpiredCallback = Callable[[str], None]

SESSION_EXPIRED_MESSAGE = "Authentication failed. Please log in again."


def _log_session_expired(sign_in_path: str) -> None:
    logger.warning("Session expired; sign in again at %s", sign_in_path)


class AuthenticatedFetcher:
    """Bearer-token requests that share one refresh and retry once on 401."""

    def __init__(
        self,
        session: SessionState,
        *,
        http: aiohttp.ClientSession,
        config: Optional[ClientConfig] = None,
        on_session_expired: Optional[SessionExpiredCallback] = None,
    ):
        self.session = session
        self._http = http
        self._config = config or ClientConfig()
        self._on_session_expired = on_session_expired or _log_session_expired
        self._refresh_task: Optional[asyncio.Task] = None

    def url(self, path_or_url: str) -> str:
        if path_or_url.startswith(("http://", "https://")):
            return path_or_url
        return self._config.url(path_or_url)

    @property
    def refresh_in_progress(self) -> bool:
        return self._refresh_task is not None

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        json_body: Any = None,
        data: Any = None,
        params: Optional[Mapping[str, Any]] = None,
        anonymous: bool = False,
    ) -> aiohttp.ClientResponse:
        # data may be a factory: a multipart form cannot be sent twice.
        target = self.url(url)
        access_token = None if anonymous else self.session.current_access_token()

        resp = await self._send(method, target, headers, access_token, json_body, data, params)
        if resp.status != 401 or not access_token:
            return resp

        resp.release()
        await self._ensure_refreshed(stale_token=access_token)

        new_token = self.session.current_access_token()
        if not new_token:
            raise SessionExpiredError(SESSION_EXPIRED_MESSAGE)
        logger.debug("Retrying %s %s with refreshed token", method, target)
        return await self._send(method, target, headers, new_token, json_body, data, params)

    @asynccontextmanager
    async def open(self, method: str, url: str, **kwargs: Any) -> AsyncIterator[aiohttp.ClientResponse]:
        resp = await self.request(method, url, **kwargs)
        try:
            yield resp
        finally:
            resp.release()

    async def _send(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]],
        access_token: Optional[str],
        json_body: Any,
        data: Any,
        params: Optional[Mapping[str, Any]],
    ) -> aiohttp.ClientResponse:
        request_headers: CIMultiDict = CIMultiDict(headers or {})
        if access_token:
            request_headers[hdrs.AUTHORIZATION] = f"Bearer {access_token}"

        body = data() if callable(data) else data
        if json_body is not None:
            body = json.dumps(json_body, ensure_ascii=False).encode("utf-8")
        # GET and download requests carry no body and must not be framed as JSON.
        if isinstance(body, (str, bytes)) and hdrs.CONTENT_TYPE not in request_headers:
            request_headers[hdrs.CONTENT_TYPE] = "application/json"

        return await self._http.request(
            method,
            url,
            headers=request_headers,
            data=body,
            params=params,
        )

    async def _ensure_refreshed(self, *, stale_token: str) -> None:
        task = self._refresh_task
        if task is None:
            current = self.session.current_access_token()
            if current != stale_token:
                # Another caller already refreshed, or the session was cleared, while this request was in flight.
                if current:
                    return
                raise SessionExpiredError(SESSION_EXPIRED_MESSAGE)
            task = asyncio.ensure_future(self._run_refresh())
            task.add_done_callback(self._refresh_finished)
            self._refresh_task = task
        else:
            logger.debug("Waiting for in-flight token refresh")
        # Shielded so that cancelling one waiter leaves the refresh running for the others.
        await asyncio.shield(task)

    def _refresh_finished(self, task: asyncio.Task) -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    async def _run_refresh(self) -> None:
        try:
            await self._refresh_access_token()
        except SessionExpiredError:
            self._on_session_expired(self._config.sign_in_path)
            raise

    async def _refresh_access_token(self) -> None:
        refresh_token = self.session.current_refresh_token()
        if not refresh_token:
            self.session.clear_auth()
            raise SessionExpiredError("No refresh token available")

        logger.info("Access token rejected; refreshing credentials")
        try:
            async with self._http.post(
                self._config.url(REFRESH_PATH),
                json={"refresh_token": refresh_token},
            ) as resp:
                payload = await read_json(resp)
            if not isinstance(payload, dict):
                raise ValueError("refresh response must be a JSON object")
            access_token = payload.get("access_token")
            if not access_token:
                raise ValueError("refresh response missing access_token")
            # Backends that do not rotate refresh tokens omit them, and may omit the user too.
            new_refresh_token = str(payload.get("refresh_token") or refresh_token)
            user = UserProfile.from_dict(payload["user"]) if payload.get("user") else self.session.user
        except (aiohttp.ClientError, StudyMateError, ValueError) as e:
            logger.warning("Token refresh failed: %s", e)
            self.session.clear_auth()
            raise SessionExpiredError(SESSION_EXPIRED_MESSAGE) from e

        if user is None:
            self.session.set_tokens(str(access_token), new_refresh_token)
            logger.info("Credentials refreshed")
            return
        self.session.set_auth(user, str(access_token), new_refresh_token)
        logger.info("Credentials refreshed for %s", user.username)
