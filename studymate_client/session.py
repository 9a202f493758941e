from __future__ import annotations

import json
import logging
from typing import Optional

from .storage import (
    ACCESS_TOKEN_KEY,
    LEGACY_KEYS,
    LEGACY_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    USER_KEY,
    KeyValueStore,
    MemoryStore,
)
from .types import UserProfile

logger = logging.getLogger(__name__)


class SessionState:
    def __init__(self, store: Optional[KeyValueStore] = None):
        self.store = store if store is not None else MemoryStore()
        self.user: Optional[UserProfile] = None
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None
        self.is_authenticated = False
        self.is_loading = False

    def set_auth(self, user: UserProfile, access_token: str, refresh_token: str) -> None:
        self.store.set(ACCESS_TOKEN_KEY, access_token)
        self.store.set(REFRESH_TOKEN_KEY, refresh_token)
        self.store.set(USER_KEY, json.dumps(user.to_dict(), ensure_ascii=False))
        self.user = user
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.is_authenticated = True
        self.is_loading = False

    def set_user(self, user: UserProfile) -> None:
        self.store.set(USER_KEY, json.dumps(user.to_dict(), ensure_ascii=False))
        self.user = user

    def set_tokens(self, access_token: str, refresh_token: str) -> None:
        self.store.set(ACCESS_TOKEN_KEY, access_token)
        self.store.set(REFRESH_TOKEN_KEY, refresh_token)
        self.access_token = access_token
        self.refresh_token = refresh_token

    def clear_auth(self) -> None:
        for key in (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, USER_KEY, *LEGACY_KEYS):
            self.store.remove(key)
        self.user = None
        self.access_token = None
        self.refresh_token = None
        self.is_authenticated = False
        self.is_loading = False

    def set_loading(self, loading: bool) -> None:
        self.is_loading = loading

    def current_access_token(self) -> Optional[str]:
        # The store covers state written by another process since this one started.
        return (
            self.access_token
            or self.store.get(ACCESS_TOKEN_KEY)
            or self.store.get(LEGACY_TOKEN_KEY)
        )

    def current_refresh_token(self) -> Optional[str]:
        return self.refresh_token or self.store.get(REFRESH_TOKEN_KEY)

    def has_credentials(self) -> bool:
        return bool(self.current_access_token() and self.current_refresh_token())

    def rehydrate(self) -> bool:
        """Restore credentials from the store. Returns True when a session was restored."""
        access_token = self.store.get(ACCESS_TOKEN_KEY)
        refresh_token = self.store.get(REFRESH_TOKEN_KEY)
        user_raw = self.store.get(USER_KEY)
        if not (access_token and refresh_token and user_raw):
            return False

        try:
            user = UserProfile.from_dict(json.loads(user_raw))
        except ValueError as e:
            logger.error("Failed to parse stored user data: %s", e)
            self.clear_auth()
            return False

        self.set_auth(user, access_token, refresh_token)
        return True
