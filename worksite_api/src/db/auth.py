from __future__ import annotations

from typing import Any, Callable, Optional

from src.db.instrumentation import Instrumentation


class AuthCallTracker:
    """
    Instrumented view of the upstream auth client.

    Every request-style call is timed and recorded as `auth.<method>`; nothing
    is cached. The listener registration `on_auth_state_change` is handed
    straight to the upstream client.
    Any other attribute is read from the upstream client unchanged.
    """

    def __init__(self, auth: Any, instrumentation: Instrumentation) -> None:
        self._auth = auth
        self._instrumentation = instrumentation

    async def _track(self, name: str, call: Callable[[], Any]) -> Any:
        return await self._instrumentation.track_call(f"auth.{name}", call, op="auth")

    async def sign_in_with_password(self, credentials: dict) -> Any:
        return await self._track("sign_in_with_password", lambda: self._auth.sign_in_with_password(credentials))

    async def sign_up(self, credentials: dict) -> Any:
        return await self._track("sign_up", lambda: self._auth.sign_up(credentials))

    async def sign_out(self, *args: Any, **kwargs: Any) -> Any:
        return await self._track("sign_out", lambda: self._auth.sign_out(*args, **kwargs))

    async def get_session(self) -> Any:
        return await self._track("get_session", self._auth.get_session)

    async def get_user(self, jwt: Optional[str] = None) -> Any:
        return await self._track("get_user", lambda: self._auth.get_user(jwt))

    async def refresh_session(self, refresh_token: Optional[str] = None) -> Any:
        return await self._track("refresh_session", lambda: self._auth.refresh_session(refresh_token))

    def on_auth_state_change(self, callback: Callable[..., Any]) -> Any:
        return self._auth.on_auth_state_change(callback)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return getattr(self._auth, name)
