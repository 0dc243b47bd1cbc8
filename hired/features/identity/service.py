"""
hired/features/identity/service.py

Identity session store.

Single source of truth for who is signed in, re-derived from Directory
session events. Every subscriber gets its own unbounded queue, so each one
observes every transition in the order the Directory emitted them.
"""

import asyncio
import contextlib
import logging
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    TypeVar,
)

from hired.core.config import Settings, settings
from hired.core.errors import AppError, AuthenticationFailedError, ValidationError
from hired.core.metrics import session_events_total
from hired.models.identity import DirectorySession, Identity, Role

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Queue sentinel that ends a subscriber stream
_CLOSED = object()


class Directory(Protocol):
    """External identity provider."""

    async def get_session(self) -> Optional[DirectorySession]:
        ...

    def subscribe(self) -> AsyncIterator[Optional[DirectorySession]]:
        ...

    async def sign_in_with_password(self, email: str, password: str) -> Optional[DirectorySession]:
        ...

    async def sign_up(self, email: str, password: str, metadata: Dict[str, Any]) -> Optional[DirectorySession]:
        ...

    async def sign_out(self) -> None:
        ...


class Router(Protocol):
    """Navigation collaborator owned by the host UI."""

    async def navigate(self, target: str) -> None:
        ...


class IdentitySessionStore:
    def __init__(self, directory: Directory, router: Router, cfg: Settings = settings):
        self.directory = directory
        self.router = router
        self.fetch_timeout = cfg.SESSION_FETCH_TIMEOUT_SECONDS
        self.login_redirect = cfg.LOGIN_REDIRECT
        self.post_login_redirect = cfg.POST_LOGIN_REDIRECT
        self._current: Optional[Identity] = None
        self._subscribers: List[asyncio.Queue] = []
        self._listener: Optional[asyncio.Task] = None
        self._closed = False
        self._lock = asyncio.Lock()
        # Set once the eager fetch has published the first real value
        self._ready = asyncio.Event()
        # A local sign-out already published the Directory's echo
        self._expect_signout_echo = False

    async def start(self) -> None:
        """
        Eagerly load any persisted session, then follow Directory changes.

        If the Directory cannot be reached within SESSION_FETCH_TIMEOUT_SECONDS
        the identity is treated as absent.
        """
        if self._listener is not None:
            return
        try:
            session = await asyncio.wait_for(self.directory.get_session(), timeout=self.fetch_timeout)
        except Exception as exc:
            logger.warning(
                "[identity] eager session fetch failed, treating as signed out",
                extra={"error_type": type(exc).__name__},
            )
            session = None
        await self._publish(session, "initial")
        self._ready.set()
        self._listener = asyncio.get_running_loop().create_task(self._follow_directory())

    async def close(self) -> None:
        """Stop following the Directory and end every subscriber stream."""
        if self._listener is not None:
            self._listener.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener
            self._listener = None
        async with self._lock:
            self._closed = True
            for queue in self._subscribers:
                queue.put_nowait(_CLOSED)
            self._subscribers.clear()

    def snapshot(self) -> Optional[Identity]:
        return self._current

    def current_identity(self) -> AsyncIterator[Optional[Identity]]:
        """
        Stream of identity snapshots.

        The first item is the value current at subscription time, followed by
        every later transition. The subscription is registered immediately,
        not at first iteration. Before start() has loaded the persisted
        session, the first item is whatever that eager fetch resolves to.
        """
        queue: asyncio.Queue = asyncio.Queue()
        if self._closed:
            queue.put_nowait(_CLOSED)
        else:
            if self._ready.is_set():
                queue.put_nowait(self._current)
            self._subscribers.append(queue)
        return self._drain(queue)

    def is_authenticated(self) -> AsyncIterator[bool]:
        return _project(self.current_identity(), lambda identity: identity is not None)

    def user_role(self) -> AsyncIterator[Optional[Role]]:
        return _project(self.current_identity(), lambda identity: identity.role if identity else None)

    async def sign_in(self, email: str, password: str, return_url: Optional[str] = None) -> Optional[Identity]:
        """
        Submit credentials to the Directory.

        The resulting session change reaches subscribers through the
        Directory event stream. On success, navigates to return_url or
        POST_LOGIN_REDIRECT.
        """
        _require_credentials(email, password)
        session = await self._call_directory(self.directory.sign_in_with_password(email, password))
        await self.router.navigate(return_url or self.post_login_redirect)
        return Identity.from_session(session) if session else None

    async def sign_up(self, email: str, password: str, full_name: str) -> Optional[Identity]:
        _require_credentials(email, password)
        metadata = {"full_name": full_name, "role": Role.CANDIDATE.value}
        session = await self._call_directory(self.directory.sign_up(email, password, metadata))
        return Identity.from_session(session) if session else None

    async def sign_out(self) -> None:
        """
        End the session: Directory sign-out, local clear, then navigation.

        A Directory failure is logged; the local identity is cleared anyway.
        Nothing is published when the identity is already absent, and the
        Directory's own sign-out event is not delivered a second time.
        """
        try:
            await self.directory.sign_out()
            directory_signed_out = True
        except Exception as exc:
            logger.warning("[identity] directory sign-out failed", extra={"error_type": type(exc).__name__})
            directory_signed_out = False
        if self._current is not None:
            self._expect_signout_echo = directory_signed_out
            await self._publish(None, "signed_out")
        await self.router.navigate(self.login_redirect)

    async def _call_directory(self, call):
        try:
            return await call
        except AppError:
            raise
        except Exception as exc:
            raise AuthenticationFailedError(str(exc) or "Authentication failed") from exc

    async def _follow_directory(self) -> None:
        try:
            async for session in self.directory.subscribe():
                if session is None and self._expect_signout_echo:
                    self._expect_signout_echo = False
                    continue
                self._expect_signout_echo = False
                await self._publish(session, "signed_in" if session else "signed_out")
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[identity] directory event stream failed, treating as signed out")
            await self._publish(None, "stream_failed")

    async def _publish(self, session: Optional[DirectorySession], kind: str) -> None:
        identity = Identity.from_session(session) if session else None
        async with self._lock:
            self._current = identity
            for queue in self._subscribers:
                queue.put_nowait(identity)
        session_events_total.inc(labels={"kind": kind})
        logger.debug(
            "[identity] session event",
            extra={"event_type": f"session.{kind}", "identity_id": identity.id if identity else None},
        )

    async def _drain(self, queue: asyncio.Queue) -> AsyncIterator[Optional[Identity]]:
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            with contextlib.suppress(ValueError):
                self._subscribers.remove(queue)


async def _project(source: AsyncIterator[Any], fn: Callable[[Any], T]) -> AsyncIterator[T]:
    async for item in source:
        yield fn(item)


def _require_credentials(email: str, password: str) -> None:
    if not email or not password:
        raise ValidationError("Email and password are required")
