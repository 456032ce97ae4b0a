"""
Tidepool Kit Session Store

Holds the current session and fans changes out to observers. ``replace`` is
the only mutator. Observers run after the store's lock has been released,
on the running event loop when there is one.
"""

import asyncio
import itertools
import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple

from .types import Session


logger = logging.getLogger("tidepool_kit")

SessionObserver = Callable[[Optional[Session]], None]

_UNSET = object()


class SessionStore:
    """Concurrency-safe holder of the current ``Session``."""

    def __init__(self, session: Optional[Session] = None) -> None:
        self._session = session
        self._observers: Dict[int, SessionObserver] = {}
        self._handles = itertools.count(1)
        self._lock = threading.Lock()

    def current(self) -> Optional[Session]:
        """Return the current session, or None when logged out."""
        with self._lock:
            return self._session

    def replace(self, session: Optional[Session], expected: object = _UNSET) -> bool:
        """
        Replace the current session.

        Args:
            session: The new session, or None to log out.
            expected: When given, only replace if the current session is this one.

        Returns:
            True if the session was replaced.
        """
        with self._lock:
            if expected is not _UNSET and self._session is not expected:
                return False
            self._session = session
            observers: List[Tuple[int, SessionObserver]] = sorted(self._observers.items())

        logger.info(
            "[Tidepool] Session %s",
            "cleared" if session is None else f"updated for user {session.user_id}",
        )
        self._dispatch(observers, session)
        return True

    def subscribe(self, observer: SessionObserver) -> int:
        """Register an observer. Returns a handle for ``unsubscribe``."""
        with self._lock:
            handle = next(self._handles)
            self._observers[handle] = observer
        return handle

    def unsubscribe(self, handle: int) -> None:
        with self._lock:
            self._observers.pop(handle, None)

    def _dispatch(self, observers: List[Tuple[int, SessionObserver]], session: Optional[Session]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        for _, observer in observers:
            if loop is not None:
                loop.call_soon(self._notify, observer, session)
            else:
                self._notify(observer, session)

    @staticmethod
    def _notify(observer: SessionObserver, session: Optional[Session]) -> None:
        try:
            observer(session)
        except Exception:
            logger.exception("[Tidepool] Session observer %r failed", observer)
