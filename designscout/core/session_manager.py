"""
Session Management - exclusive use of the shared browser

Only one comprehensive run may drive the browser at a time. Callers acquire a
token, do their work and hand the token back; waiters are served in arrival
order.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class SessionToken:
    """Capability proving the holder owns the browser session"""

    owner: str = "anonymous"
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    acquired_at: str = field(default_factory=lambda: datetime.now().isoformat())
    released: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class BrowserSessionManager:
    """Mutual exclusion over the browser, one token at a time"""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._active: Optional[SessionToken] = None
        self.completed_sessions = 0

    @property
    def active(self) -> Optional[SessionToken]:
        return self._active

    @property
    def is_locked(self) -> bool:
        return self._lock.locked()

    async def acquire(self, owner: str = "anonymous") -> SessionToken:
        """Wait for any current holder, then take the session"""
        if self._lock.locked():
            logger.info(f"⏳ {owner} waiting for browser session (held by {self._active.owner if self._active else '?'})")
        await self._lock.acquire()
        token = SessionToken(owner=owner)
        self._active = token
        logger.info(f"🔒 Browser session {token.id} acquired by {owner}")
        return token

    def release(self, token: SessionToken) -> bool:
        """Give the session back; stale or repeated releases are ignored"""
        if token.released or self._active is None or token.id != self._active.id:
            logger.warning(f"Ignoring release of inactive session token {token.id} ({token.owner})")
            return False

        token.released = True
        self._active = None
        self.completed_sessions += 1
        self._lock.release()
        logger.info(f"🔓 Browser session {token.id} released by {token.owner}")
        return True

    @asynccontextmanager
    async def session(self, owner: str = "anonymous"):
        """
        Hold the browser for the duration of a block.

        Usage:
            async with manager.session("progressive-search") as token:
                ...
        """
        token = await self.acquire(owner)
        try:
            yield token
        finally:
            self.release(token)


_default_manager: Optional[BrowserSessionManager] = None


def get_session_manager() -> BrowserSessionManager:
    """Process-wide session manager"""
    global _default_manager
    if _default_manager is None:
        _default_manager = BrowserSessionManager()
    return _default_manager


def reset_session_manager():
    """Drop the process-wide manager (tests create a fresh one per event loop)"""
    global _default_manager
    _default_manager = None


async def start_session(owner: str = "anonymous") -> SessionToken:
    return await get_session_manager().acquire(owner)


def end_session(token: SessionToken) -> bool:
    return get_session_manager().release(token)
