"""
App connection cache.

Keeps at most one connection per document.  :meth:`AppConnectionCache.open`
returns a future that is shared by every caller asking for the same
document, whether the open is still in flight or already settled.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from .config import DEFAULT_SETTLE_DELAY
from .engine import Engine, EngineApp
from .errors import NotFoundError

logger = logging.getLogger(__name__)


class AppConnectionCache:
    """Map of document id to the future of its opened handle.

    Args:
        engine: Engine used to open documents.
        settle_delay: Seconds to wait after the engine signals the open.
            The engine has no event for "layout loaded", so the handle is
            only handed out after this delay.
        current_app: Handle of the already-open current document, seeded
            into the cache on first use.
    """

    def __init__(
        self,
        engine: Engine,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        current_app: Optional[EngineApp] = None,
    ):
        self._engine = engine
        self.settle_delay = settle_delay
        self._current_app = current_app
        self._apps: dict[str, asyncio.Future] = {}

    def __contains__(self, app_id: str) -> bool:
        return app_id in self._apps

    def __len__(self) -> int:
        return len(self._apps)

    def open(self, app: Any) -> "asyncio.Future[EngineApp]":
        """Return the (shared) future of the opened document.

        Must be called from a running event loop.

        Args:
            app: A document id, or an already opened handle (anything with
                an ``id`` attribute), which is passed through unchanged.

        Returns:
            A future resolving to the :class:`EngineApp` handle.  It fails
            with :class:`NotFoundError` when *app* is empty or unknown.
        """
        loop = asyncio.get_running_loop()

        if not app:
            fut = loop.create_future()
            fut.set_exception(NotFoundError(f"App with id '{app}' not found"))
            return fut

        if not isinstance(app, str) and getattr(app, "id", None):
            fut = loop.create_future()
            fut.set_result(app)
            return fut

        if self._current_app is not None and self._current_app.id not in self._apps:
            fut = loop.create_future()
            fut.set_result(self._current_app)
            self._apps[self._current_app.id] = fut

        if app not in self._apps:
            task = loop.create_task(self._open(app))
            task.add_done_callback(lambda t, app_id=app: self._evict_failed(app_id, t))
            self._apps[app] = task

        return self._apps[app]

    async def _open(self, app_id: str) -> EngineApp:
        logger.info("Opening app %s", app_id)
        handle = self._engine.open_document(app_id, without_data=True)
        await handle.wait_for_open()
        if self.settle_delay:
            await asyncio.sleep(self.settle_delay)
        logger.debug("App %s ready", app_id)
        return handle

    def _evict_failed(self, app_id: str, task: asyncio.Future) -> None:
        if task.cancelled() or task.exception() is not None:
            if self._apps.get(app_id) is task:
                del self._apps[app_id]
            logger.warning("Opening app %s failed; connection not cached", app_id)
