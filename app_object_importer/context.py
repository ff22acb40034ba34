"""
Importer context: the long-lived, shared state of one importer instance.

Bundles the engine, the settings, the App Connection Cache and the
extension metadata cache so they can be passed around explicitly (and
built fresh per test) instead of living in module globals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .config import ImporterSettings
from .connections import AppConnectionCache
from .engine import Engine, EngineApp
from .extensions import ExtensionResolver
from .repository import RepositoryClient

logger = logging.getLogger(__name__)


@dataclass
class ImporterContext:
    """Shared importer state.

    Attributes:
        engine: The host engine.
        settings: Runtime settings.
        connections: App Connection Cache.
        extensions: Extension metadata resolver.
        current_app_id: Id of the destination document.
    """
    engine: Engine
    settings: ImporterSettings
    connections: AppConnectionCache
    extensions: ExtensionResolver
    current_app_id: str = ""

    @classmethod
    def create(
        cls,
        engine: Engine,
        settings: Optional[ImporterSettings] = None,
        current_app_id: str = "",
        repository: Optional[RepositoryClient] = None,
    ) -> "ImporterContext":
        """Build a context with fresh caches.

        A repository client is created from ``settings.qrs_url`` when none
        is given.
        """
        settings = settings or ImporterSettings()
        current_app_id = current_app_id or settings.current_app_id
        current_app = engine.get_current_app()
        if current_app is not None and current_app_id and current_app.id != current_app_id:
            current_app = None
        if repository is None and settings.qrs_url:
            repository = RepositoryClient(settings.qrs_url, settings.proxy_prefix)
        return cls(
            engine=engine,
            settings=settings,
            connections=AppConnectionCache(
                engine, settings.settle_delay, current_app=current_app,
            ),
            extensions=ExtensionResolver(engine, repository),
            current_app_id=current_app_id or (current_app.id if current_app else ""),
        )

    async def open_app(self, app: Any) -> EngineApp:
        return await self.connections.open(app)

    async def current_app(self) -> EngineApp:
        return await self.connections.open(self.current_app_id)
