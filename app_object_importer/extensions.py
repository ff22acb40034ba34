"""
Extension metadata resolver.

Maps visualization type codes (extension ids) to their metadata, most
importantly the display name.  Two retrieval strategies exist:

- desktop: the engine lists all extensions with their metadata at once;
- server: the repository lists extension records, and the metadata of
  each extension is read from its ``.qext`` file on demand.

Which one applies is probed once from the engine.  Metadata of any one
extension is fetched at most once for the lifetime of the resolver.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional

from .engine import Engine
from .repository import RepositoryClient

logger = logging.getLogger(__name__)


class ExtensionResolver:
    """Process-wide extension metadata cache.

    Args:
        engine: Engine used for the mode probe and the desktop listing.
        repository: Repository client for server mode.  Without one,
            server mode resolves nothing and names fall back to the ids.
    """

    def __init__(self, engine: Engine, repository: Optional[RepositoryClient] = None):
        self._engine = engine
        self._repository = repository
        self._metadata: dict[str, dict] = {}
        self._records: dict[str, dict] = {}
        self._probe: Optional[asyncio.Future] = None
        self._listing: Optional[asyncio.Future] = None
        self._fetches: dict[str, asyncio.Future] = {}

    # ------ queries ------

    def get(self, extension_id: str) -> dict:
        return dict(self._metadata.get(extension_id, {}))

    def name_of(self, extension_id: str) -> str:
        """Return the display name, or *extension_id* when unknown."""
        return self._metadata.get(extension_id, {}).get("name") or extension_id

    @property
    def resolved_ids(self) -> set[str]:
        return set(self._metadata)

    # ------ loading ------

    async def is_desktop(self) -> bool:
        """Probe the engine mode once; a failed probe is retried next call."""
        if self._probe is None:
            self._probe = asyncio.ensure_future(self._engine.is_personal_mode())
        probe = self._probe
        try:
            return bool(await probe)
        except Exception:
            if self._probe is probe:
                self._probe = None
            raise

    async def resolve_names(self, extension_ids: Iterable[str]) -> None:
        """Make sure metadata for *extension_ids* is loaded.

        Already resolved ids are skipped; concurrent callers asking for
        the same id share one fetch.
        """
        if isinstance(extension_ids, str):
            extension_ids = [extension_ids]
        wanted = sorted({e for e in extension_ids if e})

        if self._listing is None:
            self._listing = asyncio.ensure_future(self._load_listing())
        listing = self._listing
        try:
            await listing
        except Exception:
            # Drop the failed listing so the next call loads it again.
            if self._listing is listing:
                self._listing = None
            raise

        if await self.is_desktop():
            return

        pending = []
        for ext_id in wanted:
            if ext_id in self._metadata or ext_id not in self._records:
                continue
            if ext_id not in self._fetches:
                self._fetches[ext_id] = asyncio.ensure_future(self._fetch_qext(ext_id))
            pending.append(self._fetches[ext_id])
        if pending:
            await asyncio.gather(*pending)

    async def _load_listing(self) -> None:
        if await self.is_desktop():
            for ext in await self._engine.get_extension_list():
                self._metadata[ext["id"]] = dict(ext.get("data") or {})
            logger.info("Loaded %d desktop extension(s)", len(self._metadata))
            return

        if self._repository is None:
            logger.warning("Server mode without a repository client; "
                           "visualization names will not be resolved")
            return
        records = await asyncio.to_thread(self._repository.list_extensions)
        for rec in records:
            if rec.get("id"):
                self._records[rec["id"]] = rec
        logger.info("Repository lists %d extension(s)", len(self._records))

    async def _fetch_qext(self, ext_id: str) -> None:
        record = self._records[ext_id]
        try:
            qext = await asyncio.to_thread(self._repository.fetch_qext, record)
        except Exception:
            logger.exception("Could not load metadata of extension %s", ext_id)
            qext = {}
        self._metadata[ext_id] = {**record, **qext}
