"""
Batch orchestration and the import session.

:func:`run_batch` folds an operation over a list of items strictly in
sequence.  :class:`ImportSession` ties collectors, reconciliation and the
executor together for one source document, and
:class:`ImporterStateMachine` tracks whether an importer is open at all.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional

from .collectors import collect
from .context import ImporterContext
from .engine import EngineApp
from .errors import ImporterError, NotFoundError
from .executor import import_item, update_item
from .importers import ImportOptions
from .models import ImportOutcome, Item, ItemType
from .reconcile import annotate

logger = logging.getLogger(__name__)

ALL_TYPES = tuple(ItemType)


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------

async def run_batch(
    items: Iterable[Item],
    operation: Callable[[Item], Awaitable[object]],
) -> list[Item]:
    """Apply *operation* to each item, one after the other.

    When any item is selected only the selected items are processed.
    Per-item failures are the operation's concern; the batch always runs
    to the end.

    Returns:
        The items that were processed, in order.
    """
    items = list(items)
    selected = [i for i in items if i.status.selected]
    targets = selected or items
    for item in targets:
        await operation(item)
    return targets


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class ImportSession:
    """Import from one source document into the context's current document.

    Args:
        context: Shared importer context.
        source_app_id: Document to import from.
        item_types: Types to load; all types by default.
    """

    def __init__(
        self,
        context: ImporterContext,
        source_app_id: str,
        item_types: Optional[Iterable] = None,
    ):
        self.context = context
        self.source_app_id = source_app_id
        self.item_types = tuple(ItemType(t) for t in (item_types or ALL_TYPES))
        self.items: dict[ItemType, list[Item]] = {t: [] for t in self.item_types}
        self.destination: dict[ItemType, list[Item]] = {t: [] for t in self.item_types}
        self.load_errors: dict[ItemType, str] = {}
        self._destination_app: Optional[EngineApp] = None

    # ------ loading ------

    def _source_options(self, item_type: ItemType) -> dict:
        options = {"validate": self.context.settings.validate}
        if item_type == ItemType.SHEET:
            options["load_with_objects"] = True
        return options

    async def load(self) -> "ImportSession":
        """Load source and destination items of every type concurrently.

        A type that fails to load is logged, recorded in
        :attr:`load_errors` and left empty.

        Raises:
            ImporterError: If no type could be loaded at all.
            NotFoundError: If either document cannot be opened.
        """
        await self.context.open_app(self.source_app_id)
        self._destination_app = await self.context.current_app()

        results = await asyncio.gather(
            *(self._load_type(t) for t in self.item_types),
            return_exceptions=True,
        )
        self.load_errors = {}
        for item_type, result in zip(self.item_types, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Could not load %s items: %s", item_type.value, result,
                    exc_info=(type(result), result, result.__traceback__),
                )
                self.load_errors[item_type] = str(result)
                self.items[item_type] = []
                self.destination[item_type] = []

        if self.item_types and len(self.load_errors) == len(self.item_types):
            first = results[0]
            raise ImporterError(
                f"Could not load any objects from '{self.source_app_id}'"
            ) from first
        logger.info(
            "Loaded %d item(s) from %s",
            sum(len(v) for v in self.items.values()), self.source_app_id,
        )
        return self

    async def _load_type(self, item_type: ItemType) -> None:
        source, destination = await asyncio.gather(
            collect(self.context, item_type, self.source_app_id,
                    **self._source_options(item_type)),
            collect(self.context, item_type, self._destination_app),
        )
        self.items[item_type] = source
        self.destination[item_type] = destination
        annotate(source, destination)

    async def refresh(self, item_type) -> None:
        """Reload the destination items of *item_type* and re-classify."""
        item_type = ItemType(item_type)
        self.destination[item_type] = await collect(
            self.context, item_type, self._destination_app,
        )
        annotate(self.items.get(item_type, []), self.destination[item_type])

    # ------ lookup and selection ------

    def get_items(self, item_type, query: str = "") -> list[Item]:
        """Source items of *item_type* matching every word of *query*."""
        items = self.items.get(ItemType(item_type), [])
        return [i for i in items if i.matches(query)] if query else list(items)

    def find(self, item_type, item_id: str) -> Item:
        """Return the source item with *item_id*.

        Raises:
            NotFoundError: If there is no such item.
        """
        for item in self.items.get(ItemType(item_type), []):
            if item.id == item_id:
                return item
        raise NotFoundError(f"No {ItemType(item_type).value} item with id '{item_id}'")

    def select(self, item_type, item_ids: Iterable[str], selected: bool = True) -> list[Item]:
        """Set the selection flag of the given items.

        Raises:
            NotFoundError: If any id is unknown; nothing is changed then.
        """
        items = [self.find(item_type, i) for i in item_ids]
        for item in items:
            item.status.selected = selected
        return items

    def clear_selection(self, item_type) -> None:
        for item in self.items.get(ItemType(item_type), []):
            item.status.selected = False

    # ------ operations ------

    def _options(self) -> ImportOptions:
        if self._destination_app is None:
            raise ImporterError("Session is not loaded")
        return ImportOptions(
            context=self.context,
            destination=self._destination_app,
            origin_app_id=self.source_app_id,
            source_items=self.items,
        )

    async def import_item(self, item: Item) -> Optional[ImportOutcome]:
        outcome = await import_item(item, self._options())
        if outcome is not None:
            await self._after_write(item)
        return outcome

    async def update_item(self, item: Item) -> Optional[ImportOutcome]:
        outcome = await update_item(item, self._options())
        if outcome is not None:
            await self._after_write(item)
        return outcome

    async def _after_write(self, item: Item) -> None:
        """Re-classify after a write.

        The write itself already succeeded and is recorded on the item, so
        a failing refresh is logged and kept in :attr:`load_errors` rather
        than raised.
        """
        types = [item.type]
        if item.type == ItemType.SHEET and ItemType.ALTERNATE_STATE in self.items:
            types.append(ItemType.ALTERNATE_STATE)
        for item_type in types:
            try:
                await self.refresh(item_type)
            except Exception as e:
                logger.exception("Could not refresh %s items after writing '%s'",
                                 item_type.value, item.label)
                self.load_errors[item_type] = str(e)
            else:
                self.load_errors.pop(item_type, None)

    async def import_all(self, item_type) -> list[Item]:
        return await run_batch(self.get_items(item_type), self.import_item)

    async def update_all(self, item_type) -> list[Item]:
        return await run_batch(self.get_items(item_type), self.update_item)

    def summary(self) -> dict:
        """Counts per type, for display."""
        result = {}
        for item_type, items in self.items.items():
            result[item_type.value] = {
                "total": len(items),
                "importable": sum(1 for i in items if i.status.importable),
                "updatable": sum(1 for i in items if i.status.updatable),
                "exists": sum(1 for i in items if i.status.exists),
            }
        return result


# ---------------------------------------------------------------------------
# Importer state
# ---------------------------------------------------------------------------

class ImporterState(str, Enum):
    IDLE = "idle"
    MODAL_OPEN = "modal_open"


class ImporterStateMachine:
    """Two states, two transitions: ``open`` and ``close``.

    Closing does not cancel operations that are still running.
    """

    def __init__(self):
        self.state = ImporterState.IDLE
        self.app_id: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.state is ImporterState.MODAL_OPEN

    def open(self, app_id: str) -> None:
        if self.state is not ImporterState.IDLE:
            raise ValueError(f"Importer is already open for '{self.app_id}'")
        if not app_id:
            raise ValueError("An app id is required to open the importer")
        self.state = ImporterState.MODAL_OPEN
        self.app_id = app_id
        logger.debug("Importer opened for %s", app_id)

    def close(self) -> None:
        if self.state is not ImporterState.MODAL_OPEN:
            raise ValueError("Importer is not open")
        logger.debug("Importer closed for %s", self.app_id)
        self.state = ImporterState.IDLE
        self.app_id = None
