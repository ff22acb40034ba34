"""
Per-type importers.

Every importable type has one :class:`Importer` with an ``add`` and an
``update`` coroutine.  They write to the destination document and raise
on failure; turning failures into item status is the executor's job.

The registry :data:`IMPORTERS` is closed: a type without an entry
(bookmarks) cannot be written, and :func:`get_importer` raises
:class:`~.errors.UnsupportedTypeError` for it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from .collectors import read_list
from .context import ImporterContext
from .engine import EngineApp, EngineObject
from .errors import ConflictError, NotFoundError, UnsupportedTypeError
from .models import ImportOutcome, Item, ItemType
from .utils import (
    DEFAULT_STATE,
    append_script_section,
    deep_copy,
    get_path,
    replace_script_section,
    sanitize_object_data,
)

logger = logging.getLogger(__name__)


@dataclass
class ImportOptions:
    """Everything an importer needs besides the item itself.

    Attributes:
        context: Shared importer context.
        destination: The document written to.
        origin_app_id: Id of the document the item was collected from.
        target_id: Destination object to overwrite (updates).
        source_items: Items of the current session by type, used to find
            alternate states referenced by a sheet.
    """
    context: ImporterContext
    destination: EngineApp
    origin_app_id: str = ""
    target_id: str = ""
    source_items: dict = field(default_factory=dict)

    @property
    def import_alternate_states(self) -> bool:
        return self.context.settings.import_alternate_states

    async def origin(self) -> EngineApp:
        return await self.context.open_app(self.origin_app_id)


def _new_object_props(item: Item) -> dict:
    """Sanitised copy of the item's properties without its id."""
    props = sanitize_object_data(item.properties or {})
    if isinstance(props.get("qInfo"), dict):
        props["qInfo"].pop("qId", None)
    return props


def _with_id(props: dict, object_id: str) -> dict:
    props.setdefault("qInfo", {})["qId"] = object_id
    return props


class Importer(ABC):
    """Write capability of one item type."""

    item_type: ItemType

    @abstractmethod
    async def add(self, item: Item, options: ImportOptions) -> ImportOutcome:
        """Create *item* in the destination."""

    @abstractmethod
    async def update(self, item: Item, options: ImportOptions) -> ImportOutcome:
        """Overwrite ``options.target_id`` with *item*."""


# ===================================================================
# Script
# ===================================================================

class ScriptImporter(Importer):
    item_type = ItemType.SCRIPT

    async def add(self, item: Item, options: ImportOptions) -> ImportOutcome:
        """Append the section at the end of the destination script.

        A tab title that is already taken gets the smallest free
        ``" (N)"`` suffix.
        """
        dest = options.destination
        script, title = append_script_section(
            await dest.get_script(), item.properties["tab"], item.properties["script"],
        )
        await dest.set_script(script)
        if title != item.properties["tab"]:
            logger.info("Script section '%s' added as '%s'", item.properties["tab"], title)
        return ImportOutcome.ADDED

    async def update(self, item: Item, options: ImportOptions) -> ImportOutcome:
        """Replace the body of the section titled ``options.target_id``.

        Raises:
            NotFoundError: If no section has that title.
        """
        dest = options.destination
        title = options.target_id or item.properties["tab"]
        script = replace_script_section(
            await dest.get_script(), title, item.properties["script"],
        )
        await dest.set_script(script)
        return ImportOutcome.UPDATED


# ===================================================================
# Sheet
# ===================================================================

def referenced_states(props: dict, children: list) -> list[str]:
    """Alternate states a sheet or its visualizations are bound to."""
    names = [props.get("qStateName")]
    names += [get_path(c, "qProperty", "qStateName") for c in children or []]
    result = []
    for name in names:
        if name and name != DEFAULT_STATE and name not in result:
            result.append(name)
    return result


class SheetImporter(Importer):
    """Sheets are written in two steps.

    The sheet's own properties go first, then its property tree is
    rewritten with the visualizations of every cell as children.
    """
    item_type = ItemType.SHEET

    async def add(self, item: Item, options: ImportOptions) -> ImportOutcome:
        await self._write(item, options, target_id="")
        return ImportOutcome.ADDED

    async def update(self, item: Item, options: ImportOptions) -> ImportOutcome:
        if not options.target_id:
            raise NotFoundError(f"Sheet '{item.label}' has no update target")
        await self._write(item, options, target_id=options.target_id)
        return ImportOutcome.UPDATED

    async def _write(self, item: Item, options: ImportOptions, target_id: str) -> None:
        dest = options.destination
        props = _new_object_props(item)
        children = await self._cell_trees(item, props, options)

        if options.import_alternate_states:
            await self._import_states(props, children, options)

        if target_id:
            obj = await dest.get_object(target_id)
            current = await obj.get_properties()
            if "rank" in current:
                props["rank"] = current["rank"]
            await obj.set_properties(_with_id(props, target_id))
        else:
            props["rank"] = await self._next_rank(dest)
            obj = await dest.create_object(props)

        tree = await obj.get_full_property_tree()
        tree["qChildren"] = children
        await obj.set_full_property_tree(tree)
        logger.debug("Wrote sheet %s with %d cell(s)", obj.id, len(children))

    @staticmethod
    async def _next_rank(dest: EngineApp) -> float:
        ranks = [
            get_path(entry, "qData", "rank") for entry in await read_list(dest, "sheet")
        ]
        return max((r for r in ranks if isinstance(r, (int, float))), default=-1) + 1

    @staticmethod
    async def _cell_trees(item: Item, props: dict, options: ImportOptions) -> list:
        cells = props.get("cells", []) or []
        if item.children or not cells:
            return deep_copy(item.children)

        # Not loaded with the sheet: read them from the origin document.
        origin = await options.origin()
        trees = []
        for cell in cells:
            trees.append(await origin.get_full_property_tree(cell["name"]))
        return trees

    @staticmethod
    async def _import_states(props: dict, children: list, options: ImportOptions) -> None:
        known = {
            i.id: i for i in options.source_items.get(ItemType.ALTERNATE_STATE, [])
        }
        importer = IMPORTERS[ItemType.ALTERNATE_STATE]
        for name in referenced_states(props, children):
            state = known.get(name) or Item(
                id=name, type=ItemType.ALTERNATE_STATE, label=name, properties=name,
            )
            await importer.add(state, options)
            state.status.exists = True
            state.status.importable = False


# ===================================================================
# Dimension / measure / master object
# ===================================================================

class _LibraryItemImporter(Importer):
    """Dimensions and measures: one flat properties object, no children."""
    create_method: str
    get_method: str

    async def add(self, item: Item, options: ImportOptions) -> ImportOutcome:
        create = getattr(options.destination, self.create_method)
        await create(_new_object_props(item))
        return ImportOutcome.ADDED

    async def update(self, item: Item, options: ImportOptions) -> ImportOutcome:
        obj = await getattr(options.destination, self.get_method)(options.target_id)
        await obj.set_properties(_with_id(_new_object_props(item), options.target_id))
        return ImportOutcome.UPDATED


class DimensionImporter(_LibraryItemImporter):
    item_type = ItemType.DIMENSION
    create_method = "create_dimension"
    get_method = "get_dimension"


class MeasureImporter(_LibraryItemImporter):
    item_type = ItemType.MEASURE
    create_method = "create_measure"
    get_method = "get_measure"


class MasterObjectImporter(Importer):
    """Master visualizations; the origin's full property tree is copied."""
    item_type = ItemType.MASTER_OBJECT

    async def add(self, item: Item, options: ImportOptions) -> ImportOutcome:
        obj = await options.destination.create_object(_new_object_props(item))
        await self._copy_tree(item, obj, options)
        return ImportOutcome.ADDED

    async def update(self, item: Item, options: ImportOptions) -> ImportOutcome:
        obj = await options.destination.get_object(options.target_id)
        await self._copy_tree(item, obj, options)
        return ImportOutcome.UPDATED

    @staticmethod
    async def _copy_tree(item: Item, obj: EngineObject, options: ImportOptions) -> None:
        if options.origin_app_id:
            origin = await options.origin()
            tree = await origin.get_full_property_tree(item.id)
        else:
            tree = {"qProperty": deep_copy(item.properties), "qChildren": deep_copy(item.children)}
        tree["qProperty"] = _with_id(sanitize_object_data(tree["qProperty"]), obj.id)
        await obj.set_full_property_tree(tree)


# ===================================================================
# Variable
# ===================================================================

class VariableImporter(Importer):
    item_type = ItemType.VARIABLE

    async def add(self, item: Item, options: ImportOptions) -> ImportOutcome:
        props = _new_object_props(item)
        # Imported variables never count as script variables.
        props.pop("qIsScriptCreated", None)
        await options.destination.create_variable_ex(props)
        return ImportOutcome.ADDED

    async def update(self, item: Item, options: ImportOptions) -> ImportOutcome:
        """Overwrite the variable found by target id, or else by name.

        The destination keeps its id and script flag.  A variable missing
        from the destination is added instead.

        Returns:
            ``UPDATED``, or ``ADDED`` when the variable had to be created.
        """
        dest = options.destination
        try:
            if options.target_id:
                var = await dest.get_variable_by_id(options.target_id)
            else:
                var = await dest.get_variable_by_name(item.label)
        except NotFoundError:
            logger.info("Variable '%s' not found in %s, adding it", item.label, dest.id)
            return await self.add(item, options)

        current = await var.get_properties()
        props = _new_object_props(item)
        props = _with_id(props, get_path(current, "qInfo", "qId", default=var.id))
        props["qIsScriptCreated"] = current.get("qIsScriptCreated", False)
        await var.set_properties(props)
        return ImportOutcome.UPDATED


# ===================================================================
# Alternate state
# ===================================================================

class AlternateStateImporter(Importer):
    """Adding a state that already exists succeeds without a change."""
    item_type = ItemType.ALTERNATE_STATE

    async def add(self, item: Item, options: ImportOptions) -> ImportOutcome:
        dest = options.destination
        name = item.properties or item.id
        layout = await dest.get_app_layout()
        if name in layout.get("qStateNames", []):
            return ImportOutcome.SKIPPED
        try:
            await dest.add_alternate_state(name)
        except ConflictError:
            logger.debug("Alternate state '%s' already exists in %s", name, dest.id)
            return ImportOutcome.SKIPPED
        return ImportOutcome.ADDED

    async def update(self, item: Item, options: ImportOptions) -> ImportOutcome:
        raise UnsupportedTypeError("Alternate states cannot be updated")


# ===================================================================
# Registry
# ===================================================================

IMPORTERS: dict[ItemType, Importer] = {
    importer.item_type: importer
    for importer in (
        ScriptImporter(),
        SheetImporter(),
        DimensionImporter(),
        MeasureImporter(),
        MasterObjectImporter(),
        VariableImporter(),
        AlternateStateImporter(),
    )
}


def get_importer(item_type) -> Importer:
    """Return the importer for *item_type*.

    Raises:
        UnsupportedTypeError: If the type cannot be written.
    """
    try:
        return IMPORTERS[ItemType(item_type)]
    except (KeyError, ValueError):
        raise UnsupportedTypeError(f"No importer for item type '{item_type}'") from None
