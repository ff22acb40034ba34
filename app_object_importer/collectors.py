"""
Object collectors: fetch importable objects of one type from a document.

Each ``collect_*`` coroutine opens the document through the context's
App Connection Cache, reads the raw engine records and normalises them into
:class:`~.models.Item` records, sorted by label (case-insensitive) unless
stated otherwise.

Per-item detail loading is a strict sequence: the next item is only
requested after the previous one has been fully loaded, which keeps the
number of concurrent requests on the engine bounded.  Errors are not
caught here; they propagate to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Any, Awaitable, Callable, Optional

from .context import ImporterContext
from .engine import EngineApp, object_id
from .errors import UnsupportedTypeError
from .models import DetailField, Item, ItemType, build_search_terms
from .utils import (
    DEFAULT_STATE,
    format_owner,
    format_state_name,
    format_timestamp,
    get_path,
    label_sort_key,
    parse_script,
)
from .validation import (
    empty_validation,
    validate_expressions,
    validate_visualization,
)

logger = logging.getLogger(__name__)

GRID_SIZES = {"small": "Small", "medium": "Medium", "large": "Large"}
MASTER_ITEM_SUFFIX = "(Master item)"


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

async def read_list(app: EngineApp, list_type: str) -> list[dict]:
    """Read a live list and close it right away."""
    async with await app.get_list(list_type) as session:
        return list(session.items)


async def _layout_and_properties(obj) -> tuple[dict, dict]:
    layout, props = await asyncio.gather(obj.get_layout(), obj.get_properties())
    return layout, props


def _yes_no(value: Any) -> str:
    return "Yes" if value else "No"


def _publish_details(q_meta: dict) -> dict[str, DetailField]:
    """Created / published / approved / modified / owner fields."""
    return {
        "createdDate": DetailField("Created", format_timestamp(q_meta.get("createdDate"))),
        "publishedDate": DetailField(
            "Published",
            format_timestamp(q_meta.get("publishTime")) if q_meta.get("published") else "No",
        ),
        "approved": DetailField("Approved", _yes_no(q_meta.get("approved"))),
        "modifiedDate": DetailField("Modified", format_timestamp(q_meta.get("modifiedDate"))),
        "owner": DetailField("Owner", format_owner(q_meta.get("owner"))),
    }


def _library_ref(library_id: str) -> str:
    return f"{library_id} {MASTER_ITEM_SUFFIX}"


def get_data_definition(props: dict) -> dict[str, DetailField]:
    """Describe the dimensions and measures (or fields) an object uses."""
    if "qHyperCubeDef" in props:
        cube = props["qHyperCubeDef"]
        return {
            "dimensions": DetailField("Dimensions", [
                _library_ref(d["qLibraryId"]) if d.get("qLibraryId")
                else ", ".join(get_path(d, "qDef", "qFieldDefs", default=[]))
                for d in cube.get("qDimensions", [])
            ], is_code=True),
            "measures": DetailField("Measures", [
                _library_ref(m["qLibraryId"]) if m.get("qLibraryId")
                else get_path(m, "qDef", "qDef", default="")
                for m in cube.get("qMeasures", [])
            ], is_code=True),
        }
    if "qListObjectDef" in props:
        lst = props["qListObjectDef"]
        value = (
            _library_ref(lst["qLibraryId"]) if lst.get("qLibraryId")
            else ", ".join(get_path(lst, "qDef", "qFieldDefs", default=[]))
        )
        return {"fields": DetailField("Fields", [value], is_code=True)}
    return {}


def get_children_data_definition(children: list) -> dict[str, DetailField]:
    """Merge the data definitions of all children into single fields."""
    merged: dict[str, DetailField] = {}
    for child in children or []:
        for key, detail in get_data_definition(child.get("qProperty") or {}).items():
            if key in merged:
                merged[key].value = merged[key].value + detail.value
            else:
                merged[key] = detail
    return merged


def _definition_terms(details: dict[str, DetailField]) -> list[str]:
    terms: list[str] = []
    for key in ("definition", "expression", "dimensions", "measures", "fields"):
        value = details.get(key).value if key in details else None
        if isinstance(value, str):
            terms.append(value)
        elif isinstance(value, list):
            terms.extend(v for v in value if isinstance(v, str))
    return terms


def _icon(validation, fallback: str = "") -> str:
    return "debug" if validation.has_error else fallback


# ---------------------------------------------------------------------------
# Script
# ---------------------------------------------------------------------------

async def collect_script(ctx: ImporterContext, app_id, **options) -> list[Item]:
    """One item per script section, in script order."""
    app = await ctx.open_app(app_id)
    script = await app.get_script()
    items = []
    for ix, section in enumerate(parse_script(script)):
        items.append(Item(
            id=f"Section {ix + 1}",
            type=ItemType.SCRIPT,
            label=section.title,
            properties={"tab": section.title, "script": section.body},
            details={"script": DetailField("Script", section.body, is_code=True)},
            search_terms=build_search_terms(section.body),
        ))
    return items


# ---------------------------------------------------------------------------
# Sheets
# ---------------------------------------------------------------------------

async def _load_cell_object(app: EngineApp, cell: dict, validate: bool) -> dict:
    """Load a sheet cell's visualization with children and master object."""
    data = await app.get_object_properties(cell["name"])
    props = data["properties"]

    master = None
    if props.get("qExtendsId"):
        master = (await app.get_object_properties(props["qExtendsId"]))["properties"]

    children: list = []
    if "qChildListDef" in props:
        tree = data.get("propertyTree") or await app.get_full_property_tree(data["id"])
        children = tree.get("qChildren", [])

    if validate:
        validation = await validate_visualization(app, props, children)
    else:
        validation = empty_validation()

    return {
        "cell": cell,
        "properties": props,
        "children": children,
        "masterobject": master,
        "errors": validation.messages(),
    }


def _sheet_status(q_meta: dict, is_desktop: bool) -> Optional[str]:
    if q_meta.get("published"):
        stamp = format_timestamp(q_meta.get("publishTime"))
        return f"Public ({stamp})" if stamp else "Public"
    if q_meta.get("approved"):
        return "Community"
    return None if is_desktop else "Personal"


def _visualization_summary(ctx: ImporterContext, visualizations: list[dict]) -> list[str]:
    counts = Counter(
        get_path(v, "properties", "qInfo", "qType", default="") for v in visualizations
    )
    summary = []
    for q_type, count in counts.items():
        name = ctx.extensions.name_of(q_type)
        summary.append(f"{count} x {name}" if count > 1 else name)
    return sorted(summary)


async def collect_sheets(
    ctx: ImporterContext,
    app_id,
    load_with_objects: bool = False,
    include_summary: bool = False,
    validate: bool = False,
    **options,
) -> list[Item]:
    """One item per sheet, sorted by the document's own rank order.

    Args:
        load_with_objects: Also load every cell's visualization (with its
            child property tree) so the sheet can be imported without
            returning to the source document.
        include_summary: Prepend a non-importable summary row.
        validate: Validate visualization expressions.
    """
    app = await ctx.open_app(app_id)
    entries = await read_list(app, "sheet")
    is_desktop = await ctx.extensions.is_desktop()

    loaded = []
    extension_ids: list[str] = []
    for entry in entries:
        obj = await app.get_object(entry["qInfo"]["qId"])
        layout, props = await _layout_and_properties(obj)
        visualizations = []
        if load_with_objects:
            for cell in props.get("cells", []):
                visualizations.append(await _load_cell_object(app, cell, validate))
                extension_ids.append(
                    cell.get("type")
                    or get_path(visualizations[-1], "properties", "qInfo", "qType", default="")
                )
        loaded.append((layout, props, visualizations))

    if extension_ids:
        await ctx.extensions.resolve_names(extension_ids)

    ranked = []
    for index, (layout, props, visualizations) in enumerate(loaded):
        q_meta = layout.get("qMeta", {})
        custom = get_path(props, "layoutOptions", "sheetMode") == "CUSTOM"
        details = {
            "description": DetailField(
                "Description", get_path(props, "qMetaDef", "description")),
            "createdDate": DetailField("Created", format_timestamp(q_meta.get("createdDate"))),
            "status": DetailField("Status", _sheet_status(q_meta, is_desktop)),
            "modifiedDate": DetailField(
                "Last modified", format_timestamp(q_meta.get("modifiedDate"))),
            "owner": DetailField("Owner", format_owner(q_meta.get("owner"))),
            "visualizations": DetailField(
                "Visualizations",
                _visualization_summary(ctx, visualizations) if load_with_objects else None,
            ),
            "gridSize": DetailField(
                "Grid size",
                GRID_SIZES.get(props.get("gridResolution"), props.get("gridResolution")),
            ),
            "layoutMode": DetailField("Layout mode", "Custom" if custom else None),
            "customWidth": DetailField("Custom width", props.get("pxWidth") if custom else None),
            "customHeight": DetailField("Custom height", props.get("pxHeight") if custom else None),
        }
        errors = [
            f"{get_path(v, 'properties', 'qInfo', 'qId', default='?')}: {message}"
            for v in visualizations for message in v["errors"]
        ]
        rank = props.get("rank")
        if not isinstance(rank, (int, float)) or isinstance(rank, bool):
            rank = index
        ranked.append((rank, index, Item(
            id=object_id(layout),
            type=ItemType.SHEET,
            label=q_meta.get("title") or get_path(props, "qMetaDef", "title", default=""),
            properties=props,
            details=details,
            search_terms=build_search_terms(
                q_meta.get("tags"),
                get_path(props, "qMetaDef", "description"),
                details["visualizations"].value,
            ),
            children=[
                {"qProperty": v["properties"], "qChildren": v["children"]}
                for v in visualizations
            ],
            errors=errors,
            layout=layout,
            icon="debug" if errors else "",
        )))

    items = [item for _, _, item in sorted(ranked, key=lambda r: (r[0], r[1]))]

    if include_summary:
        items.insert(0, _sheet_summary(items))
    return items


def _sheet_summary(sheets: list[Item]) -> Item:
    metas = [s.layout.get("qMeta", {}) for s in sheets]
    return Item(
        id="Sheets",
        type=ItemType.SHEET,
        label="Summary",
        properties=None,
        details={
            "approved": DetailField(
                "Public sheets", str(sum(1 for m in metas if m.get("approved")))),
            "published": DetailField("Community sheets", str(sum(
                1 for m in metas if m.get("published") and not m.get("approved")))),
            "personal": DetailField(
                "Personal", str(sum(1 for m in metas if not m.get("published")))),
        },
    )


# ---------------------------------------------------------------------------
# Master items
# ---------------------------------------------------------------------------

async def collect_dimensions(
    ctx: ImporterContext, app_id, validate: bool = False, **options,
) -> list[Item]:
    """Master dimensions, single and drill-down.

    Args:
        ctx: Importer context.
        app_id: Document id or an opened handle.
        validate: Check the field definitions against the data model.

    Returns:
        Dimension items sorted by label.
    """
    app = await ctx.open_app(app_id)
    items = []
    for entry in await read_list(app, "DimensionList"):
        dim = await app.get_dimension(entry["qInfo"]["qId"])
        layout, props = await _layout_and_properties(dim)
        q_dim = props.get("qDim", {})
        validation = (
            await validate_expressions(app, q_dim.get("qFieldDefs", []))
            if validate else empty_validation()
        )

        q_meta = layout.get("qMeta", {})
        is_drilldown = q_dim.get("qGrouping") == "H"
        details = {
            "description": DetailField("Description", q_meta.get("description")),
            "type": DetailField("Type", "Drill-down" if is_drilldown else "Single"),
            "label": DetailField("Label", q_dim.get("qLabelExpression")),
            "definition": DetailField("Fields", q_dim.get("qFieldDefs", []), is_code=True),
            **_publish_details(q_meta),
            "tags": DetailField("Tags", list(q_meta.get("tags") or [])),
        }
        items.append(Item(
            id=object_id(layout),
            type=ItemType.DIMENSION,
            label=q_meta.get("title", ""),
            properties=props,
            details=details,
            search_terms=build_search_terms(q_meta.get("tags"), _definition_terms(details)),
            errors=validation.messages(),
            layout=layout,
            icon=_icon(validation, "drill-down" if is_drilldown else ""),
        ))
    return sorted(items, key=label_sort_key)


async def collect_measures(
    ctx: ImporterContext, app_id, validate: bool = False, **options,
) -> list[Item]:
    """Master measures.

    Args:
        ctx: Importer context.
        app_id: Document id or an opened handle.
        validate: Check each measure expression.

    Returns:
        Measure items sorted by label.
    """
    app = await ctx.open_app(app_id)
    items = []
    for entry in await read_list(app, "MeasureList"):
        measure = await app.get_measure(entry["qInfo"]["qId"])
        layout, props = await _layout_and_properties(measure)
        q_measure = props.get("qMeasure", {})
        validation = (
            await validate_expressions(app, q_measure.get("qDef", ""))
            if validate else empty_validation()
        )

        q_meta = layout.get("qMeta", {})
        details = {
            "description": DetailField("Description", q_meta.get("description")),
            "label": DetailField("Label", q_measure.get("qLabelExpression")),
            "expression": DetailField("Expression", q_measure.get("qDef"), is_code=True),
            **_publish_details(q_meta),
            "tags": DetailField("Tags", list(q_meta.get("tags") or [])),
        }
        items.append(Item(
            id=object_id(layout),
            type=ItemType.MEASURE,
            label=q_meta.get("title", ""),
            properties=props,
            details=details,
            search_terms=build_search_terms(q_meta.get("tags"), _definition_terms(details)),
            errors=validation.messages(),
            layout=layout,
            icon=_icon(validation),
        ))
    return sorted(items, key=label_sort_key)


async def collect_master_objects(
    ctx: ImporterContext, app_id, validate: bool = False, **options,
) -> list[Item]:
    """Master visualizations.

    For objects owning a child tree (filter panes) the item's properties
    are the tree's root node and its children travel along.
    """
    app = await ctx.open_app(app_id)
    items = []
    for entry in await read_list(app, "masterobject"):
        obj = await app.get_object(entry["qInfo"]["qId"])
        layout, props = await _layout_and_properties(obj)
        visualization = layout.get("visualization") or props.get("visualization", "")
        await ctx.extensions.resolve_names([visualization])

        children: list = []
        if "qChildListDef" in props:
            tree = await obj.get_full_property_tree()
            props = tree.get("qProperty") or props
            children = tree.get("qChildren", [])

        validation = (
            await validate_visualization(app, props, children)
            if validate else empty_validation()
        )

        q_meta = layout.get("qMeta", {})
        definition = (
            get_children_data_definition(children) if children
            else get_data_definition(props)
        )
        details = {
            "description": DetailField("Description", q_meta.get("description")),
            "type": DetailField("Type", ctx.extensions.name_of(visualization)),
            **definition,
            **_publish_details(q_meta),
            "tags": DetailField("Tags", list(q_meta.get("tags") or [])),
        }
        items.append(Item(
            id=object_id(layout),
            type=ItemType.MASTER_OBJECT,
            label=q_meta.get("title", ""),
            properties=props,
            details=details,
            search_terms=build_search_terms(q_meta.get("tags"), _definition_terms(details)),
            children=children,
            errors=validation.messages(),
            layout=layout,
            icon=_icon(validation),
        ))
    return sorted(items, key=label_sort_key)


# ---------------------------------------------------------------------------
# Alternate states and variables
# ---------------------------------------------------------------------------

async def collect_alternate_states(ctx: ImporterContext, app_id, **options) -> list[Item]:
    """States have no data beyond their name, which doubles as the id."""
    app = await ctx.open_app(app_id)
    layout = await app.get_app_layout()
    items = [
        Item(id=name, type=ItemType.ALTERNATE_STATE, label=name, properties=name)
        for name in layout.get("qStateNames", [])
    ]
    return sorted(items, key=label_sort_key)


async def collect_variables(
    ctx: ImporterContext,
    app_id,
    validate: bool = False,
    is_reserved: Optional[bool] = None,
    **options,
) -> list[Item]:
    """Variables.

    Args:
        is_reserved: ``None`` keeps all variables; True or False keeps only
            reserved or non-reserved ones.
    """
    app = await ctx.open_app(app_id)
    items = []
    for entry in await read_list(app, "VariableList"):
        var = await app.get_variable_by_id(entry["qInfo"]["qId"])
        layout, props = await _layout_and_properties(var)
        validation = (
            await validate_expressions(app, props.get("qDefinition", ""))
            if validate else empty_validation()
        )

        q_meta = layout.get("qMeta", {})
        # Tags are only reported on the list entry.
        tags = list(get_path(entry, "qData", "tags", default=[]) or [])
        details = {
            "description": DetailField("Description", props.get("qComment")),
            "definition": DetailField("Definition", props.get("qDefinition"), is_code=True),
            "createdDate": DetailField("Created", format_timestamp(q_meta.get("createdDate"))),
            "modifiedDate": DetailField("Modified", format_timestamp(q_meta.get("modifiedDate"))),
            "tags": DetailField("Tags", tags),
        }
        items.append(Item(
            id=object_id(layout) or entry["qInfo"]["qId"],
            type=ItemType.VARIABLE,
            label=props.get("qName", ""),
            properties=props,
            details=details,
            search_terms=build_search_terms(tags, _definition_terms(details)),
            errors=validation.messages(),
            # The list entry carries qIsReserved, the layout does not.
            layout=entry,
            icon=_icon(validation, "script" if props.get("qIsScriptCreated") else ""),
        ))

    if is_reserved is not None:
        items = [i for i in items if bool(i.layout.get("qIsReserved")) == is_reserved]
    return sorted(items, key=label_sort_key)


# ---------------------------------------------------------------------------
# Bookmarks
# ---------------------------------------------------------------------------

def _missing_field_errors(
    state_data: list[dict],
    field_names: Optional[set[str]],
) -> list[str]:
    errors = []
    for state in state_data:
        for field_item in state.get("qFieldItems", []):
            name = get_path(field_item, "qDef", "qName", default="")
            missing = get_path(field_item, "qDef", "qType") == "NOT_PRESENT"
            if field_names is not None and name not in field_names:
                missing = True
            if not missing:
                continue
            message = f"Expression contains invalid field name `{name}`"
            if len(state_data) > 1:
                message += f" in state {format_state_name(state.get('qStateName', DEFAULT_STATE))}"
            errors.append(message)
    return errors


async def collect_bookmarks(
    ctx: ImporterContext,
    app_id,
    validate: bool = False,
    field_names: Optional[list[str]] = None,
    **options,
) -> list[Item]:
    """Bookmarks, for inspection only.

    Args:
        validate: Flag fields in the stored selections that are not
            present, or not in *field_names* when given.  This produces
            errors on the item but does not affect importability.
        field_names: Field list to check the selections against.
    """
    app = await ctx.open_app(app_id)
    entries, sheet_entries = await asyncio.gather(
        read_list(app, "BookmarkList"),
        read_list(app, "sheet"),
    )
    # The sheet list already carries the titles.
    sheet_titles = {
        object_id(e): get_path(e, "qMeta", "title") or get_path(e, "qData", "title", default="")
        for e in sheet_entries
    }
    known_fields = set(field_names) if field_names is not None else None

    items = []
    for entry in entries:
        bookmark = await app.get_bookmark(entry["qInfo"]["qId"])
        layout, props = await _layout_and_properties(bookmark)
        q_bookmark = layout.get("qBookmark") or get_path(
            entry, "qData", "qBookmark", default={})
        state_data = q_bookmark.get("qStateData", [])

        set_analysis = {}
        for state in state_data:
            state_name = state.get("qStateName", DEFAULT_STATE)
            set_analysis[state_name] = await app.get_set_analysis(state_name, bookmark.id)

        set_expressions = sorted(
            f"{format_state_name(state)}: {expr}"
            for state, expr in set_analysis.items() if expr
        )
        selection_fields = list(dict.fromkeys(
            f.get("qFieldName", "") for f in layout.get("qFieldInfos", [])
        ))
        if not selection_fields:
            selection_fields = list(dict.fromkeys(
                get_path(fi, "qDef", "qName", default="")
                for state in state_data for fi in state.get("qFieldItems", [])
            ))

        q_meta = layout.get("qMeta", {})
        sheet_id = props.get("sheetId")
        details = {
            "description": DetailField("Description", q_meta.get("description")),
            "setExpression": DetailField("Set expression", set_expressions, is_code=True),
            "fields": DetailField("Fields", selection_fields),
            **_publish_details(q_meta),
            "sheet": DetailField(
                "Sheet", [sheet_titles[sheet_id]] if sheet_id in sheet_titles else None),
            "hasPatches": DetailField(
                "Saved layout", "Yes" if q_bookmark.get("qPatches") else None),
        }
        errors = _missing_field_errors(state_data, known_fields) if validate else []

        layout = dict(layout, setAnalysis=set_analysis)
        items.append(Item(
            id=object_id(layout) or bookmark.id,
            type=ItemType.BOOKMARK,
            label=q_meta.get("title", ""),
            properties=props,
            details=details,
            search_terms=build_search_terms(set_expressions, selection_fields),
            errors=errors,
            layout=layout,
            icon="debug" if errors else "",
        ))
    return sorted(items, key=label_sort_key)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

Collector = Callable[..., Awaitable[list[Item]]]

COLLECTORS: dict[ItemType, Collector] = {
    ItemType.SCRIPT: collect_script,
    ItemType.SHEET: collect_sheets,
    ItemType.DIMENSION: collect_dimensions,
    ItemType.MEASURE: collect_measures,
    ItemType.MASTER_OBJECT: collect_master_objects,
    ItemType.ALTERNATE_STATE: collect_alternate_states,
    ItemType.VARIABLE: collect_variables,
    ItemType.BOOKMARK: collect_bookmarks,
}


async def collect(ctx: ImporterContext, item_type, app_id, **options) -> list[Item]:
    """Run the collector registered for *item_type*.

    Raises:
        UnsupportedTypeError: For an unknown type.
    """
    try:
        collector = COLLECTORS[ItemType(item_type)]
    except (KeyError, ValueError):
        raise UnsupportedTypeError(f"No collector for item type '{item_type}'") from None
    items = await collector(ctx, app_id, **options)
    logger.debug("Collected %d %s item(s) from %s", len(items), item_type, getattr(app_id, "id", app_id))
    return items
