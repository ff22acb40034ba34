"""
MCP Server for the App Object Importer.

Exposes the importer through the Model Context Protocol so an MCP client
can browse the objects of another document, compare them with the current
document and import or update them.

Documents are JSON files in ``APP_IMPORTER_DOCUMENTS_DIR`` served by the
in-memory engine; ``APP_IMPORTER_CURRENT_APP`` names the destination.

Usage:
    python -m app_object_importer.mcp_server
    # or
    app-importer-mcp-server
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Optional

from mcp.server.fastmcp import FastMCP

from .config import ImporterSettings
from .context import ImporterContext
from .memory_engine import MemoryEngine
from .models import Item, ItemType
from .orchestrator import ImporterStateMachine, ImportSession

# ---------------------------------------------------------------------------
# Logging (stderr only -- stdout is reserved for MCP protocol)
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
)
log = logging.getLogger("app-importer-mcp")

# ---------------------------------------------------------------------------
# MCP Server
# ---------------------------------------------------------------------------
mcp = FastMCP(
    "App Object Importer",
    instructions=(
        "Tools for copying objects (script sections, sheets, dimensions, "
        "measures, master visualizations, alternate states, variables) from "
        "one BI document into the current document.\n\n"
        "Call open_importer with the source document id first, then "
        "list_items per type to see which items exist, are importable or "
        "updatable.  import_items / update_items act on explicit ids; "
        "import_all / update_all act on the selected items of a type, or "
        "on all of them when none are selected.  Bookmarks can be listed "
        "but not imported."
    ),
)

# ---------------------------------------------------------------------------
# Server state
# ---------------------------------------------------------------------------
_context: Optional[ImporterContext] = None
_session: Optional[ImportSession] = None
_state = ImporterStateMachine()


def _require_context() -> ImporterContext:
    """Return the importer context, building it from settings on first use."""
    global _context
    if _context is None:
        settings = ImporterSettings.from_env()
        logging.getLogger().setLevel(settings.log_level)
        engine = MemoryEngine.from_directory(
            settings.documents_dir,
            current_app_id=settings.current_app_id,
            personal_mode=not settings.qrs_url,
        )
        _context = ImporterContext.create(engine, settings)
        log.info("Serving %d document(s) from %s",
                 len(engine.documents), settings.documents_dir)
    return _context


def _require_session() -> ImportSession:
    """Return the open import session or raise an error."""
    if _session is None:
        raise RuntimeError("No importer open. Call open_importer first.")
    return _session


def _parse_ids(item_ids: str) -> list[str]:
    """Accept a JSON array or a comma-separated list of ids."""
    text = item_ids.strip()
    if text.startswith("["):
        ids = json.loads(text)
        if not isinstance(ids, list):
            raise ValueError("item_ids must be a JSON array of strings")
        return [str(i) for i in ids]
    return [part.strip() for part in text.split(",") if part.strip()]


def _item_type(item_type: str) -> ItemType:
    try:
        return ItemType(item_type)
    except ValueError:
        valid = ", ".join(t.value for t in ItemType)
        raise ValueError(f"Unknown item type '{item_type}'. Valid types: {valid}") from None


def _operation_result(item: Item, outcome) -> dict:
    return {
        "id": item.id,
        "label": item.label,
        "outcome": outcome.value if outcome is not None else None,
        "status": item.status.to_dict(),
    }


# ===================================================================
# 1. Documents and importer lifecycle
# ===================================================================

@mcp.tool()
async def list_apps() -> str:
    """List the documents available as import sources.

    The current (destination) document is flagged with ``current: true``.
    """
    try:
        ctx = _require_context()
        docs = await ctx.engine.list_documents()
        return json.dumps({"apps": [
            {"id": d["qDocId"], "title": d.get("qTitle", ""),
             "current": d["qDocId"] == ctx.current_app_id}
            for d in docs
        ]}, indent=2)
    except Exception as e:
        return f"Error listing apps: {e}"


@mcp.tool()
async def open_importer(app_id: str, item_types: str = "") -> str:
    """Open the importer for a source document and load its objects.

    Source and destination objects are loaded and compared.  A type that
    fails to load is reported under ``load_errors`` while the others stay
    usable.

    Args:
        app_id: Id of the document to import from.
        item_types: Optional comma-separated subset of types to load
            (script, sheet, dimension, measure, masterObject,
            alternate-state, variable, bookmark).
    """
    global _session
    try:
        ctx = _require_context()
        types = [_item_type(t) for t in _parse_ids(item_types)] if item_types else None
        _state.open(app_id)
    except Exception as e:
        return f"Error opening importer: {e}"

    try:
        session = ImportSession(ctx, app_id, types)
        await session.load()
    except Exception as e:
        _state.close()
        log.exception("Loading %s failed", app_id)
        return f"Error opening importer: {e}"

    _session = session
    return json.dumps({
        "source": app_id,
        "destination": ctx.current_app_id,
        "types": session.summary(),
        "load_errors": {t.value: msg for t, msg in session.load_errors.items()},
    }, indent=2)


@mcp.tool()
def close_importer() -> str:
    """Close the importer.  Operations already running are not cancelled."""
    global _session
    try:
        _state.close()
    except ValueError as e:
        return f"Error closing importer: {e}"
    _session = None
    return "Importer closed."


@mcp.tool()
def get_load_errors() -> str:
    """Return the item types that failed to load, with their error."""
    try:
        session = _require_session()
        return json.dumps(
            {t.value: msg for t, msg in session.load_errors.items()}, indent=2,
        )
    except Exception as e:
        return f"Error: {e}"


# ===================================================================
# 2. Browsing and selection
# ===================================================================

@mcp.tool()
def list_items(item_type: str, query: str = "", only: str = "") -> str:
    """List the source items of one type with their status.

    Args:
        item_type: One of the item types.
        query: Words that must all occur in the label or search terms.
        only: Optional status filter: ``importable``, ``updatable``,
            ``exists``, ``selected`` or ``errors``.
    """
    try:
        session = _require_session()
        items = session.get_items(_item_type(item_type), query)
        if only == "errors":
            items = [i for i in items if i.errors]
        elif only:
            if only not in ("importable", "updatable", "exists", "selected"):
                return f"Error: unknown filter '{only}'"
            items = [i for i in items if getattr(i.status, only)]
        return json.dumps({
            "type": item_type,
            "count": len(items),
            "items": [i.to_dict() for i in items],
        }, indent=2)
    except Exception as e:
        return f"Error listing items: {e}"


@mcp.tool()
def get_item(item_type: str, item_id: str, include_properties: bool = False) -> str:
    """Show one source item with its details.

    Args:
        item_type: One of the item types.
        item_id: Item id as reported by list_items.
        include_properties: Also return the raw properties.
    """
    try:
        session = _require_session()
        item = session.find(_item_type(item_type), item_id)
        return json.dumps(item.to_dict(include_properties=include_properties), indent=2)
    except Exception as e:
        return f"Error getting item: {e}"


@mcp.tool()
def select_items(item_type: str, item_ids: str = "", selected: bool = True,
                 clear: bool = False) -> str:
    """Select or deselect items for import_all / update_all.

    Args:
        item_type: One of the item types.
        item_ids: JSON array or comma-separated list of ids.
        selected: Select (true) or deselect (false).
        clear: Deselect every item of the type first.
    """
    try:
        session = _require_session()
        t = _item_type(item_type)
        if clear:
            session.clear_selection(t)
        changed = session.select(t, _parse_ids(item_ids), selected) if item_ids else []
        current = [i.id for i in session.get_items(t) if i.status.selected]
        return json.dumps({"changed": [i.id for i in changed], "selected": current}, indent=2)
    except Exception as e:
        return f"Error selecting items: {e}"


# ===================================================================
# 3. Import and update
# ===================================================================

@mcp.tool()
async def import_items(item_type: str, item_ids: str) -> str:
    """Import specific items, one after the other.

    Items that are not importable, or were already imported, are left
    untouched (``outcome`` is null).

    Args:
        item_type: One of the item types.
        item_ids: JSON array or comma-separated list of ids.
    """
    try:
        session = _require_session()
        t = _item_type(item_type)
        items = [session.find(t, i) for i in _parse_ids(item_ids)]
        results = []
        for item in items:
            results.append(_operation_result(item, await session.import_item(item)))
        return json.dumps({"results": results}, indent=2)
    except Exception as e:
        return f"Error importing items: {e}"


@mcp.tool()
async def update_items(item_type: str, item_ids: str) -> str:
    """Update the destination counterparts of specific items.

    Args:
        item_type: One of the item types.
        item_ids: JSON array or comma-separated list of ids.
    """
    try:
        session = _require_session()
        t = _item_type(item_type)
        items = [session.find(t, i) for i in _parse_ids(item_ids)]
        results = []
        for item in items:
            results.append(_operation_result(item, await session.update_item(item)))
        return json.dumps({"results": results}, indent=2)
    except Exception as e:
        return f"Error updating items: {e}"


@mcp.tool()
async def import_all(item_type: str) -> str:
    """Import the selected items of a type, or all of them if none is selected."""
    try:
        session = _require_session()
        processed = await session.import_all(_item_type(item_type))
        return json.dumps({
            "processed": len(processed),
            "imported": [i.id for i in processed if i.status.imported],
            "failed": [i.id for i in processed if i.status.import_failed],
        }, indent=2)
    except Exception as e:
        return f"Error importing items: {e}"


@mcp.tool()
async def update_all(item_type: str) -> str:
    """Update the selected items of a type, or all of them if none is selected."""
    try:
        session = _require_session()
        processed = await session.update_all(_item_type(item_type))
        return json.dumps({
            "processed": len(processed),
            "updated": [i.id for i in processed if i.status.updated],
            "imported": [i.id for i in processed if i.status.imported],
            "failed": [i.id for i in processed if i.status.update_failed],
        }, indent=2)
    except Exception as e:
        return f"Error updating items: {e}"


@mcp.tool()
def save_app(app_id: str = "", file_path: str = "") -> str:
    """Write a document back to its JSON file.

    Args:
        app_id: Document to save; defaults to the current document.
        file_path: Destination path.  If empty, overwrites the file the
            document was loaded from.
    """
    try:
        ctx = _require_context()
        path = ctx.engine.save_document(app_id or ctx.current_app_id, file_path or None)
        return f"App saved to: {path}"
    except Exception as e:
        return f"Error saving app: {e}"


# ===================================================================
# Entry point
# ===================================================================

def main():
    """Run the MCP server on stdio transport."""
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
