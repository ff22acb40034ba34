"""
Import / update executor.

Runs one importer call for one item and records the outcome in the item's
status flags.  Failures stay with the item: they are logged and flagged,
never raised, so sibling operations continue.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Optional

from .importers import ImportOptions, get_importer
from .models import ImportOutcome, Item, UNIQUE_NAME_TYPES

logger = logging.getLogger(__name__)


def _mark_imported(item: Item) -> None:
    item.status.imported = True
    item.status.exists = True
    if item.type in UNIQUE_NAME_TYPES:
        item.status.importable = False


async def import_item(item: Item, options: ImportOptions) -> Optional[ImportOutcome]:
    """Add *item* to the destination.

    Returns:
        The importer's outcome, or None when nothing was done (already
        imported, busy, not importable) or the import failed.
    """
    status = item.status
    if status.import_done or status.busy or not status.importable:
        return None

    status.importing = True
    try:
        outcome = await get_importer(item.type).add(item, options)
    except Exception:
        status.import_failed = True
        logger.exception("Import of %s '%s' failed", item.type.value, item.label)
        return None
    finally:
        status.importing = False

    _mark_imported(item)
    logger.info("Imported %s '%s' (%s)", item.type.value, item.label, outcome.value)
    return outcome


async def update_item(item: Item, options: ImportOptions) -> Optional[ImportOutcome]:
    """Overwrite the item's update target with *item*.

    An update that ends up creating the object (variables missing in the
    destination) marks the item imported.
    """
    status = item.status
    if status.update_done or status.busy or not status.updatable:
        return None

    options = dataclasses.replace(options, target_id=item.updatable_target_id)
    status.updating = True
    try:
        outcome = await get_importer(item.type).update(item, options)
    except Exception:
        status.update_failed = True
        logger.exception("Update of %s '%s' failed", item.type.value, item.label)
        return None
    finally:
        status.updating = False

    status.updatable = False
    if outcome is ImportOutcome.ADDED:
        _mark_imported(item)
    else:
        status.updated = True
        status.exists = True
    logger.info("Updated %s '%s' (%s)", item.type.value, item.label, outcome.value)
    return outcome
