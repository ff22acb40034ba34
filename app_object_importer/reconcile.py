"""
Reconciliation of source items against the destination document.

For every source item three flags are computed independently:

- ``exists``: an equivalent object is already in the destination;
- ``importable``: the item may be added (duplicates are allowed except for
  names the engine keeps unique);
- ``updatable``: a destination object with the same title or name has a
  different definition.  The id of the first such object (destination
  order, which is label-sorted) becomes the update target.

Title or name is the only identity that is stable across documents, so it
is what matching is based on.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Optional

from .models import Classification, Item, ItemType, UNIQUE_NAME_TYPES
from .utils import omit

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Comparison keys
# ---------------------------------------------------------------------------

def _props(item: Item) -> dict:
    return item.properties if isinstance(item.properties, dict) else {}


def _without_id(props: dict, *extra: str) -> dict:
    """Properties without ``qInfo.qId`` and any *extra* top-level keys."""
    result = omit(props, extra)
    if isinstance(result.get("qInfo"), dict):
        result["qInfo"] = omit(result["qInfo"], ["qId"])
    return result


def _script_body(item: Item) -> str:
    return _props(item).get("script", "")


def _sheet_cells(item: Item) -> list:
    return [omit(cell, ["name"]) for cell in _props(item).get("cells", []) or []]


def _master_object_key(item: Item) -> tuple:
    return (item.label, _props(item).get("visualization", ""), item.search_terms)


def _variable_definition(item: Item) -> dict:
    return _without_id(_props(item), "qMeta", "qIsScriptCreated")


def _bookmark_key(item: Item) -> tuple:
    return (item.label, item.layout.get("setAnalysis") or {})


# ---------------------------------------------------------------------------
# Per-type rules
# ---------------------------------------------------------------------------

class _Rule:
    """Equality rule of one item type.

    Args:
        same_object: Whether a destination item counts as already present.
        definition: Definition compared between items with equal labels.
        importable: Whether the type can be imported at all.
        target_id: Update target identifier of a destination item.
    """

    def __init__(
        self,
        same_object: Callable[[Item, Item], bool],
        definition: Optional[Callable[[Item], Any]] = None,
        importable: bool = True,
        target_id: Callable[[Item], str] = lambda d: d.id,
    ):
        self.same_object = same_object
        self.definition = definition
        self.importable = importable
        self.target_id = target_id


def _same_label(a: Item, b: Item) -> bool:
    return a.label == b.label


RULES: dict[ItemType, _Rule] = {
    ItemType.SCRIPT: _Rule(
        same_object=lambda s, d: _script_body(s) == _script_body(d),
        definition=_script_body,
        # Script sections are updated by tab title.
        target_id=lambda d: d.label,
    ),
    ItemType.SHEET: _Rule(
        same_object=_same_label,
        definition=_sheet_cells,
    ),
    ItemType.DIMENSION: _Rule(
        same_object=_same_label,
        definition=lambda i: _props(i).get("qDim"),
    ),
    ItemType.MEASURE: _Rule(
        same_object=_same_label,
        definition=lambda i: _props(i).get("qMeasure"),
    ),
    ItemType.MASTER_OBJECT: _Rule(
        same_object=lambda s, d: _master_object_key(s) == _master_object_key(d),
        definition=lambda i: _without_id(_props(i)),
    ),
    ItemType.ALTERNATE_STATE: _Rule(
        same_object=_same_label,
    ),
    ItemType.VARIABLE: _Rule(
        same_object=lambda s, d: (
            s.label == d.label
            and _props(s).get("qDefinition") == _props(d).get("qDefinition")
        ),
        definition=_variable_definition,
    ),
    ItemType.BOOKMARK: _Rule(
        same_object=lambda s, d: _bookmark_key(s) == _bookmark_key(d),
        importable=False,
    ),
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def classify(item: Item, destination: Iterable[Item]) -> Classification:
    """Classify *item* against the destination items of the same type.

    Items without properties (summary rows) are never importable.
    """
    rule = RULES[item.type]
    destination = [d for d in destination if d.type == item.type]

    exists = any(rule.same_object(item, d) for d in destination)
    name_taken = any(d.label == item.label for d in destination)

    importable = rule.importable and item.properties is not None
    if item.type in UNIQUE_NAME_TYPES and name_taken:
        importable = False

    target = None
    if rule.definition is not None and item.properties is not None:
        source_definition = rule.definition(item)
        for d in destination:
            if d.label == item.label and rule.definition(d) != source_definition:
                target = rule.target_id(d)
                break

    return Classification(exists=exists, importable=importable, updatable_target_id=target)


def annotate(items: Iterable[Item], destination: Iterable[Item]) -> list[Item]:
    """Write classification flags onto *items* and return them.

    Items with an operation in flight keep their flags.
    """
    destination = list(destination)
    items = list(items)
    for item in items:
        if item.status.busy:
            continue
        result = classify(item, destination)
        item.status.exists = result.exists
        item.status.importable = result.importable
        item.status.updatable = result.updatable
        item.updatable_target_id = result.updatable_target_id or ""
    logger.debug("Classified %d item(s)", len(items))
    return items
