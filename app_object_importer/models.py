"""
Shared data models and enumerations for the app object importer.

Provides:
- ``str``-based enums for item types and operation outcomes.  These compare
  equal to plain strings (``ItemType.SHEET == "sheet"``), so values read
  from engine payloads or tool arguments can be used directly.
- The :class:`Item` record every collector produces, with its mutable
  :class:`ItemStatus` flags and :class:`DetailField` preview entries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional

logger = logging.getLogger(__name__)


# ===================================================================
# Enumerations
# ===================================================================

class ItemType(str, Enum):
    """Importable object types."""
    SCRIPT = "script"
    SHEET = "sheet"
    DIMENSION = "dimension"
    MEASURE = "measure"
    MASTER_OBJECT = "masterObject"
    ALTERNATE_STATE = "alternate-state"
    VARIABLE = "variable"
    BOOKMARK = "bookmark"


class ImportOutcome(str, Enum):
    """What an importer actually did with an item."""
    ADDED = "added"
    UPDATED = "updated"
    SKIPPED = "skipped"


# Types whose names must be unique within a document.
UNIQUE_NAME_TYPES = frozenset({ItemType.ALTERNATE_STATE, ItemType.VARIABLE})


# ===================================================================
# Dataclasses
# ===================================================================

@dataclass
class DetailField:
    """A labelled preview value shown for an item."""
    label: str
    value: Any = None
    is_code: bool = False

    @property
    def is_empty(self) -> bool:
        return self.value is None or self.value == "" or self.value == []

    def to_dict(self) -> dict:
        d: dict[str, Any] = {"label": self.label, "value": self.value}
        if self.is_code:
            d["is_code"] = True
        return d


@dataclass
class ItemStatus:
    """Per-item state flags.

    ``exists``, ``importable`` and ``updatable`` are computed independently
    during reconciliation.  The remaining flags track operations; a terminal
    flag (``imported``, ``import_failed``, ``updated``, ``update_failed``)
    is never reset.
    """
    selected: bool = False
    exists: bool = False
    importable: bool = False
    importing: bool = False
    imported: bool = False
    import_failed: bool = False
    updatable: bool = False
    updating: bool = False
    updated: bool = False
    update_failed: bool = False

    @property
    def import_done(self) -> bool:
        return self.imported or self.import_failed

    @property
    def update_done(self) -> bool:
        return self.updated or self.update_failed

    @property
    def busy(self) -> bool:
        return self.importing or self.updating

    def to_dict(self) -> dict:
        return {
            "selected": self.selected,
            "exists": self.exists,
            "importable": self.importable,
            "importing": self.importing,
            "imported": self.imported,
            "import_failed": self.import_failed,
            "updatable": self.updatable,
            "updating": self.updating,
            "updated": self.updated,
            "update_failed": self.update_failed,
        }


@dataclass
class Classification:
    """Result of reconciling one item against the destination."""
    exists: bool = False
    importable: bool = False
    updatable_target_id: Optional[str] = None

    @property
    def updatable(self) -> bool:
        return bool(self.updatable_target_id)


@dataclass
class Item:
    """Normalised representation of one importable object.

    Attributes:
        id: Engine id, or the name for alternate states.
        type: The :class:`ItemType`; set by the collector, never changed.
        label: Display title.
        properties: Type-specific payload used to recreate the object.
            ``{'tab', 'script'}`` for script sections, the bare name for
            alternate states.
        details: Preview fields keyed by name.
        search_terms: Lower-cased terms used for filtering.
        children: Property subtrees travelling with the object.
        errors: Expression validation messages.
        layout: Runtime metadata as returned by the engine.
        icon: Display hint (``debug``, ``drill-down``, ``script``).
    """
    id: str
    type: ItemType
    label: str
    properties: Any = None
    details: dict[str, DetailField] = field(default_factory=dict)
    search_terms: frozenset = field(default_factory=frozenset)
    status: ItemStatus = field(default_factory=ItemStatus)
    updatable_target_id: str = ""
    children: list = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    layout: dict = field(default_factory=dict)
    icon: str = ""

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "type" and "type" in self.__dict__:
            raise AttributeError("Item type is immutable once set")
        if name == "type":
            value = ItemType(value)
        super().__setattr__(name, value)

    def matches(self, query: str) -> bool:
        """Return True if every word of *query* occurs in the label or terms."""
        words = query.lower().split()
        if not words:
            return True
        haystack = [self.label.lower(), *self.search_terms]
        return all(any(w in h for h in haystack) for w in words)

    def to_dict(self, include_properties: bool = False) -> dict:
        """Serialize to a plain dict (for JSON compatibility)."""
        d: dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "label": self.label,
            "status": self.status.to_dict(),
            "details": {
                k: v.to_dict() for k, v in self.details.items()
                if not v.is_empty
            },
        }
        if self.updatable_target_id:
            d["updatable_target_id"] = self.updatable_target_id
        if self.errors:
            d["errors"] = list(self.errors)
        if self.icon:
            d["icon"] = self.icon
        if include_properties:
            d["properties"] = self.properties
            if self.children:
                d["children"] = self.children
        return d


def build_search_terms(*parts: Any) -> frozenset:
    """Flatten strings and lists of strings into a set of lower-cased terms."""
    terms: set[str] = set()
    for part in parts:
        if part is None:
            continue
        if isinstance(part, str):
            values: Iterable[Any] = [part]
        else:
            values = part
        for value in values:
            if isinstance(value, str) and value.strip():
                terms.add(value.strip().lower())
    return frozenset(terms)
