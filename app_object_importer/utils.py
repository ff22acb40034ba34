"""
Utility functions for handling engine payloads.

Provides property sanitising, script-section parsing and rebuilding, and
small formatting helpers shared by the collectors and importers.

Load scripts are a single text blob.  Each section starts with the literal
marker ``///$tab `` followed by the section title and a CRLF line break::

    ///$tab Main\\r\\n
    SET ThousandSep=',';\\r\\n
    ///$tab Orders\\r\\n
    LOAD * FROM orders.qvd (qvd);\\r\\n
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional

from .errors import NotFoundError


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SCRIPT_TAB_MARKER = "///$tab "
SCRIPT_LINE_BREAK = "\r\n"

# Publishing metadata that must not travel to another document.
PUBLISH_META_FIELDS = (
    "createdDate",
    "modifiedDate",
    "published",
    "publishTime",
    "approved",
    "owner",
    "sourceObject",
    "draftObject",
    "privileges",
)

DEFAULT_STATE = "$"


# ---------------------------------------------------------------------------
# Generic helpers
# ---------------------------------------------------------------------------

def deep_copy(value: Any) -> Any:
    """Return a deep copy of a JSON-like payload."""
    return copy.deepcopy(value)


def omit(mapping: Optional[dict], keys: Iterable[str]) -> dict:
    """Return a shallow copy of *mapping* without *keys*."""
    drop = set(keys)
    return {k: v for k, v in (mapping or {}).items() if k not in drop}


def label_sort_key(item) -> str:
    """Case-insensitive sort key on an item's label."""
    return (item.label or "").lower()


def sanitize_object_data(props: dict) -> dict:
    """Remove server publish metadata from object properties.

    Drops the publishing fields from ``qMetaDef`` and the generated
    ``qMeta`` block.  Applying it twice gives the same result as once.

    Args:
        props: Object properties (not modified).

    Returns:
        A sanitised deep copy.
    """
    data = deep_copy(props)
    if isinstance(data.get("qMetaDef"), dict):
        data["qMetaDef"] = omit(data["qMetaDef"], PUBLISH_META_FIELDS)
    data.pop("qMeta", None)
    return data


def get_path(data: Any, *keys: str, default: Any = None) -> Any:
    """Walk nested dicts, returning *default* when a key is missing."""
    for key in keys:
        if not isinstance(data, dict) or key not in data:
            return default
        data = data[key]
    return data


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def format_timestamp(value: Optional[str]) -> Optional[str]:
    """Format an engine ISO timestamp for display, or None when absent."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return str(value)
    return parsed.strftime("%Y-%m-%d %H:%M:%S")


def format_owner(owner: Any) -> Optional[str]:
    """Return ``directory/user`` for an owner record, or the plain string."""
    if isinstance(owner, str):
        return owner
    if isinstance(owner, dict) and owner:
        return f"{owner.get('userDirectory', '')}/{owner.get('userId', '')}"
    return None


def format_state_name(state: str) -> str:
    return "Default state" if state == DEFAULT_STATE else state


# ---------------------------------------------------------------------------
# Script sections
# ---------------------------------------------------------------------------

@dataclass
class ScriptSection:
    """One tab of a load script."""
    title: str
    body: str
    has_marker: bool = True

    def render(self) -> str:
        text = f"{self.title}{SCRIPT_LINE_BREAK}{self.body}"
        return f"{SCRIPT_TAB_MARKER}{text}" if self.has_marker else text


def parse_script(script: str) -> list[ScriptSection]:
    """Split a script into its sections, in source order.

    Empty fragments are dropped.  Text before the first marker is kept as a
    section of its own (titled by its first line) without a marker.
    """
    script = script or ""
    sections = []
    for ix, fragment in enumerate(script.split(SCRIPT_TAB_MARKER)):
        if not fragment:
            continue
        lines = fragment.split(SCRIPT_LINE_BREAK)
        sections.append(ScriptSection(
            title=lines[0],
            body=SCRIPT_LINE_BREAK.join(lines[1:]),
            has_marker=ix > 0,
        ))
    return sections


def render_script(sections: Iterable[ScriptSection]) -> str:
    return "".join(s.render() for s in sections)


def unique_title(title: str, existing: Iterable[str]) -> str:
    """Return *title*, or ``"title (n)"`` with the smallest free n >= 1."""
    taken = set(existing)
    candidate, n = title, 0
    while candidate in taken:
        n += 1
        candidate = f"{title} ({n})"
    return candidate


def append_script_section(script: str, title: str, body: str) -> tuple[str, str]:
    """Append a section at the end of *script* under a unique title.

    Returns:
        ``(new_script, title_used)``
    """
    script = script or ""
    title = unique_title(title, (s.title for s in parse_script(script)))
    if script and not script.endswith(SCRIPT_LINE_BREAK):
        script += SCRIPT_LINE_BREAK
    section = ScriptSection(title=title, body=body or "")
    return script + section.render(), title


def replace_script_section(script: str, title: str, body: str) -> str:
    """Rewrite the body of the section titled *title*, keeping all others.

    Raises:
        NotFoundError: If no section has exactly that title.
    """
    sections = parse_script(script)
    for section in sections:
        if section.title == title:
            section.body = body or ""
            return render_script(sections)
    raise NotFoundError(
        f"Script section not updated: could not find section with title '{title}'"
    )
