"""
In-memory engine backed by JSON document files.

Implements every call of :mod:`.engine` against plain dictionaries so the
importer can run without a live host: the MCP server uses it over a
directory of ``*.json`` documents, and the test-suite builds documents
inline.

Document layout::

    {
      "qDocId": "sales",
      "qTitle": "Sales",
      "script": "///$tab Main\\r\\n...",
      "stateNames": ["Compare"],
      "fields": ["Region", "Amount"],
      "objects": {
        "<id>": {"properties": {...}, "meta": {...}, "children": ["<id>"]}
      },
      "setAnalysis": {"<bookmark id>": {"$": "{<Region={'EU'}>}"}}
    }

Every object kind (sheet, visualization, master object, dimension,
measure, variable, bookmark) lives in ``objects`` and is told apart by
``properties.qInfo.qType``.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import os
import re
from datetime import datetime, timezone
from typing import Any, Optional

from .engine import Engine, EngineApp, EngineObject, SessionList
from .errors import ConflictError, NotFoundError
from .utils import deep_copy, get_path

logger = logging.getLogger(__name__)

# qType values of objects that are not plain visualizations.
_SHEET = "sheet"
_MASTER_OBJECT = "masterobject"
_DIMENSION = "dimension"
_MEASURE = "measure"
_VARIABLE = "variable"
_BOOKMARK = "bookmark"

_VARIABLE_REF_RE = re.compile(r"\$\((\w+)\)")
_FIELD_REF_RE = re.compile(r"\[([^\]]+)\]")
_PLAIN_FIELD_RE = re.compile(r"^[A-Za-z_][\w .%-]*$")


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


def _empty_document(app_id: str, title: str = "") -> dict:
    return {
        "qDocId": app_id,
        "qTitle": title or app_id,
        "script": "",
        "stateNames": [],
        "fields": [],
        "objects": {},
        "setAnalysis": {},
    }


# ===================================================================
# Lists and objects
# ===================================================================

class MemorySessionList(SessionList):
    """A live list; counts itself as open on its document until closed."""

    def __init__(self, doc: "MemoryDocument", items: list[dict]):
        self._doc = doc
        self.items = items
        self.closed = False
        doc.open_lists += 1

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._doc.open_lists -= 1


class MemoryObject(EngineObject):
    """Handle on one stored object."""

    def __init__(self, doc: "MemoryDocument", object_id: str):
        self._doc = doc
        self.id = object_id

    @property
    def _record(self) -> dict:
        return self._doc.record(self.id)

    async def get_layout(self) -> dict:
        return self._doc.build_layout(self.id)

    async def get_properties(self) -> dict:
        return deep_copy(self._record["properties"])

    async def set_properties(self, props: dict) -> None:
        record = self._record
        new_props = deep_copy(props)
        new_props.setdefault("qInfo", {})["qId"] = self.id
        new_props["qInfo"].setdefault(
            "qType", get_path(record, "properties", "qInfo", "qType", default=""),
        )
        record["properties"] = new_props
        record.setdefault("meta", {})["modifiedDate"] = _now()

    async def get_full_property_tree(self) -> dict:
        return self._doc.build_tree(self.id)

    async def set_full_property_tree(self, tree: dict) -> None:
        self._doc.write_tree(self.id, tree)


# ===================================================================
# Document
# ===================================================================

class MemoryDocument:
    """Mutable state of one document."""

    def __init__(self, data: dict):
        self.data = data
        self.data.setdefault("objects", {})
        self.data.setdefault("stateNames", [])
        self.data.setdefault("fields", [])
        self.data.setdefault("setAnalysis", {})
        self.data.setdefault("script", "")
        self.open_lists = 0
        self._ids = itertools.count(1)

    @property
    def id(self) -> str:
        return self.data["qDocId"]

    @property
    def objects(self) -> dict:
        return self.data["objects"]

    # ------ records ------

    def record(self, object_id: str) -> dict:
        try:
            return self.objects[object_id]
        except KeyError:
            raise NotFoundError(f"Object '{object_id}' not found") from None

    def of_type(self, q_type: str) -> list[tuple[str, dict]]:
        return [
            (oid, rec) for oid, rec in self.objects.items()
            if get_path(rec, "properties", "qInfo", "qType") == q_type
        ]

    def typed_record(self, object_id: str, q_type: str) -> dict:
        record = self.objects.get(object_id)
        if record is None or get_path(record, "properties", "qInfo", "qType") != q_type:
            raise NotFoundError(f"No {q_type} with id '{object_id}'")
        return record

    def parent_of(self, object_id: str) -> Optional[str]:
        for oid, rec in self.objects.items():
            if object_id in rec.get("children", []):
                return oid
        return None

    def new_id(self, preferred: str = "") -> str:
        """Return *preferred* when unused, otherwise a fresh id."""
        if preferred and preferred not in self.objects:
            return preferred
        while True:
            candidate = f"{self.id}-{next(self._ids)}"
            if candidate not in self.objects:
                return candidate

    def store(self, props: dict, q_type: Optional[str] = None) -> str:
        props = deep_copy(props)
        info = props.setdefault("qInfo", {})
        object_id = self.new_id(info.get("qId", ""))
        info["qId"] = object_id
        if q_type:
            info["qType"] = q_type
        stamp = _now()
        self.objects[object_id] = {
            "properties": props,
            "meta": {"createdDate": stamp, "modifiedDate": stamp},
            "children": [],
        }
        return object_id

    def remove(self, object_id: str) -> None:
        record = self.objects.pop(object_id, None)
        for child_id in (record or {}).get("children", []):
            self.remove(child_id)

    # ------ layouts and trees ------

    def build_layout(self, object_id: str) -> dict:
        record = self.record(object_id)
        props = deep_copy(record["properties"])
        meta_def = props.pop("qMetaDef", {}) or {}
        q_meta = deep_copy(record.get("meta", {}))
        for key in ("title", "description", "tags"):
            if key in meta_def:
                q_meta[key] = meta_def[key]
        if props.get("qInfo", {}).get("qType") == _VARIABLE:
            q_meta.setdefault("title", props.get("qName", ""))
        props["qMeta"] = q_meta
        return props

    def build_tree(self, object_id: str) -> dict:
        record = self.record(object_id)
        return {
            "qProperty": deep_copy(record["properties"]),
            "qChildren": [self.build_tree(c) for c in record.get("children", [])],
        }

    def write_tree(self, object_id: str, tree: dict) -> None:
        """Replace the properties and all children of *object_id*."""
        record = self.record(object_id)
        props = deep_copy(tree.get("qProperty") or record["properties"])
        props.setdefault("qInfo", {})["qId"] = object_id
        for child_id in record.get("children", []):
            self.remove(child_id)
        record["children"] = []

        renamed: dict[str, str] = {}
        for child in tree.get("qChildren") or []:
            wanted = get_path(child, "qProperty", "qInfo", "qId", default="")
            child_id = self.store(child.get("qProperty") or {})
            if wanted and wanted != child_id:
                renamed[wanted] = child_id
            record["children"].append(child_id)
            if child.get("qChildren"):
                self.write_tree(child_id, {
                    "qProperty": self.objects[child_id]["properties"],
                    "qChildren": child["qChildren"],
                })

        # Cells reference their visualizations by id.
        for cell in props.get("cells", []) or []:
            if cell.get("name") in renamed:
                cell["name"] = renamed[cell["name"]]
        record["properties"] = props
        record.setdefault("meta", {})["modifiedDate"] = _now()

    # ------ list payloads ------

    def list_items(self, list_type: str) -> list[dict]:
        if list_type == "FieldList":
            return [{"qName": name} for name in self.data["fields"]]

        q_type = {
            "sheet": _SHEET,
            "masterobject": _MASTER_OBJECT,
            "DimensionList": _DIMENSION,
            "MeasureList": _MEASURE,
            "VariableList": _VARIABLE,
            "BookmarkList": _BOOKMARK,
        }.get(list_type)
        if q_type is None:
            raise ValueError(f"Unsupported list type '{list_type}'")

        items = []
        for oid, rec in self.of_type(q_type):
            props = rec["properties"]
            layout = self.build_layout(oid)
            entry: dict[str, Any] = {
                "qInfo": deep_copy(props["qInfo"]),
                "qMeta": layout["qMeta"],
            }
            if q_type == _SHEET:
                entry["qData"] = {
                    "rank": props.get("rank"),
                    "cells": deep_copy(props.get("cells", [])),
                    "title": layout["qMeta"].get("title", ""),
                }
            elif q_type == _MASTER_OBJECT:
                entry["qData"] = {"visualization": props.get("visualization", "")}
            elif q_type == _VARIABLE:
                entry.update({
                    "qName": props.get("qName", ""),
                    "qDefinition": props.get("qDefinition", ""),
                    "qDescription": props.get("qComment", ""),
                    "qIsReserved": bool(props.get("qIsReserved", False)),
                    "qIsScriptCreated": bool(props.get("qIsScriptCreated", False)),
                    "qData": {"tags": list(props.get("tags", []))},
                })
            elif q_type == _BOOKMARK:
                entry["qData"] = {"qBookmark": deep_copy(props.get("qBookmark", {}))}
            else:
                entry["qData"] = {"title": layout["qMeta"].get("title", "")}
            items.append(entry)
        return items


# ===================================================================
# App handle
# ===================================================================

class MemoryApp(EngineApp):
    """Handle on a :class:`MemoryDocument`."""

    def __init__(self, doc: MemoryDocument, open_latency: float = 0.0):
        self._doc = doc
        self.id = doc.id
        self._open_latency = open_latency

    @property
    def document(self) -> MemoryDocument:
        return self._doc

    async def wait_for_open(self) -> None:
        if self._open_latency:
            await asyncio.sleep(self._open_latency)

    async def get_app_layout(self) -> dict:
        return {
            "qTitle": self._doc.data.get("qTitle", self.id),
            "qStateNames": list(self._doc.data["stateNames"]),
        }

    async def get_list(self, list_type: str) -> SessionList:
        return MemorySessionList(self._doc, self._doc.list_items(list_type))

    # ------ generic objects ------

    async def get_object(self, object_id: str) -> EngineObject:
        self._doc.record(object_id)
        return MemoryObject(self._doc, object_id)

    async def get_object_properties(self, object_id: str) -> dict:
        record = self._doc.record(object_id)
        result = {"id": object_id, "properties": deep_copy(record["properties"])}
        if record.get("children") or "qChildListDef" in record["properties"]:
            result["propertyTree"] = self._doc.build_tree(object_id)
        return result

    async def get_full_property_tree(self, object_id: str) -> dict:
        return self._doc.build_tree(object_id)

    async def create_object(self, props: dict) -> EngineObject:
        object_id = self._doc.store(props)
        logger.debug("Created object %s in %s", object_id, self.id)
        return MemoryObject(self._doc, object_id)

    # ------ master items ------

    async def create_dimension(self, props: dict) -> EngineObject:
        return MemoryObject(self._doc, self._doc.store(props, _DIMENSION))

    async def get_dimension(self, dimension_id: str) -> EngineObject:
        self._doc.typed_record(dimension_id, _DIMENSION)
        return MemoryObject(self._doc, dimension_id)

    async def create_measure(self, props: dict) -> EngineObject:
        return MemoryObject(self._doc, self._doc.store(props, _MEASURE))

    async def get_measure(self, measure_id: str) -> EngineObject:
        self._doc.typed_record(measure_id, _MEASURE)
        return MemoryObject(self._doc, measure_id)

    # ------ variables ------

    async def create_variable_ex(self, props: dict) -> EngineObject:
        name = props.get("qName", "")
        if not name:
            raise ValueError("Variable name must not be empty")
        for _, rec in self._doc.of_type(_VARIABLE):
            if rec["properties"].get("qName") == name:
                raise ConflictError(f"Variable '{name}' already exists")
        return MemoryObject(self._doc, self._doc.store(props, _VARIABLE))

    async def get_variable_by_id(self, variable_id: str) -> EngineObject:
        self._doc.typed_record(variable_id, _VARIABLE)
        return MemoryObject(self._doc, variable_id)

    async def get_variable_by_name(self, name: str) -> EngineObject:
        for oid, rec in self._doc.of_type(_VARIABLE):
            if rec["properties"].get("qName") == name:
                return MemoryObject(self._doc, oid)
        raise NotFoundError(f"Variable '{name}' not found")

    # ------ states and bookmarks ------

    async def add_alternate_state(self, name: str) -> None:
        if not name:
            raise ValueError("State name must not be empty")
        if name in self._doc.data["stateNames"]:
            raise ConflictError(f"Alternate state '{name}' already exists")
        self._doc.data["stateNames"].append(name)

    async def get_bookmark(self, bookmark_id: str) -> EngineObject:
        self._doc.typed_record(bookmark_id, _BOOKMARK)
        return MemoryObject(self._doc, bookmark_id)

    async def get_set_analysis(self, state_name: str, bookmark_id: str) -> str:
        self._doc.typed_record(bookmark_id, _BOOKMARK)
        return get_path(
            self._doc.data["setAnalysis"], bookmark_id, state_name, default="",
        )

    # ------ expressions ------

    async def expand_expression(self, expression: str) -> str:
        definitions = {
            rec["properties"].get("qName"): rec["properties"].get("qDefinition", "")
            for _, rec in self._doc.of_type(_VARIABLE)
        }
        return _VARIABLE_REF_RE.sub(
            lambda m: definitions.get(m.group(1), m.group(0)), expression or "",
        )

    async def check_expression(self, expression: str) -> dict:
        expression = expression or ""
        fields = set(self._doc.data["fields"])
        error = ""
        if expression.count("(") != expression.count(")"):
            error = "Error in expression: unbalanced parentheses"

        bad = []
        refs = list(_FIELD_REF_RE.finditer(expression))
        if refs:
            for match in refs:
                if match.group(1) not in fields:
                    bad.append({"qFrom": match.start(1), "qCount": len(match.group(1))})
        elif _PLAIN_FIELD_RE.match(expression.strip()):
            name = expression.strip()
            if name not in fields:
                start = expression.index(name)
                bad.append({"qFrom": start, "qCount": len(name)})

        return {
            "qErrorMsg": error,
            "qBadFieldNames": bad,
            "qDangerousFieldNames": [],
        }

    # ------ script ------

    async def get_script(self) -> str:
        return self._doc.data["script"]

    async def set_script(self, script: str) -> None:
        self._doc.data["script"] = script


# ===================================================================
# Engine
# ===================================================================

class MemoryEngine(Engine):
    """Engine over a set of in-memory documents.

    Args:
        documents: Document payloads (see module docstring).
        current_app_id: Id of the document treated as already open.
        personal_mode: Report a desktop installation.
        extensions: ``[{'id', 'data'}]`` extension list (desktop mode).
        open_latency: Seconds each open takes before signalling.
    """

    def __init__(
        self,
        documents: Optional[list[dict]] = None,
        current_app_id: str = "",
        personal_mode: bool = True,
        extensions: Optional[list[dict]] = None,
        open_latency: float = 0.0,
    ):
        self.documents: dict[str, MemoryDocument] = {}
        for data in documents or []:
            self.add_document(data)
        self.current_app_id = current_app_id
        self.personal_mode = personal_mode
        self.extensions = list(extensions or [])
        self.open_latency = open_latency
        self.open_calls: list[str] = []
        self.source_paths: dict[str, str] = {}

    # ------ document management ------

    def add_document(self, data: dict) -> MemoryDocument:
        if not data.get("qDocId"):
            raise ValueError("Document payload has no 'qDocId'")
        doc = MemoryDocument(data)
        self.documents[doc.id] = doc
        return doc

    def create_document(self, app_id: str, title: str = "") -> MemoryDocument:
        if app_id in self.documents:
            raise ConflictError(f"Document '{app_id}' already exists")
        return self.add_document(_empty_document(app_id, title))

    @classmethod
    def from_directory(cls, directory: str, **kwargs) -> "MemoryEngine":
        """Load every ``*.json`` document in *directory*.

        Raises:
            FileNotFoundError: If *directory* does not exist.
        """
        if not os.path.isdir(directory):
            raise FileNotFoundError(f"Documents directory not found: {directory}")
        engine = cls(**kwargs)
        for name in sorted(os.listdir(directory)):
            if not name.lower().endswith(".json"):
                continue
            path = os.path.join(directory, name)
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
            data.setdefault("qDocId", os.path.splitext(name)[0])
            doc = engine.add_document(data)
            engine.source_paths[doc.id] = path
            logger.info("Loaded document %s from %s", doc.id, path)
        return engine

    def save_document(self, app_id: str, path: Optional[str] = None) -> str:
        """Write a document back to JSON and return the path used."""
        doc = self.documents.get(app_id)
        if doc is None:
            raise NotFoundError(f"App with id '{app_id}' not found")
        path = path or self.source_paths.get(app_id)
        if not path:
            raise ValueError(f"No file path known for document '{app_id}'")
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(doc.data, fh, indent=2)
        self.source_paths[app_id] = path
        logger.info("Saved document %s to %s", app_id, path)
        return path

    # ------ Engine interface ------

    def open_document(self, app_id: str, without_data: bool = True) -> EngineApp:
        doc = self.documents.get(app_id)
        if doc is None:
            raise NotFoundError(f"App with id '{app_id}' not found")
        self.open_calls.append(app_id)
        logger.debug("Opening %s (without_data=%s)", app_id, without_data)
        return MemoryApp(doc, self.open_latency)

    async def list_documents(self) -> list[dict]:
        return [
            {"qDocId": doc.id, "qTitle": doc.data.get("qTitle", doc.id)}
            for doc in self.documents.values()
        ]

    async def is_personal_mode(self) -> bool:
        return self.personal_mode

    async def get_extension_list(self) -> list[dict]:
        return deep_copy(self.extensions)

    def get_current_app(self) -> Optional[EngineApp]:
        doc = self.documents.get(self.current_app_id)
        return MemoryApp(doc) if doc else None
