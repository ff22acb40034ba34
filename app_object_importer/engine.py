"""
Abstract host-engine interface.

The importer never talks to a concrete engine directly.  Everything it
needs is declared here as abstract coroutines; :mod:`.memory_engine`
provides a complete in-memory implementation and other backends only have
to subclass these four classes.

Payload shapes follow the engine's own JSON conventions (``qInfo``,
``qMetaDef``, ``qProperty``/``qChildren`` property trees, and so on).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional


class SessionList(ABC):
    """A live list of objects.

    Live lists keep an update subscription open in the engine, so callers
    must close them as soon as the items have been read.  Usable as an
    async context manager::

        async with await app.get_list("sheet") as session:
            items = session.items
    """

    items: list[dict]

    @abstractmethod
    async def close(self) -> None:
        """Drop the engine's update subscription for this list."""

    async def __aenter__(self) -> "SessionList":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class EngineObject(ABC):
    """Handle on a single generic object (sheet, visualization, master item)."""

    id: str

    @abstractmethod
    async def get_layout(self) -> dict:
        """Return the evaluated layout (runtime and publish metadata)."""

    @abstractmethod
    async def get_properties(self) -> dict:
        """Return the authored properties."""

    @abstractmethod
    async def set_properties(self, props: dict) -> None:
        """Overwrite the object's properties."""

    @abstractmethod
    async def get_full_property_tree(self) -> dict:
        """Return ``{'qProperty': ..., 'qChildren': [...]}`` recursively."""

    @abstractmethod
    async def set_full_property_tree(self, tree: dict) -> None:
        """Overwrite properties and replace all children with *tree*."""


class EngineApp(ABC):
    """Handle on one opened document."""

    id: str

    @abstractmethod
    async def wait_for_open(self) -> None:
        """Resolve once the engine signals that the document is open."""

    @abstractmethod
    async def get_app_layout(self) -> dict:
        """Return the document layout (``qTitle``, ``qStateNames``...)."""

    # ------ lists ------

    @abstractmethod
    async def get_list(self, list_type: str) -> SessionList:
        """Open a live list.

        Supported types: ``sheet``, ``masterobject``, ``DimensionList``,
        ``MeasureList``, ``VariableList``, ``BookmarkList``, ``FieldList``.
        """

    # ------ generic objects ------

    @abstractmethod
    async def get_object(self, object_id: str) -> EngineObject:
        """Return a generic object handle.  Raises ``NotFoundError``."""

    @abstractmethod
    async def get_object_properties(self, object_id: str) -> dict:
        """Return ``{'id', 'properties'}`` plus ``'propertyTree'`` for
        objects that own children."""

    @abstractmethod
    async def get_full_property_tree(self, object_id: str) -> dict:
        """Return the full property tree of an object."""

    @abstractmethod
    async def create_object(self, props: dict) -> EngineObject:
        """Create a generic object, assigning an id when none is free."""

    # ------ master items ------

    @abstractmethod
    async def create_dimension(self, props: dict) -> EngineObject:
        ...

    @abstractmethod
    async def get_dimension(self, dimension_id: str) -> EngineObject:
        ...

    @abstractmethod
    async def create_measure(self, props: dict) -> EngineObject:
        ...

    @abstractmethod
    async def get_measure(self, measure_id: str) -> EngineObject:
        ...

    # ------ variables ------

    @abstractmethod
    async def create_variable_ex(self, props: dict) -> EngineObject:
        """Create a variable.  Raises ``ConflictError`` on a duplicate name."""

    @abstractmethod
    async def get_variable_by_id(self, variable_id: str) -> EngineObject:
        ...

    @abstractmethod
    async def get_variable_by_name(self, name: str) -> EngineObject:
        ...

    # ------ states and bookmarks ------

    @abstractmethod
    async def add_alternate_state(self, name: str) -> None:
        """Add a state.  Raises ``ConflictError`` when it already exists."""

    @abstractmethod
    async def get_bookmark(self, bookmark_id: str) -> EngineObject:
        ...

    @abstractmethod
    async def get_set_analysis(self, state_name: str, bookmark_id: str) -> str:
        """Return the set expression a bookmark applies in *state_name*."""

    # ------ expressions ------

    @abstractmethod
    async def expand_expression(self, expression: str) -> str:
        ...

    @abstractmethod
    async def check_expression(self, expression: str) -> dict:
        """Return ``{'qErrorMsg', 'qBadFieldNames', 'qDangerousFieldNames'}``.

        Bad field names are ``{'qFrom', 'qCount'}`` ranges into the
        expression.
        """

    # ------ script ------

    @abstractmethod
    async def get_script(self) -> str:
        ...

    @abstractmethod
    async def set_script(self, script: str) -> None:
        ...


class Engine(ABC):
    """Global engine entry point."""

    @abstractmethod
    def open_document(self, app_id: str, without_data: bool = True) -> EngineApp:
        """Start opening a document and return its (not yet open) handle.

        Await :meth:`EngineApp.wait_for_open` before using the handle.
        Raises ``NotFoundError`` for an unknown id.
        """

    @abstractmethod
    async def list_documents(self) -> list[dict]:
        """Return ``[{'qDocId', 'qTitle'}]`` for every available document."""

    @abstractmethod
    async def is_personal_mode(self) -> bool:
        """True on a desktop (single user) installation."""

    async def get_extension_list(self) -> list[dict]:
        """Return ``[{'id', 'data'}]`` for installed extensions (desktop)."""
        return []

    def get_current_app(self) -> Optional[EngineApp]:
        """Return the already-open current document, if the host has one."""
        return None


def object_id(props: Any) -> str:
    """Return ``qInfo.qId`` of a properties payload, or an empty string."""
    if isinstance(props, dict):
        return (props.get("qInfo") or {}).get("qId", "") or ""
    return ""
