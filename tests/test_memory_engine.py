"""Tests for the in-memory engine."""

import asyncio
import json

import pytest

from app_object_importer.errors import ConflictError, NotFoundError
from app_object_importer.memory_engine import MemoryEngine


def _app(engine, app_id="source"):
    return engine.open_document(app_id)


class TestDocuments:
    def test_open_unknown(self, engine):
        with pytest.raises(NotFoundError):
            engine.open_document("nope")

    def test_open_records_call(self, engine):
        engine.open_document("source")
        assert engine.open_calls == ["source"]

    def test_list_documents(self, engine):
        docs = asyncio.run(engine.list_documents())
        assert [d["qDocId"] for d in docs] == ["source", "dest"]

    def test_add_document_requires_id(self):
        with pytest.raises(ValueError):
            MemoryEngine([{"qTitle": "x"}])

    def test_create_document_conflict(self, engine):
        with pytest.raises(ConflictError):
            engine.create_document("dest")

    def test_directory_round_trip(self, tmp_path, source_doc):
        (tmp_path / "source.json").write_text(json.dumps(source_doc), encoding="utf-8")
        (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")
        engine = MemoryEngine.from_directory(str(tmp_path))
        assert list(engine.documents) == ["source"]

        engine.documents["source"].data["qTitle"] = "Renamed"
        path = engine.save_document("source")
        assert json.loads(open(path, encoding="utf-8").read())["qTitle"] == "Renamed"

    def test_missing_directory(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            MemoryEngine.from_directory(str(tmp_path / "missing"))

    def test_current_app(self, engine, dest_doc):
        assert engine.get_current_app().id == "dest"
        assert MemoryEngine([dest_doc]).get_current_app() is None


class TestLists:
    def test_session_list_must_be_closed(self, engine):
        app = _app(engine)

        async def run():
            session = await app.get_list("sheet")
            assert app.document.open_lists == 1
            await session.close()
            await session.close()
            return session.items

        items = asyncio.run(run())
        assert app.document.open_lists == 0
        assert items[0]["qData"]["rank"] == 0
        assert items[0]["qMeta"]["title"] == "Overview"

    def test_variable_list_entries(self, engine):
        async def run():
            async with await _app(engine).get_list("VariableList") as session:
                return session.items

        by_name = {e["qName"]: e for e in asyncio.run(run())}
        assert by_name["vYear"]["qIsScriptCreated"] is True
        assert by_name["vYear"]["qData"]["tags"] == ["time"]

    def test_unknown_list_type(self, engine):
        with pytest.raises(ValueError):
            asyncio.run(_app(engine).get_list("ChartList"))


class TestObjects:
    def test_layout_merges_meta(self, engine):
        async def run():
            obj = await _app(engine).get_object("sheet-1")
            return await obj.get_layout()

        layout = asyncio.run(run())
        assert "qMetaDef" not in layout
        assert layout["qMeta"]["title"] == "Overview"
        assert layout["qMeta"]["published"] is True

    def test_set_properties_keeps_id(self, engine):
        async def run():
            obj = await _app(engine).get_object("measure-1")
            await obj.set_properties({"qMeasure": {"qDef": "Count(x)"}})
            return await obj.get_properties()

        props = asyncio.run(run())
        assert props["qInfo"] == {"qId": "measure-1", "qType": "measure"}
        assert props["qMeasure"]["qDef"] == "Count(x)"

    def test_created_ids(self, engine):
        async def run():
            app = _app(engine, "dest")
            first = await app.create_dimension({"qInfo": {"qId": "d-dim-1"}})
            second = await app.create_dimension({"qInfo": {"qId": "new-dim"}})
            return first.id, second.id

        first, second = asyncio.run(run())
        assert first != "d-dim-1"
        assert second == "new-dim"

    def test_typed_lookup(self, engine):
        with pytest.raises(NotFoundError):
            asyncio.run(_app(engine).get_dimension("measure-1"))

    def test_property_tree_replaces_children(self, engine):
        async def run():
            app = _app(engine)
            obj = await app.get_object("sheet-1")
            tree = await obj.get_full_property_tree()
            assert [c["qProperty"]["qInfo"]["qId"] for c in tree["qChildren"]] == ["bar-1"]
            tree["qChildren"] = [{"qProperty": {"qInfo": {"qId": "pie-1", "qType": "piechart"}}}]
            await obj.set_full_property_tree(tree)
            return app.document

        doc = asyncio.run(run())
        assert "bar-1" not in doc.objects
        assert doc.objects["sheet-1"]["children"] == ["pie-1"]

    def test_tree_write_remaps_cell_names(self, engine):
        async def run():
            app = _app(engine)
            obj = await app.create_object({"qInfo": {"qType": "sheet"},
                                           "cells": [{"name": "bar-1"}]})
            # "bar-1" is taken, so the child gets a new id.
            await obj.set_full_property_tree({
                "qProperty": await obj.get_properties(),
                "qChildren": [{"qProperty": {"qInfo": {"qId": "bar-1", "qType": "barchart"}}}],
            })
            return await obj.get_properties(), app.document.objects[obj.id]["children"]

        props, children = asyncio.run(run())
        assert children[0] != "bar-1"
        assert props["cells"][0]["name"] == children[0]


class TestEngineRules:
    def test_duplicate_variable(self, engine):
        with pytest.raises(ConflictError):
            asyncio.run(_app(engine, "dest").create_variable_ex({"qName": "vYear"}))

    def test_variable_by_name(self, engine):
        async def run():
            app = _app(engine)
            var = await app.get_variable_by_name("vToday")
            return var.id

        assert asyncio.run(run()) == "var-2"
        with pytest.raises(NotFoundError):
            asyncio.run(_app(engine).get_variable_by_name("vMissing"))

    def test_duplicate_state(self, engine):
        with pytest.raises(ConflictError):
            asyncio.run(_app(engine).add_alternate_state("Compare"))

    def test_set_analysis(self, engine):
        expr = asyncio.run(_app(engine).get_set_analysis("$", "bm-1"))
        assert expr == "{<Region={'EU'}>}"
        assert asyncio.run(_app(engine).get_set_analysis("Compare", "bm-1")) == ""


class TestExpressions:
    def test_expand_variables(self, engine):
        assert asyncio.run(_app(engine).expand_expression("Year = $(vYear)")) == "Year = 2024"

    def test_bad_field_ranges(self, engine):
        result = asyncio.run(_app(engine).check_expression("Sum([Amount]) + Sum([Cost])"))
        assert result["qErrorMsg"] == ""
        bad = result["qBadFieldNames"]
        assert len(bad) == 1
        expr = "Sum([Amount]) + Sum([Cost])"
        assert expr[bad[0]["qFrom"]:bad[0]["qFrom"] + bad[0]["qCount"]] == "Cost"

    def test_plain_field_name(self, engine):
        assert asyncio.run(_app(engine).check_expression("Region"))["qBadFieldNames"] == []
        assert asyncio.run(_app(engine).check_expression("Country"))["qBadFieldNames"]

    def test_unbalanced(self, engine):
        result = asyncio.run(_app(engine).check_expression("Sum(Amount"))
        assert "unbalanced" in result["qErrorMsg"]
