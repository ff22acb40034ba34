"""Tests for the object collectors."""

import asyncio

import pytest

from app_object_importer import collectors
from app_object_importer.errors import NotFoundError, UnsupportedTypeError
from app_object_importer.models import ItemType


def _collect(context, item_type, app_id="source", **options):
    return asyncio.run(collectors.collect(context, item_type, app_id, **options))


class TestScript:
    def test_sections_keep_script_order(self, context):
        items = _collect(context, "script")
        assert [(i.id, i.label) for i in items] == [("Section 1", "Main"), ("Section 2", "Orders")]
        assert items[1].properties == {"tab": "Orders", "script": "LOAD * FROM orders.qvd (qvd);\r\n"}
        assert items[1].details["script"].is_code


class TestSheets:
    def test_sorted_by_rank(self, context, dest_doc):
        dest_doc["objects"]["d-sheet-0"]["properties"]["rank"] = 5
        items = _collect(context, "sheet", "dest")
        assert [i.label for i in items] == ["Beta", "Gamma", "Alpha"]

    def test_details(self, context):
        (sheet,) = _collect(context, "sheet")
        assert sheet.id == "sheet-1"
        assert sheet.details["description"].value == "Main sheet"
        assert sheet.details["status"].value == "Public (2024-03-01 10:00:00)"
        assert sheet.details["createdDate"].value == "2024-01-02 08:30:00"
        assert sheet.details["gridSize"].value == "Small"
        assert sheet.details["visualizations"].value is None
        assert sheet.children == []
        assert sheet.matches("kpi")

    def test_load_with_objects(self, context):
        (sheet,) = _collect(context, "sheet", load_with_objects=True)
        assert sheet.details["visualizations"].value == ["Bar chart"]
        assert len(sheet.children) == 1
        assert sheet.children[0]["qProperty"]["qInfo"]["qId"] == "bar-1"
        assert sheet.children[0]["qChildren"] == []

    def test_visualization_errors(self, context, source_doc):
        source_doc["objects"]["bar-1"]["properties"]["qHyperCubeDef"]["qMeasures"] = [
            {"qDef": {"qDef": "Sum([Cost])"}},
        ]
        (sheet,) = _collect(context, "sheet", load_with_objects=True, validate=True)
        assert sheet.errors == ["bar-1: Expression 2: Expression contains invalid field name `Cost`"]
        assert sheet.icon == "debug"

    def test_summary_row(self, context):
        items = _collect(context, "sheet", "dest", include_summary=True)
        summary = items[0]
        assert summary.label == "Summary"
        assert summary.properties is None
        assert summary.details["personal"].value == "3"
        assert len(items) == 4

    def test_lists_are_closed(self, context, engine):
        _collect(context, "sheet", load_with_objects=True)
        assert engine.documents["source"].open_lists == 0


class TestMasterItems:
    def test_dimensions(self, context):
        (dim,) = _collect(context, "dimension")
        assert dim.label == "Region"
        assert dim.details["type"].value == "Single"
        assert dim.details["definition"].value == ["Region"]
        assert dim.matches("geo region")

    def test_drilldown_icon(self, context, source_doc):
        source_doc["objects"]["dim-1"]["properties"]["qDim"]["qGrouping"] = "H"
        (dim,) = _collect(context, "dimension")
        assert dim.details["type"].value == "Drill-down"
        assert dim.icon == "drill-down"

    def test_measures_sorted_by_label(self, context):
        items = _collect(context, "measure")
        assert [i.label for i in items] == ["Average", "Revenue"]
        revenue = items[1]
        assert revenue.details["expression"].value == "Sum(Amount)"
        assert revenue.details["description"].value == "Total revenue"

    def test_measure_validation(self, context, source_doc):
        source_doc["objects"]["measure-2"]["properties"]["qMeasure"]["qDef"] = "Avg([Cost])"
        items = _collect(context, "measure", validate=True)
        assert items[0].errors == ["Expression contains invalid field name `Cost`"]
        assert items[1].errors == []

    def test_master_objects(self, context):
        (obj,) = _collect(context, "masterObject")
        assert obj.label == "Sales chart"
        assert obj.details["type"].value == "Bar chart"
        assert obj.details["dimensions"].value == ["dim-1 (Master item)"]
        assert obj.details["measures"].value == ["Sum(Amount)"]
        assert obj.matches("sum(amount)")

    def test_master_object_with_children(self, context, source_doc):
        objects = source_doc["objects"]
        objects["mo-1"]["properties"] = {
            "qInfo": {"qId": "mo-1", "qType": "masterobject"},
            "qMetaDef": {"title": "Filters"},
            "visualization": "filterpane",
            "qChildListDef": {"qData": {}},
        }
        objects["mo-1"]["children"] = ["lb-1"]
        objects["lb-1"] = {"properties": {
            "qInfo": {"qId": "lb-1", "qType": "listbox"},
            "qListObjectDef": {"qDef": {"qFieldDefs": ["Region"]}},
        }}
        (obj,) = _collect(context, "masterObject")
        assert obj.properties["qInfo"]["qId"] == "mo-1"
        assert [c["qProperty"]["qInfo"]["qId"] for c in obj.children] == ["lb-1"]
        assert obj.details["fields"].value == ["Region"]
        assert obj.details["type"].value == "filterpane"


class TestStatesAndVariables:
    def test_alternate_states(self, context):
        (state,) = _collect(context, "alternate-state")
        assert (state.id, state.label, state.properties) == ("Compare", "Compare", "Compare")

    def test_variables(self, context):
        items = _collect(context, "variable")
        assert [i.label for i in items] == ["vToday", "vYear"]
        year = items[1]
        assert year.details["definition"].value == "2024"
        assert year.details["tags"].value == ["time"]
        assert year.icon == "script"

    def test_reserved_filter(self, context, source_doc):
        source_doc["objects"]["var-2"]["properties"]["qIsReserved"] = True
        assert [i.label for i in _collect(context, "variable", is_reserved=True)] == ["vToday"]
        assert [i.label for i in _collect(context, "variable", is_reserved=False)] == ["vYear"]


class TestBookmarks:
    def test_set_analysis_and_sheet(self, context):
        (bm,) = _collect(context, "bookmark")
        assert bm.label == "EU only"
        assert bm.details["setExpression"].value == ["Default state: {<Region={'EU'}>}"]
        assert bm.details["fields"].value == ["Region"]
        assert bm.details["sheet"].value == ["Overview"]
        assert bm.layout["setAnalysis"] == {"$": "{<Region={'EU'}>}"}
        assert bm.errors == []

    def test_sheet_titles_from_sheet_list(self, context, engine, monkeypatch):
        async def no_sheet_collection(*args, **kwargs):
            raise AssertionError("sheets collected again")

        monkeypatch.setattr(collectors, "collect_sheets", no_sheet_collection)
        (bm,) = _collect(context, "bookmark")
        assert bm.details["sheet"].value == ["Overview"]
        assert engine.documents["source"].open_lists == 0

    def test_missing_fields_flagged(self, context):
        (bm,) = _collect(context, "bookmark", validate=True, field_names=["Amount"])
        assert bm.errors == ["Expression contains invalid field name `Region`"]

    def test_not_present_flagged(self, context, source_doc):
        state = source_doc["objects"]["bm-1"]["properties"]["qBookmark"]["qStateData"][0]
        state["qFieldItems"][0]["qDef"]["qType"] = "NOT_PRESENT"
        (bm,) = _collect(context, "bookmark", validate=True)
        assert bm.errors == ["Expression contains invalid field name `Region`"]


class TestDispatch:
    def test_unknown_type(self, context):
        with pytest.raises(UnsupportedTypeError):
            _collect(context, "chart")

    def test_unknown_app(self, context):
        with pytest.raises(NotFoundError):
            _collect(context, ItemType.MEASURE, "missing")

    def test_every_type_registered(self):
        assert set(collectors.COLLECTORS) == set(ItemType)

    def test_collectors_documented(self):
        assert all(c.__doc__ for c in collectors.COLLECTORS.values())
