"""Shared documents and fixtures for the importer tests."""

import pytest

from app_object_importer.config import ImporterSettings
from app_object_importer.context import ImporterContext
from app_object_importer.memory_engine import MemoryEngine


def _obj(props, meta=None, children=None):
    return {"properties": props, "meta": meta or {}, "children": children or []}


def make_source_doc():
    """A document with one object of every type."""
    return {
        "qDocId": "source",
        "qTitle": "Source",
        "script": (
            "///$tab Main\r\nSET ThousandSep=',';\r\n"
            "///$tab Orders\r\nLOAD * FROM orders.qvd (qvd);\r\n"
        ),
        "stateNames": ["Compare"],
        "fields": ["Region", "Amount", "Year"],
        "objects": {
            "sheet-1": _obj(
                {
                    "qInfo": {"qId": "sheet-1", "qType": "sheet"},
                    "qMetaDef": {
                        "title": "Overview",
                        "description": "Main sheet",
                        "tags": ["kpi"],
                    },
                    "rank": 0,
                    "gridResolution": "small",
                    "cells": [{
                        "name": "bar-1", "type": "barchart",
                        "col": 0, "row": 0, "colspan": 12, "rowspan": 6,
                    }],
                },
                meta={
                    "createdDate": "2024-01-02T08:30:00.000Z",
                    "published": True,
                    "publishTime": "2024-03-01T10:00:00.000Z",
                },
                children=["bar-1"],
            ),
            "bar-1": _obj({
                "qInfo": {"qId": "bar-1", "qType": "barchart"},
                "visualization": "barchart",
                "qStateName": "Compare",
                "qHyperCubeDef": {
                    "qDimensions": [{"qDef": {"qFieldDefs": ["Region"]}}],
                    "qMeasures": [{"qDef": {"qDef": "Sum(Amount)"}}],
                },
            }),
            "dim-1": _obj({
                "qInfo": {"qId": "dim-1", "qType": "dimension"},
                "qMetaDef": {"title": "Region", "tags": ["geo"]},
                "qDim": {"qGrouping": "N", "qFieldDefs": ["Region"], "qFieldLabels": [""]},
            }),
            "measure-1": _obj({
                "qInfo": {"qId": "measure-1", "qType": "measure"},
                "qMetaDef": {"title": "Revenue", "description": "Total revenue"},
                "qMeasure": {"qLabel": "Revenue", "qDef": "Sum(Amount)"},
            }),
            "measure-2": _obj({
                "qInfo": {"qId": "measure-2", "qType": "measure"},
                "qMetaDef": {"title": "Average"},
                "qMeasure": {"qLabel": "Average", "qDef": "Avg(Amount)"},
            }),
            "mo-1": _obj({
                "qInfo": {"qId": "mo-1", "qType": "masterobject"},
                "qMetaDef": {"title": "Sales chart", "tags": ["sales"]},
                "visualization": "barchart",
                "color": {"auto": True},
                "qHyperCubeDef": {
                    "qDimensions": [{"qLibraryId": "dim-1"}],
                    "qMeasures": [{"qDef": {"qDef": "Sum(Amount)"}}],
                },
            }),
            "var-1": _obj({
                "qInfo": {"qId": "var-1", "qType": "variable"},
                "qName": "vYear",
                "qDefinition": "2024",
                "qComment": "Current year",
                "qIsScriptCreated": True,
                "tags": ["time"],
            }),
            "var-2": _obj({
                "qInfo": {"qId": "var-2", "qType": "variable"},
                "qName": "vToday",
                "qDefinition": "=Today()",
            }),
            "bm-1": _obj({
                "qInfo": {"qId": "bm-1", "qType": "bookmark"},
                "qMetaDef": {"title": "EU only"},
                "sheetId": "sheet-1",
                "qBookmark": {"qStateData": [{
                    "qStateName": "$",
                    "qFieldItems": [{"qDef": {"qName": "Region", "qType": "PRESENT"}}],
                }]},
            }),
        },
        "setAnalysis": {"bm-1": {"$": "{<Region={'EU'}>}"}},
    }


def make_dest_doc():
    """The current document: three sheets and partly overlapping master items."""
    objects = {}
    for rank, title in enumerate(["Alpha", "Beta", "Gamma"]):
        sid = f"d-sheet-{rank}"
        objects[sid] = _obj({
            "qInfo": {"qId": sid, "qType": "sheet"},
            "qMetaDef": {"title": title},
            "rank": rank,
            "cells": [],
        })
    objects.update({
        "d-dim-1": _obj({
            "qInfo": {"qId": "d-dim-1", "qType": "dimension"},
            "qMetaDef": {"title": "Region", "tags": ["geo"]},
            "qDim": {"qGrouping": "N", "qFieldDefs": ["Region"], "qFieldLabels": [""]},
        }),
        "d-measure-1": _obj({
            "qInfo": {"qId": "d-measure-1", "qType": "measure"},
            "qMetaDef": {"title": "Revenue"},
            "qMeasure": {"qLabel": "Revenue", "qDef": "Sum(Amount) * 2"},
        }),
        "d-mo-1": _obj({
            "qInfo": {"qId": "d-mo-1", "qType": "masterobject"},
            "qMetaDef": {"title": "Sales chart", "tags": ["sales"]},
            "visualization": "barchart",
            "color": {"auto": False},
            "qHyperCubeDef": {
                "qDimensions": [{"qLibraryId": "dim-1"}],
                "qMeasures": [{"qDef": {"qDef": "Sum(Amount)"}}],
            },
        }),
        "d-var-1": _obj({
            "qInfo": {"qId": "d-var-1", "qType": "variable"},
            "qName": "vYear",
            "qDefinition": "2024",
            "qComment": "Current year",
            "qIsScriptCreated": False,
            "tags": ["time"],
        }),
    })
    return {
        "qDocId": "dest",
        "qTitle": "Destination",
        "script": "///$tab Main\r\nSET ThousandSep='.';\r\n",
        "stateNames": [],
        "fields": ["Region", "Amount"],
        "objects": objects,
        "setAnalysis": {},
    }


@pytest.fixture
def source_doc():
    return make_source_doc()


@pytest.fixture
def dest_doc():
    return make_dest_doc()


@pytest.fixture
def engine(source_doc, dest_doc):
    return MemoryEngine(
        [source_doc, dest_doc],
        current_app_id="dest",
        extensions=[{"id": "barchart", "data": {"name": "Bar chart"}}],
    )


@pytest.fixture
def settings():
    return ImporterSettings(settle_delay=0)


@pytest.fixture
def context(engine, settings):
    return ImporterContext.create(engine, settings)
