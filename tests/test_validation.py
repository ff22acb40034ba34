"""Tests for expression validation."""

import asyncio

from app_object_importer import validation


def _app(engine):
    return engine.open_document("dest")


class TestValidateExpressions:
    def test_valid(self, engine):
        result = asyncio.run(validation.validate_expressions(_app(engine), "Sum([Amount])"))
        assert not result.has_error
        assert result.messages() == []

    def test_bad_field_after_expansion(self, engine):
        # "Year" exists in the source document only.
        result = asyncio.run(validation.validate_expressions(_app(engine), "Sum([Year])"))
        assert result.has_error
        assert result.checks[0].bad_fields == ["Year"]
        assert result.messages() == ["Expression contains invalid field name `Year`"]

    def test_several_expressions_are_numbered(self, engine):
        result = asyncio.run(validation.validate_expressions(
            _app(engine), ["Region", "Sum(Amount", "Year"],
        ))
        assert result.messages() == [
            "Expression 2: Error in expression: unbalanced parentheses",
            "Expression 3: Expression contains invalid field name `Year`",
        ]

    def test_none(self, engine):
        result = asyncio.run(validation.validate_expressions(_app(engine), None))
        assert result.checks == []


class TestVisualizationExpressions:
    def test_hypercube(self):
        props = {"qHyperCubeDef": {
            "qDimensions": [{"qDef": {"qFieldDefs": ["Region"]}}, {"qLibraryId": "d1"}],
            "qMeasures": [{"qDef": {"qDef": "Sum(Amount)"}}, {"qLibraryId": "m1"}],
        }}
        assert validation.visualization_expressions(props) == ["Region", "Sum(Amount)"]

    def test_children_list_boxes(self):
        children = [
            {"qProperty": {"qListObjectDef": {"qDef": {"qFieldDefs": ["Region"]}}}},
            {"qProperty": {"qListObjectDef": {"qDef": {"qFieldDefs": ["Year"]}}}},
        ]
        assert validation.visualization_expressions({}, children) == ["Region", "Year"]

    def test_unknown_structure(self):
        assert validation.visualization_expressions({"text": "hello"}) is None
        result = asyncio.run(validation.validate_visualization(None, {"text": "hello"}))
        assert not result.has_error
