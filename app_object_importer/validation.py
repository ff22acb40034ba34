"""
Expression validation against a document's data model.

Each expression is first expanded (dollar-sign expansion of variables) and
then checked by the engine.  Validation only feeds preview diagnostics; it
never decides whether an item can be imported.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

from .engine import EngineApp
from .utils import get_path

logger = logging.getLogger(__name__)


@dataclass
class ExpressionCheck:
    """Check result of one expression."""
    expression: str
    expanded: str
    error_message: str = ""
    bad_fields: list[str] = field(default_factory=list)
    dangerous_fields: int = 0

    @property
    def is_invalid(self) -> bool:
        return bool(self.error_message or self.bad_fields or self.dangerous_fields)


@dataclass
class ExpressionValidation:
    """Check results for all expressions of one object."""
    checks: list[ExpressionCheck] = field(default_factory=list)

    @property
    def has_error(self) -> bool:
        return any(c.is_invalid for c in self.checks)

    def messages(self) -> list[str]:
        """Return one message per invalid expression.

        Messages are prefixed with ``Expression N:`` when the object has
        more than one expression.
        """
        result = []
        for ix, check in enumerate(self.checks):
            if not check.is_invalid:
                continue
            message = check.error_message or "Expression contains invalid field name"
            if check.bad_fields and not check.error_message:
                message += " " + ", ".join(f"`{f}`" for f in check.bad_fields)
            if len(self.checks) > 1:
                message = f"Expression {ix + 1}: {message}"
            result.append(message)
        return result


def empty_validation() -> ExpressionValidation:
    return ExpressionValidation()


async def validate_expressions(
    app: EngineApp,
    expressions: Union[str, Iterable[str], None],
) -> ExpressionValidation:
    """Expand and check *expressions* in *app*, one after another."""
    if expressions is None:
        return empty_validation()
    if isinstance(expressions, str):
        expressions = [expressions]

    checks = []
    for expression in expressions:
        expanded = await app.expand_expression(expression)
        result = await app.check_expression(expanded)
        bad_fields = [
            expanded[b["qFrom"]:b["qFrom"] + b["qCount"]]
            for b in result.get("qBadFieldNames") or []
        ]
        checks.append(ExpressionCheck(
            expression=expression,
            expanded=expanded,
            error_message=result.get("qErrorMsg") or "",
            bad_fields=bad_fields,
            dangerous_fields=len(result.get("qDangerousFieldNames") or []),
        ))
    return ExpressionValidation(checks)


def visualization_expressions(
    properties: dict,
    children: Optional[list] = None,
) -> Optional[list[str]]:
    """Collect the expressions of a visualization.

    Objects owning children (filter panes) contribute their list boxes'
    field definitions; hypercube objects their dimension field definitions
    and measure expressions.  Returns None for unknown structures.
    """
    if children:
        result = []
        for child in children:
            result.extend(get_path(
                child, "qProperty", "qListObjectDef", "qDef", "qFieldDefs",
                default=[],
            ))
        return result

    cube = properties.get("qHyperCubeDef")
    if cube is None:
        return None
    result = []
    for dim in cube.get("qDimensions", []):
        result.extend(get_path(dim, "qDef", "qFieldDefs", default=[]))
    for measure in cube.get("qMeasures", []):
        expr = get_path(measure, "qDef", "qDef")
        if expr:
            result.append(expr)
    return result


async def validate_visualization(
    app: EngineApp,
    properties: dict,
    children: Optional[list] = None,
) -> ExpressionValidation:
    expressions = visualization_expressions(properties, children)
    if expressions is None:
        return empty_validation()
    return await validate_expressions(app, expressions)
