"""Parsing of ``--where`` and ``--aggregate`` command-line expressions."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Tuple

import typer

_OPERATORS = {"gt", "gte", "lt", "lte", "range"}


def _number(raw: str, expression: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise typer.BadParameter(f"{raw!r} is not a number in {expression!r}.") from None


def _split_aggregation(head: str, expression: str) -> Tuple[str, str | None]:
    semantic, _, aggregation = head.partition("@")
    if not semantic:
        raise typer.BadParameter(f"Missing semantic in {expression!r}.")
    return semantic, aggregation.upper() or None


def parse_where(expressions: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """Parse ``SEMANTIC[@AGG]:OP:VALUE`` and ``SEMANTIC[@AGG]:range:START:END``.

    Repeating a semantic adds operators to the same filter.
    """
    filters: Dict[str, Dict[str, Any]] = {}
    for expression in expressions:
        parts = expression.split(":")
        if len(parts) < 3:
            raise typer.BadParameter(
                f"Expected SEMANTIC:OP:VALUE, got {expression!r}."
            )
        semantic, aggregation = _split_aggregation(parts[0].strip(), expression)
        operator = parts[1].strip().lower()
        if operator not in _OPERATORS:
            raise typer.BadParameter(f"Unknown operator {operator!r} in {expression!r}.")

        term = filters.setdefault(semantic, {})
        if aggregation:
            term["aggregation"] = aggregation
        if operator == "range":
            if len(parts) != 4:
                raise typer.BadParameter(f"range needs START:END in {expression!r}.")
            term["range"] = {
                "start": _number(parts[2], expression),
                "end": _number(parts[3], expression),
            }
        else:
            if len(parts) != 3:
                raise typer.BadParameter(f"Too many values in {expression!r}.")
            term[operator] = _number(parts[2], expression)
    return filters


def parse_aggregates(expressions: Iterable[str]) -> List[Dict[str, str]]:
    """Parse ``ALIAS=SEMANTIC[:AGG]``; the aggregation defaults to AVG."""
    aggregates: List[Dict[str, str]] = []
    for expression in expressions:
        alias, sep, target = expression.partition("=")
        if not sep or not alias.strip() or not target.strip():
            raise typer.BadParameter(f"Expected ALIAS=SEMANTIC[:AGG], got {expression!r}.")
        semantic, _, aggregation = target.partition(":")
        aggregates.append(
            {
                "alias": alias.strip(),
                "semantic": semantic.strip(),
                "aggregation": (aggregation.strip() or "AVG").upper(),
            }
        )
    return aggregates
