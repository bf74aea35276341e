# backend/ruleguard/alerting/filters.py
"""Catalogue of the fields a rule editor can offer, with the operators each accepts."""
import re
from typing import Dict, List, Optional

from ruleguard.config import settings
from .schema import Schema

OPERATORS_BY_TYPE = {
    "string": [
        "equal", "not_equal", "in", "not_in", "begins_with", "not_begins_with",
        "contains", "not_contains", "ends_with", "not_ends_with",
        "is_empty", "is_not_empty", "is_null", "is_not_null", "regex", "not_regex",
    ],
    "integer": [
        "equal", "not_equal", "in", "not_in", "less", "less_or_equal", "greater", "greater_or_equal",
        "between", "not_between", "is_null", "is_not_null", "regex", "not_regex",
    ],
    "datetime": [
        "equal", "not_equal", "less", "less_or_equal", "greater", "greater_or_equal",
        "between", "not_between", "is_null", "is_not_null",
    ],
    "boolean": ["equal", "not_equal", "is_null", "is_not_null"],
}
OPERATORS_BY_TYPE["double"] = OPERATORS_BY_TYPE["integer"]

BOOLEAN_VALUES = {"1": "Yes", "0": "No"}

_LITERAL_RE = re.compile(r"'(?:[^']|'')*'")
_CONDITION_RE = re.compile(r"(=|<|>|\bLIKE\b|\bIS\b|\bIN\b|\bREGEXP\b|\bBETWEEN\b)", re.IGNORECASE)


def is_condition(expression: str) -> bool:
    """True when a macro expands to a boolean condition rather than a value."""
    return bool(_CONDITION_RE.search(_LITERAL_RE.sub("''", expression)))


class QueryBuilderFilter:
    def __init__(self, schema: Optional[Schema] = None, macros: Optional[Dict[str, str]] = None):
        self.schema = schema or Schema()
        self.macros = settings.ALERT_MACROS if macros is None else macros
        self._filters = None

    def _build(self) -> Dict[str, dict]:
        filters = {}
        for name, expansion in self.macros.items():
            field = f"macros.{name}"
            if is_condition(expansion):
                filters[field] = {
                    "id": field,
                    "field": field,
                    "type": "integer",
                    "input": "radio",
                    "values": dict(BOOLEAN_VALUES),
                    "operators": ["equal", "not_equal"],
                }
            else:
                filters[field] = {
                    "id": field,
                    "field": field,
                    "type": "double",
                    "input": "text",
                    "operators": list(OPERATORS_BY_TYPE["double"]),
                }

        for table in self.schema.get_tables():
            for column in self.schema.get_columns(table):
                field = f"{table}.{column}"
                column_type = self.schema.column_type(table, column)
                item = {
                    "id": field,
                    "field": field,
                    "type": column_type,
                    "input": "text",
                    "operators": list(OPERATORS_BY_TYPE[column_type]),
                }
                if column_type == "boolean":
                    item["input"] = "radio"
                    item["values"] = dict(BOOLEAN_VALUES)
                filters[field] = item
        return filters

    @property
    def filters(self) -> Dict[str, dict]:
        if self._filters is None:
            self._filters = self._build()
        return self._filters

    def get_filter(self, field: str) -> Optional[dict]:
        return self.filters.get(field)

    def to_list(self) -> List[dict]:
        return [self.filters[field] for field in sorted(self.filters)]
