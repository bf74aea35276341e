# backend/ruleguard/alerting/querybuilder.py
"""
Compiler for alert rule condition trees.

A condition tree is the JSON produced by the rule editor:

    {"condition": "AND", "rules": [
        {"field": "macros.device_up", "operator": "equal", "value": 1},
        {"condition": "OR", "rules": [
            {"field": "ports.ifOperStatus", "operator": "equal", "value": "down"},
            {"field": "ports.ifInErrors_delta", "operator": "greater", "value": 100}]}]}

`QueryBuilderParser` validates the tree and renders it as a readable
expression (`to_sql(False)`) or as the legacy SQL statement stored with each
rule (`to_sql()`), which selects the rows of one device (bound to `?`).
The SQLAlchemy rendering lives in `ruleguard.alerting.fluent`.
"""
import json
import logging
import re
from typing import Any, Dict, List, NamedTuple, Optional, Union

from ruleguard.config import settings
from .exceptions import QueryBuilderError
from .filters import QueryBuilderFilter
from .schema import Schema

logger = logging.getLogger(__name__)

OPERATORS = {
    "equal": "=",
    "not_equal": "!=",
    "less": "<",
    "less_or_equal": "<=",
    "greater": ">",
    "greater_or_equal": ">=",
    "between": "BETWEEN",
    "not_between": "NOT BETWEEN",
    "begins_with": "LIKE",
    "not_begins_with": "NOT LIKE",
    "contains": "LIKE",
    "not_contains": "NOT LIKE",
    "ends_with": "LIKE",
    "not_ends_with": "NOT LIKE",
    "is_empty": "=",
    "is_not_empty": "!=",
    "is_null": "IS NULL",
    "is_not_null": "IS NOT NULL",
    "regex": "REGEXP",
    "not_regex": "NOT REGEXP",
    "in": "IN",
    "not_in": "NOT IN",
}

LEGACY_OPERATORS = {
    "=": "equal",
    "!=": "not_equal",
    "~": "regex",
    "!~": "not_regex",
    "<": "less",
    ">": "greater",
    "<=": "less_or_equal",
    ">=": "greater_or_equal",
}

COMPARISON_OPERATORS = frozenset({"equal", "not_equal", "less", "less_or_equal", "greater", "greater_or_equal"})
NO_VALUE_OPERATORS = frozenset({"is_empty", "is_not_empty", "is_null", "is_not_null"})
RANGE_OPERATORS = frozenset({"between", "not_between"})
LIST_OPERATORS = frozenset({"in", "not_in"})
REGEX_OPERATORS = frozenset({"regex", "not_regex"})
LIKE_PATTERNS = {
    "begins_with": "{}%",
    "not_begins_with": "{}%",
    "contains": "%{}%",
    "not_contains": "%{}%",
    "ends_with": "%{}",
    "not_ends_with": "%{}",
}

_MACRO_RE = re.compile(r"macros\.([A-Za-z0-9_]+)")
_FIELD_RE = re.compile(r"\b([A-Za-z_][A-Za-z0-9_]*)\.([A-Za-z_][A-Za-z0-9_]*)\b")
_FIELD_VALUE_RE = re.compile(r"^`?([A-Za-z_][A-Za-z0-9_]*)\.([A-Za-z_][A-Za-z0-9_]*)`?$")
_LITERAL_RE = re.compile(r"'(?:[^']|'')*'")
_INTEGER_RE = re.compile(r"^[+-]?\d+$")
# connectives inside double quoted values are part of the value
_LEGACY_SPLIT_RE = re.compile(r'(&&|\|\|)(?=(?:[^"]*"[^"]*")*[^"]*$)')
_LEGACY_RULE_RE = re.compile(r" *([!=<>~]{1,2}) *")


class FieldRef(NamedTuple):
    """A rule value naming another column (or macro) instead of a literal."""
    name: str


class Rule(NamedTuple):
    field: str
    operator: str
    value: Any


class Group(NamedTuple):
    condition: str
    rules: list
    negated: bool = False


def quote_value(value) -> str:
    """SQL literal for a rule value: numbers bare, strings single-quoted."""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


def is_enclosed(expression: str) -> bool:
    """True when the whole expression is wrapped by one pair of parentheses."""
    if not (expression.startswith("(") and expression.endswith(")")):
        return False
    depth = 0
    for index, char in enumerate(_LITERAL_RE.sub(lambda m: "_" * len(m.group(0)), expression)):
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0 and index != len(expression) - 1:
                return False
    return depth == 0


class QueryBuilderParser:
    def __init__(self, builder: Dict[str, Any], schema: Optional[Schema] = None,
                 macros: Optional[Dict[str, str]] = None):
        self.builder = builder
        self.schema = schema or Schema()
        self.macros = settings.ALERT_MACROS if macros is None else macros
        self.filter = QueryBuilderFilter(self.schema, self.macros)
        self._tree = None
        self._parsed = False
        self._tables = None

    # --- Constructors ---

    @classmethod
    def from_json(cls, data: Union[str, bytes, dict, None], **kwargs):
        """Load a condition tree from a dict or a JSON document. Unreadable JSON gives an empty tree."""
        if not isinstance(data, dict):
            try:
                data = json.loads(data) if data else {}
            except ValueError:
                logger.warning("Could not decode alert rule builder JSON")
                data = {}
            if not isinstance(data, dict):
                data = {}
        return cls(data, **kwargs)

    @classmethod
    def from_old(cls, query: str, **kwargs):
        """
        Convert a legacy rule string such as
        `%macros.device_up = "1" && %ports.ifOperStatus != "up"` into a tree.
        Legacy rules have no grouping, so the first connective decides the
        condition of the single group.
        """
        schema = kwargs.get("schema") or Schema()
        kwargs["schema"] = schema
        filter_ = QueryBuilderFilter(schema, kwargs.get("macros"))

        condition = None
        rules = []
        parts = _LEGACY_SPLIT_RE.split(query or "")
        for rule_text, connective in zip(parts[0::2], parts[1::2] + [None]):
            if not rule_text.strip():
                continue
            if condition is None:
                condition = "OR" if connective == "||" else "AND"

            pieces = _LEGACY_RULE_RE.split(rule_text.strip(), maxsplit=1)
            field = pieces[0].lstrip("%")
            op = pieces[1] if len(pieces) > 1 else None
            value = pieces[2] if len(pieces) > 2 else None

            operator = LEGACY_OPERATORS.get(op, "equal")
            if value is None:
                value = "1"
            elif value.startswith("%"):
                value = "`" + value[1:] + "`"
            else:
                value = value.strip('"').strip("'").lstrip("%")
                if operator in REGEX_OPERATORS:
                    value = value.replace("@", ".*")

            filter_item = filter_.get_filter(field) or {}
            rules.append({
                "id": field,
                "field": field,
                "type": filter_item.get("type", "string"),
                "input": filter_item.get("input", "text"),
                "operator": operator,
                "value": value,
            })

        builder = {"condition": condition, "rules": rules, "valid": True} if rules else {}
        return cls(builder, **kwargs)

    # --- Parsing and validation ---

    def parse(self) -> Optional[Group]:
        """Validated, normalised tree, or None when there is nothing to compile."""
        if not self._parsed:
            if not self.builder or "condition" not in self.builder:
                self._tree = None
            else:
                self._tree = self._parse_group(self.builder)
            self._parsed = True
        return self._tree

    def validate(self):
        self.parse()
        self.get_tables()
        return self

    def _parse_group(self, data: dict) -> Optional[Group]:
        condition = str(data.get("condition") or "").upper()
        if condition not in ("AND", "OR"):
            raise QueryBuilderError(f"Invalid condition '{data.get('condition')}', expected AND or OR")
        rules = data.get("rules") or []
        if not isinstance(rules, list):
            raise QueryBuilderError("Group rules must be a list")

        nodes = []
        for item in rules:
            if not isinstance(item, dict):
                raise QueryBuilderError(f"Invalid rule {item!r}")
            if "condition" in item:
                node = self._parse_group(item)
                if node is None:
                    continue
            else:
                node = self._parse_rule(item)
            nodes.append(node)

        if not nodes:
            return None
        return Group(condition, nodes, bool(data.get("not")))

    def _parse_rule(self, item: dict) -> Rule:
        field = item.get("field") or item.get("id")
        if not isinstance(field, str) or "." not in field:
            raise QueryBuilderError(f"Invalid field '{field}'")
        table, column = field.split(".", 1)
        if table == "macros":
            if column not in self.macros:
                raise QueryBuilderError(f"Unknown macro '{field}'")
        elif not self.schema.column_exists(table, column):
            raise QueryBuilderError(f"Unknown field '{field}'")

        operator = item.get("operator")
        if operator not in OPERATORS:
            raise QueryBuilderError(f"Unknown operator '{operator}'")
        filter_item = self.filter.get_filter(field)
        if operator not in filter_item["operators"]:
            raise QueryBuilderError(f"Operator '{operator}' cannot be used with {filter_item['type']} field {field}")

        # macros always compare as their catalogue type
        if table == "macros":
            value_type = filter_item["type"]
        else:
            value_type = item.get("type") or filter_item["type"]
        value = self._parse_value(field, operator, item.get("value"), value_type)
        return Rule(field, operator, value)

    def _parse_value(self, field: str, operator: str, value, value_type: str):
        if operator in NO_VALUE_OPERATORS:
            return None

        if operator in RANGE_OPERATORS:
            values = self._split_values(value)
            if len(values) != 2:
                raise QueryBuilderError(f"{field} {operator} needs exactly two values")
            return [self._coerce(field, item, value_type) for item in values]

        if operator in LIST_OPERATORS:
            values = self._split_values(value)
            if not values:
                raise QueryBuilderError(f"{field} {operator} needs at least one value")
            return [self._coerce(field, item, value_type) for item in values]

        if value is None:
            raise QueryBuilderError(f"Missing value for {field}")
        if isinstance(value, (list, tuple, dict)):
            raise QueryBuilderError(f"{field} {operator} expects a single value")

        if operator in COMPARISON_OPERATORS and isinstance(value, str):
            reference = self._field_reference(value)
            if reference is not None:
                return reference

        if operator in LIKE_PATTERNS or operator in REGEX_OPERATORS:
            return str(value)
        return self._coerce(field, value, value_type)

    @staticmethod
    def _split_values(value) -> list:
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return [value]

    def _field_reference(self, value: str) -> Optional[FieldRef]:
        match = _FIELD_VALUE_RE.match(value.strip())
        if not match:
            return None
        table, column = match.groups()
        quoted = value.strip().startswith("`") and value.strip().endswith("`")
        if table == "macros":
            if column in self.macros:
                return FieldRef(f"{table}.{column}")
        elif self.schema.column_exists(table, column):
            return FieldRef(f"{table}.{column}")

        if quoted:
            raise QueryBuilderError(f"Unknown field '{table}.{column}' used as a value")
        logger.warning(f"Value '{value}' looks like a field but is not one, comparing it as a string")
        return None

    @staticmethod
    def _coerce(field: str, value, value_type: str):
        if value_type in ("integer", "boolean"):
            if value_type == "boolean" and isinstance(value, str) and value.lower() in ("true", "false", "yes", "no"):
                return 1 if value.lower() in ("true", "yes") else 0
            if isinstance(value, bool):
                return int(value)
            if isinstance(value, int):
                return value
            if isinstance(value, float) and value.is_integer():
                return int(value)
            if isinstance(value, str) and _INTEGER_RE.match(value.strip()):
                return int(value.strip())
            raise QueryBuilderError(f"Value {value!r} for {field} is not an integer")

        if value_type == "double":
            if isinstance(value, bool):
                return int(value)
            if isinstance(value, (int, float)):
                return value
            if isinstance(value, str):
                text = value.strip()
                if _INTEGER_RE.match(text):
                    return int(text)
                try:
                    return float(text)
                except ValueError:
                    pass
            raise QueryBuilderError(f"Value {value!r} for {field} is not a number")

        return value if isinstance(value, str) else str(value)

    # --- Tables and glue ---

    def _referenced_fields(self, node) -> List[str]:
        if isinstance(node, Group):
            fields = []
            for child in node.rules:
                fields.extend(self._referenced_fields(child))
            return fields
        fields = [node.field]
        if isinstance(node.value, FieldRef):
            fields.append(node.value.name)
        return fields

    def _tables_in(self, expression: str) -> List[str]:
        tables = []
        for table, column in _FIELD_RE.findall(_LITERAL_RE.sub("''", expression)):
            if self.schema.column_exists(table, column) and table not in tables:
                tables.append(table)
        return tables

    def get_tables(self) -> List[str]:
        """`devices` first, then every table the rule reads, then the tables needed to join them."""
        if self._tables is None:
            tree = self.parse()
            tables = ["devices"]
            if tree is not None:
                for field in self._referenced_fields(tree):
                    if field.startswith("macros."):
                        found = self._tables_in(self.expand_macro(field))
                    else:
                        found = [field.split(".", 1)[0]]
                    tables.extend(table for table in found if table not in tables)

                for table in list(tables):
                    path = self.schema.find_relationship_path(table)
                    if path is None:
                        raise QueryBuilderError(f"Table {table} has no relationship to devices")
                    tables.extend(glue_table for glue_table in path if glue_table not in tables)
            self._tables = tables
        return self._tables

    def get_joins(self, target: str = "devices") -> List[List[str]]:
        """
        One [table, left_column, right_column] per table joined onto `target`,
        in path order. Both the legacy SQL and the fluent query LEFT JOIN
        exactly these, so they select the same rows.
        """
        joins = []
        joined = {target}
        for table in self.get_tables():
            path = self.schema.find_relationship_path(table, target) or [table]
            for left, right in zip(path, path[1:]):
                if right in joined:
                    continue
                left_key, right_key = self.schema.get_glue(left, right)
                joins.append([right, left_key, right_key])
                joined.add(right)
        return joins

    # --- Macros ---

    def expand_macro(self, subject: str, depth_limit: int = 20) -> str:
        """Replace macros (recursively) with their SQL, parenthesising the result."""
        if "macros." not in subject:
            return subject

        def replace(match):
            name = match.group(1)
            if name not in self.macros:
                raise QueryBuilderError(f"Unknown macro 'macros.{name}'")
            return self.macros[name]

        expanded = subject
        count = 0
        while "macros." in expanded:
            if count >= depth_limit:
                raise QueryBuilderError(f"Macro {subject} is nested deeper than {depth_limit} levels")
            expanded = _MACRO_RE.sub(replace, expanded)
            count += 1

        if not is_enclosed(expanded):
            expanded = f"({expanded})"
        return expanded

    # --- Rendering ---

    def to_sql(self, expand: bool = True) -> Optional[str]:
        """
        expand=False: the readable expression shown to operators.
        expand=True: the full legacy statement with macros expanded and the
        tables LEFT JOINed to `devices`, with the device id left as `?`.
        """
        tree = self.parse()
        if tree is None:
            return None

        sql = self._render_group(tree, expand, nested=False)
        if not expand:
            return sql

        if len(tree.rules) > 1 and not tree.negated:
            sql = f"({sql})"
        joins = "".join(f" LEFT JOIN {table} ON {left} = {right}" for table, left, right in self.get_joins())
        anchor = f"devices.{self.schema.get_primary_key('devices')} = ?"
        return f"SELECT * FROM devices{joins} WHERE ({anchor}) AND {sql}"

    def _render_group(self, group: Group, expand: bool, nested: bool = True) -> str:
        parts = []
        for node in group.rules:
            if isinstance(node, Group):
                parts.append(self._render_group(node, expand))
            else:
                parts.append(self._render_rule(node, expand))
        sql = f" {group.condition} ".join(parts)

        if group.negated:
            return f"NOT ({sql})"
        if nested:
            return f"({sql})"
        return sql

    def _render_field(self, name: str, expand: bool) -> str:
        if expand and name.startswith("macros."):
            return self.expand_macro(name)
        return name

    def _render_rule(self, rule: Rule, expand: bool) -> str:
        field = self._render_field(rule.field, expand)
        operator = rule.operator
        op = OPERATORS[operator]
        value = rule.value

        if operator in ("is_null", "is_not_null"):
            return f"{field} {op}"
        if operator in ("is_empty", "is_not_empty"):
            return f"{field} {op} ''"
        if operator in RANGE_OPERATORS:
            return f"{field} {op} {quote_value(value[0])} AND {quote_value(value[1])}"
        if operator in LIST_OPERATORS:
            return f"{field} {op} ({', '.join(quote_value(item) for item in value)})"
        if operator in LIKE_PATTERNS:
            return f"{field} {op} {quote_value(LIKE_PATTERNS[operator].format(value))}"
        if isinstance(value, FieldRef):
            return f"{field} {op} {self._render_field(value.name, expand)}"
        return f"{field} {op} {quote_value(value)}"

    # --- Serialisation ---

    def to_dict(self) -> Dict[str, Any]:
        return self.builder

    def to_json(self) -> str:
        return json.dumps(self.builder)

    def __repr__(self):
        return f"<{type(self).__name__} {self.builder!r}>"
