# backend/ruleguard/alerting/fluent.py
from sqlalchemy import Boolean, and_, literal_column, not_, or_, select
from sqlalchemy.sql import Select

from .filters import is_condition
from .querybuilder import LIKE_PATTERNS, FieldRef, Group, QueryBuilderParser, Rule


class QueryBuilderFluentParser(QueryBuilderParser):
    """Compiles a condition tree into a SQLAlchemy SELECT over the `devices` table."""

    def generate_joins(self):
        """Store the joins the query needs under `joins` as [table, left_column, right_column]."""
        self.builder["joins"] = self.get_joins()
        return self

    def to_query(self) -> Select:
        tree = self.parse()
        if tree is None:
            return None
        self.generate_joins()

        devices = self.schema.get_table("devices")
        source = devices
        for table, left, right in self.builder["joins"]:
            source = source.outerjoin(self.schema.get_table(table), self._column(left) == self._column(right))

        return select(devices).select_from(source).where(self._group_clause(tree))

    def _column(self, name: str):
        table, column = name.split(".", 1)
        return self.schema.get_table(table).c[column]

    def _expression(self, name: str):
        if name.startswith("macros."):
            return literal_column(self.expand_macro(name))
        return self._column(name)

    def _group_clause(self, group: Group):
        clauses = []
        for node in group.rules:
            if isinstance(node, Group):
                clauses.append(self._group_clause(node))
            else:
                clauses.append(self._rule_clause(node))
        clause = and_(*clauses) if group.condition == "AND" else or_(*clauses)
        return not_(clause) if group.negated else clause

    def _rule_clause(self, rule: Rule):
        operator = rule.operator
        value = rule.value

        if rule.field.startswith("macros.") and operator in ("equal", "not_equal") \
                and not isinstance(value, FieldRef) and value in (0, 1) \
                and is_condition(self.macros[rule.field.split(".", 1)[1]]):
            condition = literal_column(self.expand_macro(rule.field), Boolean)
            return condition if (operator == "equal") == (value == 1) else not_(condition)

        field = self._expression(rule.field)
        if isinstance(value, FieldRef):
            value = self._expression(value.name)

        if operator == "equal":
            return field == value
        if operator == "not_equal":
            return field != value
        if operator == "less":
            return field < value
        if operator == "less_or_equal":
            return field <= value
        if operator == "greater":
            return field > value
        if operator == "greater_or_equal":
            return field >= value
        if operator == "between":
            return field.between(value[0], value[1])
        if operator == "not_between":
            return not_(field.between(value[0], value[1]))
        if operator in LIKE_PATTERNS:
            pattern = LIKE_PATTERNS[operator].format(value)
            return field.not_like(pattern) if operator.startswith("not_") else field.like(pattern)
        if operator == "is_empty":
            return field == ""
        if operator == "is_not_empty":
            return field != ""
        if operator == "is_null":
            return field.is_(None)
        if operator == "is_not_null":
            return field.is_not(None)
        if operator == "regex":
            return field.regexp_match(value)
        if operator == "not_regex":
            return not_(field.regexp_match(value))
        if operator == "in":
            return field.in_(value)
        if operator == "not_in":
            return field.not_in(value)
        raise ValueError(f"Unhandled operator {operator}")
