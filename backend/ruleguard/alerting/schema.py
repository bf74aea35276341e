# backend/ruleguard/alerting/schema.py
"""
Read-only view of the inventory tables that alert rules may reference.

The view is built from the SQLAlchemy metadata, so adding a model with a
foreign key to an existing table is enough to make its columns usable in
rules; the join path back to `devices` is discovered from the foreign keys.
"""
import logging
from collections import deque
from typing import Dict, List, Optional, Tuple

from sqlalchemy import Boolean, Date, DateTime, Float, Integer, Numeric, Table

logger = logging.getLogger(__name__)


class Schema:
    def __init__(self, metadata=None, exclude=None):
        if metadata is None:
            from ruleguard import models
            metadata = models.Base.metadata
            exclude = models.ALERTING_TABLES if exclude is None else exclude
        exclude = exclude or ()
        self._tables: Dict[str, Table] = {
            name: table for name, table in metadata.tables.items() if name not in exclude
        }
        self._relationships: Optional[Dict[str, List[str]]] = None

    def get_tables(self) -> List[str]:
        return sorted(self._tables)

    def table_exists(self, table: str) -> bool:
        return table in self._tables

    def get_table(self, table: str) -> Table:
        return self._tables[table]

    def get_columns(self, table: str) -> List[str]:
        if table not in self._tables:
            return []
        return [column.name for column in self._tables[table].columns]

    def column_exists(self, table: str, column: str) -> bool:
        return table in self._tables and column in self._tables[table].c

    def get_primary_key(self, table: str) -> Optional[str]:
        """Name of the single-column primary key, None for composite keys."""
        keys = list(self._tables[table].primary_key.columns)
        if len(keys) != 1:
            return None
        return keys[0].name

    def column_type(self, table: str, column: str) -> str:
        """Condition-tree type of a column: integer, double, boolean, datetime or string."""
        sql_type = self._tables[table].c[column].type
        if isinstance(sql_type, Boolean):
            return "boolean"
        if isinstance(sql_type, Integer):
            return "integer"
        if isinstance(sql_type, (Float, Numeric)):
            return "double"
        if isinstance(sql_type, (DateTime, Date)):
            return "datetime"
        return "string"

    def get_table_relationships(self) -> Dict[str, List[str]]:
        """Neighbouring tables of every table, following foreign keys both ways."""
        if self._relationships is None:
            relationships = {name: set() for name in self._tables}
            for name, table in self._tables.items():
                for fk in table.foreign_keys:
                    target = fk.column.table.name
                    if target in relationships and target != name:
                        relationships[name].add(target)
                        relationships[target].add(name)
            self._relationships = {name: sorted(tables) for name, tables in relationships.items()}
        return self._relationships

    def find_relationship_path(self, table: str, target: str = "devices") -> Optional[List[str]]:
        """
        Shortest chain of tables from `target` to `table`, both included.
        Returns None when the tables are not connected.
        """
        relationships = self.get_table_relationships()
        if table not in relationships or target not in relationships:
            logger.debug(f"Table {table} or {target} not found, no relationship path")
            return None
        if table == target:
            return [target]

        previous = {target: None}
        queue = deque([target])
        while queue:
            current = queue.popleft()
            for neighbour in relationships[current]:
                if neighbour in previous:
                    continue
                previous[neighbour] = current
                if neighbour == table:
                    path = [table]
                    while previous[path[-1]] is not None:
                        path.append(previous[path[-1]])
                    return list(reversed(path))
                queue.append(neighbour)
        return None

    def get_glue(self, left: str, right: str) -> Tuple[str, str]:
        """Join columns between two neighbouring tables as ('left.col', 'right.col')."""
        for fk in self._tables[right].foreign_keys:
            if fk.column.table.name == left:
                return f"{left}.{fk.column.name}", f"{right}.{fk.parent.name}"
        for fk in self._tables[left].foreign_keys:
            if fk.column.table.name == right:
                return f"{left}.{fk.parent.name}", f"{right}.{fk.column.name}"

        # no foreign key, look for a single shared *_id column
        shared = [
            column for column in self.get_columns(left)
            if column.endswith("_id") and column in self._tables[right].c
        ]
        if len(shared) == 1:
            return f"{left}.{shared[0]}", f"{right}.{shared[0]}"

        left_key = self.get_primary_key(left)
        right_key = left_key
        if not self.column_exists(right, right_key or ""):
            if left.endswith("xes"):
                right_key = left[:-2] + "_id"
            else:
                right_key = (left[:-1] if left.endswith("s") else left) + "_id"
            if not self.column_exists(right, right_key):
                right_key = self.get_primary_key(right)
                logger.warning(f"Guessing glue from {right}.{right_key} to {left}.{left_key}")
        return f"{left}.{left_key}", f"{right}.{right_key}"
