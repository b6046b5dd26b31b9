"""In-memory view of a datasource's schema for one discovery run."""

from __future__ import annotations

from dataclasses import dataclass, field

from keygraph.analysis.relationships.interfaces import SchemaRepository
from keygraph.analysis.relationships.models import (
    SchemaColumn,
    SchemaRelationship,
    SchemaTable,
)


@dataclass
class SchemaSnapshot:
    """Tables, columns and live relationships of a datasource, indexed for lookup."""

    tables: dict[str, SchemaTable]
    columns: list[SchemaColumn]
    relationships: list[SchemaRelationship] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._columns_by_id = {c.column_id: c for c in self.columns}
        self._columns_by_name = {(c.table_id, c.column_name): c for c in self.columns}
        self._tables_by_name = {(t.schema_name, t.table_name): t for t in self.tables.values()}

    @classmethod
    async def load(cls, repository: SchemaRepository, datasource_id: str) -> SchemaSnapshot:
        tables = await repository.list_tables(datasource_id)
        columns = await repository.list_columns(datasource_id)
        relationships = await repository.list_relationships(datasource_id)
        return cls(
            tables={t.table_id: t for t in tables},
            columns=columns,
            relationships=relationships,
        )

    def table(self, table_id: str) -> SchemaTable | None:
        return self.tables.get(table_id)

    def table_by_name(self, schema_name: str, table_name: str) -> SchemaTable | None:
        return self._tables_by_name.get((schema_name, table_name))

    def column(self, column_id: str) -> SchemaColumn | None:
        return self._columns_by_id.get(column_id)

    def column_by_name(self, table_id: str, column_name: str) -> SchemaColumn | None:
        return self._columns_by_name.get((table_id, column_name))

    def columns_of(self, table_id: str) -> list[SchemaColumn]:
        return [c for c in self.columns if c.table_id == table_id]

    def describe(self, column: SchemaColumn) -> str:
        """'schema.table.column' for logs."""
        table = self.tables.get(column.table_id)
        if table is None:
            return column.column_name
        return f"{table.qualified_name}.{column.column_name}"
