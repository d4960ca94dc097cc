"""Column schema and in-memory row buffers for stored profile samples."""

from __future__ import annotations

import functools
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

INT64 = "int64"
STRING = "string"

_PYTHON_TYPES: dict[str, tuple[type, ...]] = {
    INT64: (int,),
    STRING: (str, bytes),
}

SCHEMA_NAME = "parca"

# The columns are sorted by their name in the schema too.
COLUMN_DURATION = "duration"
COLUMN_LABELS = "labels"
COLUMN_NAME = "name"
COLUMN_PERIOD = "period"
COLUMN_PERIOD_TYPE = "period_type"
COLUMN_PERIOD_UNIT = "period_unit"
COLUMN_PPROF_LABELS = "pprof_labels"
COLUMN_PPROF_NUM_LABELS = "pprof_num_labels"
COLUMN_SAMPLE_TYPE = "sample_type"
COLUMN_SAMPLE_UNIT = "sample_unit"
COLUMN_STACKTRACE = "stacktrace"
COLUMN_TIMESTAMP = "timestamp"
COLUMN_VALUE = "value"


@dataclass(frozen=True)
class ColumnDefinition:
    """A column: its value type, whether it may be null and whether it is dynamic.

    A dynamic column stands for a family of concrete columns, one per name
    given when a buffer is created.
    """

    name: str
    type: str
    optional: bool = False
    dictionary_encoded: bool = False
    dynamic: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("column name must not be empty")
        if self.type not in _PYTHON_TYPES:
            raise ValueError(f"unknown column type {self.type!r}")


@dataclass(frozen=True)
class SortingColumn:
    """A column rows are sorted by, with its direction and null placement."""

    name: str
    descending: bool = False
    nulls_first: bool = False


@dataclass(frozen=True)
class ParquetValue:
    """One value of a row, with its levels and the index of its concrete column."""

    value: int | str | bytes | None
    repetition_level: int = 0
    definition_level: int = 0
    column_index: int = 0

    @property
    def is_null(self) -> bool:
        return self.value is None


class Schema:
    """A named set of columns, kept sorted by name, and the order rows sort in."""

    def __init__(
        self,
        name: str,
        columns: Iterable[ColumnDefinition],
        sorting_columns: Iterable[SortingColumn] = (),
    ) -> None:
        cols = sorted(columns, key=lambda c: c.name)
        self._by_name = {c.name: c for c in cols}
        if len(self._by_name) != len(cols):
            raise ValueError("duplicate column name in schema")
        sorting = tuple(sorting_columns)
        for sc in sorting:
            if sc.name not in self._by_name:
                raise ValueError(f"sorting column {sc.name!r} is not in the schema")
        self.name = name
        self.columns: tuple[ColumnDefinition, ...] = tuple(cols)
        self.sorting_columns: tuple[SortingColumn, ...] = sorting

    def column(self, name: str) -> ColumnDefinition:
        """Return the column with the given name; raise KeyError if unknown."""
        return self._by_name[name]

    def column_names(self) -> list[str]:
        """Return the names of the columns in schema order."""
        return [c.name for c in self.columns]

    def new_buffer(self, dynamic_columns: Mapping[str, Sequence[str]] | None = None) -> Buffer:
        """Return an empty buffer with the given concrete names per dynamic column."""
        given = dict(dynamic_columns or {})
        for key, names in given.items():
            col = self._by_name.get(key)
            if col is None or not col.dynamic:
                raise ValueError(f"{key!r} is not a dynamic column of schema {self.name!r}")
            if len(set(names)) != len(names):
                raise ValueError(f"duplicate names for dynamic column {key!r}")
        resolved = {c.name: list(given.get(c.name, [])) for c in self.columns if c.dynamic}
        return Buffer(self, resolved)


def _compare_values(a: object, b: object, sorting: SortingColumn) -> int:
    if a is None and b is None:
        return 0
    if a is None:
        return -1 if sorting.nulls_first else 1
    if b is None:
        return 1 if sorting.nulls_first else -1
    result = (a > b) - (a < b)  # type: ignore[operator]
    return -result if sorting.descending else result


class Buffer:
    """Rows written against a schema and a fixed set of dynamic column names."""

    def __init__(self, schema: Schema, dynamic_columns: Mapping[str, Sequence[str]]) -> None:
        self.schema = schema
        self._dynamic = {k: list(v) for k, v in dynamic_columns.items()}
        self._paths: list[tuple[ColumnDefinition, str]] = []
        for col in schema.columns:
            if col.dynamic:
                self._paths.extend((col, f"{col.name}.{n}") for n in self._dynamic.get(col.name, []))
            else:
                self._paths.append((col, col.name))
        self._rows: list[tuple[ParquetValue, ...]] = []

    def __len__(self) -> int:
        return len(self._rows)

    @property
    def rows(self) -> list[list[ParquetValue]]:
        """The rows written so far, in their current order."""
        return [list(r) for r in self._rows]

    def column_paths(self) -> list[str]:
        """Return the concrete columns in row order, dynamic ones as name.label."""
        return [path for _, path in self._paths]

    def write_row(self, row: Iterable[ParquetValue]) -> None:
        """Append a row; raise ValueError if it does not fit the buffer's columns."""
        values = tuple(row)
        if len(values) != len(self._paths):
            raise ValueError(
                f"row has {len(values)} values, buffer has {len(self._paths)} columns"
            )
        for index, ((col, path), value) in enumerate(zip(self._paths, values)):
            if value.column_index != index:
                raise ValueError(
                    f"value for column {path} has index {value.column_index}, expected {index}"
                )
            if value.value is None:
                if not (col.optional or col.dynamic):
                    raise ValueError(f"column {path} must not be null")
            elif not isinstance(value.value, _PYTHON_TYPES[col.type]):
                raise ValueError(f"column {path} holds {col.type} values")
        self._rows.append(values)

    def dynamic_columns(self) -> dict[str, list[str]]:
        """Return the concrete names of each dynamic column."""
        return {k: list(v) for k, v in self._dynamic.items()}

    def sort(self) -> None:
        """Sort the rows by the schema's sorting columns."""
        groups = [
            (sc, [i for i, (col, _) in enumerate(self._paths) if col.name == sc.name])
            for sc in self.schema.sorting_columns
        ]

        def compare(a: tuple[ParquetValue, ...], b: tuple[ParquetValue, ...]) -> int:
            for sorting, indices in groups:
                for i in indices:
                    result = _compare_values(a[i].value, b[i].value, sorting)
                    if result:
                        return result
            return 0

        self._rows.sort(key=functools.cmp_to_key(compare))

    def clone(self) -> Buffer:
        """Return an independent buffer with the same rows in the same order."""
        other = Buffer(self.schema, self._dynamic)
        other._rows = list(self._rows)
        return other


def parca_schema() -> Schema:
    """Return the schema stack trace samples are stored with."""
    return Schema(
        SCHEMA_NAME,
        [
            ColumnDefinition(COLUMN_DURATION, INT64),
            ColumnDefinition(
                COLUMN_LABELS, STRING, optional=True, dictionary_encoded=True, dynamic=True
            ),
            ColumnDefinition(COLUMN_NAME, STRING, dictionary_encoded=True),
            ColumnDefinition(COLUMN_PERIOD, INT64),
            ColumnDefinition(COLUMN_PERIOD_TYPE, STRING, dictionary_encoded=True),
            ColumnDefinition(COLUMN_PERIOD_UNIT, STRING, dictionary_encoded=True),
            ColumnDefinition(
                COLUMN_PPROF_LABELS, STRING, optional=True, dictionary_encoded=True, dynamic=True
            ),
            ColumnDefinition(COLUMN_PPROF_NUM_LABELS, INT64, optional=True, dynamic=True),
            ColumnDefinition(COLUMN_SAMPLE_TYPE, STRING, dictionary_encoded=True),
            ColumnDefinition(COLUMN_SAMPLE_UNIT, STRING, dictionary_encoded=True),
            ColumnDefinition(COLUMN_STACKTRACE, STRING, dictionary_encoded=True),
            ColumnDefinition(COLUMN_TIMESTAMP, INT64),
            ColumnDefinition(COLUMN_VALUE, INT64),
        ],
        [
            SortingColumn(COLUMN_NAME),
            SortingColumn(COLUMN_SAMPLE_TYPE),
            SortingColumn(COLUMN_SAMPLE_UNIT),
            SortingColumn(COLUMN_PERIOD_TYPE),
            SortingColumn(COLUMN_PERIOD_UNIT),
            SortingColumn(COLUMN_LABELS, nulls_first=True),
            SortingColumn(COLUMN_STACKTRACE, nulls_first=True),
            SortingColumn(COLUMN_TIMESTAMP),
            SortingColumn(COLUMN_PPROF_LABELS, nulls_first=True),
            SortingColumn(COLUMN_PPROF_NUM_LABELS, nulls_first=True),
        ],
    )