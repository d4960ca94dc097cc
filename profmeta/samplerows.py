"""Stack trace samples decomposed into the columns they are stored in."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from profmeta.schema import (
    COLUMN_DURATION,
    COLUMN_LABELS,
    COLUMN_NAME,
    COLUMN_PERIOD,
    COLUMN_PERIOD_TYPE,
    COLUMN_PERIOD_UNIT,
    COLUMN_PPROF_LABELS,
    COLUMN_PPROF_NUM_LABELS,
    COLUMN_SAMPLE_TYPE,
    COLUMN_SAMPLE_UNIT,
    COLUMN_STACKTRACE,
    COLUMN_TIMESTAMP,
    COLUMN_VALUE,
    Buffer,
    ParquetValue,
    Schema,
)


@dataclass
class SampleRow:
    """A decomposed pprof sample; every field is a column of the schema."""

    duration: int = 0
    labels: list[tuple[str, str]] = field(default_factory=list)
    name: str = ""
    period: int = 0
    period_type: str = ""
    period_unit: str = ""
    pprof_labels: dict[str, str] = field(default_factory=dict)
    pprof_num_labels: dict[str, int] = field(default_factory=dict)
    sample_type: str = ""
    sample_unit: str = ""
    stacktrace: bytes = b""
    timestamp: int = 0
    value: int = 0

    def to_row(
        self,
        schema: Schema,
        label_names: Sequence[str],
        pprof_label_names: Sequence[str],
        pprof_num_label_names: Sequence[str],
    ) -> list[ParquetValue]:
        """Return the row of this sample for a buffer with the given dynamic names.

        Raises ValueError for a schema column this sample has no value for.
        """
        statics = {
            COLUMN_DURATION: self.duration,
            COLUMN_NAME: self.name,
            COLUMN_PERIOD: self.period,
            COLUMN_PERIOD_TYPE: self.period_type,
            COLUMN_PERIOD_UNIT: self.period_unit,
            COLUMN_SAMPLE_TYPE: self.sample_type,
            COLUMN_SAMPLE_UNIT: self.sample_unit,
            COLUMN_STACKTRACE: self.stacktrace,
            COLUMN_TIMESTAMP: self.timestamp,
            COLUMN_VALUE: self.value,
        }
        dynamics: dict[str, tuple[Sequence[str], Mapping[str, object]]] = {
            COLUMN_LABELS: (label_names, dict(self.labels)),
            COLUMN_PPROF_LABELS: (pprof_label_names, self.pprof_labels),
            COLUMN_PPROF_NUM_LABELS: (pprof_num_label_names, self.pprof_num_labels),
        }

        row: list[ParquetValue] = []

        def add(value: object, definition_level: int = 0) -> None:
            row.append(ParquetValue(value, 0, definition_level, len(row)))  # type: ignore[arg-type]

        for column in schema.columns:
            if column.name in statics:
                add(statics[column.name])
            elif column.name in dynamics:
                names, values = dynamics[column.name]
                _add_dynamic(add, names, values)
            else:
                raise ValueError(f"conversion not implemented for column: {column.name}")
        return row


def _add_dynamic(
    add: Callable[..., None], names: Sequence[str], values: Mapping[str, object]
) -> None:
    for name in names:
        if name in values:
            add(values[name], 1)
        else:
            add(None)


def sample_label_names(samples: Iterable[SampleRow]) -> list[str]:
    """Return the sorted distinct label names of the samples."""
    return sorted({name for s in samples for name, _ in s.labels})


def _pprof_label_names(samples: Iterable[SampleRow]) -> list[str]:
    return sorted({name for s in samples for name in s.pprof_labels})


def _pprof_num_label_names(samples: Iterable[SampleRow]) -> list[str]:
    return sorted({name for s in samples for name in s.pprof_num_labels})


def to_buffer(samples: Iterable[SampleRow], schema: Schema) -> Buffer:
    """Write the samples into a new buffer of the schema."""
    samples = list(samples)
    names = sample_label_names(samples)
    pprof_names = _pprof_label_names(samples)
    pprof_num_names = _pprof_num_label_names(samples)

    buffer = schema.new_buffer(
        {
            COLUMN_LABELS: names,
            COLUMN_PPROF_LABELS: pprof_names,
            COLUMN_PPROF_NUM_LABELS: pprof_num_names,
        }
    )
    for sample in samples:
        buffer.write_row(sample.to_row(schema, names, pprof_names, pprof_num_names))
    return buffer