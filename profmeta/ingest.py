"""Writing flat profiles into a column table and reading stack traces back."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping, Sequence

from profmeta.profile import InstantProfile, Sample, StacktraceSamples
from profmeta.resolve import ProfileMetaStore, get_locations_by_ids
from profmeta.samplerows import SampleRow, to_buffer
from profmeta.schema import COLUMN_STACKTRACE, Buffer, Schema, parca_schema
from profmeta.types import Location

log = logging.getLogger(__name__)

_UUID_LEN = 16


class MissingNameLabelError(ValueError):
    """The label set of a profile has no __name__ label."""

    def __init__(self, message: str = "missing __name__ label") -> None:
        super().__init__(message)


class MemoryTable:
    """A table keeping inserted buffers in memory."""

    def __init__(self, schema: Schema | None = None) -> None:
        self.schema = schema if schema is not None else parca_schema()
        self._buffers: list[Buffer] = []
        self._lock = threading.Lock()

    @property
    def buffers(self) -> list[Buffer]:
        with self._lock:
            return list(self._buffers)

    def insert_buffer(self, buffer: Buffer) -> int:
        """Store a buffer and return the number of its insert transaction."""
        if buffer.schema.column_names() != self.schema.column_names():
            raise ValueError("buffer schema does not match table schema")
        with self._lock:
            self._buffers.append(buffer)
            return len(self._buffers)


def _label_pairs(labels: Mapping[str, str] | Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    if isinstance(labels, Mapping):
        return list(labels.items())
    return [(name, value) for name, value in labels]


def _single(values: Sequence, kind: str, name: str):
    if len(values) != 1:
        raise ValueError(f"expected exactly one value per pprof {kind} {name!r}")
    return values[0]


def extract_location_ids(locations: Sequence[Location | None]) -> bytes:
    """Return the 16 byte IDs of the locations joined in reverse order."""
    if any(loc is None for loc in locations):
        raise ValueError("stack trace has a missing location")
    return b"".join(loc.id.bytes for loc in reversed(locations))  # type: ignore[union-attr]


def flat_profile_to_rows(
    labels: Mapping[str, str] | Iterable[tuple[str, str]], profile: InstantProfile
) -> list[SampleRow]:
    """Decompose the samples of a profile into rows carrying the given labels.

    The __name__ label becomes the name column; the other labels are sorted.
    """
    name = ""
    rest: list[tuple[str, str]] = []
    for label_name, value in _label_pairs(labels):
        if label_name == "__name__":
            name = value
        else:
            rest.append((label_name, value))
    if not name:
        raise MissingNameLabelError()
    rest.sort()

    meta = profile.profile_meta()
    rows: list[SampleRow] = []
    for sample in profile.samples().values():
        rows.append(
            SampleRow(
                name=name,
                sample_type=meta.sample_type.type,
                sample_unit=meta.sample_type.unit,
                period_type=meta.period_type.type,
                period_unit=meta.period_type.unit,
                pprof_labels={k: _single(v, "label", k) for k, v in sample.label.items()},
                pprof_num_labels={
                    k: _single(v, "num label", k) for k, v in sample.num_label.items()
                },
                labels=list(rest),
                stacktrace=extract_location_ids(sample.location),
                timestamp=meta.timestamp,
                duration=meta.duration,
                period=meta.period,
                value=sample.value,
            )
        )
    return rows


def flat_profile_to_buffer(
    labels: Mapping[str, str] | Iterable[tuple[str, str]],
    schema: Schema,
    profile: InstantProfile,
) -> Buffer:
    """Return a sorted buffer holding the rows of a profile."""
    rows = flat_profile_to_rows(labels, profile)
    log.debug("writing sample timestamp=%d", profile.profile_meta().timestamp)
    buffer = to_buffer(rows, schema)
    buffer.sort()
    return buffer.clone()


def insert_profile_into_table(
    table: MemoryTable,
    labels: Mapping[str, str] | Iterable[tuple[str, str]],
    profile: InstantProfile,
) -> int:
    """Insert the samples of a profile into a table; return how many there were."""
    if profile.profile_meta().timestamp == 0:
        raise ValueError("timestamp must not be zero")
    buffer = flat_profile_to_buffer(labels, table.schema, profile)
    table.insert_buffer(buffer)
    return len(profile.samples())


def _column(record: Mapping[str, Sequence], name: str, what: str) -> Sequence:
    if name not in record:
        raise ValueError(f"expected exactly one {what} column, got 0")
    return record[name]


def record_to_stacktrace_samples(
    store: ProfileMetaStore,
    record: Mapping[str, Sequence],
    value_column_name: str = "sum(value)",
) -> StacktraceSamples:
    """Resolve a query result of stack traces and values into samples with locations.

    The record maps column names to equally long columns.
    """
    stacktraces = _column(record, COLUMN_STACKTRACE, "stacktrace")
    values = _column(record, value_column_name, "value")
    if len(stacktraces) != len(values):
        raise ValueError("stacktrace and value columns differ in length")

    seen: set[bytes] = set()
    location_ids: list[bytes] = []
    stacks: list[tuple[list[bytes], int]] = []
    for raw, value in zip(stacktraces, values):
        raw = bytes(raw)
        if len(raw) % _UUID_LEN:
            raise ValueError("expected stacktrace uuids to be multiple of 16 bytes")
        ids = [raw[i:i + _UUID_LEN] for i in range(0, len(raw), _UUID_LEN)]
        for lid in ids:
            if lid not in seen:
                seen.add(lid)
                location_ids.append(lid)
        stacks.append((ids, value))

    locations = get_locations_by_ids(store, *location_ids)

    # Stack traces are stored leaf last; samples expect them leaf first.
    samples = [
        Sample(value=value, location=[locations.get(lid) for lid in reversed(ids)])
        for ids, value in stacks
    ]
    return StacktraceSamples(samples=samples)