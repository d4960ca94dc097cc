"""Assembly of fully resolved locations from the records of a metadata store."""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from typing import Protocol

from profmeta.types import (
    Function,
    Line,
    Location,
    LocationLine,
    LocationRecord,
    Mapping,
    SampleRecord,
)


class ProfileMetaStore(Protocol):
    """Operations every profile metadata store offers."""

    def close(self) -> None: ...

    def ping(self) -> None: ...

    def get_stacktrace_by_key(self, key: bytes) -> uuid.UUID: ...

    def get_stacktrace_by_ids(self, *ids: bytes) -> dict[bytes, SampleRecord]: ...

    def create_stacktrace(self, key: bytes, sample: SampleRecord) -> uuid.UUID: ...

    def get_locations(self) -> tuple[list[LocationRecord], list[bytes]]: ...

    def get_location_by_key(self, key: Location) -> LocationRecord: ...

    def get_locations_by_ids(
        self, *ids: bytes
    ) -> tuple[dict[bytes, LocationRecord], list[bytes]]: ...

    def create_location(self, location: Location) -> bytes: ...

    def symbolize(self, location: Location) -> None: ...

    def get_symbolizable_locations(self) -> tuple[list[LocationRecord], list[bytes]]: ...

    def create_location_lines(
        self, location_id: bytes, lines: Iterable[LocationLine]
    ) -> None: ...

    def get_lines_by_location_ids(
        self, *ids: bytes
    ) -> tuple[dict[bytes, list[Line]], list[bytes]]: ...

    def get_function_by_key(self, key: Function) -> Function: ...

    def create_function(self, function: Function) -> bytes: ...

    def get_functions_by_ids(self, *ids: bytes) -> dict[bytes, Function]: ...

    def get_functions(self) -> list[Function]: ...

    def get_mapping_by_key(self, key: Mapping) -> Mapping: ...

    def create_mapping(self, mapping: Mapping) -> bytes: ...

    def get_mappings_by_ids(self, *ids: bytes) -> dict[bytes, Mapping]: ...


def get_location_by_key(store: ProfileMetaStore, key: Location) -> Location:
    """Look a location up by its key and resolve its mapping and lines."""
    record = store.get_location_by_key(key)
    result = Location(
        id=uuid.UUID(bytes=bytes(record.id)),
        address=record.address,
        is_folded=record.is_folded,
    )

    if record.mapping_id:
        mappings = store.get_mappings_by_ids(record.mapping_id)
        result.mapping = mappings.get(record.mapping_id)

    lines_by_location, function_ids = store.get_lines_by_location_ids(record.id)
    functions = store.get_functions_by_ids(*function_ids)
    result.lines = [
        LocationLine(line=line.line, function=functions.get(line.function_id))
        for line in lines_by_location.get(record.id, [])
    ]
    return result


def get_locations_by_ids(store: ProfileMetaStore, *ids: bytes) -> dict[bytes, Location]:
    """Return fully resolved locations keyed by their 16 byte IDs."""
    ids = tuple(bytes(i) for i in ids)
    records, mapping_ids = store.get_locations_by_ids(*ids)
    return _resolve_records(store, ids, records, mapping_ids)


def get_locations(store: ProfileMetaStore) -> list[Location]:
    """Return every stored location, fully resolved."""
    records, mapping_ids = store.get_locations()
    by_id = {record.id: record for record in records}
    resolved = _resolve_records(store, list(by_id), by_id, mapping_ids)
    return list(resolved.values())


def _resolve_records(
    store: ProfileMetaStore,
    ids: Iterable[bytes],
    records: dict[bytes, LocationRecord],
    mapping_ids: list[bytes],
) -> dict[bytes, Location]:
    mappings = store.get_mappings_by_ids(*mapping_ids)
    lines_by_location, function_ids = store.get_lines_by_location_ids(*ids)
    functions = store.get_functions_by_ids(*function_ids)

    result: dict[bytes, Location] = {}
    for location_id, record in records.items():
        location = Location(
            id=uuid.UUID(bytes=bytes(location_id)),
            address=record.address,
            is_folded=record.is_folded,
            mapping=mappings.get(record.mapping_id),
        )
        location.lines = [
            LocationLine(line=line.line, function=functions[line.function_id])
            for line in lines_by_location.get(location_id, [])
            if line.function_id in functions
        ]
        result[location_id] = location
    return result


def get_symbolizable_locations(store: ProfileMetaStore) -> list[Location]:
    """Return the locations still waiting for symbolization, with their mappings."""
    records, mapping_ids = store.get_symbolizable_locations()
    mappings = store.get_mappings_by_ids(*mapping_ids)
    return [
        Location(
            id=uuid.UUID(bytes=bytes(record.id)),
            address=record.address,
            is_folded=record.is_folded,
            mapping=mappings.get(record.mapping_id),
        )
        for record in records
    ]