"""An in-memory key-value implementation of the profile metadata store."""

from __future__ import annotations

import copy
import threading
import uuid
from collections.abc import Iterable, Iterator

from profmeta.keys import (
    STACKTRACE_ID_PREFIX,
    make_function_key,
    make_location_key,
    make_mapping_key,
)
from profmeta.types import (
    NIL_UUID,
    Function,
    FunctionNotFoundError,
    Line,
    Location,
    LocationLine,
    LocationLines,
    LocationNotFoundError,
    LocationRecord,
    Mapping,
    MappingNotFoundError,
    MetastoreError,
    SampleRecord,
    StacktraceNotFoundError,
)
from profmeta.uuidgen import RandomUUIDGenerator, UUIDGenerator

_MAPPINGS_BY_ID = b"mappings/by-id/"
_FUNCTIONS_BY_ID = b"functions/by-id/"
_LOCATION_LINES = b"locations-lines/"
_LOCATIONS_BY_ID = b"locations/by-id/"
_UNSYMBOLIZED_BY_ID = b"locations-unsymbolized/by-id/"


def _line_function(line: LocationLine) -> Function:
    if line.function is None:
        raise ValueError("location line has no function")
    return line.function


class KVMetastore:
    """Metadata store keeping every record in an ordered in-memory key space."""

    def __init__(self, uuid_generator: UUIDGenerator | None = None) -> None:
        self._uuids = uuid_generator if uuid_generator is not None else RandomUUIDGenerator()
        self._data: dict[bytes, object] = {}
        self._lock = threading.RLock()
        self._closed = False

    def __enter__(self) -> KVMetastore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- low level access -------------------------------------------------

    def _check_open(self) -> None:
        if self._closed:
            raise MetastoreError("metastore is closed")

    def _get(self, key: bytes) -> object:
        """Return a copy of the value under key; raise KeyError if missing."""
        return copy.deepcopy(self._data[key])

    def _set(self, key: bytes, value: object) -> None:
        self._data[key] = copy.deepcopy(value)

    def _scan(self, prefix: bytes) -> Iterator[tuple[bytes, object]]:
        for key in sorted(k for k in self._data if k.startswith(prefix)):
            yield key, copy.deepcopy(self._data[key])

    def _new_id(self) -> bytes:
        return self._uuids.new().bytes

    @staticmethod
    def _collect_mapping_ids(
        records: Iterable[LocationRecord],
    ) -> list[bytes]:
        seen: set[bytes] = set()
        mapping_ids: list[bytes] = []
        for record in records:
            mid = record.mapping_id
            if mid and mid != NIL_UUID.bytes and mid not in seen:
                seen.add(mid)
                mapping_ids.append(mid)
        return mapping_ids

    # -- lifecycle --------------------------------------------------------

    def close(self) -> None:
        """Release the store; later operations raise MetastoreError."""
        with self._lock:
            self._closed = True
            self._data.clear()

    def ping(self) -> None:
        """Check that the store is available."""
        return None

    # -- stack traces -----------------------------------------------------

    def get_stacktrace_by_key(self, key: bytes) -> uuid.UUID:
        with self._lock:
            self._check_open()
            try:
                value = self._get(bytes(key))
            except KeyError:
                raise StacktraceNotFoundError() from None
        return uuid.UUID(bytes=bytes(value))

    def get_stacktrace_by_ids(self, *ids: bytes) -> dict[bytes, SampleRecord]:
        samples: dict[bytes, SampleRecord] = {}
        with self._lock:
            self._check_open()
            for sid in ids:
                sid = bytes(sid)
                try:
                    samples[sid] = self._get(STACKTRACE_ID_PREFIX + sid)
                except KeyError:
                    raise StacktraceNotFoundError() from None
        return samples

    def create_stacktrace(self, key: bytes, sample: SampleRecord) -> uuid.UUID:
        stacktrace_id = self._uuids.new()
        with self._lock:
            self._check_open()
            self._set(STACKTRACE_ID_PREFIX + stacktrace_id.bytes, sample)
            self._set(bytes(key), stacktrace_id.bytes)
        return stacktrace_id

    # -- mappings ---------------------------------------------------------

    def get_mappings_by_ids(self, *ids: bytes) -> dict[bytes, Mapping]:
        mappings: dict[bytes, Mapping] = {}
        with self._lock:
            self._check_open()
            for mid in ids:
                mid = bytes(mid)
                try:
                    mappings[mid] = self._get(_MAPPINGS_BY_ID + mid)
                except KeyError:
                    raise MappingNotFoundError() from None
        return mappings

    def get_mapping_by_key(self, key: Mapping) -> Mapping:
        with self._lock:
            self._check_open()
            try:
                mapping_id = self._get(make_mapping_key(key))
            except KeyError:
                raise MappingNotFoundError() from None
            try:
                return self._get(_MAPPINGS_BY_ID + mapping_id)
            except KeyError:
                raise MappingNotFoundError() from None

    def create_mapping(self, mapping: Mapping) -> bytes:
        """Store a new mapping, assign it a new ID and return that ID."""
        mapping_id = self._new_id()
        mapping.id = mapping_id
        with self._lock:
            self._check_open()
            self._set(make_mapping_key(mapping), mapping_id)
            self._set(_MAPPINGS_BY_ID + mapping_id, mapping)
        return mapping_id

    # -- functions --------------------------------------------------------

    def create_function(self, function: Function) -> bytes:
        """Store a new function, assign it a new ID and return that ID."""
        function_id = self._new_id()
        function.id = function_id
        with self._lock:
            self._check_open()
            self._set(make_function_key(function), function_id)
            self._set(_FUNCTIONS_BY_ID + function_id, function)
        return function_id

    def get_function_by_key(self, key: Function) -> Function:
        with self._lock:
            self._check_open()
            try:
                function_id = self._get(make_function_key(key))
            except KeyError:
                raise FunctionNotFoundError() from None
            try:
                return self._get(_FUNCTIONS_BY_ID + function_id)
            except KeyError:
                raise FunctionNotFoundError() from None

    def get_functions(self) -> list[Function]:
        with self._lock:
            self._check_open()
            return [value for _, value in self._scan(_FUNCTIONS_BY_ID)]

    def get_functions_by_ids(self, *ids: bytes) -> dict[bytes, Function]:
        functions: dict[bytes, Function] = {}
        with self._lock:
            self._check_open()
            for fid in ids:
                fid = bytes(fid)
                try:
                    functions[fid] = self._get(_FUNCTIONS_BY_ID + fid)
                except KeyError:
                    raise FunctionNotFoundError() from None
        return functions

    # -- location lines ---------------------------------------------------

    def create_location_lines(
        self, location_id: bytes, lines: Iterable[LocationLine]
    ) -> None:
        location_id = bytes(location_id)
        record = LocationLines(
            id=location_id,
            lines=[
                Line(line=ln.line, function_id=bytes(_line_function(ln).id))
                for ln in lines
            ],
        )
        with self._lock:
            self._check_open()
            self._set(_LOCATION_LINES + location_id, record)

    def get_lines_by_location_ids(
        self, *ids: bytes
    ) -> tuple[dict[bytes, list[Line]], list[bytes]]:
        """Return the lines per location and the distinct function IDs they use.

        Locations without stored lines are left out.
        """
        lines_by_location: dict[bytes, list[Line]] = {}
        seen: set[bytes] = set()
        function_ids: list[bytes] = []
        with self._lock:
            self._check_open()
            for lid in ids:
                lid = bytes(lid)
                try:
                    record: LocationLines = self._get(_LOCATION_LINES + lid)
                except KeyError:
                    continue
                for line in record.lines:
                    if line.function_id not in seen:
                        seen.add(line.function_id)
                        function_ids.append(line.function_id)
                lines_by_location[lid] = record.lines
        return lines_by_location, function_ids

    # -- locations --------------------------------------------------------

    def get_location_by_key(self, key: Location) -> LocationRecord:
        with self._lock:
            self._check_open()
            try:
                location_id = self._get(make_location_key(key))
            except KeyError:
                raise LocationNotFoundError() from None
            try:
                return self._get(_LOCATIONS_BY_ID + location_id)
            except KeyError:
                raise LocationNotFoundError() from None

    def get_locations_by_ids(
        self, *ids: bytes
    ) -> tuple[dict[bytes, LocationRecord], list[bytes]]:
        """Return the locations by ID and the distinct mapping IDs they use."""
        locations: dict[bytes, LocationRecord] = {}
        with self._lock:
            self._check_open()
            for lid in ids:
                lid = bytes(lid)
                try:
                    locations[lid] = self._get(_LOCATIONS_BY_ID + lid)
                except KeyError:
                    raise LocationNotFoundError() from None
        return locations, self._collect_mapping_ids(locations.values())

    def create_location(self, location: Location) -> bytes:
        location_id = self._new_id()
        record = LocationRecord(
            id=location_id,
            address=location.address,
            is_folded=location.is_folded,
            mapping_id=bytes(location.mapping.id) if location.mapping is not None else b"",
        )
        with self._lock:
            self._check_open()
            self._set(make_location_key(location), location_id)
            if location.address != 0 and location.mapping is not None and not location.lines:
                self._set(_UNSYMBOLIZED_BY_ID + location_id, location_id)
            self._set(_LOCATIONS_BY_ID + location_id, record)
        if location.lines:
            self.create_location_lines(location_id, location.lines)
        return location_id

    def get_symbolizable_locations(self) -> tuple[list[LocationRecord], list[bytes]]:
        """Return the locations still waiting for symbolization."""
        with self._lock:
            self._check_open()
            prefix_len = len(_UNSYMBOLIZED_BY_ID)
            ids = [key[prefix_len:] for key, _ in self._scan(_UNSYMBOLIZED_BY_ID)]
        locations, mapping_ids = self.get_locations_by_ids(*ids)
        return list(locations.values()), mapping_ids

    def get_locations(self) -> tuple[list[LocationRecord], list[bytes]]:
        with self._lock:
            self._check_open()
            locations = [value for _, value in self._scan(_LOCATIONS_BY_ID)]
        return locations, self._collect_mapping_ids(locations)

    def symbolize(self, location: Location) -> None:
        """Store the lines of an already stored location, creating functions as needed."""
        for line in location.lines:
            function = _line_function(line)
            function.id = self._get_or_create_function(function)
        self.create_location_lines(location.id.bytes, location.lines)
        with self._lock:
            self._check_open()
            self._data.pop(_UNSYMBOLIZED_BY_ID + location.id.bytes, None)

    def _get_or_create_function(self, function: Function) -> bytes:
        try:
            return self.get_function_by_key(function).id
        except FunctionNotFoundError:
            return self.create_function(function)