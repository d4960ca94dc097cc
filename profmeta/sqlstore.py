"""A profile metadata store kept in a SQL database, with an in-process cache."""

from __future__ import annotations

import contextlib
import os
import sqlite3
import threading
import time
import uuid
from collections.abc import Iterable, Iterator

from profmeta.cache import MetaStoreCache
from profmeta.keys import (
    make_sql_function_key,
    make_sql_location_key,
    make_sql_mapping_key,
)
from profmeta.sqlqueries import (
    build_lines_by_location_ids_query,
    build_locations_by_ids_query,
    quoted_id_list,
)
from profmeta.types import (
    NIL_UUID,
    Function,
    FunctionNotFoundError,
    Line,
    Location,
    LocationLine,
    LocationNotFoundError,
    LocationRecord,
    Mapping,
    MappingNotFoundError,
    MetastoreError,
)

_U64 = (1 << 64) - 1
_INSERT_ATTEMPTS = 4  # the first try and three retries
_RETRY_DELAY = 0.01

# Most of the tables started as representations of pprof data types.
_MIGRATIONS = (
    "PRAGMA foreign_keys = ON",
    """CREATE TABLE "mappings" (
        "id" TEXT NOT NULL PRIMARY KEY,
        "start" INT64,
        "limit" INT64,
        "offset" INT64,
        "file" TEXT,
        "build_id" TEXT,
        "has_functions" BOOLEAN,
        "has_filenames" BOOLEAN,
        "has_line_numbers" BOOLEAN,
        "has_inline_frames" BOOLEAN,
        "size" INT64,
        "build_id_or_file" TEXT,
        UNIQUE ("size", "offset", "build_id_or_file")
    )""",
    'CREATE INDEX idx_mapping_key ON "mappings" ("size", "offset", "build_id_or_file")',
    """CREATE TABLE "functions" (
        "id" TEXT NOT NULL PRIMARY KEY,
        "name" TEXT,
        "system_name" TEXT,
        "filename" TEXT,
        "start_line" INT64,
        UNIQUE ("name", "system_name", "filename", "start_line")
    )""",
    'CREATE INDEX idx_function_key ON "functions" ("start_line", "name", "system_name", "filename")',
    """CREATE TABLE "lines" (
        "location_id" TEXT NOT NULL,
        "function_id" TEXT NOT NULL,
        "line" INT64,
        FOREIGN KEY ("function_id") REFERENCES "functions" ("id"),
        FOREIGN KEY ("location_id") REFERENCES "locations" ("id"),
        UNIQUE ("location_id", "function_id", "line")
    )""",
    'CREATE INDEX idx_line_location ON "lines" ("location_id")',
    """CREATE TABLE "locations" (
        "id" TEXT NOT NULL PRIMARY KEY,
        "mapping_id" TEXT,
        "address" INT64,
        "is_folded" BOOLEAN,
        "normalized_address" INT64,
        "lines" TEXT,
        FOREIGN KEY ("mapping_id") REFERENCES "mappings" ("id"),
        UNIQUE ("mapping_id", "is_folded", "normalized_address", "lines")
    )""",
    'CREATE INDEX idx_location_key ON "locations" ("normalized_address", "mapping_id", "is_folded", "lines")',
)

_MAPPING_COLUMNS = (
    '"id", "start", "limit", "offset", "file", "build_id", '
    '"has_functions", "has_filenames", "has_line_numbers", "has_inline_frames"'
)
_FUNCTION_COLUMNS = '"id", "name", "system_name", "filename", "start_line"'


def _to_i64(value: int) -> int:
    value &= _U64
    return value - (1 << 64) if value >= 1 << 63 else value


def _to_u64(value: int | None) -> int:
    return (value or 0) & _U64


def _parse_uuid(text: str, what: str) -> uuid.UUID:
    try:
        return uuid.UUID(text)
    except (ValueError, TypeError, AttributeError) as err:
        raise MetastoreError(f"parse {what}: {err}") from err


def _uuid_from_bytes(value: bytes, what: str) -> uuid.UUID:
    try:
        return uuid.UUID(bytes=bytes(value))
    except (ValueError, TypeError) as err:
        raise MetastoreError(f"parse {what}: {err}") from err


@contextlib.contextmanager
def _sql_errors(message: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as err:
        raise MetastoreError(f"{message}: {err}") from err


def _mapping_from_row(row: tuple) -> Mapping:
    (mid, start, limit, offset, file, build_id,
     has_functions, has_filenames, has_line_numbers, has_inline_frames) = row
    return Mapping(
        id=_parse_uuid(mid, "mapping ID").bytes,
        start=_to_u64(start),
        limit=_to_u64(limit),
        offset=_to_u64(offset),
        file=file or "",
        build_id=build_id or "",
        has_functions=bool(has_functions),
        has_filenames=bool(has_filenames),
        has_line_numbers=bool(has_line_numbers),
        has_inline_frames=bool(has_inline_frames),
    )


def _function_from_row(row: tuple) -> Function:
    fid, name, system_name, filename, start_line = row
    return Function(
        id=_parse_uuid(fid, "function ID").bytes,
        name=name or "",
        system_name=system_name or "",
        filename=filename or "",
        start_line=start_line or 0,
    )


def _location_from_row(row: tuple) -> LocationRecord:
    lid, address, is_folded, mapping_id = row
    record = LocationRecord(
        id=_parse_uuid(lid, "location ID").bytes,
        address=_to_u64(address),
        is_folded=bool(is_folded),
    )
    if mapping_id is not None:
        record.mapping_id = _parse_uuid(mapping_id, "mapping ID").bytes
    return record


class SQLMetastore:
    """Metadata store backed by a SQLite connection and a MetaStoreCache."""

    def __init__(
        self, connection: sqlite3.Connection, cache: MetaStoreCache | None = None
    ) -> None:
        self._conn = connection
        self.cache = cache if cache is not None else MetaStoreCache()
        self._lock = threading.RLock()

    def __enter__(self) -> SQLMetastore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _query(self, sql: str, params: Iterable = ()) -> list[tuple]:
        with self._lock:
            return self._conn.execute(sql, tuple(params)).fetchall()

    def _execute(self, sql: str, params: Iterable = ()) -> None:
        with self._lock, self._conn:
            self._conn.execute(sql, tuple(params))

    # -- lifecycle --------------------------------------------------------

    def migrate(self) -> None:
        """Create the tables and indexes of the store."""
        with self._lock, self._conn:
            for statement in _MIGRATIONS:
                self._conn.execute(statement)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def ping(self) -> None:
        """Raise MetastoreError if the database cannot be reached."""
        with _sql_errors("ping"):
            self._query("SELECT 1")

    # -- locations --------------------------------------------------------

    def get_location_by_key(self, key: Location) -> LocationRecord:
        k = make_sql_location_key(key)
        cached = self.cache.get_location_by_key(k)
        if cached is not None:
            return cached

        with _sql_errors("get location by key"):
            if k.mapping_id != NIL_UUID:
                rows = self._query(
                    'SELECT "id", "address" FROM "locations" '
                    'WHERE "normalized_address"=? AND "is_folded"=? AND "lines"=? '
                    'AND "mapping_id"=?',
                    (_to_i64(k.address), k.is_folded, k.lines, str(k.mapping_id)),
                )
            else:
                rows = self._query(
                    'SELECT "id", "address" FROM "locations" '
                    'WHERE "normalized_address"=? AND "mapping_id" IS NULL '
                    'AND "is_folded"=? AND "lines"=?',
                    (_to_i64(k.address), k.is_folded, k.lines),
                )
        if not rows:
            raise LocationNotFoundError()

        lid, address = rows[0]
        record = LocationRecord(
            id=_parse_uuid(lid, "location id").bytes,
            address=_to_u64(address),
            is_folded=k.is_folded,
            mapping_id=k.mapping_id.bytes,
        )
        self.cache.set_location_by_key(k, record)
        return record

    def get_locations_by_ids(
        self, *ids: bytes
    ) -> tuple[dict[bytes, LocationRecord], list[bytes]]:
        """Return the locations by ID and the distinct mapping IDs they use."""
        locations: dict[bytes, LocationRecord] = {}
        mapping_ids: list[bytes] = []
        seen: set[bytes] = set()

        def note_mapping(mapping_id: bytes) -> None:
            if mapping_id not in seen:
                seen.add(mapping_id)
                mapping_ids.append(mapping_id)

        remaining: list[uuid.UUID] = []
        for lid in ids:
            lid = bytes(lid)
            cached = self.cache.get_location_by_id(lid)
            if cached is not None:
                locations[cached.id] = cached
                if cached.mapping_id and cached.mapping_id != NIL_UUID.bytes:
                    note_mapping(cached.mapping_id)
                continue
            remaining.append(_uuid_from_bytes(lid, "location id"))

        if remaining:
            with _sql_errors("execute SQL query"):
                rows = self._query(build_locations_by_ids_query(remaining))
            for lid, mapping_id, address, is_folded in rows:
                record = _location_from_row((lid, address, is_folded, mapping_id))
                if record.id in locations:
                    continue
                self.cache.set_location_by_id(record)
                locations[record.id] = record
                if mapping_id is not None:
                    note_mapping(record.mapping_id)

        return locations, mapping_ids

    def create_location(self, location: Location) -> bytes:
        """Store a new location and its lines; return its new 16 byte ID."""
        k = make_sql_location_key(location)
        location_id = uuid.uuid4()

        if location.mapping is not None:
            mapping_uuid = _uuid_from_bytes(location.mapping.id, "mapping ID")
            # The mapping must already be stored.
            try:
                self._get_mapping_by_id(mapping_uuid)
            except MappingNotFoundError as err:
                raise MappingNotFoundError(f"get mapping by id: {err}") from err
            sql = (
                'INSERT INTO "locations" ("id", "address", "is_folded", "mapping_id", '
                '"normalized_address", "lines") VALUES (?,?,?,?,?,?)'
            )
            params: tuple = (
                str(location_id), _to_i64(location.address), location.is_folded,
                str(mapping_uuid), _to_i64(k.address), k.lines,
            )
        else:
            sql = (
                'INSERT INTO "locations" ("id", "address", "is_folded", '
                '"normalized_address", "lines") VALUES (?,?,?,?,?)'
            )
            params = (
                str(location_id), _to_i64(location.address), location.is_folded,
                _to_i64(k.address), k.lines,
            )

        for attempt in range(_INSERT_ATTEMPTS):
            try:
                self._execute(sql, params)
                break
            except sqlite3.Error as err:
                if attempt == _INSERT_ATTEMPTS - 1:
                    raise MetastoreError(f"backoff SQL statement: {err}") from err
                time.sleep(_RETRY_DELAY)

        self.create_location_lines(location_id.bytes, location.lines)
        return location_id.bytes

    def symbolize(self, location: Location) -> None:
        """Store the lines of a location that is already stored."""
        self.create_location_lines(location.id.bytes, location.lines)

    def get_locations(self) -> tuple[list[LocationRecord], list[bytes]]:
        with _sql_errors("GetLocations failed"):
            rows = self._query(
                'SELECT l."id", l."address", l."is_folded", l."mapping_id" FROM "locations" l'
            )
        return self._locations_with_mappings(rows)

    def get_symbolizable_locations(self) -> tuple[list[LocationRecord], list[bytes]]:
        """Return the locations with an address and a mapping but no lines yet."""
        with _sql_errors("GetSymbolizableLocations failed"):
            rows = self._query(
                'SELECT l."id", l."address", l."is_folded", l."mapping_id" '
                'FROM "locations" l '
                'LEFT JOIN "lines" ln ON l."id" = ln."location_id" '
                'WHERE l."normalized_address" > 0 '
                'AND ln."line" IS NULL '
                'AND l."mapping_id" IS NOT NULL '
                'AND l."id" IS NOT NULL'
            )
        return self._locations_with_mappings(rows)

    @staticmethod
    def _locations_with_mappings(
        rows: list[tuple],
    ) -> tuple[list[LocationRecord], list[bytes]]:
        locations: list[LocationRecord] = []
        mapping_ids: list[bytes] = []
        seen: set[bytes] = set()
        for row in rows:
            record = _location_from_row(row)
            if row[3] is not None and record.mapping_id not in seen:
                seen.add(record.mapping_id)
                mapping_ids.append(record.mapping_id)
            locations.append(record)
        return locations, mapping_ids

    # -- mappings ---------------------------------------------------------

    def get_mappings_by_ids(self, *ids: bytes) -> dict[bytes, Mapping]:
        id_list = quoted_id_list(_uuid_from_bytes(i, "mapping ID") for i in ids)
        with _sql_errors("execute SQL query"):
            rows = self._query(
                f'SELECT {_MAPPING_COLUMNS} FROM "mappings" WHERE "id" IN ({id_list})'
            )
        result: dict[bytes, Mapping] = {}
        for row in rows:
            mapping = _mapping_from_row(row)
            result.setdefault(mapping.id, mapping)
        return result

    def get_mapping_by_key(self, key: Mapping) -> Mapping:
        k = make_sql_mapping_key(key)
        cached = self.cache.get_mapping_by_key(k)
        if cached is not None:
            return cached

        with _sql_errors("GetMappingByKey failed"):
            rows = self._query(
                f'SELECT {_MAPPING_COLUMNS} FROM "mappings" '
                'WHERE "size"=? AND "offset"=? AND "build_id_or_file"=?',
                (_to_i64(k.size), _to_i64(k.offset), k.build_id_or_file),
            )
        if not rows:
            raise MappingNotFoundError()
        mapping = _mapping_from_row(rows[0])
        self.cache.set_mapping_by_key(k, mapping)
        return mapping

    def create_mapping(self, mapping: Mapping) -> bytes:
        """Store a new mapping and return its new 16 byte ID."""
        k = make_sql_mapping_key(mapping)
        mapping_id = uuid.uuid4()
        with _sql_errors("CreateMapping failed"):
            self._execute(
                'INSERT INTO "mappings" ("id", "start", "limit", "offset", "file", '
                '"build_id", "has_functions", "has_filenames", "has_line_numbers", '
                '"has_inline_frames", "size", "build_id_or_file") '
                "VALUES (?,?,?,?,?,?,?,?,?,?,?,?)",
                (
                    str(mapping_id), _to_i64(mapping.start), _to_i64(mapping.limit),
                    _to_i64(mapping.offset), mapping.file, mapping.build_id,
                    mapping.has_functions, mapping.has_filenames,
                    mapping.has_line_numbers, mapping.has_inline_frames,
                    _to_i64(k.size), k.build_id_or_file,
                ),
            )
        return mapping_id.bytes

    def _get_mapping_by_id(self, mapping_id: uuid.UUID) -> Mapping:
        cached = self.cache.get_mapping_by_id(mapping_id.bytes)
        if cached is not None:
            return cached
        with _sql_errors("getMappingByID failed"):
            rows = self._query(
                f'SELECT {_MAPPING_COLUMNS} FROM "mappings" WHERE "id"=?',
                (str(mapping_id),),
            )
        if not rows:
            raise MappingNotFoundError()
        mapping = _mapping_from_row(rows[0])
        self.cache.set_mapping_by_id(mapping)
        return mapping

    # -- functions --------------------------------------------------------

    def get_function_by_key(self, key: Function) -> Function:
        k = make_sql_function_key(key)
        cached = self.cache.get_function_by_key(k)
        if cached is not None:
            return cached

        with _sql_errors("execute SQL statement"):
            rows = self._query(
                f'SELECT {_FUNCTION_COLUMNS} FROM "functions" '
                'WHERE "start_line"=? AND "name"=? AND "system_name"=? AND "filename"=?',
                (k.start_line, k.name, k.system_name, k.filename),
            )
        if not rows:
            raise FunctionNotFoundError()
        function = _function_from_row(rows[0])
        self.cache.set_function_by_key(k, function)
        return function

    def create_function(self, function: Function) -> bytes:
        """Store a new function and return its new 16 byte ID."""
        function_id = uuid.uuid4()
        with _sql_errors("CreateFunction failed"):
            self._execute(
                'INSERT INTO "functions" ("id", "name", "system_name", "filename", '
                '"start_line") VALUES (?,?,?,?,?)',
                (
                    str(function_id), function.name, function.system_name,
                    function.filename, function.start_line,
                ),
            )
        return function_id.bytes

    def get_functions(self) -> list[Function]:
        with _sql_errors("GetFunctions failed"):
            rows = self._query(f'SELECT {_FUNCTION_COLUMNS} FROM "functions"')
        return [_function_from_row(row) for row in rows]

    def get_functions_by_ids(self, *ids: bytes) -> dict[bytes, Function]:
        result: dict[bytes, Function] = {}
        remaining: list[uuid.UUID] = []
        for fid in ids:
            fid = bytes(fid)
            cached = self.cache.get_function_by_id(fid)
            if cached is not None:
                result[fid] = cached
                continue
            remaining.append(_uuid_from_bytes(fid, "function ID"))

        if not remaining:
            return result

        with _sql_errors("execute SQL query"):
            rows = self._query(
                f'SELECT {_FUNCTION_COLUMNS} FROM "functions" '
                f'WHERE "id" IN ({quoted_id_list(remaining)})'
            )
        retrieved = {f.id: f for f in map(_function_from_row, rows)}
        for fid, function in retrieved.items():
            result[fid] = function
            self.cache.set_function_by_id(function)
        return result

    def _get_or_create_function(self, function: Function) -> bytes:
        try:
            return self.get_function_by_key(function).id
        except FunctionNotFoundError:
            return self.create_function(function)

    # -- location lines ---------------------------------------------------

    def create_location_lines(
        self, location_id: bytes, lines: Iterable[LocationLine]
    ) -> None:
        """Store the lines of a location, creating their functions as needed.

        The function of every line gets the ID it is stored under.
        """
        lines = list(lines)
        if not lines:
            return
        location_id = bytes(location_id)
        location_text = str(_uuid_from_bytes(location_id, "location ID"))

        stored: list[Line] = []
        for ln in lines:
            if ln.function is None:
                raise ValueError("location line has no function")
            ln.function.id = self._get_or_create_function(ln.function)
            _uuid_from_bytes(ln.function.id, "function ID")
            stored.append(Line(line=ln.line, function_id=ln.function.id))

        rows = [
            (location_text, line.line, str(uuid.UUID(bytes=line.function_id)))
            for line in stored
        ]
        with _sql_errors("create location lines"), self._lock, self._conn:
            self._conn.executemany(
                'INSERT INTO "lines" ("location_id", "line", "function_id") VALUES (?,?,?)',
                rows,
            )
        self.cache.set_location_lines_by_id(location_id, stored)

    def get_lines_by_location_ids(
        self, *ids: bytes
    ) -> tuple[dict[bytes, list[Line]], list[bytes]]:
        """Return the lines per location and the distinct function IDs they use."""
        result: dict[bytes, list[Line]] = {}
        function_ids: list[bytes] = []
        seen: set[bytes] = set()

        def note_function(function_id: bytes) -> None:
            if function_id not in seen:
                seen.add(function_id)
                function_ids.append(function_id)

        remaining: list[uuid.UUID] = []
        for lid in ids:
            lid = bytes(lid)
            cached = self.cache.get_location_lines_by_id(lid)
            if cached is not None:
                for line in cached:
                    note_function(line.function_id)
                result[lid] = cached
                continue
            remaining.append(_uuid_from_bytes(lid, "location ID"))

        if not remaining:
            return result, function_ids

        with _sql_errors("execute SQL query"):
            rows = self._query(build_lines_by_location_ids_query(remaining))

        retrieved: dict[bytes, list[Line]] = {}
        for lid, line_number, fid in rows:
            location_uuid = _parse_uuid(lid, "location ID")
            function_uuid = _parse_uuid(fid, "function ID")
            retrieved.setdefault(location_uuid.bytes, []).append(
                Line(line=line_number or 0, function_id=function_uuid.bytes)
            )
            note_function(function_uuid.bytes)

        for lid, lines in retrieved.items():
            result[lid] = lines
            self.cache.set_location_lines_by_id(lid, lines)
        return result, function_ids


def open_sql_metastore(
    connection: sqlite3.Connection | str | os.PathLike,
) -> SQLMetastore:
    """Open a SQL metastore on a connection or database path and create its tables."""
    if not isinstance(connection, sqlite3.Connection):
        connection = sqlite3.connect(os.fspath(connection), check_same_thread=False)
    store = SQLMetastore(connection, MetaStoreCache())
    try:
        store.migrate()
    except sqlite3.Error as err:
        raise MetastoreError(f"migrations failed: {err}") from err
    return store