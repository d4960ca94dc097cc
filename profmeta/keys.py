"""Keys under which mappings, functions and locations are stored."""

from __future__ import annotations

import struct
import uuid
from dataclasses import dataclass

from profmeta.types import Function, Location, Mapping, NIL_UUID

STACKTRACE_ID_PREFIX = b"v1/stacktrace/by-id/"
LOCATIONS_KEY_PREFIX = b"v1/locations/by-key/"
FUNCTION_KEY_PREFIX = b"v1/functions/by-key/"
MAPPING_KEY_PREFIX = b"v1/mappings/by-key/"

_U64 = (1 << 64) - 1
_MAPSIZE_ROUNDING = 0x1000


def _u64(value: int) -> bytes:
    return struct.pack(">Q", value & _U64)


def _put(buf: bytearray, offset: int, data: bytes) -> None:
    """Copy data into buf at offset, truncated at the end of buf."""
    count = max(0, min(len(data), len(buf) - offset))
    buf[offset:offset + count] = data[:count]


def _normalized_size(mapping: Mapping) -> int:
    # Round up to the next 4K boundary to absorb address space randomization.
    size = (mapping.limit - mapping.start) & _U64
    size = (size + _MAPSIZE_ROUNDING - 1) & _U64
    return size - size % _MAPSIZE_ROUNDING


def _build_id_or_file(mapping: Mapping) -> str:
    # Build IDs are more reliably unique than file names. A mapping with
    # neither is fake, and all fake mappings share the empty key.
    return mapping.build_id or mapping.file or ""


def _line_function(line) -> Function:
    if line.function is None:
        raise ValueError("location line has no function")
    return line.function


def make_location_key(location: Location) -> bytes:
    """Return the binary store key of a location.

    Locations with address 0 come from interpreted runtimes, so their lines
    are part of the key.
    """
    base = len(LOCATIONS_KEY_PREFIX)
    lines = location.lines if location.address == 0 else []
    buf = bytearray(base + 16 + 8 + 8 + 24 * len(lines))
    buf[:base] = LOCATIONS_KEY_PREFIX
    if location.mapping is not None:
        _put(buf, base, location.mapping.id)
    buf[base + 16:base + 24] = _u64(location.address)
    if location.is_folded:
        buf[base + 24:base + 32] = _u64(1)
    for i, line in enumerate(lines):
        start = base + 32 + 24 * i
        _put(buf, start, _line_function(line).id)
        buf[start + 8:start + 16] = _u64(line.line)
    return bytes(buf)


def make_function_key(function: Function) -> bytes:
    """Return the binary store key of a function."""
    return b"".join(
        (
            FUNCTION_KEY_PREFIX,
            _u64(function.start_line),
            function.name.encode(),
            function.system_name.encode(),
            function.filename.encode(),
        )
    )


def make_mapping_key(mapping: Mapping) -> bytes:
    """Return the binary store key of a mapping."""
    return b"".join(
        (
            MAPPING_KEY_PREFIX,
            _u64(_normalized_size(mapping)),
            _u64(mapping.offset),
            _build_id_or_file(mapping).encode(),
        )
    )


@dataclass(frozen=True)
class MappingKey:
    """Identity of a mapping for lookups in a SQL store."""

    size: int
    offset: int
    build_id_or_file: str = ""


@dataclass(frozen=True)
class FunctionKey:
    """Identity of a function for lookups in a SQL store."""

    start_line: int
    name: str
    system_name: str
    filename: str


@dataclass(frozen=True)
class LocationKey:
    """Identity of a location for lookups in a SQL store."""

    address: int
    mapping_id: uuid.UUID = NIL_UUID
    lines: str = ""
    is_folded: bool = False


def make_sql_mapping_key(mapping: Mapping) -> MappingKey:
    """Return the lookup key of a mapping."""
    return MappingKey(
        size=_normalized_size(mapping),
        offset=mapping.offset,
        build_id_or_file=_build_id_or_file(mapping),
    )


def make_sql_function_key(function: Function) -> FunctionKey:
    """Return the lookup key of a function."""
    return FunctionKey(
        start_line=function.start_line,
        name=function.name,
        system_name=function.system_name,
        filename=function.filename,
    )


def _signed_hex(value: int) -> str:
    return f"-{-value:x}" if value < 0 else f"{value:x}"


def make_sql_location_key(location: Location) -> LocationKey:
    """Return the lookup key of a location.

    Raises ValueError when the mapping or a function ID is not 16 bytes long.
    """
    mapping_id = NIL_UUID
    if location.mapping is not None:
        mapping_id = uuid.UUID(bytes=bytes(location.mapping.id))

    lines = ""
    if location.address == 0:
        parts: list[str] = []
        for line in location.lines:
            function_id = ""
            if line.function is not None:
                function_id = str(uuid.UUID(bytes=bytes(line.function.id)))
            parts.extend((function_id, _signed_hex(line.line)))
        lines = "|".join(parts)

    return LocationKey(
        address=location.address,
        mapping_id=mapping_id,
        lines=lines,
        is_folded=location.is_folded,
    )