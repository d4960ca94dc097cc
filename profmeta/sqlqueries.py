"""Builders of the SQL text used to look records up by many IDs at once."""

from __future__ import annotations

import uuid
from collections.abc import Iterable

LOCATIONS_BY_IDS_QUERY_START = (
    'SELECT "id", "mapping_id", "address", "is_folded"\n'
    '\t\t\t\tFROM "locations"\n'
    "\t\t\t\tWHERE id IN ("
)
LINES_BY_LOCATION_IDS_QUERY_START = (
    'SELECT "location_id", "line", "function_id" FROM "lines" WHERE location_id IN ('
)


def _as_uuid(value: uuid.UUID | bytes) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(bytes=bytes(value))


def encode_id(value: uuid.UUID | bytes) -> str:
    """Return the 36 character textual form of a UUID or 16 byte ID.

    Raises ValueError when bytes of the wrong length are given.
    """
    return str(_as_uuid(value))


def quoted_id_list(ids: Iterable[uuid.UUID | bytes]) -> str:
    """Return the IDs as single-quoted UUID strings separated by commas."""
    return ",".join(f"'{encode_id(i)}'" for i in ids)


def _in_query(start: str, ids: Iterable[uuid.UUID | bytes]) -> str:
    body = quoted_id_list(ids)
    if not body:
        # With no IDs the closing bracket takes the place of the opening one.
        return start[:-1] + ")"
    return f"{start}{body})"


def build_locations_by_ids_query(ids: Iterable[uuid.UUID | bytes]) -> str:
    """Return the query selecting the locations with the given IDs."""
    return _in_query(LOCATIONS_BY_IDS_QUERY_START, ids)


def build_lines_by_location_ids_query(ids: Iterable[uuid.UUID | bytes]) -> str:
    """Return the query selecting the lines of the locations with the given IDs."""
    return _in_query(LINES_BY_LOCATION_IDS_QUERY_START, ids)