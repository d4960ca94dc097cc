import uuid

import pytest

from profmeta.sqlqueries import (
    LINES_BY_LOCATION_IDS_QUERY_START,
    LOCATIONS_BY_IDS_QUERY_START,
    build_lines_by_location_ids_query,
    build_locations_by_ids_query,
    encode_id,
    quoted_id_list,
)


def test_encode_id_fixed_value():
    assert encode_id(uuid.UUID(int=1)) == "00000000-0000-0000-0000-000000000001"


def test_encode_id_accepts_bytes():
    value = uuid.uuid4()
    assert encode_id(value.bytes) == str(value)
    assert len(encode_id(value.bytes)) == 36


def test_encode_id_rejects_wrong_length():
    with pytest.raises(ValueError):
        encode_id(b"short")


def test_quoted_id_list():
    ids = [uuid.UUID(int=1), uuid.UUID(int=2)]
    assert quoted_id_list(ids) == (
        "'00000000-0000-0000-0000-000000000001',"
        "'00000000-0000-0000-0000-000000000002'"
    )


def test_lines_query_single_id():
    query = build_lines_by_location_ids_query([uuid.UUID(int=3)])
    assert query == (
        'SELECT "location_id", "line", "function_id" FROM "lines" '
        "WHERE location_id IN ('00000000-0000-0000-0000-000000000003')"
    )


@pytest.mark.parametrize("count", [1, 10, 100, 1000])
@pytest.mark.parametrize(
    "builder,start",
    [
        (build_lines_by_location_ids_query, LINES_BY_LOCATION_IDS_QUERY_START),
        (build_locations_by_ids_query, LOCATIONS_BY_IDS_QUERY_START),
    ],
)
def test_query_shape(builder, start, count):
    ids = [uuid.uuid4() for _ in range(count)]
    query = builder(ids)
    assert len(query) == len(start) + 39 * count
    assert query.startswith(start)
    assert query.endswith(")")
    parts = query[len(start):-1].split(",")
    assert parts == [f"'{i}'" for i in ids]


def test_locations_query_accepts_bytes():
    ids = [uuid.uuid4() for _ in range(3)]
    assert build_locations_by_ids_query([i.bytes for i in ids]) == (
        build_locations_by_ids_query(ids)
    )
    assert LOCATIONS_BY_IDS_QUERY_START.startswith(
        'SELECT "id", "mapping_id", "address", "is_folded"'
    )