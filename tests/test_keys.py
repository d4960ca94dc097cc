import uuid

import pytest

from profmeta.keys import (
    FunctionKey,
    LocationKey,
    MappingKey,
    make_function_key,
    make_location_key,
    make_mapping_key,
    make_sql_function_key,
    make_sql_location_key,
    make_sql_mapping_key,
)
from profmeta.types import Function, Location, LocationLine, Mapping

MAPPING_PREFIX = bytes(
    [0x76, 0x31, 0x2F, 0x6D, 0x61, 0x70, 0x70, 0x69, 0x6E, 0x67,
     0x73, 0x2F, 0x62, 0x79, 0x2D, 0x6B, 0x65, 0x79, 0x2F]
)
LOCATION_PREFIX = bytes(
    [0x76, 0x31, 0x2F, 0x6C, 0x6F, 0x63, 0x61, 0x74, 0x69, 0x6F,
     0x6E, 0x73, 0x2F, 0x62, 0x79, 0x2D, 0x6B, 0x65, 0x79, 0x2F]
)


def test_mapping_key_bytes():
    m = Mapping(start=0, limit=1, offset=2)
    expected = MAPPING_PREFIX + bytes(
        [0x0, 0x0, 0x0, 0x0, 0x0, 0x0, 0x10, 0x0,
         0x0, 0x0, 0x0, 0x0, 0x0, 0x0, 0x0, 0x2]
    )
    assert make_mapping_key(m) == expected

    m = Mapping(start=0, limit=1, offset=2, file="a")
    assert make_mapping_key(m) == expected + bytes([0x61])


def test_mapping_key_prefers_build_id():
    with_build = Mapping(limit=1, file="a", build_id="b")
    assert make_mapping_key(with_build).endswith(b"b")
    assert not make_mapping_key(with_build).endswith(b"ab")


def test_function_key_bytes():
    f = Function(start_line=3, name="a", system_name="b", filename="c")
    assert make_function_key(f) == bytes(
        [0x76, 0x31, 0x2F, 0x66, 0x75, 0x6E, 0x63, 0x74, 0x69, 0x6F,
         0x6E, 0x73, 0x2F, 0x62, 0x79, 0x2D, 0x6B, 0x65, 0x79, 0x2F,
         0x0, 0x0, 0x0, 0x0, 0x0, 0x0, 0x0, 0x3, 0x61, 0x62, 0x63]
    )


def test_location_key_bytes():
    mapping_id = bytes([0x02] + [0x00] * 14 + [0x03])
    loc = Location(address=3, mapping=Mapping(id=mapping_id))
    assert make_location_key(loc) == LOCATION_PREFIX + bytes(
        [0x2, 0x0, 0x0, 0x0, 0x0, 0x0, 0x0, 0x0,
         0x0, 0x0, 0x0, 0x0, 0x0, 0x0, 0x0, 0x3,
         0x0, 0x0, 0x0, 0x0, 0x0, 0x0, 0x0, 0x3,
         0x0, 0x0, 0x0, 0x0, 0x0, 0x0, 0x0, 0x0]
    )


def test_location_key_folded_and_without_mapping():
    key = make_location_key(Location(address=3, is_folded=True))
    assert key[len(LOCATION_PREFIX):] == bytes(16) + bytes(7) + b"\x03" + bytes(7) + b"\x01"


def test_location_key_with_lines_when_address_zero():
    function_id = bytes(range(1, 17))
    loc = Location(address=0, lines=[LocationLine(line=7, function=Function(id=function_id))])
    key = make_location_key(loc)
    assert key[: len(LOCATION_PREFIX)] == LOCATION_PREFIX
    assert len(key) == len(LOCATION_PREFIX) + 32 + 24
    tail = key[len(LOCATION_PREFIX) + 32:]
    assert tail == function_id[:8] + bytes(7) + b"\x07" + bytes(8)


def test_location_key_ignores_lines_with_address():
    function_id = bytes(range(1, 17))
    loc = Location(address=5, lines=[LocationLine(line=7, function=Function(id=function_id))])
    assert len(make_location_key(loc)) == len(LOCATION_PREFIX) + 32


def test_sql_mapping_key_rounds_size():
    m = Mapping(start=0x1000, limit=0x2001, offset=5, file="f", build_id="b")
    assert make_sql_mapping_key(m) == MappingKey(size=0x2000, offset=5, build_id_or_file="b")
    assert make_sql_mapping_key(Mapping(start=0, limit=1, offset=2)) == MappingKey(0x1000, 2, "")
    assert make_sql_mapping_key(Mapping(limit=1, file="a")).build_id_or_file == "a"


def test_sql_function_key():
    f = Function(id=b"x", start_line=3, name="a", system_name="b", filename="c")
    assert make_sql_function_key(f) == FunctionKey(3, "a", "b", "c")


def test_sql_location_key_with_mapping():
    mapping_id = uuid.uuid4()
    loc = Location(address=3, mapping=Mapping(id=mapping_id.bytes), is_folded=True)
    assert make_sql_location_key(loc) == LocationKey(
        address=3, mapping_id=mapping_id, lines="", is_folded=True
    )


def test_sql_location_key_lines():
    function_id = uuid.uuid4()
    loc = Location(
        address=0,
        lines=[
            LocationLine(line=255, function=Function(id=function_id.bytes)),
            LocationLine(line=-10, function=None),
        ],
    )
    key = make_sql_location_key(loc)
    assert key.lines == f"{function_id}|ff||-a"
    assert key.mapping_id == uuid.UUID(int=0)


def test_sql_location_key_rejects_bad_mapping_id():
    with pytest.raises(ValueError):
        make_sql_location_key(Location(address=1, mapping=Mapping(id=b"short")))


def test_location_key_requires_function_for_lines():
    with pytest.raises(ValueError):
        make_location_key(Location(address=0, lines=[LocationLine(line=1)]))