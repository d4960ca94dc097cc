import sqlite3
import uuid

import pytest

from profmeta.cache import ITEM_FUNCTION, KEY_HITS, MetaStoreCache
from profmeta.resolve import get_location_by_key, get_locations, get_locations_by_ids
from profmeta.sqlstore import SQLMetastore, open_sql_metastore
from profmeta.types import (
    Function,
    FunctionNotFoundError,
    Line,
    Location,
    LocationLine,
    LocationNotFoundError,
    Mapping,
    MappingNotFoundError,
    MetastoreError,
)


@pytest.fixture
def conn():
    connection = sqlite3.connect(":memory:")
    yield connection
    connection.close()


@pytest.fixture
def store(conn):
    return open_sql_metastore(conn)


def _mapping(store, **fields):
    m = Mapping(start=1, limit=10, offset=5, file="file", build_id="buildID0")
    for name, value in fields.items():
        setattr(m, name, value)
    m.id = store.create_mapping(m)
    return m


def test_mapping_store(store):
    m = Mapping(start=1, limit=10, offset=5, file="file", build_id="buildID0")
    m.id = store.create_mapping(m)
    m1 = Mapping(
        start=12, limit=110, offset=51, file="file1", build_id="buildID1",
        has_functions=True, has_filenames=True, has_line_numbers=False,
        has_inline_frames=True,
    )
    m1.id = store.create_mapping(m1)

    by_key = store.get_mapping_by_key(m)
    assert by_key == m
    assert store.get_mapping_by_key(m1) == m1


def test_function_store(store):
    f = Function(name="name", system_name="systemName", filename="filename", start_line=22)
    f.id = store.create_function(f)
    f1 = Function(name="name", system_name="systemName", filename="filename", start_line=42)
    f1.id = store.create_function(f1)

    assert store.get_function_by_key(f) == f
    funcs = sorted(store.get_functions(), key=lambda fn: fn.start_line)
    assert funcs == [f, f1]


def test_location_lines_store(store):
    loc_id = store.create_location(Location(address=7))
    function = Function(id=uuid.uuid4().bytes, name="f1")
    store.create_location_lines(loc_id, [LocationLine(line=2, function=function)])

    lines, function_ids = store.get_lines_by_location_ids(loc_id)
    assert function_ids == [function.id]
    assert lines == {loc_id: [Line(line=2, function_id=function.id)]}
    assert [fn.name for fn in store.get_functions()] == ["f1"]


def test_location_store(store):
    l = Location(address=42)
    l.id = uuid.UUID(bytes=store.create_location(l))
    l1 = Location(address=421)
    l1.id = uuid.UUID(bytes=store.create_location(l1))

    locs = get_locations(store)
    assert sorted(loc.address for loc in locs) == [42, 421]

    l1 = get_location_by_key(store, l1)
    by_id = get_locations_by_ids(store, l1.id.bytes)
    assert by_id[l1.id.bytes] == l1

    f = Function(name="name", system_name="systemName", filename="filename", start_line=22)
    l1.lines = [LocationLine(line=1, function=f), LocationLine(line=5, function=f)]
    store.symbolize(l1)

    res = get_locations_by_ids(store, l1.id.bytes)[l1.id.bytes]
    assert res.id == l1.id
    assert res.address == l1.address
    assert res.is_folded == l1.is_folded
    assert [ln.line for ln in res.lines] == [1, 5]
    assert all(ln.function == f for ln in res.lines)


def test_create_location_with_unknown_mapping(store):
    missing = Mapping(id=uuid.uuid4().bytes, file="x")
    with pytest.raises(MappingNotFoundError):
        store.create_location(Location(address=1, mapping=missing))


def test_lookups_of_missing_records(store):
    with pytest.raises(FunctionNotFoundError):
        store.get_function_by_key(Function(name="nope"))
    with pytest.raises(MappingNotFoundError):
        store.get_mapping_by_key(Mapping(file="nope"))
    with pytest.raises(LocationNotFoundError):
        store.get_location_by_key(Location(address=99))


def test_symbolizable_locations(store):
    m = _mapping(store)
    loc = Location(address=0x1234, mapping=m)
    loc.id = uuid.UUID(bytes=store.create_location(loc))
    store.create_location(Location(address=0x10))  # no mapping

    records, mapping_ids = store.get_symbolizable_locations()
    assert [r.id for r in records] == [loc.id.bytes]
    assert mapping_ids == [m.id]

    loc.lines = [LocationLine(line=3, function=Function(name="main"))]
    store.symbolize(loc)
    records, mapping_ids = store.get_symbolizable_locations()
    assert records == []
    assert mapping_ids == []


def test_location_with_mapping_resolves(store):
    m = _mapping(store)
    loc = Location(address=0x4000, mapping=m, is_folded=True)
    created = store.create_location(loc)

    resolved = get_location_by_key(store, loc)
    assert resolved.id.bytes == created
    assert resolved.mapping == m
    assert resolved.is_folded is True


def test_interpreted_location_keyed_by_lines(store):
    f = Function(name="py_func", filename="app.py")
    f.id = store.create_function(f)
    loc = Location(address=0, lines=[LocationLine(line=12, function=f)])
    created = store.create_location(loc)

    assert store.get_location_by_key(loc).id == created
    other = Location(address=0, lines=[LocationLine(line=13, function=f)])
    with pytest.raises(LocationNotFoundError):
        store.get_location_by_key(other)


def test_function_key_lookup_hits_cache(store):
    f = Function(name="a", system_name="b", filename="c", start_line=3)
    f.id = store.create_function(f)
    store.get_function_by_key(f)
    assert store.cache.metrics.value(KEY_HITS, ITEM_FUNCTION) == 0
    assert store.get_function_by_key(f) == f
    assert store.cache.metrics.value(KEY_HITS, ITEM_FUNCTION) == 1


def test_fresh_cache_reads_from_database(conn, store):
    f = Function(name="work", filename="w.c", start_line=1)
    loc = Location(address=0x20, lines=[LocationLine(line=9, function=f)])
    loc_id = store.create_location(loc)

    fresh = SQLMetastore(conn, MetaStoreCache())
    lines, function_ids = fresh.get_lines_by_location_ids(loc_id)
    assert lines == {loc_id: [Line(line=9, function_id=f.id)]}
    assert fresh.get_functions_by_ids(*function_ids) == {f.id: f}
    records, mapping_ids = fresh.get_locations_by_ids(loc_id)
    assert records[loc_id].address == 0x20
    assert mapping_ids == []


def test_large_address_round_trip(store):
    m = _mapping(store)
    address = (1 << 64) - 1
    store.create_location(Location(address=address, mapping=m))
    records, mapping_ids = store.get_locations()
    assert [r.address for r in records] == [address]
    assert mapping_ids == [m.id]


def test_get_mappings_by_ids(store):
    m = _mapping(store)
    assert store.get_mappings_by_ids(m.id) == {m.id: m}
    assert store.get_mappings_by_ids() == {}


def test_ping_and_close(conn):
    store = open_sql_metastore(conn)
    assert store.ping() is None
    store.close()
    with pytest.raises(MetastoreError):
        store.ping()


def test_migrating_twice_fails(conn):
    open_sql_metastore(conn)
    with pytest.raises(MetastoreError, match="migrations failed"):
        open_sql_metastore(conn)


def test_open_from_path(tmp_path):
    store = open_sql_metastore(tmp_path / "meta.db")
    f = Function(name="n")
    f.id = store.create_function(f)
    assert store.get_functions() == [f]
    store.close()