import uuid

import pytest

from profmeta.kvstore import KVMetastore
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
    SampleRecord,
    StacktraceNotFoundError,
)
from profmeta.uuidgen import LinearUUIDGenerator, RandomUUIDGenerator


@pytest.fixture
def store():
    db = KVMetastore(RandomUUIDGenerator())
    yield db
    db.close()


@pytest.fixture
def linear_store():
    db = KVMetastore(LinearUUIDGenerator())
    yield db
    db.close()


def test_mapping_store(store):
    m = Mapping(start=1, limit=10, offset=5, file="file", build_id="buildID0")
    m.id = store.create_mapping(m)
    m1 = Mapping(
        start=12,
        limit=110,
        offset=51,
        file="file1",
        build_id="buildID1",
        has_functions=True,
        has_filenames=True,
        has_line_numbers=False,
        has_inline_frames=True,
    )
    m1.id = store.create_mapping(m1)

    by_key = store.get_mapping_by_key(m)
    assert by_key.id == m.id
    assert by_key.start == m.start
    assert by_key.limit == m.limit
    assert by_key.offset == m.offset
    assert by_key.file == m.file
    assert by_key.build_id == m.build_id
    assert by_key.has_functions == m.has_functions
    assert by_key.has_filenames == m.has_filenames
    assert by_key.has_line_numbers == m.has_line_numbers
    assert by_key.has_inline_frames == m.has_inline_frames


def test_function_store(store):
    f = Function(name="name", system_name="systemName", filename="filename", start_line=22)
    f.id = store.create_function(f)
    f1 = Function(name="name", system_name="systemName", filename="filename", start_line=42)
    f1.id = store.create_function(f1)

    by_key = store.get_function_by_key(f)
    assert by_key == f

    funcs = store.get_functions()
    assert len(funcs) == 2
    if funcs[0].start_line == 22:
        assert funcs == [f, f1]
    else:
        assert funcs == [f1, f]


def test_location_lines_store(store):
    loc_id = uuid.uuid4().bytes
    f1_id = uuid.uuid4().bytes
    store.create_location_lines(
        loc_id, [LocationLine(line=2, function=Function(id=f1_id, name="f1"))]
    )

    lines, function_ids = store.get_lines_by_location_ids(loc_id)
    assert function_ids == [f1_id]
    assert lines == {loc_id: [Line(line=2, function_id=f1_id)]}


def test_lines_lookup_skips_unknown_locations(store):
    lines, function_ids = store.get_lines_by_location_ids(uuid.uuid4().bytes)
    assert lines == {}
    assert function_ids == []


def test_linear_generator_ids(linear_store):
    fid = linear_store.create_function(Function(name="a"))
    mid = linear_store.create_mapping(Mapping(file="/bin/x"))
    assert fid == uuid.UUID(int=1).bytes
    assert mid == uuid.UUID(int=2).bytes


def test_missing_mapping_and_function(store):
    with pytest.raises(MappingNotFoundError):
        store.get_mapping_by_key(Mapping(file="nope"))
    with pytest.raises(FunctionNotFoundError):
        store.get_function_by_key(Function(name="nope"))
    with pytest.raises(MappingNotFoundError):
        store.get_mappings_by_ids(uuid.uuid4().bytes)
    with pytest.raises(FunctionNotFoundError):
        store.get_functions_by_ids(uuid.uuid4().bytes)


def test_stacktrace_roundtrip(linear_store):
    sample = SampleRecord(location_ids=[uuid.UUID(int=7).bytes], labels={"a": ["b"]})
    sid = linear_store.create_stacktrace(b"key", sample)
    assert sid == uuid.UUID(int=1)
    assert linear_store.get_stacktrace_by_key(b"key") == sid
    assert linear_store.get_stacktrace_by_ids(sid.bytes) == {sid.bytes: sample}


def test_missing_stacktrace(store):
    with pytest.raises(StacktraceNotFoundError):
        store.get_stacktrace_by_key(b"missing")
    with pytest.raises(StacktraceNotFoundError):
        store.get_stacktrace_by_ids(uuid.uuid4().bytes)


def test_location_by_key_and_missing(store):
    loc = Location(address=99)
    lid = store.create_location(loc)
    assert store.get_location_by_key(loc).id == lid
    with pytest.raises(LocationNotFoundError):
        store.get_location_by_key(Location(address=100))
    with pytest.raises(LocationNotFoundError):
        store.get_locations_by_ids(uuid.uuid4().bytes)


def test_symbolizable_lifecycle(store):
    mapping = Mapping(file="/bin/app", start=0, limit=0x2000)
    store.create_mapping(mapping)
    lid = store.create_location(Location(address=42, mapping=mapping))
    store.create_location(Location(address=43))

    records, mapping_ids = store.get_symbolizable_locations()
    assert [r.id for r in records] == [lid]
    assert mapping_ids == [mapping.id]

    fn = Function(name="main", filename="main.c")
    store.symbolize(
        Location(id=uuid.UUID(bytes=lid), address=42, mapping=mapping,
                 lines=[LocationLine(line=3, function=fn)])
    )
    assert fn.id
    records, mapping_ids = store.get_symbolizable_locations()
    assert records == []
    lines, function_ids = store.get_lines_by_location_ids(lid)
    assert lines == {lid: [Line(line=3, function_id=fn.id)]}
    assert function_ids == [fn.id]


def test_locations_deduplicate_mapping_ids(store):
    mapping = Mapping(build_id="abc")
    store.create_mapping(mapping)
    store.create_location(Location(address=1, mapping=mapping))
    store.create_location(Location(address=2, mapping=mapping))
    records, mapping_ids = store.get_locations()
    assert sorted(r.address for r in records) == [1, 2]
    assert mapping_ids == [mapping.id]


def test_returned_records_are_copies(store):
    m = Mapping(file="/lib/x.so")
    store.create_mapping(m)
    fetched = store.get_mapping_by_key(m)
    fetched.file = "changed"
    assert store.get_mapping_by_key(m).file == "/lib/x.so"


def test_closed_store_raises():
    db = KVMetastore(RandomUUIDGenerator())
    db.close()
    with pytest.raises(MetastoreError):
        db.get_functions()