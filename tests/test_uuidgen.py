import uuid

import pytest

from profmeta.uuidgen import LinearUUIDGenerator, RandomUUIDGenerator, UUIDGenerator


def test_linear_generator_starts_at_one():
    g = LinearUUIDGenerator()
    assert g.new().bytes == bytes(15) + b"\x01"
    assert g.new().bytes == bytes(15) + b"\x02"
    assert g.new().bytes == bytes(15) + b"\x03"


def test_linear_generator_is_strictly_increasing():
    g = LinearUUIDGenerator()
    ids = [g.new() for _ in range(50)]
    assert ids == sorted(ids)
    assert len(set(ids)) == 50


def test_linear_generators_are_independent():
    a = LinearUUIDGenerator()
    b = LinearUUIDGenerator()
    a.new()
    a.new()
    assert b.new() == LinearUUIDGenerator().new()


def test_random_generator_gives_distinct_v4_ids():
    g = RandomUUIDGenerator()
    ids = {g.new() for _ in range(100)}
    assert len(ids) == 100
    assert all(u.version == 4 for u in ids)
    assert all(isinstance(u, uuid.UUID) for u in ids)


def test_generator_interface_is_abstract():
    with pytest.raises(TypeError):
        UUIDGenerator()