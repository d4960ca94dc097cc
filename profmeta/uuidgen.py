"""Generators of identifiers for stored records."""

from __future__ import annotations

import abc
import uuid

_U64 = (1 << 64) - 1


class UUIDGenerator(abc.ABC):
    """Source of new UUIDs."""

    @abc.abstractmethod
    def new(self) -> uuid.UUID:
        """Return a new UUID."""


class RandomUUIDGenerator(UUIDGenerator):
    """Returns random version 4 UUIDs."""

    def new(self) -> uuid.UUID:
        return uuid.uuid4()


class LinearUUIDGenerator(UUIDGenerator):
    """Returns UUIDs counting up from 1, as if a UUID were a 16 byte integer.

    Only the low 8 bytes are used. Meant for tests that need predictable IDs.
    """

    def __init__(self) -> None:
        self._count = 0

    def new(self) -> uuid.UUID:
        self._count = (self._count + 1) & _U64
        return uuid.UUID(int=self._count)