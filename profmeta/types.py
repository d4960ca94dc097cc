"""Records kept by the profile metadata store and the errors it raises."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

NIL_UUID = uuid.UUID(int=0)


@dataclass
class Mapping:
    """A binary or library mapped into the address space of a profiled process."""

    id: bytes = b""
    start: int = 0
    limit: int = 0
    offset: int = 0
    file: str = ""
    build_id: str = ""
    has_functions: bool = False
    has_filenames: bool = False
    has_line_numbers: bool = False
    has_inline_frames: bool = False


@dataclass
class Function:
    """A function as it appears in symbol information."""

    id: bytes = b""
    name: str = ""
    system_name: str = ""
    filename: str = ""
    start_line: int = 0


@dataclass
class Line:
    """A stored source line: the line number and the ID of its function."""

    line: int = 0
    function_id: bytes = b""


@dataclass
class LocationRecord:
    """A location as stored, referring to its mapping by ID."""

    id: bytes = b""
    address: int = 0
    mapping_id: bytes = b""
    is_folded: bool = False


@dataclass
class LocationLines:
    """The stored lines of one location."""

    id: bytes = b""
    lines: list[Line] = field(default_factory=list)


@dataclass
class SampleRecord:
    """A stored stack trace: its location IDs and the labels of the sample."""

    location_ids: list[bytes] = field(default_factory=list)
    labels: dict[str, list[str]] = field(default_factory=dict)
    num_labels: dict[str, list[int]] = field(default_factory=dict)
    num_units: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class LocationLine:
    """A source line of a location together with its resolved function."""

    line: int = 0
    function: Function | None = None


@dataclass
class Location:
    """A fully resolved location with its mapping and lines."""

    id: uuid.UUID = NIL_UUID
    address: int = 0
    mapping: Mapping | None = None
    lines: list[LocationLine] = field(default_factory=list)
    is_folded: bool = False


class MetastoreError(Exception):
    """Base class for errors raised by the metadata store."""


class _NotFoundError(MetastoreError, LookupError):
    default_message = "not found"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class StacktraceNotFoundError(_NotFoundError):
    """No stack trace is stored under the requested key or ID."""

    default_message = "stacktrace not found"


class LocationNotFoundError(_NotFoundError):
    """No location is stored under the requested key."""

    default_message = "location not found"


class MappingNotFoundError(_NotFoundError):
    """No mapping is stored under the requested key."""

    default_message = "mapping not found"


class FunctionNotFoundError(_NotFoundError):
    """No function is stored under the requested key."""

    default_message = "function not found"


def _base_name(path: str) -> str:
    if not path:
        return "."
    stripped = path.rstrip("/")
    if not stripped:
        return "/"
    return stripped.rsplit("/", 1)[-1]


def unsymbolizable_mapping(mapping: Mapping) -> bool:
    """Tell whether locations in this mapping cannot be symbolized at all.

    Examples are "[vdso]", "[vsyscall]", linux-vdso objects and GPU device files.
    """
    name = _base_name(mapping.file)
    return (
        name.startswith("[")
        or name.startswith("linux-vdso")
        or mapping.file.startswith("/dev/dri/")
    )