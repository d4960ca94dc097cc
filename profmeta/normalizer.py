"""Turning pprof profiles into flat profiles whose records live in a metadata store."""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from profmeta.profile import (
    PprofFunction,
    PprofLine,
    PprofLocation,
    PprofMapping,
    PprofProfile,
    PprofSample,
    Profile,
    Sample,
    meta_from_pprof,
)
from profmeta.resolve import ProfileMetaStore, get_location_by_key
from profmeta.types import (
    NIL_UUID,
    Function,
    FunctionNotFoundError,
    Location,
    LocationLine,
    LocationNotFoundError,
    Mapping,
    MappingNotFoundError,
    SampleRecord,
    StacktraceNotFoundError,
)

_U64 = (1 << 64) - 1


def _to_i64(value: int) -> int:
    value &= _U64
    return value - (1 << 64) if value >= 1 << 63 else value


def _quoted(text: str) -> bytes:
    return b'"' + text.encode() + b'"'


def make_stacktrace_key(sample: Sample) -> bytes:
    """Return the key identifying a sample's stack trace and labels.

    A sample without locations has the empty key.
    """
    if not sample.location:
        return b""

    parts: list[bytes] = [b"|".join(loc.id.bytes for loc in sample.location)]

    for name in sorted(sample.label):
        values = sample.label[name]
        parts.append(_quoted(name))
        parts.append(b"[" + b" ".join(_quoted(v) for v in values) + b"]")

    for name in sorted(sample.num_label):
        numbers = sample.num_label[name]
        parts.append(_quoted(name))
        parts.append(b"[" + b"".join((n & _U64).to_bytes(8, "big") for n in numbers) + b"]")
        units = sample.num_unit.get(name)
        unit_part = b""
        if units:
            unit_part = b" ".join(_quoted(units[i]) for i in range(len(numbers)))
        parts.append(b"[" + unit_part + b"]")

    return b"".join(parts)


def _is_zero_sample(sample: PprofSample) -> bool:
    return all(v == 0 for v in sample.value)


@dataclass
class _MapInfo:
    mapping: Mapping | None = None
    offset: int = 0


class _FlatNormalizer:
    """Maps the records of one pprof profile onto records of a metadata store."""

    def __init__(self, store: ProfileMetaStore) -> None:
        self.store = store
        self.samples: dict[bytes, Sample] = {}
        self._locations: dict[int, Location] = {}
        self._functions: dict[int, Function] = {}
        self._mappings: dict[int, _MapInfo] = {}

    def map_sample(self, src: PprofSample, sample_index: int, normalized: bool) -> Sample:
        sample = Sample(
            location=[self.map_location(loc, normalized) for loc in src.location],
            label={k: list(v) for k, v in src.label.items()},
            num_label={k: list(v) for k, v in src.num_label.items()},
            num_unit={k: list(src.num_unit.get(k, [])) for k in src.num_label},
        )

        key = make_stacktrace_key(sample)
        try:
            stacktrace_id = self.store.get_stacktrace_by_key(key)
        except StacktraceNotFoundError:
            stacktrace_id = NIL_UUID

        if stacktrace_id == NIL_UUID:
            record = SampleRecord(
                location_ids=[loc.id.bytes for loc in sample.location],
                labels={k: list(v) for k, v in sample.label.items()},
                num_labels={k: list(v) for k, v in sample.num_label.items()},
                num_units={k: list(v) for k, v in sample.num_unit.items()},
            )
            stacktrace_id = self.store.create_stacktrace(key, record)

        existing = self.samples.get(stacktrace_id.bytes)
        if existing is not None:
            existing.value += src.value[sample_index]
            return existing

        sample.value += src.value[sample_index]
        self.samples[stacktrace_id.bytes] = sample
        return sample

    def map_location(self, src: PprofLocation | None, normalized: bool) -> Location | None:
        if src is None:
            return None
        known = self._locations.get(src.id)
        if known is not None:
            return known

        info = self.map_mapping(src.mapping)
        if normalized:
            address = src.address
        else:
            address = (_to_i64(src.address) + info.offset) & _U64

        location = Location(
            mapping=info.mapping,
            address=address,
            lines=[self.map_line(line) for line in src.lines],
            is_folded=src.is_folded,
        )

        try:
            stored = get_location_by_key(self.store, location)
        except LocationNotFoundError:
            stored = None
        if stored is not None:
            self._locations[src.id] = stored
            return stored

        self._locations[src.id] = location
        location.id = uuid.UUID(bytes=bytes(self.store.create_location(location)))
        return location

    def map_mapping(self, src: PprofMapping | None) -> _MapInfo:
        if src is None:
            return _MapInfo()
        known = self._mappings.get(src.id)
        if known is not None:
            return known

        try:
            stored = self.store.get_mapping_by_key(
                Mapping(
                    start=src.start,
                    limit=src.limit,
                    offset=src.offset,
                    file=src.file,
                    build_id=src.build_id,
                )
            )
        except MappingNotFoundError:
            stored = None
        if stored is not None:
            # Only one version of a mapping is stored, so its start is right
            # for a single process only; addresses are shifted accordingly.
            info = _MapInfo(stored, _to_i64(src.start) - _to_i64(stored.start))
            self._mappings[src.id] = info
            return info

        mapping = Mapping(
            start=src.start,
            limit=src.limit,
            offset=src.offset,
            file=src.file,
            build_id=src.build_id,
            has_functions=src.has_functions,
            has_filenames=src.has_filenames,
            has_line_numbers=src.has_line_numbers,
            has_inline_frames=src.has_inline_frames,
        )
        mapping.id = self.store.create_mapping(mapping)
        info = _MapInfo(mapping, 0)
        self._mappings[src.id] = info
        return info

    def map_line(self, src: PprofLine) -> LocationLine:
        return LocationLine(function=self.map_function(src.function), line=src.line)

    def map_function(self, src: PprofFunction | None) -> Function | None:
        if src is None:
            return None
        known = self._functions.get(src.id)
        if known is not None:
            return known

        try:
            stored = self.store.get_function_by_key(
                Function(
                    name=src.name,
                    system_name=src.system_name,
                    filename=src.filename,
                    start_line=src.start_line,
                )
            )
        except FunctionNotFoundError:
            stored = None
        if stored is not None:
            self._functions[src.id] = stored
            return stored

        function = Function(
            name=src.name,
            system_name=src.system_name,
            filename=src.filename,
            start_line=src.start_line,
        )
        function.id = self.store.create_function(function)
        self._functions[src.id] = function
        return function


def from_pprof(
    store: ProfileMetaStore,
    profile: PprofProfile,
    sample_index: int,
    normalized: bool,
) -> Profile | None:
    """Extract the flat profile of one sample type, storing its metadata.

    Samples whose values are all zero or that have no locations are left out;
    None is returned when no sample remains.
    """
    normalizer = _FlatNormalizer(store)
    for sample in profile.sample:
        if _is_zero_sample(sample) or not sample.location:
            continue
        normalizer.map_sample(sample, sample_index, normalized)

    if not normalizer.samples:
        return None

    return Profile(
        meta=meta_from_pprof(profile, sample_index),
        flat_samples=normalizer.samples,
    )


def profiles_from_pprof(
    store: ProfileMetaStore, profile: PprofProfile, normalized: bool
) -> list[Profile]:
    """Extract a flat profile for each sample type of a pprof profile."""
    result: list[Profile] = []
    for index in range(len(profile.sample_type)):
        flat = from_pprof(store, profile, index, normalized)
        if flat is not None:
            result.append(flat)
    return result