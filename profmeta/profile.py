"""Profiles made of flat samples, and the pprof records they are built from."""

from __future__ import annotations

import abc
import uuid
from dataclasses import dataclass, field

from profmeta.resolve import ProfileMetaStore, get_locations_by_ids
from profmeta.types import Location

_NANOS_PER_MILLI = 1_000_000


def _trunc_div(a: int, b: int) -> int:
    """Integer division rounding toward zero."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


@dataclass
class ValueType:
    """The type and unit of a value, such as "cpu" in "nanoseconds"."""

    type: str = ""
    unit: str = ""


@dataclass
class InstantProfileMeta:
    """What a profile measures and when it was taken."""

    period_type: ValueType = field(default_factory=ValueType)
    sample_type: ValueType = field(default_factory=ValueType)
    timestamp: int = 0
    duration: int = 0
    period: int = 0


@dataclass
class Sample:
    """A stack trace with its value and labels."""

    location: list[Location | None] = field(default_factory=list)
    value: int = 0
    diff_value: int = 0
    label: dict[str, list[str]] = field(default_factory=dict)
    num_label: dict[str, list[int]] = field(default_factory=dict)
    num_unit: dict[str, list[str]] = field(default_factory=dict)


class InstantProfile(abc.ABC):
    """A profile taken at one instant: its metadata and its samples by stack trace ID."""

    @abc.abstractmethod
    def profile_meta(self) -> InstantProfileMeta:
        """Return the metadata of the profile."""

    @abc.abstractmethod
    def samples(self) -> dict[bytes, Sample]:
        """Return the samples keyed by stack trace ID."""


@dataclass
class Profile(InstantProfile):
    """A profile holding its samples keyed by stack trace ID."""

    meta: InstantProfileMeta = field(default_factory=InstantProfileMeta)
    flat_samples: dict[bytes, Sample] = field(default_factory=dict)

    def profile_meta(self) -> InstantProfileMeta:
        return self.meta

    def samples(self) -> dict[bytes, Sample]:
        return self.flat_samples


@dataclass
class StacktraceSamples:
    """Samples of a profile with their locations resolved."""

    meta: InstantProfileMeta = field(default_factory=InstantProfileMeta)
    samples: list[Sample] = field(default_factory=list)


class ScaledInstantProfile(InstantProfile):
    """A view of a profile whose sample values are multiplied by a ratio.

    Reading the samples scales the underlying samples in place.
    """

    def __init__(self, profile: InstantProfile, ratio: float) -> None:
        self.profile = profile
        self.ratio = ratio

    def profile_meta(self) -> InstantProfileMeta:
        return self.profile.profile_meta()

    def samples(self) -> dict[bytes, Sample]:
        samples = self.profile.samples()
        for sample in samples.values():
            sample.value = int(self.ratio * float(sample.value))
        return samples


@dataclass
class PprofMapping:
    """A mapping as found in a pprof profile."""

    id: int = 0
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
class PprofFunction:
    """A function as found in a pprof profile."""

    id: int = 0
    name: str = ""
    system_name: str = ""
    filename: str = ""
    start_line: int = 0


@dataclass
class PprofLine:
    """A source line of a pprof location."""

    function: PprofFunction | None = None
    line: int = 0


@dataclass
class PprofLocation:
    """A location as found in a pprof profile."""

    id: int = 0
    mapping: PprofMapping | None = None
    address: int = 0
    lines: list[PprofLine] = field(default_factory=list)
    is_folded: bool = False


@dataclass
class PprofSample:
    """A sample of a pprof profile, with one value per sample type."""

    location: list[PprofLocation | None] = field(default_factory=list)
    value: list[int] = field(default_factory=list)
    label: dict[str, list[str]] = field(default_factory=dict)
    num_label: dict[str, list[int]] = field(default_factory=dict)
    num_unit: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class PprofProfile:
    """A decoded pprof profile."""

    sample_type: list[ValueType] = field(default_factory=list)
    sample: list[PprofSample] = field(default_factory=list)
    mapping: list[PprofMapping] = field(default_factory=list)
    location: list[PprofLocation] = field(default_factory=list)
    function: list[PprofFunction] = field(default_factory=list)
    time_nanos: int = 0
    duration_nanos: int = 0
    period_type: ValueType = field(default_factory=ValueType)
    period: int = 0


def copy_instant_profile(profile: InstantProfile) -> Profile:
    """Return a Profile with the metadata and samples of any instant profile."""
    return Profile(meta=profile.profile_meta(), flat_samples=profile.samples())


def stacktrace_samples_from_flat_profile(
    store: ProfileMetaStore, profile: InstantProfile
) -> StacktraceSamples:
    """Resolve the stack traces of a flat profile into full locations."""
    samples = profile.samples()
    sample_map = store.get_stacktrace_by_ids(*samples)

    seen: set[bytes] = set()
    location_ids: list[bytes] = []
    for record in sample_map.values():
        for lid in record.location_ids:
            if lid not in seen:
                seen.add(lid)
                location_ids.append(lid)

    locations = get_locations_by_ids(store, *location_ids)

    result: list[Sample] = []
    for key, sample in samples.items():
        record = sample_map.get(key)
        ids = record.location_ids if record is not None else []
        sample.location = [locations.get(bytes(lid)) for lid in ids]
        result.append(sample)

    return StacktraceSamples(meta=profile.profile_meta(), samples=result)


def meta_from_pprof(profile: PprofProfile, sample_index: int) -> InstantProfileMeta:
    """Return the metadata of one sample type of a pprof profile.

    The timestamp is in milliseconds.
    """
    sample_type = profile.sample_type[sample_index]
    return InstantProfileMeta(
        timestamp=_trunc_div(profile.time_nanos, _NANOS_PER_MILLI),
        duration=profile.duration_nanos,
        period=profile.period,
        period_type=ValueType(type=profile.period_type.type, unit=profile.period_type.unit),
        sample_type=ValueType(type=sample_type.type, unit=sample_type.unit),
    )


def make_sample(value: int, location_ids: list[uuid.UUID]) -> Sample:
    """Create a sample from a value and the IDs of its stack of locations."""
    return Sample(value=value, location=[Location(id=i) for i in location_ids])