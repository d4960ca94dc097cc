"""In-process cache in front of a SQL metadata store."""

from __future__ import annotations

import copy
import threading
from collections import Counter

from profmeta.keys import FunctionKey, LocationKey, MappingKey
from profmeta.types import Function, Line, LocationRecord, Mapping

ITEM_LOCATION = "location"
ITEM_MAPPING = "mapping"
ITEM_FUNCTION = "function"
ITEM_LOCATION_LINES = "location_lines"

ID_HITS = "parca_metastore_cache_id_hits_total"
ID_MISSES = "parca_metastore_cache_id_misses_total"
KEY_HITS = "parca_metastore_cache_key_hits_total"
KEY_MISSES = "parca_metastore_cache_key_misses_total"

METRIC_HELP = {
    ID_HITS: "Number of cache hits for id lookups.",
    ID_MISSES: "Number of cache misses for id lookups.",
    KEY_HITS: "Number of cache hits for key lookups.",
    KEY_MISSES: "Number of cache misses for key lookups.",
}


class CacheMetrics:
    """Hit and miss counters of the cache, labelled by item type."""

    def __init__(self) -> None:
        self._counts: Counter[tuple[str, str]] = Counter()
        self._lock = threading.Lock()

    def inc(self, metric: str, item_type: str) -> None:
        """Increment one counter."""
        if metric not in METRIC_HELP:
            raise ValueError(f"unknown metric {metric!r}")
        with self._lock:
            self._counts[(metric, item_type)] += 1

    def value(self, metric: str, item_type: str) -> int:
        """Return the current value of one counter."""
        with self._lock:
            return self._counts[(metric, item_type)]

    def snapshot(self) -> dict[str, dict[str, int]]:
        """Return all counters as metric name -> item type -> count."""
        result: dict[str, dict[str, int]] = {name: {} for name in METRIC_HELP}
        with self._lock:
            for (metric, item_type), count in self._counts.items():
                result[metric][item_type] = count
        return result


class MetaStoreCache:
    """Thread-safe cache of locations, mappings, functions and location lines.

    Lookups return copies, so callers may modify what they get back.
    """

    def __init__(self, metrics: CacheMetrics | None = None) -> None:
        self.metrics = metrics if metrics is not None else CacheMetrics()

        self._locations_lock = threading.RLock()
        self._locations_by_id: dict[bytes, LocationRecord] = {}
        self._locations_by_key: dict[LocationKey, bytes] = {}

        self._mappings_lock = threading.RLock()
        self._mappings_by_id: dict[bytes, Mapping] = {}
        self._mappings_by_key: dict[MappingKey, bytes] = {}

        self._functions_lock = threading.RLock()
        self._functions_by_id: dict[bytes, Function] = {}
        self._functions_by_key: dict[FunctionKey, bytes] = {}

        self._lines_lock = threading.RLock()
        self._lines_by_id: dict[bytes, list[Line]] = {}

    # -- locations --------------------------------------------------------

    def get_location_by_key(self, key: LocationKey) -> LocationRecord | None:
        with self._locations_lock:
            location_id = self._locations_by_key.get(key)
            location = (
                None if location_id is None else self._locations_by_id.get(location_id)
            )
            if location is None:
                self.metrics.inc(KEY_MISSES, ITEM_LOCATION)
                return None
            self.metrics.inc(KEY_HITS, ITEM_LOCATION)
            return copy.deepcopy(location)

    def get_location_by_id(self, location_id: bytes) -> LocationRecord | None:
        with self._locations_lock:
            location = self._locations_by_id.get(bytes(location_id))
            # Location ID lookups count as hits whether or not they are found.
            self.metrics.inc(ID_HITS, ITEM_LOCATION)
            return None if location is None else copy.deepcopy(location)

    def set_location_by_key(self, key: LocationKey, location: LocationRecord) -> None:
        with self._locations_lock:
            location_id = bytes(location.id)
            self._locations_by_id[location_id] = copy.deepcopy(location)
            self._locations_by_key[key] = location_id

    def set_location_by_id(self, location: LocationRecord) -> None:
        with self._locations_lock:
            self._locations_by_id[bytes(location.id)] = copy.deepcopy(location)

    # -- mappings ---------------------------------------------------------

    def get_mapping_by_key(self, key: MappingKey) -> Mapping | None:
        with self._mappings_lock:
            mapping_id = self._mappings_by_key.get(key)
            mapping = None if mapping_id is None else self._mappings_by_id.get(mapping_id)
            if mapping is None:
                self.metrics.inc(KEY_MISSES, ITEM_MAPPING)
                return None
            self.metrics.inc(KEY_HITS, ITEM_MAPPING)
            return copy.deepcopy(mapping)

    def get_mapping_by_id(self, mapping_id: bytes) -> Mapping | None:
        with self._mappings_lock:
            mapping = self._mappings_by_id.get(bytes(mapping_id))
            # Mapping ID lookups count as hits whether or not they are found.
            self.metrics.inc(ID_HITS, ITEM_MAPPING)
            return None if mapping is None else copy.deepcopy(mapping)

    def set_mapping_by_key(self, key: MappingKey, mapping: Mapping) -> None:
        with self._mappings_lock:
            mapping_id = bytes(mapping.id)
            self._mappings_by_id[mapping_id] = copy.deepcopy(mapping)
            self._mappings_by_key[key] = mapping_id

    def set_mapping_by_id(self, mapping: Mapping) -> None:
        with self._mappings_lock:
            self._mappings_by_id[bytes(mapping.id)] = copy.deepcopy(mapping)

    # -- functions --------------------------------------------------------

    def get_function_by_key(self, key: FunctionKey) -> Function | None:
        with self._functions_lock:
            function_id = self._functions_by_key.get(key)
            function = (
                None if function_id is None else self._functions_by_id.get(function_id)
            )
            if function is None:
                self.metrics.inc(KEY_MISSES, ITEM_FUNCTION)
                return None
            self.metrics.inc(KEY_HITS, ITEM_FUNCTION)
            return copy.deepcopy(function)

    def set_function_by_key(self, key: FunctionKey, function: Function) -> None:
        with self._functions_lock:
            function_id = bytes(function.id)
            self._functions_by_id[function_id] = copy.deepcopy(function)
            self._functions_by_key[key] = function_id

    def get_function_by_id(self, function_id: bytes) -> Function | None:
        with self._functions_lock:
            function = self._functions_by_id.get(bytes(function_id))
            if function is None:
                self.metrics.inc(ID_MISSES, ITEM_FUNCTION)
                return None
            self.metrics.inc(ID_HITS, ITEM_FUNCTION)
            return copy.deepcopy(function)

    def set_function_by_id(self, function: Function) -> None:
        with self._functions_lock:
            self._functions_by_id[bytes(function.id)] = copy.deepcopy(function)

    # -- location lines ---------------------------------------------------

    def set_location_lines_by_id(self, location_id: bytes, lines: list[Line]) -> None:
        stored = [copy.deepcopy(line) for line in lines]
        with self._lines_lock:
            self._lines_by_id[bytes(location_id)] = stored

    def get_location_lines_by_id(self, location_id: bytes) -> list[Line] | None:
        with self._lines_lock:
            lines = self._lines_by_id.get(bytes(location_id))
            if lines is None:
                self.metrics.inc(ID_MISSES, ITEM_LOCATION_LINES)
                return None
            self.metrics.inc(ID_HITS, ITEM_LOCATION_LINES)
            return [copy.deepcopy(line) for line in lines]