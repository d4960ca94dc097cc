# profmeta

`profmeta` stores and resolves the metadata behind sampled profiles: mappings,
functions, locations, their source lines, and the stack traces built from
them. It turns pprof-style profiles into deduplicated flat samples and lays
those samples out as rows of a column schema.

It has no dependencies outside the standard library.

## Modules

- `profmeta.types`: the records `Mapping`, `Function`, `Line`,
  `LocationRecord`, `LocationLines`, `SampleRecord`, `Location` and
  `LocationLine`; the errors `MetastoreError`, `StacktraceNotFoundError`,
  `LocationNotFoundError`, `MappingNotFoundError` and `FunctionNotFoundError`
  (the not-found errors are also `LookupError`s); and
  `unsymbolizable_mapping`, which is true for mappings such as `[vdso]`,
  `linux-vdso*` objects and files under `/dev/dri/`.
- `profmeta.keys`: byte keys for the key/value store (`make_mapping_key`,
  `make_function_key`, `make_location_key`) and frozen lookup keys for the SQL
  store (`make_sql_mapping_key`, `make_sql_function_key`,
  `make_sql_location_key`, returning `MappingKey`, `FunctionKey`,
  `LocationKey`). Mapping sizes are rounded up to 4 KiB; locations with
  address 0 include their lines in the key.
- `profmeta.uuidgen`: `RandomUUIDGenerator`, and `LinearUUIDGenerator`, which
  counts up from 1 for predictable IDs in tests.
- `profmeta.kvstore`: `KVMetastore`, an in-memory store. Locations with an
  address, a mapping and no lines are remembered as waiting for
  symbolization until `symbolize` stores their lines. It can be used as a
  context manager; after `close` every operation raises `MetastoreError`.
- `profmeta.sqlstore`: `SQLMetastore` on a `sqlite3` connection, with a
  `MetaStoreCache` in front. `open_sql_metastore` takes a connection or a
  database path, creates the tables and returns the store. It does not store
  stack traces; use `KVMetastore` where those are needed.
- `profmeta.cache`: `MetaStoreCache` and its `CacheMetrics` hit and miss
  counters (`value`, `snapshot`).
- `profmeta.sqlqueries`: `encode_id`, `quoted_id_list`,
  `build_locations_by_ids_query`, `build_lines_by_location_ids_query`.
- `profmeta.resolve`: the `ProfileMetaStore` protocol and
  `get_location_by_key`, `get_locations_by_ids`, `get_locations`,
  `get_symbolizable_locations`, which assemble full `Location`s (mapping and
  lines with functions) from any store.
- `profmeta.profile`: the profile model (`ValueType`, `InstantProfileMeta`,
  `Sample`, `Profile`, `ScaledInstantProfile`, `StacktraceSamples`), the
  decoded pprof records (`PprofProfile`, `PprofSample`, `PprofLocation`,
  `PprofLine`, `PprofMapping`, `PprofFunction`), and `meta_from_pprof`,
  `copy_instant_profile`, `stacktrace_samples_from_flat_profile`,
  `make_sample`.
- `profmeta.normalizer`: `from_pprof`, `profiles_from_pprof` and
  `make_stacktrace_key`. Samples with all-zero values or no locations are
  dropped; samples with the same stack trace and labels are summed.
- `profmeta.schema`: `parca_schema()`, `Schema`, `ColumnDefinition`,
  `SortingColumn`, `ParquetValue` and `Buffer` (`write_row`, `sort`, `clone`,
  `dynamic_columns`). The `labels`, `pprof_labels` and `pprof_num_labels`
  columns are dynamic: one concrete column per label name.
- `profmeta.samplerows`: `SampleRow`, `sample_label_names` and `to_buffer`.
- `profmeta.ingest`: `MemoryTable`, `insert_profile_into_table`,
  `flat_profile_to_rows`, `flat_profile_to_buffer`, `extract_location_ids`,
  `record_to_stacktrace_samples` and `MissingNameLabelError`.
- `profmeta.probe`: `GRPCProbe` keeps readiness and liveness as a
  `ServingStatus` (`ready`, `not_ready`, `healthy`, `not_healthy`, `check`).
- `profmeta.logsetup`: `new_logger(log_level, log_format, debug_name)` returns
  a `logging.Logger` writing logfmt or JSON lines to stderr; the level must be
  `error`, `warn`, `info` or `debug`.

## Example

```python
from profmeta.kvstore import KVMetastore
from profmeta.resolve import get_location_by_key
from profmeta.types import Location, Mapping
from profmeta.uuidgen import RandomUUIDGenerator

store = KVMetastore(RandomUUIDGenerator())

mapping = Mapping(start=0x1000, limit=0x2000, offset=0, file="/usr/bin/app")
mapping.id = store.create_mapping(mapping)

location = Location(address=0x1234, mapping=mapping)
store.create_location(location)

found = get_location_by_key(store, location)
print(found.id, hex(found.address))
```

A lookup that finds nothing raises the matching error, for example
`MappingNotFoundError` or `LocationNotFoundError`.

To ingest a profile, build a `PprofProfile`, normalize it with
`from_pprof(store, pprof, sample_index, normalized)` and write the result with
`insert_profile_into_table(MemoryTable(), {"__name__": "cpu"}, profile)`.
The profile's timestamp must not be zero and the labels must include
`__name__`.

## What it does not do

- It does not read pprof files; `PprofProfile` and its records must be
  filled in by the caller.
- It runs no server, scraper or symbolizer. `GRPCProbe` only holds health
  status; it does not serve gRPC.
- The column table is `MemoryTable`, which keeps buffers in memory; nothing
  is written to Parquet or disk, and there is no query engine.
- Cache counters stay in memory; nothing is exported as metrics.

## Tests

```
pip install -e .[test]
pytest
```