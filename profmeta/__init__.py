"""Metadata store, pprof normalizer and column row builder for sampled profiles."""

__version__ = "0.1.0"