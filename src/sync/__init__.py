"""Synchronization engine: path utility, cache entries, registry, ticks, bindings."""
