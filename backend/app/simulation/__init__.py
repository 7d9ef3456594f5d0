"""
simulation — Synthetic sensor feed.

Modules:
    feed  — seedable reading generator driving the ingestion pipeline
"""
