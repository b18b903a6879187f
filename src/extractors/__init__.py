"""Table-specific extractors.

This package maps transactions into normalized records for derived tables.
Extractors are pure and resolved per processor type at startup.
"""
