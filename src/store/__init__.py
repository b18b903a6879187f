"""Sink and storage layer.

This package writes committed batches to relational tables or Parquet
objects and persists checkpoints alongside them.
"""
