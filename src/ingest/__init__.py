"""Transaction ingestion pipeline.

This package reads ordered transactions from the source, runs extraction
stages, batches records, and coordinates sink commits with checkpoints.
"""
