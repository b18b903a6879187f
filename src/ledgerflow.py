"""Public SDK surface for Ledgerflow.

This module provides a stable import path for embedding a processor.
It re-exports the coordinator, its builders, and typed models.
"""

from __future__ import annotations

from core.config import IndexerConfig
from core.processor_config import IndexerProcessorConfig, load_processor_config, parse_processor_config
from core.types import Batch, Checkpoint, ExtractedRecord, ProcessorRunSpec, RunResult, Transaction
from extractors.engine import ExtractionEngine
from extractors.registry import resolve_processor, supported_processor_types
from ingest.pipeline import PipelineCoordinator, PipelineSettings
from ingest.processor_builder import build_components, build_coordinator

__all__ = [
    "Batch",
    "Checkpoint",
    "ExtractedRecord",
    "ExtractionEngine",
    "IndexerConfig",
    "IndexerProcessorConfig",
    "PipelineCoordinator",
    "PipelineSettings",
    "ProcessorRunSpec",
    "RunResult",
    "Transaction",
    "build_components",
    "build_coordinator",
    "load_processor_config",
    "parse_processor_config",
    "resolve_processor",
    "supported_processor_types",
]
