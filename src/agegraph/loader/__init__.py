"""
agegraph.loader
===============

Transactional bulk loading of graph data.

Public API:

- BatchLoader             : validate, stage and commit vertex/edge batches atomically.
- LoadReport, LabelCount  : per-label counts and phase timings of a finished load.
- LoadProgress, LoadState : progress callbacks and loader state.
- VertexRecord, EdgeRecord: typed input records (plain mappings are accepted too).
- validate_graph_data     : run the validation phase alone.
- list_staging_tables     : staging tables currently present in the backend.
"""

from __future__ import annotations

from .records import EdgeRecord, VertexRecord
from .validation import validate_graph_data
from .batch import (
    BatchLoader,
    LabelCount,
    LoadProgress,
    LoadReport,
    LoadState,
    list_staging_tables,
)

__all__ = [
    "EdgeRecord",
    "VertexRecord",
    "validate_graph_data",
    "BatchLoader",
    "LabelCount",
    "LoadProgress",
    "LoadReport",
    "LoadState",
    "list_staging_tables",
]
