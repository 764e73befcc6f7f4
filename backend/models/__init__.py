"""Models module for Pydantic schemas and key/value storage.

This module exposes the graph records, request/response models, and the
key/value store contract used by the analysis cache and workflow store.
"""

from models.database import (
    KeyValueStore,
    MemoryKeyValueStore,
    SQLiteKeyValueStore,
    create_key_value_store,
    get_memory_store,
    reset_memory_store,
)
from models.schemas import (
    SYSTEM_LEVEL_GAP_TYPES,
    CacheEntry,
    CompareRequest,
    CompareResult,
    CostContext,
    CreateShareRequest,
    DecomposeMetadata,
    DecomposeRequest,
    DecomposeResult,
    Decomposition,
    EffortLevel,
    Gap,
    GapType,
    GraphLayout,
    HealthConfidence,
    HealthMetrics,
    HealthResponse,
    Layer,
    LayoutEdge,
    LayoutNode,
    LayoutRequest,
    LLMMetrics,
    RawDecomposition,
    Severity,
    SharedWorkflow,
    SharedWorkflowResponse,
    ShareInfo,
    ShareLink,
    ShareLinkResponse,
    ShareListResponse,
    StageInput,
    Step,
    Workflow,
)

__all__ = [
    # Graph records
    "Decomposition",
    "EffortLevel",
    "Gap",
    "GapType",
    "HealthConfidence",
    "HealthMetrics",
    "Layer",
    "RawDecomposition",
    "Severity",
    "Step",
    "SYSTEM_LEVEL_GAP_TYPES",
    # Requests / results
    "CacheEntry",
    "CompareRequest",
    "CompareResult",
    "CostContext",
    "DecomposeMetadata",
    "DecomposeRequest",
    "DecomposeResult",
    "GraphLayout",
    "HealthResponse",
    "LayoutEdge",
    "LayoutNode",
    "LayoutRequest",
    "LLMMetrics",
    "StageInput",
    "Workflow",
    # Share links
    "CreateShareRequest",
    "ShareInfo",
    "SharedWorkflow",
    "SharedWorkflowResponse",
    "ShareLink",
    "ShareLinkResponse",
    "ShareListResponse",
    # Storage
    "KeyValueStore",
    "MemoryKeyValueStore",
    "SQLiteKeyValueStore",
    "create_key_value_store",
    "get_memory_store",
    "reset_memory_store",
]
