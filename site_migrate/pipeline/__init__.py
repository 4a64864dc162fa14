from .context import PipelineContext
from .driver import Continuation, HttpContinuation, Pipeline, PipelineStep, TaskContinuation
from .factory import (
    EXPORT_STEPS,
    IMPORT_STEPS,
    build_continuation,
    build_export_pipeline,
    build_import_pipeline,
)
from .state import FileStateStore, RedisStateStore, StateStore, create_state_store
from .status import StatusRecord, StatusReporter, StatusType, get_status

__all__ = [
    "PipelineContext",
    "Continuation",
    "HttpContinuation",
    "Pipeline",
    "PipelineStep",
    "TaskContinuation",
    "EXPORT_STEPS",
    "IMPORT_STEPS",
    "build_continuation",
    "build_export_pipeline",
    "build_import_pipeline",
    "FileStateStore",
    "RedisStateStore",
    "StateStore",
    "create_state_store",
    "StatusRecord",
    "StatusReporter",
    "StatusType",
    "get_status",
]
