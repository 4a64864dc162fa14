"""Step tables and pipeline construction."""

from typing import List, Optional

from ..config import PipelineConfig
from . import export_steps, import_steps
from .context import PipelineContext
from .driver import Continuation, HttpContinuation, Pipeline, PipelineStep, TaskContinuation

EXPORT = "export"
IMPORT = "import"

EXPORT_STEPS: List[PipelineStep] = [
    PipelineStep(5, "compatibility", export_steps.compatibility),
    PipelineStep(10, "init", export_steps.init),
    PipelineStep(20, "config", export_steps.config),
    PipelineStep(30, "config_file", export_steps.config_file),
    PipelineStep(40, "database", export_steps.database),
    PipelineStep(50, "database_file", export_steps.database_file),
    PipelineStep(60, "media", export_steps.media),
    PipelineStep(70, "content", export_steps.content),
    PipelineStep(80, "plugins", export_steps.plugins),
    PipelineStep(90, "themes", export_steps.themes),
    PipelineStep(100, "archive", export_steps.archive),
    PipelineStep(110, "clean", export_steps.clean),
]

IMPORT_STEPS: List[PipelineStep] = [
    PipelineStep(5, "upload", import_steps.upload),
    PipelineStep(10, "encryption", import_steps.encryption),
    PipelineStep(15, "validate", import_steps.validate),
    PipelineStep(20, "compatibility", import_steps.compatibility),
    PipelineStep(30, "enumerate", import_steps.enumerate_archive),
    PipelineStep(40, "confirm", import_steps.confirm),
    PipelineStep(45, "snapshot", import_steps.snapshot),
    PipelineStep(50, "database", import_steps.database),
    PipelineStep(55, "options", import_steps.options),
    PipelineStep(60, "media", import_steps.media),
    PipelineStep(70, "content", import_steps.content),
    PipelineStep(75, "mu_plugins", import_steps.mu_plugins),
    PipelineStep(80, "plugins", import_steps.plugins),
    PipelineStep(90, "themes", import_steps.themes),
    PipelineStep(95, "users", import_steps.users),
    PipelineStep(100, "permalinks", import_steps.permalinks),
    PipelineStep(110, "done", import_steps.done),
    PipelineStep(120, "clean", import_steps.clean),
]


def build_continuation(config: PipelineConfig, api_key: Optional[str] = None) -> Continuation:
    if config.continuation == "http":
        return HttpContinuation(config.continuation_url, api_key=api_key)
    return TaskContinuation()


def build_export_pipeline(context: PipelineContext, continuation: Optional[Continuation] = None) -> Pipeline:
    return Pipeline(EXPORT, EXPORT_STEPS, context, continuation)


def build_import_pipeline(context: PipelineContext, continuation: Optional[Continuation] = None) -> Pipeline:
    return Pipeline(IMPORT, IMPORT_STEPS, context, continuation)
