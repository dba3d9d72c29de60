# pyright: reportUnusedImport=false
# flake8: noqa

from .pipeline import (
    Stage,
    FunctionStage,
    Pipeline,
    MapStage,
    compose,
    passthrough,
    CancellationToken,
    StreamState,
    END_OF_STREAM,
    PipelineObserver,
    LoggingObserver,
    PipelineError,
    ConfigurationError,
    StageExecutionError,
    CollaboratorError,
    CancellationError,
)
