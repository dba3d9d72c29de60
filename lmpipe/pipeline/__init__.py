# pyright: reportUnusedImport=false
# flake8: noqa

from .errors import (
    PipelineError,
    ConfigurationError,
    StageExecutionError,
    CollaboratorError,
    CancellationError,
    StagePath,
    format_path,
)
from .observers import (
    StageEvent,
    PipelineObserver,
    LoggingObserver,
    ObserverGroup,
)
from .context import CancellationToken, RunContext
from .stages import (
    Stage,
    FunctionStage,
    passthrough,
    coerce_stage,
    add_chunks,
    concat_chunks,
    empty_output,
)
from .sequence import Pipeline, compose, join
from .mapping import MapStage
from .streaming import (
    StreamCursor,
    AsyncStreamCursor,
    StreamState,
    END_OF_STREAM,
)
