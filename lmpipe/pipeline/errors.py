"""
Exceptions raised by pipelines.

All exceptions derive from `PipelineError`:

- `ConfigurationError`: the pipeline definition is malformed (empty
    stage list, field-name collision in a map stage, mismatching stage
    types). Raised when the pipeline is built.
- `StageExecutionError`: a stage failed while the pipeline was being
    invoked. Carries the path of the stage and the original exception.
- `CollaboratorError`: an external collaborator (prompt template,
    language model, retriever) failed or returned output of the wrong
    shape. Raised by the external stages, and reported to the caller
    as the cause of a `StageExecutionError`.
- `CancellationError`: the invocation was withdrawn by the caller
    before completion.
"""

StagePath = tuple[int | str, ...]


def format_path(path: StagePath) -> str:
    """Render a stage path as a dotted string, e.g. '0.context.1'"""
    return ".".join(str(step) for step in path) if path else "<root>"


class PipelineError(Exception):
    """Base class of the exceptions raised by the package."""


class ConfigurationError(PipelineError, ValueError):
    """Malformed pipeline definition."""


class CancellationError(PipelineError):
    """The invocation was cancelled before completion."""


class CollaboratorError(PipelineError):
    """An external collaborator failed or returned an invalid shape.

    Attributes:
        collaborator: a short description of the failing collaborator
        cause: the exception raised by the collaborator, if any
    """

    def __init__(
        self,
        collaborator: str,
        message: str,
        cause: BaseException | None = None,
    ) -> None:
        self.collaborator = collaborator
        self.cause = cause
        super().__init__(f"{collaborator}: {message}")


class StageExecutionError(PipelineError):
    """A stage failed during an invocation.

    Attributes:
        path: position of the failing stage, starting from the
            pipeline that was invoked. Integers are positions in a
            pipeline, strings are field names of map stages.
        stage_name: the name of the failing stage
        cause: the exception raised by the stage
    """

    def __init__(
        self, path: StagePath, stage_name: str, cause: BaseException
    ) -> None:
        self.path = path
        self.stage_name = stage_name
        self.cause = cause
        super().__init__(
            f"Stage '{stage_name}' at {format_path(path)} failed: "
            + f"{type(cause).__name__}: {cause}"
        )

    @property
    def position(self) -> int | str | None:
        """The position of the failing stage in the invoked pipeline"""
        return self.path[0] if self.path else None
