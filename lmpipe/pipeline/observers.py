"""
Observers receive lifecycle notifications of the stages of a pipeline
(stage start, stage end, stage error), for example to trace an
invocation.

Observers are attached explicitly, either when the pipeline is built
or when it is invoked:

    ```python
    from lmpipe.pipeline import compose, LoggingObserver

    pipeline = compose(
        prompt_stage,
        model_stage,
        observers=[LoggingObserver()],
        tags=["example", "observers", "constructor"],
    )
    result = pipeline.invoke({'text': "..."})

    # or only for one invocation
    result = pipeline.invoke(
        {'text': "..."}, observers=[LoggingObserver()]
    )
    ```

An observer that raises an exception does not abort the invocation:
the exception is logged and the remaining observers are notified.
"""

from dataclasses import dataclass
from typing import Any
from uuid import UUID

from lmpipe.utils.logging import LoggerBase, get_logger

from .errors import StagePath, format_path


@dataclass(frozen=True)
class StageEvent:
    """A notification about a stage of a running invocation.

    Attributes:
        run_id: identifies the invocation
        path: position of the stage in the invoked pipeline
        stage_name: name of the stage
        tags: tags of the invocation and of the enclosing pipelines
        value: the stage input (start events) or output (end events)
        error: the exception raised by the stage (error events)
    """

    run_id: UUID
    path: StagePath
    stage_name: str
    tags: tuple[str, ...] = ()
    value: Any = None
    error: BaseException | None = None


class PipelineObserver:
    """Base class of pipeline observers. Override the hooks of
    interest; the default implementations do nothing."""

    def on_stage_start(self, event: StageEvent) -> None:
        pass

    def on_stage_end(self, event: StageEvent) -> None:
        pass

    def on_stage_error(self, event: StageEvent) -> None:
        pass


class LoggingObserver(PipelineObserver):
    """Reports stage events to a logger."""

    def __init__(self, logger: LoggerBase | None = None) -> None:
        self.logger = logger or get_logger("lmpipe.observers")

    @staticmethod
    def _prefix(event: StageEvent) -> str:
        tags = f" [{', '.join(event.tags)}]" if event.tags else ""
        return (
            f"[{event.run_id}]{tags} stage '{event.stage_name}' "
            + f"at {format_path(event.path)}"
        )

    def on_stage_start(self, event: StageEvent) -> None:
        self.logger.info(
            f"{self._prefix(event)} started with input: "
            + f"{event.value!r}"
        )

    def on_stage_end(self, event: StageEvent) -> None:
        self.logger.info(
            f"{self._prefix(event)} ended with output: "
            + f"{event.value!r}"
        )

    def on_stage_error(self, event: StageEvent) -> None:
        self.logger.error(
            f"{self._prefix(event)} failed: {event.error!r}"
        )


class ObserverGroup:
    """Dispatches events to a set of observers, logging and
    swallowing the exceptions raised by the observers."""

    def __init__(
        self,
        observers: tuple[PipelineObserver, ...],
        logger: LoggerBase,
    ) -> None:
        self.observers = observers
        self.logger = logger

    def extend(
        self, observers: tuple[PipelineObserver, ...]
    ) -> 'ObserverGroup':
        if not observers:
            return self
        return ObserverGroup(self.observers + observers, self.logger)

    def _dispatch(self, hook: str, event: StageEvent) -> None:
        for observer in self.observers:
            try:
                getattr(observer, hook)(event)
            except Exception as e:
                self.logger.warning(
                    f"Observer {type(observer).__name__}.{hook} "
                    + f"failed on stage '{event.stage_name}' at "
                    + f"{format_path(event.path)}: {e!r}"
                )

    def stage_start(self, event: StageEvent) -> None:
        self._dispatch("on_stage_start", event)

    def stage_end(self, event: StageEvent) -> None:
        self._dispatch("on_stage_end", event)

    def stage_error(self, event: StageEvent) -> None:
        self._dispatch("on_stage_error", event)
