"""
Per-invocation execution state.

Each call to invoke/ainvoke/stream/astream creates a new `RunContext`.
Stages receive the context together with their input; they do not
share any other mutable state across invocations. The context is
immutable: nested stages receive a child context with a longer path.
"""

import threading
from dataclasses import dataclass, field, replace
from uuid import UUID, uuid4

from lmpipe.utils.logging import LoggerBase

from .errors import CancellationError, StagePath, format_path
from .observers import ObserverGroup, PipelineObserver, StageEvent


class CancellationToken:
    """A cancellation signal that may be set from any thread.

    Example:
        ```python
        token = CancellationToken()
        cursor = pipeline.stream(inputs, cancel_token=token)
        for chunk in cursor:
            if enough(chunk):
                token.cancel()  # next pull raises CancellationError
        ```
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, path: StagePath = ()) -> None:
        if self._event.is_set():
            raise CancellationError(
                f"Invocation cancelled at {format_path(path)}"
            )


@dataclass(frozen=True)
class RunContext:
    """Execution context of one invocation.

    Attributes:
        observers: the observers notified of stage events
        cancel_token: checked before each stage and each pull of a
            stream
        run_id: identifies the invocation
        path: position of the current stage
        tags: tags attached to the invocation and the enclosing
            pipelines
    """

    observers: ObserverGroup
    cancel_token: CancellationToken = field(
        default_factory=CancellationToken
    )
    run_id: UUID = field(default_factory=uuid4)
    path: StagePath = ()
    tags: tuple[str, ...] = ()

    @classmethod
    def create(
        cls,
        logger: LoggerBase,
        observers: tuple[PipelineObserver, ...] = (),
        tags: tuple[str, ...] = (),
        cancel_token: CancellationToken | None = None,
    ) -> 'RunContext':
        return cls(
            observers=ObserverGroup(observers, logger),
            cancel_token=cancel_token or CancellationToken(),
            tags=tags,
        )

    @property
    def logger(self) -> LoggerBase:
        return self.observers.logger

    def child(self, step: int | str) -> 'RunContext':
        return replace(self, path=self.path + (step,))

    def with_observers(
        self,
        observers: tuple[PipelineObserver, ...],
        tags: tuple[str, ...] = (),
    ) -> 'RunContext':
        if not observers and not tags:
            return self
        return replace(
            self,
            observers=self.observers.extend(observers),
            tags=self.tags + tags,
        )

    def check_cancelled(self) -> None:
        self.cancel_token.raise_if_cancelled(self.path)

    def event(
        self,
        stage_name: str,
        value: object = None,
        error: BaseException | None = None,
    ) -> StageEvent:
        return StageEvent(
            run_id=self.run_id,
            path=self.path,
            stage_name=stage_name,
            tags=self.tags,
            value=value,
            error=error,
        )
