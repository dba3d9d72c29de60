"""
Pipelines: ordered compositions of stages.

The output of each stage is the input of the next one. A pipeline is
itself a stage, so that pipelines may be nested in larger pipelines
or in map stages.

Example:
    ```python
    from lmpipe.pipeline import compose

    pipeline = compose(
        lambda x: x['question'],
        retriever_stage,
        format_documents_as_string,
    )
    context = pipeline.invoke({'question': "What is a cell?"})

    # the | operator flattens the composition
    longer = pipeline | (lambda text: text.upper())
    ```

Behaviour:
    Building a pipeline raises ConfigurationError for an empty stage
    list or for adjacent stages with incompatible declared types.
    Invoking it raises StageExecutionError if a stage fails: the
    stages following the failing one are not run.
"""

from collections.abc import AsyncIterator, Iterable, Iterator
from contextlib import aclosing
from itertools import pairwise
from typing import Any

from lmpipe.utils import logger as default_logger
from lmpipe.utils.logging import LoggerBase

from .context import CancellationToken, RunContext
from .errors import ConfigurationError
from .observers import PipelineObserver
from .stages import (
    Stage,
    arun_stage,
    astream_stage,
    coerce_stage,
    empty_output,
    run_stage,
    stream_stage,
)
from .streaming import AsyncStreamCursor, StreamCursor


def _check_adjacent_types(
    stages: tuple[Stage, ...], offset: int = 0
) -> None:
    for position, (previous, following) in enumerate(
        pairwise(stages), offset
    ):
        produced, expected = previous.output_type, following.input_type
        if produced is Any or expected is Any:
            continue
        try:
            compatible = issubclass(produced, expected)
        except TypeError:
            continue
        if not compatible:
            raise ConfigurationError(
                f"Stage '{previous.get_name()}' at {position} produces "
                + f"{produced.__name__}, but stage "
                + f"'{following.get_name()}' at {position + 1} expects "
                + f"{expected.__name__}"
            )


class Pipeline(Stage):
    """An ordered, non-empty sequence of stages.

    Args:
        stages: the stages, or objects that may be converted into
            stages (callables, mappings of stages)
        name: an optional name for the pipeline
        observers: observers notified of the events of the stages of
            this pipeline in every invocation
        tags: tags attached to the events of this pipeline
        check_types: check the declared types of adjacent stages
        logger: reports failures of observers. Defaults to the
            package console logger.
    """

    def __init__(
        self,
        stages: Iterable[Any],
        *,
        name: str | None = None,
        observers: Iterable[PipelineObserver] = (),
        tags: Iterable[str] = (),
        check_types: bool = True,
        logger: LoggerBase | None = None,
    ) -> None:
        steps = tuple(coerce_stage(stage) for stage in stages)
        if not steps:
            raise ConfigurationError(
                "A pipeline requires at least one stage"
            )
        if check_types:
            _check_adjacent_types(steps)

        self.stages: tuple[Stage, ...] = steps
        self.name = name
        self.observers: tuple[PipelineObserver, ...] = tuple(observers)
        self.tags: tuple[str, ...] = tuple(tags)
        self.check_types = check_types
        self.logger = logger or default_logger
        self.input_type = steps[0].input_type
        self.output_type = steps[-1].output_type

    def get_name(self) -> str:
        if self.name:
            return self.name
        return "pipeline<" + ", ".join(
            s.get_name() for s in self.stages
        ) + ">"

    def is_anonymous(self) -> bool:
        """A pipeline without own name, observers or tags, which can be
        flattened into an enclosing pipeline."""
        return not (self.name or self.observers or self.tags)

    def __len__(self) -> int:
        return len(self.stages)

    @property
    def first(self) -> Stage:
        return self.stages[0]

    @property
    def last(self) -> Stage:
        return self.stages[-1]

    def _enter(self, context: RunContext) -> RunContext:
        return context.with_observers(self.observers, self.tags)

    def _new_context(
        self,
        observers: Iterable[PipelineObserver],
        tags: Iterable[str],
        cancel_token: CancellationToken | None,
    ) -> RunContext:
        return RunContext.create(
            self.logger,
            observers=tuple(observers),
            tags=tuple(tags),
            cancel_token=cancel_token,
        )

    # Stage capabilities-------------------------------------------
    def transform(self, value: Any, context: RunContext) -> Any:
        context = self._enter(context)
        for position, stage in enumerate(self.stages):
            value = run_stage(stage, value, context.child(position))
        return value

    async def atransform(self, value: Any, context: RunContext) -> Any:
        context = self._enter(context)
        for position, stage in enumerate(self.stages):
            value = await arun_stage(
                stage, value, context.child(position)
            )
        return value

    def transform_stream(
        self, value: Any, context: RunContext
    ) -> Iterator[Any]:
        # all stages but the last are materialized before streaming
        context = self._enter(context)
        last = len(self.stages) - 1
        for position, stage in enumerate(self.stages[:-1]):
            value = run_stage(stage, value, context.child(position))
        yield from stream_stage(self.last, value, context.child(last))

    async def atransform_stream(
        self, value: Any, context: RunContext
    ) -> AsyncIterator[Any]:
        context = self._enter(context)
        last = len(self.stages) - 1
        for position, stage in enumerate(self.stages[:-1]):
            value = await arun_stage(
                stage, value, context.child(position)
            )
        async with aclosing(
            astream_stage(self.last, value, context.child(last))
        ) as chunks:
            async for chunk in chunks:
                yield chunk

    # Invocation---------------------------------------------------
    def invoke(
        self,
        value: Any,
        *,
        observers: Iterable[PipelineObserver] = (),
        tags: Iterable[str] = (),
        cancel_token: CancellationToken | None = None,
    ) -> Any:
        """Run the stages in order and return the output of the last
        stage.

        Raises:
            StageExecutionError: a stage failed
            CancellationError: the cancel_token was cancelled
        """
        context = self._new_context(observers, tags, cancel_token)
        return self.transform(value, context)

    async def ainvoke(
        self,
        value: Any,
        *,
        observers: Iterable[PipelineObserver] = (),
        tags: Iterable[str] = (),
        cancel_token: CancellationToken | None = None,
    ) -> Any:
        context = self._new_context(observers, tags, cancel_token)
        return await self.atransform(value, context)

    def stream(
        self,
        value: Any,
        *,
        observers: Iterable[PipelineObserver] = (),
        tags: Iterable[str] = (),
        cancel_token: CancellationToken | None = None,
    ) -> StreamCursor:
        """Return a cursor pulling the output of the last stage in
        fragments. No stage runs before the first pull."""
        context = self._new_context(observers, tags, cancel_token)
        return StreamCursor(
            lambda: self.transform_stream(value, context),
            context,
            empty=empty_output(self.last),
        )

    def astream(
        self,
        value: Any,
        *,
        observers: Iterable[PipelineObserver] = (),
        tags: Iterable[str] = (),
        cancel_token: CancellationToken | None = None,
    ) -> AsyncStreamCursor:
        context = self._new_context(observers, tags, cancel_token)
        return AsyncStreamCursor(
            lambda: self.atransform_stream(value, context),
            context,
            empty=empty_output(self.last),
        )


def compose(
    *stages: Any,
    name: str | None = None,
    observers: Iterable[PipelineObserver] = (),
    tags: Iterable[str] = (),
    check_types: bool = True,
    logger: LoggerBase | None = None,
) -> Pipeline:
    """Build a pipeline from stages given as arguments, or as a single
    list or tuple. Pipelines given as stages are kept as nested
    stages; the output is the same as that of the flattened
    composition.

    Raises:
        ConfigurationError: if no stages are given, or adjacent stages
            declare incompatible types.

    Example:
        ```python
        pipeline = compose(get_question, retriever, format_docs)
        same = compose([get_question, retriever, format_docs])
        ```
    """
    if len(stages) == 1 and isinstance(stages[0], (list, tuple)):
        stages = tuple(stages[0])
    return Pipeline(
        stages,
        name=name,
        observers=observers,
        tags=tags,
        check_types=check_types,
        logger=logger,
    )


def join(*parts: Stage) -> Pipeline:
    """Compose stages into one flat pipeline, used by the `|` operator
    and by `Stage.pipe`. Anonymous pipelines among the parts are
    replaced by their stages.

    Only the junctions between the parts are type-checked: the stages
    within a flattened pipeline were checked, or deliberately not
    checked, when that pipeline was built. The result uses the first
    logger given explicitly to a flattened pipeline.

    Raises:
        ConfigurationError: if the stages at a junction declare
            incompatible types.
    """
    stages: list[Stage] = []
    junctions: list[int] = []
    check_types = True
    logger: LoggerBase | None = None
    for part in parts:
        if isinstance(part, Pipeline) and part.is_anonymous():
            check_types = check_types and part.check_types
            if logger is None and part.logger is not default_logger:
                logger = part.logger
            flat: tuple[Stage, ...] = part.stages
        else:
            flat = (part,)
        if stages:
            junctions.append(len(stages))
        stages.extend(flat)

    for junction in junctions:
        _check_adjacent_types(
            (stages[junction - 1], stages[junction]), junction - 1
        )
    pipeline = Pipeline(stages, check_types=False, logger=logger)
    pipeline.check_types = check_types
    return pipeline
