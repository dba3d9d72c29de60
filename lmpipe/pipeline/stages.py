"""
The `Stage` interface and the function stage.

A stage maps an input value to an output value. Every stage offers
four capabilities, all receiving the `RunContext` of the invocation:

- `transform`: synchronous transformation
- `atransform`: asynchronous transformation. The default delegates
    to `transform` in a worker thread.
- `transform_stream`: yields the output in fragments. The default
    yields the whole output of `transform` as one fragment.
- `atransform_stream`: asynchronous version of the above.

The variants of stages are closed: `FunctionStage` (this module),
`Pipeline` (lmpipe.pipeline.sequence), `MapStage`
(lmpipe.pipeline.mapping), and the external stages wrapping langchain
collaborators (lmpipe.language_models.langchain.stages).

Stages are combined with `compose` or with the `|` operator, which
also accepts plain callables and dictionaries of stages:

    ```python
    pipeline = {'question': lambda x: x['question']} | prompt | model
    ```

The module also contains the functions used by composite stages to
run a child stage, which take care of observer notifications and of
wrapping the exceptions of the child in a `StageExecutionError`.
"""

import asyncio
import inspect
import typing
from abc import ABC, abstractmethod
from collections.abc import (
    AsyncIterator,
    Callable,
    Iterable,
    Iterator,
    Mapping,
)
from typing import Any, TYPE_CHECKING

from .context import CancellationToken, RunContext
from .errors import (
    CancellationError,
    ConfigurationError,
    StageExecutionError,
)
from .observers import PipelineObserver

if TYPE_CHECKING:
    from .sequence import Pipeline
    from .streaming import AsyncStreamCursor, StreamCursor


class Stage(ABC):
    """A unit of work mapping an input value to an output value.

    Attributes:
        name: the name of the stage, used in errors and events
        input_type: the declared input type, or Any
        output_type: the declared output type, or Any
    """

    name: str | None = None
    input_type: Any = Any
    output_type: Any = Any

    def get_name(self) -> str:
        return self.name or type(self).__name__

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.get_name()!r})"

    # Capabilities-------------------------------------------------
    @abstractmethod
    def transform(self, value: Any, context: RunContext) -> Any:
        """Map value to the output of the stage."""
        pass

    async def atransform(self, value: Any, context: RunContext) -> Any:
        return await asyncio.to_thread(self.transform, value, context)

    def transform_stream(
        self, value: Any, context: RunContext
    ) -> Iterator[Any]:
        yield self.transform(value, context)

    async def atransform_stream(
        self, value: Any, context: RunContext
    ) -> AsyncIterator[Any]:
        yield await self.atransform(value, context)

    # Composition--------------------------------------------------
    def __or__(self, other: Any) -> 'Pipeline':
        from .sequence import join

        return join(self, coerce_stage(other))

    def __ror__(self, other: Any) -> 'Pipeline':
        from .sequence import join

        return join(coerce_stage(other), self)

    def pipe(self, *others: Any) -> 'Pipeline':
        """Compose this stage with the stages given as arguments."""
        from .sequence import join

        return join(self, *(coerce_stage(other) for other in others))

    # Invocation of a stage by itself, as a single-stage pipeline---
    def _as_pipeline(self) -> 'Pipeline':
        from .sequence import Pipeline

        return Pipeline([self])

    def invoke(
        self,
        value: Any,
        *,
        observers: Iterable[PipelineObserver] = (),
        tags: Iterable[str] = (),
        cancel_token: CancellationToken | None = None,
    ) -> Any:
        return self._as_pipeline().invoke(
            value,
            observers=observers,
            tags=tags,
            cancel_token=cancel_token,
        )

    async def ainvoke(
        self,
        value: Any,
        *,
        observers: Iterable[PipelineObserver] = (),
        tags: Iterable[str] = (),
        cancel_token: CancellationToken | None = None,
    ) -> Any:
        return await self._as_pipeline().ainvoke(
            value,
            observers=observers,
            tags=tags,
            cancel_token=cancel_token,
        )

    def stream(
        self,
        value: Any,
        *,
        observers: Iterable[PipelineObserver] = (),
        tags: Iterable[str] = (),
        cancel_token: CancellationToken | None = None,
    ) -> 'StreamCursor':
        return self._as_pipeline().stream(
            value,
            observers=observers,
            tags=tags,
            cancel_token=cancel_token,
        )

    def astream(
        self,
        value: Any,
        *,
        observers: Iterable[PipelineObserver] = (),
        tags: Iterable[str] = (),
        cancel_token: CancellationToken | None = None,
    ) -> 'AsyncStreamCursor':
        return self._as_pipeline().astream(
            value,
            observers=observers,
            tags=tags,
            cancel_token=cancel_token,
        )


def _plain_class(annotation: Any) -> Any:
    # Only plain classes take part in construction-time checks;
    # generics, unions and Any are left to runtime.
    if annotation is Any or typing.get_origin(annotation) is not None:
        return Any
    if inspect.isclass(annotation):
        return annotation
    return Any


def infer_types(func: Callable[..., Any]) -> tuple[Any, Any]:
    """Infer the input and output types of a function from its
    annotations. Missing or unresolvable annotations give Any."""
    try:
        hints = typing.get_type_hints(func)
        parameters = list(inspect.signature(func).parameters.values())
    except (NameError, TypeError, ValueError):
        return Any, Any
    input_type: Any = Any
    if parameters:
        input_type = hints.get(parameters[0].name, Any)
    output_type: Any = hints.get('return', Any)
    return _plain_class(input_type), _plain_class(output_type)


class FunctionStage(Stage):
    """A stage wrapping a plain function of one argument. The
    function may be a coroutine function; in synchronous invocations
    it is then run to completion in a private event loop.

    Example:
        ```python
        get_question = FunctionStage(lambda x: x['question'])
        ```
    """

    def __init__(
        self,
        func: Callable[[Any], Any],
        name: str | None = None,
    ) -> None:
        if not callable(func):
            raise ConfigurationError(
                f"A function stage requires a callable, got {func!r}"
            )
        self.func = func
        self.name = name or getattr(func, '__name__', None)
        self._is_async = inspect.iscoroutinefunction(func)
        self.input_type, self.output_type = infer_types(func)

    def transform(self, value: Any, context: RunContext) -> Any:
        if self._is_async:
            return asyncio.run(self.func(value))
        return self.func(value)

    async def atransform(self, value: Any, context: RunContext) -> Any:
        if self._is_async:
            return await self.func(value)
        return await asyncio.to_thread(self.func, value)


def _identity(value: Any) -> Any:
    return value


def passthrough() -> FunctionStage:
    """A stage returning its input unchanged."""
    return FunctionStage(_identity, name="passthrough")


def coerce_stage(value: Any) -> Stage:
    """Turn a stage-like object into a stage: stages are returned
    as they are, mappings become map stages, callables become
    function stages.

    Raises:
        ConfigurationError: for any other object
    """
    if isinstance(value, Stage):
        return value
    if isinstance(value, Mapping):
        from .mapping import MapStage

        return MapStage(value)  # type: ignore
    if callable(value):
        return FunctionStage(value)
    raise ConfigurationError(
        f"Cannot use object of type {type(value).__name__} as a stage"
    )


def add_chunks(accumulated: Any, chunk: Any) -> Any:
    """Concatenate a stream fragment to the fragments received so
    far. Mappings are merged key by key, other fragments are added
    with `+`.

    Raises:
        TypeError: if the fragments cannot be concatenated
    """
    if accumulated is None:
        return chunk
    if isinstance(accumulated, Mapping) and isinstance(chunk, Mapping):
        merged = dict(accumulated)
        for key, value in chunk.items():
            merged[key] = add_chunks(merged.get(key), value)
        return merged
    try:
        return accumulated + chunk
    except TypeError as e:
        raise TypeError(
            "Cannot concatenate stream fragments of type "
            + f"{type(accumulated).__name__} and "
            + f"{type(chunk).__name__}"
        ) from e


def empty_output(stage: Stage) -> Any:
    """The concatenation of an empty stream of the stage: an empty
    string for stages declaring a str output, None otherwise."""
    return "" if stage.output_type is str else None


def concat_chunks(chunks: Iterable[Any], empty: Any = None) -> Any:
    """Concatenate stream fragments, starting from `empty`.

    Raises:
        TypeError: if the fragments cannot be concatenated
    """
    result = empty
    for chunk in chunks:
        result = add_chunks(result, chunk)
    return result


def _stream_output(stage: Stage, fragments: list[Any]) -> Any:
    # value reported in the end event of a streamed stage
    try:
        return concat_chunks(fragments, empty_output(stage))
    except TypeError:
        return fragments


# Running child stages-------------------------------------------------
_PASS_THROUGH_ERRORS = (
    StageExecutionError,
    CancellationError,
    ConfigurationError,
)


def _failed(
    stage: Stage, context: RunContext, error: Exception
) -> Exception:
    context.observers.stage_error(
        context.event(stage.get_name(), error=error)
    )
    if isinstance(error, _PASS_THROUGH_ERRORS):
        return error
    return StageExecutionError(context.path, stage.get_name(), error)


def _raise_failed(
    stage: Stage, context: RunContext, error: Exception
) -> typing.NoReturn:
    reported = _failed(stage, context, error)
    if reported is error:
        raise error
    raise reported from error


def run_stage(stage: Stage, value: Any, context: RunContext) -> Any:
    """Run a stage within a composite stage or a pipeline."""
    context.check_cancelled()
    context.observers.stage_start(context.event(stage.get_name(), value))
    try:
        output = stage.transform(value, context)
    except Exception as e:
        _raise_failed(stage, context, e)
    context.observers.stage_end(context.event(stage.get_name(), output))
    return output


async def arun_stage(
    stage: Stage, value: Any, context: RunContext
) -> Any:
    context.check_cancelled()
    context.observers.stage_start(context.event(stage.get_name(), value))
    try:
        output = await stage.atransform(value, context)
    except Exception as e:
        _raise_failed(stage, context, e)
    context.observers.stage_end(context.event(stage.get_name(), output))
    return output


def stream_stage(
    stage: Stage, value: Any, context: RunContext
) -> Iterator[Any]:
    """Stream the output of a stage within a pipeline. The end event
    carries the concatenation of the streamed fragments, or the list
    of the fragments if they cannot be concatenated.

    The producer returned by the stage may be any iterator; it is
    closed when it has a close method.
    """
    context.check_cancelled()
    context.observers.stage_start(context.event(stage.get_name(), value))
    fragments: list[Any] = []
    chunks: Iterator[Any] | None = None
    try:
        chunks = iter(stage.transform_stream(value, context))
        for chunk in chunks:
            fragments.append(chunk)
            yield chunk
    except Exception as e:
        _raise_failed(stage, context, e)
    finally:
        close = getattr(chunks, 'close', None)
        if close is not None:
            close()
    context.observers.stage_end(
        context.event(stage.get_name(), _stream_output(stage, fragments))
    )


async def astream_stage(
    stage: Stage, value: Any, context: RunContext
) -> AsyncIterator[Any]:
    context.check_cancelled()
    context.observers.stage_start(context.event(stage.get_name(), value))
    fragments: list[Any] = []
    chunks: AsyncIterator[Any] | None = None
    try:
        chunks = aiter(stage.atransform_stream(value, context))
        async for chunk in chunks:
            fragments.append(chunk)
            yield chunk
    except Exception as e:
        _raise_failed(stage, context, e)
    finally:
        aclose = getattr(chunks, 'aclose', None)
        if aclose is not None:
            await aclose()
    context.observers.stage_end(
        context.event(stage.get_name(), _stream_output(stage, fragments))
    )
