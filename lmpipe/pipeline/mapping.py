"""
Map stages: fan-out of one input to named child stages.

Every child receives the input of the map stage; the output is a
dictionary with one entry per child, in the order in which the
children were declared. Children do not see each other's output and
may run concurrently: synchronous invocations use a thread pool,
asynchronous invocations gather the children in the event loop.

Example:
    ```python
    from lmpipe.pipeline import MapStage, compose

    inputs = MapStage(
        context=compose(get_question, retriever, format_docs),
        question=get_question,
        language=lambda x: x['language'],
    )
    record = inputs.invoke({'question': "...", 'language': "German"})
    # {'context': "...", 'question': "...", 'language': "German"}
    ```

A dictionary in a pipeline definition is converted into a map stage:

    ```python
    pipeline = compose({'question': get_question}, prompt, model)
    ```
"""

import asyncio
import copy
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from .context import RunContext
from .errors import ConfigurationError
from .stages import Stage, arun_stage, coerce_stage, run_stage


def _share(value: Any) -> Any:
    # Siblings must not observe each other's changes to the input
    if isinstance(value, (dict, list, set)):
        return copy.copy(value)
    return value


class MapStage(Stage):
    """A stage distributing its input to named child stages.

    Args:
        steps: a mapping from field names to stages (or callables,
            or nested mappings)
        max_concurrency: maximum number of children run at the same
            time. None leaves the limit to the thread pool default.
        **kwargs: further fields. The keyword max_concurrency is
            reserved.

    Raises:
        ConfigurationError: if there are no fields, a field name is
            not a non-empty string, or a name is given both in steps
            and as keyword.
    """

    output_type = dict

    def __init__(
        self,
        steps: Mapping[str, Any] | None = None,
        /,
        *,
        max_concurrency: int | None = None,
        **kwargs: Any,
    ) -> None:
        steps = dict(steps or {})
        collisions = set(steps) & set(kwargs)
        if collisions:
            raise ConfigurationError(
                "Field names given twice in map stage: "
                + f"{sorted(collisions)}"
            )
        steps.update(kwargs)
        if not steps:
            raise ConfigurationError(
                "A map stage requires at least one field"
            )
        for field_name in steps:
            if not isinstance(field_name, str) or not field_name:
                raise ConfigurationError(
                    f"Invalid field name in map stage: {field_name!r}"
                )
        if max_concurrency is not None and max_concurrency < 1:
            raise ConfigurationError(
                "max_concurrency must be a positive integer"
            )

        self.steps: dict[str, Stage] = {
            field_name: coerce_stage(stage)
            for field_name, stage in steps.items()
        }
        self.max_concurrency = max_concurrency

    def get_name(self) -> str:
        return self.name or "map<" + ", ".join(self.steps) + ">"

    @staticmethod
    def _collect(
        names: list[str],
        outputs: dict[str, Any],
        failures: dict[str, Exception],
    ) -> dict[str, Any]:
        # The failure reported is that of the first declared field
        for field_name in names:
            if field_name in failures:
                raise failures[field_name]
        return {field_name: outputs[field_name] for field_name in names}

    def transform(self, value: Any, context: RunContext) -> dict[str, Any]:
        names = list(self.steps)
        outputs: dict[str, Any] = {}
        failures: dict[str, Exception] = {}
        with ThreadPoolExecutor(
            max_workers=self.max_concurrency,
            thread_name_prefix="lmpipe-map",
        ) as pool:
            futures = {
                field_name: pool.submit(
                    run_stage,
                    self.steps[field_name],
                    _share(value),
                    context.child(field_name),
                )
                for field_name in names
            }
            for field_name, future in futures.items():
                try:
                    outputs[field_name] = future.result()
                except Exception as e:
                    failures[field_name] = e
        return self._collect(names, outputs, failures)

    async def atransform(
        self, value: Any, context: RunContext
    ) -> dict[str, Any]:
        names = list(self.steps)
        outputs: dict[str, Any] = {}
        failures: dict[str, Exception] = {}
        semaphore = (
            asyncio.Semaphore(self.max_concurrency)
            if self.max_concurrency
            else None
        )

        async def _run(field_name: str) -> None:
            stage = self.steps[field_name]
            child = context.child(field_name)
            try:
                if semaphore is None:
                    outputs[field_name] = await arun_stage(
                        stage, _share(value), child
                    )
                else:
                    async with semaphore:
                        outputs[field_name] = await arun_stage(
                            stage, _share(value), child
                        )
            except Exception as e:
                failures[field_name] = e

        await asyncio.gather(*(_run(field_name) for field_name in names))
        return self._collect(names, outputs, failures)
