"""
Stages delegating to langchain collaborators.

- `PromptStage` wraps a prompt template (`PromptTemplate`,
    `ChatPromptTemplate`). The input must be a mapping from the
    template variables to their values; the output is a `PromptValue`.
- `ModelStage` wraps a chat model. With output="text" (the default)
    the reply is parsed into a string, and streaming yields the text
    deltas as they are produced by the model. With output="message"
    the stage returns the message object of the model.
- `RetrieverStage` wraps a retriever. The input is the query string;
    the output is the list of retrieved documents.

Any exception raised by the collaborator, or an output of the wrong
shape, is raised as `CollaboratorError`. Within a pipeline, this
becomes the cause of the `StageExecutionError` raised to the caller.

Example:
    ```python
    from lmpipe.pipeline import compose
    from lmpipe.language_models.langchain.stages import (
        PromptStage, ModelStage, RetrieverStage,
    )

    chain = compose(
        {
            'context': compose(
                lambda x: x['question'],
                RetrieverStage(retriever),
                format_documents_as_string,
            ),
            'question': lambda x: x['question'],
        },
        PromptStage(prompt),
        ModelStage(model),
    )
    for chunk in chain.stream({'question': "What is a cell?"}):
        print(chunk, end="")
    ```

The function `as_stage` converts langchain objects into these stages,
and any other object as `coerce_stage` does.
"""

from collections.abc import AsyncIterator, Iterator, Mapping
from typing import Any, Literal

from langchain_core.documents import Document
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import BaseMessage
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompt_values import PromptValue
from langchain_core.prompts import BasePromptTemplate
from langchain_core.retrievers import BaseRetriever
from langchain_core.runnables import Runnable

from lmpipe.pipeline.context import RunContext
from lmpipe.pipeline.errors import CollaboratorError
from lmpipe.pipeline.stages import Stage, coerce_stage

ModelOutput = Literal["text", "message"]


class ExternalStage(Stage):
    """Base of the stages delegating to a langchain runnable. The
    subclasses set `runnable` and may validate inputs and outputs."""

    collaborator: str = "collaborator"
    runnable: Runnable[Any, Any]

    def check_input(self, value: Any) -> None:
        pass

    def check_output(self, output: Any) -> Any:
        return output

    def _failure(self, error: Exception) -> CollaboratorError:
        return CollaboratorError(
            self.collaborator, f"{type(error).__name__}: {error}", error
        )

    def transform(self, value: Any, context: RunContext) -> Any:
        self.check_input(value)
        try:
            output = self.runnable.invoke(value)
        except Exception as e:
            raise self._failure(e) from e
        return self.check_output(output)

    async def atransform(self, value: Any, context: RunContext) -> Any:
        self.check_input(value)
        try:
            output = await self.runnable.ainvoke(value)
        except Exception as e:
            raise self._failure(e) from e
        return self.check_output(output)


class PromptStage(ExternalStage):
    """Fills a langchain prompt template with the values of a
    mapping.

    Raises:
        TypeError: if the input is not a mapping
        CollaboratorError: if the template cannot be filled (for
            example, for a missing variable)
    """

    input_type = Mapping
    output_type = PromptValue

    def __init__(
        self, template: BasePromptTemplate, name: str | None = None
    ) -> None:
        self.runnable = template
        self.name = name or "prompt"
        self.collaborator = f"prompt template {type(template).__name__}"

    @property
    def input_variables(self) -> list[str]:
        return list(self.runnable.input_variables)  # type: ignore

    def check_input(self, value: Any) -> None:
        if not isinstance(value, Mapping):
            raise TypeError(
                f"Prompt stage '{self.get_name()}' requires a mapping "
                + f"of the variables {self.input_variables}, got "
                + f"{type(value).__name__}"
            )


class ModelStage(ExternalStage):
    """Calls a langchain chat model.

    Args:
        model: the chat model
        output: "text" to parse the reply into a string, "message"
            to return the reply message
        name: the name of the stage. Defaults to the name of the model
    """

    def __init__(
        self,
        model: BaseChatModel,
        output: ModelOutput = "text",
        name: str | None = None,
    ) -> None:
        if output not in ("text", "message"):
            raise ValueError(f"Invalid model output: {output}")
        self.model = model
        self.output = output
        self.name = name or model.name or type(model).__name__
        self.collaborator = f"language model {self.name}"
        self.runnable = (
            model | StrOutputParser() if output == "text" else model
        )
        self.output_type = str if output == "text" else BaseMessage

    def transform_stream(
        self, value: Any, context: RunContext
    ) -> Iterator[Any]:
        try:
            for chunk in self.runnable.stream(value):
                yield chunk
        except Exception as e:
            raise self._failure(e) from e

    async def atransform_stream(
        self, value: Any, context: RunContext
    ) -> AsyncIterator[Any]:
        try:
            async for chunk in self.runnable.astream(value):
                yield chunk
        except Exception as e:
            raise self._failure(e) from e


class RetrieverStage(ExternalStage):
    """Retrieves the documents relevant to a query string.

    Raises:
        TypeError: if the input is not a string
        CollaboratorError: if the retriever fails, or does not return
            a list of documents
    """

    input_type = str
    output_type = list

    def __init__(
        self, retriever: BaseRetriever, name: str | None = None
    ) -> None:
        self.runnable = retriever
        self.name = name or "retriever"
        self.collaborator = f"retriever {type(retriever).__name__}"

    def check_input(self, value: Any) -> None:
        if not isinstance(value, str):
            raise TypeError(
                f"Retriever stage '{self.get_name()}' requires a query "
                + f"string, got {type(value).__name__}"
            )

    def check_output(self, output: Any) -> list[Document]:
        if not isinstance(output, list) or not all(
            isinstance(doc, Document) for doc in output
        ):
            raise CollaboratorError(
                self.collaborator,
                "expected a list of documents, got "
                + f"{type(output).__name__}",
            )
        return output


def as_stage(value: Any) -> Stage:
    """Convert langchain prompt templates, chat models and retrievers
    into the corresponding stages. Other objects are converted by
    coerce_stage."""
    match value:
        case BasePromptTemplate():
            return PromptStage(value)
        case BaseChatModel():
            return ModelStage(value)
        case BaseRetriever():
            return RetrieverStage(value)
        case _:
            return coerce_stage(value)
