"""
Ready-made pipelines for common language model tasks.

- `create_llm_chain`: fills a prompt and calls a model, returning
    the reply in a record {'text': reply}.
- `create_retrieval_map_chain`: answers a question in a given
    language, based on the documents retrieved for the question.
- `create_conversational_retrieval_chain`: rephrases a follow-up
    question as a standalone question using the chat history, then
    answers it based on the documents retrieved for it.
- `create_streaming_qa_chain`: answers a question given context and
    chat history, meant to be streamed.

The language models may be given as langchain chat models or as
settings. If not given, they are created from the settings read from
config.toml: the major model answers questions, the minor model
rephrases them. The settings also provide the parameters of the
pipelines (type checks, concurrency of map stages).

Example:
    ```python
    from lmpipe.recipes import create_conversational_retrieval_chain
    from lmpipe.language_models.langchain import (
        create_retriever_from_texts,
    )

    retriever = create_retriever_from_texts([
        "mitochondria is the powerhouse of the cell",
        "mitochondria is made of lipids",
    ])
    chain = create_conversational_retrieval_chain(retriever)
    answer = chain.invoke({
        'question': "What are they made out of?",
        'chat_history': [(
            "What is the powerhouse of the cell?",
            "The powerhouse of the cell is the mitochondria.",
        )],
    })
    ```
"""

from collections.abc import Iterable, Mapping
from typing import Any

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.prompts import BasePromptTemplate
from langchain_core.retrievers import BaseRetriever

from lmpipe.config.config import LanguageModelSettings, Settings
from lmpipe.language_models.langchain.models import (
    create_model_from_settings,
)
from lmpipe.language_models.langchain.stages import (
    ModelStage,
    PromptStage,
    as_stage,
)
from lmpipe.language_models.prompts import (
    PromptDefinition,
    create_prompt_template,
)
from lmpipe.pipeline import (
    LoggingObserver,
    MapStage,
    Pipeline,
    PipelineObserver,
    Stage,
    compose,
    passthrough,
)
from lmpipe.utils.logging import LoggerBase, set_log_level

from .formatting import format_chat_history, format_documents_as_string

ModelLike = BaseChatModel | LanguageModelSettings | None
PromptLike = str | PromptDefinition | BasePromptTemplate


# Input accessors------------------------------------------------------
def get_question(inputs: Mapping) -> str:
    return inputs['question']


def get_language(inputs: Mapping) -> str:
    return inputs['language']


def get_chat_history(inputs: Mapping) -> list:
    return list(inputs.get('chat_history') or [])


def get_chat_history_text(inputs: Mapping) -> str:
    return inputs.get('chatHistory') or ""


def as_text_record(text: str) -> dict:
    return {'text': text}


# Construction helpers-------------------------------------------------
def _model_stage(
    model: ModelLike,
    default: LanguageModelSettings,
    name: str | None = None,
) -> ModelStage:
    if model is None:
        model = default
    if isinstance(model, LanguageModelSettings):
        model = create_model_from_settings(model)
    return ModelStage(model, output="text", name=name)


def _prompt_stage(prompt: PromptLike) -> PromptStage:
    if isinstance(prompt, BasePromptTemplate):
        return PromptStage(prompt)
    return PromptStage(create_prompt_template(prompt))


def _retrieval(retriever: BaseRetriever | Stage) -> Pipeline:
    return compose(
        as_stage(retriever),
        format_documents_as_string,
        name="retrieval",
    )


class _Builder:
    """Collects the options shared by the recipes."""

    def __init__(
        self,
        settings: Settings | None,
        observers: Iterable[PipelineObserver],
        tags: Iterable[str],
        verbose: bool,
        logger: LoggerBase | None,
    ) -> None:
        # the package log level follows explicitly given settings only
        if settings is None:
            settings = Settings()
        else:
            set_log_level(settings.pipeline.log_level)
        self.settings = settings
        self.observers = list(observers)
        if verbose:
            self.observers.append(LoggingObserver(logger))
        self.tags = list(tags)
        self.logger = logger

    def map(self, **steps: Any) -> MapStage:
        return MapStage(
            steps,
            max_concurrency=self.settings.pipeline.max_concurrency,
        )

    def compose(
        self, *stages: Any, name: str, root: bool = False
    ) -> Pipeline:
        return compose(
            *stages,
            name=name,
            observers=self.observers if root else (),
            tags=self.tags if root else (),
            check_types=self.settings.pipeline.check_types,
            logger=self.logger,
        )


# Recipes--------------------------------------------------------------
def create_llm_chain(
    prompt: PromptLike,
    model: ModelLike = None,
    *,
    settings: Settings | None = None,
    observers: Iterable[PipelineObserver] = (),
    tags: Iterable[str] = (),
    verbose: bool = False,
    logger: LoggerBase | None = None,
) -> Pipeline:
    """
    Create a pipeline filling a prompt and calling a model.

    Args:
        prompt: a langchain prompt template, a prompt definition, or
            the name of a prompt of the prompt library
        model: the language model, or its settings. Defaults to the
            major model of the settings
        settings: the settings. Defaults to those read from
            config.toml
        observers: observers attached to the pipeline
        tags: tags attached to the events of the pipeline
        verbose: attach a LoggingObserver
        logger: the logger of the pipeline and of the LoggingObserver

    Returns:
        a pipeline mapping the prompt variables to {'text': reply}

    Example:
        ```python
        chain = create_llm_chain("translator")
        chain.invoke({
            'input_language': "English",
            'output_language': "French",
            'text': "I love programming.",
        })
        # {'text': "J'adore la programmation."}
        ```
    """
    builder = _Builder(settings, observers, tags, verbose, logger)
    return builder.compose(
        _prompt_stage(prompt),
        _model_stage(model, builder.settings.major),
        as_text_record,
        name="llm_chain",
        root=True,
    )


def create_retrieval_map_chain(
    retriever: BaseRetriever | Stage,
    model: ModelLike = None,
    *,
    prompt: PromptLike = "answer_in_language",
    settings: Settings | None = None,
    observers: Iterable[PipelineObserver] = (),
    tags: Iterable[str] = (),
    verbose: bool = False,
    logger: LoggerBase | None = None,
) -> Pipeline:
    """
    Create a pipeline answering a question in a language, based on
    the documents retrieved for the question.

    The input is a mapping with the keys 'question' and 'language'.
    A map stage collects the context, the question and the language,
    which fill the prompt; the output is the text of the reply.

    Args:
        retriever: a langchain retriever, or a stage mapping a query
            to a list of documents
        model: the language model, or its settings. Defaults to the
            major model of the settings
        prompt: the prompt, with variables context, question and
            language
        (other args as in create_llm_chain)
    """
    builder = _Builder(settings, observers, tags, verbose, logger)
    inputs = builder.map(
        context=builder.compose(
            get_question, _retrieval(retriever), name="context"
        ),
        question=get_question,
        language=get_language,
    )
    return builder.compose(
        inputs,
        _prompt_stage(prompt),
        _model_stage(model, builder.settings.major),
        name="retrieval_map_chain",
        root=True,
    )


def create_standalone_question_chain(
    model: ModelLike = None,
    *,
    prompt: PromptLike = "condense_question",
    settings: Settings | None = None,
    logger: LoggerBase | None = None,
) -> Pipeline:
    """
    Create a pipeline rephrasing a follow-up question as a standalone
    question, given the chat history.

    The input is a mapping with the keys 'question' and
    'chat_history' (a list of (human, ai) message pairs, possibly
    empty). The output is the text of the standalone question.
    """
    builder = _Builder(settings, (), (), False, logger)
    return builder.compose(
        builder.map(
            question=get_question,
            chat_history=builder.compose(
                get_chat_history, format_chat_history, name="chat_history"
            ),
        ),
        _prompt_stage(prompt),
        _model_stage(model, builder.settings.minor),
        name="standalone_question",
    )


def create_conversational_retrieval_chain(
    retriever: BaseRetriever | Stage,
    model: ModelLike = None,
    condense_model: ModelLike = None,
    *,
    settings: Settings | None = None,
    observers: Iterable[PipelineObserver] = (),
    tags: Iterable[str] = (),
    verbose: bool = False,
    logger: LoggerBase | None = None,
) -> Pipeline:
    """
    Create a conversational retrieval pipeline.

    The follow-up question is rephrased into a standalone question by
    condense_model, using the chat history. The standalone question
    is used to retrieve the context, and is answered by model based
    on that context.

    Args:
        retriever: a langchain retriever, or a stage mapping a query
            to a list of documents
        model: the model answering the question. Defaults to the
            major model of the settings
        condense_model: the model rephrasing the question. Defaults
            to the minor model of the settings
        (other args as in create_llm_chain)

    Returns:
        a pipeline mapping {'question': ..., 'chat_history': [...]}
        to the text of the answer
    """
    builder = _Builder(settings, observers, tags, verbose, logger)
    standalone = create_standalone_question_chain(
        condense_model, settings=builder.settings, logger=logger
    )
    answer = builder.compose(
        builder.map(
            context=_retrieval(retriever),
            question=passthrough(),
        ),
        _prompt_stage("answer_with_context"),
        _model_stage(model, builder.settings.major),
        name="answer",
    )
    return builder.compose(
        standalone,
        answer,
        name="conversational_retrieval_chain",
        root=True,
    )


def create_streaming_qa_chain(
    retriever: BaseRetriever | Stage,
    model: ModelLike = None,
    *,
    settings: Settings | None = None,
    observers: Iterable[PipelineObserver] = (),
    tags: Iterable[str] = (),
    verbose: bool = False,
    logger: LoggerBase | None = None,
) -> Pipeline:
    """
    Create a question answering pipeline with the model as last
    stage, so that the answer may be streamed.

    The input is a mapping with the key 'question' and the optional
    key 'chatHistory' (the text of the conversation so far).

    Example:
        ```python
        chain = create_streaming_qa_chain(retriever)
        for chunk in chain.stream({'question': "..."}):
            print(chunk, end="")
        ```
    """
    builder = _Builder(settings, observers, tags, verbose, logger)
    inputs = builder.map(
        question=get_question,
        chatHistory=get_chat_history_text,
        context=builder.compose(
            get_question, _retrieval(retriever), name="context"
        ),
    )
    return builder.compose(
        inputs,
        _prompt_stage("conversational_qa"),
        _model_stage(model, builder.settings.major),
        name="streaming_qa_chain",
        root=True,
    )
