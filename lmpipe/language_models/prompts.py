"""
Library of the prompts used by the recipes of the package.

A prompt is stored as a `PromptDefinition`, holding the text of the
human message template and an optional system message template. The
predefined prompts are

    - "condense_question": rephrase a follow-up question as a
        standalone question (variables: chat_history, question)
    - "answer_with_context": answer a question based on a context
        (variables: context, question)
    - "answer_in_language": as above, in a given language
        (variables: context, question, language)
    - "conversational_qa": answer a question given context and chat
        history (variables: context, chatHistory, question)
    - "translator": translate a text (variables: input_language,
        output_language, text)

The definitions are retrieved from the module-level dictionary
`prompt_library`, and converted into langchain prompt templates with
`create_prompt_template`.

**Example**:

    ```python
    from lmpipe.language_models.prompts import (
        prompt_library,
        create_prompt_template,
    )
    definition = prompt_library["answer_with_context"]
    template = create_prompt_template("answer_with_context")
    ```

New prompts are added to the library with `create_prompt`:

    ```python
    from lmpipe.language_models.prompts import create_prompt
    create_prompt(
        "Provide the questions the following text answers:\\n{text}",
        name="question_creation",
    )
    template = create_prompt_template("question_creation")
    ```
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict
from langchain_core.prompts import (
    ChatPromptTemplate,
    HumanMessagePromptTemplate,
    SystemMessagePromptTemplate,
)

from .lazy_dict import LazyLoadingDict


class PromptDefinition(BaseModel):
    """The texts of the messages of a prompt template"""

    name: str
    prompt: str
    system_prompt: str | None = None

    model_config = ConfigDict(frozen=True, extra='forbid')


# The predefined prompts
PromptNames = Literal[
    "condense_question",
    "answer_with_context",
    "answer_in_language",
    "conversational_qa",
    "translator",
]


def _create_prompt_definition(prompt_name: PromptNames) -> PromptDefinition:
    match prompt_name:
        case "condense_question":
            return PromptDefinition(
                name=prompt_name,
                prompt="""Given the following conversation and a follow up question, rephrase the follow up question to be a standalone question, in its original language.

Chat History:
{chat_history}
Follow Up Input: {question}
Standalone question:""",
            )
        case "answer_with_context":
            return PromptDefinition(
                name=prompt_name,
                prompt="""Answer the question based only on the following context:
{context}

Question: {question}
""",
            )
        case "answer_in_language":
            return PromptDefinition(
                name=prompt_name,
                prompt="""Answer the question based only on the following context:
{context}

Question: {question}

Answer in the following language: {language}""",
            )
        case "conversational_qa":
            return PromptDefinition(
                name=prompt_name,
                prompt="""Use the following pieces of context to answer the question at the end. If you don't know the answer, just say that you don't know, don't try to make up an answer.
----------
CONTEXT: {context}
----------
CHAT HISTORY: {chatHistory}
----------
QUESTION: {question}
----------
Helpful Answer:""",
            )
        case "translator":
            return PromptDefinition(
                name=prompt_name,
                prompt="{text}",
                system_prompt="You are a helpful assistant that "
                + "translates {input_language} to {output_language}.",
            )
        case _:  # do not remove this
            raise ValueError(f"Invalid prompt: {prompt_name}")


# a module-level typed dictionary for the predefined prompts
prompt_library = LazyLoadingDict(_create_prompt_definition)


def create_prompt(
    prompt: str,
    name: str,
    *,
    system_prompt: str | None = None,
) -> PromptDefinition:
    """
    Adds a custom prompt to the prompt library.

    Args:
        prompt: the text of the human message template
        name: the name of the prompt in the library
        system_prompt: an optional system message template

    Returns:
        the stored definition.

    Raises:
        ValueError: if a prompt with the same name is already in the
            library.
    """

    # The Literal of the predefined names is not checked at runtime,
    # allowing custom names to be stored.
    definition = PromptDefinition(
        name=name,
        prompt=prompt,
        system_prompt=system_prompt,
    )
    prompt_library[name] = definition  # type: ignore
    return definition


def create_prompt_template(
    prompt: str | PromptDefinition,
) -> ChatPromptTemplate:
    """
    Build a langchain chat prompt template from a prompt of the
    library (given by name) or from a definition.

    Raises:
        ValueError: if the name is not in the library.
    """
    definition: PromptDefinition = (
        prompt_library[prompt]  # type: ignore
        if isinstance(prompt, str)
        else prompt
    )
    if definition.system_prompt is None:
        return ChatPromptTemplate.from_template(definition.prompt)
    return ChatPromptTemplate.from_messages(  # type: ignore
        [
            SystemMessagePromptTemplate.from_template(
                definition.system_prompt
            ),
            HumanMessagePromptTemplate.from_template(definition.prompt),
        ]
    )
