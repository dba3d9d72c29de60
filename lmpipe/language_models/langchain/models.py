"""
Creation of langchain chat models and embedding models from settings.

The models wrap the API of the provider behind the langchain
interface (`BaseChatModel`, `Embeddings`), so that the stages of the
package may use models from different providers interchangeably. The
model objects are memoized in two repositories, `langchain_models`
and `langchain_embeddings`, keyed by the settings that define them.

The settings are given as a LanguageModelSettings/EmbeddingSettings
object (also members of the Settings object read from config.toml),
or as arguments of the create_..._from_spec functions.

Examples:

```python
from lmpipe.config import Settings, LanguageModelSettings
from lmpipe.language_models.langchain.models import (
    create_model_from_settings,
    create_model_from_spec,
    create_embedding_model_from_settings,
)

# from a settings object
config = LanguageModelSettings(model="OpenAI/gpt-4o", temperature=0.7)
model = create_model_from_settings(config)

# from config.toml
settings = Settings()
model = create_model_from_settings(settings.major)
embeddings = create_embedding_model_from_settings(settings.embeddings)

# from a spec. The Debug provider requires no API key
model = create_model_from_spec(
    "Debug/echo", provider_params={'message': "The mitochondria."}
)
```

Behaviour:
    Raises ValueError or pydantic ValidationError for invalid specs,
    ImportError if the package of the provider is not installed.

Note:
    Support for new model providers should be added to the match
    statements of the factory functions, and to ModelSource or
    EmbeddingSource in lmpipe.config.config.
"""

from typing import Any

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.embeddings import Embeddings

from lmpipe.config.config import (
    LanguageModelSettings,
    EmbeddingSettings,
    ModelSource,
    EmbeddingSource,
    ParameterValue,
)
from ..lazy_dict import LazyLoadingDict


def _install_hint(source: str, package: str) -> str:
    return (
        f"{source} models require the '{package}' package. "
        + f"Install it with: pip install {package}"
    )


def _create_model_instance(
    model: LanguageModelSettings,
) -> BaseChatModel:
    """
    Factory function creating langchain chat models for the
    supported providers.
    """
    model_source: ModelSource = model.get_model_source()
    model_name: str = model.get_model_name()
    kwargs: dict[str, Any]
    match model_source:
        case "Anthropic":
            try:
                from langchain_anthropic.chat_models import (
                    ChatAnthropic,
                )
            except ImportError as e:
                raise ImportError(
                    _install_hint("Anthropic", "langchain-anthropic")
                ) from e

            kwargs = {
                "model_name": model_name,
                "temperature": model.temperature,
                "max_tokens_to_sample": model.max_tokens or 1024,
                "timeout": model.timeout,
                "max_retries": model.max_retries,
                "stop": None,
            }
            kwargs.update(model.provider_params)
            return ChatAnthropic(**kwargs)

        case "Gemini":
            try:
                from langchain_google_genai import (
                    ChatGoogleGenerativeAI,
                )
            except ImportError as e:
                raise ImportError(
                    _install_hint("Gemini", "langchain-google-genai")
                ) from e

            kwargs = {
                "model": model_name,
                "temperature": model.temperature,
                "max_retries": model.max_retries,
            }
            if model.max_tokens is not None:
                kwargs["max_output_tokens"] = model.max_tokens
            if model.timeout is not None:
                kwargs["request_timeout"] = model.timeout
            kwargs.update(model.provider_params)
            return ChatGoogleGenerativeAI(**kwargs)

        case "Mistral":
            try:
                from langchain_mistralai.chat_models import (
                    ChatMistralAI,
                )
            except ImportError as e:
                raise ImportError(
                    _install_hint("Mistral", "langchain-mistralai")
                ) from e

            kwargs = {
                "model_name": model_name,
                "temperature": model.temperature,
                "max_retries": model.max_retries,
            }
            if model.max_tokens is not None:
                kwargs["max_tokens"] = model.max_tokens
            if model.timeout is not None:
                kwargs["timeout"] = int(model.timeout)
            kwargs.update(model.provider_params)
            return ChatMistralAI(**kwargs)

        case "OpenAI":
            try:
                from langchain_openai.chat_models import ChatOpenAI
            except ImportError as e:
                raise ImportError(
                    _install_hint("OpenAI", "langchain-openai")
                ) from e

            kwargs = {
                "model": model_name,
                "temperature": model.temperature,
                "max_retries": model.max_retries,
                "use_responses_api": False,
            }
            if model.max_tokens is not None:
                kwargs["max_tokens"] = model.max_tokens
            if model.timeout is not None:
                kwargs["timeout"] = model.timeout
            kwargs.update(model.provider_params)
            return ChatOpenAI(**kwargs)

        case "Debug":
            from langchain_core.language_models.fake_chat_models import (
                GenericFakeChatModel,
            )
            from ..message_iterator import (
                yield_message,
                yield_constant_message,
            )

            params = model.provider_params
            if "message" in params:
                return GenericFakeChatModel(
                    name=f"Debug/{model_name}",
                    messages=yield_constant_message(
                        str(params["message"])
                    ),
                )
            return GenericFakeChatModel(
                name=f"Debug/{model_name}",
                messages=yield_message(
                    str(params.get("prefix", "Message"))
                ),
            )

        case _:
            raise ValueError(
                f"Unreachable code reached: invalid source {model_source}"
            )


def _create_embedding_instance(
    model: EmbeddingSettings,
) -> Embeddings:
    """
    Factory function creating langchain embedding models for the
    supported providers.
    """
    model_source: EmbeddingSource = model.get_model_source()
    model_name: str = model.get_model_name()
    match model_source:
        case "Gemini":
            try:
                from langchain_google_genai import (
                    GoogleGenerativeAIEmbeddings,
                )
            except ImportError as e:
                raise ImportError(
                    _install_hint("Gemini", "langchain-google-genai")
                ) from e

            return GoogleGenerativeAIEmbeddings(
                model=model_name,
                task_type="retrieval_document",
            )

        case "Mistral":
            try:
                from langchain_mistralai import MistralAIEmbeddings
            except ImportError as e:
                raise ImportError(
                    _install_hint("Mistral", "langchain-mistralai")
                ) from e

            return MistralAIEmbeddings(model=model_name)

        case "OpenAI":
            try:
                from langchain_openai import OpenAIEmbeddings
            except ImportError as e:
                raise ImportError(
                    _install_hint("OpenAI", "langchain-openai")
                ) from e

            return OpenAIEmbeddings(model=model_name)

        case "SentenceTransformers":
            try:
                from langchain_huggingface import HuggingFaceEmbeddings
            except ImportError as e:
                raise ImportError(
                    _install_hint(
                        "SentenceTransformers", "langchain-huggingface"
                    )
                ) from e

            return HuggingFaceEmbeddings(
                model_name=f"sentence-transformers/{model_name}",
                encode_kwargs={"normalize_embeddings": True},
            )

        case "Debug":
            from langchain_core.embeddings import (
                DeterministicFakeEmbedding,
            )

            return DeterministicFakeEmbedding(size=model.size)

        case _:
            raise ValueError(
                f"Unreachable code reached: invalid source {model_source}"
            )


# Public interface----------------------------------------------
langchain_models: LazyLoadingDict[LanguageModelSettings, BaseChatModel] = \
    LazyLoadingDict(_create_model_instance)
langchain_embeddings: LazyLoadingDict[EmbeddingSettings, Embeddings] = \
    LazyLoadingDict(_create_embedding_instance)


def create_model_from_spec(
    model: str,
    *,
    temperature: float = 0.1,
    max_tokens: int | None = None,
    max_retries: int = 2,
    timeout: float | None = None,
    provider_params: dict[str, ParameterValue] | None = None,
) -> BaseChatModel:
    """
    Create a langchain chat model from specifications.

    Args:
        model: the model in the form provider/model, such as
            'OpenAI/gpt-4o'

    Returns:
        a langchain chat model, memoized in langchain_models.

    Raises:
        ValueError, ValidationError: invalid specification
        ImportError: the provider package is not installed
    """
    spec = LanguageModelSettings(
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
        max_retries=max_retries,
        timeout=timeout,
        provider_params=provider_params or {},
    )
    return langchain_models[spec]


def create_model_from_settings(
    settings: LanguageModelSettings,
) -> BaseChatModel:
    """
    Create a langchain chat model from a LanguageModelSettings
    object, such as the major or minor members of Settings.

    Example:
        ```python
        settings = Settings()
        model = create_model_from_settings(settings.minor)
        response = model.invoke("Why is the grass green?")
        ```
    """
    return langchain_models[settings]


def create_embedding_model_from_spec(
    dense_model: str, *, size: int = 64
) -> Embeddings:
    """
    Create a langchain embedding model from specifications.

    Args:
        dense_model: the model in the form provider/model, such as
            'OpenAI/text-embedding-3-small'
        size: the size of the embeddings of the Debug provider
    """
    spec = EmbeddingSettings(dense_model=dense_model, size=size)
    return langchain_embeddings[spec]


def create_embedding_model_from_settings(
    settings: EmbeddingSettings,
) -> Embeddings:
    """Create a langchain embedding model from an EmbeddingSettings
    object."""
    return langchain_embeddings[settings]
