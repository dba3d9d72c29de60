"""
Read and write configuration file.

This file also contains the definitions of the model providers
supported by the package and the parameters of the pipeline executor.
Settings are read from config.toml in the working directory, if it
exists, and from environment variables prefixed with LMPIPE_ (for
example, LMPIPE_PIPELINE__MAX_CONCURRENCY=4).
"""

from pathlib import Path
from typing import Any, Literal, Self

from pydantic import (
    BaseModel,
    Field,
    field_validator,
    model_validator,
)
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# Supported model providers. These must also be handled in the
# factories of lmpipe.language_models.langchain.models
ModelSource = Literal[
    'OpenAI', 'Anthropic', 'Mistral', 'Gemini', 'Debug'
]
EmbeddingSource = Literal[
    'OpenAI', 'Mistral', 'Gemini', 'SentenceTransformers', 'Debug'
]
LogLevel = Literal['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']

# Values allowed in provider-specific parameters
ParameterValue = str | int | float | bool

DEFAULT_CONFIG_FILE = "config.toml"
ENV_PREFIX = "LMPIPE_"


def _validate_spec(spec: str, sources: tuple[str, ...]) -> str:
    cleaned_spec = spec.strip()
    if not (bool(cleaned_spec)):
        raise ValueError("Model specification is empty")
    if '\n' in cleaned_spec or '\r' in cleaned_spec:
        raise ValueError(
            "Model specification cannot contain newlines or carriage"
            + " returns."
        )
    tokens = cleaned_spec.split('/')
    if len(tokens) != 2:
        raise ValueError(
            "Model specification must contain the model provider and "
            + "the model name separated by a single '/'."
        )
    source = tokens[0].strip()
    if source not in sources:
        raise ValueError(
            f"Invalid model provider: '{source}'. "
            + f"Must be one of {sources}."
        )
    return source + '/' + tokens[1].strip()


class LanguageModelSettings(BaseModel):
    """
    Specification of language sources and models.

    Attributes:
        model: model specification, 'provider/model'
        temperature: float between 0.0 and 2.0
        max_tokens: max number of generated tokens
        max_retries: max number of retries, handled by the provider
            client (the pipeline itself does not retry)
        timeout: timeout when waiting for response
        provider_params: provider-specific parameters
    """

    model: str = Field(
        description="Model specification in the form "
        + "'model_provider/model' (e.g., 'OpenAI/gpt-4o')"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=2.0,
        description="Controls randomness in model responses (0.0-2.0)",
    )
    max_tokens: int | None = Field(
        default=None,
        ge=1,
        description="Maximum number of tokens to generate",
    )
    max_retries: int = Field(
        default=2,
        ge=0,
        description="Maximum number of retry attempts",
    )
    timeout: float | None = Field(
        default=None, gt=0, description="Request timeout in seconds"
    )
    provider_params: dict[str, ParameterValue] = Field(
        default_factory=dict,
        description="Provider-specific parameters (e.g., "
        + "frequency_penalty for OpenAI)",
    )

    model_config = SettingsConfigDict(frozen=True, extra='forbid')

    def __hash__(self) -> int:
        # provider_params is a dict, hashed as a sorted tuple
        return hash(
            (
                self.model,
                self.temperature,
                self.max_tokens,
                self.max_retries,
                self.timeout,
                tuple(sorted(self.provider_params.items())),
            )
        )

    def get_model_source(self) -> ModelSource:
        return self.model.split('/')[0]  # type: ignore

    def get_model_name(self) -> str:
        return self.model.split('/')[1]

    @field_validator('model', mode='after')
    @classmethod
    def validate_model_spec(cls, spec: str) -> str:
        return _validate_spec(spec, ModelSource.__args__)

    @model_validator(mode='after')
    def validate_provider_params(self) -> Self:
        """Validate provider-specific parameters based on the source."""
        ALLOWED_PARAMS = {
            'OpenAI': {
                'frequency_penalty',
                'presence_penalty',
                'top_p',
                'seed',
                'logprobs',
                'top_logprobs',
            },
            'Anthropic': {'top_p', 'top_k', 'stop_sequences'},
            'Mistral': {'top_p', 'random_seed', 'safe_mode'},
            'Gemini': {'top_p', 'top_k', 'candidate_count'},
            'Debug': {'message', 'prefix'},
        }

        source: ModelSource = self.get_model_source()
        allowed = ALLOWED_PARAMS[source]
        invalid_params = set(self.provider_params.keys()) - allowed
        if invalid_params:
            raise ValueError(
                f"Invalid provider_params for {source}: "
                + f"{invalid_params}. Allowed: {allowed}"
            )
        return self


class EmbeddingSettings(BaseModel):
    """
    Specification of the embeddings used by the vector store
    retrievers.

    Attributes:
        dense_model: embedding model specification
        size: vector size, used only by the Debug provider
    """

    dense_model: str = Field(
        description="Model specification in the form "
        + "'model_provider/model' (e.g., 'OpenAI/text-embedding-3-small')"
    )
    size: int = Field(
        default=64,
        ge=1,
        description="Embedding size of the Debug provider",
    )

    model_config = SettingsConfigDict(frozen=True, extra='forbid')

    def get_model_source(self) -> EmbeddingSource:
        return self.dense_model.split('/')[0]  # type: ignore

    def get_model_name(self) -> str:
        return self.dense_model.split('/')[1]

    @field_validator('dense_model', mode='after')
    @classmethod
    def validate_model_spec(cls, spec: str) -> str:
        return _validate_spec(spec, EmbeddingSource.__args__)


class RetrieverSettings(BaseModel):
    """
    Parameters of the retrievers created by the package.

    Attributes:
        k: number of documents returned for a query
    """

    k: int = Field(
        default=4, ge=1, description="Number of retrieved documents"
    )

    model_config = SettingsConfigDict(frozen=True, extra='forbid')


class PipelineSettings(BaseModel):
    """
    Parameters of the pipeline executor.

    Attributes:
        max_concurrency: maximum number of map stage children run
            at the same time (None: no limit beyond the thread pool
            default)
        check_types: check the declared types of adjacent stages
            when pipelines are built
        log_level: level of the package logger
    """

    max_concurrency: int | None = Field(
        default=None,
        ge=1,
        description="Maximum concurrent children of map stages",
    )
    check_types: bool = Field(
        default=True,
        description="Check adjacent stage types at construction",
    )
    log_level: LogLevel = Field(
        default='INFO', description="Level of the package logger"
    )

    model_config = SettingsConfigDict(frozen=True, extra='forbid')


class Settings(BaseSettings):
    """
    A pydantic settings object containing the configuration
    information.

    Settings are saved and read from the configuration file in TOML
    format.

    Attributes:
        major: language model answering questions
        minor: language model for auxiliary steps, such as
            rephrasing a follow up question
        embeddings: embedding model of the vector store retrievers
        retriever: retriever parameters
        pipeline: pipeline executor parameters
    """

    major: LanguageModelSettings = Field(
        default_factory=lambda: LanguageModelSettings(
            model="OpenAI/gpt-4.1-mini",
        ),
        description="Language model for answers",
    )
    minor: LanguageModelSettings = Field(
        default_factory=lambda: LanguageModelSettings(
            model="OpenAI/gpt-4.1-nano",
        ),
        description="Language model for auxiliary steps",
    )
    embeddings: EmbeddingSettings = Field(
        default_factory=lambda: EmbeddingSettings(
            dense_model="OpenAI/text-embedding-3-small"
        ),
        description="Embedding model configuration",
    )
    retriever: RetrieverSettings = Field(
        default_factory=RetrieverSettings,
        description="Retriever configuration",
    )
    pipeline: PipelineSettings = Field(
        default_factory=PipelineSettings,
        description="Pipeline executor configuration",
    )

    model_config = SettingsConfigDict(
        toml_file=DEFAULT_CONFIG_FILE,
        env_prefix=ENV_PREFIX,
        env_nested_delimiter='__',
        frozen=True,
        validate_assignment=True,
        extra='allow',
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize the order of settings sources."""
        return (
            init_settings,
            TomlConfigSettingsSource(settings_cls),
            env_settings,
        )

    def __str__(self) -> str:
        return serialize_settings(self)


def serialize_settings(sets: BaseSettings) -> str:
    """Transform the settings into a string in TOML format.

    Args:
        sets: The settings object to serialize

    Returns:
        TOML formatted string representation of settings

    Raises:
        ImportError: If tomlkit is not available
    """
    try:
        import tomlkit
    except ImportError as e:
        raise ImportError(
            "tomlkit is required for TOML serialization"
        ) from e

    doc = tomlkit.document()
    doc.add(tomlkit.comment("lmpipe configuration file"))
    doc.add(tomlkit.nl())

    data: dict[str, Any] = sets.model_dump()
    for key, value in data.items():
        if isinstance(value, dict):
            tbl = tomlkit.table()
            for kkey, vvalue in value.items():  # type: ignore
                # None cannot be represented in TOML
                if vvalue is not None:
                    tbl[kkey] = vvalue
            doc[key] = tbl
        elif value is not None:
            doc[key] = value

    return str(tomlkit.dumps(doc))  # type: ignore


def export_settings(
    settings: BaseSettings, file_path: str | Path | None = None
) -> None:
    """Save settings to file in TOML format.

    Args:
        settings: A settings object to save
        file_path: The settings file path (defaults to config.toml)

    Raises:
        ImportError: If tomlkit is not available
        OSError: If file cannot be written
    """
    file_path = Path(file_path or DEFAULT_CONFIG_FILE)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    with file_path.open("w", encoding="utf-8") as f:
        f.write(serialize_settings(settings))


def create_default_config_file(
    file_path: str | Path | None = None,
) -> None:
    """Create a settings file with the default values.

    Args:
        file_path: Target file path (defaults to config.toml)

    Example:
        ```python
        # Creates config.toml in the working folder
        create_default_config_file()

        # Creates custom config file
        create_default_config_file(file_path="custom_config.toml")
        ```
    """
    file_path = Path(file_path or DEFAULT_CONFIG_FILE)
    if file_path.exists():
        # otherwise, it will be read in
        file_path.unlink()

    export_settings(Settings(), file_path)


def print_settings(settings: BaseSettings) -> None:
    """Print settings in TOML format to stdout."""
    print(serialize_settings(settings))


def load_settings(file_path: str | Path | None = None) -> Settings:
    """Load settings from TOML file.

    Args:
        file_path: Path to settings file (defaults to config.toml)

    Returns:
        Loaded settings object

    Raises:
        FileNotFoundError: If settings file doesn't exist
        ValueError: If settings file is invalid
    """
    file_path = Path(file_path or DEFAULT_CONFIG_FILE)
    if not file_path.exists():
        raise FileNotFoundError(
            f"Settings file not found: {file_path}"
        )

    try:
        # a settings class reading from the given file
        class FileSettings(Settings):
            model_config = SettingsConfigDict(
                toml_file=str(file_path),
                env_prefix=ENV_PREFIX,
                env_nested_delimiter='__',
                frozen=True,
                validate_assignment=True,
                extra='allow',
            )

        return FileSettings()
    except Exception as e:
        raise ValueError(
            f"Failed to load settings from {file_path}:\n"
            + format_pydantic_error_message(str(e))
        ) from e


def format_pydantic_error_message(error_message: str) -> str:
    """Filter out verbose lines from pydantic error messages."""
    lines = error_message.split('\n')
    return '\n'.join(
        line
        for line in lines
        if "For further information visit" not in line
    )
