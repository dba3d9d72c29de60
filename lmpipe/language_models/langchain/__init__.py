# pyright: reportUnusedImport=false
# flake8: noqa

from .models import (
    langchain_models,
    langchain_embeddings,
    create_model_from_settings,
    create_model_from_spec,
    create_embedding_model_from_settings,
    create_embedding_model_from_spec,
)
from .stages import (
    ExternalStage,
    PromptStage,
    ModelStage,
    RetrieverStage,
    as_stage,
)
from .vectorstores import (
    create_retriever_from_documents,
    create_retriever_from_texts,
    split_texts,
)
