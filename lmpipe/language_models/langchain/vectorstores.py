"""
In-memory vector store retrievers.

The retrievers are created from texts or documents, embedded with
the embedding model of the settings (or a given embedding model), and
return the k documents closest to the query.

Example:
    ```python
    from lmpipe.language_models.langchain.vectorstores import (
        create_retriever_from_texts,
    )
    retriever = create_retriever_from_texts(
        [
            "mitochondria is the powerhouse of the cell",
            "mitochondria is made of lipids",
        ],
        metadatas=[{'id': 1}, {'id': 2}],
    )
    docs = retriever.invoke("What is the powerhouse of the cell?")
    ```
"""

from collections.abc import Sequence
from typing import Any

from langchain_core.documents import Document
from langchain_core.embeddings import Embeddings
from langchain_core.vectorstores import (
    InMemoryVectorStore,
    VectorStoreRetriever,
)
from langchain_text_splitters import (
    RecursiveCharacterTextSplitter,
    TextSplitter,
)

from lmpipe.config.config import Settings
from lmpipe.utils.logging import LoggerBase, get_logger
from .models import create_embedding_model_from_settings

logger: LoggerBase = get_logger(__name__)

default_splitter: TextSplitter = RecursiveCharacterTextSplitter(
    chunk_size=1000, chunk_overlap=200, add_start_index=False
)


def split_texts(
    texts: Sequence[str],
    text_splitter: TextSplitter = default_splitter,
) -> list[Document]:
    """Split long texts into documents of the size of the chunks of
    the text splitter (by default, 1000 characters with an overlap of
    200)."""
    return text_splitter.create_documents(list(texts))


def _resolve(
    embeddings: Embeddings | None,
    k: int | None,
    settings: Settings | None,
) -> tuple[Embeddings, int]:
    if embeddings is not None and k is not None:
        return embeddings, k
    settings = settings or Settings()
    if embeddings is None:
        embeddings = create_embedding_model_from_settings(
            settings.embeddings
        )
    return embeddings, k or settings.retriever.k


def create_retriever_from_documents(
    documents: Sequence[Document],
    embeddings: Embeddings | None = None,
    *,
    k: int | None = None,
    text_splitter: TextSplitter | None = None,
    settings: Settings | None = None,
    logger: LoggerBase = logger,
) -> VectorStoreRetriever:
    """
    Create a retriever over an in-memory vector store containing the
    documents.

    Args:
        documents: the documents to store
        embeddings: the embedding model. Defaults to the model of the
            embeddings section of the settings
        k: the number of documents returned by a query. Defaults to
            the retriever section of the settings
        settings: the settings. Defaults to those read from
            config.toml
        text_splitter: splits the documents before they are stored.
            None stores the documents as they are
        logger: reports the creation of the store

    Raises:
        ValueError: for an empty document list, or k smaller than 1
    """
    if not documents:
        raise ValueError("Cannot create a retriever without documents")
    if k is not None and k < 1:
        raise ValueError(f"Invalid number of retrieved documents: {k}")
    embeddings, k = _resolve(embeddings, k, settings)
    if text_splitter is not None:
        documents = text_splitter.split_documents(list(documents))

    store = InMemoryVectorStore(embedding=embeddings)
    store.add_documents(list(documents))
    logger.info(
        f"Created in-memory vector store with {len(documents)} documents"
    )
    return store.as_retriever(search_kwargs={'k': k})


def create_retriever_from_texts(
    texts: Sequence[str],
    metadatas: Sequence[dict[str, Any]] | None = None,
    embeddings: Embeddings | None = None,
    *,
    k: int | None = None,
    settings: Settings | None = None,
    logger: LoggerBase = logger,
) -> VectorStoreRetriever:
    """
    Create a retriever over an in-memory vector store containing the
    texts, with optional metadata for each text.

    Raises:
        ValueError: if metadatas and texts differ in length, or as
            create_retriever_from_documents
    """
    if metadatas is not None and len(metadatas) != len(texts):
        raise ValueError(
            f"Got {len(metadatas)} metadata entries for "
            + f"{len(texts)} texts"
        )
    documents = [
        Document(
            page_content=text,
            metadata=dict(metadatas[i]) if metadatas else {},
        )
        for i, text in enumerate(texts)
    ]
    return create_retriever_from_documents(
        documents, embeddings, k=k, settings=settings, logger=logger
    )
