"""
Functions formatting retrieved documents and chat histories into the
text of prompt variables. They are used as function stages.
"""

from collections.abc import Sequence

from langchain_core.documents import Document


def format_documents_as_string(documents: Sequence[Document]) -> str:
    """Join the content of the documents, separated by blank lines."""
    return "\n\n".join(doc.page_content for doc in documents)


def format_chat_history(history: Sequence[tuple[str, str]]) -> str:
    """
    Render the dialogue turns of a chat history, given as pairs of
    human and assistant messages, one turn after the other.

    Example:
        ```python
        format_chat_history([("What is a cell?", "A unit of life.")])
        # 'Human: What is a cell?\\nAssistant: A unit of life.'
        ```

    Raises:
        ValueError: if a turn is not a pair of messages
    """
    turns: list[str] = []
    for turn in history:
        if len(turn) != 2:
            raise ValueError(
                f"A dialogue turn must be a (human, ai) pair: {turn!r}"
            )
        human, ai = turn
        turns.append(f"Human: {human}\nAssistant: {ai}")
    return "\n".join(turns)
