# pyright: reportUnusedImport=false
# flake8: noqa

from .formatting import format_documents_as_string, format_chat_history
from .chains import (
    create_llm_chain,
    create_retrieval_map_chain,
    create_standalone_question_chain,
    create_conversational_retrieval_chain,
    create_streaming_qa_chain,
)
