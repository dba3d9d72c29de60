"""Test the ready-made pipelines"""

import asyncio
import logging
import unittest

from pydantic import Field
from langchain_core.documents import Document
from langchain_core.retrievers import BaseRetriever

from lmpipe.config import Settings
from lmpipe.language_models.langchain.models import create_model_from_spec
from lmpipe.language_models.langchain.vectorstores import (
    create_retriever_from_texts,
)
from lmpipe.pipeline import PipelineObserver, StageExecutionError
from lmpipe.recipes import (
    create_conversational_retrieval_chain,
    create_llm_chain,
    create_retrieval_map_chain,
    create_standalone_question_chain,
    create_streaming_qa_chain,
    format_chat_history,
    format_documents_as_string,
)
from lmpipe.utils.logging import LoglistLogger, set_log_level


def debug_model(message: str):
    return create_model_from_spec(
        "Debug/recipes", provider_params={'message': message}
    )


debug_settings = Settings(
    major={'model': "Debug/major", 'provider_params': {'message': "A"}},
    minor={'model': "Debug/minor", 'provider_params': {'message': "Q"}},
    embeddings={'dense_model': "Debug/embeddings", 'size': 16},
    retriever={'k': 1},
)


class CountingRetriever(BaseRetriever):
    documents: list[Document] = Field(default_factory=list)
    queries: list[str] = Field(default_factory=list)

    def _get_relevant_documents(self, query, *, run_manager):
        self.queries.append(query)
        return self.documents


class EndRecorder(PipelineObserver):
    def __init__(self) -> None:
        self.outputs = {}

    def on_stage_end(self, event):
        self.outputs[event.path] = event.value


DOCS = [
    Document(page_content="mitochondria is the powerhouse of the cell"),
    Document(page_content="mitochondria is made of lipids"),
]

HISTORY = [
    (
        "What is the powerhouse of the cell?",
        "The powerhouse of the cell is the mitochondria.",
    )
]


class TestFormatting(unittest.TestCase):

    def test_format_documents(self):
        self.assertEqual(
            format_documents_as_string(DOCS),
            "mitochondria is the powerhouse of the cell\n\n"
            + "mitochondria is made of lipids",
        )
        self.assertEqual(format_documents_as_string([]), "")

    def test_format_chat_history(self):
        self.assertEqual(
            format_chat_history(HISTORY),
            "Human: What is the powerhouse of the cell?\n"
            + "Assistant: The powerhouse of the cell is the mitochondria.",
        )
        self.assertEqual(format_chat_history([]), "")

    def test_invalid_turn(self):
        with self.assertRaises(ValueError):
            format_chat_history([("only human",)])  # type: ignore


class TestLLMChain(unittest.TestCase):

    def test_translator(self):
        chain = create_llm_chain(
            "translator",
            debug_model("J'adore la programmation."),
            settings=debug_settings,
        )
        result = chain.invoke(
            {
                'input_language': "English",
                'output_language': "French",
                'text': "I love programming.",
            }
        )
        self.assertEqual(result, {'text': "J'adore la programmation."})

    def test_model_from_settings(self):
        chain = create_llm_chain("translator", settings=debug_settings)
        result = chain.invoke(
            {
                'input_language': "English",
                'output_language': "French",
                'text': "I love programming.",
            }
        )
        self.assertEqual(result, {'text': "A"})

    def test_missing_variable(self):
        chain = create_llm_chain("translator", settings=debug_settings)
        with self.assertRaises(StageExecutionError) as context:
            chain.invoke({'text': "I love programming."})
        self.assertEqual(context.exception.position, 0)

    def test_verbose(self):
        logger = LoglistLogger()
        chain = create_llm_chain(
            "translator",
            settings=debug_settings,
            verbose=True,
            tags=["example"],
            logger=logger,
        )
        chain.invoke(
            {
                'input_language': "English",
                'output_language': "French",
                'text': "I love programming.",
            }
        )
        logs = logger.get_logs()
        self.assertEqual(len(logs), 6)
        self.assertIn("example", logs[0])


class TestRetrievalMapChain(unittest.TestCase):

    def test_answer_in_language(self):
        retriever = CountingRetriever(documents=DOCS[:1])
        recorder = EndRecorder()
        chain = create_retrieval_map_chain(
            retriever,
            debug_model("Mitochondrien sind das Kraftwerk der Zelle."),
            settings=debug_settings,
        )
        result = chain.invoke(
            {
                'question': "What is the powerhouse of the cell?",
                'language': "German",
            },
            observers=[recorder],
        )
        self.assertEqual(result, "Mitochondrien sind das Kraftwerk der Zelle.")
        self.assertEqual(
            retriever.queries, ["What is the powerhouse of the cell?"]
        )
        self.assertEqual(
            recorder.outputs[(0,)],
            {
                'context': DOCS[0].page_content,
                'question': "What is the powerhouse of the cell?",
                'language': "German",
            },
        )
        prompt = recorder.outputs[(1,)].to_string()
        self.assertIn("Answer in the following language: German", prompt)

    def test_vector_store_retriever(self):
        retriever = create_retriever_from_texts(
            [
                "mitochondria is the powerhouse of the cell",
                "mitochondria is made of lipids",
            ],
            metadatas=[{'id': 1}, {'id': 2}],
            settings=debug_settings,
            logger=LoglistLogger(),
        )
        recorder = EndRecorder()
        chain = create_retrieval_map_chain(retriever, settings=debug_settings)
        result = chain.invoke(
            {'question': "What is the powerhouse?", 'language': "German"},
            observers=[recorder],
        )
        self.assertEqual(result, "A")
        context = recorder.outputs[(0,)]['context']
        self.assertIn(
            context,
            [
                "mitochondria is the powerhouse of the cell",
                "mitochondria is made of lipids",
            ],
        )


class TestConversationalRetrievalChain(unittest.TestCase):

    def test_retriever_called_once_with_standalone_question(self):
        retriever = CountingRetriever(documents=DOCS)
        recorder = EndRecorder()
        chain = create_conversational_retrieval_chain(
            retriever,
            model=debug_model("Mitochondria are made out of lipids."),
            condense_model=debug_model("Q"),
            settings=debug_settings,
        )
        result = chain.invoke(
            {'question': "What are they made out of?", 'chat_history': HISTORY},
            observers=[recorder],
        )
        self.assertEqual(result, "Mitochondria are made out of lipids.")
        self.assertEqual(retriever.queries, ["Q"])

        # output of the standalone question chain
        self.assertEqual(recorder.outputs[(0,)], "Q")
        condense_prompt = recorder.outputs[(0, 1)].to_string()
        self.assertIn(format_chat_history(HISTORY), condense_prompt)
        self.assertIn("What are they made out of?", condense_prompt)

        # answer prompt composed from the retrieved context
        self.assertEqual(
            recorder.outputs[(1, 0)],
            {
                'context': format_documents_as_string(DOCS),
                'question': "Q",
            },
        )

    def test_empty_history(self):
        retriever = CountingRetriever(documents=DOCS)
        chain = create_conversational_retrieval_chain(
            retriever, settings=debug_settings
        )
        result = chain.invoke(
            {'question': "What is the powerhouse?", 'chat_history': []}
        )
        self.assertEqual(result, "A")
        self.assertEqual(retriever.queries, ["Q"])

    def test_standalone_question_chain(self):
        chain = create_standalone_question_chain(settings=debug_settings)
        self.assertEqual(chain.invoke({'question': "Why?"}), "Q")

    def test_ainvoke(self):
        retriever = CountingRetriever(documents=DOCS)
        chain = create_conversational_retrieval_chain(
            retriever, settings=debug_settings
        )
        result = asyncio.run(
            chain.ainvoke({'question': "Why?", 'chat_history': HISTORY})
        )
        self.assertEqual(result, "A")
        self.assertEqual(retriever.queries, ["Q"])

    def test_retriever_failure_position(self):
        def failing_retriever(query):
            raise ConnectionError("index unavailable")

        chain = create_conversational_retrieval_chain(
            failing_retriever, settings=debug_settings
        )
        with self.assertRaises(StageExecutionError) as context:
            chain.invoke({'question': "Why?", 'chat_history': []})
        error = context.exception
        self.assertEqual(error.position, 1)
        self.assertEqual(error.path, (1, 0, 'context', 0))
        self.assertIsInstance(error.cause, ConnectionError)


class TestStreamingQAChain(unittest.TestCase):

    answer = "The president honored Justice Stephen Breyer for his service."

    def test_stream_equals_invoke(self):
        retriever = CountingRetriever(documents=DOCS)
        chain = create_streaming_qa_chain(
            retriever, debug_model(self.answer), settings=debug_settings
        )
        inputs = {'question': "What did the president say?"}
        chunks = list(chain.stream(inputs))
        self.assertGreater(len(chunks), 1)
        self.assertEqual("".join(chunks), self.answer)
        self.assertEqual(chain.invoke(inputs), self.answer)
        self.assertEqual(
            retriever.queries, ["What did the president say?"] * 2
        )

    def test_chat_history_default(self):
        retriever = CountingRetriever(documents=DOCS)
        recorder = EndRecorder()
        chain = create_streaming_qa_chain(
            retriever, debug_model(self.answer), settings=debug_settings
        )
        chain.stream({'question': "Why?"}, observers=[recorder]).collect()
        self.assertEqual(recorder.outputs[(0,)]['chatHistory'], "")

    def test_astream(self):
        retriever = CountingRetriever(documents=DOCS)
        chain = create_streaming_qa_chain(
            retriever, debug_model(self.answer), settings=debug_settings
        )
        result = asyncio.run(chain.astream({'question': "Why?"}).collect())
        self.assertEqual(result, self.answer)

    def test_cancel_stream(self):
        retriever = CountingRetriever(documents=DOCS)
        chain = create_streaming_qa_chain(
            retriever, debug_model(self.answer), settings=debug_settings
        )
        cursor = chain.stream({'question': "Why?"})
        self.assertEqual(cursor.next(), "The")
        cursor.cancel()
        self.assertTrue(cursor.done)


class TestPackageLogLevel(unittest.TestCase):

    def setUp(self):
        set_log_level("INFO")

    def tearDown(self):
        set_log_level("INFO")

    def test_default_settings_keep_level(self):
        logging.getLogger("lmpipe").setLevel(logging.WARNING)
        create_llm_chain("translator", debug_model("Bonjour"))
        self.assertEqual(
            logging.getLogger("lmpipe").level, logging.WARNING
        )

    def test_given_settings_set_level(self):
        settings = Settings(pipeline={'log_level': "ERROR"})
        create_llm_chain(
            "translator", debug_model("Bonjour"), settings=settings
        )
        self.assertEqual(logging.getLogger("lmpipe").level, logging.ERROR)


if __name__ == '__main__':
    unittest.main()
