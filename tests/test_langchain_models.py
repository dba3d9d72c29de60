"""Test model creation for langchain"""

import importlib.util
import os
import unittest

from langchain_core.embeddings import DeterministicFakeEmbedding
from langchain_core.language_models.fake_chat_models import (
    GenericFakeChatModel,
)
from pydantic import ValidationError

from lmpipe.config.config import EmbeddingSettings, LanguageModelSettings
from lmpipe.language_models.langchain.models import (
    langchain_models,
    langchain_embeddings,
    create_model_from_spec,
    create_model_from_settings,
    create_embedding_model_from_spec,
    create_embedding_model_from_settings,
)


def tearDownModule():
    langchain_models.clear()
    langchain_embeddings.clear()


class TestDebugModels(unittest.TestCase):

    def test_constant_message(self):
        model = create_model_from_spec(
            "Debug/constant", provider_params={'message': "Hello"}
        )
        self.assertIsInstance(model, GenericFakeChatModel)
        self.assertEqual(model.invoke("Hi").content, "Hello")
        self.assertEqual(model.invoke("Hi again").content, "Hello")

    def test_numbered_messages(self):
        model = create_model_from_spec(
            "Debug/numbered", provider_params={'prefix': "Reply"}
        )
        first = model.invoke("Hi").content
        second = model.invoke("Hi").content
        self.assertTrue(first.startswith("Reply "))
        self.assertNotEqual(first, second)

    def test_memoized(self):
        settings = LanguageModelSettings(
            model="Debug/memo", provider_params={'message': "x"}
        )
        model = create_model_from_settings(settings)
        self.assertIs(create_model_from_settings(settings), model)
        self.assertIs(
            create_model_from_spec(
                "Debug/memo", provider_params={'message': "x"}
            ),
            model,
        )

    def test_invalid_spec(self):
        with self.assertRaises(ValidationError):
            create_model_from_spec("Cohere/command")
        with self.assertRaises(ValidationError):
            create_model_from_spec("Debug")

    def test_debug_embeddings(self):
        embeddings = create_embedding_model_from_spec(
            "Debug/fake", size=8
        )
        self.assertIsInstance(embeddings, DeterministicFakeEmbedding)
        vector = embeddings.embed_query("mitochondria")
        self.assertEqual(len(vector), 8)
        self.assertEqual(vector, embeddings.embed_query("mitochondria"))

    def test_embeddings_memoized(self):
        settings = EmbeddingSettings(dense_model="Debug/fake", size=4)
        self.assertIs(
            create_embedding_model_from_settings(settings),
            create_embedding_model_from_settings(settings),
        )


@unittest.skipUnless(
    importlib.util.find_spec("langchain_openai") is not None
    and os.getenv("OPENAI_API_KEY"),
    "langchain-openai or OpenAI API key not available",
)
class TestOpenAIModels(unittest.TestCase):

    def test_create(self):
        model = create_model_from_spec(
            "OpenAI/gpt-4o-mini", temperature=0.0, max_tokens=16
        )
        self.assertEqual(model.model_name, "gpt-4o-mini")  # type: ignore


if __name__ == '__main__':
    unittest.main()
