"""Unit tests for OpenAIEmbeddingProvider with a mocked async client."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from drive_knowledge.config.settings import Settings
from drive_knowledge.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from drive_knowledge.utils.errors import EmbeddingError


def _response(vectors: list[list[float]], reverse: bool = False) -> SimpleNamespace:
    data = [SimpleNamespace(index=i, embedding=v) for i, v in enumerate(vectors)]
    if reverse:
        data.reverse()
    return SimpleNamespace(data=data, usage=SimpleNamespace(total_tokens=7))


def _client(side_effect) -> MagicMock:
    client = MagicMock()
    client.embeddings.create = AsyncMock(side_effect=side_effect)
    return client


class TestOpenAIEmbeddingProvider:
    @pytest.mark.asyncio
    async def test_embed_restores_input_order(self) -> None:
        client = _client([_response([[1.0], [2.0], [3.0]], reverse=True)])
        provider = OpenAIEmbeddingProvider(Settings(openai_api_key="sk-test"), client=client)

        assert await provider.embed(["a", "b", "c"]) == [[1.0], [2.0], [3.0]]
        kwargs = client.embeddings.create.await_args.kwargs
        assert kwargs["input"] == ["a", "b", "c"]
        assert kwargs["model"] == "text-embedding-ada-002"

    @pytest.mark.asyncio
    async def test_embed_empty_makes_no_call(self) -> None:
        client = _client([])
        provider = OpenAIEmbeddingProvider(Settings(openai_api_key="sk-test"), client=client)

        assert await provider.embed([]) == []
        client.embeddings.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_large_input_is_split(self) -> None:
        texts = [f"t{i}" for i in range(2050)]

        def respond(input, model):  # noqa: A002 - mirrors the SDK keyword
            return _response([[float(len(input))]] * len(input))

        client = _client(respond)
        provider = OpenAIEmbeddingProvider(Settings(openai_api_key="sk-test"), client=client)

        vectors = await provider.embed(texts)

        assert len(vectors) == 2050
        assert client.embeddings.create.await_count == 2
        assert vectors[0] == [2048.0]
        assert vectors[-1] == [2.0]

    @pytest.mark.asyncio
    async def test_api_error_becomes_embedding_error(self) -> None:
        error = openai.APIConnectionError(request=httpx.Request("POST", "https://api.test/embeddings"))
        provider = OpenAIEmbeddingProvider(Settings(openai_api_key="sk-test"), client=_client(error))

        with pytest.raises(EmbeddingError, match="openai_embedding API error"):
            await provider.embed(["a"])

    @pytest.mark.asyncio
    async def test_embed_single(self) -> None:
        client = _client([_response([[0.5, 0.5]])])
        provider = OpenAIEmbeddingProvider(Settings(openai_api_key="sk-test"), client=client)

        assert await provider.embed_single("hello") == [0.5, 0.5]

    def test_dimension_follows_model(self) -> None:
        settings = Settings(openai_api_key="sk-test", openai_embedding_model="text-embedding-3-large")
        assert OpenAIEmbeddingProvider(settings, client=MagicMock()).get_dimension() == 3072

    def test_compatible_endpoint_label_and_availability(self) -> None:
        settings = Settings(openai_base_url="http://localhost:8080/v1", openai_embedding_model="BAAI/bge-base-en-v1.5")
        provider = OpenAIEmbeddingProvider(settings, client=MagicMock())

        assert provider.get_provider_name() == "openai-compatible_embedding"
        assert provider.get_dimension() == 768
        assert provider.is_available() is False
