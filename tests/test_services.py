"""Tests for service wiring and the LLM client facade."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from beacon.config import LLMSettings
from beacon.errors import DependencyError
from beacon.llm.client import BedrockLLMClient, LLMClient, MockLLMClient, extract_json
from beacon.services import Services, create_postgres_services
from beacon.store.postgres import PostgresStore


def test_services_share_one_store_and_audit(services, store):
    assert services.store is store
    assert services.consents._audit is services.audit
    assert services.disclosures._ledger is services.consents
    assert services.sensitive._ledger is services.consents


@pytest.mark.asyncio
async def test_create_postgres_services():
    pool = MagicMock()
    with patch("beacon.services.asyncpg.create_pool", AsyncMock(return_value=pool)) as create_pool:
        services, returned_pool = await create_postgres_services()

    assert returned_pool is pool
    assert isinstance(services.store, PostgresStore)
    assert services.store.pool is pool
    create_pool.assert_awaited_once()


class TestLLMClient:

    def test_extract_json(self):
        assert extract_json('```json\n{"a": 1}\n```') == {"a": 1}
        assert extract_json("") is None
        assert extract_json("no json here") is None

    @pytest.mark.asyncio
    async def test_mock_records_calls(self):
        backend = MockLLMClient({"hello": "world"})
        client = LLMClient(backend=backend)

        assert await client.interpret("system says hello", "user text") == "world"
        assert await client.interpret("other", "text") == ""
        assert backend.calls == ["user text", "text"]
        assert client.provider == "MockLLMClient"

    def test_default_provider_is_mock(self):
        client = LLMClient(settings=LLMSettings(llm_provider="mock"))

        assert client.provider == "mock"

    @pytest.mark.asyncio
    async def test_bedrock_converse(self):
        with patch("boto3.client") as boto_client:
            runtime = boto_client.return_value
            runtime.converse.return_value = {
                "output": {"message": {"content": [{"text": "answer"}]}},
            }
            client = BedrockLLMClient(LLMSettings(llm_provider="bedrock"))

            text = await client.generate("question", system_prompt="be brief")

        assert text == "answer"
        kwargs = runtime.converse.call_args.kwargs
        assert kwargs["system"] == [{"text": "be brief"}]
        assert kwargs["messages"][0]["content"] == [{"text": "question"}]

    @pytest.mark.asyncio
    async def test_bedrock_errors_become_dependency_errors(self):
        with patch("boto3.client") as boto_client:
            boto_client.return_value.converse.side_effect = ClientError(
                {"Error": {"Code": "ThrottlingException", "Message": "slow down"}},
                "Converse",
            )
            client = BedrockLLMClient(LLMSettings(llm_provider="bedrock"))

            with pytest.raises(DependencyError):
                await client.generate("question")

    def test_services_create_uses_provider(self, store, encryptor, clock):
        services = Services.create(store, llm=LLMClient(backend=MockLLMClient()), encryptor=encryptor, clock=clock)

        assert services.queries is not None
        assert services.crisis is not None
