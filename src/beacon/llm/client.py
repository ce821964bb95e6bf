"""
LLM Client

Conversational-AI collaborator (Bedrock, Mock) behind one ``interpret``
call. Callers bound every call with a timeout and fall back to
deterministic keyword rules when it fails or returns something unusable.
"""

import asyncio
import json
import re
from abc import ABC, abstractmethod
from typing import Any

import structlog
from botocore.exceptions import BotoCoreError, ClientError

from beacon.config import LLMSettings, get_settings
from beacon.errors import DependencyError

logger = structlog.get_logger(__name__)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def extract_json(text: str) -> dict[str, Any] | None:
    """Parse a JSON object from a model answer, tolerating surrounding prose."""
    if not text:
        return None
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        match = _JSON_OBJECT.search(text)
        if not match:
            return None
        try:
            parsed = json.loads(match.group())
        except json.JSONDecodeError:
            return None
    return parsed if isinstance(parsed, dict) else None


class BaseLLMClient(ABC):
    """Abstract base class for LLM clients."""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        """Generate a response from the LLM."""
        pass


class MockLLMClient(BaseLLMClient):
    """
    Mock LLM client for local development and testing.

    Answers with the first scripted response whose key occurs in the
    prompt, and with an empty string otherwise, which every caller treats
    as "use the keyword fallback".
    """

    def __init__(self, scripted: dict[str, str] | None = None):
        self.scripted = dict(scripted or {})
        self.calls: list[str] = []
        logger.info("Initialized Mock LLM client")

    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        logger.debug("Mock LLM generate", prompt_length=len(prompt))
        self.calls.append(prompt)

        haystack = f"{system_prompt or ''}\n{prompt}".lower()
        for key, response in self.scripted.items():
            if key.lower() in haystack:
                return response
        return ""


class BedrockLLMClient(BaseLLMClient):
    """
    AWS Bedrock client using the Converse API (Amazon Nova by default).

    boto3 is synchronous, so calls run in a worker thread and stay
    cancellable by the caller's timeout.
    """

    def __init__(self, settings: LLMSettings | None = None):
        import boto3

        settings = settings or get_settings().llm

        self.client = boto3.client(
            "bedrock-runtime",
            region_name=settings.aws_region,
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key.get_secret_value()
                if settings.aws_secret_access_key else None,
        )
        self.model_id = settings.bedrock_model_id
        self.max_tokens = settings.max_tokens
        self.temperature = settings.temperature

        logger.info(
            "Initialized Bedrock LLM client",
            model_id=self.model_id,
            region=settings.aws_region,
        )

    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        """Generate a response using Bedrock."""
        request: dict[str, Any] = {
            "modelId": self.model_id,
            "messages": [{"role": "user", "content": [{"text": prompt}]}],
            "inferenceConfig": {
                "maxTokens": max_tokens or self.max_tokens,
                "temperature": temperature if temperature is not None else self.temperature,
            },
        }
        if system_prompt:
            request["system"] = [{"text": system_prompt}]

        logger.debug("Bedrock generate", model=self.model_id, prompt_length=len(prompt))

        try:
            response = await asyncio.to_thread(self.client.converse, **request)
        except (BotoCoreError, ClientError) as e:
            logger.error("Bedrock call failed", model=self.model_id, error=str(e))
            raise DependencyError("AI service unavailable") from e

        try:
            return response["output"]["message"]["content"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise DependencyError("AI service returned an unexpected payload") from e


class LLMClient:
    """
    Unified LLM client that delegates to the configured provider.

    Usage:
        client = LLMClient()
        answer = await client.interpret(INTENT_PROMPT, "How many participants are on MAT?")
    """

    def __init__(self, backend: BaseLLMClient | None = None, settings: LLMSettings | None = None):
        settings = settings or get_settings().llm

        if backend is not None:
            self._client = backend
            self.provider = type(backend).__name__
            return

        provider = settings.llm_provider
        if provider == "mock":
            self._client = MockLLMClient()
        elif provider == "bedrock":
            self._client = BedrockLLMClient(settings)
        else:
            raise ValueError(f"Unknown LLM provider: {provider}")

        self.provider = provider

    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        """Generate a response from the configured LLM."""
        return await self._client.generate(
            prompt=prompt,
            system_prompt=system_prompt,
            max_tokens=max_tokens,
            temperature=temperature,
        )

    async def interpret(self, prompt: str, text: str) -> str:
        """Apply an instruction ``prompt`` to user ``text`` and return the raw answer."""
        return await self.generate(text, system_prompt=prompt)


# Singleton instance
_llm_client: LLMClient | None = None


def get_llm_client() -> LLMClient:
    """Get the singleton LLM client instance."""
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient()
    return _llm_client
