"""Conversational-AI collaborator."""
from beacon.llm.client import (
    BaseLLMClient,
    BedrockLLMClient,
    LLMClient,
    MockLLMClient,
    extract_json,
    get_llm_client,
)

__all__ = [
    "BaseLLMClient",
    "BedrockLLMClient",
    "LLMClient",
    "MockLLMClient",
    "extract_json",
    "get_llm_client",
]
