"""Orchestrator.

Resolves models, drives the streaming tool-call pipeline and serves the
HTTP API.
"""

from orchestrator.llm import LLMProvider, MockLLMProvider, create_llm_provider
from orchestrator.model_gateway import ModelConfig, ModelGateway
from orchestrator.streaming import ChatRequest, ChatStream, StreamingOrchestrator

__all__ = [
    "LLMProvider",
    "MockLLMProvider",
    "create_llm_provider",
    "ModelConfig",
    "ModelGateway",
    "ChatRequest",
    "ChatStream",
    "StreamingOrchestrator",
]
