"""LLM provider integrations for Devify."""

from devify.llm.base_client import ModelProvider, ModelStream, StreamChunk, Completion
from devify.llm.llm_factory import create_provider

__all__ = ["ModelProvider", "ModelStream", "StreamChunk", "Completion", "create_provider"]
