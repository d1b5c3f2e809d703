"""
LLM Factory - Creates the model provider for a session.
"""

from typing import Optional

from loguru import logger

from devify.core.config import Config
from devify.llm.base_client import ModelProvider
from devify.llm.mock_client import ScriptedProvider, demo_script
from devify.llm.openai_client import OpenAIProvider


class LLMFactory:
    """Factory for creating model providers."""

    @staticmethod
    def create_provider(
        config: Optional[Config] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> ModelProvider:
        """
        Create a provider based on configuration.

        Args:
            config: Configuration object (defaults to the global config)
            model: Model identifier (defaults to config.default_model)
            temperature: Sampling temperature

        Returns:
            Initialized provider

        Raises:
            ValueError: If no API key or endpoint is configured
        """
        from devify.core.config import config as default_config

        config = config or default_config
        model = model or config.default_model
        temperature = temperature if temperature is not None else config.temperature

        # Short-circuit to the scripted provider when offline mode is enabled
        if config.mock_mode:
            logger.warning("Mock mode active - using ScriptedProvider.")
            return ScriptedProvider(responses=demo_script())

        if not config.openai_api_key and not config.base_url:
            raise ValueError(
                "No model provider configured. Set OPENAI_API_KEY, or BASE_URL for a local "
                "OpenAI-compatible server, or run with --mock."
            )

        logger.info(f"Creating provider for model: {model}")
        return OpenAIProvider(
            api_key=config.openai_api_key,
            model=model,
            base_url=config.base_url,
            temperature=temperature,
            max_tokens=config.max_tokens,
            timeout=config.request_timeout,
        )


def create_provider(config: Optional[Config] = None, model: Optional[str] = None) -> ModelProvider:
    """Shortcut for LLMFactory.create_provider."""
    return LLMFactory.create_provider(config=config, model=model)
