"""LLM provider abstraction using LangChain."""

from typing import Literal

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_openai import ChatOpenAI

import config

Provider = Literal["openai", "anthropic"]


def get_chat_model(
    provider: Provider | None = None,
    model: str | None = None,
    **kwargs,
) -> BaseChatModel:
    """Get a text chat model used to write edit instructions.

    Args:
        provider: LLM provider ("openai" or "anthropic"). Uses config default if None.
        model: Model name. Uses the configured chat model if None.
        **kwargs: Additional arguments passed to the model constructor.

    Returns:
        LangChain chat model instance.
    """
    provider = provider or config.LLM_PROVIDER

    if provider == "openai":
        return ChatOpenAI(
            model=model or config.OPENAI_CHAT_MODEL,
            api_key=config.OPENAI_API_KEY,
            **kwargs,
        )
    elif provider == "anthropic":
        return ChatAnthropic(
            model=model or config.ANTHROPIC_CHAT_MODEL,
            api_key=config.ANTHROPIC_API_KEY,
            **kwargs,
        )
    else:
        raise ValueError(f"Unknown provider: {provider}. Use 'openai' or 'anthropic'.")


def get_vision_model(
    provider: Provider | None = None,
    **kwargs,
) -> BaseChatModel:
    """Get a vision-capable chat model used to score assets.

    Scoring wants repeatable answers, so temperature defaults to 0.2.
    """
    provider = provider or config.LLM_PROVIDER
    kwargs.setdefault("temperature", 0.2)

    if provider == "openai":
        return ChatOpenAI(
            model=config.OPENAI_VISION_MODEL,
            api_key=config.OPENAI_API_KEY,
            max_tokens=2000,
            **kwargs,
        )
    elif provider == "anthropic":
        return ChatAnthropic(
            model=config.ANTHROPIC_VISION_MODEL,
            api_key=config.ANTHROPIC_API_KEY,
            max_tokens=2000,
            **kwargs,
        )
    else:
        raise ValueError(f"Unknown provider: {provider}")
