from dataclasses import dataclass
from functools import lru_cache
from typing import Any, List

from langchain_core.messages import BaseMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from loguru import logger

from calendar_ai.core.config import settings


@dataclass
class GeminiConfig:
    temperature: float = 1.0
    top_p: float = 0.9
    top_k: int = 40
    max_output_tokens: int = 2048


def initialize_gemini_model(api_key: str, model_name: str, config: GeminiConfig) -> ChatGoogleGenerativeAI:
    """Initialize the Gemini chat model with the given API key and configuration."""
    return ChatGoogleGenerativeAI(
        model=model_name,
        temperature=config.temperature,
        top_p=config.top_p,
        top_k=config.top_k,
        max_output_tokens=config.max_output_tokens,
        google_api_key=api_key,
    )


@lru_cache(maxsize=1)
def get_gemini_model() -> ChatGoogleGenerativeAI:
    """Get the configured Gemini model, creating it on first use."""
    config = GeminiConfig(
        temperature=settings.GEMINI_TEMPERATURE,
        top_p=settings.GEMINI_TOP_P,
        top_k=settings.GEMINI_TOP_K,
        max_output_tokens=settings.GEMINI_MAX_OUTPUT_TOKENS,
    )
    logger.info(f"Initializing Gemini model {settings.GEMINI_MODEL}")
    return initialize_gemini_model(settings.GEMINI_API_KEY, settings.GEMINI_MODEL, config)


def message_text(content: Any) -> str:
    """Flatten a chat message content (plain string or list of parts) to text"""
    if isinstance(content, str):
        return content
    parts = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


async def generate_text(messages: List[BaseMessage]) -> str:
    """
    Send chat messages to Gemini and return the reply text.

    Args:
        messages: Prompt messages, possibly with image parts

    Returns:
        The raw reply text, unparsed
    """
    response = await get_gemini_model().ainvoke(messages)
    return message_text(response.content)
