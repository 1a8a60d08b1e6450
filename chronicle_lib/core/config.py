"""
Chronicle - Configuration and setup.

This module loads settings from the environment and builds the chat model
used by the text generator. Nothing here is global mutable state: callers
get an ``LLMConfig`` from ``load_llm_config`` and pass it along explicitly.
"""

# Standard library imports
import os
from pathlib import Path
from typing import Optional

# Third party imports
from dotenv import load_dotenv
from langchain_anthropic import ChatAnthropic
from langchain_core.language_models import BaseChatModel
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_openai import ChatOpenAI
from pydantic import ValidationError

# Local imports
from chronicle_lib.config_models import LLMConfig
from chronicle_lib.core.constants import ConfigDefaults
from chronicle_lib.core.exceptions import ConfigurationError, MissingCredentialError
from chronicle_lib.core.logger import config_logger as logger

# Load environment variables
load_dotenv()

MODEL_PROVIDER_OPTIONS = ["gemini", "openai", "anthropic"]

# Model configurations for each provider
MODEL_CONFIGS = {
    "gemini": {
        "default_model": "gemini-2.5-flash",
        "env_key": "GEMINI_API_KEY",
        "max_tokens": 65536,
    },
    "openai": {
        "default_model": "gpt-4.1-mini",
        "env_key": "OPENAI_API_KEY",
        "max_tokens": 32768,
    },
    "anthropic": {
        "default_model": "claude-sonnet-4",
        "env_key": "ANTHROPIC_API_KEY",
        "max_tokens": 64000,
    },
}

DATABASE_PATH = os.environ.get(
    "CHRONICLE_DATABASE_PATH", str(Path.home() / ".chronicle" / "chronicle.db")
)
DEFAULT_LOG_LEVEL = os.environ.get("CHRONICLE_LOG_LEVEL", "INFO")


def load_llm_config(
    provider: Optional[str] = None,
    model: Optional[str] = None,
    **overrides,
) -> LLMConfig:
    """
    Build an LLM configuration from arguments and the environment.

    Explicit arguments take precedence over ``MODEL_PROVIDER``,
    ``DEFAULT_MODEL_PROVIDER`` and ``DEFAULT_MODEL``.

    Args:
        provider: The model provider to use (gemini, openai, anthropic)
        model: The model name to use
        **overrides: Any other ``LLMConfig`` field

    Returns:
        A validated configuration

    Raises:
        ConfigurationError: If the resulting values are invalid
    """
    provider = (
        provider
        or os.environ.get("MODEL_PROVIDER")
        or os.environ.get("DEFAULT_MODEL_PROVIDER")
        or ConfigDefaults.DEFAULT_MODEL_PROVIDER
    )
    if provider not in MODEL_PROVIDER_OPTIONS:
        raise ConfigurationError(
            f"Unsupported provider '{provider}'. Choose one of {', '.join(MODEL_PROVIDER_OPTIONS)}."
        )

    provider_config = MODEL_CONFIGS[provider]
    values = {
        "provider": provider,
        "model": model or os.environ.get("DEFAULT_MODEL") or provider_config["default_model"],
        "api_key": overrides.pop("api_key", None) or os.environ.get(provider_config["env_key"]),
    }
    values.update(overrides)

    try:
        return LLMConfig(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid LLM configuration: {e}") from e


def get_llm(config: LLMConfig) -> BaseChatModel:
    """
    Get a chat model instance for the given configuration.

    Args:
        config: The LLM configuration

    Returns:
        A configured LLM instance

    Raises:
        MissingCredentialError: If no API key is configured for the provider
    """
    provider_config = MODEL_CONFIGS[config.provider]
    if not config.api_key:
        raise MissingCredentialError(
            f"No API key found for {config.provider}. "
            f"Please set {provider_config['env_key']} in your .env file.",
            provider=config.provider,
        )

    model_name = config.model or provider_config["default_model"]
    tokens = min(config.max_tokens, provider_config["max_tokens"])
    logger.info(f"Initializing {config.provider} model {model_name}")

    if config.provider == "gemini":
        return ChatGoogleGenerativeAI(
            model=model_name,
            temperature=config.temperature,
            google_api_key=config.api_key,
            max_output_tokens=tokens,
        )
    elif config.provider == "openai":
        return ChatOpenAI(
            model=model_name,
            temperature=config.temperature,
            api_key=config.api_key,
            max_tokens=tokens,
        )
    elif config.provider == "anthropic":
        return ChatAnthropic(
            model=model_name,
            temperature=config.temperature,
            api_key=config.api_key,
            max_tokens=tokens,
        )
    raise ConfigurationError(f"Unsupported provider: {config.provider}")
