"""
Chronicle - Generative text service client.

``TextGenerator`` wraps a langchain chat model with the behaviour every
caller relies on:

* each attempt is bounded by a wall-clock timeout; a timed-out request is
  abandoned, not cancelled, and its late result is discarded
* transient failures are retried with a linearly growing, capped delay
* quota and credential errors fail immediately with an actionable message
* once retries are exhausted, connection problems surface as
  ``LLMConnectionError`` with remediation hints
"""

# Standard library imports
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, Iterator, Optional, Type, TypeVar

# Third party imports
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage
from pydantic import BaseModel

# Local imports
from chronicle_lib.config_models import LLMConfig
from chronicle_lib.core.config import get_llm
from chronicle_lib.core.exceptions import (
    CONNECTION_MESSAGE,
    ChronicleException,
    LLMConnectionError,
    LLMResponseError,
    LLMTimeoutError,
    classify_llm_error,
    is_retryable,
)
from chronicle_lib.core.logger import llm_logger as logger
from chronicle_lib.utils.parser import parse_structured_output

ModelT = TypeVar("ModelT", bound=BaseModel)


def message_text(message: Any) -> str:
    """Plain text of a chat message or chunk.

    Some providers return the content as a list of parts; only text parts
    are kept.
    """
    content = message.content if isinstance(message, BaseMessage) else message
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type", "text") == "text":
                parts.append(part.get("text", ""))
        return "".join(parts)
    return str(content or "")


class TextGenerator:
    """Client for the generative text service.

    Args:
        config: Connection, timeout and retry settings
        chat_model: A ready chat model; built from ``config`` when omitted
    """

    def __init__(self, config: LLMConfig, chat_model: Optional[BaseChatModel] = None):
        self.config = config
        self._chat_model = chat_model

    @property
    def chat_model(self) -> BaseChatModel:
        if self._chat_model is None:
            self._chat_model = get_llm(self.config)
        return self._chat_model

    def _invoke_once(self, prompt: str) -> str:
        # One worker per attempt: an abandoned request must not hold up later ones
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="chronicle-llm")
        future = executor.submit(self.chat_model.invoke, [HumanMessage(content=prompt)])
        try:
            response = future.result(timeout=self.config.timeout_seconds)
        except FuturesTimeoutError:
            raise LLMTimeoutError(
                f"请求超时（{self.config.timeout_seconds:g}秒）",
                timeout=self.config.timeout_seconds,
            )
        finally:
            executor.shutdown(wait=False)
        return message_text(response)

    def generate(self, prompt: str) -> str:
        """
        Generate text for a prompt.

        Args:
            prompt: The full prompt

        Returns:
            The generated text

        Raises:
            InvalidCredentialError: The provider rejected the API key
            MissingCredentialError: No API key is configured
            LLMQuotaError: Quota or rate limit exhausted
            LLMConnectionError: The service stayed unreachable after retries
            LLMResponseError: Any other failure after retries
        """
        attempts = self.config.max_retries + 1
        last_error: Optional[ChronicleException] = None

        for attempt in range(attempts):
            try:
                text = self._invoke_once(prompt)
                logger.debug(f"Generated {len(text)} characters (attempt {attempt + 1})")
                return text
            except Exception as e:
                error = classify_llm_error(e, context="generate")
                if not is_retryable(error):
                    logger.error(f"LLM request failed permanently: {error}")
                    if error is e:
                        raise
                    raise error from e

                last_error = error
                if attempt < attempts - 1:
                    delay = self.config.retry_delay(attempt)
                    logger.warning(
                        f"LLM attempt {attempt + 1}/{attempts} failed: {error}. "
                        f"Retrying in {delay:g}s"
                    )
                    time.sleep(delay)

        logger.error(f"LLM request failed after {attempts} attempt(s): {last_error}")
        if isinstance(last_error, LLMConnectionError):
            raise LLMConnectionError(
                f"{CONNECTION_MESSAGE}\n\n原始错误：{last_error}",
                details={"attempts": attempts},
            ) from last_error
        raise LLMResponseError(f"生成失败: {last_error}", details={"attempts": attempts}) from last_error

    def stream(self, prompt: str) -> Iterator[str]:
        """
        Stream generated text.

        Chunks are yielded in emission order; empty chunks are dropped.
        Streaming is not retried.
        """
        try:
            for chunk in self.chat_model.stream([HumanMessage(content=prompt)]):
                text = message_text(chunk)
                if text:
                    yield text
        except ChronicleException:
            raise
        except Exception as e:
            raise classify_llm_error(e, context="stream") from e

    def generate_structured(self, prompt: str, schema: Type[ModelT], default: ModelT) -> ModelT:
        """Generate and parse a JSON response, returning ``default`` if it is unreadable."""
        return parse_structured_output(self.generate(prompt), schema, default)

    def pause_between_calls(self) -> None:
        """Wait the configured delay between sequential batch calls."""
        if self.config.batch_delay > 0:
            time.sleep(self.config.batch_delay)
