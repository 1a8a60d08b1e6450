"""
Structured output parsing for model responses.

Extraction prompts ask the model for JSON, but responses arrive wrapped in
markdown fences, surrounded by prose, or truncated. Parsing is tolerant:
a malformed or missing payload yields the caller's default and a warning,
never an exception.
"""

import re
from typing import Optional, Type, TypeVar

from langchain_core.exceptions import OutputParserException
from langchain_core.utils.json import parse_json_markdown
from pydantic import BaseModel, ValidationError

from chronicle_lib.core.exceptions import StructuredOutputError
from chronicle_lib.core.logger import get_logger

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


def extract_json_block(text: str) -> Optional[str]:
    """
    Find the JSON object in a model response.

    A fenced ```json block wins; otherwise the text from the first ``{`` to
    the last ``}`` is taken.

    Args:
        text: The raw response

    Returns:
        The candidate JSON text, or None when there is none
    """
    if not text:
        return None

    fenced = _FENCED_JSON.search(text)
    if fenced and "{" in fenced.group(1):
        return fenced.group(1).strip()

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def parse_json_payload(text: str, schema: Type[ModelT]) -> ModelT:
    """
    Parse and validate a model response.

    Raises:
        StructuredOutputError: If no valid payload can be read
    """
    block = extract_json_block(text)
    if block is None:
        raise StructuredOutputError("No JSON object found in response", raw_text=text)

    try:
        data = parse_json_markdown(block)
    except (OutputParserException, ValueError) as e:
        raise StructuredOutputError(f"Malformed JSON in response: {e}", raw_text=text) from e

    if not isinstance(data, dict):
        raise StructuredOutputError("Response JSON is not an object", raw_text=text)

    try:
        return schema.model_validate(data)
    except ValidationError as e:
        raise StructuredOutputError(
            f"Response does not match {schema.__name__}: {e.error_count()} error(s)",
            raw_text=text,
        ) from e


def parse_structured_output(text: str, schema: Type[ModelT], default: ModelT) -> ModelT:
    """
    Parse a model response into ``schema``, falling back to ``default``.

    Args:
        text: The raw response
        schema: Pydantic model to validate against
        default: Returned when parsing fails

    Returns:
        The parsed model or the default
    """
    try:
        return parse_json_payload(text, schema)
    except StructuredOutputError as e:
        logger.warning(f"Could not parse {schema.__name__} from model output: {e}")
        return default
