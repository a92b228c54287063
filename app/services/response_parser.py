"""
JSON extraction and validation for LLM output.

Strict `json.loads` first. If that fails, exactly one fallback: decode the
first balanced `{...}` object in the text (models sometimes wrap JSON in
prose or a code fence). The result is then validated with a pydantic model.
Anything else is an LLMResponseParseError.
"""
import json
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


class LLMResponseParseError(ValueError):
    """The model's reply could not be turned into the expected JSON document."""

    def __init__(self, message: str, raw: Optional[str] = None):
        self.raw = raw
        super().__init__(message)


def _first_balanced_object(text: str) -> Optional[str]:
    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    # Unbalanced: the reply was truncated
    return None


def extract_json_object(text: str) -> Dict[str, Any]:
    if not text or not text.strip():
        raise LLMResponseParseError("Empty response", raw=text)

    try:
        parsed = json.loads(text.strip())
    except json.JSONDecodeError:
        candidate = _first_balanced_object(text)
        if candidate is None:
            raise LLMResponseParseError("No complete JSON object in response (truncated or missing)", raw=text)
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError as e:
            raise LLMResponseParseError(f"Malformed JSON object: {e.msg}", raw=text) from e

    if not isinstance(parsed, dict):
        raise LLMResponseParseError(f"Expected a JSON object, got {type(parsed).__name__}", raw=text)
    return parsed


def parse_model(text: str, model: Type[ModelT]) -> ModelT:
    data = extract_json_object(text)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise LLMResponseParseError(f"Response failed validation: {e.error_count()} error(s)", raw=text) from e
