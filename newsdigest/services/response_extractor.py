"""
Response Extractor

Pulls a JSON array or object out of free-form model output. Models wrap
JSON in code fences or chatter around it, so the span is located with a
greedy regex (first opening bracket to last closing bracket) and parsed.
A miss is an ordinary outcome and is reported as None, never raised.
"""

import json
import re
from typing import Any, List, Optional, Type, TypeVar
from pydantic import BaseModel, ValidationError
from newsdigest.services.logger import logger

ARRAY = 'array'
OBJECT = 'object'

_FENCE_JSON = re.compile(r'```json\n?')
_FENCE = re.compile(r'```\n?')
_PATTERNS = {
    ARRAY: re.compile(r'\[[\s\S]*\]'),
    OBJECT: re.compile(r'\{[\s\S]*\}'),
}
_TYPES = {
    ARRAY: list,
    OBJECT: dict,
}

M = TypeVar('M', bound=BaseModel)


def strip_code_fences(text: str) -> str:
    """Remove markdown code fence markers anywhere in the text"""
    return _FENCE.sub('', _FENCE_JSON.sub('', text)).strip()


def extract_json(text: Optional[str], mode: str = ARRAY) -> Optional[Any]:
    """
    Extract the first JSON array or object span from text
    Args:
        text: Raw model output
        mode: 'array' or 'object'
    Returns:
        Parsed value, or None when nothing parseable of that kind is present
    """
    if mode not in _PATTERNS:
        raise ValueError(f'Unknown extraction mode: {mode}')
    if not text:
        return None

    cleaned = strip_code_fences(text)
    match = _PATTERNS[mode].search(cleaned)
    if not match:
        logger.debug(f'No JSON {mode} found in response', responseLength=len(text))
        return None

    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as error:
        logger.debug(f'JSON {mode} span failed to parse: {str(error)}', preview=match.group(0)[:200])
        return None

    if not isinstance(parsed, _TYPES[mode]):
        return None
    return parsed


def extract_json_array(text: Optional[str]) -> Optional[List[Any]]:
    return extract_json(text, ARRAY)


def extract_json_object(text: Optional[str]) -> Optional[dict]:
    return extract_json(text, OBJECT)


def parse_records(text: Optional[str], model: Type[M]) -> Optional[List[M]]:
    """
    Extract a JSON array and validate each element as `model`
    Elements that are not objects or fail validation are dropped.
    Returns:
        List of records, or None when no array was found
    """
    raw = extract_json_array(text)
    if raw is None:
        return None

    records: List[M] = []
    for index, element in enumerate(raw):
        if not isinstance(element, dict):
            logger.warning('Skipping non-object element', model=model.__name__, index=index)
            continue
        try:
            records.append(model.model_validate(element))
        except ValidationError as error:
            logger.warning(
                f'Skipping invalid {model.__name__}',
                model=model.__name__,
                index=index,
                errors=error.error_count()
            )
    return records
