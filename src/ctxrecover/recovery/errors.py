"""Classification of provider rejections caused by context-window limits.

Providers report "prompt too long" in many shapes: plain strings, SDK
exceptions, nested ``error`` objects, raw HTTP bodies (sometimes SSE framed)
and Bedrock-style ``{"message": ...}`` payloads. Each shape gets a small pure
extractor; :func:`classify_error` walks them in a fixed priority order and
produces one immutable :class:`ParsedLimitError`, or ``None`` when the error
is not a context-window problem.
"""

import json
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional, Tuple

from ctxrecover.utils.logger import get_logger

logger = get_logger(__name__)


class LimitErrorKind(Enum):
    """Recovery-relevant classes of provider rejection."""

    # Conversation exceeds the window and both bounds were extracted
    TOKEN_LIMIT = "token_limit"

    # Keyword matched but no token counts found; treat as over the limit
    TOKEN_LIMIT_UNKNOWN = "token_limit_unknown"

    # A turn with empty content was rejected (not a size problem)
    NON_EMPTY_CONTENT = "non_empty_content"


NON_EMPTY_CONTENT_ERROR_TYPE = "non-empty content"
TOKEN_LIMIT_ERROR_TYPE = "token_limit_exceeded"
TOKEN_LIMIT_STRING_ERROR_TYPE = "token_limit_exceeded_string"
TOKEN_LIMIT_UNKNOWN_ERROR_TYPE = "token_limit_exceeded_unknown"
BEDROCK_ERROR_TYPE = "bedrock_input_too_long"


@dataclass(frozen=True)
class ParsedLimitError:
    """Canonical form of a context-window rejection."""

    current_tokens: int
    max_tokens: int
    error_type: str
    kind: LimitErrorKind
    provider_id: Optional[str] = None
    model_id: Optional[str] = None
    request_id: Optional[str] = None
    message_index: Optional[int] = None

    @property
    def bounds_known(self) -> bool:
        return self.kind == LimitErrorKind.TOKEN_LIMIT

    @property
    def is_over_limit(self) -> bool:
        """True when the extracted bounds show the prompt exceeded the window."""
        return self.current_tokens > self.max_tokens

    @property
    def is_prompt_too_long(self) -> bool:
        return self.kind != LimitErrorKind.NON_EMPTY_CONTENT

    def with_model(
        self, provider_id: Optional[str], model_id: Optional[str]
    ) -> "ParsedLimitError":
        """Return a copy carrying the provider/model that produced the error."""
        return replace(self, provider_id=provider_id, model_id=model_id)


TOKEN_LIMIT_PATTERNS = [
    re.compile(r"(\d+)\s*tokens?\s*>\s*(\d+)\s*maximum", re.IGNORECASE),
    re.compile(r"prompt.*?(\d+).*?tokens.*?exceeds.*?(\d+)", re.IGNORECASE),
    re.compile(r"(\d+).*?tokens.*?limit.*?(\d+)", re.IGNORECASE),
    re.compile(r"context.*?length.*?(\d+).*?maximum.*?(\d+)", re.IGNORECASE),
    re.compile(r"max.*?context.*?(\d+).*?but.*?(\d+)", re.IGNORECASE),
]

TOKEN_LIMIT_KEYWORDS = [
    "prompt is too long",
    "is too long",
    "context_length_exceeded",
    "max_tokens",
    "token limit",
    "context length",
    "too many tokens",
    "non-empty content",
]

# Thinking-block structure errors share vocabulary with token-limit errors
# but are repaired by a different component.
THINKING_BLOCK_ERROR_PATTERNS = [
    re.compile(r"thinking.*first block", re.IGNORECASE),
    re.compile(r"first block.*thinking", re.IGNORECASE),
    re.compile(r"must.*start.*thinking", re.IGNORECASE),
    re.compile(r"thinking.*redacted_thinking", re.IGNORECASE),
    re.compile(r"expected.*thinking.*found", re.IGNORECASE),
    re.compile(r"thinking.*disabled.*cannot.*contain", re.IGNORECASE),
]

MESSAGE_INDEX_PATTERN = re.compile(r"messages\.(\d+)")

# Tried in order against a raw response body
RESPONSE_BODY_JSON_PATTERNS = [
    re.compile(r"data:\s*(\{[\s\S]*\})\s*$", re.MULTILINE),
    re.compile(r"(\{\"type\"\s*:\s*\"error\"[\s\S]*\})"),
    re.compile(r"(\{[\s\S]*\"error\"[\s\S]*\})"),
]


def is_thinking_block_error(text: str) -> bool:
    return any(pattern.search(text) for pattern in THINKING_BLOCK_ERROR_PATTERNS)


def has_token_limit_keyword(text: str) -> bool:
    """Keyword test for token-limit vocabulary, excluding thinking-block errors."""
    if is_thinking_block_error(text):
        return False
    lower = text.lower()
    return any(keyword in lower for keyword in TOKEN_LIMIT_KEYWORDS)


def extract_tokens(text: str) -> Optional[Tuple[int, int]]:
    """
    Extract ``(current, max)`` token counts from an error message.

    Providers disagree on the order of the two numbers, so the larger one is
    taken as the current size.
    """
    for pattern in TOKEN_LIMIT_PATTERNS:
        match = pattern.search(text)
        if match:
            first, second = int(match.group(1)), int(match.group(2))
            return (first, second) if first > second else (second, first)
    return None


def extract_message_index(text: str) -> Optional[int]:
    match = MESSAGE_INDEX_PATTERN.search(text)
    return int(match.group(1)) if match else None


def _is_non_empty_content(text: str) -> bool:
    return NON_EMPTY_CONTENT_ERROR_TYPE in text.lower()


def _non_empty_content_error(text: str) -> ParsedLimitError:
    return ParsedLimitError(
        current_tokens=0,
        max_tokens=0,
        error_type=NON_EMPTY_CONTENT_ERROR_TYPE,
        kind=LimitErrorKind.NON_EMPTY_CONTENT,
        message_index=extract_message_index(text),
    )


def _unknown_bounds_error(error_type: str) -> ParsedLimitError:
    return ParsedLimitError(
        current_tokens=0,
        max_tokens=0,
        error_type=error_type,
        kind=LimitErrorKind.TOKEN_LIMIT_UNKNOWN,
    )


# --- text extractors, in priority order --------------------------------------


def _get(obj: Any, *keys: str) -> Any:
    """Walk nested mappings, returning None on any missing level."""
    for key in keys:
        if not isinstance(obj, Mapping):
            return None
        obj = obj.get(key)
    return obj


def _string_at(*keys: str) -> Callable[[Mapping[str, Any]], Optional[str]]:
    def extractor(err: Mapping[str, Any]) -> Optional[str]:
        value = _get(err, *keys)
        return value if isinstance(value, str) else None

    extractor.__name__ = "extract_" + "_".join(keys)
    return extractor


def _extract_body_error_message(err: Mapping[str, Any]) -> Optional[str]:
    """SDK exceptions expose the decoded body as a mapping."""
    value = _get(err, "body", "error", "message")
    return value if isinstance(value, str) else None


TEXT_EXTRACTORS: List[Callable[[Mapping[str, Any]], Optional[str]]] = [
    _string_at("data", "responseBody"),
    _string_at("message"),
    _string_at("error", "message"),
    _string_at("body"),
    _extract_body_error_message,
    _string_at("details"),
    _string_at("reason"),
    _string_at("description"),
    _string_at("error", "error", "message"),
    _string_at("data", "message"),
    _string_at("data", "error"),
    _string_at("error"),
]


def collect_text_sources(err: Mapping[str, Any]) -> List[str]:
    """Collect every plausible text field of an error object in priority order."""
    sources: List[str] = []
    for extractor in TEXT_EXTRACTORS:
        text = extractor(err)
        if text:
            sources.append(text)
    return sources


def _exception_to_mapping(exc: BaseException) -> Mapping[str, Any]:
    """View an exception as an error object with the attributes SDKs expose."""
    mapping = {"details": str(exc)}
    for attr in ("message", "body", "data", "error"):
        value = getattr(exc, attr, None)
        if value is not None:
            mapping[attr] = value
    return mapping


# --- structured response bodies ----------------------------------------------


def _parse_structured_body(response_body: str) -> Optional[ParsedLimitError]:
    """Prefer the provider's own ``error.message``/``error.type`` when the body is JSON."""
    for pattern in RESPONSE_BODY_JSON_PATTERNS:
        match = pattern.search(response_body)
        if not match:
            continue
        try:
            payload = json.loads(match.group(1))
        except ValueError:
            continue
        message = _get(payload, "error", "message")
        tokens = extract_tokens(message) if isinstance(message, str) else None
        if tokens:
            error_type = _get(payload, "error", "type")
            request_id = _get(payload, "request_id")
            if not isinstance(error_type, str) or not error_type:
                error_type = TOKEN_LIMIT_ERROR_TYPE
            return ParsedLimitError(
                current_tokens=tokens[0],
                max_tokens=tokens[1],
                error_type=error_type,
                kind=LimitErrorKind.TOKEN_LIMIT,
                request_id=request_id if isinstance(request_id, str) else None,
            )

    try:
        bedrock = json.loads(response_body)
    except ValueError:
        return None
    message = _get(bedrock, "message")
    if isinstance(message, str) and has_token_limit_keyword(message):
        return _unknown_bounds_error(BEDROCK_ERROR_TYPE)
    return None


# --- dispatcher ---------------------------------------------------------------


def _classify_string(text: str) -> Optional[ParsedLimitError]:
    if is_thinking_block_error(text):
        return None
    if _is_non_empty_content(text):
        return _non_empty_content_error(text)

    tokens = extract_tokens(text)
    if has_token_limit_keyword(text) or tokens:
        if tokens:
            return ParsedLimitError(
                current_tokens=tokens[0],
                max_tokens=tokens[1],
                error_type=TOKEN_LIMIT_STRING_ERROR_TYPE,
                kind=LimitErrorKind.TOKEN_LIMIT,
            )
        return _unknown_bounds_error(TOKEN_LIMIT_STRING_ERROR_TYPE)
    return None


def classify_error(err: Any) -> Optional[ParsedLimitError]:
    """
    Map an arbitrary error value to a :class:`ParsedLimitError`.

    Args:
        err: String, exception, or (nested) mapping as delivered by the host

    Returns:
        The classified error, or None when recovery does not apply
    """
    if isinstance(err, str):
        return _classify_string(err)
    if isinstance(err, BaseException):
        err = _exception_to_mapping(err)
    if not isinstance(err, Mapping) or not err:
        return None

    sources = collect_text_sources(err)
    if not sources:
        try:
            dumped = json.dumps(err, default=str)
        except (TypeError, ValueError):
            dumped = ""
        if dumped and has_token_limit_keyword(dumped):
            sources.append(dumped)

    if not sources or any(is_thinking_block_error(text) for text in sources):
        return None

    combined = " ".join(sources)
    if is_thinking_block_error(combined):
        return None

    keyword_hit = has_token_limit_keyword(combined)
    numeric_hit = any(extract_tokens(text) for text in sources)
    if not (keyword_hit or numeric_hit):
        return None

    if _is_non_empty_content(combined):
        return _non_empty_content_error(combined)

    response_body = _get(err, "data", "responseBody")
    if isinstance(response_body, str):
        structured = _parse_structured_body(response_body)
        if structured:
            return structured

    for text in sources:
        tokens = extract_tokens(text)
        if tokens:
            return ParsedLimitError(
                current_tokens=tokens[0],
                max_tokens=tokens[1],
                error_type=TOKEN_LIMIT_ERROR_TYPE,
                kind=LimitErrorKind.TOKEN_LIMIT,
            )

    return _unknown_bounds_error(TOKEN_LIMIT_UNKNOWN_ERROR_TYPE)
