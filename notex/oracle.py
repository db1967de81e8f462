"""
Oracle client: one structured request to the LLM, one structured answer.

The client never retries. Every failure surfaces as an OracleError
subclass so the executor can decide between retrying and giving up.
Responses are not cached; two calls with the same request may
legitimately return different answers.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from .config import OracleConfig
from .errors import (
    FatalOracleError,
    MalformedResponseError,
    OracleError,
    RequestTooLargeError,
    TransientOracleError,
)
from .providers.base import ChatProvider, get_registry

logger = logging.getLogger(__name__)

JSON_ONLY_SUFFIX = (
    "\n\nIMPORTANT: Respond with valid JSON only. "
    "No markdown code blocks, no explanations outside the JSON."
)

# Longest user message sent in one request
MAX_USER_CHARS = 50000


@dataclass(frozen=True)
class OracleRequest:
    """
    A request to the oracle.

    Attributes:
        system: Instruction for the model
        user: Content the instruction applies to
        response_model: Pydantic model the answer must validate against,
            or None for free text
        max_tokens: Completion budget
        truncate: Cut an over-long user message to MAX_USER_CHARS
            instead of refusing it. Only for requests whose answer
            does not replace the content they carry.
    """
    system: str
    user: str
    response_model: Optional[type[BaseModel]] = None
    max_tokens: int = 4096
    truncate: bool = False


def extract_json(text: str) -> str:
    """
    Pull the JSON document out of an LLM response.

    Handles code fences and leading/trailing chatter around a single
    top-level object or array.
    """
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        if lines[0].startswith("```"):
            lines = lines[1:]
        if lines and lines[-1].strip().startswith("```"):
            lines = lines[:-1]
        text = "\n".join(lines).strip()

    if text[:1] in ("{", "["):
        return text

    # Chatter before/after the JSON
    starts = [i for i in (text.find("{"), text.find("[")) if i >= 0]
    if not starts:
        return text
    start = min(starts)
    closer = "}" if text[start] == "{" else "]"
    end = text.rfind(closer)
    if end <= start:
        return text
    return text[start:end + 1]


def parse_response(text: str, model: type[BaseModel]) -> BaseModel:
    """Validate an LLM response against a pydantic model.

    Raises:
        MalformedResponseError: if the text is not JSON or does not
            match the model
    """
    try:
        data = json.loads(extract_json(text))
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Response is not valid JSON: {e}") from e
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise MalformedResponseError(
            f"Response does not match {model.__name__}: {e.error_count()} error(s)"
        ) from e


class OracleClient:
    """Sends OracleRequests through a ChatProvider."""

    def __init__(self, provider: ChatProvider):
        self._provider = provider

    @classmethod
    def from_config(cls, config: OracleConfig) -> "OracleClient":
        return cls(get_registry().create(config.name, config.params))

    @property
    def provider(self) -> ChatProvider:
        return self._provider

    def invoke(self, request: OracleRequest) -> Any:
        """
        Send one request.

        Returns:
            The validated response model instance, or the raw completion
            text when the request has no response_model.

        Raises:
            TransientOracleError, MalformedResponseError, FatalOracleError
            RequestTooLargeError: user message over MAX_USER_CHARS and the
                request does not allow truncation
        """
        system = request.system
        if request.response_model is not None:
            system += JSON_ONLY_SUFFIX
        user = request.user
        if len(user) > MAX_USER_CHARS:
            if not request.truncate:
                raise RequestTooLargeError(
                    f"Request is {len(user)} characters, limit is {MAX_USER_CHARS}"
                )
            logger.warning(
                "Truncating request from %d to %d characters", len(user), MAX_USER_CHARS,
            )
            user = user[:MAX_USER_CHARS]

        try:
            text = self._provider.generate(system, user, max_tokens=request.max_tokens)
        except OracleError:
            raise
        except Exception as e:
            # Unknown provider failure: let the executor retry it
            raise TransientOracleError(f"{type(e).__name__}: {e}") from e

        if request.response_model is None:
            if not text or not text.strip():
                raise MalformedResponseError("Empty completion")
            return text.strip()
        return parse_response(text, request.response_model)

    def preflight(self) -> None:
        """
        Check the endpoint before any task runs.

        Only FatalOracleError propagates; transient problems are logged
        and left to per-task retries.
        """
        ping = getattr(self._provider, "ping", None)
        if ping is None:
            return
        try:
            ping()
        except FatalOracleError:
            raise
        except OracleError as e:
            logger.warning("Oracle preflight check failed (continuing): %s", e)
