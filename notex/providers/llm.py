"""
Chat providers for the oracle.

Each provider maps its library's failures onto the OracleError taxonomy:
timeouts, connection errors, 429 and 5xx are transient; authentication,
missing endpoints and rejected requests are fatal; an empty completion
is a malformed response.
"""

import logging
import os

import httpx
import requests

from ..errors import FatalOracleError, MalformedResponseError, TransientOracleError
from .base import get_registry

logger = logging.getLogger(__name__)

# Status codes worth retrying
TRANSIENT_STATUS = frozenset({408, 409, 425, 429})
MAX_RETRY_AFTER = 60.0

DEFAULT_TIMEOUT = 120.0


def _retry_after(headers) -> float | None:
    value = headers.get("Retry-After") if headers else None
    if value is None:
        return None
    try:
        return min(float(value), MAX_RETRY_AFTER)
    except (TypeError, ValueError):
        return None


def classify_status(status_code: int, detail: str = "", headers=None, *, source: str = "oracle"):
    """Return the OracleError for a non-2xx HTTP status."""
    message = f"{source}: HTTP {status_code}"
    if detail:
        message += f" {detail[:200]}"
    if status_code in TRANSIENT_STATUS or status_code >= 500:
        return TransientOracleError(message, retry_after=_retry_after(headers))
    return FatalOracleError(message)


def _require_text(text: str | None, source: str) -> str:
    if text is None or not text.strip():
        raise MalformedResponseError(f"{source}: empty completion")
    return text


# -----------------------------------------------------------------------------
# OpenAI-compatible HTTP endpoint (llama-server, vLLM, LM Studio, ...)
# -----------------------------------------------------------------------------

class OpenAICompatibleChat:
    """
    Chat provider for any server exposing ``/chat/completions``.

    Talks plain HTTP through httpx so that local servers work without the
    OpenAI SDK. The default base URL matches llama-server; run it with
    ``-np N`` and set concurrency to N.
    """

    def __init__(
        self,
        model: str = "gpt-3.5-turbo",
        base_url: str = "http://localhost:8080/v1",
        api_key: str = "sk-no-key-required",
        timeout: float = DEFAULT_TIMEOUT,
        temperature: float = 0.3,
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self._client = httpx.Client(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )

    def generate(self, system: str, user: str, *, max_tokens: int = 4096) -> str:
        """POST /chat/completions and return the first choice's content."""
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "max_tokens": max_tokens,
            "temperature": self.temperature,
        }
        try:
            resp = self._client.post("/chat/completions", json=payload)
        except httpx.TimeoutException as e:
            raise TransientOracleError(f"Timed out talking to {self.base_url}: {e}") from e
        except httpx.TransportError as e:
            raise TransientOracleError(f"Cannot reach {self.base_url}: {e}") from e

        if resp.status_code >= 400:
            raise classify_status(resp.status_code, resp.text, resp.headers, source=self.base_url)

        try:
            data = resp.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise MalformedResponseError(f"Unexpected completion payload: {e}") from e
        return _require_text(content, self.base_url)

    def ping(self) -> None:
        """GET /models. Only authentication and routing problems are fatal."""
        try:
            resp = self._client.get("/models", timeout=10.0)
        except httpx.TransportError as e:
            raise TransientOracleError(f"Cannot reach {self.base_url}: {e}") from e
        if resp.status_code in (401, 403):
            raise classify_status(resp.status_code, resp.text, resp.headers, source=self.base_url)
        if resp.status_code >= 500:
            raise classify_status(resp.status_code, resp.text, resp.headers, source=self.base_url)

    def close(self) -> None:
        self._client.close()


# -----------------------------------------------------------------------------
# SDK-backed providers
# -----------------------------------------------------------------------------

def _translate_sdk_error(e: Exception, sdk, source: str) -> Exception:
    """Map an openai/anthropic SDK exception onto the oracle taxonomy.

    Both SDKs share the same exception hierarchy names.
    """
    if isinstance(e, sdk.APIConnectionError):  # includes APITimeoutError
        return TransientOracleError(f"{source}: {e}")
    if isinstance(e, sdk.APIStatusError):
        response = getattr(e, "response", None)
        headers = response.headers if response is not None else None
        return classify_status(e.status_code, str(e), headers, source=source)
    return e


class OpenAIChat:
    """
    Chat provider using the OpenAI SDK.

    Requires: NOTEX_API_KEY or OPENAI_API_KEY environment variable
    (or api_key parameter). base_url may point at any compatible server.
    """

    def __init__(
        self,
        model: str = "gpt-4.1-mini",
        api_key: str | None = None,
        base_url: str | None = None,
    ):
        try:
            import openai
        except ImportError:
            raise RuntimeError("OpenAIChat requires 'openai' library")

        self._sdk = openai
        self.model = model
        key = api_key or os.environ.get("NOTEX_API_KEY") or os.environ.get("OPENAI_API_KEY")
        if not key:
            raise ValueError("OpenAI API key required. Set NOTEX_API_KEY or OPENAI_API_KEY")

        # Retries are owned by the executor
        self._client = openai.OpenAI(api_key=key, base_url=base_url, max_retries=0)

        # GPT-5+ and reasoning models use max_completion_tokens and no temperature
        self._new_api = self.model.startswith(("gpt-5", "o3", "o4"))

    def _completion_kwargs(self, max_tokens: int) -> dict:
        if self._new_api:
            return {"max_completion_tokens": max_tokens}
        return {"max_tokens": max_tokens, "temperature": 0.3}

    def generate(self, system: str, user: str, *, max_tokens: int = 4096) -> str:
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                **self._completion_kwargs(max_tokens),
            )
        except self._sdk.OpenAIError as e:
            raise _translate_sdk_error(e, self._sdk, "openai") from e
        if not response.choices:
            raise MalformedResponseError("openai: no choices in response")
        return _require_text(response.choices[0].message.content, "openai")

    def ping(self) -> None:
        try:
            self._client.models.retrieve(self.model)
        except self._sdk.OpenAIError as e:
            raise _translate_sdk_error(e, self._sdk, "openai") from e


class AnthropicChat:
    """
    Chat provider using Anthropic's Claude API.

    Authentication (checked in priority order):
    1. api_key parameter (if provided)
    2. NOTEX_API_KEY
    3. ANTHROPIC_API_KEY
    """

    def __init__(
        self,
        model: str = "claude-haiku-4-5-20251001",
        api_key: str | None = None,
        base_url: str | None = None,
    ):
        try:
            import anthropic
        except ImportError:
            raise RuntimeError("AnthropicChat requires 'anthropic' library")

        self._sdk = anthropic
        self.model = model
        key = api_key or os.environ.get("NOTEX_API_KEY") or os.environ.get("ANTHROPIC_API_KEY")
        if not key:
            raise ValueError("Anthropic API key required. Set NOTEX_API_KEY or ANTHROPIC_API_KEY")
        self._client = anthropic.Anthropic(api_key=key, base_url=base_url, max_retries=0)

    def generate(self, system: str, user: str, *, max_tokens: int = 4096) -> str:
        try:
            response = self._client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                system=system,
                messages=[{"role": "user", "content": user}],
            )
        except self._sdk.AnthropicError as e:
            raise _translate_sdk_error(e, self._sdk, "anthropic") from e
        if not response.content:
            raise MalformedResponseError("anthropic: empty content")
        return _require_text(response.content[0].text, "anthropic")

    def ping(self) -> None:
        try:
            self._client.models.retrieve(self.model)
        except self._sdk.AnthropicError as e:
            raise _translate_sdk_error(e, self._sdk, "anthropic") from e


class OllamaChat:
    """
    Chat provider using Ollama's local API.

    Respects OLLAMA_HOST env var (default: http://localhost:11434).
    """

    def __init__(
        self,
        model: str = "llama3.2",
        base_url: str | None = None,
    ):
        self.model = model
        url = base_url or os.environ.get("OLLAMA_HOST", "http://localhost:11434")
        if not url.startswith(("http://", "https://")):
            url = f"http://{url}"
        self.base_url = url.rstrip("/")

    def generate(self, system: str, user: str, *, max_tokens: int = 4096) -> str:
        try:
            response = requests.post(
                f"{self.base_url}/api/chat",
                json={
                    "model": self.model,
                    "messages": [
                        {"role": "system", "content": system},
                        {"role": "user", "content": user},
                    ],
                    "stream": False,
                    "options": {"num_predict": max_tokens},
                },
                timeout=(10, 300),  # (connect, read), generation can be slow
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientOracleError(f"Cannot reach Ollama at {self.base_url}: {e}") from e

        if not response.ok:
            raise classify_status(
                response.status_code, response.text, response.headers,
                source=f"ollama ({self.model})",
            )
        try:
            content = response.json()["message"]["content"]
        except (ValueError, KeyError, TypeError) as e:
            raise MalformedResponseError(f"Unexpected Ollama payload: {e}") from e
        return _require_text(content, "ollama")

    def ping(self) -> None:
        """Check the model is installed. A missing model is fatal."""
        try:
            resp = requests.get(f"{self.base_url}/api/tags", timeout=5)
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientOracleError(f"Cannot reach Ollama at {self.base_url}: {e}") from e
        if not resp.ok:
            raise classify_status(resp.status_code, resp.text, resp.headers, source="ollama")

        # Ollama lists models as "name:tag"
        bare = self.model.split(":")[0]
        installed = {m.get("name", "") for m in resp.json().get("models", [])}
        candidates = {self.model, f"{self.model}:latest", bare, f"{bare}:latest"}
        if not installed & candidates:
            raise FatalOracleError(
                f"Ollama model '{self.model}' is not installed. Run: ollama pull {self.model}"
            )


# Register providers
_registry = get_registry()
_registry.register("openai-compatible", OpenAICompatibleChat)
_registry.register("openai", OpenAIChat)
_registry.register("anthropic", AnthropicChat)
_registry.register("ollama", OllamaChat)
