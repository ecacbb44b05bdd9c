"""
Gemini generateContent client for the accent teacher.

One HTTP call per prompt. The request carries the persona instruction, the
submission view of the conversation and the current prompt. Whatever comes
back, the caller gets an ApiResult: the reply text on success, or a fixed
apology / the remote error message on failure. Transport failures are
raised internally as RemoteError and turned into the connection apology, so
no exception escapes generate().
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from conversation_store import Role, Turn
from errors import RemoteError
from prompts import PERSONA_PROMPT

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-2.0-flash"

# Response had neither a candidate nor an error payload
FALLBACK_APOLOGY = "I apologize, I couldn't generate a response at this moment. Please try again."
# Request never produced a readable response
CONNECTION_APOLOGY = "I'm having trouble connecting right now. Please try again later."


@dataclass(frozen=True)
class ApiResult:
    """Outcome of one generateContent call."""
    ok: bool
    text: str
    error: Optional[str] = None  # Diagnostic detail when ok is False


def build_contents(history: list[Turn], prompt: str,
                   persona: str = PERSONA_PROMPT) -> list[dict]:
    """Build the ordered `contents` list: persona, history, then the prompt."""
    contents = [{"role": Role.USER.value, "parts": [{"text": persona}]}]
    for turn in history:
        contents.append({"role": turn.role.value, "parts": [{"text": turn.text}]})
    contents.append({"role": Role.USER.value, "parts": [{"text": prompt}]})
    return contents


def parse_response(body) -> ApiResult:
    """Map a decoded response body onto an ApiResult.

    First candidate's first part wins. A structured error payload becomes a
    visible "Error: ..." reply. Any other shape falls back to FALLBACK_APOLOGY.
    """
    if not isinstance(body, dict):
        return ApiResult(ok=False, text=FALLBACK_APOLOGY, error="response body is not an object")

    candidates = body.get("candidates")
    if isinstance(candidates, list) and candidates:
        first = candidates[0] if isinstance(candidates[0], dict) else {}
        content = first.get("content")
        parts = content.get("parts") if isinstance(content, dict) else None
        if isinstance(parts, list) and parts and isinstance(parts[0], dict):
            text = parts[0].get("text")
            if isinstance(text, str):
                return ApiResult(ok=True, text=text)

    error = body.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else None
        message = message or "An unknown API error occurred."
        return ApiResult(ok=False, text=f"Error: {message}", error=message)

    return ApiResult(ok=False, text=FALLBACK_APOLOGY, error="no candidates in response")


class GeminiClient:
    """Async client for the Gemini REST API.

    Args:
        api_key: Gemini API key, sent as the `key` query parameter.
        model: Model name used in the endpoint path.
        base_url: API root, without trailing slash.
        persona: Instruction sent as the first entry of every request.
        timeout: Seconds before giving up on a request; None waits forever.
        http_client: Pre-built httpx.AsyncClient (tests inject a MockTransport).
    """

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL,
                 base_url: str = DEFAULT_BASE_URL, persona: str = PERSONA_PROMPT,
                 timeout: Optional[float] = None,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.persona = persona
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    async def _post(self, payload: dict) -> tuple[int, object]:
        """POST one request and decode the body.

        Raises:
            RemoteError: No readable response (transport failure, bad URL,
                or a body that is not JSON).
        """
        try:
            response = await self._client.post(
                self.endpoint,
                params={"key": self.api_key},
                json=payload,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise RemoteError(f"request failed: {e}") from e
        try:
            return response.status_code, response.json()
        except ValueError as e:
            raise RemoteError(f"non-JSON body (HTTP {response.status_code}): {e}") from e

    async def generate(self, history: list[Turn], prompt: str) -> ApiResult:
        """Send one prompt with its history and return the model's reply."""
        payload = {"contents": build_contents(history, prompt, self.persona)}
        try:
            status, body = await self._post(payload)
        except RemoteError as e:
            logger.error("Gemini %s", e)
            return ApiResult(ok=False, text=CONNECTION_APOLOGY, error=str(e))

        result = parse_response(body)
        if result.ok:
            logger.debug("Gemini reply: %d chars", len(result.text))
        else:
            logger.error("Gemini API error (HTTP %s): %s", status, result.error)
        return result

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()
