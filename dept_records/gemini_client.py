"""
Gemini generateContent REST client.

Sends a text prompt plus an optional inline base64 document part to
``{base_url}/models/{model}:generateContent`` and returns the first
candidate's text together with its ``finishReason``.

The API key, endpoint and ``httpx.Client`` are passed in explicitly so the
client can be pointed at a fake transport in tests.
"""

import base64
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional

import httpx

from dept_records.exceptions import (
    APIKeyError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitError,
)
from dept_records.utils.security import mask_api_key, sanitize_error

if TYPE_CHECKING:
    from dept_records.config_schema import RootConfig

logger = logging.getLogger(__name__)

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta"
GEMINI_MODEL = "gemini-2.0-flash"
DEFAULT_TEMPERATURE = 0.1
DEFAULT_MAX_OUTPUT_TOKENS = 8192
DEFAULT_TIMEOUT_SECONDS = 120.0

FINISH_REASON_MAX_TOKENS = "MAX_TOKENS"


@dataclass
class GeminiResponse:
    """First candidate of a generateContent answer."""

    text: str
    finish_reason: Optional[str] = None
    usage: Dict[str, Any] = field(default_factory=dict)

    @property
    def truncated(self) -> bool:
        """True when the answer was cut off by the output-token limit."""
        return self.finish_reason == FINISH_REASON_MAX_TOKENS


class GeminiVisionClient:
    """
    Synchronous client for Gemini multimodal generation.

    Example:
        >>> client = GeminiVisionClient(api_key="...")
        >>> response = client.generate("Extract ...", file_bytes=pdf, mime_type="application/pdf")
        >>> response.text
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = GEMINI_MODEL,
        base_url: str = GEMINI_API_URL,
        temperature: float = DEFAULT_TEMPERATURE,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: Optional[httpx.Client] = None,
    ):
        if not api_key:
            raise APIKeyError(
                "Gemini API key not configured. Set GOOGLE_API_KEY (or GEMINI_API_KEY) "
                "in the environment or pass api_key explicitly."
            )

        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout = timeout

        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(timeout=timeout)
        logger.info(f"Gemini client ready (model: {model}, key: {mask_api_key(api_key)})")

    @classmethod
    def from_config(
        cls, config: "RootConfig", http_client: Optional[httpx.Client] = None
    ) -> "GeminiVisionClient":
        """Build a client from the root configuration."""
        gemini = config.gemini
        return cls(
            api_key=config.api_keys.google_api_key,
            model=gemini.model,
            base_url=gemini.base_url,
            temperature=gemini.temperature,
            max_output_tokens=gemini.image_max_output_tokens,
            timeout=gemini.timeout_seconds,
            http_client=http_client,
        )

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def build_payload(
        self,
        prompt: str,
        file_bytes: Optional[bytes] = None,
        mime_type: Optional[str] = None,
        max_output_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Request body with the prompt part and, if given, the inline document part."""
        parts: list = [{"text": prompt}]
        if file_bytes is not None:
            if not mime_type:
                raise ProviderError("mime_type is required when sending file bytes")
            parts.append({
                "inline_data": {
                    "mime_type": mime_type,
                    "data": base64.b64encode(file_bytes).decode("utf-8"),
                }
            })

        return {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "temperature": self.temperature if temperature is None else temperature,
                "maxOutputTokens": max_output_tokens or self.max_output_tokens,
            },
        }

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self._http.post(
                self.endpoint,
                params={"key": self.api_key},
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                f"Gemini API request timed out after {self.timeout}s",
                details={"model": self.model},
                cause=e,
            )
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            details = {"status": status, "body": e.response.text[:500]}
            if status == 429:
                raise RateLimitError("Gemini API rate limit exceeded", details=details, cause=e)
            if status in (401, 403):
                raise APIKeyError(f"Gemini API rejected the API key ({status})", details=details, cause=e)
            raise ProviderError(f"Gemini API returned {status}", details=details, cause=e)
        except httpx.RequestError as e:
            raise ProviderError(f"Gemini API request failed: {sanitize_error(e)}", cause=e)

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                "Gemini API returned a non-JSON body",
                details={"body": response.text[:500]},
                cause=e,
            )

    def generate(
        self,
        prompt: str,
        file_bytes: Optional[bytes] = None,
        mime_type: Optional[str] = None,
        max_output_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> GeminiResponse:
        """
        Run one generateContent call.

        Args:
            prompt: Instruction text
            file_bytes: Document sent as inline base64 data
            mime_type: MIME type of ``file_bytes``
            max_output_tokens: Override of the client's output-token limit
            temperature: Override of the client's temperature

        Returns:
            GeminiResponse with the first candidate's text ("" when absent)

        Raises:
            ProviderError: HTTP/transport failure, an ``error`` envelope or a
                candidate whose content/parts have the wrong shape
                (RateLimitError, ProviderTimeoutError, APIKeyError subtypes)
        """
        payload = self.build_payload(prompt, file_bytes, mime_type, max_output_tokens, temperature)
        data = self._post(payload)

        if not isinstance(data, dict):
            raise ProviderError("Gemini API returned an unexpected envelope")
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ProviderError(message or "Gemini API error", details={"error": error})

        candidates = data.get("candidates") or []
        if isinstance(candidates, list):
            candidate = candidates[0] if candidates else {}
        else:
            candidate = candidates
        content = (candidate.get("content") or {}) if isinstance(candidate, dict) else None
        parts = (content.get("parts") or []) if isinstance(content, dict) else None
        if not isinstance(parts, list) or (parts and not isinstance(parts[0], dict)):
            raise ProviderError(
                "Gemini API returned an unexpected envelope", details={"candidate": candidate}
            )
        text = (parts[0].get("text") or "") if parts else ""
        if not isinstance(text, str):
            text = str(text)

        result = GeminiResponse(
            text=text,
            finish_reason=candidate.get("finishReason") or None,
            usage=data.get("usageMetadata") or {},
        )
        logger.info(f"Gemini answer length: {len(text)}, finishReason: {result.finish_reason}")
        if result.truncated:
            logger.warning("Gemini output was truncated by the token limit; JSON repair will be attempted")
        return result

    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def __enter__(self) -> "GeminiVisionClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
