"""
HTTP client for a locally running Ollama generation endpoint.

This client provides:
- generate(): buffered POST /api/generate, returns the full response text
- open_stream(): streamed POST /api/generate, yields raw body chunks
- list_models() / health_check(): read-only endpoint probes

Generation calls are never retried; exactly one request goes out per call.
"""

import logging
import os
from typing import Any, Iterator, List, Optional

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from instacaption.config import settings
from instacaption.schemas.caption_schema import GenerateRequest

logger = logging.getLogger(__name__)


class OllamaClientError(Exception):
    """Base error for Ollama client failures."""
    pass


class OllamaTransportError(OllamaClientError):
    """Raised on connection failures, timeouts and non-2xx responses."""
    pass


class OllamaDecodeError(OllamaClientError):
    """Raised when a response body is not the JSON we expect."""
    pass


class OllamaClient:
    """
    HTTP client for the Ollama /api/generate endpoint.

    Usage:
        client = get_ollama_client()
        text = client.generate(request)
        for chunk in client.open_stream(request):
            ...
    """

    DEFAULT_ENDPOINT = "http://127.0.0.1:11434"

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        chunk_size: Optional[int] = None
    ):
        self.base_url = (
            base_url
            or os.getenv("OLLAMA_URL", getattr(settings, "OLLAMA_URL", self.DEFAULT_ENDPOINT))
        ).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.REQUEST_TIMEOUT
        self.chunk_size = chunk_size if chunk_size is not None else settings.STREAM_CHUNK_SIZE
        self.health_timeout = settings.HEALTH_TIMEOUT

        logger.info(f"OllamaClient initialized with endpoint: {self.base_url}")

    @property
    def generate_url(self) -> str:
        return f"{self.base_url}/api/generate"

    def generate(self, request: GenerateRequest) -> str:
        """
        Run a buffered generation and return the `response` text.

        Raises:
            OllamaTransportError: connection failure, timeout or non-2xx status
            OllamaDecodeError: body is not JSON or has no string `response`
        """
        payload = request.model_dump()
        payload["stream"] = False

        try:
            response = requests.post(
                self.generate_url,
                json=payload,
                timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise OllamaTransportError(f"Generate request failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise OllamaDecodeError(f"Generate response is not JSON: {e}") from e

        if not isinstance(body, dict) or not isinstance(body.get("response"), str):
            raise OllamaDecodeError("Generate response has no 'response' text")

        logger.debug(f"Buffered generation returned {len(body['response'])} chars")
        return body["response"]

    def open_stream(self, request: GenerateRequest) -> Iterator[bytes]:
        """
        Start a streamed generation and return an iterator over body chunks.

        The request is sent eagerly so connection errors and bad statuses
        surface here; errors while reading surface from the iterator. The
        underlying response is closed when the iterator is exhausted or closed.
        """
        payload = request.model_dump()
        payload["stream"] = True

        try:
            response = requests.post(
                self.generate_url,
                json=payload,
                stream=True,
                timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise OllamaTransportError(f"Streaming request failed: {e}") from e

        return self._iter_chunks(response)

    def _iter_chunks(self, response: requests.Response) -> Iterator[bytes]:
        try:
            for chunk in response.iter_content(chunk_size=self.chunk_size):
                if chunk:
                    yield chunk
        except requests.RequestException as e:
            raise OllamaTransportError(f"Stream interrupted: {e}") from e
        finally:
            response.close()

    @retry(
        retry=retry_if_exception_type(requests.ConnectionError),
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        reraise=True
    )
    def list_models(self) -> List[str]:
        """Return the names of locally installed models (GET /api/tags)."""
        response = requests.get(
            f"{self.base_url}/api/tags",
            timeout=self.health_timeout
        )
        response.raise_for_status()
        body: Any = response.json()
        models = body.get("models") if isinstance(body, dict) else None
        if not isinstance(models, list):
            raise OllamaDecodeError("Ollama /api/tags returned no model list")
        return [
            m["name"] for m in models
            if isinstance(m, dict) and isinstance(m.get("name"), str) and m["name"]
        ]

    def has_model(self, model: str) -> bool:
        """Check whether `model` is installed, tolerating an implicit :latest tag."""
        try:
            names = self.list_models()
        except (requests.RequestException, ValueError, OllamaClientError) as e:
            logger.warning(f"Could not list Ollama models: {e}")
            return False
        candidates = {model, f"{model}:latest"} if ":" not in model else {model}
        return any(name in candidates for name in names)

    def health_check(self) -> bool:
        """
        Check if the Ollama endpoint is reachable.

        Returns:
            True if GET /api/version answers 200, False otherwise
        """
        try:
            response = requests.get(
                f"{self.base_url}/api/version",
                timeout=self.health_timeout
            )
            return response.status_code == 200
        except requests.RequestException:
            return False


# =============================================================================
# Global Singleton Accessor
# =============================================================================

_ollama_client: Optional[OllamaClient] = None


def get_ollama_client() -> OllamaClient:
    """
    Get or create the global OllamaClient instance.

    Returns:
        OllamaClient singleton instance
    """
    global _ollama_client

    if _ollama_client is None:
        _ollama_client = OllamaClient()

    return _ollama_client


def is_ollama_available() -> bool:
    """
    Check if the Ollama endpoint is available.

    Returns:
        True if endpoint is reachable and healthy
    """
    try:
        client = get_ollama_client()
        return client.health_check()
    except Exception:
        return False
