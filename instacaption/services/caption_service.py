"""
Caption request dispatcher.

Turns a selected image into one /api/generate request, either buffered (one
publish of the full caption) or streaming (one publish per token-bearing
fragment, each value a prefix of the next). Failures are logged and reported
as a typed CaptionResult; nothing is retried and nothing is raised to the
caller.
"""

import logging
import threading
from typing import Callable, Generator, Iterator, Optional

from instacaption.config import settings
from instacaption.schemas.caption_schema import (
    CaptionResult,
    GenerateRequest,
    ImageInput,
    RequestMode,
)
from instacaption.services.ollama_client import (
    OllamaClient,
    OllamaDecodeError,
    OllamaTransportError,
    get_ollama_client,
)
from instacaption.services.stream_decoder import decode

logger = logging.getLogger(__name__)

# Receives the accumulated caption after every publish
CaptionCallback = Callable[[str], None]

# Yields accumulated captions, returns the final CaptionResult
CaptionUpdates = Generator[str, None, CaptionResult]


def build_generate_request(
    image: ImageInput,
    mode: RequestMode,
    model: Optional[str] = None,
    prompt: Optional[str] = None
) -> GenerateRequest:
    """Build the /api/generate body for one image."""
    return GenerateRequest(
        model=model or settings.OLLAMA_MODEL,
        prompt=prompt or settings.CAPTION_PROMPT,
        images=[image.to_base64()],
        stream=mode == RequestMode.STREAMING,
    )


def drain(updates: CaptionUpdates, on_update: Optional[CaptionCallback] = None) -> CaptionResult:
    """Run an update generator to completion, forwarding each value to on_update."""
    while True:
        try:
            caption = next(updates)
        except StopIteration as stop:
            return stop.value
        if on_update is not None:
            on_update(caption)


class CaptionService:
    """Dispatches caption requests to the generation endpoint."""

    def __init__(
        self,
        client: Optional[OllamaClient] = None,
        model: Optional[str] = None,
        prompt: Optional[str] = None,
        reassemble: Optional[bool] = None
    ):
        self.client = client or get_ollama_client()
        self.model = model or settings.OLLAMA_MODEL
        self.prompt = prompt or settings.CAPTION_PROMPT
        self.reassemble = (
            settings.REASSEMBLE_SPLIT_FRAGMENTS if reassemble is None else reassemble
        )

    def generate_caption(
        self,
        image: Optional[ImageInput],
        mode: RequestMode = RequestMode.BUFFERED,
        on_update: Optional[CaptionCallback] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> CaptionResult:
        """
        Request a caption and publish it through on_update.

        Args:
            image: Selected image, or None when nothing is selected
            mode: Buffered (one publish) or streaming (one publish per token)
            on_update: Called with the accumulated caption after each publish
            cancel_event: When set, a streaming read stops at the next chunk

        Returns:
            CaptionResult with status, final caption and publish count
        """
        return drain(self.iter_updates(image, mode, cancel_event), on_update)

    def iter_updates(
        self,
        image: Optional[ImageInput],
        mode: RequestMode = RequestMode.BUFFERED,
        cancel_event: Optional[threading.Event] = None
    ) -> CaptionUpdates:
        """Generator form of generate_caption(); the result is the return value."""
        if image is None:
            logger.error("No image selected; skipping caption request")
            return CaptionResult(status="no_image", mode=mode, error="No image selected")

        request = build_generate_request(image, mode, self.model, self.prompt)
        logger.info(
            f"Requesting caption: model={request.model}, mode={mode.value}, "
            f"image={image.filename or '<bytes>'} ({image.size} bytes)"
        )

        if mode == RequestMode.STREAMING:
            result = yield from self._stream(request, cancel_event)
        else:
            result = yield from self._buffered(request)
        return result

    def _buffered(self, request: GenerateRequest) -> CaptionUpdates:
        mode = RequestMode.BUFFERED
        try:
            caption = self.client.generate(request)
        except OllamaTransportError as e:
            logger.error(f"Error calling Ollama: {e}")
            return CaptionResult(status="transport_failure", mode=mode, error=str(e))
        except OllamaDecodeError as e:
            logger.error(f"Error decoding Ollama response: {e}")
            return CaptionResult(status="decode_failure", mode=mode, error=str(e))

        yield caption
        return CaptionResult(status="success", mode=mode, caption=caption, updates=1)

    def _stream(
        self,
        request: GenerateRequest,
        cancel_event: Optional[threading.Event]
    ) -> CaptionUpdates:
        mode = RequestMode.STREAMING
        caption = ""
        updates = 0

        try:
            chunks = self.client.open_stream(request)
        except OllamaTransportError as e:
            logger.error(f"Error calling Ollama: {e}")
            return CaptionResult(status="transport_failure", mode=mode, error=str(e))

        stopped = []
        fragments = decode(
            self._until_cancelled(chunks, cancel_event, stopped),
            reassemble=self.reassemble
        )
        try:
            for fragment in fragments:
                if fragment.error:
                    logger.error(f"Ollama reported a generation error: {fragment.error}")
                    return CaptionResult(
                        status="model_error",
                        mode=mode,
                        caption=caption,
                        updates=updates,
                        error=fragment.error,
                    )
                if not fragment.token:
                    continue

                caption += fragment.token
                updates += 1
                yield caption
        except OllamaTransportError as e:
            logger.error(f"Error reading Ollama stream: {e}")
            return CaptionResult(
                status="transport_failure",
                mode=mode,
                caption=caption,
                updates=updates,
                error=str(e),
            )
        finally:
            close = getattr(chunks, "close", None)
            if close is not None:
                close()

        if stopped:
            logger.info(f"Caption stream cancelled after {updates} updates")
            return CaptionResult(
                status="cancelled",
                mode=mode,
                caption=caption,
                updates=updates,
                error="Cancelled",
            )

        logger.info(f"Caption stream finished: {updates} updates, {len(caption)} chars")
        return CaptionResult(status="success", mode=mode, caption=caption, updates=updates)

    @staticmethod
    def _until_cancelled(
        chunks: Iterator[bytes],
        cancel_event: Optional[threading.Event],
        stopped: list
    ) -> Iterator[bytes]:
        for chunk in chunks:
            if cancel_event is not None and cancel_event.is_set():
                stopped.append(True)
                return
            yield chunk
