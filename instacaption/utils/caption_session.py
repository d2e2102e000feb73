"""
CaptionSession holds the state a caption front-end works with.

One session owns the selected image, the request mode, the caption
accumulator and the "request outstanding" flag. Only one caption request runs
per session at a time; selecting a new image discards publishes from a request
that is still running.
"""

import logging
import threading
from typing import Optional

from instacaption.schemas.caption_schema import (
    CaptionResult,
    CaptionState,
    ImageInput,
    RequestMode,
)
from instacaption.services.caption_service import (
    CaptionCallback,
    CaptionService,
    CaptionUpdates,
    drain,
)

logger = logging.getLogger(__name__)


class CaptionInProgressError(Exception):
    """Raised when a caption request is started while another is running."""
    pass


class CaptionRun:
    """
    Update iterator for one claimed caption request.

    Iterate it (or pass it to drain()) to run the request. close() releases
    the session even when iteration never started, so a caller that drops
    the request early must close it.
    """

    def __init__(self, session: "CaptionSession", request_id: int, updates: CaptionUpdates):
        self._session = session
        self._request_id = request_id
        self._updates = updates

    def __iter__(self) -> "CaptionRun":
        return self

    def __next__(self) -> str:
        return next(self._updates)

    def close(self) -> None:
        self._updates.close()
        self._session._release(self._request_id)


class CaptionSession:
    """Single-flight caption state for one user."""

    def __init__(self, service: Optional[CaptionService] = None):
        self.service = service or CaptionService()
        self.image: Optional[ImageInput] = None
        self.mode = RequestMode.BUFFERED
        self.caption = ""
        self.is_loading = False
        self._lock = threading.Lock()
        self._generation = 0
        self._request_id = 0
        self._cancel_event = threading.Event()

    def select_image(self, image: Optional[ImageInput]) -> None:
        """Replace the selected image; a running request stops publishing."""
        with self._lock:
            self.image = image
            self._generation += 1
        if image is not None:
            logger.debug(f"Selected image {image.filename or '<bytes>'} ({image.size} bytes)")

    def set_mode(self, mode: RequestMode) -> None:
        self.mode = mode

    @property
    def can_generate(self) -> bool:
        return self.image is not None and not self.is_loading

    def state(self) -> CaptionState:
        return CaptionState(
            caption=self.caption,
            is_loading=self.is_loading,
            has_image=self.image is not None,
            mode=self.mode,
        )

    def start(
        self,
        image: Optional[ImageInput] = None,
        mode: Optional[RequestMode] = None
    ) -> CaptionRun:
        """
        Claim the session and return the updates for one request.

        The busy flag clears when the updates are exhausted or closed.

        Args:
            image: Replaces the selected image when given
            mode: Replaces the request mode when given

        Raises:
            CaptionInProgressError: If a request is already outstanding
        """
        with self._lock:
            if self.is_loading:
                raise CaptionInProgressError("A caption request is already in progress")
            if image is not None:
                self.image = image
                self._generation += 1
            if mode is not None:
                self.mode = mode
            self.is_loading = True
            self.caption = ""
            self._cancel_event = threading.Event()
            self._request_id += 1
            request_id = self._request_id
            generation = self._generation
            image = self.image
            mode = self.mode
            cancel_event = self._cancel_event

        updates = self._run(request_id, generation, image, mode, cancel_event)
        return CaptionRun(self, request_id, updates)

    def generate(self, on_update: Optional[CaptionCallback] = None) -> CaptionResult:
        """Run one caption request to completion, publishing through on_update."""
        try:
            updates = self.start()
        except CaptionInProgressError as e:
            logger.warning(f"Caption request rejected: {e}")
            return CaptionResult(status="busy", mode=self.mode, error=str(e))
        try:
            return drain(updates, on_update)
        finally:
            updates.close()

    def cancel(self) -> bool:
        """
        Ask the running stream to stop; False when nothing is running.

        The stream checks for cancellation as each chunk arrives, so a stalled
        endpoint keeps the request open until its next chunk or the request
        timeout. A buffered request runs to completion.
        """
        if not self.is_loading:
            return False
        self._cancel_event.set()
        logger.info("Caption cancellation requested")
        return True

    def _run(
        self,
        request_id: int,
        generation: int,
        image: Optional[ImageInput],
        mode: RequestMode,
        cancel_event: threading.Event
    ) -> CaptionUpdates:
        updates = self.service.iter_updates(image, mode, cancel_event)
        try:
            while True:
                try:
                    caption = next(updates)
                except StopIteration as stop:
                    result = stop.value
                    break
                if self._publish(generation, caption):
                    yield caption
        finally:
            updates.close()
            self._release(request_id)

        if generation != self._generation:
            logger.info("Dropping caption result for a superseded image")
            return result.model_copy(update={"caption": ""})
        return result

    def _release(self, request_id: int) -> None:
        with self._lock:
            if request_id == self._request_id:
                self.is_loading = False

    def _publish(self, generation: int, caption: str) -> bool:
        with self._lock:
            if generation != self._generation:
                return False
            self.caption = caption
            return True
