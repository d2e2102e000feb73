import base64
import mimetypes
from enum import Enum
from pathlib import Path
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# Outcome of a single caption dispatch
CaptionStatus = Literal[
    "success",
    "no_image",
    "busy",
    "transport_failure",
    "decode_failure",
    "model_error",
    "cancelled",
]


class RequestMode(str, Enum):
    """How the caption is requested from /api/generate."""
    BUFFERED = "buffered"
    STREAMING = "streaming"

    @classmethod
    def from_stream_flag(cls, stream: bool) -> "RequestMode":
        return cls.STREAMING if stream else cls.BUFFERED


class ImageInput(BaseModel):
    """Image picked by the user, borrowed read-only for one request."""
    data: bytes
    filename: Optional[str] = None
    content_type: Optional[str] = None

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        filename: Optional[str] = None,
        content_type: Optional[str] = None
    ) -> Optional["ImageInput"]:
        """Wrap raw bytes; an empty payload means nothing was selected."""
        if not data:
            return None
        return cls(data=data, filename=filename, content_type=content_type)

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "ImageInput":
        path = Path(path)
        content_type, _ = mimetypes.guess_type(path.name)
        return cls(data=path.read_bytes(), filename=path.name, content_type=content_type)

    def to_base64(self) -> str:
        """Plain base64 text (no data-URL prefix), as /api/generate expects."""
        return base64.b64encode(self.data).decode("ascii")

    @property
    def size(self) -> int:
        return len(self.data)


class GenerateRequest(BaseModel):
    """Request body for POST /api/generate"""
    model: str
    prompt: str
    images: List[str] = Field(..., min_length=1, max_length=1)
    stream: bool = False


class GenerationFragment(BaseModel):
    """One NDJSON object from a streamed /api/generate response."""
    model_config = ConfigDict(extra="ignore")

    response: Optional[str] = None
    done: bool = False
    error: Optional[str] = None

    @property
    def token(self) -> str:
        return self.response or ""


class CaptionResult(BaseModel):
    """Typed outcome of one caption request."""
    status: CaptionStatus
    mode: RequestMode
    caption: str = ""
    updates: int = Field(default=0, description="Number of caption publishes")
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


class CaptionResponse(BaseModel):
    """Response model for buffered POST /caption"""
    caption: str
    status: CaptionStatus
    mode: RequestMode
    updates: int = 0
    error: Optional[str] = None

    @classmethod
    def from_result(cls, result: CaptionResult) -> "CaptionResponse":
        return cls(**result.model_dump())


class CaptionState(BaseModel):
    """Snapshot of the shared caption session"""
    caption: str
    is_loading: bool
    has_image: bool
    mode: RequestMode
