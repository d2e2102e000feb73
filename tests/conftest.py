"""
Shared pytest fixtures and configuration for InstaCaption tests.

This module provides:
- FastAPI test client
- Sample image data (bytes, base64, ImageInput, file on disk)
- Mock Ollama responses for buffered and streamed /api/generate calls
- Singleton resets between tests
"""

import base64
import io
import os
from typing import Generator, List
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from PIL import Image

# Set test environment variables before importing the app
os.environ.setdefault("OLLAMA_URL", "http://ollama.test:11434")
os.environ.setdefault("OLLAMA_MODEL", "gemma3:4b")

from instacaption.schemas.caption_schema import ImageInput  # noqa: E402


# =============================================================================
# FastAPI Test Client Fixtures
# =============================================================================

@pytest.fixture
def app():
    """Get the FastAPI application instance."""
    from instacaption.main import app as fastapi_app
    return fastapi_app


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Create a FastAPI test client."""
    with TestClient(app) as test_client:
        yield test_client


# =============================================================================
# Sample Image Fixtures
# =============================================================================

@pytest.fixture
def sample_rgb_image() -> Image.Image:
    """A small solid-color RGB image."""
    return Image.new("RGB", (32, 32), color=(255, 140, 0))


@pytest.fixture
def sample_image_bytes(sample_rgb_image) -> bytes:
    """Sample image as PNG bytes."""
    buffer = io.BytesIO()
    sample_rgb_image.save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def sample_image_base64(sample_image_bytes) -> str:
    """Sample image as plain base64 text."""
    return base64.b64encode(sample_image_bytes).decode()


@pytest.fixture
def sample_image(sample_image_bytes) -> ImageInput:
    """Sample image as an ImageInput selection."""
    return ImageInput(data=sample_image_bytes, filename="sunset.png", content_type="image/png")


@pytest.fixture
def temp_image_file(sample_rgb_image, tmp_path):
    """Create a temporary image file."""
    file_path = tmp_path / "sunset.png"
    sample_rgb_image.save(file_path)
    return file_path


# =============================================================================
# Mock Ollama Responses
# =============================================================================

def make_buffered_response(body=None, json_error: Exception = None) -> MagicMock:
    """Mock requests.Response for a buffered /api/generate call."""
    mock_response = MagicMock()
    mock_response.status_code = 200
    mock_response.raise_for_status = MagicMock()
    if json_error is not None:
        mock_response.json.side_effect = json_error
    else:
        mock_response.json.return_value = body
    return mock_response


def make_stream_response(chunks: List[bytes]) -> MagicMock:
    """Mock requests.Response whose body arrives as the given chunks."""
    mock_response = MagicMock()
    mock_response.status_code = 200
    mock_response.raise_for_status = MagicMock()
    mock_response.iter_content.return_value = iter(chunks)
    return mock_response


@pytest.fixture
def buffered_response():
    """Factory fixture for buffered response mocks."""
    return make_buffered_response


@pytest.fixture
def stream_response():
    """Factory fixture for streamed response mocks."""
    return make_stream_response


@pytest.fixture
def sunset_chunks() -> List[bytes]:
    """A realistic streamed reply, one NDJSON object per chunk."""
    return [
        b'{"model":"gemma3:4b","created_at":"2025-01-01T00:00:00Z","response":"Golden","done":false}\n',
        b'{"model":"gemma3:4b","created_at":"2025-01-01T00:00:00Z","response":" hour","done":false}\n',
        b'{"model":"gemma3:4b","created_at":"2025-01-01T00:00:00Z","response":" vibes","done":false}\n',
        b'{"model":"gemma3:4b","created_at":"2025-01-01T00:00:00Z","response":" #sunset","done":false}\n',
        b'{"model":"gemma3:4b","created_at":"2025-01-01T00:00:00Z","response":"","done":true,"done_reason":"stop"}\n',
    ]


# =============================================================================
# Utility Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset singleton instances between tests."""
    import instacaption.api.deps as deps
    import instacaption.services.ollama_client as oc

    oc._ollama_client = None
    deps._caption_session = None

    yield

    oc._ollama_client = None
    deps._caption_session = None
