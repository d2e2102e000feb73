import os
from typing import Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

load_dotenv()


def _optional_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    return float(value) if value else None


def _optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value else None


class Settings(BaseSettings):
    # Server settings
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", 8000))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    # Ollama settings
    OLLAMA_URL: str = os.getenv("OLLAMA_URL", "http://127.0.0.1:11434")
    OLLAMA_MODEL: str = os.getenv("OLLAMA_MODEL", "gemma3:4b")

    # Seconds to wait on /api/generate; unset waits indefinitely
    REQUEST_TIMEOUT: Optional[float] = _optional_float("REQUEST_TIMEOUT")
    HEALTH_TIMEOUT: float = float(os.getenv("HEALTH_TIMEOUT", "5"))

    # Streaming settings
    # Unset yields bytes as soon as the transport delivers them
    STREAM_CHUNK_SIZE: Optional[int] = _optional_int("STREAM_CHUNK_SIZE")
    REASSEMBLE_SPLIT_FRAGMENTS: bool = (
        os.getenv("REASSEMBLE_SPLIT_FRAGMENTS", "true").lower() in ("1", "true", "yes")
    )

    # Instruction sent with every image (configurable via environment)
    CAPTION_PROMPT: str = os.getenv(
        "CAPTION_PROMPT",
        """Give me an instagram caption for this image under 100 words.
Make sure to give me just the caption and no other text.
Try to provide best 3 captions in a list format.
If you are not sure about the caption, just say "I am not sure about the caption" and do not provide any other text.
Also include hashtags if relevant."""
    )

    class Config:
        env_file = ".env"
        env_ignore_empty = True
        extra = "allow"


settings = Settings()
