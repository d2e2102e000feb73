"""
Command line front-end: caption one image file, optionally streaming the
caption to stdout as it is generated.

    instacaption photo.jpg --stream
"""

import argparse
import logging
import sys
from typing import List, Optional

from instacaption.config import settings
from instacaption.schemas.caption_schema import ImageInput, RequestMode
from instacaption.services.caption_service import CaptionService
from instacaption.services.ollama_client import OllamaClient
from instacaption.utils.caption_session import CaptionSession

logger = logging.getLogger("instacaption.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="instacaption",
        description="Generate Instagram captions for an image with a local Ollama model"
    )
    parser.add_argument("image", help="Path to the image file")
    parser.add_argument(
        "--stream", action="store_true", help="Print the caption as it is generated"
    )
    parser.add_argument("--model", default=settings.OLLAMA_MODEL, help="Ollama model name")
    parser.add_argument("--url", default=None, help="Ollama base URL (default: $OLLAMA_URL)")
    parser.add_argument(
        "--timeout", type=float, default=None, help="Seconds to wait for the model"
    )
    parser.add_argument("--log-level", default=settings.LOG_LEVEL, help="Logging level")
    return parser


class _TerminalPrinter:
    """Writes only the new tail of each accumulated caption."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdout
        self.printed = ""

    def __call__(self, caption: str) -> None:
        if caption.startswith(self.printed):
            self.stream.write(caption[len(self.printed):])
        else:
            self.stream.write("\n" + caption)
        self.stream.flush()
        self.printed = caption


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr
    )

    try:
        image = ImageInput.from_path(args.image)
    except OSError as e:
        logger.error(f"Error reading file: {e}")
        return 1

    client = OllamaClient(base_url=args.url, timeout=args.timeout)
    session = CaptionSession(CaptionService(client=client, model=args.model))
    session.select_image(image)
    session.set_mode(RequestMode.from_stream_flag(args.stream))

    printer = _TerminalPrinter()
    try:
        result = session.generate(on_update=printer)
    except KeyboardInterrupt:
        session.cancel()
        print(file=sys.stderr)
        return 130

    if printer.printed:
        print()

    if not result.ok:
        logger.error(f"No caption generated ({result.status}): {result.error}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
