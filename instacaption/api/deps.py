from typing import Optional

from instacaption.utils.caption_session import CaptionSession

_caption_session: Optional[CaptionSession] = None


def get_caption_session() -> CaptionSession:
    global _caption_session

    if _caption_session is None:
        _caption_session = CaptionSession()

    return _caption_session
