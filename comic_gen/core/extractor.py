import base64
import binascii
import logging
from typing import Any, Awaitable, Callable, List, NamedTuple, Tuple

from comic_gen.core.errors import FetchError, NoImageReturnedError

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/png"

Fetcher = Callable[[str], Awaitable[Tuple[bytes, str]]]


class ExtractedImage(NamedTuple):
    data: bytes
    mime_type: str


def _response_parts(response: Any) -> List[Any]:
    parts = getattr(response, "parts", None)
    if parts:
        return list(parts)
    # Older responses only expose parts through the first candidate
    candidates = getattr(response, "candidates", None) or []
    if candidates:
        content = getattr(candidates[0], "content", None)
        return list(getattr(content, "parts", None) or [])
    return []


def _inline_bytes(part: Any) -> Tuple[bytes, str]:
    inline = getattr(part, "inline_data", None)
    if not inline:
        return b"", ""
    data = getattr(inline, "data", None)
    if isinstance(data, str):
        try:
            data = base64.b64decode(data)
        except (binascii.Error, ValueError):
            logger.warning("Inline image data is not valid base64. Skipping part.")
            return b"", ""
    return data or b"", getattr(inline, "mime_type", None) or DEFAULT_MIME_TYPE


async def extract_image(response: Any, fetcher: Fetcher) -> ExtractedImage:
    """
    Pulls the first usable image out of a generation response.

    Parts are scanned in order. Inline image bytes win immediately; a part
    pointing at an external file is downloaded with fetcher, and if that
    download fails the scan moves on to the next part. Raises
    NoImageReturnedError when no part yields image bytes.
    """
    for part in _response_parts(response):
        data, mime_type = _inline_bytes(part)
        if data:
            return ExtractedImage(data, mime_type)

        file_data = getattr(part, "file_data", None)
        file_uri = getattr(file_data, "file_uri", None) if file_data else None
        if not file_uri:
            continue
        try:
            body, content_type = await fetcher(file_uri)
        except FetchError as e:
            logger.warning(f"Could not fetch image file {file_uri}: {e}. Trying remaining parts.")
            continue
        if body:
            declared = getattr(file_data, "mime_type", None)
            return ExtractedImage(body, content_type or declared or DEFAULT_MIME_TYPE)

    raise NoImageReturnedError("Generation returned no image.")
