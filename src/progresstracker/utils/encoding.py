"""Binary/text conversions for stored image payloads.

Images are stored and exported as ``data:`` URIs so a record stays a plain
JSON-serializable document.
"""

import base64
import binascii
import random
import string
import time

DATA_URL_PREFIX = "data:"
_ID_ALPHABET = string.ascii_lowercase + string.digits


def bytes_to_data_url(data: bytes, mime_type: str = "image/jpeg") -> str:
    """Encode raw bytes as a base64 ``data:`` URI."""
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def parse_data_url(data_url: str) -> tuple[str, str]:
    """
    Split a base64 ``data:`` URI into its mime type and payload.

    Args:
        data_url: String of the form ``data:<mime>;base64,<payload>``

    Returns:
        tuple: (mime_type, base64 payload)

    Raises:
        ValueError: If the string is not a base64 data URI
    """
    if not data_url.startswith(DATA_URL_PREFIX) or "," not in data_url:
        raise ValueError("Not a data URL")

    header, payload = data_url.split(",", 1)
    if not header.endswith(";base64"):
        raise ValueError("Only base64 data URLs are supported")

    mime_type = header[len(DATA_URL_PREFIX) : -len(";base64")] or "image/jpeg"
    return mime_type, payload


def data_url_to_bytes(data_url: str) -> tuple[bytes, str]:
    """
    Decode a base64 ``data:`` URI.

    Returns:
        tuple: (raw bytes, mime_type)

    Raises:
        ValueError: If the URI or its payload is malformed
    """
    mime_type, payload = parse_data_url(data_url)
    try:
        return base64.b64decode(payload, validate=True), mime_type
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e


def data_url_payload_size(data_url: str) -> int:
    """Number of raw bytes encoded in a data URI, computed from its base64 length."""
    try:
        _, payload = parse_data_url(data_url)
    except ValueError:
        return 0
    padding = len(payload) - len(payload.rstrip("="))
    return (len(payload) * 3) // 4 - padding


def format_file_size(size_bytes: int) -> str:
    """
    Format a byte count for display.

    Args:
        size_bytes: Size in bytes

    Returns:
        str: "512 B", "1.5 KB" or "2.3 MB"
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    return f"{size_bytes / (1024 * 1024):.1f} MB"


def generate_image_id(now_ms: int | None = None) -> str:
    """Generate a record id of the form ``img_<epoch-ms>_<9 random base36 chars>``."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"img_{now_ms}_{suffix}"
