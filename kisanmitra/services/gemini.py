"""
Gemini Client Helpers
Credential lookup, client construction and response parsing shared by the
advisory, market price and soil agents.
"""
import base64
import binascii
import json
import logging
import os
from io import BytesIO
from typing import Any, Dict, Optional, Tuple, Union

from google import genai
from PIL import Image

from ..errors import CapabilityUnavailable, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_TEXT_MODEL = "gemini-2.5-flash"
DEFAULT_IMAGE_MODEL = "imagen-4.0-generate-001"

# Large inline images make the API reject the request; anything bigger is
# re-encoded before upload.
MAX_INLINE_BYTES = 700_000
MAX_INLINE_DIMENSION = 1400
REENCODE_DIMENSION = 1200
REENCODE_QUALITY = 75

_client = None


def get_gemini_api_keys() -> list:
    """Return configured Gemini API keys in priority order.

    Accepts GEMINI_API_KEYS (comma/newline separated), GEMINI_API_KEY or the
    bare API_KEY name. Only the first whitespace-delimited token of each
    entry is kept so trailing comments never reach a request.
    """
    raw = (
        os.getenv("GEMINI_API_KEYS", "")
        or os.getenv("GEMINI_API_KEY", "")
        or os.getenv("API_KEY", "")
    )
    keys: list[str] = []
    for chunk in raw.replace(",", "\n").splitlines():
        token = chunk.strip()
        if not token:
            continue
        keys.append(token.split()[0].strip())
    return keys


def get_gemini_api_key() -> str:
    keys = get_gemini_api_keys()
    return keys[0] if keys else ""


def text_model() -> str:
    return os.getenv("GEMINI_TEXT_MODEL", DEFAULT_TEXT_MODEL)


def image_model() -> str:
    return os.getenv("GEMINI_IMAGE_MODEL", DEFAULT_IMAGE_MODEL)


def env_flag(name: str, default: bool = True) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def get_client():
    """Return the shared Gemini client, creating it on first use."""
    global _client
    if _client is None:
        api_key = get_gemini_api_key()
        if not api_key:
            raise CapabilityUnavailable("GEMINI_API_KEY not configured")
        logger.info("[gemini] creating client (key %s...)", api_key[:6])
        _client = genai.Client(api_key=api_key)
    return _client


def set_client(client) -> None:
    """Replace the shared client; `None` forces re-creation from the env."""
    global _client
    _client = client


def extract_json_object(content: Optional[str]) -> Dict[str, Any]:
    """Parse the first JSON object from a model reply.

    Structured output is usually clean JSON, but replies wrapped in Markdown
    fences or followed by commentary are tolerated too.
    """
    txt = (content or "").strip()
    if txt.startswith("```json"):
        txt = txt[7:]
    if txt.startswith("```"):
        txt = txt[3:]
    if txt.endswith("```"):
        txt = txt[:-3]
    txt = txt.strip()

    try:
        data = json.loads(txt)
    except json.JSONDecodeError:
        data = None
    if isinstance(data, dict):
        return data

    start = txt.find("{")
    if start == -1:
        raise ValueError("No JSON object start found")
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(txt)):
        ch = txt[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                data = json.loads(txt[start:i + 1])
                if not isinstance(data, dict):
                    raise ValueError("JSON value is not an object")
                return data
    raise ValueError("No complete JSON object found")


def split_data_uri(image: Union[str, bytes], mime_type: Optional[str] = None) -> Tuple[bytes, str]:
    """Decode a captured frame into raw bytes and its mime type.

    Accepts raw bytes, plain base64, or a `data:<mime>;base64,` URI as
    produced by the camera capture. `mime_type` labels raw bytes and plain
    base64 (an upload's content type); a data URI header wins over it.
    """
    default_mime = mime_type or "image/jpeg"
    if isinstance(image, (bytes, bytearray)):
        if not image:
            raise ValidationError("Please capture an image first.")
        return bytes(image), default_mime

    text = (image or "").strip()
    if not text:
        raise ValidationError("Please capture an image first.")

    mime_type = default_mime
    if text.startswith("data:"):
        header, _, text = text.partition(",")
        declared = header[5:].split(";")[0].strip()
        if declared:
            mime_type = declared
    try:
        data = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("The captured image could not be decoded.")
    if not data:
        raise ValidationError("Please capture an image first.")
    return data, mime_type


def to_data_uri(data: bytes, mime_type: str = "image/jpeg") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('utf-8')}"


def prepare_image(data: bytes, mime_type: str = "image/jpeg") -> Tuple[bytes, str]:
    """Shrink oversized images before they are sent inline to Gemini."""
    need_reencode = len(data) > MAX_INLINE_BYTES
    if not need_reencode:
        try:
            with Image.open(BytesIO(data)) as img:
                need_reencode = max(img.size) > MAX_INLINE_DIMENSION
        except Exception as e:
            # Pillow cannot read every format Gemini accepts; send as-is.
            logger.debug("[gemini] image preflight skipped: %s", e)
            return data, mime_type

    if not need_reencode:
        return data, mime_type

    try:
        with Image.open(BytesIO(data)) as img:
            img = img.convert("RGB")
            w, h = img.size
            if max(w, h) > REENCODE_DIMENSION:
                scale = REENCODE_DIMENSION / float(max(w, h))
                img = img.resize((int(w * scale), int(h * scale)), Image.LANCZOS)
            out = BytesIO()
            img.save(out, format="JPEG", quality=REENCODE_QUALITY, optimize=True)
    except Exception as e:
        logger.warning("[gemini] failed to re-encode image, sending original: %s", e)
        return data, mime_type

    out_bytes = out.getvalue()
    logger.debug("[gemini] re-encoded image %d -> %d bytes", len(data), len(out_bytes))
    return out_bytes, "image/jpeg"
