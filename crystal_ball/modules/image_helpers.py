import base64
from io import BytesIO
from typing import Optional, Tuple

from fastapi import HTTPException
from PIL import Image, UnidentifiedImageError

ALLOWED_FORMATS = {"PNG": "image/png", "JPEG": "image/jpeg", "WEBP": "image/webp", "GIF": "image/gif"}
MAX_IMAGE_BYTES = 5 * 1024 * 1024


def image_format(data: bytes) -> Tuple[Optional[str], Optional[int], Optional[int]]:
    try:
        with Image.open(BytesIO(data)) as img:
            img.verify()
            return img.format, img.width, img.height
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
        return None, None, None


def image_data_url(data: bytes) -> str:
    """Validate an uploaded picture and inline it as a ``data:`` URL."""
    if not data:
        raise HTTPException(status_code=400, detail="No image provided")
    if len(data) > MAX_IMAGE_BYTES:
        raise HTTPException(status_code=400, detail="Image must be less than 5MB")
    fmt, _width, _height = image_format(data)
    mime = ALLOWED_FORMATS.get(fmt or "")
    if not mime:
        raise HTTPException(status_code=400, detail="Unsupported image type")
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"
