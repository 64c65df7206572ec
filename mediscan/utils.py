# mediscan/utils.py
from io import BytesIO
import base64
import binascii

import numpy as np
from PIL import Image, UnidentifiedImageError

from mediscan.errors import ImageDecodeError

ALPHA_FORMATS = {"PNG", "WEBP", "TIFF", "GIF"}


def load_image(image_bytes: bytes) -> Image.Image:
    """
    Decode raw bytes into a fully loaded PIL image.

    Raises ImageDecodeError for empty, corrupt or zero-size input.
    """
    if not image_bytes:
        raise ImageDecodeError("Empty image payload")
    try:
        img = Image.open(BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ImageDecodeError(f"Could not decode image: {e}") from e
    if img.width <= 0 or img.height <= 0:
        raise ImageDecodeError(f"Image has zero dimension ({img.width}x{img.height})")
    return img


def encode_image(image: Image.Image, fmt: str = "PNG") -> bytes:
    """
    Encode `image` in the container format `fmt`.

    Formats without alpha support get the alpha band dropped.
    """
    fmt = (fmt or "PNG").upper()
    if fmt == "JPG":
        fmt = "JPEG"
    if fmt not in ALPHA_FORMATS and image.mode in ("RGBA", "LA", "P"):
        image = image.convert("RGB")
    with BytesIO() as out_bio:
        image.save(out_bio, format=fmt)
        return out_bio.getvalue()


def mime_type_for(fmt: str) -> str:
    Image.init()
    return Image.MIME.get((fmt or "PNG").upper(), "image/png")


def encode_image_to_data_url(image_bytes: bytes, mime: str = "image/png") -> str:
    """
    Return a data URL (base64) string for embedding in JSON or HTML.
    Example: data:image/png;base64,AAA...
    """
    b64 = base64.b64encode(image_bytes).decode("utf-8")
    return f"data:{mime};base64,{b64}"


def decode_data_url(data_url: str) -> bytes:
    """Inverse of encode_image_to_data_url. Plain base64 strings are accepted too."""
    payload = data_url.split(",", 1)[1] if data_url.startswith("data:") else data_url
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ImageDecodeError(f"Invalid base64 image data: {e}") from e


def to_8bit(image: Image.Image) -> Image.Image:
    """
    Rescale 16/32-bit integer and float images to 8-bit grayscale ("L").

    16-bit modes map their full 0-65535 range onto 0-255. "I" and "F" images
    already inside 0-255 keep their values, anything wider is min-max
    stretched. Other modes are returned unchanged.
    """
    if image.mode.startswith("I;16"):
        values = np.asarray(image, dtype=np.float64) / 65535.0 * 255.0
    elif image.mode in ("I", "F"):
        values = np.asarray(image, dtype=np.float64)
        low, high = float(values.min()), float(values.max())
        if low < 0 or high > 255:
            span = high - low
            values = (values - low) / span * 255.0 if span > 0 else np.zeros_like(values)
    else:
        return image
    return Image.fromarray(np.clip(np.round(values), 0, 255).astype(np.uint8))
