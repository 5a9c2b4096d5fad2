"""Resize images to fixed-width thumbnails with Pillow."""

import io

from PIL import Image, UnidentifiedImageError

# Formats Pillow can read but not write fall back to PNG.
FALLBACK_FORMAT = "PNG"


class InvalidImageError(ValueError):
    """The source bytes are not a decodable image."""


def load_image(image_data: bytes) -> Image.Image:
    """Loads an image from raw binary data into a PIL Image object."""
    try:
        img = Image.open(io.BytesIO(image_data))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, EOFError) as e:
        raise InvalidImageError(f"Cannot decode image: {e}") from e
    return img


def generate_thumbnail(image_data: bytes, width: int) -> bytes:
    """
    Returns the image scaled to the given width, keeping the aspect ratio.
    Images narrower than width are not upscaled.
    """
    img = load_image(image_data)
    source_format = img.format or FALLBACK_FORMAT

    target_width = min(width, img.width)
    target_height = max(1, round(img.height * target_width / img.width))
    resized = img.resize((target_width, target_height), Image.Resampling.LANCZOS)

    return _encode(resized, source_format)


def _encode(img: Image.Image, format: str) -> bytes:
    # JPEG has no alpha channel or palette
    if format == "JPEG" and img.mode not in ("RGB", "L"):
        img = img.convert("RGB")

    output_buffer = io.BytesIO()
    try:
        img.save(output_buffer, format=format)
    except (KeyError, OSError, ValueError):
        output_buffer = io.BytesIO()
        img.save(output_buffer, format=FALLBACK_FORMAT)
    return output_buffer.getvalue()
