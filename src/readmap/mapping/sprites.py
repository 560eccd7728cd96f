"""Rasterization of marker sprites with Pillow."""

import io
import math

from PIL import Image, ImageColor, ImageDraw

DEFAULT_SPRITE_SIZE = 48
FALLBACK_COLOR = "#D1D5DB"  # flat gray circle for avatars that fail to load


def sprite_name_for(user: str) -> str:
    """Renderer sprite name for a user's avatar."""
    return f"avatar-{user}"


def _circle_mask(size: int, inset: int = 0) -> Image.Image:
    mask = Image.new("L", (size, size), 0)
    ImageDraw.Draw(mask).ellipse((inset, inset, size - 1 - inset, size - 1 - inset), fill=255)
    return mask


def cover_box(width: int, height: int, size: int) -> tuple[int, int, int, int]:
    """
    Scaled dimensions and crop offset for a "cover" fit into a square.

    The constraining dimension is scaled to exactly ``size``; the other one
    overflows and is centered.

    Returns:
        (draw_width, draw_height, offset_x, offset_y) with offsets <= 0
    """
    scale = max(size / max(width, 1), size / max(height, 1))
    draw_w = max(size, math.ceil(width * scale))
    draw_h = max(size, math.ceil(height * scale))
    return draw_w, draw_h, -((draw_w - size) // 2), -((draw_h - size) // 2)


def render_circular_avatar(image_bytes: bytes, size: int = DEFAULT_SPRITE_SIZE) -> Image.Image:
    """
    Decode an image and crop it to a circular square sprite.

    Raises:
        PIL.UnidentifiedImageError / OSError when the bytes are not an image
    """
    with Image.open(io.BytesIO(image_bytes)) as image:
        rgba = image.convert("RGBA")

    draw_w, draw_h, offset_x, offset_y = cover_box(rgba.width, rgba.height, size)
    resampling = Image.Resampling.LANCZOS
    resized = rgba.resize((draw_w, draw_h), resample=resampling)

    canvas = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    canvas.paste(resized, (offset_x, offset_y))

    alpha = canvas.getchannel("A")
    mask = _circle_mask(size)
    canvas.putalpha(Image.composite(alpha, mask, mask))
    return canvas


def make_flat_circle(size: int = DEFAULT_SPRITE_SIZE, color: str = FALLBACK_COLOR, inset: int = 2) -> Image.Image:
    """Solid circle on a transparent square."""
    canvas = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    fill = ImageColor.getcolor(color, "RGBA")
    ImageDraw.Draw(canvas).ellipse((inset, inset, size - 1 - inset, size - 1 - inset), fill=fill)
    return canvas


def make_fallback_sprite(size: int = DEFAULT_SPRITE_SIZE, color: str = FALLBACK_COLOR) -> Image.Image:
    return make_flat_circle(size, color)
