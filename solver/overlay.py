"""
Draws numbered glyph boxes on the challenge image.
The classifier answers with one of these labels, so the picture it sees must
use exactly the numbering of the BoxLayout.
"""

import io
import base64
from typing import Optional

from PIL import Image, ImageDraw, ImageFont

from .layout import BoxLayout, TargetPoint


BOX_COLOR = (0, 255, 0)
LABEL_COLOR = (255, 0, 0)
SHADOW_COLOR = (0, 0, 0)
BOX_WIDTH = 2
LABEL_FONT_SIZE = 20
LABEL_GAP = 5


def _load_font(size: int) -> ImageFont.ImageFont:
    for name in ("arialbd.ttf", "DejaVuSans-Bold.ttf", "arial.ttf"):
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    return ImageFont.load_default()


def annotate(image: Image.Image, layout: BoxLayout, font_size: int = LABEL_FONT_SIZE) -> Image.Image:
    """
    Return a colour copy of the image with every box outlined and labelled.

    Labels go above the box, or below it when the box is too close to the top
    edge for the text to fit.
    """
    annotated = image.convert("RGB")
    draw = ImageDraw.Draw(annotated)
    font = _load_font(font_size)

    for index, box in layout.labeled():
        draw.rectangle(
            [(box.min_x, box.min_y), (box.max_x, box.max_y)],
            outline=BOX_COLOR,
            width=BOX_WIDTH,
        )

        label = str(index)
        text_bbox = draw.textbbox((0, 0), label, font=font)
        text_h = text_bbox[3] - text_bbox[1]
        if box.min_y >= font_size:
            text_y = box.min_y - LABEL_GAP - text_h
        else:
            text_y = box.max_y + LABEL_GAP
        text_x = box.min_x

        # Dark outline keeps the label readable on any background
        for dx, dy in ((-1, 0), (1, 0), (0, -1), (0, 1)):
            draw.text((text_x + dx, text_y + dy), label, fill=SHADOW_COLOR, font=font)
        draw.text((text_x, text_y), label, fill=LABEL_COLOR, font=font)

    return annotated


def draw_crosshair(
    image: Image.Image,
    target: TargetPoint,
    color: str = "green",
    scale: Optional[tuple] = None,
) -> Image.Image:
    """Mark a target on a copy of the image (scale maps display space back to pixels)."""
    result = image.copy()
    draw = ImageDraw.Draw(result)
    x, y = target.x, target.y
    if scale:
        x, y = x / scale[0], y / scale[1]

    size = 10
    draw.line([(x - size, y), (x + size, y)], fill=color, width=2)
    draw.line([(x, y - size), (x, y + size)], fill=color, width=2)
    draw.ellipse([(x - 4, y - 4), (x + 4, y + 4)], outline=color, width=2)
    return result


def to_base64(image: Image.Image) -> str:
    """Encode an image as base64 PNG for the classifier request."""
    buffer = io.BytesIO()
    if image.mode not in ("RGB", "RGBA", "L"):
        image = image.convert("RGB")
    image.save(buffer, format="PNG", compress_level=1)
    return base64.b64encode(buffer.getvalue()).decode("utf-8")
