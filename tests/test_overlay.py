"""
Tests for the labelled overlay sent to the classifier.
"""
import base64
import io

from PIL import Image

from solver.layout import BoxLayout, TargetPoint
from solver.overlay import BOX_COLOR, annotate, draw_crosshair, to_base64
from solver.segmentation import Component


def test_annotate_draws_box_outline_on_a_copy():
    image = Image.new("RGB", (120, 60), color=(200, 200, 255))
    layout = BoxLayout([Component(min_x=30, min_y=25, max_x=50, max_y=45, area=300)])

    annotated = annotate(image, layout)

    assert annotated.size == image.size
    assert annotated.mode == "RGB"
    assert annotated.getpixel((30, 35)) == BOX_COLOR
    assert annotated.getpixel((40, 35)) == (200, 200, 255)
    assert image.getpixel((30, 35)) == (200, 200, 255)


def test_label_drawn_below_box_near_top_edge():
    image = Image.new("RGB", (120, 80), color="white")
    layout = BoxLayout([Component(min_x=40, min_y=2, max_x=60, max_y=12, area=150)])

    annotated = annotate(image, layout)

    below = annotated.crop((40, 13, 70, 45))
    assert any(pixel != (255, 255, 255) for pixel in below.getdata())


def test_to_base64_round_trips_png():
    image = Image.new("RGBA", (8, 4), color=(1, 2, 3, 255))

    decoded = Image.open(io.BytesIO(base64.b64decode(to_base64(image))))

    assert decoded.format == "PNG"
    assert decoded.size == (8, 4)


def test_crosshair_maps_display_point_back_to_pixels():
    image = Image.new("RGB", (100, 100), color="white")
    marked = draw_crosshair(image, TargetPoint(x=100.0, y=50.0, index=1), color="red", scale=(2.0, 1.0))

    assert marked.getpixel((50, 50)) != (255, 255, 255)
    assert image.getpixel((50, 50)) == (255, 255, 255)
