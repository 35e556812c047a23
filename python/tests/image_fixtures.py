"""Test image fixtures for comment attachment tests.

Images are generated with Pillow so they always decode.
"""

import io
import os

from PIL import Image


def make_image(
    size: tuple[int, int] = (1, 1),
    fmt: str = "PNG",
    mode: str = "RGB",
    color: str | tuple = "white",
) -> bytes:
    img = Image.new(mode, size, color=color)
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


def make_noisy_image(size: tuple[int, int], fmt: str = "PNG") -> bytes:
    """Random-noise RGB image; compresses poorly, useful for size limits."""
    img = Image.frombytes("RGB", size, os.urandom(size[0] * size[1] * 3))
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


TINY_PNG = make_image()
TINY_JPEG = make_image(fmt="JPEG")
TINY_GIF = make_image(fmt="GIF")

# SVG content (always rejected)
SVG_CONTENT = b'<svg xmlns="http://www.w3.org/2000/svg"><circle cx="50" cy="50" r="40"/></svg>'
