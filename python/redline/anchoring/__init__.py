"""Annotation anchoring.

This module provides:
- Coordinate mapping between screen, container and design space
- Structural locators for website elements
- Target resolution from pointer interactions
"""

from redline.anchoring.coordinates import (
    VIEWPORT_PRESETS,
    CoordinateMapper,
    Rect,
    ScreenPoint,
    Size,
    design_size_for,
)
from redline.anchoring.locators import generate_locator, resolve_locator
from redline.anchoring.targets import (
    MIN_REGION_FRACTION,
    ElementHit,
    ImageInteraction,
    WebInteraction,
    anchor_to_screen_point,
    resolve,
)

__all__ = [
    "CoordinateMapper",
    "ElementHit",
    "ImageInteraction",
    "MIN_REGION_FRACTION",
    "Rect",
    "ScreenPoint",
    "Size",
    "VIEWPORT_PRESETS",
    "WebInteraction",
    "anchor_to_screen_point",
    "design_size_for",
    "generate_locator",
    "resolve",
    "resolve_locator",
]
