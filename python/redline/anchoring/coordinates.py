"""Viewport and coordinate mapping for annotation surfaces.

Three coordinate spaces are involved:

- screen:    pixels as reported by the pointer (page/client coordinates)
- container: pixels relative to the top-left of the rendering container
- design:    pixels of the unzoomed, unscrolled surface; for images the natural
             size, for websites one of the fixed viewport presets

Normalized coordinates are design coordinates divided by the design size and
are what gets persisted for image surfaces.

    design    = (container + scroll) / zoom
    container = design * zoom - scroll

Pure geometry, no I/O. The only mutable state is the current container rect,
zoom and scroll, refreshed by the caller on resize/scroll.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from redline.db.models import FileType, Viewport
from redline.schemas.targets import AnchoredPoint, ElementRect


@dataclass(frozen=True)
class Size:
    width: float
    height: float


@dataclass(frozen=True)
class ScreenPoint:
    x: float
    y: float


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle; x/y is the top-left corner."""

    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height


class NormalizedBox(Protocol):
    x: float
    y: float
    w: float
    h: float


VIEWPORT_PRESETS: dict[Viewport, Size] = {
    Viewport.DESKTOP: Size(1440, 900),
    Viewport.TABLET: Size(768, 1024),
    Viewport.MOBILE: Size(375, 667),
}

# ~60 Hz ceiling on container layout refreshes
DEFAULT_REFRESH_INTERVAL_S = 1 / 60


def design_size_for(
    file_type: FileType | str,
    viewport: Viewport | str | None = None,
    natural_size: Size | None = None,
) -> Size:
    """Pick the design size for a surface.

    Raises:
        ValueError: If a website has no viewport, or an image has no natural size.
    """
    if FileType(file_type) == FileType.WEBSITE:
        if viewport is None:
            raise ValueError("website surfaces require a viewport preset")
        return VIEWPORT_PRESETS[Viewport(viewport)]

    if natural_size is None or natural_size.width <= 0 or natural_size.height <= 0:
        raise ValueError("image surfaces require a positive natural size")
    return natural_size


def _clamp_unit(value: float) -> float:
    return min(1.0, max(0.0, value))


class CoordinateMapper:
    """Converts between screen, container, design and normalized coordinates.

    Container updates arriving faster than min_refresh_interval are coalesced:
    the latest one is held and applied on the next read after the interval.
    """

    def __init__(
        self,
        design_size: Size,
        container: Rect,
        zoom: float = 1.0,
        scroll: ScreenPoint = ScreenPoint(0.0, 0.0),
        min_refresh_interval: float = DEFAULT_REFRESH_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        if zoom <= 0:
            raise ValueError("zoom must be positive")
        self.design_size = design_size
        self._container = container
        self.zoom = zoom
        self.scroll = scroll
        self.min_refresh_interval = min_refresh_interval
        self._clock = clock
        self._last_refresh = clock()
        self._pending_container: Rect | None = None

    # -------------------------------------------------------------------------
    # State updates
    # -------------------------------------------------------------------------

    @property
    def container(self) -> Rect:
        self._apply_pending_if_due()
        return self._container

    def update_container(self, rect: Rect) -> bool:
        """Record a new container rect. Returns True if it was applied immediately."""
        now = self._clock()
        if now - self._last_refresh >= self.min_refresh_interval:
            self._container = rect
            self._pending_container = None
            self._last_refresh = now
            return True
        self._pending_container = rect
        return False

    def flush(self) -> None:
        """Apply any coalesced container update now."""
        if self._pending_container is not None:
            self._container = self._pending_container
            self._pending_container = None
            self._last_refresh = self._clock()

    def _apply_pending_if_due(self) -> None:
        if self._pending_container is None:
            return
        if self._clock() - self._last_refresh >= self.min_refresh_interval:
            self.flush()

    def set_zoom(self, zoom: float) -> None:
        if zoom <= 0:
            raise ValueError("zoom must be positive")
        self.zoom = zoom

    def set_scroll(self, x: float, y: float) -> None:
        self.scroll = ScreenPoint(x, y)

    def fit_zoom(self) -> float:
        """Zoom at which the whole design surface fits inside the container."""
        container = self.container
        return min(
            container.width / self.design_size.width,
            container.height / self.design_size.height,
        )

    # -------------------------------------------------------------------------
    # Conversions
    # -------------------------------------------------------------------------

    def screen_to_container(self, point: ScreenPoint) -> ScreenPoint:
        container = self.container
        return ScreenPoint(point.x - container.x, point.y - container.y)

    def screen_to_design(self, point: ScreenPoint) -> ScreenPoint:
        local = self.screen_to_container(point)
        return ScreenPoint(
            (local.x + self.scroll.x) / self.zoom,
            (local.y + self.scroll.y) / self.zoom,
        )

    def design_to_screen(self, point: ScreenPoint, absolute: bool = False) -> ScreenPoint:
        x = point.x * self.zoom - self.scroll.x
        y = point.y * self.zoom - self.scroll.y
        if absolute:
            container = self.container
            x += container.x
            y += container.y
        return ScreenPoint(x, y)

    def to_normalized(self, point: ScreenPoint) -> ScreenPoint:
        """Screen point to normalized [0, 1] design coordinates, clamped."""
        design = self.screen_to_design(point)
        return ScreenPoint(
            _clamp_unit(design.x / self.design_size.width),
            _clamp_unit(design.y / self.design_size.height),
        )

    def to_screen_rect(
        self,
        target: NormalizedBox | AnchoredPoint,
        element_rect: ElementRect | None = None,
        absolute: bool = False,
    ) -> Rect:
        """Project a normalized box or an anchored point into pixels.

        The result is container-relative unless absolute=True. An AnchoredPoint
        needs the element's *current* document rect; its capture-time
        absolute_position is never used.
        """
        if isinstance(target, AnchoredPoint):
            if element_rect is None:
                raise ValueError("anchored points require the element's current rect")
            design = anchor_to_design_point(target, element_rect)
            origin = self.design_to_screen(design, absolute=absolute)
            return Rect(origin.x, origin.y, 0.0, 0.0)

        origin = self.design_to_screen(
            ScreenPoint(target.x * self.design_size.width, target.y * self.design_size.height),
            absolute=absolute,
        )
        return Rect(
            origin.x,
            origin.y,
            target.w * self.design_size.width * self.zoom,
            target.h * self.design_size.height * self.zoom,
        )


def anchor_to_design_point(anchor: AnchoredPoint, element_rect: ElementRect) -> ScreenPoint:
    """Resolve an anchor against the element's current document rect."""
    return ScreenPoint(
        element_rect.left + anchor.relative_position.x * element_rect.width,
        element_rect.top + anchor.relative_position.y * element_rect.height,
    )


def element_rect_to_rect(element_rect: ElementRect) -> Rect:
    return Rect(element_rect.left, element_rect.top, element_rect.width, element_rect.height)


def bounding_rect(a: ScreenPoint, b: ScreenPoint) -> Rect:
    """Positive-size rect spanning two corner points in any drag direction."""
    left, right = sorted((a.x, b.x))
    top, bottom = sorted((a.y, b.y))
    return Rect(left, top, right - left, bottom - top)


__all__ = [
    "CoordinateMapper",
    "Rect",
    "ScreenPoint",
    "Size",
    "VIEWPORT_PRESETS",
    "anchor_to_design_point",
    "bounding_rect",
    "design_size_for",
    "element_rect_to_rect",
]
