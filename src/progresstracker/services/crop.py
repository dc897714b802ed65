"""
Interactive crop rectangle state.

The rectangle is edited in display space (the image scaled-to-fit inside a
container) through eight resize handles and a move handle, then resolved to
source pixels on confirmation.
"""

from dataclasses import dataclass
from enum import Enum

from ..logging_config import get_logger
from ..models.image_record import CropSettings
from ..utils.geometry import CropArea, DisplayBounds, Rect, clamp, fit_image_in_container, resolve_crop

logger = get_logger(__name__)

ASPECT_RATIO_OPTIONS: dict[str, float | None] = {
    "free": None,
    "1:1": 1.0,
    "3:4": 3 / 4,
    "4:3": 4 / 3,
}

MIN_CROP_SIZE = 50
INITIAL_CROP_SIZE = 200
INITIAL_CROP_FRACTION = 0.8
MIN_ZOOM = 1.0
MAX_ZOOM = 3.0


class CropHandle(Enum):
    """Drag handles; compass names list the edges each one moves."""

    N = "n"
    S = "s"
    E = "e"
    W = "w"
    NE = "ne"
    NW = "nw"
    SE = "se"
    SW = "sw"
    MOVE = "move"

    @property
    def is_corner(self) -> bool:
        return len(self.value) == 2 and self is not CropHandle.MOVE


@dataclass
class CropResult:
    """A confirmed crop: the source-pixel area and the settings to store."""

    area: CropArea
    settings: CropSettings


@dataclass
class _Drag:
    handle: CropHandle
    start_x: float
    start_y: float
    start_rect: Rect


class CropController:
    """
    Crop rectangle editor for one image.

    Every resize keeps the rectangle inside the displayed image and at least
    ``MIN_CROP_SIZE`` display units on each side (less only when the
    displayed image itself is smaller). With a fixed aspect ratio, every
    operation keeps width / height equal to the ratio.
    """

    def __init__(
        self,
        source_size: tuple[int, int],
        container_size: tuple[float, float],
        aspect: str = "free",
    ):
        """
        Initialize the controller.

        Args:
            source_size: (width, height) of the image in pixels, EXIF orientation applied
            container_size: (width, height) of the area the image is displayed in
            aspect: Key of ASPECT_RATIO_OPTIONS

        Raises:
            ValueError: If the aspect is unknown or a size is not positive
        """
        self.source_size = source_size
        self.bounds: DisplayBounds = fit_image_in_container(source_size, container_size)
        self.aspect = self._check_aspect(aspect)
        self.zoom = MIN_ZOOM
        self._drag: _Drag | None = None
        self._rect = self._initial_rect()

    @property
    def ratio(self) -> float | None:
        """Width / height of the rectangle, or None in free mode."""
        return ASPECT_RATIO_OPTIONS[self.aspect]

    @property
    def rect(self) -> Rect:
        """Current rectangle in display coordinates."""
        return self._rect

    @property
    def min_width(self) -> float:
        return min(MIN_CROP_SIZE, self.bounds.width)

    @property
    def min_height(self) -> float:
        return min(MIN_CROP_SIZE, self.bounds.height)

    @property
    def is_dragging(self) -> bool:
        return self._drag is not None

    def set_aspect(self, aspect: str) -> Rect:
        """Switch aspect mode; the rectangle and zoom are reset."""
        self.aspect = self._check_aspect(aspect)
        self.zoom = MIN_ZOOM
        self._drag = None
        self._rect = self._initial_rect()
        return self._rect

    def set_zoom(self, zoom: float) -> Rect:
        """
        Shrink the rectangle about its centre to the largest fitting ratio
        rectangle divided by zoom.

        Raises:
            ValueError: In free mode, where zoom has no meaning
        """
        ratio = self.ratio
        if ratio is None:
            raise ValueError("Zoom requires a fixed aspect ratio")

        self.zoom = clamp(zoom, MIN_ZOOM, MAX_ZOOM)
        max_width, _ = self._largest_ratio_size(ratio)
        width = max(max_width / self.zoom, min(self._min_ratio_width(ratio), max_width))
        height = width / ratio

        center_x = self._rect.x + self._rect.width / 2
        center_y = self._rect.y + self._rect.height / 2
        self._rect = self._place(center_x - width / 2, center_y - height / 2, width, height)
        return self._rect

    def begin_drag(self, handle: CropHandle | str, x: float, y: float) -> None:
        """Start dragging a handle from pointer position (x, y)."""
        self._drag = _Drag(CropHandle(handle), x, y, self._rect)

    def drag_to(self, x: float, y: float) -> Rect:
        """
        Update the rectangle for the pointer at (x, y).

        Deltas are measured from where the drag began, so the result does not
        depend on how many intermediate positions were reported.
        """
        if self._drag is None:
            raise RuntimeError("No drag in progress")
        drag = self._drag
        self._rect = self._resize(drag.handle, drag.start_rect, x - drag.start_x, y - drag.start_y)
        return self._rect

    def end_drag(self) -> Rect:
        self._drag = None
        return self._rect

    def apply_delta(self, handle: CropHandle | str, dx: float, dy: float) -> Rect:
        """Apply a single handle movement to the current rectangle."""
        self._rect = self._resize(CropHandle(handle), self._rect, dx, dy)
        return self._rect

    def confirm(self) -> CropResult:
        """Resolve the rectangle to source pixels."""
        self._drag = None
        area = resolve_crop(self._rect, self.bounds, self.source_size)
        settings = CropSettings(
            x=area.x,
            y=area.y,
            width=area.width,
            height=area.height,
            zoom=self.zoom,
            aspect_ratio=self.ratio,
        )
        logger.debug("crop_confirmed", aspect=self.aspect, zoom=self.zoom, area=area.to_dict())
        return CropResult(area=area, settings=settings)

    def cancel(self) -> None:
        """Discard all pending state."""
        self._drag = None
        self.zoom = MIN_ZOOM
        self._rect = self._initial_rect()
        logger.debug("crop_cancelled", aspect=self.aspect)

    def _check_aspect(self, aspect: str) -> str:
        if aspect not in ASPECT_RATIO_OPTIONS:
            raise ValueError(f"Unknown aspect ratio: {aspect!r}")
        return aspect

    def _initial_rect(self) -> Rect:
        ratio = self.ratio
        if ratio is None:
            width = max(min(INITIAL_CROP_SIZE, self.bounds.width * INITIAL_CROP_FRACTION), self.min_width)
            height = max(min(INITIAL_CROP_SIZE, self.bounds.height * INITIAL_CROP_FRACTION), self.min_height)
        else:
            width, height = self._largest_ratio_size(ratio)

        return Rect(
            self.bounds.offset_x + (self.bounds.width - width) / 2,
            self.bounds.offset_y + (self.bounds.height - height) / 2,
            width,
            height,
        )

    def _largest_ratio_size(self, ratio: float) -> tuple[float, float]:
        width = min(self.bounds.width, self.bounds.height * ratio)
        return width, width / ratio

    def _min_ratio_width(self, ratio: float) -> float:
        return max(self.min_width, self.min_height * ratio)

    def _place(self, x: float, y: float, width: float, height: float) -> Rect:
        """Rectangle of the given size moved as little as needed to sit inside the image."""
        b = self.bounds
        return Rect(
            clamp(x, b.offset_x, b.right - width),
            clamp(y, b.offset_y, b.bottom - height),
            width,
            height,
        )

    def _resize(self, handle: CropHandle, rect: Rect, dx: float, dy: float) -> Rect:
        if handle is CropHandle.MOVE:
            return self._place(rect.x + dx, rect.y + dy, rect.width, rect.height)

        ratio = self.ratio
        if ratio is None:
            return self._resize_free(handle.value, rect, dx, dy)
        if handle.is_corner:
            return self._resize_corner(handle.value, rect, dx, dy, ratio)
        return self._resize_edge(handle.value, rect, dx, dy, ratio)

    def _resize_free(self, edges: str, rect: Rect, dx: float, dy: float) -> Rect:
        b = self.bounds
        left, top, right, bottom = rect.x, rect.y, rect.right, rect.bottom

        if "w" in edges:
            left = clamp(left + dx, b.offset_x, right - self.min_width)
        if "e" in edges:
            right = clamp(right + dx, left + self.min_width, b.right)
        if "n" in edges:
            top = clamp(top + dy, b.offset_y, bottom - self.min_height)
        if "s" in edges:
            bottom = clamp(bottom + dy, top + self.min_height, b.bottom)

        return Rect.from_edges(left, top, right, bottom)

    def _resize_corner(self, edges: str, rect: Rect, dx: float, dy: float, ratio: float) -> Rect:
        # The corner opposite the handle stays put
        b = self.bounds
        moves_west = "w" in edges
        moves_north = "n" in edges
        anchor_x = rect.right if moves_west else rect.x
        anchor_y = rect.bottom if moves_north else rect.y

        width_from_x = rect.width - dx if moves_west else rect.width + dx
        height_from_y = rect.height - dy if moves_north else rect.height + dy
        if abs(dx) >= abs(dy) * ratio:
            width = width_from_x
        else:
            width = height_from_y * ratio

        space_x = anchor_x - b.offset_x if moves_west else b.right - anchor_x
        space_y = anchor_y - b.offset_y if moves_north else b.bottom - anchor_y
        width = self._bounded_width(width, min(space_x, space_y * ratio), ratio)
        height = width / ratio

        x = anchor_x - width if moves_west else anchor_x
        y = anchor_y - height if moves_north else anchor_y
        return Rect(x, y, width, height)

    def _resize_edge(self, edge: str, rect: Rect, dx: float, dy: float, ratio: float) -> Rect:
        # The opposite edge stays put; the perpendicular pair grows about the centre line
        b = self.bounds
        if edge in ("e", "w"):
            anchor_x = rect.right if edge == "w" else rect.x
            width = rect.width - dx if edge == "w" else rect.width + dx
            space_x = anchor_x - b.offset_x if edge == "w" else b.right - anchor_x
            width = self._bounded_width(width, min(space_x, b.height * ratio), ratio)
            height = width / ratio
            x = anchor_x - width if edge == "w" else anchor_x
            center_y = rect.y + rect.height / 2
            y = clamp(center_y - height / 2, b.offset_y, b.bottom - height)
            return Rect(x, y, width, height)

        anchor_y = rect.bottom if edge == "n" else rect.y
        height = rect.height - dy if edge == "n" else rect.height + dy
        space_y = anchor_y - b.offset_y if edge == "n" else b.bottom - anchor_y
        width = self._bounded_width(height * ratio, min(b.width, space_y * ratio), ratio)
        height = width / ratio
        y = anchor_y - height if edge == "n" else anchor_y
        center_x = rect.x + rect.width / 2
        x = clamp(center_x - width / 2, b.offset_x, b.right - width)
        return Rect(x, y, width, height)

    def _bounded_width(self, width: float, max_width: float, ratio: float) -> float:
        min_width = min(self._min_ratio_width(ratio), max_width)
        return clamp(width, min_width, max_width)
