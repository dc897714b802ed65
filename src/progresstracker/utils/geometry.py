"""Pixel-space rectangle math for cropping.

Two coordinate spaces are involved: display space (the image drawn
scaled-to-fit and letterboxed inside a container) and source space (the
pixels of the decoded image). Crop rectangles are edited in display space and
resolved to source space before any pixels are extracted.
"""

from dataclasses import asdict, dataclass


def clamp(value: float, low: float, high: float) -> float:
    """Clamp value into [low, high]."""
    return max(low, min(high, value))


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle."""

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

    @classmethod
    def from_edges(cls, left: float, top: float, right: float, bottom: float) -> "Rect":
        return cls(x=left, y=top, width=right - left, height=bottom - top)

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class CropArea(Rect):
    """A crop rectangle in source-pixel coordinates."""

    def to_box(self) -> tuple[int, int, int, int]:
        """Integer (left, upper, right, lower) box as expected by ``PIL.Image.crop``."""
        return (round(self.x), round(self.y), round(self.right), round(self.bottom))


@dataclass(frozen=True)
class DisplayBounds:
    """Where a scaled-to-fit image sits inside its container."""

    offset_x: float
    offset_y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.offset_x + self.width

    @property
    def bottom(self) -> float:
        return self.offset_y + self.height

    def as_rect(self) -> Rect:
        return Rect(self.offset_x, self.offset_y, self.width, self.height)


def fit_image_in_container(image_size: tuple[int, int], container_size: tuple[float, float]) -> DisplayBounds:
    """
    Compute the letterboxed placement of an image scaled to fit a container.

    The image fills the container along one axis and is centred along the
    other.

    Args:
        image_size: (width, height) of the source image in pixels
        container_size: (width, height) of the container in display units

    Returns:
        DisplayBounds: display offset and size of the image

    Raises:
        ValueError: If any dimension is not positive
    """
    image_width, image_height = image_size
    container_width, container_height = container_size
    if min(image_width, image_height, container_width, container_height) <= 0:
        raise ValueError("Image and container dimensions must be positive")

    # Compare cross products so equal aspect ratios fill exactly
    if image_width * container_height > container_width * image_height:
        display_width = container_width
        display_height = container_width * image_height / image_width
        return DisplayBounds(0.0, (container_height - display_height) / 2, display_width, display_height)

    display_height = container_height
    display_width = container_height * image_width / image_height
    return DisplayBounds((container_width - display_width) / 2, 0.0, display_width, display_height)


def resolve_crop(display_rect: Rect, image_bounds: DisplayBounds, source_size: tuple[int, int]) -> CropArea:
    """
    Translate a display-space rectangle into source-pixel coordinates.

    The rectangle is shifted by the image's display offset, scaled per axis by
    source/display size and clamped to ``[0, width] x [0, height]``.

    Args:
        display_rect: Crop rectangle in display coordinates
        image_bounds: Placement of the displayed image
        source_size: (width, height) of the source image in pixels

    Returns:
        CropArea: Rectangle in source pixels

    Raises:
        ValueError: If the displayed image has no area
    """
    if image_bounds.width <= 0 or image_bounds.height <= 0:
        raise ValueError("Displayed image has no area")

    source_width, source_height = source_size
    scale_x = source_width / image_bounds.width
    scale_y = source_height / image_bounds.height

    left = (display_rect.x - image_bounds.offset_x) * scale_x
    top = (display_rect.y - image_bounds.offset_y) * scale_y
    right = left + display_rect.width * scale_x
    bottom = top + display_rect.height * scale_y

    left = clamp(left, 0, source_width)
    top = clamp(top, 0, source_height)
    right = clamp(right, left, source_width)
    bottom = clamp(bottom, top, source_height)

    return CropArea(x=left, y=top, width=right - left, height=bottom - top)
