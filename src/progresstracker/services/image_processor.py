"""Image processing service: validation, HEIC conversion and bounded compression."""

import io
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from PIL import Image, ImageOps
from pillow_heif import register_heif_opener

from ..config import get_file_size_limits, get_max_image_bytes, get_max_image_dimension
from ..errors import ConversionError, DecodeError, ImageProcessingError, RenderError, ValidationError
from ..logging_config import get_logger, log_error, log_performance
from ..utils.encoding import bytes_to_data_url
from ..utils.geometry import CropArea

register_heif_opener()

logger = get_logger(__name__)


@dataclass
class CompressedImage:
    """Result of compressing one image."""

    data_url: str
    mime_type: str
    size_bytes: int
    width: int
    height: int
    quality: float
    attempts: int


class ImageProcessor:
    """Service for validating, converting and compressing images."""

    ACCEPTED_MIME_TYPES = ("image/jpeg", "image/png", "image/webp", "image/heic", "image/heif")

    # Some platforms leave the MIME type empty for camera formats
    HEIC_EXTENSIONS = {".heic", ".heif"}
    HEIC_MIME_TYPES = {"image/heic", "image/heif"}

    OUTPUT_MIME_TYPE = "image/jpeg"

    # base64 text is ~1.37x the raw bytes it encodes
    ENCODING_OVERHEAD = 1.37

    # Quality is searched in tenths: 0.9 down to 0.1
    START_QUALITY_TENTHS = 9
    MIN_QUALITY_TENTHS = 1

    HEIC_CONVERSION_QUALITY = 0.9

    def __init__(self, max_size_bytes: int | None = None, max_dimension: int | None = None) -> None:
        """
        Initialize the image processor.

        Args:
            max_size_bytes: Size target for compressed images (defaults to MAX_IMAGE_BYTES)
            max_dimension: Largest width/height of compressed images (defaults to MAX_IMAGE_DIMENSION)
        """
        self.max_size_bytes = max_size_bytes if max_size_bytes is not None else get_max_image_bytes()
        self.max_dimension = max_dimension if max_dimension is not None else get_max_image_dimension()
        self.MIN_FILE_SIZE, self.MAX_FILE_SIZE = get_file_size_limits()

    def accepted_types(self) -> str:
        """Comma-separated accept list for file pickers."""
        return ",".join(self.ACCEPTED_MIME_TYPES) + "," + ",".join(sorted(self.HEIC_EXTENSIONS))

    def is_accepted_type(self, file_name: str, mime_type: str | None) -> bool:
        """
        Check a file against the allow-list.

        The declared MIME type is checked first; HEIC/HEIF files are also
        recognized by extension.

        Args:
            file_name: Name of the selected file
            mime_type: Declared MIME type, possibly empty

        Returns:
            bool: True if the file may be ingested
        """
        if mime_type and mime_type.lower() in self.ACCEPTED_MIME_TYPES:
            return True
        return Path(file_name).suffix.lower() in self.HEIC_EXTENSIONS

    def is_heic(self, file_name: str, mime_type: str | None) -> bool:
        """Check whether a file is in a camera format that needs conversion."""
        if mime_type and mime_type.lower() in self.HEIC_MIME_TYPES:
            return True
        return Path(file_name).suffix.lower() in self.HEIC_EXTENSIONS

    def validate_file_size(self, image_data: bytes, file_name: str) -> None:
        """
        Validate that the raw file size is within acceptable limits.

        Raises:
            ValidationError: If file size is outside acceptable limits
        """
        file_size = len(image_data)

        if file_size < self.MIN_FILE_SIZE:
            logger.warning("file_size_too_small", file_name=file_name, file_size=file_size, min_size=self.MIN_FILE_SIZE)
            raise ValidationError(
                f"File '{file_name}' is too small ({file_size} bytes). Minimum size: {self.MIN_FILE_SIZE} bytes",
                code="file_too_small",
                user_message=f"'{file_name}' is too small to be an image.",
                details={"file_name": file_name, "file_size": file_size, "min_size": self.MIN_FILE_SIZE},
            )

        if file_size > self.MAX_FILE_SIZE:
            max_size_mb = self.MAX_FILE_SIZE / (1024 * 1024)
            current_size_mb = file_size / (1024 * 1024)
            logger.warning(
                "file_size_too_large",
                file_name=file_name,
                file_size=file_size,
                max_size=self.MAX_FILE_SIZE,
            )
            raise ValidationError(
                f"File '{file_name}' is too large ({current_size_mb:.1f}MB). Maximum size: {max_size_mb:.0f}MB",
                code="file_too_large",
                user_message=f"'{file_name}' is larger than {max_size_mb:.0f}MB.",
                details={"file_name": file_name, "file_size": file_size, "max_size": self.MAX_FILE_SIZE},
            )

    def validate_file(self, file_name: str, mime_type: str | None, image_data: bytes) -> None:
        """
        Validate a selected file's type and size.

        Raises:
            ValidationError: If the type is not accepted or the size is out of range
        """
        if not self.is_accepted_type(file_name, mime_type):
            logger.warning("unsupported_file_type", file_name=file_name, mime_type=mime_type)
            raise ValidationError(
                f"Unsupported file type for '{file_name}': {mime_type or 'unknown'}",
                code="unsupported_format",
                user_message=f"'{file_name}' is not a supported image (JPG, PNG, WebP or HEIC).",
                details={
                    "file_name": file_name,
                    "mime_type": mime_type,
                    "accepted_types": list(self.ACCEPTED_MIME_TYPES),
                },
            )

        self.validate_file_size(image_data, file_name)

    def get_image_info(self, image_data: bytes) -> dict:
        """
        Get basic image information.

        Raises:
            DecodeError: If image cannot be read
        """
        try:
            with Image.open(io.BytesIO(image_data)) as image:
                return {
                    "format": image.format,
                    "mode": image.mode,
                    "size": image.size,
                    "width": image.width,
                    "height": image.height,
                }
        except Exception as e:
            raise DecodeError(
                f"Failed to get image info: {e}",
                details={"file_size": len(image_data), "operation": "get_image_info"},
                original_exception=e,
            ) from e

    def convert_heic_to_jpeg(self, image_data: bytes, file_name: str = "", quality: float | None = None) -> bytes:
        """
        Convert a HEIC/HEIF image to JPEG.

        The result is upright (EXIF orientation applied) and carries no EXIF
        orientation tag.

        Args:
            image_data: Raw HEIC/HEIF bytes
            file_name: Name of the file, for error reporting
            quality: JPEG quality in (0, 1], defaults to 0.9

        Returns:
            bytes: JPEG data

        Raises:
            ConversionError: If the file cannot be decoded or re-encoded
        """
        start_time = datetime.now()
        quality = quality if quality is not None else self.HEIC_CONVERSION_QUALITY

        try:
            with Image.open(io.BytesIO(image_data)) as image:
                upright = ImageOps.exif_transpose(image)
                buffer = io.BytesIO()
                _to_rgb(upright).save(buffer, format="JPEG", quality=round(quality * 100))
        except Exception as e:
            log_error(e, {"operation": "convert_heic_to_jpeg", "file_name": file_name})
            raise ConversionError(
                f"Failed to convert '{file_name}' to JPEG: {e}",
                details={"file_name": file_name, "file_size": len(image_data)},
                original_exception=e,
            ) from e

        jpeg_data = buffer.getvalue()
        log_performance(
            "convert_heic_to_jpeg",
            (datetime.now() - start_time).total_seconds(),
            file_name=file_name,
            original_file_size=len(image_data),
            jpeg_file_size=len(jpeg_data),
        )
        return jpeg_data

    def load_image(self, source: bytes | Image.Image) -> Image.Image:
        """
        Decode an image and apply its EXIF orientation.

        Raises:
            DecodeError: If the bytes are not a readable image
        """
        if isinstance(source, Image.Image):
            return ImageOps.exif_transpose(source)

        try:
            with Image.open(io.BytesIO(source)) as image:
                image.load()
                return ImageOps.exif_transpose(image)
        except Exception as e:
            log_error(e, {"operation": "load_image", "file_size": len(source)})
            raise DecodeError(
                f"Failed to load image: {e}",
                details={"file_size": len(source), "operation": "load_image"},
                original_exception=e,
            ) from e

    def get_dimensions(self, source: bytes | Image.Image) -> tuple[int, int]:
        """Width and height of an image as displayed (after EXIF orientation)."""
        return self.load_image(source).size

    def calculate_bounded_size(self, size: tuple[int, int], max_dimension: int | None = None) -> tuple[int, int]:
        """
        Scale a size so that neither side exceeds max_dimension.

        The larger side becomes exactly max_dimension and the aspect ratio is
        kept; sizes already within the bound are returned unchanged.
        """
        max_dimension = max_dimension or self.max_dimension
        width, height = size

        if width <= max_dimension and height <= max_dimension:
            return (width, height)

        if width > height:
            return (max_dimension, max(1, round(height * max_dimension / width)))
        return (max(1, round(width * max_dimension / height)), max_dimension)

    def compress(
        self,
        source: bytes | Image.Image,
        max_size_bytes: int | None = None,
        max_dimension: int | None = None,
        crop: CropArea | None = None,
    ) -> CompressedImage:
        """
        Compress an image into a size- and dimension-bounded JPEG data URI.

        The (optionally cropped) image is scaled down to fit max_dimension, then
        encoded starting at quality 0.9 and re-encoded 0.1 lower while the data
        URI is larger than max_size_bytes * 1.37. The search stops at 0.1, so
        the target may still be exceeded.

        Args:
            source: Raw image bytes or a decoded image
            max_size_bytes: Size target (defaults to the processor's)
            max_dimension: Dimension bound (defaults to the processor's)
            crop: Region to keep, in source pixels after EXIF orientation

        Returns:
            CompressedImage: Encoded image and its properties

        Raises:
            DecodeError: If the source cannot be decoded
            RenderError: If cropping, resizing or encoding fails
        """
        start_time = datetime.now()
        max_size_bytes = max_size_bytes if max_size_bytes is not None else self.max_size_bytes
        max_dimension = max_dimension if max_dimension is not None else self.max_dimension

        image = self.load_image(source)
        original_size = image.size

        try:
            if crop is not None:
                image = self._crop(image, crop)

            target_size = self.calculate_bounded_size(image.size, max_dimension)
            canvas = _to_rgb(image)
            if target_size != canvas.size:
                canvas = canvas.resize(target_size, Image.Resampling.LANCZOS)

            quality = self.START_QUALITY_TENTHS
            encoded = self._encode(canvas, quality)
            data_url = bytes_to_data_url(encoded, self.OUTPUT_MIME_TYPE)
            attempts = 1

            while len(data_url) > max_size_bytes * self.ENCODING_OVERHEAD and quality > self.MIN_QUALITY_TENTHS:
                quality -= 1
                encoded = self._encode(canvas, quality)
                data_url = bytes_to_data_url(encoded, self.OUTPUT_MIME_TYPE)
                attempts += 1

        except ImageProcessingError:
            raise
        except Exception as e:
            log_error(e, {"operation": "compress", "original_size": original_size})
            raise RenderError(
                f"Failed to render image: {e}",
                details={"original_size": original_size, "operation": "compress"},
                original_exception=e,
            ) from e

        result = CompressedImage(
            data_url=data_url,
            mime_type=self.OUTPUT_MIME_TYPE,
            size_bytes=len(encoded),
            width=canvas.width,
            height=canvas.height,
            quality=quality / 10,
            attempts=attempts,
        )

        log_performance(
            "compress",
            (datetime.now() - start_time).total_seconds(),
            original_size=original_size,
            output_size=(result.width, result.height),
            size_bytes=result.size_bytes,
            quality=result.quality,
            attempts=attempts,
            cropped=crop is not None,
        )
        return result

    def _crop(self, image: Image.Image, crop: CropArea) -> Image.Image:
        left, upper, right, lower = crop.to_box()
        left = max(0, min(left, image.width))
        upper = max(0, min(upper, image.height))
        right = max(left, min(right, image.width))
        lower = max(upper, min(lower, image.height))

        if right - left < 1 or lower - upper < 1:
            raise RenderError(
                "Crop area is empty",
                code="empty_crop_area",
                user_message="The selected crop area is empty.",
                details={"crop": crop.to_dict(), "image_size": image.size},
            )
        return image.crop((left, upper, right, lower))

    def _encode(self, image: Image.Image, quality_tenths: int) -> bytes:
        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", quality=quality_tenths * 10)
        return buffer.getvalue()


def _to_rgb(image: Image.Image) -> Image.Image:
    """Flatten any mode to RGB, compositing transparency onto white."""
    if image.mode == "RGB":
        return image
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return image.convert("RGB")


_image_processor: ImageProcessor | None = None


def get_image_processor() -> ImageProcessor:
    """
    Get the shared image processor instance.

    Returns:
        ImageProcessor: Processor configured from the environment
    """
    global _image_processor
    if _image_processor is None:
        _image_processor = ImageProcessor()
    return _image_processor
