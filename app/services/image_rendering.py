"""Image rendering service for WADO-RS rendered endpoints."""

import io
import logging
from pathlib import Path

import numpy as np
from PIL import Image

from app.services.dataset_reader import read_header
from app.services.frame_extraction import FrameDecoder, decode_frame, number_of_frames

logger = logging.getLogger(__name__)

RENDERED_MEDIA_TYPES = {"jpeg": "image/jpeg", "png": "image/png"}


def negotiate_rendered_format(accept: str | None) -> str | None:
    """
    Pick the rendered format from an Accept header.

    Returns:
        "jpeg" or "png", or None if nothing acceptable was requested

    Examples:
        >>> negotiate_rendered_format("image/png")
        'png'
        >>> negotiate_rendered_format(None)
        'jpeg'
        >>> negotiate_rendered_format("application/dicom") is None
        True
    """
    if not accept or not accept.strip():
        return "jpeg"
    accept_lower = accept.lower()
    if "image/png" in accept_lower:
        return "png"
    if "image/jpeg" in accept_lower or "image/*" in accept_lower or "*/*" in accept_lower:
        return "jpeg"
    return None


def render_frame(
    dcm_path: Path,
    frame_number: int = 1,
    format: str = "jpeg",
    quality: int = 100,
    decoder: FrameDecoder = decode_frame,
) -> bytes:
    """
    Render one DICOM frame to JPEG or PNG.

    Args:
        dcm_path: Path to DICOM file
        frame_number: Frame number (1-indexed)
        format: Output format ("jpeg" or "png")
        quality: JPEG quality (1-100, ignored for PNG)
        decoder: Raster decoder returning the frame as an array

    Returns:
        Rendered image as bytes

    Raises:
        ValueError: If the format, quality or frame number is invalid, or the
            frame cannot be decoded
    """
    format = format.lower()
    if format not in RENDERED_MEDIA_TYPES:
        raise ValueError(f"Unsupported format: {format}")
    if format == "jpeg" and not (1 <= quality <= 100):
        raise ValueError(f"JPEG quality must be 1-100, got {quality}")

    ds = read_header(dcm_path)
    total = number_of_frames(ds)
    if frame_number < 1 or frame_number > total:
        raise ValueError(f"Frame {frame_number} out of range (instance has {total} frames)")

    logger.info(f"Rendering frame {frame_number} of {dcm_path} as {format} (quality={quality})")

    try:
        frame_data = decoder(dcm_path, frame_number - 1)
    except Exception as e:
        raise ValueError(f"Instance does not contain decodable pixel data: {e}") from e

    monochrome = int(ds.get("SamplesPerPixel", 1) or 1) == 1
    if monochrome and "WindowCenter" in ds and "WindowWidth" in ds:
        logger.debug(f"Applying windowing: center={ds.WindowCenter}, width={ds.WindowWidth}")
        frame_data = apply_windowing(frame_data, ds.WindowCenter, ds.WindowWidth)

    if frame_data.dtype != np.uint8:
        frame_data = normalize_to_uint8(frame_data)

    image = Image.fromarray(frame_data)
    if format == "jpeg" and image.mode not in ("L", "RGB"):
        image = image.convert("RGB")

    buffer = io.BytesIO()
    if format == "jpeg":
        image.save(buffer, format="JPEG", quality=quality)
    else:
        image.save(buffer, format="PNG")

    image_bytes = buffer.getvalue()
    logger.debug(f"Rendered {len(image_bytes)} bytes as {format}")
    return image_bytes


def apply_windowing(pixel_array: np.ndarray, center, width) -> np.ndarray:
    """
    Apply a linear VOI window and scale to uint8.

    Multi-valued center/width (one per window) use the first window.
    """
    if not isinstance(center, (int, float)):
        center = float(center[0])
    if not isinstance(width, (int, float)):
        width = float(width[0])
    width = max(float(width), 1.0)

    lower = center - width / 2
    upper = center + width / 2

    arr = np.clip(pixel_array.astype(np.float32), lower, upper)
    return ((arr - lower) / width * 255).astype(np.uint8)


def normalize_to_uint8(pixel_array: np.ndarray) -> np.ndarray:
    """Stretch the array's value range onto 0-255."""
    arr = pixel_array.astype(np.float32)
    arr_min = arr.min()
    arr_max = arr.max()

    if arr_max > arr_min:
        return ((arr - arr_min) / (arr_max - arr_min) * 255).astype(np.uint8)
    return np.zeros_like(arr, dtype=np.uint8)
