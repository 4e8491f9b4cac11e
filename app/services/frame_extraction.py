"""Frame extraction service for WADO-RS frame retrieval.

Pixel data comes in two shapes:

- native: one contiguous buffer, frames are fixed-size slices of it
- encapsulated: a basic offset table followed by compressed fragments.
  Fragments do not map 1:1 to frames in general, so encapsulated frames are
  always decoded through the raster decoder rather than read from a fragment.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path

import numpy as np
from pydicom.dataset import Dataset
from pydicom.encaps import generate_fragments, parse_basic_offsets
from pydicom.pixels import pixel_array

from app.services.dataset_reader import read_dicom, read_header, transfer_syntax
from app.services.errors import DicomParseError, FrameUnavailableError
from app.services.results import Failure, FailureKind

logger = logging.getLogger(__name__)

FrameDecoder = Callable[[Path, int], np.ndarray]


@dataclass(frozen=True)
class NativePixelData:
    """Uncompressed pixel data held in one buffer."""

    buffer: bytes


@dataclass(frozen=True)
class EncapsulatedPixelData:
    """Compressed pixel data: basic offset table plus data fragments."""

    offsets: tuple[int, ...]
    fragments: tuple[bytes, ...]


PixelData = NativePixelData | EncapsulatedPixelData


def parse_frame_numbers(value: str | None) -> list[int]:
    """
    Parse a comma-separated list of 1-based frame numbers.

    Invalid and non-positive tokens are dropped; order is preserved.

    Examples:
        >>> parse_frame_numbers("5,1,10,3")
        [5, 1, 10, 3]
        >>> parse_frame_numbers("1,abc,3")
        [1, 3]
        >>> parse_frame_numbers("0,-1,1,2")
        [1, 2]
        >>> parse_frame_numbers("")
        []
    """
    result: list[int] = []
    if value is None or not value.strip():
        return result

    for part in value.split(","):
        try:
            frame_number = int(part.strip())
        except ValueError:
            logger.warning(f"Invalid frame number: {part!r}")
            continue
        if frame_number > 0:
            result.append(frame_number)
    return result


def number_of_frames(ds: Dataset) -> int:
    """NumberOfFrames, defaulting to 1 when absent or empty."""
    value = ds.get("NumberOfFrames")
    if value is None or str(value).strip() == "":
        return 1
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise FrameUnavailableError(
            f"Invalid NumberOfFrames {value!r}", FailureKind.PARSE
        ) from e


def frame_size(ds: Dataset) -> int:
    """Bytes per native frame: rows * columns * samples * bytes per sample."""
    rows = int(ds.get("Rows", 0) or 0)
    columns = int(ds.get("Columns", 0) or 0)
    samples_per_pixel = int(ds.get("SamplesPerPixel", 1) or 1)
    bits_allocated = int(ds.get("BitsAllocated", 8) or 8)
    return rows * columns * samples_per_pixel * (bits_allocated // 8)


def classify_pixel_data(ds: Dataset) -> PixelData:
    """
    Classify the dataset's pixel data as native or encapsulated.

    Raises:
        FrameUnavailableError: If there is no pixel data or the fragment
            sequence is malformed
    """
    if "PixelData" not in ds:
        raise FrameUnavailableError("Instance does not contain pixel data", FailureKind.DECODE)

    value = ds.PixelData
    if not transfer_syntax(ds).is_encapsulated:
        return NativePixelData(bytes(value))

    buffer = BytesIO(value)
    try:
        offsets = parse_basic_offsets(buffer)
        fragments = tuple(generate_fragments(buffer))
    except Exception as e:
        raise FrameUnavailableError(
            f"Malformed encapsulated pixel data: {e}", FailureKind.PARSE
        ) from e
    return EncapsulatedPixelData(offsets=tuple(offsets), fragments=fragments)


def decode_frame(dcm_path: Path, frame_index: int) -> np.ndarray:
    """Decode one frame with pydicom's pixel data backends (Pillow, numpy, RLE)."""
    # Files without File Meta carry no transfer syntax of their own
    tsyntax = transfer_syntax(read_header(dcm_path))
    return pixel_array(dcm_path, index=frame_index, transfer_syntax_uid=tsyntax)


def load_pixel_dataset(dcm_path: Path) -> Dataset:
    """
    Read a DICOM file including its pixel data.

    Raises:
        FrameUnavailableError: If the file cannot be read or parsed
    """
    try:
        return read_dicom(dcm_path)
    except DicomParseError as e:
        raise FrameUnavailableError(str(e), FailureKind.PARSE) from e


def _frame_from_dataset(
    ds: Dataset,
    pixel_data: PixelData,
    dcm_path: Path,
    frame_index: int,
    decoder: FrameDecoder,
) -> bytes:
    total = number_of_frames(ds)
    if frame_index < 0 or frame_index >= total:
        raise FrameUnavailableError(
            f"Frame index {frame_index} out of range (instance has {total} frames)",
            FailureKind.OUT_OF_RANGE,
        )

    if isinstance(pixel_data, NativePixelData):
        size = frame_size(ds)
        start = frame_index * size
        if size <= 0 or start + size > len(pixel_data.buffer):
            raise FrameUnavailableError(
                f"Cannot slice frame {frame_index}: frame size {size}, "
                f"buffer length {len(pixel_data.buffer)}",
                FailureKind.DECODE,
            )
        logger.debug(f"Extracted native frame {frame_index} ({size} bytes)")
        return pixel_data.buffer[start : start + size]

    try:
        decoded = decoder(dcm_path, frame_index)
    except Exception as e:
        raise FrameUnavailableError(
            f"Cannot decode frame {frame_index} of {dcm_path}: {e}", FailureKind.DECODE
        ) from e
    frame = np.ascontiguousarray(decoded).tobytes()
    logger.debug(
        f"Decoded encapsulated frame {frame_index} "
        f"({len(pixel_data.fragments)} fragments, {len(frame)} bytes)"
    )
    return frame


def read_frame(dcm_path: Path, frame_index: int, decoder: FrameDecoder = decode_frame) -> bytes:
    """
    Return the bytes of one frame (0-based index).

    Raises:
        FrameUnavailableError: With ``kind`` set to out_of_range, parse or decode
    """
    ds = load_pixel_dataset(dcm_path)
    pixel_data = classify_pixel_data(ds)
    return _frame_from_dataset(ds, pixel_data, dcm_path, frame_index, decoder)


def extract_frame(
    dcm_path: Path, frame_index: int, decoder: FrameDecoder = decode_frame
) -> bytes | None:
    """
    Return the bytes of one frame (0-based index), or None if unavailable.

    Native frames are slices of the pixel buffer; encapsulated frames are the
    decoded raster (row-major, packed per sample width).
    """
    try:
        return read_frame(dcm_path, frame_index, decoder)
    except FrameUnavailableError as e:
        logger.warning(f"Frame {frame_index} of {dcm_path} unavailable: {e}")
        return None


def extract_frames(
    dcm_path: Path, frame_numbers: list[int], decoder: FrameDecoder = decode_frame
) -> tuple[list[bytes], list[Failure]]:
    """
    Extract 1-based frames in request order, skipping those that fail.

    Args:
        dcm_path: Path to DICOM file
        frame_numbers: Requested 1-based frame numbers, in caller order
        decoder: Raster decoder for encapsulated pixel data

    Returns:
        Tuple of (frames in request order, failures for skipped frames)
    """
    frames: list[bytes] = []
    failures: list[Failure] = []

    try:
        ds = load_pixel_dataset(dcm_path)
        pixel_data = classify_pixel_data(ds)
        total = number_of_frames(ds)
    except FrameUnavailableError as e:
        logger.warning(f"No frames available from {dcm_path}: {e}")
        return frames, [Failure(e.kind, str(dcm_path), str(e))]

    logger.info(f"Retrieving frames {frame_numbers} from {dcm_path.name} (total frames: {total})")

    for frame_number in frame_numbers:
        source = f"{dcm_path}#frame={frame_number}"
        try:
            frames.append(
                _frame_from_dataset(ds, pixel_data, dcm_path, frame_number - 1, decoder)
            )
        except FrameUnavailableError as e:
            logger.warning(f"Skipping frame {frame_number}: {e}")
            failures.append(Failure(e.kind, source, str(e)))

    return frames, failures
