"""Header parsing for candidate DICOM files."""

import logging
from pathlib import Path

import pydicom
from pydicom.datadict import dictionary_has_tag
from pydicom.dataset import Dataset
from pydicom.uid import UID, ExplicitVRBigEndian, ExplicitVRLittleEndian, ImplicitVRLittleEndian

from app.services.errors import DicomParseError

logger = logging.getLogger(__name__)


def has_file_meta(ds: Dataset) -> bool:
    return bool(getattr(ds, "file_meta", None))


def read_dicom(path: Path | str, stop_before_pixels: bool = False) -> Dataset:
    """
    Read a DICOM file, with or without the preamble and File Meta header.

    A file without File Meta must still contain at least one element from
    the DICOM data dictionary.

    Raises:
        DicomParseError: If the file is missing, unreadable or not valid DICOM
    """
    try:
        ds = pydicom.dcmread(path, stop_before_pixels=stop_before_pixels, force=True)
        # Force parsing of every deferred element so truncation surfaces here
        for _ in ds:
            pass
    except (FileNotFoundError, PermissionError, IsADirectoryError) as e:
        raise DicomParseError(f"Cannot read DICOM file {path}: {e}") from e
    except Exception as e:  # pydicom.errors.InvalidDicomError, EOFError, struct errors
        raise DicomParseError(f"Invalid DICOM file {path}: {e}") from e

    if not has_file_meta(ds):
        if not any(dictionary_has_tag(tag) for tag in ds.keys()):
            raise DicomParseError(f"Invalid DICOM file {path}: no DICOM elements found")
        logger.debug(f"Read {path} without File Meta Information")
    return ds


def read_header(path: Path | str) -> Dataset:
    """
    Parse a DICOM file up to, but not including, its pixel data.

    Args:
        path: Path to the candidate file

    Returns:
        The parsed dataset (file meta, when present, available as ``ds.file_meta``)

    Raises:
        DicomParseError: If the file is missing, unreadable or not valid DICOM
    """
    return read_dicom(path, stop_before_pixels=True)


def read_instance_header(path: Path | str) -> Dataset:
    """Like ``read_header`` but also require a SOP Instance UID."""
    ds = read_header(path)
    if not str(ds.get("SOPInstanceUID", "") or "").strip():
        raise DicomParseError(f"DICOM file {path} has no SOPInstanceUID")
    return ds


def sop_instance_uid(ds: Dataset) -> str:
    return str(ds.get("SOPInstanceUID", "") or "").strip()


def transfer_syntax(ds: Dataset) -> UID:
    """Transfer syntax from File Meta, or the one matching the encoding read."""
    uid = getattr(getattr(ds, "file_meta", None), "TransferSyntaxUID", None)
    if uid:
        return UID(uid)
    implicit_vr, little_endian = ds.original_encoding
    if implicit_vr is False:
        return ExplicitVRLittleEndian if little_endian else ExplicitVRBigEndian
    return ImplicitVRLittleEndian
