"""
DICOM JSON encoding of attribute sets (PS3.18 F.2).

Attribute sets are pydicom Datasets; each tag becomes a key like "00100010"
with a dict containing "vr" and a "Value" array.
"""

import base64
import json
from typing import Any

from pydicom.dataelem import DataElement
from pydicom.dataset import Dataset
from pydicom.multival import MultiValue
from pydicom.tag import Tag

PIXEL_DATA_TAG = Tag(0x7FE0, 0x0010)

# DICOM VR types that produce string values in JSON
_STRING_VRS = {
    "AE",
    "AS",
    "CS",
    "DA",
    "DT",
    "LO",
    "LT",
    "SH",
    "ST",
    "TM",
    "UC",
    "UI",
    "UR",
    "UT",
}
_NUMBER_VRS = {"FL", "FD", "SL", "SS", "UL", "US", "SV", "UV"}
_BINARY_VRS = {"OB", "OD", "OF", "OL", "OV", "OW", "UN"}


def _values(elem: DataElement) -> list:
    if isinstance(elem.value, (list, tuple, MultiValue)):
        return list(elem.value)
    return [elem.value]


def _present(value) -> bool:
    return value is not None and str(value).strip() != ""


def _number(value, cast):
    try:
        return cast(value)
    except (TypeError, ValueError):
        # Malformed IS/DS text is passed through unchanged
        return str(value)


def _element_to_json(elem: DataElement) -> dict[str, Any]:
    entry: dict[str, Any] = {"vr": elem.VR}
    if elem.value is None:
        return entry

    if elem.VR == "SQ":
        if elem.value:
            entry["Value"] = [dataset_to_dicom_json(item) for item in elem.value]
    elif elem.VR == "PN":
        names = [{"Alphabetic": str(v)} for v in _values(elem) if _present(v)]
        if names:
            entry["Value"] = names
    elif elem.VR == "IS":
        values = [_number(v, int) for v in _values(elem) if _present(v)]
        if values:
            entry["Value"] = values
    elif elem.VR == "DS":
        values = [_number(v, float) for v in _values(elem) if _present(v)]
        if values:
            entry["Value"] = values
    elif elem.VR in _STRING_VRS:
        values = [str(v) for v in _values(elem) if _present(v)]
        if values:
            entry["Value"] = values
    elif elem.VR in _NUMBER_VRS:
        entry["Value"] = _values(elem)
    elif elem.VR in _BINARY_VRS:
        raw = elem.value if isinstance(elem.value, bytes) else bytes(elem.value)
        entry["InlineBinary"] = base64.b64encode(raw).decode("ascii")
    else:
        values = [str(v) for v in _values(elem) if _present(v)]
        if values:
            entry["Value"] = values
    return entry


def dataset_to_dicom_json(ds: Dataset) -> dict[str, Any]:
    """Convert an attribute set to the DICOM JSON model, without pixel data."""
    result = {}
    for elem in ds:
        if elem.tag.is_private or elem.tag == PIXEL_DATA_TAG:
            continue
        result[f"{elem.tag.group:04X}{elem.tag.element:04X}"] = _element_to_json(elem)
    return result


def to_dicom_json_bytes(datasets: list[Dataset]) -> bytes:
    """Encode a list of attribute sets as a DICOM JSON array."""
    return json.dumps([dataset_to_dicom_json(ds) for ds in datasets]).encode("utf-8")
