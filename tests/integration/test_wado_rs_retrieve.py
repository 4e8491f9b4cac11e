"""Integration tests for WADO-RS study, series and instance retrieval.

Tests the HTTP surface over a seeded catalog database and archive tree:
instance bytes, multipart study/series retrieval, DICOM JSON metadata,
study and series listings, and 404 mapping.
"""

import json
import re
from io import BytesIO

import pydicom
import pytest

from tests.fixtures.factories import (
    CT_UIDS,
    MULTIFRAME_UID,
    PROJECT,
    RLE_UID,
    SERIES_1,
    SERIES_2,
    STUDY_UID,
)

pytestmark = pytest.mark.integration

STUDY_URL = f"/dicomweb/projects/{PROJECT}/studies/{STUDY_UID}"
SERIES_1_URL = f"{STUDY_URL}/series/{SERIES_1}"
SERIES_2_URL = f"{STUDY_URL}/series/{SERIES_2}"

SOP_INSTANCE_UID_TAG = "00080018"
INSTANCE_NUMBER_TAG = "00200013"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Helper Functions
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def parse_multipart(body: bytes, content_type: str) -> list[bytes]:
    """Split a multipart/related response into part payloads."""
    match = re.search(r"boundary=([^;\s]+)", content_type)
    assert match, f"No boundary in {content_type}"
    delimiter = f"--{match.group(1)}".encode()

    parts = []
    for section in body.split(delimiter)[1:-1]:
        _, _, payload = section.partition(b"\r\n\r\n")
        parts.append(payload[:-2])
    return parts


def sop_uids(datasets: list[dict]) -> list[str]:
    return [ds[SOP_INSTANCE_UID_TAG]["Value"][0] for ds in datasets]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Instances
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_retrieve_instance_returns_file_bytes(client, seeded_archive):
    stored = (
        seeded_archive / PROJECT / "arc001" / "SESSION_01" / "SCANS" / "1" / "DICOM" / "b.dcm"
    ).read_bytes()

    response = client.get(f"{SERIES_1_URL}/instances/{CT_UIDS[0]}")

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/dicom"
    assert response.content == stored


def test_retrieve_instance_from_catalog(client, seeded_archive):
    response = client.get(f"{SERIES_2_URL}/instances/{RLE_UID}")

    assert response.status_code == 200
    ds = pydicom.dcmread(BytesIO(response.content))
    assert ds.SOPInstanceUID == RLE_UID


def test_instance_metadata(client, seeded_archive):
    response = client.get(f"{SERIES_1_URL}/instances/{CT_UIDS[1]}/metadata")

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/dicom+json"
    body = response.json()
    assert len(body) == 1
    assert sop_uids(body) == [CT_UIDS[1]]
    assert "7FE00010" not in body[0]


@pytest.mark.parametrize(
    "url",
    [
        f"/dicomweb/projects/OTHER/studies/{STUDY_UID}/series/{SERIES_1}/instances/{CT_UIDS[0]}",
        f"/dicomweb/projects/{PROJECT}/studies/9.9.9/series/{SERIES_1}/instances/{CT_UIDS[0]}",
        f"{STUDY_URL}/series/9.9.9/instances/{CT_UIDS[0]}",
        f"{SERIES_1_URL}/instances/9.9.9",
        f"{SERIES_1_URL}/instances/9.9.9/metadata",
    ],
)
def test_unknown_instance_is_404(client, seeded_archive, url):
    response = client.get(url)

    assert response.status_code == 404


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Series and Studies
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_series_metadata_ordered_by_instance_number(client, seeded_archive):
    response = client.get(f"{SERIES_1_URL}/metadata")

    assert response.status_code == 200
    body = response.json()
    assert sop_uids(body) == CT_UIDS
    assert [ds[INSTANCE_NUMBER_TAG]["Value"][0] for ds in body] == [1, 2]


def test_retrieve_series_multipart(client, seeded_archive):
    response = client.get(SERIES_2_URL)

    assert response.status_code == 200
    content_type = response.headers["content-type"]
    assert content_type.startswith('multipart/related; type="application/dicom"')

    parts = parse_multipart(response.content, content_type)
    uids = [pydicom.dcmread(BytesIO(p)).SOPInstanceUID for p in parts]
    assert uids == [MULTIFRAME_UID, RLE_UID]


def test_retrieve_study_multipart(client, seeded_archive):
    response = client.get(STUDY_URL)

    assert response.status_code == 200
    parts = parse_multipart(response.content, response.headers["content-type"])
    assert len(parts) == 4


def test_study_metadata(client, seeded_archive):
    response = client.get(f"{STUDY_URL}/metadata")

    assert response.status_code == 200
    assert sop_uids(response.json()) == CT_UIDS + [MULTIFRAME_UID, RLE_UID]


def test_boundaries_differ_between_responses(client, seeded_archive):
    first = client.get(SERIES_2_URL).headers["content-type"]
    second = client.get(SERIES_2_URL).headers["content-type"]

    assert first != second


def test_unknown_series_and_study_are_404(client, seeded_archive):
    assert client.get(f"{STUDY_URL}/series/9.9.9").status_code == 404
    assert client.get(f"{STUDY_URL}/series/9.9.9/metadata").status_code == 404
    assert client.get(f"/dicomweb/projects/{PROJECT}/studies/9.9.9").status_code == 404
    assert client.get(f"/dicomweb/projects/{PROJECT}/studies/9.9.9/metadata").status_code == 404


def test_series_with_missing_files_is_404(client, seeded_archive):
    scan_dir = seeded_archive / PROJECT / "arc001" / "SESSION_01" / "SCANS" / "1" / "DICOM"
    for path in scan_dir.iterdir():
        path.unlink()

    response = client.get(SERIES_1_URL)

    assert response.status_code == 404


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Listings
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_list_studies_only_sessions_with_uid(client, seeded_archive):
    response = client.get(f"/dicomweb/projects/{PROJECT}/studies")

    assert response.status_code == 200
    body = response.json()
    assert len(body) == 1
    study = body[0]
    assert study["0020000D"]["Value"] == [STUDY_UID]
    assert study["00100020"]["Value"] == ["SUBJ_01"]
    assert study["00080061"]["Value"] == ["CT", "MR"]
    assert study["00080020"]["Value"] == ["20240115"]


def test_list_studies_empty_project(client, seeded_archive):
    response = client.get("/dicomweb/projects/EMPTY/studies")

    assert response.status_code == 200
    assert json.loads(response.content) == []


def test_list_series(client, seeded_archive):
    response = client.get(f"{STUDY_URL}/series")

    assert response.status_code == 200
    body = response.json()
    assert [s["0020000E"]["Value"][0] for s in body] == [SERIES_1, SERIES_2]
    assert [s["00200011"]["Value"][0] for s in body] == [1, 2]
    assert [s["00080060"]["Value"][0] for s in body] == ["CT", "MR"]


def test_study_attributes_counts(client, seeded_archive):
    response = client.get(f"{STUDY_URL}/attributes")

    assert response.status_code == 200
    (study,) = response.json()
    assert study["00201206"]["Value"] == [2]
    assert study["00201208"]["Value"] == [4]
    assert study["00080080"]["Value"] == [PROJECT]


def test_study_attributes_unknown_study(client, seeded_archive):
    response = client.get(f"/dicomweb/projects/{PROJECT}/studies/9.9.9/attributes")

    assert response.status_code == 404
