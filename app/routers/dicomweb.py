"""
DICOMweb WADO-RS Router over the imaging archive

Implements:
- WADO-RS: Retrieve studies, series, instances, metadata and frames
- Rendered: JPEG/PNG preview of an instance
- Study and series listings per project
"""

import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import get_db
from app.services.archive import SqlArchive
from app.services.dicom_json import to_dicom_json_bytes
from app.services.file_locator import FileLocator
from app.services.image_rendering import RENDERED_MEDIA_TYPES, negotiate_rendered_format
from app.services.multipart import (
    DICOM_MEDIA_TYPE,
    OCTET_STREAM_MEDIA_TYPE,
    build_multipart_response,
    multipart_content_type,
    new_boundary,
)
from app.services.results import RetrievalResult, RetrievalStatus
from app.services.retrieval import RetrievalService

logger = logging.getLogger(__name__)

router = APIRouter()

DICOM_JSON_MEDIA_TYPE = "application/dicom+json"

STUDY_PATH = "/projects/{project_id}/studies/{study_uid}"
SERIES_PATH = STUDY_PATH + "/series/{series_uid}"
INSTANCE_PATH = SERIES_PATH + "/instances/{instance_uid}"


def get_retrieval_service(db: Session = Depends(get_db)) -> RetrievalService:
    """Dependency building the retrieval service for one request."""
    settings = get_settings()
    return RetrievalService(
        SqlArchive(db),
        FileLocator(settings.archive_root),
        sort_instances=settings.sort_instances,
    )


def _check(result: RetrievalResult, what: str) -> RetrievalResult:
    """Map a non-retrieved result onto an HTTP error."""
    if result.status == RetrievalStatus.NOT_FOUND:
        raise HTTPException(status_code=404, detail=f"{what} not found")
    if result.status == RetrievalStatus.FAILED:
        reasons = "; ".join(f.reason for f in result.failures) or "unknown error"
        raise HTTPException(status_code=500, detail=f"Failed to retrieve {what}: {reasons}")
    if result.failures:
        logger.info(f"{what} retrieved with {len(result.failures)} skipped item(s)")
    return result


def _json_response(datasets) -> Response:
    return Response(content=to_dicom_json_bytes(datasets), media_type=DICOM_JSON_MEDIA_TYPE)


def _multipart_response(parts: list[bytes], part_type: str) -> Response:
    boundary = new_boundary()
    return Response(
        content=build_multipart_response(parts, boundary, part_type),
        media_type=multipart_content_type(boundary, part_type),
    )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Listings
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@router.get("/projects/{project_id}/studies")
def list_studies(
    project_id: str,
    service: RetrievalService = Depends(get_retrieval_service),
):
    """List study attributes for every session with a StudyInstanceUID."""
    result = _check(service.list_studies(project_id), "Studies")
    return _json_response(result.payload)


@router.get(STUDY_PATH + "/series")
def list_series(
    project_id: str,
    study_uid: str,
    service: RetrievalService = Depends(get_retrieval_service),
):
    """List series attributes for every scan in a study."""
    result = _check(service.list_series(project_id, study_uid), "Study")
    return _json_response(result.payload)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# WADO-RS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@router.get(STUDY_PATH)
def wado_rs_study(
    project_id: str,
    study_uid: str,
    service: RetrievalService = Depends(get_retrieval_service),
):
    """Retrieve all instances in a study as multipart/related."""
    result = _check(service.retrieve_study(project_id, study_uid), "Study")
    return _multipart_response(result.payload, DICOM_MEDIA_TYPE)


@router.get(STUDY_PATH + "/metadata")
def wado_rs_study_metadata(
    project_id: str,
    study_uid: str,
    service: RetrievalService = Depends(get_retrieval_service),
):
    """Retrieve metadata for all instances in a study."""
    result = _check(service.retrieve_study_metadata(project_id, study_uid), "Study")
    return _json_response(result.payload)


@router.get(STUDY_PATH + "/attributes")
def study_attributes(
    project_id: str,
    study_uid: str,
    service: RetrievalService = Depends(get_retrieval_service),
):
    """Study-level attributes including series and instance counts."""
    result = _check(service.retrieve_study_attributes(project_id, study_uid), "Study")
    return _json_response([result.payload])


@router.get(SERIES_PATH)
def wado_rs_series(
    project_id: str,
    study_uid: str,
    series_uid: str,
    service: RetrievalService = Depends(get_retrieval_service),
):
    """Retrieve all instances in a series as multipart/related."""
    result = _check(service.retrieve_series(project_id, study_uid, series_uid), "Series")
    return _multipart_response(result.payload, DICOM_MEDIA_TYPE)


@router.get(SERIES_PATH + "/metadata")
def wado_rs_series_metadata(
    project_id: str,
    study_uid: str,
    series_uid: str,
    service: RetrievalService = Depends(get_retrieval_service),
):
    """Retrieve metadata for all instances in a series."""
    result = _check(
        service.retrieve_series_metadata(project_id, study_uid, series_uid), "Series"
    )
    return _json_response(result.payload)


@router.get(INSTANCE_PATH)
def wado_rs_instance(
    project_id: str,
    study_uid: str,
    series_uid: str,
    instance_uid: str,
    service: RetrievalService = Depends(get_retrieval_service),
):
    """Retrieve a single DICOM instance file, unmodified."""
    result = _check(
        service.retrieve_instance(project_id, study_uid, series_uid, instance_uid), "Instance"
    )
    return Response(content=result.payload, media_type=DICOM_MEDIA_TYPE)


@router.get(INSTANCE_PATH + "/metadata")
def wado_rs_instance_metadata(
    project_id: str,
    study_uid: str,
    series_uid: str,
    instance_uid: str,
    service: RetrievalService = Depends(get_retrieval_service),
):
    """Retrieve metadata for a single instance."""
    result = _check(
        service.retrieve_instance_metadata(project_id, study_uid, series_uid, instance_uid),
        "Instance",
    )
    return _json_response(result.payload)


@router.get(INSTANCE_PATH + "/frames/{frames}")
def retrieve_frames(
    project_id: str,
    study_uid: str,
    series_uid: str,
    instance_uid: str,
    frames: str,
    service: RetrievalService = Depends(get_retrieval_service),
):
    """
    Retrieve one or more frames from a DICOM instance.

    Frames parameter:
    - Single frame: "1"
    - Multiple frames: "3,1,5" (returned in that order)

    A single frame is returned as application/octet-stream, several as
    multipart/related with application/octet-stream parts.
    """
    result = _check(
        service.retrieve_frames(project_id, study_uid, series_uid, instance_uid, frames),
        "Frames",
    )
    if len(result.payload) == 1:
        return Response(content=result.payload[0], media_type=OCTET_STREAM_MEDIA_TYPE)
    return _multipart_response(result.payload, OCTET_STREAM_MEDIA_TYPE)


@router.get(
    INSTANCE_PATH + "/rendered",
    response_class=Response,
    summary="Retrieve rendered DICOM instance (WADO-RS)",
)
def retrieve_rendered_instance(
    project_id: str,
    study_uid: str,
    series_uid: str,
    instance_uid: str,
    quality: int = Query(default=100, ge=1, le=100),
    accept: str = Header(default="image/jpeg"),
    service: RetrievalService = Depends(get_retrieval_service),
):
    """
    Retrieve the first frame of an instance rendered as JPEG or PNG.

    Query parameters:
    - quality: JPEG quality (1-100, default: 100, ignored for PNG)

    Accept header:
    - image/jpeg (default)
    - image/png
    """
    format = negotiate_rendered_format(accept)
    if format is None:
        raise HTTPException(
            status_code=406,
            detail=f"Unsupported Accept for rendered instance: {accept}",
        )

    result = _check(
        service.retrieve_rendered(
            project_id, study_uid, series_uid, instance_uid, format=format, quality=quality
        ),
        "Rendered instance",
    )
    return Response(content=result.payload, media_type=RENDERED_MEDIA_TYPES[format])
