"""Map archive sessions and scans onto DICOM study and series attributes.

The archive has one free-text label per session; DICOM wants both a study
description and an accession number, so the label fills both.
"""

import logging
from collections.abc import Callable

from pydicom.dataset import Dataset

from app.models.entities import ImagingSession, Scan

logger = logging.getLogger(__name__)

UNKNOWN_PATIENT = "UNKNOWN"
DEFAULT_MODALITY = "OT"
DEFAULT_SERIES_NUMBER = "1"


def format_dicom_date(value) -> str:
    """``2024-03-01`` (or a ``date``) to ``20240301``; empty string when absent."""
    if value is None:
        return ""
    return str(value).replace("-", "")


def format_dicom_time(value) -> str:
    """``13:45:10`` (or a ``time``) to ``134510``; empty string when absent."""
    if value is None:
        return ""
    return str(value).replace(":", "")


def modalities_in_study(session: ImagingSession) -> list[str]:
    """Distinct scan modalities, in order of first appearance."""
    modalities: list[str] = []
    for scan in session.scans:
        if scan.modality and scan.modality not in modalities:
            modalities.append(scan.modality)
    return modalities


def series_number(scan_id: str | None) -> str:
    """Scan id as an IS value; ids that are not integers fall back to "1"."""
    if scan_id is None:
        return DEFAULT_SERIES_NUMBER
    value = scan_id.strip()
    if not value.lstrip("+-").isdigit():
        logger.debug(f"Scan id {scan_id!r} is not numeric, using default series number")
        return DEFAULT_SERIES_NUMBER
    return value


def _set_study_identity(ds: Dataset, session: ImagingSession) -> None:
    if session.uid:
        ds.StudyInstanceUID = session.uid

    patient = session.subject_id if session.subject_id is not None else UNKNOWN_PATIENT
    ds.PatientName = patient
    ds.PatientID = patient

    ds.StudyDate = format_dicom_date(session.date)


def _set_study_labels(ds: Dataset, session: ImagingSession) -> None:
    label = session.label if session.label is not None else ""
    ds.StudyDescription = label
    ds.AccessionNumber = label
    ds.StudyID = session.id if session.id is not None else ""


def study_attributes(session: ImagingSession) -> Dataset:
    """Study-level attributes synthesized from a session."""
    ds = Dataset()
    _set_study_identity(ds, session)
    _set_study_labels(ds, session)

    modalities = modalities_in_study(session)
    if modalities:
        ds.ModalitiesInStudy = "\\".join(modalities)
    return ds


def enhanced_study_attributes(
    session: ImagingSession, count_instances: Callable[[Scan], int]
) -> Dataset:
    """
    Study attributes plus time, series/instance counts and institution.

    Args:
        session: Archive session
        count_instances: Number of resolvable instances in a scan. Called once
            per scan, so the cost is a full resource scan of the study.
    """
    ds = Dataset()
    _set_study_identity(ds, session)
    ds.StudyTime = format_dicom_time(session.time)
    _set_study_labels(ds, session)

    number_of_instances = 0
    for scan in session.scans:
        number_of_instances += count_instances(scan)

    modalities = modalities_in_study(session)
    if modalities:
        ds.ModalitiesInStudy = "\\".join(modalities)

    ds.NumberOfStudyRelatedSeries = len(session.scans)
    ds.NumberOfStudyRelatedInstances = number_of_instances

    if session.project:
        ds.InstitutionName = session.project

    logger.debug(
        f"Study {session.uid}: {len(session.scans)} series, {number_of_instances} instances"
    )
    return ds


def series_attributes(scan: Scan, study_uid: str) -> Dataset:
    """Series-level attributes synthesized from a scan."""
    ds = Dataset()
    if scan.uid:
        ds.SeriesInstanceUID = scan.uid
    ds.Modality = scan.modality if scan.modality is not None else DEFAULT_MODALITY
    ds.SeriesNumber = series_number(scan.scan_id)
    ds.SeriesDescription = scan.series_description if scan.series_description is not None else ""
    ds.StudyInstanceUID = study_uid
    return ds
