"""
Retrieval orchestration: archive lookup, file location, header parsing,
frame extraction.

Every operation returns a ``RetrievalResult``. Failures of a single file,
frame or resource are recorded on the result and never abort the rest of
the aggregation; anything unexpected is reported as ``failed``.
"""

import functools
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from pydicom.dataset import Dataset

from app.models.entities import ImagingSession, Scan
from app.services.archive import ArchiveSource
from app.services.dataset_reader import read_instance_header, sop_instance_uid
from app.services.errors import CatalogResolutionError, DicomParseError
from app.services.file_locator import FileLocator, is_dicom_resource
from app.services.frame_extraction import (
    FrameDecoder,
    decode_frame,
    extract_frames,
    parse_frame_numbers,
)
from app.services.hierarchy import enhanced_study_attributes, series_attributes, study_attributes
from app.services.image_rendering import render_frame
from app.services.results import Failure, FailureKind, RetrievalResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocatedInstance:
    """A candidate file whose header parsed as a DICOM instance."""

    path: Path
    dataset: Dataset

    @property
    def sop_instance_uid(self) -> str:
        return sop_instance_uid(self.dataset)


def _instance_number(instance: LocatedInstance) -> int | None:
    value = instance.dataset.get("InstanceNumber")
    if value is None or str(value).strip() == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def order_instances(instances: list[LocatedInstance]) -> list[LocatedInstance]:
    """
    Stable sort by InstanceNumber.

    Instances without a usable InstanceNumber keep their traversal order,
    after the numbered ones.
    """

    def key(instance: LocatedInstance):
        number = _instance_number(instance)
        return (number is None, number if number is not None else 0)

    return sorted(instances, key=key)


def _guarded(operation):
    """Report unexpected exceptions as a failed result instead of raising."""

    @functools.wraps(operation)
    def wrapper(self, *args, **kwargs) -> RetrievalResult:
        try:
            return operation(self, *args, **kwargs)
        except Exception as e:
            logger.exception(f"{operation.__name__} failed")
            return RetrievalResult.failed(
                [Failure(FailureKind.INTERNAL, operation.__name__, str(e))]
            )

    return wrapper


class RetrievalService:
    """WADO-RS retrieval over an archive of sessions, scans and resources."""

    def __init__(
        self,
        archive: ArchiveSource,
        locator: FileLocator,
        sort_instances: bool = False,
        decoder: FrameDecoder = decode_frame,
    ):
        self.archive = archive
        self.locator = locator
        self.sort_instances = sort_instances
        self.decoder = decoder

    # ── Lookups ────────────────────────────────────────────────────

    def find_session(self, project_id: str, study_uid: str) -> ImagingSession | None:
        session = self.archive.find_session(project_id, study_uid)
        if session is None or not session.is_study:
            logger.warning(f"Study not found: {study_uid} (project {project_id})")
            return None
        return session

    def find_scan(self, session: ImagingSession, series_uid: str) -> Scan | None:
        for scan in session.scans:
            if scan.uid == series_uid:
                return scan
        logger.warning(f"Series not found: {series_uid}")
        return None

    def iter_instances(self, scan: Scan, failures: list[Failure]) -> Iterator[LocatedInstance]:
        """
        Yield every candidate file in the scan's DICOM resources that parses.

        Unresolvable catalogs and unparseable files are appended to ``failures``.
        """
        seen: set[Path] = set()
        for resource in scan.resources:
            if not is_dicom_resource(resource):
                continue

            try:
                paths = self.locator.resolve_files(resource, scan)
            except CatalogResolutionError as e:
                logger.warning(f"Unable to resolve catalog for resource {resource.label}: {e}")
                failures.append(
                    Failure(FailureKind.RESOLUTION, resource.resource_id or str(resource.label), str(e))
                )
                continue

            for path in paths:
                if path in seen:
                    continue
                seen.add(path)
                try:
                    ds = read_instance_header(path)
                except DicomParseError as e:
                    logger.debug(f"Error reading DICOM candidate {path}: {e}")
                    failures.append(Failure(FailureKind.PARSE, str(path), str(e)))
                    continue
                yield LocatedInstance(path, ds)

    def scan_instances(self, scan: Scan, failures: list[Failure]) -> list[LocatedInstance]:
        """All instances of a scan, ordered when sorting is enabled."""
        instances = list(self.iter_instances(scan, failures))
        if self.sort_instances:
            instances = order_instances(instances)
        return instances

    def find_instance(
        self, scan: Scan, sop_uid: str, failures: list[Failure] | None = None
    ) -> Path | None:
        """Parse candidates until one carries ``sop_uid``; linear in files per scan."""
        failures = failures if failures is not None else []
        for instance in self.iter_instances(scan, failures):
            if instance.sop_instance_uid == sop_uid:
                return instance.path
        logger.warning(f"Instance not found: {sop_uid}")
        return None

    def count_instances(self, scan: Scan) -> int:
        return sum(1 for _ in self.iter_instances(scan, []))

    def _locate_scan(self, project_id: str, study_uid: str, series_uid: str) -> Scan | None:
        session = self.find_session(project_id, study_uid)
        if session is None:
            return None
        return self.find_scan(session, series_uid)

    def _locate_instance(
        self,
        project_id: str,
        study_uid: str,
        series_uid: str,
        sop_uid: str,
        failures: list[Failure],
    ) -> Path | None:
        scan = self._locate_scan(project_id, study_uid, series_uid)
        if scan is None:
            return None
        return self.find_instance(scan, sop_uid, failures)

    def _study_instances(
        self, project_id: str, study_uid: str, failures: list[Failure]
    ) -> list[LocatedInstance] | None:
        session = self.find_session(project_id, study_uid)
        if session is None:
            return None
        instances: list[LocatedInstance] = []
        for scan in session.scans:
            instances.extend(self.scan_instances(scan, failures))
        return instances

    def _series_instances(
        self, project_id: str, study_uid: str, series_uid: str, failures: list[Failure]
    ) -> list[LocatedInstance] | None:
        scan = self._locate_scan(project_id, study_uid, series_uid)
        if scan is None:
            return None
        return self.scan_instances(scan, failures)

    @staticmethod
    def _read_parts(
        instances: list[LocatedInstance], failures: list[Failure]
    ) -> list[bytes]:
        parts = []
        for instance in instances:
            try:
                parts.append(instance.path.read_bytes())
            except OSError as e:
                logger.warning(f"Cannot read instance file {instance.path}: {e}")
                failures.append(Failure(FailureKind.PARSE, str(instance.path), str(e)))
        return parts

    # ── Study level ────────────────────────────────────────────────

    @_guarded
    def list_studies(self, project_id: str) -> RetrievalResult:
        """Study attributes for every session in the project that has a UID."""
        studies = [
            study_attributes(session)
            for session in self.archive.list_sessions(project_id)
            if session.is_study
        ]
        logger.info(f"Study listing for project {project_id} returned {len(studies)} studies")
        return RetrievalResult.retrieved(studies)

    @_guarded
    def list_series(self, project_id: str, study_uid: str) -> RetrievalResult:
        """Series attributes for every scan in the study."""
        session = self.find_session(project_id, study_uid)
        if session is None:
            return RetrievalResult.not_found()
        series = [series_attributes(scan, study_uid) for scan in session.scans]
        logger.info(f"Series listing for study {study_uid} returned {len(series)} series")
        return RetrievalResult.retrieved(series)

    @_guarded
    def retrieve_study_attributes(self, project_id: str, study_uid: str) -> RetrievalResult:
        """Enhanced study attributes, including series and instance counts."""
        session = self.find_session(project_id, study_uid)
        if session is None:
            return RetrievalResult.not_found()
        return RetrievalResult.retrieved(enhanced_study_attributes(session, self.count_instances))

    @_guarded
    def retrieve_study(self, project_id: str, study_uid: str) -> RetrievalResult:
        """File bytes of every instance in the study."""
        failures: list[Failure] = []
        instances = self._study_instances(project_id, study_uid, failures)
        if instances is None:
            return RetrievalResult.not_found(failures)
        parts = self._read_parts(instances, failures)
        logger.info(f"Retrieved {len(parts)} instances for study {study_uid}")
        return RetrievalResult.from_items(parts, failures)

    @_guarded
    def retrieve_study_metadata(self, project_id: str, study_uid: str) -> RetrievalResult:
        """Header attributes of every instance in the study."""
        failures: list[Failure] = []
        instances = self._study_instances(project_id, study_uid, failures)
        if instances is None:
            return RetrievalResult.not_found(failures)
        logger.info(f"Retrieved metadata for {len(instances)} instances in study {study_uid}")
        return RetrievalResult.from_items([i.dataset for i in instances], failures)

    # ── Series level ───────────────────────────────────────────────

    @_guarded
    def retrieve_series(self, project_id: str, study_uid: str, series_uid: str) -> RetrievalResult:
        """File bytes of every instance in the series."""
        failures: list[Failure] = []
        instances = self._series_instances(project_id, study_uid, series_uid, failures)
        if instances is None:
            return RetrievalResult.not_found(failures)
        parts = self._read_parts(instances, failures)
        logger.info(f"Retrieved {len(parts)} instances for series {series_uid}")
        return RetrievalResult.from_items(parts, failures)

    @_guarded
    def retrieve_series_metadata(
        self, project_id: str, study_uid: str, series_uid: str
    ) -> RetrievalResult:
        """Header attributes of every instance in the series."""
        failures: list[Failure] = []
        instances = self._series_instances(project_id, study_uid, series_uid, failures)
        if instances is None:
            return RetrievalResult.not_found(failures)
        return RetrievalResult.from_items([i.dataset for i in instances], failures)

    # ── Instance level ─────────────────────────────────────────────

    @_guarded
    def retrieve_instance(
        self, project_id: str, study_uid: str, series_uid: str, sop_uid: str
    ) -> RetrievalResult:
        """Unmodified bytes of one instance file."""
        failures: list[Failure] = []
        path = self._locate_instance(project_id, study_uid, series_uid, sop_uid, failures)
        if path is None:
            return RetrievalResult.not_found(failures)
        try:
            data = path.read_bytes()
        except OSError as e:
            logger.warning(f"Cannot read instance file {path}: {e}")
            failures.append(Failure(FailureKind.PARSE, str(path), str(e)))
            return RetrievalResult.not_found(failures)
        logger.info(f"Retrieved instance: {sop_uid}")
        return RetrievalResult.retrieved(data, failures)

    @_guarded
    def retrieve_instance_metadata(
        self, project_id: str, study_uid: str, series_uid: str, sop_uid: str
    ) -> RetrievalResult:
        """Single-element list with the instance's header attributes."""
        failures: list[Failure] = []
        scan = self._locate_scan(project_id, study_uid, series_uid)
        if scan is None:
            return RetrievalResult.not_found(failures)
        for instance in self.iter_instances(scan, failures):
            if instance.sop_instance_uid == sop_uid:
                return RetrievalResult.retrieved([instance.dataset], failures)
        return RetrievalResult.not_found(failures)

    @_guarded
    def retrieve_frames(
        self,
        project_id: str,
        study_uid: str,
        series_uid: str,
        sop_uid: str,
        frames: str | None,
    ) -> RetrievalResult:
        """
        Frames of one instance, in the order requested.

        Args:
            frames: Comma-separated 1-based frame numbers, e.g. "3,1,5"

        Returns:
            Result whose payload is the list of frame byte strings
        """
        frame_numbers = parse_frame_numbers(frames)
        if not frame_numbers:
            logger.warning(f"No valid frame numbers in {frames!r}")
            return RetrievalResult.not_found()

        failures: list[Failure] = []
        path = self._locate_instance(project_id, study_uid, series_uid, sop_uid, failures)
        if path is None:
            return RetrievalResult.not_found(failures)

        extracted, frame_failures = extract_frames(path, frame_numbers, self.decoder)
        failures.extend(frame_failures)
        logger.info(f"Retrieved {len(extracted)} frame(s) from instance: {sop_uid}")
        return RetrievalResult.from_items(extracted, failures)

    @_guarded
    def retrieve_rendered(
        self,
        project_id: str,
        study_uid: str,
        series_uid: str,
        sop_uid: str,
        format: str = "jpeg",
        quality: int = 100,
    ) -> RetrievalResult:
        """First frame of the instance rendered as JPEG or PNG."""
        failures: list[Failure] = []
        path = self._locate_instance(project_id, study_uid, series_uid, sop_uid, failures)
        if path is None:
            return RetrievalResult.not_found(failures)
        try:
            image = render_frame(path, 1, format=format, quality=quality, decoder=self.decoder)
        except ValueError as e:
            logger.warning(f"Cannot render instance {sop_uid}: {e}")
            failures.append(Failure(FailureKind.DECODE, str(path), str(e)))
            return RetrievalResult.not_found(failures)
        return RetrievalResult.retrieved(image, failures)
