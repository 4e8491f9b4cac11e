"""Read-only access to the imaging archive.

The retrieval service only needs two queries: find one session by study UID
within a project, and list a project's sessions. Both return fresh snapshots.
"""

import logging
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.models.archive import ScanRecord, SessionRecord
from app.models.entities import ImagingSession, Resource, Scan

logger = logging.getLogger(__name__)


class ArchiveSource(Protocol):
    """Narrow query interface over the archive."""

    def find_session(self, project_id: str, study_uid: str) -> ImagingSession | None: ...

    def list_sessions(self, project_id: str) -> list[ImagingSession]: ...


class InMemoryArchive:
    """Archive source backed by a list of session snapshots."""

    def __init__(self, sessions: list[ImagingSession] | None = None):
        self.sessions = list(sessions or [])

    def add(self, session: ImagingSession) -> None:
        self.sessions.append(session)

    def find_session(self, project_id: str, study_uid: str) -> ImagingSession | None:
        for session in self.sessions:
            if session.uid == study_uid and session.project == project_id:
                return session
        return None

    def list_sessions(self, project_id: str) -> list[ImagingSession]:
        return [s for s in self.sessions if s.project == project_id]


class SqlArchive:
    """Archive source reading the catalog database."""

    def __init__(self, db: Session):
        self.db = db

    def find_session(self, project_id: str, study_uid: str) -> ImagingSession | None:
        query = (
            self._session_query()
            .where(SessionRecord.uid == study_uid, SessionRecord.project == project_id)
            .order_by(SessionRecord.id)
        )
        record = self.db.execute(query).scalars().first()
        if record is None:
            logger.debug(f"No session with UID {study_uid} in project {project_id}")
            return None
        return _to_session(record)

    def list_sessions(self, project_id: str) -> list[ImagingSession]:
        query = (
            self._session_query()
            .where(SessionRecord.project == project_id)
            .order_by(SessionRecord.id)
        )
        return [_to_session(record) for record in self.db.execute(query).scalars().all()]

    @staticmethod
    def _session_query():
        # Refresh collections already loaded in the caller's ORM session
        return (
            select(SessionRecord)
            .options(selectinload(SessionRecord.scans).selectinload(ScanRecord.resources))
            .execution_options(populate_existing=True)
        )


def _to_session(record: SessionRecord) -> ImagingSession:
    scans = [
        Scan(
            uid=scan.uid,
            scan_id=scan.scan_id,
            modality=scan.modality,
            series_description=scan.series_description,
            resources=[
                Resource(
                    label=res.label,
                    format=res.format,
                    content=res.content,
                    catalog_path=res.catalog_path,
                    resource_id=str(res.pk),
                )
                for res in scan.resources
            ],
        )
        for scan in sorted(record.scans, key=lambda s: (s.position, s.pk))
    ]
    return ImagingSession(
        id=record.id,
        uid=record.uid,
        project=record.project,
        subject_id=record.subject_id,
        label=record.label,
        date=record.date,
        time=record.time,
        archive_path=record.archive_path,
        scans=scans,
    )
