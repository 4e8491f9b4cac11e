"""Test fixtures for the archive DICOMweb service."""

from contextlib import asynccontextmanager

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.config import Settings
from app.database import Base, get_db
from app.models.archive import ResourceRecord
from app.routers import dicomweb
from tests.fixtures.factories import (
    CT_UIDS,
    MULTIFRAME_UID,
    PROJECT,
    RLE_UID,
    SERIES_1,
    SERIES_2,
    STUDY_UID,
    DicomFactory,
    make_scan_record,
    make_session_record,
    write_catalog,
    write_file,
)


@pytest.fixture
def archive_root(tmp_path):
    """Empty archive base directory for the filesystem fallback."""
    root = tmp_path / "archive"
    root.mkdir()
    return root


@pytest.fixture
def session_factory(tmp_path):
    """Session factory bound to a fresh SQLite catalog database."""
    db_path = tmp_path / "test.db"
    test_engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=test_engine)
    TestSessionLocal = sessionmaker(bind=test_engine, autoflush=False, expire_on_commit=False)
    yield TestSessionLocal
    test_engine.dispose()


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client(session_factory, archive_root, monkeypatch):
    """Create a TestClient over a temporary catalog database and archive."""

    settings = Settings(archive_root=archive_root, database_url="sqlite://", sort_instances=True)
    monkeypatch.setattr(dicomweb, "get_settings", lambda: settings)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    @asynccontextmanager
    async def test_lifespan(app: FastAPI):
        yield

    test_app = FastAPI(lifespan=test_lifespan)
    test_app.include_router(dicomweb.router, prefix="/dicomweb", tags=["DICOMweb"])

    @test_app.get("/health", tags=["Health"])
    def health_check():
        return {"status": "healthy", "service": "archive-dicomweb"}

    test_app.dependency_overrides[get_db] = override_get_db

    with TestClient(test_app) as test_client:
        yield test_client


@pytest.fixture
def seeded_archive(session_factory, archive_root):
    """
    Catalog rows plus files for one study in PROJ1.

    Series 1: two CT instances found by the directory walk (InstanceNumber 2, 1).
    Series 2: native multiframe (5 frames) and RLE multiframe (3 frames),
    listed by a resource catalog.
    """
    session_dir = archive_root / PROJECT / "arc001" / "SESSION_01"

    series_1_dir = session_dir / "SCANS" / "1" / "DICOM"
    for name, sop_uid, number in (("a.dcm", CT_UIDS[1], 2), ("b.dcm", CT_UIDS[0], 1)):
        write_file(
            series_1_dir / name,
            DicomFactory.create_ct_image(
                study_uid=STUDY_UID,
                series_uid=SERIES_1,
                sop_uid=sop_uid,
                instance_number=number,
                rows=16,
                columns=16,
            ),
        )

    series_2_dir = session_dir / "SCANS" / "2" / "DICOM"
    write_file(
        series_2_dir / "multi.dcm",
        DicomFactory.create_multiframe_ct(
            num_frames=5, sop_uid=MULTIFRAME_UID, study_uid=STUDY_UID, series_uid=SERIES_2
        ),
    )
    write_file(
        series_2_dir / "rle.dcm",
        DicomFactory.create_rle_multiframe(
            num_frames=3, sop_uid=RLE_UID, study_uid=STUDY_UID, series_uid=SERIES_2
        ),
    )
    write_catalog(series_2_dir / "scan_2_catalog.xml", ["multi.dcm", "rle.dcm"])

    db = session_factory()
    try:
        db.add_all(
            [
                make_session_record(
                    session_id="XNAT_E00001",
                    uid=STUDY_UID,
                    project=PROJECT,
                    scans=[
                        make_scan_record("1", SERIES_1, modality="CT", position=0),
                        make_scan_record(
                            "2",
                            SERIES_2,
                            modality="MR",
                            position=1,
                            resources=[
                                ResourceRecord(
                                    label="DICOM",
                                    format="DICOM",
                                    catalog_path="SCANS/2/DICOM/scan_2_catalog.xml",
                                ),
                                ResourceRecord(label="NIFTI", format="NIFTI"),
                            ],
                        ),
                    ],
                ),
                make_session_record(session_id="XNAT_E00002", uid=None, label="PENDING"),
            ]
        )
        db.commit()
    finally:
        db.close()
    return archive_root
