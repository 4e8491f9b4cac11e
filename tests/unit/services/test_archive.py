"""Unit tests for archive sources (catalog database and in-memory)."""

from datetime import date, time

import pytest

from app.models.archive import ResourceRecord, ScanRecord
from app.services.archive import InMemoryArchive, SqlArchive
from tests.fixtures.factories import make_scan, make_scan_record, make_session, make_session_record

pytestmark = pytest.mark.unit


def _seed(db):
    db.add_all(
        [
            make_session_record(
                session_id="E1",
                uid="1.2.3",
                scans=[
                    make_scan_record("2", "1.2.3.2", modality="MR", position=1),
                    make_scan_record(
                        "1",
                        "1.2.3.1",
                        position=0,
                        resources=[
                            ResourceRecord(label="DICOM", format="DICOM"),
                            ResourceRecord(label="SNAPSHOTS", catalog_path="snap.xml"),
                        ],
                    ),
                ],
            ),
            make_session_record(session_id="E2", uid=None, label="NO_UID"),
            make_session_record(session_id="E3", uid="1.2.3", project="OTHER"),
        ]
    )
    db.commit()


def test_find_session_maps_records(db_session):
    _seed(db_session)

    session = SqlArchive(db_session).find_session("PROJ1", "1.2.3")

    assert session.id == "E1"
    assert session.project == "PROJ1"
    assert session.label == "SESSION_01"
    assert session.date == date(2024, 1, 15)
    assert session.time == time(9, 30, 15)
    # Scans in archive order
    assert [scan.scan_id for scan in session.scans] == ["1", "2"]
    scan = session.scans[0]
    assert scan.session is session
    assert [r.label for r in scan.resources] == ["DICOM", "SNAPSHOTS"]
    assert scan.resources[1].catalog_path == "snap.xml"
    assert scan.resources[0].resource_id is not None


def test_find_session_is_scoped_to_project(db_session):
    _seed(db_session)
    archive = SqlArchive(db_session)

    assert archive.find_session("OTHER", "1.2.3").id == "E3"
    assert archive.find_session("MISSING", "1.2.3") is None
    assert archive.find_session("PROJ1", "9.9.9") is None


def test_list_sessions(db_session):
    _seed(db_session)

    sessions = SqlArchive(db_session).list_sessions("PROJ1")

    assert [s.id for s in sessions] == ["E1", "E2"]
    assert [s.is_study for s in sessions] == [True, False]


def test_scan_order_follows_position_in_reused_orm_session(db_session):
    _seed(db_session)
    archive = SqlArchive(db_session)
    assert [s.scan_id for s in archive.find_session("PROJ1", "1.2.3").scans] == ["1", "2"]

    # Reorder scans through the same, still populated, ORM session
    for record in db_session.query(ScanRecord).filter(ScanRecord.session_id == "E1").all():
        record.position = 5 if record.scan_id == "1" else 3
    db_session.commit()

    assert [s.scan_id for s in archive.find_session("PROJ1", "1.2.3").scans] == ["2", "1"]
    assert [s.scan_id for s in archive.list_sessions("PROJ1")[0].scans] == ["2", "1"]


def test_in_memory_archive():
    first = make_session(uid="1.1", scans=[make_scan()])
    second = make_session(uid="2.2", project="OTHER")
    archive = InMemoryArchive([first])
    archive.add(second)

    assert archive.find_session("PROJ1", "1.1") is first
    assert archive.find_session("PROJ1", "2.2") is None
    assert archive.list_sessions("OTHER") == [second]
    assert first.scans[0].session is first
