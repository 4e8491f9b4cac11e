"""SQLAlchemy models for the archive catalog (sessions, scans, resources)."""

from sqlalchemy import Column, Date, ForeignKey, Integer, String, Time
from sqlalchemy.orm import relationship

from app.database import Base


class SessionRecord(Base):
    """Archive imaging session."""

    __tablename__ = "image_sessions"

    id = Column(String(64), primary_key=True)
    project = Column(String(64), nullable=False, index=True)
    uid = Column(String(128), index=True)
    subject_id = Column(String(64))
    label = Column(String(255))
    date = Column(Date)
    time = Column(Time)
    archive_path = Column(String(1024))

    scans = relationship(
        "ScanRecord",
        back_populates="session",
        order_by="ScanRecord.position",
        cascade="all, delete-orphan",
    )


class ScanRecord(Base):
    """Archive scan belonging to a session."""

    __tablename__ = "image_scans"

    pk = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(64), ForeignKey("image_sessions.id"), nullable=False, index=True)
    # Archive listing order
    position = Column(Integer, nullable=False, default=0)
    scan_id = Column(String(64))
    uid = Column(String(128), index=True)
    modality = Column(String(16))
    series_description = Column(String(255))

    session = relationship("SessionRecord", back_populates="scans")
    resources = relationship(
        "ResourceRecord",
        back_populates="scan",
        order_by="ResourceRecord.pk",
        cascade="all, delete-orphan",
    )


class ResourceRecord(Base):
    """File grouping attached to a scan."""

    __tablename__ = "scan_resources"

    pk = Column(Integer, primary_key=True, autoincrement=True)
    scan_pk = Column(Integer, ForeignKey("image_scans.pk"), nullable=False, index=True)
    label = Column(String(255))
    format = Column(String(64))
    content = Column(String(255))
    catalog_path = Column(String(1024))

    scan = relationship("ScanRecord", back_populates="resources")
